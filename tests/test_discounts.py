import random
import unittest

from discounts import (
    Product, DiscountError, ceil_to_cent, generate_discount, random_discount_percentage,
    estimated_cost,
)


def make_product(cost, price, title="Widget"):
    return Product(
        id="gid://shopify/Product/1",
        title=title,
        image_url="https://cdn.example.com/1.jpg",
        cost=cost,
        selling_price=price,
        compare_at_price=None,
        inventory_quantity=3,
        variant_id="gid://shopify/ProductVariant/1001",
    )


class TestGenerateDiscount(unittest.TestCase):

    def test_forced_twenty_percent_on_forty_cost_hundred_price(self):
        d = generate_discount(make_product(40, 100), percentage=20)
        self.assertEqual(d.discount_percentage, 20)
        self.assertAlmostEqual(d.profit_margin, 60.0)
        self.assertEqual(d.original_price, 100.0)
        self.assertEqual(d.discounted_price, 88.0)
        self.assertAlmostEqual(d.savings_amount, 12.0)
        self.assertAlmostEqual(d.savings_percentage, 12.0)

    def test_price_stays_between_cost_and_selling_price(self):
        rng = random.Random(7)
        for _ in range(500):
            cost = round(rng.uniform(1, 200), 2)
            price = round(cost + rng.uniform(1, 200), 2)
            d = generate_discount(make_product(cost, price), rng=rng)
            self.assertGreaterEqual(d.discounted_price, cost)
            self.assertLess(d.discounted_price, price)
            self.assertGreaterEqual(d.discount_percentage, 10)
            self.assertLessEqual(d.discount_percentage, 25)

    def test_cost_at_or_above_price_is_rejected(self):
        with self.assertRaises(DiscountError):
            generate_discount(make_product(100, 100), percentage=15)
        with self.assertRaises(DiscountError):
            generate_discount(make_product(120, 100), percentage=15)

    def test_zero_price_is_rejected(self):
        with self.assertRaises(DiscountError):
            generate_discount(make_product(0, 0), percentage=10)

    def test_margin_too_thin_to_move_a_cent(self):
        # 9.99 + 0.009 rounds back up to 10.00
        with self.assertRaises(DiscountError):
            generate_discount(make_product(9.99, 10.00), percentage=10)

    def test_seeded_rng_is_reproducible(self):
        a = generate_discount(make_product(40, 100), rng=random.Random(3))
        b = generate_discount(make_product(40, 100), rng=random.Random(3))
        self.assertEqual(a, b)


class TestPricingHelpers(unittest.TestCase):

    def test_ceil_to_cent(self):
        self.assertEqual(ceil_to_cent(88.0), 88.0)
        self.assertEqual(ceil_to_cent(88.00000000001), 88.0)
        self.assertEqual(ceil_to_cent(10.001), 10.01)
        self.assertEqual(ceil_to_cent(12.345), 12.35)

    def test_random_percentage_range(self):
        rng = random.Random(11)
        draws = {random_discount_percentage(rng) for _ in range(1000)}
        self.assertTrue(draws <= set(range(10, 26)))
        self.assertIn(10, draws)
        self.assertIn(25, draws)

    def test_estimated_cost_is_half_price(self):
        self.assertEqual(estimated_cost(80.0), 40.0)


if __name__ == "__main__":
    unittest.main()
