import random
import unittest

from catalog import (
    CatalogFetchError, CatalogStats, ProductCache, build_product,
    fetch_eligible_products, filter_eligible, random_products,
)
from tests.fakes import FakeShopify, SHOP, product_node, no_sleep


class FakeMonotonic:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


class TestFetchEligibleProducts(unittest.TestCase):

    def test_walks_every_page(self):
        fake = FakeShopify([product_node(n) for n in range(1, 6)])
        pauses = []
        products, stats = fetch_eligible_products(fake, SHOP, page_size=2, pause_ms=400, sleep=pauses.append)
        self.assertEqual([p.id for p in products], [f"gid://shopify/Product/{n}" for n in range(1, 6)])
        self.assertEqual(stats.pages, 3)
        self.assertFalse(stats.partial)
        self.assertEqual(pauses, [0.4, 0.4])
        self.assertEqual([v["after"] for v in fake.ops("products")], [None, "2", "4"])

    def test_eligibility_filters_and_counts(self):
        nodes = [
            product_node(1),
            product_node(2, image=False),
            product_node(3, qty=0),
            product_node(4, variants=False),
            product_node(5, price="100.00", cost="120.00"),
            product_node(6, price="80.00", cost=None),
        ]
        products, stats = fetch_eligible_products(FakeShopify(nodes), SHOP, sleep=no_sleep)

        self.assertEqual([p.id for p in products], ["gid://shopify/Product/1", "gid://shopify/Product/6"])
        self.assertEqual(stats.total, 6)
        self.assertEqual(stats.with_image, 5)
        self.assertEqual(stats.with_variant, 5)
        self.assertEqual(stats.with_inventory, 4)
        self.assertEqual(stats.with_cost, 4)
        self.assertEqual(stats.with_margin, 4)
        self.assertEqual(stats.eligible, 2)

        observed, imputed = products
        self.assertTrue(observed.has_cost_data)
        self.assertEqual(observed.cost, 40.0)
        self.assertFalse(imputed.has_cost_data)
        self.assertEqual(imputed.cost, 40.0)
        self.assertEqual(imputed.selling_price, 80.0)

    def test_first_page_failure_raises(self):
        fake = FakeShopify([product_node(1)])
        fake.fail_pages = {1}
        with self.assertRaises(CatalogFetchError):
            fetch_eligible_products(fake, SHOP, sleep=no_sleep)

    def test_later_page_failure_keeps_partial_pool(self):
        fake = FakeShopify([product_node(n) for n in range(1, 6)])
        fake.fail_pages = {2}
        products, stats = fetch_eligible_products(fake, SHOP, page_size=2, sleep=no_sleep)
        self.assertEqual(len(products), 2)
        self.assertTrue(stats.partial)
        self.assertIn("503", stats.error)
        self.assertEqual(stats.total, 2)

    def test_empty_catalog(self):
        products, stats = fetch_eligible_products(FakeShopify([]), SHOP, sleep=no_sleep)
        self.assertEqual(products, [])
        self.assertEqual(stats.total, 0)
        self.assertEqual(stats.pages, 1)


class TestParsing(unittest.TestCase):

    def test_default_variant_title_is_dropped(self):
        node = product_node(9)
        variant = node["variants"]["edges"][0]["node"]
        self.assertIsNone(build_product(node, variant).variant_title)
        variant["title"] = "Large"
        self.assertEqual(build_product(node, variant).variant_title, "Large")

    def test_zero_unit_cost_is_an_observed_cost(self):
        stats = CatalogStats()
        products = filter_eligible([product_node(1, price="50.00", cost="0.00")], stats)
        self.assertEqual(stats.with_cost, 1)
        self.assertEqual(stats.with_margin, 1)
        self.assertEqual(stats.eligible, 1)
        self.assertTrue(products[0].has_cost_data)
        self.assertEqual(products[0].cost, 0.0)

    def test_blank_unit_cost_is_estimated(self):
        stats = CatalogStats()
        products = filter_eligible([product_node(1, price="50.00", cost="")], stats)
        self.assertEqual(stats.with_cost, 0)
        self.assertFalse(products[0].has_cost_data)
        self.assertEqual(products[0].cost, 25.0)


class TestProductCache(unittest.TestCase):

    def setUp(self):
        self.clock = FakeMonotonic()
        self.cache = ProductCache(ttl_sec=60, max_size=100, clock=self.clock)
        self.fake = FakeShopify([product_node(n) for n in range(1, 4)])

    def test_fresh_entry_is_served_without_refetch(self):
        fetch_eligible_products(self.fake, SHOP, cache=self.cache, sleep=no_sleep)
        products, _ = fetch_eligible_products(self.fake, SHOP, cache=self.cache, sleep=no_sleep)
        self.assertEqual(len(products), 3)
        self.assertEqual(self.fake.page_calls, 1)

    def test_expired_entry_is_refetched(self):
        fetch_eligible_products(self.fake, SHOP, cache=self.cache, sleep=no_sleep)
        self.clock.t += 61
        self.assertIsNone(self.cache.get(SHOP))
        fetch_eligible_products(self.fake, SHOP, cache=self.cache, sleep=no_sleep)
        self.assertEqual(self.fake.page_calls, 2)

    def test_invalidate_is_per_shop(self):
        self.cache.store("a.myshopify.com", [], CatalogStats())
        self.cache.store("b.myshopify.com", [], CatalogStats())
        self.cache.invalidate("a.myshopify.com")
        self.assertIsNone(self.cache.get("a.myshopify.com"))
        self.assertIsNotNone(self.cache.get("b.myshopify.com"))
        self.cache.invalidate()
        self.assertIsNone(self.cache.get("b.myshopify.com"))

    def test_status(self):
        self.assertFalse(self.cache.status(SHOP)["is_cached"])
        fetch_eligible_products(self.fake, SHOP, cache=self.cache, sleep=no_sleep)
        self.clock.t += 20
        status = self.cache.status(SHOP)
        self.assertTrue(status["is_cached"])
        self.assertEqual(status["cache_age"], 20)
        self.assertEqual(status["cache_expiry"], 40)
        self.assertEqual(status["products_count"], 3)

    def test_max_size_caps_stored_products(self):
        cache = ProductCache(ttl_sec=60, max_size=2, clock=self.clock)
        fetch_eligible_products(self.fake, SHOP, cache=cache, sleep=no_sleep)
        self.assertEqual(cache.status(SHOP)["products_count"], 2)


class TestRandomProducts(unittest.TestCase):

    def test_preselection_is_reused(self):
        fake = FakeShopify([product_node(n) for n in range(1, 11)])
        cache = ProductCache(ttl_sec=60, clock=FakeMonotonic())
        first, stats, status = random_products(fake, SHOP, 4, cache, rng=random.Random(1), sleep=no_sleep)
        self.assertEqual(len(first), 4)
        self.assertEqual(len({p.id for p in first}), 4)
        self.assertEqual(stats.eligible, 10)
        self.assertTrue(status["is_cached"])

        again, _, _ = random_products(fake, SHOP, 4, cache, rng=random.Random(2), sleep=no_sleep)
        self.assertEqual(fake.page_calls, 1)
        self.assertEqual(len(again), 4)

    def test_refresh_refetches(self):
        fake = FakeShopify([product_node(n) for n in range(1, 4)])
        cache = ProductCache(ttl_sec=60, clock=FakeMonotonic())
        random_products(fake, SHOP, 2, cache, rng=random.Random(1), sleep=no_sleep)
        chosen, _, _ = random_products(fake, SHOP, 5, cache, force_refresh=True, rng=random.Random(1), sleep=no_sleep)
        self.assertEqual(fake.page_calls, 2)
        self.assertEqual(len(chosen), 3)

    def test_partial_pool_is_not_cached(self):
        fake = FakeShopify([product_node(n) for n in range(1, 6)])
        fake.fail_pages = {2}
        cache = ProductCache(ttl_sec=60, clock=FakeMonotonic())
        chosen, stats, status = random_products(fake, SHOP, 4, cache, rng=random.Random(1),
                                                page_size=2, sleep=no_sleep)
        self.assertTrue(stats.partial)
        self.assertEqual(len(chosen), 2)
        self.assertFalse(status["is_cached"])
        self.assertIsNone(cache.get(SHOP))

        chosen, stats, status = random_products(fake, SHOP, 4, cache, rng=random.Random(1),
                                                page_size=2, sleep=no_sleep)
        self.assertEqual(fake.page_calls, 5)
        self.assertFalse(stats.partial)
        self.assertEqual(len(chosen), 4)
        self.assertTrue(status["is_cached"])
        self.assertEqual(cache.status(SHOP)["products_count"], 5)


if __name__ == "__main__":
    unittest.main()
