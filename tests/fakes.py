"""
Test doubles: an in-memory Admin API shop and an in-memory ledger.
"""

from datetime import datetime, timedelta

from db import make_engine, make_session_factory, init_db
from ledger import DiscountLedger
from shopify_client import CatalogClient, ShopifyAPIError

SHOP = "test-shop.myshopify.com"


def product_node(n, price="100.00", cost="40.00", qty=5, image=True, variants=True, currency="USD"):
    variant = {
        "id": f"gid://shopify/ProductVariant/{1000 + n}",
        "title": "Default Title",
        "price": price,
        "compareAtPrice": None,
        "inventoryQuantity": qty,
        "inventoryItem": {"unitCost": {"amount": cost, "currencyCode": currency} if cost is not None else None},
    }
    return {
        "id": f"gid://shopify/Product/{n}",
        "title": f"Product {n}",
        "featuredImage": {"url": f"https://cdn.example.com/{n}.jpg", "altText": None} if image else None,
        "variants": {"edges": [{"node": variant}] if variants else []},
    }


class FakeShopify(CatalogClient):
    """
    Catalog pages come from `nodes`; price/tag mutations are applied to
    `prices` / `tags` and every call is recorded in `calls`.
    """

    def __init__(self, nodes=None, shop=SHOP):
        self.shop = shop
        self.nodes = list(nodes or [])
        self.calls = []
        self.prices = {}
        self.tags = {}
        self.page_calls = 0
        self.fail_pages = set()
        self.user_errors_for = set()
        self.raise_on_update = False
        self.fail_tags = False

    # --- helpers for assertions ---
    def ops(self, name):
        return [v for op, v in self.calls if op == name]

    def _variant_owner(self, variant_id):
        for node in self.nodes:
            for edge in node["variants"]["edges"]:
                if edge["node"]["id"] == variant_id:
                    return node["id"]
        return None

    # --- CatalogClient ---
    def query(self, document, variables=None):
        variables = variables or {}
        if "productVariantsBulkUpdate" in document:
            return self._bulk_update(variables)
        if "productVariant(id" in document:
            self.calls.append(("productVariant", variables))
            owner = self._variant_owner(variables["variantId"])
            return {"productVariant": {"product": {"id": owner}} if owner else None}
        if "tagsAdd(" in document or "tagsRemove(" in document:
            return self._tags("tagsAdd" if "tagsAdd(" in document else "tagsRemove", variables)
        if "products(first" in document:
            return self._products_page(variables)
        raise AssertionError(f"unexpected document: {document[:60]}")

    def _products_page(self, v):
        self.page_calls += 1
        self.calls.append(("products", v))
        if self.page_calls in self.fail_pages:
            raise ShopifyAPIError("GraphQL failed after 6 attempts: HTTP 503")
        start = int(v.get("after") or 0)
        chunk = self.nodes[start:start + v["first"]]
        end = start + len(chunk)
        return {"products": {
            "edges": [{"cursor": str(start + i + 1), "node": n} for i, n in enumerate(chunk)],
            "pageInfo": {"hasNextPage": end < len(self.nodes), "endCursor": str(end) if chunk else None},
        }}

    def _bulk_update(self, v):
        self.calls.append(("productVariantsBulkUpdate", v))
        if self.raise_on_update:
            raise ShopifyAPIError("GraphQL HTTP 403: access denied", status_code=403)
        item = v["variants"][0]
        if item["id"] in self.user_errors_for:
            return {"productVariantsBulkUpdate": {
                "productVariants": [],
                "userErrors": [{"field": ["variants", "0", "price"], "message": "Price must be positive"}],
            }}
        self.prices[item["id"]] = {"price": item["price"], "compareAtPrice": item["compareAtPrice"]}
        return {"productVariantsBulkUpdate": {
            "productVariants": [{"id": item["id"], **self.prices[item["id"]]}],
            "userErrors": [],
        }}

    def _tags(self, op, v):
        self.calls.append((op, v))
        if self.fail_tags:
            raise ShopifyAPIError("GQL errors: tags are locked")
        tags = self.tags.setdefault(v["id"], set())
        if op == "tagsAdd":
            tags.update(v["tags"])
        else:
            tags.difference_update(v["tags"])
        return {op: {"node": {"id": v["id"]}, "userErrors": []}}


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 0, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


def memory_session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    return make_session_factory(engine)


def memory_ledger(clock=None):
    factory = memory_session_factory()
    if clock is None:
        return DiscountLedger(factory)
    return DiscountLedger(factory, clock=clock)


def no_sleep(_sec):
    return None
