#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Catalog fetcher for the daily discounts.

Walks the whole product catalog with cursor pagination and keeps the
products that can be discounted:
  - a featured image,
  - at least one variant (the first variant is the one priced),
  - tracked inventory quantity > 0,
  - a positive margin (cost < selling price).
Missing unit cost is estimated at 50% of the selling price and flagged;
a reported cost of 0.00 is kept as an observed cost.

Page errors: the first page failing raises CatalogFetchError; a later page
failing stops pagination and the partial pool is returned with
`stats.partial = True` and the error text, so callers can report it.
Partial pools are never cached.
"""

from __future__ import annotations
import time
import random
import typing as t
from dataclasses import dataclass, asdict

import requests

import config
from activity_log import log_row
from discounts import Product, estimated_cost
from shopify_client import CatalogClient, ShopifyAPIError

# ----------------------------
# GraphQL documents
# ----------------------------
Q_PRODUCTS_PAGE = """
query GetProductsWithInventory($first: Int!, $after: String, $query: String) {
  products(first: $first, after: $after, query: $query) {
    edges {
      cursor
      node {
        id
        title
        featuredImage { url altText }
        variants(first: 1) {
          edges {
            node {
              id
              title
              price
              compareAtPrice
              inventoryQuantity
              inventoryItem {
                unitCost { amount currencyCode }
              }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

DEFAULT_VARIANT_TITLE = "Default Title"
RANDOM_PRESELECT = 20


class CatalogFetchError(RuntimeError):
    """The catalog could not be read at all (first page failed)."""


@dataclass
class CatalogStats:
    total: int = 0
    with_image: int = 0
    with_variant: int = 0
    with_inventory: int = 0
    with_cost: int = 0
    with_margin: int = 0
    eligible: int = 0
    pages: int = 0
    partial: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# ----------------------------
# Cache
# ----------------------------
class ProductCache:
    """
    Per-shop eligible-product cache with a TTL. The clock is injectable so
    expiry can be driven from tests.
    """

    def __init__(
        self,
        ttl_sec: float = config.PRODUCT_CACHE_TTL_SEC,
        max_size: int = config.PRODUCT_CACHE_MAX_SIZE,
        clock: t.Callable[[], float] = time.monotonic,
    ):
        self.ttl_sec = ttl_sec
        self.max_size = max_size
        self.clock = clock
        self._entries: dict[str, dict] = {}

    def _fresh(self, entry: dict | None) -> bool:
        return entry is not None and (self.clock() - entry["stored_at"]) <= self.ttl_sec

    def get(self, shop: str) -> dict | None:
        entry = self._entries.get(shop)
        if not self._fresh(entry):
            return None
        return entry

    def store(self, shop: str, products: list[Product], stats: CatalogStats,
              random_selections: list[Product] | None = None) -> None:
        self._entries[shop] = {
            "products": list(products[: self.max_size]),
            "stats": stats,
            "random_selections": list(random_selections or []),
            "stored_at": self.clock(),
        }

    def invalidate(self, shop: str | None = None) -> None:
        if shop is None:
            self._entries.clear()
        else:
            self._entries.pop(shop, None)

    def status(self, shop: str) -> dict:
        entry = self._entries.get(shop)
        if entry is None:
            return {"is_cached": False, "cache_age": 0, "cache_expiry": 0, "products_count": 0}
        age = self.clock() - entry["stored_at"]
        return {
            "is_cached": self._fresh(entry),
            "cache_age": round(age),
            "cache_expiry": max(0, round(self.ttl_sec - age)),
            "products_count": len(entry["products"]),
        }


# ----------------------------
# Parsing
# ----------------------------
def _first_variant(node: dict) -> dict | None:
    edges = ((node.get("variants") or {}).get("edges") or [])
    return (edges[0] or {}).get("node") if edges else None


def _unit_cost(variant: dict) -> dict:
    return (((variant.get("inventoryItem") or {}).get("unitCost")) or {})


def _as_float(v) -> float | None:
    try:
        return None if v in (None, "") else float(v)
    except (TypeError, ValueError):
        return None


def build_product(node: dict, variant: dict) -> Product:
    price = _as_float(variant.get("price")) or 0.0
    unit_cost = _unit_cost(variant)
    observed = _as_float(unit_cost.get("amount"))
    has_cost = observed is not None
    image = node.get("featuredImage") or {}
    vtitle = variant.get("title")
    return Product(
        id=node["id"],
        title=node.get("title") or "",
        image_url=image.get("url") or "",
        image_alt=image.get("altText") or node.get("title") or "",
        cost=observed if has_cost else estimated_cost(price),
        selling_price=price,
        compare_at_price=_as_float(variant.get("compareAtPrice")),
        inventory_quantity=int(variant.get("inventoryQuantity") or 0),
        variant_id=variant["id"],
        variant_title=vtitle if vtitle and vtitle != DEFAULT_VARIANT_TITLE else None,
        currency_code=unit_cost.get("currencyCode") or "USD",
        has_cost_data=has_cost,
    )


def filter_eligible(nodes: list[dict], stats: CatalogStats) -> list[Product]:
    products = []
    for node in nodes:
        variant = _first_variant(node)
        stats.total += 1
        has_image = bool(node.get("featuredImage"))
        in_stock = bool(variant) and int(variant.get("inventoryQuantity") or 0) > 0
        if has_image:
            stats.with_image += 1
        if variant:
            stats.with_variant += 1
        if in_stock:
            stats.with_inventory += 1
        if not variant:
            continue
        if _as_float(_unit_cost(variant).get("amount")) is not None:
            stats.with_cost += 1
        product = build_product(node, variant)
        has_margin = 0 <= product.cost < product.selling_price
        if has_margin:
            stats.with_margin += 1
        if not (has_image and in_stock and has_margin):
            continue
        stats.eligible += 1
        products.append(product)
    return products


# ----------------------------
# Fetch
# ----------------------------
def fetch_product_nodes(
    client: CatalogClient,
    shop: str,
    stats: CatalogStats,
    tag_filter: str | None = None,
    page_size: int = config.CATALOG_PAGE_SIZE,
    pause_ms: int = config.SLEEP_BETWEEN_PAGES_MS,
    sleep: t.Callable[[float], None] = time.sleep,
) -> list[dict]:
    nodes: list[dict] = []
    cursor = None
    while True:
        stats.pages += 1
        try:
            data = client.query(Q_PRODUCTS_PAGE, {"first": page_size, "after": cursor, "query": tag_filter})
        except (ShopifyAPIError, requests.RequestException) as e:
            if stats.pages == 1:
                raise CatalogFetchError(f"Product query failed: {e}") from e
            stats.partial = True
            stats.error = str(e)
            log_row("⚠️", shop, "CATALOG_PARTIAL",
                    message=f"page {stats.pages} failed, keeping {len(nodes)} products: {e}")
            break
        page = data.get("products") or {}
        nodes.extend((edge or {}).get("node") for edge in (page.get("edges") or []) if (edge or {}).get("node"))
        info = page.get("pageInfo") or {}
        if not info.get("hasNextPage") or not info.get("endCursor"):
            break
        cursor = info["endCursor"]
        if pause_ms:
            sleep(pause_ms / 1000.0)
    return nodes


def fetch_eligible_products(
    client: CatalogClient,
    shop: str,
    tag_filter: str | None = None,
    cache: ProductCache | None = None,
    force_refresh: bool = False,
    page_size: int = config.CATALOG_PAGE_SIZE,
    pause_ms: int = config.SLEEP_BETWEEN_PAGES_MS,
    rng: random.Random | None = None,
    sleep: t.Callable[[float], None] = time.sleep,
) -> tuple[list[Product], CatalogStats]:
    """Full eligible pool + scan statistics. Serves from `cache` when fresh."""
    if cache is not None and not force_refresh:
        hit = cache.get(shop)
        if hit:
            return list(hit["products"]), hit["stats"]

    stats = CatalogStats()
    nodes = fetch_product_nodes(client, shop, stats, tag_filter=tag_filter,
                                page_size=page_size, pause_ms=pause_ms, sleep=sleep)
    products = filter_eligible(nodes, stats)
    log_row("🔎", shop, "CATALOG_SCANNED",
            message=f"{stats.eligible} eligible of {stats.total} ({stats.pages} pages{', partial' if stats.partial else ''})")

    if cache is not None and stats.partial:
        log_row("⚠️", shop, "CACHE_SKIPPED", message="partial catalog not cached")
    elif cache is not None:
        preselect = (rng or random).sample(products, min(RANDOM_PRESELECT, len(products)))
        cache.store(shop, products, stats, preselect)
    return products, stats


def random_products(
    client: CatalogClient,
    shop: str,
    count: int,
    cache: ProductCache,
    force_refresh: bool = False,
    rng: random.Random | None = None,
    **fetch_kwargs,
) -> tuple[list[Product], CatalogStats, dict]:
    """A random handful for the admin preview, using the cached preselection when possible."""
    if not force_refresh:
        hit = cache.get(shop)
        if hit and hit["random_selections"]:
            return hit["random_selections"][:count], hit["stats"], cache.status(shop)
    products, stats = fetch_eligible_products(client, shop, cache=cache, force_refresh=True, rng=rng, **fetch_kwargs)
    chosen = (rng or random).sample(products, min(count, len(products)))
    return chosen, stats, cache.status(shop)
