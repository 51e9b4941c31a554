#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Daily auto-discount run.

Per shop, strictly sequential:
  1) collect auto discounts applied in the lookback window and not reverted
  2) revert each one (individual failures are counted, never fatal)
  3) fetch the eligible catalog pool; empty pool or unreadable catalog ends the run
  4) sample N products without replacement, generate + apply a discount for each
  5) return one report dict for both phases

Only one run per shop at a time inside this process; a concurrent request gets
status "busy".
"""

from __future__ import annotations
import time
import random
import typing as t
from threading import Lock

import config
from activity_log import log_row, now_utc_iso
from catalog import CatalogFetchError, ProductCache, fetch_eligible_products
from discounts import Product, DiscountError, generate_discount
from ledger import DiscountLedger, DiscountLogEntry
from price_mutator import apply_discount, revert_discount
from shopify_client import CatalogClient

run_lock = Lock()
running_shops: set[str] = set()


def select_products(pool: list[Product], count: int, rng: random.Random | None = None) -> list[Product]:
    """Random sample without replacement; the whole pool when it has <= count items."""
    if count <= 0 or not pool:
        return []
    return (rng or random).sample(pool, min(count, len(pool)))


def revert_previous_discounts(
    client: CatalogClient,
    ledger: DiscountLedger,
    shop: str,
    entries: list[DiscountLogEntry],
    pause_sec: float = config.MUTATION_SLEEP_SEC,
    sleep: t.Callable[[float], None] = time.sleep,
) -> dict:
    results = {"successful": 0, "failed": 0, "skipped": 0, "errors": []}
    for i, entry in enumerate(entries):
        try:
            res = revert_discount(client, ledger, shop, entry)
        except Exception as e:
            res = {"status": "error", "message": f"Error reverting discount for {entry.product_title}: {e}"}
            log_row("⚠️", shop, "REVERT_ERR", variant_id=entry.variant_id, title=entry.product_title, message=str(e))
        if res["status"] == "success":
            results["successful"] += 1
        elif res["status"] == "skipped":
            results["skipped"] += 1
        else:
            results["failed"] += 1
            results["errors"].append(res["message"])
        if pause_sec and i < len(entries) - 1:
            sleep(pause_sec)
    return results


def _apply_one(client, ledger, shop, product, rng) -> tuple[dict, str]:
    try:
        discount = generate_discount(product, rng=rng)
    except DiscountError as e:
        log_row("⏭️", shop, "SKIP", variant_id=product.variant_id, title=product.title, message=str(e))
        return {"status": "error", "message": str(e)}, "-"
    label = f"{discount.discount_percentage}% ({discount.discounted_price:.2f})"
    try:
        return apply_discount(client, ledger, shop, product, discount), label
    except Exception as e:
        # ledger write failed after the price changed
        log_row("⚠️", shop, "APPLY_ERR", variant_id=product.variant_id, title=product.title, message=str(e))
        return {"status": "error", "message": str(e)}, label


def _new_report(shop: str, count: int) -> dict:
    return {
        "shop": shop,
        "status": "success",
        "message": "",
        "requested": count,
        "start_utc": now_utc_iso(),
        "duration_sec": None,
        "revert_results": {"successful": 0, "failed": 0, "skipped": 0, "errors": []},
        "discount_results": {"successful": 0, "failed": 0, "products": []},
        "catalog_stats": None,
    }


def run_auto_discounts(
    client: CatalogClient,
    ledger: DiscountLedger,
    shop: str,
    count: int = config.AUTO_DISCOUNT_COUNT,
    rng: random.Random | None = None,
    cache: ProductCache | None = None,
    lookback_hours: int = config.REVERT_LOOKBACK_HOURS,
    pause_sec: float = config.MUTATION_SLEEP_SEC,
    sleep: t.Callable[[float], None] = time.sleep,
    **fetch_kwargs,
) -> dict:
    report = _new_report(shop, count)
    with run_lock:
        if shop in running_shops:
            report.update(status="busy", message="Run already in progress for this shop.")
            return report
        running_shops.add(shop)

    start = time.time()
    try:
        log_row("▶️", shop, "RUN_START", message=f"count={count}")

        previous = ledger.find_active_auto_discounts(shop, lookback_hours=lookback_hours)
        report["revert_results"] = revert_previous_discounts(client, ledger, shop, previous,
                                                             pause_sec=pause_sec, sleep=sleep)

        try:
            pool, stats = fetch_eligible_products(client, shop, cache=cache, force_refresh=True,
                                                  rng=rng, sleep=sleep, **fetch_kwargs)
        except CatalogFetchError as e:
            log_row("⚠️", shop, "CATALOG_ERR", message=str(e))
            report.update(status="error", message=str(e))
            return report
        report["catalog_stats"] = stats.to_dict()

        if not pool:
            report.update(status="error", message="No eligible products found")
            log_row("⏭️", shop, "NO_ELIGIBLE", message=f"scanned {stats.total} products")
            return report

        chosen = select_products(pool, count, rng=rng)
        results = report["discount_results"]
        for i, product in enumerate(chosen):
            res, label = _apply_one(client, ledger, shop, product, rng)
            if res["status"] == "success":
                results["successful"] += 1
            else:
                results["failed"] += 1
            results["products"].append({
                "product": product.title,
                "discount": label,
                "status": res["status"],
                "message": res["message"],
            })
            if pause_sec and i < len(chosen) - 1:
                sleep(pause_sec)

        report["message"] = (f"Applied {results['successful']} discounts, "
                             f"reverted {report['revert_results']['successful']} previous discounts")
        return report
    finally:
        report["duration_sec"] = round(time.time() - start, 2)
        with run_lock:
            running_shops.discard(shop)
        if report["status"] != "busy":
            log_row("🏁", shop, "RUN_DONE", message=f"{report['status']}: {report['message']}")


def shop_succeeded(report: dict) -> bool:
    d = report.get("discount_results") or {}
    return report.get("status") == "success" and d.get("failed", 0) == 0 and d.get("successful", 0) > 0


def run_for_all_shops(
    shops: t.Iterable[str],
    client_factory: t.Callable[[str], CatalogClient],
    ledger: DiscountLedger,
    count: int = config.AUTO_DISCOUNT_COUNT,
    pause_between_shops_ms: int = config.SLEEP_BETWEEN_SHOPS_MS,
    sleep: t.Callable[[float], None] = time.sleep,
    **run_kwargs,
) -> dict:
    """
    Webhook mode: every known shop, one after another. A shop that raises is
    recorded as failed and the next shop still runs.
    """
    shops = list(shops)
    results = {"total": len(shops), "processed": 0, "successful": 0, "failed": 0, "details": []}
    for i, shop in enumerate(shops):
        try:
            client = client_factory(shop)
            report = run_auto_discounts(client, ledger, shop, count=count, sleep=sleep, **run_kwargs)
            ok = shop_succeeded(report)
            results["details"].append({
                "shop": shop,
                "status": "success" if ok else report["status"],
                "message": report["message"],
                "revert_results": report["revert_results"],
                "discount_results": report["discount_results"],
            })
        except Exception as e:
            ok = False
            log_row("⚠️", shop, "SHOP_ERR", message=str(e))
            results["details"].append({"shop": shop, "status": "error", "message": str(e)})
        results["processed"] += 1
        if ok:
            results["successful"] += 1
        else:
            results["failed"] += 1
        if pause_between_shops_ms and i < len(shops) - 1:
            sleep(pause_between_shops_ms / 1000.0)
    return results
