#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Environment configuration for the daily auto-discount service.

Every setting is read once at import time. Secrets are optional here so that
tests and tooling can import the modules; `problems()` reports what a real
deployment is missing and the web entry point prints those at boot.
"""

import os

# =============================== SHOPIFY ===============================

API_VERSION = os.getenv("API_VERSION", "2025-01").strip()
SHOP_DOMAIN = os.getenv("SHOP_DOMAIN", os.getenv("SHOP", "")).strip()
SHOPIFY_ADMIN_API_TOKEN = os.getenv("SHOPIFY_ADMIN_API_TOKEN", "").strip()
WEBHOOK_SECRET_KEY = os.getenv("WEBHOOK_SECRET_KEY", "").strip()

# App Bridge session tokens are HS256 JWTs signed with the app secret
SHOPIFY_API_KEY = os.getenv("SHOPIFY_API_KEY", "").strip()
SHOPIFY_API_SECRET = os.getenv("SHOPIFY_API_SECRET", "").strip()

REQUEST_TIMEOUT_SEC = int(os.getenv("REQUEST_TIMEOUT_SEC", "30"))
GQL_MAX_ATTEMPTS = int(os.getenv("GQL_MAX_ATTEMPTS", "6"))

# =============================== DISCOUNTS ===============================

AUTO_DISCOUNT_COUNT = int(os.getenv("AUTO_DISCOUNT_COUNT", "6"))
MIN_DISCOUNT_PERCENT = int(os.getenv("MIN_DISCOUNT_PERCENT", "10"))
MAX_DISCOUNT_PERCENT = int(os.getenv("MAX_DISCOUNT_PERCENT", "25"))
DAILY_DISCOUNT_TAG = os.getenv("DAILY_DISCOUNT_TAG", "DailyDiscount_每日優惠").strip()
REVERT_LOOKBACK_HOURS = int(os.getenv("REVERT_LOOKBACK_HOURS", "24"))

# ---- Catalog paging ----
CATALOG_PAGE_SIZE = min(250, max(100, int(os.getenv("CATALOG_PAGE_SIZE", "100"))))
PRODUCT_CACHE_TTL_SEC = int(os.getenv("PRODUCT_CACHE_TTL_SEC", "1800"))
PRODUCT_CACHE_MAX_SIZE = int(os.getenv("PRODUCT_CACHE_MAX_SIZE", "1000"))

# ---- Throttling ----
MUTATION_SLEEP_SEC = float(os.getenv("MUTATION_SLEEP_SEC", "0.5"))
SLEEP_BETWEEN_PAGES_MS = int(os.getenv("SLEEP_BETWEEN_PAGES_MS", "400"))
SLEEP_BETWEEN_SHOPS_MS = int(os.getenv("SLEEP_BETWEEN_SHOPS_MS", "800"))

# ---- Scheduler ----
ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "0") == "1"
RUN_EVERY_HOURS = int(os.getenv("RUN_EVERY_HOURS", "24"))
APP_URL = os.getenv("APP_URL", "http://localhost:10000").rstrip("/")

# =============================== SERVER & PERSISTENCE ===============================

DATA_DIR = os.getenv("DATA_DIR", "./data").rstrip("/")
LOG_DIR = os.getenv("LOG_DIR", os.path.join(DATA_DIR, "logs"))
STATE_DIR = os.getenv("STATE_DIR", os.path.join(DATA_DIR, "state"))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(DATA_DIR, 'discounts.db')}")
PORT = int(os.getenv("PORT", "10000"))
LOG_TO_STDOUT = os.getenv("LOG_TO_STDOUT", "1") == "1"


def problems() -> list[str]:
    """Human-readable list of missing settings for a production deployment."""
    out = []
    if not SHOPIFY_ADMIN_API_TOKEN and not WEBHOOK_SECRET_KEY:
        out.append("neither SHOPIFY_ADMIN_API_TOKEN nor WEBHOOK_SECRET_KEY set; scheduler triggers will be rejected")
    if not SHOPIFY_API_SECRET:
        out.append("SHOPIFY_API_SECRET not set; admin session tokens cannot be verified")
    if SHOPIFY_ADMIN_API_TOKEN and not SHOP_DOMAIN:
        out.append("SHOPIFY_ADMIN_API_TOKEN set without SHOP_DOMAIN; static token has no shop to act on")
    if MIN_DISCOUNT_PERCENT < 1 or MAX_DISCOUNT_PERCENT > 99 or MIN_DISCOUNT_PERCENT > MAX_DISCOUNT_PERCENT:
        out.append(f"invalid discount range {MIN_DISCOUNT_PERCENT}-{MAX_DISCOUNT_PERCENT}")
    return out


def public_settings() -> dict:
    """Settings safe to show on /diag and the status page."""
    return {
        "api_version": API_VERSION,
        "shop_domain": SHOP_DOMAIN,
        "auto_discount_count": AUTO_DISCOUNT_COUNT,
        "discount_range": f"{MIN_DISCOUNT_PERCENT}-{MAX_DISCOUNT_PERCENT}%",
        "daily_discount_tag": DAILY_DISCOUNT_TAG,
        "revert_lookback_hours": REVERT_LOOKBACK_HOURS,
        "catalog_page_size": CATALOG_PAGE_SIZE,
        "product_cache_ttl_sec": PRODUCT_CACHE_TTL_SEC,
        "mutation_sleep_sec": MUTATION_SLEEP_SEC,
        "scheduler_enabled": ENABLE_SCHEDULER,
        "run_every_hours": RUN_EVERY_HOURS,
        "data_dir": DATA_DIR,
        "static_token": bool(SHOPIFY_ADMIN_API_TOKEN),
        "webhook_secret": bool(WEBHOOK_SECRET_KEY),
        "session_token_verification": bool(SHOPIFY_API_SECRET),
    }
