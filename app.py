#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Shopify Daily Auto-Discounts - Web App (Flask)

Endpoints:
- GET  /                                   : Status page (settings, last run summary, recent activity)
- GET  /health, /diag                      : Liveness + non-secret settings
- GET  /api/daily-discounts/auto           : Auto-discount counts (last day), active discounts, 10 latest logs
- POST /api/daily-discounts/auto           : action=run_auto_discounts [&count=N] for the calling shop
- POST /webhook/daily-discounts/auto       : Run for every shop with a stored session (scheduler entry point)
- GET  /api/daily-discounts/logs           : ?type=api|manual&skip=0&take=20 (take <= 100)
- POST /api/daily-discounts/manual         : variantId + newPrice [+ compareAtPrice, originalPrice, ...] sets a price by hand;
                                             action=revert + logId (or notes "Reverted discount") restores it
- POST /api/daily-discounts/reset          : {"confirm": "DELETE_ALL_DISCOUNT_LOGS"} deletes this shop's logs
- GET  /api/daily-discounts/random-products: ?count=6&refresh=true, served through the product cache
- POST /api/clear-cache                    : Drop this shop's cached catalog
- GET  /api/daily-discounts/storefront     : Public (CORS) list of active discounts, ?shop&max&sort

Auth:
- Admin endpoints accept an App Bridge session token (Authorization: Bearer <jwt>,
  HS256 signed with SHOPIFY_API_SECRET; the shop comes from the `dest` claim),
  or the scheduler shared secret together with ?shop=... (falls back to SHOP_DOMAIN).
- Shared secret: SHOPIFY_ADMIN_API_TOKEN via X-Shopify-Admin-API-Token / ?apiToken / JSON apiToken,
  or WEBHOOK_SECRET_KEY via X-Webhook-Secret / ?secretKey / JSON secretKey.

Run locally:
  DATABASE_URL=sqlite:///./data/discounts.db SHOPIFY_ADMIN_API_TOKEN=... SHOP_DOMAIN=... python app.py
"""

from __future__ import annotations
import html
import hmac
import json
import time
from threading import Thread

from flask import Flask, request, jsonify, Response, make_response
from jose import jwt, JWTError
from werkzeug.exceptions import HTTPException

import config
from activity_log import log_row, recent_rows, save_last_summary, load_last_summary, now_utc_iso
from auto_discount import run_auto_discounts, run_for_all_shops, running_shops
from catalog import CatalogFetchError, ProductCache, random_products
from discounts import (
    Discount, Product, calculate_profit_margin, calculate_savings_amount, calculate_savings_percentage,
)
from db import make_engine, make_session_factory, init_db
from ledger import DiscountLedger, LOG_KINDS
from price_mutator import apply_manual_price, revert_discount
from shop_sessions import SessionStore
from shopify_client import AuthError, CatalogClient, VARIANT_GID_RE, normalize_shop, resolve_client

RUN_ACTION = "run_auto_discounts"
RESET_CONFIRMATION = "DELETE_ALL_DISCOUNT_LOGS"
STOREFRONT_SORTS = ("newest", "highest_discount", "lowest_price")
MAX_LOG_TAKE = 100
MANUAL_REVERT_NOTE = "Reverted discount"

# ----------------------------
# Flask app
# ----------------------------
app = Flask(__name__)

product_cache = ProductCache()
_session_factory = None


def _db():
    global _session_factory
    if _session_factory is None:
        engine = make_engine(config.DATABASE_URL)
        init_db(engine)
        _session_factory = make_session_factory(engine)
    return _session_factory


def _ledger() -> DiscountLedger:
    return DiscountLedger(_db())


def _session_store() -> SessionStore:
    return SessionStore(_db())


def _client_for(shop: str) -> CatalogClient:
    return resolve_client(
        shop,
        session_store=_session_store(),
        static_token=config.SHOPIFY_ADMIN_API_TOKEN,
        static_shop=config.SHOP_DOMAIN,
    )


def _known_shops() -> list[str]:
    shops = _session_store().list_shops()
    static_shop = normalize_shop(config.SHOP_DOMAIN)
    if config.SHOPIFY_ADMIN_API_TOKEN and static_shop and static_shop not in shops:
        shops.append(static_shop)
    return shops


# ----------------------------
# Auth
# ----------------------------
def _secret_matches(candidates: list, secret: str) -> bool:
    if not secret:
        return False
    return any(
        hmac.compare_digest(str(c).encode("utf-8"), secret.encode("utf-8"))
        for c in candidates if c
    )


def _authorized(req) -> bool:
    """Scheduler shared secret (admin token first, then the webhook secret)."""
    body = req.get_json(silent=True) if req.is_json else None
    body = body if isinstance(body, dict) else {}
    admin_candidates = [req.headers.get("X-Shopify-Admin-API-Token"), req.args.get("apiToken"), body.get("apiToken")]
    if _secret_matches(admin_candidates, config.SHOPIFY_ADMIN_API_TOKEN):
        return True
    secret_candidates = [req.headers.get("X-Webhook-Secret"), req.args.get("secretKey"), body.get("secretKey")]
    return _secret_matches(secret_candidates, config.WEBHOOK_SECRET_KEY)


def _session_token_shop(req) -> str | None:
    auth = req.headers.get("Authorization", "")
    if not auth.startswith("Bearer ") or not config.SHOPIFY_API_SECRET:
        return None
    options = {} if config.SHOPIFY_API_KEY else {"verify_aud": False}
    try:
        claims = jwt.decode(
            auth[len("Bearer "):].strip(),
            config.SHOPIFY_API_SECRET,
            algorithms=["HS256"],
            audience=config.SHOPIFY_API_KEY or None,
            options=options,
        )
    except JWTError:
        return None
    return normalize_shop(claims.get("dest")) or None


def _admin_shop(req) -> str | None:
    shop = _session_token_shop(req)
    if shop:
        return shop
    if _authorized(req):
        body = req.get_json(silent=True) if req.is_json else None
        body = body if isinstance(body, dict) else {}
        return normalize_shop(req.args.get("shop") or req.form.get("shop") or body.get("shop") or config.SHOP_DOMAIN) or None
    return None


def _error(message: str, code: int):
    return jsonify({"status": "error", "message": message}), code


def _unauthorized():
    return _error("Unauthorized", 401)


def _first_given(*values):
    return next((v for v in values if v not in (None, "")), None)


def _int_arg(value, default: int) -> int:
    if value in (None, ""):
        return default
    return int(value)


def _request_fields() -> dict:
    """Form fields over JSON body."""
    body = request.get_json(silent=True) if request.is_json else None
    fields = dict(body) if isinstance(body, dict) else {}
    fields.update(request.form.to_dict())
    return fields


def _float_field(fields: dict, key: str, default: float | None = None) -> float | None:
    value = fields.get(key)
    if value in (None, ""):
        return default
    return float(value)


def _cors(resp):
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


@app.errorhandler(AuthError)
def _auth_error(e):
    return _error(str(e), 401)


@app.errorhandler(Exception)
def _unexpected(e):
    if isinstance(e, HTTPException):
        return e
    log_row("⚠️", "WEB", "ERROR", message=f"{request.method} {request.path}: {e}")
    return _error(str(e) or "An unknown error occurred", 500)


# ----------------------------
# Runs
# ----------------------------
def run_shop_job(shop: str, count: int) -> dict:
    report = run_auto_discounts(_client_for(shop), _ledger(), shop, count=count, cache=product_cache)
    if report["status"] != "busy":
        save_last_summary({"mode": "shop", "finished_utc": now_utc_iso(), **report})
    return report


def run_all_shops_job(count: int | None = None) -> dict:
    shops = _known_shops()
    if not shops:
        return {"status": "error", "message": "No shops found"}
    results = run_for_all_shops(
        shops, _client_for, _ledger(),
        count=config.AUTO_DISCOUNT_COUNT if count is None else count,
        cache=product_cache,
    )
    summary = {
        "status": "success",
        "message": f"Processed {results['processed']} shops: {results['successful']} successful, {results['failed']} failed",
        "results": results,
    }
    save_last_summary({"mode": "all_shops", "finished_utc": now_utc_iso(), **summary})
    return summary


def scheduler_loop():
    if config.RUN_EVERY_HOURS <= 0:
        return
    while True:
        try:
            run_all_shops_job()
        except Exception as e:
            log_row("⚠️", "SCHED", "WARN", message=str(e))
        time.sleep(max(1, config.RUN_EVERY_HOURS) * 3600)


# ----------------------------
# Web endpoints
# ----------------------------
@app.route("/", methods=["GET"])
def status_page():
    last = load_last_summary()
    recent_lines = recent_rows(200)

    page = f"""
    <html>
    <head>
      <meta charset="utf-8" />
      <title>Daily Auto-Discounts</title>
      <style>
        body {{ font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif; padding: 20px; color: #eee; background:#111; }}
        .card {{ background:#1b1b1b; border:1px solid #333; border-radius:12px; padding:16px; margin-bottom:20px; }}
        pre {{ white-space: pre-wrap; word-wrap: break-word; background:#0c0c0c; padding:12px; border-radius:8px; border:1px solid #222; }}
        code {{ color:#ddd; }}
      </style>
    </head>
    <body>
      <h1>Daily Auto-Discounts</h1>

      <div class="card">
        <h2>Settings</h2>
        <pre>{html.escape(json.dumps(config.public_settings(), indent=2, ensure_ascii=False))}</pre>
      </div>

      <div class="card">
        <h2>Last Run Summary</h2>
        <pre>{html.escape(json.dumps(last, indent=2, ensure_ascii=False, default=str))}</pre>
      </div>

      <div class="card">
        <h2>Trigger</h2>
        <p><code>POST /webhook/daily-discounts/auto</code> with header <code>X-Shopify-Admin-API-Token</code></p>
      </div>

      <div class="card">
        <h2>Recent Activity</h2>
        <pre>{html.escape(''.join(recent_lines)) if recent_lines else 'No activity yet.'}</pre>
      </div>
    </body>
    </html>
    """
    return Response(page, mimetype="text/html")


@app.route("/health", methods=["GET"])
def health():
    return "ok", 200


@app.route("/diag", methods=["GET"])
def diag():
    info = {
        **config.public_settings(),
        "config_problems": config.problems(),
        "running_shops": sorted(running_shops),
    }
    return jsonify(info), 200


@app.route("/api/daily-discounts/auto", methods=["GET"])
def auto_status():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    ledger = _ledger()
    current = ledger.find_active_auto_discounts(shop, lookback_hours=config.REVERT_LOOKBACK_HOURS)
    return jsonify({
        "status": "success",
        "shop": shop,
        "stats": ledger.auto_discount_stats(shop, lookback_hours=config.REVERT_LOOKBACK_HOURS),
        "currentDiscounts": [e.to_api_dict() for e in current],
        "recentLogs": [e.to_api_dict() for e in ledger.recent_logs(shop, kind="api", take=10)],
    })


@app.route("/api/daily-discounts/auto", methods=["POST"])
def auto_run():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    body = request.get_json(silent=True) if request.is_json else None
    body = body if isinstance(body, dict) else {}
    action = request.form.get("action") or body.get("action")
    if action != RUN_ACTION:
        return _error("Invalid action", 400)
    try:
        count = _int_arg(_first_given(request.form.get("count"), body.get("count")), config.AUTO_DISCOUNT_COUNT)
    except (TypeError, ValueError):
        return _error("Invalid count", 400)
    if count < 1:
        return _error("Invalid count", 400)

    report = run_shop_job(shop, count)
    if report["status"] == "busy":
        return jsonify(report), 409
    return jsonify(report), 200


@app.route("/webhook/daily-discounts/auto", methods=["GET"])
def webhook_get():
    return _error("Method not allowed", 405)


@app.route("/webhook/daily-discounts/auto", methods=["POST"])
def webhook_run():
    if not _authorized(request):
        return _unauthorized()
    body = request.get_json(silent=True) if request.is_json else None
    body = body if isinstance(body, dict) else {}
    try:
        count = _int_arg(_first_given(request.args.get("count"), body.get("count")), config.AUTO_DISCOUNT_COUNT)
    except (TypeError, ValueError):
        return _error("Invalid count", 400)
    if count < 1:
        return _error("Invalid count", 400)
    return jsonify(run_all_shops_job(count)), 200


@app.route("/api/daily-discounts/logs", methods=["GET"])
def discount_logs():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    kind = request.args.get("type", "manual")
    try:
        skip = _int_arg(request.args.get("skip"), 0)
        take = _int_arg(request.args.get("take"), 20)
    except ValueError:
        return _error("Invalid pagination parameters", 400)
    if skip < 0 or take < 1 or take > MAX_LOG_TAKE:
        return _error("Invalid pagination parameters", 400)
    if kind not in LOG_KINDS:
        return _error("Invalid type parameter. Use 'manual' or 'api'.", 400)
    logs = _ledger().recent_logs(shop, kind=kind, skip=skip, take=take)
    return jsonify({
        "status": "success",
        "logs": [e.to_api_dict() for e in logs],
        "meta": {"type": kind, "skip": skip, "take": take, "count": len(logs)},
    })


@app.route("/api/daily-discounts/manual", methods=["POST"])
def manual_price():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    fields = _request_fields()
    ledger = _ledger()

    if fields.get("action") == "revert" or MANUAL_REVERT_NOTE in str(fields.get("notes") or ""):
        if fields.get("logId"):
            entry = ledger.get(str(fields["logId"]))
        elif fields.get("variantId"):
            entry = ledger.latest_active_for_variant(shop, str(fields["variantId"]))
        else:
            return _error("Missing required parameters", 400)
        if entry is None or entry.shop != shop:
            return _error("Discount log not found", 404)
        result = revert_discount(_client_for(shop), ledger, shop, entry)
        if result["status"] == "success":
            product_cache.invalidate(shop)
        code = 502 if result["status"] == "error" else 200
        return jsonify({**result, "isRevert": True}), code

    variant_id = str(fields.get("variantId") or "")
    if not variant_id or fields.get("newPrice") in (None, ""):
        return _error("Missing required parameters", 400)
    if not VARIANT_GID_RE.match(variant_id):
        return _error("Invalid variant ID format", 400)
    try:
        new_price = _float_field(fields, "newPrice")
        compare_at = _float_field(fields, "compareAtPrice")
        original = _float_field(fields, "originalPrice", compare_at if compare_at is not None else new_price)
        cost = _float_field(fields, "costPrice")
        qty = _int_arg(fields.get("inventoryQuantity"), 0)
        discount = Discount(
            profit_margin=_float_field(
                fields, "profitMargin",
                calculate_profit_margin(cost, original) if cost is not None else None,
            ),
            discount_percentage=_float_field(fields, "discountPercentage", 0.0),
            original_price=original,
            discounted_price=new_price,
            savings_amount=_float_field(fields, "savingsAmount", calculate_savings_amount(original, new_price)),
            savings_percentage=_float_field(fields, "savingsPercentage",
                                            calculate_savings_percentage(original, new_price)),
        )
    except (TypeError, ValueError):
        return _error("Invalid price parameters", 400)
    if new_price <= 0:
        return _error("Invalid price parameters", 400)

    product = Product(
        id=str(fields.get("productId") or ""),
        title=fields.get("productTitle") or "Unknown Product",
        image_url=fields.get("imageUrl") or "",
        cost=cost,
        selling_price=original,
        compare_at_price=compare_at,
        inventory_quantity=qty,
        variant_id=variant_id,
        currency_code=fields.get("currencyCode") or "USD",
        variant_title=fields.get("variantTitle") or None,
        has_cost_data=cost is not None,
    )
    result = apply_manual_price(_client_for(shop), ledger, shop, product, discount)
    if result["status"] != "success":
        return jsonify({**result, "isRevert": False}), 502
    product_cache.invalidate(shop)
    return jsonify({**result, "isRevert": False}), 200


@app.route("/api/daily-discounts/reset", methods=["POST"])
def reset_logs():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict) or body.get("confirm") != RESET_CONFIRMATION:
        return _error("Missing or invalid confirmation token", 400)
    deleted = _ledger().delete_for_shop(shop)
    product_cache.invalidate(shop)
    log_row("🧹", shop, "RESET", message=f"deleted {deleted} discount logs")
    return jsonify({
        "status": "success",
        "deleted": deleted,
        "message": f"Deleted {deleted} discount logs for shop {shop}",
    })


@app.route("/api/daily-discounts/random-products", methods=["GET"])
def random_products_api():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    try:
        count = _int_arg(request.args.get("count"), config.AUTO_DISCOUNT_COUNT)
    except ValueError:
        return _error("Invalid count", 400)
    force_refresh = request.args.get("refresh") == "true"
    try:
        products, stats, cache_status = random_products(
            _client_for(shop), shop, max(1, count), product_cache, force_refresh=force_refresh,
        )
    except CatalogFetchError as e:
        return jsonify({"status": "error", "message": str(e), "products": []}), 500
    if not products:
        return jsonify({
            "status": "error",
            "message": "No products found meeting minimum requirements (image and positive inventory).",
            "products": [],
        })
    items = [p.to_dict() for p in products]
    return jsonify({
        "status": "success",
        "products": items,
        "randomProduct": items[0],
        "productStats": stats.to_dict(),
        "totalProductsScanned": stats.total,
        "cacheStatus": cache_status,
    })


@app.route("/api/clear-cache", methods=["POST"])
def clear_cache():
    shop = _admin_shop(request)
    if not shop:
        return _unauthorized()
    product_cache.invalidate(shop)
    return jsonify({"status": "success", "message": f"Cache cleared for {shop}"})


@app.route("/api/daily-discounts/storefront", methods=["GET", "OPTIONS"])
def storefront():
    if request.method == "OPTIONS":
        return _cors(make_response("", 204))
    shop = normalize_shop(request.args.get("shop"))
    if not shop:
        return _cors(make_response(jsonify({
            "status": "error",
            "message": "Unable to determine shop. Please provide a shop parameter.",
        }), 400))
    try:
        limit = min(20, max(1, _int_arg(request.args.get("max"), 4)))
    except ValueError:
        limit = 4
    sort = request.args.get("sort", "newest")
    if sort not in STOREFRONT_SORTS:
        sort = "newest"

    entries = _ledger().active_discounts(shop, sort=sort, limit=limit)
    if not entries:
        return _cors(make_response(jsonify({"status": "error", "message": "No active discounts found"}), 404))

    keep = ("productId", "productTitle", "variantId", "variantTitle", "originalPrice", "discountedPrice",
            "compareAtPrice", "discountPercentage", "savingsAmount", "savingsPercentage", "currencyCode",
            "imageUrl", "inventoryQuantity")
    products = [{k: d[k] for k in keep} for d in (e.to_api_dict() for e in entries)]
    resp = _cors(make_response(jsonify({"status": "success", "shop": shop, "sort": sort, "products": products})))
    resp.headers["Cache-Control"] = "max-age=300"
    return resp


# ----------------------------
# Entry
# ----------------------------
if config.ENABLE_SCHEDULER:
    Thread(target=scheduler_loop, daemon=True).start()

if __name__ == "__main__":
    for problem in config.problems():
        print(f"[WARN] {problem}", flush=True)
    _db()
    print(f"[BOOT] Daily auto-discounts on port {config.PORT} | API {config.API_VERSION} | DATA_DIR={config.DATA_DIR}")
    app.run(host="0.0.0.0", port=config.PORT)
