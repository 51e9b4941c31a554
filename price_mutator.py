"""
Price mutator: applies and reverts one variant's daily discount, and the
manual price changes made from the admin UI.

Every operation returns a result dict instead of raising on vendor/network
errors: {"status": "success" | "error" | "skipped", "message": ...}.
Ledger (database) errors are not caught here.
"""
from __future__ import annotations

import requests

import config
from activity_log import log_row
from discounts import Product, Discount
from ledger import DiscountLedger, DiscountLogEntry, NOTE_MANUAL
from shopify_client import (
    CatalogClient, ShopifyAPIError, VARIANT_GID_RE,
    gid_num, to_product_gid, is_product_gid,
)

M_VARIANTS_BULK_UPDATE = """
mutation updateProductVariant($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id price compareAtPrice }
    userErrors { field message }
  }
}
"""

M_TAGS_ADD = """
mutation tagsAdd($id: ID!, $tags: [String!]!) {
  tagsAdd(id: $id, tags: $tags) {
    node { id }
    userErrors { field message }
  }
}
"""

M_TAGS_REMOVE = """
mutation tagsRemove($id: ID!, $tags: [String!]!) {
  tagsRemove(id: $id, tags: $tags) {
    node { id }
    userErrors { field message }
  }
}
"""

Q_VARIANT_PRODUCT = """
query GetProductIdFromVariant($variantId: ID!) {
  productVariant(id: $variantId) { product { id } }
}
"""

API_ERRORS = (ShopifyAPIError, requests.RequestException)


def _fmt_price(value: float) -> str:
    return f"{float(value):.2f}"


def _user_errors(payload: dict | None) -> str:
    errs = ((payload or {}).get("userErrors") or [])
    return ", ".join(str(e.get("message") or e) for e in errs)


def update_variant_price(client: CatalogClient, product_gid: str, variant_id: str,
                         price: float, compare_at_price: float | None) -> tuple[dict | None, str]:
    """Returns (updated variant or None, user error text)."""
    variables = {
        "productId": product_gid,
        "variants": [{
            "id": variant_id,
            "price": _fmt_price(price),
            "compareAtPrice": _fmt_price(compare_at_price) if compare_at_price is not None else None,
        }],
    }
    data = client.query(M_VARIANTS_BULK_UPDATE, variables)
    payload = data.get("productVariantsBulkUpdate") or {}
    errors = _user_errors(payload)
    variants = payload.get("productVariants") or []
    return (variants[0] if variants else None), errors


def set_discount_tag(client: CatalogClient, shop: str, product_gid: str, add: bool,
                     tag: str = config.DAILY_DISCOUNT_TAG) -> bool:
    """Best-effort tagging; failures are logged, never raised."""
    mutation, key = (M_TAGS_ADD, "tagsAdd") if add else (M_TAGS_REMOVE, "tagsRemove")
    try:
        data = client.query(mutation, {"id": product_gid, "tags": [tag]})
    except API_ERRORS as e:
        log_row("⚠️", shop, "TAG_WARN", product_id=gid_num(product_gid), message=f"{key} failed: {e}")
        return False
    errors = _user_errors(data.get(key))
    if errors:
        log_row("⚠️", shop, "TAG_WARN", product_id=gid_num(product_gid), message=f"{key} userErrors: {errors}")
        return False
    return True


def lookup_product_gid(client: CatalogClient, variant_id: str) -> str | None:
    data = client.query(Q_VARIANT_PRODUCT, {"variantId": variant_id})
    return (((data.get("productVariant") or {}).get("product") or {}).get("id"))


def resolve_product_gid(client: CatalogClient, entry: DiscountLogEntry) -> str | None:
    if is_product_gid(entry.product_id):
        return entry.product_id
    if entry.product_id and entry.product_id.isdigit():
        return to_product_gid(entry.product_id)
    return lookup_product_gid(client, entry.variant_id)


def apply_discount(
    client: CatalogClient,
    ledger: DiscountLedger,
    shop: str,
    product: Product,
    discount: Discount,
) -> dict:
    """
    Sets the variant price to the discounted price and the compare-at price to
    the original selling price, records an "Applied" ledger row, then tags
    the product.
    """
    product_gid = to_product_gid(product.id)
    try:
        variant, errors = update_variant_price(
            client, product_gid, product.variant_id,
            price=discount.discounted_price, compare_at_price=product.selling_price,
        )
    except API_ERRORS as e:
        log_row("⚠️", shop, "APPLY_ERR", product_id=gid_num(product_gid), variant_id=gid_num(product.variant_id),
                title=product.title, message=str(e))
        return {"status": "error", "message": str(e)}
    if errors:
        log_row("⚠️", shop, "APPLY_ERR", product_id=gid_num(product_gid), variant_id=gid_num(product.variant_id),
                title=product.title, message=errors)
        return {"status": "error", "message": f"Error updating product: {errors}"}

    entry = ledger.record_applied(shop, product, discount, product_gid=product_gid)
    log_row("🏷️", shop, "APPLIED", product_id=gid_num(product_gid), variant_id=gid_num(product.variant_id),
            before=_fmt_price(discount.original_price), after=_fmt_price(discount.discounted_price),
            title=product.title, message=f"-{discount.discount_percentage}% of profit")

    set_discount_tag(client, shop, product_gid, add=True)
    return {
        "status": "success",
        "message": "Discount applied successfully",
        "variant": variant,
        "log_id": entry.id,
    }


def apply_manual_price(
    client: CatalogClient,
    ledger: DiscountLedger,
    shop: str,
    product: Product,
    discount: Discount,
    notes: str = NOTE_MANUAL,
    applied_by_user_id: str | None = None,
) -> dict:
    """
    Price change picked in the admin UI: the variant gets `discounted_price`
    and `product.compare_at_price` as compare-at. `product.id` may be empty,
    the parent product is then looked up from the variant.
    """
    if not VARIANT_GID_RE.match(product.variant_id or ""):
        return {"status": "error", "message": f"Invalid variant ID format: {product.variant_id}"}

    try:
        product_gid = to_product_gid(product.id) if product.id else lookup_product_gid(client, product.variant_id)
        if not product_gid:
            return {"status": "error", "message": f"Could not determine product ID for variant: {product.variant_id}"}
        variant, errors = update_variant_price(
            client, product_gid, product.variant_id,
            price=discount.discounted_price, compare_at_price=product.compare_at_price,
        )
    except API_ERRORS as e:
        log_row("⚠️", shop, "MANUAL_ERR", variant_id=gid_num(product.variant_id), title=product.title, message=str(e))
        return {"status": "error", "message": str(e)}
    if errors:
        log_row("⚠️", shop, "MANUAL_ERR", variant_id=gid_num(product.variant_id), title=product.title, message=errors)
        return {"status": "error", "message": f"Error updating product: {errors}"}

    set_discount_tag(client, shop, product_gid, add=True)
    entry = ledger.record_applied(shop, product, discount, product_gid=product_gid,
                                  notes=notes, applied_by_user_id=applied_by_user_id)
    log_row("✍️", shop, "MANUAL_APPLIED", product_id=gid_num(product_gid), variant_id=gid_num(product.variant_id),
            before=_fmt_price(discount.original_price), after=_fmt_price(discount.discounted_price),
            title=product.title, message=notes)
    return {
        "status": "success",
        "message": "Product price updated successfully",
        "variant": variant,
        "log_id": entry.id,
    }


def revert_discount(
    client: CatalogClient,
    ledger: DiscountLedger,
    shop: str,
    entry: DiscountLogEntry,
) -> dict:
    """
    Restores `originalPrice`, clears the compare-at price, untags the product
    and marks the ledger row reverted. Already-reverted rows are skipped.
    """
    current = ledger.get(entry.id)
    if entry.is_reverted or current is None or current.is_reverted:
        return {"status": "skipped", "message": f"Already reverted: {entry.product_title}"}

    if not VARIANT_GID_RE.match(entry.variant_id or ""):
        return {"status": "error", "message": f"Invalid variant ID format: {entry.variant_id}"}

    try:
        product_gid = resolve_product_gid(client, entry)
        if not product_gid:
            return {"status": "error", "message": f"Could not determine product ID for variant: {entry.variant_id}"}
        _, errors = update_variant_price(client, product_gid, entry.variant_id,
                                         price=entry.original_price, compare_at_price=None)
    except API_ERRORS as e:
        log_row("⚠️", shop, "REVERT_ERR", variant_id=gid_num(entry.variant_id), title=entry.product_title, message=str(e))
        return {"status": "error", "message": f"Error reverting discount for {entry.product_title}: {e}"}
    if errors:
        log_row("⚠️", shop, "REVERT_ERR", variant_id=gid_num(entry.variant_id), title=entry.product_title, message=errors)
        return {"status": "error", "message": f"Error reverting discount for {entry.product_title}: {errors}"}

    set_discount_tag(client, shop, product_gid, add=False)
    ledger.mark_reverted(entry)
    log_row("↩️", shop, "REVERTED", product_id=gid_num(product_gid), variant_id=gid_num(entry.variant_id),
            before=_fmt_price(entry.discounted_price), after=_fmt_price(entry.original_price),
            title=entry.product_title, message="Restored original price")
    return {"status": "success", "message": f"Reverted {entry.product_title}"}
