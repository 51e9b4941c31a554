# shopify_client.py: Admin GraphQL access behind a single CatalogClient seam

from __future__ import annotations
import re
import time
import random
import typing as t

import requests

import config

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
VARIANT_GID_RE = re.compile(r"^gid://shopify/ProductVariant/(\d+)$")


class ShopifyAPIError(RuntimeError):
    """HTTP/GraphQL failure talking to the Admin API (after retries where applicable)."""

    def __init__(self, message: str, status_code: int | None = None, errors: list | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class AuthError(RuntimeError):
    """No usable credentials for a shop."""


# ----------------------------
# Small helpers
# ----------------------------
def hdr(token: str) -> dict[str, str]:
    return {"X-Shopify-Access-Token": token, "Content-Type": "application/json", "Accept": "application/json"}


def gid_num(gid: str) -> str:
    return (gid or "").split("/")[-1]


def to_product_gid(product_id: str) -> str:
    pid = (product_id or "").strip()
    if pid.isdigit():
        return PRODUCT_GID_PREFIX + pid
    return pid


def is_product_gid(product_id: str | None) -> bool:
    pid = product_id or ""
    return pid.startswith(PRODUCT_GID_PREFIX) and pid[len(PRODUCT_GID_PREFIX):].isdigit()


def normalize_shop(shop: str | None) -> str:
    s = (shop or "").strip().lower()
    s = re.sub(r"^https?://", "", s).split("/")[0]
    if s and "." not in s:
        s = f"{s}.myshopify.com"
    return s


def _backoff_delay(attempt: int, base: float = 0.4, mx: float = 10.0) -> float:
    return min(mx, base * (2 ** (attempt - 1))) + random.uniform(0, 0.25)


def _is_throttled(errors: list) -> bool:
    return any(((e or {}).get("extensions") or {}).get("code", "").upper() == "THROTTLED" for e in errors)


# ----------------------------
# Clients
# ----------------------------
class CatalogClient:
    """Anything that can run an Admin GraphQL document for one shop."""

    shop: str = ""

    def query(self, document: str, variables: dict | None = None) -> dict:
        raise NotImplementedError


class AdminGraphQLClient(CatalogClient):
    """
    Robust GraphQL call with retries on 429, 5xx, THROTTLED and transient
    network errors. Non-retryable HTTP errors raise immediately.
    """

    def __init__(
        self,
        shop: str,
        api_version: str = config.API_VERSION,
        timeout: int = config.REQUEST_TIMEOUT_SEC,
        max_attempts: int = config.GQL_MAX_ATTEMPTS,
        http: requests.Session | None = None,
        sleep: t.Callable[[float], None] = time.sleep,
    ):
        self.shop = normalize_shop(shop)
        self.api_version = api_version
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.http = http or requests.Session()
        self._sleep = sleep

    @property
    def url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    def access_token(self) -> str:
        raise NotImplementedError

    def query(self, document: str, variables: dict | None = None) -> dict:
        payload = {"query": document, "variables": variables or {}}
        headers = hdr(self.access_token())
        last_err: str = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                r = self.http.post(self.url, headers=headers, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                last_err = f"{type(e).__name__}: {e}"
                self._sleep(_backoff_delay(attempt))
                continue
            if r.status_code == 429:
                last_err = "HTTP 429"
                try:
                    retry_after = float(r.headers.get("Retry-After", "1"))
                except ValueError:
                    retry_after = 1.0
                self._sleep(max(retry_after, _backoff_delay(attempt)))
                continue
            if r.status_code >= 500:
                last_err = f"HTTP {r.status_code}"
                self._sleep(_backoff_delay(attempt))
                continue
            if r.status_code != 200:
                raise ShopifyAPIError(f"GraphQL HTTP {r.status_code}: {r.text[:500]}", status_code=r.status_code)
            data = r.json()
            errors = data.get("errors") or []
            if errors:
                if _is_throttled(errors):
                    last_err = "THROTTLED"
                    self._sleep(_backoff_delay(attempt))
                    continue
                msg = "; ".join(str((e or {}).get("message", e)) for e in errors)
                raise ShopifyAPIError(f"GQL errors: {msg}", errors=errors)
            return data.get("data") or {}
        raise ShopifyAPIError(f"GraphQL failed after {self.max_attempts} attempts: {last_err or 'unknown'}")


class StaticTokenClient(AdminGraphQLClient):
    """Uses a fixed admin API token (private/custom app install)."""

    def __init__(self, shop: str, token: str, **kwargs):
        super().__init__(shop, **kwargs)
        if not token:
            raise AuthError(f"Empty admin token for {shop}")
        self._token = token

    def access_token(self) -> str:
        return self._token


class SessionClient(AdminGraphQLClient):
    """Resolves the offline access token from the app's session store."""

    def __init__(self, shop: str, session_store, **kwargs):
        super().__init__(shop, **kwargs)
        self._store = session_store
        self._token: str | None = None

    def access_token(self) -> str:
        if self._token is None:
            tok = self._store.access_token(self.shop)
            if not tok:
                raise AuthError(f"No stored session for {self.shop}")
            self._token = tok
        return self._token


def resolve_client(
    shop: str,
    session_store=None,
    static_token: str = config.SHOPIFY_ADMIN_API_TOKEN,
    static_shop: str = config.SHOP_DOMAIN,
    **kwargs,
) -> CatalogClient:
    """
    Single authentication resolution step: stored session first, then the
    static admin token when it belongs to this shop (or names no shop).
    """
    shop_n = normalize_shop(shop)
    if not shop_n:
        raise AuthError("Missing shop")
    if session_store is not None and session_store.access_token(shop_n):
        return SessionClient(shop_n, session_store, **kwargs)
    if static_token and (not static_shop or normalize_shop(static_shop) == shop_n):
        return StaticTokenClient(shop_n, static_token, **kwargs)
    raise AuthError(f"No credentials available for {shop_n}")
