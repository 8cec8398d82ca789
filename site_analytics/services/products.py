"""
Product details shown next to product pages, fetched from the shop's CRM.

Lookups go through :class:`ProductInfoCache`, which is owned by the
application and shared by all requests.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import httpx
import structlog

from site_analytics.metrics import product_cache_requests_total

logger = structlog.get_logger()

ProductInfo = Dict[str, Any]

_PRODUCT_PATH = re.compile(r"/produs/([^/?#]+)")


def extract_product_slug(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    match = _PRODUCT_PATH.search(path)
    return match.group(1) if match else None


class ProductInfoCache:
    """Caches successful lookups for the owner's lifetime.

    Concurrent requests for the same key share one in-flight fetch. Failed
    fetches and responses without ``ok`` are not cached, so the next request
    tries again.
    """

    def __init__(self, fetch: Callable[[str], Awaitable[ProductInfo]]):
        self._fetch = fetch
        self._values: Dict[str, ProductInfo] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._values)

    async def get_or_fetch(self, key: str) -> ProductInfo:
        key = key.strip()
        if not key:
            return {}

        cached = self._values.get(key)
        if cached is not None:
            product_cache_requests_total.labels("hit").inc()
            return cached

        pending = self._pending.get(key)
        if pending is None:
            product_cache_requests_total.labels("miss").inc()
            pending = asyncio.ensure_future(self._load(key))
            self._pending[key] = pending
            pending.add_done_callback(lambda _: self._pending.pop(key, None))
        else:
            product_cache_requests_total.labels("in_flight").inc()

        # one caller giving up must not cancel the fetch others wait on
        return await asyncio.shield(pending)

    async def _load(self, key: str) -> ProductInfo:
        data = await self._fetch(key)
        if data and data.get("ok"):
            self._values[key] = data
        return data


class ProductApiClient:
    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __call__(self, slug: str) -> ProductInfo:
        response = await self._client.get(f"{self.base_url}/{quote(slug, safe='')}")
        if response.status_code != 200:
            logger.warning("product_lookup_failed", slug=slug, status_code=response.status_code)
        response.raise_for_status()
        return response.json()

    async def aclose(self):
        await self._client.aclose()
