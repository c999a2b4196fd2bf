import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class OptimizedHTTPClient:
    """Pooled async HTTP client with timeouts and retry for idempotent GETs"""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        timeout_config = httpx.Timeout(
            timeout=timeout,
            connect=5.0,
            read=timeout,
            write=5.0
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=timeout_config,
            follow_redirects=True,
            transport=transport
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def get_with_retry(self, url: str, retries: int = 3, backoff: float = 0.5, **kwargs) -> httpx.Response:
        """GET with exponential backoff on transport errors; re-raises the last one"""
        for attempt in range(retries):
            try:
                return await self.get(url, **kwargs)
            except httpx.TransportError as e:
                if attempt >= retries - 1:
                    raise
                wait_time = backoff * (2 ** attempt)
                logger.warning(f"GET {url} failed ({e!r}), retrying in {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
        raise RuntimeError("retries must be at least 1")

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Shared client instance
_global_client: Optional[OptimizedHTTPClient] = None


async def get_http_client() -> OptimizedHTTPClient:
    """Return the shared HTTP client, creating it on first use"""
    global _global_client
    if _global_client is None:
        _global_client = OptimizedHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close the shared HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
