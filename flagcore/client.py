"""
HTTP fetch для FlagCache.

Context7: httpx.AsyncClient с таймаутом; не-2xx ответы превращаются в
httpx.HTTPStatusError, который кэш сохраняет как error.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger()


class HttpFlagFetcher:
    """
    Асинхронный callable `fetcher(endpoint) -> JSON`.

    Args:
        base_url: базовый URL API флагов
        timeout: таймаут запроса в секундах
        headers: дополнительные заголовки (например Authorization)
        client: готовый httpx.AsyncClient (его жизненным циклом управляет вызывающий)
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 5.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client

    async def _get(self, client: httpx.AsyncClient, endpoint: str) -> Any:
        response = await client.get(endpoint, headers=self.headers)
        response.raise_for_status()
        payload = response.json()
        logger.debug("Feature flags fetched", endpoint=endpoint, status_code=response.status_code)
        return payload

    async def __call__(self, endpoint: str) -> Any:
        if self._client is not None:
            return await self._get(self._client, endpoint)
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
            return await self._get(client, endpoint)

    @classmethod
    def from_settings(cls, settings=None, **kwargs: Any) -> "HttpFlagFetcher":
        from .config import get_settings

        settings = settings or get_settings()
        return cls(base_url=settings.api_base_url, timeout=settings.http_timeout, **kwargs)
