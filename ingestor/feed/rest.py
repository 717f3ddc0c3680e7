"""
REST client for Binance futures public endpoints.

Every failure (transport error, timeout, non-2xx status, undecodable body)
surfaces as ApiError so that RetryExecutor can retry it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson

from ingestor.feed.errors import ApiError

logger = logging.getLogger(__name__)


class BinanceRestClient:
    """
    Thin aiohttp wrapper owning one ClientSession.

    Usage:
        async with BinanceRestClient("https://fapi.binance.com") as client:
            rows = await client.get_json("/futures/data/openInterestHist", {...})
    """

    def __init__(
        self,
        base_url: str,
        connect_timeout_s: float = 5.0,
        request_timeout_s: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(
            total=connect_timeout_s + request_timeout_s,
            connect=connect_timeout_s,
            sock_read=request_timeout_s,
        )
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> BinanceRestClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def get_json(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        GET ``<base><endpoint>`` and decode the JSON body.

        Raises:
            ApiError: On any transport, status or decoding failure
        """
        url = f"{self._base_url}{endpoint}"
        query = {k: str(v) for k, v in (params or {}).items()}
        session = self._get_session()

        try:
            async with session.get(url, params=query) as response:
                body = await response.read()
                status = response.status
        except asyncio.TimeoutError as e:
            raise ApiError(
                f"Request timed out: {endpoint}",
                url=url,
                component="BinanceRestClient",
            ) from e
        except aiohttp.ClientError as e:
            raise ApiError(
                f"Request failed: {endpoint}: {e}",
                url=url,
                component="BinanceRestClient",
            ) from e

        text = body.decode("utf-8", errors="replace")
        if not 200 <= status < 300:
            raise ApiError(
                f"HTTP {status} from {endpoint}",
                url=url,
                status=status,
                body=text,
                component="BinanceRestClient",
            )

        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise ApiError(
                f"Undecodable response from {endpoint}",
                url=url,
                status=status,
                body=text,
                component="BinanceRestClient",
            ) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
