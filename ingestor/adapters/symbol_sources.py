"""Symbol source adapters."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ingestor.feed.rest import BinanceRestClient
from ingestor.ports.symbol_source import SymbolSource

_LOGGER = logging.getLogger(__name__)

EXCHANGE_INFO_ENDPOINT = "/fapi/v1/exchangeInfo"


class StaticSymbolSource(SymbolSource):
    """Fixed, configured symbol list."""

    def __init__(self, symbols: Iterable[str]) -> None:
        self._symbols = [s.upper() for s in symbols]

    async def list_symbols(self) -> list[str]:
        return list(self._symbols)


class ExchangeInfoSymbolSource(SymbolSource):
    """
    Tradable perpetual contracts listed by ``GET /fapi/v1/exchangeInfo``.

    Only ``PERPETUAL`` contracts in ``TRADING`` status quoted in ``quote_asset``
    are kept, in listing order, optionally capped at ``max_symbols``.
    """

    def __init__(
        self,
        client: BinanceRestClient,
        quote_asset: str = "USDT",
        max_symbols: int = 0,
    ) -> None:
        self._client = client
        self._quote_asset = quote_asset.upper()
        self._max_symbols = max_symbols

    async def list_symbols(self) -> list[str]:
        info = await self._client.get_json(EXCHANGE_INFO_ENDPOINT)
        symbols = self._select(info.get("symbols", []) if isinstance(info, dict) else [])
        _LOGGER.debug(f"[symbols] exchangeInfo returned {len(symbols)} tradable symbols")
        return symbols

    def _select(self, entries: list[dict[str, Any]]) -> list[str]:
        selected = []
        for entry in entries:
            if entry.get("contractType") != "PERPETUAL":
                continue
            if entry.get("status") != "TRADING":
                continue
            if str(entry.get("quoteAsset", "")).upper() != self._quote_asset:
                continue
            symbol = entry.get("symbol")
            if symbol:
                selected.append(str(symbol).upper())
            if self._max_symbols and len(selected) >= self._max_symbols:
                break
        return selected
