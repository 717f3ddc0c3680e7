"""
Symbol registry.

Holds the current SymbolSnapshot and refreshes it from a SymbolSource once a
day. The snapshot is replaced as a whole, so ``current()`` never needs a lock.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Awaitable, Callable, Optional

from ingestor.feed.timers import DailyTimer
from ingestor.feed.types import SymbolSnapshot
from ingestor.ports.symbol_source import SymbolSource

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[SymbolSnapshot, SymbolSnapshot], Awaitable[None]]


class SymbolRegistry:
    """
    Current set of tracked symbols.

    Refresh rules:
    - first load: an empty result (or a source error) yields an empty snapshot
    - later loads: an empty result or an error keeps the previous snapshot
    """

    def __init__(
        self,
        source: SymbolSource,
        refresh_at: dt.time = dt.time(0, 0),
        on_change: Optional[SnapshotListener] = None,
        name: str = "registry",
    ) -> None:
        self._source = source
        self._on_change = on_change
        self._name = name
        self._snapshot = SymbolSnapshot()
        self._loaded = False
        self._timer = DailyTimer(self._scheduled_refresh, at=refresh_at, name=f"{name}_daily")

    def current(self) -> SymbolSnapshot:
        return self._snapshot

    @property
    def loaded(self) -> bool:
        """Whether a first load has been attempted."""
        return self._loaded

    def set_listener(self, on_change: Optional[SnapshotListener]) -> None:
        self._on_change = on_change

    async def refresh(self) -> bool:
        """
        Query the source and replace the snapshot if the symbol list changed.

        Returns:
            True if the snapshot was replaced
        """
        first_load = not self._loaded
        self._loaded = True
        previous = self._snapshot

        try:
            symbols = await self._source.list_symbols()
        except Exception as e:
            if first_load:
                logger.error(f"[{self._name}] Initial symbol load failed, starting empty: {e}", exc_info=True)
            else:
                logger.error(
                    f"[{self._name}] Symbol refresh failed, keeping {len(previous)} symbols: {e}",
                    exc_info=True,
                )
            return False

        candidate = SymbolSnapshot.of(list(symbols or []), version=previous.version + 1)
        if candidate.is_empty:
            if first_load:
                logger.warning(f"[{self._name}] Symbol source returned no symbols on first load")
            else:
                logger.warning(
                    f"[{self._name}] Symbol source returned no symbols, keeping {len(previous)} symbols"
                )
            return False

        if candidate.symbols == previous.symbols:
            logger.info(f"[{self._name}] Symbol list unchanged ({len(previous)} symbols)")
            return False

        self._snapshot = candidate
        added = set(candidate.symbols) - set(previous.symbols)
        removed = set(previous.symbols) - set(candidate.symbols)
        logger.info(
            f"[{self._name}] Snapshot v{candidate.version}: {len(candidate)} symbols "
            f"(+{len(added)} -{len(removed)})"
        )

        if self._on_change is not None:
            try:
                await self._on_change(previous, candidate)
            except Exception as e:
                logger.error(f"[{self._name}] Snapshot listener failed: {e}", exc_info=True)
        return True

    async def _scheduled_refresh(self) -> None:
        logger.info(f"[{self._name}] Daily symbol refresh")
        await self.refresh()

    def start(self) -> None:
        """Start the daily refresh timer."""
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()
