"""
REST polling scheduler.

One PeriodicTimer per statistic type. Each tick submits one retried
fetch-and-store job per tracked symbol to the current WorkerPool. The pool
is rebuilt (never resized) when the symbol snapshot changes.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ingestor.config.configs import PollConfig, StatisticSpec
from ingestor.feed import decoders
from ingestor.feed.errors import MessageParseError, PoolClosedError
from ingestor.feed.pool import PoolSizing, WorkerPool, compute_pool_sizing
from ingestor.feed.registry import SymbolRegistry
from ingestor.feed.rest import BinanceRestClient
from ingestor.feed.retry import RetryExecutor, SleepFn
from ingestor.feed.timers import PeriodicTimer
from ingestor.feed.types import SymbolSnapshot
from ingestor.ports.sink import RecordSink
from ingestor.types.aliases import Payload
from ingestor.types.records import Record, RecordKind

logger = logging.getLogger(__name__)

RowDecoder = Callable[[Payload, str], Record]

ROW_DECODERS: dict[RecordKind, RowDecoder] = {
    RecordKind.OPEN_INTEREST: lambda row, symbol: decoders.decode_open_interest(row),
    RecordKind.OPEN_INTEREST_STATISTICS: lambda row, symbol: decoders.decode_open_interest_statistics(row),
    RecordKind.LONG_SHORT_RATIO: lambda row, symbol: decoders.decode_long_short_ratio(row),
    RecordKind.TAKER_BUY_SELL_VOLUME: decoders.decode_taker_buy_sell_volume,
}


@dataclass
class PollStats:
    ticks: int = 0
    tasks_submitted: int = 0
    tasks_succeeded: int = 0
    tasks_abandoned: int = 0
    records_stored: int = 0
    sink_errors: int = 0
    pool_rebuilds: int = 0
    by_statistic: dict[str, int] = field(default_factory=dict)


def build_query(spec: StatisticSpec, symbol: str, now_ms: Optional[int] = None) -> dict[str, Any]:
    """Query parameters for one statistic request."""
    if not spec.windowed:
        return {"symbol": symbol}
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return {
        "symbol": symbol,
        "period": spec.interval,
        "startTime": now_ms - int(spec.window_s * 1000),
        "endTime": now_ms,
        "limit": spec.limit,
    }


class PollScheduler:
    """
    Periodic per-symbol statistic polling.

    Usage:
        scheduler = PollScheduler(registry, sink, rest_client, PollConfig())
        scheduler.start()
        ...
        await scheduler.resize(registry.current())
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        registry: SymbolRegistry,
        sink: RecordSink,
        client: BinanceRestClient,
        config: PollConfig,
        sleep: SleepFn = asyncio.sleep,
        name: str = "poller",
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._client = client
        self._config = config
        self._name = name
        self._executor = RetryExecutor(config.retry, sleep=sleep, name=f"{name}_retry")
        self._timers: list[PeriodicTimer] = []
        self._pool_version = 0
        self._pool = self._build_pool(len(registry.current()))
        self._stats = PollStats()
        self._running = False

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def stats(self) -> PollStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._running

    def sizing_for(self, symbol_count: int) -> PoolSizing:
        return compute_pool_sizing(symbol_count, self._config.task_type_count)

    def _build_pool(self, symbol_count: int) -> WorkerPool:
        self._pool_version += 1
        sizing = self.sizing_for(symbol_count)
        logger.info(
            f"[{self._name}] Pool v{self._pool_version}: core={sizing.core_size} "
            f"max={sizing.max_size} queue={sizing.queue_capacity}"
        )
        return WorkerPool(sizing, name=f"{self._name}_pool_v{self._pool_version}")

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for spec in self._config.statistics:
            timer = PeriodicTimer(
                functools.partial(self._on_tick, spec),
                period_s=spec.period_s,
                initial_delay_s=spec.initial_delay_s,
                name=f"{self._name}_{spec.name}",
            )
            timer.start()
            self._timers.append(timer)
        logger.info(f"[{self._name}] Started {len(self._timers)} statistic timers")

    async def _on_tick(self, spec: StatisticSpec) -> None:
        """Submit one job per symbol; returns once everything is handed off."""
        snapshot = self._registry.current()
        self._stats.ticks += 1
        if snapshot.is_empty:
            logger.debug(f"[{self._name}] {spec.name}: no symbols, skipping tick")
            return

        for symbol in snapshot.symbols:
            job = functools.partial(self._run_task, spec, symbol)
            await self._submit(job)
            self._stats.tasks_submitted += 1
            self._stats.by_statistic[spec.name] = self._stats.by_statistic.get(spec.name, 0) + 1

    async def _submit(self, job: Callable[[], Any]) -> None:
        pool = self._pool
        try:
            await pool.submit(job)
            return
        except PoolClosedError:
            pass
        # Swapped between the read and the submit; the new pool takes it
        if self._pool is not pool and not self._pool.is_closed:
            await self._pool.submit(job)
        else:
            logger.debug(f"[{self._name}] Pool closed, dropping job")

    async def _run_task(self, spec: StatisticSpec, symbol: str) -> None:
        outcome = await self._executor.run(
            functools.partial(self.fetch, spec, symbol),
            label=f"{spec.name} {symbol}",
        )
        if not outcome.succeeded:
            self._stats.tasks_abandoned += 1
            return
        self._stats.tasks_succeeded += 1
        await self._store(spec, outcome.result)

    async def fetch(self, spec: StatisticSpec, symbol: str) -> list[Record]:
        """
        Call the statistic endpoint for ``symbol`` and decode the response.

        Raises:
            ApiError: On transport/status failures
            MessageParseError: If the body does not have the expected shape
        """
        body = await self._client.get_json(spec.endpoint, build_query(spec, symbol))
        decode = ROW_DECODERS[spec.record_kind]

        if spec.windowed:
            if not isinstance(body, list):
                raise MessageParseError(
                    f"{spec.name}: expected a list, got {type(body).__name__}",
                    expected_type=spec.record_kind.value,
                )
            return [decode(row, symbol) for row in body]

        if not isinstance(body, dict):
            raise MessageParseError(
                f"{spec.name}: expected an object, got {type(body).__name__}",
                expected_type=spec.record_kind.value,
            )
        return [decode(body, symbol)]

    async def _store(self, spec: StatisticSpec, records: list[Record]) -> None:
        if not records:
            return
        try:
            if spec.windowed:
                await self._sink.insert_batch(records)
            else:
                await self._sink.insert_one(records[0])
        except Exception as e:
            self._stats.sink_errors += 1
            logger.error(f"[{self._name}] Sink error storing {spec.name}: {e}", exc_info=True)
            return
        self._stats.records_stored += len(records)

    async def resize(self, snapshot: SymbolSnapshot) -> bool:
        """
        Swap in a pool sized for ``snapshot`` and drain the old one.

        Returns:
            False if the sizing did not change (pool kept)
        """
        sizing = self.sizing_for(len(snapshot))
        if sizing == self._pool.sizing:
            logger.debug(f"[{self._name}] Pool sizing unchanged for {len(snapshot)} symbols")
            return False

        old_pool, self._pool = self._pool, self._build_pool(len(snapshot))
        self._stats.pool_rebuilds += 1
        drained = await old_pool.shutdown(self._config.pool_shutdown_timeout_s)
        if not drained:
            logger.warning(f"[{self._name}] Old pool {old_pool.name} force-cancelled")
        return True

    async def stop(self, timeout: Optional[float] = None) -> None:
        timeout = self._config.pool_shutdown_timeout_s if timeout is None else timeout
        self._running = False
        for timer in self._timers:
            await timer.stop()
        self._timers.clear()
        await self._pool.shutdown(timeout)
        logger.info(f"[{self._name}] Stopped: {self._stats}")
