"""
Unit tests for IngestionSupervisor.

Streams run over an in-memory transport; the REST client is mocked.
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from ingestor.adapters.sinks import MemorySink
from ingestor.config.configs import ConnectionConfig, IngestorConfig
from ingestor.feed.errors import ConfigurationError, ReconnectExhaustedError
from ingestor.feed.supervisor import IngestionSupervisor
from ingestor.feed.transport import TransportListener
from ingestor.feed.types import ConnectionState, SupervisorState
from ingestor.types.records import RecordKind


class FakeTransport:
    def __init__(self, listener: TransportListener) -> None:
        self.listener = listener
        self.closed = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send(self, message: Any) -> None:
        pass

    async def close(self) -> None:
        self.closed = True


class FakeFactory:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str, listener: TransportListener) -> FakeTransport:
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        transport = FakeTransport(listener)
        self.transports.append(transport)
        return transport


class MutableSymbolSource:
    def __init__(self, symbols: list[str]) -> None:
        self.symbols = symbols

    async def list_symbols(self) -> list[str]:
        return list(self.symbols)


async def _no_sleep(delay: float) -> None:
    pass


class TestIngestionSupervisor:
    """Tests for startup, symbol changes and shutdown."""

    @pytest.fixture
    def factory(self) -> FakeFactory:
        return FakeFactory()

    @pytest.fixture
    def source(self) -> MutableSymbolSource:
        return MutableSymbolSource(["BTCUSDT"])

    @pytest.fixture
    def sink(self) -> MemorySink:
        return MemorySink()

    @pytest.fixture
    def supervisor(self, factory: FakeFactory, source: MutableSymbolSource, sink: MemorySink) -> IngestionSupervisor:
        return IngestionSupervisor(
            IngestorConfig(),
            sink,
            source,
            rest_client=AsyncMock(),
            transport_factory=factory,
            sleep=_no_sleep,
        )

    @pytest.mark.asyncio
    async def test_start_connects_and_polls(self, supervisor: IngestionSupervisor, factory: FakeFactory) -> None:
        """Test startup loads symbols, opens the stream and builds the poll pool."""
        await supervisor.start()

        assert supervisor.state == SupervisorState.RUNNING
        assert factory.urls == [supervisor.subscription_url(supervisor.registry.current())]
        assert "btcusdt@trade" in factory.urls[0]
        assert supervisor.client is not None
        assert supervisor.client.state == ConnectionState.OPEN
        assert supervisor.scheduler is not None
        assert supervisor.scheduler.pool.sizing.core_size == 4

        await supervisor.stop()
        assert supervisor.state == SupervisorState.STOPPED
        assert factory.transports[0].closed is True

    @pytest.mark.asyncio
    async def test_stream_records_reach_sink(
        self, supervisor: IngestionSupervisor, factory: FakeFactory, sink: MemorySink
    ) -> None:
        await supervisor.start()
        listener = factory.transports[0].listener

        await listener.on_message(
            '{"stream": "btcusdt@trade", "data": {"E": 1, "s": "BTCUSDT", "t": 1, '
            '"p": "100.5", "q": "2", "T": 1, "m": true}}'
        )

        assert len(sink.by_kind(RecordKind.TRADE)) == 1

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_symbol_change_rebuilds_stream_and_pool(
        self, supervisor: IngestionSupervisor, factory: FakeFactory, source: MutableSymbolSource
    ) -> None:
        """Test a refreshed snapshot moves streaming and polling to the new symbols."""
        await supervisor.start()
        old_client = supervisor.client

        source.symbols = ["BTCUSDT", "ETHUSDT"]
        assert await supervisor.registry.refresh() is True

        assert supervisor.client is not old_client
        assert supervisor.client is not None
        assert supervisor.client.state == ConnectionState.OPEN
        assert "ethusdt@trade" in factory.urls[-1]
        assert factory.transports[0].closed is True
        assert supervisor.scheduler is not None
        assert supervisor.scheduler.pool.sizing.core_size == 8
        assert supervisor.scheduler.pool.sizing.max_size == 16

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_empty_refresh_keeps_stream(
        self, supervisor: IngestionSupervisor, factory: FakeFactory, source: MutableSymbolSource
    ) -> None:
        await supervisor.start()
        client = supervisor.client

        source.symbols = []
        await supervisor.registry.refresh()

        assert supervisor.client is client
        assert len(factory.urls) == 1
        assert supervisor.registry.current().symbols == ("BTCUSDT",)

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_no_symbols_falls_back_to_default(self, factory: FakeFactory) -> None:
        supervisor = IngestionSupervisor(
            IngestorConfig(enable_polling=False),
            MemorySink(),
            MutableSymbolSource([]),
            rest_client=AsyncMock(),
            transport_factory=factory,
        )

        await supervisor.start()

        assert "btcusdt@trade" in factory.urls[0]

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_require_symbols_fails_fast(self, factory: FakeFactory) -> None:
        supervisor = IngestionSupervisor(
            IngestorConfig(require_symbols=True),
            MemorySink(),
            MutableSymbolSource([]),
            rest_client=AsyncMock(),
            transport_factory=factory,
        )

        with pytest.raises(ConfigurationError):
            await supervisor.start()

        assert supervisor.state == SupervisorState.FAILED
        assert factory.urls == []

    @pytest.mark.asyncio
    async def test_exhausted_reconnection_ends_run(self) -> None:
        """Test run() stops everything and raises once reconnection is exhausted."""
        factory = FakeFactory(failures=100)
        supervisor = IngestionSupervisor(
            IngestorConfig(connection=ConnectionConfig(max_reconnect_attempts=3), enable_polling=False),
            MemorySink(),
            MutableSymbolSource(["BTCUSDT"]),
            rest_client=AsyncMock(),
            transport_factory=factory,
            sleep=_no_sleep,
        )

        with pytest.raises(ReconnectExhaustedError):
            await asyncio.wait_for(supervisor.run(), timeout=5.0)

        assert len(factory.urls) == 1 + 3
        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, supervisor: IngestionSupervisor) -> None:
        await supervisor.start()
        runner = asyncio.create_task(supervisor.run())
        await asyncio.sleep(0)

        await supervisor.stop()
        await asyncio.wait_for(runner, timeout=1.0)

        assert supervisor.state == SupervisorState.STOPPED

    @pytest.mark.asyncio
    async def test_get_stats(self, supervisor: IngestionSupervisor) -> None:
        await supervisor.start()

        stats = supervisor.get_stats()

        assert stats["state"] == "running"
        assert stats["symbols"] == 1
        assert stats["stream"].state == ConnectionState.OPEN
        assert stats["pool"].core_size == 4
        assert set(stats["handlers"]) == {
            "trade",
            "agg_trade",
            "funding_rate",
            "kline",
            "ticker",
            "liquidation_order",
            "partial_book_depth",
        }

        await supervisor.stop()
