"""
Ingestion Supervisor - top-level orchestration.

Coordinates all engine components:
- SymbolRegistry for the tracked symbol set and its daily refresh
- StreamClient + MessageRouter + handlers for the combined stream
- PollScheduler for REST statistics
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ingestor.adapters.sinks import build_sink
from ingestor.adapters.symbol_sources import ExchangeInfoSymbolSource, StaticSymbolSource
from ingestor.config.configs import IngestorConfig
from ingestor.feed.connection import StreamClient
from ingestor.feed.errors import ConfigurationError, IngestError, ReconnectExhaustedError
from ingestor.feed.handlers import BaseHandler, build_default_handlers
from ingestor.feed.polling import PollScheduler
from ingestor.feed.registry import SymbolRegistry
from ingestor.feed.rest import BinanceRestClient
from ingestor.feed.retry import SleepFn
from ingestor.feed.router import MessageRouter
from ingestor.feed.subscription import build_subscription_url
from ingestor.feed.transport import TransportFactory
from ingestor.feed.types import SupervisorState, SymbolSnapshot
from ingestor.ports.sink import RecordSink
from ingestor.ports.symbol_source import SymbolSource
from ingestor.types.records import RecordKind

logger = logging.getLogger(__name__)


class IngestionSupervisor:
    """
    Composes registry, stream client and poll scheduler.

    State Machine:
        [STOPPED] --start()--> [STARTING] --success--> [RUNNING]
                                    |                       |
                                [FAILED]              [STOPPING] --> [STOPPED]

    On every snapshot change the poll pool is rebuilt and, if enabled, a new
    StreamClient is connected to the new subscription target before the old
    one is shut down.

    Usage:
        supervisor = IngestionSupervisor.from_config(IngestorConfig())
        await supervisor.run()  # until stop() or reconnection exhaustion
    """

    def __init__(
        self,
        config: IngestorConfig,
        sink: RecordSink,
        symbol_source: SymbolSource,
        rest_client: Optional[BinanceRestClient] = None,
        transport_factory: Optional[TransportFactory] = None,
        sleep: SleepFn = asyncio.sleep,
        name: str = "ingestor",
    ) -> None:
        self._config = config
        self._sink = sink
        self._rest_client = rest_client or BinanceRestClient(
            config.polling.base_url,
            connect_timeout_s=config.polling.connect_timeout_s,
            request_timeout_s=config.polling.request_timeout_s,
        )
        self._transport_factory = transport_factory
        self._sleep = sleep
        self._name = name

        self._state = SupervisorState.STOPPED
        self._registry = SymbolRegistry(
            symbol_source,
            refresh_at=config.registry.refresh_at,
            name=f"{name}_registry",
        )
        self._handlers: dict[RecordKind, BaseHandler] = build_default_handlers(sink)
        self._router = MessageRouter(name=f"{name}_router")
        for kind, handler in self._handlers.items():
            self._router.register_handler(kind, handler.handle)

        self._client: Optional[StreamClient] = None
        self._client_generation = 0
        self._scheduler: Optional[PollScheduler] = None

        self._done = asyncio.Event()
        self._fatal_error: Optional[ReconnectExhaustedError] = None
        self._started_at: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        config: IngestorConfig,
        sink: Optional[RecordSink] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> IngestionSupervisor:
        """Build the sink, REST client and symbol source named by ``config``."""
        rest_client = BinanceRestClient(
            config.polling.base_url,
            connect_timeout_s=config.polling.connect_timeout_s,
            request_timeout_s=config.polling.request_timeout_s,
        )
        source: SymbolSource
        if config.registry.source == "static":
            source = StaticSymbolSource(config.registry.symbols)
        else:
            source = ExchangeInfoSymbolSource(
                rest_client,
                quote_asset=config.registry.quote_asset,
                max_symbols=config.registry.max_symbols,
            )
        return cls(
            config,
            sink or build_sink(config.sink.kind, config.sink.base_dir),
            source,
            rest_client=rest_client,
            transport_factory=transport_factory,
        )

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SupervisorState.RUNNING

    @property
    def registry(self) -> SymbolRegistry:
        return self._registry

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def client(self) -> Optional[StreamClient]:
        return self._client

    @property
    def scheduler(self) -> Optional[PollScheduler]:
        return self._scheduler

    def subscription_url(self, snapshot: SymbolSnapshot) -> str:
        return build_subscription_url(
            self._config.connection.base_url,
            snapshot.symbols,
            self._config.topics,
            max_streams=self._config.connection.max_streams_per_connection,
        )

    def _build_client(self) -> StreamClient:
        self._client_generation += 1
        generation = self._client_generation

        async def on_fatal(error: ReconnectExhaustedError) -> None:
            if generation == self._client_generation:
                await self._on_fatal(error)

        return StreamClient(
            self._router,
            self._config.connection,
            transport_factory=self._transport_factory,
            on_fatal=on_fatal,
            sleep=self._sleep,
            name=f"{self._name}_stream_{generation}",
        )

    async def start(self) -> None:
        """
        Load symbols and start streaming and polling.

        Raises:
            ConfigurationError: If configuration is invalid or no symbols are
                available while ``require_symbols`` is set
            IngestError: If startup fails for another reason
        """
        if self._state not in (SupervisorState.STOPPED, SupervisorState.FAILED):
            logger.warning(f"[{self._name}] Cannot start from state: {self._state.value}")
            return

        logger.info(f"[{self._name}] Starting...")
        self._state = SupervisorState.STARTING
        self._done.clear()
        self._fatal_error = None

        try:
            await self._registry.refresh()
            snapshot = self._registry.current()
            if snapshot.is_empty and self._config.require_symbols:
                raise ConfigurationError("No symbols available at startup", field="symbols")
            logger.info(f"[{self._name}] Tracking {len(snapshot)} symbols")

            self._registry.set_listener(self._on_symbols_changed)
            self._registry.start()

            if self._config.enable_polling:
                self._scheduler = PollScheduler(
                    self._registry,
                    self._sink,
                    self._rest_client,
                    self._config.polling,
                    sleep=self._sleep,
                    name=f"{self._name}_poller",
                )
                self._scheduler.start()

            if self._config.enable_stream:
                self._client = self._build_client()
                await self._client.connect(self.subscription_url(snapshot))

            self._state = SupervisorState.RUNNING
            self._started_at = datetime.now(timezone.utc)
            logger.info(f"[{self._name}] Started")

        except ConfigurationError as e:
            self._state = SupervisorState.FAILED
            logger.error(f"[{self._name}] Invalid configuration: {e}")
            await self._cleanup()
            raise
        except Exception as e:
            self._state = SupervisorState.FAILED
            logger.error(f"[{self._name}] Failed to start: {e}", exc_info=True)
            await self._cleanup()
            raise IngestError(f"Failed to start ingestion: {e}", component="IngestionSupervisor") from e

    async def run(self) -> None:
        """
        Start (if needed) and run until ``stop()`` is called.

        Raises:
            ReconnectExhaustedError: If the stream gave up reconnecting
        """
        if self._state != SupervisorState.RUNNING:
            await self.start()
        await self._done.wait()

        if self._fatal_error is not None:
            await self.stop()
            raise self._fatal_error

    async def _on_fatal(self, error: ReconnectExhaustedError) -> None:
        logger.critical(f"[{self._name}] Stream reconnection exhausted: {error}")
        self._fatal_error = error
        self._done.set()

    async def _on_symbols_changed(self, previous: SymbolSnapshot, current: SymbolSnapshot) -> None:
        """Reconfigure streaming and polling for a new snapshot."""
        if self._state != SupervisorState.RUNNING:
            return
        logger.info(
            f"[{self._name}] Symbols changed v{previous.version} -> v{current.version} "
            f"({len(previous)} -> {len(current)})"
        )

        if self._config.enable_stream and self._config.rebuild_subscription_on_refresh:
            await self._rebuild_stream(current)

        if self._scheduler is not None:
            await self._scheduler.resize(current)

    async def _rebuild_stream(self, snapshot: SymbolSnapshot) -> None:
        url = self.subscription_url(snapshot)
        old_client = self._client
        if old_client is not None and old_client.target == url:
            return

        new_client = self._build_client()
        await new_client.connect(url)
        self._client = new_client
        logger.info(f"[{self._name}] Subscription rebuilt for {len(snapshot)} symbols")

        if old_client is not None:
            await old_client.shutdown()

    async def stop(self) -> None:
        """Stop everything gracefully."""
        if self._state in (SupervisorState.STOPPED, SupervisorState.STOPPING):
            self._done.set()
            return

        logger.info(f"[{self._name}] Stopping...")
        self._state = SupervisorState.STOPPING
        await self._cleanup()
        self._state = SupervisorState.STOPPED
        self._done.set()
        logger.info(f"[{self._name}] Stopped")

    async def _cleanup(self) -> None:
        for step, action in (
            ("registry", self._registry.stop),
            ("stream", self._stop_client),
            ("poller", self._stop_scheduler),
            ("rest client", self._rest_client.close),
        ):
            try:
                await action()
            except Exception as e:
                logger.error(f"[{self._name}] Error stopping {step}: {e}", exc_info=True)

    async def _stop_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            # Invalidate the fatal callback of the client being stopped
            self._client_generation += 1
            await client.shutdown()

    async def _stop_scheduler(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            await scheduler.stop()

    def get_stats(self) -> dict[str, Any]:
        """Counters from every component."""
        stats: dict[str, Any] = {
            "state": self._state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "symbols": len(self._registry.current()),
            "snapshot_version": self._registry.current().version,
            "router": self._router.stats,
            "handlers": {kind.value: h.stats for kind, h in self._handlers.items()},
        }
        if self._client is not None:
            stats["stream"] = self._client.get_health()
        if self._scheduler is not None:
            stats["poller"] = self._scheduler.stats
            stats["pool"] = self._scheduler.pool.sizing
        return stats
