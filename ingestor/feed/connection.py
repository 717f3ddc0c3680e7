"""
Streaming connection client.

Owns one combined-stream WebSocket connection and its lifecycle:
- Connection state machine driven by ConnectionEvent (see types.TRANSITIONS)
- Bounded exponential reconnection, at most one sequence at a time
- Periodic health check that restarts a dead connection
- Bounded shutdown that cancels a transport close that overruns
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from ingestor.config.configs import ConnectionConfig
from ingestor.feed.errors import ReconnectExhaustedError, StreamConnectionError
from ingestor.feed.retry import RetryExecutor, SleepFn
from ingestor.feed.router import MessageRouter
from ingestor.feed.subscription import validate_stream_url
from ingestor.feed.timers import PeriodicTimer
from ingestor.feed.transport import (
    AiohttpTransport,
    StreamTransport,
    TransportFactory,
    TransportListener,
    encode_control,
)
from ingestor.feed.types import (
    TRANSITIONS,
    ConnectionEvent,
    ConnectionHealth,
    ConnectionMetrics,
    ConnectionState,
)

logger = logging.getLogger(__name__)

FatalCallback = Callable[[ReconnectExhaustedError], Awaitable[None]]


class _ClientListener(TransportListener):
    """Binds transport events to the connection generation that opened it."""

    def __init__(self, client: StreamClient, generation: int) -> None:
        self._client = client
        self._generation = generation

    async def on_message(self, raw: str) -> None:
        if self._client._generation == self._generation:
            await self._client.on_message(raw)

    async def on_close(self, code: Optional[int], reason: str) -> None:
        if self._client._generation == self._generation:
            await self._client._on_connection_lost(f"closed (code={code}) {reason}".strip(), None)

    async def on_error(self, error: BaseException) -> None:
        if self._client._generation == self._generation:
            await self._client._on_connection_lost(str(error), error)


class StreamClient:
    """
    Maintains one logical streaming connection to a subscription target.

    The client does NOT decode messages itself - raw text goes to the
    MessageRouter, one message at a time in arrival order.

    Usage:
        client = StreamClient(router, ConnectionConfig(), on_fatal=report)
        await client.connect("wss://fstream.binance.com/stream?streams=btcusdt@trade")
        # ... later ...
        await client.shutdown()
    """

    def __init__(
        self,
        router: MessageRouter,
        config: ConnectionConfig,
        transport_factory: Optional[TransportFactory] = None,
        on_fatal: Optional[FatalCallback] = None,
        sleep: SleepFn = asyncio.sleep,
        name: str = "stream",
    ) -> None:
        self._router = router
        self._config = config
        self._factory: TransportFactory = transport_factory or self._open_aiohttp
        self._on_fatal = on_fatal
        self._name = name

        # State
        self._state = ConnectionState.DISCONNECTED
        self._target: Optional[str] = None
        self._transport: Optional[StreamTransport] = None
        self._generation = 0

        # Reconnection state
        self._reconnect_executor = RetryExecutor(
            config.reconnect_policy(), sleep=sleep, name=f"{name}_reconnect"
        )
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._reconnecting = False
        self._reconnect_attempt = 0
        self._exhausted = False
        self._shutting_down = False

        self._health_timer = PeriodicTimer(
            self.health_check,
            period_s=config.health_check_interval_s,
            initial_delay_s=config.health_check_interval_s,
            name=f"{name}_health",
        )

        # Metrics
        self._metrics = ConnectionMetrics()
        self._connected_at: Optional[datetime] = None
        self._last_message_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_error_at: Optional[datetime] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def target(self) -> Optional[str]:
        return self._target

    @property
    def reconnect_attempt(self) -> int:
        return self._reconnect_attempt

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnecting

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    @property
    def metrics(self) -> ConnectionMetrics:
        return self._metrics

    def _apply(self, event: ConnectionEvent) -> bool:
        """Apply a connection event. Events with no transition are ignored."""
        new_state = TRANSITIONS.get((self._state, event))
        if new_state is None:
            logger.debug(f"[{self._name}] Ignoring {event.value} in state {self._state.value}")
            return False
        if new_state != self._state:
            logger.debug(f"[{self._name}] State: {self._state.value} -> {new_state.value} ({event.value})")
        self._state = new_state
        return True

    def _record_error(self, message: str) -> None:
        self._metrics.errors += 1
        self._last_error = message
        self._last_error_at = datetime.now(timezone.utc)

    async def _open_aiohttp(self, url: str, listener: TransportListener) -> StreamTransport:
        return await AiohttpTransport.open(
            url,
            listener,
            connect_timeout_s=self._config.connect_timeout_s,
            heartbeat_s=self._config.heartbeat_s,
            name=f"{self._name}_ws",
        )

    async def connect(self, target: str) -> None:
        """
        Open the connection to ``target``.

        No-op if already connecting or open. A failed handshake starts the
        reconnection sequence instead of raising. After reconnection has been
        exhausted, calling connect() again is the manual restart.

        Raises:
            ConfigurationError: If target is not a ws:// or wss:// URL with a host
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.warning(f"[{self._name}] Already connected or connecting")
            return

        validate_stream_url(target)
        self._target = target
        self._shutting_down = False

        if self._reconnecting:
            logger.info(f"[{self._name}] Reconnection in progress, target updated")
            return

        if self._exhausted:
            logger.info(f"[{self._name}] Manual restart after exhausted reconnection")
            self._exhausted = False
            self._reconnect_attempt = 0

        self._health_timer.start()
        self._apply(ConnectionEvent.CONNECT_REQUESTED)
        try:
            await self._open_transport()
        except StreamConnectionError as e:
            logger.warning(f"[{self._name}] Initial connection failed: {e}")
            self._start_reconnect_sequence()

    async def _open_transport(self) -> None:
        """Handshake from CONNECTING; ends in OPEN or DISCONNECTED."""
        self._generation += 1
        generation = self._generation
        listener = _ClientListener(self, generation)
        url = self._target or ""

        logger.info(f"[{self._name}] Connecting to {url[:120]}")
        try:
            transport = await asyncio.wait_for(
                self._factory(url, listener), timeout=self._config.connect_timeout_s
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_error(str(e) or type(e).__name__)
            self._apply(ConnectionEvent.OPEN_FAILED)
            raise StreamConnectionError(
                f"Handshake failed: {e}",
                url=url,
                reconnect_attempt=self._reconnect_attempt,
                component="StreamClient",
            ) from e

        if self._shutting_down or generation != self._generation:
            await transport.close()
            raise StreamConnectionError(
                "Connection superseded during handshake",
                url=url,
                component="StreamClient",
            )

        if not transport.is_open:
            await transport.close()
            self._record_error("transport closed during handshake")
            self._apply(ConnectionEvent.OPEN_FAILED)
            raise StreamConnectionError(
                "Transport closed during handshake",
                url=url,
                reconnect_attempt=self._reconnect_attempt,
                component="StreamClient",
            )

        self._transport = transport
        self._reconnect_attempt = 0
        self._connected_at = datetime.now(timezone.utc)
        self._metrics.connected_at = time.monotonic()
        self._apply(ConnectionEvent.OPEN_SUCCEEDED)
        logger.info(f"[{self._name}] Connected")

    async def on_message(self, raw: str) -> None:
        """Frame one raw message through the router. Never raises for bad input."""
        self._metrics.messages_received += 1
        self._metrics.bytes_received += len(raw)
        self._metrics.last_message_at = time.monotonic()
        self._last_message_at = datetime.now(timezone.utc)

        try:
            await self._router.dispatch(raw)
        except Exception as e:
            self._record_error(str(e))
            logger.error(f"[{self._name}] Message handling error: {e}", exc_info=True)

    async def _on_connection_lost(self, reason: str, error: Optional[BaseException]) -> None:
        if self._shutting_down:
            return

        event = ConnectionEvent.ERROR_DETECTED if error is not None else ConnectionEvent.CLOSE_DETECTED
        if not self._apply(event):
            return

        transport, self._transport = self._transport, None
        self._connected_at = None
        self._record_error(reason)
        logger.warning(f"[{self._name}] Connection lost: {reason}")
        self._start_reconnect_sequence()

        if transport is not None:
            await self._close_transport(transport, self._config.shutdown_timeout_s)

    async def _close_transport(self, transport: StreamTransport, timeout: float) -> None:
        """Close a transport, cancelling the close once ``timeout`` elapses."""
        try:
            await asyncio.wait_for(transport.close(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self._name}] Close did not finish in {timeout:.1f}s, cancelled it")
        except Exception as e:
            logger.warning(f"[{self._name}] Error while closing transport: {e}")

    def _start_reconnect_sequence(self) -> bool:
        """Start a reconnection sequence unless one is active. No await between check and set."""
        if self._reconnecting or self._exhausted or self._shutting_down:
            logger.debug(f"[{self._name}] Reconnection not started (active/exhausted/shutting down)")
            return False

        self._reconnecting = True
        self._metrics.reconnect_sequences += 1
        self._reconnect_task = asyncio.create_task(
            self._reconnect_sequence(), name=f"{self._name}_reconnect"
        )
        return True

    async def _reconnect_attempt_once(self) -> None:
        self._apply(ConnectionEvent.RECONNECT_STARTED)
        await self._open_transport()

    def _on_reconnect_failure(self, attempt: int, error: Exception) -> None:
        self._reconnect_attempt = attempt
        self._metrics.reconnect_attempts += 1

    async def _reconnect_sequence(self) -> None:
        try:
            outcome = await self._reconnect_executor.run(
                self._reconnect_attempt_once,
                label=f"Reconnect to {self._name}",
                delay_first=True,
                on_failure=self._on_reconnect_failure,
            )
        finally:
            self._reconnecting = False
            self._reconnect_task = None

        if outcome.succeeded:
            logger.info(f"[{self._name}] Reconnected after {outcome.attempts} attempt(s)")
            # Lost again while the sequence was wrapping up
            if self._state == ConnectionState.DISCONNECTED:
                self._start_reconnect_sequence()
            return

        self._exhausted = True
        self._apply(ConnectionEvent.RECONNECT_EXHAUSTED)
        error = ReconnectExhaustedError(
            f"Reconnection gave up after {outcome.attempts} attempts",
            url=self._target,
            reconnect_attempt=self._reconnect_attempt,
            component="StreamClient",
            details={"last_error": str(outcome.last_error)},
        )
        logger.error(f"[{self._name}] {error}; manual restart required")

        if self._on_fatal is not None:
            try:
                await self._on_fatal(error)
            except Exception as e:
                logger.error(f"[{self._name}] Fatal callback failed: {e}", exc_info=True)

    async def health_check(self) -> None:
        """Restart a dead connection unless a sequence is active or it is exhausted."""
        if self._shutting_down or self._exhausted or self._target is None:
            return

        if self._state == ConnectionState.OPEN:
            if self._transport is None or not self._transport.is_open:
                await self._on_connection_lost("health check found a dead transport", None)
            return

        if self._state != ConnectionState.DISCONNECTED or self._reconnecting:
            return

        logger.warning(f"[{self._name}] Health check: not connected, starting reconnection")
        self._start_reconnect_sequence()

    async def send(self, message: Any) -> None:
        """
        Send a control message (str sent as-is, anything else JSON-encoded).

        Raises:
            StreamConnectionError: If the connection is not open
        """
        transport = self._transport
        if self._state != ConnectionState.OPEN or transport is None:
            raise StreamConnectionError(
                f"Cannot send while {self._state.value}",
                url=self._target,
                component="StreamClient",
            )
        payload = message if isinstance(message, str) else encode_control(message)
        await transport.send(payload)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Cancel reconnection and the health check, then close the transport,
        cancelling the close if it does not finish within ``timeout`` seconds.
        """
        timeout = self._config.shutdown_timeout_s if timeout is None else timeout
        logger.info(f"[{self._name}] Shutting down")
        self._shutting_down = True
        self._generation += 1

        await self._health_timer.stop()

        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._reconnecting = False
        self._reconnect_task = None

        self._apply(ConnectionEvent.SHUTDOWN_REQUESTED)

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_transport(transport, timeout)

        self._connected_at = None
        self._apply(ConnectionEvent.SHUTDOWN_COMPLETED)
        logger.info(f"[{self._name}] Shut down")

    def get_health(self) -> ConnectionHealth:
        """Get current connection health snapshot."""
        return ConnectionHealth(
            state=self._state,
            url=self._target or "",
            connected_since=self._connected_at,
            last_message_at=self._last_message_at,
            reconnect_attempt=self._reconnect_attempt,
            reconnect_count=self._metrics.reconnect_sequences,
            message_count=self._metrics.messages_received,
            error_count=self._metrics.errors,
            exhausted=self._exhausted,
            last_error=self._last_error,
            last_error_at=self._last_error_at,
        )
