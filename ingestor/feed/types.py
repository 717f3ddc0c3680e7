"""
Shared types, enums, and data structures for the feed ingestion engine.

This module contains types that are used across multiple components
of the engine (stream client, router, registry, scheduler).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class SupervisorState(str, Enum):
    """State machine for IngestionSupervisor."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class ConnectionState(str, Enum):
    """State machine for the streaming connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class ConnectionEvent(str, Enum):
    """Events that drive ConnectionState transitions."""

    CONNECT_REQUESTED = "connect_requested"
    OPEN_SUCCEEDED = "open_succeeded"
    OPEN_FAILED = "open_failed"
    CLOSE_DETECTED = "close_detected"
    ERROR_DETECTED = "error_detected"
    RECONNECT_STARTED = "reconnect_started"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    SHUTDOWN_COMPLETED = "shutdown_completed"


# (state, event) -> next state. Anything else is ignored.
TRANSITIONS: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT_REQUESTED): ConnectionState.CONNECTING,
    (ConnectionState.DISCONNECTED, ConnectionEvent.RECONNECT_STARTED): ConnectionState.CONNECTING,
    (ConnectionState.DISCONNECTED, ConnectionEvent.RECONNECT_EXHAUSTED): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.OPEN_SUCCEEDED): ConnectionState.OPEN,
    (ConnectionState.CONNECTING, ConnectionEvent.OPEN_FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.OPEN, ConnectionEvent.CLOSE_DETECTED): ConnectionState.DISCONNECTED,
    (ConnectionState.OPEN, ConnectionEvent.ERROR_DETECTED): ConnectionState.DISCONNECTED,
    (ConnectionState.DISCONNECTED, ConnectionEvent.SHUTDOWN_REQUESTED): ConnectionState.CLOSING,
    (ConnectionState.CONNECTING, ConnectionEvent.SHUTDOWN_REQUESTED): ConnectionState.CLOSING,
    (ConnectionState.OPEN, ConnectionEvent.SHUTDOWN_REQUESTED): ConnectionState.CLOSING,
    (ConnectionState.CLOSING, ConnectionEvent.SHUTDOWN_COMPLETED): ConnectionState.DISCONNECTED,
}


@dataclass(frozen=True, slots=True)
class Envelope:
    """Outer wrapper of one combined-stream message."""

    topic: str  # e.g., "btcusdt@kline_1m"
    payload: dict[str, Any]  # the inner "data" object
    recv_ts: int  # Local receive timestamp (Unix ms)

    @property
    def symbol(self) -> Optional[str]:
        """Extract symbol from the topic."""
        if "@" in self.topic:
            return self.topic.split("@", 1)[0].upper()
        return None

    @property
    def stream_name(self) -> str:
        """Part of the topic after the first '@' (the whole topic if there is none)."""
        return self.topic.split("@", 1)[1] if "@" in self.topic else self.topic


@dataclass(frozen=True, slots=True)
class SymbolSnapshot:
    """Immutable, ordered, de-duplicated set of tracked symbols."""

    symbols: tuple[str, ...] = ()
    version: int = 0
    loaded_at: Optional[datetime] = None

    @classmethod
    def of(cls, symbols: list[str], version: int) -> SymbolSnapshot:
        """Build a snapshot, dropping blanks and duplicates while keeping order."""
        seen: dict[str, None] = {}
        for s in symbols:
            s = s.strip().upper()
            if s:
                seen.setdefault(s, None)
        return cls(
            symbols=tuple(seen),
            version=version,
            loaded_at=datetime.now(timezone.utc),
        )

    def __len__(self) -> int:
        return len(self.symbols)

    def __iter__(self):
        return iter(self.symbols)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.symbols

    @property
    def is_empty(self) -> bool:
        return not self.symbols


@dataclass
class ConnectionHealth:
    """Health snapshot for the streaming connection."""

    state: ConnectionState
    url: str
    connected_since: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    reconnect_attempt: int = 0
    reconnect_count: int = 0
    message_count: int = 0
    error_count: int = 0
    exhausted: bool = False
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def uptime_s(self) -> Optional[float]:
        """Connection uptime in seconds, or None if not connected."""
        if self.connected_since is None:
            return None
        now = datetime.now(timezone.utc)
        return (now - self.connected_since).total_seconds()

    @property
    def is_healthy(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def seconds_since_message(self) -> Optional[float]:
        """Seconds since last message, or None if no messages yet."""
        if self.last_message_at is None:
            return None
        now = datetime.now(timezone.utc)
        return (now - self.last_message_at).total_seconds()


@dataclass
class ConnectionMetrics:
    """Counters for the streaming connection."""

    messages_received: int = 0
    bytes_received: int = 0
    reconnect_sequences: int = 0
    reconnect_attempts: int = 0
    errors: int = 0

    # Timing
    connected_at: Optional[float] = None  # monotonic time
    last_message_at: Optional[float] = None  # monotonic time
