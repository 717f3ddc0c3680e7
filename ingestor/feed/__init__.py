"""
Feed ingestion engine.

Components:
- IngestionSupervisor (supervisor): Top-level orchestration and lifecycle
- StreamClient (connection): WebSocket lifecycle, state machine, bounded reconnection
- MessageRouter (router): Topic classification and routing to handlers
- Handlers (handlers): Decode payloads into records and forward them to the sink
- SymbolRegistry (registry): Immutable symbol snapshots, daily refresh
- PollScheduler / WorkerPool (polling, pool): Symbol-scaled REST statistic polling
- RetryExecutor (retry): Bounded retries shared by polling and reconnection

Only errors and shared types are re-exported here; configuration imports
the errors, so components are imported from their own modules.

Usage:
    from ingestor.config.configs import IngestorConfig
    from ingestor.feed.supervisor import IngestionSupervisor

    supervisor = IngestionSupervisor.from_config(IngestorConfig())
    await supervisor.run()
"""

from ingestor.feed.errors import (
    ApiError,
    ConfigurationError,
    IngestError,
    MessageParseError,
    PoolClosedError,
    ReconnectExhaustedError,
    StreamConnectionError,
)
from ingestor.feed.types import (
    ConnectionHealth,
    ConnectionState,
    Envelope,
    SupervisorState,
    SymbolSnapshot,
)

__all__ = [
    # Types
    "ConnectionState",
    "ConnectionHealth",
    "Envelope",
    "SupervisorState",
    "SymbolSnapshot",
    # Errors
    "IngestError",
    "ConfigurationError",
    "StreamConnectionError",
    "ReconnectExhaustedError",
    "MessageParseError",
    "ApiError",
    "PoolClosedError",
]
