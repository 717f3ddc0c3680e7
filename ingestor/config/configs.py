"""
Configuration types for the ingestor.

Provides immutable, validated configuration dataclasses for all engine components.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

from ingestor.feed.errors import ConfigurationError
from ingestor.types.records import RecordKind

# Binance USDⓈ-M futures endpoints
BINANCE_FUTURES_WS_URL = "wss://fstream.binance.com"
BINANCE_FUTURES_REST_URL = "https://fapi.binance.com"

# Per-symbol topics of the combined subscription
STREAM_TOPICS: tuple[str, ...] = (
    "trade",
    "aggTrade",
    "markPrice",
    "kline_1m",
    "ticker",
    "forceOrder",
    "depth10@100ms",
)
DEFAULT_SYMBOL = "btcusdt"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy.

    ``fixed`` waits ``delay_s`` between attempts; ``exponential`` waits
    ``min(delay_s * 2**n, max_delay_s)`` before attempt ``n`` (0-based).
    """

    max_attempts: int = 4
    delay_s: float = 5.0
    backoff: Literal["fixed", "exponential"] = "fixed"
    max_delay_s: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(
                "max_attempts must be at least 1",
                field="max_attempts",
                value=self.max_attempts,
            )
        if self.delay_s < 0:
            raise ConfigurationError(
                "delay_s must be non-negative",
                field="delay_s",
                value=self.delay_s,
            )
        if self.backoff not in ("fixed", "exponential"):
            raise ConfigurationError(
                "backoff must be 'fixed' or 'exponential'",
                field="backoff",
                value=self.backoff,
            )
        if self.max_delay_s < self.delay_s:
            raise ConfigurationError(
                "max_delay_s must be >= delay_s",
                field="max_delay_s",
                value=self.max_delay_s,
            )

    def delay_for(self, attempt: int) -> float:
        """Delay associated with the 0-based ``attempt``."""
        if self.backoff == "exponential":
            return float(min(self.delay_s * (2**attempt), self.max_delay_s))
        return float(self.delay_s)


# Polling: 1 call + 3 retries, 5s apart
POLLING_RETRY_POLICY = RetryPolicy(max_attempts=4, delay_s=5.0, backoff="fixed", max_delay_s=5.0)


@dataclass(frozen=True)
class ConnectionConfig:
    """Configuration for the streaming connection."""

    # Base URL for WebSocket (combined stream path is appended)
    base_url: str = BINANCE_FUTURES_WS_URL

    # Connection behavior
    connect_timeout_s: float = 10.0
    heartbeat_s: float = 30.0
    max_reconnect_attempts: int = 10
    base_reconnect_delay_s: float = 5.0
    max_reconnect_delay_s: float = 30.0
    health_check_interval_s: float = 60.0
    shutdown_timeout_s: float = 5.0

    # Binance limit for combined streams
    max_streams_per_connection: int = 1024

    def __post_init__(self) -> None:
        if self.connect_timeout_s <= 0:
            raise ConfigurationError(
                "connect_timeout_s must be positive",
                field="connect_timeout_s",
                value=self.connect_timeout_s,
            )
        if self.max_reconnect_attempts < 1:
            raise ConfigurationError(
                "max_reconnect_attempts must be at least 1",
                field="max_reconnect_attempts",
                value=self.max_reconnect_attempts,
            )
        if self.base_reconnect_delay_s < 0 or self.max_reconnect_delay_s < self.base_reconnect_delay_s:
            raise ConfigurationError(
                "reconnect delays must satisfy 0 <= base <= max",
                field="max_reconnect_delay_s",
                value=self.max_reconnect_delay_s,
            )
        if self.health_check_interval_s <= 0:
            raise ConfigurationError(
                "health_check_interval_s must be positive",
                field="health_check_interval_s",
                value=self.health_check_interval_s,
            )

    def reconnect_policy(self) -> RetryPolicy:
        """Exponential policy used by the reconnection sequence."""
        return RetryPolicy(
            max_attempts=self.max_reconnect_attempts,
            delay_s=self.base_reconnect_delay_s,
            backoff="exponential",
            max_delay_s=self.max_reconnect_delay_s,
        )


@dataclass(frozen=True)
class StatisticSpec:
    """One polled statistic type: endpoint, cadence and query shape."""

    name: str
    endpoint: str
    record_kind: RecordKind
    period_s: float
    initial_delay_s: float = 0.0
    windowed: bool = True  # False: endpoint takes only `symbol`
    interval: str = "5m"
    limit: int = 30
    window_s: float = 3600.0

    def __post_init__(self) -> None:
        if self.period_s <= 0:
            raise ConfigurationError(
                "period_s must be positive",
                field=f"{self.name}.period_s",
                value=self.period_s,
            )
        if self.initial_delay_s < 0:
            raise ConfigurationError(
                "initial_delay_s must be non-negative",
                field=f"{self.name}.initial_delay_s",
                value=self.initial_delay_s,
            )
        if not self.endpoint.startswith("/"):
            raise ConfigurationError(
                "endpoint must start with '/'",
                field=f"{self.name}.endpoint",
                value=self.endpoint,
            )
        if self.windowed and not (1 <= self.limit <= 500):
            raise ConfigurationError(
                "limit must be between 1 and 500",
                field=f"{self.name}.limit",
                value=self.limit,
            )


# Slow statistics are staggered by a minute to avoid a thundering herd
DEFAULT_STATISTICS: tuple[StatisticSpec, ...] = (
    StatisticSpec(
        name="taker_buy_sell_volume",
        endpoint="/futures/data/takerlongshortRatio",
        record_kind=RecordKind.TAKER_BUY_SELL_VOLUME,
        period_s=25 * 60,
        initial_delay_s=5.0,
    ),
    StatisticSpec(
        name="long_short_ratio",
        endpoint="/futures/data/globalLongShortAccountRatio",
        record_kind=RecordKind.LONG_SHORT_RATIO,
        period_s=25 * 60,
        initial_delay_s=65.0,
    ),
    StatisticSpec(
        name="open_interest_statistics",
        endpoint="/futures/data/openInterestHist",
        record_kind=RecordKind.OPEN_INTEREST_STATISTICS,
        period_s=25 * 60,
        initial_delay_s=125.0,
    ),
    StatisticSpec(
        name="open_interest",
        endpoint="/fapi/v1/openInterest",
        record_kind=RecordKind.OPEN_INTEREST,
        period_s=10.0,
        initial_delay_s=5.0,
        windowed=False,
    ),
)


@dataclass(frozen=True)
class PollConfig:
    """Configuration for the REST polling scheduler."""

    base_url: str = BINANCE_FUTURES_REST_URL
    statistics: tuple[StatisticSpec, ...] = DEFAULT_STATISTICS
    retry: RetryPolicy = POLLING_RETRY_POLICY

    # Request timeouts
    connect_timeout_s: float = 5.0
    request_timeout_s: float = 10.0

    # Pool drain window on resize/stop
    pool_shutdown_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        names = [s.name for s in self.statistics]
        if len(names) != len(set(names)):
            raise ConfigurationError(
                "statistic names must be unique",
                field="statistics",
                value=names,
            )
        if self.request_timeout_s <= 0:
            raise ConfigurationError(
                "request_timeout_s must be positive",
                field="request_timeout_s",
                value=self.request_timeout_s,
            )

    @property
    def task_type_count(self) -> int:
        return len(self.statistics)


@dataclass(frozen=True)
class RegistryConfig:
    """Where symbols come from and when they are refreshed."""

    source: Literal["static", "exchange_info"] = "exchange_info"
    symbols: tuple[str, ...] = field(default_factory=tuple)  # for source="static"
    quote_asset: str = "USDT"
    max_symbols: int = 0  # 0 = no limit
    refresh_at: dt.time = dt.time(0, 0)  # UTC wall clock

    def __post_init__(self) -> None:
        if self.source == "static" and not self.symbols:
            raise ConfigurationError(
                "static symbol source requires at least one symbol",
                field="symbols",
            )
        if self.max_symbols < 0:
            raise ConfigurationError(
                "max_symbols must be non-negative",
                field="max_symbols",
                value=self.max_symbols,
            )


class SinkConfig(BaseModel):
    kind: Literal["jsonl", "memory"] = "jsonl"
    base_dir: Path = Path("data/records")  # one <kind>.jsonl file per record kind


@dataclass(frozen=True)
class IngestorConfig:
    """
    Immutable top-level configuration.

    Example:
        config = IngestorConfig(
            registry=RegistryConfig(source="static", symbols=("BTCUSDT", "ETHUSDT")),
        )
    """

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    polling: PollConfig = field(default_factory=PollConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    topics: tuple[str, ...] = STREAM_TOPICS

    # Runtime behavior
    require_symbols: bool = False  # fail fast when the first load is empty
    rebuild_subscription_on_refresh: bool = True
    enable_stream: bool = True
    enable_polling: bool = True

    def __post_init__(self) -> None:
        if not self.topics:
            raise ConfigurationError("At least one stream topic must be configured", field="topics")
        if not (self.enable_stream or self.enable_polling):
            raise ConfigurationError(
                "At least one of streaming or polling must be enabled",
                field="enable_stream",
            )
