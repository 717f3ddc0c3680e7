"""
Purpose:
    - Loads an ingestor TOML file
    - Validates it (pydantic) and builds the frozen IngestorConfig
    - Applies environment overrides for endpoints and the sink directory

Environment overrides (applied after the file):
    INGESTOR_WS_URL     -> [stream].base_url
    INGESTOR_REST_URL   -> [polling].base_url
    INGESTOR_SINK_DIR   -> [sink].base_dir
"""

from __future__ import annotations

import datetime as dt
import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ingestor.config.configs import (
    BINANCE_FUTURES_REST_URL,
    BINANCE_FUTURES_WS_URL,
    DEFAULT_STATISTICS,
    STREAM_TOPICS,
    ConnectionConfig,
    IngestorConfig,
    PollConfig,
    RegistryConfig,
    RetryPolicy,
    SinkConfig,
    StatisticSpec,
)
from ingestor.feed.errors import ConfigurationError

ENV_WS_URL = "INGESTOR_WS_URL"
ENV_REST_URL = "INGESTOR_REST_URL"
ENV_SINK_DIR = "INGESTOR_SINK_DIR"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StreamSection(_Section):
    base_url: str = BINANCE_FUTURES_WS_URL
    topics: list[str] = Field(default_factory=lambda: list(STREAM_TOPICS))
    connect_timeout_s: float = 10.0
    heartbeat_s: float = 30.0
    max_reconnect_attempts: int = 10
    base_reconnect_delay_s: float = 5.0
    max_reconnect_delay_s: float = 30.0
    health_check_interval_s: float = 60.0
    shutdown_timeout_s: float = 5.0
    max_streams_per_connection: int = 1024
    enabled: bool = True


class RetrySection(_Section):
    max_attempts: int = 4
    delay_s: float = 5.0


class StatisticSection(_Section):
    """Override for one of the built-in statistics, keyed by name."""

    period_s: Optional[float] = None
    initial_delay_s: Optional[float] = None
    interval: Optional[str] = None
    limit: Optional[int] = None
    enabled: bool = True


class PollingSection(_Section):
    base_url: str = BINANCE_FUTURES_REST_URL
    connect_timeout_s: float = 5.0
    request_timeout_s: float = 10.0
    pool_shutdown_timeout_s: float = 60.0
    retry: RetrySection = Field(default_factory=RetrySection)
    statistics: dict[str, StatisticSection] = Field(default_factory=dict)
    enabled: bool = True


class RegistrySection(_Section):
    source: Literal["static", "exchange_info"] = "exchange_info"
    symbols: list[str] = Field(default_factory=list)
    quote_asset: str = "USDT"
    max_symbols: int = 0
    refresh_at: dt.time = dt.time(0, 0)
    require_symbols: bool = False
    rebuild_subscription_on_refresh: bool = True


class IngestorFile(_Section):
    stream: StreamSection = Field(default_factory=StreamSection)
    polling: PollingSection = Field(default_factory=PollingSection)
    registry: RegistrySection = Field(default_factory=RegistrySection)
    sink: SinkConfig = Field(default_factory=SinkConfig)


class ConfigLoader:
    """
    Config-loader; loading toml file.
    """

    def __init__(self, base_dir: str = ".", environ: Optional[Mapping[str, str]] = None) -> None:
        self._base_dir = base_dir
        self._environ = os.environ if environ is None else environ

    def _resolve(self, file_name: str) -> Path:
        path = Path(file_name)
        if not path.is_absolute():
            path = Path(self._base_dir) / file_name
        return path

    def load_raw(self, file_name: str) -> dict[str, Any]:
        path = self._resolve(file_name)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            try:
                return tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {path}: {e}", field="file", value=str(path)) from e

    def load(self, file_name: Optional[str] = None) -> IngestorConfig:
        """
        Load and validate ``file_name``; defaults (plus env overrides) when None.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the document or a value is invalid
        """
        raw = self.load_raw(file_name) if file_name else {}
        return self.from_dict(raw)

    def from_dict(self, raw: dict[str, Any]) -> IngestorConfig:
        try:
            doc = IngestorFile.model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid configuration: {first.get('msg', e)}",
                field=loc or None,
                value=first.get("input"),
                details={"errors": e.error_count()},
            ) from e

        self._apply_env(doc)
        return self._build(doc)

    def _apply_env(self, doc: IngestorFile) -> None:
        if self._environ.get(ENV_WS_URL):
            doc.stream.base_url = self._environ[ENV_WS_URL]
        if self._environ.get(ENV_REST_URL):
            doc.polling.base_url = self._environ[ENV_REST_URL]
        if self._environ.get(ENV_SINK_DIR):
            doc.sink.base_dir = Path(self._environ[ENV_SINK_DIR])

        if not doc.sink.base_dir.is_absolute():
            doc.sink.base_dir = Path(self._base_dir) / doc.sink.base_dir

    @staticmethod
    def _build_statistics(overrides: dict[str, StatisticSection]) -> tuple[StatisticSpec, ...]:
        known = {spec.name: spec for spec in DEFAULT_STATISTICS}
        unknown = sorted(set(overrides) - set(known))
        if unknown:
            raise ConfigurationError(
                f"Unknown statistic(s): {', '.join(unknown)}",
                field="polling.statistics",
                value=unknown,
            )

        specs = []
        for name, spec in known.items():
            override = overrides.get(name)
            if override is None:
                specs.append(spec)
                continue
            if not override.enabled:
                continue
            specs.append(
                StatisticSpec(
                    name=name,
                    endpoint=spec.endpoint,
                    record_kind=spec.record_kind,
                    period_s=override.period_s if override.period_s is not None else spec.period_s,
                    initial_delay_s=(
                        override.initial_delay_s
                        if override.initial_delay_s is not None
                        else spec.initial_delay_s
                    ),
                    windowed=spec.windowed,
                    interval=override.interval or spec.interval,
                    limit=override.limit if override.limit is not None else spec.limit,
                    window_s=spec.window_s,
                )
            )
        return tuple(specs)

    def _build(self, doc: IngestorFile) -> IngestorConfig:
        s, p, r = doc.stream, doc.polling, doc.registry

        connection = ConnectionConfig(
            base_url=s.base_url,
            connect_timeout_s=s.connect_timeout_s,
            heartbeat_s=s.heartbeat_s,
            max_reconnect_attempts=s.max_reconnect_attempts,
            base_reconnect_delay_s=s.base_reconnect_delay_s,
            max_reconnect_delay_s=s.max_reconnect_delay_s,
            health_check_interval_s=s.health_check_interval_s,
            shutdown_timeout_s=s.shutdown_timeout_s,
            max_streams_per_connection=s.max_streams_per_connection,
        )
        polling = PollConfig(
            base_url=p.base_url,
            statistics=self._build_statistics(p.statistics),
            retry=RetryPolicy(
                max_attempts=p.retry.max_attempts,
                delay_s=p.retry.delay_s,
                backoff="fixed",
                max_delay_s=p.retry.delay_s,
            ),
            connect_timeout_s=p.connect_timeout_s,
            request_timeout_s=p.request_timeout_s,
            pool_shutdown_timeout_s=p.pool_shutdown_timeout_s,
        )
        registry = RegistryConfig(
            source=r.source,
            symbols=tuple(sym.upper() for sym in r.symbols),
            quote_asset=r.quote_asset,
            max_symbols=r.max_symbols,
            refresh_at=r.refresh_at,
        )
        return IngestorConfig(
            connection=connection,
            polling=polling,
            registry=registry,
            sink=doc.sink,
            topics=tuple(s.topics),
            require_symbols=r.require_symbols,
            rebuild_subscription_on_refresh=r.rebuild_subscription_on_refresh,
            enable_stream=s.enabled,
            enable_polling=p.enabled,
        )
