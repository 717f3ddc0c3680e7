"""
Unit tests for configuration dataclasses.
"""

import pytest

from ingestor.config.configs import (
    DEFAULT_STATISTICS,
    ConnectionConfig,
    IngestorConfig,
    PollConfig,
    RegistryConfig,
    RetryPolicy,
    StatisticSpec,
)
from ingestor.feed.errors import ConfigurationError
from ingestor.types.records import RecordKind


class TestRetryPolicy:
    def test_fixed_delay(self) -> None:
        policy = RetryPolicy(max_attempts=4, delay_s=5.0)

        assert [policy.delay_for(n) for n in range(4)] == [5.0, 5.0, 5.0, 5.0]

    def test_exponential_delay_is_capped(self) -> None:
        policy = RetryPolicy(max_attempts=10, delay_s=5.0, backoff="exponential", max_delay_s=30.0)

        assert [policy.delay_for(n) for n in range(5)] == [5.0, 10.0, 20.0, 30.0, 30.0]

    def test_invalid_values(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RetryPolicy(max_attempts=0)
        assert exc_info.value.field == "max_attempts"

        with pytest.raises(ConfigurationError):
            RetryPolicy(delay_s=10.0, max_delay_s=5.0)


class TestConnectionConfig:
    def test_defaults(self) -> None:
        config = ConnectionConfig()

        assert config.max_reconnect_attempts == 10
        assert config.base_reconnect_delay_s == 5.0
        assert config.max_reconnect_delay_s == 30.0
        assert config.health_check_interval_s == 60.0

    def test_reconnect_policy(self) -> None:
        policy = ConnectionConfig(max_reconnect_attempts=3).reconnect_policy()

        assert policy.max_attempts == 3
        assert policy.backoff == "exponential"

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ConfigurationError):
            ConnectionConfig(max_reconnect_attempts=0)


class TestPollConfig:
    def test_default_statistics(self) -> None:
        by_name = {spec.name: spec for spec in DEFAULT_STATISTICS}

        assert PollConfig().task_type_count == 4
        assert by_name["open_interest"].period_s == 10.0
        assert by_name["open_interest"].windowed is False
        assert by_name["taker_buy_sell_volume"].period_s == 25 * 60
        assert [s.initial_delay_s for s in DEFAULT_STATISTICS[:3]] == [5.0, 65.0, 125.0]

    def test_duplicate_statistic_names_rejected(self) -> None:
        spec = DEFAULT_STATISTICS[0]

        with pytest.raises(ConfigurationError):
            PollConfig(statistics=(spec, spec))

    def test_statistic_validation(self) -> None:
        with pytest.raises(ConfigurationError):
            StatisticSpec(
                name="open_interest",
                endpoint="fapi/v1/openInterest",
                record_kind=RecordKind.OPEN_INTEREST,
                period_s=10.0,
            )


class TestIngestorConfig:
    def test_static_source_requires_symbols(self) -> None:
        with pytest.raises(ConfigurationError):
            RegistryConfig(source="static")

    def test_needs_stream_or_polling(self) -> None:
        with pytest.raises(ConfigurationError):
            IngestorConfig(enable_stream=False, enable_polling=False)

    def test_needs_topics(self) -> None:
        with pytest.raises(ConfigurationError):
            IngestorConfig(topics=())
