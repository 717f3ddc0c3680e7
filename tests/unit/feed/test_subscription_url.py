"""
Unit tests for subscription URL building.
"""

import pytest

from ingestor.feed.errors import ConfigurationError
from ingestor.feed.subscription import build_stream_names, build_subscription_url, validate_stream_url


class TestBuildSubscriptionUrl:
    """Tests for combined-stream targets."""

    def test_symbol_major_order(self) -> None:
        names = build_stream_names(["BTCUSDT", "ETHUSDT"], ("trade", "kline_1m"))

        assert names == ["btcusdt@trade", "btcusdt@kline_1m", "ethusdt@trade", "ethusdt@kline_1m"]

    def test_url_shape(self) -> None:
        url = build_subscription_url("wss://fstream.binance.com/", ["BTCUSDT"], ("trade", "aggTrade"))

        assert url == "wss://fstream.binance.com/stream?streams=btcusdt@trade/btcusdt@aggTrade"

    def test_empty_symbols_fall_back_to_btcusdt(self) -> None:
        url = build_subscription_url("wss://fstream.binance.com", [], ("trade",))

        assert url.endswith("streams=btcusdt@trade")

    def test_blank_symbols_are_skipped(self) -> None:
        assert build_stream_names(["", "  "], ("trade",)) == []

    def test_over_limit_still_builds(self) -> None:
        url = build_subscription_url("wss://fstream.binance.com", ["BTCUSDT", "ETHUSDT"], ("trade",), max_streams=1)

        assert url.count("@trade") == 2


class TestValidateStreamUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://fstream.binance.com/stream",
            "fstream.binance.com/stream",
            "wss:///stream?streams=btcusdt@trade",
            "",
        ],
    )
    def test_rejects(self, url: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_stream_url(url)

        assert exc_info.value.field == "target"

    def test_accepts_ws_and_wss(self) -> None:
        validate_stream_url("ws://localhost:9000/stream?streams=btcusdt@trade")
        validate_stream_url("wss://fstream.binance.com/stream?streams=btcusdt@trade")
