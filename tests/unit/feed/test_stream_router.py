"""
Unit tests for the MessageRouter.
"""

from unittest.mock import AsyncMock

import orjson
import pytest

from ingestor.feed.handlers import build_default_handlers
from ingestor.feed.router import MessageRouter
from ingestor.feed.types import Envelope
from ingestor.types.records import Kline, RecordKind


def _kline_message(closed: bool) -> str:
    return orjson.dumps(
        {
            "stream": "btcusdt@kline_5m",
            "data": {
                "e": "kline",
                "E": 1672515782136,
                "s": "BTCUSDT",
                "k": {
                    "t": 1672515500000,
                    "T": 1672515799999,
                    "s": "BTCUSDT",
                    "i": "5m",
                    "o": "16800.00",
                    "c": "16850.50",
                    "h": "16860.00",
                    "l": "16790.00",
                    "v": "100.5",
                    "n": 100,
                    "x": closed,
                    "q": "1690000.00",
                },
            },
        }
    ).decode()


class TestTopicClassification:
    """Tests for the topic table."""

    @pytest.mark.parametrize(
        "topic,expected",
        [
            ("btcusdt@trade", RecordKind.TRADE),
            ("btcusdt@aggTrade", RecordKind.AGG_TRADE),
            ("btcusdt@markPrice", RecordKind.FUNDING_RATE),
            ("btcusdt@markPrice@1s", RecordKind.FUNDING_RATE),
            ("btcusdt@kline_1m", RecordKind.KLINE),
            ("btcusdt@ticker", RecordKind.TICKER),
            ("btcusdt@forceOrder", RecordKind.LIQUIDATION_ORDER),
            ("btcusdt@depth10@100ms", RecordKind.PARTIAL_BOOK_DEPTH),
        ],
    )
    def test_classify(self, topic: str, expected: RecordKind) -> None:
        assert MessageRouter.classify(topic) == expected

    def test_symbol_part_is_not_matched(self) -> None:
        # "trade" inside the symbol must not make a ticker look like a trade
        assert MessageRouter.classify("tradeusdt@ticker") == RecordKind.TICKER

    def test_unknown_topic(self) -> None:
        assert MessageRouter.classify("btcusdt@bookTicker") is None


class TestMessageRouter:
    """Tests for MessageRouter dispatch."""

    @pytest.fixture
    def router(self) -> MessageRouter:
        return MessageRouter()

    @pytest.mark.asyncio
    async def test_dispatch_routes_to_registered_handler(self, router: MessageRouter) -> None:
        received: list[Envelope] = []

        async def handler(envelope: Envelope) -> None:
            received.append(envelope)

        router.register_handler(RecordKind.TRADE, handler)

        routed = await router.dispatch('{"stream": "btcusdt@trade", "data": {"e": "trade"}}', recv_ts=42)

        assert routed is True
        assert len(received) == 1
        assert received[0].topic == "btcusdt@trade"
        assert received[0].symbol == "BTCUSDT"
        assert received[0].recv_ts == 42

    @pytest.mark.asyncio
    async def test_malformed_json_is_dropped(self, router: MessageRouter) -> None:
        routed = await router.dispatch("{not json")

        assert routed is False
        assert router.stats.parse_errors == 1
        assert router.stats.total_messages == 1

    @pytest.mark.asyncio
    async def test_missing_stream_or_data_is_dropped(self, router: MessageRouter) -> None:
        handler = AsyncMock()
        router.register_handler(RecordKind.TRADE, handler)

        assert await router.dispatch('{"result": null, "id": 1}') is False
        assert await router.dispatch('{"stream": "btcusdt@trade"}') is False
        assert await router.dispatch('{"data": {"e": "trade"}}') is False

        handler.assert_not_called()
        assert router.stats.dropped_messages == 3

    @pytest.mark.asyncio
    async def test_unknown_topic_is_dropped(self, router: MessageRouter) -> None:
        routed = await router.dispatch('{"stream": "btcusdt@bookTicker", "data": {}}')

        assert routed is False
        assert router.stats.unknown_topics == 1

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_later_messages(self, router: MessageRouter) -> None:
        calls: list[str] = []

        async def flaky(envelope: Envelope) -> None:
            calls.append(envelope.topic)
            if len(calls) == 1:
                raise RuntimeError("boom")

        router.register_handler(RecordKind.TICKER, flaky)

        await router.dispatch('{"stream": "btcusdt@ticker", "data": {}}')
        await router.dispatch('{"stream": "ethusdt@ticker", "data": {}}')

        assert calls == ["btcusdt@ticker", "ethusdt@ticker"]

    @pytest.mark.asyncio
    async def test_multiple_handlers_same_kind(self, router: MessageRouter) -> None:
        calls: list[str] = []

        async def handler1(envelope: Envelope) -> None:
            calls.append("handler1")

        async def handler2(envelope: Envelope) -> None:
            calls.append("handler2")

        router.register_handler(RecordKind.KLINE, handler1)
        router.register_handler(RecordKind.KLINE, handler2)

        await router.dispatch('{"stream": "btcusdt@kline_1m", "data": {}}')

        assert calls == ["handler1", "handler2"]
        assert router.get_handler_count(RecordKind.KLINE) == 2


class TestRouterWithSink:
    """End-to-end dispatch into a mocked sink."""

    @pytest.fixture
    def sink(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def router(self, sink: AsyncMock) -> MessageRouter:
        router = MessageRouter()
        for kind, handler in build_default_handlers(sink).items():
            router.register_handler(kind, handler.handle)
        return router

    @pytest.mark.asyncio
    async def test_open_kline_produces_no_sink_call(self, router: MessageRouter, sink: AsyncMock) -> None:
        await router.dispatch(_kline_message(closed=False))

        sink.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_closed_kline_produces_one_sink_call(self, router: MessageRouter, sink: AsyncMock) -> None:
        await router.dispatch(_kline_message(closed=True))

        sink.insert_one.assert_awaited_once()
        record = sink.insert_one.await_args.args[0]
        assert isinstance(record, Kline)
        assert record.interval == "5m"

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_contained(self, router: MessageRouter, sink: AsyncMock) -> None:
        await router.dispatch('{"stream": "btcusdt@trade", "data": {"p": "1"}}')
        await router.dispatch(
            '{"stream": "btcusdt@trade", "data": {"E": 1, "s": "BTCUSDT", "t": 7, '
            '"p": "1.5", "q": "2", "T": 1, "m": false}}'
        )

        sink.insert_one.assert_awaited_once()
