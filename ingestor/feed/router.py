"""
Message Router for the combined stream.

Frames raw WebSocket text into Envelopes and routes them to the handlers
registered for the record kind implied by the stream name.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

import orjson

from ingestor.feed.types import Envelope
from ingestor.types.records import RecordKind

logger = logging.getLogger(__name__)

EnvelopeHandler = Callable[[Envelope], Awaitable[None]]


@dataclass
class RouterStats:
    """Statistics for message routing."""

    total_messages: int = 0
    routed_messages: int = 0
    dropped_messages: int = 0
    parse_errors: int = 0
    unknown_topics: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)


class MessageRouter:
    """
    Routes combined-stream messages to handlers.

    Binance combined stream format:
    {
        "stream": "btcusdt@kline_1m",
        "data": { ... kline data ... }
    }

    The stream name (part after the first '@') is matched against TOPIC_TABLE
    in order; the first entry it contains wins. Unmatched topics are logged
    and dropped.
    """

    # aggTrade precedes trade
    TOPIC_TABLE: tuple[tuple[str, RecordKind], ...] = (
        ("aggTrade", RecordKind.AGG_TRADE),
        ("trade", RecordKind.TRADE),
        ("markPrice", RecordKind.FUNDING_RATE),
        ("kline_", RecordKind.KLINE),
        ("ticker", RecordKind.TICKER),
        ("forceOrder", RecordKind.LIQUIDATION_ORDER),
        ("depth", RecordKind.PARTIAL_BOOK_DEPTH),
    )

    def __init__(self, name: str = "router") -> None:
        self._name = name
        self._handlers: dict[RecordKind, list[EnvelopeHandler]] = {}
        self._stats = RouterStats()

    @property
    def stats(self) -> RouterStats:
        """Get routing statistics."""
        return self._stats

    def register_handler(self, kind: RecordKind, handler: EnvelopeHandler) -> None:
        """
        Register a handler for a record kind.

        Multiple handlers can be registered for the same kind.
        They will be called in registration order.
        """
        self._handlers.setdefault(kind, []).append(handler)
        logger.debug(f"[{self._name}] Registered handler for {kind.value}")

    def get_handler_count(self, kind: RecordKind) -> int:
        return len(self._handlers.get(kind, []))

    @classmethod
    def classify(cls, topic: str) -> Optional[RecordKind]:
        """Record kind for a topic such as ``btcusdt@depth10@100ms``, or None."""
        stream_name = topic.split("@", 1)[1] if "@" in topic else topic
        for needle, kind in cls.TOPIC_TABLE:
            if needle in stream_name:
                return kind
        return None

    def decode_envelope(self, raw: Union[str, bytes], recv_ts: Optional[int] = None) -> Optional[Envelope]:
        """
        Parse raw text into an Envelope.

        Returns None (after logging) for undecodable JSON or a top-level
        shape without ``stream`` and ``data``.
        """
        if recv_ts is None:
            recv_ts = int(time.time() * 1000)

        try:
            message = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            self._stats.parse_errors += 1
            logger.warning(f"[{self._name}] Dropping undecodable message: {e} raw={raw[:200]!r}")
            return None

        if not isinstance(message, dict):
            self._stats.parse_errors += 1
            logger.warning(f"[{self._name}] Dropping non-object message: {type(message).__name__}")
            return None

        stream = message.get("stream")
        data = message.get("data")
        if not isinstance(stream, str) or not stream or not isinstance(data, dict):
            # Subscription acks ({"result": null, "id": 1}) land here too
            self._stats.dropped_messages += 1
            logger.warning(
                f"[{self._name}] Dropping message without stream/data: keys={list(message.keys())[:5]}"
            )
            return None

        return Envelope(topic=stream, payload=data, recv_ts=recv_ts)

    async def route(self, envelope: Envelope) -> bool:
        """
        Route an envelope to the handlers of its record kind.

        Returns True if at least one handler received it.
        """
        kind = self.classify(envelope.topic)
        if kind is None:
            self._stats.unknown_topics += 1
            self._stats.dropped_messages += 1
            logger.warning(f"[{self._name}] Unknown topic, dropping: {envelope.topic}")
            return False

        self._stats.by_kind[kind.value] = self._stats.by_kind.get(kind.value, 0) + 1

        handlers = self._handlers.get(kind, [])
        if not handlers:
            logger.debug(f"[{self._name}] No handler for {kind.value}")
            self._stats.dropped_messages += 1
            return False

        self._stats.routed_messages += 1
        for handler in handlers:
            try:
                await handler(envelope)
            except Exception as e:
                logger.error(f"[{self._name}] Handler error for {kind.value}: {e}", exc_info=True)
        return True

    async def dispatch(self, raw: Union[str, bytes], recv_ts: Optional[int] = None) -> bool:
        """Decode and route one raw message. Never raises for bad input."""
        self._stats.total_messages += 1
        envelope = self.decode_envelope(raw, recv_ts)
        if envelope is None:
            return False
        return await self.route(envelope)

    def reset_stats(self) -> None:
        """Reset routing statistics."""
        self._stats = RouterStats()
