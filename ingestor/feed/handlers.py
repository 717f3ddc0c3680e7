"""
Message handlers for the combined stream.

Handlers decode Envelope payloads into record dataclasses and forward them
to a callback (normally the sink's ``insert_one``):
- RecordHandler: generic decode-and-forward for a single record kind
- KlineHandler: forwards only closed klines
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from ingestor.feed import decoders
from ingestor.feed.errors import MessageParseError
from ingestor.feed.types import Envelope
from ingestor.ports.sink import RecordSink
from ingestor.types.aliases import Payload
from ingestor.types.records import Kline, Record, RecordKind

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Record)


@dataclass
class HandlerStats:
    """Statistics for a message handler."""

    messages_received: int = 0
    messages_processed: int = 0
    messages_skipped: int = 0
    parse_errors: int = 0
    sink_errors: int = 0
    by_symbol: dict[str, int] = field(default_factory=dict)


class BaseHandler(ABC, Generic[T]):
    """
    Abstract base class for message handlers.

    Each handler:
    1. Receives an Envelope from the router
    2. Decodes the payload into a record (or None to skip it)
    3. Calls the registered callback with the record

    Neither a decode failure nor a callback failure escapes ``handle``.
    """

    def __init__(
        self,
        on_event: Callable[[T], Awaitable[None]],
        name: str = "handler",
    ) -> None:
        self._on_event = on_event
        self._name = name
        self._stats = HandlerStats()

    @property
    def name(self) -> str:
        return self._name

    @property
    def stats(self) -> HandlerStats:
        """Get handler statistics."""
        return self._stats

    async def handle(self, envelope: Envelope) -> None:
        self._stats.messages_received += 1

        try:
            record = self._parse(envelope)
        except MessageParseError as e:
            self._stats.parse_errors += 1
            logger.warning(f"[{self._name}] Parse error on {envelope.topic}: {e} payload={envelope.payload}")
            return
        except Exception as e:
            self._stats.parse_errors += 1
            logger.error(
                f"[{self._name}] Unexpected decode error on {envelope.topic}: {e} payload={envelope.payload}",
                exc_info=True,
            )
            return

        if record is None:
            self._stats.messages_skipped += 1
            return

        symbol = getattr(record, "symbol", None)
        if symbol:
            self._stats.by_symbol[symbol] = self._stats.by_symbol.get(symbol, 0) + 1

        try:
            await self._on_event(record)
        except Exception as e:
            self._stats.sink_errors += 1
            logger.error(f"[{self._name}] Sink error for {record.kind.value}: {e}", exc_info=True)
            return

        self._stats.messages_processed += 1

    @abstractmethod
    def _parse(self, envelope: Envelope) -> Optional[T]:
        """Parse the envelope into a record. Return None to skip."""
        ...

    def reset_stats(self) -> None:
        """Reset handler statistics."""
        self._stats = HandlerStats()


class RecordHandler(BaseHandler[T]):
    """Decode with ``decode`` and forward every record."""

    def __init__(
        self,
        decode: Callable[[Payload], T],
        on_event: Callable[[T], Awaitable[None]],
        name: str,
    ) -> None:
        super().__init__(on_event, name=name)
        self._decode = decode

    def _parse(self, envelope: Envelope) -> Optional[T]:
        return self._decode(envelope.payload)


class KlineHandler(BaseHandler[Kline]):
    """
    Handler for ``<symbol>@kline_<interval>`` messages.

    Binance pushes the running candle on every trade; only the final update
    (``k.x == true``) is forwarded.
    """

    def __init__(
        self,
        on_event: Callable[[Kline], Awaitable[None]],
        emit_partial: bool = False,
    ) -> None:
        super().__init__(on_event, name="KlineHandler")
        self._emit_partial = emit_partial

    def _parse(self, envelope: Envelope) -> Optional[Kline]:
        kline = decoders.decode_kline(envelope.payload)
        if not kline.is_closed and not self._emit_partial:
            return None
        return kline


def build_default_handlers(sink: RecordSink) -> dict[RecordKind, BaseHandler]:
    """One handler per streamed record kind, all forwarding to ``sink.insert_one``."""
    forward = sink.insert_one
    return {
        RecordKind.AGG_TRADE: RecordHandler(decoders.decode_agg_trade, forward, "AggTradeHandler"),
        RecordKind.TRADE: RecordHandler(decoders.decode_trade, forward, "TradeHandler"),
        RecordKind.FUNDING_RATE: RecordHandler(decoders.decode_funding_rate, forward, "FundingRateHandler"),
        RecordKind.KLINE: KlineHandler(forward),
        RecordKind.TICKER: RecordHandler(decoders.decode_ticker, forward, "TickerHandler"),
        RecordKind.LIQUIDATION_ORDER: RecordHandler(
            decoders.decode_liquidation_order, forward, "LiquidationOrderHandler"
        ),
        RecordKind.PARTIAL_BOOK_DEPTH: RecordHandler(
            decoders.decode_partial_book_depth, forward, "PartialBookDepthHandler"
        ),
    }
