from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from ingestor.types.aliases import Interval, Symbol, UnixMillis

# -------- Enums --------


class RecordKind(str, Enum):
    # Streamed
    TRADE = "trade"
    AGG_TRADE = "agg_trade"
    FUNDING_RATE = "funding_rate"
    KLINE = "kline"
    TICKER = "ticker"
    LIQUIDATION_ORDER = "liquidation_order"
    PARTIAL_BOOK_DEPTH = "partial_book_depth"
    # Polled
    OPEN_INTEREST = "open_interest"
    OPEN_INTEREST_STATISTICS = "open_interest_statistics"
    LONG_SHORT_RATIO = "long_short_ratio"
    TAKER_BUY_SELL_VOLUME = "taker_buy_sell_volume"


STREAMED_KINDS = frozenset(
    {
        RecordKind.TRADE,
        RecordKind.AGG_TRADE,
        RecordKind.FUNDING_RATE,
        RecordKind.KLINE,
        RecordKind.TICKER,
        RecordKind.LIQUIDATION_ORDER,
        RecordKind.PARTIAL_BOOK_DEPTH,
    }
)


class Record:
    """Mixin for persisted records. Subclasses set ``kind``."""

    __slots__ = ()

    kind: ClassVar[RecordKind]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)  # type: ignore[call-overload]
        data["kind"] = self.kind.value
        return data


# -------- Streamed records --------


@dataclass(frozen=True, slots=True)
class Trade(Record):
    """Individual futures trade (``<symbol>@trade``)."""

    kind: ClassVar[RecordKind] = RecordKind.TRADE

    event_time: UnixMillis
    symbol: Symbol
    trade_id: int
    price: Decimal
    quantity: Decimal
    trade_time: UnixMillis
    buyer_maker: bool


@dataclass(frozen=True, slots=True)
class AggregateTrade(Record):
    """Aggregated trade (``<symbol>@aggTrade``)."""

    kind: ClassVar[RecordKind] = RecordKind.AGG_TRADE

    event_time: UnixMillis
    symbol: Symbol
    agg_trade_id: int
    price: Decimal
    quantity: Decimal
    first_trade_id: int
    last_trade_id: int
    trade_time: UnixMillis
    buyer_maker: bool


@dataclass(frozen=True, slots=True)
class FundingRate(Record):
    """Mark price and funding rate update (``<symbol>@markPrice``)."""

    kind: ClassVar[RecordKind] = RecordKind.FUNDING_RATE

    symbol: Symbol
    funding_rate: Decimal
    funding_time: UnixMillis  # event time of the update
    mark_price: Decimal
    index_price: Optional[Decimal] = None
    next_funding_time: Optional[UnixMillis] = None


@dataclass(frozen=True, slots=True)
class Kline(Record):
    """
    Candlestick from the ``<symbol>@kline_<interval>`` stream.
    Only closed klines are persisted.
    """

    kind: ClassVar[RecordKind] = RecordKind.KLINE

    event_time: UnixMillis
    symbol: Symbol
    interval: Interval
    open_time: UnixMillis
    close_time: UnixMillis
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    quote_volume: Decimal
    trade_count: int
    is_closed: bool


@dataclass(frozen=True, slots=True)
class Ticker(Record):
    """24hr rolling window ticker (``<symbol>@ticker``)."""

    kind: ClassVar[RecordKind] = RecordKind.TICKER

    event_time: UnixMillis
    symbol: Symbol
    price_change: Decimal
    price_change_percent: Decimal
    weighted_avg_price: Decimal
    last_price: Decimal
    open_price: Decimal
    high_price: Decimal
    low_price: Decimal
    volume: Decimal
    quote_volume: Decimal


@dataclass(frozen=True, slots=True)
class LiquidationOrder(Record):
    """Forced liquidation order (``<symbol>@forceOrder``)."""

    kind: ClassVar[RecordKind] = RecordKind.LIQUIDATION_ORDER

    event_time: UnixMillis
    symbol: Symbol
    side: str  # BUY / SELL
    order_type: str
    time_in_force: str
    original_quantity: Decimal
    price: Decimal
    average_price: Decimal
    order_status: str
    last_filled_quantity: Decimal
    total_filled_quantity: Decimal
    trade_time: UnixMillis


@dataclass(frozen=True, slots=True)
class BookLevel:
    """Single price level in an order book."""

    price: Decimal
    quantity: Decimal


@dataclass(frozen=True, slots=True)
class PartialBookDepth(Record):
    """Top-N order book levels (``<symbol>@depth<N>@<speed>``)."""

    kind: ClassVar[RecordKind] = RecordKind.PARTIAL_BOOK_DEPTH

    event_time: UnixMillis
    transaction_time: UnixMillis
    symbol: Symbol
    first_update_id: int
    final_update_id: int
    previous_update_id: int
    bids: tuple[BookLevel, ...] = field(default_factory=tuple)  # best bid first
    asks: tuple[BookLevel, ...] = field(default_factory=tuple)  # best ask first

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None


# -------- Polled records --------


@dataclass(frozen=True, slots=True)
class OpenInterest(Record):
    kind: ClassVar[RecordKind] = RecordKind.OPEN_INTEREST

    symbol: Symbol
    open_interest: Decimal
    time: UnixMillis


@dataclass(frozen=True, slots=True)
class OpenInterestStatistics(Record):
    kind: ClassVar[RecordKind] = RecordKind.OPEN_INTEREST_STATISTICS

    symbol: Symbol
    sum_open_interest: Decimal
    sum_open_interest_value: Decimal
    timestamp: UnixMillis


@dataclass(frozen=True, slots=True)
class LongShortRatio(Record):
    kind: ClassVar[RecordKind] = RecordKind.LONG_SHORT_RATIO

    symbol: Symbol
    long_short_ratio: Decimal
    long_account: Decimal
    short_account: Decimal
    timestamp: UnixMillis


@dataclass(frozen=True, slots=True)
class TakerBuySellVolume(Record):
    kind: ClassVar[RecordKind] = RecordKind.TAKER_BUY_SELL_VOLUME

    symbol: Symbol
    buy_sell_ratio: Decimal
    buy_volume: Decimal
    sell_volume: Decimal
    timestamp: UnixMillis
