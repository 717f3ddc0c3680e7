"""
Payload decoders.

Turn Binance JSON payloads (stream ``data`` objects and REST rows) into
record dataclasses. Every decoder raises MessageParseError on a missing or
malformed field; callers decide whether to log or retry.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ingestor.feed.errors import MessageParseError
from ingestor.types.aliases import Payload
from ingestor.types.records import (
    AggregateTrade,
    BookLevel,
    FundingRate,
    Kline,
    LiquidationOrder,
    LongShortRatio,
    OpenInterest,
    OpenInterestStatistics,
    PartialBookDepth,
    TakerBuySellVolume,
    Ticker,
    Trade,
)

_MISSING = object()


def _require(data: Payload, key: str, expected_type: str) -> Any:
    value = data.get(key, _MISSING)
    if value is _MISSING or value is None:
        raise MessageParseError(
            f"Missing required {expected_type} field: {key!r}",
            expected_type=expected_type,
        )
    return value


def _safe_decimal(value: Any, field_name: str) -> Decimal:
    """Safely convert a value to Decimal (strings are parsed exactly)."""
    try:
        if isinstance(value, bool):
            raise TypeError("bool is not a number")
        if isinstance(value, float):
            return Decimal(str(value))
        result = Decimal(value)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise MessageParseError(
            f"Invalid decimal value for {field_name}: {value}",
            expected_type="decimal",
        ) from e
    if not result.is_finite():
        raise MessageParseError(
            f"Non-finite decimal value for {field_name}: {value}",
            expected_type="decimal",
        )
    return result


def _safe_int(value: Any, field_name: str) -> int:
    """Safely convert a value to int."""
    try:
        if isinstance(value, bool):
            raise TypeError("bool is not an integer")
        return int(value)
    except (ValueError, TypeError) as e:
        raise MessageParseError(
            f"Invalid integer value for {field_name}: {value}",
            expected_type="int",
        ) from e


def _safe_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise MessageParseError(
        f"Invalid boolean value for {field_name}: {value}",
        expected_type="bool",
    )


def _dec(data: Payload, key: str, expected_type: str) -> Decimal:
    return _safe_decimal(_require(data, key, expected_type), f"{expected_type}.{key}")


def _int(data: Payload, key: str, expected_type: str) -> int:
    return _safe_int(_require(data, key, expected_type), f"{expected_type}.{key}")


def _symbol(data: Payload, key: str, expected_type: str) -> str:
    return str(_require(data, key, expected_type)).upper()


def _levels(raw: Any, side: str) -> tuple[BookLevel, ...]:
    if not isinstance(raw, list):
        raise MessageParseError(f"Expected a list of {side} levels", expected_type="depth")
    levels = []
    for level in raw:
        if not isinstance(level, (list, tuple)) or len(level) < 2:
            raise MessageParseError(f"Invalid {side} level: {level}", expected_type="depth")
        levels.append(
            BookLevel(
                price=_safe_decimal(level[0], f"{side}_price"),
                quantity=_safe_decimal(level[1], f"{side}_qty"),
            )
        )
    return tuple(levels)


# -------- Stream payloads --------


def decode_trade(data: Payload) -> Trade:
    """
    Binance ``<symbol>@trade`` payload:
    {"e": "trade", "E": 123, "s": "BTCUSDT", "t": 1, "p": "0.001",
     "q": "100", "T": 123, "m": true}
    """
    return Trade(
        event_time=_int(data, "E", "trade"),
        symbol=_symbol(data, "s", "trade"),
        trade_id=_int(data, "t", "trade"),
        price=_dec(data, "p", "trade"),
        quantity=_dec(data, "q", "trade"),
        trade_time=_int(data, "T", "trade"),
        buyer_maker=_safe_bool(_require(data, "m", "trade"), "trade.m"),
    )


def decode_agg_trade(data: Payload) -> AggregateTrade:
    return AggregateTrade(
        event_time=_int(data, "E", "aggTrade"),
        symbol=_symbol(data, "s", "aggTrade"),
        agg_trade_id=_int(data, "a", "aggTrade"),
        price=_dec(data, "p", "aggTrade"),
        quantity=_dec(data, "q", "aggTrade"),
        first_trade_id=_safe_int(data.get("f", 0), "aggTrade.f"),
        last_trade_id=_safe_int(data.get("l", 0), "aggTrade.l"),
        trade_time=_int(data, "T", "aggTrade"),
        buyer_maker=_safe_bool(_require(data, "m", "aggTrade"), "aggTrade.m"),
    )


def decode_funding_rate(data: Payload) -> FundingRate:
    """
    Binance ``<symbol>@markPrice`` payload:
    {"e": "markPriceUpdate", "E": 123, "s": "BTCUSDT", "p": "11794.15",
     "i": "11784.62", "P": "11784.25", "r": "0.00038167", "T": 1562306400000}
    """
    index_price: Optional[Decimal] = None
    if data.get("i") is not None:
        index_price = _safe_decimal(data["i"], "markPrice.i")
    next_funding_time: Optional[int] = None
    if data.get("T") is not None:
        next_funding_time = _safe_int(data["T"], "markPrice.T")

    return FundingRate(
        symbol=_symbol(data, "s", "markPrice"),
        funding_rate=_dec(data, "r", "markPrice"),
        funding_time=_int(data, "E", "markPrice"),
        mark_price=_dec(data, "p", "markPrice"),
        index_price=index_price,
        next_funding_time=next_funding_time,
    )


def decode_kline(data: Payload) -> Kline:
    """
    Binance ``<symbol>@kline_<interval>`` payload; candle fields live under ``k``:
    {"e": "kline", "E": 123, "s": "BTCUSDT",
     "k": {"t": 1, "T": 2, "s": "BTCUSDT", "i": "1m", "o": "0.0010",
           "c": "0.0020", "h": "0.0025", "l": "0.0015", "v": "1000",
           "n": 100, "x": false, "q": "1.0000", ...}}
    """
    k = _require(data, "k", "kline")
    if not isinstance(k, dict):
        raise MessageParseError("kline 'k' must be an object", expected_type="kline")

    return Kline(
        event_time=_int(data, "E", "kline"),
        symbol=_symbol(k if "s" in k else data, "s", "kline"),
        interval=str(_require(k, "i", "kline")),
        open_time=_int(k, "t", "kline"),
        close_time=_int(k, "T", "kline"),
        open=_dec(k, "o", "kline"),
        high=_dec(k, "h", "kline"),
        low=_dec(k, "l", "kline"),
        close=_dec(k, "c", "kline"),
        volume=_dec(k, "v", "kline"),
        quote_volume=_safe_decimal(k.get("q", "0"), "kline.q"),
        trade_count=_safe_int(k.get("n", 0), "kline.n"),
        is_closed=_safe_bool(_require(k, "x", "kline"), "kline.x"),
    )


def decode_ticker(data: Payload) -> Ticker:
    return Ticker(
        event_time=_int(data, "E", "ticker"),
        symbol=_symbol(data, "s", "ticker"),
        price_change=_dec(data, "p", "ticker"),
        price_change_percent=_dec(data, "P", "ticker"),
        weighted_avg_price=_dec(data, "w", "ticker"),
        last_price=_dec(data, "c", "ticker"),
        open_price=_dec(data, "o", "ticker"),
        high_price=_dec(data, "h", "ticker"),
        low_price=_dec(data, "l", "ticker"),
        volume=_dec(data, "v", "ticker"),
        quote_volume=_dec(data, "q", "ticker"),
    )


def decode_liquidation_order(data: Payload) -> LiquidationOrder:
    """
    Binance ``<symbol>@forceOrder`` payload; order fields live under ``o``:
    {"e": "forceOrder", "E": 123,
     "o": {"s": "BTCUSDT", "S": "SELL", "o": "LIMIT", "f": "IOC",
           "q": "0.014", "p": "9910", "ap": "9910", "X": "FILLED",
           "l": "0.014", "z": "0.014", "T": 1568014460893}}
    """
    o = _require(data, "o", "forceOrder")
    if not isinstance(o, dict):
        raise MessageParseError("forceOrder 'o' must be an object", expected_type="forceOrder")

    return LiquidationOrder(
        event_time=_int(data, "E", "forceOrder"),
        symbol=_symbol(o, "s", "forceOrder"),
        side=str(_require(o, "S", "forceOrder")),
        order_type=str(_require(o, "o", "forceOrder")),
        time_in_force=str(_require(o, "f", "forceOrder")),
        original_quantity=_dec(o, "q", "forceOrder"),
        price=_dec(o, "p", "forceOrder"),
        average_price=_dec(o, "ap", "forceOrder"),
        order_status=str(_require(o, "X", "forceOrder")),
        last_filled_quantity=_dec(o, "l", "forceOrder"),
        total_filled_quantity=_dec(o, "z", "forceOrder"),
        trade_time=_int(o, "T", "forceOrder"),
    )


def decode_partial_book_depth(data: Payload) -> PartialBookDepth:
    """
    Binance ``<symbol>@depth<levels>@<speed>`` payload:
    {"e": "depthUpdate", "E": 123, "T": 123, "s": "BTCUSDT", "U": 157,
     "u": 160, "pu": 149, "b": [["7403.89", "0.002"]], "a": [["7405.96", "3.340"]]}
    """
    return PartialBookDepth(
        event_time=_int(data, "E", "depth"),
        transaction_time=_int(data, "T", "depth"),
        symbol=_symbol(data, "s", "depth"),
        first_update_id=_int(data, "U", "depth"),
        final_update_id=_int(data, "u", "depth"),
        previous_update_id=_int(data, "pu", "depth"),
        bids=_levels(data.get("b", []), "bid"),
        asks=_levels(data.get("a", []), "ask"),
    )


# -------- REST rows --------


def decode_open_interest(data: Payload) -> OpenInterest:
    """``GET /fapi/v1/openInterest``: {"openInterest": "10659.509", "symbol": "BTCUSDT", "time": 1589437530011}"""
    return OpenInterest(
        symbol=_symbol(data, "symbol", "openInterest"),
        open_interest=_dec(data, "openInterest", "openInterest"),
        time=_int(data, "time", "openInterest"),
    )


def decode_open_interest_statistics(data: Payload) -> OpenInterestStatistics:
    return OpenInterestStatistics(
        symbol=_symbol(data, "symbol", "openInterestHist"),
        sum_open_interest=_dec(data, "sumOpenInterest", "openInterestHist"),
        sum_open_interest_value=_dec(data, "sumOpenInterestValue", "openInterestHist"),
        timestamp=_int(data, "timestamp", "openInterestHist"),
    )


def decode_long_short_ratio(data: Payload) -> LongShortRatio:
    return LongShortRatio(
        symbol=_symbol(data, "symbol", "longShortRatio"),
        long_short_ratio=_dec(data, "longShortRatio", "longShortRatio"),
        long_account=_dec(data, "longAccount", "longShortRatio"),
        short_account=_dec(data, "shortAccount", "longShortRatio"),
        timestamp=_int(data, "timestamp", "longShortRatio"),
    )


def decode_taker_buy_sell_volume(data: Payload, symbol: str) -> TakerBuySellVolume:
    """Rows of ``takerlongshortRatio`` carry no symbol; it comes from the request."""
    return TakerBuySellVolume(
        symbol=symbol.upper(),
        buy_sell_ratio=_dec(data, "buySellRatio", "takerlongshortRatio"),
        buy_volume=_dec(data, "buyVol", "takerlongshortRatio"),
        sell_volume=_dec(data, "sellVol", "takerlongshortRatio"),
        timestamp=_int(data, "timestamp", "takerlongshortRatio"),
    )
