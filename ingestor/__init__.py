"""
Binance USDⓈ-M futures feed ingestor.

Streams market data over the combined WebSocket stream and polls REST
statistics for a daily-refreshed symbol set, persisting every decoded
record to a sink.
"""

__version__ = "0.1.0"
