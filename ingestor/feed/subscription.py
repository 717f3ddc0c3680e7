"""
Combined-stream subscription targets.

    wss://fstream.binance.com/stream?streams=btcusdt@trade/btcusdt@aggTrade/...
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

from ingestor.config.configs import DEFAULT_SYMBOL, STREAM_TOPICS
from ingestor.feed.errors import ConfigurationError

logger = logging.getLogger(__name__)


def build_stream_names(symbols: Iterable[str], topics: Iterable[str] = STREAM_TOPICS) -> list[str]:
    """``<symbol>@<topic>`` for every symbol (lower-cased) and topic, symbol-major."""
    topics = tuple(topics)
    names = []
    for symbol in symbols:
        s = symbol.strip().lower()
        if not s:
            continue
        names.extend(f"{s}@{t}" for t in topics)
    return names


def build_subscription_url(
    base_url: str,
    symbols: Iterable[str],
    topics: Iterable[str] = STREAM_TOPICS,
    max_streams: Optional[int] = None,
) -> str:
    """
    Build the combined-stream URL for ``symbols``.

    An empty symbol list falls back to DEFAULT_SYMBOL.
    """
    topics = tuple(topics)
    names = build_stream_names(symbols, topics)
    if not names:
        logger.warning(f"[subscription] No symbols available, falling back to {DEFAULT_SYMBOL}")
        names = build_stream_names([DEFAULT_SYMBOL], topics)

    if max_streams is not None and len(names) > max_streams:
        logger.warning(
            f"[subscription] {len(names)} streams exceed the per-connection limit of {max_streams}"
        )

    url = f"{base_url.rstrip('/')}/stream?streams={'/'.join(names)}"
    validate_stream_url(url)
    return url


def validate_stream_url(url: str) -> None:
    """
    Raises:
        ConfigurationError: If the scheme is not ws/wss or there is no host
    """
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise ConfigurationError(f"Malformed stream URL: {e}", field="target", value=url) from e

    if parsed.scheme not in ("ws", "wss"):
        raise ConfigurationError(
            "Stream URL must use ws:// or wss://",
            field="target",
            value=url,
        )
    if not parsed.hostname:
        raise ConfigurationError("Stream URL has no host", field="target", value=url)
