"""
CLI entrypoint to run the feed ingestor.

Usage: ingest --config configs/ingestor.toml --symbols BTCUSDT ETHUSDT

Options:
  --config FILE         TOML config file; built-in defaults if omitted
  --symbols TEXT ...    Track exactly these symbols (static source)
  --sink-dir DIR        Directory for JSON-lines output (overrides config)
  --dry-run             Keep records in memory instead of writing files
  --log-level LEVEL     DEBUG, INFO, WARNING or ERROR (default: INFO)

Exit status: 0 on clean stop, 1 when stream reconnection is exhausted,
2 on configuration errors.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

from ingestor.adapters.sinks import MemorySink
from ingestor.config.config_loader import ConfigLoader
from ingestor.config.configs import IngestorConfig
from ingestor.feed.errors import ConfigurationError, IngestError, ReconnectExhaustedError
from ingestor.feed.supervisor import IngestionSupervisor

logger = logging.getLogger("ingestor.cli")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ingest", description="Ingest Binance futures market data")
    parser.add_argument(
        "--config",
        help="TOML config file. Built-in defaults (plus INGESTOR_* env overrides) if omitted.",
    )
    parser.add_argument(
        "--symbols",
        "--symbol",
        dest="symbols",
        nargs="+",
        help="Space-separated symbols, e.g., BTCUSDT ETHUSDT; replaces the configured symbol source.",
    )
    parser.add_argument(
        "--sink-dir",
        help="Directory for <kind>.jsonl output files; overrides [sink].base_dir.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Keep records in memory (nothing is written).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> IngestorConfig:
    """Load the config file (if any) and apply command-line overrides."""
    config = ConfigLoader().load(args.config)

    if args.symbols:
        registry = replace(
            config.registry,
            source="static",
            symbols=tuple(s.upper() for s in args.symbols),
        )
        config = replace(config, registry=registry)

    if args.sink_dir or args.dry_run:
        sink = config.sink.model_copy(
            update={
                "kind": "memory" if args.dry_run else config.sink.kind,
                "base_dir": Path(args.sink_dir) if args.sink_dir else config.sink.base_dir,
            }
        )
        config = replace(config, sink=sink)

    return config


async def _run(config: IngestorConfig) -> int:
    sink = MemorySink() if config.sink.kind == "memory" else None
    supervisor = IngestionSupervisor.from_config(config, sink=sink)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(supervisor.stop()))
        except NotImplementedError:
            # Windows: KeyboardInterrupt is handled in main()
            pass

    try:
        await supervisor.run()
    except ReconnectExhaustedError as e:
        logger.critical(f"Stream reconnection exhausted, manual restart required: {e}")
        return EXIT_FATAL
    finally:
        await supervisor.stop()
        if isinstance(sink, MemorySink):
            logger.info(f"Dry run collected {sink.count()} records")

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG
    except FileNotFoundError as e:
        logger.error(str(e))
        return EXIT_CONFIG

    try:
        return asyncio.run(_run(config))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG
    except IngestError as e:
        logger.critical(f"Ingestion failed: {e}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
