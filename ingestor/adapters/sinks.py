"""Record sink adapters.

JsonlSink appends one JSON object per line to ``<base_dir>/<kind>.jsonl``;
MemorySink keeps records in process (dry runs and tests).
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Sequence

import orjson

from ingestor.ports.sink import RecordSink
from ingestor.types.records import Record, RecordKind

_LOGGER = logging.getLogger(__name__)


def _default(obj: Any) -> Any:
    # Decimal -> exact string representation
    return str(obj)


class JsonlSink(RecordSink):
    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir if isinstance(base_dir, Path) else Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        # One write at a time keeps lines in call order
        self._write_lock = asyncio.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, kind: RecordKind) -> Path:
        return self._base_dir / f"{kind.value}.jsonl"

    async def insert_one(self, record: Record) -> None:
        await self._write(record.kind, [self._encode(record)])

    async def insert_batch(self, records: Sequence[Record]) -> None:
        if not records:
            return
        by_kind: dict[RecordKind, list[bytes]] = defaultdict(list)
        for record in records:
            by_kind[record.kind].append(self._encode(record))
        for kind, lines in by_kind.items():
            await self._write(kind, lines)

    @staticmethod
    def _encode(record: Record) -> bytes:
        return orjson.dumps(record.to_dict(), default=_default, option=orjson.OPT_SORT_KEYS)

    async def _write(self, kind: RecordKind, lines: list[bytes]) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._write_lines, kind, lines)

    def _write_lines(self, kind: RecordKind, lines: list[bytes]) -> None:
        with self.path_for(kind).open("ab") as handle:
            for line in lines:
                handle.write(line + b"\n")


class MemorySink(RecordSink):
    def __init__(self) -> None:
        self._records: list[Record] = []

    @property
    def records(self) -> list[Record]:
        return list(self._records)

    def by_kind(self, kind: RecordKind) -> list[Record]:
        return [r for r in self._records if r.kind == kind]

    def count(self) -> int:
        return len(self._records)

    async def insert_one(self, record: Record) -> None:
        self._records.append(record)

    async def insert_batch(self, records: Sequence[Record]) -> None:
        self._records.extend(records)


def build_sink(kind: str, base_dir: Path) -> RecordSink:
    """Construct the sink named by the ``[sink]`` config section."""
    if kind == "memory":
        return MemorySink()
    _LOGGER.info(f"[sink] Writing JSON lines under {base_dir}")
    return JsonlSink(base_dir)
