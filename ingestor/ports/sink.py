"""RecordSink Port Interface.

Contract: Persist decoded records. Single inserts for stream events and
symbol-only REST calls, batch inserts for REST endpoints returning lists.
Errors are raised to the caller, which logs them and carries on.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from ingestor.types.records import Record


class RecordSink(Protocol):
    async def insert_one(self, record: Record) -> None: ...

    async def insert_batch(self, records: Sequence[Record]) -> None:
        """Persist records in order. An empty batch is a no-op."""
        ...
