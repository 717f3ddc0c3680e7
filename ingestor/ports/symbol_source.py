"""SymbolSource Port Interface.

Contract: Return the instruments that should currently be tracked. The list
may be empty; callers must not crash on it.
"""

from __future__ import annotations

from typing import Protocol


class SymbolSource(Protocol):
    async def list_symbols(self) -> list[str]: ...
