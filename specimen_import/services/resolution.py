from __future__ import annotations

from collections.abc import Callable
from typing import Any

"""Entity resolution cache.

One cache per entity kind per import run. The first resolve() of a key calls
the lookup and remembers the answer, including "not found", so later rows
referencing the same key never query again.

Claims implement duplicate-row detection: a row claims a key once it has been
accepted for that key; a later claim of the same key reports the earlier row
and the caller attaches the duplicate error to the later row.
"""

__all__ = [
    "ResolutionCache",
]

_MISSING = object()


class ResolutionCache:
    def __init__(self, kind: str, lookup: Callable[[str], Any]) -> None:
        self.kind = kind
        self._lookup = lookup
        self._entries: dict[str, Any] = {}
        self._claims: dict[str, int] = {}
        self.lookup_count = 0

    def resolve(self, key: str | None) -> Any:
        """Resolved record for ``key`` or None (blank keys are never looked up)."""
        if not key:
            return None
        if key not in self._entries:
            self.lookup_count += 1
            record = self._lookup(key)
            self._entries[key] = _MISSING if record is None else record
        entry = self._entries[key]
        return None if entry is _MISSING else entry

    def put(self, key: str, record: Any) -> None:
        """Register a record created during this run (e.g. a new well plate)."""
        self._entries[key] = record

    def claim(self, key: str, row_number: int) -> int | None:
        """Claim ``key`` for ``row_number``.

        Returns the row that claimed the key first, or None when this is the
        first claim (in which case the claim is recorded).
        """
        earlier = self._claims.get(key)
        if earlier is not None:
            return earlier
        self._claims[key] = row_number
        return None

    def __contains__(self, key: object) -> bool:
        return key in self._entries and self._entries[key] is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)
