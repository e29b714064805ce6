from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Import run result models.

- ImportState: lifecycle of one importer instance
- ImportOutput: classification -> affected records, built once per run
- ImportSummary: figures rendered into the SUMMARY line
"""

__all__ = [
    "ImportState",
    "ImportOutput",
    "ImportSummary",
]


class ImportState(str, Enum):
    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PREVIEWED = "previewed"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportState.PREVIEWED, ImportState.COMMITTED, ImportState.FAILED)


class ImportOutput:
    """Classification map (created / updated / accepted / ...) -> records.

    The set of classifications is fixed at construction so every bucket shows
    up in previews even when empty.
    """

    def __init__(self, classifications: Iterable[str]) -> None:
        self._buckets: dict[str, list[Any]] = {name: [] for name in classifications}

    @property
    def classifications(self) -> list[str]:
        return list(self._buckets)

    def add(self, classification: str, record: Any) -> None:
        if classification not in self._buckets:
            raise KeyError(f"unknown classification '{classification}' (valid: {', '.join(self._buckets)})")
        self._buckets[classification].append(record)

    def __getitem__(self, classification: str) -> list[Any]:
        return self._buckets[classification]

    def __iter__(self) -> Iterator[str]:
        return iter(self._buckets)

    def items(self):
        return self._buckets.items()

    def counts(self) -> dict[str, int]:
        return {name: len(records) for name, records in self._buckets.items()}

    def total(self) -> int:
        return sum(len(records) for records in self._buckets.values())

    def keys(self) -> set[tuple[str, str]]:
        """(classification, natural_key) pairs, used to compare preview and commit runs."""
        return {
            (name, record.natural_key)
            for name, records in self._buckets.items()
            for record in records
        }

    def natural_keys(self, classification: str) -> list[str]:
        return [record.natural_key for record in self._buckets[classification]]

    def __repr__(self) -> str:  # pragma: no cover
        return f"ImportOutput({self.counts()})"


@dataclass(frozen=True)
class ImportSummary:
    importer: str
    mode: str  # preview / commit
    rows_processed: int  # 空行スキップ後の処理行数
    counts: dict[str, int] = field(default_factory=dict)
    errors: int = 0
    info: int = 0
    elapsed_seconds: float = 0.0

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())
