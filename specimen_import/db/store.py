from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, TypeVar

from specimen_import.models.domain import Record

"""Record store interface and the in-memory implementation.

Stores hand out detached copies of records: mutating a record returned by
get()/find_by() changes nothing until it is passed to save() inside a
begin()/commit() pair.

Optimistic locking: every stored record carries a version (>= 1). A record
read at version N may only be saved while the stored copy is still at N; a new
record (version 0) may only be saved when its key is free. Anything else raises
StaleRecordError and the caller rolls the transaction back.
"""

__all__ = [
    "StoreError",
    "StaleRecordError",
    "RecordStore",
    "MemoryStore",
]

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


class StoreError(Exception):
    """Persistence failure (connection, SQL, transaction misuse)."""


class StaleRecordError(StoreError):
    """A record changed (or appeared) in the store after it was read."""

    def __init__(self, kind: str, key: str, detail: str) -> None:
        super().__init__(f"{kind} '{key}': {detail}")
        self.kind = kind
        self.key = key


class RecordStore(ABC):
    """Natural-key lookup plus transactional save."""

    @abstractmethod
    def get(self, model: type[R], key: str) -> R | None: ...

    @abstractmethod
    def find_by(self, model: type[R], field: str, value: Any) -> R | None: ...

    @abstractmethod
    def all(self, model: type[R]) -> list[R]: ...

    @abstractmethod
    def save(self, records: Iterable[Record]) -> None: ...

    @abstractmethod
    def begin(self) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...


class MemoryStore(RecordStore):
    """Dictionary-backed store (mock mode and tests)."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], Record] = {}
        self._pending: dict[tuple[str, str], Record] | None = None
        self.lookup_count = 0

    def seed(self, *records: Record) -> None:
        """Put records directly into the store (outside any transaction)."""
        for record in records:
            stored = copy.deepcopy(record)
            if stored.version < 1:
                stored.version = 1
            self._records[(stored.kind, stored.natural_key)] = stored

    def get(self, model: type[R], key: str) -> R | None:
        self.lookup_count += 1
        record = self._records.get((model.kind, key))
        return copy.deepcopy(record) if record is not None else None  # type: ignore[return-value]

    def find_by(self, model: type[R], field: str, value: Any) -> R | None:
        self.lookup_count += 1
        for (kind, _), record in sorted(self._records.items()):
            if kind == model.kind and getattr(record, field, None) == value:
                return copy.deepcopy(record)  # type: ignore[return-value]
        return None

    def all(self, model: type[R]) -> list[R]:
        return [
            copy.deepcopy(record)  # type: ignore[misc]
            for (kind, _), record in sorted(self._records.items())
            if kind == model.kind
        ]

    def begin(self) -> None:
        if self._pending is not None:
            raise StoreError("transaction already open")
        self._pending = {}

    def save(self, records: Iterable[Record]) -> None:
        if self._pending is None:
            raise StoreError("save() called outside a transaction")
        for record in records:
            key = (record.kind, record.natural_key)
            current = self._records.get(key)
            if record.version == 0:
                if current is not None or key in self._pending:
                    raise StaleRecordError(record.kind, record.natural_key, "already exists")
            elif current is None:
                raise StaleRecordError(record.kind, record.natural_key, "no longer exists")
            elif current.version != record.version:
                raise StaleRecordError(
                    record.kind,
                    record.natural_key,
                    f"version {record.version} is stale (stored version {current.version})",
                )
            staged = copy.deepcopy(record)
            staged.version = record.version + 1
            self._pending[key] = staged

    def commit(self) -> None:
        if self._pending is None:
            raise StoreError("commit() called outside a transaction")
        self._records.update(self._pending)
        logger.debug("memory store commit: %d record(s)", len(self._pending))
        self._pending = None

    def rollback(self) -> None:
        self._pending = None

    def __len__(self) -> int:
        return len(self._records)
