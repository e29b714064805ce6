from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from specimen_import.db.store import RecordStore
from specimen_import.models.domain import Record

"""Unit of work and the preview / commit transaction boundary.

All record access during an import run goes through one UnitOfWork. It keeps
an identity map so that two rows touching the same record mutate the same
object, and it remembers which records are new or dirty.

At the end of the run the unit of work is either flushed (commit) or discarded
(preview). Discarding drops the identity map; since the store only ever handed
out copies, nothing built during a preview reaches stored state.
"""

__all__ = [
    "UnitOfWork",
    "import_transaction",
]

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


class UnitOfWork:
    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self._identity: dict[tuple[str, str], Record] = {}
        self._pending: dict[tuple[str, str], Record] = {}  # insertion order = write order
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("unit of work already flushed or discarded")

    def _track(self, record: Record) -> Record:
        key = (record.kind, record.natural_key)
        tracked = self._identity.get(key)
        if tracked is not None:
            return tracked
        self._identity[key] = record
        return record

    def get(self, model: type[R], key: str) -> R | None:
        self._check_open()
        tracked = self._identity.get((model.kind, key))
        if tracked is not None:
            return tracked  # type: ignore[return-value]
        record = self.store.get(model, key)
        return self._track(record) if record is not None else None  # type: ignore[return-value]

    def find_by(self, model: type[R], field: str, value: Any) -> R | None:
        self._check_open()
        for (kind, _), record in self._identity.items():
            if kind == model.kind and getattr(record, field, None) == value:
                return record  # type: ignore[return-value]
        record = self.store.find_by(model, field, value)
        return self._track(record) if record is not None else None  # type: ignore[return-value]

    def all(self, model: type[R]) -> list[R]:
        """Stored records of ``model`` merged with records added in this unit of work."""
        self._check_open()
        merged = [self._track(r) for r in self.store.all(model)]
        seen = {id(r) for r in merged}
        merged.extend(
            r for (kind, _), r in self._identity.items() if kind == model.kind and id(r) not in seen
        )
        return merged  # type: ignore[return-value]

    def add(self, record: R) -> R:
        """Register a new record (written as an insert on flush)."""
        self._check_open()
        key = (record.kind, record.natural_key)
        if key in self._identity and self._identity[key] is not record:
            raise ValueError(f"{record.kind} '{record.natural_key}' is already tracked")
        self._identity[key] = record
        self._pending[key] = record
        return record

    def mark_dirty(self, record: Record) -> None:
        self._check_open()
        key = (record.kind, record.natural_key)
        if self._identity.get(key) is not record:
            raise ValueError(f"{record.kind} '{record.natural_key}' is not tracked by this unit of work")
        self._pending[key] = record

    @property
    def pending(self) -> list[Record]:
        return list(self._pending.values())

    def flush(self) -> int:
        """Write pending records in one store transaction. Returns the count written."""
        self._check_open()
        records = self.pending
        self.store.begin()
        try:
            self.store.save(records)
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
        finally:
            self._close()
        logger.debug("flushed %d record(s)", len(records))
        return len(records)

    def discard(self) -> int:
        """Drop every pending change. Returns the count discarded."""
        count = len(self._pending)
        self._close()
        logger.debug("discarded %d pending record(s)", count)
        return count

    def _close(self) -> None:
        self._identity.clear()
        self._pending.clear()
        self._closed = True


@contextmanager
def import_transaction(store: RecordStore, *, commit: bool) -> Iterator[UnitOfWork]:
    """Run-scoped transaction: flush on success when ``commit``, discard otherwise."""
    uow = UnitOfWork(store)
    try:
        yield uow
    except BaseException:
        uow.discard()
        raise
    if commit:
        uow.flush()
    else:
        uow.discard()
