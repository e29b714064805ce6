"""Record stores: in-memory (mock mode / tests) and PostgreSQL (psycopg2)."""

from .store import MemoryStore, RecordStore, StaleRecordError, StoreError

__all__ = [
    "MemoryStore",
    "RecordStore",
    "StaleRecordError",
    "StoreError",
]
