from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import psycopg2
from psycopg2.extras import Json

from specimen_import.db.batch_insert import BatchInsertError, BatchMetrics, batch_insert
from specimen_import.db.store import RecordStore, StaleRecordError, StoreError
from specimen_import.models.config_models import DatabaseConfig
from specimen_import.models.domain import Record

"""PostgreSQL record store (psycopg2).

Records are kept as JSONB documents in a single table keyed by
(kind, natural_key) with an integer version column for optimistic locking:

    import_records(kind text, natural_key text, version integer, body jsonb)

Transaction boundaries are explicit (BEGIN / COMMIT / ROLLBACK on the cursor);
the connection runs in autocommit mode so that BEGIN opens the transaction.
"""

__all__ = [
    "TABLE",
    "PostgresStore",
    "ensure_schema",
    "resolve_dsn",
    "db_connection",
]

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)

TABLE = "import_records"

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    kind text NOT NULL,
    natural_key text NOT NULL,
    version integer NOT NULL,
    body jsonb NOT NULL,
    PRIMARY KEY (kind, natural_key)
)
"""


def ensure_schema(cursor: Any) -> None:
    try:
        cursor.execute(CREATE_TABLE_SQL)
    except psycopg2.Error as e:
        raise StoreError(f"cannot create {TABLE}: {e}") from e


def _body(raw: Any) -> dict[str, Any]:
    # psycopg2 は jsonb を dict で返すが、text キャスト時は文字列
    if isinstance(raw, (str, bytes)):
        return json.loads(raw)
    return raw


class PostgresStore(RecordStore):
    def __init__(self, cursor: Any, *, page_size: int = 500) -> None:
        self.cursor = cursor
        self.page_size = page_size

    def _execute(self, sql: str, params: tuple[Any, ...] | None = None) -> None:
        try:
            self.cursor.execute(sql, params)
        except psycopg2.Error as e:
            raise StoreError(f"database error: {e}") from e

    def _load(self, model: type[R], row: tuple[Any, ...] | None) -> R | None:
        if row is None:
            return None
        version, body = row
        return model.from_document(_body(body), version=version)  # type: ignore[return-value]

    def get(self, model: type[R], key: str) -> R | None:
        self._execute(
            f"SELECT version, body FROM {TABLE} WHERE kind = %s AND natural_key = %s",
            (model.kind, key),
        )
        return self._load(model, self.cursor.fetchone())

    def find_by(self, model: type[R], field: str, value: Any) -> R | None:
        self._execute(
            f"SELECT version, body FROM {TABLE} WHERE kind = %s AND body ->> %s = %s "
            "ORDER BY natural_key LIMIT 1",
            (model.kind, field, None if value is None else str(value)),
        )
        return self._load(model, self.cursor.fetchone())

    def all(self, model: type[R]) -> list[R]:
        self._execute(
            f"SELECT version, body FROM {TABLE} WHERE kind = %s ORDER BY natural_key",
            (model.kind,),
        )
        return [self._load(model, row) for row in self.cursor.fetchall()]  # type: ignore[misc]

    def begin(self) -> None:
        self._execute("BEGIN")

    def commit(self) -> None:
        self._execute("COMMIT")

    def rollback(self) -> None:
        self._execute("ROLLBACK")

    def save(self, records: Iterable[Record]) -> None:
        records = list(records)
        self._insert([r for r in records if r.version == 0])
        for record in (r for r in records if r.version > 0):
            self._update(record)

    def _insert(self, records: list[Record]) -> None:
        if not records:
            return

        def on_batch(metrics: BatchMetrics) -> None:
            logger.debug(
                "insert batch size=%d elapsed=%.4fs", metrics.batch_size, metrics.elapsed_seconds
            )

        try:
            result = batch_insert(
                self.cursor,
                TABLE,
                ["kind", "natural_key", "version", "body"],
                [(r.kind, r.natural_key, 1, Json(r.to_document())) for r in records],
                returning=["kind", "natural_key"],
                on_conflict="(kind, natural_key) DO NOTHING",
                page_size=self.page_size,
                metrics_callback=on_batch,
            )
        except BatchInsertError as e:
            raise StoreError(f"insert failed: {e}") from e
        inserted = {(kind, key) for kind, key in result.returned_values or []}
        for record in records:
            if (record.kind, record.natural_key) not in inserted:
                raise StaleRecordError(record.kind, record.natural_key, "already exists")

    def _update(self, record: Record) -> None:
        self._execute(
            f"UPDATE {TABLE} SET version = %s, body = %s "
            "WHERE kind = %s AND natural_key = %s AND version = %s",
            (
                record.version + 1,
                Json(record.to_document()),
                record.kind,
                record.natural_key,
                record.version,
            ),
        )
        if self.cursor.rowcount == 0:
            raise StaleRecordError(
                record.kind, record.natural_key, f"version {record.version} is stale"
            )


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string resolution order.

    1. DATABASE_URL / PGDSN environment variables (.env is loaded by the CLI first)
    2. config ``database.dsn``
    3. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, falling
       back to the config ``database`` section for anything unset
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def db_connection(db_cfg: DatabaseConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Provide a psycopg2 cursor; the store issues BEGIN/COMMIT itself."""
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.Error as e:
        raise StoreError(f"cannot connect to database: {e}") from e
    conn.autocommit = True  # 明示 BEGIN/COMMIT を PostgresStore が発行
    try:
        with conn.cursor() as cur:
            ensure_schema(cur)
            yield cur
    finally:
        conn.close()
