from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from specimen_import.db.store import RecordStore
from specimen_import.models.import_message import ImportMessage, MessageLog
from specimen_import.models.import_result import ImportOutput, ImportState, ImportSummary
from specimen_import.models.row_data import RowData
from specimen_import.models.workbook import Worksheet
from specimen_import.services.progress import ProgressTracker
from specimen_import.services.resolution import ResolutionCache
from specimen_import.services.transaction import UnitOfWork, import_transaction

"""Import pipeline driver.

A single generic driver runs every importer. The importer-specific parts live
in an ImportStrategy (specimen_import.importers.base); the driver owns the run:

    check_structure -> open transaction -> begin
      -> for each row: skip blank / field validators / resolve / apply
      -> finish -> flush (commit) or discard (preview)

Lifecycle of one pipeline instance:
    UNPROCESSED -> PROCESSING -> PREVIEWED | COMMITTED
                             \\-> FAILED (fatal error, re-raised on every later call)

process() in a terminal state returns the memoized ImportOutput object.

Rows are rejected by field validators or resolve() only. apply() mutates the
unit of work, so an error reported from apply() raises ImportStateError: the
run fails and nothing is flushed.
"""

if TYPE_CHECKING:
    from specimen_import.importers.base import ImportStrategy

__all__ = [
    "StructuralImportError",
    "ImportStateError",
    "ImportRun",
    "RowContext",
    "ImportPipeline",
]

logger = logging.getLogger(__name__)


class StructuralImportError(Exception):
    """Malformed worksheet: aborts the run before any row is processed."""


class ImportStateError(Exception):
    """Pipeline accessor used in a state where it has no answer."""


@dataclass
class ImportRun:
    """State of one run: messages, unit of work, per-kind resolution caches."""
    worksheet: Worksheet
    messages: MessageLog
    uow: UnitOfWork
    commit: bool
    now: datetime
    caches: dict[str, ResolutionCache] = field(default_factory=dict)

    def cache(self, kind: str, lookup: Callable[[str], Any]) -> ResolutionCache:
        if kind not in self.caches:
            self.caches[kind] = ResolutionCache(kind, lookup)
        return self.caches[kind]

    def file_message(self, details: str, *, is_error: bool) -> None:
        self.messages.append(ImportMessage(details=details, is_error=is_error))


class RowContext:
    """One row as seen by a strategy's validators, resolve() and apply()."""

    def __init__(self, run: ImportRun, row: RowData) -> None:
        self.run = run
        self.row = row
        self.failed = False
        self.applying = False
        self.resolved: dict[str, Any] = {}  # resolve() -> apply() 受け渡し

    @property
    def row_number(self) -> int:
        return self.row.row_number

    @property
    def uow(self) -> UnitOfWork:
        return self.run.uow

    @property
    def now(self) -> datetime:
        return self.run.now

    def value(self, name: str) -> Any:
        return self.row.value(name)

    def text(self, name: str) -> str:
        return self.row.text(name)

    def number(self, name: str) -> Decimal | None:
        return self.row.number(name)

    def error(self, name: str, details: str) -> bool:
        # apply() は既に unit of work を変更している: 行の却下は resolve() までに行う
        if self.applying:
            raise ImportStateError(
                f"row {self.row_number}: {name} rejected inside apply(): {details}"
            )
        self.failed = True
        self.run.messages.append(
            ImportMessage.error(details, self.row_number, self.row.column(name))
        )
        return False

    def info(self, name: str, details: str) -> None:
        self.run.messages.append(
            ImportMessage.info(details, self.row_number, self.row.column(name))
        )


class ImportPipeline:
    def __init__(
        self,
        strategy: ImportStrategy,
        worksheet: Worksheet,
        store: RecordStore,
        *,
        clock: Callable[[], datetime] | None = None,
        filename: str | None = None,
    ) -> None:
        self.strategy = strategy
        self.worksheet = worksheet
        self.store = store
        self.filename = filename or worksheet.title
        self._clock = clock or (lambda: datetime.now(UTC))
        self.messages = MessageLog()
        self.state = ImportState.UNPROCESSED
        self._output: ImportOutput | None = None
        self._failure: BaseException | None = None
        self._committed = False
        self.rows_processed = 0
        self.elapsed_seconds = 0.0

    # --- accessors -------------------------------------------------------

    @property
    def name(self) -> str:
        return self.strategy.name

    @property
    def worksheet_title(self) -> str:
        return self.worksheet.title

    @property
    def starting_row(self) -> int:
        return self.strategy.starting_row

    @property
    def output(self) -> ImportOutput:
        """Import output; runs a preview first when nothing has been processed."""
        if self._output is None:
            return self.process(commit=False)
        return self._output

    def has_errors(self) -> bool:
        return self.messages.has_errors()

    def has_non_errors(self) -> bool:
        return self.messages.has_non_errors()

    def get_errors(self) -> list[ImportMessage]:
        return self.messages.errors()

    def get_non_errors(self) -> list[ImportMessage]:
        return self.messages.non_errors()

    def num_imported_items(self) -> int:
        if self._output is None:
            raise ImportStateError("num_imported_items() called before process()")
        return self._output.total()

    def summary(self) -> ImportSummary:
        if self._output is None:
            raise ImportStateError("summary() called before process()")
        return ImportSummary(
            importer=self.strategy.name,
            mode="commit" if self._committed else "preview",
            rows_processed=self.rows_processed,
            counts=self._output.counts(),
            errors=len(self.messages.errors()),
            info=len(self.messages.non_errors()),
            elapsed_seconds=self.elapsed_seconds,
        )

    # --- run -------------------------------------------------------------

    def process(self, commit: bool = False) -> ImportOutput:
        if self.state.is_terminal:
            if self._output is not None:
                return self._output
            if self._failure is None:
                raise ImportStateError(f"pipeline in state {self.state.value} without a recorded result")
            raise self._failure
        if self.state is ImportState.PROCESSING:
            raise ImportStateError("process() re-entered while processing")

        self.state = ImportState.PROCESSING
        started = time.perf_counter()
        try:
            output = self._run(commit)
        except Exception as e:
            self.state = ImportState.FAILED
            self._failure = e
            logger.debug("%s: run failed: %s", self.strategy.name, e)
            raise
        finally:
            self.elapsed_seconds = time.perf_counter() - started

        self._output = output
        self._committed = commit
        self.state = ImportState.COMMITTED if commit else ImportState.PREVIEWED
        logger.info(
            "%s %s: %s rows=%d errors=%d",
            self.strategy.name,
            "commit" if commit else "preview",
            self.filename,
            self.rows_processed,
            len(self.messages.errors()),
        )
        return output

    def _run(self, commit: bool) -> ImportOutput:
        strategy = self.strategy
        strategy.check_structure(self.worksheet)

        output = ImportOutput(strategy.classifications)
        last_row = self.worksheet.get_num_rows()
        first_row = strategy.starting_row

        with import_transaction(self.store, commit=commit) as uow:
            run = ImportRun(
                worksheet=self.worksheet,
                messages=self.messages,
                uow=uow,
                commit=commit,
                now=self._clock(),
            )
            strategy.begin(run)
            validators = strategy.field_validators()
            rejected = 0

            with ProgressTracker(max(last_row - first_row + 1, 0), description=strategy.name) as progress:
                for row_number in range(first_row, last_row + 1):
                    progress.advance()
                    row = RowData.from_worksheet(self.worksheet, row_number, strategy.column_map)
                    if row.is_blank:
                        continue
                    self.rows_processed += 1
                    ctx = RowContext(run, row)

                    # 全バリデータを実行 (短絡しない): 行内のエラーを一度に報告
                    for validate in validators:
                        validate(ctx)
                    if ctx.failed:
                        rejected += 1
                        progress.set_postfix(rejected=rejected)
                        logger.debug("row %d: abandoned after field validation", row_number)
                        continue

                    strategy.resolve(ctx)
                    if ctx.failed:
                        rejected += 1
                        progress.set_postfix(rejected=rejected)
                        logger.debug("row %d: abandoned after resolution", row_number)
                        continue

                    ctx.applying = True
                    results = list(strategy.apply(ctx))
                    for classification, record in results:
                        output.add(classification, record)

            strategy.finish(run, output)
        return output
