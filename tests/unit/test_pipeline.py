from __future__ import annotations

from unittest.mock import patch

import pytest

from specimen_import.db.store import MemoryStore, StaleRecordError
from specimen_import.importers.base import ImportStrategy
from specimen_import.importers.tube import TubeImporter
from specimen_import.models.domain import Tube
from specimen_import.models.import_result import ImportState
from specimen_import.services.pipeline import ImportPipeline, ImportStateError, StructuralImportError

HEADER = ["Accession ID", "Tube Type", "Kit Type"]


def tube_pipeline(worksheet, store, clock=None) -> ImportPipeline:
    return ImportPipeline(TubeImporter(), worksheet, store, clock=clock, filename="tubes.xlsx")


def test_output_is_memoized(worksheet_builder, store):
    ws = worksheet_builder([HEADER, ["T100", "saliva", "KitA"]])
    pipeline = tube_pipeline(ws, store)
    first = pipeline.process()
    assert pipeline.process() is first
    # 終端状態では commit 指定でも再計算しない
    assert pipeline.process(commit=True) is first
    assert pipeline.output is first
    assert pipeline.state is ImportState.PREVIEWED
    assert first.natural_keys("created") == ["T100"]
    assert len(store) == 0


def test_output_property_runs_preview(worksheet_builder, store):
    pipeline = tube_pipeline(worksheet_builder([HEADER, ["T100"]]), store)
    assert pipeline.output.natural_keys("created") == ["T100"]
    assert pipeline.state is ImportState.PREVIEWED
    assert len(store) == 0


def test_accessors_before_processing(worksheet_builder, store):
    pipeline = tube_pipeline(worksheet_builder([HEADER]), store)
    assert pipeline.state is ImportState.UNPROCESSED
    with pytest.raises(ImportStateError):
        pipeline.num_imported_items()
    with pytest.raises(ImportStateError):
        pipeline.summary()
    assert pipeline.filename == "tubes.xlsx"
    assert pipeline.worksheet_title == "Sheet1"
    assert pipeline.starting_row == 2


def test_blank_rows_are_skipped(worksheet_builder, store):
    ws = worksheet_builder([HEADER, ["T100"], [None, None, None], ["T101"], [], ["T102"]])
    pipeline = tube_pipeline(ws, store)
    output = pipeline.process()
    assert output.natural_keys("created") == ["T100", "T101", "T102"]
    assert pipeline.rows_processed == 3
    assert not pipeline.has_errors()


def test_partial_failure_isolation(worksheet_builder, store):
    ws = worksheet_builder([HEADER, ["T100", "SALIVA"], ["T101", "PAPER"], ["T102", "BLOOD"]])
    pipeline = tube_pipeline(ws, store)
    pipeline.process()
    assert pipeline.num_imported_items() == 2
    errors = pipeline.get_errors()
    assert len(errors) == 1
    assert (errors[0].row_number, errors[0].column_letter) == (3, "B")


def test_rejected_rows_shown_on_progress_bar(worksheet_builder, store):
    ws = worksheet_builder([HEADER, ["T100", "SALIVA"], ["T101", "PAPER"], ["0"]])
    with patch("specimen_import.services.pipeline.ProgressTracker") as tracker_cls:
        tube_pipeline(ws, store).process()
    progress = tracker_cls.return_value.__enter__.return_value
    assert progress.advance.call_count == 3
    assert [c.kwargs for c in progress.set_postfix.call_args_list] == [{"rejected": 1}, {"rejected": 2}]


def test_every_validator_runs_on_a_row(worksheet_builder, store):
    ws = worksheet_builder([HEADER, ["0", "PAPER", "x" * 300]])
    pipeline = tube_pipeline(ws, store)
    pipeline.process()
    assert [m.column_letter for m in pipeline.messages.for_row(2) if m.is_error] == ["A", "B", "C"]
    assert pipeline.num_imported_items() == 0


def test_preview_and_commit_produce_the_same_output(worksheet_builder, store, clock):
    ws = worksheet_builder([HEADER, ["T100", "saliva"], ["T101"], ["T101"]])
    preview = tube_pipeline(ws, store, clock)
    preview_keys = preview.process(commit=False).keys()
    assert len(store) == 0

    committed = tube_pipeline(ws, store, clock)
    commit_keys = committed.process(commit=True).keys()
    assert commit_keys == preview_keys == {("created", "T100"), ("created", "T101")}
    assert [m.details for m in committed.get_errors()] == [m.details for m in preview.get_errors()]
    assert committed.state is ImportState.COMMITTED
    assert store.get(Tube, "T100").tube_type == "SALIVA"
    assert committed.summary().mode == "commit"


def test_summary_figures(worksheet_builder, store):
    ws = worksheet_builder([HEADER, ["T100"], ["T100"]])
    pipeline = tube_pipeline(ws, store)
    pipeline.process()
    summary = pipeline.summary()
    assert summary.importer == "tubes"
    assert summary.mode == "preview"
    assert summary.rows_processed == 2
    assert summary.counts == {"created": 1}
    assert summary.errors == 1
    assert summary.info == 0


class _BrokenStructure(TubeImporter):
    def check_structure(self, worksheet):
        raise StructuralImportError("header missing")


def test_structural_error_fails_the_run_permanently(worksheet_builder, store):
    pipeline = ImportPipeline(_BrokenStructure(), worksheet_builder([HEADER, ["T100"]]), store)
    with pytest.raises(StructuralImportError) as first:
        pipeline.process()
    assert pipeline.state is ImportState.FAILED
    assert pipeline.rows_processed == 0
    with pytest.raises(StructuralImportError) as second:
        pipeline.process(commit=True)
    assert second.value is first.value


class _FailsInApply(ImportStrategy):
    name = "fails-in-apply"
    title = "Fails in apply"
    classifications = ("created",)
    default_column_map = {"accessionId": "A"}

    def field_validators(self):
        return []

    def apply(self, ctx):
        tube = ctx.uow.add(Tube(accession_id=ctx.text("accessionId")))
        if ctx.text("accessionId") == "BAD":
            ctx.error("accessionId", "rejected late")
        return [("created", tube)]


def test_rejection_inside_apply_fails_the_run(worksheet_builder, store):
    pipeline = ImportPipeline(_FailsInApply(starting_row=1), worksheet_builder([["GOOD"], ["BAD"]]), store)
    with pytest.raises(ImportStateError, match="row 2"):
        pipeline.process(commit=True)
    assert pipeline.state is ImportState.FAILED
    # 途中まで追加した行も含め何も保存されない
    assert store.get(Tube, "BAD") is None
    assert store.get(Tube, "GOOD") is None


class _ConcurrentCommitStore(MemoryStore):
    """Another import commits the same tube between our preview and commit."""

    def begin(self):
        self.seed(Tube(accession_id="T100"))
        super().begin()


def test_conflicting_commit_rolls_back(worksheet_builder):
    store = _ConcurrentCommitStore()
    ws = worksheet_builder([HEADER, ["T100"], ["T101"]])
    pipeline = tube_pipeline(ws, store)
    with pytest.raises(StaleRecordError):
        pipeline.process(commit=True)
    assert pipeline.state is ImportState.FAILED
    assert store.get(Tube, "T101") is None
