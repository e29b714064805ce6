from __future__ import annotations

from datetime import UTC, datetime

import pytest

from specimen_import.db.store import MemoryStore
from specimen_import.models.import_message import MessageLog
from specimen_import.models.row_data import RowData
from specimen_import.services.pipeline import ImportRun, RowContext
from specimen_import.services.transaction import UnitOfWork
from specimen_import.services.validation import (
    integer_in_range,
    max_length,
    number,
    one_of,
    require_value,
    scanner_safe,
    whole_number,
)


def ctx_for(value) -> RowContext:
    run = ImportRun(
        worksheet=None,
        messages=MessageLog(),
        uow=UnitOfWork(MemoryStore()),
        commit=False,
        now=datetime(2024, 3, 1, tzinfo=UTC),
    )
    return RowContext(run, RowData(row_number=5, values={"f": value}, columns={"f": "B"}))


def only_error(ctx: RowContext) -> str:
    errors = ctx.run.messages.errors()
    assert len(errors) == 1
    assert (errors[0].row_number, errors[0].column_letter) == (5, "B")
    return errors[0].details


def test_require_value():
    ctx = ctx_for(None)
    assert require_value(ctx, "f", "Field cannot be blank") is False
    assert ctx.failed
    assert only_error(ctx) == "Field cannot be blank"
    assert require_value(ctx_for("x"), "f", "unused") is True


def test_max_length():
    assert max_length(ctx_for("x" * 255), "f", 255, "too long") is True
    ctx = ctx_for("x" * 256)
    assert max_length(ctx, "f", 255, "too long") is False
    assert only_error(ctx) == "too long"


def test_one_of_is_case_insensitive_and_passes_blank():
    assert one_of(ctx_for("saliva"), "f", ["BLOOD", "SALIVA"], "bad") is True
    assert one_of(ctx_for(None), "f", ["BLOOD"], "bad") is True
    ctx = ctx_for("PAPER")
    assert one_of(ctx, "f", ["BLOOD", "SALIVA"], "bad type") is False
    assert only_error(ctx) == "bad type"


@pytest.mark.parametrize("value,ok", [("3", True), ("-2", True), ("3.0", True), ("3.5", False), ("abc", False), (None, True)])
def test_whole_number(value, ok):
    assert whole_number(ctx_for(value), "f", "not whole") is ok


@pytest.mark.parametrize("value,ok", [("1.25", True), ("-0.5", True), ("high", False), (None, True)])
def test_number(value, ok):
    assert number(ctx_for(value), "f", "not a number") is ok


@pytest.mark.parametrize("value,ok", [("1", True), ("96", True), ("0", False), ("97", False), ("4.5", False), ("x", False)])
def test_integer_in_range(value, ok):
    assert integer_in_range(ctx_for(value), "f", 1, 96, "out of range") is ok


def test_scanner_safe_reports_first_bad_character():
    assert scanner_safe(ctx_for("Group A-1_b"), "f") is True
    ctx = ctx_for("Group #1!")
    assert scanner_safe(ctx, "f") is False
    assert only_error(ctx) == "Invalid character: #"
