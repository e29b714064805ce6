from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from openpyxl.utils import column_index_from_string, get_column_letter

"""Workbook / Worksheet / Cell models.

A Workbook is the decoded contents of one uploaded file. Each Worksheet is a
sparse grid of normalized cells addressed by (1-based row, column letter).
Cells are produced by ``specimen_import.excel.cells.normalize_cell`` and are
immutable once built: the kind tag decides how the stored text is decoded.
"""

__all__ = [
    "CellKind",
    "Cell",
    "Worksheet",
    "Workbook",
    "decode_value",
    "column_letter",
]


class CellKind(str, Enum):
    SCALAR = "scalar"
    DATETIME = "datetime"
    BOOLEAN = "boolean"


BOOLEAN_TRUE = "1"
BOOLEAN_FALSE = "0"
BOOLEAN_UNSET = ""


def decode_value(kind: CellKind, value: str) -> Any:
    """Decode the stored text of a cell according to its kind tag.

    - SCALAR: returned as-is (already trimmed text)
    - DATETIME: timezone-aware ``datetime`` in UTC
    - BOOLEAN: True / False / None (unset)
    """
    if kind is CellKind.DATETIME:
        return datetime.fromisoformat(value).astimezone(UTC)
    if kind is CellKind.BOOLEAN:
        if value == BOOLEAN_TRUE:
            return True
        if value == BOOLEAN_FALSE:
            return False
        return None
    return value


def column_letter(column: str | int) -> str:
    """Normalize a column reference to its upper-case letter form ("b" / 2 -> "B")."""
    if isinstance(column, int):
        return get_column_letter(column)
    letter = column.strip().upper()
    # 不正な列名はここで ValueError
    column_index_from_string(letter)
    return letter


@dataclass(frozen=True)
class Cell:
    row: int  # 1-based
    column: str  # 列ラベル (A, B, ..., AA)
    kind: CellKind
    value: str  # kind に応じたエンコード済み文字列

    def __post_init__(self) -> None:
        if self.row < 1:
            raise ValueError(f"cell row must be >= 1: {self.row}")
        object.__setattr__(self, "column", column_letter(self.column))

    @property
    def coordinate(self) -> str:
        return f"{self.column}{self.row}"

    def decoded(self) -> Any:
        return decode_value(self.kind, self.value)


class Worksheet:
    """Sparse grid of normalized cells.

    Row count is derived from the cells present rather than stored, so it stays
    correct regardless of insertion order.
    """

    def __init__(self, title: str) -> None:
        self.title = title
        self._cells: dict[tuple[int, str], Cell] = {}

    def add_cell(self, cell: Cell) -> None:
        self._cells[(cell.row, column_letter(cell.column))] = cell

    def get_cell(self, row: int, column: str | int) -> Cell | None:
        return self._cells.get((row, column_letter(column)))

    def get_cell_value(self, row: int, column: str | int) -> Any:
        cell = self.get_cell(row, column)
        if cell is None:
            return None
        return cell.decoded()

    def get_cell_text(self, row: int, column: str | int) -> str:
        cell = self.get_cell(row, column)
        if cell is None:
            return ""
        return cell.value

    def get_num_rows(self) -> int:
        if not self._cells:
            return 0
        return max(row for row, _ in self._cells)

    def cells(self) -> Iterator[Cell]:
        """Iterate cells in row, then column order."""
        for key in sorted(self._cells, key=lambda k: (k[0], column_index_from_string(k[1]))):
            yield self._cells[key]

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:  # pragma: no cover (debug)
        return f"Worksheet(title={self.title!r}, cells={len(self._cells)}, rows={self.get_num_rows()})"


@dataclass
class Workbook:
    filename: str
    mime_type: str | None = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    uploaded_by: str | None = None
    worksheets: list[Worksheet] = field(default_factory=list)
    id: str | None = None  # staging 時に採番

    def add_worksheet(self, worksheet: Worksheet) -> Worksheet:
        self.worksheets.append(worksheet)
        return worksheet

    def first_worksheet(self) -> Worksheet:
        if not self.worksheets:
            raise LookupError(f"workbook '{self.filename}' has no worksheets")
        return self.worksheets[0]

    def worksheet(self, title: str) -> Worksheet:
        for ws in self.worksheets:
            if ws.title == title:
                return ws
        raise LookupError(f"worksheet '{title}' not found in '{self.filename}'")

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "uploaded_at": self.uploaded_at.isoformat(),
            "uploaded_by": self.uploaded_by,
            "worksheets": [
                {
                    "title": ws.title,
                    "cells": [[c.row, c.column, c.kind.value, c.value] for c in ws.cells()],
                }
                for ws in self.worksheets
            ],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Workbook:
        workbook = cls(
            filename=doc["filename"],
            mime_type=doc.get("mime_type"),
            uploaded_at=datetime.fromisoformat(doc["uploaded_at"]),
            uploaded_by=doc.get("uploaded_by"),
            id=doc.get("id"),
        )
        for ws_doc in doc.get("worksheets", []):
            ws = Worksheet(ws_doc["title"])
            for row, column, kind, value in ws_doc.get("cells", []):
                ws.add_cell(Cell(row=row, column=column, kind=CellKind(kind), value=value))
            workbook.add_worksheet(ws)
        return workbook
