from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from decimal import Decimal
from numbers import Integral, Real
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd

from specimen_import.models.workbook import (
    BOOLEAN_FALSE,
    BOOLEAN_TRUE,
    Cell,
    CellKind,
    column_letter,
)

"""Cell normalizer.

Converts one raw spreadsheet cell into a (kind, encoded value) pair:

- formula cells are classified by their cached computed value; a formula with
  no cached value (file saved by a tool that does not calculate) fails the load
- date / time values become absolute UTC timestamps (ISO-8601 text)
- booleans become "1" / "0"
- numbers are stringified without exponent notation or precision loss
- text is trimmed; whitespace-only text is blank

Blank values produce no cell. Anything else cannot be classified and fails the
whole workbook load (UnclassifiableCellError).
"""

__all__ = [
    "WorkbookLoadError",
    "UnclassifiableCellError",
    "RawCell",
    "classify_value",
    "normalize_cell",
    "resolve_timezone",
]

# Excel の時刻のみセルは 1899-12-30 起点のシリアル値
EXCEL_EPOCH = date(1899, 12, 30)


class WorkbookLoadError(Exception):
    """Raised when an uploaded file cannot be decoded into a Workbook."""


class UnclassifiableCellError(WorkbookLoadError):
    def __init__(self, coordinate: str, value: Any, reason: str | None = None) -> None:
        reason = reason or f"cannot classify value of type {type(value).__name__}: {value!r}"
        super().__init__(f"cell {coordinate}: {reason}")
        self.coordinate = coordinate
        self.value = value


@dataclass(frozen=True)
class RawCell:
    """A cell as read from the file, before normalization."""
    row: int
    column: str
    value: Any
    is_formula: bool = False
    computed_value: Any = None  # 数式セルのキャッシュ値 (data_only 読み込み)

    @property
    def coordinate(self) -> str:
        return f"{column_letter(self.column)}{self.row}"

    @property
    def effective_value(self) -> Any:
        return self.computed_value if self.is_formula else self.value


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise WorkbookLoadError(f"unknown timezone: {name}") from e


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if value is pd.NaT:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    return False


def _format_number(value: Any) -> str:
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError("non-finite number")
        d = value
    elif isinstance(value, Integral):
        return str(int(value))
    else:
        f = float(value)
        if not math.isfinite(f):
            raise ValueError("non-finite number")
        if f.is_integer():
            return str(int(f))
        # repr は最短往復表現 -> Decimal 経由で指数表記を回避
        d = Decimal(repr(f))
    text = format(d.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def _to_utc(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(UTC)


def classify_value(value: Any, tz: ZoneInfo, coordinate: str = "?") -> tuple[CellKind, str] | None:
    """Classify a plain value. Returns None for blank values.

    Raises:
        UnclassifiableCellError: value type has no canonical kind
    """
    if _is_blank(value):
        return None
    # bool は int のサブクラスなので数値判定より先に
    if pd.api.types.is_bool(value):
        return CellKind.BOOLEAN, BOOLEAN_TRUE if bool(value) else BOOLEAN_FALSE
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return CellKind.DATETIME, _to_utc(value, tz).isoformat()
    if isinstance(value, date):
        return CellKind.DATETIME, _to_utc(datetime.combine(value, time()), tz).isoformat()
    if isinstance(value, time):
        return CellKind.DATETIME, _to_utc(datetime.combine(EXCEL_EPOCH, value), tz).isoformat()
    if isinstance(value, (Decimal, Real)):
        try:
            return CellKind.SCALAR, _format_number(value)
        except ValueError as e:
            raise UnclassifiableCellError(coordinate, value) from e
    if isinstance(value, str):
        return CellKind.SCALAR, value.strip()
    raise UnclassifiableCellError(coordinate, value)


def normalize_cell(raw: RawCell, tz: ZoneInfo) -> Cell | None:
    """Normalize a RawCell into a Cell (None when the cell is blank)."""
    if raw.is_formula and raw.computed_value is None:
        raise UnclassifiableCellError(
            raw.coordinate, raw.value, f"formula {raw.value!r} has no computed value; open and save the file in Excel"
        )
    classified = classify_value(raw.effective_value, tz, raw.coordinate)
    if classified is None:
        return None
    kind, encoded = classified
    return Cell(row=raw.row, column=raw.column, kind=kind, value=encoded)
