from __future__ import annotations

import io
import logging
import mimetypes
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from zipfile import BadZipFile

import openpyxl
import pandas as pd
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from specimen_import.excel.cells import (
    RawCell,
    WorkbookLoadError,
    normalize_cell,
    resolve_timezone,
)
from specimen_import.models.workbook import Workbook, Worksheet

"""Workbook reader.

Decodes an uploaded file into a Workbook of normalized Worksheets.

- .xlsx / .xlsm: openpyxl, opened twice (formulas + cached computed values) so
  that formula cells are classified by their computed value
- .csv: comma-delimited text via pandas
- .tsv / .txt: tab-delimited text via pandas
- .xls: plate-reader exports are tab-delimited text saved with an .xls
  extension; real binary .xls workbooks are rejected

Every cell passes through the cell normalizer; an unclassifiable cell fails the
whole load.
"""

__all__ = [
    "WorkbookLoadError",
    "load_workbook",
    "read_sheet_frames",
    "SUPPORTED_SUFFIXES",
]

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
TEXT_DELIMITERS = {".csv": ",", ".tsv": "\t", ".txt": "\t", ".xls": "\t"}
SUPPORTED_SUFFIXES = EXCEL_SUFFIXES | set(TEXT_DELIMITERS)

# OLE2 (旧 Excel バイナリ) シグネチャ
_OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def _guess_mime_type(filename: str) -> str | None:
    mime, _ = mimetypes.guess_type(filename)
    return mime


def _read_text(path: Path) -> str:
    raw = path.read_bytes()
    if raw.startswith(_OLE_SIGNATURE) or b"\x00" in raw[:4096]:
        raise WorkbookLoadError(
            f"{path.name}: binary .xls workbooks are not supported (save as .xlsx)"
        )
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        # 機器出力 (Tecan 等) は Windows 系エンコーディングのことがある
        return raw.decode("latin-1")


def _text_frame(path: Path) -> pd.DataFrame:
    """Read a delimited text file into an all-string DataFrame without header.

    Rows may be ragged (plate-reader exports put the plate barcode on its own
    row), so the column count is taken from the widest line.
    """
    sep = TEXT_DELIMITERS[path.suffix.lower()]
    text = _read_text(path)
    lines = text.splitlines()
    if not any(line.strip() for line in lines):
        return pd.DataFrame()
    width = max(line.count(sep) for line in lines) + 1
    return pd.read_csv(
        io.StringIO(text),
        sep=sep,
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
    )


def _frame_cells(df: pd.DataFrame) -> Iterator[RawCell]:
    for row_pos, values in enumerate(df.itertuples(index=False, name=None), start=1):
        for col_pos, value in enumerate(values, start=1):
            yield RawCell(row=row_pos, column=get_column_letter(col_pos), value=value)


def _excel_cells(path: Path) -> Iterator[tuple[str, Iterable[RawCell]]]:
    try:
        formulas = openpyxl.load_workbook(path, data_only=False)
        computed = openpyxl.load_workbook(path, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
        raise WorkbookLoadError(f"{path.name}: cannot open workbook: {e}") from e

    for ws in formulas.worksheets:
        values_ws = computed[ws.title]

        def sheet_cells(ws=ws, values_ws=values_ws) -> Iterator[RawCell]:
            for row in ws.iter_rows():
                for cell in row:
                    if cell.value is None:
                        continue
                    is_formula = cell.data_type == "f"
                    yield RawCell(
                        row=cell.row,
                        column=cell.column_letter,
                        value=cell.value,
                        is_formula=is_formula,
                        computed_value=values_ws[cell.coordinate].value if is_formula else None,
                    )

        yield ws.title, sheet_cells()


def _build_worksheet(title: str, cells: Iterable[RawCell], tz) -> Worksheet:
    worksheet = Worksheet(title)
    for raw in cells:
        cell = normalize_cell(raw, tz)
        if cell is not None:
            worksheet.add_cell(cell)
    return worksheet


def load_workbook(
    path: Path,
    *,
    filename: str | None = None,
    mime_type: str | None = None,
    uploaded_by: str | None = None,
    timezone: str = "UTC",
) -> Workbook:
    """Decode an uploaded file into a Workbook.

    Parameters
    ----------
    path: アップロードされたファイルのパス
    filename: 元ファイル名 (省略時 path.name)
    mime_type: 省略時は拡張子から推定
    uploaded_by: アップロード実行者
    timezone: naive な日時セルを解釈するタイムゾーン

    Raises
    ------
    WorkbookLoadError: file missing / unsupported / undecodable, or a cell
        cannot be classified
    """
    path = Path(path)
    if not path.exists():
        raise WorkbookLoadError(f"file not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise WorkbookLoadError(
            f"{path.name}: unsupported file type '{suffix}' (supported: {', '.join(sorted(SUPPORTED_SUFFIXES))})"
        )
    tz = resolve_timezone(timezone)
    name = filename or path.name
    workbook = Workbook(
        filename=name,
        mime_type=mime_type or _guess_mime_type(name),
        uploaded_at=datetime.now(UTC),
        uploaded_by=uploaded_by,
    )

    if suffix in EXCEL_SUFFIXES:
        for title, cells in _excel_cells(path):
            workbook.add_worksheet(_build_worksheet(title, cells, tz))
    else:
        try:
            df = _text_frame(path)
        except (pd.errors.ParserError, OSError) as e:
            raise WorkbookLoadError(f"{path.name}: cannot parse delimited text: {e}") from e
        workbook.add_worksheet(_build_worksheet(path.stem, _frame_cells(df), tz))

    logger.debug(
        "loaded workbook %s sheets=%s",
        name,
        [(ws.title, ws.get_num_rows()) for ws in workbook.worksheets],
    )
    return workbook


def read_sheet_frames(path: Path) -> dict[str, pd.DataFrame]:
    """Raw DataFrames keyed by sheet title (no normalization; for inspection)."""
    path = Path(path)
    if not path.exists():
        raise WorkbookLoadError(f"file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        try:
            frames = pd.read_excel(path, sheet_name=None, header=None, engine="openpyxl")
        except (InvalidFileException, BadZipFile, ValueError, OSError) as e:
            raise WorkbookLoadError(f"{path.name}: cannot open workbook: {e}") from e
        return {str(name): df for name, df in frames.items()}
    if suffix in TEXT_DELIMITERS:
        return {path.stem: _text_frame(path)}
    raise WorkbookLoadError(f"{path.name}: unsupported file type '{suffix}'")
