from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import openpyxl
import pytest

from specimen_import.excel.reader import WorkbookLoadError, load_workbook, read_sheet_frames
from specimen_import.models.workbook import CellKind


def write_xlsx(path: Path, sheets: dict[str, list[list]]) -> Path:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


def test_xlsx_sheets_and_cell_kinds(tmp_path: Path):
    path = write_xlsx(
        tmp_path / "checkin.xlsx",
        {
            "Check-in": [
                ["Tube", "Decision", "Count", "Flag", "When"],
                ["T001", "  ACCEPTED ", 10, True, datetime(2024, 3, 1, 9, 30)],
                ["T002", None, 0.0000001, False, None],
            ],
            "Notes": [["free text"]],
        },
    )
    workbook = load_workbook(path, uploaded_by="tech1", timezone="America/New_York")
    assert workbook.filename == "checkin.xlsx"
    assert workbook.uploaded_by == "tech1"
    assert [ws.title for ws in workbook.worksheets] == ["Check-in", "Notes"]

    ws = workbook.first_worksheet()
    assert ws.get_num_rows() == 3
    assert ws.get_cell_text(2, "B") == "ACCEPTED"
    assert ws.get_cell_text(2, "C") == "10"
    assert ws.get_cell_text(3, "C") == "0.0000001"
    assert ws.get_cell(2, "D").kind is CellKind.BOOLEAN
    assert ws.get_cell_value(2, "D") is True
    assert ws.get_cell_value(3, "D") is False
    # naive 日時は設定タイムゾーン (EST, UTC-5) として解釈
    assert ws.get_cell_value(2, "E") == datetime(2024, 3, 1, 14, 30, tzinfo=UTC)
    assert ws.get_cell(3, "B") is None


def test_xlsx_formula_without_cached_value_fails_load(tmp_path: Path):
    # openpyxl は計算結果をキャッシュしない: 計算前の数式は読み込み失敗
    path = write_xlsx(tmp_path / "f.xlsx", {"Sheet1": [["Tube ID"], ['=UPPER("t001")']]})
    with pytest.raises(WorkbookLoadError, match="cell A2: formula") as excinfo:
        load_workbook(path)
    assert excinfo.value.coordinate == "A2"


def test_csv_keeps_text_as_entered(tmp_path: Path):
    path = tmp_path / "tubes.csv"
    path.write_text("Accession ID,Tube Type\n001,NA\n,\n1.50,saliva\n", encoding="utf-8")
    workbook = load_workbook(path)
    ws = workbook.first_worksheet()
    assert ws.title == "tubes"
    assert workbook.mime_type == "text/csv"
    assert ws.get_cell_text(2, "A") == "001"
    assert ws.get_cell_text(2, "B") == "NA"
    assert ws.get_cell(3, "A") is None
    assert ws.get_cell_text(4, "A") == "1.50"


def test_tab_delimited_xls_with_ragged_rows(tmp_path: Path):
    path = tmp_path / "tecan_run.xls"
    path.write_text(
        "Position\t\t\t\t\tSRCTubeID\n"
        "\t\t\t\t\t\t\t\tRNA-PLATE-1\n"
        "1\t\t\t\t\tT1\n",
        encoding="utf-8",
    )
    ws = load_workbook(path).first_worksheet()
    assert ws.title == "tecan_run"
    assert ws.get_cell_text(1, "A") == "Position"
    assert ws.get_cell_text(1, "F") == "SRCTubeID"
    assert ws.get_cell_text(2, "I") == "RNA-PLATE-1"
    assert ws.get_cell_text(3, "F") == "T1"


def test_empty_text_file(tmp_path: Path):
    path = tmp_path / "empty.tsv"
    path.write_text("\n\n", encoding="utf-8")
    ws = load_workbook(path).first_worksheet()
    assert len(ws) == 0


@pytest.mark.parametrize(
    "content",
    [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 32, b"abc\x00def"],
)
def test_binary_xls_rejected(tmp_path: Path, content: bytes):
    path = tmp_path / "legacy.xls"
    path.write_bytes(content)
    with pytest.raises(WorkbookLoadError, match="binary .xls"):
        load_workbook(path)


def test_load_errors(tmp_path: Path):
    with pytest.raises(WorkbookLoadError, match="file not found"):
        load_workbook(tmp_path / "missing.xlsx")

    pdf = tmp_path / "report.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    with pytest.raises(WorkbookLoadError, match="unsupported file type"):
        load_workbook(pdf)

    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"not a zip")
    with pytest.raises(WorkbookLoadError, match="cannot open workbook"):
        load_workbook(broken)

    csv = tmp_path / "ok.csv"
    csv.write_text("a\n", encoding="utf-8")
    with pytest.raises(WorkbookLoadError, match="unknown timezone"):
        load_workbook(csv, timezone="Mars/Olympus")


def test_read_sheet_frames(tmp_path: Path):
    path = write_xlsx(tmp_path / "two.xlsx", {"A": [["x", 1], ["y", 2]], "B": [["z"]]})
    frames = read_sheet_frames(path)
    assert list(frames) == ["A", "B"]
    assert frames["A"].shape == (2, 2)

    csv = tmp_path / "one.csv"
    csv.write_text("a,b\n1,2\n", encoding="utf-8")
    assert read_sheet_frames(csv)["one"].shape == (2, 2)
