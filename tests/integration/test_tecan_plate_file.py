from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from specimen_import.cli import main as cli_main
from specimen_import.db.store import MemoryStore
from specimen_import.models.domain import Specimen, Tube, WellPlate

"""Tecan liquid-handler export (tab-delimited text saved as .xls) through the CLI."""


def _tecan_file(directory: Path, barcode: str, rows: list[tuple[int, str]], name: str = "tecan.xls") -> Path:
    lines = ["Position\tRack\tSRCPos\tDest\tVolume\tSRCTubeID\t\t\t", "\t" * 8 + barcode]
    lines.extend(f"{pos}\tRack1\t{pos}\tPlate\t200\t{tube}" for pos, tube in rows)
    path = directory / name
    path.write_text("\r\n".join(lines) + "\r\n", encoding="latin-1")
    return path


@pytest.fixture
def accepted_store() -> MemoryStore:
    store = MemoryStore()
    for n in range(1, 11):
        store.seed(
            Tube(accession_id=f"T{n:03d}", status="ACCEPTED", tube_type="SALIVA", specimen_accession_id=f"S{n:03d}"),
            Specimen(accession_id=f"S{n:03d}", status="ACCEPTED"),
        )
    # チェックイン時に位置未設定のウェルが作られている
    plate = WellPlate(barcode="RNA-0001")
    plate.add_well("S001")
    store.seed(plate)
    with patch("specimen_import.cli.main._mock_store", return_value=store):
        yield store


def test_commit_places_every_tube(write_config, temp_workdir: Path, mock_mode, accepted_store, capsys):
    path = _tecan_file(temp_workdir / "data", "RNA-0001", [(n, f"T{n:03d}") for n in range(1, 11)])
    assert cli_main(["commit", "tecan", str(path)]) == 0
    out = capsys.readouterr().out
    assert "SUMMARY importer=tecan mode=commit rows=10 created=9 updated=1 errors=0 info=0" in out

    plate = accepted_store.get(WellPlate, "RNA-0001")
    positions = {w.specimen_accession_id: w.position for w in plate.wells}
    assert len(plate.wells) == 10
    assert positions["S001"] == "A1"
    assert positions["S008"] == "H1"
    assert positions["S009"] == "A2"
    assert positions["S010"] == "B2"


def test_partial_failure_with_force(write_config, temp_workdir: Path, mock_mode, accepted_store, capsys):
    path = _tecan_file(temp_workdir / "data", "RNA-0002", [(1, "T001"), (2, "NOPE"), (2, "T002"), (1, "T003")])
    assert cli_main(["commit", "tecan", str(path), "--force"]) == 2
    out = capsys.readouterr().out
    assert "ERROR F4 Tube not found by Tube ID" in out
    assert "ERROR A6 Position 1 occurs more than once in uploaded workbook (first on row 3)" in out
    assert "created=2" in out

    plate = accepted_store.get(WellPlate, "RNA-0002")
    assert [(w.specimen_accession_id, w.position) for w in plate.wells] == [("S001", "A1"), ("S002", "B1")]


def test_file_without_tubes(write_config, temp_workdir: Path, mock_mode, accepted_store, capsys):
    path = _tecan_file(temp_workdir / "data", "RNA-0003", [])
    assert cli_main(["preview", "tecan", str(path)]) == 0
    assert "INFO file No tubes found for Well Plate RNA-0003" in capsys.readouterr().out


def test_missing_plate_barcode(write_config, temp_workdir: Path, mock_mode, accepted_store, capsys):
    path = _tecan_file(temp_workdir / "data", "", [(1, "T001")])
    assert cli_main(["preview", "tecan", str(path)]) == 1
    out = capsys.readouterr().out
    assert "Well Plate ID cannot be located in uploaded file. Expected to find at cell I2" in out
