# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from specimen_import.db.store import MemoryStore
from specimen_import.excel.cells import RawCell, normalize_cell
from specimen_import.logging.init import reset_logging
from specimen_import.models.domain import Specimen, SpecimenStatus, Tube, TubeStatus
from specimen_import.models.workbook import Worksheet

FIXED_NOW = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _clean_logging():
    # ハンドラは setup 時の sys.stdout を掴むので、テスト毎に作り直す
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """staging_directory: ./staging
logs_directory: ./logs
retention_days: 7
timezone: UTC
importers:
  specimen-checkin:
    starting_row: 2
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def mock_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


def make_worksheet(rows: Sequence[Sequence[Any]], *, title: str = "Sheet1", first_row: int = 1) -> Worksheet:
    """Worksheet from a list of rows (index 0 = column A); values go through the normalizer."""
    ws = Worksheet(title)
    for row_offset, values in enumerate(rows):
        for col_offset, value in enumerate(values):
            column = chr(ord("A") + col_offset)
            cell = normalize_cell(RawCell(row=first_row + row_offset, column=column, value=value), UTC)
            if cell is not None:
                ws.add_cell(cell)
    return ws


@pytest.fixture()
def worksheet_builder() -> Callable[..., Worksheet]:
    return make_worksheet


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def returned_tubes_store() -> MemoryStore:
    """T001..T003 returned from kiosks, each with its specimen (S001..S003)."""
    s = MemoryStore()
    for n in (1, 2, 3):
        s.seed(
            Tube(
                accession_id=f"T00{n}",
                status=TubeStatus.RETURNED.value,
                tube_type="SALIVA",
                specimen_accession_id=f"S00{n}",
            ),
            Specimen(accession_id=f"S00{n}", status=SpecimenStatus.RETURNED.value),
        )
    return s
