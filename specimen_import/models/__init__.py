"""Domain models for the specimen spreadsheet importer.

Workbook/worksheet models, import messages and results, the row view used by
the importers, stored domain records and configuration.
"""

from .config_models import DatabaseConfig, ImportConfig, ImporterOverride
from .domain import (
    AntibodyResult,
    ParticipantGroup,
    QPCRResult,
    Record,
    Specimen,
    SpecimenWell,
    Tube,
    WellPlate,
)
from .import_message import ImportMessage, MessageLog
from .import_result import ImportOutput, ImportState, ImportSummary
from .row_data import RowData
from .workbook import Cell, CellKind, Workbook, Worksheet

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImporterOverride",
    # Workbook models
    "Cell",
    "CellKind",
    "Workbook",
    "Worksheet",
    # Processing models
    "ImportMessage",
    "MessageLog",
    "ImportOutput",
    "ImportState",
    "ImportSummary",
    "RowData",
    # Domain records
    "Record",
    "Tube",
    "Specimen",
    "QPCRResult",
    "AntibodyResult",
    "SpecimenWell",
    "WellPlate",
    "ParticipantGroup",
]
