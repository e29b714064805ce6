"""Importer registry.

Maps importer names (as used on the command line and in config) to strategy
classes, and builds a ready-to-run ImportPipeline for a worksheet.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime

from specimen_import.db.store import RecordStore
from specimen_import.models.workbook import Worksheet
from specimen_import.services.accession import AccessionIdGenerator
from specimen_import.services.pipeline import ImportPipeline

from .base import ImportStrategy
from .participant_group import ParticipantGroupImporter
from .result_antibody import SpecimenResultAntibodyImporter
from .result_qpcr import SpecimenResultQPCRImporter
from .specimen_checkin import SpecimenCheckinImporter
from .specimen_intake import SpecimenIntakeImporter
from .tecan import TecanImporter
from .tube import TubeImporter
from .tube_checkin_blood import TubeCheckinBloodImporter

__all__ = [
    "IMPORTERS",
    "ImportStrategy",
    "build_importer",
    "ParticipantGroupImporter",
    "SpecimenCheckinImporter",
    "SpecimenIntakeImporter",
    "SpecimenResultAntibodyImporter",
    "SpecimenResultQPCRImporter",
    "TecanImporter",
    "TubeCheckinBloodImporter",
    "TubeImporter",
]

IMPORTERS: dict[str, type[ImportStrategy]] = {
    cls.name: cls
    for cls in (
        ParticipantGroupImporter,
        TubeImporter,
        SpecimenCheckinImporter,
        TubeCheckinBloodImporter,
        SpecimenIntakeImporter,
        SpecimenResultQPCRImporter,
        SpecimenResultAntibodyImporter,
        TecanImporter,
    )
}


def build_importer(
    name: str,
    worksheet: Worksheet,
    store: RecordStore,
    *,
    column_map: Mapping[str, str] | None = None,
    starting_row: int | None = None,
    clock: Callable[[], datetime] | None = None,
    filename: str | None = None,
    id_generator: AccessionIdGenerator | None = None,
) -> ImportPipeline:
    """Fresh pipeline (fresh strategy, caches and message list) for one run."""
    try:
        strategy_cls = IMPORTERS[name]
    except KeyError:
        raise KeyError(f"unknown importer '{name}' (valid: {', '.join(IMPORTERS)})") from None
    kwargs: dict = {"column_map": column_map, "starting_row": starting_row}
    if strategy_cls is ParticipantGroupImporter:
        kwargs["id_generator"] = id_generator
    strategy = strategy_cls(**kwargs)
    return ImportPipeline(strategy, worksheet, store, clock=clock, filename=filename)
