from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

"""Domain records consumed by the importers.

These are the persistence-side records the engine reconciles rows against:
tubes, specimens (with their results), well plates (with their wells) and
participant groups. Each record is addressed by a natural key and carries a
``version`` used for optimistic locking on commit.

The workflow guard predicates (``will_allow_*``) belong to the records; the
importers only consult them and treat False as a row-level failure.
"""

__all__ = [
    "Record",
    "TubeStatus",
    "TubeType",
    "SpecimenStatus",
    "QPCRConclusion",
    "AntibodyConclusion",
    "Tube",
    "Specimen",
    "QPCRResult",
    "AntibodyResult",
    "SpecimenWell",
    "WellPlate",
    "ParticipantGroup",
    "RECORD_TYPES",
    "position_from_int",
    "normalize_position",
    "is_valid_position",
]


class TubeStatus(str, Enum):
    CREATED = "CREATED"
    PRINTED = "PRINTED"
    KIOSK = "KIOSK"
    RETURNED = "RETURNED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


TUBE_STATUS_TEXT = {
    TubeStatus.CREATED.value: "Created",
    TubeStatus.PRINTED.value: "Label Printed",
    TubeStatus.KIOSK.value: "At Kiosk",
    TubeStatus.RETURNED.value: "Returned",
    TubeStatus.ACCEPTED.value: "Accepted",
    TubeStatus.REJECTED.value: "Rejected",
}


class TubeType(str, Enum):
    BLOOD = "BLOOD"
    SALIVA = "SALIVA"
    SWAB = "SWAB"


class SpecimenStatus(str, Enum):
    CREATED = "CREATED"
    RETURNED = "RETURNED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    IN_PROCESS = "IN_PROCESS"
    RESULTS = "RESULTS"


class QPCRConclusion(str, Enum):
    PENDING = "PENDING"
    NEGATIVE = "NEGATIVE"
    POSITIVE = "POSITIVE"
    RECOMMENDED = "RECOMMENDED"
    INCONCLUSIVE = "INCONCLUSIVE"


class AntibodyConclusion(str, Enum):
    NEGATIVE = "NEGATIVE"
    PARTIAL = "PARTIAL"
    WEAK = "WEAK"
    STRONG = "STRONG"


# 96 ウェルプレート: 行 A-H / 列 1-12
PLATE_ROWS = "ABCDEFGH"
PLATE_COLUMNS = 12
MIN_INTEGER_POSITION = 1
MAX_INTEGER_POSITION = len(PLATE_ROWS) * PLATE_COLUMNS


def position_from_int(position: int) -> str:
    """Convert a plate-reader integer position to alphanumeric (column-major).

    1 -> A1, 2 -> B1, ... 8 -> H1, 9 -> A2, ... 96 -> H12
    """
    if position < MIN_INTEGER_POSITION or position > MAX_INTEGER_POSITION:
        raise ValueError(
            f"Position must be between {MIN_INTEGER_POSITION} and {MAX_INTEGER_POSITION}"
        )
    index = position - 1
    return f"{PLATE_ROWS[index % len(PLATE_ROWS)]}{index // len(PLATE_ROWS) + 1}"


def normalize_position(raw: str) -> str | None:
    """Canonical alphanumeric well position ("a01" -> "A1"), None when invalid."""
    text = raw.strip().upper()
    if len(text) < 2 or text[0] not in PLATE_ROWS or not text[1:].isdigit():
        return None
    column = int(text[1:])
    if column < 1 or column > PLATE_COLUMNS:
        return None
    return f"{text[0]}{column}"


def is_valid_position(raw: str) -> bool:
    return normalize_position(raw) is not None


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Record:
    """Base for stored records: natural key + optimistic-lock version."""

    kind: ClassVar[str] = ""
    key_field: ClassVar[str] = ""
    datetime_fields: ClassVar[tuple[str, ...]] = ()

    version: int = field(default=0, kw_only=True, compare=False)

    @property
    def natural_key(self) -> str:
        return getattr(self, self.key_field)

    def to_document(self) -> dict[str, Any]:
        doc = _plain(asdict(self))
        doc.pop("version", None)
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any], *, version: int = 0) -> Record:
        names = {f.name for f in fields(cls)} - {"version"}
        kwargs = {k: v for k, v in doc.items() if k in names}
        for name in cls.datetime_fields:
            if name in kwargs:
                kwargs[name] = _parse_datetime(kwargs[name])
        return cls(**kwargs, version=version)


@dataclass
class Tube(Record):
    kind: ClassVar[str] = "tube"
    key_field: ClassVar[str] = "accession_id"
    datetime_fields: ClassVar[tuple[str, ...]] = ("checked_in_at",)

    accession_id: str
    status: str = TubeStatus.CREATED.value
    tube_type: str | None = None
    kit_type: str | None = None
    check_in_decision: str | None = None
    checked_in_by: str | None = None
    checked_in_at: datetime | None = None
    specimen_accession_id: str | None = None

    @property
    def status_text(self) -> str:
        return TUBE_STATUS_TEXT.get(self.status, self.status)

    def will_allow_checkin_decision(self) -> bool:
        return self.status == TubeStatus.RETURNED

    def will_allow_tecan_import(self) -> bool:
        return self.status == TubeStatus.ACCEPTED and self.specimen_accession_id is not None

    def mark_accepted(self, checked_in_by: str, checked_in_at: datetime) -> None:
        self._decide(TubeStatus.ACCEPTED, checked_in_by, checked_in_at)

    def mark_rejected(self, checked_in_by: str, checked_in_at: datetime) -> None:
        self._decide(TubeStatus.REJECTED, checked_in_by, checked_in_at)

    def _decide(self, decision: TubeStatus, checked_in_by: str, checked_in_at: datetime) -> None:
        self.status = decision.value
        self.check_in_decision = decision.value
        self.checked_in_by = checked_in_by
        self.checked_in_at = checked_in_at


@dataclass
class QPCRResult:
    specimen_accession_id: str
    conclusion: str
    plate_barcode: str | None = None
    position: str | None = None
    ct1: str | None = None
    ct2: str | None = None
    ct3: str | None = None
    ct1_amp_score: str | None = None
    ct2_amp_score: str | None = None
    ct3_amp_score: str | None = None
    created_at: datetime | None = None

    @property
    def natural_key(self) -> str:
        return self.specimen_accession_id

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> QPCRResult:
        return cls(**{**doc, "created_at": _parse_datetime(doc.get("created_at"))})


@dataclass
class AntibodyResult:
    specimen_accession_id: str
    conclusion: str
    signal: str
    plate_barcode: str
    position: str
    well_identifier: str | None = None
    created_at: datetime | None = None

    @property
    def natural_key(self) -> str:
        return self.specimen_accession_id

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> AntibodyResult:
        return cls(**{**doc, "created_at": _parse_datetime(doc.get("created_at"))})


@dataclass
class Specimen(Record):
    kind: ClassVar[str] = "specimen"
    key_field: ClassVar[str] = "accession_id"

    accession_id: str
    status: str = SpecimenStatus.CREATED.value
    qpcr_results: list[QPCRResult] = field(default_factory=list)
    antibody_results: list[AntibodyResult] = field(default_factory=list)

    def will_allow_adding_results(self) -> bool:
        return self.status in (
            SpecimenStatus.ACCEPTED,
            SpecimenStatus.IN_PROCESS,
            SpecimenStatus.RESULTS,
        )

    def add_qpcr_result(self, result: QPCRResult) -> None:
        self.qpcr_results.append(result)
        self.status = SpecimenStatus.RESULTS.value

    def add_antibody_result(self, result: AntibodyResult) -> None:
        self.antibody_results.append(result)
        self.status = SpecimenStatus.RESULTS.value

    @classmethod
    def from_document(cls, doc: dict[str, Any], *, version: int = 0) -> Specimen:
        return cls(
            accession_id=doc["accession_id"],
            status=doc.get("status", SpecimenStatus.CREATED.value),
            qpcr_results=[QPCRResult.from_document(r) for r in doc.get("qpcr_results", [])],
            antibody_results=[AntibodyResult.from_document(r) for r in doc.get("antibody_results", [])],
            version=version,
        )


@dataclass
class SpecimenWell:
    plate_barcode: str
    specimen_accession_id: str
    position: str | None = None
    well_identifier: str | None = None

    @property
    def natural_key(self) -> str:
        return self.specimen_accession_id


@dataclass
class WellPlate(Record):
    kind: ClassVar[str] = "plate"
    key_field: ClassVar[str] = "barcode"

    barcode: str
    wells: list[SpecimenWell] = field(default_factory=list)

    def well_at(self, position: str) -> SpecimenWell | None:
        for well in self.wells:
            if well.position == position:
                return well
        return None

    def wells_for(self, specimen_accession_id: str) -> list[SpecimenWell]:
        return [w for w in self.wells if w.specimen_accession_id == specimen_accession_id]

    def has_specimen(self, specimen_accession_id: str) -> bool:
        return bool(self.wells_for(specimen_accession_id))

    def add_well(
        self,
        specimen_accession_id: str,
        position: str | None = None,
        well_identifier: str | None = None,
    ) -> SpecimenWell:
        well = SpecimenWell(
            plate_barcode=self.barcode,
            specimen_accession_id=specimen_accession_id,
            position=position,
            well_identifier=well_identifier,
        )
        self.wells.append(well)
        return well

    @classmethod
    def from_document(cls, doc: dict[str, Any], *, version: int = 0) -> WellPlate:
        return cls(
            barcode=doc["barcode"],
            wells=[SpecimenWell(**w) for w in doc.get("wells", [])],
            version=version,
        )


@dataclass
class ParticipantGroup(Record):
    kind: ClassVar[str] = "group"
    key_field: ClassVar[str] = "external_id"

    external_id: str
    accession_id: str
    title: str
    participant_count: int = 0
    is_active: bool = True


RECORD_TYPES: dict[str, type[Record]] = {
    cls.kind: cls for cls in (Tube, Specimen, WellPlate, ParticipantGroup)
}
