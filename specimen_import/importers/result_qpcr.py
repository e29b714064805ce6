from __future__ import annotations

from collections.abc import Iterable

from specimen_import.importers.base import Classified, ImportStrategy
from specimen_import.models.domain import QPCRConclusion, QPCRResult, Specimen, normalize_position
from specimen_import.services.pipeline import RowContext
from specimen_import.services.validation import FieldValidator, one_of, require_value

"""qPCR result import.

Rows identify the specimen either by specimen accession id or by the id of the
tube it came in. A result recorded for a specimen that already has a qPCR
result is classified as "updated", otherwise "created".
"""

__all__ = [
    "SpecimenResultQPCRImporter",
]

CONCLUSIONS = [c.value for c in QPCRConclusion]
CT_FIELDS = {
    "ct1": "ct1",
    "ct2": "ct2",
    "ct3": "ct3",
    "ct1AmpScore": "ct1_amp_score",
    "ct2AmpScore": "ct2_amp_score",
    "ct3AmpScore": "ct3_amp_score",
}


class SpecimenResultQPCRImporter(ImportStrategy):
    name = "qpcr-results"
    title = "qPCR Results"
    classifications = ("created", "updated")
    default_column_map = {
        "specimenIdOrTubeId": "A",
        "conclusion": "B",
        "position": "C",
        "plateBarcode": "E",
        "ct1": "H",
        "ct2": "I",
        "ct3": "J",
        "ct1AmpScore": "K",
        "ct2AmpScore": "L",
        "ct3AmpScore": "M",
    }

    def field_validators(self) -> list[FieldValidator]:
        return [
            lambda ctx: require_value(ctx, "specimenIdOrTubeId", "Specimen ID cannot be blank"),
            lambda ctx: require_value(ctx, "conclusion", "Conclusion cannot be blank")
            and one_of(ctx, "conclusion", CONCLUSIONS, "Conclusion value not supported"),
            self._validate_plate_and_position,
        ]

    @staticmethod
    def _validate_plate_and_position(ctx: RowContext) -> bool:
        raw_position = ctx.text("position")
        if raw_position == "":
            return True
        ok = True
        if normalize_position(raw_position) is None:
            ok = ctx.error("position", "Well Position must be between A1 and H12")
        if ctx.text("plateBarcode") == "":
            ok = ctx.error("plateBarcode", "Well Plate Barcode cannot be empty") and ok
        return ok

    def _find_specimen(self, ctx: RowContext, raw_id: str) -> Specimen | None:
        specimens = self.specimens(ctx.run)
        specimen = specimens.resolve(raw_id)
        if specimen is not None:
            return specimen
        tube = self.tubes(ctx.run).resolve(raw_id)
        if tube is not None and tube.specimen_accession_id:
            return specimens.resolve(tube.specimen_accession_id)
        return None

    def resolve(self, ctx: RowContext) -> None:
        raw_id = ctx.text("specimenIdOrTubeId")
        specimen = self._find_specimen(ctx, raw_id)
        if specimen is None:
            ctx.error("specimenIdOrTubeId", f'Cannot find Specimen by Specimen ID or Tube ID "{raw_id}"')
            return
        if not specimen.will_allow_adding_results():
            ctx.error("specimenIdOrTubeId", "Specimen not in correct status to allow importing results")
            return
        ctx.resolved["specimen"] = specimen

        position = normalize_position(ctx.text("position")) if ctx.text("position") else None
        if position is None:
            return
        plate = self.plates(ctx.run).resolve(ctx.text("plateBarcode"))
        if plate is None:
            return
        occupant = plate.well_at(position)
        if occupant is not None and occupant.specimen_accession_id != specimen.accession_id:
            ctx.error(
                "position",
                f'Well "{position}" already contains Specimen "{occupant.specimen_accession_id}". '
                f'Uploaded file tried adding result in this Well for Specimen "{raw_id}".',
            )

    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        specimen: Specimen = ctx.resolved["specimen"]
        position = normalize_position(ctx.text("position")) if ctx.text("position") else None
        barcode = ctx.text("plateBarcode") or None

        if position is not None:
            plate = self.find_or_create_plate(ctx.run, barcode)
            if plate.well_at(position) is None:
                unplaced = [w for w in plate.wells_for(specimen.accession_id) if w.position is None]
                if unplaced:
                    unplaced[0].position = position
                else:
                    plate.add_well(specimen.accession_id, position)
                ctx.uow.mark_dirty(plate)

        classification = "updated" if specimen.qpcr_results else "created"
        result = QPCRResult(
            specimen_accession_id=specimen.accession_id,
            conclusion=ctx.text("conclusion").upper(),
            plate_barcode=barcode,
            position=position,
            created_at=ctx.now,
            **{attr: ctx.text(name) or None for name, attr in CT_FIELDS.items()},
        )
        specimen.add_qpcr_result(result)
        ctx.uow.mark_dirty(specimen)
        return [(classification, result)]
