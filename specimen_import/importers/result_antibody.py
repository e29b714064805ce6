from __future__ import annotations

from collections.abc import Iterable

from specimen_import.importers.base import Classified, ImportStrategy
from specimen_import.models.domain import AntibodyConclusion, AntibodyResult, Specimen, normalize_position
from specimen_import.services.pipeline import RowContext
from specimen_import.services.validation import FieldValidator, number, one_of, require_value

"""Antibody result import.

Unlike qPCR, antibody results are only accepted for specimens that are already
sitting in a well of an existing plate; the row must name the same position
and well identifier that were recorded at check-in.
"""

__all__ = [
    "SpecimenResultAntibodyImporter",
]

CONCLUSIONS = [c.value for c in AntibodyConclusion]


class SpecimenResultAntibodyImporter(ImportStrategy):
    name = "antibody-results"
    title = "Antibody Results"
    classifications = ("created", "updated")
    default_column_map = {
        "specimenId": "A",
        "wellIdentifier": "B",
        "conclusion": "C",
        "signal": "D",
        "wellPosition": "E",
        "plateBarcode": "G",
    }

    def field_validators(self) -> list[FieldValidator]:
        return [
            lambda ctx: require_value(ctx, "specimenId", "Specimen ID cannot be blank"),
            lambda ctx: require_value(ctx, "conclusion", "Conclusion cannot be blank")
            and one_of(ctx, "conclusion", CONCLUSIONS, "Conclusion value not supported"),
            lambda ctx: require_value(ctx, "signal", "Signal cannot be blank")
            and number(ctx, "signal", "Signal value not supported"),
            lambda ctx: require_value(ctx, "plateBarcode", "Well Plate Barcode cannot be blank"),
            self._validate_position,
        ]

    @staticmethod
    def _validate_position(ctx: RowContext) -> bool:
        if not require_value(ctx, "wellPosition", "Well Position cannot be blank"):
            return False
        if normalize_position(ctx.text("wellPosition")) is None:
            return ctx.error("wellPosition", "Well Position must be between A1 and H12")
        return True

    def resolve(self, ctx: RowContext) -> None:
        specimen_id = ctx.text("specimenId")
        specimen: Specimen | None = self.specimens(ctx.run).resolve(specimen_id)
        if specimen is None:
            ctx.error("specimenId", f'Cannot find Specimen by Specimen ID "{specimen_id}"')
            return
        if not specimen.will_allow_adding_results():
            ctx.error("specimenId", "Specimen not in correct status to allow importing results")
            return

        barcode = ctx.text("plateBarcode")
        plate = self.plates(ctx.run).resolve(barcode)
        if plate is None:
            ctx.error("plateBarcode", f'Cannot find Well Plate by barcode "{barcode}"')
            return
        if not plate.has_specimen(specimen_id):
            ctx.error("plateBarcode", f'Specimen "{specimen_id}" not currently on Well Plate "{barcode}"')
            return

        position = normalize_position(ctx.text("wellPosition"))
        wells = plate.wells_for(specimen_id)
        well = next((w for w in wells if w.position == position), None)
        if well is None:
            current = ", ".join(w.position for w in wells if w.position)
            if not current:
                current = "but does not have any positions saved"
            ctx.error(
                "wellPosition",
                f'Specimen "{specimen_id}" currently in Well {current}. '
                f'Results file lists Well "{position}". These must match.',
            )
            return

        uploaded_identifier = ctx.text("wellIdentifier") or None
        if well.well_identifier != uploaded_identifier:
            ctx.error(
                "wellPosition",
                f'Well {position} on Plate {barcode} currently has Well ID "{well.well_identifier or ""}". '
                f'Uploaded value is "{uploaded_identifier or ""}". These must match.',
            )
            return

        ctx.resolved["specimen"] = specimen
        ctx.resolved["position"] = position

    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        specimen: Specimen = ctx.resolved["specimen"]
        classification = "updated" if specimen.antibody_results else "created"
        result = AntibodyResult(
            specimen_accession_id=specimen.accession_id,
            conclusion=ctx.text("conclusion").upper(),
            signal=ctx.text("signal"),
            plate_barcode=ctx.text("plateBarcode"),
            position=ctx.resolved["position"],
            well_identifier=ctx.text("wellIdentifier") or None,
            created_at=ctx.now,
        )
        specimen.add_antibody_result(result)
        ctx.uow.mark_dirty(specimen)
        return [(classification, result)]
