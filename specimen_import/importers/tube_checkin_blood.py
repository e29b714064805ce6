from __future__ import annotations

from specimen_import.importers.specimen_checkin import CheckinDecisionImporter
from specimen_import.models.domain import Specimen, Tube, TubeType, normalize_position
from specimen_import.services.pipeline import ImportStateError, RowContext
from specimen_import.services.validation import (
    MAX_TEXT_LENGTH,
    FieldValidator,
    max_length,
    require_value,
)

"""Blood tube check-in.

Same accept / reject decision as the saliva sheet, but every blood tube is
placed in a well (plate barcode, well identifier and position are required).
"""

__all__ = [
    "TubeCheckinBloodImporter",
]


class TubeCheckinBloodImporter(CheckinDecisionImporter):
    name = "tube-checkin-blood"
    title = "Blood Tube Check-in"
    tube_field = "tubeAccessionId"
    default_column_map = {
        "tubeAccessionId": "A",
        "acceptedStatus": "B",
        "wellPlateBarcode": "C",
        "wellIdentifier": "D",
        "wellPosition": "E",
        "kitType": "F",
        "username": "G",
    }

    def field_validators(self) -> list[FieldValidator]:
        return super().field_validators() + [
            lambda ctx: require_value(ctx, "wellPlateBarcode", "Well Plate Barcode cannot be blank")
            and max_length(
                ctx, "wellPlateBarcode", MAX_TEXT_LENGTH,
                f"Well Plate Barcode must be less than {MAX_TEXT_LENGTH} characters",
            ),
            lambda ctx: require_value(ctx, "wellIdentifier", "Well Identifier cannot be blank"),
            self._validate_position,
            lambda ctx: max_length(
                ctx, "kitType", MAX_TEXT_LENGTH, f"Kit type cannot be longer than {MAX_TEXT_LENGTH} characters"
            ),
        ]

    @staticmethod
    def _validate_position(ctx: RowContext) -> bool:
        if not require_value(ctx, "wellPosition", "Well Position cannot be blank"):
            return False
        if normalize_position(ctx.text("wellPosition")) is None:
            return ctx.error("wellPosition", "Well Position must be between A1 and H12")
        return True

    def check_tube(self, ctx: RowContext, tube: Tube) -> bool:
        if tube.tube_type not in (None, TubeType.BLOOD.value):
            return ctx.error(self.tube_field, "Tube ID not marked to store Blood")
        if tube.specimen_accession_id is None:
            return ctx.error(self.tube_field, "Tube found but does not have a Specimen associated with it")
        return True

    def resolve_extra(self, ctx: RowContext, tube: Tube) -> None:
        if ctx.resolved["specimen"] is None:
            ctx.error(self.tube_field, f'Specimen "{tube.specimen_accession_id}" not found for Tube')
            return
        barcode = ctx.text("wellPlateBarcode")
        position = normalize_position(ctx.text("wellPosition"))
        plate = self.plates(ctx.run).resolve(barcode)
        if plate is None:
            return
        occupant = plate.well_at(position)
        if occupant is not None and occupant.specimen_accession_id != tube.specimen_accession_id:
            ctx.error(
                "wellPosition",
                f'Well "{position}" already contains Specimen "{occupant.specimen_accession_id}"',
            )

    def apply_extra(self, ctx: RowContext, tube: Tube, specimen: Specimen | None) -> None:
        if specimen is None:
            raise ImportStateError(f"row {ctx.row_number}: blood check-in reached apply() without a specimen")
        tube.tube_type = TubeType.BLOOD.value
        if ctx.text("kitType"):
            tube.kit_type = ctx.text("kitType")

        plate = self.find_or_create_plate(ctx.run, ctx.text("wellPlateBarcode"))
        position = normalize_position(ctx.text("wellPosition"))
        unplaced = [w for w in plate.wells_for(specimen.accession_id) if w.position is None]
        if unplaced:
            well = unplaced[0]
            well.position = position
            well.well_identifier = ctx.text("wellIdentifier")
        else:
            plate.add_well(specimen.accession_id, position, ctx.text("wellIdentifier"))
        ctx.uow.mark_dirty(plate)
