from __future__ import annotations

from collections.abc import Iterable

from specimen_import.importers.base import Classified, ImportStrategy
from specimen_import.models.domain import Specimen, SpecimenStatus, Tube, TubeStatus
from specimen_import.services.pipeline import RowContext
from specimen_import.services.validation import (
    MAX_TEXT_LENGTH,
    FieldValidator,
    max_length,
    require_value,
)

"""Check-in decision imports.

A technician records, per returned tube, whether it is accepted or rejected.
CheckinDecisionImporter carries the shared tube resolution and decision logic;
SpecimenCheckinImporter is the saliva check-in sheet (optional RNA plate),
the blood and intake variants live in their own modules.
"""

__all__ = [
    "CheckinDecisionImporter",
    "SpecimenCheckinImporter",
]


class CheckinDecisionImporter(ImportStrategy):
    """Shared behaviour of the accept / reject check-in sheets."""

    classifications = ("accepted", "rejected")

    # 派生クラスで列名 / 文言を差し替える
    tube_field = "tubeId"
    decision_field = "acceptedStatus"
    username_field = "username"
    decision_values = {"ACCEPTED": TubeStatus.ACCEPTED, "REJECTED": TubeStatus.REJECTED}
    username_label = "Technician Username"

    def field_validators(self) -> list[FieldValidator]:
        return [
            lambda ctx: require_value(ctx, self.tube_field, self.blank_tube_message()),
            self._validate_decision,
            lambda ctx: require_value(ctx, self.username_field, f"{self.username_label} cannot be blank")
            and max_length(
                ctx,
                self.username_field,
                MAX_TEXT_LENGTH,
                f"{self.username_label} must be less than {MAX_TEXT_LENGTH} characters",
            ),
        ]

    def _validate_decision(self, ctx: RowContext) -> bool:
        if ctx.text(self.decision_field).upper() not in self.decision_values:
            return ctx.error(
                self.decision_field,
                f"Accept/Reject must be one of: {', '.join(self.decision_values)}",
            )
        return True

    # --- messages (overridden by variants) --------------------------------

    def blank_tube_message(self) -> str:
        return "Tube ID cannot be blank"

    def tube_not_found_message(self, tube_id: str) -> str:
        return "Tube not found by Tube ID"

    def wrong_status_message(self, tube: Tube) -> str:
        return f"Tube cannot be checked-in because it is in the wrong status: {tube.status_text}"

    # --- resolution -------------------------------------------------------

    def resolve(self, ctx: RowContext) -> None:
        tube_id = ctx.text(self.tube_field)
        tubes = self.tubes(ctx.run)
        tube = tubes.resolve(tube_id)
        if tube is None:
            ctx.error(self.tube_field, self.tube_not_found_message(tube_id))
            return
        # 重複判定はステータス判定より先 (1 行目の処理でステータスが変わっているため)
        if tubes.claim(tube_id, ctx.row_number) is not None:
            ctx.error(self.tube_field, "Tube ID occurs more than once in uploaded workbook")
            return
        if not self.check_tube(ctx, tube):
            return
        if not tube.will_allow_checkin_decision():
            ctx.error(self.tube_field, self.wrong_status_message(tube))
            return
        ctx.resolved["tube"] = tube
        ctx.resolved["specimen"] = (
            self.specimens(ctx.run).resolve(tube.specimen_accession_id)
            if tube.specimen_accession_id
            else None
        )
        self.resolve_extra(ctx, tube)

    def check_tube(self, ctx: RowContext, tube: Tube) -> bool:
        return True

    def resolve_extra(self, ctx: RowContext, tube: Tube) -> None:
        return None

    # --- apply ------------------------------------------------------------

    def decide(self, ctx: RowContext) -> TubeStatus:
        return self.decision_values[ctx.text(self.decision_field).upper()]

    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        tube: Tube = ctx.resolved["tube"]
        specimen: Specimen | None = ctx.resolved["specimen"]
        decision = self.decide(ctx)
        username = ctx.text(self.username_field)

        if decision is TubeStatus.ACCEPTED:
            tube.mark_accepted(username, ctx.now)
        else:
            tube.mark_rejected(username, ctx.now)
        if specimen is not None:
            specimen.status = (
                SpecimenStatus.ACCEPTED.value if decision is TubeStatus.ACCEPTED else SpecimenStatus.REJECTED.value
            )
            ctx.uow.mark_dirty(specimen)

        self.apply_extra(ctx, tube, specimen)
        ctx.uow.mark_dirty(tube)
        return [(decision.value.lower(), tube)]

    def apply_extra(self, ctx: RowContext, tube: Tube, specimen: Specimen | None) -> None:
        return None


class SpecimenCheckinImporter(CheckinDecisionImporter):
    """Saliva check-in sheet; the RNA well plate column is optional."""

    name = "specimen-checkin"
    title = "Specimen Check-in"
    default_column_map = {
        "tubeId": "A",
        "acceptedStatus": "B",
        "rnaWellPlateId": "C",
        "kitType": "D",
        "username": "E",
    }

    def field_validators(self) -> list[FieldValidator]:
        return super().field_validators() + [
            lambda ctx: max_length(
                ctx, "rnaWellPlateId", MAX_TEXT_LENGTH,
                f"RNA Well Plate ID must be less than {MAX_TEXT_LENGTH} characters",
            ),
            lambda ctx: max_length(
                ctx, "kitType", MAX_TEXT_LENGTH, f"Kit type cannot be longer than {MAX_TEXT_LENGTH} characters"
            ),
        ]

    def apply_extra(self, ctx: RowContext, tube: Tube, specimen: Specimen | None) -> None:
        if ctx.text("kitType"):
            tube.kit_type = ctx.text("kitType")
        barcode = ctx.text("rnaWellPlateId")
        if not barcode or specimen is None:
            return
        plate = self.find_or_create_plate(ctx.run, barcode)
        if not plate.has_specimen(specimen.accession_id):
            plate.add_well(specimen.accession_id)
            ctx.uow.mark_dirty(plate)
