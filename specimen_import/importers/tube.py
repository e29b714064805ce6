from __future__ import annotations

from collections.abc import Iterable

from specimen_import.importers.base import Classified, ImportStrategy
from specimen_import.models.domain import Tube, TubeType
from specimen_import.services.pipeline import RowContext
from specimen_import.services.validation import (
    MAX_TEXT_LENGTH,
    FieldValidator,
    max_length,
    one_of,
)

"""Tube roster import: registers pre-labelled tubes."""

__all__ = [
    "TubeImporter",
]

TUBE_TYPES = [t.value for t in TubeType]


class TubeImporter(ImportStrategy):
    name = "tubes"
    title = "Tubes"
    classifications = ("created",)
    default_column_map = {
        "accessionId": "A",
        "tubeType": "B",
        "kitType": "C",
    }

    def field_validators(self) -> list[FieldValidator]:
        return [
            self._validate_accession_id,
            lambda ctx: one_of(ctx, "tubeType", TUBE_TYPES, f"Tube type must be one of: {', '.join(TUBE_TYPES)}"),
            lambda ctx: max_length(
                ctx, "kitType", MAX_TEXT_LENGTH, f"Kit type cannot be longer than {MAX_TEXT_LENGTH} characters"
            ),
        ]

    @staticmethod
    def _validate_accession_id(ctx: RowContext) -> bool:
        # "0" はスキャナの読み取りミスで入る値
        if ctx.text("accessionId") in ("", "0"):
            return ctx.error("accessionId", "Accession ID cannot be blank or 0")
        return max_length(
            ctx, "accessionId", MAX_TEXT_LENGTH, f"Accession ID must be less than {MAX_TEXT_LENGTH} characters"
        )

    def resolve(self, ctx: RowContext) -> None:
        accession_id = ctx.text("accessionId")
        tubes = self.tubes(ctx.run)
        earlier = tubes.claim(accession_id, ctx.row_number)
        if earlier is not None:
            ctx.error("accessionId", f"Accession ID occurs more than once in uploaded workbook (first on row {earlier})")
            return
        if tubes.resolve(accession_id) is not None:
            ctx.error("accessionId", f'There is already a tube with accession ID "{accession_id}"')

    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        tube_type = ctx.text("tubeType").upper() or None
        tube = ctx.uow.add(
            Tube(
                accession_id=ctx.text("accessionId"),
                tube_type=tube_type,
                kit_type=ctx.text("kitType") or None,
            )
        )
        return [("created", tube)]
