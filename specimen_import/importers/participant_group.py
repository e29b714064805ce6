from __future__ import annotations

from collections.abc import Iterable

from specimen_import.importers.base import Classified, ImportStrategy
from specimen_import.models.domain import ParticipantGroup
from specimen_import.models.import_result import ImportOutput
from specimen_import.services.accession import AccessionIdGenerator
from specimen_import.services.pipeline import ImportRun, RowContext
from specimen_import.services.validation import (
    MAX_TEXT_LENGTH,
    FieldValidator,
    max_length,
    require_value,
    scanner_safe,
    whole_number,
)

"""Participant group roster import.

The roster is the full list of groups: groups in the file are created or
updated (matched by the external "Sys ID"), active groups missing from the
file are deactivated.
"""

__all__ = [
    "ParticipantGroupImporter",
]

PREVIEW_ACCESSION_ID = "(automatic)"


class ParticipantGroupImporter(ImportStrategy):
    name = "participant-groups"
    title = "Participant Groups"
    classifications = ("created", "updated", "deactivated")
    default_column_map = {
        "externalId": "C",
        "participantCount": "H",
        "title": "J",
    }

    def __init__(self, *, id_generator: AccessionIdGenerator | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._id_generator = id_generator
        self._listed: set[str] = set()

    def begin(self, run: ImportRun) -> None:
        self._listed = set()
        if self._id_generator is None:
            self._id_generator = AccessionIdGenerator(
                lambda candidate: run.uow.find_by(ParticipantGroup, "accession_id", candidate) is not None
            )

    def field_validators(self) -> list[FieldValidator]:
        return [
            self._remember_listed,
            lambda ctx: require_value(ctx, "externalId", "Sys ID cannot be blank")
            and max_length(ctx, "externalId", MAX_TEXT_LENGTH, f"Sys ID must be less than {MAX_TEXT_LENGTH} characters"),
            lambda ctx: require_value(ctx, "title", "Title cannot be blank")
            and max_length(ctx, "title", MAX_TEXT_LENGTH, f"Title must be less than {MAX_TEXT_LENGTH} characters")
            and scanner_safe(ctx, "title"),
            self._validate_participant_count,
        ]

    def _remember_listed(self, ctx: RowContext) -> bool:
        # 検証エラー行でも Sys ID があれば無効化対象から外す
        if ctx.text("externalId"):
            self._listed.add(ctx.text("externalId"))
        return True

    @staticmethod
    def _validate_participant_count(ctx: RowContext) -> bool:
        if ctx.text("participantCount") == "":
            ctx.info("participantCount", "Participant count is blank, using 0")
            return True
        if not whole_number(ctx, "participantCount", "Participant count must be a whole number"):
            return False
        if ctx.number("participantCount") < 0:
            return ctx.error("participantCount", "Participant count cannot be less than 0")
        return True

    def resolve(self, ctx: RowContext) -> None:
        external_id = ctx.text("externalId")
        groups = ctx.run.cache("group", lambda key: ctx.uow.get(ParticipantGroup, key))
        group = groups.resolve(external_id)
        earlier = groups.claim(external_id, ctx.row_number)
        if earlier is not None:
            ctx.error("externalId", f"Sys ID occurs more than once in uploaded workbook (first on row {earlier})")
            return
        ctx.resolved["group"] = group

    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        group: ParticipantGroup | None = ctx.resolved["group"]
        count = ctx.number("participantCount")
        participant_count = int(count) if count is not None else 0

        if group is None:
            accession_id = self._id_generator.generate() if ctx.run.commit else PREVIEW_ACCESSION_ID
            group = ctx.uow.add(
                ParticipantGroup(
                    external_id=ctx.text("externalId"),
                    accession_id=accession_id,
                    title=ctx.text("title"),
                    participant_count=participant_count,
                )
            )
            ctx.run.caches["group"].put(group.external_id, group)
            return [("created", group)]

        # ファイルに存在する = updated (値の変化有無は問わない)
        group.title = ctx.text("title")
        group.participant_count = participant_count
        group.is_active = True
        ctx.uow.mark_dirty(group)
        return [("updated", group)]

    def finish(self, run: ImportRun, output: ImportOutput) -> None:
        for group in run.uow.all(ParticipantGroup):
            if group.is_active and group.external_id not in self._listed:
                group.is_active = False
                run.uow.mark_dirty(group)
                output.add("deactivated", group)
