from __future__ import annotations

from collections.abc import Iterable

from specimen_import.importers.base import Classified, ImportStrategy
from specimen_import.models.domain import (
    MAX_INTEGER_POSITION,
    MIN_INTEGER_POSITION,
    Specimen,
    Tube,
    WellPlate,
    position_from_int,
)
from specimen_import.models.import_result import ImportOutput
from specimen_import.models.workbook import Worksheet
from specimen_import.services.pipeline import ImportRun, RowContext, StructuralImportError
from specimen_import.services.validation import FieldValidator, integer_in_range, require_value

"""Tecan plate-reader output import.

The liquid handler exports a tab-delimited file (usually with an .xls
extension). Layout:

    row 1      headers; "Position" in A1, "SRCTubeID" in F1
    row 2      the RNA well plate barcode in I2
    row 3..    one line per transferred tube: integer position 1-96, tube id

Positions are numbered column-major (1 = A1, 2 = B1, ... 9 = A2). A file whose
headers or plate barcode are missing is rejected before any row is read.
"""

__all__ = [
    "TecanImporter",
]

WELL_POSITION_HEADER = "Position"
TUBE_ID_HEADER = "SRCTubeID"
HEADER_ROW = 1
PLATE_BARCODE_ROW = 2
PLATE_BARCODE_COLUMN = "I"


class TecanImporter(ImportStrategy):
    name = "tecan"
    title = "Tecan Plate Output"
    classifications = ("created", "updated")
    default_starting_row = 3
    default_column_map = {
        "wellPosition": "A",
        "tubeAccessionId": "F",
    }

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.plate_barcode: str | None = None
        self._positions: dict[int, int] = {}

    def check_structure(self, worksheet: Worksheet) -> None:
        for field_name, header in (("wellPosition", WELL_POSITION_HEADER), ("tubeAccessionId", TUBE_ID_HEADER)):
            column = self.column_map[field_name]
            if worksheet.get_cell_text(HEADER_ROW, column) != header:
                raise StructuralImportError(
                    f"Cannot find column {header}. Expected to find at cell {column}{HEADER_ROW}"
                )
        if worksheet.get_cell_text(PLATE_BARCODE_ROW, PLATE_BARCODE_COLUMN) == "":
            raise StructuralImportError(
                "Well Plate ID cannot be located in uploaded file. "
                f"Expected to find at cell {PLATE_BARCODE_COLUMN}{PLATE_BARCODE_ROW}"
            )

    def begin(self, run: ImportRun) -> None:
        self.plate_barcode = run.worksheet.get_cell_text(PLATE_BARCODE_ROW, PLATE_BARCODE_COLUMN)
        self._positions = {}

    def field_validators(self) -> list[FieldValidator]:
        return [
            lambda ctx: require_value(ctx, "tubeAccessionId", "Tube ID cannot be blank"),
            lambda ctx: require_value(ctx, "wellPosition", "Position cannot be blank")
            and integer_in_range(
                ctx,
                "wellPosition",
                MIN_INTEGER_POSITION,
                MAX_INTEGER_POSITION,
                f"Position must be between {MIN_INTEGER_POSITION} and {MAX_INTEGER_POSITION}",
            ),
        ]

    def resolve(self, ctx: RowContext) -> None:
        tube_id = ctx.text("tubeAccessionId")
        tubes = self.tubes(ctx.run)
        tube: Tube | None = tubes.resolve(tube_id)
        if tube is None:
            ctx.error("tubeAccessionId", "Tube not found by Tube ID")
            return
        if tubes.claim(tube_id, ctx.row_number) is not None:
            ctx.error("tubeAccessionId", "Tube ID occurs more than once in uploaded workbook")
            return
        if tube.specimen_accession_id is None:
            ctx.error("tubeAccessionId", "Tube found but does not have a Specimen associated with it")
            return
        if not tube.will_allow_tecan_import():
            ctx.error("tubeAccessionId", "Tube not in correct status to allow importing")
            return
        specimen: Specimen | None = self.specimens(ctx.run).resolve(tube.specimen_accession_id)
        if specimen is None:
            ctx.error("tubeAccessionId", f'Specimen "{tube.specimen_accession_id}" not found for Tube')
            return

        raw_position = int(ctx.number("wellPosition"))
        earlier = self._positions.get(raw_position)
        if earlier is not None:
            ctx.error("wellPosition", f"Position {raw_position} occurs more than once in uploaded workbook (first on row {earlier})")
            return
        self._positions[raw_position] = ctx.row_number
        position = position_from_int(raw_position)

        plate: WellPlate | None = self.plates(ctx.run).resolve(self.plate_barcode)
        if plate is not None:
            occupant = plate.well_at(position)
            if occupant is not None and occupant.specimen_accession_id != specimen.accession_id:
                ctx.error(
                    "wellPosition",
                    f'Well "{position}" already contains Specimen "{occupant.specimen_accession_id}"',
                )
                return

        ctx.resolved["specimen"] = specimen
        ctx.resolved["position"] = position

    def apply(self, ctx: RowContext) -> Iterable[Classified]:
        specimen: Specimen = ctx.resolved["specimen"]
        position: str = ctx.resolved["position"]
        plate = self.find_or_create_plate(ctx.run, self.plate_barcode)

        wells = plate.wells_for(specimen.accession_id)
        classification = "updated" if wells else "created"
        # 同一位置 > 位置未設定 > 新規 の順で既存ウェルを再利用
        well = next((w for w in wells if w.position == position), None)
        if well is None:
            well = next((w for w in wells if w.position is None), None)
        if well is None:
            well = plate.add_well(specimen.accession_id)
        well.position = position
        ctx.uow.mark_dirty(plate)
        return [(classification, well)]

    def finish(self, run: ImportRun, output: ImportOutput) -> None:
        if output.total() == 0 and not run.messages.has_errors():
            run.file_message(f"No tubes found for Well Plate {self.plate_barcode}", is_error=False)
