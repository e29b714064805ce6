from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from specimen_import.models.workbook import Worksheet

"""RowData model.

RowData is one worksheet row read through an importer's column map: logical
field name -> decoded cell value (None for absent cells).
"""

__all__ = [
    "RowData",
]


@dataclass(frozen=True)
class RowData:
    row_number: int  # ワークシート上の行番号 (1-based)
    values: dict[str, Any]  # field -> decoded value (absent cell = None)
    columns: Mapping[str, str]  # field -> column letter

    @classmethod
    def from_worksheet(cls, worksheet: Worksheet, row_number: int, column_map: Mapping[str, str]) -> RowData:
        values = {
            name: worksheet.get_cell_value(row_number, letter)
            for name, letter in column_map.items()
        }
        return cls(row_number=row_number, values=values, columns=column_map)

    @property
    def is_blank(self) -> bool:
        return all(v is None for v in self.values.values())

    def value(self, name: str) -> Any:
        return self.values.get(name)

    def text(self, name: str) -> str:
        """Text rendering of a field; "" when blank."""
        v = self.values.get(name)
        if v is None:
            return ""
        if isinstance(v, bool):
            return "TRUE" if v else "FALSE"
        if isinstance(v, datetime):
            return v.isoformat()
        return str(v)

    def number(self, name: str) -> Decimal | None:
        """Decimal value of a numeric field, None when blank or not numeric."""
        v = self.values.get(name)
        if v is None or isinstance(v, (bool, datetime)):
            return None
        try:
            d = Decimal(str(v))
        except InvalidOperation:
            return None
        return d if d.is_finite() else None

    def column(self, name: str) -> str:
        return self.columns[name]
