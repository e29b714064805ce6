from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from openpyxl.utils import column_index_from_string

"""ImportMessage model and the per-run message list.

A message is one validation finding. ``row_number`` / ``column_letter`` are
None for findings that concern the whole file. Error-flagged messages exclude
their row from the output; informational ones do not.
"""

__all__ = [
    "ImportMessage",
    "MessageLog",
]


@dataclass(frozen=True)
class ImportMessage:
    details: str
    row_number: int | None = None
    column_letter: str | None = None
    is_error: bool = False

    @staticmethod
    def error(details: str, row_number: int | None = None, column_letter: str | None = None) -> ImportMessage:
        return ImportMessage(details=details, row_number=row_number, column_letter=column_letter, is_error=True)

    @staticmethod
    def info(details: str, row_number: int | None = None, column_letter: str | None = None) -> ImportMessage:
        return ImportMessage(details=details, row_number=row_number, column_letter=column_letter, is_error=False)

    @property
    def severity(self) -> str:
        return "ERROR" if self.is_error else "INFO"

    @property
    def location(self) -> str:
        if self.row_number is None:
            return "file"
        if self.column_letter is None:
            return f"row {self.row_number}"
        return f"{self.column_letter}{self.row_number}"

    def sort_key(self) -> tuple[int, int]:
        # ファイル単位メッセージ (row=None) を先頭に
        row = self.row_number if self.row_number is not None else 0
        col = column_index_from_string(self.column_letter) if self.column_letter else 0
        return (row, col)


class MessageLog:
    """Ordered list of ImportMessage for one import run."""

    def __init__(self) -> None:
        self._messages: list[ImportMessage] = []

    def append(self, message: ImportMessage) -> None:
        self._messages.append(message)

    def errors(self) -> list[ImportMessage]:
        return [m for m in self._messages if m.is_error]

    def non_errors(self) -> list[ImportMessage]:
        return [m for m in self._messages if not m.is_error]

    def has_errors(self) -> bool:
        return any(m.is_error for m in self._messages)

    def has_non_errors(self) -> bool:
        return any(not m.is_error for m in self._messages)

    def for_row(self, row_number: int) -> list[ImportMessage]:
        return [m for m in self._messages if m.row_number == row_number]

    def grouped(self) -> list[ImportMessage]:
        """Messages ordered by row then column; stable for equal positions."""
        return sorted(self._messages, key=ImportMessage.sort_key)

    def __iter__(self) -> Iterator[ImportMessage]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)
