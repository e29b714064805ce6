from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from specimen_import.models.import_message import ImportMessage

"""MessageRecord model for the JSON Lines message log.

One line per ImportMessage. ``row`` / ``column`` are null for file-level
messages (e.g. a missing plate barcode header).
"""

__all__ = [
    "MessageRecord",
]


@dataclass(frozen=True)
class MessageRecord:
    """Structured message record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded filename
        sheet: worksheet title
        importer: importer name (e.g. specimen-checkin)
        row: 1-based row number, or None for file-level messages
        column: column letter, or None
        severity: ERROR or INFO
        details: message text
    """
    timestamp: str  # ISO8601 UTC
    file: str
    sheet: str
    importer: str
    row: int | None
    column: str | None
    severity: str  # ERROR / INFO
    details: str

    @staticmethod
    def from_message(file: str, sheet: str, importer: str, message: ImportMessage) -> MessageRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return MessageRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            importer=importer,
            row=message.row_number,
            column=message.column_letter,
            severity=message.severity,
            details=message.details,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
