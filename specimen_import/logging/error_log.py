from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from specimen_import.models.import_message import ImportMessage
from specimen_import.models.message_record import MessageRecord

"""Import message log buffering.

- JSON Lines fixed schema (no extra keys), see MessageRecord
- one file per process run: `logs/import-messages-YYYYMMDD-HHMMSS.log` (UTC)
- records are buffered and written on flush()
"""

__all__ = [
    "MessageRecord",
    "MessageLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class MessageLogBuffer:
    """In-memory buffer for message records. Flush writes JSON Lines.

    - flush() appends everything buffered to the run's file (created on first flush)
    - the file path is decided on first access
    - single-threaded use only
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[MessageRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = Path(logs_dir) if logs_dir is not None else LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"import-messages-{stamp}.log"
        return self._file_path

    def append(self, record: MessageRecord) -> None:
        self._records.append(record)

    def extend_from_messages(
        self, file: str, sheet: str, importer: str, messages: Iterable[ImportMessage]
    ) -> None:
        for message in messages:
            self.append(MessageRecord.from_message(file, sheet, importer, message))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records. Returns the file path, or None when nothing was buffered."""
        if not self._records:
            return None  # メッセージ無しならファイルを作らない
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
