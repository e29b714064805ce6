from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

from specimen_import.models.workbook import Workbook

"""Workbook staging.

An uploaded workbook is decoded once and staged as a JSON document until it is
committed or expires. The preview and the later commit read the same staged
cells, so both runs see identical input.

Expiry: workbooks older than ``retention_days`` (by upload timestamp) are
eligible for deletion; purge_expired() only deletes when ``force`` is set.
"""

__all__ = [
    "StagingError",
    "WorkbookStaging",
]

logger = logging.getLogger(__name__)


class StagingError(Exception):
    pass


class WorkbookStaging:
    def __init__(self, directory: Path, retention_days: int = 7) -> None:
        self.directory = Path(directory)
        self.retention = timedelta(days=retention_days)

    def _path(self, workbook_id: str) -> Path:
        # id はファイル名に使うため hex のみ許可
        if not workbook_id or not all(c in "0123456789abcdef" for c in workbook_id):
            raise StagingError(f"invalid workbook id: {workbook_id!r}")
        return self.directory / f"{workbook_id}.json"

    def stage(self, workbook: Workbook) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        if workbook.id is None:
            workbook.id = uuid.uuid4().hex
        path = self._path(workbook.id)
        path.write_text(json.dumps(workbook.to_document(), ensure_ascii=False), encoding="utf-8")
        logger.debug("staged %s as %s", workbook.filename, workbook.id)
        return workbook.id

    def exists(self, workbook_id: str) -> bool:
        try:
            return self._path(workbook_id).exists()
        except StagingError:
            return False

    def load(self, workbook_id: str) -> Workbook:
        path = self._path(workbook_id)
        if not path.exists():
            raise StagingError(f"staged workbook not found: {workbook_id}")
        try:
            return Workbook.from_document(json.loads(path.read_text(encoding="utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            raise StagingError(f"staged workbook {workbook_id} is corrupt: {e}") from e

    def remove(self, workbook_id: str) -> None:
        path = self._path(workbook_id)
        if not path.exists():
            raise StagingError(f"staged workbook not found: {workbook_id}")
        path.unlink()

    def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))

    def find_expired(self, now: datetime | None = None) -> list[str]:
        now = now or datetime.now(UTC)
        cutoff = now - self.retention
        expired = []
        for workbook_id in self.list_ids():
            # 壊れたファイルは一覧から外して掃除を続ける
            try:
                workbook = self.load(workbook_id)
            except StagingError as e:
                logger.warning("skipping staged file %s.json: %s", workbook_id, e)
                continue
            if workbook.uploaded_at < cutoff:
                expired.append(workbook_id)
        return expired

    def purge_expired(self, now: datetime | None = None, *, force: bool = False) -> list[str]:
        """Expired workbook ids; deleted only when ``force`` is set."""
        expired = self.find_expired(now)
        if force:
            for workbook_id in expired:
                self.remove(workbook_id)
            logger.info("removed %d expired workbook(s)", len(expired))
        return expired
