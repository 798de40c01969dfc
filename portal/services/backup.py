"""Daily content snapshots and restore."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .storage import ContentRepository, utcnow_iso


LOGGER = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = 1


class BackupNotFound(LookupError):
    """Raised when no snapshot exists for the requested date."""


def _today() -> date:
    return datetime.now(timezone.utc).date()


class BackupService:
    def __init__(
        self,
        repository: ContentRepository,
        *,
        clock: Callable[[], date] = _today,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def build_snapshot(self) -> Dict[str, Any]:
        content = self._repository.dump_content()
        return {
            "version": BACKUP_FORMAT_VERSION,
            "created_at": utcnow_iso(),
            **content,
        }

    def create_backup(self) -> Dict[str, Any]:
        """Snapshot all content into today's backup row, replacing an earlier one."""

        backup_date = self._clock().isoformat()
        snapshot = self.build_snapshot()
        self._repository.save_backup(backup_date, snapshot)
        summary = {
            "backup_date": backup_date,
            "counts": {
                key: len(value) for key, value in snapshot.items() if isinstance(value, list)
            },
        }
        LOGGER.info("Backup created for %s: %s", backup_date, summary["counts"])
        return summary

    def restore_from_backup(self, backup_date: str) -> Dict[str, int]:
        record = self._repository.get_backup(backup_date)
        if record is None:
            raise BackupNotFound(f"No backup found for {backup_date}")
        counts = self._repository.replace_content(record.backup_data)
        LOGGER.info("Restored content from backup %s", backup_date)
        return counts

    def list_backups(self) -> List[Dict[str, str]]:
        return [
            {"backup_date": backup_date, "created_at": created_at}
            for backup_date, created_at in self._repository.list_backup_dates()
        ]

    def export_backup(self, destination: Path, *, backup_date: Optional[str] = None) -> Path:
        """Write a snapshot to *destination* as JSON.

        Without *backup_date* the current content is exported.
        """

        if backup_date is None:
            data = self.build_snapshot()
        else:
            record = self._repository.get_backup(backup_date)
            if record is None:
                raise BackupNotFound(f"No backup found for {backup_date}")
            data = record.backup_data
        destination = destination.expanduser()
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        LOGGER.info("Backup exported to %s", destination)
        return destination


__all__ = ["BACKUP_FORMAT_VERSION", "BackupNotFound", "BackupService"]
