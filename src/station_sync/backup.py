"""
backup.py - File copies of the local database before destructive changes.

Backups sit beside the database as ``<file>.backup.<epoch ms>``. Only
the newest few are kept, by modification time.
"""

import logging
import shutil
import time
from pathlib import Path

from station_sync.config import BACKUP_RETENTION, BACKUP_SUFFIX
from station_sync.errors import StorageFailure
from station_sync.stores.local import LocalStore

logger = logging.getLogger(__name__)


def _stamp(path: Path) -> int:
    suffix = path.name.rsplit(BACKUP_SUFFIX, 1)[-1]
    return int(suffix) if suffix.isdigit() else 0


class BackupManager:
    """Creates and rotates local database backups."""

    def __init__(self, store: LocalStore, retention: int = BACKUP_RETENTION):
        self._store = store
        self._retention = retention

    @property
    def db_path(self) -> Path:
        return Path(self._store.path)

    def create(self) -> Path | None:
        """
        Copy the database file and rotate old copies.

        The WAL is checkpointed first so the copy is complete on its own.
        Returns None for an in-memory database.

        Raises:
            StorageFailure: If the copy cannot be written
        """
        if self._store.path == ":memory:":
            return None

        self._store.checkpoint()
        stamp = int(time.time() * 1000)
        target = self._backup_path(stamp)
        while target.exists():
            stamp += 1
            target = self._backup_path(stamp)
        try:
            # copyfile, not copy2: rotation relies on the copy time as mtime
            shutil.copyfile(self.db_path, target)
        except OSError as e:
            raise StorageFailure(f"Backup failed: {e}", operation="backup") from e

        logger.info(f"Database backed up to {target}")
        self.rotate()
        return target

    def _backup_path(self, stamp: int) -> Path:
        return self.db_path.with_name(f"{self.db_path.name}{BACKUP_SUFFIX}{stamp}")

    def list_backups(self) -> list[Path]:
        """Existing backups, newest first."""
        pattern = f"{self.db_path.name}{BACKUP_SUFFIX}*"
        backups = [p for p in self.db_path.parent.glob(pattern) if p.is_file()]
        return sorted(backups, key=lambda p: (p.stat().st_mtime, _stamp(p)), reverse=True)

    def rotate(self) -> int:
        """Delete all but the newest ``retention`` backups."""
        removed = 0
        for stale in self.list_backups()[self._retention:]:
            try:
                stale.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Could not remove old backup {stale}: {e}")
        return removed
