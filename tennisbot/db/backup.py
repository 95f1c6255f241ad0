"""Online backups of the SQLite store."""
import hashlib
import json
import logging
import os
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from tennisbot.core.exceptions import BackupIntegrityError
from tennisbot.db.models import utcnow
from tennisbot.db.session import Database

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "tennis_bookings_"
BACKUP_SUFFIX = ".db"
MANIFEST_SUFFIX = ".json"


@dataclass
class BackupInfo:
    filename: str
    path: str
    size: int
    timestamp: datetime
    checksum: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def file_checksum(path: str, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class BackupManager:
    """Creates, verifies, restores and prunes database backups."""

    def __init__(self, database: Database, backup_dir: str, retention_days: int = 30):
        self.database = database
        self.backup_dir = os.path.abspath(backup_dir)
        self.retention_days = retention_days
        os.makedirs(self.backup_dir, exist_ok=True)

    @classmethod
    def from_settings(cls, database: Database, settings) -> "BackupManager":
        return cls(database, settings.sqlite_backup_path, settings.db_retention_days)

    def create_backup(self) -> BackupInfo:
        """
        Copy the live database with SQLite's online backup API.

        The copy is page-consistent even while other connections write, so
        callers do not need to pause booking traffic.
        """
        created = utcnow()
        filename = f"{BACKUP_PREFIX}{created.strftime('%Y-%m-%dT%H-%M-%S-%f')}{BACKUP_SUFFIX}"
        path = os.path.join(self.backup_dir, filename)

        raw = self.database.engine.raw_connection()
        try:
            target = sqlite3.connect(path)
            try:
                raw.driver_connection.backup(target)
                # Standalone copies must be readable without -wal/-shm files.
                target.execute("PRAGMA journal_mode=DELETE")
            finally:
                target.close()
        except sqlite3.Error as e:
            logger.error(f"Backup failed: {e}", exc_info=True)
            if os.path.exists(path):
                os.remove(path)
            raise
        finally:
            raw.close()

        info = BackupInfo(
            filename=filename,
            path=path,
            size=os.path.getsize(path),
            timestamp=created,
            checksum=file_checksum(path),
        )
        with open(path + MANIFEST_SUFFIX, "w") as f:
            json.dump(info.to_dict(), f, indent=2)

        logger.info(f"Backup created: {filename} ({info.size / 1024 / 1024:.2f} MB)")
        return info

    def _read_manifest(self, path: str) -> Optional[dict]:
        manifest_path = path + MANIFEST_SUFFIX
        if not os.path.exists(manifest_path):
            return None
        try:
            with open(manifest_path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise BackupIntegrityError(f"Unreadable backup manifest {manifest_path}: {e}")

    def verify_backup(self, path: str) -> str:
        """
        Check a backup before it is used. Returns its checksum.

        Raises:
            BackupIntegrityError: missing file, checksum mismatch with the
                manifest, or a file SQLite cannot open and validate.
        """
        if not os.path.isfile(path):
            raise BackupIntegrityError(f"Backup file not found: {path}")

        checksum = file_checksum(path)
        manifest = self._read_manifest(path)
        if manifest and manifest.get("checksum") != checksum:
            raise BackupIntegrityError(f"Checksum mismatch for backup {path}")

        uri = Path(path).resolve().as_uri() + "?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True)
            try:
                result = conn.execute("PRAGMA integrity_check").fetchone()
                conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise BackupIntegrityError(f"Backup file is corrupted: {path}: {e}")
        if not result or result[0] != "ok":
            raise BackupIntegrityError(f"Backup integrity check failed for {path}: {result}")
        return checksum

    def restore(self, path: str, safety_backup: bool = True) -> Optional[BackupInfo]:
        """
        Replace the live database contents with a verified backup.

        Verification happens before anything touches the live store. When
        ``safety_backup`` is set, the current database is backed up first and
        that backup is returned.
        """
        self.verify_backup(path)

        current = self.create_backup() if safety_backup else None
        if current:
            logger.info(f"Current database backed up as: {current.filename}")

        uri = Path(path).resolve().as_uri() + "?mode=ro"
        source = sqlite3.connect(uri, uri=True)
        raw = self.database.engine.raw_connection()
        try:
            source.backup(raw.driver_connection)
        finally:
            raw.close()
            source.close()
        # Pooled connections may hold schema caches from before the restore.
        self.database.engine.dispose()

        logger.info(f"Database restored from: {path}")
        return current

    def list_backups(self) -> List[BackupInfo]:
        """Backups in the backup directory, newest first."""
        backups = []
        for filename in os.listdir(self.backup_dir):
            if not (filename.startswith(BACKUP_PREFIX) and filename.endswith(BACKUP_SUFFIX)):
                continue
            path = os.path.join(self.backup_dir, filename)
            stats = os.stat(path)
            try:
                manifest = self._read_manifest(path) or {}
            except BackupIntegrityError as e:
                logger.warning(f"Ignoring manifest for {filename}: {e}")
                manifest = {}
            backups.append(BackupInfo(
                filename=filename,
                path=path,
                size=stats.st_size,
                timestamp=datetime.fromtimestamp(stats.st_mtime),
                checksum=manifest.get("checksum", ""),
            ))
        backups.sort(key=lambda b: b.timestamp, reverse=True)
        return backups

    def cleanup_old_backups(self, now: Optional[datetime] = None) -> List[str]:
        """Delete backups whose modification time is past the retention window."""
        cutoff = (now or datetime.now()) - timedelta(days=self.retention_days)
        deleted = []
        for backup in self.list_backups():
            if backup.timestamp < cutoff:
                os.remove(backup.path)
                if os.path.exists(backup.path + MANIFEST_SUFFIX):
                    os.remove(backup.path + MANIFEST_SUFFIX)
                deleted.append(backup.filename)
        if deleted:
            logger.info(f"Cleaned up {len(deleted)} old backup(s)")
        return deleted
