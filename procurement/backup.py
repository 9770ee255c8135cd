"""
Backups of the purchase-order data.

Each backup is a timestamped ZIP holding a safe online copy of the SQLite
database (sqlite3 backup API, so writers are not blocked), the JSON data
files of the flat-file store and the config directory.  Only the newest
backup_retention_count archives are kept.
"""
import logging
import os
import sqlite3
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .errors import StorageFailure

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "buildlite_backup_"


class BackupService:
    def __init__(self, config: Any, backup_dir: Optional[Path] = None) -> None:
        self.config = config
        self.backup_dir = Path(backup_dir or config.backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def _copy_database(self, zipf: zipfile.ZipFile, timestamp: str) -> None:
        db_path = Path(self.config.db_path)
        if not db_path.exists():
            return
        temp_db = self.backup_dir / f"temp_{timestamp}.db"
        src_conn = dst_conn = None
        try:
            src_conn = sqlite3.connect(db_path)
            dst_conn = sqlite3.connect(temp_db)
            src_conn.backup(dst_conn)
            dst_conn.close()
            dst_conn = None
            zipf.write(temp_db, arcname=f"db/{db_path.name}")
        finally:
            if src_conn:
                src_conn.close()
            if dst_conn:
                dst_conn.close()
            if temp_db.exists():
                temp_db.unlink()

    def create_backup(self) -> Path:
        """Write a new backup archive and rotate old ones.  Returns its path."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        zip_path = self.backup_dir / f"{BACKUP_PREFIX}{timestamp}.zip"
        logger.info("Starting backup: %s", zip_path.name)

        try:
            with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
                self._copy_database(zipf, timestamp)

                data_dir = Path(self.config.data_dir)
                if data_dir.exists():
                    for f in sorted(data_dir.rglob("*.json")):
                        zipf.write(f, arcname=f"data/{f.relative_to(data_dir).as_posix()}")

                config_dir = Path(self.config.config_dir)
                if config_dir.exists():
                    for f in sorted(config_dir.glob("*")):
                        if f.is_file() and f.suffix != ".bak":
                            zipf.write(f, arcname=f"config/{f.name}")
        except (OSError, sqlite3.Error, zipfile.BadZipFile) as exc:
            logger.error("Backup failed: %s", exc)
            if zip_path.exists():
                zip_path.unlink()
            raise StorageFailure(f"Backup failed: {exc}") from exc

        logger.info("Backup completed: %s", zip_path.name)
        self.rotate_backups()
        return zip_path

    def list_backups(self) -> list[Path]:
        """Backups, newest first."""
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.zip"), key=lambda p: p.name, reverse=True)

    def rotate_backups(self) -> list[Path]:
        """Delete all but the newest backup_retention_count archives.  Returns what was removed."""
        retention = self.config.backup_retention_count
        if retention <= 0:
            return []
        removed = []
        for old_zip in self.list_backups()[retention:]:
            logger.info("Rotating out old backup: %s", old_zip.name)
            try:
                old_zip.unlink()
                removed.append(old_zip)
            except OSError as e:
                logger.warning("Failed to delete old backup %s: %s", old_zip, e)
        return removed

    def get_last_backup_time(self) -> Optional[datetime]:
        backups = self.list_backups()
        if not backups:
            return None
        return datetime.fromtimestamp(os.path.getmtime(backups[0]))
