"""
Template backups - every patch keeps a copy of the file it replaced.

Layout: ``<BACKUP_DIR>/<timestamp>/<path relative to project root>``, so all
files touched in the same instant share a directory and a template can be
found again by its relative path.
"""

import hashlib
import os
import shutil
import tempfile
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List

from .config import get_backup_dir
from .paths import relative_to_project, resolve_source_path
from ..util.logging import logger

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"


@dataclass
class BackupEntry:
    """One stored backup copy of a template."""
    timestamp: str
    created_at: datetime
    file: str
    size: int
    checksum: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dictionary for JSON serialization."""
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data


class BackupError(Exception):
    """Custom exception for backup operations."""
    pass


class RestoreError(Exception):
    """Custom exception for restore operations."""
    pass


def _calculate_checksum(data: bytes) -> str:
    """Calculate SHA-256 checksum of data."""
    return hashlib.sha256(data).hexdigest()


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` so readers see the old or new file, never a mix."""
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        if path.exists():
            shutil.copymode(str(path), tmp_name)
        os.replace(tmp_name, str(path))
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def create_backup(file_path: Path, data: bytes = None) -> Path:
    """Copy a template into a fresh timestamped backup directory."""
    file_path = Path(file_path)
    if data is None:
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise BackupError(f"Cannot read {file_path} for backup: {e}")

    backup_root = get_backup_dir()
    relative = relative_to_project(file_path).lstrip("/")
    stamp = datetime.now()
    backup_file = backup_root / stamp.strftime(TIMESTAMP_FORMAT) / relative

    # Same-microsecond backups of one file must not overwrite each other
    while backup_file.exists():
        stamp += timedelta(microseconds=1)
        backup_file = backup_root / stamp.strftime(TIMESTAMP_FORMAT) / relative

    try:
        backup_file.parent.mkdir(parents=True, exist_ok=True)
        backup_file.write_bytes(data)
    except OSError as e:
        raise BackupError(f"Cannot write backup for {file_path}: {e}")

    logger.log_backup(str(file_path), str(backup_file))
    return backup_file


def list_backups(file_path: str) -> List[BackupEntry]:
    """List available backups for a template, newest first."""
    relative = relative_to_project(resolve_source_path(file_path)).lstrip("/")
    backup_root = get_backup_dir()
    backups = []

    if not backup_root.is_dir():
        return backups

    for timestamp_dir in sorted(backup_root.iterdir(), reverse=True):
        if not timestamp_dir.is_dir():
            continue
        backup_file = timestamp_dir / relative
        if not backup_file.is_file():
            continue
        try:
            created_at = datetime.strptime(timestamp_dir.name, TIMESTAMP_FORMAT)
        except ValueError:
            continue
        data = backup_file.read_bytes()
        backups.append(BackupEntry(
            timestamp=timestamp_dir.name,
            created_at=created_at,
            file=str(backup_file),
            size=len(data),
            checksum=_calculate_checksum(data)
        ))

    return backups


def restore_from_backup(backup_file: str, original_file: str) -> Dict[str, Any]:
    """Restore a template from one of its backups.

    The current file is backed up first so a restore can itself be undone.
    """
    backup_root = get_backup_dir()
    backup_path = Path(backup_file).resolve()

    try:
        backup_path.relative_to(backup_root)
    except ValueError:
        raise RestoreError(f"Backup file is outside the backup directory: {backup_file}")

    if not backup_path.is_file():
        raise RestoreError(f"Backup file not found: {backup_file}")

    target = resolve_source_path(original_file)
    data = backup_path.read_bytes()
    safety_backup = create_backup(target)

    try:
        atomic_write_bytes(target, data)
    except OSError as e:
        raise RestoreError(f"Permission denied writing template: {target}: {e}")

    logger.log_backup(str(target), str(backup_path), status="restored")

    return {
        "success": True,
        "file": str(target),
        "restored_from": str(backup_path),
        "safety_backup": str(safety_backup),
        "checksum": _calculate_checksum(data)
    }
