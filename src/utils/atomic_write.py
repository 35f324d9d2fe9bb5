"""
Atomic file operations for vfio-switch.

Ensures file writes are atomic - either complete successfully or no change.
Uses write-to-temp-then-rename pattern for POSIX atomicity guarantees.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def atomic_write_text(
    path: Union[str, Path],
    content: str,
    mode: Optional[int] = None,
) -> None:
    """
    Write text content to file atomically.

    Uses write-to-temp-then-rename pattern to ensure atomicity.
    On POSIX systems, rename() is atomic within the same filesystem.

    Args:
        path: Destination file path
        content: Text content to write
        mode: File permissions; defaults to the existing file's mode, else 0o644
    """
    path = Path(path)

    if mode is None:
        try:
            mode = path.stat().st_mode & 0o7777
        except FileNotFoundError:
            mode = 0o644

    path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the same directory so the rename stays on one filesystem
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp"
    )

    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, mode)
        os.replace(temp_path, path)

        # Sync parent directory so the rename itself is persisted
        try:
            dir_fd = os.open(str(path.parent), os.O_RDONLY | os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except (OSError, AttributeError):
            # O_DIRECTORY not available on all platforms
            pass

    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def backup_name(path: Union[str, Path], now: Optional[datetime] = None) -> Path:
    """
    Return ``<path>.backup.<YYYYMMDD-HHMMSS>`` for the given moment.

    If that name is taken (two backups within one second), ``.1``, ``.2``
    and so on are appended so no earlier backup is overwritten.
    """
    path = Path(path)
    stamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    candidate = path.with_name(f"{path.name}.backup.{stamp}")
    counter = 0
    while candidate.exists():
        counter += 1
        candidate = path.with_name(f"{path.name}.backup.{stamp}.{counter}")
    return candidate


def timestamped_backup(
    path: Union[str, Path],
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Copy a file to a timestamped sibling before modifying it.

    Backups are never pruned.

    Args:
        path: File to back up
        now: Timestamp to use (default: current time)

    Returns:
        Path to the backup, or None if the file does not exist
    """
    path = Path(path)
    if not path.exists():
        return None

    backup_path = backup_name(path, now)
    shutil.copy2(path, backup_path)
    return backup_path
