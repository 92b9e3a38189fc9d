# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Lock - Refuses a second restore from the same data directory.

The lock is a file created exclusively in the data directory. It does not
protect against restores started from other backup hosts.
"""

import os
import socket
from contextlib import contextmanager
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterator

import structlog

from gherestore.errors import explain_restore_in_progress
from gherestore.exceptions import DataDirectoryError, PreconditionFailure

logger = structlog.get_logger()

LOCK_FILENAME = "in-progress-restore"


def lock_path(data_dir: Path) -> Path:
    return data_dir / LOCK_FILENAME


def acquire_lock(data_dir: Path, run_id: str) -> Path:
    """
    Create the lock file.

    Raises:
        PreconditionFailure: If another restore holds the lock
        DataDirectoryError: If the lock file cannot be created
    """
    path = lock_path(data_dir)
    holder = f"{run_id} pid={os.getpid()} host={socket.gethostname()} at={datetime.now(UTC).isoformat()}"

    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        try:
            current = path.read_text().strip()
        except OSError:
            current = "unknown"
        raise PreconditionFailure(
            explain_restore_in_progress(str(path), current),
            details={"lock": str(path)},
        )
    except OSError as e:
        raise DataDirectoryError(
            f"Unable to create restore lock {path}: {e}",
            details={"lock": str(path)},
        )

    with os.fdopen(fd, "w") as f:
        f.write(holder + "\n")

    logger.debug("restore_lock_acquired", lock=str(path), run_id=run_id)
    return path


def release_lock(path: Path) -> None:
    path.unlink(missing_ok=True)
    logger.debug("restore_lock_released", lock=str(path))


@contextmanager
def restore_lock(data_dir: Path, run_id: str) -> Iterator[Path]:
    """Hold the restore lock for the duration of the block."""
    path = acquire_lock(data_dir, run_id)
    try:
        yield path
    finally:
        release_lock(path)
