# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapshot Loader - Read-only view of a backup snapshot on local storage.

A snapshot is a timestamp-named directory under the data directory. Its
contents are detected by existence checks; there is no manifest. Snapshots
are never modified during a restore.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet

import aiofiles
import structlog

from gherestore.config import BackupStrategy
from gherestore.errors import (
    explain_backup_in_progress,
    explain_snapshot_incomplete,
    explain_snapshot_missing,
)
from gherestore.exceptions import DataDirectoryError, PreconditionFailure

logger = structlog.get_logger()

# Artifacts a restore may consume (files and directories)
UUID = "uuid"
REDIS = "redis.rdb"
AUTHORIZED_KEYS = "authorized-keys.json"
SSH_HOST_KEYS = "ssh-host-keys.tar"
SETTINGS = "settings.json"
ARTIFACTS = (
    UUID,
    REDIS,
    AUTHORIZED_KEYS,
    SSH_HOST_KEYS,
    SETTINGS,
    "mysql",
    "repositories",
    "pages",
    "storage",
    "git-hooks",
    "elasticsearch",
    "audit-log",
    "actions",
    "mssql",
    "minio",
)

# Sentinel files written by the backup process
ES_SCAN_COMPLETE = "es-scan-complete"
BINARY_BACKUP_SENTINEL = "mysql-binary-backup-sentinel"
EXTERNAL_DATABASE_SENTINEL = "logical-external-database-backup-sentinel"
SENTINELS = (ES_SCAN_COMPLETE, BINARY_BACKUP_SENTINEL, EXTERNAL_DATABASE_SENTINEL)

INCOMPLETE_MARKER = "incomplete"
STRATEGY_MARKER = "strategy"
CURRENT_LINK = "current"
BACKUP_IN_PROGRESS = "in-progress"

# Older snapshots tag standalone rsync backups as "rsync"
_LEGACY_STRATEGY_TAGS = {"rsync": BackupStrategy.LOGICAL}


@dataclass(frozen=True)
class Snapshot:
    """Immutable, identified bundle of point-in-time subsystem artifacts."""

    id: str
    path: Path
    strategy: BackupStrategy
    artifacts: FrozenSet[str]
    sentinels: FrozenSet[str]

    def has(self, artifact: str) -> bool:
        return artifact in self.artifacts

    def artifact_path(self, artifact: str) -> Path:
        return self.path / artifact

    @property
    def external_database(self) -> bool:
        return (
            EXTERNAL_DATABASE_SENTINEL in self.sentinels
            or self.strategy == BackupStrategy.EXTERNAL
        )

    @property
    def binary_backup(self) -> bool:
        return BINARY_BACKUP_SENTINEL in self.sentinels

    @property
    def has_actions(self) -> bool:
        return self.has("actions")

    @property
    def has_elasticsearch(self) -> bool:
        return self.has("elasticsearch")


def _detect_artifacts(path: Path) -> FrozenSet[str]:
    present = set()
    for name in ARTIFACTS:
        candidate = path / name
        if candidate.is_dir():
            present.add(name)
        elif candidate.is_file() and candidate.stat().st_size > 0:
            present.add(name)
    return frozenset(present)


async def _read_strategy(path: Path, snapshot_id: str) -> BackupStrategy:
    marker = path / STRATEGY_MARKER
    try:
        async with aiofiles.open(marker, "r") as f:
            tag = (await f.read()).strip()
    except FileNotFoundError:
        raise PreconditionFailure(
            f"Snapshot {snapshot_id!r} has no strategy marker",
            details={"path": str(marker)},
        )

    if tag in _LEGACY_STRATEGY_TAGS:
        return _LEGACY_STRATEGY_TAGS[tag]
    try:
        return BackupStrategy(tag)
    except ValueError:
        raise PreconditionFailure(
            f"Snapshot {snapshot_id!r} has an unknown strategy {tag!r}",
            details={"path": str(marker)},
        )


def resolve_snapshot_id(data_dir: Path, snapshot_id: str | None) -> str:
    """
    Resolve the snapshot to restore.

    An explicit id is reduced to its basename; otherwise the ``current``
    symlink in the data directory names the latest snapshot. Symlinks
    (``-s current`` included) resolve to the snapshot they point at.
    """
    if not data_dir.is_dir():
        raise DataDirectoryError(
            f"Data directory {data_dir} does not exist or is not a directory",
            details={"data_dir": str(data_dir)},
        )

    name = Path(snapshot_id).name if snapshot_id else CURRENT_LINK
    candidate = data_dir / name

    if candidate.is_symlink():
        if not candidate.exists():
            raise PreconditionFailure(explain_snapshot_missing(name))
        return candidate.resolve().name

    if name == CURRENT_LINK and not candidate.exists():
        raise PreconditionFailure(explain_snapshot_missing(CURRENT_LINK))
    return name


def check_backup_in_progress(data_dir: Path) -> None:
    """Refuse to restore while a backup is writing into the data directory."""
    if (data_dir / BACKUP_IN_PROGRESS).exists():
        raise PreconditionFailure(explain_backup_in_progress(str(data_dir)))


async def load_snapshot(data_dir: Path, snapshot_id: str | None = None) -> Snapshot:
    """
    Load a snapshot from the data directory.

    Args:
        data_dir: Local backup data directory
        snapshot_id: Snapshot id; None selects ``current``

    Returns:
        Snapshot describing the artifacts present

    Raises:
        DataDirectoryError: If the data directory is unusable
        PreconditionFailure: If the snapshot is missing or incomplete
    """
    resolved = resolve_snapshot_id(data_dir, snapshot_id)
    path = data_dir / resolved

    if not path.is_dir():
        raise PreconditionFailure(explain_snapshot_missing(resolved))

    if (path / INCOMPLETE_MARKER).exists():
        raise PreconditionFailure(explain_snapshot_incomplete(resolved))

    strategy = await _read_strategy(path, resolved)
    artifacts = _detect_artifacts(path)
    sentinels = frozenset(name for name in SENTINELS if (path / name).exists())

    logger.debug(
        "snapshot_loaded",
        snapshot_id=resolved,
        strategy=strategy.value,
        artifacts=sorted(artifacts),
        sentinels=sorted(sentinels),
    )

    return Snapshot(
        id=resolved,
        path=path,
        strategy=strategy,
        artifacts=artifacts,
        sentinels=sentinels,
    )


async def read_artifact_text(snapshot: Snapshot, artifact: str) -> str:
    """Read a small text artifact (e.g. ``uuid``) from the snapshot."""
    async with aiofiles.open(snapshot.artifact_path(artifact), "r") as f:
        return (await f.read()).strip()
