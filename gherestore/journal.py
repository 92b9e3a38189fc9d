# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Journal - Local record of restore runs and their steps.

Every invocation appends one run row and one row per executed step. Rows
are never deleted; the run row is updated once when the run finishes.
Operators and the HTTP status integration read it.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from gherestore.exceptions import JournalError

logger = structlog.get_logger()

JOURNAL_FILENAME = "restore-journal.db"


class RunRecord(TypedDict):
    """One restore invocation."""

    id: str  # ULID
    host: str
    snapshot_id: str
    started_at: str  # ISO 8601
    completed_at: str | None
    status: str  # restoring, failed, complete
    error: str | None
    details: dict


class StepRecord(TypedDict):
    """One executed step of a run."""

    id: int
    run_id: str
    name: str
    ok: bool
    soft: bool
    duration_seconds: float
    error: str | None
    recorded_at: str


def journal_path(data_dir: Path) -> Path:
    return data_dir / JOURNAL_FILENAME


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal schema. Idempotent.

    Raises:
        JournalError: If the database cannot be created
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    host TEXT NOT NULL,
                    snapshot_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    status TEXT NOT NULL,
                    error TEXT,
                    details TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    ok INTEGER NOT NULL,
                    soft INTEGER NOT NULL,
                    duration_seconds REAL NOT NULL,
                    error TEXT,
                    recorded_at TEXT NOT NULL,
                    FOREIGN KEY (run_id) REFERENCES runs(id)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_steps_run_id
                ON steps(run_id)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started_at
                ON runs(started_at)
            """)

            await db.commit()

        logger.debug("journal_db_initialized", db_path=str(db_path))

    except (aiosqlite.Error, OSError) as e:
        raise JournalError(
            f"Failed to initialize restore journal: {e}",
            details={"db_path": str(db_path)},
        )


async def record_run(
    db: aiosqlite.Connection,
    run_id: str,
    host: str,
    snapshot_id: str,
    details: dict | None = None,
) -> None:
    """Record the start of a run with status ``restoring``."""
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO runs (id, host, snapshot_id, started_at, status, details)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, host, snapshot_id, now, "restoring", json.dumps(details or {})),
    )
    await db.commit()

    logger.debug("run_recorded", run_id=run_id, host=host, snapshot_id=snapshot_id)


async def record_step(
    db: aiosqlite.Connection,
    run_id: str,
    name: str,
    ok: bool,
    soft: bool,
    duration_seconds: float,
    error: str | None = None,
) -> int:
    """
    Record one executed step.

    Returns:
        Step record ID
    """
    now = datetime.now(UTC).isoformat()

    cursor = await db.execute(
        """
        INSERT INTO steps (run_id, name, ok, soft, duration_seconds, error, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (run_id, name, int(ok), int(soft), duration_seconds, error, now),
    )
    await db.commit()
    return cursor.lastrowid


async def complete_run(
    db: aiosqlite.Connection,
    run_id: str,
    status: str,
    error: str | None = None,
    details: dict | None = None,
) -> None:
    """
    Mark a run as finished.

    Args:
        db: SQLite database connection
        run_id: Run ID
        status: Final status (failed or complete)
        error: Error message if the run failed
        details: Replaces the run's details when given
    """
    now = datetime.now(UTC).isoformat()

    if details is None:
        await db.execute(
            "UPDATE runs SET status = ?, completed_at = ?, error = ? WHERE id = ?",
            (status, now, error, run_id),
        )
    else:
        await db.execute(
            """
            UPDATE runs SET status = ?, completed_at = ?, error = ?, details = ?
            WHERE id = ?
            """,
            (status, now, error, json.dumps(details), run_id),
        )
    await db.commit()


def _run_from_row(row) -> RunRecord:
    return RunRecord(
        id=row[0],
        host=row[1],
        snapshot_id=row[2],
        started_at=row[3],
        completed_at=row[4],
        status=row[5],
        error=row[6],
        details=json.loads(row[7]),
    )


_RUN_COLUMNS = "id, host, snapshot_id, started_at, completed_at, status, error, details"


async def get_run(db: aiosqlite.Connection, run_id: str) -> RunRecord | None:
    async with db.execute(
        f"SELECT {_RUN_COLUMNS} FROM runs WHERE id = ?",
        (run_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _run_from_row(row) if row else None


async def list_runs(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    status: str | None = None,
) -> List[RunRecord]:
    """
    List runs, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records
        offset: Number of records to skip
        status: Optional status filter

    Returns:
        List of run records
    """
    query = f"SELECT {_RUN_COLUMNS} FROM runs"
    params: list = []

    if status:
        query += " WHERE status = ?"
        params.append(status)

    # ULIDs sort by creation time
    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    async with db.execute(query, params) as cursor:
        return [_run_from_row(row) async for row in cursor]


async def get_run_steps(db: aiosqlite.Connection, run_id: str) -> List[StepRecord]:
    records: List[StepRecord] = []

    async with db.execute(
        """
        SELECT id, run_id, name, ok, soft, duration_seconds, error, recorded_at
        FROM steps
        WHERE run_id = ?
        ORDER BY id
        """,
        (run_id,),
    ) as cursor:
        async for row in cursor:
            records.append(
                StepRecord(
                    id=row[0],
                    run_id=row[1],
                    name=row[2],
                    ok=bool(row[3]),
                    soft=bool(row[4]),
                    duration_seconds=row[5],
                    error=row[6],
                    recorded_at=row[7],
                )
            )

    return records


async def get_journal_stats(db: aiosqlite.Connection) -> dict:
    """
    Summary counts over the journal.

    Returns:
        Dict with total_runs, per-status counts and last_run_at
    """
    stats = {"total_runs": 0, "complete": 0, "failed": 0, "restoring": 0, "last_run_at": None}

    async with db.execute("SELECT status, COUNT(*) FROM runs GROUP BY status") as cursor:
        async for status, count in cursor:
            stats[status] = count
            stats["total_runs"] += count

    async with db.execute("SELECT MAX(started_at) FROM runs") as cursor:
        row = await cursor.fetchone()
        stats["last_run_at"] = row[0] if row else None

    return stats
