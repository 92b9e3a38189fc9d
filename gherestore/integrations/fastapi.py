# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore FastAPI Integration - Admin endpoints over the run journal.

The endpoints only read. Restores are started from the command line,
never over HTTP.
"""

import os
from datetime import datetime, UTC

import aiosqlite
import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gherestore.config import RestoreConfig
from gherestore.journal import (
    get_journal_stats,
    get_run,
    get_run_steps,
    init_journal_db,
    journal_path,
    list_runs,
)
from gherestore.lock import lock_path
from gherestore.snapshot import BACKUP_IN_PROGRESS, CURRENT_LINK

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the GHE_RESTORE_ADMIN_API_KEY environment
    variable. Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("GHE_RESTORE_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="GHE_RESTORE_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_restore_routes(
    app: FastAPI,
    config: RestoreConfig,
    prefix: str = "/admin/restore",
) -> None:
    """
    Register restore status endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: Restore configuration (locates the data directory)
        prefix: URL prefix for endpoints (default: /admin/restore)
    """
    db_path = journal_path(config.data_dir)

    def require_journal() -> None:
        if not db_path.exists():
            raise HTTPException(status_code=404, detail="No restore journal found")

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_status() -> dict:
        """
        Latest restore run and journal totals.
        """
        require_journal()
        async with aiosqlite.connect(db_path) as db:
            runs = await list_runs(db, limit=1)
            stats = await get_journal_stats(db)

        return {
            "latest": runs[0] if runs else None,
            "restore_in_progress": lock_path(config.data_dir).exists(),
            **stats,
        }

    @app.get(f"{prefix}/runs", dependencies=[Depends(verify_api_key)])
    async def list_restore_runs(
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
    ) -> list:
        """
        List restore runs, newest first.

        Args:
            limit: Maximum number of runs to return
            offset: Number of runs to skip
            status: Filter by final status (restoring, failed, complete)
        """
        require_journal()
        async with aiosqlite.connect(db_path) as db:
            return await list_runs(db, limit, offset, status)

    @app.get(f"{prefix}/runs/{{run_id}}", dependencies=[Depends(verify_api_key)])
    async def get_restore_run(run_id: str) -> dict:
        """
        One run with its step results.
        """
        require_journal()
        async with aiosqlite.connect(db_path) as db:
            run = await get_run(db, run_id)
            if run is None:
                raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
            steps = await get_run_steps(db, run_id)

        return {**run, "steps": steps}

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Reports whether the data directory and a current snapshot exist.
        """
        data_dir_ok = config.data_dir.is_dir()
        current_ok = (config.data_dir / CURRENT_LINK).exists()

        status = "healthy"
        if not current_ok:
            status = "degraded"
        if not data_dir_ok:
            status = "unhealthy"

        return {
            "status": status,
            "data_dir_accessible": data_dir_ok,
            "current_snapshot": current_ok,
            "backup_in_progress": (config.data_dir / BACKUP_IN_PROGRESS).exists(),
            "restore_in_progress": lock_path(config.data_dir).exists(),
            "journal_present": db_path.exists(),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration (ssh options redacted).
        """
        return {
            "hostname": config.hostname,
            "data_dir": str(config.data_dir),
            "num_snapshots": config.num_snapshots,
            "parallel_enabled": config.parallel_enabled,
            "parallel_max_jobs": config.parallel_max_jobs,
            "parallel_rsync_max_jobs": config.parallel_rsync_max_jobs,
            "skip_audit_logs": config.skip_audit_logs,
            "remote_root_dir": config.remote_root_dir,
            "remote_data_user_dir": config.remote_data_user_dir,
            "helper_prefix": config.helper_prefix,
            "journal_enabled": config.journal_enabled,
            "extra_ssh_options": len(config.extra_ssh_options),
        }


def setup_restore_plugin(
    app: FastAPI,
    config: RestoreConfig,
    prefix: str = "/admin/restore",
) -> None:
    """
    Register the endpoints and create the journal on startup.

    Args:
        app: FastAPI application
        config: Restore configuration
        prefix: URL prefix for admin endpoints
    """
    app.state.restore_config = config
    register_restore_routes(app, config, prefix)

    @app.on_event("startup")
    async def startup():
        """Make sure the journal exists so the endpoints have something to read."""
        if config.journal_enabled and config.data_dir.is_dir():
            await init_journal_db(journal_path(config.data_dir))
        logger.info("restore_plugin_started", data_dir=str(config.data_dir), prefix=prefix)
