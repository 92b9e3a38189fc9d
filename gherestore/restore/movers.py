# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Data Movers - Per-subsystem restore helpers.

How the bytes of one subsystem move (rsync, mysql import, tar...) is the
helper's business. The orchestrator only decides when a helper runs and
whether it succeeded.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Protocol

import structlog

from gherestore.config import DatabaseStrategy, RestoreConfig
from gherestore.exceptions import StepFailure
from gherestore.snapshot import Snapshot

logger = structlog.get_logger()

# Subsystems handled by external helpers
SETTINGS = "settings"
MYSQL = "mysql"
MSSQL = "mssql"
ACTIONS = "actions"
MINIO = "minio"
REPOSITORIES = "repositories"
GISTS = "repositories-gist"
PAGES = "pages"
STORAGE = "storage"
GIT_HOOKS = "git-hooks"
ELASTICSEARCH = "es-rsync"
AUDIT_LOG = "es-audit-log"

SUBSYSTEMS = (
    SETTINGS,
    MYSQL,
    MSSQL,
    ACTIONS,
    MINIO,
    REPOSITORIES,
    GISTS,
    PAGES,
    STORAGE,
    GIT_HOOKS,
    ELASTICSEARCH,
    AUDIT_LOG,
)

# Lines of helper output kept as the failure diagnostic
OUTPUT_TAIL_LINES = 20


@dataclass(frozen=True)
class MoverRequest:
    """What a helper needs to know about the restore it is part of."""

    snapshot: Snapshot
    appliance_strategy: DatabaseStrategy
    cluster: bool


class DataMover(Protocol):
    """Runs one subsystem restore to completion."""

    async def restore(self, subsystem: str, request: MoverRequest) -> None:
        """
        Restore one subsystem.

        Raises:
            StepFailure: If the subsystem could not be restored
        """
        ...


def tail(output: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(output.strip().splitlines()[-lines:])


class CommandMover:
    """
    DataMover that runs ``<helper_prefix><subsystem> <host>``.

    The helper learns about the snapshot through its environment.
    """

    def __init__(self, config: RestoreConfig, base_env: Mapping[str, str] | None = None):
        self.config = config
        self.base_env = dict(os.environ if base_env is None else base_env)

    def command(self, subsystem: str) -> list[str]:
        if subsystem not in SUBSYSTEMS:
            raise ValueError(f"Unknown subsystem {subsystem!r}")
        return [f"{self.config.helper_prefix}{subsystem}", self.config.hostname]

    def environment(self, request: MoverRequest) -> Dict[str, str]:
        env = dict(self.base_env)
        env.update(
            {
                "GHE_HOSTNAME": self.config.hostname,
                "GHE_DATA_DIR": str(self.config.data_dir),
                "GHE_RESTORE_SNAPSHOT": request.snapshot.id,
                "GHE_RESTORE_SNAPSHOT_PATH": str(request.snapshot.path),
                "GHE_BACKUP_STRATEGY": request.snapshot.strategy.value,
                "GHE_APPLIANCE_STRATEGY": request.appliance_strategy.value,
                "GHE_CLUSTER": "yes" if request.cluster else "no",
                "GHE_REMOTE_ROOT_DIR": self.config.remote_root_dir,
                "GHE_REMOTE_DATA_USER_DIR": self.config.remote_data_user_dir,
            }
        )
        if self.config.parallel_rsync_max_jobs is not None:
            env["GHE_PARALLEL_RSYNC_MAX_JOBS"] = str(self.config.parallel_rsync_max_jobs)
        if self.config.verbose:
            env["GHE_VERBOSE"] = "1"
        return env

    async def restore(self, subsystem: str, request: MoverRequest) -> None:
        argv = self.command(subsystem)
        logger.debug("data_mover_started", subsystem=subsystem, command=argv)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                env=self.environment(request),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await proc.communicate()
        except FileNotFoundError as e:
            raise StepFailure(
                f"Restore helper for {subsystem} is not installed",
                details={"command": argv[0]},
                steps=[subsystem],
                output=str(e),
            )

        output = stdout.decode(errors="replace")
        for line in output.splitlines():
            logger.debug("data_mover_output", subsystem=subsystem, line=line)

        if proc.returncode != 0:
            raise StepFailure(
                f"Restore of {subsystem} failed with exit code {proc.returncode}",
                details={"command": argv[0], "exit_code": proc.returncode},
                steps=[subsystem],
                output=tail(output),
            )

        logger.debug("data_mover_finished", subsystem=subsystem)
