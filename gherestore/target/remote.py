# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote Operations - Typed descriptors sent over the control channel.

The orchestrator never builds shell strings. Each remote action is a
RemoteOperation (operation name + structured arguments) that a channel
renders through the fixed handler table in gherestore.target.handlers.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Protocol

from gherestore.exceptions import RemoteOperationError


class Op(str, Enum):
    """Known remote operations."""

    # Probing
    READ_VERSION = "read_version"
    MARKER_EXISTS = "marker_exists"
    CONFIG_ENABLED = "config_enabled"
    MAINTENANCE_STATUS = "maintenance_status"

    # Status and bookkeeping
    WRITE_STATUS = "write_status"
    SYSLOG = "syslog"

    # Services
    SERVICE = "service"
    ENSURE_DATABASE_SERVICES = "ensure_database_services"
    ACTIONS_STOP = "actions_stop"
    ACTIONS_START = "actions_start"

    # Identity and data imports
    WRITE_UUID = "write_uuid"
    RESET_CONSENSUS_STATE = "reset_consensus_state"
    TOUCH_SENTINEL = "touch_sentinel"
    IMPORT_REDIS = "import_redis"
    IMPORT_AUTHORIZED_KEYS = "import_authorized_keys"

    # Configuration run
    PAUSE_CONNECT_JOBS = "pause_connect_jobs"
    NOMAD_CLEANUP = "nomad_cleanup"
    CONFIG_APPLY = "config_apply"
    RESET_CONNECT = "reset_connect"

    # Stale replica teardown
    LIST_GIT_SERVERS = "list_git_servers"
    EVACUATE_GIT_SERVER = "evacuate_git_server"
    DESTROY_STORAGE_HOST = "destroy_storage_host"
    PAGES_OFFLINE = "pages_offline"
    PAGES_REMOVE = "pages_remove"
    PURGE_JOB_QUEUE = "purge_job_queue"

    # Host keys
    IMPORT_SSH_HOST_KEYS = "import_ssh_host_keys"
    EXTRACT_HOST_KEYS = "extract_host_keys"
    CHOWN_HOST_KEYS = "chown_host_keys"
    CLUSTER_CONFIG_UPDATE = "cluster_config_update"


@dataclass(frozen=True)
class RemoteOperation:
    """
    A single remote action.

    ``stdin`` streams a local file to the operation. ``fan_out`` runs the
    operation on every cluster node rather than only the entry node.
    """

    name: Op
    args: Mapping[str, Any] = field(default_factory=dict)
    stdin: Path | None = None
    fan_out: bool = False

    def __post_init__(self) -> None:
        if self.fan_out and self.stdin is not None:
            raise ValueError(f"{self.name.value}: fan-out operations cannot take input")


@dataclass(frozen=True)
class RemoteResult:
    """Outcome of a remote operation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class ControlChannel(Protocol):
    """Executes remote operations against the restore target."""

    async def run(self, op: RemoteOperation) -> RemoteResult:
        """
        Run an operation and wait for the remote side to finish.

        Raises:
            ConnectivityFailure: If the target cannot be reached
        """
        ...

    async def close(self) -> None:
        """Release the connection."""
        ...


async def run_checked(channel: ControlChannel, op: RemoteOperation) -> RemoteResult:
    """
    Run an operation and raise if it exits non-zero.

    Raises:
        RemoteOperationError: With the operation's own output as diagnostic
    """
    result = await channel.run(op)
    if not result.ok:
        raise RemoteOperationError(
            f"Remote operation {op.name.value} failed with exit code {result.returncode}",
            details={"operation": op.name.value, "args": dict(op.args)},
            steps=[op.name.value],
            output=result.output,
        )
    return result
