# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Post-Restore Reconciler - Brings the target in line with the restored data.

Covers the work after the data movers finish: service restarts, the
configuration run that applies migrations, GitHub Connect reset, eviction
of stale replicas and host key restore.
"""

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import structlog

from gherestore.exceptions import RemoteOperationError, StepFailure
from gherestore.restore.strategy import NomadCleanup
from gherestore.target.remote import ControlChannel, Op, RemoteOperation, run_checked

logger = structlog.get_logger()

GIT_SERVER_PREFIX = "git-server-"

# Ordered teardown of one replica: evacuate before destroy, offline before
# remove, dequeue last
TEARDOWN_SEQUENCE = (
    Op.EVACUATE_GIT_SERVER,
    Op.DESTROY_STORAGE_HOST,
    Op.PAGES_OFFLINE,
    Op.PAGES_REMOVE,
    Op.PURGE_JOB_QUEUE,
)


@dataclass(frozen=True)
class TeardownResult:
    """Outcome of tearing down one stale replica."""

    uuid: str
    completed: List[Op]
    failed: Op | None = None
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.failed is None


# ============================================================================
# Services
# ============================================================================

async def set_scheduler(channel: ControlChannel, action: str, cluster: bool) -> None:
    """Start or stop the cron and timer daemons on every node."""
    failures = []
    for service in ("cron", "github-timerd"):
        op = RemoteOperation(
            Op.SERVICE, {"service": service, "action": action}, fan_out=cluster
        )
        result = await channel.run(op)
        if not result.ok:
            failures.append((service, result.output))

    if failures:
        raise StepFailure(
            f"Unable to {action} scheduler daemons",
            details={"services": [name for name, _ in failures]},
            output="\n".join(output for _, output in failures),
        )


async def restart_memcached(channel: ControlChannel, cluster: bool) -> None:
    await run_checked(
        channel,
        RemoteOperation(
            Op.SERVICE, {"service": "memcached", "action": "restart"}, fan_out=cluster
        ),
    )


# ============================================================================
# Configuration run
# ============================================================================

async def pause_connect_jobs(channel: ControlChannel, now: float | None = None) -> None:
    """
    Mark GitHub Connect jobs as just run.

    Keeps them from running against the restored connection before
    reset_connect clears it.
    """
    timestamp = int(now if now is not None else time.time())
    await run_checked(channel, RemoteOperation(Op.PAUSE_CONNECT_JOBS, {"timestamp": timestamp}))


async def nomad_cleanup(channel: ControlChannel, mode: NomadCleanup, cluster: bool) -> None:
    await run_checked(
        channel,
        RemoteOperation(
            Op.NOMAD_CLEANUP,
            {"cluster": cluster, "legacy": mode == NomadCleanup.LEGACY},
        ),
    )


async def config_apply(channel: ControlChannel, cluster: bool) -> None:
    """
    Apply configuration and run migrations.

    The cluster variant drives every node itself, so it is not fanned out.
    """
    await run_checked(channel, RemoteOperation(Op.CONFIG_APPLY, {"cluster": cluster}))


async def reset_connect(channel: ControlChannel) -> None:
    await run_checked(channel, RemoteOperation(Op.RESET_CONNECT))


# ============================================================================
# Stale replicas
# ============================================================================

def parse_git_servers(output: str) -> List[str]:
    """
    Extract node uuids from ``ghe-spokes server show --json`` output.

    Raises:
        StepFailure: If the output is not the expected JSON
    """
    try:
        servers = json.loads(output or "[]")
    except json.JSONDecodeError as e:
        raise StepFailure(
            "Unable to parse the git server list",
            details={"error": str(e)},
            output=output,
        )

    if not isinstance(servers, list):
        raise StepFailure("Unexpected git server list format", output=output)

    uuids = []
    for server in servers:
        host = server.get("host", "") if isinstance(server, dict) else ""
        if host.startswith(GIT_SERVER_PREFIX):
            uuids.append(host[len(GIT_SERVER_PREFIX):])
    return uuids


async def find_stale_replicas(channel: ControlChannel, restored_uuid: str) -> List[str]:
    """Return uuids of git servers that do not match the restored identity."""
    result = await run_checked(channel, RemoteOperation(Op.LIST_GIT_SERVERS))
    return [uuid for uuid in parse_git_servers(result.stdout) if uuid != restored_uuid]


async def teardown_replica(channel: ControlChannel, uuid: str) -> TeardownResult:
    """
    Remove one stale replica from every role.

    Stops at the first failing sub-step; later sub-steps depend on the
    earlier ones having succeeded.
    """
    completed: List[Op] = []
    for op in TEARDOWN_SEQUENCE:
        result = await channel.run(RemoteOperation(op, {"uuid": uuid}))
        if not result.ok:
            logger.error(
                "replica_teardown_failed",
                uuid=uuid,
                operation=op.value,
                output=result.output,
            )
            return TeardownResult(uuid, completed, failed=op, output=result.output)
        completed.append(op)

    logger.info("replica_removed", uuid=uuid)
    return TeardownResult(uuid, completed)


async def cleanup_stale_replicas(
    channel: ControlChannel, restored_uuid: str
) -> List[TeardownResult]:
    """
    Evict every replica that does not match the restored uuid.

    Each node is torn down fully before the next starts. A failing node
    does not stop the remaining nodes; failures are reported together.

    Raises:
        StepFailure: If any node could not be torn down
    """
    stale = await find_stale_replicas(channel, restored_uuid)
    if not stale:
        logger.debug("no_stale_replicas", uuid=restored_uuid)
        return []

    logger.info("stale_replicas_found", count=len(stale), uuids=stale)
    results = [await teardown_replica(channel, uuid) for uuid in stale]

    failed: Dict[str, str] = {r.uuid: r.failed.value for r in results if r.failed is not None}
    if failed:
        raise StepFailure(
            f"Unable to remove {len(failed)} stale replica(s)",
            details={"failed": failed},
            output="\n".join(r.output for r in results if not r.ok),
        )
    return results


# ============================================================================
# Host keys
# ============================================================================

async def restore_host_keys(channel: ControlChannel, archive: Path, cluster: bool) -> None:
    """
    Install the snapshot's SSH host keys.

    Clusters extract the archive on the entry node, hand the keys to the
    git daemon user and let the config update push them to every node.
    """
    if not cluster:
        await run_checked(channel, RemoteOperation(Op.IMPORT_SSH_HOST_KEYS, stdin=archive))
        return

    try:
        await run_checked(channel, RemoteOperation(Op.EXTRACT_HOST_KEYS, stdin=archive))
        await run_checked(channel, RemoteOperation(Op.CHOWN_HOST_KEYS))
        await run_checked(channel, RemoteOperation(Op.CLUSTER_CONFIG_UPDATE))
    except RemoteOperationError as e:
        logger.error("host_key_restore_failed", operation=e.details.get("operation"))
        raise
