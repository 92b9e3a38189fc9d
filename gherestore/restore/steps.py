# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Steps - The step table and the actions behind each step.

build_plan() declares every step the orchestrator knows with its
dependency edges, then removes the steps that do not apply to this
invocation. Removed steps are absent from the plan, not skipped at run
time.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, List, TypedDict

import structlog

from gherestore.config import RestoreConfig, RestoreOptions, RestoreStatus
from gherestore.restore import movers, reconciler
from gherestore.restore.movers import DataMover, MoverRequest
from gherestore.restore.plan import RestorePlan, RestoreStep
from gherestore.restore.strategy import StrategyDecision
from gherestore.snapshot import (
    AUTHORIZED_KEYS,
    ES_SCAN_COMPLETE,
    REDIS,
    SSH_HOST_KEYS,
    UUID,
    Snapshot,
    read_artifact_text,
)
from gherestore.target.prober import TargetTopology
from gherestore.target.remote import ControlChannel, Op, RemoteOperation, run_checked
from gherestore.target.status import StatusChannel

logger = structlog.get_logger()


class RunState(TypedDict):
    """Mutable facts gathered while the plan runs (read by cleanup)."""

    scheduler_stopped: bool
    actions_stopped: bool
    restored_uuid: str | None


def new_run_state() -> RunState:
    return RunState(
        scheduler_stopped=False,
        actions_stopped=False,
        restored_uuid=None,
    )


@dataclass(frozen=True)
class RestoreContext:
    """Everything a step action needs, built once per invocation."""

    config: RestoreConfig
    options: RestoreOptions
    snapshot: Snapshot
    topology: TargetTopology
    decision: StrategyDecision
    channel: ControlChannel
    mover: DataMover
    status: StatusChannel
    run: RunState

    @property
    def cluster(self) -> bool:
        return self.topology.cluster

    @property
    def mover_request(self) -> MoverRequest:
        return MoverRequest(
            snapshot=self.snapshot,
            appliance_strategy=self.decision.appliance_strategy,
            cluster=self.topology.cluster,
        )


Action = Callable[[RestoreContext], Awaitable[None]]


def mover_action(subsystem: str) -> Action:
    """Step action that hands one subsystem to the data mover."""

    async def action(ctx: RestoreContext) -> None:
        await ctx.mover.restore(subsystem, ctx.mover_request)

    action.__name__ = f"restore_{subsystem.replace('-', '_')}"
    return action


# ============================================================================
# Prefix
# ============================================================================

async def stop_scheduler(ctx: RestoreContext) -> None:
    # Set first so cleanup restarts whatever did stop
    ctx.run["scheduler_stopped"] = True
    await reconciler.set_scheduler(ctx.channel, "stop", ctx.cluster)


async def ensure_database_services(ctx: RestoreContext) -> None:
    await run_checked(ctx.channel, RemoteOperation(Op.ENSURE_DATABASE_SERVICES))


async def restore_uuid(ctx: RestoreContext) -> None:
    """Restore the appliance identity and force a consensus re-election."""
    uuid = await read_artifact_text(ctx.snapshot, UUID)
    await run_checked(
        ctx.channel, RemoteOperation(Op.WRITE_UUID, stdin=ctx.snapshot.artifact_path(UUID))
    )
    await run_checked(ctx.channel, RemoteOperation(Op.RESET_CONSENSUS_STATE))
    ctx.run["restored_uuid"] = uuid


async def stop_actions(ctx: RestoreContext) -> None:
    await run_checked(ctx.channel, RemoteOperation(Op.ACTIONS_STOP))
    ctx.run["actions_stopped"] = True


async def restore_audit_sentinel(ctx: RestoreContext) -> None:
    await run_checked(
        ctx.channel, RemoteOperation(Op.TOUCH_SENTINEL, {"name": ES_SCAN_COMPLETE})
    )


# ============================================================================
# Parallel region
# ============================================================================

async def restore_redis(ctx: RestoreContext) -> None:
    await run_checked(
        ctx.channel, RemoteOperation(Op.IMPORT_REDIS, stdin=ctx.snapshot.artifact_path(REDIS))
    )


async def restore_authorized_keys(ctx: RestoreContext) -> None:
    await run_checked(
        ctx.channel,
        RemoteOperation(
            Op.IMPORT_AUTHORIZED_KEYS, stdin=ctx.snapshot.artifact_path(AUTHORIZED_KEYS)
        ),
    )


# ============================================================================
# Suffix
# ============================================================================

async def restart_memcached(ctx: RestoreContext) -> None:
    await reconciler.restart_memcached(ctx.channel, ctx.cluster)


async def pause_connect_jobs(ctx: RestoreContext) -> None:
    await reconciler.pause_connect_jobs(ctx.channel)


async def nomad_cleanup(ctx: RestoreContext) -> None:
    await reconciler.nomad_cleanup(ctx.channel, ctx.decision.nomad_cleanup, ctx.cluster)


async def config_apply(ctx: RestoreContext) -> None:
    await reconciler.config_apply(ctx.channel, ctx.cluster)
    # The configuration run brings Actions back up
    ctx.run["actions_stopped"] = False


async def reset_connect(ctx: RestoreContext) -> None:
    await reconciler.reset_connect(ctx.channel)


async def start_scheduler(ctx: RestoreContext) -> None:
    await reconciler.set_scheduler(ctx.channel, "start", ctx.cluster)
    ctx.run["scheduler_stopped"] = False


async def mark_complete(ctx: RestoreContext) -> None:
    await ctx.status.set(RestoreStatus.COMPLETE)


async def cleanup_stale_replicas(ctx: RestoreContext) -> None:
    uuid = ctx.run["restored_uuid"] or await read_artifact_text(ctx.snapshot, UUID)
    await reconciler.cleanup_stale_replicas(ctx.channel, uuid)


async def restore_host_keys(ctx: RestoreContext) -> None:
    await reconciler.restore_host_keys(
        ctx.channel, ctx.snapshot.artifact_path(SSH_HOST_KEYS), ctx.cluster
    )


# ============================================================================
# Plan
# ============================================================================

PREFIX = (
    "stop_scheduler",
    "restore_settings",
    "ensure_database_services",
    "restore_uuid",
    "restore_database",
    "stop_actions",
    "restore_mssql",
    "restore_actions",
    "restore_minio",
    "restore_audit_sentinel",
)

PARALLEL_REGION = (
    "restore_redis",
    "restore_repositories",
    "restore_gists",
    "restore_pages",
    "restore_authorized_keys",
    "restore_storage",
    "restore_git_hooks",
    "restore_elasticsearch",
    "restore_audit_log",
)

SUFFIX = (
    "restart_memcached",
    "pause_connect_jobs",
    "nomad_cleanup",
    "config_apply",
    "reset_connect",
    "start_scheduler",
    "mark_complete",
    "cleanup_stale_replicas",
    "restore_host_keys",
)


def _step(name, description, action, after=(), **kwargs) -> RestoreStep:
    return RestoreStep(name, description, action, after=frozenset(after), **kwargs)


def declare_steps() -> List[RestoreStep]:
    """
    Every step the orchestrator knows, with its dependency edges.

    Besides the chain edges, a few edges restate ordering rules directly:
    the database precedes the data that references it, and nothing may
    evict replicas or replace host keys before the status is complete.
    """
    steps = [
        _step("stop_scheduler", "Stopping cron and timerd", stop_scheduler, soft=True),
        _step("restore_settings", "Restoring settings and license",
              mover_action(movers.SETTINGS), ["stop_scheduler"]),
        _step("ensure_database_services", "Ensuring database services are running",
              ensure_database_services, ["restore_settings"]),
        _step("restore_uuid", "Restoring UUID", restore_uuid, ["ensure_database_services"]),
        _step("restore_database", "Restoring MySQL database",
              mover_action(movers.MYSQL), ["restore_uuid"]),
        _step("stop_actions", "Stopping Actions", stop_actions, ["restore_database"]),
        _step("restore_mssql", "Restoring MSSQL databases",
              mover_action(movers.MSSQL), ["stop_actions", "restore_database"]),
        _step("restore_actions", "Restoring Actions data",
              mover_action(movers.ACTIONS), ["restore_mssql", "restore_database"]),
        _step("restore_minio", "Restoring MinIO data",
              mover_action(movers.MINIO), ["restore_actions"]),
        _step("restore_audit_sentinel", "Restoring audit log scan marker",
              restore_audit_sentinel, ["restore_minio"], soft=True),
    ]

    region = [
        ("restore_redis", "Restoring Redis database", restore_redis),
        ("restore_repositories", "Restoring Git repositories",
         mover_action(movers.REPOSITORIES)),
        ("restore_gists", "Restoring Gists", mover_action(movers.GISTS)),
        ("restore_pages", "Restoring Pages", mover_action(movers.PAGES)),
        ("restore_authorized_keys", "Restoring SSH authorized keys", restore_authorized_keys),
        ("restore_storage", "Restoring storage data", mover_action(movers.STORAGE)),
        ("restore_git_hooks", "Restoring custom Git hooks", mover_action(movers.GIT_HOOKS)),
        ("restore_elasticsearch", "Restoring Elasticsearch indices",
         mover_action(movers.ELASTICSEARCH)),
        ("restore_audit_log", "Restoring audit logs", mover_action(movers.AUDIT_LOG)),
    ]
    for name, description, action in region:
        steps.append(
            _step(name, description, action, ["restore_audit_sentinel", "restore_database"],
                  concurrent=True)
        )

    steps += [
        _step("restart_memcached", "Restarting memcached", restart_memcached,
              PARALLEL_REGION, soft=True),
        _step("pause_connect_jobs", "Pausing GitHub Connect jobs", pause_connect_jobs,
              ["restart_memcached"]),
        _step("nomad_cleanup", "Cleaning up Nomad jobs", nomad_cleanup, ["pause_connect_jobs"]),
        _step("config_apply", "Running configuration and migrations", config_apply,
              ["nomad_cleanup"]),
        _step("reset_connect", "Resetting GitHub Connect settings", reset_connect,
              ["config_apply"]),
        _step("start_scheduler", "Starting cron and timerd", start_scheduler,
              ["reset_connect"], soft=True),
        _step("mark_complete", "Marking restore complete", mark_complete,
              ["start_scheduler", "restore_uuid"], retryable=False),
        _step("cleanup_stale_replicas", "Removing stale replicas", cleanup_stale_replicas,
              ["mark_complete", "restore_uuid"]),
        _step("restore_host_keys", "Restoring SSH host keys", restore_host_keys,
              ["cleanup_stale_replicas", "mark_complete"]),
    ]
    return steps


def applicable_steps(ctx: RestoreContext) -> dict:
    """Applicability predicate for every declared step."""
    decision = ctx.decision
    snapshot = ctx.snapshot
    cluster = ctx.topology.cluster

    return {
        "stop_scheduler": True,
        "restore_settings": decision.restore_settings,
        "ensure_database_services": not cluster,
        "restore_uuid": decision.restore_uuid,
        "restore_database": decision.restore_database,
        "stop_actions": decision.actions,
        "restore_mssql": decision.actions,
        "restore_actions": decision.actions,
        "restore_minio": decision.minio,
        "restore_audit_sentinel": not cluster and ES_SCAN_COMPLETE in snapshot.sentinels,
        "restore_redis": snapshot.has(REDIS),
        "restore_repositories": True,
        "restore_gists": True,
        "restore_pages": True,
        "restore_authorized_keys": snapshot.has(AUTHORIZED_KEYS),
        "restore_storage": True,
        "restore_git_hooks": True,
        "restore_elasticsearch": decision.elasticsearch,
        "restore_audit_log": decision.audit_log,
        "restart_memcached": True,
        "pause_connect_jobs": decision.config_apply and not decision.restore_settings,
        "nomad_cleanup": decision.nomad_cleanup is not None,
        "config_apply": decision.config_apply,
        "reset_connect": not decision.restore_settings,
        "start_scheduler": True,
        "mark_complete": True,
        "cleanup_stale_replicas": decision.stale_replica_cleanup,
        "restore_host_keys": snapshot.has(SSH_HOST_KEYS),
    }


def build_plan(ctx: RestoreContext) -> RestorePlan:
    """
    Build the plan for one invocation.

    Returns:
        RestorePlan containing only the applicable steps
    """
    full = RestorePlan(tuple(declare_steps()))
    applicable = applicable_steps(ctx)
    excluded = [name for name in full.names if not applicable[name]]

    for name, artifact in (("restore_redis", REDIS), ("restore_authorized_keys", AUTHORIZED_KEYS)):
        if name in excluded:
            logger.warning("artifact_missing", artifact=artifact, step=name)

    plan = full.without(excluded)
    logger.debug("restore_plan_built", steps=plan.names, excluded=excluded)
    return plan
