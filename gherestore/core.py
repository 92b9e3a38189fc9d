# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Core - Main orchestrator for a restore invocation.

This module wires the components together: snapshot loading, target
probing, strategy resolution, the compatibility gate, the status channel,
plan execution and the cleanup that always runs afterwards.
"""

from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import List

import aiosqlite
import structlog
from ulid import ULID

from gherestore.config import RestoreConfig, RestoreOptions, RestoreStatus
from gherestore.exceptions import JournalError, StepFailure
from gherestore.journal import complete_run, init_journal_db, journal_path, record_run, record_step
from gherestore.lock import restore_lock
from gherestore.restore import reconciler
from gherestore.restore.executor import PlanExecutor, StepResult
from gherestore.restore.gate import Confirm, check_actions_feature, run_compatibility_gate
from gherestore.restore.movers import CommandMover, DataMover
from gherestore.restore.steps import RestoreContext, build_plan, new_run_state
from gherestore.restore.strategy import resolve_strategy
from gherestore.snapshot import check_backup_in_progress, load_snapshot
from gherestore.target.prober import TargetProber, TargetTopology
from gherestore.target.remote import ControlChannel, Op, RemoteOperation
from gherestore.target.ssh import SSHControlChannel
from gherestore.target.status import StatusChannel

logger = structlog.get_logger()


@dataclass
class RestoreResult:
    """Result of a successful restore."""

    run_id: str  # ULID
    host: str
    snapshot_id: str
    status: str
    appliance_strategy: str
    snapshot_strategy: str
    duration_seconds: float
    steps: List[StepResult] = field(default_factory=list)
    notices: List[str] = field(default_factory=list)

    @property
    def soft_failures(self) -> List[str]:
        return [step.name for step in self.steps if not step.ok]


def follow_up_notices(topology: TargetTopology, actions: bool) -> List[str]:
    """Manual follow-ups the operator must do after the restore."""
    notices = []
    if not topology.cluster and not topology.configured:
        notices.append(
            f"To complete the restore process, visit https://{topology.hostname}/setup/settings "
            "to review and save the appliance configuration."
        )
    if actions:
        notices.append(
            "Self-hosted Actions runners are not restored. Re-register them "
            "with the restored appliance."
        )
    return notices


async def _syslog(channel: ControlChannel, message: str) -> None:
    result = await channel.run(RemoteOperation(Op.SYSLOG, {"message": message}))
    if not result.ok:
        logger.warning("syslog_failed", output=result.output)


async def _cleanup(ctx: RestoreContext) -> None:
    """
    Bring stopped services back after success or failure.

    Best effort: errors are logged so they do not hide the restore's own
    outcome.
    """
    if ctx.run["actions_stopped"]:
        logger.info("restarting_actions")
        try:
            result = await ctx.channel.run(RemoteOperation(Op.ACTIONS_START))
            if not result.ok:
                logger.warning("actions_restart_failed", output=result.output)
        except Exception as e:
            logger.warning("actions_restart_failed", error=str(e))

    if ctx.run["scheduler_stopped"]:
        logger.info("restarting_scheduler")
        try:
            await reconciler.set_scheduler(ctx.channel, "start", ctx.cluster)
        except Exception as e:
            logger.warning("scheduler_restart_failed", error=str(e))


async def _open_journal(
    stack: AsyncExitStack, config: RestoreConfig
) -> aiosqlite.Connection | None:
    """Open the run journal, or return None when it is disabled or unusable."""
    if not config.journal_enabled:
        return None
    path = journal_path(config.data_dir)
    try:
        await init_journal_db(path)
        return await stack.enter_async_context(aiosqlite.connect(path))
    except (JournalError, aiosqlite.Error, OSError) as e:
        logger.warning("journal_unavailable", db_path=str(path), error=str(e))
        return None


async def _journal_write(journal: aiosqlite.Connection | None, write, *args, **kwargs) -> None:
    """
    Apply one journal write.

    The journal is local bookkeeping: a failed write is logged and the
    restore carries on.
    """
    if journal is None:
        return
    try:
        await write(journal, *args, **kwargs)
    except (aiosqlite.Error, OSError) as e:
        logger.warning(
            "journal_write_failed",
            operation=getattr(write, "__name__", "write"),
            error=str(e),
        )


async def run_restore(
    config: RestoreConfig,
    options: RestoreOptions,
    *,
    channel: ControlChannel | None = None,
    mover: DataMover | None = None,
    confirm: Confirm | None = None,
) -> RestoreResult:
    """
    Restore a snapshot onto the target.

    Nothing on the target changes until the snapshot is loaded, the target
    probed and the compatibility gate passed. From then on the status
    channel reports progress, and any failure leaves it at ``failed``.

    Args:
        config: Restore configuration
        options: Invocation flags
        channel: Control channel (default: ssh to config.hostname)
        mover: Data mover (default: per-subsystem helper commands)
        confirm: Interactive confirmation prompt

    Returns:
        RestoreResult describing the completed restore

    Raises:
        RestoreError: Any failure; ``exit_code`` gives the process status
    """
    run_id = str(ULID())
    start_time = datetime.now(UTC)
    owns_channel = channel is None
    channel = channel or SSHControlChannel(config)
    mover = mover or CommandMover(config)

    logger.info("restore_started", run_id=run_id, host=config.hostname)

    async with AsyncExitStack() as stack:
        if owns_channel:
            stack.push_async_callback(channel.close)

        snapshot = await load_snapshot(config.data_dir, options.snapshot_id)
        check_backup_in_progress(config.data_dir)

        topology = await TargetProber(channel, config).probe()
        decision = resolve_strategy(config, options, snapshot, topology)
        run_compatibility_gate(snapshot, topology, options, confirm)

        stack.enter_context(restore_lock(config.data_dir, run_id))
        journal = await _open_journal(stack, config)

        status = StatusChannel(channel, topology.cluster)
        ctx = RestoreContext(
            config=config,
            options=options,
            snapshot=snapshot,
            topology=topology,
            decision=decision,
            channel=channel,
            mover=mover,
            status=status,
            run=new_run_state(),
        )

        async def on_step(result: StepResult) -> None:
            await _journal_write(
                journal,
                record_step,
                run_id,
                result.name,
                result.ok,
                result.soft,
                result.duration_seconds,
                result.error,
            )

        await _journal_write(
            journal,
            record_run,
            run_id,
            topology.hostname,
            snapshot.id,
            {
                "version": str(topology.version),
                "cluster": topology.cluster,
                "appliance_strategy": decision.appliance_strategy.value,
                "snapshot_strategy": decision.snapshot_strategy.value,
            },
        )

        executor = PlanExecutor(
            parallel=config.parallel_enabled,
            max_jobs=config.max_jobs,
            on_step=on_step,
        )

        try:
            await status.set(RestoreStatus.RESTORING)
            check_actions_feature(snapshot, topology)

            await _syslog(
                channel,
                f"Starting restore of {topology.hostname} from snapshot {snapshot.id}",
            )

            plan = build_plan(ctx)
            logger.info("restore_plan", steps=plan.names, parallel=config.parallel_enabled)
            steps = await executor.execute(plan, ctx)

            if status.current != RestoreStatus.COMPLETE:
                # mark_complete is part of every plan
                raise StepFailure("Restore plan finished without marking the restore complete")

            await _syslog(
                channel,
                f"Completed restore of {topology.hostname} from snapshot {snapshot.id}",
            )

        except BaseException as e:
            if status.current == RestoreStatus.RESTORING:
                try:
                    await status.set(RestoreStatus.FAILED)
                except Exception as status_error:
                    logger.error("status_update_failed", error=str(status_error))

            logger.error("restore_failed", run_id=run_id, error=str(e))
            await _journal_write(
                journal, complete_run, run_id, RestoreStatus.FAILED.value, error=str(e)
            )
            raise

        finally:
            await _cleanup(ctx)

        duration = (datetime.now(UTC) - start_time).total_seconds()
        result = RestoreResult(
            run_id=run_id,
            host=topology.hostname,
            snapshot_id=snapshot.id,
            status=RestoreStatus.COMPLETE.value,
            appliance_strategy=decision.appliance_strategy.value,
            snapshot_strategy=decision.snapshot_strategy.value,
            duration_seconds=duration,
            steps=steps,
            notices=follow_up_notices(topology, decision.actions),
        )

        await _journal_write(
            journal,
            complete_run,
            run_id,
            result.status,
            details={
                "version": str(topology.version),
                "cluster": topology.cluster,
                "appliance_strategy": result.appliance_strategy,
                "snapshot_strategy": result.snapshot_strategy,
                "duration_seconds": duration,
                "soft_failures": result.soft_failures,
                "notices": result.notices,
            },
        )

        logger.info(
            "restore_completed",
            run_id=run_id,
            host=topology.hostname,
            snapshot=snapshot.id,
            duration=duration,
        )
        return result
