# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Orchestration Tests.

End-to-end runs of run_restore() against the in-memory appliance and data
mover from conftest.
"""

import json
from pathlib import Path

import aiosqlite
import pytest

from conftest import (
    DEFAULT_ARTIFACTS,
    RESTORED_UUID,
    SNAPSHOT_ID,
    FakeChannel,
    FakeMover,
    make_snapshot,
)
from gherestore import core
from gherestore.config import RestoreOptions
from gherestore.core import run_restore
from gherestore.exceptions import (
    ConfirmationDeclined,
    JournalError,
    PreconditionFailure,
    StepFailure,
)
from gherestore.journal import get_run, get_run_steps, journal_path, record_step
from gherestore.lock import lock_path
from gherestore.target.prober import Feature
from gherestore.target.remote import Op

FORCE = RestoreOptions(force=True)


def service_actions(channel):
    return [(op.args["service"], op.args["action"]) for op in channel.ops(Op.SERVICE)]


# ============================================================================
# Successful restores
# ============================================================================

@pytest.mark.asyncio
async def test_restore_configured_standalone(config, channel, mover, events, data_dir: Path):
    make_snapshot(data_dir)

    result = await run_restore(config, FORCE, channel=channel, mover=mover)

    assert result.status == "complete"
    assert result.snapshot_id == SNAPSHOT_ID
    assert result.appliance_strategy == "logical"
    assert channel.statuses == ["restoring", "complete"]

    assert mover.calls == [
        "mysql",
        "repositories",
        "repositories-gist",
        "pages",
        "storage",
        "git-hooks",
        "es-audit-log",
    ]
    assert "settings" not in mover.calls

    complete = events.index("write_status:complete")
    assert events.index("write_uuid") < complete
    assert events.index("config_apply") < complete
    assert events.index("list_git_servers") > complete
    assert events.index("import_ssh_host_keys") > complete

    assert service_actions(channel)[:2] == [("cron", "stop"), ("github-timerd", "stop")]
    assert ("cron", "start") in service_actions(channel)
    assert not channel.closed
    assert not lock_path(data_dir).exists()


@pytest.mark.asyncio
async def test_database_precedes_dependent_data(config, channel, mover, events, data_dir: Path):
    make_snapshot(data_dir)

    await run_restore(config, FORCE, channel=channel, mover=mover)

    database = events.index("mover:mysql")
    for later in ("mover:repositories", "mover:storage", "import_redis"):
        assert events.index(later) > database


@pytest.mark.asyncio
async def test_parallel_restore_respects_job_limit(channel, data_dir: Path, config):
    make_snapshot(data_dir)
    config = config.with_updates(parallel_enabled=True, parallel_max_jobs=2)
    mover = FakeMover(delay=0.01)

    await run_restore(config, FORCE, channel=channel, mover=mover)

    assert 1 < mover.peak <= 2
    assert set(mover.calls) >= {"repositories", "repositories-gist", "pages", "storage"}
    assert channel.statuses == ["restoring", "complete"]


@pytest.mark.asyncio
async def test_unconfigured_target_restores_settings(config, mover, data_dir: Path):
    make_snapshot(data_dir)
    channel = FakeChannel(markers=())
    prompts = []

    result = await run_restore(
        config, RestoreOptions(), channel=channel, mover=mover, confirm=prompts.append
    )

    assert prompts == []
    assert mover.calls[0] == "settings"
    assert channel.ops(Op.CONFIG_APPLY) == []
    assert channel.ops(Op.RESET_CONNECT) == []
    assert channel.ops(Op.LIST_GIT_SERVERS) == []
    assert any("/setup/settings" in notice for notice in result.notices)


@pytest.mark.asyncio
async def test_restore_with_actions(config, mover, data_dir: Path):
    make_snapshot(data_dir, artifacts=DEFAULT_ARTIFACTS + ("actions", "mssql"))
    channel = FakeChannel(features=(Feature.ACTIONS,))

    result = await run_restore(config, FORCE, channel=channel, mover=mover)

    assert mover.calls[:3] == ["mysql", "mssql", "actions"]
    assert channel.ops(Op.ACTIONS_STOP)
    # config_apply brings Actions back, cleanup must not start it again
    assert channel.ops(Op.ACTIONS_START) == []
    assert any("runners" in notice for notice in result.notices)


@pytest.mark.asyncio
async def test_missing_optional_artifacts_are_skipped(config, channel, mover, data_dir: Path):
    artifacts = tuple(a for a in DEFAULT_ARTIFACTS if a not in ("redis.rdb", "authorized-keys.json"))
    make_snapshot(data_dir, artifacts=artifacts)

    await run_restore(config, FORCE, channel=channel, mover=mover)

    assert channel.ops(Op.IMPORT_REDIS) == []
    assert channel.ops(Op.IMPORT_AUTHORIZED_KEYS) == []
    assert channel.statuses == ["restoring", "complete"]


@pytest.mark.asyncio
async def test_restore_is_repeatable(config, data_dir: Path):
    make_snapshot(data_dir)
    runs = []

    for _ in range(2):
        channel = FakeChannel()
        mover = FakeMover(events=channel.events)
        await run_restore(config, FORCE, channel=channel, mover=mover)
        runs.append(channel.events)

    assert runs[0] == runs[1]


# ============================================================================
# Refusals before any mutation
# ============================================================================

@pytest.mark.asyncio
async def test_cluster_snapshot_onto_standalone(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir, strategy="cluster")

    with pytest.raises(PreconditionFailure):
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert channel.statuses == []
    assert mover.calls == []
    assert not lock_path(data_dir).exists()


@pytest.mark.asyncio
async def test_confirmation_accepted(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)
    prompts = []

    def confirm(message):
        prompts.append(message)
        return True

    await run_restore(config, RestoreOptions(), channel=channel, mover=mover, confirm=confirm)

    assert len(prompts) == 1
    assert "will be overwritten" in prompts[0]
    assert channel.statuses == ["restoring", "complete"]


@pytest.mark.asyncio
async def test_confirmation_declined(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)

    with pytest.raises(ConfirmationDeclined) as exc_info:
        await run_restore(
            config, RestoreOptions(), channel=channel, mover=mover, confirm=lambda m: False
        )

    assert exc_info.value.exit_code == 1
    assert channel.statuses == []
    assert mover.calls == []


@pytest.mark.asyncio
async def test_missing_prompt_declines(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)

    with pytest.raises(ConfirmationDeclined):
        await run_restore(config, RestoreOptions(), channel=channel, mover=mover)


@pytest.mark.asyncio
async def test_concurrent_restore_refused(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)
    lock_path(data_dir).write_text("01JGXYZ pid=1 host=backup-host\n")

    with pytest.raises(PreconditionFailure) as exc_info:
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert "already running" in exc_info.value.message
    assert channel.statuses == []
    assert lock_path(data_dir).exists()


@pytest.mark.asyncio
async def test_backup_in_progress_refused(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)
    (data_dir / "in-progress").write_text("20260101T030000 4242")

    with pytest.raises(PreconditionFailure):
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert channel.calls == []


# ============================================================================
# Failures after the status is set
# ============================================================================

@pytest.mark.asyncio
async def test_actions_snapshot_without_actions_feature(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir, artifacts=DEFAULT_ARTIFACTS + ("actions",))

    with pytest.raises(PreconditionFailure):
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert channel.statuses == ["restoring", "failed"]
    assert mover.calls == []
    assert channel.ops(Op.SERVICE) == []


@pytest.mark.asyncio
async def test_step_failure_marks_failed_and_restarts_scheduler(config, events, data_dir: Path):
    make_snapshot(data_dir)
    channel = FakeChannel(events=events)
    mover = FakeMover(events=events, fail=("repositories",))

    with pytest.raises(StepFailure) as exc_info:
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert exc_info.value.steps == ["restore_repositories"]
    assert "rsync error" in exc_info.value.output
    assert channel.statuses == ["restoring", "failed"]
    assert channel.ops(Op.CONFIG_APPLY) == []

    failed = events.index("write_status:failed")
    assert events[failed + 1:] == ["service", "service"]
    assert service_actions(channel)[-2:] == [("cron", "start"), ("github-timerd", "start")]
    assert not lock_path(data_dir).exists()


@pytest.mark.asyncio
async def test_soft_step_failure_still_completes(config, mover, data_dir: Path):
    make_snapshot(data_dir)
    channel = FakeChannel(fail={Op.SERVICE: 1})

    result = await run_restore(config, FORCE, channel=channel, mover=mover)

    assert channel.statuses == ["restoring", "complete"]
    assert set(result.soft_failures) == {"stop_scheduler", "restart_memcached", "start_scheduler"}


# ============================================================================
# Journal
# ============================================================================

@pytest.mark.asyncio
async def test_journal_records_run_and_steps(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)

    result = await run_restore(config, FORCE, channel=channel, mover=mover)

    async with aiosqlite.connect(journal_path(data_dir)) as db:
        run = await get_run(db, result.run_id)
        steps = await get_run_steps(db, result.run_id)

    assert run["status"] == "complete"
    assert run["host"] == "ghe.example.com"
    assert run["snapshot_id"] == SNAPSHOT_ID
    assert run["details"]["version"] == "3.9.2"
    assert [s["name"] for s in steps] == [s.name for s in result.steps]
    assert all(s["ok"] for s in steps)


@pytest.mark.asyncio
async def test_journal_records_failure(config, data_dir: Path):
    make_snapshot(data_dir)
    channel = FakeChannel(fail={Op.CONFIG_APPLY: 1})
    mover = FakeMover()

    with pytest.raises(StepFailure):
        await run_restore(config, FORCE, channel=channel, mover=mover)

    async with aiosqlite.connect(journal_path(data_dir)) as db:
        async with db.execute("SELECT id FROM runs") as cursor:
            (run_id,) = await cursor.fetchone()
        run = await get_run(db, run_id)
        steps = await get_run_steps(db, run_id)

    assert run["status"] == "failed"
    assert "config_apply" in run["error"]
    assert steps[-1]["name"] == "config_apply"
    assert steps[-1]["ok"] is False


@pytest.mark.asyncio
async def test_journal_can_be_disabled(config, channel, mover, data_dir: Path):
    make_snapshot(data_dir)

    await run_restore(
        config.with_updates(journal_enabled=False), FORCE, channel=channel, mover=mover
    )

    assert not journal_path(data_dir).exists()


async def only_run(data_dir: Path):
    async with aiosqlite.connect(journal_path(data_dir)) as db:
        async with db.execute("SELECT id FROM runs") as cursor:
            (run_id,) = await cursor.fetchone()
        return await get_run(db, run_id)


@pytest.mark.asyncio
async def test_journal_write_failure_does_not_abort_restore(
    config, channel, mover, data_dir: Path, monkeypatch
):
    make_snapshot(data_dir)
    writes = []

    async def locked_on_third(db, *args, **kwargs):
        writes.append(args[1])
        if len(writes) == 3:
            raise aiosqlite.OperationalError("database is locked")
        await record_step(db, *args, **kwargs)

    monkeypatch.setattr(core, "record_step", locked_on_third)

    result = await run_restore(config, FORCE, channel=channel, mover=mover)

    assert result.status == "complete"
    assert channel.statuses == ["restoring", "complete"]
    assert "repositories" in mover.calls

    async with aiosqlite.connect(journal_path(data_dir)) as db:
        run = await get_run(db, result.run_id)
        steps = await get_run_steps(db, result.run_id)
    assert run["status"] == "complete"
    assert writes[2] not in [s["name"] for s in steps]
    assert len(steps) == len(result.steps) - 1


@pytest.mark.asyncio
async def test_journal_failure_keeps_original_error(config, data_dir: Path, monkeypatch):
    make_snapshot(data_dir)

    async def locked(db, *args, **kwargs):
        raise aiosqlite.OperationalError("database is locked")

    monkeypatch.setattr(core, "complete_run", locked)
    channel = FakeChannel()

    with pytest.raises(StepFailure) as exc_info:
        await run_restore(
            config, FORCE, channel=channel, mover=FakeMover(fail=("pages",))
        )

    assert exc_info.value.steps == ["restore_pages"]
    assert channel.statuses == ["restoring", "failed"]


@pytest.mark.asyncio
async def test_unusable_journal_is_skipped(config, channel, mover, data_dir: Path, monkeypatch):
    make_snapshot(data_dir)

    async def broken(path):
        raise JournalError("Failed to initialize restore journal: disk I/O error")

    monkeypatch.setattr(core, "init_journal_db", broken)

    result = await run_restore(config, FORCE, channel=channel, mover=mover)

    assert result.status == "complete"
    assert not journal_path(data_dir).exists()


# ============================================================================
# Failures after the status is complete
# ============================================================================

@pytest.mark.asyncio
async def test_host_key_failure_after_complete(config, mover, data_dir: Path):
    make_snapshot(data_dir)
    channel = FakeChannel(fail={Op.IMPORT_SSH_HOST_KEYS: 1})

    with pytest.raises(StepFailure) as exc_info:
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert exc_info.value.steps == ["restore_host_keys"]
    assert channel.statuses == ["restoring", "complete"]
    assert (await only_run(data_dir))["status"] == "failed"
    assert not lock_path(data_dir).exists()


@pytest.mark.asyncio
async def test_stale_replica_failure_after_complete(config, mover, data_dir: Path):
    make_snapshot(data_dir)
    stale = "0a1b2c3d-0000-4000-8000-00000000000a"
    servers = [{"host": f"git-server-{uuid}"} for uuid in (RESTORED_UUID, stale)]
    channel = FakeChannel(
        outputs={Op.LIST_GIT_SERVERS: json.dumps(servers)},
        fail={(Op.DESTROY_STORAGE_HOST, stale): 1},
    )

    with pytest.raises(StepFailure) as exc_info:
        await run_restore(config, FORCE, channel=channel, mover=mover)

    assert exc_info.value.steps == ["cleanup_stale_replicas"]
    assert channel.statuses == ["restoring", "complete"]
    assert [op.args["uuid"] for op in channel.ops(Op.EVACUATE_GIT_SERVER)] == [stale]
    assert channel.ops(Op.IMPORT_SSH_HOST_KEYS) == []
    assert (await only_run(data_dir))["status"] == "failed"
