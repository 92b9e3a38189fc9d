# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Data Mover Tests.

Runs CommandMover against small shell helpers written into a temp dir.
"""

import stat
from pathlib import Path

import pytest
import pytest_asyncio

from conftest import SNAPSHOT_ID, make_snapshot
from gherestore.config import BackupStrategy, DatabaseStrategy
from gherestore.exceptions import StepFailure
from gherestore.restore.movers import CommandMover, MoverRequest, tail
from gherestore.snapshot import Snapshot, load_snapshot


def write_helper(bin_dir: Path, subsystem: str, body: str) -> None:
    bin_dir.mkdir(exist_ok=True)
    helper = bin_dir / f"ghe-restore-{subsystem}"
    helper.write_text("#!/bin/sh\n" + body + "\n")
    helper.chmod(helper.stat().st_mode | stat.S_IXUSR)


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    return tmp_path / "bin"


@pytest.fixture
def mover(config, bin_dir: Path) -> CommandMover:
    config = config.with_updates(
        helper_prefix=f"{bin_dir}/ghe-restore-", parallel_rsync_max_jobs=3
    )
    return CommandMover(config, base_env={"PATH": "/usr/bin:/bin"})


@pytest_asyncio.fixture
async def request_for(data_dir: Path):
    make_snapshot(data_dir)
    snapshot = await load_snapshot(data_dir)
    return MoverRequest(snapshot, DatabaseStrategy.LOGICAL, cluster=False)


def test_command_and_environment(mover, data_dir: Path, bin_dir: Path):
    snapshot = Snapshot(
        SNAPSHOT_ID, data_dir / SNAPSHOT_ID, BackupStrategy.LOGICAL, frozenset(), frozenset()
    )
    request = MoverRequest(snapshot, DatabaseStrategy.BINARY, cluster=True)

    assert mover.command("pages") == [f"{bin_dir}/ghe-restore-pages", "ghe.example.com"]

    env = mover.environment(request)
    assert env["GHE_RESTORE_SNAPSHOT"] == SNAPSHOT_ID
    assert env["GHE_RESTORE_SNAPSHOT_PATH"] == str(data_dir / SNAPSHOT_ID)
    assert env["GHE_BACKUP_STRATEGY"] == "logical"
    assert env["GHE_APPLIANCE_STRATEGY"] == "binary"
    assert env["GHE_CLUSTER"] == "yes"
    assert env["GHE_PARALLEL_RSYNC_MAX_JOBS"] == "3"
    assert env["PATH"] == "/usr/bin:/bin"
    assert "GHE_VERBOSE" not in env


def test_unknown_subsystem(mover):
    with pytest.raises(ValueError):
        mover.command("../../bin/rm")


@pytest.mark.asyncio
async def test_helper_sees_snapshot(mover, request_for, bin_dir: Path, tmp_path: Path):
    marker = tmp_path / "seen"
    write_helper(bin_dir, "pages", f'echo "$GHE_RESTORE_SNAPSHOT $1" > {marker}')

    await mover.restore("pages", request_for)

    assert marker.read_text().strip() == f"{SNAPSHOT_ID} ghe.example.com"


@pytest.mark.asyncio
async def test_helper_failure_keeps_output_tail(mover, request_for, bin_dir: Path):
    write_helper(
        bin_dir,
        "storage",
        'i=0; while [ $i -lt 30 ]; do echo "line $i"; i=$((i+1)); done\n'
        'echo "rsync error: some files could not be transferred" >&2\nexit 23',
    )

    with pytest.raises(StepFailure) as exc_info:
        await mover.restore("storage", request_for)

    error = exc_info.value
    assert error.details["exit_code"] == 23
    assert error.steps == ["storage"]
    assert error.output.splitlines()[-1].startswith("rsync error")
    assert "line 0" not in error.output
    assert len(error.output.splitlines()) == 20


@pytest.mark.asyncio
async def test_missing_helper(mover, request_for):
    with pytest.raises(StepFailure) as exc_info:
        await mover.restore("git-hooks", request_for)

    assert "not installed" in exc_info.value.message


def test_tail():
    assert tail("a\nb\nc\n", lines=2) == "b\nc"
    assert tail("") == ""
