# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command Line Tests.
"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import SNAPSHOT_ID
from gherestore import __version__, cli
from gherestore.core import RestoreResult
from gherestore.exceptions import ConfirmationDeclined, PreconditionFailure, StepFailure
from gherestore.restore.executor import StepResult

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, data_dir: Path):
    for name in ("GHE_HOSTNAME", "GHE_RESTORE_HOST", "GHE_VERBOSE_LOG", "GHE_EXTRA_SSH_OPTS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GHE_DATA_DIR", str(data_dir))


def result_for(config, steps=(), notices=()):
    return RestoreResult(
        run_id="01JRUN",
        host=config.host,
        snapshot_id=SNAPSHOT_ID,
        status="complete",
        appliance_strategy="logical",
        snapshot_strategy="logical",
        duration_seconds=1.5,
        steps=list(steps),
        notices=list(notices),
    )


@pytest.fixture
def calls(monkeypatch):
    """Replace run_restore with a recorder that returns a canned result."""
    seen = []

    async def fake_run_restore(config, options, *, confirm=None, **kwargs):
        seen.append((config, options))
        return result_for(config)

    monkeypatch.setattr(cli, "run_restore", fake_run_restore)
    return seen


def test_version():
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_flags_reach_the_orchestrator(calls):
    result = runner.invoke(
        cli.app, ["ghe.example.com:122", "-c", "-f", "--skip-mysql", "-s", "20260102T000000"]
    )

    assert result.exit_code == 0, result.output
    config, options = calls[0]
    assert config.hostname == "ghe.example.com:122"
    assert options.restore_settings and options.force and options.skip_mysql
    assert options.snapshot_id == "20260102T000000"
    assert f"from snapshot {SNAPSHOT_ID} finished" in result.output


def test_host_from_environment(calls, monkeypatch):
    monkeypatch.setenv("GHE_RESTORE_HOST", "ghe.example.com")

    result = runner.invoke(cli.app, ["-f"])

    assert result.exit_code == 0, result.output
    assert calls[0][0].hostname == "ghe.example.com"


def test_missing_host_is_configuration_error(calls):
    result = runner.invoke(cli.app, [])

    assert result.exit_code == 2
    assert calls == []


def test_missing_data_directory(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("GHE_DATA_DIR", str(tmp_path / "nowhere"))

    result = runner.invoke(cli.app, ["ghe.example.com", "-f"])

    assert result.exit_code == 8


@pytest.mark.parametrize(
    "error,code",
    [
        (PreconditionFailure("Snapshot is a cluster snapshot"), 1),
        (ConfirmationDeclined("Restore aborted by operator"), 1),
        (StepFailure("Step restore_pages failed", output="pages: rsync error"), 1),
    ],
)
def test_errors_map_to_exit_codes(monkeypatch, error, code):
    async def failing(config, options, **kwargs):
        raise error

    monkeypatch.setattr(cli, "run_restore", failing)

    result = runner.invoke(cli.app, ["ghe.example.com", "-f"])

    assert result.exit_code == code
    assert error.message in result.output
    if isinstance(error, StepFailure):
        assert "pages: rsync error" in result.output


@pytest.mark.parametrize("answer,code", [("yes\n", 0), ("no\n", 1), ("y\n", 1)])
def test_confirmation_prompt(monkeypatch, answer, code):
    async def prompting(config, options, *, confirm=None, **kwargs):
        if not confirm("WARNING: All data will be overwritten."):
            raise ConfirmationDeclined("Restore aborted by operator")
        return result_for(config)

    monkeypatch.setattr(cli, "run_restore", prompting)

    result = runner.invoke(cli.app, ["ghe.example.com"], input=answer)

    assert result.exit_code == code
    assert "will be overwritten" in result.output


def test_warnings_and_notices_are_printed(monkeypatch):
    async def with_notices(config, options, **kwargs):
        return result_for(
            config,
            steps=[StepResult("restart_memcached", False, True, 0.1, "memcached failed")],
            notices=["Visit https://ghe.example.com/setup/settings"],
        )

    monkeypatch.setattr(cli, "run_restore", with_notices)

    result = runner.invoke(cli.app, ["ghe.example.com", "-f"])

    assert result.exit_code == 0
    assert "restart_memcached" in result.output
    assert "/setup/settings" in result.output


def test_main_usage_error_exits_1():
    assert cli.main(["--bogus"]) == 1


def test_main_returns_configuration_exit_code():
    assert cli.main([]) == 2


def test_main_version():
    assert cli.main(["--version"]) == 0
