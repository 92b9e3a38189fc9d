# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for gherestore tests.

Provides an in-memory control channel that behaves like an appliance, a
recording data mover, and a snapshot factory.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List

import pytest
import structlog

from gherestore.builder import create_config
from gherestore.exceptions import ConnectivityFailure, StepFailure
from gherestore.target.prober import Feature
from gherestore.target.remote import Op, RemoteOperation, RemoteResult

# Set test environment variables
os.environ["GHE_RESTORE_ADMIN_API_KEY"] = "test-api-key-12345"

SNAPSHOT_ID = "20260101T020000"
RESTORED_UUID = "5e3b0c7a-1d2f-4c55-9a10-6f2c9e1d0b11"

DEFAULT_ARTIFACTS = (
    "uuid",
    "redis.rdb",
    "authorized-keys.json",
    "ssh-host-keys.tar",
    "settings.json",
    "mysql",
    "repositories",
    "pages",
    "storage",
    "git-hooks",
)

_FILE_CONTENT = {
    "uuid": RESTORED_UUID + "\n",
    "redis.rdb": "REDIS0009",
    "authorized-keys.json": "[]",
    "ssh-host-keys.tar": "host-keys",
    "settings.json": "{}",
}


class FakeChannel:
    """
    ControlChannel double that answers like an appliance.

    Every operation is appended to ``events`` (status writes as
    ``write_status:<state>``) so tests can check ordering across the
    channel and the data mover.
    """

    def __init__(
        self,
        version: str = "3.9.2",
        markers: Iterable[str] = ("configured",),
        features: Iterable[Feature] = (),
        maintenance: bool = True,
        fail: Dict | None = None,
        outputs: Dict[Op, str] | None = None,
        unreachable: bool = False,
        events: List[str] | None = None,
    ):
        self.version = version
        self.markers = set(markers)
        self.features = {f.value for f in features}
        self.maintenance = maintenance
        self.fail = dict(fail or {})
        self.outputs = dict(outputs or {})
        self.unreachable = unreachable
        self.events = events if events is not None else []
        self.calls: List[RemoteOperation] = []
        self.statuses: List[str] = []
        self.closed = False

    def ops(self, name: Op) -> List[RemoteOperation]:
        return [op for op in self.calls if op.name == name]

    def _failure(self, op: RemoteOperation) -> int:
        uuid = op.args.get("uuid")
        if uuid is not None and (op.name, uuid) in self.fail:
            return self.fail[(op.name, uuid)]
        return self.fail.get(op.name, 0)

    async def run(self, op: RemoteOperation) -> RemoteResult:
        if self.unreachable:
            raise ConnectivityFailure("Unable to connect to ghe.example.com:122")

        self.calls.append(op)
        if op.name == Op.WRITE_STATUS:
            self.events.append(f"write_status:{op.args['state']}")
        else:
            self.events.append(op.name.value)

        if op.name == Op.READ_VERSION:
            return RemoteResult(0, f'RELEASE_VERSION="{self.version}"\n')
        if op.name == Op.MARKER_EXISTS:
            return RemoteResult(0 if op.args["marker"] in self.markers else 1)
        if op.name == Op.CONFIG_ENABLED:
            return RemoteResult(0 if op.args["key"] in self.features else 1)
        if op.name == Op.MAINTENANCE_STATUS:
            return RemoteResult(0 if self.maintenance else 1)

        returncode = self._failure(op)
        if returncode:
            return RemoteResult(returncode, "", f"{op.name.value} failed")

        if op.name == Op.WRITE_STATUS:
            self.statuses.append(op.args["state"])
        return RemoteResult(0, self.outputs.get(op.name, ""))

    async def close(self) -> None:
        self.closed = True


class FakeMover:
    """DataMover double recording calls and peak concurrency."""

    def __init__(
        self,
        events: List[str] | None = None,
        fail: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.events = events if events is not None else []
        self.fail = set(fail)
        self.delay = delay
        self.calls: List[str] = []
        self.requests = []
        self.active = 0
        self.peak = 0

    async def restore(self, subsystem, request) -> None:
        self.calls.append(subsystem)
        self.requests.append(request)
        self.events.append(f"mover:{subsystem}")
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if subsystem in self.fail:
                raise StepFailure(
                    f"Restore of {subsystem} failed with exit code 1",
                    steps=[subsystem],
                    output=f"{subsystem}: rsync error",
                )
        finally:
            self.active -= 1


def make_snapshot(
    data_dir: Path,
    snapshot_id: str = SNAPSHOT_ID,
    strategy: str = "logical",
    artifacts: Iterable[str] = DEFAULT_ARTIFACTS,
    sentinels: Iterable[str] = (),
    current: bool = True,
    incomplete: bool = False,
) -> Path:
    """Lay out a snapshot directory the way the backup process writes it."""
    path = data_dir / snapshot_id
    path.mkdir(parents=True)
    (path / "strategy").write_text(strategy + "\n")

    for name in artifacts:
        if name in _FILE_CONTENT:
            (path / name).write_text(_FILE_CONTENT[name])
        else:
            (path / name).mkdir()

    for name in sentinels:
        (path / name).touch()

    if incomplete:
        (path / "incomplete").touch()

    if current:
        link = data_dir / "current"
        if link.is_symlink():
            link.unlink()
        link.symlink_to(snapshot_id)

    return path


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo CLI logging setup so handlers never outlive a test's streams."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def config(data_dir: Path):
    return create_config("ghe.example.com", data_dir=data_dir)


@pytest.fixture
def events() -> List[str]:
    return []


@pytest.fixture
def channel(events: List[str]) -> FakeChannel:
    return FakeChannel(events=events)


@pytest.fixture
def mover(events: List[str]) -> FakeMover:
    return FakeMover(events=events)
