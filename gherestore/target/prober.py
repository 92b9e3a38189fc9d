# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Version/Topology Prober - Learns what the restore target is.

The prober queries the target once per invocation and returns an immutable
TargetTopology. Nothing downstream re-probes; the gate, the strategy
resolver and the plan all read this value.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

import structlog

from gherestore.config import RestoreConfig
from gherestore.errors import explain_unparseable_version, explain_unsupported_ssh_port
from gherestore.exceptions import ConfigurationError, ConnectivityFailure, PreconditionFailure
from gherestore.target.remote import ControlChannel, Op, RemoteOperation

logger = structlog.get_logger()

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)([A-Za-z0-9.+-]*)$")
_RELEASE_LINE_RE = re.compile(r"""^RELEASE_VERSION=["']?([^"'\s]+)["']?\s*$""", re.MULTILINE)


class Feature(str, Enum):
    """Optional target features, keyed by their appliance config setting."""

    ACTIONS = "app.actions.enabled"
    MINIO = "app.minio.enabled"
    EXTERNAL_DATABASE = "mysql.external.enabled"
    BINARY_BACKUP = "mysql.backup.binary"


@dataclass(frozen=True, order=True)
class ApplianceVersion:
    """Appliance release as a comparable triple."""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def parse_version(raw: str) -> ApplianceVersion:
    """
    Parse an appliance version.

    Accepts ``3.9.2``, ``v3.9.2``, ``3.9.2rc1`` (the patch suffix is dropped)
    or the body of the appliance release file containing
    ``RELEASE_VERSION="3.9.2"``.

    Raises:
        ConfigurationError: If the value has an unexpected format
    """
    text = raw.strip()
    release = _RELEASE_LINE_RE.search(text)
    if release:
        text = release.group(1)

    match = _VERSION_RE.match(text)
    if not match:
        raise ConfigurationError(explain_unparseable_version(raw))

    major, minor, patch, _suffix = match.groups()
    return ApplianceVersion(int(major), int(minor), int(patch))


@dataclass(frozen=True)
class TargetTopology:
    """Facts about the restore target, gathered once."""

    hostname: str
    port: int
    version: ApplianceVersion
    cluster: bool
    configured: bool
    replication: bool
    maintenance_mode: bool
    features: FrozenSet[Feature]

    def has(self, feature: Feature) -> bool:
        return feature in self.features

    @property
    def actions_enabled(self) -> bool:
        return self.has(Feature.ACTIONS)

    @property
    def minio_enabled(self) -> bool:
        return self.has(Feature.MINIO)

    @property
    def external_database(self) -> bool:
        return self.has(Feature.EXTERNAL_DATABASE)

    @property
    def binary_backup(self) -> bool:
        return self.has(Feature.BINARY_BACKUP)


class TargetProber:
    """Queries the target and caches the resulting topology."""

    def __init__(self, channel: ControlChannel, config: RestoreConfig):
        self.channel = channel
        self.config = config
        self._topology: TargetTopology | None = None

    async def probe(self) -> TargetTopology:
        """
        Return the target topology, probing on first use.

        Raises:
            PreconditionFailure: If the SSH port is unsupported
            ConnectivityFailure: If the version cannot be read
            ConfigurationError: If the version has an unexpected format
        """
        if self._topology is None:
            self._topology = await self._probe()
        return self._topology

    async def _probe(self) -> TargetTopology:
        host, port = self.config.host, self.config.port
        if port == 22:
            raise PreconditionFailure(explain_unsupported_ssh_port(host))

        result = await self.channel.run(RemoteOperation(Op.READ_VERSION))
        if not result.ok or not result.stdout.strip():
            raise ConnectivityFailure(
                f"Unable to determine the appliance version of {host}",
                details={"output": result.output},
            )
        version = parse_version(result.stdout)

        cluster = await self._marker("cluster")
        configured = await self._marker("configured")
        replication = await self._marker("repl-state")

        features = set()
        for feature in Feature:
            if await self._enabled(feature):
                features.add(feature)

        maintenance = await self.channel.run(RemoteOperation(Op.MAINTENANCE_STATUS))

        topology = TargetTopology(
            hostname=host,
            port=port,
            version=version,
            cluster=cluster,
            configured=configured,
            replication=replication,
            maintenance_mode=maintenance.ok,
            features=frozenset(features),
        )

        logger.info(
            "target_probed",
            host=host,
            version=str(version),
            cluster=cluster,
            configured=configured,
            features=sorted(f.name.lower() for f in features),
        )
        return topology

    async def _marker(self, name: str) -> bool:
        result = await self.channel.run(RemoteOperation(Op.MARKER_EXISTS, {"marker": name}))
        return result.ok

    async def _enabled(self, feature: Feature) -> bool:
        result = await self.channel.run(
            RemoteOperation(Op.CONFIG_ENABLED, {"key": feature.value})
        )
        return result.ok
