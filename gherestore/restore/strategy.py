# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Strategy Resolver - Decides how the restore runs.

Pure functions over the snapshot contents, the probed target topology and
the invocation options. Nothing here touches the target.
"""

from dataclasses import dataclass
from enum import Enum

import structlog

from gherestore.config import DatabaseStrategy, RestoreConfig, RestoreOptions
from gherestore.snapshot import UUID, Snapshot
from gherestore.target.prober import ApplianceVersion, TargetTopology

logger = structlog.get_logger()

# Standalone appliances accept exported audit logs from this release on
AUDIT_LOG_MINIMUM_VERSION = ApplianceVersion(2, 12, 9)


class NomadCleanup(str, Enum):
    """Pre-cleanup run before the configuration apply."""

    CURRENT = "current"
    LEGACY = "legacy"


def external_database_involved(snapshot: Snapshot, topology: TargetTopology) -> bool:
    return topology.external_database or snapshot.external_database


def appliance_strategy(snapshot: Snapshot, topology: TargetTopology) -> DatabaseStrategy:
    """Database restore strategy the appliance will use."""
    if external_database_involved(snapshot, topology):
        return DatabaseStrategy.EXTERNAL
    if topology.binary_backup:
        return DatabaseStrategy.BINARY
    return DatabaseStrategy.LOGICAL


def snapshot_strategy(snapshot: Snapshot) -> DatabaseStrategy:
    """
    Database strategy the snapshot was taken with.

    Only used to report mismatches; an older logical snapshot may be
    restored onto a binary-capable appliance.
    """
    if snapshot.external_database:
        return DatabaseStrategy.EXTERNAL
    if snapshot.binary_backup:
        return DatabaseStrategy.BINARY
    return DatabaseStrategy.LOGICAL


def should_restore_settings(options: RestoreOptions, topology: TargetTopology) -> bool:
    """Settings are always restored onto an appliance that was never configured."""
    return options.restore_settings or not topology.configured


def should_restore_database(
    snapshot: Snapshot,
    topology: TargetTopology,
    options: RestoreOptions,
) -> bool:
    """--skip-mysql only applies when an external database is involved."""
    return not (options.skip_mysql and external_database_involved(snapshot, topology))


def actions_applicable(topology: TargetTopology) -> bool:
    return topology.actions_enabled


def minio_applicable(topology: TargetTopology) -> bool:
    return topology.minio_enabled


def elasticsearch_applicable(snapshot: Snapshot, topology: TargetTopology) -> bool:
    return not topology.cluster and snapshot.has_elasticsearch


def audit_log_applicable(config: RestoreConfig, topology: TargetTopology) -> bool:
    if config.skip_audit_logs:
        return False
    return topology.cluster or topology.version >= AUDIT_LOG_MINIMUM_VERSION


def uuid_applicable(snapshot: Snapshot, topology: TargetTopology) -> bool:
    return not topology.cluster and snapshot.has(UUID)


def config_apply_applicable(topology: TargetTopology) -> bool:
    """Unconfigured standalone appliances are configured by the operator afterwards."""
    return topology.cluster or topology.configured


def stale_replica_cleanup_applicable(snapshot: Snapshot, topology: TargetTopology) -> bool:
    return not topology.cluster and topology.configured and snapshot.has(UUID)


def nomad_cleanup_mode(version: ApplianceVersion) -> NomadCleanup | None:
    if version.major == 3:
        return NomadCleanup.CURRENT
    if version.major == 2 and version.minor == 22:
        return NomadCleanup.LEGACY
    return None


@dataclass(frozen=True)
class StrategyDecision:
    """Everything the plan builder needs to know about this restore."""

    appliance_strategy: DatabaseStrategy
    snapshot_strategy: DatabaseStrategy
    restore_settings: bool
    restore_database: bool
    restore_uuid: bool
    actions: bool
    minio: bool
    elasticsearch: bool
    audit_log: bool
    config_apply: bool
    nomad_cleanup: NomadCleanup | None
    stale_replica_cleanup: bool


def resolve_strategy(
    config: RestoreConfig,
    options: RestoreOptions,
    snapshot: Snapshot,
    topology: TargetTopology,
) -> StrategyDecision:
    """
    Compute the restore strategy for one invocation.

    Args:
        config: Restore configuration
        options: Invocation flags
        snapshot: Snapshot being restored
        topology: Probed target facts

    Returns:
        StrategyDecision consumed by the plan builder
    """
    config_apply = config_apply_applicable(topology)
    decision = StrategyDecision(
        appliance_strategy=appliance_strategy(snapshot, topology),
        snapshot_strategy=snapshot_strategy(snapshot),
        restore_settings=should_restore_settings(options, topology),
        restore_database=should_restore_database(snapshot, topology, options),
        restore_uuid=uuid_applicable(snapshot, topology),
        actions=actions_applicable(topology),
        minio=minio_applicable(topology),
        elasticsearch=elasticsearch_applicable(snapshot, topology),
        audit_log=audit_log_applicable(config, topology),
        config_apply=config_apply,
        nomad_cleanup=nomad_cleanup_mode(topology.version) if config_apply else None,
        stale_replica_cleanup=stale_replica_cleanup_applicable(snapshot, topology),
    )

    if decision.appliance_strategy != decision.snapshot_strategy:
        logger.info(
            "database_strategy_mismatch",
            appliance=decision.appliance_strategy.value,
            snapshot=decision.snapshot_strategy.value,
        )

    if options.skip_mysql and decision.restore_database:
        logger.warning(
            "skip_mysql_ignored",
            reason="--skip-mysql only applies when an external database is in use",
        )

    if decision.restore_settings and not options.restore_settings:
        logger.info("restore_settings_enabled", reason="target is not configured")

    return decision
