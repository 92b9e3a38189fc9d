# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Compatibility Gate - Checks that must pass before the target is touched.

Checks short-circuit: the first failing check aborts with its own
remediation message. Nothing here mutates the target.
"""

from typing import Callable

import structlog

from gherestore.config import BackupStrategy, RestoreOptions
from gherestore.errors import (
    explain_actions_disabled,
    explain_cluster_snapshot_to_standalone,
    explain_connection_restore_warning,
    explain_external_snapshot_to_internal_target,
    explain_internal_snapshot_to_external_target,
    explain_maintenance_mode_required,
    explain_overwrite_warning,
    explain_replication_enabled,
)
from gherestore.exceptions import ConfirmationDeclined, PreconditionFailure
from gherestore.restore.strategy import should_restore_settings
from gherestore.snapshot import Snapshot
from gherestore.target.prober import TargetTopology

logger = structlog.get_logger()

# Receives the warning text, returns True to proceed
Confirm = Callable[[str], bool]


def check_cluster_snapshot(snapshot: Snapshot, topology: TargetTopology) -> None:
    if snapshot.strategy == BackupStrategy.CLUSTER and not topology.cluster:
        raise PreconditionFailure(
            explain_cluster_snapshot_to_standalone(snapshot.id),
            details={"snapshot": snapshot.id, "host": topology.hostname},
        )


def check_replication(topology: TargetTopology) -> None:
    if topology.replication:
        raise PreconditionFailure(
            explain_replication_enabled(topology.hostname),
            details={"host": topology.hostname},
        )


def check_database_compatibility(
    snapshot: Snapshot,
    topology: TargetTopology,
    options: RestoreOptions,
) -> None:
    """
    Refuse to change database backends on a configured appliance.

    Unconfigured targets take whatever the snapshot carries. With --force
    the mismatch is only logged.
    """
    if topology.external_database == snapshot.external_database:
        return

    if topology.external_database:
        message = explain_internal_snapshot_to_external_target(topology.hostname)
    else:
        message = explain_external_snapshot_to_internal_target(topology.hostname)

    if not topology.configured:
        logger.info(
            "database_backend_change",
            host=topology.hostname,
            target_external=topology.external_database,
            snapshot_external=snapshot.external_database,
        )
        return

    if options.force:
        logger.warning("database_backend_mismatch_forced", host=topology.hostname)
        return

    raise PreconditionFailure(
        message,
        details={
            "target_external_database": topology.external_database,
            "snapshot_external_database": snapshot.external_database,
        },
    )


def check_maintenance_mode(topology: TargetTopology) -> None:
    """A configured appliance must not be serving users during the restore."""
    if topology.configured and not topology.maintenance_mode:
        raise PreconditionFailure(
            explain_maintenance_mode_required(topology.hostname),
            details={"host": topology.hostname},
        )


def _ask(confirm: Confirm | None, message: str, reason: str) -> None:
    if confirm is None or not confirm(message):
        logger.info("confirmation_declined", reason=reason)
        raise ConfirmationDeclined("Restore aborted by operator", details={"reason": reason})


def check_actions_feature(snapshot: Snapshot, topology: TargetTopology) -> None:
    """Actions data cannot be restored onto an appliance without Actions."""
    if snapshot.has_actions and not topology.actions_enabled:
        raise PreconditionFailure(
            explain_actions_disabled(topology.hostname, snapshot.id),
            details={"snapshot": snapshot.id, "host": topology.hostname},
        )


def run_compatibility_gate(
    snapshot: Snapshot,
    topology: TargetTopology,
    options: RestoreOptions,
    confirm: Confirm | None = None,
) -> None:
    """
    Run every pre-mutation check in order.

    Args:
        snapshot: Snapshot being restored
        topology: Probed target facts
        options: Invocation flags (force skips both confirmations)
        confirm: Interactive prompt; None declines every confirmation

    Raises:
        PreconditionFailure: If the snapshot and target cannot be combined
        ConfirmationDeclined: If the operator does not confirm
    """
    check_cluster_snapshot(snapshot, topology)
    check_replication(topology)
    check_database_compatibility(snapshot, topology, options)
    check_maintenance_mode(topology)

    if options.force:
        logger.debug("confirmation_skipped", reason="force")
        return

    if topology.configured:
        _ask(
            confirm,
            explain_overwrite_warning(topology.hostname, str(topology.version), snapshot.id),
            "overwrite",
        )

    if snapshot.external_database and should_restore_settings(options, topology):
        _ask(confirm, explain_connection_restore_warning(snapshot.id), "connection_settings")

    logger.info("compatibility_gate_passed", host=topology.hostname, snapshot=snapshot.id)
