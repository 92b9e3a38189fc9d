# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for the restore orchestrator.

These helpers centralize wording for configuration errors and precondition
failures so that all modules present consistent, actionable messages.
"""


def explain_missing_hostname() -> str:
    """
    Explain that no restore target was given.
    """

    return (
        "Restore target is not configured. "
        "Pass a <host> argument or set GHE_RESTORE_HOST (or GHE_HOSTNAME)."
    )


def explain_invalid_integer_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a positive integer."


def explain_invalid_flag_env(name: str, value: str | None) -> str:
    """
    Explain that a yes/no environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. Expected 'yes' or 'no'."


def explain_unsupported_ssh_port(hostname: str) -> str:
    return (
        f"SSH connection to {hostname} on port 22 is not supported. "
        "The administrative SSH service listens on port 122; "
        f"use {hostname}:122 or omit the port."
    )


def explain_unparseable_version(raw: str) -> str:
    return (
        f"Unable to parse the appliance version from {raw!r}. "
        "Expected MAJOR.MINOR.PATCH, for example 3.9.2."
    )


def explain_cluster_snapshot_to_standalone(snapshot_id: str) -> str:
    return (
        f"Snapshot {snapshot_id} was taken from a cluster and cannot be "
        "restored to a standalone appliance. Aborting."
    )


def explain_replication_enabled(hostname: str) -> str:
    return (
        f"{hostname} is part of a replication pair. Restoring to an appliance "
        "with replication enabled is not supported. Tear down replication "
        "before restoring."
    )


def explain_internal_snapshot_to_external_target(hostname: str) -> str:
    return (
        f"{hostname} is configured with an external MySQL database but the "
        "snapshot contains an internal database backup. Changing database "
        "backends on a configured appliance is destructive. Reconfigure the "
        "appliance to use the internal database, restore to an unconfigured "
        "appliance, or re-run with --force to acknowledge."
    )


def explain_external_snapshot_to_internal_target(hostname: str) -> str:
    return (
        f"{hostname} uses the internal MySQL database but the snapshot was "
        "taken from an appliance using an external database. Changing "
        "database backends on a configured appliance is destructive. "
        "Reconfigure the appliance for the external database, restore to an "
        "unconfigured appliance, or re-run with --force to acknowledge."
    )


def explain_maintenance_mode_required(hostname: str) -> str:
    return f"{hostname} must be put in maintenance mode before restoring. Aborting."


def explain_actions_disabled(hostname: str, snapshot_id: str) -> str:
    return (
        f"Snapshot {snapshot_id} contains GitHub Actions data but Actions is "
        f"not enabled on {hostname}. Enable Actions on the target and re-run "
        "the restore."
    )


def explain_snapshot_missing(snapshot_id: str) -> str:
    return f"Snapshot {snapshot_id!r} doesn't exist."


def explain_snapshot_incomplete(snapshot_id: str) -> str:
    return (
        f"Snapshot {snapshot_id!r} was not successfully completed and "
        "cannot be restored."
    )


def explain_backup_in_progress(data_dir: str) -> str:
    return (
        f"A backup may still be running (found {data_dir}/in-progress). "
        "Wait for it to finish or remove the file if it is stale."
    )


def explain_restore_in_progress(lock_path: str, holder: str) -> str:
    return (
        f"Another restore is already running from this host ({holder}). "
        f"Remove {lock_path} if it is stale."
    )


def explain_overwrite_warning(hostname: str, version: str, snapshot_id: str) -> str:
    return (
        f"WARNING: All data on appliance {hostname} ({version}) will be "
        f"overwritten with data from snapshot {snapshot_id}. "
        "Please verify that this is the correct restore host before continuing."
    )


def explain_connection_restore_warning(snapshot_id: str) -> str:
    return (
        f"WARNING: Snapshot {snapshot_id} was taken from an appliance using an "
        "external database. Restoring settings also restores the external "
        "MySQL connection configuration, which may be dangerous if the source "
        "appliance is still online. Please confirm this before continuing."
    )
