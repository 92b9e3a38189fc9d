# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration.

Reads the well-known backup-utils environment variables once at startup and
turns them into an immutable RestoreConfig via create_config().
"""

from __future__ import annotations

import os
import shlex
from typing import List, Mapping

from gherestore.builder import create_config
from gherestore.config import RestoreConfig
from gherestore.errors import (
    explain_invalid_flag_env,
    explain_invalid_integer_env,
    explain_missing_hostname,
)
from gherestore.exceptions import ConfigurationError


def _parse_flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in ("yes", "true", "1"):
        return True
    if lowered in ("no", "false", "0"):
        return False
    raise ConfigurationError(explain_invalid_flag_env(name, value))


def _parse_positive_int(env: Mapping[str, str], name: str) -> int | None:
    value = env.get(name)
    if not value:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_integer_env(name, value)) from exc
    if number < 1:
        raise ConfigurationError(explain_invalid_integer_env(name, value))
    return number


def _parse_ssh_options(value: str | None) -> List[str]:
    if not value:
        return []
    return shlex.split(value)


def create_config_from_env(
    host: str | None = None,
    *,
    verbose: bool = False,
    env: Mapping[str, str] | None = None,
) -> RestoreConfig:
    """
    Create a RestoreConfig from environment variables.

    Args:
        host: Target from the command line; wins over the environment
        verbose: Verbose flag from the command line
        env: Environment mapping (default: os.environ)

    Environment variables:
        - GHE_RESTORE_HOST / GHE_HOSTNAME: restore target (host[:port])
        - GHE_DATA_DIR: local snapshot directory (default: data)
        - GHE_NUM_SNAPSHOTS: retained snapshots (default: 10)
        - GHE_PARALLEL_ENABLED: 'yes' runs data restores concurrently
        - GHE_PARALLEL_MAX_JOBS: step-level worker limit
        - GHE_PARALLEL_RSYNC_MAX_JOBS: rsync worker limit
        - GHE_VERBOSE_LOG: verbose log file
        - GHE_RESTORE_SKIP_AUDIT_LOGS: 'yes' skips audit log restore
        - GHE_REMOTE_ROOT_DIR / GHE_REMOTE_DATA_USER_DIR: remote dir overrides
        - GHE_EXTRA_SSH_OPTS: extra ssh options
        - GHE_RESTORE_HELPER_PREFIX: data mover command prefix
        - GHE_RESTORE_JOURNAL: 'no' disables the local run journal
    """
    env = os.environ if env is None else env

    hostname = host or env.get("GHE_RESTORE_HOST") or env.get("GHE_HOSTNAME")
    if not hostname:
        raise ConfigurationError(explain_missing_hostname())

    num_snapshots = _parse_positive_int(env, "GHE_NUM_SNAPSHOTS") or 10
    verbose_log = env.get("GHE_VERBOSE_LOG") or None

    kwargs = {
        "num_snapshots": num_snapshots,
        "extra_ssh_options": _parse_ssh_options(env.get("GHE_EXTRA_SSH_OPTS")),
        "journal_enabled": _parse_flag(env, "GHE_RESTORE_JOURNAL", default=True),
    }
    if env.get("GHE_REMOTE_ROOT_DIR") is not None:
        kwargs["remote_root_dir"] = env["GHE_REMOTE_ROOT_DIR"]
    if env.get("GHE_REMOTE_DATA_USER_DIR"):
        kwargs["remote_data_user_dir"] = env["GHE_REMOTE_DATA_USER_DIR"]
    if env.get("GHE_RESTORE_HELPER_PREFIX"):
        kwargs["helper_prefix"] = env["GHE_RESTORE_HELPER_PREFIX"]

    return create_config(
        hostname,
        data_dir=env.get("GHE_DATA_DIR") or "data",
        parallel=_parse_flag(env, "GHE_PARALLEL_ENABLED"),
        max_jobs=_parse_positive_int(env, "GHE_PARALLEL_MAX_JOBS"),
        rsync_max_jobs=_parse_positive_int(env, "GHE_PARALLEL_RSYNC_MAX_JOBS"),
        audit_logs=not _parse_flag(env, "GHE_RESTORE_SKIP_AUDIT_LOGS"),
        verbose=verbose,
        verbose_log=verbose_log,
        **kwargs,
    )
