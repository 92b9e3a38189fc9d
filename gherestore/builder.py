# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Config Builder - Functional builder pattern for configuration.

This module provides pure functions for building RestoreConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict, List

from gherestore.config import RestoreConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "hostname": "",
        "data_dir": Path("data"),
        "num_snapshots": 10,
        "ssh_user": "admin",
        "extra_ssh_options": [],
        "parallel_enabled": False,
        "parallel_max_jobs": None,
        "parallel_rsync_max_jobs": None,
        "verbose": False,
        "verbose_log": None,
        "skip_audit_logs": False,
        "remote_root_dir": "",
        "remote_data_user_dir": "/data/user",
        "helper_prefix": "ghe-restore-",
        "journal_enabled": True,
    }


def with_hostname(config: ConfigDict, hostname: str) -> ConfigDict:
    """
    Set the restore target.

    Args:
        config: Current configuration dictionary
        hostname: Target host, optionally ``host:port``

    Returns:
        New configuration dictionary with hostname set
    """
    return {**config, "hostname": hostname}


def with_data_dir(config: ConfigDict, data_dir: Path | str) -> ConfigDict:
    """
    Set the local data directory holding snapshots.
    """
    return {**config, "data_dir": Path(data_dir)}


def with_ssh_options(config: ConfigDict, options: List[str]) -> ConfigDict:
    """
    Append extra ssh command line options.
    """
    return {**config, "extra_ssh_options": list(config["extra_ssh_options"]) + options}


def enable_parallel(
    config: ConfigDict,
    max_jobs: int | None = None,
    rsync_max_jobs: int | None = None,
) -> ConfigDict:
    """
    Run the independent data restores concurrently.

    Args:
        config: Current configuration dictionary
        max_jobs: Step-level worker limit (default: CPU count)
        rsync_max_jobs: Worker limit for repository rsync streams

    Returns:
        New configuration dictionary with parallel execution enabled
    """
    for name, value in (("max_jobs", max_jobs), ("rsync_max_jobs", rsync_max_jobs)):
        if value is not None and value < 1:
            raise ValueError(f"{name} must be >= 1, got {value}")
    return {
        **config,
        "parallel_enabled": True,
        "parallel_max_jobs": max_jobs,
        "parallel_rsync_max_jobs": rsync_max_jobs,
    }


def skip_audit_logs(config: ConfigDict) -> ConfigDict:
    """
    Never restore audit logs, even on appliances that support it.
    """
    return {**config, "skip_audit_logs": True}


def with_remote_dirs(
    config: ConfigDict,
    root_dir: str | None = None,
    data_user_dir: str | None = None,
) -> ConfigDict:
    """
    Override the remote root and data directories.

    Used by test harnesses that emulate an appliance filesystem.
    """
    updated = dict(config)
    if root_dir is not None:
        updated["remote_root_dir"] = root_dir
    if data_user_dir is not None:
        updated["remote_data_user_dir"] = data_user_dir
    return updated


def verbose_logging(config: ConfigDict, log_path: Path | str | None = None) -> ConfigDict:
    """
    Enable verbose output, optionally mirrored to a log file.
    """
    return {
        **config,
        "verbose": True,
        "verbose_log": Path(log_path) if log_path else None,
    }


def build_config(config_dict: ConfigDict) -> RestoreConfig:
    """
    Validate and build an immutable RestoreConfig from a configuration dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    if not config_dict.get("hostname"):
        from gherestore.errors import explain_missing_hostname
        from gherestore.exceptions import ConfigurationError

        raise ConfigurationError(explain_missing_hostname())

    return RestoreConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_hostname(c, "ghe.example.com"),
            lambda c: enable_parallel(c, max_jobs=4),
            skip_audit_logs,
        )(create_empty_config())
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def create_config(
    hostname: str,
    *,
    data_dir: str | Path | None = None,
    parallel: bool = False,
    max_jobs: int | None = None,
    rsync_max_jobs: int | None = None,
    audit_logs: bool = True,
    verbose: bool = False,
    verbose_log: str | Path | None = None,
    **kwargs: Any,
) -> RestoreConfig:
    """
    Create a RestoreConfig from simple parameters.

    Example:
        config = create_config(
            "ghe.example.com",
            data_dir="/var/backups/ghe",
            parallel=True,
            max_jobs=4,
        )
    """
    config_dict = with_hostname(create_empty_config(), hostname)

    if data_dir:
        config_dict = with_data_dir(config_dict, data_dir)

    if parallel:
        config_dict = enable_parallel(config_dict, max_jobs, rsync_max_jobs)
    elif rsync_max_jobs is not None:
        config_dict["parallel_rsync_max_jobs"] = rsync_max_jobs

    if not audit_logs:
        config_dict = skip_audit_logs(config_dict)

    if verbose:
        config_dict = verbose_logging(config_dict, verbose_log)
    elif verbose_log:
        config_dict["verbose_log"] = Path(verbose_log)

    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
