# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation and passed explicitly
to every component; nothing in the package reads process-wide state after
startup.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Tuple
import re

DEFAULT_SSH_PORT = 122


class BackupStrategy(str, Enum):
    """Strategy tag written into a snapshot's ``strategy`` marker."""

    LOGICAL = "logical"
    BINARY = "binary"
    CLUSTER = "cluster"
    EXTERNAL = "external"


class DatabaseStrategy(str, Enum):
    """How the database is restored (appliance and snapshot side)."""

    EXTERNAL = "external"
    BINARY = "binary"
    LOGICAL = "logical"


class RestoreStatus(str, Enum):
    """Restore progress value published on the target."""

    RESTORING = "restoring"
    FAILED = "failed"
    COMPLETE = "complete"


_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")


def split_host(host: str) -> Tuple[str, int]:
    """
    Split ``host[:port]`` into hostname and port.

    The port defaults to the administrative SSH port (122).
    """
    if host.count(":") == 1:
        name, port = host.split(":")
        if not port.isdigit():
            raise ValueError(f"Invalid port in host {host!r}")
        return name, int(port)
    return host, DEFAULT_SSH_PORT


def _validate_remote_dir(path: str) -> bool:
    return path == "" or path.startswith("/")


@dataclass(frozen=True)
class RestoreConfig:
    """
    Immutable configuration for a restore invocation.

    Built once at startup (from the environment or the builder helpers) and
    handed to every component.
    """

    # Required: restore target, optionally with ":port"
    hostname: str

    # Local backup data directory holding the snapshots
    data_dir: Path = field(default_factory=lambda: Path("data"))

    # Number of retained snapshots (informational for restore)
    num_snapshots: int = 10

    # SSH user on the target
    ssh_user: str = "admin"

    # Extra options passed verbatim to ssh
    extra_ssh_options: List[str] = field(default_factory=list)

    # Run the independent data-mover steps concurrently
    parallel_enabled: bool = False

    # Step-level worker limit (None: CPU count)
    parallel_max_jobs: int | None = None

    # Worker limit passed to the repository rsync helpers
    parallel_rsync_max_jobs: int | None = None

    # Verbose output and optional log file destination
    verbose: bool = False
    verbose_log: Path | None = None

    # Skip the audit log restore even when applicable
    skip_audit_logs: bool = False

    # Remote directory overrides (test seams)
    remote_root_dir: str = ""
    remote_data_user_dir: str = "/data/user"

    # Command prefix of the per-subsystem restore helpers
    helper_prefix: str = "ghe-restore-"

    # Record runs in the local journal database
    journal_enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.hostname:
            errors.append("hostname is required")
        else:
            try:
                name, port = split_host(self.hostname)
                if not _HOSTNAME_RE.match(name):
                    errors.append(f"Invalid hostname: {self.hostname}")
                if not 0 < port < 65536:
                    errors.append(f"Invalid SSH port: {port}")
            except ValueError as e:
                errors.append(str(e))

        if self.num_snapshots < 1:
            errors.append(f"num_snapshots must be >= 1, got {self.num_snapshots}")

        for name in ("parallel_max_jobs", "parallel_rsync_max_jobs"):
            value = getattr(self, name)
            if value is not None and value < 1:
                errors.append(f"{name} must be >= 1, got {value}")

        for name in ("remote_root_dir", "remote_data_user_dir"):
            if not _validate_remote_dir(getattr(self, name)):
                errors.append(f"{name} must be an absolute path")

        if not self.helper_prefix:
            errors.append("helper_prefix must not be empty")

        if errors:
            from gherestore.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def host(self) -> str:
        return split_host(self.hostname)[0]

    @property
    def port(self) -> int:
        return split_host(self.hostname)[1]

    @property
    def max_jobs(self) -> int:
        """Effective step-level worker limit."""
        import os

        return self.parallel_max_jobs or os.cpu_count() or 1

    def with_updates(self, **kwargs) -> "RestoreConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return RestoreConfig(**current)


@dataclass(frozen=True)
class RestoreOptions:
    """Per-invocation flags from the command line."""

    # Snapshot id under the data directory (None: "current")
    snapshot_id: str | None = None

    # Also restore settings and license (-c)
    restore_settings: bool = False

    # Skip confirmation prompts (-f)
    force: bool = False

    # Skip the MySQL restore when an external database is involved
    skip_mysql: bool = False
