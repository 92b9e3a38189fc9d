# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Target Access - Control channel, remote operations, probing and status.
"""

from gherestore.target.prober import (
    ApplianceVersion,
    Feature,
    TargetProber,
    TargetTopology,
    parse_version,
)
from gherestore.target.remote import (
    ControlChannel,
    Op,
    RemoteOperation,
    RemoteResult,
    run_checked,
)
from gherestore.target.ssh import SSHControlChannel
from gherestore.target.status import StatusChannel

__all__ = [
    # Remote operations
    "ControlChannel",
    "Op",
    "RemoteOperation",
    "RemoteResult",
    "run_checked",
    "SSHControlChannel",
    # Probing
    "ApplianceVersion",
    "Feature",
    "TargetProber",
    "TargetTopology",
    "parse_version",
    # Status
    "StatusChannel",
]
