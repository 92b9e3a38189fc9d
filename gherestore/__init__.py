# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
GHE Restore - Restore orchestration for GitHub Enterprise Server appliances.

Decides, from a backup snapshot and the live target's state, which
subsystem restores run and in what order, gates unsafe combinations and
publishes restore progress on the target. Package name: gherestore.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from gherestore.builder import create_config
from gherestore.config import RestoreConfig, RestoreOptions, RestoreStatus

# Core functions
from gherestore.core import RestoreResult, run_restore

# Environment-based configuration
from gherestore.env import create_config_from_env

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_config",
    "create_config_from_env",
    "RestoreConfig",
    "RestoreOptions",
    "RestoreStatus",
    # Core orchestration
    "run_restore",
    "RestoreResult",
]
