# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - Read-only restore status over HTTP.
"""

from gherestore.integrations.fastapi import (
    register_restore_routes,
    setup_restore_plugin,
    verify_api_key,
)

__all__ = [
    "setup_restore_plugin",
    "register_restore_routes",
    "verify_api_key",
]
