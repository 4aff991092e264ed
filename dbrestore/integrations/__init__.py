# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI restore endpoints.
"""

from dbrestore.integrations.fastapi import (
    get_restore_orchestrator,
    register_restore_routes,
    restore_lifespan,
    setup_restore_plugin,
    verify_api_key,
)

__all__ = [
    "get_restore_orchestrator",
    "register_restore_routes",
    "restore_lifespan",
    "setup_restore_plugin",
    "verify_api_key",
]
