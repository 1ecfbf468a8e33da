# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI plugin and other framework integrations.
"""

from tablevault.integrations.fastapi import (
    setup_vault_plugin,
    register_vault_routes,
    vault_lifespan,
    verify_api_key,
)

__all__ = [
    "setup_vault_plugin",
    "register_vault_routes",
    "vault_lifespan",
    "verify_api_key",
]
