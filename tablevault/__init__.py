# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault - Backup and restore for table-oriented content stores.

Snapshots a configurable set of tables into a versioned JSON envelope in
object storage, restores envelopes back into live tables with rollback on
failure, and expires old backups on a retention schedule.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from tablevault.builder import create_config

# Runtime state
from tablevault.core import (
    initialize_vault_state,
    get_metrics,
    shutdown_vault_state,
)

# Catalog operations
from tablevault.catalog.operations import (
    create_backup,
    list_backups,
    get_backup,
    delete_backup,
    get_restore,
    list_restores,
)

# Restore and retention
from tablevault.backup.restore import restore_from_backup
from tablevault.backup.retention import (
    cleanup_expired_backups,
    run_scheduled_backup,
    get_backup_stats,
)

# Environment-based configuration and profiles (additional helpers)
from tablevault.env import (
    create_config_from_env,
    safe_defaults,
    compliance_friendly,
)

__all__ = [
    # Version
    "__version__",
    # Configuration creation
    "create_config",
    "create_config_from_env",
    "safe_defaults",
    "compliance_friendly",
    # Runtime state
    "initialize_vault_state",
    "get_metrics",
    "shutdown_vault_state",
    # Catalog
    "create_backup",
    "list_backups",
    "get_backup",
    "delete_backup",
    "get_restore",
    "list_restores",
    # Restore and retention
    "restore_from_backup",
    "cleanup_expired_backups",
    "run_scheduled_backup",
    "get_backup_stats",
]
