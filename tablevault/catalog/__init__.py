# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Catalog - Persistent records of backup and restore jobs.

The user-facing operations live in ``tablevault.catalog.operations``.
"""

from tablevault.catalog.sqlite_catalog import (
    init_catalog_db,
    get_backup_record,
    list_backup_records,
    get_restore_record,
    list_restore_records,
    get_catalog_stats,
    BackupRecord,
    RestoreRecord,
)

__all__ = [
    # Catalog functions
    "init_catalog_db",
    "get_backup_record",
    "list_backup_records",
    "get_restore_record",
    "list_restore_records",
    "get_catalog_stats",
    # Types
    "BackupRecord",
    "RestoreRecord",
]
