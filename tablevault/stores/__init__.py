# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Stores - Relational table stores and object stores used by the backup core.
"""

from tablevault.stores.base import ObjectStore, Row, TableStore
from tablevault.stores.local import LocalObjectStore
from tablevault.stores.postgres_tables import PostgresTableStore
from tablevault.stores.s3 import S3ObjectStore
from tablevault.stores.sqlite_tables import SQLiteTableStore

__all__ = [
    # Protocols
    "TableStore",
    "ObjectStore",
    "Row",
    # Table stores
    "SQLiteTableStore",
    "PostgresTableStore",
    # Object stores
    "LocalObjectStore",
    "S3ObjectStore",
]
