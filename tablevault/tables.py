# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Table Set Resolver - Static mapping from backup type to table list.

The mapping is configuration, not schema introspection. New tables must be
added here (or to the config overrides) by the operator.
"""

import re
from typing import Iterable, List, Sequence

CORE_TABLES: tuple[str, ...] = (
    "profiles",
    "posts",
    "comments",
    "reactions",
    "categories",
    "tags",
)

EXTENDED_TABLES: tuple[str, ...] = CORE_TABLES + (
    "follows",
    "bookmarks",
    "bookmark_folders",
    "reading_history",
    "notifications",
    "user_badges",
    "badges",
    "feature_flags",
    "site_settings",
)

ALL_TABLES: tuple[str, ...] = EXTENDED_TABLES + (
    "analytics_events",
    "analytics_aggregates",
    "content_reports",
    "moderation_log",
    "admin_logs",
    "webhooks",
    "webhook_deliveries",
    "email_queue",
    "scheduled_jobs",
)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def is_valid_table_name(name: str) -> bool:
    """Check that a table name is a plain SQL identifier."""
    return isinstance(name, str) and bool(_TABLE_NAME_RE.match(name))


def dedupe_tables(tables: Iterable[str]) -> List[str]:
    """Drop duplicate table names, keeping first-seen order."""
    seen: set[str] = set()
    ordered: List[str] = []
    for table in tables:
        if table not in seen:
            seen.add(table)
            ordered.append(table)
    return ordered


def resolve_tables(
    backup_type: str,
    tables: Sequence[str] | None = None,
    *,
    core_tables: Sequence[str] = CORE_TABLES,
    all_tables: Sequence[str] = ALL_TABLES,
) -> List[str]:
    """
    Resolve the list of tables a backup should include.

    An explicit table list always wins. Otherwise ``full`` backups take
    every table and any other type (selective, incremental) takes the
    core set.

    Args:
        backup_type: Backup type value (full, incremental, selective)
        tables: Optional explicit table list
        core_tables: Core table set
        all_tables: Full table set

    Returns:
        Ordered list of table names without duplicates
    """
    if tables:
        return dedupe_tables(tables)

    if backup_type == "full":
        return list(all_tables)

    return list(core_tables)
