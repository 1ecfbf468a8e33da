# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault SQLite Catalog - Backup and restore job records.

This module persists BackupRecord and RestoreRecord metadata. It never
touches table contents or envelope blobs.

Status transitions out of ``pending`` go through ``claim_backup`` and
``claim_restore``. Each is a single conditional UPDATE, so at most one
processor ever advances a given record past ``pending``.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Tuple, TypedDict

import aiosqlite
import structlog

from tablevault.exceptions import CatalogError

logger = structlog.get_logger()


class BackupRecord(TypedDict):
    """Record of a backup job."""

    id: str  # ULID
    name: str
    description: str | None
    type: str  # full, incremental, selective
    status: str  # pending, in_progress, completed, failed, expired
    tables_included: List[str]
    tables_captured: List[str]
    skipped_tables: Dict[str, str]  # table -> error
    truncated_tables: List[str]
    partial: bool
    storage_path: str | None
    size_bytes: int | None
    created_by: str
    created_at: str  # ISO 8601
    completed_at: str | None
    expires_at: str
    error_message: str | None
    metadata: Dict[str, Any]


class RestoreRecord(TypedDict):
    """Record of a restore job."""

    id: str  # ULID
    backup_id: str
    status: str  # pending, in_progress, completed, failed, rolled_back
    tables_restored: List[str]
    records_restored: int
    skipped_tables: List[str]
    failed_batches: List[Dict[str, Any]]
    partial: bool
    dry_run: bool
    plan: Dict[str, Any] | None
    initiated_by: str
    created_at: str
    started_at: str | None
    completed_at: str | None
    error_message: str | None


_BACKUP_COLUMNS = """
    id, name, description, type, status, tables_included, tables_captured,
    skipped_tables, truncated_tables, partial, storage_path, size_bytes,
    created_by, created_at, completed_at, expires_at, error_message, metadata
"""

_RESTORE_COLUMNS = """
    id, backup_id, status, tables_restored, records_restored, skipped_tables,
    failed_batches, partial, dry_run, plan, initiated_by, created_at,
    started_at, completed_at, error_message
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _loads(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    return json.loads(value)


def _row_to_backup(row: tuple) -> BackupRecord:
    return BackupRecord(
        id=row[0],
        name=row[1],
        description=row[2],
        type=row[3],
        status=row[4],
        tables_included=_loads(row[5], []),
        tables_captured=_loads(row[6], []),
        skipped_tables=_loads(row[7], {}),
        truncated_tables=_loads(row[8], []),
        partial=bool(row[9]),
        storage_path=row[10],
        size_bytes=row[11],
        created_by=row[12],
        created_at=row[13],
        completed_at=row[14],
        expires_at=row[15],
        error_message=row[16],
        metadata=_loads(row[17], {}),
    )


def _row_to_restore(row: tuple) -> RestoreRecord:
    return RestoreRecord(
        id=row[0],
        backup_id=row[1],
        status=row[2],
        tables_restored=_loads(row[3], []),
        records_restored=row[4],
        skipped_tables=_loads(row[5], []),
        failed_batches=_loads(row[6], []),
        partial=bool(row[7]),
        dry_run=bool(row[8]),
        plan=_loads(row[9], None),
        initiated_by=row[10],
        created_at=row[11],
        started_at=row[12],
        completed_at=row[13],
        error_message=row[14],
    )


async def init_catalog_db(db_path: Path) -> None:
    """
    Initialize the catalog database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS backups (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    tables_included TEXT NOT NULL,
                    tables_captured TEXT,
                    skipped_tables TEXT,
                    truncated_tables TEXT,
                    partial INTEGER NOT NULL DEFAULT 0,
                    storage_path TEXT,
                    size_bytes INTEGER,
                    created_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    expires_at TEXT NOT NULL,
                    error_message TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}'
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS restores (
                    id TEXT PRIMARY KEY,
                    backup_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    tables_restored TEXT NOT NULL,
                    records_restored INTEGER NOT NULL DEFAULT 0,
                    skipped_tables TEXT,
                    failed_batches TEXT,
                    partial INTEGER NOT NULL DEFAULT 0,
                    dry_run INTEGER NOT NULL DEFAULT 0,
                    plan TEXT,
                    initiated_by TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    error_message TEXT
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backups_created_at
                ON backups(created_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backups_status_expires
                ON backups(status, expires_at)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_restores_backup_id
                ON restores(backup_id)
            """)

            await db.commit()

        logger.info("catalog_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise CatalogError(
            f"Failed to initialize catalog database: {e}",
            details={"db_path": str(db_path)},
        )


# ============================================================================
# Backups
# ============================================================================

async def insert_backup(db: aiosqlite.Connection, record: BackupRecord) -> None:
    """Persist a new backup record."""
    await db.execute(
        f"INSERT INTO backups ({_BACKUP_COLUMNS}) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record["id"],
            record["name"],
            record["description"],
            record["type"],
            record["status"],
            json.dumps(record["tables_included"]),
            json.dumps(record["tables_captured"]),
            json.dumps(record["skipped_tables"]),
            json.dumps(record["truncated_tables"]),
            int(record["partial"]),
            record["storage_path"],
            record["size_bytes"],
            record["created_by"],
            record["created_at"],
            record["completed_at"],
            record["expires_at"],
            record["error_message"],
            json.dumps(record["metadata"]),
        ),
    )
    await db.commit()

    logger.info("backup_recorded", backup_id=record["id"], type=record["type"])


async def get_backup_record(
    db: aiosqlite.Connection,
    backup_id: str,
) -> BackupRecord | None:
    """
    Get a backup record.

    Returns:
        Backup record or None if not found
    """
    async with db.execute(
        f"SELECT {_BACKUP_COLUMNS} FROM backups WHERE id = ?",
        (backup_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_backup(row) if row else None


async def list_backup_records(
    db: aiosqlite.Connection,
    status: str | None = None,
    backup_type: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[BackupRecord], int]:
    """
    List backup records with pagination, newest first.

    Args:
        db: SQLite database connection
        status: Optional exact-match status filter
        backup_type: Optional exact-match type filter
        limit: Maximum number of records to return
        offset: Number of records to skip

    Returns:
        Tuple of (records, total matching count)
    """
    where: List[str] = []
    params: List[Any] = []

    if status:
        where.append("status = ?")
        params.append(status)

    if backup_type:
        where.append("type = ?")
        params.append(backup_type)

    where_clause = f" WHERE {' AND '.join(where)}" if where else ""

    async with db.execute(f"SELECT COUNT(*) FROM backups{where_clause}", params) as cursor:
        row = await cursor.fetchone()
        total = row[0] if row else 0

    records: List[BackupRecord] = []
    async with db.execute(
        f"SELECT {_BACKUP_COLUMNS} FROM backups{where_clause} "
        "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ) as cursor:
        async for row in cursor:
            records.append(_row_to_backup(row))

    return records, total


async def claim_backup(db: aiosqlite.Connection, backup_id: str) -> bool:
    """
    Move a backup from ``pending`` to ``in_progress``.

    Returns:
        True if this caller won the claim
    """
    cursor = await db.execute(
        "UPDATE backups SET status = 'in_progress' WHERE id = ? AND status = 'pending'",
        (backup_id,),
    )
    await db.commit()
    return cursor.rowcount == 1


async def complete_backup(
    db: aiosqlite.Connection,
    backup_id: str,
    storage_path: str,
    size_bytes: int,
    tables_captured: List[str],
    skipped_tables: Dict[str, str],
    truncated_tables: List[str],
    metadata: Dict[str, Any],
) -> bool:
    """
    Mark an in-progress backup as completed.

    Returns:
        True if the record was updated
    """
    cursor = await db.execute(
        """
        UPDATE backups
        SET status = 'completed', storage_path = ?, size_bytes = ?,
            tables_captured = ?, skipped_tables = ?, truncated_tables = ?,
            partial = ?, metadata = ?, completed_at = ?
        WHERE id = ? AND status = 'in_progress'
        """,
        (
            storage_path,
            size_bytes,
            json.dumps(tables_captured),
            json.dumps(skipped_tables),
            json.dumps(truncated_tables),
            int(bool(skipped_tables or truncated_tables)),
            json.dumps(metadata),
            _now(),
            backup_id,
        ),
    )
    await db.commit()
    return cursor.rowcount == 1


async def fail_backup(
    db: aiosqlite.Connection,
    backup_id: str,
    error_message: str,
    skipped_tables: Dict[str, str] | None = None,
) -> bool:
    """Mark an in-progress backup as failed."""
    cursor = await db.execute(
        """
        UPDATE backups
        SET status = 'failed', error_message = ?, skipped_tables = ?
        WHERE id = ? AND status = 'in_progress'
        """,
        (error_message, json.dumps(skipped_tables or {}), backup_id),
    )
    await db.commit()
    return cursor.rowcount == 1


async def expire_backup(db: aiosqlite.Connection, backup_id: str) -> bool:
    """
    Mark a completed backup as expired after its blob has been removed.

    Clears ``storage_path`` and ``size_bytes``; they are only set on
    completed records.
    """
    cursor = await db.execute(
        """
        UPDATE backups
        SET status = 'expired', storage_path = NULL, size_bytes = NULL
        WHERE id = ? AND status = 'completed'
        """,
        (backup_id,),
    )
    await db.commit()
    return cursor.rowcount == 1


async def delete_backup_record(db: aiosqlite.Connection, backup_id: str) -> bool:
    """
    Delete a backup record.

    Returns:
        True if a record was deleted
    """
    cursor = await db.execute("DELETE FROM backups WHERE id = ?", (backup_id,))
    await db.commit()
    return cursor.rowcount > 0


async def fail_interrupted_jobs(
    db: aiosqlite.Connection,
    error_message: str = "Interrupted before completion",
) -> Tuple[int, int]:
    """
    Fail every backup and restore left ``pending`` or ``in_progress``.

    Only safe when no processor is running against this catalog, i.e.
    at startup. Jobs are in-process tasks, so records in these states
    have lost their processor.

    Returns:
        (backups failed, restores failed)
    """
    backups = await db.execute(
        """
        UPDATE backups SET status = 'failed', error_message = ?
        WHERE status IN ('pending', 'in_progress')
        """,
        (error_message,),
    )
    restores = await db.execute(
        """
        UPDATE restores SET status = 'failed', error_message = ?
        WHERE status IN ('pending', 'in_progress')
        """,
        (error_message,),
    )
    await db.commit()
    return backups.rowcount, restores.rowcount


async def list_expired_backups(
    db: aiosqlite.Connection,
    now: str | None = None,
) -> List[BackupRecord]:
    """
    Get completed backups whose retention window has passed.

    Args:
        db: SQLite database connection
        now: ISO timestamp to compare against (default: current time)
    """
    cutoff = now or _now()
    records: List[BackupRecord] = []

    async with db.execute(
        f"""
        SELECT {_BACKUP_COLUMNS} FROM backups
        WHERE status = 'completed' AND expires_at < ?
        ORDER BY expires_at
        """,
        (cutoff,),
    ) as cursor:
        async for row in cursor:
            records.append(_row_to_backup(row))

    return records


async def get_catalog_stats(db: aiosqlite.Connection) -> dict:
    """
    Get catalog statistics.

    Returns:
        Dict with backup and restore counts and sizes
    """
    stats: dict = {}

    async with db.execute("SELECT status, COUNT(*) FROM backups GROUP BY status") as cursor:
        stats["backups_by_status"] = {row[0]: row[1] async for row in cursor}

    stats["total_backups"] = sum(stats["backups_by_status"].values())

    async with db.execute(
        """
        SELECT SUM(size_bytes), MAX(size_bytes), MIN(created_at), MAX(created_at)
        FROM backups WHERE status = 'completed'
        """
    ) as cursor:
        row = await cursor.fetchone()
        stats["total_size_bytes"] = (row[0] if row else None) or 0
        stats["largest_backup_bytes"] = (row[1] if row else None) or 0
        stats["oldest_backup"] = row[2] if row else None
        stats["newest_backup"] = row[3] if row else None

    async with db.execute("SELECT COUNT(*) FROM backups WHERE partial = 1") as cursor:
        row = await cursor.fetchone()
        stats["partial_backups"] = row[0] if row else 0

    async with db.execute("SELECT status, COUNT(*) FROM restores GROUP BY status") as cursor:
        stats["restores_by_status"] = {row[0]: row[1] async for row in cursor}

    async with db.execute("SELECT SUM(records_restored) FROM restores") as cursor:
        row = await cursor.fetchone()
        stats["total_records_restored"] = (row[0] if row else None) or 0

    return stats


# ============================================================================
# Restores
# ============================================================================

async def insert_restore(db: aiosqlite.Connection, record: RestoreRecord) -> None:
    """Persist a new restore record."""
    await db.execute(
        f"INSERT INTO restores ({_RESTORE_COLUMNS}) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record["id"],
            record["backup_id"],
            record["status"],
            json.dumps(record["tables_restored"]),
            record["records_restored"],
            json.dumps(record["skipped_tables"]),
            json.dumps(record["failed_batches"]),
            int(record["partial"]),
            int(record["dry_run"]),
            json.dumps(record["plan"]) if record["plan"] is not None else None,
            record["initiated_by"],
            record["created_at"],
            record["started_at"],
            record["completed_at"],
            record["error_message"],
        ),
    )
    await db.commit()

    logger.info(
        "restore_recorded",
        restore_id=record["id"],
        backup_id=record["backup_id"],
        dry_run=record["dry_run"],
    )


async def get_restore_record(
    db: aiosqlite.Connection,
    restore_id: str,
) -> RestoreRecord | None:
    """Get a restore record, or None if not found."""
    async with db.execute(
        f"SELECT {_RESTORE_COLUMNS} FROM restores WHERE id = ?",
        (restore_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_restore(row) if row else None


async def list_restore_records(
    db: aiosqlite.Connection,
    backup_id: str | None = None,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[RestoreRecord], int]:
    """List restore records with pagination, newest first."""
    where: List[str] = []
    params: List[Any] = []

    if backup_id:
        where.append("backup_id = ?")
        params.append(backup_id)

    if status:
        where.append("status = ?")
        params.append(status)

    where_clause = f" WHERE {' AND '.join(where)}" if where else ""

    async with db.execute(f"SELECT COUNT(*) FROM restores{where_clause}", params) as cursor:
        row = await cursor.fetchone()
        total = row[0] if row else 0

    records: List[RestoreRecord] = []
    async with db.execute(
        f"SELECT {_RESTORE_COLUMNS} FROM restores{where_clause} "
        "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ) as cursor:
        async for row in cursor:
            records.append(_row_to_restore(row))

    return records, total


async def claim_restore(db: aiosqlite.Connection, restore_id: str) -> bool:
    """
    Move a restore from ``pending`` to ``in_progress`` and stamp ``started_at``.

    Returns:
        True if this caller won the claim
    """
    cursor = await db.execute(
        """
        UPDATE restores SET status = 'in_progress', started_at = ?
        WHERE id = ? AND status = 'pending'
        """,
        (_now(), restore_id),
    )
    await db.commit()
    return cursor.rowcount == 1


async def finish_restore(
    db: aiosqlite.Connection,
    restore_id: str,
    status: str,
    records_restored: int = 0,
    skipped_tables: List[str] | None = None,
    failed_batches: List[Dict[str, Any]] | None = None,
    plan: Dict[str, Any] | None = None,
    error_message: str | None = None,
) -> bool:
    """
    Move an in-progress restore to a terminal status.

    Args:
        db: SQLite database connection
        restore_id: Restore record id
        status: completed, failed, or rolled_back
        records_restored: Rows successfully inserted
        skipped_tables: Requested tables absent from the envelope
        failed_batches: Batch insert failures
        plan: Dry-run diff
        error_message: Failure message

    Returns:
        True if the record was updated
    """
    batches = failed_batches or []
    completed_at = _now() if status == "completed" else None

    cursor = await db.execute(
        """
        UPDATE restores
        SET status = ?, records_restored = ?, skipped_tables = ?,
            failed_batches = ?, partial = ?, plan = ?, error_message = ?,
            completed_at = ?
        WHERE id = ? AND status = 'in_progress'
        """,
        (
            status,
            records_restored,
            json.dumps(skipped_tables or []),
            json.dumps(batches),
            int(bool(batches)),
            json.dumps(plan) if plan is not None else None,
            error_message,
            completed_at,
            restore_id,
        ),
    )
    await db.commit()
    return cursor.rowcount == 1
