# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Catalog - Create, list, inspect, and delete backup jobs.

Creating a backup persists a ``pending`` record and hands the export
off to a background job. The caller gets the record back right away
and observes progress by polling ``get_backup`` or through the job
handle in ``state["jobs"]``.
"""

from datetime import datetime, timedelta, UTC
from typing import List, Sequence, Tuple

import aiosqlite
import structlog
from ulid import ULID

from tablevault.backup.exporter import process_backup
from tablevault.catalog.sqlite_catalog import (
    BackupRecord,
    RestoreRecord,
    delete_backup_record,
    get_backup_record,
    get_restore_record,
    insert_backup,
    list_backup_records,
    list_restore_records,
)
from tablevault.config import BackupStatus, BackupType, VaultConfig
from tablevault.core import VaultState
from tablevault.exceptions import BackupInProgressError, CatalogError
from tablevault.retry import retrying
from tablevault.tables import is_valid_table_name, resolve_tables

logger = structlog.get_logger()


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or offset < 0:
        raise CatalogError(
            "limit must be >= 1 and offset >= 0",
            details={"limit": limit, "offset": offset},
        )


async def create_backup(
    config: VaultConfig,
    state: VaultState,
    created_by: str,
    *,
    name: str | None = None,
    description: str | None = None,
    backup_type: str | BackupType = BackupType.FULL,
    tables: Sequence[str] | None = None,
    retention_days: int | None = None,
) -> BackupRecord:
    """
    Create a backup record and start exporting it in the background.

    Args:
        config: TableVault configuration
        state: Runtime state
        created_by: Identity of the requester ("system" for scheduled runs)
        name: Display name (default: backup-YYYY-MM-DD)
        description: Free-form description
        backup_type: full, incremental, or selective
        tables: Explicit table list, overriding the type's table set
        retention_days: Days to keep the backup (default: config value)

    Returns:
        The persisted record, status ``pending``

    Raises:
        CatalogError: If the arguments are invalid or the catalog write fails
    """
    try:
        kind = BackupType(backup_type)
    except ValueError:
        raise CatalogError(
            f"Invalid backup type: {backup_type}",
            details={"allowed": [t.value for t in BackupType]},
        )

    if tables:
        invalid = [t for t in tables if not is_valid_table_name(t)]
        if invalid:
            raise CatalogError(f"Invalid table names: {invalid}", details={"tables": invalid})

    retention = config.default_retention_days if retention_days is None else retention_days
    if retention < 0:
        raise CatalogError(f"retention_days must be >= 0, got {retention}")

    created_at = datetime.now(UTC)
    record = BackupRecord(
        id=str(ULID()),
        name=name or f"backup-{created_at.strftime('%Y-%m-%d')}",
        description=description,
        type=kind.value,
        status=BackupStatus.PENDING.value,
        tables_included=resolve_tables(
            kind.value,
            tables,
            core_tables=config.core_tables,
            all_tables=config.all_tables,
        ),
        tables_captured=[],
        skipped_tables={},
        truncated_tables=[],
        partial=False,
        storage_path=None,
        size_bytes=None,
        created_by=created_by,
        created_at=created_at.isoformat(),
        completed_at=None,
        expires_at=(created_at + timedelta(days=retention)).isoformat(),
        error_message=None,
        metadata={"retention_days": retention},
    )

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        await insert_backup(db, record)

    state["jobs"].spawn("export", record["id"], process_backup(config, state, record["id"]))

    logger.info(
        "backup_created",
        backup_id=record["id"],
        type=record["type"],
        tables=len(record["tables_included"]),
        created_by=created_by,
    )
    return record


async def list_backups(
    db: aiosqlite.Connection,
    *,
    status: str | None = None,
    backup_type: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[BackupRecord], int]:
    """
    List backups, newest first.

    Returns:
        Tuple of (page of records, total matching count)
    """
    _check_page(limit, offset)
    return await list_backup_records(
        db,
        status=status,
        backup_type=backup_type,
        limit=limit,
        offset=offset,
    )


async def get_backup(db: aiosqlite.Connection, backup_id: str) -> BackupRecord | None:
    """Get a backup record, or None if it does not exist."""
    return await get_backup_record(db, backup_id)


async def delete_backup(
    config: VaultConfig,
    state: VaultState,
    backup_id: str,
) -> bool:
    """
    Delete a backup's blob and catalog record.

    Blob deletion failures are logged and do not block removing the
    record. Deleting a missing record is a no-op.

    Returns:
        True if a record was deleted, False if none existed

    Raises:
        BackupInProgressError: If the backup is still being exported
    """
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        record = await get_backup_record(db, backup_id)
        if record is None:
            return False

        if record["status"] == BackupStatus.IN_PROGRESS.value:
            raise BackupInProgressError(
                "Cannot delete a backup while it is being exported",
                details={"backup_id": backup_id},
            )

        await remove_backup_blob(config, state, record)
        deleted = await delete_backup_record(db, backup_id)

    logger.info("backup_deleted", backup_id=backup_id, storage_path=record["storage_path"])
    return deleted


async def remove_backup_blob(
    config: VaultConfig,
    state: VaultState,
    record: BackupRecord,
) -> bool:
    """
    Delete a backup's envelope from the object store.

    Failures are logged, not raised.

    Returns:
        True if there was no blob or it was deleted
    """
    storage_path = record["storage_path"]
    if not storage_path:
        return True

    retry = retrying(config)
    try:
        await retry(
            lambda: state["object_store"].delete(storage_path),
            name=f"delete:{storage_path}",
        )
    except Exception as e:
        logger.warning(
            "backup_blob_delete_failed",
            backup_id=record["id"],
            storage_path=storage_path,
            error=str(e),
        )
        return False

    return True


async def get_restore(db: aiosqlite.Connection, restore_id: str) -> RestoreRecord | None:
    """Get a restore record, or None if it does not exist."""
    return await get_restore_record(db, restore_id)


async def list_restores(
    db: aiosqlite.Connection,
    *,
    backup_id: str | None = None,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[RestoreRecord], int]:
    """List restores, newest first."""
    _check_page(limit, offset)
    return await list_restore_records(
        db,
        backup_id=backup_id,
        status=status,
        limit=limit,
        offset=offset,
    )
