# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Retention - Expiry sweeps and scheduled backups.

The sweeper only looks at completed backups whose ``expires_at`` has
passed. Pending, in-progress, and failed records are never touched.
"""

from datetime import datetime, UTC

import aiosqlite
import structlog

from tablevault.catalog.operations import create_backup, delete_backup, remove_backup_blob
from tablevault.catalog.sqlite_catalog import (
    BackupRecord,
    expire_backup,
    get_catalog_stats,
    list_expired_backups,
)
from tablevault.config import BackupType, VaultConfig
from tablevault.core import VaultState

logger = structlog.get_logger()

SCHEDULED_RETENTION_DAYS = 30


async def cleanup_expired_backups(config: VaultConfig, state: VaultState) -> int:
    """
    Remove completed backups past their retention window.

    Each backup goes through the same deletion path as an explicit
    delete. With ``keep_expired_records`` the blob is removed and the
    record stays in the catalog as ``expired``. A failure on one backup
    is logged and the sweep moves on.

    Returns:
        Number of backups removed or expired
    """
    now = datetime.now(UTC).isoformat()
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        candidates = await list_expired_backups(db, now)

    swept = 0
    for record in candidates:
        try:
            if config.keep_expired_records:
                if await _expire(config, state, record):
                    swept += 1
            elif await delete_backup(config, state, record["id"]):
                swept += 1
        except Exception as e:
            logger.error(
                "backup_cleanup_failed",
                backup_id=record["id"],
                error=str(e),
            )

    state["total_swept"] += swept
    logger.info(
        "expired_backups_cleaned",
        candidates=len(candidates),
        swept=swept,
        kept_records=config.keep_expired_records,
    )
    return swept


async def _expire(config: VaultConfig, state: VaultState, record: BackupRecord) -> bool:
    # A blob that could not be removed keeps the record completed for the next sweep
    if not await remove_backup_blob(config, state, record):
        return False

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        expired = await expire_backup(db, record["id"])

    if expired:
        logger.info("backup_expired", backup_id=record["id"])
    return expired


async def run_scheduled_backup(config: VaultConfig, state: VaultState) -> BackupRecord:
    """
    Create the daily automated full backup.

    Returns:
        The pending backup record
    """
    today = datetime.now(UTC).strftime("%Y-%m-%d")
    record = await create_backup(
        config,
        state,
        "system",
        name=f"scheduled-{today}",
        description="Automated daily backup",
        backup_type=BackupType.FULL,
        retention_days=SCHEDULED_RETENTION_DAYS,
    )
    logger.info("scheduled_backup_started", backup_id=record["id"])
    return record


async def get_backup_stats(db: aiosqlite.Connection) -> dict:
    """
    Summarize the catalog.

    Returns:
        Dict with counts by status, total and largest completed size,
        oldest and newest completed backup, and restore counts
    """
    return await get_catalog_stats(db)
