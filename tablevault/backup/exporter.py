# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Exporter - Snapshot tables into a backup envelope.

Drives a backup record from ``pending`` through ``in_progress`` to
``completed`` or ``failed``:

1. Claim the record (only one exporter ever wins)
2. Read each table, up to the row cap
3. Encode (and optionally compress) the envelope
4. Upload it to the object store
5. Record the outcome in the catalog

Table reads soft-fail: a table that cannot be read is recorded in
``skipped_tables`` and the export carries on, unless strict mode is on.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Dict, List

import aiosqlite
import structlog

from tablevault.backup.envelope import (
    COMPRESSED_CONTENT_TYPE,
    CONTENT_TYPE,
    build_envelope,
    compress_envelope,
    encode_envelope,
    get_compression_stats,
)
from tablevault.catalog.sqlite_catalog import (
    BackupRecord,
    claim_backup,
    complete_backup,
    fail_backup,
    get_backup_record,
)
from tablevault.config import BackupStatus, VaultConfig
from tablevault.core import VaultState
from tablevault.exceptions import BackupError
from tablevault.retry import retrying
from tablevault.stores.base import Row

logger = structlog.get_logger()


@dataclass
class ExportResult:
    """Result of processing one backup record."""

    backup_id: str
    claimed: bool
    status: str | None = None  # completed or failed once claimed
    tables_captured: List[str] = field(default_factory=list)
    skipped_tables: Dict[str, str] = field(default_factory=dict)
    truncated_tables: List[str] = field(default_factory=list)
    storage_path: str | None = None
    size_bytes: int | None = None
    stored_bytes: int | None = None
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def partial(self) -> bool:
        return bool(self.skipped_tables or self.truncated_tables)


def backup_storage_path(config: VaultConfig, backup_id: str) -> str:
    """Object path for a backup envelope."""
    suffix = ".json.zst" if config.compress_backups else ".json"
    return f"{config.key_prefix}{backup_id}{suffix}"


async def process_backup(
    config: VaultConfig,
    state: VaultState,
    backup_id: str,
) -> ExportResult:
    """
    Export the tables of a pending backup record.

    Safe to call more than once for the same id: only the caller that
    claims the record does any work. Others return with ``claimed=False``.

    Args:
        config: TableVault configuration
        state: Runtime state
        backup_id: Backup record id

    Returns:
        ExportResult describing the outcome
    """
    start_time = datetime.now(UTC)

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        if not await claim_backup(db, backup_id):
            logger.info("backup_claim_lost", backup_id=backup_id)
            return ExportResult(backup_id=backup_id, claimed=False)

    # Past the claim, every exit must leave the record terminal
    result = ExportResult(backup_id=backup_id, claimed=True)
    storage_path = backup_storage_path(config, backup_id)

    try:
        async with asyncio.timeout(config.job_timeout_seconds):
            record = await _load_claimed(state, backup_id)
            logger.info(
                "backup_started",
                backup_id=backup_id,
                tables=len(record["tables_included"]),
                storage_path=storage_path,
            )
            await _export(config, state, record, storage_path, result)
    except asyncio.CancelledError:
        result.error = "Backup cancelled"
        await asyncio.shield(_fail(config, state, result, storage_path))
        raise
    except TimeoutError:
        result.error = f"Backup timed out after {config.job_timeout_seconds}s"
        await _fail(config, state, result, storage_path)
    except Exception as e:
        result.error = str(e) or type(e).__name__
        await _fail(config, state, result, storage_path)

    result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
    return result


async def _load_claimed(state: VaultState, backup_id: str) -> BackupRecord:
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        record = await get_backup_record(db, backup_id)

    if record is None:
        raise BackupError(
            "Backup record vanished after claim",
            details={"backup_id": backup_id},
        )
    return record


async def _export(
    config: VaultConfig,
    state: VaultState,
    record: BackupRecord,
    storage_path: str,
    result: ExportResult,
) -> None:
    retry = retrying(config)
    store = state["table_store"]
    data: Dict[str, List[Row]] = {}

    for table in record["tables_included"]:
        try:
            # One extra row tells a table at the cap apart from a truncated one
            rows = await retry(
                lambda t=table: store.select(t, config.row_cap + 1),
                name=f"select:{table}",
            )
        except Exception as e:
            if config.strict:
                raise BackupError(
                    f"Failed to export table {table}: {e}",
                    details={"table": table},
                )
            result.skipped_tables[table] = str(e) or type(e).__name__
            logger.warning(
                "table_export_failed",
                backup_id=record["id"],
                table=table,
                error=str(e),
            )
            continue

        if len(rows) > config.row_cap:
            if config.strict:
                raise BackupError(
                    f"Table {table} exceeds row cap of {config.row_cap}",
                    details={"table": table, "row_cap": config.row_cap},
                )
            rows = rows[: config.row_cap]
            result.truncated_tables.append(table)
            logger.warning(
                "table_export_truncated",
                backup_id=record["id"],
                table=table,
                row_cap=config.row_cap,
            )

        data[table] = rows
        result.tables_captured.append(table)
        logger.debug("table_exported", backup_id=record["id"], table=table, rows=len(rows))

    raw = encode_envelope(build_envelope(result.tables_captured, data))
    blob = raw
    content_type = CONTENT_TYPE
    if config.compress_backups:
        blob = await compress_envelope(raw)
        content_type = COMPRESSED_CONTENT_TYPE

    await retry(
        lambda: state["object_store"].put(storage_path, blob, content_type),
        name=f"put:{storage_path}",
    )

    metadata = {
        **record["metadata"],
        "compressed": config.compress_backups,
        "stored_bytes": len(blob),
    }
    if config.compress_backups:
        metadata.update(get_compression_stats(len(raw), len(blob)))

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        updated = await complete_backup(
            db,
            record["id"],
            storage_path=storage_path,
            size_bytes=len(raw),
            tables_captured=result.tables_captured,
            skipped_tables=result.skipped_tables,
            truncated_tables=result.truncated_tables,
            metadata=metadata,
        )

    if not updated:
        raise BackupError(
            "Backup record changed while exporting",
            details={"backup_id": record["id"]},
        )

    result.status = BackupStatus.COMPLETED.value
    result.storage_path = storage_path
    result.size_bytes = len(raw)
    result.stored_bytes = len(blob)

    state["total_backups"] += 1
    state["last_backup_at"] = datetime.now(UTC)

    logger.info(
        "backup_completed",
        backup_id=record["id"],
        tables=len(result.tables_captured),
        skipped=len(result.skipped_tables),
        truncated=len(result.truncated_tables),
        size_bytes=len(raw),
        stored_bytes=len(blob),
    )


async def _fail(
    config: VaultConfig,
    state: VaultState,
    result: ExportResult,
    storage_path: str,
) -> None:
    """Remove any uploaded blob and mark the record failed."""
    result.status = BackupStatus.FAILED.value
    result.storage_path = None
    result.size_bytes = None
    state["last_error"] = result.error

    logger.error("backup_failed", backup_id=result.backup_id, error=result.error)

    try:
        await state["object_store"].delete(storage_path)
    except Exception as e:
        logger.warning(
            "backup_blob_cleanup_failed",
            backup_id=result.backup_id,
            storage_path=storage_path,
            error=str(e),
        )

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        await fail_backup(
            db,
            result.backup_id,
            result.error or "Backup failed",
            skipped_tables=result.skipped_tables,
        )
