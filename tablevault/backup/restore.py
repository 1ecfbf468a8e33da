# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Restore Manager - Replay a backup envelope into live tables.

Restores are destructive: each target table is emptied and refilled
from the envelope. Before anything is touched, the current contents of
every target table are snapshotted. If the restore then fails partway,
the touched tables are reverted from that snapshot and the record ends
up ``rolled_back``.

Dry runs compute a per-table plan instead and never mutate a table.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List, Sequence

import aiosqlite
import structlog
from ulid import ULID

from tablevault.backup.envelope import Envelope, read_envelope
from tablevault.catalog.sqlite_catalog import (
    RestoreRecord,
    claim_restore,
    finish_restore,
    get_backup_record,
    get_restore_record,
    insert_restore,
)
from tablevault.config import BackupStatus, RestoreStatus, VaultConfig
from tablevault.core import VaultState
from tablevault.exceptions import BackupNotRestorableError, CatalogError, RestoreError
from tablevault.retry import call_with_retry, retrying
from tablevault.stores.base import Row
from tablevault.tables import dedupe_tables, is_valid_table_name

logger = structlog.get_logger()


@dataclass
class RestoreOutcome:
    """Result of processing one restore record."""

    restore_id: str
    claimed: bool
    status: str | None = None
    records_restored: int = 0
    skipped_tables: List[str] = field(default_factory=list)
    failed_batches: List[Dict[str, Any]] = field(default_factory=list)
    plan: Dict[str, Any] | None = None
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def partial(self) -> bool:
        return bool(self.failed_batches)


async def restore_from_backup(
    config: VaultConfig,
    state: VaultState,
    backup_id: str,
    initiated_by: str,
    *,
    tables: Sequence[str] | None = None,
    dry_run: bool = False,
) -> RestoreRecord:
    """
    Create a restore record and start processing it in the background.

    Args:
        config: TableVault configuration
        state: Runtime state
        backup_id: Backup to restore from; must be completed
        initiated_by: Identity of the requester
        tables: Subset of tables to restore (default: every table in the backup)
        dry_run: Compute a plan without touching any table

    Returns:
        The persisted restore record, status ``pending``

    Raises:
        BackupNotRestorableError: If the backup is missing or not completed
    """
    if tables:
        invalid = [t for t in tables if not is_valid_table_name(t)]
        if invalid:
            raise CatalogError(f"Invalid table names: {invalid}", details={"tables": invalid})

    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        backup = await get_backup_record(db, backup_id)
        if backup is None:
            raise BackupNotRestorableError(
                "Backup not found",
                details={"backup_id": backup_id},
            )
        if backup["status"] != BackupStatus.COMPLETED.value:
            raise BackupNotRestorableError(
                "Backup is not completed",
                details={"backup_id": backup_id, "status": backup["status"]},
            )

        record = RestoreRecord(
            id=str(ULID()),
            backup_id=backup_id,
            status=RestoreStatus.PENDING.value,
            tables_restored=dedupe_tables(tables) if tables else list(backup["tables_included"]),
            records_restored=0,
            skipped_tables=[],
            failed_batches=[],
            partial=False,
            dry_run=dry_run,
            plan=None,
            initiated_by=initiated_by,
            created_at=datetime.now(UTC).isoformat(),
            started_at=None,
            completed_at=None,
            error_message=None,
        )
        await insert_restore(db, record)

    if dry_run:
        state["jobs"].spawn("restore_plan", record["id"], plan_restore(config, state, record["id"]))
    else:
        state["jobs"].spawn("restore", record["id"], process_restore(config, state, record["id"]))

    logger.info(
        "restore_created",
        restore_id=record["id"],
        backup_id=backup_id,
        tables=len(record["tables_restored"]),
        dry_run=dry_run,
        initiated_by=initiated_by,
    )
    return record


async def _claim(state: VaultState, restore_id: str) -> bool:
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        if not await claim_restore(db, restore_id):
            logger.info("restore_claim_lost", restore_id=restore_id)
            return False
        return True


async def _load_claimed(state: VaultState, restore_id: str) -> RestoreRecord:
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        record = await get_restore_record(db, restore_id)

    if record is None:
        raise RestoreError(
            "Restore record vanished after claim",
            details={"restore_id": restore_id},
        )
    return record


async def _load_envelope(config: VaultConfig, state: VaultState, backup_id: str) -> Envelope:
    """Download and decode the envelope of a backup."""
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        backup = await get_backup_record(db, backup_id)

    if backup is None or not backup["storage_path"]:
        raise RestoreError(
            "Backup is no longer available",
            details={"backup_id": backup_id},
        )

    storage_path = backup["storage_path"]
    retry = retrying(config)
    blob = await retry(
        lambda: state["object_store"].get(storage_path),
        name=f"get:{storage_path}",
    )
    return await read_envelope(blob)


async def _finish(
    state: VaultState,
    outcome: RestoreOutcome,
    status: RestoreStatus,
) -> None:
    outcome.status = status.value
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        await finish_restore(
            db,
            outcome.restore_id,
            status.value,
            records_restored=outcome.records_restored,
            skipped_tables=outcome.skipped_tables,
            failed_batches=outcome.failed_batches,
            plan=outcome.plan,
            error_message=outcome.error,
        )


async def process_restore(
    config: VaultConfig,
    state: VaultState,
    restore_id: str,
) -> RestoreOutcome:
    """
    Restore the tables of a pending restore record.

    Only the caller that claims the record does any work.

    Args:
        config: TableVault configuration
        state: Runtime state
        restore_id: Restore record id

    Returns:
        RestoreOutcome describing the result
    """
    start_time = datetime.now(UTC)
    if not await _claim(state, restore_id):
        return RestoreOutcome(restore_id=restore_id, claimed=False)

    outcome = RestoreOutcome(restore_id=restore_id, claimed=True)
    snapshot: Dict[str, List[Row]] = {}
    touched: List[str] = []

    try:
        async with asyncio.timeout(config.job_timeout_seconds):
            record = await _load_claimed(state, restore_id)
            logger.info(
                "restore_started",
                restore_id=restore_id,
                backup_id=record["backup_id"],
                tables=len(record["tables_restored"]),
            )
            envelope = await _load_envelope(config, state, record["backup_id"])
            targets = [t for t in record["tables_restored"] if t in envelope["data"]]
            await _take_snapshot(config, state, targets, snapshot)
            await _apply(config, state, record, envelope, touched, outcome)
    except asyncio.CancelledError:
        outcome.error = "Restore cancelled"
        await asyncio.shield(_abort(config, state, outcome, snapshot, touched))
        raise
    except TimeoutError:
        outcome.error = f"Restore timed out after {config.job_timeout_seconds}s"
        await _abort(config, state, outcome, snapshot, touched)
    except Exception as e:
        outcome.error = str(e) or type(e).__name__
        await _abort(config, state, outcome, snapshot, touched)
    else:
        await _finish(state, outcome, RestoreStatus.COMPLETED)
        state["total_restores"] += 1
        state["total_records_restored"] += outcome.records_restored

        logger.info(
            "restore_completed",
            restore_id=restore_id,
            records_restored=outcome.records_restored,
            skipped_tables=outcome.skipped_tables,
            failed_batches=len(outcome.failed_batches),
        )

    outcome.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
    return outcome


async def _take_snapshot(
    config: VaultConfig,
    state: VaultState,
    tables: List[str],
    snapshot: Dict[str, List[Row]],
) -> None:
    """Copy the current rows of every target table."""
    retry = retrying(config)
    for table in tables:
        rows = await retry(
            lambda t=table: state["table_store"].select(t, config.row_cap + 1),
            name=f"snapshot:{table}",
        )
        if len(rows) > config.row_cap:
            raise RestoreError(
                f"Table {table} is too large to snapshot before restore",
                details={"table": table, "row_cap": config.row_cap},
            )
        snapshot[table] = rows

    logger.debug("restore_snapshot_taken", tables=len(snapshot))


async def _insert_batches(
    config: VaultConfig,
    state: VaultState,
    table: str,
    rows: List[Row],
) -> None:
    """Insert rows in batches, raising on the first failed batch."""
    for offset in range(0, len(rows), config.batch_size):
        batch = rows[offset : offset + config.batch_size]
        # Inserts are not idempotent, so they get a single attempt
        await call_with_retry(
            lambda b=batch: state["table_store"].insert(table, b),
            name=f"insert:{table}",
            attempts=1,
            timeout_seconds=config.operation_timeout_seconds,
        )


async def _apply(
    config: VaultConfig,
    state: VaultState,
    record: RestoreRecord,
    envelope: Envelope,
    touched: List[str],
    outcome: RestoreOutcome,
) -> None:
    retry = retrying(config)
    store = state["table_store"]

    for table in record["tables_restored"]:
        if table not in envelope["data"]:
            outcome.skipped_tables.append(table)
            logger.debug("restore_table_skipped", restore_id=record["id"], table=table)
            continue

        rows = envelope["data"][table]
        touched.append(table)
        await retry(lambda t=table: store.delete_all(t), name=f"delete_all:{table}")

        for offset in range(0, len(rows), config.batch_size):
            batch = rows[offset : offset + config.batch_size]
            try:
                await call_with_retry(
                    lambda b=batch, t=table: store.insert(t, b),
                    name=f"insert:{table}",
                    attempts=1,
                    timeout_seconds=config.operation_timeout_seconds,
                )
            except Exception as e:
                if config.strict:
                    raise RestoreError(
                        f"Failed to restore batch of {table} at offset {offset}: {e}",
                        details={"table": table, "offset": offset},
                    )
                outcome.failed_batches.append(
                    {
                        "table": table,
                        "offset": offset,
                        "count": len(batch),
                        "error": str(e) or type(e).__name__,
                    }
                )
                logger.warning(
                    "restore_batch_failed",
                    restore_id=record["id"],
                    table=table,
                    offset=offset,
                    count=len(batch),
                    error=str(e),
                )
                continue

            outcome.records_restored += len(batch)

        logger.debug(
            "table_restored",
            restore_id=record["id"],
            table=table,
            rows=len(rows),
        )


async def _abort(
    config: VaultConfig,
    state: VaultState,
    outcome: RestoreOutcome,
    snapshot: Dict[str, List[Row]],
    touched: List[str],
) -> None:
    """Revert touched tables and record the terminal status."""
    state["last_error"] = outcome.error

    if not touched:
        logger.error("restore_failed", restore_id=outcome.restore_id, error=outcome.error)
        await _finish(state, outcome, RestoreStatus.FAILED)
        return

    retry = retrying(config)
    try:
        for table in reversed(touched):
            await retry(
                lambda t=table: state["table_store"].delete_all(t),
                name=f"rollback_delete:{table}",
            )
            await _insert_batches(config, state, table, snapshot.get(table, []))
    except Exception as e:
        outcome.error = f"{outcome.error}; rollback failed: {e}"
        logger.error(
            "restore_rollback_failed",
            restore_id=outcome.restore_id,
            tables=touched,
            error=outcome.error,
        )
        await _finish(state, outcome, RestoreStatus.FAILED)
        return

    # Nothing from the backup remains in the tables
    outcome.records_restored = 0
    logger.warning(
        "restore_rolled_back",
        restore_id=outcome.restore_id,
        tables=touched,
        error=outcome.error,
    )
    await _finish(state, outcome, RestoreStatus.ROLLED_BACK)


async def plan_restore(
    config: VaultConfig,
    state: VaultState,
    restore_id: str,
) -> RestoreOutcome:
    """
    Compute what a restore would change, without mutating any table.

    The plan lists, per requested table, whether the backup holds it,
    how many rows the backup has, and how many rows the live table has.
    """
    start_time = datetime.now(UTC)
    if not await _claim(state, restore_id):
        return RestoreOutcome(restore_id=restore_id, claimed=False)

    outcome = RestoreOutcome(restore_id=restore_id, claimed=True)
    retry = retrying(config)

    try:
        async with asyncio.timeout(config.job_timeout_seconds):
            record = await _load_claimed(state, restore_id)
            envelope = await _load_envelope(config, state, record["backup_id"])

            tables: Dict[str, Any] = {}
            for table in record["tables_restored"]:
                in_backup = table in envelope["data"]
                if not in_backup:
                    outcome.skipped_tables.append(table)
                tables[table] = {
                    "in_backup": in_backup,
                    "backup_rows": len(envelope["data"][table]) if in_backup else 0,
                }
                try:
                    tables[table]["current_rows"] = await retry(
                        lambda t=table: state["table_store"].count(t),
                        name=f"count:{table}",
                    )
                except Exception as e:
                    # A table the live store cannot count would fail the real restore too
                    tables[table]["current_rows"] = None
                    tables[table]["error"] = str(e) or type(e).__name__

            outcome.plan = {
                "envelope_version": envelope["version"],
                "envelope_created_at": envelope["created_at"],
                "tables": tables,
                "total_backup_rows": sum(t["backup_rows"] for t in tables.values()),
                "total_current_rows": sum(t["current_rows"] or 0 for t in tables.values()),
            }
    except asyncio.CancelledError:
        outcome.error = "Restore plan cancelled"
        await asyncio.shield(_finish(state, outcome, RestoreStatus.FAILED))
        raise
    except TimeoutError:
        outcome.error = f"Restore plan timed out after {config.job_timeout_seconds}s"
        await _finish(state, outcome, RestoreStatus.FAILED)
    except Exception as e:
        outcome.error = str(e) or type(e).__name__
        logger.error("restore_plan_failed", restore_id=restore_id, error=outcome.error)
        await _finish(state, outcome, RestoreStatus.FAILED)
    else:
        await _finish(state, outcome, RestoreStatus.COMPLETED)
        logger.info(
            "restore_planned",
            restore_id=restore_id,
            tables=len(outcome.plan["tables"]) if outcome.plan else 0,
        )

    outcome.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
    return outcome
