# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Critical Safety Tests for TableVault.

These tests verify the core guarantees:
1. Status discipline - Backups only move pending -> in_progress -> terminal
2. Single processor - Concurrent processing of one record claims it once
3. Safe deletion - Deleting a backup twice never raises
4. Restore gating - Only completed backups can be restored
5. Faithful restore - Export then restore reproduces the tables
6. Rollback - A failed restore leaves the tables as they were
7. Dry-run safety - Dry runs NEVER mutate a table
8. Retention - The sweeper only removes completed, expired backups

These tests MUST pass before any production deployment.
"""

import asyncio

import aiosqlite
import pytest

from tablevault.backup.exporter import process_backup
from tablevault.backup.restore import process_restore, restore_from_backup
from tablevault.backup.retention import cleanup_expired_backups
from tablevault.catalog.operations import (
    create_backup,
    delete_backup,
    get_backup,
    get_restore,
    list_restores,
)
from tablevault.catalog.sqlite_catalog import claim_backup, insert_backup
from tablevault.exceptions import BackupNotRestorableError


class FailingInsertStore:
    """Table store whose inserts into one table fail a number of times."""

    def __init__(self, inner, table: str, failures: int | None = None):
        self.inner = inner
        self.table = table
        self.failures = failures  # None fails every time

    async def insert(self, table, rows):
        if table == self.table and (self.failures is None or self.failures > 0):
            if self.failures is not None:
                self.failures -= 1
            raise RuntimeError(f"insert into {table} rejected")
        await self.inner.insert(table, rows)

    def __getattr__(self, name):
        return getattr(self.inner, name)


async def _backup(config, state, wait_job, **kwargs):
    record = await create_backup(config, state, "tester", **kwargs)
    await wait_job(state, record["id"])
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        return await get_backup(db, record["id"])


async def _restore(config, state, wait_job, backup_id, **kwargs):
    record = await restore_from_backup(config, state, backup_id, "tester", **kwargs)
    await wait_job(state, record["id"])
    async with aiosqlite.connect(state["catalog_db_path"]) as db:
        return await get_restore(db, record["id"])


# ============================================================================
# Test 1: STATUS DISCIPLINE
# ============================================================================

@pytest.mark.asyncio
async def test_new_backup_is_pending_then_completed(test_config, vault_state, wait_job):
    """
    CRITICAL: A new backup starts pending with no storage path and ends
    completed with a storage path and size.
    """
    record = await create_backup(test_config, vault_state, "tester")

    assert record["status"] == "pending"
    assert record["storage_path"] is None
    assert record["size_bytes"] is None

    await wait_job(vault_state, record["id"])

    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        done = await get_backup(db, record["id"])

    assert done["status"] == "completed"
    assert done["storage_path"] == f"backups/{record['id']}.json"
    assert done["size_bytes"] >= 0
    assert done["completed_at"] is not None
    assert done["error_message"] is None


@pytest.mark.asyncio
async def test_failed_backup_has_no_storage_path(
    test_config, make_state, object_store, wait_job
):
    """
    CRITICAL: A failed backup never carries a storage path or size, and
    leaves no blob behind.
    """
    config = test_config.with_updates(strict=True)
    state = await make_state(config=config)

    done = await _backup(config, state, wait_job, tables=["posts", "missing_table"])

    assert done["status"] == "failed"
    assert done["storage_path"] is None
    assert done["size_bytes"] is None
    assert "missing_table" in done["error_message"]
    assert not await object_store.exists(f"backups/{done['id']}.json")


@pytest.mark.asyncio
async def test_claim_only_moves_pending_records(vault_state, backup_record_factory):
    """
    CRITICAL: in_progress is only reachable from pending, never from a
    terminal status.
    """
    pending = backup_record_factory()
    completed = backup_record_factory(status="completed", storage_path="backups/x.json", size_bytes=2)
    failed = backup_record_factory(status="failed", error_message="boom")

    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        for record in (pending, completed, failed):
            await insert_backup(db, record)

        assert await claim_backup(db, pending["id"]) is True
        assert await claim_backup(db, pending["id"]) is False
        assert await claim_backup(db, completed["id"]) is False
        assert await claim_backup(db, failed["id"]) is False

        assert (await get_backup(db, completed["id"]))["status"] == "completed"
        assert (await get_backup(db, failed["id"]))["status"] == "failed"


# ============================================================================
# Test 2: SINGLE PROCESSOR
# ============================================================================

@pytest.mark.asyncio
async def test_concurrent_export_claims_once(test_config, vault_state, backup_record_factory):
    """
    CRITICAL: Two exporters racing on one record - exactly one does the work.
    """
    record = backup_record_factory()
    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        await insert_backup(db, record)

    results = await asyncio.gather(
        process_backup(test_config, vault_state, record["id"]),
        process_backup(test_config, vault_state, record["id"]),
    )

    assert sum(r.claimed for r in results) == 1
    winner = next(r for r in results if r.claimed)
    assert winner.status == "completed"


@pytest.mark.asyncio
async def test_concurrent_restore_claims_once(test_config, vault_state, wait_job):
    """
    CRITICAL: Two restore processors racing on one record - exactly one
    leaves pending.
    """
    backup = await _backup(test_config, vault_state, wait_job, tables=["posts"])

    record = await restore_from_backup(test_config, vault_state, backup["id"], "tester")
    spawned = vault_state["jobs"].get(record["id"])

    extra = await process_restore(test_config, vault_state, record["id"])
    first = await spawned.wait()

    assert [first.claimed, extra.claimed].count(True) == 1


# ============================================================================
# Test 3: SAFE DELETION
# ============================================================================

@pytest.mark.asyncio
async def test_delete_backup_twice_does_not_raise(
    test_config, vault_state, object_store, wait_job
):
    """
    CRITICAL: Deleting the same backup twice is safe. The second call is
    a no-op even though the blob and record are already gone.
    """
    done = await _backup(test_config, vault_state, wait_job, tables=["posts"])
    assert await object_store.exists(done["storage_path"])

    assert await delete_backup(test_config, vault_state, done["id"]) is True
    assert await delete_backup(test_config, vault_state, done["id"]) is False

    assert not await object_store.exists(done["storage_path"])
    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        assert await get_backup(db, done["id"]) is None


# ============================================================================
# Test 4: RESTORE GATING
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["pending", "in_progress", "failed", "expired"])
async def test_restore_rejected_unless_completed(
    test_config, vault_state, backup_record_factory, status
):
    """
    CRITICAL: Restores of backups that are not completed are rejected
    before any restore record is created.
    """
    record = backup_record_factory(status=status)
    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        await insert_backup(db, record)

    with pytest.raises(BackupNotRestorableError):
        await restore_from_backup(test_config, vault_state, record["id"], "tester")

    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        _, total = await list_restores(db)
    assert total == 0


@pytest.mark.asyncio
async def test_restore_rejected_for_missing_backup(test_config, vault_state):
    """Restoring an unknown backup id is rejected without a record."""
    with pytest.raises(BackupNotRestorableError):
        await restore_from_backup(test_config, vault_state, "01HZZZZZZZZZZZZZZZZZZZZZZZ", "tester")

    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        _, total = await list_restores(db)
    assert total == 0


# ============================================================================
# Test 5: FAITHFUL RESTORE
# ============================================================================

@pytest.mark.asyncio
async def test_restore_fifty_posts(
    test_config, vault_state, tables_db, rows_helpers, wait_job
):
    """
    CRITICAL: A backup of 50 posts restores exactly 50 records.
    """
    await rows_helpers["clear"](tables_db, "posts")
    posts = [
        {"id": i, "author_id": 1, "title": f"Post {i}", "body": "text"}
        for i in range(1, 51)
    ]
    await rows_helpers["insert"](tables_db, "posts", posts)

    backup = await _backup(test_config, vault_state, wait_job, tables=["posts"])
    await rows_helpers["clear"](tables_db, "posts")

    restore = await _restore(test_config, vault_state, wait_job, backup["id"])

    assert restore["status"] == "completed"
    assert restore["records_restored"] == 50
    assert restore["completed_at"] is not None
    assert restore["started_at"] is not None
    assert await rows_helpers["fetch"](tables_db, "posts") == posts


@pytest.mark.asyncio
async def test_export_then_restore_reproduces_tables(
    test_config, vault_state, tables_db, rows_helpers, wait_job
):
    """
    CRITICAL: Export then restore, with or without writes in between,
    leaves every table exactly as it was at export time.
    """
    before = {t: await rows_helpers["fetch"](tables_db, t) for t in test_config.all_tables}

    backup = await _backup(test_config, vault_state, wait_job)
    assert backup["tables_captured"] == test_config.all_tables

    # Unrelated writes after the backup
    await rows_helpers["insert"](
        tables_db, "posts", [{"id": 99, "author_id": 2, "title": "Later", "body": "x"}]
    )
    await rows_helpers["clear"](tables_db, "comments")

    restore = await _restore(test_config, vault_state, wait_job, backup["id"])

    assert restore["status"] == "completed"
    assert restore["tables_restored"] == test_config.all_tables
    after = {t: await rows_helpers["fetch"](tables_db, t) for t in test_config.all_tables}
    assert after == before


# ============================================================================
# Test 6: ROLLBACK
# ============================================================================

@pytest.mark.asyncio
async def test_failed_restore_is_rolled_back(
    test_config, make_state, table_store, tables_db, rows_helpers, wait_job
):
    """
    CRITICAL: When a restore fails after touching tables, every touched
    table is reverted to its pre-restore contents.
    """
    config = test_config.with_updates(strict=True)
    state = await make_state(
        tables=FailingInsertStore(table_store, "comments", failures=1),
        config=config,
    )

    backup = await _backup(config, state, wait_job, tables=["posts", "comments"])

    # Live tables drift after the backup
    await rows_helpers["insert"](
        tables_db, "posts", [{"id": 42, "author_id": 1, "title": "Drift", "body": "y"}]
    )
    before_posts = await rows_helpers["fetch"](tables_db, "posts")
    before_comments = await rows_helpers["fetch"](tables_db, "comments")

    restore = await _restore(config, state, wait_job, backup["id"])

    assert restore["status"] == "rolled_back"
    assert "comments" in restore["error_message"]
    assert restore["records_restored"] == 0
    assert restore["completed_at"] is None
    assert await rows_helpers["fetch"](tables_db, "posts") == before_posts
    assert await rows_helpers["fetch"](tables_db, "comments") == before_comments


@pytest.mark.asyncio
async def test_failed_rollback_marks_restore_failed(
    test_config, make_state, table_store, wait_job
):
    """
    If reverting from the snapshot also fails, the restore is failed and
    the message names both errors.
    """
    config = test_config.with_updates(strict=True)
    state = await make_state(
        tables=FailingInsertStore(table_store, "comments"),
        config=config,
    )

    backup = await _backup(config, state, wait_job, tables=["comments"])
    restore = await _restore(config, state, wait_job, backup["id"])

    assert restore["status"] == "failed"
    assert "rollback failed" in restore["error_message"]


# ============================================================================
# Test 7: DRY-RUN SAFETY
# ============================================================================

@pytest.mark.asyncio
async def test_dry_run_never_mutates_tables(
    test_config, vault_state, tables_db, rows_helpers, wait_job
):
    """
    CRITICAL: A dry-run restore computes a plan and leaves every table
    untouched.
    """
    backup = await _backup(test_config, vault_state, wait_job)

    await rows_helpers["clear"](tables_db, "posts")
    before = {t: await rows_helpers["fetch"](tables_db, t) for t in test_config.all_tables}

    restore = await _restore(
        test_config,
        vault_state,
        wait_job,
        backup["id"],
        tables=["posts", "comments", "ghost"],
        dry_run=True,
    )

    after = {t: await rows_helpers["fetch"](tables_db, t) for t in test_config.all_tables}
    assert after == before

    assert restore["status"] == "completed"
    assert restore["dry_run"] is True
    assert restore["records_restored"] == 0
    assert restore["skipped_tables"] == ["ghost"]

    plan = restore["plan"]
    assert plan["tables"]["posts"] == {"in_backup": True, "backup_rows": 3, "current_rows": 0}
    assert plan["tables"]["comments"]["current_rows"] == 2
    assert plan["tables"]["ghost"]["in_backup"] is False
    assert plan["total_backup_rows"] == 5


# ============================================================================
# Test 8: RETENTION
# ============================================================================

@pytest.mark.asyncio
async def test_sweeper_only_removes_completed_expired_backups(
    test_config, vault_state, object_store, backup_record_factory
):
    """
    CRITICAL: Only completed backups past expires_at are swept. Pending,
    in-progress, and failed records are left alone even when expired.
    """
    past = "2020-01-01T00:00:00+00:00"
    future = "2999-01-01T00:00:00+00:00"

    expired = backup_record_factory(
        status="completed", storage_path="backups/old.json", size_bytes=10, expires_at=past
    )
    fresh = backup_record_factory(
        status="completed", storage_path="backups/new.json", size_bytes=10, expires_at=future
    )
    untouchable = [
        backup_record_factory(status="pending", expires_at=past),
        backup_record_factory(status="in_progress", expires_at=past),
        backup_record_factory(status="failed", expires_at=past, error_message="boom"),
    ]

    await object_store.put("backups/old.json", b"{}", "application/json")
    await object_store.put("backups/new.json", b"{}", "application/json")

    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        for record in [expired, fresh, *untouchable]:
            await insert_backup(db, record)

    swept = await cleanup_expired_backups(test_config, vault_state)

    assert swept == 1
    assert not await object_store.exists("backups/old.json")
    assert await object_store.exists("backups/new.json")

    async with aiosqlite.connect(vault_state["catalog_db_path"]) as db:
        assert await get_backup(db, expired["id"]) is None
        assert await get_backup(db, fresh["id"]) is not None
        for record in untouchable:
            assert (await get_backup(db, record["id"]))["status"] == record["status"]
