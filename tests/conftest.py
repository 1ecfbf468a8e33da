# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for TableVault tests.

Provides a seeded SQLite table database, a local object store, test
configuration, and initialized runtime state.
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List

import aiosqlite
import pytest
import pytest_asyncio

# Set test environment variables
os.environ["TABLEVAULT_ADMIN_API_KEY"] = "test-api-key-12345"

TEST_CORE_TABLES = ["profiles", "posts"]
TEST_ALL_TABLES = ["profiles", "posts", "comments"]

SCHEMA = [
    "CREATE TABLE profiles (id INTEGER PRIMARY KEY, username TEXT NOT NULL, bio TEXT)",
    "CREATE TABLE posts (id INTEGER PRIMARY KEY, author_id INTEGER, title TEXT, body TEXT)",
    "CREATE TABLE comments (id INTEGER PRIMARY KEY, post_id INTEGER, body TEXT)",
]

PROFILES = [
    {"id": 1, "username": "ada", "bio": "Writes about engines"},
    {"id": 2, "username": "grace", "bio": None},
]

POSTS = [
    {"id": 1, "author_id": 1, "title": "Hello", "body": "First post"},
    {"id": 2, "author_id": 2, "title": "Compilers", "body": "On translation"},
    {"id": 3, "author_id": 1, "title": "Notes", "body": "Diagrams"},
]

COMMENTS = [
    {"id": 1, "post_id": 1, "body": "Nice"},
    {"id": 2, "post_id": 2, "body": "Agreed"},
]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


async def insert_rows(db_path: Path, table: str, rows: List[Dict[str, Any]]) -> None:
    """Insert rows directly, bypassing the table store."""
    if not rows:
        return
    columns = list(rows[0].keys())
    async with aiosqlite.connect(db_path) as db:
        await db.executemany(
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            [tuple(r[c] for c in columns) for r in rows],
        )
        await db.commit()


async def fetch_rows(db_path: Path, table: str) -> List[Dict[str, Any]]:
    """Read all rows of a table ordered by id."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute(f"SELECT * FROM {table} ORDER BY id") as cursor:
            return [dict(row) async for row in cursor]


async def clear_table(db_path: Path, table: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(f"DELETE FROM {table}")
        await db.commit()


@pytest_asyncio.fixture
async def tables_db(temp_dir: Path) -> Path:
    """Create the live tables database, seeded with a few rows."""
    db_path = temp_dir / "tables.db"
    async with aiosqlite.connect(db_path) as db:
        for statement in SCHEMA:
            await db.execute(statement)
        await db.commit()

    await insert_rows(db_path, "profiles", PROFILES)
    await insert_rows(db_path, "posts", POSTS)
    await insert_rows(db_path, "comments", COMMENTS)
    return db_path


@pytest.fixture
def rows_helpers():
    """Direct table access helpers for assertions and setup."""
    return {"insert": insert_rows, "fetch": fetch_rows, "clear": clear_table}


@pytest.fixture
def table_store(tables_db: Path):
    from tablevault.stores import SQLiteTableStore

    return SQLiteTableStore(tables_db)


@pytest.fixture
def object_store(temp_dir: Path):
    from tablevault.stores import LocalObjectStore

    return LocalObjectStore(temp_dir / "objects")


@pytest.fixture
def test_config(temp_dir: Path, tables_db: Path):
    """Create a test configuration with fast retries and small timeouts."""
    from tablevault.config import VaultConfig

    return VaultConfig(
        storage_path=temp_dir / "objects",
        database_url=str(tables_db),
        catalog_path=temp_dir / "catalog.db",
        core_tables=list(TEST_CORE_TABLES),
        all_tables=list(TEST_ALL_TABLES),
        max_retries=0,
        retry_backoff_seconds=0.0,
        operation_timeout_seconds=5.0,
        job_timeout_seconds=30.0,
    )


@pytest_asyncio.fixture
async def vault_state(test_config, table_store, object_store):
    """Create initialized vault state backed by the test stores."""
    from tablevault.core import initialize_vault_state, shutdown_vault_state

    state = await initialize_vault_state(
        test_config,
        table_store=table_store,
        object_store=object_store,
    )
    yield state
    await shutdown_vault_state(state)


@pytest_asyncio.fixture
async def make_state(test_config, table_store, object_store):
    """Factory for vault state with substitute stores or config."""
    from tablevault.core import initialize_vault_state, shutdown_vault_state

    states = []

    async def _make(tables=None, objects=None, config=None):
        state = await initialize_vault_state(
            config or test_config,
            table_store=tables or table_store,
            object_store=objects or object_store,
        )
        states.append(state)
        return state

    yield _make

    for state in states:
        await shutdown_vault_state(state)


def make_backup_record(**overrides: Any) -> Dict[str, Any]:
    """Build a BackupRecord dict for direct catalog inserts."""
    from ulid import ULID

    record: Dict[str, Any] = {
        "id": str(ULID()),
        "name": "backup-test",
        "description": None,
        "type": "full",
        "status": "pending",
        "tables_included": list(TEST_ALL_TABLES),
        "tables_captured": [],
        "skipped_tables": {},
        "truncated_tables": [],
        "partial": False,
        "storage_path": None,
        "size_bytes": None,
        "created_by": "tester",
        "created_at": "2026-01-01T00:00:00+00:00",
        "completed_at": None,
        "expires_at": "2026-01-31T00:00:00+00:00",
        "error_message": None,
        "metadata": {"retention_days": 30},
    }
    record.update(overrides)
    return record


@pytest.fixture
def backup_record_factory():
    return make_backup_record


def make_restore_record(backup_id: str, **overrides: Any) -> Dict[str, Any]:
    """Build a RestoreRecord dict for direct catalog inserts."""
    from ulid import ULID

    record: Dict[str, Any] = {
        "id": str(ULID()),
        "backup_id": backup_id,
        "status": "pending",
        "tables_restored": ["posts"],
        "records_restored": 0,
        "skipped_tables": [],
        "failed_batches": [],
        "partial": False,
        "dry_run": False,
        "plan": None,
        "initiated_by": "tester",
        "created_at": "2026-01-02T00:00:00+00:00",
        "started_at": None,
        "completed_at": None,
        "error_message": None,
    }
    record.update(overrides)
    return record


@pytest.fixture
def restore_record_factory():
    return make_restore_record


async def wait_for_job(state, record_id: str) -> Any:
    """Wait for a spawned job to finish and return its result."""
    handle = state["jobs"].get(record_id)
    assert handle is not None, f"no job spawned for {record_id}"
    return await handle.wait()


@pytest.fixture
def wait_job():
    return wait_for_job
