# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Core - Runtime state shared by catalog, exporter, and restore.

The state carries the collaborators (table store, object store), the
catalog location, and the job runner that owns background export and
restore tasks.
"""

from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import TypedDict

import aiosqlite
import structlog

from tablevault.catalog.sqlite_catalog import (
    fail_interrupted_jobs,
    get_catalog_stats,
    init_catalog_db,
)
from tablevault.config import ObjectBackend, TableBackend, VaultConfig
from tablevault.exceptions import ConfigurationError
from tablevault.jobs import JobRunner
from tablevault.stores.base import ObjectStore, TableStore

logger = structlog.get_logger()


@dataclass
class VaultMetrics:
    """Metrics for backup and restore operations."""

    total_backups: int
    total_restores: int
    total_records_restored: int
    total_swept: int
    active_jobs: int
    last_backup_at: datetime | None
    catalog_backups: int
    stored_bytes: int
    last_error: str | None


class VaultState(TypedDict):
    """Runtime state for backup and restore operations."""

    catalog_db_path: Path
    table_store: TableStore
    object_store: ObjectStore
    jobs: JobRunner
    started_at: datetime
    last_backup_at: datetime | None
    total_backups: int
    total_restores: int
    total_records_restored: int
    total_swept: int
    last_error: str | None


def _sqlite_path(database_url: str | None, default: Path) -> Path:
    """Accept a bare path or a sqlite:/// URL."""
    if not database_url:
        return default
    for prefix in ("sqlite:///", "sqlite://"):
        if database_url.startswith(prefix):
            return Path(database_url[len(prefix):])
    return Path(database_url)


def create_table_store(config: VaultConfig) -> TableStore:
    """Build the table store selected by ``config.table_backend``."""
    if config.table_backend == TableBackend.POSTGRES:
        from tablevault.stores.postgres_tables import PostgresTableStore

        if not config.database_url:
            raise ConfigurationError("Postgres table backend requires database_url")
        return PostgresTableStore(config.database_url)

    from tablevault.stores.sqlite_tables import SQLiteTableStore

    return SQLiteTableStore(
        _sqlite_path(config.database_url, config.catalog_path.parent / "tables.db")
    )


def create_object_store(config: VaultConfig) -> ObjectStore:
    """Build the object store selected by ``config.object_backend``."""
    if config.object_backend == ObjectBackend.S3:
        from tablevault.stores.s3 import S3ObjectStore

        if not config.bucket:
            raise ConfigurationError("S3 object backend requires a bucket")
        return S3ObjectStore(
            config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
        )

    from tablevault.stores.local import LocalObjectStore

    return LocalObjectStore(config.storage_path)


async def initialize_vault_state(
    config: VaultConfig,
    *,
    table_store: TableStore | None = None,
    object_store: ObjectStore | None = None,
) -> VaultState:
    """
    Initialize runtime state for backup and restore operations.

    Creates necessary directories, initializes the catalog schema,
    and builds the default stores unless they are supplied. Backups and
    restores still ``pending`` or ``in_progress`` from a previous process
    are marked failed, since their jobs died with it.

    Args:
        config: TableVault configuration
        table_store: Store for the live tables (default: from config)
        object_store: Store for backup envelopes (default: from config)

    Returns:
        Initialized VaultState dictionary
    """
    config.catalog_path.parent.mkdir(parents=True, exist_ok=True)
    await init_catalog_db(config.catalog_path)

    async with aiosqlite.connect(config.catalog_path) as db:
        backups_failed, restores_failed = await fail_interrupted_jobs(db)
    if backups_failed or restores_failed:
        logger.warning(
            "interrupted_jobs_failed",
            backups=backups_failed,
            restores=restores_failed,
        )

    state = VaultState(
        catalog_db_path=config.catalog_path,
        table_store=table_store or create_table_store(config),
        object_store=object_store or create_object_store(config),
        jobs=JobRunner(),
        started_at=datetime.now(UTC),
        last_backup_at=None,
        total_backups=0,
        total_restores=0,
        total_records_restored=0,
        total_swept=0,
        last_error=None,
    )

    logger.info(
        "vault_state_initialized",
        catalog=str(config.catalog_path),
        object_backend=config.object_backend.value,
        table_backend=config.table_backend.value,
    )
    return state


async def get_metrics(config: VaultConfig, state: VaultState) -> VaultMetrics:
    """Get current backup and restore metrics."""
    catalog_backups = 0
    stored_bytes = 0
    try:
        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            stats = await get_catalog_stats(db)
            catalog_backups = stats["total_backups"]
            stored_bytes = stats["total_size_bytes"]
    except Exception as e:
        logger.warning("catalog_stats_unavailable", error=str(e))

    return VaultMetrics(
        total_backups=state["total_backups"],
        total_restores=state["total_restores"],
        total_records_restored=state["total_records_restored"],
        total_swept=state["total_swept"],
        active_jobs=len(state["jobs"].active()),
        last_backup_at=state["last_backup_at"],
        catalog_backups=catalog_backups,
        stored_bytes=stored_bytes,
        last_error=state["last_error"],
    )


async def shutdown_vault_state(state: VaultState) -> None:
    """Cancel outstanding jobs and close stores."""
    await state["jobs"].shutdown()

    for name in ("table_store", "object_store"):
        try:
            await state[name].close()
        except Exception as e:
            logger.warning("store_close_failed", store=name, error=str(e))

    logger.info("vault_state_shutdown_complete")
