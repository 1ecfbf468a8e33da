# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault FastAPI Integration - Plugin for FastAPI applications.

This module provides a complete integration with FastAPI including:
- Lifespan management (startup/shutdown)
- Protected admin endpoints for backups and restores
- Scheduled daily backups and retention sweeps
- Health checks
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC
from typing import List

import aiosqlite
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from tablevault.backup.restore import restore_from_backup
from tablevault.backup.retention import (
    cleanup_expired_backups,
    get_backup_stats,
    run_scheduled_backup,
)
from tablevault.catalog.operations import (
    create_backup,
    delete_backup,
    get_backup,
    get_restore,
    list_backups,
    list_restores,
)
from tablevault.config import VaultConfig
from tablevault.core import (
    VaultState,
    get_metrics,
    initialize_vault_state,
    shutdown_vault_state,
)
from tablevault.exceptions import (
    BackupInProgressError,
    BackupNotRestorableError,
    CatalogError,
)

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


class CreateBackupRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    type: str = "full"
    tables: List[str] | None = None
    retention_days: int | None = None
    created_by: str = "admin"


class CreateRestoreRequest(BaseModel):
    tables: List[str] | None = None
    dry_run: bool = False
    initiated_by: str = "admin"


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the TABLEVAULT_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("TABLEVAULT_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="TABLEVAULT_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_vault_routes(
    app: FastAPI,
    config: VaultConfig,
    prefix: str = "/admin/backups",
) -> None:
    """
    Register TableVault admin endpoints on a FastAPI app.

    Handlers read the runtime state from ``app.state`` at request time,
    so routes can be registered before startup. All endpoints require
    Bearer token authentication.

    Args:
        app: FastAPI application
        config: TableVault configuration
        prefix: URL prefix for endpoints (default: /admin/backups)
    """
    auth = [Depends(verify_api_key)]

    def state_of(request: Request) -> VaultState:
        state = getattr(request.app.state, "tablevault_state", None)
        if not state:
            raise HTTPException(status_code=503, detail="TableVault not initialized")
        return state

    @app.get(prefix, dependencies=auth)
    async def list_backup_jobs(
        request: Request,
        status: str | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        """
        List backups, newest first.

        Args:
            status: Filter by status
            type: Filter by backup type
            limit: Page size
            offset: Records to skip
        """
        state = state_of(request)
        try:
            async with aiosqlite.connect(state["catalog_db_path"]) as db:
                records, total = await list_backups(
                    db, status=status, backup_type=type, limit=limit, offset=offset
                )
        except CatalogError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return {"backups": records, "total": total, "limit": limit, "offset": offset}

    @app.post(prefix, dependencies=auth, status_code=202)
    async def create_backup_job(request: Request, body: CreateBackupRequest) -> dict:
        """
        Create a backup. Export runs in the background.
        """
        state = state_of(request)
        try:
            return await create_backup(
                config,
                state,
                body.created_by,
                name=body.name,
                description=body.description,
                backup_type=body.type,
                tables=body.tables,
                retention_days=body.retention_days,
            )
        except CatalogError as e:
            raise HTTPException(status_code=400, detail=e.message)

    @app.get(f"{prefix}/stats", dependencies=auth)
    async def get_stats(request: Request) -> dict:
        """
        Get catalog statistics.
        """
        state = state_of(request)
        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            return await get_backup_stats(db)

    @app.get(f"{prefix}/metrics", dependencies=auth)
    async def get_vault_metrics(request: Request) -> dict:
        """
        Get runtime metrics.
        """
        metrics = await get_metrics(config, state_of(request))
        result = asdict(metrics)
        result["last_backup_at"] = (
            metrics.last_backup_at.isoformat() if metrics.last_backup_at else None
        )
        return result

    @app.post(f"{prefix}/cleanup", dependencies=auth)
    async def trigger_cleanup(request: Request) -> dict:
        """
        Remove expired backups now.
        """
        swept = await cleanup_expired_backups(config, state_of(request))
        return {"deleted": swept}

    @app.get(f"{prefix}/restores", dependencies=auth)
    async def list_restore_jobs(
        request: Request,
        backup_id: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        """
        List restores, newest first.
        """
        state = state_of(request)
        try:
            async with aiosqlite.connect(state["catalog_db_path"]) as db:
                records, total = await list_restores(
                    db, backup_id=backup_id, status=status, limit=limit, offset=offset
                )
        except CatalogError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return {"restores": records, "total": total, "limit": limit, "offset": offset}

    @app.get(f"{prefix}/restores/{{restore_id}}", dependencies=auth)
    async def get_restore_job(request: Request, restore_id: str) -> dict:
        """
        Get a restore record.
        """
        state = state_of(request)
        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            record = await get_restore(db, restore_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Restore not found")
        return record

    @app.post(f"{prefix}/jobs/{{record_id}}/cancel", dependencies=auth)
    async def cancel_job(request: Request, record_id: str) -> dict:
        """
        Cancel a running export or restore job.
        """
        return {"cancelled": state_of(request)["jobs"].cancel(record_id)}

    @app.get(f"{prefix}/health", dependencies=auth)
    async def health_check(request: Request) -> dict:
        """
        Health check endpoint.

        Verifies catalog, object store, and table store connectivity.
        """
        state = state_of(request)

        catalog_ok = state["catalog_db_path"].exists()

        objects_ok = True
        objects_error = None
        ping = getattr(state["object_store"], "ping", None)
        if ping is not None:
            try:
                await ping()
            except Exception as e:
                objects_ok = False
                objects_error = str(e)

        tables_ok = True
        tables_error = None
        ping = getattr(state["table_store"], "ping", None)
        if ping is not None:
            try:
                await ping()
            except Exception as e:
                tables_ok = False
                tables_error = str(e)

        checks = [catalog_ok, objects_ok, tables_ok]
        status = "healthy"
        if not all(checks):
            status = "degraded"
        if not any(checks):
            status = "unhealthy"

        return {
            "status": status,
            "catalog_accessible": catalog_ok,
            "object_store_reachable": objects_ok,
            "object_store_error": objects_error,
            "table_store_reachable": tables_ok,
            "table_store_error": tables_error,
            "active_jobs": len(state["jobs"].active()),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=auth)
    async def get_config() -> dict:
        """
        Get current configuration (connection strings redacted).
        """
        return {
            "object_backend": config.object_backend.value,
            "bucket": config.bucket,
            "region": config.region,
            "key_prefix": config.key_prefix,
            "table_backend": config.table_backend.value,
            "database_configured": config.database_url is not None,
            "core_tables": config.core_tables,
            "all_tables": config.all_tables,
            "row_cap": config.row_cap,
            "batch_size": config.batch_size,
            "default_retention_days": config.default_retention_days,
            "keep_expired_records": config.keep_expired_records,
            "compress_backups": config.compress_backups,
            "strict": config.strict,
            "schedule_cron": config.schedule_cron,
        }

    @app.get(f"{prefix}/{{backup_id}}", dependencies=auth)
    async def get_backup_job(request: Request, backup_id: str) -> dict:
        """
        Get a backup record.
        """
        state = state_of(request)
        async with aiosqlite.connect(state["catalog_db_path"]) as db:
            record = await get_backup(db, backup_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Backup not found")
        return record

    @app.delete(f"{prefix}/{{backup_id}}", dependencies=auth)
    async def delete_backup_job(request: Request, backup_id: str) -> dict:
        """
        Delete a backup and its envelope. Deleting a missing backup is a no-op.
        """
        try:
            deleted = await delete_backup(config, state_of(request), backup_id)
        except BackupInProgressError as e:
            raise HTTPException(status_code=409, detail=e.message)
        return {"deleted": deleted}

    @app.post(f"{prefix}/{{backup_id}}/restore", dependencies=auth, status_code=202)
    async def create_restore_job(
        request: Request,
        backup_id: str,
        body: CreateRestoreRequest,
    ) -> dict:
        """
        Restore a completed backup. Processing runs in the background.
        """
        try:
            return await restore_from_backup(
                config,
                state_of(request),
                backup_id,
                body.initiated_by,
                tables=body.tables,
                dry_run=body.dry_run,
            )
        except BackupNotRestorableError as e:
            status_code = 409 if "status" in e.details else 404
            raise HTTPException(status_code=status_code, detail=e.message)
        except CatalogError as e:
            raise HTTPException(status_code=400, detail=e.message)


def setup_vault_plugin(
    app: FastAPI,
    config: VaultConfig,
    prefix: str = "/admin/backups",
) -> None:
    """
    Set up TableVault plugin with lifespan management.

    This is the main entry point for integrating TableVault with a FastAPI app.
    It sets up:
    - Startup/shutdown lifecycle events
    - Admin endpoints
    - Scheduled tasks if configured

    Args:
        app: FastAPI application
        config: TableVault configuration
        prefix: URL prefix for admin endpoints
    """
    app.state.tablevault_config = config
    app.state.tablevault_state = None
    app.state.tablevault_scheduler = None

    register_vault_routes(app, config, prefix)

    @app.on_event("startup")
    async def startup():
        """Initialize TableVault on app startup."""
        await _start(app, config)

    @app.on_event("shutdown")
    async def shutdown():
        """Cleanup TableVault on app shutdown."""
        await _stop(app)


async def _start(app: FastAPI, config: VaultConfig) -> VaultState:
    logger.info(
        "tablevault_plugin_starting",
        object_backend=config.object_backend.value,
        table_backend=config.table_backend.value,
    )

    state = await initialize_vault_state(config)
    app.state.tablevault_state = state
    app.state.tablevault_config = config

    if config.schedule_cron:
        app.state.tablevault_scheduler = _setup_scheduled_tasks(config, state)

    logger.info("tablevault_plugin_started")
    return state


async def _stop(app: FastAPI) -> None:
    logger.info("tablevault_plugin_stopping")

    scheduler = getattr(app.state, "tablevault_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        app.state.tablevault_scheduler = None

    state = getattr(app.state, "tablevault_state", None)
    if state:
        await shutdown_vault_state(state)

    logger.info("tablevault_plugin_stopped")


def _setup_scheduled_tasks(config: VaultConfig, state: VaultState) -> AsyncIOScheduler | None:
    """Set up APScheduler for the daily backup and retention sweep."""
    try:
        scheduler = AsyncIOScheduler()

        # Parse HH:MM format
        hour, minute = map(int, config.schedule_cron.split(":"))

        async def scheduled_backup():
            """Run the daily backup."""
            logger.info("scheduled_backup_starting")
            try:
                await run_scheduled_backup(config, state)
            except Exception as e:
                logger.error("scheduled_backup_failed", error=str(e))

        async def scheduled_cleanup():
            """Run the retention sweep."""
            logger.info("scheduled_cleanup_starting")
            try:
                swept = await cleanup_expired_backups(config, state)
                logger.info("scheduled_cleanup_completed", swept=swept)
            except Exception as e:
                logger.error("scheduled_cleanup_failed", error=str(e))

        scheduler.add_job(
            scheduled_backup,
            trigger=CronTrigger(hour=hour, minute=minute, timezone="UTC"),
            id="tablevault_scheduled_backup",
            replace_existing=True,
        )
        # Sweep an hour after the backup so the two never contend
        scheduler.add_job(
            scheduled_cleanup,
            trigger=CronTrigger(hour=(hour + 1) % 24, minute=minute, timezone="UTC"),
            id="tablevault_cleanup",
            replace_existing=True,
        )
        scheduler.start()

        logger.info("scheduler_started", schedule=config.schedule_cron)
        return scheduler

    except Exception as e:
        logger.error("scheduler_setup_failed", error=str(e))
        return None


@asynccontextmanager
async def vault_lifespan(app: FastAPI, config: VaultConfig, prefix: str = "/admin/backups"):
    """
    Alternative lifespan context manager for FastAPI.

    Use this instead of setup_vault_plugin if you prefer the
    lifespan pattern:

        app = FastAPI(lifespan=lambda app: vault_lifespan(app, config))

    Args:
        app: FastAPI application
        config: TableVault configuration
        prefix: URL prefix for admin endpoints
    """
    register_vault_routes(app, config, prefix)
    await _start(app, config)

    try:
        yield
    finally:
        await _stop(app)


def get_vault_state(app: FastAPI) -> VaultState:
    """
    Get TableVault state from a FastAPI app.

    Useful for accessing state in custom endpoints.

    Raises:
        RuntimeError: If TableVault not initialized
    """
    state = getattr(app.state, "tablevault_state", None)
    if not state:
        raise RuntimeError("TableVault not initialized. Call setup_vault_plugin first.")
    return state


def get_vault_config(app: FastAPI) -> VaultConfig:
    """
    Get TableVault config from a FastAPI app.

    Raises:
        RuntimeError: If TableVault not initialized
    """
    config = getattr(app.state, "tablevault_config", None)
    if not config:
        raise RuntimeError("TableVault not initialized. Call setup_vault_plugin first.")
    return config
