# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with TableVault Integration.

This example shows a content platform app with the TableVault admin
endpoints, daily scheduled backups, and retention sweeps.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    AWS_ACCESS_KEY_ID: AWS access key (S3 backend)
    AWS_SECRET_ACCESS_KEY: AWS secret key (S3 backend)
    TABLEVAULT_BUCKET: Bucket for backup envelopes (omit for local storage)
    DATABASE_URL: PostgreSQL URL or SQLite path of the live tables
    TABLEVAULT_ADMIN_API_KEY: API key for admin endpoints
"""

import os
from pathlib import Path

import structlog
from fastapi import FastAPI

from tablevault.builder import (
    build_config,
    create_empty_config,
    enable_compression,
    retain_backups_for,
    run_daily_at,
    with_catalog,
    with_local_storage,
    with_postgres_tables,
    with_s3_bucket,
    with_sqlite_tables,
)
from tablevault.integrations.fastapi import setup_vault_plugin

logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title="Content Platform with TableVault",
    description="Example application demonstrating table backups and restores",
    version="1.0.0",
)


def create_vault_config():
    """
    Create TableVault configuration from environment variables.

    This uses the functional builder pattern for clean, composable configuration.
    """
    bucket = os.getenv("TABLEVAULT_BUCKET")
    region = os.getenv("AWS_REGION", "us-east-1")
    database_url = os.getenv("DATABASE_URL")
    data_dir = Path(os.getenv("TABLEVAULT_DATA_DIR", "./tablevault_data"))

    config = create_empty_config()

    # Envelopes go to S3 when a bucket is configured, else to local disk
    if bucket:
        config = with_s3_bucket(config, bucket, region)
    else:
        config = with_local_storage(config, data_dir / "objects")

    if database_url and database_url.startswith(("postgres://", "postgresql://")):
        config = with_postgres_tables(config, database_url)
    else:
        config = with_sqlite_tables(config, database_url or data_dir / "app.db")

    config = with_catalog(config, data_dir / "catalog.db")

    # Keep backups for two weeks, compressed
    config = retain_backups_for(config, 14)
    config = enable_compression(config)

    # Daily backup and sweep at 2:30 AM UTC
    config = run_daily_at(config, "02:30")

    return build_config(config)


# Initialize configuration
try:
    vault_config = create_vault_config()
except Exception as e:
    logger.error("vault_config_failed", error=str(e))
    # Use minimal local config for development
    vault_config = build_config(
        with_local_storage(create_empty_config(), Path("./tablevault_data/objects"))
    )

# Setup TableVault plugin
setup_vault_plugin(app, vault_config)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to the Content Platform",
        "docs": "/docs",
        "backups_admin": "/admin/backups/health",
    }


# ============================================================================
# TableVault Admin Endpoints (auto-registered by plugin)
# ============================================================================
#
# GET    /admin/backups                       - List backups
# POST   /admin/backups                       - Create a backup
# GET    /admin/backups/{backup_id}           - Backup status
# DELETE /admin/backups/{backup_id}           - Delete a backup
# POST   /admin/backups/{backup_id}/restore   - Restore (or dry run)
# GET    /admin/backups/restores              - List restores
# GET    /admin/backups/restores/{restore_id} - Restore status
# POST   /admin/backups/jobs/{id}/cancel      - Cancel a running job
# POST   /admin/backups/cleanup               - Sweep expired backups
# GET    /admin/backups/stats                 - Catalog statistics
# GET    /admin/backups/metrics               - Runtime metrics
# GET    /admin/backups/health                - Health check
# GET    /admin/backups/config                - Configuration (redacted)
#
# All admin endpoints require: Authorization: Bearer <TABLEVAULT_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
