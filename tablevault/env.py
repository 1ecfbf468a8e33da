# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and profiles.

These helpers are small wrappers around create_config() and
VaultConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made safety profiles
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from tablevault.builder import create_config
from tablevault.config import ObjectBackend, TableBackend, VaultConfig
from tablevault.errors import (
    explain_invalid_float_env,
    explain_invalid_int_env,
    explain_invalid_object_backend_env,
    explain_invalid_table_backend_env,
    explain_missing_bucket_env,
    explain_missing_database_url_env,
)
from tablevault.exceptions import ConfigurationError


def _parse_int(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value)) from exc
    if parsed < 0:
        raise ConfigurationError(explain_invalid_int_env(name, value))
    return parsed


def _parse_float(name: str, value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_float_env(name, value)) from exc
    if parsed < 0:
        raise ConfigurationError(explain_invalid_float_env(name, value))
    return parsed


def _parse_bool(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in ("1", "true", "yes", "on")


def _parse_table_list(value: str | None) -> List[str]:
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


def _parse_object_backend(value: str | None, bucket: str | None) -> ObjectBackend:
    if not value:
        return ObjectBackend.S3 if bucket else ObjectBackend.LOCAL
    try:
        return ObjectBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_object_backend_env(value)) from exc


def _parse_table_backend(value: str | None, db_url: str | None) -> TableBackend:
    if not value:
        if db_url and db_url.lower().startswith(("postgres://", "postgresql://")):
            return TableBackend.POSTGRES
        return TableBackend.SQLITE
    try:
        return TableBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_table_backend_env(value)) from exc


def create_config_from_env() -> VaultConfig:
    """
    Create a VaultConfig from environment variables.

    Optional environment variables:
        - TABLEVAULT_OBJECT_BACKEND: 's3' | 'local' (default: s3 when a bucket is set)
        - TABLEVAULT_BUCKET: S3 bucket for envelopes
        - AWS_REGION: AWS region (default: us-east-1)
        - TABLEVAULT_S3_ENDPOINT_URL: S3-compatible endpoint
        - TABLEVAULT_STORAGE_PATH: Root for the local backend
        - DATABASE_URL: SQLite path or Postgres URL of the live tables
        - TABLEVAULT_TABLE_BACKEND: 'sqlite' | 'postgres' (inferred from DATABASE_URL)
        - TABLEVAULT_CATALOG_PATH: SQLite catalog file
        - TABLEVAULT_CORE_TABLES / TABLEVAULT_ALL_TABLES: Comma-separated overrides
        - TABLEVAULT_RETENTION_DAYS: Default retention (default: 30)
        - TABLEVAULT_ROW_CAP: Rows read per table (default: 100000)
        - TABLEVAULT_BATCH_SIZE: Rows per restore batch (default: 100)
        - TABLEVAULT_COMPRESS: Compress envelopes with zstd
        - TABLEVAULT_STRICT: Fail jobs on any table or batch error
        - TABLEVAULT_KEEP_EXPIRED: Keep swept backups as 'expired' records
        - TABLEVAULT_OPERATION_TIMEOUT / TABLEVAULT_JOB_TIMEOUT: Seconds
        - TABLEVAULT_MAX_RETRIES: Retries for transient failures (default: 3)
        - TABLEVAULT_SCHEDULE_CRON: Daily schedule in HH:MM (UTC)
    """

    bucket = os.getenv("TABLEVAULT_BUCKET")
    object_backend = _parse_object_backend(os.getenv("TABLEVAULT_OBJECT_BACKEND"), bucket)
    if object_backend == ObjectBackend.S3 and not bucket:
        raise ConfigurationError(explain_missing_bucket_env())

    db_url = os.getenv("DATABASE_URL")
    table_backend = _parse_table_backend(os.getenv("TABLEVAULT_TABLE_BACKEND"), db_url)
    if table_backend == TableBackend.POSTGRES and not db_url:
        raise ConfigurationError(explain_missing_database_url_env())

    overrides: dict = {}
    core_tables = _parse_table_list(os.getenv("TABLEVAULT_CORE_TABLES"))
    all_tables = _parse_table_list(os.getenv("TABLEVAULT_ALL_TABLES"))
    if core_tables:
        overrides["core_tables"] = core_tables
    if all_tables:
        overrides["all_tables"] = all_tables

    storage_path_env = os.getenv("TABLEVAULT_STORAGE_PATH")
    catalog_path_env = os.getenv("TABLEVAULT_CATALOG_PATH")

    return create_config(
        bucket=bucket if object_backend == ObjectBackend.S3 else None,
        region=os.getenv("AWS_REGION", "us-east-1"),
        endpoint_url=os.getenv("TABLEVAULT_S3_ENDPOINT_URL"),
        storage_path=Path(storage_path_env) if storage_path_env else None,
        database_url=db_url,
        table_backend=table_backend,
        catalog_path=Path(catalog_path_env) if catalog_path_env else None,
        retention_days=_parse_int(
            "TABLEVAULT_RETENTION_DAYS", os.getenv("TABLEVAULT_RETENTION_DAYS"), 30
        ),
        row_cap=_parse_int("TABLEVAULT_ROW_CAP", os.getenv("TABLEVAULT_ROW_CAP"), 100_000),
        batch_size=_parse_int(
            "TABLEVAULT_BATCH_SIZE", os.getenv("TABLEVAULT_BATCH_SIZE"), 100
        ),
        compress_backups=_parse_bool(os.getenv("TABLEVAULT_COMPRESS")),
        strict=_parse_bool(os.getenv("TABLEVAULT_STRICT")),
        keep_expired_records=_parse_bool(os.getenv("TABLEVAULT_KEEP_EXPIRED")),
        schedule_cron=os.getenv("TABLEVAULT_SCHEDULE_CRON"),
        operation_timeout_seconds=_parse_float(
            "TABLEVAULT_OPERATION_TIMEOUT", os.getenv("TABLEVAULT_OPERATION_TIMEOUT"), 30.0
        ),
        job_timeout_seconds=_parse_float(
            "TABLEVAULT_JOB_TIMEOUT", os.getenv("TABLEVAULT_JOB_TIMEOUT"), 3600.0
        ),
        max_retries=_parse_int(
            "TABLEVAULT_MAX_RETRIES", os.getenv("TABLEVAULT_MAX_RETRIES"), 3
        ),
        **overrides,
    )


# ============================================================================
# Profiles
# ============================================================================

def safe_defaults(config: VaultConfig) -> VaultConfig:
    """
    Apply conservative defaults.

    - Strict mode: any table or batch failure fails the job
    - At least 30 days retention
    """

    return config.with_updates(
        strict=True,
        default_retention_days=max(config.default_retention_days, 30),
    )


def compliance_friendly(config: VaultConfig) -> VaultConfig:
    """
    Apply a compliance-friendly profile.

    - Longer retention (at least 90 days)
    - Compressed envelopes
    - Strict mode so completed backups always mean complete
    """

    return config.with_updates(
        default_retention_days=max(config.default_retention_days, 90),
        compress_backups=True,
        strict=True,
    )
