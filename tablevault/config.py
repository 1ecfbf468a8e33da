# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while jobs are running.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import re

from tablevault.tables import ALL_TABLES, CORE_TABLES, is_valid_table_name


class BackupType(str, Enum):
    """Backup scope. Incremental is a label only and resolves like selective."""

    FULL = "full"
    INCREMENTAL = "incremental"
    SELECTIVE = "selective"


class BackupStatus(str, Enum):
    """Lifecycle status of a backup record."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class RestoreStatus(str, Enum):
    """Lifecycle status of a restore record."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class ObjectBackend(str, Enum):
    """Where backup envelopes are stored."""

    S3 = "s3"
    LOCAL = "local"


class TableBackend(str, Enum):
    """Which relational store holds the live tables."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_cron_time(time_str: str) -> bool:
    """Validate HH:MM time format."""
    if not time_str:
        return False
    try:
        parts = time_str.split(":")
        if len(parts) != 2:
            return False
        hour, minute = int(parts[0]), int(parts[1])
        return 0 <= hour <= 23 and 0 <= minute <= 59
    except (ValueError, AttributeError):
        return False


@dataclass(frozen=True)
class VaultConfig:
    """
    Immutable configuration for backup and restore jobs.

    Defaults match the platform's historical behavior: 100,000 row read
    cap, 100-row restore batches, 30-day retention.
    """

    # Object store backend for envelopes
    object_backend: ObjectBackend = ObjectBackend.LOCAL

    # S3 bucket (required when object_backend is s3)
    bucket: str | None = None

    # AWS region
    region: str = "us-east-1"

    # Custom S3 endpoint (MinIO, LocalStack, Supabase storage)
    endpoint_url: str | None = None

    # Root directory for the local object backend
    storage_path: Path = field(default_factory=lambda: Path("./tablevault_data/objects"))

    # Object key prefix for envelopes
    key_prefix: str = "backups/"

    # Relational store holding the live tables
    table_backend: TableBackend = TableBackend.SQLITE

    # SQLite file path or Postgres URL for the live tables
    database_url: str | None = None

    # SQLite database for the backup/restore catalog
    catalog_path: Path = field(default_factory=lambda: Path("./tablevault_data/catalog.db"))

    # Table sets used by the resolver
    core_tables: List[str] = field(default_factory=lambda: list(CORE_TABLES))
    all_tables: List[str] = field(default_factory=lambda: list(ALL_TABLES))

    # Maximum rows read per table during export
    row_cap: int = 100_000

    # Rows per insert batch during restore
    batch_size: int = 100

    # Retention window for new backups
    default_retention_days: int = 30

    # Keep swept backups in the catalog as 'expired' instead of deleting them
    keep_expired_records: bool = False

    # Compress envelopes with zstd before upload
    compress_backups: bool = False

    # Fail the whole job on any table or batch error instead of skipping it
    strict: bool = False

    # Per-call timeout for store and object store operations
    operation_timeout_seconds: float = 30.0

    # Upper bound for a whole export or restore job
    job_timeout_seconds: float = 3600.0

    # Retries for transient store failures
    max_retries: int = 3

    # Initial backoff between retries, doubled on each attempt
    retry_backoff_seconds: float = 0.5

    # Daily schedule in HH:MM format (UTC) for the FastAPI plugin
    schedule_cron: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if self.object_backend == ObjectBackend.S3:
            if not self.bucket or not _validate_bucket_name(self.bucket):
                errors.append(f"Invalid bucket name: {self.bucket}")

        if self.table_backend == TableBackend.POSTGRES and not self.database_url:
            errors.append("database_url required when table_backend is postgres")

        if self.key_prefix and not self.key_prefix.endswith("/"):
            errors.append(f"key_prefix must end with '/', got {self.key_prefix!r}")

        invalid = [t for t in [*self.core_tables, *self.all_tables] if not is_valid_table_name(t)]
        if invalid:
            errors.append(f"Invalid table names: {invalid}")

        if not self.core_tables:
            errors.append("core_tables must not be empty")

        missing = [t for t in self.core_tables if t not in self.all_tables]
        if missing:
            errors.append(f"all_tables must include every core table, missing: {missing}")
        elif len(set(self.all_tables)) <= len(set(self.core_tables)):
            errors.append("all_tables must be a strict superset of core_tables")

        if self.row_cap < 1:
            errors.append(f"row_cap must be >= 1, got {self.row_cap}")

        if self.batch_size < 1:
            errors.append(f"batch_size must be >= 1, got {self.batch_size}")

        if self.default_retention_days < 0:
            errors.append(
                f"default_retention_days must be >= 0, got {self.default_retention_days}"
            )

        if self.operation_timeout_seconds <= 0:
            errors.append(
                f"operation_timeout_seconds must be > 0, got {self.operation_timeout_seconds}"
            )

        if self.job_timeout_seconds <= 0:
            errors.append(f"job_timeout_seconds must be > 0, got {self.job_timeout_seconds}")

        if self.max_retries < 0:
            errors.append(f"max_retries must be >= 0, got {self.max_retries}")

        if self.retry_backoff_seconds < 0:
            errors.append(
                f"retry_backoff_seconds must be >= 0, got {self.retry_backoff_seconds}"
            )

        if self.schedule_cron and not _validate_cron_time(self.schedule_cron):
            errors.append(f"Invalid schedule_cron format: {self.schedule_cron}, expected HH:MM")

        if errors:
            from tablevault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "VaultConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return VaultConfig(**current)
