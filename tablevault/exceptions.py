# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
TableVault Exceptions - Custom exceptions for the tablevault package.
"""


class TableVaultError(Exception):
    """Base exception for all TableVault errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(TableVaultError):
    """Raised when configuration is invalid."""

    pass


class CatalogError(TableVaultError):
    """Raised when catalog operations fail."""

    pass


class BackupInProgressError(CatalogError):
    """Raised when deleting a backup that an exporter is still writing."""

    pass


class BackupNotRestorableError(CatalogError):
    """Raised when a restore references a missing or incomplete backup."""

    pass


class BackupError(TableVaultError):
    """Raised when backup operations fail."""

    pass


class RestoreError(TableVaultError):
    """Raised when restore operations fail."""

    pass


class EnvelopeError(TableVaultError):
    """Raised when a backup envelope cannot be encoded or decoded."""

    pass


class StoreError(TableVaultError):
    """Raised when relational table store operations fail."""

    pass


class ObjectStoreError(TableVaultError):
    """Raised when object store operations fail."""

    pass
