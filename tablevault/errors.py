# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for TableVault.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_bucket_env() -> str:
    """
    Explain that the S3 bucket environment variable is missing.
    """

    return (
        "S3 object backend selected but no bucket is configured. "
        "Set TABLEVAULT_BUCKET or pass bucket=... to create_config()."
    )


def explain_missing_database_url_env() -> str:
    """
    Explain that the Postgres table backend needs a connection URL.
    """

    return (
        "Postgres table backend selected but DATABASE_URL is not set. "
        "Set DATABASE_URL or switch TABLEVAULT_TABLE_BACKEND to 'sqlite'."
    )


def explain_invalid_int_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a non-negative integer."
    )


def explain_invalid_float_env(name: str, value: str | None) -> str:
    """
    Explain that a numeric environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a non-negative number of seconds."
    )


def explain_invalid_object_backend_env(value: str | None) -> str:
    """
    Explain that TABLEVAULT_OBJECT_BACKEND is invalid.
    """

    return (
        f"Invalid TABLEVAULT_OBJECT_BACKEND value: {value!r}. "
        "Expected 's3' or 'local'."
    )


def explain_invalid_table_backend_env(value: str | None) -> str:
    """
    Explain that TABLEVAULT_TABLE_BACKEND is invalid.
    """

    return (
        f"Invalid TABLEVAULT_TABLE_BACKEND value: {value!r}. "
        "Expected 'sqlite' or 'postgres', or leave unset to infer from DATABASE_URL."
    )
