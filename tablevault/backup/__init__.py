# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Export, restore, and the envelope format between them.

Retention sweeps live in ``tablevault.backup.retention``.
"""

from tablevault.backup.envelope import (
    build_envelope,
    encode_envelope,
    read_envelope,
    Envelope,
)

from tablevault.backup.exporter import (
    process_backup,
    ExportResult,
)

from tablevault.backup.restore import (
    restore_from_backup,
    process_restore,
    plan_restore,
    RestoreOutcome,
)

__all__ = [
    # Envelope
    "build_envelope",
    "encode_envelope",
    "read_envelope",
    "Envelope",
    # Exporter
    "process_backup",
    "ExportResult",
    # Restore
    "restore_from_backup",
    "process_restore",
    "plan_restore",
    "RestoreOutcome",
]
