# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Collaborator contracts for the backup core.

The exporter and restore engine only talk to these two protocols:
a table-oriented relational store for live rows and an object store
for backup envelopes.
"""

from typing import Any, Dict, List, Protocol


Row = Dict[str, Any]


class TableStore(Protocol):
    """Table-oriented access to the live platform tables."""

    async def select(self, table: str, limit: int) -> List[Row]:
        """Return up to ``limit`` rows of all columns from ``table``."""
        ...

    async def insert(self, table: str, rows: List[Row]) -> None:
        """Insert ``rows`` into ``table`` as one unit. Raises on failure."""
        ...

    async def delete_all(self, table: str) -> None:
        """Delete every row in ``table``."""
        ...

    async def count(self, table: str) -> int:
        """Return the number of rows in ``table``."""
        ...

    async def close(self) -> None:
        ...


class ObjectStore(Protocol):
    """Blob storage for backup envelopes, addressed by path."""

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        """Write (or overwrite) the object at ``path``."""
        ...

    async def get(self, path: str) -> bytes:
        """Read the object at ``path``. Raises ObjectStoreError if missing."""
        ...

    async def delete(self, path: str) -> None:
        """Delete the object at ``path``. Missing objects are not an error."""
        ...

    async def close(self) -> None:
        ...
