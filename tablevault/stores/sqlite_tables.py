# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SQLite table store.

Reads and writes live tables in a SQLite database through aiosqlite.
Used for single-node deployments and as the real collaborator in tests.
"""

import json
from itertools import groupby
from pathlib import Path
from typing import Any, List

import aiosqlite

from tablevault.exceptions import StoreError
from tablevault.stores.base import Row
from tablevault.tables import is_valid_table_name


def _quote(table: str) -> str:
    if not is_valid_table_name(table):
        raise StoreError(f"Invalid table name: {table!r}", details={"table": table})
    return f'"{table}"'


def _bind_value(value: Any) -> Any:
    """SQLite cannot bind containers; store them as JSON text."""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class SQLiteTableStore:
    """``TableStore`` over a SQLite database file."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)

    async def select(self, table: str, limit: int) -> List[Row]:
        query = f"SELECT * FROM {_quote(table)} LIMIT ?"
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(query, (limit,)) as cursor:
                    return [dict(row) async for row in cursor]
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(
                f"Failed to select from {table}: {e}",
                details={"table": table},
            )

    async def insert(self, table: str, rows: List[Row]) -> None:
        if not rows:
            return

        quoted = _quote(table)

        def columns_of(row: Row) -> tuple:
            return tuple(row.keys())

        try:
            async with aiosqlite.connect(self.db_path) as db:
                try:
                    for columns, group in groupby(rows, key=columns_of):
                        for column in columns:
                            if not is_valid_table_name(column):
                                raise StoreError(
                                    f"Invalid column name: {column!r}",
                                    details={"table": table},
                                )
                        column_list = ", ".join(f'"{c}"' for c in columns)
                        placeholders = ", ".join("?" for _ in columns)
                        await db.executemany(
                            f"INSERT INTO {quoted} ({column_list}) VALUES ({placeholders})",
                            [tuple(_bind_value(r[c]) for c in columns) for r in group],
                        )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(
                f"Failed to insert into {table}: {e}",
                details={"table": table, "rows": len(rows)},
            )

    async def delete_all(self, table: str) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(f"DELETE FROM {_quote(table)}")
                await db.commit()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(
                f"Failed to delete rows from {table}: {e}",
                details={"table": table},
            )

    async def count(self, table: str) -> int:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(f"SELECT COUNT(*) FROM {_quote(table)}") as cursor:
                    row = await cursor.fetchone()
                    return row[0] if row else 0
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(
                f"Failed to count rows in {table}: {e}",
                details={"table": table},
            )

    async def close(self) -> None:
        return None
