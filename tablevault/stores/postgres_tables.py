# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PostgreSQL table store backed by an asyncpg pool.

Rows travel as JSON in both directions: ``row_to_json`` on export and
``jsonb_populate_recordset`` on restore. Postgres does the type mapping,
so timestamps, UUIDs, and JSONB columns survive a round trip through the
envelope without per-column casting here.
"""

import asyncio
import json
from typing import Any, List

import asyncpg
import structlog

from tablevault.exceptions import StoreError
from tablevault.stores.base import Row
from tablevault.tables import is_valid_table_name

logger = structlog.get_logger()


def _quote(table: str) -> str:
    if not is_valid_table_name(table):
        raise StoreError(f"Invalid table name: {table!r}", details={"table": table})
    return f'"{table}"'


class PostgresTableStore:
    """``TableStore`` over a PostgreSQL database."""

    def __init__(self, database_url: str, min_size: int = 1, max_size: int = 5) -> None:
        self.database_url = database_url
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None
        self._lock = asyncio.Lock()

    async def _get_pool(self) -> asyncpg.Pool:
        """Create the pool on first use."""
        if self._pool is None:
            async with self._lock:
                if self._pool is None:
                    self._pool = await asyncpg.create_pool(
                        self.database_url,
                        min_size=self._min_size,
                        max_size=self._max_size,
                    )
                    logger.info("postgres_pool_created", max_size=self._max_size)
        return self._pool

    async def select(self, table: str, limit: int) -> List[Row]:
        quoted = _quote(table)
        try:
            pool = await self._get_pool()
            records = await pool.fetch(
                f"SELECT row_to_json(t)::text FROM (SELECT * FROM {quoted} LIMIT $1) t",
                limit,
            )
            return [json.loads(r[0]) for r in records]
        except Exception as e:
            raise StoreError(
                f"Failed to select from {table}: {e}",
                details={"table": table},
            )

    async def insert(self, table: str, rows: List[Row]) -> None:
        if not rows:
            return
        quoted = _quote(table)
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        f"INSERT INTO {quoted} "
                        f"SELECT * FROM jsonb_populate_recordset(NULL::{quoted}, $1::jsonb)",
                        json.dumps(rows, default=str),
                    )
        except Exception as e:
            raise StoreError(
                f"Failed to insert into {table}: {e}",
                details={"table": table, "rows": len(rows)},
            )

    async def delete_all(self, table: str) -> None:
        quoted = _quote(table)
        try:
            pool = await self._get_pool()
            await pool.execute(f"DELETE FROM {quoted}")
        except Exception as e:
            raise StoreError(
                f"Failed to delete rows from {table}: {e}",
                details={"table": table},
            )

    async def count(self, table: str) -> int:
        quoted = _quote(table)
        try:
            pool = await self._get_pool()
            value: Any = await pool.fetchval(f"SELECT COUNT(*) FROM {quoted}")
            return int(value or 0)
        except Exception as e:
            raise StoreError(
                f"Failed to count rows in {table}: {e}",
                details={"table": table},
            )

    async def ping(self) -> None:
        pool = await self._get_pool()
        await pool.fetchval("SELECT 1")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
