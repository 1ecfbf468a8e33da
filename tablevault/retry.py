# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retry helper for store and object store calls.

Each attempt runs under a timeout. Failed attempts are retried with
exponential backoff. Cancellation is never retried.
"""

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import structlog

from tablevault.config import VaultConfig

logger = structlog.get_logger()

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int = 4,
    timeout_seconds: float = 30.0,
    backoff_seconds: float = 0.5,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Run an async operation with per-attempt timeout and retries.

    Args:
        operation: Zero-argument callable returning a fresh awaitable
        name: Operation name used in log events
        attempts: Total attempts (at least 1)
        timeout_seconds: Timeout applied to each attempt
        backoff_seconds: Delay before the second attempt, doubled after
        retry_on: Exception types considered transient

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted
    """
    attempts = max(1, attempts)
    delay = backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_seconds)
        except retry_on as e:
            if attempt >= attempts:
                logger.error(
                    "operation_retries_exhausted",
                    operation=name,
                    attempts=attempt,
                    error=str(e) or type(e).__name__,
                )
                raise

            logger.warning(
                "operation_retrying",
                operation=name,
                attempt=attempt,
                delay=delay,
                error=str(e) or type(e).__name__,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            delay *= 2

    raise RuntimeError("unreachable")  # pragma: no cover


def retrying(config: VaultConfig) -> Callable[..., Awaitable]:
    """
    Bind retry settings from a config.

    Usage:
        retry = retrying(config)
        rows = await retry(lambda: store.select("posts", 10), name="select:posts")
    """

    async def _call(operation: Callable[[], Awaitable[T]], *, name: str) -> T:
        return await call_with_retry(
            operation,
            name=name,
            attempts=config.max_retries + 1,
            timeout_seconds=config.operation_timeout_seconds,
            backoff_seconds=config.retry_backoff_seconds,
        )

    return _call
