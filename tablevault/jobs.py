# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Job Runner - Background tasks for export and restore jobs.

Callers that create a backup or restore record get the record back
immediately. Processing continues in an asyncio task tracked here, so
completion, failure, and cancellation are observable through a handle
instead of only by polling the catalog.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Coroutine, Dict, List

import structlog

logger = structlog.get_logger()


@dataclass
class JobHandle:
    """Handle to a spawned export or restore job."""

    kind: str  # export, restore, restore_plan
    record_id: str
    task: asyncio.Task
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def done(self) -> bool:
        return self.task.done()

    def cancelled(self) -> bool:
        return self.task.cancelled()

    def exception(self) -> BaseException | None:
        """Return the job's exception, or None if it succeeded or is still running."""
        if not self.task.done() or self.task.cancelled():
            return None
        return self.task.exception()

    def result(self) -> Any:
        return self.task.result()

    async def wait(self) -> Any:
        """Wait for the job and return its result. Job errors are re-raised."""
        return await asyncio.shield(self.task)


class JobRunner:
    """
    Spawns and tracks background jobs keyed by record id.

    Finished handles stay available through ``get`` until more than
    ``keep_finished`` of them have piled up; the oldest are then dropped.
    The catalog remains the record of every job's outcome.
    """

    def __init__(self, keep_finished: int = 100) -> None:
        self.keep_finished = keep_finished
        self._jobs: Dict[str, JobHandle] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def spawn(
        self,
        kind: str,
        record_id: str,
        coro: Coroutine[Any, Any, Any],
    ) -> JobHandle:
        """
        Start a job in the background.

        Args:
            kind: Job kind, used in logs
            record_id: Backup or restore record id
            coro: Coroutine that processes the record

        Returns:
            JobHandle for the new task
        """
        task = asyncio.create_task(coro, name=f"tablevault-{kind}-{record_id}")
        handle = JobHandle(kind=kind, record_id=record_id, task=task)
        self._jobs[record_id] = handle
        task.add_done_callback(lambda t: self._on_done(handle))

        logger.info("job_spawned", kind=kind, record_id=record_id)
        return handle

    def _on_done(self, handle: JobHandle) -> None:
        self.forget_finished(keep=self.keep_finished)

        if handle.task.cancelled():
            logger.warning("job_cancelled", kind=handle.kind, record_id=handle.record_id)
            return

        error = handle.task.exception()
        if error is not None:
            logger.error(
                "job_failed",
                kind=handle.kind,
                record_id=handle.record_id,
                error=str(error),
            )
        else:
            logger.info("job_finished", kind=handle.kind, record_id=handle.record_id)

    def get(self, record_id: str) -> JobHandle | None:
        return self._jobs.get(record_id)

    def active(self) -> List[JobHandle]:
        """Jobs that have not finished yet."""
        return [h for h in self._jobs.values() if not h.done()]

    def cancel(self, record_id: str) -> bool:
        """
        Request cancellation of a running job.

        Returns:
            True if a running job was found and cancellation requested
        """
        handle = self._jobs.get(record_id)
        if handle is None or handle.done():
            return False
        handle.task.cancel()
        return True

    def forget_finished(self, keep: int = 0) -> int:
        """
        Drop handles of finished jobs, oldest first.

        Args:
            keep: Number of most recently spawned finished handles to retain

        Returns:
            How many handles were dropped
        """
        finished = [rid for rid, h in self._jobs.items() if h.done()]
        dropped = finished[: max(len(finished) - keep, 0)]
        for rid in dropped:
            del self._jobs[rid]
        return len(dropped)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel outstanding jobs and wait for them to settle."""
        pending = self.active()
        for handle in pending:
            handle.task.cancel()

        if pending:
            await asyncio.wait([h.task for h in pending], timeout=timeout)

        logger.info("job_runner_shutdown", cancelled=len(pending))
