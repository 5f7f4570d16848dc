"""
Background job runner.

Webhook handlers hand jobs to spawn() and return immediately; each job runs
on its own asyncio task. References to in-flight tasks are kept so they are
not garbage collected and can be drained on shutdown.
"""

import asyncio
import logging
from typing import Set

from threadrouter.services.processor import Processor

logger = logging.getLogger(__name__)


class JobRunner:
    def __init__(self, processor: Processor):
        self.processor = processor
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, job_id: str) -> asyncio.Task:
        """Start processing a job without waiting for it."""
        task = asyncio.create_task(self.processor.run(job_id), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Spawned job {job_id} ({len(self._tasks)} in flight)")
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"{task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{task.get_name()} crashed: {error}", exc_info=error)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight jobs; cancel whatever is still running after timeout."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        logger.info(f"Draining {len(pending)} in-flight job(s)")
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} job(s) still running at shutdown")
