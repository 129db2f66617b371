"""
In-process background work queue.

Work that must not delay a user-facing response (Zid secondary-token
enrichment, webhook registration) is enqueued here as a named job and run
by a single supervised worker task started with the application.

Each job is logged on start, success and failure with its name and context.
A failing job never propagates into the request that enqueued it and never
stops the worker.

Usage:
    queue = BackgroundWorkQueue()
    await queue.start()

    queue.enqueue("zid.register_webhooks", lambda: register(store_id), {"store_id": store_id})

    await queue.drain()   # wait for pending jobs (tests, shutdown)
    await queue.stop()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    """A named unit of deferred work."""
    name: str
    factory: JobFactory
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueueStats:
    enqueued: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "enqueued": self.enqueued,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class BackgroundWorkQueue:
    """asyncio.Queue drained by one supervised worker task."""

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[Optional[Job]]" = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None
        self.stats = QueueStats()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="background-work-queue")
        logger.info("Background work queue started")

    async def stop(self) -> None:
        """Finish queued jobs, then stop the worker."""
        if not self.running:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.info("Background work queue stopped", extra=self.stats.to_dict())

    def enqueue(
        self,
        name: str,
        factory: JobFactory,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Schedule a job. The factory is called by the worker, so no coroutine
        exists until the job actually runs.
        """
        job = Job(name=name, factory=factory, context=context or {})
        self._queue.put_nowait(job)
        self.stats.enqueued += 1
        logger.info("Background job enqueued", extra={"job": name, **job.context})

    async def drain(self) -> None:
        """
        Wait until every queued job has finished.

        Without a running worker, pending jobs are executed inline.
        """
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                if job is not None:
                    await self._execute(job)
            finally:
                self._queue.task_done()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: Job) -> None:
        started = time.monotonic()
        logger.info("Background job started", extra={"job": job.name, **job.context})
        try:
            await job.factory()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.stats.failed += 1
            logger.error(
                "Background job failed",
                extra={
                    "job": job.name,
                    "duration_seconds": round(time.monotonic() - started, 3),
                    **job.context,
                },
                exc_info=True,
            )
            return

        self.stats.succeeded += 1
        logger.info(
            "Background job succeeded",
            extra={
                "job": job.name,
                "duration_seconds": round(time.monotonic() - started, 3),
                **job.context,
            },
        )
