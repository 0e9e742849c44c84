"""Background worker for fire-and-forget side calls that must never fail a request."""

import asyncio
from collections.abc import Awaitable, Callable

from crm_mirror.core.logging import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[object]]

class BackgroundDispatcher:
    def __init__(self, max_queue: int = 1000):
        self._queue: asyncio.Queue[tuple[str, JobFactory]] = asyncio.Queue(maxsize=max_queue)
        self._worker: asyncio.Task | None = None
        self.completed = 0
        self.failed = 0

    def dispatch(self, name: str, factory: JobFactory) -> bool:
        try:
            self._queue.put_nowait((name, factory))
        except asyncio.QueueFull:
            logger.warning("background_job_dropped", job=name)
            return False
        return True

    async def _run_one(self, name: str, factory: JobFactory) -> None:
        try:
            await factory()
            self.completed += 1
        except Exception as exc:
            self.failed += 1
            logger.warning("background_job_failed", job=name, error=repr(exc))

    async def _work(self) -> None:
        while True:
            name, factory = await self._queue.get()
            try:
                await self._run_one(name, factory)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        await self._queue.join()

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._work())
            logger.info("background_dispatcher_started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("background_dispatcher_stopped", pending=self._queue.qsize())
