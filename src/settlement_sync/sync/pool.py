"""Bounded asyncio worker pool."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from ..errors import ValidationError

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Runs submitted jobs as tasks, at most ``size`` of them at a time.

    Jobs beyond ``size`` are queued on the semaphore rather than refused.
    The pool must be closed explicitly (or used as an async context manager);
    closing waits for running jobs, up to ``grace_period`` seconds, and cancels
    whatever is still running after that.

    Example:
        async with WorkerPool(5) as pool:
            task = pool.submit(job.run, "A", date_range)
            result = await task
    """

    def __init__(self, size: int, name: str = "sync"):
        if size <= 0:
            raise ValidationError(f"pool size must be positive, got {size}")
        self.size = size
        self.name = name
        self._semaphore = asyncio.Semaphore(size)
        self._tasks: Set[asyncio.Task] = set()
        self._running = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def running(self) -> int:
        """Jobs currently holding a worker slot."""
        return self._running

    @property
    def pending(self) -> int:
        """Submitted jobs that have not finished yet, running or queued."""
        return sum(1 for task in self._tasks if not task.done())

    def submit(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """Schedule ``func(*args)`` and return its task.

        Raises:
            RuntimeError: If the pool has been closed.
        """
        if self._closed:
            raise RuntimeError(f"worker pool {self.name!r} is closed")
        task = asyncio.create_task(self._run(func, *args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async with self._semaphore:
            self._running += 1
            try:
                return await func(*args)
            finally:
                self._running -= 1

    async def close(self, grace_period: Optional[float] = None) -> None:
        """Stop accepting jobs and drain the ones still running.

        Args:
            grace_period: Seconds to wait for running jobs before cancelling
                them. None waits indefinitely.
        """
        self._closed = True
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return

        logger.info(f"Worker pool {self.name!r}: waiting for {len(pending)} running jobs")
        _, still_running = await asyncio.wait(pending, timeout=grace_period)
        if still_running:
            logger.warning(
                f"Worker pool {self.name!r}: cancelling {len(still_running)} jobs "
                f"after {grace_period}s grace period"
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    async def __aenter__(self) -> "WorkerPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
