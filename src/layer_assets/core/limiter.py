"""Bounded-parallelism job queue."""

import asyncio
import os
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any


class ConcurrencyLimiter:
    """Run at most `max_jobs` jobs at once, starting them in enqueue order.

    A failing job only fails its own caller.
    """

    def __init__(self, max_jobs: int | None = None) -> None:
        self.max_jobs = max_jobs if max_jobs is not None else os.cpu_count() or 1
        if self.max_jobs < 1:
            msg = f"max_jobs must be positive, got {max_jobs!r}"
            raise ValueError(msg)
        self._jobs: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._running = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._jobs)

    def enqueue(self, job_factory: Callable[[], Awaitable[Any]]) -> "asyncio.Future[Any]":
        """Queue a job. The returned future settles with the job's result or exception."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._jobs.append((job_factory, future))
        self._run_next_jobs()
        return future

    def _run_next_jobs(self) -> None:
        while self._jobs and self._running < self.max_jobs:
            job_factory, future = self._jobs.popleft()
            self._running += 1
            task = asyncio.ensure_future(self._run(job_factory, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, job_factory: Callable[[], Awaitable[Any]], future: "asyncio.Future[Any]") -> None:
        try:
            result = await job_factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running -= 1
            self._run_next_jobs()
