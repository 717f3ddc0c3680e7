"""
Symbol-scaled worker pool for polling tasks.

Sizing is a pure function of the symbol count and the number of statistic
types. A pool is never resized: the scheduler builds a new one and drains
the old one.

Submission semantics:
1. Fewer than ``core_size`` core workers -> start another core worker
2. Queue has room -> enqueue
3. Queue full, fewer than ``max_size`` workers -> start an extra worker for the job
4. Otherwise -> run the job inline in the submitting task (never dropped)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ingestor.feed.errors import PoolClosedError

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]

QUEUE_CAPACITY_FACTOR = 4
EXTRA_WORKER_IDLE_S = 60.0


@dataclass(frozen=True, slots=True)
class PoolSizing:
    core_size: int
    max_size: int
    queue_capacity: int


def compute_pool_sizing(symbol_count: int, task_type_count: int) -> PoolSizing:
    """``core = max(1, symbols * task types)``, ``max = 2 * core``."""
    core_size = max(1, symbol_count * task_type_count)
    return PoolSizing(
        core_size=core_size,
        max_size=core_size * 2,
        queue_capacity=core_size * QUEUE_CAPACITY_FACTOR,
    )


@dataclass
class PoolStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    caller_runs: int = 0
    extra_workers_started: int = 0
    cancelled_workers: int = 0
    discarded_jobs: int = 0


class WorkerPool:
    """
    Bounded pool of asyncio worker tasks.

    Usage:
        pool = WorkerPool(compute_pool_sizing(len(symbols), 4), name="poll_v1")
        await pool.submit(job)
        ...
        await pool.shutdown(timeout=60.0)
    """

    def __init__(
        self,
        sizing: PoolSizing,
        name: str = "pool",
        extra_idle_s: float = EXTRA_WORKER_IDLE_S,
    ) -> None:
        self._sizing = sizing
        self._name = name
        self._extra_idle_s = extra_idle_s
        self._queue: asyncio.Queue[Optional[Job]] = asyncio.Queue(maxsize=sizing.queue_capacity)
        self._core_workers: set[asyncio.Task[None]] = set()
        self._extra_workers: set[asyncio.Task[None]] = set()
        self._closed = False
        self._stats = PoolStats()

    @property
    def sizing(self) -> PoolSizing:
        return self._sizing

    @property
    def name(self) -> str:
        return self._name

    @property
    def stats(self) -> PoolStats:
        return self._stats

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def worker_count(self) -> int:
        return len(self._core_workers) + len(self._extra_workers)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    async def submit(self, job: Job) -> None:
        """
        Submit a job. Returns once it is queued, handed to a worker, or
        (under saturation) finished inline.

        Raises:
            PoolClosedError: If the pool is shutting down
        """
        if self._closed:
            raise PoolClosedError(f"Pool {self._name} is closed", component="WorkerPool")
        self._stats.submitted += 1

        if len(self._core_workers) < self._sizing.core_size:
            self._spawn_core()

        try:
            self._queue.put_nowait(job)
            return
        except asyncio.QueueFull:
            pass

        if self.worker_count < self._sizing.max_size:
            self._spawn_extra(job)
            return

        self._stats.caller_runs += 1
        logger.warning(f"[{self._name}] Saturated, running job in caller")
        await self._run_job(job)

    def _spawn_core(self) -> None:
        n = len(self._core_workers)
        task = asyncio.create_task(self._core_loop(), name=f"{self._name}_core_{n}")
        self._core_workers.add(task)
        task.add_done_callback(self._core_workers.discard)

    def _spawn_extra(self, first_job: Job) -> None:
        self._stats.extra_workers_started += 1
        n = self._stats.extra_workers_started
        task = asyncio.create_task(self._extra_loop(first_job), name=f"{self._name}_extra_{n}")
        self._extra_workers.add(task)
        task.add_done_callback(self._extra_workers.discard)

    async def _run_job(self, job: Job) -> None:
        try:
            await job()
        except Exception as e:
            self._stats.failed += 1
            logger.error(f"[{self._name}] Job failed: {e}", exc_info=True)
        else:
            self._stats.completed += 1

    async def _core_loop(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                await self._run_job(job)
            finally:
                self._queue.task_done()

    async def _extra_loop(self, first_job: Job) -> None:
        await self._run_job(first_job)
        while True:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=self._extra_idle_s)
            except asyncio.TimeoutError:
                return
            try:
                if job is None:
                    return
                await self._run_job(job)
            finally:
                self._queue.task_done()

    async def _send_stop(self, count: int) -> None:
        for _ in range(count):
            await self._queue.put(None)

    async def shutdown(self, timeout: float) -> bool:
        """
        Stop accepting work, let queued and running jobs finish within
        ``timeout`` seconds, then cancel whatever is left.

        Returns:
            True if the pool drained without force-cancelling
        """
        self._closed = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        workers = self._core_workers | self._extra_workers

        if not workers:
            self._discard_queued()
            return True

        # Stop markers queue up behind pending jobs (FIFO), so workers drain first
        try:
            await asyncio.wait_for(self._send_stop(len(workers)), timeout=timeout)
        except asyncio.TimeoutError:
            pass

        remaining = max(0.0, deadline - loop.time())
        _, pending = await asyncio.wait(workers, timeout=remaining)

        if pending:
            logger.warning(
                f"[{self._name}] Drain timed out after {timeout:.1f}s, cancelling {len(pending)} workers"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._stats.cancelled_workers += len(pending)

        self._discard_queued()
        logger.debug(f"[{self._name}] Shut down: {self._stats}")
        return not pending

    def _discard_queued(self) -> None:
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()
            if job is not None:
                self._stats.discarded_jobs += 1
