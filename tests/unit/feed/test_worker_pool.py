"""
Unit tests for the symbol-scaled WorkerPool.
"""

import asyncio

import pytest

from ingestor.feed.errors import PoolClosedError
from ingestor.feed.pool import PoolSizing, WorkerPool, compute_pool_sizing


class TestPoolSizing:
    """Tests for compute_pool_sizing."""

    def test_two_symbols_four_task_types(self) -> None:
        sizing = compute_pool_sizing(2, 4)

        assert sizing.core_size == 8
        assert sizing.max_size == 16
        assert sizing.queue_capacity == 32

    @pytest.mark.parametrize("symbols,task_types", [(0, 4), (1, 1), (3, 4), (10, 2)])
    def test_core_and_max_invariants(self, symbols: int, task_types: int) -> None:
        sizing = compute_pool_sizing(symbols, task_types)

        assert sizing.core_size == max(1, symbols * task_types)
        assert sizing.max_size == 2 * sizing.core_size

    def test_no_symbols_keeps_one_worker(self) -> None:
        assert compute_pool_sizing(0, 4).core_size == 1


class TestWorkerPool:
    """Tests for WorkerPool submission and shutdown."""

    @pytest.fixture
    def pool(self) -> WorkerPool:
        return WorkerPool(PoolSizing(core_size=1, max_size=2, queue_capacity=1), name="test_pool")

    @pytest.mark.asyncio
    async def test_jobs_run(self) -> None:
        """Test submitted jobs complete before a clean shutdown."""
        pool = WorkerPool(compute_pool_sizing(1, 2))
        ran: list[int] = []

        for i in range(5):

            async def job(i: int = i) -> None:
                ran.append(i)

            await pool.submit(job)

        assert await pool.shutdown(timeout=1.0) is True
        assert sorted(ran) == [0, 1, 2, 3, 4]
        assert pool.stats.completed == 5

    @pytest.mark.asyncio
    async def test_saturation_runs_in_caller(self, pool: WorkerPool) -> None:
        """Test queue full plus max workers falls back to caller-runs."""
        gate = asyncio.Event()
        ran: list[str] = []

        def make(name: str, wait: bool):
            async def job() -> None:
                if wait:
                    await gate.wait()
                ran.append(name)

            return job

        await pool.submit(make("queued", wait=True))
        await pool.submit(make("extra", wait=True))
        await pool.submit(make("inline", wait=False))

        assert ran == ["inline"]
        assert pool.stats.caller_runs == 1
        assert pool.stats.extra_workers_started == 1
        assert pool.worker_count == 2

        gate.set()
        assert await pool.shutdown(timeout=1.0) is True
        assert sorted(ran) == ["extra", "inline", "queued"]
        assert pool.stats.completed == 3

    @pytest.mark.asyncio
    async def test_failing_job_does_not_kill_worker(self, pool: WorkerPool) -> None:
        """Test a job error is counted and later jobs still run."""
        ran: list[str] = []

        async def bad() -> None:
            raise RuntimeError("boom")

        async def good() -> None:
            ran.append("good")

        await pool.submit(bad)
        await asyncio.sleep(0)
        await pool.submit(good)

        assert await pool.shutdown(timeout=1.0) is True
        assert ran == ["good"]
        assert pool.stats.failed == 1
        assert pool.stats.completed == 1

    @pytest.mark.asyncio
    async def test_submit_after_shutdown_raises(self, pool: WorkerPool) -> None:
        await pool.shutdown(timeout=1.0)

        async def job() -> None:
            pass

        assert pool.is_closed is True
        with pytest.raises(PoolClosedError):
            await pool.submit(job)

    @pytest.mark.asyncio
    async def test_shutdown_timeout_cancels_stuck_workers(self) -> None:
        """Test workers still busy at the deadline are force-cancelled."""
        pool = WorkerPool(PoolSizing(core_size=1, max_size=2, queue_capacity=4))

        async def stuck() -> None:
            await asyncio.Event().wait()

        await pool.submit(stuck)
        await asyncio.sleep(0)

        assert await pool.shutdown(timeout=0.05) is False
        assert pool.stats.cancelled_workers == 1
