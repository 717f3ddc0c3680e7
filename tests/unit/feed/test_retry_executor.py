"""
Unit tests for RetryExecutor.
"""

import asyncio

import pytest

from ingestor.config.configs import RetryPolicy
from ingestor.feed.retry import RetryExecutor


class RecordingSleep:
    """Sleep stand-in that records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryExecutor:
    """Tests for bounded retries."""

    @pytest.fixture
    def sleep(self) -> RecordingSleep:
        return RecordingSleep()

    @pytest.fixture
    def executor(self, sleep: RecordingSleep) -> RetryExecutor:
        return RetryExecutor(RetryPolicy(max_attempts=4, delay_s=5.0), sleep=sleep)

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, executor: RetryExecutor, sleep: RecordingSleep) -> None:
        """Test a succeeding task runs once without waiting."""

        async def task() -> str:
            return "ok"

        outcome = await executor.run(task)

        assert outcome.succeeded is True
        assert outcome.attempts == 1
        assert outcome.result == "ok"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_always_failing_task_runs_max_attempts(
        self, executor: RetryExecutor, sleep: RecordingSleep
    ) -> None:
        """Test an always-failing task runs exactly max_attempts times and does not raise."""
        calls = 0

        async def task() -> None:
            nonlocal calls
            calls += 1
            raise ConnectionError("refused")

        outcome = await executor.run(task, label="openInterest BTCUSDT")

        assert calls == 4
        assert outcome.succeeded is False
        assert outcome.attempts == 4
        assert isinstance(outcome.last_error, ConnectionError)
        assert sleep.delays == [5.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, executor: RetryExecutor) -> None:
        """Test a task recovering on its third attempt."""
        calls = 0

        async def task() -> int:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise TimeoutError()
            return calls

        outcome = await executor.run(task)

        assert outcome.succeeded is True
        assert outcome.attempts == 3
        assert outcome.result == 3

    @pytest.mark.asyncio
    async def test_on_failure_receives_attempt_numbers(self, executor: RetryExecutor) -> None:
        """Test the failure callback sees 1-based attempt numbers."""
        seen: list[int] = []

        async def task() -> None:
            raise ValueError("bad")

        await executor.run(task, on_failure=lambda attempt, e: seen.append(attempt))

        assert seen == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_delay_first_uses_exponential_policy(self, sleep: RecordingSleep) -> None:
        """Test reconnect-style retries wait before every attempt with capped backoff."""
        policy = RetryPolicy(max_attempts=5, delay_s=5.0, backoff="exponential", max_delay_s=30.0)
        executor = RetryExecutor(policy, sleep=sleep)

        async def task() -> None:
            raise OSError("down")

        await executor.run(task, delay_first=True)

        assert sleep.delays == [5.0, 10.0, 20.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, executor: RetryExecutor) -> None:
        """Test cancellation is not treated as a retryable failure."""

        async def task() -> None:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await executor.run(task)


class TestDelayBefore:
    def test_without_delay_first(self) -> None:
        executor = RetryExecutor(RetryPolicy(max_attempts=3, delay_s=2.0))

        assert [executor.delay_before(n) for n in range(3)] == [0.0, 2.0, 2.0]

    def test_with_delay_first(self) -> None:
        executor = RetryExecutor(RetryPolicy(max_attempts=3, delay_s=2.0))

        assert [executor.delay_before(n, delay_first=True) for n in range(3)] == [2.0, 2.0, 2.0]
