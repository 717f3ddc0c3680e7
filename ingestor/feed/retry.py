"""
Bounded retry executor.

Shared by polling tasks (fixed delay) and the stream reconnection sequence
(exponential delay). Failures are logged and reported through RetryOutcome,
never raised; cancellation always propagates.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ingestor.config.configs import RetryPolicy

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryOutcome:
    succeeded: bool
    attempts: int
    last_error: Optional[BaseException] = None
    result: Any = None


class RetryExecutor:
    """
    Runs an async unit of work up to ``policy.max_attempts`` times.

    Usage:
        executor = RetryExecutor(RetryPolicy(max_attempts=4, delay_s=5.0))
        outcome = await executor.run(fetch, label="openInterest BTCUSDT")
        if not outcome.succeeded:
            ...
    """

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: SleepFn = asyncio.sleep,
        name: str = "retry",
    ) -> None:
        self._policy = policy
        self._sleep = sleep
        self._name = name

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def delay_before(self, attempt: int, delay_first: bool = False) -> float:
        """Wait applied before 0-based ``attempt``."""
        if delay_first:
            return self._policy.delay_for(attempt)
        if attempt == 0:
            return 0.0
        return self._policy.delay_for(attempt - 1)

    async def run(
        self,
        task: Callable[[], Awaitable[Any]],
        label: str = "task",
        delay_first: bool = False,
        on_failure: Optional[Callable[[int, Exception], None]] = None,
    ) -> RetryOutcome:
        """
        Execute ``task`` until it succeeds or attempts run out.

        Args:
            task: Zero-argument coroutine function
            label: Used in log messages
            delay_first: Also wait before the first attempt
            on_failure: Called with (attempt number, error) after each failure

        Returns:
            RetryOutcome; ``succeeded`` is False once every attempt failed
        """
        max_attempts = self._policy.max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(max_attempts):
            delay = self.delay_before(attempt, delay_first)
            if delay > 0:
                await self._sleep(delay)

            try:
                result = await task()
            except Exception as e:
                last_error = e
                logger.warning(
                    f"[{self._name}] {label} failed (attempt {attempt + 1}/{max_attempts}): {e}"
                )
                if on_failure is not None:
                    on_failure(attempt + 1, e)
                continue

            if attempt > 0:
                logger.info(f"[{self._name}] {label} succeeded on attempt {attempt + 1}")
            return RetryOutcome(succeeded=True, attempts=attempt + 1, result=result)

        logger.error(f"[{self._name}] {label} abandoned after {max_attempts} attempts: {last_error}")
        return RetryOutcome(succeeded=False, attempts=max_attempts, last_error=last_error)
