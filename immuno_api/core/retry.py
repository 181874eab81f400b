"""Retry Policy - fixed-attempt, fixed-delay retry for startup connectivity checks.

Invariants:
    - Operation invoked at most max_attempts times; exactly one delay between consecutive attempts
    - Delay is constant across attempts (no exponential backoff, no jitter)
    - Exhaustion surfaces the error of the LAST attempt; earlier errors are only logged
    - Errors listed in give_up_on propagate at once without consuming further attempts

Design Decisions:
    - attempt() returns a RetryOutcome instead of raising: callers choose between
      branching on the outcome and run(), which re-raises (ADR: usable from any scheduler)
    - sleep injected (defaults to asyncio.sleep): tests record delays without waiting
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from immuno_api.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of one RetryPolicy invocation - either a value or the final error."""
    value: T | None
    error: BaseException | None
    attempts: int

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the final error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class RetryPolicy:
    """Run an async operation up to max_attempts times with a constant delay."""

    def __init__(
        self,
        max_attempts: int = 3,
        delay_ms: int = 5000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        give_up_on: tuple[type[BaseException], ...] = (ConfigurationError,),
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        self.max_attempts = max_attempts
        self.delay_ms = delay_ms
        self._sleep = sleep
        self._give_up_on = give_up_on

    async def attempt(
        self, operation: Callable[[], Awaitable[T]], *, label: str = "operation",
    ) -> RetryOutcome[T]:
        """Run operation until it succeeds or attempts are exhausted."""
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
            except self._give_up_on:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    f"{label} failed (attempt {attempt}/{self.max_attempts}): {e}",
                    extra={"attempt": attempt, "max_attempts": self.max_attempts},
                    exc_info=True,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.delay_ms / 1000)
                continue
            if attempt > 1:
                logger.info(
                    f"{label} succeeded after {attempt} attempts",
                    extra={"attempt": attempt, "max_attempts": self.max_attempts},
                )
            return RetryOutcome(value=value, error=None, attempts=attempt)

        logger.error(
            f"{label} failed definitively after {self.max_attempts} attempts: {last_error}",
            extra={"max_attempts": self.max_attempts},
        )
        return RetryOutcome(value=None, error=last_error, attempts=self.max_attempts)

    async def run(
        self, operation: Callable[[], Awaitable[T]], *, label: str = "operation",
    ) -> T:
        """Like attempt(), but raises the final error on exhaustion."""
        outcome = await self.attempt(operation, label=label)
        return outcome.unwrap()
