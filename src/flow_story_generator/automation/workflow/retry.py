from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from flow_story_generator.automation.messaging.events import Severity

from .steps import LogSink

logger = logging.getLogger(__name__)

StepSequence = Callable[[int], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]


class RetryOutcome(str, Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class RetryResult:
    outcome: RetryOutcome
    attempts: int
    last_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is RetryOutcome.SUCCESS


class RetryPolicy:
    """Run a step sequence until it succeeds or the attempt budget is spent.

    The sequence receives the 1-based attempt number. Returning False or raising
    counts as a failed attempt; the policy itself never raises for step
    failures. Backoff is applied between attempts, never after the last one.
    """

    def __init__(
        self,
        *,
        backoff_seconds: float = 2.0,
        log: LogSink | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")
        self._backoff = backoff_seconds
        self._log = log
        self._sleep = sleep

    def _emit(self, message: str, severity: Severity) -> None:
        if self._log is not None:
            self._log(message, severity)

    async def run_with_retries(
        self,
        step_sequence: StepSequence,
        max_attempts: int,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> RetryResult:
        """`should_stop` is checked before every attempt after the first."""

        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        last_error: str | None = None
        for attempt in range(1, max_attempts + 1):
            if attempt > 1 and should_stop is not None and should_stop():
                return RetryResult(
                    RetryOutcome.CANCELLED, attempts=attempt - 1, last_error=last_error
                )
            try:
                if await step_sequence(attempt):
                    return RetryResult(RetryOutcome.SUCCESS, attempts=attempt)
                last_error = "no result before timeout"
                self._emit(f"Attempt {attempt} failed, retrying...", Severity.WARNING)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.debug("Attempt raised", exc_info=True, extra={"attempt": attempt})
                self._emit(f"Error on attempt {attempt}: {last_error}", Severity.ERROR)

            if attempt < max_attempts and self._backoff > 0:
                await self._sleep(self._backoff)

        self._emit(f"Failed to process prompt after {max_attempts} attempts", Severity.ERROR)
        return RetryResult(RetryOutcome.EXHAUSTED, attempts=max_attempts, last_error=last_error)
