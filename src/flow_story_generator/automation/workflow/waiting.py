"""Waiting on external page state.

The page is not under our control: it may change without firing a
notification we can observe. Every wait therefore combines the change
notification channel with a short fallback poll, and always re-evaluates the
condition itself rather than trusting the notification.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChangeListener = Callable[[], None]
Condition = Callable[[], Awaitable[Any]]


class ChangeSource(Protocol):
    """Fires listeners when the observed state may have changed."""

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register `listener`; the returned callable unsubscribes it."""
        ...


@dataclass(frozen=True, slots=True)
class Satisfied(Generic[T]):
    value: T


class TimedOut:
    _instance: TimedOut | None = None

    def __new__(cls) -> TimedOut:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "TIMED_OUT"


TIMED_OUT = TimedOut()

WaitResult = Satisfied[Any] | TimedOut


def _is_satisfied(value: object) -> bool:
    return value is not None and value is not False


class WaitPrimitive:
    """Resolve when a condition holds, or report `TIMED_OUT`.

    A condition is a side-effect-free coroutine function. It is satisfied when
    it returns anything other than None/False; that value is handed back in
    `Satisfied.value`.
    """

    def __init__(self, source: ChangeSource | None = None, *, poll_interval: float = 0.2) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self._source = source
        self._poll_interval = poll_interval
        self._active = 0

    @property
    def active_waits(self) -> int:
        """Waits currently holding a subscription (0 when idle)."""

        return self._active

    async def wait_for(self, condition: Condition, timeout: float) -> WaitResult:
        # Checked before subscribing so an already-true condition costs nothing.
        value = await condition()
        if _is_satisfied(value):
            return Satisfied(value)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        changed = asyncio.Event()
        unsubscribe = self._source.subscribe(changed.set) if self._source is not None else None
        self._active += 1
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return TIMED_OUT
                try:
                    await asyncio.wait_for(
                        changed.wait(), timeout=min(self._poll_interval, remaining)
                    )
                except TimeoutError:
                    pass
                changed.clear()

                value = await condition()
                if _is_satisfied(value):
                    return Satisfied(value)
        finally:
            self._active -= 1
            if unsubscribe is not None:
                unsubscribe()

    async def wait_for_any(self, conditions: Sequence[Condition], timeout: float) -> WaitResult:
        """Like `wait_for`, satisfied by the first condition (in list order) that holds."""

        if not conditions:
            raise ValueError("wait_for_any needs at least one condition")

        async def _first() -> object:
            for condition in conditions:
                value = await condition()
                if _is_satisfied(value):
                    return value
            return None

        return await self.wait_for(_first, timeout)


async def settle(seconds: float) -> None:
    """Fixed delay used between page actions; skipped entirely when zero."""

    if seconds > 0:
        await asyncio.sleep(seconds)
