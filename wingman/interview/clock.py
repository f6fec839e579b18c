"""
Time source and poll-until helper.

The engine never reads wall-clock time or sleeps directly; it goes through a
Clock so timers, grace windows and timeouts can run on virtual time in tests.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

logger = logging.getLogger("clock")

T = TypeVar("T")


class Clock(Protocol):
    """Monotonic time plus an awaitable sleep."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...

    async def wait_until(self, deadline: float) -> None:
        """Wait until now() reaches ``deadline`` without moving time itself."""


class MonotonicClock:
    """Real clock backed by time.monotonic() and asyncio.sleep()."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    async def wait_until(self, deadline: float) -> None:
        while self.now() < deadline:
            await asyncio.sleep(deadline - self.now())


@dataclass
class PollResult:
    """Outcome of poll_until()."""
    value: object
    attempts: int
    elapsed_s: float
    timed_out: bool


async def poll_until(check: Callable[[], Awaitable[Optional[T]]],
                     clock: Clock,
                     interval_s: float,
                     timeout_s: float) -> PollResult:
    """
    Call ``check`` every ``interval_s`` until it returns a non-None value
    or ``timeout_s`` elapses.

    The first check runs after one interval, matching a setInterval-style
    poller. Exceptions from ``check`` propagate to the caller.
    """
    started = clock.now()
    attempts = 0
    while True:
        await clock.sleep(interval_s)
        attempts += 1
        value = await check()
        elapsed = clock.now() - started
        if value is not None:
            return PollResult(value=value, attempts=attempts, elapsed_s=elapsed, timed_out=False)
        if elapsed >= timeout_s:
            logger.debug("poll_until gave up after %d attempts (%.1fs)", attempts, elapsed)
            return PollResult(value=None, attempts=attempts, elapsed_s=elapsed, timed_out=True)
