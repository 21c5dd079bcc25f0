"""
poll_until: bounded polling with an injectable clock.

    outcome = await poll_until(
        lambda: gateway.get_status(intent_id),
        done=lambda report: report.status.is_terminal,
        interval=1.5,
        max_attempts=20,
        cancelled=stop,
    )

    match outcome:
        case Settled(report): ...
        case Exhausted(attempts=n): ...
        case Aborted(): ...

At most max_attempts fetches, with one interval between consecutive
fetches. Setting `cancelled` aborts both a pending sleep and the loop.
Fetch errors count as attempts and never end the loop early.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from kungfu import Error, Ok, Result

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════════


class Clock(Protocol):
    def now(self) -> float: ...

    async def sleep(self, seconds: float, wake: asyncio.Event | None = None) -> None:
        """Sleep for seconds, or until wake is set."""
        ...


class AsyncioClock:
    def now(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float, wake: asyncio.Event | None = None) -> None:
        if wake is None:
            await asyncio.sleep(seconds)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(wake.wait(), timeout=seconds)


@dataclass(slots=True)
class VirtualClock:
    """
    Clock that advances instantly. For tests.

    Example:
        clock = VirtualClock()
        await poll_until(..., clock=clock)
        assert clock.sleeps == [1.5] * 19
    """

    current: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float, wake: asyncio.Event | None = None) -> None:
        self.sleeps.append(seconds)
        self.current += seconds
        # Let other tasks run (e.g. one that sets wake)
        await asyncio.sleep(0)


ASYNCIO_CLOCK = AsyncioClock()

# ═══════════════════════════════════════════════════════════════════════════════
# Outcomes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Settled[T]:
    value: T
    attempts: int


@dataclass(frozen=True, slots=True)
class Exhausted[T, E]:
    """Budget spent without a done() value."""

    attempts: int
    last_value: T | None = None
    last_error: E | None = None


@dataclass(frozen=True, slots=True)
class Aborted:
    attempts: int


type PollOutcome[T, E] = Settled[T] | Exhausted[T, E] | Aborted

# ═══════════════════════════════════════════════════════════════════════════════
# poll_until()
# ═══════════════════════════════════════════════════════════════════════════════


async def poll_until[T, E](
    fetch: Callable[[], Awaitable[Result[T, E]]],
    done: Callable[[T], bool],
    *,
    interval: float,
    max_attempts: int,
    clock: Clock = ASYNCIO_CLOCK,
    cancelled: asyncio.Event | None = None,
) -> PollOutcome[T, E]:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_value: T | None = None
    last_error: E | None = None

    for attempt in range(1, max_attempts + 1):
        if cancelled is not None and cancelled.is_set():
            return Aborted(attempt - 1)

        match await fetch():
            case Ok(value):
                if done(value):
                    return Settled(value, attempt)
                last_value = value
            case Error(e):
                logger.debug("poll attempt %d failed: %s", attempt, e)
                last_error = e

        if attempt < max_attempts:
            await clock.sleep(interval, cancelled)

    if cancelled is not None and cancelled.is_set():
        return Aborted(max_attempts)
    return Exhausted(max_attempts, last_value, last_error)


__all__ = (
    "Clock",
    "AsyncioClock",
    "VirtualClock",
    "ASYNCIO_CLOCK",
    "Settled",
    "Exhausted",
    "Aborted",
    "PollOutcome",
    "poll_until",
)
