"""Bounded polling/retry combinator with cooperative cancellation."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class CancellationToken:
    """Cooperative stop flag shared by the orchestrator and its worker."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return False when cancelled before the wait elapsed."""

        if self.cancelled:
            return False
        if seconds <= 0:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Schedule for ``retry_until``.

    ``max_attempts`` bounds the number of operation calls. The first call waits
    ``initial_delay_seconds``; subsequent calls wait ``interval_seconds``
    multiplied by ``backoff_factor`` per retry, capped at ``max_interval_seconds``.
    """

    max_attempts: int
    interval_seconds: float = 0.0
    initial_delay_seconds: float = 0.0
    backoff_factor: float = 1.0
    max_interval_seconds: float | None = None

    def delay_before(self, attempt_no: int) -> float:
        if attempt_no <= 1:
            return self.initial_delay_seconds
        delay = self.interval_seconds * (self.backoff_factor ** (attempt_no - 2))
        if self.max_interval_seconds is not None:
            delay = min(delay, self.max_interval_seconds)
        return delay


@dataclass(slots=True)
class RetryResult(Generic[T]):
    """Last value produced by the operation and whether it was accepted."""

    value: T | None
    attempts: int
    satisfied: bool
    cancelled: bool = False


async def retry_until(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    accept: Callable[[T], bool] = bool,
    token: CancellationToken | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> RetryResult[T]:
    """Call ``operation`` until ``accept`` approves its result or attempts run out.

    Exceptions raised by ``operation`` propagate immediately; use them for
    conditions that make further polling pointless.
    """

    value: T | None = None
    attempts = 0
    for attempt_no in range(1, policy.max_attempts + 1):
        delay = policy.delay_before(attempt_no)
        if token is not None:
            if not await token.sleep(delay):
                return RetryResult(value=value, attempts=attempts, satisfied=False, cancelled=True)
        elif delay > 0:
            await sleep(delay)
        attempts = attempt_no
        value = await operation()
        if accept(value):
            return RetryResult(value=value, attempts=attempts, satisfied=True)
    return RetryResult(value=value, attempts=attempts, satisfied=False)


def jittered_backoff(
    *,
    retry_number: int,
    base_seconds: float,
    max_seconds: float,
    rng: random.Random | None = None,
) -> float:
    """Full-jitter exponential backoff used between delivery attempts."""

    max_delay = min(max_seconds, base_seconds * (2 ** max(retry_number - 1, 0)))
    return (rng or random).uniform(0, max_delay)
