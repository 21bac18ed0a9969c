from __future__ import annotations

import asyncio
import random

import allure
import pytest

from bulk_sender.dispatch.retry import (
    CancellationToken,
    RetryPolicy,
    jittered_backoff,
    retry_until,
)

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Retry combinator"),
]


class _Counter:
    def __init__(self, values: list[object]) -> None:
        self.values = values
        self.calls = 0

    async def __call__(self) -> object:
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


def test_retry_until_stops_at_first_accepted_value() -> None:
    operation = _Counter([False, False, True, True])
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    result = asyncio.run(
        retry_until(
            operation,
            policy=RetryPolicy(max_attempts=5, initial_delay_seconds=2.0, interval_seconds=1.0),
            sleep=_sleep,
        ),
    )

    assert result.satisfied is True
    assert result.attempts == 3
    assert result.value is True
    assert operation.calls == 3
    assert delays == [2.0, 1.0, 1.0]


def test_retry_until_reports_exhaustion_with_last_value() -> None:
    operation = _Counter([0, 1, 2])

    result = asyncio.run(
        retry_until(
            operation,
            policy=RetryPolicy(max_attempts=3),
            accept=lambda value: value > 10,
        ),
    )

    assert result.satisfied is False
    assert result.cancelled is False
    assert result.attempts == 3
    assert result.value == 2


def test_retry_until_propagates_operation_errors() -> None:
    async def _boom() -> bool:
        raise RuntimeError("surface gone")

    with pytest.raises(RuntimeError, match="surface gone"):
        asyncio.run(retry_until(_boom, policy=RetryPolicy(max_attempts=3)))


def test_retry_until_honours_cancellation_before_next_check() -> None:
    token = CancellationToken()
    operation = _Counter([False])

    async def _scenario():
        token.cancel()
        return await retry_until(
            operation,
            policy=RetryPolicy(max_attempts=5, interval_seconds=10.0),
            token=token,
        )

    result = asyncio.run(_scenario())

    assert result.cancelled is True
    assert result.satisfied is False
    assert operation.calls == 0


def test_cancellation_token_sleep_wakes_early_on_cancel() -> None:
    async def _scenario() -> tuple[bool, bool]:
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        interrupted = await token.sleep(30.0)
        elapsed = await CancellationToken().sleep(0.01)
        return interrupted, elapsed

    interrupted, elapsed = asyncio.run(_scenario())

    assert interrupted is False
    assert elapsed is True


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy(
        max_attempts=6,
        initial_delay_seconds=0.5,
        interval_seconds=1.0,
        backoff_factor=2.0,
        max_interval_seconds=3.0,
    )

    assert [policy.delay_before(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_jittered_backoff_stays_within_exponential_cap() -> None:
    rng = random.Random(7)
    for retry_number, cap in ((1, 2.0), (2, 4.0), (3, 8.0), (4, 10.0), (6, 10.0)):
        delay = jittered_backoff(
            retry_number=retry_number,
            base_seconds=2.0,
            max_seconds=10.0,
            rng=rng,
        )
        assert 0.0 <= delay <= cap
