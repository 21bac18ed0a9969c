from __future__ import annotations

import asyncio

import allure

from bulk_sender.dispatch.models import AttemptOutcome, AttemptState, FailureClass, Verdict
from bulk_sender.dispatch.retry import CancellationToken
from bulk_sender.dispatch.surface.base import ContextUnavailableError
from bulk_sender.dispatch.surface.scripted import ScriptedProvider, SurfaceScript

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Delivery worker"),
]


def _assert_each_context_closed_once(provider: ScriptedProvider) -> None:
    assert provider.opened
    assert [surface.close_calls for surface in provider.opened] == [1] * len(provider.opened)
    assert provider.open_contexts == []


def test_worker_delivers_and_walks_full_state_machine(make_worker) -> None:
    provider = ScriptedProvider()
    worker = make_worker(provider)

    result = asyncio.run(worker.deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.SENT
    assert len(result.attempts) == 1
    attempt = result.attempts[0]
    assert attempt.states == (
        AttemptState.START,
        AttemptState.CONTEXT_ACQUIRED,
        AttemptState.CONTENT_INJECTED,
        AttemptState.SUBMITTED,
        AttemptState.VERIFYING,
        AttemptState.SUCCEEDED,
    )
    assert attempt.strategy == "direct_assignment"
    assert attempt.submit_method == "send_control"
    assert attempt.verdict == Verdict.SENT
    assert provider.opened[0].sent_messages == ["hello"]
    _assert_each_context_closed_once(provider)
    assert worker.summary.sent == 1


def test_worker_falls_back_to_confirm_key(make_worker) -> None:
    provider = ScriptedProvider(SurfaceScript(send_control_present=False))

    result = asyncio.run(make_worker(provider).deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.SENT
    assert result.attempts[0].submit_method == "confirm_key"
    assert "press_confirm_key" in provider.opened[0].calls


def test_worker_retries_unverified_up_to_max_attempts(make_worker) -> None:
    provider = ScriptedProvider(SurfaceScript(delivers=False))
    worker = make_worker(provider, max_attempts=3)

    result = asyncio.run(worker.deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.FAILED
    assert result.failure_class == FailureClass.UNVERIFIED
    assert [attempt.attempt_no for attempt in result.attempts] == [1, 2, 3]
    assert len(provider.opened) == 3
    _assert_each_context_closed_once(provider)
    assert worker.summary.retried == 2


def test_worker_succeeds_on_a_later_attempt(make_worker) -> None:
    provider = ScriptedProvider([SurfaceScript(never_ready=True), SurfaceScript()])

    result = asyncio.run(make_worker(provider).deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.SENT
    assert [attempt.outcome for attempt in result.attempts] == [
        AttemptOutcome.FAILED,
        AttemptOutcome.SENT,
    ]
    assert result.attempts[0].failure_class == FailureClass.CONTEXT_UNAVAILABLE
    _assert_each_context_closed_once(provider)


def test_worker_does_not_retry_surface_error(make_worker) -> None:
    provider = ScriptedProvider(SurfaceScript(error="alert-phone"))

    result = asyncio.run(make_worker(provider, max_attempts=3).deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.FAILED
    assert result.failure_class == FailureClass.SURFACE_ERROR
    assert len(result.attempts) == 1
    _assert_each_context_closed_once(provider)


def test_worker_enforces_attempt_deadline_and_releases_context(make_worker) -> None:
    provider = ScriptedProvider(SurfaceScript(hang_on="observe"))
    worker = make_worker(provider, max_attempts=2, attempt_timeout_seconds=0.05)

    result = asyncio.run(worker.deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.TIMED_OUT
    assert [attempt.outcome for attempt in result.attempts] == [AttemptOutcome.TIMED_OUT] * 2
    assert all(attempt.failure_class == FailureClass.TIMED_OUT for attempt in result.attempts)
    assert "content_injected" in (result.attempts[0].reason or "")
    _assert_each_context_closed_once(provider)
    assert worker.summary.timeouts == 2


def test_worker_counts_injection_failure(make_worker) -> None:
    provider = ScriptedProvider(SurfaceScript(sticky_primitives=frozenset()))

    result = asyncio.run(make_worker(provider, max_attempts=2).deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.FAILED
    assert result.failure_class == FailureClass.INJECTION_FAILED
    assert len(result.attempts) == 2
    _assert_each_context_closed_once(provider)


def test_worker_classifies_unexpected_surface_exception(make_worker) -> None:
    provider = ScriptedProvider(
        SurfaceScript(raise_on={"read_content": RuntimeError("Target closed")}),
    )

    result = asyncio.run(make_worker(provider, max_attempts=1).deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.FAILED
    assert result.failure_class == FailureClass.CONTEXT_UNAVAILABLE
    _assert_each_context_closed_once(provider)


def test_worker_handles_open_failure_without_context(make_worker) -> None:
    provider = ScriptedProvider(open_error=ContextUnavailableError("Navigation failed"))

    result = asyncio.run(make_worker(provider, max_attempts=2).deliver("+1234567", "hello"))

    assert result.outcome == AttemptOutcome.FAILED
    assert result.failure_class == FailureClass.CONTEXT_UNAVAILABLE
    assert len(result.attempts) == 2
    assert provider.opened == []


def test_worker_abandons_retries_once_stop_is_requested(make_worker) -> None:
    provider = ScriptedProvider(SurfaceScript(delivers=False))
    worker = make_worker(provider, max_attempts=3)

    async def _scenario():
        token = CancellationToken()
        token.cancel()
        return await worker.deliver("+1234567", "hello", token=token)

    result = asyncio.run(_scenario())

    assert result.outcome == AttemptOutcome.FAILED
    assert len(result.attempts) == 1
    _assert_each_context_closed_once(provider)
