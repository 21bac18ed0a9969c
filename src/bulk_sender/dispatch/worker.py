"""Per-target delivery state machine with retry and hard deadline."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from bulk_sender.config import DeliverySettings, ReadinessSettings
from bulk_sender.dispatch.failure_classifier import classify_attempt_failure
from bulk_sender.dispatch.injector import ContentInjector
from bulk_sender.dispatch.models import (
    AttemptOutcome,
    AttemptResult,
    AttemptState,
    DeliveryAttempt,
    DeliveryResult,
    FailureClass,
    Verdict,
)
from bulk_sender.dispatch.retry import (
    CancellationToken,
    RetryPolicy,
    jittered_backoff,
    retry_until,
)
from bulk_sender.dispatch.surface.base import (
    ContextLease,
    ContextProvider,
    ContextUnavailableError,
    SurfaceContext,
    SurfaceError,
    SurfaceObservation,
    SurfaceProbe,
)
from bulk_sender.dispatch.verifier import OutcomeVerifier, VerificationReport

logger = logging.getLogger(__name__)

SUBMIT_VIA_SEND_CONTROL = "send_control"
SUBMIT_VIA_CONFIRM_KEY = "confirm_key"


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    targets: int = 0
    sent: int = 0
    failed: int = 0
    attempts: int = 0
    retried: int = 0
    timeouts: int = 0

    def add(self, result: DeliveryResult) -> None:
        self.targets += 1
        self.attempts += len(result.attempts)
        self.retried += max(len(result.attempts) - 1, 0)
        self.timeouts += sum(
            1 for attempt in result.attempts if attempt.outcome == AttemptOutcome.TIMED_OUT
        )
        if result.outcome == AttemptOutcome.SENT:
            self.sent += 1
        else:
            self.failed += 1


class DeliveryWorker:
    """Runs acquire → inject → submit → verify → release for one target at a time."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        provider: ContextProvider,
        delivery: DeliverySettings | None = None,
        readiness: ReadinessSettings | None = None,
        injector: ContentInjector | None = None,
        verifier: OutcomeVerifier | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.provider = provider
        self.delivery = delivery or DeliverySettings()
        self.readiness = readiness or ReadinessSettings()
        self.injector = injector or ContentInjector(sleep=sleep)
        self.verifier = verifier or OutcomeVerifier()
        self._sleep = sleep
        self._random = rng or random.Random()  # noqa: S311
        self.summary = WorkerRunSummary()

    async def deliver(
        self,
        target: str,
        payload: str,
        *,
        token: CancellationToken | None = None,
    ) -> DeliveryResult:
        """Attempt ``target`` up to ``max_attempts`` times, each against a fresh context."""

        result = DeliveryResult(target=target, outcome=AttemptOutcome.FAILED)
        for attempt_no in range(1, self.delivery.max_attempts + 1):
            attempt = DeliveryAttempt(target=target, payload=payload, attempt_no=attempt_no)
            attempt_result = await self.run_attempt(attempt, token=token)
            result.attempts.append(attempt_result)
            if attempt_result.outcome == AttemptOutcome.SENT:
                result.outcome = AttemptOutcome.SENT
                break
            if not attempt_result.retryable:
                logger.warning(
                    "Target %s failed with non-retryable %s: %s",
                    target,
                    attempt_result.failure_class.value if attempt_result.failure_class else "?",
                    attempt_result.reason,
                )
                break
            if attempt_no == self.delivery.max_attempts:
                break
            if token is not None and token.cancelled:
                logger.info("Stop requested; abandoning retries for %s", target)
                break
            delay = jittered_backoff(
                retry_number=attempt_no,
                base_seconds=self.delivery.retry_base_seconds,
                max_seconds=self.delivery.retry_max_seconds,
                rng=self._random,
            )
            logger.info(
                "Attempt %d/%d for %s failed (%s), retrying in %.1fs",
                attempt_no,
                self.delivery.max_attempts,
                target,
                attempt_result.reason,
                delay,
            )
            if not await self._wait(delay, token):
                break

        if result.outcome != AttemptOutcome.SENT and result.attempts:
            last = result.attempts[-1]
            result.outcome = (
                AttemptOutcome.TIMED_OUT
                if last.outcome == AttemptOutcome.TIMED_OUT
                else AttemptOutcome.FAILED
            )
        self.summary.add(result)
        return result

    async def run_attempt(
        self,
        attempt: DeliveryAttempt,
        *,
        token: CancellationToken | None = None,
    ) -> AttemptResult:
        """Run one attempt under the hard deadline; the context is released exactly once."""

        lease = ContextLease(self.provider)
        try:
            try:
                await asyncio.wait_for(
                    self._drive(attempt, lease, token),
                    timeout=self.delivery.attempt_timeout_seconds,
                )
            except asyncio.TimeoutError as error:
                if not attempt.finished:
                    classification = classify_attempt_failure(error)
                    attempt.finalize(
                        AttemptOutcome.TIMED_OUT,
                        failure_class=classification.failure_class,
                        reason=(
                            f"deadline of {self.delivery.attempt_timeout_seconds}s exceeded "
                            f"in state {attempt.state.value}"
                        ),
                    )
            except Exception as error:  # noqa: BLE001
                classification = classify_attempt_failure(error)
                logger.info(
                    "Attempt failed: %s",
                    classification.to_event_details(
                        target=attempt.target,
                        attempt_no=attempt.attempt_no,
                    ),
                )
                if not attempt.finished:
                    attempt.finalize(
                        AttemptOutcome.FAILED,
                        failure_class=classification.failure_class,
                        reason=str(error) or classification.reason_code,
                    )
            if attempt.finished and attempt.result.outcome == AttemptOutcome.SENT:
                await self._close_grace()
        finally:
            await lease.release()
        return attempt.result

    async def _drive(
        self,
        attempt: DeliveryAttempt,
        lease: ContextLease,
        token: CancellationToken | None,
    ) -> None:
        context = await lease.acquire(attempt.target, attempt.payload)
        await self._wait_until_ready(context, token)
        attempt.advance(AttemptState.CONTEXT_ACQUIRED)

        attempt.strategy = await self.injector.inject(context, attempt.payload)
        attempt.advance(AttemptState.CONTENT_INJECTED)

        baseline = await context.observe(recent_window=self.verifier.recent_window)
        if self.delivery.pre_submit_settle_seconds > 0:
            await self._sleep(self.delivery.pre_submit_settle_seconds)
        attempt.submit_method = await self._submit(context)
        attempt.advance(AttemptState.SUBMITTED)

        if self.delivery.verify_settle_seconds > 0:
            await self._sleep(self.delivery.verify_settle_seconds)
        attempt.advance(AttemptState.VERIFYING)
        report = await self._verify(context, baseline=baseline, payload=attempt.payload)
        attempt.verdict = report.verdict
        attempt.score = report.score
        if report.verdict == Verdict.SENT:
            logger.info(
                "Sent to %s (attempt %d, strategy=%s, submit=%s, score=%.2f)",
                attempt.target,
                attempt.attempt_no,
                attempt.strategy,
                attempt.submit_method,
                report.score,
            )
            attempt.finalize(AttemptOutcome.SENT, reason=report.reason)
        else:
            attempt.finalize(
                AttemptOutcome.FAILED,
                failure_class=FailureClass.UNVERIFIED,
                reason=f"{report.verdict.value}: {report.reason}",
            )

    async def _wait_until_ready(
        self,
        context: SurfaceContext,
        token: CancellationToken | None,
    ) -> None:
        async def _probe() -> SurfaceProbe:
            probe = await context.probe()
            if probe.error is not None:
                raise SurfaceError(f"Surface error for {context.target}: {probe.error}")
            return probe

        polled = await retry_until(
            _probe,
            policy=RetryPolicy(
                max_attempts=self.readiness.max_checks,
                initial_delay_seconds=self.readiness.initial_delay_seconds,
                interval_seconds=self.readiness.interval_seconds,
            ),
            accept=lambda probe: probe.ready,
            token=token,
            sleep=self._sleep,
        )
        if polled.cancelled:
            raise ContextUnavailableError("Stop requested before the context became ready.")
        if not polled.satisfied:
            raise ContextUnavailableError(
                f"Context for {context.target} not ready after {polled.attempts} checks.",
            )

    async def _submit(self, context: SurfaceContext) -> str:
        located = await retry_until(
            context.locate_send_control,
            policy=RetryPolicy(
                max_attempts=self.delivery.send_control_checks,
                interval_seconds=self.delivery.send_control_interval_seconds,
            ),
            sleep=self._sleep,
        )
        if located.satisfied:
            await context.activate_send_control()
            return SUBMIT_VIA_SEND_CONTROL
        logger.debug("Send control not found for %s; using confirm key", context.target)
        await context.press_confirm_key()
        return SUBMIT_VIA_CONFIRM_KEY

    async def _verify(
        self,
        context: SurfaceContext,
        *,
        baseline: SurfaceObservation,
        payload: str,
    ) -> VerificationReport:
        async def _check() -> VerificationReport:
            current = await context.observe(recent_window=self.verifier.recent_window)
            return self.verifier.evaluate(baseline=baseline, current=current, payload=payload)

        checked = await retry_until(
            _check,
            policy=RetryPolicy(
                max_attempts=self.delivery.verify_checks,
                interval_seconds=self.delivery.verify_interval_seconds,
            ),
            accept=lambda report: report.verdict == Verdict.SENT,
            sleep=self._sleep,
        )
        if checked.value is None:
            raise RuntimeError("Verification produced no report.")
        return checked.value

    async def _close_grace(self) -> None:
        if self.delivery.close_grace_seconds > 0:
            await self._sleep(self.delivery.close_grace_seconds)

    async def _wait(self, seconds: float, token: CancellationToken | None) -> bool:
        if token is not None:
            return await token.sleep(seconds)
        if seconds > 0:
            await self._sleep(seconds)
        return True
