"""Domain models for bulk delivery jobs and attempts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from bulk_sender.config import JobLimits
from bulk_sender.dispatch.targets import normalize_targets


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class AlreadyRunningError(RuntimeError):
    """A job is already in flight; the new submission was rejected."""

    def __init__(self, message: str = "Already processing") -> None:
        super().__init__(message)


class OrchestratorState(str, Enum):
    """Orchestrator lifecycle; at most one job is RUNNING."""

    IDLE = "idle"
    RUNNING = "running"


class AttemptState(str, Enum):
    """Per-attempt state machine positions."""

    START = "start"
    CONTEXT_ACQUIRED = "context_acquired"
    CONTENT_INJECTED = "content_injected"
    SUBMITTED = "submitted"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_ATTEMPT_STATES = frozenset({AttemptState.SUCCEEDED, AttemptState.FAILED})


class AttemptOutcome(str, Enum):
    """Terminal outcome of one delivery attempt or one target."""

    SENT = "sent"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    CONTEXT_UNAVAILABLE = "context_unavailable"
    INJECTION_FAILED = "injection_failed"
    UNVERIFIED = "unverified"
    TIMED_OUT = "timed_out"
    SURFACE_ERROR = "surface_error"


NON_RETRYABLE_FAILURES = frozenset({FailureClass.SURFACE_ERROR})


class Verdict(str, Enum):
    """Outcome verifier judgment."""

    SENT = "sent"
    FAILED = "failed"
    UNVERIFIED = "unverified"


@dataclass(slots=True)
class Statistics:
    """Running per-job tally."""

    sent: int = 0
    failed: int = 0
    total: int = 0

    @property
    def processed(self) -> int:
        return self.sent + self.failed

    def record(self, outcome: AttemptOutcome) -> None:
        if self.processed >= self.total:
            raise RuntimeError("Statistics already account for every target.")
        if outcome == AttemptOutcome.SENT:
            self.sent += 1
        else:
            self.failed += 1

    def snapshot(self) -> Statistics:
        return Statistics(sent=self.sent, failed=self.failed, total=self.total)


@dataclass(slots=True)
class Job:
    """Ordered unique targets, one payload, one inter-item delay."""

    targets: tuple[str, ...]
    payload: str
    delay_ms: int
    job_id: str = field(default_factory=lambda: uuid4().hex)
    stats: Statistics = field(default_factory=Statistics)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000

    @classmethod
    def create(
        cls,
        *,
        targets: list[str] | tuple[str, ...],
        payload: str,
        delay_ms: int,
        limits: JobLimits | None = None,
    ) -> Job:
        """Normalize targets and validate bounds; raise ValueError for an unusable job."""

        limits = limits or JobLimits()
        report = normalize_targets(targets)
        if not report.targets:
            raise ValueError(
                "Please enter at least one valid phone number with country code "
                "(e.g., +1234567890).",
            )
        if len(report.targets) > limits.max_targets:
            raise ValueError(
                f"Maximum {limits.max_targets} phone numbers allowed per batch.",
            )
        message = payload.strip()
        if not message:
            raise ValueError("Please enter a message to send.")
        if len(message) > limits.max_payload_chars:
            raise ValueError(
                f"Message is too long (maximum {limits.max_payload_chars} characters).",
            )
        if delay_ms < limits.min_delay_ms:
            raise ValueError(
                f"Delay must be at least {limits.min_delay_ms} ms to avoid being blocked.",
            )
        if delay_ms > limits.max_delay_ms:
            raise ValueError(f"Delay cannot exceed {limits.max_delay_ms} ms.")
        return cls(targets=report.targets, payload=message, delay_ms=delay_ms)


@dataclass(slots=True)
class AttemptResult:
    """Terminal record of one attempt."""

    attempt_no: int
    outcome: AttemptOutcome
    failure_class: FailureClass | None
    reason: str | None
    states: tuple[AttemptState, ...]
    strategy: str | None = None
    submit_method: str | None = None
    verdict: Verdict | None = None
    score: float | None = None

    @property
    def retryable(self) -> bool:
        return (
            self.outcome != AttemptOutcome.SENT
            and self.failure_class not in NON_RETRYABLE_FAILURES
        )


@dataclass(slots=True)
class DeliveryResult:
    """Final per-target result folded into job statistics."""

    target: str
    outcome: AttemptOutcome
    attempts: list[AttemptResult] = field(default_factory=list)

    @property
    def failure_class(self) -> FailureClass | None:
        if not self.attempts:
            return None
        return self.attempts[-1].failure_class


class DeliveryAttempt:
    """One run of the per-target state machine.

    The outcome is a single-assignment slot: whichever of verification,
    timeout or error resolves first sets it; a second assignment is a bug.
    """

    def __init__(self, *, target: str, payload: str, attempt_no: int) -> None:
        self.target = target
        self.payload = payload
        self.attempt_no = attempt_no
        self.state = AttemptState.START
        self.history: list[AttemptState] = [AttemptState.START]
        self.strategy: str | None = None
        self.submit_method: str | None = None
        self.verdict: Verdict | None = None
        self.score: float | None = None
        self._result: AttemptResult | None = None

    @property
    def finished(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> AttemptResult:
        if self._result is None:
            raise RuntimeError(f"Attempt {self.attempt_no} for {self.target} has no outcome yet.")
        return self._result

    def advance(self, state: AttemptState) -> None:
        if self.state in TERMINAL_ATTEMPT_STATES:
            raise RuntimeError(f"Attempt already terminal ({self.state.value}).")
        self.state = state
        self.history.append(state)

    def finalize(
        self,
        outcome: AttemptOutcome,
        *,
        failure_class: FailureClass | None = None,
        reason: str | None = None,
    ) -> AttemptResult:
        if self._result is not None:
            raise RuntimeError(
                f"Attempt {self.attempt_no} for {self.target} already finalized "
                f"as {self._result.outcome.value}.",
            )
        self.advance(
            AttemptState.SUCCEEDED if outcome == AttemptOutcome.SENT else AttemptState.FAILED,
        )
        self._result = AttemptResult(
            attempt_no=self.attempt_no,
            outcome=outcome,
            failure_class=failure_class,
            reason=reason,
            states=tuple(self.history),
            strategy=self.strategy,
            submit_method=self.submit_method,
            verdict=self.verdict,
            score=self.score,
        )
        return self._result
