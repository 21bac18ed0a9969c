"""Deterministic attempt failure classification for worker retry policy."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from bulk_sender.dispatch.injector import InjectionFailedError
from bulk_sender.dispatch.models import NON_RETRYABLE_FAILURES, FailureClass
from bulk_sender.dispatch.surface.base import ContextUnavailableError, SurfaceError

ATTEMPT_FAILURE_CLASSIFIER_VERSION = 1

_SURFACE_REJECTION_PATTERNS: tuple[str, ...] = (
    "invalid",
    "not on whatsapp",
    "blocked",
    "unsupported",
    "alert-phone",
)
_CONTEXT_LOST_PATTERNS: tuple[str, ...] = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "page has been closed",
    "execution context was destroyed",
    "net::err",
    "navigation failed",
)


@dataclass(slots=True)
class AttemptFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class not in NON_RETRYABLE_FAILURES

    def to_event_details(self, *, target: str, attempt_no: int) -> dict[str, object]:
        """Serialize classifier diagnostics for attempt logs."""

        return {
            "classifier_version": ATTEMPT_FAILURE_CLASSIFIER_VERSION,
            "target": target,
            "attempt_no": attempt_no,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_attempt_failure(error: BaseException) -> AttemptFailureClassification:
    """Classify an exception raised inside an attempt into a retry class.

    Anything unrecognized becomes ``unverified``: fail-safe toward retry,
    never toward silent success.
    """

    if isinstance(error, asyncio.TimeoutError):
        return AttemptFailureClassification(
            failure_class=FailureClass.TIMED_OUT,
            reason_code="attempt_deadline_exceeded",
            matched_rule="timeout",
            matched_pattern=None,
        )
    if isinstance(error, SurfaceError):
        return AttemptFailureClassification(
            failure_class=FailureClass.SURFACE_ERROR,
            reason_code="surface_rejected_target",
            matched_rule="surface_error",
            matched_pattern=_first_match(_normalize(error), _SURFACE_REJECTION_PATTERNS),
        )
    if isinstance(error, InjectionFailedError):
        return AttemptFailureClassification(
            failure_class=FailureClass.INJECTION_FAILED,
            reason_code="injection_strategies_exhausted",
            matched_rule="injection_failed",
            matched_pattern=None,
        )
    if isinstance(error, ContextUnavailableError):
        return AttemptFailureClassification(
            failure_class=FailureClass.CONTEXT_UNAVAILABLE,
            reason_code="context_not_ready",
            matched_rule="context_unavailable",
            matched_pattern=None,
        )

    haystack = _normalize(error)
    pattern = _first_match(haystack, _CONTEXT_LOST_PATTERNS)
    if pattern is not None:
        return AttemptFailureClassification(
            failure_class=FailureClass.CONTEXT_UNAVAILABLE,
            reason_code="context_lost",
            matched_rule="context_lost",
            matched_pattern=pattern,
        )

    return AttemptFailureClassification(
        failure_class=FailureClass.UNVERIFIED,
        reason_code="unclassified_error",
        matched_rule="fallback_unverified",
        matched_pattern=None,
    )


def _normalize(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
