"""Heuristic outcome verification for a submitted payload.

The surface returns no message id, so success is inferred from structural
signals, each unreliable on its own:

- the content area is empty again (weak: it can clear without sending),
- a new outbound message appeared compared to the pre-submit baseline (strong),
- the latest outbound message carries a delivery/read status marker (strong),
- the most recent conversation entries are all outbound and differ from the
  baseline window (moderate; the rendered count can stay flat after a send).

``sent`` requires the empty content area AND at least one structural signal.
A wrong ``sent`` drops a retry that was still needed, so everything short of
that is ``unverified`` or, when the payload is plainly still unsent, ``failed``.
"""

from __future__ import annotations

from dataclasses import dataclass

from bulk_sender.dispatch.injector import content_matches
from bulk_sender.dispatch.models import Verdict
from bulk_sender.dispatch.surface.base import SurfaceObservation

SIGNAL_WEIGHTS: dict[str, float] = {
    "content_cleared": 0.10,
    "new_outbound_message": 0.45,
    "delivery_status_marker": 0.35,
    "recent_entries_outbound": 0.20,
}
STRUCTURAL_SIGNALS = frozenset(
    {"new_outbound_message", "delivery_status_marker", "recent_entries_outbound"},
)
DELIVERY_STATUS_MARKERS = frozenset({"check", "dblcheck"})
RECENT_WINDOW = 3


@dataclass(frozen=True, slots=True)
class VerificationReport:
    """Verdict with the signals that produced it."""

    verdict: Verdict
    score: float
    signals: frozenset[str]
    reason: str


class OutcomeVerifier:
    """Scores observations taken before and after submission."""

    def __init__(self, *, recent_window: int = RECENT_WINDOW) -> None:
        self.recent_window = recent_window

    def evaluate(
        self,
        *,
        baseline: SurfaceObservation,
        current: SurfaceObservation,
        payload: str,
    ) -> VerificationReport:
        signals: set[str] = set()
        content = current.content_text
        cleared = content is not None and not content.strip()
        if cleared:
            signals.add("content_cleared")
        if current.outbound_count > baseline.outbound_count:
            signals.add("new_outbound_message")
        if current.latest_outbound_status in DELIVERY_STATUS_MARKERS and (
            current.outbound_count > baseline.outbound_count
            or baseline.latest_outbound_status not in DELIVERY_STATUS_MARKERS
        ):
            signals.add("delivery_status_marker")
        recent = current.recent_directions[-self.recent_window :]
        if (
            len(recent) == self.recent_window
            and all(direction == "out" for direction in recent)
            and current.recent_directions != baseline.recent_directions
        ):
            signals.add("recent_entries_outbound")

        score = round(sum(SIGNAL_WEIGHTS[name] for name in signals), 4)
        structural = signals & STRUCTURAL_SIGNALS
        frozen = frozenset(signals)

        if current.error is not None:
            return VerificationReport(
                verdict=Verdict.FAILED,
                score=score,
                signals=frozen,
                reason=f"surface error marker: {current.error}",
            )
        if cleared and structural:
            return VerificationReport(
                verdict=Verdict.SENT,
                score=score,
                signals=frozen,
                reason="content cleared with " + ", ".join(sorted(structural)),
            )
        if not structural and content is not None and content_matches(content, payload):
            return VerificationReport(
                verdict=Verdict.FAILED,
                score=score,
                signals=frozen,
                reason="payload still in content area",
            )
        return VerificationReport(
            verdict=Verdict.UNVERIFIED,
            score=score,
            signals=frozen,
            reason=_unverified_reason(cleared=cleared, structural=bool(structural)),
        )


def _unverified_reason(*, cleared: bool, structural: bool) -> str:
    if cleared:
        return "content cleared without structural evidence"
    if structural:
        return "structural evidence but content area not empty"
    return "no evidence of submission"
