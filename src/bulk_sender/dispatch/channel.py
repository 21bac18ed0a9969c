"""Status channel: control commands in, progress events out.

Messages use the ``{"type": ..., "data": {...}}`` envelope with camelCase
fields so any UI speaking the browser-extension protocol can drive a job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bulk_sender.config import JobLimits
from bulk_sender.dispatch.models import (
    AlreadyRunningError,
    AttemptOutcome,
    Job,
    OrchestratorState,
)

if TYPE_CHECKING:
    from bulk_sender.dispatch.orchestrator import BulkSendOrchestrator

logger = logging.getLogger(__name__)

START_BULK_SEND = "START_BULK_SEND"
STOP_BULK_SEND = "STOP_BULK_SEND"
SEND_PROGRESS = "SEND_PROGRESS"
SEND_COMPLETE = "SEND_COMPLETE"


@dataclass(frozen=True, slots=True)
class StartBulkSend:
    phone_numbers: tuple[str, ...]
    message: str
    delay_ms: int

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> StartBulkSend:
        numbers = data.get("phoneNumbers") or ()
        if isinstance(numbers, str):
            numbers = (numbers,)
        try:
            delay_ms = int(data.get("delay", 0))
        except (TypeError, ValueError) as error:
            raise ValueError("Delay must be a whole number of milliseconds.") from error
        return cls(
            phone_numbers=tuple(str(number) for number in numbers),
            message=str(data.get("message") or ""),
            delay_ms=delay_ms,
        )

    def to_message(self) -> dict[str, Any]:
        return {
            "type": START_BULK_SEND,
            "data": {
                "phoneNumbers": list(self.phone_numbers),
                "message": self.message,
                "delay": self.delay_ms,
            },
        }


@dataclass(frozen=True, slots=True)
class StopBulkSend:
    def to_message(self) -> dict[str, Any]:
        return {"type": STOP_BULK_SEND, "data": {}}


@dataclass(frozen=True, slots=True)
class SendProgress:
    """Emitted once after every processed target."""

    sent: int
    failed: int
    current: int
    total: int
    current_target: str
    outcome: AttemptOutcome

    def to_message(self) -> dict[str, Any]:
        return {
            "type": SEND_PROGRESS,
            "data": {
                "sent": self.sent,
                "failed": self.failed,
                "current": self.current,
                "total": self.total,
                "currentNumber": self.current_target,
                "outcome": self.outcome.value,
            },
        }


@dataclass(frozen=True, slots=True)
class SendComplete:
    """Emitted exactly once per job, on exhaustion or stop."""

    sent: int
    failed: int
    total: int
    stopped: bool = False

    def to_message(self) -> dict[str, Any]:
        return {
            "type": SEND_COMPLETE,
            "data": {
                "sent": self.sent,
                "failed": self.failed,
                "total": self.total,
                "stopped": self.stopped,
            },
        }


StatusEvent = SendProgress | SendComplete
Listener = Callable[[StatusEvent], object]


class StatusChannel:
    """Fan-out of status events; a broken listener never breaks the batch."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: StatusEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Status listener %r failed on %s",
                    listener,
                    type(event).__name__,
                    exc_info=True,
                )


class ControlEndpoint:
    """Translates wire commands into orchestrator transitions."""

    def __init__(
        self,
        orchestrator: BulkSendOrchestrator,
        *,
        limits: JobLimits | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.limits = limits or JobLimits()

    async def handle(self, message: Mapping[str, Any]) -> dict[str, Any]:
        """Handle one request and return the response envelope."""

        message_type = message.get("type")
        data = message.get("data") or {}
        if message_type == START_BULK_SEND:
            if self.orchestrator.state == OrchestratorState.RUNNING:
                return {"success": False, "error": str(AlreadyRunningError())}
            try:
                request = StartBulkSend.from_data(data)
                job = Job.create(
                    targets=request.phone_numbers,
                    payload=request.message,
                    delay_ms=request.delay_ms,
                    limits=self.limits,
                )
                self.orchestrator.submit(job)
            except (AlreadyRunningError, ValueError) as error:
                return {"success": False, "error": str(error)}
            return {"success": True, "jobId": job.job_id, "total": len(job.targets)}
        if message_type == STOP_BULK_SEND:
            self.orchestrator.stop()
            return {"success": True}
        logger.debug("Rejected unknown message type %r", message_type)
        return {"success": False, "error": "Unknown message type"}
