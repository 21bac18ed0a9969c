from __future__ import annotations

import asyncio

import allure

from bulk_sender.dispatch.channel import (
    ControlEndpoint,
    SendComplete,
    SendProgress,
    StartBulkSend,
    StatusChannel,
    StopBulkSend,
)
from bulk_sender.dispatch.models import AttemptOutcome, OrchestratorState, Statistics
from bulk_sender.dispatch.orchestrator import BulkSendOrchestrator
from bulk_sender.dispatch.surface.scripted import ScriptedProvider

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Status channel"),
]


def test_progress_and_complete_wire_format() -> None:
    progress = SendProgress(
        sent=1,
        failed=2,
        current=3,
        total=4,
        current_target="+1234567",
        outcome=AttemptOutcome.TIMED_OUT,
    )

    assert progress.to_message() == {
        "type": "SEND_PROGRESS",
        "data": {
            "sent": 1,
            "failed": 2,
            "current": 3,
            "total": 4,
            "currentNumber": "+1234567",
            "outcome": "timed_out",
        },
    }
    assert SendComplete(sent=1, failed=0, total=3, stopped=True).to_message() == {
        "type": "SEND_COMPLETE",
        "data": {"sent": 1, "failed": 0, "total": 3, "stopped": True},
    }


def test_start_request_parses_camel_case_fields() -> None:
    request = StartBulkSend.from_data(
        {"phoneNumbers": ["+1234567", "+7654321"], "message": "hi", "delay": "6000"},
    )

    assert request == StartBulkSend(
        phone_numbers=("+1234567", "+7654321"),
        message="hi",
        delay_ms=6000,
    )
    assert StartBulkSend.from_data(request.to_message()["data"]) == request
    assert StopBulkSend().to_message() == {"type": "STOP_BULK_SEND", "data": {}}


def test_failing_listener_does_not_break_publish() -> None:
    channel = StatusChannel()
    received: list[object] = []

    def _broken(_: object) -> None:
        raise RuntimeError("popup closed")

    channel.subscribe(_broken)
    unsubscribe = channel.subscribe(received.append)
    event = SendComplete(sent=0, failed=0, total=0)

    channel.publish(event)
    unsubscribe()
    channel.publish(event)

    assert received == [event]


def _endpoint(make_worker, recording_sleep) -> tuple[ControlEndpoint, BulkSendOrchestrator]:
    orchestrator = BulkSendOrchestrator(
        worker=make_worker(ScriptedProvider()),
        sleep=recording_sleep,
    )
    return ControlEndpoint(orchestrator), orchestrator


def test_endpoint_starts_job_and_rejects_second_start(make_worker, recording_sleep) -> None:
    endpoint, orchestrator = _endpoint(make_worker, recording_sleep)
    start = StartBulkSend(phone_numbers=("+1234567", "1234567"), message="hi", delay_ms=5000)

    async def _scenario():
        first = await endpoint.handle(start.to_message())
        busy = await endpoint.handle(start.to_message())
        stats = await orchestrator.wait()
        return first, busy, stats

    first, busy, stats = asyncio.run(_scenario())

    assert first["success"] is True
    assert first["total"] == 1
    assert busy == {"success": False, "error": "Already processing"}
    assert stats == Statistics(sent=1, failed=0, total=1)


def test_endpoint_reports_validation_errors(make_worker, recording_sleep) -> None:
    endpoint, orchestrator = _endpoint(make_worker, recording_sleep)

    response = asyncio.run(
        endpoint.handle(
            {"type": "START_BULK_SEND", "data": {"phoneNumbers": ["+1234567"], "delay": 5000}},
        ),
    )

    assert response == {"success": False, "error": "Please enter a message to send."}
    assert orchestrator.state == OrchestratorState.IDLE


def test_endpoint_stop_always_succeeds_and_unknown_type_is_rejected(
    make_worker,
    recording_sleep,
) -> None:
    endpoint, _ = _endpoint(make_worker, recording_sleep)

    async def _scenario():
        return (
            await endpoint.handle(StopBulkSend().to_message()),
            await endpoint.handle({"type": "PING"}),
        )

    stop, unknown = asyncio.run(_scenario())

    assert stop == {"success": True}
    assert unknown == {"success": False, "error": "Unknown message type"}
