"""Append-only JSONL journal of status events."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bulk_sender.dispatch.channel import SEND_PROGRESS, StatusEvent
from bulk_sender.dispatch.models import AttemptOutcome, utc_now

logger = logging.getLogger(__name__)


@dataclass
class EventJournal:
    """Channel listener writing one JSON object per event."""

    path: Path
    job_id: str
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event = {
            "type": event_type,
            "job_id": self.job_id,
            "ts": utc_now().isoformat(),
        }
        event.update(payload)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = f"{json.dumps(event)}\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        return event

    def __call__(self, event: StatusEvent) -> None:
        message = event.to_message()
        self.emit(message["type"], **message["data"])


def read_delivered_targets(path: Path) -> set[str]:
    """Targets with a ``sent`` progress event in an existing journal."""

    if not path.exists():
        return set()
    delivered: set[str] = set()
    with path.open(encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed journal line %d in %s", line_no, path)
                continue
            if (
                event.get("type") == SEND_PROGRESS
                and event.get("outcome") == AttemptOutcome.SENT.value
                and event.get("currentNumber")
            ):
                delivered.add(str(event["currentNumber"]))
    return delivered
