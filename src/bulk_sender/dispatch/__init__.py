"""Delivery orchestration for an uncontrolled chat web surface.

Why not a generic browser task queue?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The surface gives no acknowledgment for a sent message, so the hard part is
not queuing: it is driving each page to an observable end state and deciding
from weak structural signals whether the message actually left.

- One disposable page per attempt, released on every exit path.
- Interchangeable content insertion strategies tried in a fixed order.
- Heuristic tri-state verification (sent / failed / unverified).
- A bounded retry policy with a hard per-attempt deadline.

Targets are processed strictly one at a time on a single asyncio loop, which
keeps load on the surface bounded and keeps the statistics single-writer.
"""
