"""Deterministic in-memory surface for dry runs and tests."""

from __future__ import annotations

import asyncio
import html
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from bulk_sender.dispatch.surface.base import (
    SurfaceObservation,
    SurfaceProbe,
    SurfaceStatus,
)

ALL_PRIMITIVES = frozenset({"set_text", "set_markup", "insert_text_native", "type_character"})

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(slots=True)
class SurfaceScript:
    """Behaviour of one scripted context.

    ``sticky_primitives`` names the insertion primitives whose writes the
    surface keeps; writes through other primitives are silently reverted,
    mimicking a rich editor that ignores foreign DOM edits.
    """

    ready_after_probes: int = 1
    never_ready: bool = False
    error: str | None = None
    content_area_present: bool = True
    sticky_primitives: frozenset[str] = ALL_PRIMITIVES
    native_insert_supported: bool = True
    send_control_present: bool = True
    delivers: bool = True
    clears_on_submit: bool = True
    status_marker: str | None = "check"
    incoming_before: int = 0
    hang_on: str | None = None
    raise_on: dict[str, Exception] = field(default_factory=dict)


class ScriptedSurface:
    """SurfaceContext implementation driven by a ``SurfaceScript``."""

    def __init__(self, *, target: str, payload: str, script: SurfaceScript) -> None:
        self.target = target
        self.payload = payload
        self.script = script
        self.content = ""
        self.directions: list[str] = ["in"] * script.incoming_before
        self.outbound: list[str | None] = []
        self.sent_messages: list[str] = []
        self.probes = 0
        self.close_calls = 0
        self.calls: list[str] = []

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.script.hang_on == name:
            await asyncio.Event().wait()
        error = self.script.raise_on.get(name)
        if error is not None:
            raise error

    def _write(self, primitive: str, value: str) -> None:
        if primitive in self.script.sticky_primitives:
            self.content = value

    async def probe(self) -> SurfaceProbe:
        await self._enter("probe")
        self.probes += 1
        if self.script.error is not None:
            return SurfaceProbe(loading=False, interactive=False, error=self.script.error)
        if self.script.never_ready or self.probes < self.script.ready_after_probes:
            return SurfaceProbe(loading=True, interactive=False)
        return SurfaceProbe(loading=False, interactive=self.script.content_area_present)

    async def locate_content_area(self) -> bool:
        await self._enter("locate_content_area")
        return self.script.content_area_present

    async def read_content(self) -> str:
        await self._enter("read_content")
        return self.content

    async def set_text(self, text: str) -> None:
        await self._enter("set_text")
        self._write("set_text", text)

    async def set_markup(self, markup: str) -> None:
        await self._enter("set_markup")
        self._write("set_markup", html.unescape(_TAG_RE.sub("", markup)))

    async def insert_text_native(self, text: str) -> bool:
        await self._enter("insert_text_native")
        if not self.script.native_insert_supported:
            return False
        self._write("insert_text_native", text)
        return True

    async def clear_content(self) -> None:
        await self._enter("clear_content")
        self.content = ""

    async def type_character(self, char: str) -> None:
        await self._enter("type_character")
        if "type_character" in self.script.sticky_primitives:
            self.content += char

    async def dispatch_change_signals(self) -> None:
        await self._enter("dispatch_change_signals")

    async def locate_send_control(self) -> bool:
        await self._enter("locate_send_control")
        return self.script.send_control_present and bool(self.content)

    async def activate_send_control(self) -> None:
        await self._enter("activate_send_control")
        self._submit()

    async def press_confirm_key(self) -> None:
        await self._enter("press_confirm_key")
        self._submit()

    def _submit(self) -> None:
        if not self.content:
            return
        if self.script.delivers:
            self.sent_messages.append(self.content)
            self.outbound.append(self.script.status_marker)
            self.directions.append("out")
        if self.script.clears_on_submit:
            self.content = ""

    async def observe(self, *, recent_window: int) -> SurfaceObservation:
        await self._enter("observe")
        return SurfaceObservation(
            content_text=self.content if self.script.content_area_present else None,
            outbound_count=len(self.outbound),
            latest_outbound_status=self.outbound[-1] if self.outbound else None,
            recent_directions=tuple(self.directions[-recent_window:]),
            error=self.script.error,
        )

    async def close(self) -> None:
        self.close_calls += 1
        self.calls.append("close")


class ScriptedProvider:
    """ContextProvider handing out ``ScriptedSurface`` instances.

    Scripts are consumed one per opened context; the last script repeats.
    """

    def __init__(
        self,
        scripts: Sequence[SurfaceScript] | SurfaceScript | None = None,
        *,
        status: SurfaceStatus = SurfaceStatus.READY,
        open_error: Exception | None = None,
    ) -> None:
        if scripts is None:
            scripts = [SurfaceScript()]
        elif isinstance(scripts, SurfaceScript):
            scripts = [scripts]
        if not scripts:
            raise ValueError("ScriptedProvider requires at least one script.")
        self._scripts = list(scripts)
        self._status = status
        self._open_error = open_error
        self.opened: list[ScriptedSurface] = []
        self.started = False
        self.stopped = False

    async def open(self, target: str, payload: str) -> ScriptedSurface:
        if self._open_error is not None:
            raise self._open_error
        index = min(len(self.opened), len(self._scripts) - 1)
        surface = ScriptedSurface(target=target, payload=payload, script=self._scripts[index])
        self.opened.append(surface)
        return surface

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def status(self) -> SurfaceStatus:
        return self._status

    @property
    def open_contexts(self) -> list[ScriptedSurface]:
        return [surface for surface in self.opened if not surface.closed]
