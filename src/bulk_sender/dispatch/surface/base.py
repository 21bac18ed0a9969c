"""Surface interface for per-attempt execution contexts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class SurfaceError(RuntimeError):
    """The surface reports an invalid-target or blocked condition; retrying is futile."""


class ContextUnavailableError(RuntimeError):
    """A context could not reach the interactive-ready condition in time.

    Always retryable: the failure classifier maps it to ``context_unavailable``.
    """


class SurfaceStatus(str, Enum):
    """Coarse state of the surface's home view, used before starting a batch."""

    LOGGED_OUT = "logged_out"
    LOADING = "loading"
    READY = "ready"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class SurfaceProbe:
    """One readiness sample of a freshly opened context."""

    loading: bool
    interactive: bool
    error: str | None = None

    @property
    def ready(self) -> bool:
        return self.interactive and not self.loading and self.error is None


@dataclass(frozen=True, slots=True)
class SurfaceObservation:
    """Structural snapshot of the conversation view.

    ``content_text`` is None when the content area cannot be located.
    ``recent_directions`` lists the most recent conversation entries, oldest
    first, as ``"out"`` or ``"in"``.
    """

    content_text: str | None
    outbound_count: int
    latest_outbound_status: str | None = None
    recent_directions: tuple[str, ...] = ()
    error: str | None = None


class SurfaceContext(Protocol):
    """Ephemeral execution surface bound to one (target, payload) pair."""

    target: str
    payload: str

    async def probe(self) -> SurfaceProbe:
        """Sample loading/interactive/error markers."""

    async def locate_content_area(self) -> bool:
        """Find and focus the editable content area."""

    async def read_content(self) -> str:
        """Return the content area's current text."""

    async def set_text(self, text: str) -> None:
        """Bulk-assign the content area's text."""

    async def set_markup(self, markup: str) -> None:
        """Assign the content area's inner markup."""

    async def insert_text_native(self, text: str) -> bool:
        """Replace content via the page's native insert command; False if unsupported."""

    async def clear_content(self) -> None:
        """Empty the content area."""

    async def type_character(self, char: str) -> None:
        """Append one character as simulated entry."""

    async def dispatch_change_signals(self) -> None:
        """Fire the change notifications the surface listens to."""

    async def locate_send_control(self) -> bool:
        """Return True when an enabled send control is present."""

    async def activate_send_control(self) -> None:
        """Click the send control."""

    async def press_confirm_key(self) -> None:
        """Send the surface's canonical confirm key to the content area."""

    async def observe(self, *, recent_window: int) -> SurfaceObservation:
        """Snapshot the conversation view for verification."""

    async def close(self) -> None:
        """Discard the context."""


class ContextProvider(Protocol):
    """Opens and tears down one ephemeral context per delivery attempt."""

    async def open(self, target: str, payload: str) -> SurfaceContext:
        """Open a context addressed to ``target`` pre-filled with ``payload``."""

    async def status(self) -> SurfaceStatus:
        """Inspect the surface home view (login state) without addressing a target."""


class ManagedProvider(ContextProvider, Protocol):
    """Provider owning a long-lived resource such as a browser."""

    async def start(self) -> None:
        """Acquire the underlying resource."""

    async def stop(self) -> None:
        """Release the underlying resource."""


class ContextLease:
    """Owns at most one context and guarantees it is closed at most once.

    Callers release in ``finally``; the lease turns repeated releases into
    no-ops so the context is closed exactly once on every exit path.
    """

    def __init__(self, provider: ContextProvider) -> None:
        self._provider = provider
        self.context: SurfaceContext | None = None
        self.released = False

    async def acquire(self, target: str, payload: str) -> SurfaceContext:
        if self.context is not None or self.released:
            raise RuntimeError("Context lease is single-use.")
        self.context = await self._provider.open(target, payload)
        return self.context

    async def release(self) -> bool:
        """Close the held context; return True only for the call that closed it."""

        if self.released:
            return False
        self.released = True
        if self.context is None:
            return False
        try:
            await self.context.close()
        except Exception as error:  # noqa: BLE001
            logger.warning("Failed to close context for %s: %s", self.context.target, error)
        return True
