"""Payload insertion into a context's content area."""

from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from bulk_sender.config import InjectionSettings
from bulk_sender.dispatch.retry import RetryPolicy, retry_until
from bulk_sender.dispatch.surface.base import SurfaceContext

logger = logging.getLogger(__name__)


class InjectionFailedError(RuntimeError):
    """No strategy left the content area holding the payload."""


class InjectionStrategy(Protocol):
    """One way of placing the payload into the content area."""

    name: str

    async def attempt(self, context: SurfaceContext, payload: str) -> None:
        """Write ``payload``; the injector checks the post-condition."""


class DirectAssignment:
    name = "direct_assignment"

    async def attempt(self, context: SurfaceContext, payload: str) -> None:
        await context.set_text(payload)


class MarkupAssignment:
    """Mimics the editor's own span structure for a single text run."""

    name = "markup_assignment"

    async def attempt(self, context: SurfaceContext, payload: str) -> None:
        await context.set_markup(f'<span data-lexical-text="true">{html.escape(payload)}</span>')


class NativeInsertText:
    name = "native_insert_text"

    async def attempt(self, context: SurfaceContext, payload: str) -> None:
        if not await context.insert_text_native(payload):
            logger.debug("Native insert-text command unavailable for %s", context.target)


class SimulatedTyping:
    """Character-by-character entry with a change notification after each key."""

    name = "simulated_typing"

    def __init__(
        self,
        *,
        delay_seconds: float = 0.01,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def attempt(self, context: SurfaceContext, payload: str) -> None:
        await context.clear_content()
        for char in payload:
            await context.type_character(char)
            await context.dispatch_change_signals()
            if self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)


def default_strategies(settings: InjectionSettings | None = None) -> tuple[InjectionStrategy, ...]:
    """Strategies ordered from least to most invasive."""

    settings = settings or InjectionSettings()
    return (
        DirectAssignment(),
        MarkupAssignment(),
        NativeInsertText(),
        SimulatedTyping(delay_seconds=settings.typing_delay_seconds),
    )


def content_matches(actual: str, payload: str) -> bool:
    """Exact match, or payload wrapped by surface-side formatting."""

    return actual == payload or (bool(payload) and payload in actual)


class ContentInjector:
    """Tries each strategy in order until the content area holds the payload."""

    def __init__(
        self,
        *,
        settings: InjectionSettings | None = None,
        strategies: Sequence[InjectionStrategy] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or InjectionSettings()
        self.strategies = tuple(strategies or default_strategies(self.settings))
        self._sleep = sleep

    async def inject(self, context: SurfaceContext, payload: str) -> str:
        """Return the name of the strategy that succeeded."""

        located = await retry_until(
            context.locate_content_area,
            policy=RetryPolicy(
                max_attempts=self.settings.input_lookup_checks,
                interval_seconds=self.settings.input_lookup_interval_seconds,
            ),
            sleep=self._sleep,
        )
        if not located.satisfied:
            raise InjectionFailedError(
                f"Content area not found after {located.attempts} checks.",
            )

        for strategy in self.strategies:
            await strategy.attempt(context, payload)
            await context.dispatch_change_signals()
            if self.settings.strategy_pause_seconds > 0:
                await self._sleep(self.settings.strategy_pause_seconds)
            actual = await context.read_content()
            if content_matches(actual, payload):
                logger.debug("Payload placed for %s via %s", context.target, strategy.name)
                return strategy.name
            logger.debug(
                "Strategy %s left %d chars for %s, trying next",
                strategy.name,
                len(actual),
                context.target,
            )

        raise InjectionFailedError(
            f"All {len(self.strategies)} insertion strategies exhausted without a match.",
        )
