from __future__ import annotations

import asyncio

import allure
import pytest

from bulk_sender.dispatch.surface.base import ContextLease, SurfaceProbe
from bulk_sender.dispatch.surface.scripted import ScriptedProvider

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Context lifecycle"),
]


def test_lease_closes_context_exactly_once() -> None:
    provider = ScriptedProvider()
    lease = ContextLease(provider)

    async def _scenario() -> list[bool]:
        await lease.acquire("+1234567", "hi")
        return [await lease.release(), await lease.release(), await lease.release()]

    assert asyncio.run(_scenario()) == [True, False, False]
    assert provider.opened[0].close_calls == 1
    assert lease.released is True


def test_lease_is_single_use() -> None:
    lease = ContextLease(ScriptedProvider())

    async def _scenario() -> None:
        await lease.acquire("+1234567", "hi")
        await lease.acquire("+1234567", "hi")

    with pytest.raises(RuntimeError, match="single-use"):
        asyncio.run(_scenario())


def test_release_without_context_is_harmless() -> None:
    lease = ContextLease(ScriptedProvider())

    assert asyncio.run(lease.release()) is False


def test_lease_logs_close_failure(caplog) -> None:
    provider = ScriptedProvider()
    lease = ContextLease(provider)

    async def _scenario() -> bool:
        surface = await lease.acquire("+1234567", "hi")

        async def _broken_close() -> None:
            raise RuntimeError("page already gone")

        surface.close = _broken_close
        return await lease.release()

    assert asyncio.run(_scenario()) is True
    assert "page already gone" in caplog.text


def test_probe_ready_requires_interactive_without_error() -> None:
    assert SurfaceProbe(loading=False, interactive=True).ready is True
    assert SurfaceProbe(loading=True, interactive=True).ready is False
    assert SurfaceProbe(loading=False, interactive=True, error="alert-phone").ready is False
