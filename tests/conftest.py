"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import replace

import pytest

from bulk_sender.config import (
    DeliverySettings,
    InjectionSettings,
    ReadinessSettings,
    Settings,
)
from bulk_sender.dispatch.injector import ContentInjector
from bulk_sender.dispatch.surface.base import ContextProvider
from bulk_sender.dispatch.worker import DeliveryWorker


class RecordingSleep:
    """Awaitable sleep replacement that only records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def fast_settings() -> Settings:
    """Settings with every pacing delay removed so tests run instantly."""

    return Settings(
        delivery=DeliverySettings(
            attempt_timeout_seconds=5.0,
            retry_base_seconds=0.0,
            retry_max_seconds=0.0,
            pre_submit_settle_seconds=0.0,
            verify_settle_seconds=0.0,
            verify_checks=2,
            verify_interval_seconds=0.0,
            send_control_checks=2,
            send_control_interval_seconds=0.0,
            close_grace_seconds=0.0,
        ),
        readiness=ReadinessSettings(initial_delay_seconds=0.0, interval_seconds=0.0, max_checks=5),
        injection=InjectionSettings(
            input_lookup_checks=2,
            input_lookup_interval_seconds=0.0,
            strategy_pause_seconds=0.0,
            typing_delay_seconds=0.0,
        ),
    )


@pytest.fixture()
def make_worker(fast_settings: Settings):
    """Build a DeliveryWorker over ``provider`` with optional delivery overrides."""

    def _factory(provider: ContextProvider, **delivery_overrides) -> DeliveryWorker:
        delivery = replace(fast_settings.delivery, **delivery_overrides)
        return DeliveryWorker(
            provider=provider,
            delivery=delivery,
            readiness=fast_settings.readiness,
            injector=ContentInjector(settings=fast_settings.injection),
        )

    return _factory


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
