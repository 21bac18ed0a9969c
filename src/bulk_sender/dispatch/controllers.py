"""Controllers for bulk-sender CLI commands."""

from __future__ import annotations

import asyncio
import logging
import math
import signal
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from bulk_sender.config import ReadinessSettings, Settings
from bulk_sender.dispatch.channel import SendComplete, SendProgress, StatusChannel, StatusEvent
from bulk_sender.dispatch.injector import ContentInjector
from bulk_sender.dispatch.journal import EventJournal, read_delivered_targets
from bulk_sender.dispatch.models import Job, Statistics
from bulk_sender.dispatch.orchestrator import BulkSendOrchestrator
from bulk_sender.dispatch.surface.base import ContextProvider, ManagedProvider, SurfaceStatus
from bulk_sender.dispatch.surface.scripted import ScriptedProvider
from bulk_sender.dispatch.targets import normalize_targets, split_raw_targets
from bulk_sender.dispatch.worker import DeliveryWorker, WorkerRunSummary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SendCommand:
    """CLI input for a bulk send."""

    targets: tuple[str, ...]
    message: str
    delay_ms: int
    targets_file: Path | None = None
    dry_run: bool = False
    events_path: Path | None = None
    skip_delivered: bool = False
    user_data_dir: Path | None = None


@dataclass(slots=True)
class NormalizeCommand:
    """CLI input for target normalization preview."""

    targets: tuple[str, ...]
    targets_file: Path | None = None


@dataclass(slots=True)
class CheckCommand:
    """CLI input for the surface login/readiness check."""

    user_data_dir: Path | None = None


@dataclass(slots=True)
class SendPlan:
    """Validated job plus what the operator should see before it starts."""

    job: Job
    lines: list[str] = field(default_factory=list)
    needs_confirmation: bool = False
    eta_minutes: int = 0


@dataclass(slots=True)
class SendResult:
    lines: list[str]
    success: bool


ProviderFactory = Callable[[Settings], ManagedProvider]


class DispatchCliController:
    """Builds jobs from CLI input and runs them to completion."""

    def __init__(self, *, provider_factory: ProviderFactory | None = None) -> None:
        self._provider_factory = provider_factory

    def normalize(self, command: NormalizeCommand) -> list[str]:
        raw = _collect_raw_targets(command.targets, command.targets_file)
        report = normalize_targets(raw)
        lines = [f"Valid targets: {len(report.targets)}"]
        lines.extend(f"  {target}" for target in report.targets)
        if report.rejected:
            lines.append(f"Rejected ({len(report.rejected)}): {', '.join(report.rejected)}")
        if report.duplicates:
            lines.append(
                f"Duplicates dropped ({len(report.duplicates)}): {', '.join(report.duplicates)}",
            )
        return lines

    def plan(self, command: SendCommand) -> SendPlan:
        """Validate input into a job; raises ValueError with an operator-facing message."""

        settings = _settings(command.user_data_dir)
        raw = _collect_raw_targets(command.targets, command.targets_file)
        report = normalize_targets(raw)
        lines: list[str] = []
        if report.rejected:
            lines.append(f"Skipping invalid targets: {', '.join(report.rejected)}")

        targets = list(report.targets)
        if command.skip_delivered and command.events_path is not None:
            delivered = read_delivered_targets(command.events_path)
            remaining = [target for target in targets if target not in delivered]
            if len(remaining) != len(targets):
                lines.append(
                    f"Skipping {len(targets) - len(remaining)} target(s) already delivered "
                    f"according to {command.events_path}",
                )
            if targets and not remaining:
                raise ValueError("Every target was already delivered; nothing to send.")
            targets = remaining

        job = Job.create(
            targets=targets,
            payload=command.message,
            delay_ms=command.delay_ms,
            limits=settings.limits,
        )
        eta_minutes = math.ceil(len(job.targets) * command.delay_ms / 60_000)
        lines.append(
            f"Job {job.job_id}: {len(job.targets)} target(s), delay {job.delay_seconds:g}s, "
            f"estimated {eta_minutes} minute(s)",
        )
        return SendPlan(
            job=job,
            lines=lines,
            needs_confirmation=len(job.targets) > settings.limits.large_batch_threshold,
            eta_minutes=eta_minutes,
        )

    def send(
        self,
        command: SendCommand,
        plan: SendPlan,
        *,
        progress: Callable[[str], object] | None = None,
    ) -> SendResult:
        settings = _settings(command.user_data_dir)
        if command.dry_run:
            settings = _dry_run_settings(settings)
        channel = StatusChannel()
        lines: list[str] = []

        def _render(event: StatusEvent) -> None:
            line = _progress_line(event)
            lines.append(line)
            if progress is not None:
                progress(line)

        channel.subscribe(_render)
        if command.events_path is not None:
            channel.subscribe(EventJournal(path=command.events_path, job_id=plan.job.job_id))

        stats, summary = asyncio.run(
            self._run_job(settings, plan.job, channel, dry_run=command.dry_run),
        )
        lines.append(
            f"Send summary: sent={stats.sent} failed={stats.failed} total={stats.total} "
            f"attempts={summary.attempts} retried={summary.retried} timeouts={summary.timeouts}",
        )
        success = stats.failed == 0 and stats.processed == stats.total
        return SendResult(lines=lines, success=success)

    def check(self, command: CheckCommand) -> SendResult:
        settings = _settings(command.user_data_dir)
        status = asyncio.run(self._check(settings))
        lines = [f"Surface status: {status.value}"]
        if status == SurfaceStatus.LOGGED_OUT:
            lines.append(
                "Scan the QR code in the opened browser profile to log in, then retry.",
            )
        return SendResult(lines=lines, success=status == SurfaceStatus.READY)

    async def _run_job(
        self,
        settings: Settings,
        job: Job,
        channel: StatusChannel,
        *,
        dry_run: bool,
    ) -> tuple[Statistics, WorkerRunSummary]:
        if dry_run:
            provider = ScriptedProvider()
            orchestrator = _orchestrator(settings, provider, channel, sleep=_instant_sleep)
            orchestrator.submit(job)
            return await orchestrator.wait(), orchestrator.worker.summary

        provider = self._provider(settings)
        await provider.start()
        try:
            orchestrator = _orchestrator(settings, provider, channel)
            orchestrator.submit(job)
            with _signal_handlers(orchestrator.stop):
                return await orchestrator.wait(), orchestrator.worker.summary
        finally:
            await provider.stop()

    async def _check(self, settings: Settings) -> SurfaceStatus:
        provider = self._provider(settings)
        await provider.start()
        try:
            return await provider.status()
        finally:
            await provider.stop()

    def _provider(self, settings: Settings) -> ManagedProvider:
        if self._provider_factory is not None:
            return self._provider_factory(settings)
        from bulk_sender.dispatch.surface.whatsapp_web import WhatsAppWebProvider

        return WhatsAppWebProvider(settings.surface)


def _orchestrator(
    settings: Settings,
    provider: ContextProvider,
    channel: StatusChannel,
    *,
    sleep: Callable[[float], Awaitable[object]] | None = None,
) -> BulkSendOrchestrator:
    worker_sleep = sleep or asyncio.sleep
    worker = DeliveryWorker(
        provider=provider,
        delivery=settings.delivery,
        readiness=settings.readiness,
        injector=ContentInjector(settings=settings.injection, sleep=worker_sleep),
        sleep=worker_sleep,
    )
    return BulkSendOrchestrator(worker=worker, channel=channel, sleep=sleep)


def _settings(user_data_dir: Path | None) -> Settings:
    settings = Settings.from_env(user_data_dir=user_data_dir)
    settings.validate()
    return settings


def _dry_run_settings(settings: Settings) -> Settings:
    return replace(
        settings,
        delivery=replace(
            settings.delivery,
            retry_base_seconds=0.0,
            retry_max_seconds=0.0,
        ),
        readiness=ReadinessSettings(
            initial_delay_seconds=0.0,
            interval_seconds=0.0,
            max_checks=settings.readiness.max_checks,
        ),
    )


async def _instant_sleep(_: float) -> None:
    await asyncio.sleep(0)


def _progress_line(event: StatusEvent) -> str:
    if isinstance(event, SendProgress):
        return (
            f"[{event.current}/{event.total}] {event.current_target}: {event.outcome.value} "
            f"(sent={event.sent} failed={event.failed})"
        )
    if isinstance(event, SendComplete):
        state = "stopped" if event.stopped else "complete"
        return f"Batch {state}: sent={event.sent} failed={event.failed} total={event.total}"
    return str(event)


def _collect_raw_targets(values: tuple[str, ...], targets_file: Path | None) -> list[str]:
    raw: list[str] = []
    for value in values:
        raw.extend(split_raw_targets(value))
    if targets_file is not None:
        raw.extend(split_raw_targets(targets_file.read_text(encoding="utf-8")))
    return raw


@contextmanager
def _signal_handlers(stop: Callable[[], None]) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not supported on this platform or outside the main thread.
            continue
        installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
