"""Single-job orchestrator: sequences targets, paces them and reports progress."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from bulk_sender.dispatch.channel import SendComplete, SendProgress, StatusChannel
from bulk_sender.dispatch.models import (
    AlreadyRunningError,
    AttemptOutcome,
    DeliveryResult,
    Job,
    OrchestratorState,
    Statistics,
)
from bulk_sender.dispatch.retry import CancellationToken
from bulk_sender.dispatch.worker import DeliveryWorker

logger = logging.getLogger(__name__)


class BulkSendOrchestrator:
    """Owns the job lifecycle.

    ``submit`` and ``stop`` are plain state transitions executed on the event
    loop; the only writer of job statistics is the processing task.
    """

    def __init__(
        self,
        *,
        worker: DeliveryWorker,
        channel: StatusChannel | None = None,
        sleep: Callable[[float], Awaitable[object]] | None = None,
    ) -> None:
        self.worker = worker
        self.channel = channel or StatusChannel()
        self._sleep = sleep
        self.state = OrchestratorState.IDLE
        self.active_job: Job | None = None
        self.last_job: Job | None = None
        self.results: list[DeliveryResult] = []
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[Statistics] | None = None

    @property
    def stats(self) -> Statistics:
        job = self.active_job or self.last_job
        return job.stats.snapshot() if job is not None else Statistics()

    def submit(self, job: Job) -> asyncio.Task[Statistics]:
        """Start ``job`` in the background; raise ``AlreadyRunningError`` if busy."""

        if self.state == OrchestratorState.RUNNING:
            raise AlreadyRunningError
        loop = asyncio.get_running_loop()
        job.stats = Statistics(total=len(job.targets))
        self.active_job = job
        self.results = []
        self._token = CancellationToken()
        self.state = OrchestratorState.RUNNING
        logger.info(
            "Job %s started: %d targets, delay %dms",
            job.job_id,
            len(job.targets),
            job.delay_ms,
        )
        self._task = loop.create_task(self._run(job, self._token))
        return self._task

    def stop(self) -> None:
        """Request cooperative cancellation; safe to call any number of times."""

        if self.state != OrchestratorState.RUNNING or self._token is None:
            return
        if not self._token.cancelled:
            job_id = self.active_job.job_id if self.active_job else "-"
            logger.info("Stop requested for job %s", job_id)
        self._token.cancel()

    async def wait(self) -> Statistics:
        """Await the in-flight job; return the final statistics."""

        if self._task is not None:
            return await self._task
        return self.stats

    async def _run(self, job: Job, token: CancellationToken) -> Statistics:
        stopped = False
        try:
            for index, target in enumerate(job.targets):
                if token.cancelled:
                    stopped = True
                    break
                result = await self._deliver_one(target, job.payload, token)
                job.stats.record(result.outcome)
                self.results.append(result)
                self.channel.publish(
                    SendProgress(
                        sent=job.stats.sent,
                        failed=job.stats.failed,
                        current=index + 1,
                        total=job.stats.total,
                        current_target=target,
                        outcome=result.outcome,
                    ),
                )
                if index == len(job.targets) - 1:
                    break
                if token.cancelled:
                    stopped = True
                    break
                if not await self._pause(job.delay_seconds, token):
                    stopped = True
                    break
        except asyncio.CancelledError:
            stopped = True
            raise
        finally:
            final = job.stats.snapshot()
            self.state = OrchestratorState.IDLE
            self.active_job = None
            self.last_job = job
            logger.info(
                "Job %s %s: sent=%d failed=%d total=%d",
                job.job_id,
                "stopped" if stopped else "completed",
                final.sent,
                final.failed,
                final.total,
            )
            self.channel.publish(
                SendComplete(
                    sent=final.sent,
                    failed=final.failed,
                    total=final.total,
                    stopped=stopped,
                ),
            )
        return final

    async def _deliver_one(
        self,
        target: str,
        payload: str,
        token: CancellationToken,
    ) -> DeliveryResult:
        try:
            return await self.worker.deliver(target, payload, token=token)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error while delivering to %s", target)
            return DeliveryResult(target=target, outcome=AttemptOutcome.FAILED)

    async def _pause(self, seconds: float, token: CancellationToken) -> bool:
        if self._sleep is None:
            return await token.sleep(seconds)
        if token.cancelled:
            return False
        await self._sleep(seconds)
        return not token.cancelled
