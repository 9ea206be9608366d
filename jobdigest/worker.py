"""
Queue consumers.

One loop per run kind: kinds run side by side, each kind one run at a time.
A handler exception is a failed attempt; the queue decides between a retry
with backoff and a permanent failure, and only the latter alerts the operator.
"""
from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from loguru import logger

from jobdigest.common.logging_ctx import ctx_logger, run_ctx_scope
from jobdigest.pipeline.interfaces import Notifier
from jobdigest.pipeline.orchestrator import PipelineOrchestrator, ProgressFn
from jobdigest.queue.models import PipelineRun, RunKind, RunStatus
from jobdigest.queue.work_queue import WorkQueue

Handler = Callable[[PipelineRun, ProgressFn], Awaitable[Any]]

PROGRESS_HANDLE_KEY = "progress_message_id"


def build_handlers(
    orchestrator: PipelineOrchestrator,
    queue: WorkQueue,
    *,
    retention: timedelta = timedelta(days=7),
) -> Dict[RunKind, Handler]:
    async def alert_scan(run: PipelineRun, progress: ProgressFn):
        result = await orchestrator.run_alert_scan(
            min_relevance=run.payload.get("min_relevance"),
            progress=progress,
            progress_handle=run.payload.get(PROGRESS_HANDLE_KEY),
        )
        return result.as_dict()

    async def daily_summary(run: PipelineRun, progress: ProgressFn):
        result = await orchestrator.run_daily_summary(progress=progress)
        return {"day": result.day.isoformat(), "postings": result.postings}

    async def retention_prune(run: PipelineRun, progress: ProgressFn):
        removed = await queue.prune(retention)
        await progress(90, f"🧹 Pruned {removed} finished runs")
        return {"removed": removed}

    return {
        RunKind.ALERT_SCAN: alert_scan,
        RunKind.DAILY_SUMMARY: daily_summary,
        RunKind.RETENTION_PRUNE: retention_prune,
    }


class QueueWorker:
    def __init__(
        self,
        queue: WorkQueue,
        notifier: Notifier,
        handlers: Dict[RunKind, Handler],
        *,
        poll_sec: float = 5.0,
        heartbeat_sec: Optional[float] = None,
    ):
        self.queue = queue
        self.notifier = notifier
        self.handlers = handlers
        self.poll_sec = poll_sec
        # lease heartbeat, independent of handler progress
        self.heartbeat_sec = heartbeat_sec or max(1.0, queue.lease.total_seconds() / 3)

    def _progress_fn(self, run: PipelineRun) -> ProgressFn:
        handle = run.payload.get(PROGRESS_HANDLE_KEY)

        async def progress(pct: int, message: str) -> None:
            log = ctx_logger()
            log.debug("Progress {}%: {}", pct, message)
            try:
                await self.queue.update_progress(run.id, pct, message, attempt=run.attempts)
            except Exception as exc:
                log.warning("Could not record progress for run {}: {}", run.id, exc)
            if handle is not None:
                await self.notifier.update_progress_message(handle, message)

        return progress

    async def _heartbeat(self, run: PipelineRun) -> None:
        log = ctx_logger()
        while True:
            await asyncio.sleep(self.heartbeat_sec)
            try:
                held = await self.queue.renew_lease(run.id, run.attempts)
            except Exception as exc:
                log.warning("Lease renewal for run {} failed: {}", run.id, exc)
                continue
            if not held:
                log.warning("Run {} attempt {} no longer holds its claim", run.id, run.attempts)
                return

    async def execute(self, run: PipelineRun) -> Optional[PipelineRun]:
        handler = self.handlers[run.kind]
        with run_ctx_scope(run_id=run.id, run_kind=run.kind.value, trigger=run.trigger.value):
            log = ctx_logger()
            log.info("Starting {} run (attempt {}/{})", run.kind.value, run.attempts, run.max_attempts)
            heartbeat = asyncio.create_task(self._heartbeat(run))
            try:
                try:
                    outcome = await handler(run, self._progress_fn(run))
                finally:
                    heartbeat.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await heartbeat
            except Exception as exc:
                log.opt(exception=exc).error("{} run failed", run.kind.value)
                failed = await self.queue.fail(run.id, f"{type(exc).__name__}: {exc}", run.attempts)
                if failed is None:
                    return await self.queue.get(run.id)
                if failed.status == RunStatus.FAILED:
                    await self.notifier.send_error(
                        f"Run {run.id} ({run.kind.value}) failed after {failed.attempts} attempts: {exc}"
                    )
                return failed
            done = await self.queue.complete(run.id, run.attempts)
            if done is None:
                # recovered as stale mid-run; the queue state belongs to whoever holds it now
                return await self.queue.get(run.id)
            log.info("{} run completed: {}", run.kind.value, outcome)
            return done

    async def _recover(self) -> None:
        for run in await self.queue.recover_stale():
            if run.status == RunStatus.FAILED:
                await self.notifier.send_error(
                    f"Run {run.id} ({run.kind.value}) failed after {run.attempts} attempts: {run.error}"
                )

    async def process_next(self, kind: Optional[RunKind] = None) -> Optional[PipelineRun]:
        """Recover stale leases, then claim and execute one run (if any is due)."""
        await self._recover()
        run = await self.queue.claim_next(kind)
        if run is None:
            return None
        if run.kind not in self.handlers:
            return await self.queue.fail(run.id, f"No handler for run kind {run.kind.value}", run.attempts)
        return await self.execute(run)

    async def drain(self, kinds: Optional[Iterable[RunKind]] = None) -> List[PipelineRun]:
        """Execute every run that is due now; returns the finished snapshots."""
        finished: List[PipelineRun] = []
        for kind in list(kinds or self.handlers):
            while True:
                run = await self.process_next(kind)
                if run is None:
                    break
                finished.append(run)
                if run.status == RunStatus.QUEUED:
                    # retry is backed off into the future; leave it for the loop
                    break
        return finished

    async def _kind_loop(self, kind: RunKind, stop: asyncio.Event) -> None:
        logger.info("Worker loop for {} started", kind.value)
        while not stop.is_set():
            try:
                run = await self.process_next(kind)
            except Exception:
                logger.exception("Worker loop for {} hit an error", kind.value)
                run = None
            if run is not None:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_sec)
            except asyncio.TimeoutError:
                pass
        logger.info("Worker loop for {} stopped", kind.value)

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        await asyncio.gather(*(self._kind_loop(kind, stop) for kind in self.handlers))
