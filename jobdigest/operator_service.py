from __future__ import annotations

from typing import Any, Dict, Optional

from loguru import logger

from jobdigest.errors import AlreadyInFlight, UnknownRunKind
from jobdigest.notify.formatting import queue_status_text, status_text
from jobdigest.pipeline.interfaces import Notifier
from jobdigest.queue.models import QueueStats, RunKind, TriggerSource
from jobdigest.queue.work_queue import WorkQueue
from jobdigest.worker import PROGRESS_HANDLE_KEY


def parse_kind(value) -> RunKind:
    try:
        return RunKind(value)
    except ValueError as exc:
        raise UnknownRunKind(f"Unknown run kind {value!r}; expected one of {[k.value for k in RunKind]}") from exc


class OperatorService:
    """Manual triggers and status for the CLI and HTTP surfaces."""

    def __init__(self, queue: WorkQueue, notifier: Notifier):
        self.queue = queue
        self.notifier = notifier

    async def trigger(
        self,
        kind,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
        min_relevance: Optional[float] = None,
    ) -> Optional[str]:
        """
        Enqueue a run through the same single-flight path the scheduler uses.
        Returns the new run id, or None when a run of that kind is in flight.
        """
        kind = parse_kind(kind)
        payload: Dict[str, Any] = {}
        handle = None
        if kind == RunKind.ALERT_SCAN:
            if min_relevance is not None:
                payload["min_relevance"] = float(min_relevance)
            handle = await self.notifier.create_progress_message("🚀 Jobs queued")
            if handle is not None:
                payload[PROGRESS_HANDLE_KEY] = handle

        try:
            run_id = await self.queue.enqueue(kind, payload, trigger=TriggerSource(trigger_source))
        except AlreadyInFlight as exc:
            logger.info("Manual {} not queued: {}", kind.value, exc)
            if handle is not None:
                await self.notifier.update_progress_message(handle, "⏳ Already processing")
            else:
                await self.notifier.send_status("⏳ Already processing")
            return None
        except Exception as exc:
            logger.exception("Failed to queue {}", kind.value)
            await self.notifier.send_error(f"Failed to queue {kind.value}: {exc}")
            raise
        return run_id

    async def status(self) -> Dict[str, Any]:
        stats = await self.queue.stats()
        current = {}
        for kind in RunKind:
            run = await self.queue.current_run(kind)
            current[kind.value] = run.snapshot() if run else None
        return {"stats": stats.model_dump(), "current": current}

    async def status_message(self, send: bool = True) -> str:
        data = await self.status()
        text = queue_status_text(QueueStats(**data["stats"]), data["current"])
        if send:
            await self.notifier.send_status(text)
        return status_text(text)
