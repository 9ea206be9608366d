"""
Durable, single-flight, priority-aware run queue stored in the SQL database.

Because the queue lives in the same database as the ledger, single-flight and
retry state survive process restarts.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from jobdigest.common.utils import as_utc, to_jsonable, utc_now
from jobdigest.db.models import PipelineRunRow
from jobdigest.db.stores import SqlStoreBase
from jobdigest.errors import AlreadyInFlight
from .models import (
    IN_FLIGHT,
    BackoffKind,
    PipelineRun,
    QueueStats,
    RetryPolicy,
    RunKind,
    RunStatus,
    TriggerSource,
    default_priority,
)

LEASE_EXPIRED = "lease expired (worker crashed or stalled)"


def row_to_run(row: PipelineRunRow) -> PipelineRun:
    return PipelineRun(
        id=row.id,
        kind=RunKind(row.kind),
        trigger=TriggerSource(row.trigger),
        priority=row.priority,
        status=RunStatus(row.status),
        payload=json.loads(row.payload_json or "{}"),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        backoff_kind=BackoffKind(row.backoff_kind),
        base_delay_sec=row.base_delay_sec,
        progress=row.progress,
        progress_message=row.progress_message,
        error=row.error,
        available_at=as_utc(row.available_at),
        lease_expires_at=as_utc(row.lease_expires_at) if row.lease_expires_at else None,
        created_at=as_utc(row.created_at),
        started_at=as_utc(row.started_at) if row.started_at else None,
        finished_at=as_utc(row.finished_at) if row.finished_at else None,
    )


class WorkQueue(SqlStoreBase):
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        default_policy: Optional[RetryPolicy] = None,
        lease: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(session_factory)
        self.default_policy = default_policy or RetryPolicy()
        self.lease = lease
        self._clock = clock

    def _now(self) -> datetime:
        return as_utc(self._clock())

    # -------------------------
    # Producers
    # -------------------------

    async def enqueue(
        self,
        kind: RunKind,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
        *,
        trigger: TriggerSource = TriggerSource.MANUAL,
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        """
        Add a run of `kind`. Raises AlreadyInFlight when a run of the same kind
        is queued or active.
        """
        kind = RunKind(kind)
        trigger = TriggerSource(trigger)
        policy = policy or self.default_policy
        prio = default_priority(kind, trigger) if priority is None else int(priority)
        now = self._now()

        def _enqueue(db: Session) -> str:
            existing = db.scalars(
                select(PipelineRunRow)
                .where(PipelineRunRow.kind == kind.value, PipelineRunRow.status.in_(IN_FLIGHT))
                .limit(1)
            ).first()
            if existing is not None:
                raise AlreadyInFlight(kind.value, existing.id)
            row = PipelineRunRow(
                id=str(uuid.uuid4()),
                kind=kind.value,
                trigger=trigger.value,
                priority=prio,
                status=RunStatus.QUEUED.value,
                payload_json=json.dumps(to_jsonable(payload or {}), ensure_ascii=False),
                attempts=0,
                max_attempts=policy.max_attempts,
                backoff_kind=policy.backoff_kind.value,
                base_delay_sec=policy.base_delay_sec,
                progress=0,
                available_at=now,
                created_at=now,
            )
            db.add(row)
            db.flush()
            return row.id

        try:
            run_id = await self._call(_enqueue)
        except IntegrityError:
            # lost the race to a concurrent enqueue; the partial unique index caught it
            current = await self.current_run(kind)
            raise AlreadyInFlight(kind.value, current.id if current else None) from None
        logger.info("Queued {} run {} (trigger={} priority={})", kind.value, run_id, trigger.value, prio)
        return run_id

    # -------------------------
    # Consumers
    # -------------------------

    async def claim_next(self, kind: Optional[RunKind] = None) -> Optional[PipelineRun]:
        now = self._now()

        def _claim(db: Session) -> Optional[PipelineRun]:
            stmt = select(PipelineRunRow).where(
                PipelineRunRow.status == RunStatus.QUEUED.value,
                PipelineRunRow.available_at <= now,
            )
            if kind is not None:
                stmt = stmt.where(PipelineRunRow.kind == RunKind(kind).value)
            stmt = (
                stmt.order_by(PipelineRunRow.priority.asc(), PipelineRunRow.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = db.scalars(stmt).first()
            if row is None:
                return None
            row.status = RunStatus.ACTIVE.value
            row.attempts += 1
            row.started_at = now
            row.finished_at = None
            row.lease_expires_at = now + self.lease
            db.flush()
            return row_to_run(row)

        return await self._call(_claim)

    async def update_progress(
        self,
        run_id: str,
        progress: int,
        message: Optional[str] = None,
        *,
        attempt: Optional[int] = None,
    ) -> None:
        """Record progress; doubles as the lease heartbeat."""
        now = self._now()

        def _update(db: Session) -> None:
            row = db.get(PipelineRunRow, run_id)
            if not self._owns(row, attempt):
                return
            row.progress = max(0, min(100, int(progress)))
            if message is not None:
                row.progress_message = message[:512]
            row.lease_expires_at = now + self.lease

        await self._call(_update)

    async def renew_lease(self, run_id: str, attempt: Optional[int] = None) -> bool:
        """Push the lease out without touching progress. False once the claim is lost."""
        now = self._now()

        def _renew(db: Session) -> bool:
            row = db.get(PipelineRunRow, run_id)
            if not self._owns(row, attempt):
                return False
            row.lease_expires_at = now + self.lease
            return True

        return await self._call(_renew)

    async def complete(self, run_id: str, attempt: Optional[int] = None) -> Optional[PipelineRun]:
        """
        Mark the run completed. `attempt` is the claim token returned by
        claim_next; when the run is no longer active under that attempt
        (recovered as stale, or re-claimed) nothing is written and None is
        returned.
        """
        now = self._now()

        def _complete(db: Session) -> Optional[PipelineRun]:
            row = self._require(db, run_id)
            if not self._owns(row, attempt):
                return None
            row.status = RunStatus.COMPLETED.value
            row.progress = 100
            row.finished_at = now
            row.lease_expires_at = None
            row.error = None
            db.flush()
            return row_to_run(row)

        done = await self._call(_complete)
        if done is None:
            logger.warning("Ignoring completion of run {} attempt {}: claim no longer held", run_id, attempt)
        return done

    async def fail(self, run_id: str, error: str, attempt: Optional[int] = None) -> Optional[PipelineRun]:
        """
        Record a failed attempt. The run goes back to queued with backoff while
        attempts remain, otherwise it is marked failed for good. Same claim
        token rule as `complete`.
        """
        now = self._now()

        def _fail(db: Session) -> Optional[PipelineRun]:
            row = self._require(db, run_id)
            if not self._owns(row, attempt):
                return None
            self._fail_row(row, error, now)
            db.flush()
            return row_to_run(row)

        run = await self._call(_fail)
        if run is None:
            logger.warning("Ignoring failure of run {} attempt {}: claim no longer held ({})", run_id, attempt, error)
            return None
        if run.status == RunStatus.FAILED:
            logger.error("Run {} ({}) failed permanently after {} attempts: {}", run.id, run.kind.value, run.attempts, error)
        else:
            logger.warning(
                "Run {} ({}) attempt {}/{} failed; retrying at {}: {}",
                run.id,
                run.kind.value,
                run.attempts,
                run.max_attempts,
                run.available_at.isoformat(),
                error,
            )
        return run

    async def recover_stale(self) -> List[PipelineRun]:
        """Treat active runs whose lease has lapsed as failed attempts."""
        now = self._now()

        def _recover(db: Session) -> List[PipelineRun]:
            rows = db.scalars(
                select(PipelineRunRow).where(
                    PipelineRunRow.status == RunStatus.ACTIVE.value,
                    PipelineRunRow.lease_expires_at.is_not(None),
                    PipelineRunRow.lease_expires_at < now,
                )
            ).all()
            out = []
            for row in rows:
                self._fail_row(row, LEASE_EXPIRED, now)
                out.append(row_to_run(row))
            db.flush()
            return out

        recovered = await self._call(_recover)
        for run in recovered:
            logger.warning("Recovered stale {} run {} -> {}", run.kind.value, run.id, run.status.value)
        return recovered

    # -------------------------
    # Queries / housekeeping
    # -------------------------

    async def get(self, run_id: str) -> Optional[PipelineRun]:
        def _get(db: Session) -> Optional[PipelineRun]:
            row = db.get(PipelineRunRow, run_id)
            return row_to_run(row) if row else None

        return await self._call(_get)

    async def current_run(self, kind: RunKind) -> Optional[PipelineRun]:
        """The in-flight run of `kind` (active preferred over queued), if any."""

        def _current(db: Session) -> Optional[PipelineRun]:
            rows = db.scalars(
                select(PipelineRunRow).where(
                    PipelineRunRow.kind == RunKind(kind).value,
                    PipelineRunRow.status.in_(IN_FLIGHT),
                )
            ).all()
            if not rows:
                return None
            rows = sorted(rows, key=lambda r: (r.status != RunStatus.ACTIVE.value, as_utc(r.created_at)))
            return row_to_run(rows[0])

        return await self._call(_current)

    async def stats(self) -> QueueStats:
        def _stats(db: Session) -> QueueStats:
            counts = dict(
                db.execute(
                    select(PipelineRunRow.status, func.count()).group_by(PipelineRunRow.status)
                ).all()
            )
            return QueueStats(
                queued=int(counts.get(RunStatus.QUEUED.value, 0)),
                active=int(counts.get(RunStatus.ACTIVE.value, 0)),
                completed=int(counts.get(RunStatus.COMPLETED.value, 0)),
                failed=int(counts.get(RunStatus.FAILED.value, 0)),
            )

        return await self._call(_stats)

    async def prune(self, retention: timedelta) -> int:
        cutoff = self._now() - retention

        def _prune(db: Session) -> int:
            stmt = delete(PipelineRunRow).where(
                PipelineRunRow.status.in_((RunStatus.COMPLETED.value, RunStatus.FAILED.value)),
                PipelineRunRow.finished_at.is_not(None),
                PipelineRunRow.finished_at < cutoff,
            )
            return db.execute(stmt).rowcount or 0

        removed = await self._call(_prune)
        logger.info("Pruned {} finished runs older than {}", removed, cutoff.isoformat())
        return removed

    # -------------------------
    # Internals
    # -------------------------

    @staticmethod
    def _require(db: Session, run_id: str) -> PipelineRunRow:
        row = db.get(PipelineRunRow, run_id)
        if row is None:
            raise KeyError(f"Unknown run id {run_id}")
        return row

    @staticmethod
    def _owns(row: Optional[PipelineRunRow], attempt: Optional[int]) -> bool:
        if row is None or row.status != RunStatus.ACTIVE.value:
            return False
        return attempt is None or row.attempts == attempt

    @staticmethod
    def _fail_row(row: PipelineRunRow, error: str, now: datetime) -> None:
        row.error = (error or "")[:4000]
        row.lease_expires_at = None
        policy = RetryPolicy(
            max_attempts=row.max_attempts,
            backoff_kind=BackoffKind(row.backoff_kind),
            base_delay_sec=row.base_delay_sec,
        )
        if row.attempts < policy.max_attempts:
            row.status = RunStatus.QUEUED.value
            row.available_at = now + policy.delay_for(row.attempts)
        else:
            row.status = RunStatus.FAILED.value
            row.finished_at = now
