"""
SQLAlchemy-backed implementations of the storage interfaces.

Sessions are synchronous; each call runs in a worker thread so the event loop
stays free while the driver blocks.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from jobdigest.db import crud_emails, crud_jobs, crud_resume
from jobdigest.db.models import JobPostingRow
from jobdigest.db.session import db_session
from jobdigest.errors import PersistenceDegradation
from jobdigest.pipeline.models import (
    DailyStats,
    JobPosting,
    JobPostingDraft,
    ProcessedEmailRecord,
    ResumeProfile,
)

T = TypeVar("T")


class SqlStoreBase:
    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    def _run(self, fn: Callable[[Session], T]) -> T:
        with db_session(self._factory) as db:
            return fn(db)

    async def _call(self, fn: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run, fn)


class SqlJobStore(SqlStoreBase):
    async def exists_similar(self, draft: JobPostingDraft) -> bool:
        return await self._call(lambda db: bool(crud_jobs.find_similar(db, draft)))

    async def save(self, posting: JobPosting) -> None:
        await self._call(lambda db: crud_jobs.save_posting(db, posting))

    async def mark_processed(self, posting_ids: Sequence[str]) -> None:
        ids = list(posting_ids)
        try:
            await self._call(lambda db: crud_jobs.mark_processed(db, ids))
        except SQLAlchemyError as exc:
            raise PersistenceDegradation(f"could not flag {len(ids)} postings as processed: {exc}") from exc

    async def get(self, posting_id: str) -> Optional[JobPosting]:
        def _get(db: Session) -> Optional[JobPosting]:
            row = db.get(JobPostingRow, posting_id)
            return crud_jobs.row_to_posting(row) if row else None

        return await self._call(_get)

    async def relevant(self, min_score: float) -> List[JobPosting]:
        return await self._call(lambda db: crud_jobs.list_relevant(db, min_score))

    async def daily_jobs(self, start: datetime, end: datetime, min_score: float) -> List[JobPosting]:
        return await self._call(lambda db: crud_jobs.list_daily(db, start, end, min_score))

    async def daily_stats(self, start: datetime, end: datetime, min_score: float, top_n: int) -> DailyStats:
        return await self._call(lambda db: crud_jobs.daily_stats(db, start, end, min_score, top_n))


class SqlProcessedEmailLedger(SqlStoreBase):
    async def exists(self, message_id: str) -> bool:
        return await self._call(lambda db: crud_emails.get_processed_email(db, message_id) is not None)

    async def get(self, message_id: str) -> Optional[ProcessedEmailRecord]:
        def _get(db: Session) -> Optional[ProcessedEmailRecord]:
            row = crud_emails.get_processed_email(db, message_id)
            return crud_emails.row_to_record(row) if row else None

        return await self._call(_get)

    async def record(
        self,
        message_id: str,
        jobs_extracted: int,
        *,
        archived: bool = False,
        subject: str = "",
        sender: str = "",
    ) -> ProcessedEmailRecord:
        return await self._call(
            lambda db: crud_emails.row_to_record(
                crud_emails.upsert_processed_email(
                    db,
                    message_id,
                    jobs_extracted,
                    archived=archived,
                    subject=subject,
                    sender=sender,
                )
            )
        )

    async def mark_archived(self, message_id: str) -> None:
        await self._call(lambda db: crud_emails.set_archived(db, message_id))


class SqlResumeProfileStore(SqlStoreBase):
    async def latest(self) -> Optional[ResumeProfile]:
        return await self._call(crud_resume.get_latest_profile)

    async def save(self, profile: ResumeProfile) -> None:
        try:
            await self._call(lambda db: crud_resume.save_profile(db, profile))
        except SQLAlchemyError as exc:
            raise PersistenceDegradation(f"could not save resume profile: {exc}") from exc
