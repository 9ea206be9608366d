from __future__ import annotations

import json
from datetime import datetime
from typing import List, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from jobdigest.common.utils import as_utc
from jobdigest.db.models import JobPostingRow, ProcessedEmailRow
from jobdigest.pipeline.models import DailyStats, JobPosting, JobPostingDraft, SourceCount, has_apply_url

_NO_URL = ("", "Unknown URL")


def row_to_posting(row: JobPostingRow) -> JobPosting:
    return JobPosting(
        id=row.id,
        title=row.title,
        company=row.company,
        location=row.location or "",
        is_remote=bool(row.is_remote),
        description=row.description or "",
        requirements=json.loads(row.requirements_json or "[]"),
        apply_url=row.apply_url or "",
        salary=row.salary,
        posted_date=as_utc(row.posted_date) if row.posted_date else None,
        source=row.source,
        relevance_score=float(row.relevance_score or 0.0),
        email_message_id=row.email_message_id,
        processed=bool(row.processed),
        created_at=as_utc(row.created_at),
    )


def find_similar(db: Session, draft: JobPostingDraft) -> List[JobPostingRow]:
    """Match on id, on title+company (case-insensitive) or on apply URL."""
    clauses = [JobPostingRow.id == draft.resolved_id()]
    if draft.title and draft.company:
        clauses.append(
            (func.lower(JobPostingRow.title) == draft.title.strip().lower())
            & (func.lower(JobPostingRow.company) == draft.company.strip().lower())
        )
    if has_apply_url(draft.apply_url):
        clauses.append(JobPostingRow.apply_url == draft.apply_url.strip())
    stmt = select(JobPostingRow).where(or_(*clauses)).limit(5)
    return list(db.scalars(stmt).all())


def save_posting(db: Session, posting: JobPosting) -> JobPostingRow:
    row = JobPostingRow(
        id=posting.id,
        title=posting.title,
        company=posting.company,
        location=posting.location,
        is_remote=posting.is_remote,
        description=posting.description,
        requirements_json=json.dumps(list(posting.requirements), ensure_ascii=False),
        apply_url=posting.apply_url,
        salary=posting.salary,
        posted_date=as_utc(posting.posted_date) if posting.posted_date else None,
        source=posting.source,
        relevance_score=posting.relevance_score,
        email_message_id=posting.email_message_id,
        processed=posting.processed,
        created_at=as_utc(posting.created_at),
    )
    row = db.merge(row)
    db.flush()
    return row


def mark_processed(db: Session, posting_ids: Sequence[str]) -> int:
    if not posting_ids:
        return 0
    stmt = update(JobPostingRow).where(JobPostingRow.id.in_(list(posting_ids))).values(processed=True)
    return db.execute(stmt).rowcount or 0


def list_relevant(db: Session, min_score: float) -> List[JobPosting]:
    stmt = (
        select(JobPostingRow)
        .where(JobPostingRow.relevance_score >= min_score)
        .order_by(JobPostingRow.relevance_score.desc(), JobPostingRow.created_at.desc())
    )
    return [row_to_posting(r) for r in db.scalars(stmt).all()]


def list_daily(db: Session, start: datetime, end: datetime, min_score: float) -> List[JobPosting]:
    stmt = (
        select(JobPostingRow)
        .where(
            JobPostingRow.created_at >= as_utc(start),
            JobPostingRow.created_at < as_utc(end),
            JobPostingRow.relevance_score >= min_score,
            JobPostingRow.apply_url.not_in(_NO_URL),
        )
        .order_by(JobPostingRow.relevance_score.desc())
    )
    return [row_to_posting(r) for r in db.scalars(stmt).all()]


def daily_stats(db: Session, start: datetime, end: datetime, min_score: float, top_n: int) -> DailyStats:
    start, end = as_utc(start), as_utc(end)
    in_day = (
        JobPostingRow.created_at >= start,
        JobPostingRow.created_at < end,
        JobPostingRow.apply_url.not_in(_NO_URL),
    )
    total = db.scalar(select(func.count()).select_from(JobPostingRow).where(*in_day)) or 0
    relevant = db.scalar(
        select(func.count())
        .select_from(JobPostingRow)
        .where(*in_day, JobPostingRow.relevance_score >= min_score)
    ) or 0
    emails = db.scalar(
        select(func.count())
        .select_from(ProcessedEmailRow)
        .where(ProcessedEmailRow.processed_at >= start, ProcessedEmailRow.processed_at < end)
    ) or 0
    count_col = func.count(JobPostingRow.id).label("n")
    rows = db.execute(
        select(JobPostingRow.source, count_col)
        .where(*in_day)
        .group_by(JobPostingRow.source)
        .order_by(count_col.desc(), JobPostingRow.source)
        .limit(top_n)
    ).all()
    return DailyStats(
        total_jobs_processed=int(total),
        relevant_jobs=int(relevant),
        emails_processed=int(emails),
        top_sources=[SourceCount(source=src, count=int(n)) for src, n in rows],
    )
