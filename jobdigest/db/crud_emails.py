from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobdigest.common.utils import as_utc, utc_now
from jobdigest.db.models import ProcessedEmailRow
from jobdigest.pipeline.models import ProcessedEmailRecord


def row_to_record(row: ProcessedEmailRow) -> ProcessedEmailRecord:
    return ProcessedEmailRecord(
        message_id=row.message_id,
        subject=row.subject or "",
        sender=row.sender or "",
        jobs_extracted=int(row.jobs_extracted or 0),
        archived=bool(row.archived),
        processed_at=as_utc(row.processed_at),
    )


def get_processed_email(db: Session, message_id: str) -> Optional[ProcessedEmailRow]:
    stmt = select(ProcessedEmailRow).where(ProcessedEmailRow.message_id == message_id)
    return db.scalars(stmt).first()


def upsert_processed_email(
    db: Session,
    message_id: str,
    jobs_extracted: int,
    *,
    archived: bool = False,
    subject: str = "",
    sender: str = "",
) -> ProcessedEmailRow:
    row = get_processed_email(db, message_id)
    if row is None:
        row = ProcessedEmailRow(message_id=message_id, processed_at=utc_now())
        db.add(row)
    row.jobs_extracted = int(jobs_extracted)
    row.archived = bool(archived)
    if subject:
        row.subject = subject[:998]
    if sender:
        row.sender = sender[:320]
    db.flush()
    return row


def set_archived(db: Session, message_id: str) -> bool:
    row = get_processed_email(db, message_id)
    if row is None:
        return False
    row.archived = True
    db.flush()
    return True
