from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import UnicodeText

from jobdigest.common.utils import utc_now
from jobdigest.db.base import Base


class JobPostingRow(Base):
    __tablename__ = "job_postings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_remote: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str] = mapped_column(UnicodeText(), nullable=False, default="")
    requirements_json: Mapped[str] = mapped_column(UnicodeText(), nullable=False, default="[]")
    apply_url: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    salary: Mapped[str | None] = mapped_column(String(255), nullable=True)
    posted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    relevance_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    email_message_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_job_postings_created_score", "created_at", "relevance_score"),
        Index("ix_job_postings_title_company", "title", "company"),
    )


class ProcessedEmailRow(Base):
    __tablename__ = "processed_emails"

    message_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    subject: Mapped[str] = mapped_column(String(998), nullable=False, default="")
    sender: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    jobs_extracted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)


class ResumeProfileRow(Base):
    __tablename__ = "resume_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    skills_json: Mapped[str] = mapped_column(UnicodeText(), nullable=False, default="[]")
    experience_json: Mapped[str] = mapped_column(UnicodeText(), nullable=False, default="[]")
    preferred_roles_json: Mapped[str] = mapped_column(UnicodeText(), nullable=False, default="[]")
    seniority: Mapped[str] = mapped_column(String(32), nullable=False, default="unknown")
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)


class PipelineRunRow(Base):
    __tablename__ = "pipeline_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    trigger: Mapped[str] = mapped_column(String(16), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="queued")
    payload_json: Mapped[str] = mapped_column(UnicodeText(), nullable=False, default="{}")

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    backoff_kind: Mapped[str] = mapped_column(String(16), nullable=False, default="exponential")
    base_delay_sec: Mapped[float] = mapped_column(Float, nullable=False, default=2.0)

    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress_message: Mapped[str | None] = mapped_column(String(512), nullable=True)
    error: Mapped[str | None] = mapped_column(UnicodeText(), nullable=True)

    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_pipeline_runs_kind_status", "kind", "status"),
        Index("ix_pipeline_runs_status_available", "status", "available_at"),
        # at most one queued-or-active run per kind
        Index(
            "uq_pipeline_runs_in_flight",
            "kind",
            unique=True,
            sqlite_where=text("status IN ('queued', 'active')"),
            postgresql_where=text("status IN ('queued', 'active')"),
        ),
    )
