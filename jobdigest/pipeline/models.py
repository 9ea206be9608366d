from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobdigest.common.utils import stable_id, utc_now


class Seniority(str, Enum):
    INTERN = "intern"
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    LEAD = "lead"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "Seniority":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        aliases = {
            "internship": cls.INTERN,
            "entry": cls.JUNIOR,
            "entry-level": cls.JUNIOR,
            "mid-level": cls.MID,
            "intermediate": cls.MID,
            "principal": cls.LEAD,
            "staff": cls.SENIOR,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


# -------------------------
# Mailbox / classification
# -------------------------


class EmailMessage(BaseModel):
    id: str
    subject: str = ""
    sender: str = ""
    body: str = ""
    received_at: Optional[datetime] = None

    def preview(self, max_chars: int = 500) -> "EmailPreview":
        return EmailPreview(
            id=self.id,
            sender=self.sender,
            subject=self.subject,
            body_preview=self.body[:max_chars],
        )


class EmailPreview(BaseModel):
    id: str
    sender: str = ""
    subject: str = ""
    body_preview: str = ""


class Classification(BaseModel):
    id: str
    is_job_related: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        try:
            return max(0.0, min(1.0, float(v)))
        except (TypeError, ValueError):
            return 0.0


# -------------------------
# Job postings
# -------------------------


class JobPostingDraft(BaseModel):
    """What the extractor returns for a single posting found in an email."""

    id: Optional[str] = None
    title: str
    company: str = "Unknown"
    location: str = ""
    is_remote: bool = False
    description: str = ""
    requirements: List[str] = Field(default_factory=list)
    apply_url: str = ""
    salary: Optional[str] = None
    posted_date: Optional[datetime] = None
    source: str = "unknown"

    @field_validator("requirements", mode="before")
    @classmethod
    def _norm_requirements(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item]

    @field_validator("source", mode="before")
    @classmethod
    def _norm_source(cls, v):
        return str(v).strip().lower() if v else "unknown"

    def resolved_id(self) -> str:
        if self.id:
            return self.id
        if has_apply_url(self.apply_url):
            return stable_id(self.apply_url)
        return stable_id(self.title, self.company, self.location)


class JobPosting(JobPostingDraft):
    id: str
    relevance_score: float = Field(ge=0.0, le=1.0)
    email_message_id: str
    processed: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_draft(cls, draft: JobPostingDraft, *, score: float, email_message_id: str) -> "JobPosting":
        data = draft.model_dump()
        data["id"] = draft.resolved_id()
        return cls(
            **data,
            relevance_score=max(0.0, min(1.0, float(score))),
            email_message_id=email_message_id,
        )


def has_apply_url(url: Optional[str]) -> bool:
    return bool(url and url.strip() and url.strip() != "Unknown URL")


# -------------------------
# Resume / ledger / stats
# -------------------------


class ResumeProfile(BaseModel):
    model_config = ConfigDict(use_enum_values=False)

    skills: Set[str] = Field(default_factory=set)
    experience: List[str] = Field(default_factory=list)
    preferred_roles: Set[str] = Field(default_factory=set)
    seniority: Seniority = Seniority.UNKNOWN
    analyzed_at: datetime = Field(default_factory=utc_now)

    @field_validator("seniority", mode="before")
    @classmethod
    def _norm_seniority(cls, v):
        return Seniority.parse(v)


class ProcessedEmailRecord(BaseModel):
    message_id: str
    subject: str = ""
    sender: str = ""
    jobs_extracted: int = 0
    archived: bool = False
    processed_at: datetime = Field(default_factory=utc_now)


class SourceCount(BaseModel):
    source: str
    count: int


class DailyStats(BaseModel):
    total_jobs_processed: int = 0
    relevant_jobs: int = 0
    emails_processed: int = 0
    top_sources: List[SourceCount] = Field(default_factory=list)
