"""
Capability interfaces the orchestrator is wired with at process start.

Concrete adapters live in `jobdigest.mail`, `jobdigest.llm`, `jobdigest.notify`
and `jobdigest.db.stores`; tests substitute in-memory fakes.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol, Sequence

from .models import (
    Classification,
    DailyStats,
    EmailMessage,
    EmailPreview,
    JobPosting,
    JobPostingDraft,
    ProcessedEmailRecord,
    ResumeProfile,
)


class EmailSource(Protocol):
    async def list_recent(self) -> List[EmailMessage]: ...

    async def mark_read(self, message_id: str) -> None: ...

    async def mark_read_and_archive(self, message_id: str) -> None: ...


class Classifier(Protocol):
    async def classify_batch(self, previews: Sequence[EmailPreview]) -> List[Classification]: ...


class Extractor(Protocol):
    async def extract_jobs(self, body: str, subject: str, sender: str) -> List[JobPostingDraft]: ...


class RelevanceScorer(Protocol):
    async def score(self, draft: JobPostingDraft, profile: ResumeProfile) -> float: ...


class ResumeSource(Protocol):
    async def analyze(self, document: str) -> ResumeProfile: ...


class Notifier(Protocol):
    async def send_digest(self, postings: Sequence[JobPosting]) -> None: ...

    async def send_daily_summary(self, postings: Sequence[JobPosting], stats: DailyStats) -> None: ...

    async def send_status(self, text: str) -> None: ...

    async def send_error(self, text: str) -> None: ...

    async def create_progress_message(self, text: str) -> Optional[Any]: ...

    async def update_progress_message(self, handle: Any, text: str) -> None: ...


class JobStore(Protocol):
    async def exists_similar(self, draft: JobPostingDraft) -> bool: ...

    async def save(self, posting: JobPosting) -> None: ...

    async def mark_processed(self, posting_ids: Sequence[str]) -> None: ...

    async def relevant(self, min_score: float) -> List[JobPosting]: ...

    async def daily_jobs(self, start: datetime, end: datetime, min_score: float) -> List[JobPosting]: ...

    async def daily_stats(self, start: datetime, end: datetime, min_score: float, top_n: int) -> DailyStats: ...


class ProcessedEmailLedger(Protocol):
    async def exists(self, message_id: str) -> bool: ...

    async def get(self, message_id: str) -> Optional[ProcessedEmailRecord]: ...

    async def record(
        self,
        message_id: str,
        jobs_extracted: int,
        *,
        archived: bool = False,
        subject: str = "",
        sender: str = "",
    ) -> ProcessedEmailRecord: ...

    async def mark_archived(self, message_id: str) -> None: ...


class ResumeProfileStore(Protocol):
    async def latest(self) -> Optional[ResumeProfile]: ...

    async def save(self, profile: ResumeProfile) -> None: ...
