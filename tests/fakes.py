"""In-memory collaborators for pipeline tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from jobdigest.pipeline.models import (
    Classification,
    DailyStats,
    EmailMessage,
    JobPosting,
    JobPostingDraft,
    ResumeProfile,
)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_email(msg_id: str, subject: Optional[str] = None, sender: str = "jobs-noreply@linkedin.com") -> EmailMessage:
    return EmailMessage(id=msg_id, subject=subject or msg_id, sender=sender, body=f"body of {msg_id}")


def make_draft(title: str, company: str = "Acme", *, url: Optional[str] = None, remote: bool = False) -> JobPostingDraft:
    slug = title.lower().replace(" ", "-")
    return JobPostingDraft(
        title=title,
        company=company,
        location="Manila",
        is_remote=remote,
        apply_url=url if url is not None else f"https://jobs.example.com/{company.lower()}/{slug}",
        source="linkedin",
    )


class FakeEmailSource:
    def __init__(self, emails: Sequence[EmailMessage], *, fail_archive: Sequence[str] = ()):
        self.emails = list(emails)
        self.fail_archive = set(fail_archive)
        self.read: List[str] = []
        self.archived: List[str] = []
        self.list_calls = 0

    async def list_recent(self) -> List[EmailMessage]:
        self.list_calls += 1
        return list(self.emails)

    async def mark_read(self, message_id: str) -> None:
        self.read.append(message_id)

    async def mark_read_and_archive(self, message_id: str) -> None:
        if message_id in self.fail_archive:
            raise RuntimeError("IMAP archive refused")
        self.archived.append(message_id)


class FakeClassifier:
    def __init__(self, verdicts: Dict[str, Tuple[bool, float]], *, error: Optional[Exception] = None):
        self.verdicts = verdicts
        self.error = error
        self.batches: List[List[str]] = []

    async def classify_batch(self, previews) -> List[Classification]:
        if self.error is not None:
            raise self.error
        self.batches.append([p.id for p in previews])
        return [
            Classification(id=p.id, is_job_related=self.verdicts[p.id][0], confidence=self.verdicts[p.id][1])
            for p in previews
            if p.id in self.verdicts
        ]


class FakeExtractor:
    """Drafts keyed by email subject; an Exception value is raised instead."""

    def __init__(self, by_subject: Dict[str, object]):
        self.by_subject = by_subject
        self.calls: List[str] = []

    async def extract_jobs(self, body: str, subject: str, sender: str) -> List[JobPostingDraft]:
        self.calls.append(subject)
        value = self.by_subject.get(subject, [])
        if isinstance(value, Exception):
            raise value
        return list(value)


class FakeScorer:
    def __init__(self, by_title: Dict[str, float], default: float = 0.0):
        self.by_title = by_title
        self.default = default
        self.calls: List[str] = []

    async def score(self, draft: JobPostingDraft, profile: ResumeProfile) -> float:
        self.calls.append(draft.title)
        return self.by_title.get(draft.title, self.default)


class FakeResumeSource:
    def __init__(self):
        self.documents: List[str] = []

    async def analyze(self, document: str) -> ResumeProfile:
        self.documents.append(document)
        return ResumeProfile(skills={"python", "sql"}, preferred_roles={"data analyst"}, seniority="junior")


class MemoryResumeStore:
    def __init__(self, profile: Optional[ResumeProfile] = None, *, fail_save: bool = False):
        self.profile = profile
        self.fail_save = fail_save
        self.saved: List[ResumeProfile] = []

    async def latest(self) -> Optional[ResumeProfile]:
        return self.profile

    async def save(self, profile: ResumeProfile) -> None:
        if self.fail_save:
            raise OSError("disk full")
        self.saved.append(profile)
        self.profile = profile


class FakeNotifier:
    def __init__(self, *, fail_digest: bool = False, fail_daily: bool = False):
        self.fail_digest = fail_digest
        self.fail_daily = fail_daily
        self.digests: List[List[JobPosting]] = []
        self.daily: List[Tuple[List[JobPosting], DailyStats]] = []
        self.statuses: List[str] = []
        self.errors: List[str] = []
        self.progress: List[Tuple[object, str]] = []
        self.created: List[str] = []
        self._next_handle = 100

    async def send_digest(self, postings) -> None:
        if self.fail_digest:
            raise ConnectionError("telegram unreachable")
        self.digests.append(list(postings))

    async def send_daily_summary(self, postings, stats) -> None:
        if self.fail_daily:
            raise ConnectionError("telegram unreachable")
        self.daily.append((list(postings), stats))

    async def send_status(self, text: str) -> None:
        self.statuses.append(text)

    async def send_error(self, text: str) -> None:
        self.errors.append(text)

    async def create_progress_message(self, text: str):
        self.created.append(text)
        self._next_handle += 1
        return self._next_handle

    async def update_progress_message(self, handle, text: str) -> None:
        self.progress.append((handle, text))
