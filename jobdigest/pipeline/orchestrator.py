"""
The alert-scan and daily-summary runs.

One `PipelineOrchestrator` is built at process start with every collaborator
injected. A run is strictly sequential; concurrency between runs of the same
kind is prevented by the work queue, not here.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from jobdigest.common.logging_ctx import ctx_logger
from jobdigest.common.utils import as_utc, utc_now
from jobdigest.errors import PerEmailFailure, RunFailure
from jobdigest.notify.formatting import run_summary_text
from jobdigest.scheduling.scheduler import SchedulePolicy, next_run_hint
from .interfaces import (
    Classifier,
    EmailSource,
    Extractor,
    JobStore,
    Notifier,
    ProcessedEmailLedger,
    RelevanceScorer,
)
from .models import DailyStats, EmailMessage, JobPosting, ResumeProfile
from .resume_cache import ResumeProfileCache

ProgressFn = Callable[[int, str], Awaitable[None]]


async def _no_progress(pct: int, message: str) -> None:
    return None


@dataclass(frozen=True)
class PipelinePolicy:
    classification_threshold: float = 0.5
    classify_batch_size: int = 10
    body_preview_chars: int = 500
    min_relevance: float = 0.6
    posting_delay_sec: float = 1.0
    daily_min_relevance: float = 0.6
    daily_top_sources: int = 5
    timezone: str = "Asia/Manila"

    @classmethod
    def from_settings(cls, s) -> "PipelinePolicy":
        return cls(
            classification_threshold=s.classification_threshold,
            classify_batch_size=max(1, s.classify_batch_size),
            body_preview_chars=s.body_preview_chars,
            min_relevance=s.min_relevance,
            posting_delay_sec=s.posting_delay_sec,
            daily_min_relevance=s.daily_summary_min_relevance,
            daily_top_sources=s.daily_top_sources,
            timezone=s.schedule_timezone,
        )


@dataclass
class AlertScanResult:
    emails_fetched: int = 0
    job_related: int = 0
    already_processed: int = 0
    emails_processed: int = 0
    new_postings: int = 0
    duplicates: int = 0
    relevant_sent: int = 0
    failed_emails: List[str] = field(default_factory=list)
    digest_delivered: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "emails_fetched": self.emails_fetched,
            "job_related": self.job_related,
            "already_processed": self.already_processed,
            "emails_processed": self.emails_processed,
            "new_postings": self.new_postings,
            "duplicates": self.duplicates,
            "relevant_sent": self.relevant_sent,
            "failed_emails": list(self.failed_emails),
            "digest_delivered": self.digest_delivered,
        }


@dataclass
class DailySummaryResult:
    day: date
    postings: int
    stats: DailyStats


def local_day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """[start, end) of a local civil day, as UTC instants."""
    start = datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, end


class PipelineOrchestrator:
    def __init__(
        self,
        *,
        source: EmailSource,
        classifier: Classifier,
        extractor: Extractor,
        scorer: RelevanceScorer,
        resume_cache: ResumeProfileCache,
        jobs: JobStore,
        ledger: ProcessedEmailLedger,
        notifier: Notifier,
        policy: PipelinePolicy = PipelinePolicy(),
        schedule: SchedulePolicy = SchedulePolicy(),
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.source = source
        self.classifier = classifier
        self.extractor = extractor
        self.scorer = scorer
        self.resume_cache = resume_cache
        self.jobs = jobs
        self.ledger = ledger
        self.notifier = notifier
        self.policy = policy
        self.schedule = schedule
        self._clock = clock
        self._sleep = sleep

    # -------------------------
    # Alert scan
    # -------------------------

    async def run_alert_scan(
        self,
        *,
        min_relevance: Optional[float] = None,
        progress: ProgressFn = _no_progress,
        progress_handle: Any = None,
    ) -> AlertScanResult:
        log = ctx_logger()
        min_relevance = self.policy.min_relevance if min_relevance is None else float(min_relevance)
        result = AlertScanResult()

        await progress(5, "🚀 Processing jobs...")

        await progress(10, "📄 Checking resume profile...")
        profile = await self.resume_cache.get_active_profile(self._clock())

        await progress(20, "📧 Reading emails...")
        emails = await self.source.list_recent()
        result.emails_fetched = len(emails)
        log.info("Fetched {} recent emails", len(emails))

        await progress(30, f"🤖 Analyzing {len(emails)} emails...")
        job_emails = await self._classify(emails)
        result.job_related = len(job_emails)
        await progress(40, f"✅ Found {len(job_emails)} job emails")
        log.info("{} of {} emails classified as job-related", len(job_emails), len(emails))

        accumulator: List[JobPosting] = []
        for email in job_emails:
            if await self.ledger.exists(email.id):
                log.debug("Email {} already processed, skipping", email.id)
                result.already_processed += 1
                continue
            try:
                await self._process_email(email, profile, min_relevance, accumulator, result)
            except Exception as exc:
                await self._isolate_failure(PerEmailFailure(email.id, exc), email, result)
            else:
                result.emails_processed += 1

        await progress(85, "📤 Sending job notifications...")
        await self._deliver_digest(accumulator, result)

        await progress(95, "🧹 Finalizing results...")
        summary = run_summary_text(
            new=result.new_postings,
            duplicates=result.duplicates,
            sent=result.relevant_sent,
            failed_emails=len(result.failed_emails),
            hint=next_run_hint(self._clock(), self.schedule),
        )
        if progress_handle is not None:
            await self.notifier.update_progress_message(progress_handle, summary)
        else:
            await self.notifier.send_status(summary)

        log.info(
            "Alert scan complete: {} new, {} duplicates, {} relevant, {} failed emails",
            result.new_postings,
            result.duplicates,
            result.relevant_sent,
            len(result.failed_emails),
        )
        return result

    async def _classify(self, emails: Sequence[EmailMessage]) -> List[EmailMessage]:
        """Batch-classify and keep, in arrival order, the qualifying messages."""
        verdicts = {}
        size = self.policy.classify_batch_size
        for i in range(0, len(emails), size):
            batch = emails[i : i + size]
            previews = [e.preview(self.policy.body_preview_chars) for e in batch]
            for c in await self.classifier.classify_batch(previews):
                verdicts[c.id] = c
        threshold = self.policy.classification_threshold
        return [
            e
            for e in emails
            if e.id in verdicts
            and verdicts[e.id].is_job_related
            and verdicts[e.id].confidence >= threshold
        ]

    async def _process_email(
        self,
        email: EmailMessage,
        profile: ResumeProfile,
        min_relevance: float,
        accumulator: List[JobPosting],
        result: AlertScanResult,
    ) -> None:
        log = ctx_logger()
        drafts = await self.extractor.extract_jobs(email.body, email.subject, email.sender)

        if not drafts:
            log.info("No postings in email {}; recording without archiving", email.id)
            await self.ledger.record(email.id, 0, subject=email.subject, sender=email.sender)
            try:
                await self.source.mark_read(email.id)
            except Exception as exc:
                log.warning("Failed to mark email {} as read: {}", email.id, exc)
            return

        saved = 0
        for draft in drafts:
            if await self.jobs.exists_similar(draft):
                log.info("Duplicate posting skipped: {} at {}", draft.title, draft.company)
                result.duplicates += 1
                continue
            score = await self.scorer.score(draft, profile)
            posting = JobPosting.from_draft(draft, score=score, email_message_id=email.id)
            await self.jobs.save(posting)
            saved += 1
            result.new_postings += 1
            log.info("Saved posting {} at {} (score {:.2f})", posting.title, posting.company, posting.relevance_score)
            if posting.relevance_score >= min_relevance:
                accumulator.append(posting)
            if self.policy.posting_delay_sec > 0:
                await self._sleep(self.policy.posting_delay_sec)

        # The ledger write is the durability boundary; archive comes after it.
        await self.ledger.record(email.id, saved, subject=email.subject, sender=email.sender)
        try:
            await self.source.mark_read_and_archive(email.id)
        except Exception as exc:
            log.warning("Email {} recorded but archive failed: {}", email.id, exc)
            await self.notifier.send_error(f'Failed to archive email "{email.subject}" ({email.id}): {exc}')
            return
        await self.ledger.mark_archived(email.id)
        log.info("Email {} processed and archived ({} postings)", email.id, saved)

    async def _isolate_failure(self, failure: PerEmailFailure, email: EmailMessage, result: AlertScanResult) -> None:
        log = ctx_logger()
        log.opt(exception=failure.cause).error("Error processing email {}", email.id)
        result.failed_emails.append(email.id)
        try:
            await self.ledger.record(email.id, 0, subject=email.subject, sender=email.sender)
        except Exception as exc:
            log.error("Failed to record problematic email {}: {}", email.id, exc)
        try:
            await self.source.mark_read(email.id)
        except Exception as exc:
            log.warning("Failed to mark email {} as read: {}", email.id, exc)
        await self.notifier.send_error(
            f'Failed to process email "{email.subject}" ({email.id}) from {email.sender}: {failure.cause}'
        )

    async def _deliver_digest(self, accumulator: List[JobPosting], result: AlertScanResult) -> None:
        log = ctx_logger()
        if not accumulator:
            log.info("No relevant postings to notify")
            return
        postings = sorted(accumulator, key=lambda p: p.relevance_score, reverse=True)
        try:
            await self.notifier.send_digest(postings)
        except Exception as exc:
            log.error("Digest delivery failed; {} postings stay unflagged: {}", len(postings), exc)
            return
        result.digest_delivered = True
        result.relevant_sent = len(postings)
        try:
            await self.jobs.mark_processed([p.id for p in postings])
        except Exception as exc:
            log.error("Failed to flag delivered postings as processed: {}", exc)

    # -------------------------
    # Daily summary
    # -------------------------

    async def run_daily_summary(
        self,
        *,
        day: Optional[date] = None,
        progress: ProgressFn = _no_progress,
    ) -> DailySummaryResult:
        tz = ZoneInfo(self.policy.timezone)
        day = day or as_utc(self._clock()).astimezone(tz).date()
        start, end = local_day_bounds(day, tz)
        logger.info("Daily summary for {} ({} .. {} UTC)", day.isoformat(), start.isoformat(), end.isoformat())

        try:
            await progress(10, "📊 Generating daily summary...")
            postings = await self.jobs.daily_jobs(start, end, self.policy.daily_min_relevance)
            stats = await self.jobs.daily_stats(
                start,
                end,
                self.policy.daily_min_relevance,
                self.policy.daily_top_sources,
            )
            await progress(50, f"📈 {len(postings)} relevant postings today")
            await self.notifier.send_daily_summary(postings, stats)
            await progress(90, "📤 Daily summary sent")
        except Exception as exc:
            raise RunFailure(f"daily summary for {day.isoformat()} failed: {exc}") from exc

        return DailySummaryResult(day=day, postings=len(postings), stats=stats)
