"""
Message layouts for the notification channel (Telegram Markdown).

Everything here is pure: postings in, strings out. Transport concerns such as
chunk delays and edit fallbacks live in `jobdigest.notify.telegram`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from jobdigest.pipeline.models import DailyStats, JobPosting, has_apply_url
from jobdigest.queue.models import QueueStats

# (threshold, marker), checked top-down
RELEVANCE_MARKERS: Tuple[Tuple[float, str], ...] = (
    (0.9, "🎯"),
    (0.8, "⭐"),
    (0.7, "🔥"),
    (0.6, "✅"),
    (0.5, "📋"),
)
DEFAULT_MARKER = "📄"

# Room kept free in each chunk for the "(Part N)" header.
PART_HEADER_RESERVE = 64


@dataclass(frozen=True)
class RelevanceBands:
    high: float = 0.8
    medium: float = 0.6

    @classmethod
    def from_settings(cls, s) -> "RelevanceBands":
        return cls(high=s.relevance_high_band, medium=s.relevance_medium_band)


def relevance_marker(score: float) -> str:
    for threshold, marker in RELEVANCE_MARKERS:
        if score >= threshold:
            return marker
    return DEFAULT_MARKER


def percent(score: float) -> int:
    return int(round(score * 100))


def link_warning(url: Optional[str]) -> str:
    if not url:
        return " ⚠️ _No URL_"
    if "linkedin.com/company/" in url and "/jobs/" not in url:
        return " ⚠️ _Company page - may not be direct job link_"
    if "/company" in url and "job" not in url:
        return " ⚠️ _May be company page_"
    return ""


def listable(postings: Sequence[JobPosting]) -> List[JobPosting]:
    """Postings with a usable apply link, highest score first."""
    usable = [p for p in postings if has_apply_url(p.apply_url)]
    return sorted(usable, key=lambda p: p.relevance_score, reverse=True)


def posting_entry(posting: JobPosting, *, show_location: bool = True) -> str:
    company = posting.company
    if show_location:
        company = f"{company} {'🏠' if posting.is_remote else '🏢'}"
    return (
        f"{relevance_marker(posting.relevance_score)} **{posting.title}**\n"
        f"🏢 {company} | 📊 {percent(posting.relevance_score)}%\n"
        f"🔗 [Apply]({posting.apply_url}){link_warning(posting.apply_url)}\n"
    )


def format_digest(
    postings: Sequence[JobPosting],
    *,
    bands: RelevanceBands = RelevanceBands(),
    generated_at: Optional[datetime] = None,
    hourly: bool = True,
) -> str:
    jobs = listable(postings)
    high = [p for p in jobs if p.relevance_score >= bands.high]
    medium = [p for p in jobs if bands.medium <= p.relevance_score < bands.high]
    remote = [p for p in jobs if p.is_remote]
    title = "⏰ **Hourly Batch Report**" if hourly else "🎯 **Job Opportunities**"

    lines = [
        f"{title} - {len(jobs)} Jobs",
        "",
        "📊 **Summary:**",
        f"⭐ High Relevance (≥{percent(bands.high)}%): **{len(high)}**",
        f"📈 Medium Relevance ({percent(bands.medium)}-{percent(bands.high) - 1}%): **{len(medium)}**",
        f"🏠 Remote: **{len(remote)}** | 🏢 On-site: **{len(jobs) - len(remote)}**",
    ]
    if generated_at is not None:
        lines += ["", f"📅 {generated_at.strftime('%Y-%m-%d %H:%M')}"]
    lines += ["", "---", ""]
    body = "\n".join(lines) + "\n"
    body += "\n".join(posting_entry(p) for p in jobs)
    return body.rstrip() + "\n"


def format_daily_summary(
    postings: Sequence[JobPosting],
    stats: DailyStats,
    *,
    day_label: str,
) -> str:
    lines = [
        f"🌙 **Daily Job Digest Summary - {day_label}**",
        "",
        "📊 **Daily Statistics:**",
        f"✅ Total Jobs Processed: **{stats.total_jobs_processed}**",
        f"🎯 Relevant Jobs Found: **{stats.relevant_jobs}**",
        f"📧 Emails Processed: **{stats.emails_processed}**",
        "",
        "📈 **Top Job Sources:**",
    ]
    lines += [f"• {s.source}: **{s.count}** jobs" for s in stats.top_sources]
    lines += ["", "---", ""]
    text = "\n".join(lines) + "\n"

    jobs = listable(postings)
    if not jobs:
        text += "📝 No relevant opportunities found today.\n\n✨ Tomorrow is another day for new opportunities!\n"
    else:
        text += f"🎯 **{len(jobs)} Relevant Opportunities Today:**\n\n"
        remote = [p for p in jobs if p.is_remote]
        onsite = [p for p in jobs if not p.is_remote]
        if remote:
            text += f"🏠 **Remote Opportunities ({len(remote)}):**\n\n"
            text += "\n".join(posting_entry(p, show_location=False) for p in remote) + "\n"
        if onsite:
            text += f"🏢 **On-Site Opportunities ({len(onsite)}):**\n\n"
            text += "\n".join(posting_entry(p, show_location=False) for p in onsite) + "\n"

    text += "\n🌅 See you tomorrow for more opportunities!"
    return text


def split_message(text: str, max_chars: int) -> List[str]:
    """Split on line boundaries so each chunk fits in `max_chars`."""
    if len(text) <= max_chars:
        return [text]

    chunks: List[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) + 1 > max_chars:
            # a single line longer than the limit is hard-wrapped
            if current.strip():
                chunks.append(current.strip())
                current = ""
            chunks.append(line[: max_chars - 1])
            line = line[max_chars - 1 :]
        if len(current) + len(line) + 1 > max_chars and current:
            chunks.append(current.strip())
            current = ""
        current += line + "\n"
    if current.strip():
        chunks.append(current.strip())
    return chunks


def label_parts(chunks: Sequence[str], title: str) -> List[str]:
    """Prefix chunk N>1 with a "(Part N)" header."""
    return [chunk if i == 0 else f"{title} (Part {i + 1})**\n\n{chunk}" for i, chunk in enumerate(chunks)]


def digest_messages(postings: Sequence[JobPosting], max_chars: int, **kwargs) -> List[str]:
    text = format_digest(postings, **kwargs)
    return label_parts(split_message(text, max_chars - PART_HEADER_RESERVE), "📋 **Job List")


def daily_summary_messages(postings: Sequence[JobPosting], stats: DailyStats, max_chars: int, **kwargs) -> List[str]:
    text = format_daily_summary(postings, stats, **kwargs)
    return label_parts(split_message(text, max_chars - PART_HEADER_RESERVE), "🌙 **Daily Summary")


def status_text(message: str) -> str:
    return f"🤖 *Job Bot Status*\n\n{message}"


def error_text(error: str, when: Optional[datetime] = None) -> str:
    text = f"❌ *Job Bot Error*\n\n{error}"
    if when is not None:
        text += f"\n\n🕐 Time: {when.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}"
    return text


def queue_status_text(stats: QueueStats, current: Dict[str, Optional[dict]]) -> str:
    lines = [
        "📊 **Queue Status:**",
        f"⏳ Waiting: {stats.queued}",
        f"🔄 Active: {stats.active}",
        f"✅ Completed: {stats.completed}",
        f"❌ Failed: {stats.failed}",
    ]
    for kind, snap in current.items():
        if not snap:
            lines.append(f"• {kind}: idle")
            continue
        detail = f"{snap['status']} {snap['progress']}%"
        if snap.get("progress_message"):
            detail += f" - {snap['progress_message']}"
        lines.append(f"• {kind}: {detail}")
    return "\n".join(lines)


def run_summary_text(
    *,
    new: int,
    duplicates: int,
    sent: int,
    failed_emails: int,
    hint: str,
) -> str:
    text = f"✅ Complete: {new} new, {duplicates} duplicates, {sent} sent"
    if failed_emails:
        text += f", {failed_emails} failed emails"
    return f"{text}\n{hint}"
