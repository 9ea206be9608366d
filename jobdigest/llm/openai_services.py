"""
OpenAI-backed Classifier, Extractor, RelevanceScorer and ResumeSource.

Transport errors propagate to the caller: the orchestrator decides whether a
failure is per-email (extract/score) or run-level (classify).
"""
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from openai import AsyncOpenAI

from jobdigest.config.settings import settings
from jobdigest.pipeline.models import (
    Classification,
    EmailPreview,
    JobPostingDraft,
    ResumeProfile,
    Seniority,
)


class LLMResponseError(ValueError):
    """The model answered, but not with the JSON shape we asked for."""


_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_FRACTION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)")

HYBRID_PATTERNS = (
    "hybrid",
    "office required",
    "on-site required",
    "onsite required",
    "in-person required",
    "must be located",
    "must be based",
    "local candidates only",
    "days in office",
    "office days",
    "partially remote",
)

REMOTE_PATTERNS = (
    "remote",
    "work from home",
    "wfh",
    "work-from-home",
    "telecommute",
    "telework",
    "home-based",
    "distributed team",
    "work from anywhere",
    "location independent",
    "virtual team",
)

REMOTE_LOCATIONS = ("worldwide", "global", "anywhere", "any location", "home office", "virtual office")

SOURCE_HINTS = {
    "linkedin": "linkedin",
    "jobstreet": "jobstreet",
    "indeed": "indeed",
    "glassdoor": "glassdoor",
    "onlinejobs": "onlinejobs",
    "kalibrr": "kalibrr",
}


def parse_json_payload(content: str, *, expect: type) -> Any:
    """Pull the first JSON object/array out of a model reply."""
    text = _FENCE_RE.sub("", content or "").strip()
    pattern = r"\[.*\]" if expect is list else r"\{.*\}"
    m = re.search(pattern, text, re.DOTALL)
    if not m:
        raise LLMResponseError(f"no JSON {expect.__name__} in reply: {text[:200]!r}")
    try:
        data = json.loads(m.group(0))
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"malformed JSON in reply: {exc}") from exc
    if not isinstance(data, expect):
        raise LLMResponseError(f"expected JSON {expect.__name__}, got {type(data).__name__}")
    return data


def parse_flag(value: Any) -> bool:
    """JSON booleans, plus the "true"/"false" strings models sometimes emit."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


def parse_score(content: str) -> float:
    text = content or ""
    frac = _FRACTION_RE.search(text)
    if frac and float(frac.group(2)) > 0:
        return max(0.0, min(1.0, float(frac.group(1)) / float(frac.group(2))))
    m = re.search(r"\d+(?:\.\d+)?", text)
    if not m:
        logger.warning("Relevance reply had no number: {!r}", text[:100])
        return 0.0
    value = float(m.group(0))
    # bare percentages ("85")
    if 1.0 < value <= 100.0:
        value = value / 100.0
    return max(0.0, min(1.0, value))


def detect_remote(title: str, description: str, location: str, requirements: Sequence[str], hinted: bool) -> bool:
    """Keyword pass on top of the model's remote flag; hybrid wording wins."""
    text = " ".join([title, description, location, *requirements]).lower()
    if any(p in text for p in HYBRID_PATTERNS):
        return False
    if hinted:
        return True
    return any(p in text for p in REMOTE_PATTERNS) or any(p in location.lower() for p in REMOTE_LOCATIONS)


def source_from_sender(sender: str) -> str:
    lowered = (sender or "").lower()
    for hint, source in SOURCE_HINTS.items():
        if hint in lowered:
            return source
    return "email"


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None


class _OpenAIChat:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        model: Optional[str] = None,
        temperature: float = 0.1,
    ):
        self._client_obj = client
        self.model = model or settings.openai_model
        self.temperature = temperature

    def _client(self) -> AsyncOpenAI:
        if self._client_obj is None:
            self._client_obj = AsyncOpenAI()
        return self._client_obj

    async def _complete(self, system: str, prompt: str) -> str:
        temperature = self.temperature
        if "gpt-5" in self.model:
            temperature = 1
        resp = await self._client().chat.completions.create(
            model=self.model,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        return resp.choices[0].message.content or ""


class OpenAIClassifier(_OpenAIChat):
    SYSTEM = "You are an expert at classifying emails for job content. Return only a valid JSON array."

    @staticmethod
    def build_prompt(previews: Sequence[EmailPreview]) -> str:
        blocks = [
            f"Email {i} (ID: {p.id}):\nFrom: {p.sender}\nSubject: {p.subject}\nBody Preview: {p.body_preview}..."
            for i, p in enumerate(previews, start=1)
        ]
        return (
            "Analyze these emails and determine which ones contain job opportunities or career-related content:\n\n"
            + "\n\n".join(blocks)
            + "\n\nFor each email, determine if it contains job listings, job alerts, recruitment outreach "
            "or other professional opportunities.\n"
            'Return a JSON array: [{"id": "email_id", "isJobRelated": true/false, "confidence": 0.0-1.0}]\n'
            "Use high confidence (>0.8) only for clear job opportunities.\n"
            "Use medium confidence (0.5-0.8) for career-related but not direct job posts.\n"
            "Use low confidence (<0.5) for non-job emails.\n"
        )

    async def classify_batch(self, previews: Sequence[EmailPreview]) -> List[Classification]:
        if not previews:
            return []
        content = await self._complete(self.SYSTEM, self.build_prompt(previews))
        known = {p.id for p in previews}
        out: List[Classification] = []
        for item in parse_json_payload(content, expect=list):
            if not isinstance(item, dict) or str(item.get("id")) not in known:
                continue
            out.append(
                Classification(
                    id=str(item["id"]),
                    is_job_related=parse_flag(item.get("isJobRelated", item.get("is_job_related", False))),
                    confidence=item.get("confidence", 0.0),
                )
            )
        return out


class OpenAIExtractor(_OpenAIChat):
    SYSTEM = "You are an expert at extracting structured job data from emails. Return only a valid JSON array."

    def __init__(self, client: Optional[AsyncOpenAI] = None, *, body_max_chars: int = 20000, **kwargs):
        super().__init__(client, **kwargs)
        self.body_max_chars = body_max_chars

    def build_prompt(self, body: str, subject: str, sender: str) -> str:
        return f"""Extract job listings from this email. It usually comes from a job platform like LinkedIn or JobStreet.

Email From: {sender}
Email Subject: {subject}
Email Content:
\"\"\"
{body[: self.body_max_chars]}
\"\"\"

Return a JSON array of job listings:
[
  {{
    "title": "Job Title",
    "company": "Company Name",
    "location": "Location",
    "isRemote": true/false,
    "description": "Job description",
    "requirements": ["requirement1", "requirement2"],
    "applyUrl": "https://...",
    "salary": "Salary range or null",
    "postedDate": "YYYY-MM-DD or null",
    "source": "platform name (linkedin, jobstreet, ...)"
  }}
]

Rules:
- Extract ALL job listings from the email.
- Prefer direct job application URLs over company profile pages; keep query parameters intact.
- Set isRemote=false when the ad mentions hybrid, on-site or in-person work.
- If salary is not mentioned, use null. Do NOT fabricate unknowns.
- Return [] if the email contains no job listings.
"""

    def _to_draft(self, item: Dict[str, Any], sender: str) -> Optional[JobPostingDraft]:
        title = str(item.get("title") or "").strip()
        if not title:
            return None
        requirements = item.get("requirements") or []
        if isinstance(requirements, str):
            requirements = [requirements]
        location = str(item.get("location") or "")
        description = str(item.get("description") or "")
        return JobPostingDraft(
            title=title,
            company=str(item.get("company") or "Unknown"),
            location=location,
            is_remote=detect_remote(
                title,
                description,
                location,
                [str(r) for r in requirements],
                parse_flag(item.get("isRemote", item.get("is_remote", False))),
            ),
            description=description,
            requirements=requirements,
            apply_url=str(item.get("applyUrl") or item.get("apply_url") or "").strip(),
            salary=item.get("salary") or None,
            posted_date=_parse_date(item.get("postedDate") or item.get("posted_date")),
            source=item.get("source") or source_from_sender(sender),
        )

    async def extract_jobs(self, body: str, subject: str, sender: str) -> List[JobPostingDraft]:
        content = await self._complete(self.SYSTEM, self.build_prompt(body, subject, sender))
        drafts = []
        for item in parse_json_payload(content, expect=list):
            if not isinstance(item, dict):
                continue
            draft = self._to_draft(item, sender)
            if draft is not None:
                drafts.append(draft)
        logger.debug("Extracted {} postings from '{}'", len(drafts), subject)
        return drafts


class OpenAIRelevanceScorer(_OpenAIChat):
    SYSTEM = "You are an expert job matching system. Return only a numeric relevance score."

    @staticmethod
    def build_prompt(draft: JobPostingDraft, profile: ResumeProfile) -> str:
        return f"""Calculate how relevant this job is for this candidate.

Job Details:
- Title: {draft.title}
- Company: {draft.company}
- Location: {draft.location}
- Remote: {draft.is_remote}
- Description: {draft.description[:6000]}
- Requirements: {", ".join(draft.requirements)}

Candidate Profile:
- Skills: {", ".join(sorted(profile.skills))}
- Experience: {", ".join(profile.experience)}
- Preferred Roles: {", ".join(sorted(profile.preferred_roles))}
- Seniority: {profile.seniority.value}

Return a relevance score between 0.0 and 1.0 where:
- 1.0 = Perfect match (exact skills, role, seniority)
- 0.8-0.9 = Excellent match (most skills align)
- 0.6-0.7 = Good match (some skills align)
- 0.4-0.5 = Fair match (limited alignment)
- 0.0-0.3 = Poor match

Return only the numeric score (e.g., 0.85)
"""

    async def score(self, draft: JobPostingDraft, profile: ResumeProfile) -> float:
        content = await self._complete(self.SYSTEM, self.build_prompt(draft, profile))
        return parse_score(content)


class OpenAIResumeAnalyzer(_OpenAIChat):
    SYSTEM = "You are an expert at analyzing resumes. Return only valid JSON."

    @staticmethod
    def build_prompt(document: str) -> str:
        return f"""Analyze this resume and extract key information for job matching.

Resume Content:
\"\"\"
{document[:20000]}
\"\"\"

Return a JSON object:
{{
  "skills": ["skill1", "skill2"],
  "experience": ["experience highlight 1", "experience highlight 2"],
  "preferredRoles": ["role1", "role2"],
  "seniority": "intern|junior|mid|senior|lead"
}}
"""

    async def analyze(self, document: str) -> ResumeProfile:
        content = await self._complete(self.SYSTEM, self.build_prompt(document))
        data = parse_json_payload(content, expect=dict)
        return ResumeProfile(
            skills={str(s) for s in data.get("skills") or []},
            experience=[str(e) for e in data.get("experience") or []],
            preferred_roles={str(r) for r in data.get("preferredRoles") or data.get("preferred_roles") or []},
            seniority=Seniority.parse(data.get("seniority") or "mid"),
        )
