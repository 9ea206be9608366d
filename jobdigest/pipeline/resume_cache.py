from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from jobdigest.common.utils import as_utc, utc_now
from .interfaces import ResumeProfileStore, ResumeSource
from .models import ResumeProfile


def extract_text_from_file(path: Path) -> str:
    """Resume text for analysis: .pdf, .docx, anything else read as UTF-8. Blank lines dropped."""
    suffix = path.suffix.lower()
    if suffix == ".docx":
        from docx import Document

        lines = [p.text for p in Document(str(path)).paragraphs]
    elif suffix == ".pdf":
        from pypdf import PdfReader

        lines = []
        for page in PdfReader(str(path)).pages:
            lines.extend((page.extract_text() or "").splitlines())
    else:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return "\n".join(line.strip() for line in lines if line and line.strip())


class ResumeProfileCache:
    """
    Owns the "is the resume analysis fresh enough" decision. A stale or missing
    profile is recomputed through the ResumeSource and written back; a failed
    write is logged and the in-memory profile is used for the run.
    """

    def __init__(
        self,
        store: ResumeProfileStore,
        source: ResumeSource,
        load_document: Callable[[], str],
        *,
        max_age: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.source = source
        self._load_document = load_document
        self.max_age = max_age
        self._clock = clock

    @classmethod
    def from_path(cls, store: ResumeProfileStore, source: ResumeSource, path: Path, **kwargs) -> "ResumeProfileCache":
        return cls(store, source, lambda: extract_text_from_file(Path(path)), **kwargs)

    def is_stale(self, profile: Optional[ResumeProfile], now: Optional[datetime] = None) -> bool:
        if profile is None:
            return True
        now = as_utc(now or self._clock())
        return now - as_utc(profile.analyzed_at) > self.max_age

    async def get_active_profile(self, now: Optional[datetime] = None) -> ResumeProfile:
        now = as_utc(now or self._clock())
        try:
            cached = await self.store.latest()
        except Exception as exc:
            logger.warning("Resume profile read failed, re-analyzing: {}", exc)
            cached = None

        if not self.is_stale(cached, now):
            logger.debug("Using cached resume profile from {}", cached.analyzed_at.isoformat())
            return cached

        logger.info("Resume profile missing or older than {} days; analyzing", self.max_age.days)
        document = await asyncio.to_thread(self._load_document)
        profile = await self.source.analyze(document)
        profile = profile.model_copy(update={"analyzed_at": now})

        try:
            await self.store.save(profile)
        except Exception as exc:
            logger.warning("Resume profile cache write failed, continuing with in-memory profile: {}", exc)
        return profile
