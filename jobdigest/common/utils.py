from __future__ import annotations

import hashlib
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def slugify(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-zA-Z0-9]+", "-", text).strip("-").lower()
    return re.sub(r"-{2,}", "-", text)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (as SQLite hands them back) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_z(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="seconds").replace("+00:00", "Z")


def stable_id(*parts: str) -> str:
    base = "|".join(slugify(p or "") for p in parts)
    return hashlib.sha1(base.encode("utf-8")).hexdigest()[:24]


def to_jsonable(x: Any) -> Any:
    """
    Convert common non-JSON types to JSON-serializable equivalents.
    Keeps behavior deterministic (e.g., sets are sorted).
    """
    if isinstance(x, BaseModel):
        return x.model_dump(mode="json")

    if isinstance(x, dict):
        return {str(k): to_jsonable(v) for k, v in x.items()}

    if isinstance(x, (list, tuple)):
        return [to_jsonable(v) for v in x]

    if isinstance(x, set):
        return sorted([to_jsonable(v) for v in x], key=lambda t: str(t))

    if isinstance(x, datetime):
        return iso_z(x)

    if isinstance(x, Path):
        return str(x)

    return x
