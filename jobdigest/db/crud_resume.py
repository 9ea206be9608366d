from __future__ import annotations

import json
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobdigest.common.utils import as_utc
from jobdigest.db.models import ResumeProfileRow
from jobdigest.pipeline.models import ResumeProfile


def get_latest_profile(db: Session) -> Optional[ResumeProfile]:
    stmt = select(ResumeProfileRow).order_by(ResumeProfileRow.analyzed_at.desc(), ResumeProfileRow.id.desc()).limit(1)
    row = db.scalars(stmt).first()
    if row is None:
        return None
    return ResumeProfile(
        skills=set(json.loads(row.skills_json or "[]")),
        experience=json.loads(row.experience_json or "[]"),
        preferred_roles=set(json.loads(row.preferred_roles_json or "[]")),
        seniority=row.seniority,
        analyzed_at=as_utc(row.analyzed_at),
    )


def save_profile(db: Session, profile: ResumeProfile) -> ResumeProfileRow:
    row = ResumeProfileRow(
        skills_json=json.dumps(sorted(profile.skills), ensure_ascii=False),
        experience_json=json.dumps(list(profile.experience), ensure_ascii=False),
        preferred_roles_json=json.dumps(sorted(profile.preferred_roles), ensure_ascii=False),
        seniority=profile.seniority.value,
        analyzed_at=as_utc(profile.analyzed_at),
    )
    db.add(row)
    db.flush()
    return row
