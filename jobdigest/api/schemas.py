from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from jobdigest.queue.models import QueueStats


class _Base(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TriggerRunRequest(_Base):
    min_relevance: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class TriggerRunResponse(_Base):
    run_id: str
    kind: str
    status: str = "queued"


class RunSnapshot(BaseModel):
    id: str
    kind: str
    status: str
    trigger: str
    progress: int
    progress_message: Optional[str] = None
    attempts: int
    started_at: Optional[str] = None


class StatusResponse(BaseModel):
    stats: QueueStats
    current: Dict[str, Optional[RunSnapshot]]


class Health(BaseModel):
    ok: bool
    message: Optional[str] = None
