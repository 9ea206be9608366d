from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RunKind(str, Enum):
    ALERT_SCAN = "alert-scan"
    DAILY_SUMMARY = "daily-summary"
    RETENTION_PRUNE = "retention-prune"


class RunStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT = (RunStatus.QUEUED.value, RunStatus.ACTIVE.value)


class TriggerSource(str, Enum):
    CRON = "cron"
    MANUAL = "manual"
    API = "api"


class BackoffKind(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


PRIORITY_MANUAL = 1
PRIORITY_CRON = 10
PRIORITY_HOUSEKEEPING = 20


def default_priority(kind: RunKind, trigger: TriggerSource) -> int:
    if kind == RunKind.RETENTION_PRUNE:
        return PRIORITY_HOUSEKEEPING
    return PRIORITY_CRON if trigger == TriggerSource.CRON else PRIORITY_MANUAL


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_kind: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay_sec: float = 2.0

    def delay_for(self, attempt: int) -> timedelta:
        """Delay before the retry that follows failed attempt number `attempt` (1-based)."""
        if self.backoff_kind == BackoffKind.FIXED:
            return timedelta(seconds=self.base_delay_sec)
        return timedelta(seconds=self.base_delay_sec * (2 ** max(0, attempt - 1)))

    @classmethod
    def from_settings(cls, s) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(s.queue_max_attempts)),
            backoff_kind=BackoffKind(s.queue_backoff_kind),
            base_delay_sec=float(s.queue_backoff_base_sec),
        )


class PipelineRun(BaseModel):
    id: str
    kind: RunKind
    trigger: TriggerSource
    priority: int
    status: RunStatus
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    backoff_kind: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay_sec: float = 2.0
    progress: int = 0
    progress_message: Optional[str] = None
    error: Optional[str] = None
    available_at: datetime
    lease_expires_at: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_kind=self.backoff_kind,
            base_delay_sec=self.base_delay_sec,
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "trigger": self.trigger.value,
            "progress": self.progress,
            "progress_message": self.progress_message,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


class QueueStats(BaseModel):
    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
