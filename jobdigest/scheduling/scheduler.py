"""
Cron policy for the pipeline.

`due_triggers` is a pure function of (instant, policy): it converts the instant
to the policy's civil time and reports which run kinds are due at that minute.
`SchedulerLoop` is the timer adapter that turns those triggers into enqueues.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from loguru import logger

from jobdigest.common.utils import as_utc, iso_z, utc_now
from jobdigest.errors import AlreadyInFlight
from jobdigest.queue.models import RunKind, TriggerSource


@dataclass(frozen=True)
class SchedulePolicy:
    timezone: str = "Asia/Manila"
    scan_start_hour: int = 6
    scan_end_hour: int = 20  # inclusive
    summary_time: time = time(21, 0)
    prune_time: time = time(3, 30)

    def __post_init__(self):
        if not (0 <= self.scan_start_hour <= self.scan_end_hour <= 23):
            raise ValueError(f"Invalid scan window {self.scan_start_hour}-{self.scan_end_hour}")
        ZoneInfo(self.timezone)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def place(self) -> str:
        return self.timezone.split("/")[-1].replace("_", " ")

    @classmethod
    def from_settings(cls, s) -> "SchedulePolicy":
        return cls(
            timezone=s.schedule_timezone,
            scan_start_hour=s.scan_start_hour,
            scan_end_hour=s.scan_end_hour,
            summary_time=time(s.summary_hour, s.summary_minute),
            prune_time=time(s.prune_hour, s.prune_minute),
        )


@dataclass(frozen=True)
class Trigger:
    kind: RunKind
    fire_at: datetime  # UTC
    local_time: datetime

    def payload(self) -> dict:
        return {"scheduled_for": iso_z(self.fire_at)}


def _local_slots(policy: SchedulePolicy):
    for hour in range(policy.scan_start_hour, policy.scan_end_hour + 1):
        yield RunKind.ALERT_SCAN, time(hour, 0)
    yield RunKind.DAILY_SUMMARY, policy.summary_time
    yield RunKind.RETENTION_PRUNE, policy.prune_time


def due_triggers(now_utc: datetime, policy: SchedulePolicy) -> List[Trigger]:
    """Triggers whose local wall-clock minute equals the minute of `now_utc`."""
    instant = as_utc(now_utc).replace(second=0, microsecond=0)
    local = instant.astimezone(policy.tz)
    wall = time(local.hour, local.minute)
    return [
        Trigger(kind=kind, fire_at=instant, local_time=local)
        for kind, slot in _local_slots(policy)
        if slot == wall
    ]


def triggers_for_day(day: date, policy: SchedulePolicy) -> List[Trigger]:
    """
    All triggers of one local civil day, converted to UTC and ordered by time.
    Wall-clock times that do not exist on that day (DST gaps) are skipped.
    """
    tz = policy.tz
    out: List[Trigger] = []
    for kind, slot in _local_slots(policy):
        naive = datetime.combine(day, slot)
        local = naive.replace(tzinfo=tz)
        fire_at = local.astimezone(timezone.utc)
        if fire_at.astimezone(tz).replace(tzinfo=None) != naive:
            continue
        out.append(Trigger(kind=kind, fire_at=fire_at, local_time=local))
    return sorted(out, key=lambda t: t.fire_at)


def _clock_label(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    if value.minute:
        return f"{hour}:{value.minute:02d} {suffix}"
    return f"{hour} {suffix}"


def next_run_hint(now_utc: datetime, policy: SchedulePolicy) -> str:
    local = as_utc(now_utc).astimezone(policy.tz)
    hour = local.hour
    start = time(policy.scan_start_hour, 0)
    if policy.scan_start_hour <= hour < policy.scan_end_hour:
        return "⏰ Next scan in 1 hour"
    if policy.scan_end_hour <= hour < policy.summary_time.hour:
        return (
            f"🌙 Daily summary at {_clock_label(policy.summary_time)} {policy.place}, "
            f"next scan tomorrow {_clock_label(start)} {policy.place}"
        )
    hours_until = (policy.scan_start_hour - hour) % 24 or 24
    return f"🌙 Next scan in {hours_until} hours ({_clock_label(start)} {policy.place})"


class SchedulerLoop:
    """
    Wakes every `tick_sec`, evaluates each minute since the previous
    evaluation (bounded by `max_catch_up`) and enqueues the due runs.
    """

    def __init__(
        self,
        queue,
        policy: SchedulePolicy,
        *,
        tick_sec: float = 60.0,
        max_catch_up: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.queue = queue
        self.policy = policy
        self.tick_sec = tick_sec
        self.max_catch_up = max_catch_up
        self._clock = clock
        self._last: Optional[datetime] = None

    def _minutes_to_evaluate(self, now: datetime) -> List[datetime]:
        current = as_utc(now).replace(second=0, microsecond=0)
        if self._last is None:
            return [current]
        start = max(self._last + timedelta(minutes=1), current - self.max_catch_up)
        minutes = []
        cursor = start
        while cursor <= current:
            minutes.append(cursor)
            cursor += timedelta(minutes=1)
        return minutes

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        now = as_utc(now or self._clock())
        run_ids: List[str] = []
        seen = set()
        for minute in self._minutes_to_evaluate(now):
            for trig in due_triggers(minute, self.policy):
                if trig.kind in seen:
                    continue
                seen.add(trig.kind)
                try:
                    run_id = await self.queue.enqueue(
                        trig.kind,
                        trig.payload(),
                        trigger=TriggerSource.CRON,
                    )
                except AlreadyInFlight as exc:
                    logger.info("Skipping scheduled {}: {}", trig.kind.value, exc)
                    continue
                run_ids.append(run_id)
        self._last = now.replace(second=0, microsecond=0)
        return run_ids

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        logger.info(
            "Scheduler started (tz={} scans {:02d}:00-{:02d}:00, summary {}, prune {})",
            self.policy.timezone,
            self.policy.scan_start_hour,
            self.policy.scan_end_hour,
            self.policy.summary_time.strftime("%H:%M"),
            self.policy.prune_time.strftime("%H:%M"),
        )
        while not stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.tick_sec)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")
