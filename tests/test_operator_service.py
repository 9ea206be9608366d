from __future__ import annotations

import pytest

from fakes import FakeNotifier
from jobdigest.errors import UnknownRunKind
from jobdigest.operator_service import OperatorService, parse_kind
from jobdigest.queue.models import RunKind, TriggerSource
from jobdigest.queue.work_queue import WorkQueue
from jobdigest.worker import PROGRESS_HANDLE_KEY


def test_parse_kind():
    assert parse_kind("daily-summary") == RunKind.DAILY_SUMMARY
    with pytest.raises(UnknownRunKind):
        parse_kind("full-rescan")


@pytest.mark.asyncio
async def test_manual_alert_scan_carries_progress_handle(session_factory):
    queue = WorkQueue(session_factory)
    notifier = FakeNotifier()
    operator = OperatorService(queue, notifier)

    run_id = await operator.trigger("alert-scan", min_relevance=0.7)

    run = await queue.get(run_id)
    assert run.trigger == TriggerSource.MANUAL
    assert run.payload["min_relevance"] == 0.7
    assert run.payload[PROGRESS_HANDLE_KEY] == 101
    assert notifier.created == ["🚀 Jobs queued"]


@pytest.mark.asyncio
async def test_trigger_while_in_flight_reports_already_processing(session_factory):
    queue = WorkQueue(session_factory)
    notifier = FakeNotifier()
    operator = OperatorService(queue, notifier)

    assert await operator.trigger(RunKind.ALERT_SCAN) is not None
    assert await operator.trigger(RunKind.ALERT_SCAN) is None
    assert notifier.progress == [(102, "⏳ Already processing")]

    assert await operator.trigger(RunKind.DAILY_SUMMARY) is not None
    assert await operator.trigger(RunKind.DAILY_SUMMARY) is None
    assert notifier.statuses == ["⏳ Already processing"]
    assert notifier.errors == []


@pytest.mark.asyncio
async def test_status_snapshot(session_factory):
    queue = WorkQueue(session_factory)
    notifier = FakeNotifier()
    operator = OperatorService(queue, notifier)
    run_id = await operator.trigger(RunKind.DAILY_SUMMARY)
    await queue.claim_next()
    await queue.update_progress(run_id, 50, "📈 3 relevant postings today")

    data = await operator.status()

    assert data["stats"]["active"] == 1
    assert data["current"]["daily-summary"]["id"] == run_id
    assert data["current"]["daily-summary"]["progress"] == 50
    assert data["current"]["alert-scan"] is None

    text = await operator.status_message()
    assert text.startswith("🤖 *Job Bot Status*")
    assert "• daily-summary: active 50% - 📈 3 relevant postings today" in text
    assert len(notifier.statuses) == 1
