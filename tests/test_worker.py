from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from fakes import FakeClock, FakeNotifier
from jobdigest.queue.models import RetryPolicy, RunKind, RunStatus
from jobdigest.queue.work_queue import WorkQueue
from jobdigest.worker import PROGRESS_HANDLE_KEY, QueueWorker, build_handlers


def _queue(session_factory, clock, max_attempts=3):
    return WorkQueue(
        session_factory,
        default_policy=RetryPolicy(max_attempts=max_attempts, base_delay_sec=2.0),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_successful_run_completes_and_edits_progress_message(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock)
    notifier = FakeNotifier()
    seen = {}

    async def alert_scan(run, progress):
        await progress(40, "✅ Found 2 job emails")
        seen["progress"] = (await queue.get(run.id)).progress
        return {"ok": True}

    worker = QueueWorker(queue, notifier, {RunKind.ALERT_SCAN: alert_scan})
    run_id = await queue.enqueue(RunKind.ALERT_SCAN, {PROGRESS_HANDLE_KEY: 77})

    done = await worker.process_next(RunKind.ALERT_SCAN)

    assert done.id == run_id
    assert done.status == RunStatus.COMPLETED
    assert seen["progress"] == 40
    assert notifier.progress == [(77, "✅ Found 2 job emails")]
    assert notifier.errors == []


@pytest.mark.asyncio
async def test_failing_run_retries_then_alerts_once(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock)
    notifier = FakeNotifier()
    calls = []

    async def alert_scan(run, progress):
        calls.append(run.attempts)
        raise ConnectionError("IMAP login failed")

    worker = QueueWorker(queue, notifier, {RunKind.ALERT_SCAN: alert_scan})
    run_id = await queue.enqueue(RunKind.ALERT_SCAN)

    first = await worker.process_next()
    assert first.status == RunStatus.QUEUED
    assert await worker.process_next() is None

    clock.advance(seconds=2)
    second = await worker.process_next()
    assert second.status == RunStatus.QUEUED
    assert notifier.errors == []

    clock.advance(seconds=4)
    final = await worker.process_next()
    assert final.status == RunStatus.FAILED
    assert calls == [1, 2, 3]

    assert len(notifier.errors) == 1
    assert run_id in notifier.errors[0]
    assert "IMAP login failed" in notifier.errors[0]

    clock.advance(hours=1)
    assert await worker.process_next() is None
    assert len(notifier.errors) == 1


@pytest.mark.asyncio
async def test_drain_leaves_backed_off_retry_for_later(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock)
    ran = []

    async def flaky(run, progress):
        ran.append(run.kind)
        raise RuntimeError("transient")

    async def summary(run, progress):
        ran.append(run.kind)

    worker = QueueWorker(queue, FakeNotifier(), {RunKind.ALERT_SCAN: flaky, RunKind.DAILY_SUMMARY: summary})
    await queue.enqueue(RunKind.ALERT_SCAN)
    await queue.enqueue(RunKind.DAILY_SUMMARY)

    finished = await worker.drain()

    assert [r.status for r in finished] == [RunStatus.QUEUED, RunStatus.COMPLETED]
    assert ran == [RunKind.ALERT_SCAN, RunKind.DAILY_SUMMARY]


@pytest.mark.asyncio
async def test_stale_run_at_ceiling_is_reported(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock, max_attempts=1)
    notifier = FakeNotifier()

    async def handler(run, progress):
        return None

    worker = QueueWorker(queue, notifier, {RunKind.ALERT_SCAN: handler})
    run_id = await queue.enqueue(RunKind.ALERT_SCAN)
    await queue.claim_next()  # a worker that then crashed

    clock.advance(minutes=31)
    assert await worker.process_next() is None

    assert (await queue.get(run_id)).status == RunStatus.FAILED
    assert len(notifier.errors) == 1
    assert "lease expired" in notifier.errors[0]


@pytest.mark.asyncio
async def test_retention_prune_handler(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock)

    old_id = await queue.enqueue(RunKind.DAILY_SUMMARY)
    await queue.claim_next()
    await queue.complete(old_id)
    clock.advance(days=10)

    handlers = build_handlers(orchestrator=None, queue=queue, retention=timedelta(days=7))
    worker = QueueWorker(queue, FakeNotifier(), handlers)
    await queue.enqueue(RunKind.RETENTION_PRUNE)

    done = await worker.process_next(RunKind.RETENTION_PRUNE)

    assert done.status == RunStatus.COMPLETED
    assert await queue.get(old_id) is None


@pytest.mark.asyncio
async def test_heartbeat_keeps_a_long_run_claimed(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock)
    notifier = FakeNotifier()
    seen = {}

    async def alert_scan(run, progress):
        clock.advance(minutes=31)  # long per-email phase, no progress reported
        for _ in range(200):
            if (await queue.get(run.id)).lease_expires_at > clock.now:
                break
            await asyncio.sleep(0.01)
        # another kind's loop in the same process recovers stale leases
        await worker.process_next(RunKind.DAILY_SUMMARY)
        seen["second_claim"] = await queue.claim_next(RunKind.ALERT_SCAN)
        return {}

    worker = QueueWorker(queue, notifier, {RunKind.ALERT_SCAN: alert_scan}, heartbeat_sec=0.01)
    await queue.enqueue(RunKind.ALERT_SCAN)

    done = await worker.process_next(RunKind.ALERT_SCAN)

    assert seen["second_claim"] is None
    assert (done.status, done.attempts) == (RunStatus.COMPLETED, 1)
    assert notifier.errors == []


@pytest.mark.asyncio
async def test_late_completion_does_not_override_recovered_run(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock, max_attempts=2)
    notifier = FakeNotifier()
    seen = {}

    async def alert_scan(run, progress):
        clock.advance(minutes=31)
        await worker.process_next(RunKind.DAILY_SUMMARY)
        clock.advance(seconds=2)
        seen["second_claim"] = await queue.claim_next(RunKind.ALERT_SCAN)
        return {}

    # heartbeat never fires here: this run looks stalled
    worker = QueueWorker(queue, notifier, {RunKind.ALERT_SCAN: alert_scan}, heartbeat_sec=3600)
    run_id = await queue.enqueue(RunKind.ALERT_SCAN)

    snapshot = await worker.process_next(RunKind.ALERT_SCAN)

    assert seen["second_claim"].attempts == 2
    assert (snapshot.status, snapshot.attempts) == (RunStatus.ACTIVE, 2)
    assert (await queue.get(run_id)).status == RunStatus.ACTIVE
    assert notifier.errors == []


@pytest.mark.asyncio
async def test_late_completion_after_permanent_failure_keeps_single_alert(session_factory):
    clock = FakeClock()
    queue = _queue(session_factory, clock, max_attempts=1)
    notifier = FakeNotifier()

    async def alert_scan(run, progress):
        clock.advance(minutes=31)
        await worker.process_next(RunKind.DAILY_SUMMARY)
        return {}

    worker = QueueWorker(queue, notifier, {RunKind.ALERT_SCAN: alert_scan}, heartbeat_sec=3600)
    await queue.enqueue(RunKind.ALERT_SCAN)

    snapshot = await worker.process_next(RunKind.ALERT_SCAN)

    assert snapshot.status == RunStatus.FAILED
    assert len(notifier.errors) == 1
    assert "lease expired" in notifier.errors[0]
