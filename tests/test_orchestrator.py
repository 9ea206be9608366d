from __future__ import annotations

from types import SimpleNamespace

import pytest

from fakes import (
    FakeClassifier,
    FakeClock,
    FakeEmailSource,
    FakeExtractor,
    FakeNotifier,
    FakeResumeSource,
    FakeScorer,
    MemoryResumeStore,
    make_draft,
    make_email,
)
from jobdigest.db.stores import SqlJobStore, SqlProcessedEmailLedger
from jobdigest.pipeline.models import JobPosting
from jobdigest.pipeline.orchestrator import PipelineOrchestrator, PipelinePolicy
from jobdigest.pipeline.resume_cache import ResumeProfileCache


def _build(
    session_factory,
    *,
    emails,
    verdicts,
    extract,
    scores,
    notifier=None,
    fail_archive=(),
    classifier=None,
    policy=None,
):
    clock = FakeClock()
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    env = SimpleNamespace(
        clock=clock,
        sleeps=sleeps,
        source=FakeEmailSource(emails, fail_archive=fail_archive),
        classifier=classifier or FakeClassifier(verdicts),
        extractor=FakeExtractor(extract),
        scorer=FakeScorer(scores),
        jobs=SqlJobStore(session_factory),
        ledger=SqlProcessedEmailLedger(session_factory),
        notifier=notifier or FakeNotifier(),
    )
    env.orchestrator = PipelineOrchestrator(
        source=env.source,
        classifier=env.classifier,
        extractor=env.extractor,
        scorer=env.scorer,
        resume_cache=ResumeProfileCache(MemoryResumeStore(), FakeResumeSource(), lambda: "resume", clock=clock),
        jobs=env.jobs,
        ledger=env.ledger,
        notifier=env.notifier,
        policy=policy or PipelinePolicy(),
        clock=clock,
        sleep=fake_sleep,
    )
    return env


def _scenario(session_factory, **kwargs):
    return _build(
        session_factory,
        emails=[make_email("A"), make_email("B"), make_email("C")],
        verdicts={"A": (True, 0.9), "B": (False, 0.9), "C": (True, 0.6)},
        extract={"A": [make_draft("Data Analyst"), make_draft("Data Engineer")], "C": []},
        scores={"Data Analyst": 0.85, "Data Engineer": 0.5},
        **kwargs,
    )


@pytest.mark.asyncio
async def test_mixed_mailbox_scenario(session_factory):
    env = _scenario(session_factory)

    result = await env.orchestrator.run_alert_scan(min_relevance=0.6)

    assert result.emails_fetched == 3
    assert result.job_related == 2
    assert result.new_postings == 2
    assert env.extractor.calls == ["A", "C"]

    rec_a = await env.ledger.get("A")
    assert (rec_a.jobs_extracted, rec_a.archived) == (2, True)
    rec_c = await env.ledger.get("C")
    assert (rec_c.jobs_extracted, rec_c.archived) == (0, False)
    assert await env.ledger.exists("B") is False
    assert env.source.archived == ["A"]
    assert env.source.read == ["C"]

    (digest,) = env.notifier.digests
    assert [(p.title, p.relevance_score) for p in digest] == [("Data Analyst", 0.85)]
    assert (await env.jobs.get(digest[0].id)).processed is True
    assert len(await env.jobs.relevant(0.0)) == 2
    assert env.notifier.errors == []


@pytest.mark.asyncio
async def test_rerun_against_unchanged_mailbox_is_idempotent(session_factory):
    env = _scenario(session_factory)
    await env.orchestrator.run_alert_scan(min_relevance=0.6)
    extracted_before = list(env.extractor.calls)

    result = await env.orchestrator.run_alert_scan(min_relevance=0.6)

    assert result.already_processed == 2
    assert result.new_postings == 0
    assert env.extractor.calls == extracted_before
    assert len(env.notifier.digests) == 1
    assert env.notifier.errors == []
    assert len(await env.jobs.relevant(0.0)) == 2


@pytest.mark.asyncio
async def test_archive_failure_leaves_correct_ledger_record(session_factory):
    env = _scenario(session_factory, fail_archive=["A"])

    await env.orchestrator.run_alert_scan(min_relevance=0.6)

    rec = await env.ledger.get("A")
    assert rec.jobs_extracted == 2
    assert rec.archived is False
    assert len(env.notifier.errors) == 1
    assert "archive" in env.notifier.errors[0]
    # the run still delivers
    assert len(env.notifier.digests) == 1


@pytest.mark.asyncio
async def test_one_malformed_email_does_not_abort_batch(session_factory):
    ids = ["e1", "e2", "e3", "e4", "e5"]
    env = _build(
        session_factory,
        emails=[make_email(i) for i in ids],
        verdicts={i: (True, 0.9) for i in ids},
        extract={
            "e1": [make_draft("Role 1")],
            "e2": [make_draft("Role 2")],
            "e3": ValueError("malformed listing"),
            "e4": [make_draft("Role 4")],
            "e5": [make_draft("Role 5")],
        },
        scores={},
    )
    env.scorer.default = 0.7

    result = await env.orchestrator.run_alert_scan(min_relevance=0.6)

    assert result.failed_emails == ["e3"]
    assert result.emails_processed == 4
    for i in ("e1", "e2", "e4", "e5"):
        rec = await env.ledger.get(i)
        assert (rec.jobs_extracted, rec.archived) == (1, True)
    rec3 = await env.ledger.get("e3")
    assert (rec3.jobs_extracted, rec3.archived) == (0, False)
    assert "e3" in env.source.read

    assert len(env.notifier.errors) == 1
    assert "e3" in env.notifier.errors[0]
    assert "malformed listing" in env.notifier.errors[0]
    assert len(env.notifier.digests[0]) == 4


@pytest.mark.asyncio
async def test_digest_filters_by_min_relevance_and_sorts(session_factory):
    env = _build(
        session_factory,
        emails=[make_email("m1")],
        verdicts={"m1": (True, 0.95)},
        extract={"m1": [make_draft("First"), make_draft("Second"), make_draft("Third")]},
        scores={"First": 0.9, "Second": 0.55, "Third": 0.7},
    )

    result = await env.orchestrator.run_alert_scan(min_relevance=0.6)

    assert [p.relevance_score for p in env.notifier.digests[0]] == [0.9, 0.7]
    assert result.relevant_sent == 2
    # every saved posting is throttled
    assert env.sleeps == [1.0, 1.0, 1.0]


@pytest.mark.asyncio
async def test_default_min_relevance_comes_from_policy(session_factory):
    env = _build(
        session_factory,
        emails=[make_email("m1")],
        verdicts={"m1": (True, 0.95)},
        extract={"m1": [make_draft("First"), make_draft("Second")]},
        scores={"First": 0.9, "Second": 0.75},
        policy=PipelinePolicy(min_relevance=0.8, posting_delay_sec=0),
    )

    await env.orchestrator.run_alert_scan()

    assert [p.title for p in env.notifier.digests[0]] == ["First"]
    assert env.sleeps == []


@pytest.mark.asyncio
async def test_classification_threshold_is_inclusive(session_factory):
    env = _build(
        session_factory,
        emails=[make_email("low"), make_email("edge")],
        verdicts={"low": (True, 0.49), "edge": (True, 0.5)},
        extract={},
        scores={},
    )

    result = await env.orchestrator.run_alert_scan()

    assert result.job_related == 1
    assert env.extractor.calls == ["edge"]


@pytest.mark.asyncio
async def test_classifier_is_called_in_batches(session_factory):
    ids = [f"m{i}" for i in range(12)]
    env = _build(
        session_factory,
        emails=[make_email(i) for i in ids],
        verdicts={},
        extract={},
        scores={},
    )

    await env.orchestrator.run_alert_scan()

    assert [len(b) for b in env.classifier.batches] == [10, 2]


@pytest.mark.asyncio
async def test_duplicate_postings_are_not_rescored(session_factory):
    env = _build(
        session_factory,
        emails=[make_email("m1")],
        verdicts={"m1": (True, 0.9)},
        extract={"m1": [make_draft("Known Role"), make_draft("Fresh Role")]},
        scores={"Fresh Role": 0.8},
    )
    existing = JobPosting.from_draft(make_draft("Known Role"), score=0.9, email_message_id="older")
    await env.jobs.save(existing)

    result = await env.orchestrator.run_alert_scan()

    assert result.duplicates == 1
    assert result.new_postings == 1
    assert env.scorer.calls == ["Fresh Role"]
    assert (await env.ledger.get("m1")).jobs_extracted == 1


@pytest.mark.asyncio
async def test_digest_failure_keeps_postings_unflagged(session_factory):
    env = _scenario(session_factory, notifier=FakeNotifier(fail_digest=True))

    result = await env.orchestrator.run_alert_scan(min_relevance=0.6)

    assert result.digest_delivered is False
    assert result.relevant_sent == 0
    assert all(not p.processed for p in await env.jobs.relevant(0.0))
    assert (await env.ledger.get("A")).archived is True


@pytest.mark.asyncio
async def test_classifier_outage_aborts_run(session_factory):
    env = _scenario(session_factory, classifier=FakeClassifier({}, error=ConnectionError("openai down")))

    with pytest.raises(ConnectionError):
        await env.orchestrator.run_alert_scan()

    assert await env.ledger.exists("A") is False
    assert env.notifier.digests == []


@pytest.mark.asyncio
async def test_progress_checkpoints_and_final_summary(session_factory):
    env = _scenario(session_factory)
    seen = []

    async def progress(pct, message):
        seen.append(pct)

    await env.orchestrator.run_alert_scan(min_relevance=0.6, progress=progress)

    assert seen == [5, 10, 20, 30, 40, 85, 95]
    (summary,) = env.notifier.statuses
    assert summary.startswith("✅ Complete: 2 new, 0 duplicates, 1 sent")
    assert summary.endswith("⏰ Next scan in 1 hour")


@pytest.mark.asyncio
async def test_final_summary_edits_progress_message(session_factory):
    env = _scenario(session_factory)

    await env.orchestrator.run_alert_scan(min_relevance=0.6, progress_handle=42)

    assert env.notifier.statuses == []
    handle, text = env.notifier.progress[-1]
    assert handle == 42
    assert text.startswith("✅ Complete")
