from datetime import time

from jobdigest.config.settings import settings
from jobdigest.prefect_run import _parse_cli_args
from jobdigest.queue.models import BackoffKind, RetryPolicy
from jobdigest.scheduling.scheduler import SchedulePolicy


def test_settings_defaults_present():
    assert isinstance(settings.openai_model, str)
    assert 0.0 <= settings.classification_threshold <= 1.0
    assert settings.relevance_medium_band <= settings.relevance_high_band
    assert isinstance(settings.run_background, bool)
    assert settings.database_url


def test_policies_build_from_settings():
    schedule = SchedulePolicy.from_settings(settings)
    assert schedule.scan_start_hour <= schedule.scan_end_hour
    assert isinstance(schedule.summary_time, time)

    retry = RetryPolicy.from_settings(settings)
    assert retry.max_attempts >= 1
    assert isinstance(retry.backoff_kind, BackoffKind)


def test_cli_args():
    args = _parse_cli_args(["enqueue", "alert-scan", "--min-relevance", "0.7"])
    assert (args.command, args.kind, args.min_relevance) == ("enqueue", "alert-scan", 0.7)

    args = _parse_cli_args(["process", "--kind", "daily-summary", "--kind", "retention-prune"])
    assert args.kind == ["daily-summary", "retention-prune"]

    assert _parse_cli_args(["status", "--notify"]).notify is True
