from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass


def _env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value is not None and value != "":
            return value
    return default


def _env_bool(*names: str, default: bool) -> bool:
    value = _env(*names, default=None)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(*names: str, default: int) -> int:
    value = _env(*names, default=None)
    return int(value) if value is not None else default


def _env_float(*names: str, default: float) -> float:
    value = _env(*names, default=None)
    return float(value) if value is not None else default


@dataclass(frozen=True)
class Settings:
    """
    Central runtime settings. Values can be overridden via env vars.
    """

    # LLM
    openai_model: str = _env("JOBDIGEST_OPENAI_MODEL", "OPENAI_MODEL", default="gpt-4o-mini") or "gpt-4o-mini"
    openai_model_scoring: str = _env(
        "JOBDIGEST_OPENAI_MODEL_SCORING",
        "JOBDIGEST_OPENAI_MODEL",
        "OPENAI_MODEL",
        default="gpt-4o-mini",
    ) or "gpt-4o-mini"
    llm_body_max_chars: int = _env_int("JOBDIGEST_LLM_BODY_MAX_CHARS", default=20000)

    # Pipeline policy
    classification_threshold: float = _env_float("JOBDIGEST_CLASSIFICATION_THRESHOLD", default=0.5)
    classify_batch_size: int = _env_int("JOBDIGEST_CLASSIFY_BATCH_SIZE", default=10)
    body_preview_chars: int = _env_int("JOBDIGEST_BODY_PREVIEW_CHARS", default=500)
    min_relevance: float = _env_float("JOBDIGEST_MIN_RELEVANCE", default=0.6)
    relevance_high_band: float = _env_float("JOBDIGEST_RELEVANCE_HIGH_BAND", default=0.8)
    relevance_medium_band: float = _env_float("JOBDIGEST_RELEVANCE_MEDIUM_BAND", default=0.6)
    daily_summary_min_relevance: float = _env_float("JOBDIGEST_DAILY_MIN_RELEVANCE", default=0.6)
    daily_top_sources: int = _env_int("JOBDIGEST_DAILY_TOP_SOURCES", default=5)
    posting_delay_sec: float = _env_float("JOBDIGEST_POSTING_DELAY_SEC", default=1.0)
    resume_max_age_days: int = _env_int("JOBDIGEST_RESUME_MAX_AGE_DAYS", default=7)
    resume_path: Path = Path(_env("JOBDIGEST_RESUME_PATH", default="resume.pdf") or "resume.pdf")

    # Queue
    queue_max_attempts: int = _env_int("JOBDIGEST_QUEUE_MAX_ATTEMPTS", default=3)
    queue_backoff_kind: str = _env("JOBDIGEST_QUEUE_BACKOFF_KIND", default="exponential") or "exponential"
    queue_backoff_base_sec: float = _env_float("JOBDIGEST_QUEUE_BACKOFF_BASE_SEC", default=2.0)
    queue_lease_sec: float = _env_float("JOBDIGEST_QUEUE_LEASE_SEC", default=1800.0)
    queue_retention_days: int = _env_int("JOBDIGEST_QUEUE_RETENTION_DAYS", default=7)
    queue_poll_sec: float = _env_float("JOBDIGEST_QUEUE_POLL_SEC", default=5.0)

    # Schedule (local civil time)
    schedule_timezone: str = _env("JOBDIGEST_TIMEZONE", default="Asia/Manila") or "Asia/Manila"
    scan_start_hour: int = _env_int("JOBDIGEST_SCAN_START_HOUR", default=6)
    scan_end_hour: int = _env_int("JOBDIGEST_SCAN_END_HOUR", default=20)
    summary_hour: int = _env_int("JOBDIGEST_SUMMARY_HOUR", default=21)
    summary_minute: int = _env_int("JOBDIGEST_SUMMARY_MINUTE", default=0)
    prune_hour: int = _env_int("JOBDIGEST_PRUNE_HOUR", default=3)
    prune_minute: int = _env_int("JOBDIGEST_PRUNE_MINUTE", default=30)

    # Telegram
    telegram_bot_token: str | None = _env("JOBDIGEST_TELEGRAM_BOT_TOKEN", "TELEGRAM_BOT_TOKEN", default=None)
    telegram_chat_id: str | None = _env("JOBDIGEST_TELEGRAM_CHAT_ID", "TELEGRAM_CHAT_ID", default=None)
    telegram_max_message_chars: int = _env_int("JOBDIGEST_TELEGRAM_MAX_CHARS", default=4000)
    telegram_timeout_sec: float = _env_float("JOBDIGEST_TELEGRAM_TIMEOUT_SEC", default=10.0)
    telegram_chunk_delay_sec: float = _env_float("JOBDIGEST_TELEGRAM_CHUNK_DELAY_SEC", default=1.0)

    # Mailbox (IMAP)
    imap_host: str = _env("JOBDIGEST_IMAP_HOST", default="imap.gmail.com") or "imap.gmail.com"
    imap_port: int = _env_int("JOBDIGEST_IMAP_PORT", default=993)
    imap_username: str | None = _env("JOBDIGEST_IMAP_USERNAME", default=None)
    imap_password: str | None = _env("JOBDIGEST_IMAP_PASSWORD", default=None)
    imap_folder: str = _env("JOBDIGEST_IMAP_FOLDER", default="INBOX") or "INBOX"
    imap_lookback_days: int = _env_int("JOBDIGEST_IMAP_LOOKBACK_DAYS", default=3)
    imap_max_messages: int = _env_int("JOBDIGEST_IMAP_MAX_MESSAGES", default=100)
    imap_timeout_sec: float = _env_float("JOBDIGEST_IMAP_TIMEOUT_SEC", default=30.0)
    imap_archive_folder: str | None = _env("JOBDIGEST_IMAP_ARCHIVE_FOLDER", default=None)

    # Database
    database_url: str = _env("JOBDIGEST_DATABASE_URL", default="sqlite:///jobdigest.db") or "sqlite:///jobdigest.db"
    db_echo: bool = _env_bool("JOBDIGEST_DB_ECHO", default=False)
    db_pool_size: int = _env_int("JOBDIGEST_DB_POOL_SIZE", default=5)
    db_max_overflow: int = _env_int("JOBDIGEST_DB_MAX_OVERFLOW", default=10)

    # Service
    api_host: str = _env("JOBDIGEST_API_HOST", default="127.0.0.1") or "127.0.0.1"
    api_port: int = _env_int("JOBDIGEST_API_PORT", default=8000)
    run_background: bool = _env_bool("JOBDIGEST_RUN_BACKGROUND", default=True)


settings = Settings()
