"""
Composition root: builds every collaborator once from Settings and wires
them together. Entry points (service, Prefect flows, CLI, FastAPI) go
through `build_context`; nothing in the core reads global settings.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from jobdigest.config.settings import Settings, settings as default_settings
from jobdigest.db.engine import init_schema, make_engine
from jobdigest.db.session import make_session_factory
from jobdigest.db.stores import SqlJobStore, SqlProcessedEmailLedger, SqlResumeProfileStore
from jobdigest.llm.openai_services import (
    OpenAIClassifier,
    OpenAIExtractor,
    OpenAIRelevanceScorer,
    OpenAIResumeAnalyzer,
)
from jobdigest.mail.imap_source import ImapEmailSource
from jobdigest.notify.telegram import TelegramNotifier
from jobdigest.operator_service import OperatorService
from jobdigest.pipeline.interfaces import EmailSource, Notifier
from jobdigest.pipeline.orchestrator import PipelineOrchestrator, PipelinePolicy
from jobdigest.pipeline.resume_cache import ResumeProfileCache
from jobdigest.queue.models import RetryPolicy
from jobdigest.queue.work_queue import WorkQueue
from jobdigest.scheduling.scheduler import SchedulePolicy, SchedulerLoop
from jobdigest.worker import QueueWorker, build_handlers


@dataclass
class AppContext:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    queue: WorkQueue
    notifier: Notifier
    orchestrator: PipelineOrchestrator
    worker: QueueWorker
    scheduler: SchedulerLoop
    operator: OperatorService


def build_context(
    s: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    notifier: Optional[Notifier] = None,
    source: Optional[EmailSource] = None,
    llm_client=None,
    create_schema: bool = True,
) -> AppContext:
    s = s or default_settings
    engine = engine or make_engine(s.database_url)
    if create_schema:
        init_schema(engine)
    factory = make_session_factory(engine)

    queue = WorkQueue(
        factory,
        default_policy=RetryPolicy.from_settings(s),
        lease=timedelta(seconds=s.queue_lease_sec),
    )
    notifier = notifier or TelegramNotifier.from_settings(s)
    schedule = SchedulePolicy.from_settings(s)

    resume_cache = ResumeProfileCache.from_path(
        SqlResumeProfileStore(factory),
        OpenAIResumeAnalyzer(llm_client, model=s.openai_model),
        s.resume_path,
        max_age=timedelta(days=s.resume_max_age_days),
    )
    orchestrator = PipelineOrchestrator(
        source=source or ImapEmailSource.from_settings(s),
        classifier=OpenAIClassifier(llm_client, model=s.openai_model),
        extractor=OpenAIExtractor(llm_client, model=s.openai_model, body_max_chars=s.llm_body_max_chars),
        scorer=OpenAIRelevanceScorer(llm_client, model=s.openai_model_scoring),
        resume_cache=resume_cache,
        jobs=SqlJobStore(factory),
        ledger=SqlProcessedEmailLedger(factory),
        notifier=notifier,
        policy=PipelinePolicy.from_settings(s),
        schedule=schedule,
    )
    worker = QueueWorker(
        queue,
        notifier,
        build_handlers(orchestrator, queue, retention=timedelta(days=s.queue_retention_days)),
        poll_sec=s.queue_poll_sec,
    )
    return AppContext(
        settings=s,
        engine=engine,
        session_factory=factory,
        queue=queue,
        notifier=notifier,
        orchestrator=orchestrator,
        worker=worker,
        scheduler=SchedulerLoop(queue, schedule),
        operator=OperatorService(queue, notifier),
    )
