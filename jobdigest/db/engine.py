from __future__ import annotations

from sqlalchemy import create_engine

from jobdigest.config.settings import settings


def make_engine(url: str):
    kwargs = {
        "echo": bool(settings.db_echo),
        "pool_pre_ping": True,
        "future": True,
    }
    if url.startswith("sqlite"):
        # sessions are used from worker threads
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = int(settings.db_pool_size)
        kwargs["max_overflow"] = int(settings.db_max_overflow)
    return create_engine(url, **kwargs)


def init_schema(engine) -> None:
    """Create missing tables. Production schemas go through alembic; this serves SQLite and tests."""
    from jobdigest.db import models  # noqa: F401
    from jobdigest.db.base import Base

    Base.metadata.create_all(engine)
