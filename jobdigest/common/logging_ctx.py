from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from loguru import logger

_run_ctx: ContextVar[Optional[Dict[str, Any]]] = ContextVar("run_ctx", default=None)


def get_run_ctx() -> Dict[str, Any]:
    return dict(_run_ctx.get() or {})


@contextmanager
def run_ctx_scope(**fields: Any) -> Iterator[None]:
    """Attach run fields (run_id, run_kind, trigger) to every log line emitted inside the block."""
    ctx = get_run_ctx()
    ctx.update({key: str(value) for key, value in fields.items() if value is not None})
    token = _run_ctx.set(ctx)
    try:
        yield
    finally:
        _run_ctx.reset(token)


def ctx_logger():
    return logger.bind(**get_run_ctx())
