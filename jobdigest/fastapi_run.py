from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from jobdigest.api.schemas import Health, StatusResponse, TriggerRunRequest, TriggerRunResponse
from jobdigest.bootstrap import AppContext, build_context
from jobdigest.config.settings import settings
from jobdigest.db.health import check_db
from jobdigest.errors import UnknownRunKind
from jobdigest.operator_service import parse_kind
from jobdigest.queue.models import TriggerSource

load_dotenv()

_CONTEXT: Optional[AppContext] = None


def get_context() -> AppContext:
    global _CONTEXT
    if _CONTEXT is None:
        _CONTEXT = build_context(settings)
    return _CONTEXT


@asynccontextmanager
async def lifespan(app: FastAPI):
    stop = asyncio.Event()
    tasks = []
    if settings.run_background:
        ctx = get_context()
        tasks = [
            asyncio.create_task(ctx.worker.run_forever(stop)),
            asyncio.create_task(ctx.scheduler.run_forever(stop)),
        ]
        logger.info("Background worker and scheduler started")
    yield
    stop.set()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Background worker and scheduler stopped")


app = FastAPI(title="Job Digest Pipeline", version="0.1.0", lifespan=lifespan)


# -------------------------
# Health
# -------------------------


@app.get("/health", response_model=Health)
async def health():
    return Health(ok=True, message="ready")


@app.get("/health/db")
async def health_db(ctx: AppContext = Depends(get_context)):
    try:
        ok = await run_in_threadpool(check_db, ctx.engine)
    except Exception as e:
        logger.exception("DB health check failed")
        raise HTTPException(status_code=503, detail=f"Database unavailable: {e}")
    return {"ok": bool(ok)}


# -------------------------
# Operator surface
# -------------------------


@app.post("/api/runs/{kind}", response_model=TriggerRunResponse, status_code=202)
async def trigger_run(
    kind: str,
    req: Optional[TriggerRunRequest] = None,
    ctx: AppContext = Depends(get_context),
) -> TriggerRunResponse:
    try:
        run_kind = parse_kind(kind)
    except UnknownRunKind as e:
        raise HTTPException(status_code=404, detail=str(e))

    min_relevance = req.min_relevance if req else None
    run_id = await ctx.operator.trigger(run_kind, TriggerSource.API, min_relevance=min_relevance)
    if run_id is None:
        current = await ctx.queue.current_run(run_kind)
        raise HTTPException(
            status_code=409,
            detail={
                "message": f"{run_kind.value} already queued or running",
                "run_id": current.id if current else None,
            },
        )
    return TriggerRunResponse(run_id=run_id, kind=run_kind.value)


@app.get("/api/status", response_model=StatusResponse)
async def queue_status(ctx: AppContext = Depends(get_context)) -> StatusResponse:
    return StatusResponse(**(await ctx.operator.status()))
