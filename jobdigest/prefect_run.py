from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv
from prefect import flow, get_run_logger, task

from jobdigest.bootstrap import AppContext, build_context
from jobdigest.config.settings import settings
from jobdigest.operator_service import parse_kind
from jobdigest.queue.models import RunKind, TriggerSource

load_dotenv()

_CONTEXT: Optional[AppContext] = None


def _context() -> AppContext:
    global _CONTEXT
    if _CONTEXT is None:
        _CONTEXT = build_context(settings)
    return _CONTEXT


@task(name="Enqueue run")
def _enqueue_task(kind: str, min_relevance: Optional[float] = None) -> Optional[str]:
    ctx = _context()
    return asyncio.run(ctx.operator.trigger(kind, TriggerSource.MANUAL, min_relevance=min_relevance))


@task(name="Drain kind")
def _drain_task(kind: str) -> List[Dict[str, Any]]:
    ctx = _context()
    runs = asyncio.run(ctx.worker.drain([RunKind(kind)]))
    return [run.snapshot() | {"error": run.error} for run in runs]


@task(name="Scheduler tick")
def _tick_task() -> List[str]:
    ctx = _context()
    return asyncio.run(ctx.scheduler.tick())


@flow(name="Enqueue Job Digest Run")
def enqueue_flow(kind: str, min_relevance: Optional[float] = None) -> Optional[str]:
    logger = get_run_logger()
    run_id = _enqueue_task(parse_kind(kind).value, min_relevance)
    if run_id is None:
        logger.info(f"{kind} already queued or running; nothing enqueued")
    else:
        logger.info(f"Queued {kind} run {run_id}")
    return run_id


@flow(name="Drain Job Digest Queue")
def drain_queue_flow(kinds: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """
    Execute every due run for the given kinds (all kinds by default), one kind
    after another. Retries backed off into the future are left queued.
    """
    logger = get_run_logger()
    selected = [parse_kind(k).value for k in (kinds or [k.value for k in RunKind])]
    results: Dict[str, Any] = {}
    for kind in selected:
        finished = _drain_task(kind)
        results[kind] = finished
        logger.info(f"{kind}: {len(finished)} run(s) executed")
    return results


@flow(name="Job Digest Scheduler Tick")
def scheduler_tick_flow() -> List[str]:
    logger = get_run_logger()
    run_ids = _tick_task()
    logger.info(f"Scheduler tick enqueued {len(run_ids)} run(s)")
    return run_ids


def _parse_cli_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Job digest pipeline: queue, flows and operator surface.")
    sub = parser.add_subparsers(dest="command", required=True)

    enqueue_parser = sub.add_parser("enqueue", help="Manually enqueue a run.")
    enqueue_parser.add_argument("kind", choices=[k.value for k in RunKind])
    enqueue_parser.add_argument("--min-relevance", type=float, default=None)

    status_parser = sub.add_parser("status", help="Print queue stats and current runs.")
    status_parser.add_argument("--notify", action="store_true", help="Also send the status to the notifier.")

    serve_parser = sub.add_parser("serve", help="Run the HTTP API with the background worker and scheduler.")
    serve_parser.add_argument("--host", default=settings.api_host)
    serve_parser.add_argument("--port", type=int, default=settings.api_port)

    process_parser = sub.add_parser("process", help="Run the drain_queue_flow.")
    process_parser.add_argument("--kind", action="append", choices=[k.value for k in RunKind], default=None)

    sub.add_parser("tick", help="Run the scheduler_tick_flow once.")

    return parser.parse_args(argv)


def _cli_entry(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_cli_args(argv)

    if args.command == "enqueue":
        enqueue_flow(args.kind, args.min_relevance)
    elif args.command == "status":
        ctx = _context()
        data = asyncio.run(ctx.operator.status())
        print(json.dumps(data, ensure_ascii=False, indent=2, default=str))
        if args.notify:
            asyncio.run(ctx.operator.status_message(send=True))
    elif args.command == "serve":
        import uvicorn

        uvicorn.run("jobdigest.fastapi_run:app", host=args.host, port=args.port, log_level="info")
    elif args.command == "process":
        drain_queue_flow(args.kind)
    elif args.command == "tick":
        scheduler_tick_flow()
    else:
        raise ValueError(f"Unsupported command {args.command}")


if __name__ == "__main__":
    _cli_entry()
