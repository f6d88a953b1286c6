"""Background worker process: feeds queued progress events to the engine.

RUN:  python -m app.worker

Producers LPUSH progress events onto the "progress_events" queue
(app.services.task_queue); this process pops them one at a time and calls
ProgressEngine.ingest_payload.  Each event runs in its own database
transaction, so a failure rolls back that event's writes and nothing else.

THE WORKER LOOP
----------------
  1. Poll every registered queue (round-robin)
  2. Dequeue one task
  3. Dispatch to the registered handler
  4. Log the outcome:
       - ValidationError (malformed or unsupported event): warning, dropped;
         re-delivering it would fail the same way
       - anything else: logged with a stack trace and dropped; the producer
         may re-send, which is safe because ingestion is idempotent

Scale out by running more workers: XP, badges and certificates are
protected by unique constraints, and streak updates by per-user locks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from contextlib import AsyncExitStack
from typing import Any

from prometheus_client import start_http_server

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import async_session_factory, lifespan_db, session_scope
from app.db.redis import lifespan_redis
from app.services.engine import ProgressEngine
from app.services.errors import ValidationError
from app.services.learning_records import InMemoryLearningRecords, LearningRecords
from app.services.task_queue import PROGRESS_EVENTS_QUEUE, Task, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
# Each handler is a coroutine that processes a task payload.
# Register handlers with the @register_handler decorator.

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------
# Course and enrollment data belong to the course service.  A host that
# embeds this worker installs its own LearningRecords with
# set_learning_records(); the in-memory default serves local runs.

_records: LearningRecords = InMemoryLearningRecords()
_local_engine: ProgressEngine | None = None


def set_learning_records(records: LearningRecords) -> None:
    global _records, _local_engine
    _records = records
    _local_engine = None


def local_engine() -> ProgressEngine:
    """In-memory engine reused across tasks when no DATABASE_URL is set."""
    global _local_engine
    if _local_engine is None:
        _local_engine = ProgressEngine.in_memory(records=_records)
    return _local_engine


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(PROGRESS_EVENTS_QUEUE)
async def handle_progress_event(payload: dict) -> None:
    """Ingest one progress event inside its own transaction."""
    if async_session_factory is None:
        result = await local_engine().ingest_payload(payload)
    else:
        async with session_scope() as session:
            engine = ProgressEngine.for_session(session, records=_records)
            result = await engine.ingest_payload(payload)

    if result.needs_reevaluation:
        logger.warning(
            "Event %s processed but badges need re-evaluation for user=%s",
            result.event.id,
            result.event.user_id,
        )


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def process_task(task: Task) -> bool:
    """Run one task through its handler.  Returns True on success."""
    handler = HANDLERS[task.queue]
    try:
        await handler(task.payload)
    except ValidationError as e:
        logger.warning("Task %s on [%s] dropped: %s", task.id, task.queue, e)
        return False
    except Exception:
        # No dead-letter queue: log with the stack trace and move on.
        logger.exception("Task %s on [%s] failed", task.id, task.queue)
        return False

    logger.info("Task %s on [%s] completed", task.id, task.queue)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())

    async with AsyncExitStack() as stack:
        await stack.enter_async_context(lifespan_db())
        await stack.enter_async_context(lifespan_redis())

        logger.info("Worker started, listening on queues: %s", queues)
        while True:
            for queue_name in queues:
                task = await task_queue.dequeue(queue_name, timeout=1)
                if task is None:
                    continue
                await process_task(task)


def main() -> None:
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    if SETTINGS.metrics_port:
        start_http_server(SETTINGS.metrics_port)
        logger.info("Metrics exporter listening on :%d", SETTINGS.metrics_port)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
