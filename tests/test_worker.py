"""Worker and task queue tests.

Verifies:
1. Enqueued progress events come back out in FIFO order
2. The queue depth gauge follows enqueue/dequeue
3. process_task ingests a valid event through the in-memory engine
4. Malformed and unsupported events are dropped, not raised
5. Unexpected handler failures are logged and dropped
"""

from __future__ import annotations

import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from app import worker
from app.services.learning_records import InMemoryLearningRecords
from app.services.task_queue import PROGRESS_EVENTS_QUEUE, Task, task_queue
from tests.conftest import setup_course


def _payload(**overrides) -> dict:
    payload = {
        "user_id": "u-1",
        "kind": "lesson_completed",
        "course_id": "c-1",
        "lesson_id": "c-1-lesson-0",
        "occurred_at": "2026-02-01T09:30:00Z",
    }
    payload.update(overrides)
    return payload


def _depth(queue: str) -> float | None:
    return REGISTRY.get_sample_value("task_queue_depth", {"queue_name": queue})


async def _enqueue_and_process(*payloads: dict) -> list[bool]:
    for payload in payloads:
        await task_queue.enqueue(PROGRESS_EVENTS_QUEUE, payload)
    outcomes = []
    while (task := await task_queue.dequeue(PROGRESS_EVENTS_QUEUE)) is not None:
        outcomes.append(await worker.process_task(task))
    return outcomes


def test_queue_is_fifo_and_tracks_depth() -> None:
    async def scenario():
        for i in range(3):
            await task_queue.enqueue(PROGRESS_EVENTS_QUEUE, {"n": i})
        depth_full = _depth(PROGRESS_EVENTS_QUEUE)
        first = await task_queue.dequeue(PROGRESS_EVENTS_QUEUE)
        return depth_full, first, await task_queue.queue_length(PROGRESS_EVENTS_QUEUE)

    depth_full, first, remaining = asyncio.run(scenario())

    assert depth_full == 3
    assert first is not None and first.payload == {"n": 0}
    assert remaining == 2
    assert _depth(PROGRESS_EVENTS_QUEUE) == 2


def test_empty_queue_returns_none() -> None:
    assert asyncio.run(task_queue.dequeue(PROGRESS_EVENTS_QUEUE)) is None


def test_progress_event_handler_is_registered() -> None:
    assert worker.HANDLERS[PROGRESS_EVENTS_QUEUE] is worker.handle_progress_event


def test_valid_event_is_ingested() -> None:
    records = InMemoryLearningRecords()
    worker.set_learning_records(records)

    outcomes = asyncio.run(_enqueue_and_process(_payload()))

    assert outcomes == [True]
    engine = worker.local_engine()
    assert asyncio.run(engine.ledger.total("u-1")) == 10


def test_redelivered_event_is_harmless() -> None:
    records = InMemoryLearningRecords()
    setup_course(records, "u-1", "c-1", lessons=1, quizzes=0)
    worker.set_learning_records(records)

    outcomes = asyncio.run(_enqueue_and_process(_payload(), _payload(), _payload()))

    assert outcomes == [True, True, True]
    engine = worker.local_engine()
    # Lesson 10 + course bonus 50 + first-course badge 200, once.
    assert asyncio.run(engine.ledger.total("u-1")) == 260
    assert len(asyncio.run(engine.list_certificates("u-1"))) == 1


@pytest.mark.parametrize(
    "payload",
    [
        _payload(occurred_at="2026-02-01T09:30:00"),
        _payload(lesson_id=None),
        _payload(kind="video_watched"),
        {"kind": "lesson_completed"},
    ],
)
def test_bad_events_are_dropped_with_warning(
    payload: dict, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="worker"):
        outcomes = asyncio.run(_enqueue_and_process(payload))

    assert outcomes == [False]
    assert any("dropped" in r.getMessage() for r in caplog.records)
    assert asyncio.run(worker.local_engine().ledger.total("u-1")) == 0


def test_handler_crash_is_logged_and_dropped(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    async def boom(payload: dict) -> None:
        raise RuntimeError("database went away")

    monkeypatch.setitem(worker.HANDLERS, PROGRESS_EVENTS_QUEUE, boom)
    task = Task(id="t-1", queue=PROGRESS_EVENTS_QUEUE, payload=_payload())

    with caplog.at_level(logging.ERROR, logger="worker"):
        assert asyncio.run(worker.process_task(task)) is False

    (record,) = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert "t-1" in record.getMessage()
    assert record.exc_info is not None


def test_set_learning_records_resets_local_engine() -> None:
    first = worker.local_engine()
    assert worker.local_engine() is first

    worker.set_learning_records(InMemoryLearningRecords())
    assert worker.local_engine() is not first
