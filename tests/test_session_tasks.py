import pytest

from journal_engine.core.errors import Forbidden, NotFound, ValidationError
from journal_engine.db.models import TaskEventType, TaskGraph, TaskStatus, TaskType
from journal_engine.db.task_events import TaskEventStore
from journal_engine.services.session_tasks import SessionTaskService


@pytest.fixture
def service(db, task_store):
    return SessionTaskService(task_store, TaskEventStore(db))


@pytest.mark.asyncio
async def test_enqueue_by_graph(service):
    task = await service.enqueue("u1", "s1", {"content": "  hi there  "}, graph=TaskGraph.ORCHESTRATOR)

    assert task.type == TaskType.ORCHESTRATOR_ROUTER
    assert task.status == TaskStatus.PENDING
    assert task.payload["user_message"] == "hi there"
    assert task.payload["original_query"] == "hi there"
    assert task.payload["rewrite_count"] == 0
    assert task.payload["iteration_count"] == 0


@pytest.mark.asyncio
async def test_enqueue_by_entry_type(service):
    task = await service.enqueue(
        "u1", "s1", {"content": "note", "current_date": "2026-10-18"}, task_type=TaskType.DAILY_CLASSIFIER_AGENT
    )

    assert task.type == TaskType.DAILY_CLASSIFIER_AGENT
    assert task.payload["current_date"] == "2026-10-18"


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {},
    {"task_type": TaskType.ROOT_RESPONSE_AGENT},
    {"graph": TaskGraph.ROOT, "task_type": TaskType.DAILY_CLASSIFIER_AGENT},
])
async def test_enqueue_rejects_bad_target(service, kwargs):
    with pytest.raises(ValidationError):
        await service.enqueue("u1", "s1", {"content": "hi"}, **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   "])
async def test_enqueue_rejects_empty_content(service, db, content):
    with pytest.raises(ValidationError):
        await service.enqueue("u1", "s1", {"content": content}, graph=TaskGraph.ROOT)

    assert db.rows("tasks") == []


@pytest.mark.asyncio
async def test_cancel_pending(service):
    task = await service.enqueue("u1", "s1", {"content": "hi"}, graph=TaskGraph.ROOT)

    cancelled = await service.cancel("u1", task.id)

    assert cancelled.status == TaskStatus.FAILED
    assert cancelled.last_error == "Cancelled by user"


@pytest.mark.asyncio
async def test_cancel_finished_task_is_rejected(service, task_store):
    task = await service.enqueue("u1", "s1", {"content": "hi"}, graph=TaskGraph.ROOT)
    await task_store.cancel(task.id)

    with pytest.raises(ValidationError):
        await service.cancel("u1", task.id)


@pytest.mark.asyncio
async def test_ownership_checks(service):
    task = await service.enqueue("u1", "s1", {"content": "hi"}, graph=TaskGraph.ROOT)

    with pytest.raises(Forbidden):
        await service.cancel("intruder", task.id)
    with pytest.raises(Forbidden):
        await service.list("intruder", "s1")
    with pytest.raises(Forbidden):
        await service.list_events("intruder", "s1")
    with pytest.raises(NotFound):
        await service.retry("u1", "missing")


@pytest.mark.asyncio
async def test_retry_only_failed_tasks(service):
    task = await service.enqueue("u1", "s1", {"content": "hi"}, graph=TaskGraph.ROOT)

    with pytest.raises(ValidationError):
        await service.retry("u1", task.id)

    await service.cancel("u1", task.id)
    reset = await service.retry("u1", task.id)

    assert reset.status == TaskStatus.PENDING
    assert reset.last_error is None
    assert reset.retry_count == 1


@pytest.mark.asyncio
async def test_list_events(service, db):
    task = await service.enqueue("u1", "s1", {"content": "hi"}, graph=TaskGraph.ROOT)
    events = TaskEventStore(db)
    await events.record(task.id, "s1", "u1", TaskEventType.JOB_STARTED, payload={"job_id": task.id})
    duplicate = await events.record(task.id, "s1", "u1", TaskEventType.JOB_STARTED)

    listed = await service.list_events("u1", "s1")

    assert duplicate is None
    assert [e.event_type for e in listed] == [TaskEventType.JOB_STARTED]
