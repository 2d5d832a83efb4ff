from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from journal_engine.core.errors import DispatchFailure
from journal_engine.db.models import TaskGraph, TaskStatus, TaskType, utc_now
from journal_engine.graph.continuation import ChainContinuation
from journal_engine.graph.executor import ExecutionStatus
from journal_engine.graph.state import build_initial_state
from journal_engine.graph.sweep import run_recovery_sweep


def root_state(content="hello"):
    return build_initial_state(TaskGraph.ROOT, {"content": content}, "u1", "s1")


@pytest.mark.asyncio
async def test_in_process_chain_runs_to_completion(continuation, task_store):
    """Without a base URL each successor runs in its own detached asyncio task."""
    entry = await task_store.create("s1", "u1", TaskType.ROOT_SAVE_USER_MESSAGE, root_state())

    outcome = await continuation.process(entry.id)
    await continuation.drain()

    assert outcome.status == ExecutionStatus.SUCCEEDED
    tasks = await task_store.list_by_session("s1", "u1")
    assert len(tasks) == 4
    assert all(t.status == TaskStatus.SUCCEEDED for t in tasks)


@pytest.mark.asyncio
async def test_queued_chain_runs_after_current_one(continuation, task_store):
    """A chain enqueued while another ran is picked up once the session is idle."""
    first = await task_store.create("s1", "u1", TaskType.ROOT_SAVE_USER_MESSAGE, root_state("one"))
    second = await task_store.create("s1", "u1", TaskType.ROOT_SAVE_USER_MESSAGE, root_state("two"))

    await continuation.process(first.id)
    await continuation.drain()

    assert (await task_store.get(second.id)).status == TaskStatus.SUCCEEDED
    tasks = await task_store.list_by_session("s1", "u1")
    assert len(tasks) == 8
    assert all(t.status == TaskStatus.SUCCEEDED for t in tasks)


@pytest.mark.asyncio
async def test_failure_stops_dispatch(continuation, task_store, llm):
    llm.reply = ""
    entry = await task_store.create("s1", "u1", TaskType.ROOT_SAVE_USER_MESSAGE, root_state())

    await continuation.process(entry.id)
    await continuation.drain()

    tasks = await task_store.list_by_session("s1", "u1")
    assert [t.status for t in tasks] == [TaskStatus.SUCCEEDED, TaskStatus.SUCCEEDED, TaskStatus.FAILED]


def test_remote_mode_requires_url_and_secret(make_executor):
    assert ChainContinuation(make_executor, base_url="https://app.example", secret="s").remote
    assert not ChainContinuation(make_executor, base_url="https://app.example", secret="").remote
    assert not ChainContinuation(make_executor, base_url="", secret="s").remote


def _mock_session(status=200, json_data=None, error=None):
    """aiohttp.ClientSession stand-in whose post() yields one response."""
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value="boom")
    response.json = AsyncMock(return_value=json_data or {"ok": True})

    post_ctx = MagicMock()
    post_ctx.__aenter__ = AsyncMock(return_value=response, side_effect=error)
    post_ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post = MagicMock(return_value=post_ctx)
    session_ctx = MagicMock()
    session_ctx.__aenter__ = AsyncMock(return_value=session)
    session_ctx.__aexit__ = AsyncMock(return_value=False)
    return session_ctx, session


@pytest.mark.asyncio
async def test_trigger_posts_to_process_endpoint(make_executor):
    session_ctx, session = _mock_session()
    continuation = ChainContinuation(make_executor, base_url="https://app.example", secret="s3cret")

    with patch("journal_engine.graph.continuation.aiohttp.ClientSession", return_value=session_ctx):
        await continuation.trigger("t1")

    url = session.post.call_args.args[0]
    headers = session.post.call_args.kwargs["headers"]
    assert url == "https://app.example/api/tasks/t1/process"
    assert headers == {"Authorization": "Bearer s3cret"}


@pytest.mark.asyncio
async def test_trigger_rejected_raises_dispatch_failure(make_executor):
    session_ctx, _ = _mock_session(status=401)
    continuation = ChainContinuation(make_executor, base_url="https://app.example", secret="s3cret")

    with patch("journal_engine.graph.continuation.aiohttp.ClientSession", return_value=session_ctx):
        with pytest.raises(DispatchFailure):
            await continuation.trigger("t1")


@pytest.mark.asyncio
async def test_detached_trigger_swallows_connection_errors(make_executor):
    session_ctx, _ = _mock_session(error=aiohttp.ClientConnectionError("refused"))
    continuation = ChainContinuation(make_executor, base_url="https://app.example", secret="s3cret")

    with patch("journal_engine.graph.continuation.aiohttp.ClientSession", return_value=session_ctx):
        continuation.dispatch("t1")
        await continuation.drain()

    assert not continuation._in_flight


@pytest.mark.asyncio
async def test_sweep_fails_stale_and_drives_pending(db, continuation, task_store):
    stale = await task_store.create("s1", "u1", TaskType.ROOT_SAVE_USER_MESSAGE, root_state())
    await task_store.claim(stale.id)
    for row in db.rows("tasks"):
        row["updated_at"] = (utc_now() - timedelta(hours=1)).isoformat()
    orphan = await task_store.create("s2", "u1", TaskType.ROOT_SAVE_USER_MESSAGE, root_state())

    counts = await run_recovery_sweep(task_store, continuation, max_sessions=5, stale_after_seconds=300)
    await continuation.drain()

    assert counts == {"stale_failed": 1, "processed": 1, "succeeded": 1, "failed": 0, "skipped": 0}
    assert (await task_store.get(stale.id)).status == TaskStatus.FAILED
    assert (await task_store.get(orphan.id)).status == TaskStatus.SUCCEEDED
    assert all(t.status == TaskStatus.SUCCEEDED for t in await task_store.list_by_session("s2", "u1"))


@pytest.mark.asyncio
async def test_sweep_with_nothing_to_do(continuation, task_store):
    counts = await run_recovery_sweep(task_store, continuation)

    assert counts["processed"] == 0
    assert counts["stale_failed"] == 0
