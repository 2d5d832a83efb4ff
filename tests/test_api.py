import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from journal_engine.api.deps import (
    User,
    get_current_user,
    get_monthly_summary_service,
    get_summary_service,
    get_supabase,
    get_weekly_summary_service,
)
from journal_engine.core.config import settings
from journal_engine.core.errors import NotFound
from journal_engine.db.models import TaskStatus
from journal_engine.graph.executor import ExecutionOutcome, ExecutionStatus
from journal_engine.main import app, run
from journal_engine.services.summaries import SummaryResult

client = TestClient(app)


@pytest.fixture
def fake_continuation():
    continuation = MagicMock()
    continuation.dispatch = MagicMock()
    continuation.process = AsyncMock(return_value=ExecutionOutcome(ExecutionStatus.SUCCEEDED))
    continuation.remote = False
    app.state.continuation = continuation
    yield continuation
    del app.state.continuation


@pytest.fixture
def as_user(db, fake_continuation):
    """Authenticate every request as u1 against the in-memory store."""
    current = {"user": User(id="u1", email="u1@example.com")}
    app.dependency_overrides[get_supabase] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: current["user"]
    yield current
    app.dependency_overrides.clear()


@pytest.fixture
def internal_secret(monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_TASK_SECRET", "s3cret")
    return {"Authorization": "Bearer s3cret"}


def enqueue(content="hello", graph="root"):
    return client.post(
        "/api/tasks",
        json={"session_id": "s1", "graph": graph, "payload": {"content": content}},
    )


def test_health_check():
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_requires_authentication(db):
    """Requests without a bearer token are rejected."""
    app.dependency_overrides[get_supabase] = lambda: db
    try:
        response = client.get("/api/tasks", params={"session_id": "s1"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_enqueue_dispatches_first_task(as_user, fake_continuation):
    """Enqueueing creates a pending entry task and starts it."""
    response = enqueue()

    assert response.status_code == 201
    body = response.json()
    assert body["type"] == "root.save_user_message"
    assert body["status"] == "pending"
    assert body["sequence"] == 1
    assert "payload" not in body
    fake_continuation.dispatch.assert_called_once_with(body["id"])


def test_enqueue_invalid_payload(as_user, fake_continuation):
    response = enqueue(content="")

    assert response.status_code == 422
    fake_continuation.dispatch.assert_not_called()


def test_list_tasks_and_forbidden_session(as_user):
    enqueue("one")
    enqueue("two")

    response = client.get("/api/tasks", params={"session_id": "s1"})
    assert response.status_code == 200
    assert [t["sequence"] for t in response.json()["tasks"]] == [1, 2]

    as_user["user"] = User(id="intruder")
    response = client.get("/api/tasks", params={"session_id": "s1"})
    assert response.status_code == 403


def test_cancel_then_retry(as_user):
    task_id = enqueue().json()["id"]

    response = client.post(f"/api/tasks/{task_id}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == TaskStatus.FAILED.value
    assert response.json()["last_error"] == "Cancelled by user"

    response = client.post(f"/api/tasks/{task_id}/cancel")
    assert response.status_code == 422

    response = client.post(f"/api/tasks/{task_id}/retry")
    assert response.status_code == 200
    assert response.json()["status"] == TaskStatus.PENDING.value
    assert response.json()["last_error"] is None
    assert response.json()["retry_count"] == 1


def test_cancel_unknown_task(as_user):
    response = client.post("/api/tasks/missing/cancel")
    assert response.status_code == 404


def test_list_events(as_user):
    enqueue()

    response = client.get("/api/tasks/events", params={"session_id": "s1"})

    assert response.status_code == 200
    assert response.json() == {"events": []}


def test_process_requires_internal_secret(fake_continuation, internal_secret):
    response = client.post("/api/tasks/t1/process", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401

    response = client.post("/api/tasks/t1/process", headers=internal_secret)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "error": None}
    fake_continuation.process.assert_awaited_once_with("t1")


def test_process_rejected_when_secret_unset(fake_continuation, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_TASK_SECRET", "")
    response = client.post("/api/tasks/t1/process", headers={"Authorization": "Bearer "})
    assert response.status_code == 401
    fake_continuation.process.assert_not_called()


def test_process_unknown_task(fake_continuation, internal_secret):
    fake_continuation.process.side_effect = NotFound("Task t1 not found")

    response = client.post("/api/tasks/t1/process", headers=internal_secret)

    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "Task t1 not found"}


def test_process_reports_handler_failure(fake_continuation, internal_secret):
    fake_continuation.process.return_value = ExecutionOutcome(ExecutionStatus.FAILED, error="boom")

    response = client.post("/api/tasks/t1/process", headers=internal_secret)

    assert response.status_code == 200
    assert response.json() == {"ok": False, "error": "boom"}


def test_cron_sweep(db, fake_continuation, internal_secret):
    app.dependency_overrides[get_supabase] = lambda: db
    try:
        response = client.post("/api/cron/process-tasks", headers=internal_secret)
        unauthorized = client.post("/api/cron/process-tasks")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"stale_failed": 0, "processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}
    assert unauthorized.status_code == 401


def test_cron_daily_summary(internal_secret):
    service = MagicMock()
    service.run_batch = AsyncMock(return_value=[
        SummaryResult(user_id="u1", status="success"),
        SummaryResult(user_id="u2", status="error", error="No events found for 2026-10-18"),
    ])
    app.dependency_overrides[get_summary_service] = lambda: service
    try:
        response = client.post("/api/cron/daily-summary", params={"day": "2026-10-18"}, headers=internal_secret)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["date"] == "2026-10-18"
    assert [r["status"] for r in body["results"]] == ["success", "error"]
    service.run_batch.assert_awaited_once_with("2026-10-18")


@pytest.mark.parametrize("path,dependency,param,start", [
    ("/api/cron/weekly-summary", get_weekly_summary_service, "week_start", "2026-10-11"),
    ("/api/cron/monthly-summary", get_monthly_summary_service, "month_start", "2026-09-01"),
])
def test_cron_period_summaries(internal_secret, path, dependency, param, start):
    service = MagicMock()
    service.run_batch = AsyncMock(return_value=[SummaryResult(user_id="u1", status="success")])
    app.dependency_overrides[dependency] = lambda: service
    try:
        response = client.post(path, params={param: start}, headers=internal_secret)
        unauthorized = client.post(path, params={param: start})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"date": start, "results": [{"user_id": "u1", "status": "success", "error": None}]}
    service.run_batch.assert_awaited_once_with(start)
    assert unauthorized.status_code == 401


def test_cron_summary_defaults_to_previous_period(internal_secret):
    service = MagicMock()
    service.default_period.return_value = "2026-09-01"
    service.run_batch = AsyncMock(return_value=[])
    app.dependency_overrides[get_monthly_summary_service] = lambda: service
    try:
        response = client.post("/api/cron/monthly-summary", headers=internal_secret)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"date": "2026-09-01", "results": []}
    service.run_batch.assert_awaited_once_with("2026-09-01")


def test_run_serves_app_with_uvicorn(monkeypatch):
    monkeypatch.setattr(settings, "PORT", 9100)
    with patch("journal_engine.main.uvicorn.run") as uvicorn_run:
        run()

    uvicorn_run.assert_called_once_with(
        "journal_engine.main:app",
        host=settings.HOST,
        port=9100,
        reload=settings.DEBUG,
    )
