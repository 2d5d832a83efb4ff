"""
Task endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from journal_engine.api.deps import (
    User,
    get_continuation,
    get_current_user,
    get_session_tasks,
    verify_internal_secret,
)
from journal_engine.core.errors import TaskEngineError
from journal_engine.core.logging import logger
from journal_engine.db.models import Task, TaskEvent, TaskGraph, TaskStatus, TaskType
from journal_engine.graph.continuation import ChainContinuation
from journal_engine.services.session_tasks import SessionTaskService


router = APIRouter()


class EnqueueRequest(BaseModel):
    """Enqueue request model."""
    session_id: str
    graph: Optional[TaskGraph] = None
    type: Optional[TaskType] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "example": {
                "session_id": "3f1c9a7e-6a52-4a0e-9d61-3c1f2b8e4d10",
                "graph": "root",
                "payload": {"content": "hello"},
            }
        }
    }


class TaskResponse(BaseModel):
    """Task response model."""
    id: str
    session_id: str
    type: TaskType
    status: TaskStatus
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    sequence: int
    retry_count: int
    parent_task_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(**task.model_dump(exclude={"payload", "user_id"}))


class TaskListResponse(BaseModel):
    """Task list response model."""
    tasks: List[TaskResponse]


class TaskEventListResponse(BaseModel):
    events: List[TaskEvent]


class ProcessResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


def _unexpected(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed {action}: {str(e)}",
    )


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_task(
    request: EnqueueRequest,
    user: User = Depends(get_current_user),
    service: SessionTaskService = Depends(get_session_tasks),
    continuation: ChainContinuation = Depends(get_continuation),
):
    """Start a task chain for a session."""
    try:
        task = await service.enqueue(
            user.id,
            request.session_id,
            request.payload,
            graph=request.graph,
            task_type=request.type,
        )
        continuation.dispatch(task.id)
        return TaskResponse.from_task(task)
    except TaskEngineError:
        raise
    except Exception as e:
        raise _unexpected("enqueueing task", e)


@router.get("", response_model=TaskListResponse)
async def list_session_tasks(
    session_id: str = Query(...),
    user: User = Depends(get_current_user),
    service: SessionTaskService = Depends(get_session_tasks),
):
    """List the tasks of a session in order."""
    try:
        tasks = await service.list(user.id, session_id)
        return TaskListResponse(tasks=[TaskResponse.from_task(t) for t in tasks])
    except TaskEngineError:
        raise
    except Exception as e:
        raise _unexpected("listing tasks", e)


@router.get("/events", response_model=TaskEventListResponse)
async def list_session_events(
    session_id: str = Query(...),
    user: User = Depends(get_current_user),
    service: SessionTaskService = Depends(get_session_tasks),
):
    """List the job events of a session."""
    try:
        return TaskEventListResponse(events=await service.list_events(user.id, session_id))
    except TaskEngineError:
        raise
    except Exception as e:
        raise _unexpected("listing task events", e)


@router.post("/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(
    task_id: str,
    user: User = Depends(get_current_user),
    service: SessionTaskService = Depends(get_session_tasks),
):
    """Cancel a pending or running task."""
    try:
        return TaskResponse.from_task(await service.cancel(user.id, task_id))
    except TaskEngineError:
        raise
    except Exception as e:
        raise _unexpected("cancelling task", e)


@router.post("/{task_id}/retry", response_model=TaskResponse)
async def retry_task(
    task_id: str,
    user: User = Depends(get_current_user),
    service: SessionTaskService = Depends(get_session_tasks),
):
    """Reset a failed task to pending. Processing is triggered separately."""
    try:
        return TaskResponse.from_task(await service.retry(user.id, task_id))
    except TaskEngineError:
        raise
    except Exception as e:
        raise _unexpected("retrying task", e)


@router.post(
    "/{task_id}/process",
    response_model=ProcessResponse,
    dependencies=[Depends(verify_internal_secret)],
    include_in_schema=False,
)
async def process_task(
    task_id: str,
    continuation: ChainContinuation = Depends(get_continuation),
):
    """Run one task. Internal: called by the chain continuation trigger."""
    try:
        outcome = await continuation.process(task_id)
        return ProcessResponse(ok=outcome.ok, error=outcome.error)
    except TaskEngineError as e:
        return JSONResponse(status_code=e.status_code, content={"ok": False, "error": e.message})
    except Exception as e:
        logger.exception(f"Error processing task {task_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": str(e) or "Failed to process task"},
        )
