"""
Task database operations.

Every status transition is a conditional update guarded by the current status,
so a concurrent duplicate trigger observes the guard and becomes a no-op. The
`tasks` table also carries a partial unique index on `session_id` where
`status = 'running'`; a claim that would put a second task of the same session
into `running` is rejected by the database and reported here as "busy".
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from postgrest.exceptions import APIError
from supabase import Client
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from journal_engine.core.errors import Forbidden
from journal_engine.core.logging import logger
from journal_engine.db.models import Task, TaskStatus, TaskType, utc_now


# Supabase table name
TASKS_TABLE = "tasks"

CANCELLED_BY_USER = "Cancelled by user"
STALE_TASK_ERROR = "Task exceeded its execution deadline"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class SequenceConflict(Exception):
    """Another task took the same sequence number in the session."""


def _is_unique_violation(error: APIError) -> bool:
    return getattr(error, "code", None) == UNIQUE_VIOLATION


class TaskStore:
    """Durable record of tasks, backed by the `tasks` table."""

    def __init__(self, client: Client):
        self.client = client

    def _table(self):
        return self.client.table(TASKS_TABLE)

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_random(min=0.01, max=0.1),
        retry=retry_if_exception_type(SequenceConflict),
        reraise=True,
    )
    async def create(
        self,
        session_id: str,
        user_id: str,
        task_type: TaskType,
        payload: Dict[str, Any],
        parent_task_id: Optional[str] = None,
    ) -> Task:
        """
        Create a pending task at the end of its session.

        Args:
            session_id: Session the task belongs to
            user_id: Owner of the task
            task_type: Task type
            payload: Input consumed by the node handler
            parent_task_id: Task that produced this one, if any

        Returns:
            The created task
        """
        latest = self._table()\
            .select("sequence")\
            .eq("session_id", session_id)\
            .order("sequence", desc=True)\
            .limit(1)\
            .execute()
        sequence = latest.data[0]["sequence"] + 1 if latest.data else 1

        now = utc_now().isoformat()
        task_data = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "user_id": user_id,
            "type": TaskType(task_type).value,
            "status": TaskStatus.PENDING.value,
            "payload": payload,
            "result": None,
            "last_error": None,
            "sequence": sequence,
            "retry_count": 0,
            "parent_task_id": parent_task_id,
            "created_at": now,
            "updated_at": now,
        }

        try:
            response = self._table().insert(task_data).execute()
        except APIError as e:
            if _is_unique_violation(e):
                logger.debug(f"Sequence {sequence} taken in session {session_id}, retrying")
                raise SequenceConflict(str(e)) from e
            logger.exception(f"Error creating task: {e}")
            raise

        if not response.data:
            raise RuntimeError(f"Failed to create task in session {session_id}")

        task = Task(**response.data[0])
        logger.info(
            f"Created task {task.id} ({task.type.value}) seq={task.sequence} "
            f"in session {session_id} for user {user_id}"
        )
        return task

    async def get(self, task_id: str) -> Optional[Task]:
        """
        Get a task by ID.

        Returns:
            The task if found, None otherwise
        """
        response = self._table().select("*").eq("id", task_id).execute()

        if response.data:
            return Task(**response.data[0])
        logger.info(f"Task {task_id} not found")
        return None

    async def list_by_session(self, session_id: str, user_id: str) -> List[Task]:
        """
        List a session's tasks in ascending sequence.

        Raises:
            Forbidden: If the session belongs to another user
        """
        response = self._table()\
            .select("*")\
            .eq("session_id", session_id)\
            .order("sequence")\
            .execute()

        tasks = [Task(**row) for row in response.data or []]
        if any(task.user_id != user_id for task in tasks):
            logger.warning(f"User {user_id} denied access to session {session_id}")
            raise Forbidden("You don't have permission to access this session")
        return tasks

    async def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        expected: Optional[Sequence[TaskStatus]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[Task]:
        """
        Transition a task's status, writing result and error in the same row update.

        Args:
            task_id: ID of the task to update
            status: New status
            result: Output to store (successful transitions)
            error: Failure reason (failed transitions)
            expected: Only update if the current status is one of these
            extra: Additional columns to write

        Returns:
            The updated task, or None if the guard did not match
        """
        update_data: Dict[str, Any] = {
            "status": status.value,
            "last_error": error,
            "updated_at": utc_now().isoformat(),
            **(extra or {}),
        }
        if status == TaskStatus.SUCCEEDED:
            update_data["result"] = result

        query = self._table().update(update_data).eq("id", task_id)
        if expected:
            query = query.in_("status", [s.value for s in expected])
        response = query.execute()

        if not response.data:
            logger.info(f"Task {task_id} not moved to {status.value}: guard not met")
            return None

        task = Task(**response.data[0])
        logger.info(f"Updated task {task_id} status to {status.value}")
        return task

    async def claim(self, task_id: str) -> Optional[Task]:
        """
        Atomically move a task from pending to running.

        Returns:
            The running task, or None if the task is not pending or its
            session already has a running task
        """
        try:
            return await self.update_status(
                task_id, TaskStatus.RUNNING, expected=[TaskStatus.PENDING]
            )
        except APIError as e:
            if _is_unique_violation(e):
                logger.info(f"Task {task_id} not claimed: session already has a running task")
                return None
            raise

    async def cancel(self, task_id: str) -> Optional[Task]:
        """Force a non-terminal task to failed."""
        return await self.update_status(
            task_id,
            TaskStatus.FAILED,
            error=CANCELLED_BY_USER,
            expected=[TaskStatus.PENDING, TaskStatus.RUNNING],
        )

    async def reset_for_retry(self, task: Task) -> Optional[Task]:
        """Move a failed task back to pending and clear its error."""
        return await self.update_status(
            task.id,
            TaskStatus.PENDING,
            error=None,
            expected=[TaskStatus.FAILED],
            extra={"retry_count": task.retry_count + 1},
        )

    async def next_pending(self, session_id: str) -> Optional[Task]:
        """Get the pending task with the lowest sequence in a session."""
        response = self._table()\
            .select("*")\
            .eq("session_id", session_id)\
            .eq("status", TaskStatus.PENDING.value)\
            .order("sequence")\
            .limit(1)\
            .execute()

        if response.data:
            return Task(**response.data[0])
        return None

    async def pending_sessions(self, limit: int) -> List[str]:
        """Sessions that have pending work, oldest first."""
        response = self._table()\
            .select("session_id")\
            .eq("status", TaskStatus.PENDING.value)\
            .order("created_at")\
            .execute()

        sessions: List[str] = []
        for row in response.data or []:
            if row["session_id"] not in sessions:
                sessions.append(row["session_id"])
            if len(sessions) >= limit:
                break
        return sessions

    async def fail_stale_running(self, older_than: datetime) -> List[Task]:
        """
        Fail running tasks whose invocation died without finishing.

        Their status becomes failed so the user can retry them explicitly.
        """
        response = self._table()\
            .update({
                "status": TaskStatus.FAILED.value,
                "last_error": STALE_TASK_ERROR,
                "updated_at": utc_now().isoformat(),
            })\
            .eq("status", TaskStatus.RUNNING.value)\
            .lt("updated_at", older_than.isoformat())\
            .execute()

        stale = [Task(**row) for row in response.data or []]
        for task in stale:
            logger.warning(f"Task {task.id} in session {task.session_id} marked failed: stale")
        return stale
