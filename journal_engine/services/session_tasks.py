"""
Session task API: the user-facing operations on task chains.
"""
from typing import Any, Dict, List, Optional

from journal_engine.core.errors import Forbidden, NotFound, ValidationError
from journal_engine.core.logging import logger
from journal_engine.db.models import Task, TaskEvent, TaskGraph, TaskStatus, TaskType
from journal_engine.db.task_events import TaskEventStore
from journal_engine.db.tasks import TaskStore
from journal_engine.graph import registry
from journal_engine.graph.state import build_initial_state


class SessionTaskService:
    """Enqueue, list, cancel and retry tasks on behalf of a user."""

    def __init__(self, tasks: TaskStore, events: TaskEventStore):
        self.tasks = tasks
        self.events = events

    async def enqueue(
        self,
        user_id: str,
        session_id: str,
        payload: Dict[str, Any],
        graph: Optional[TaskGraph] = None,
        task_type: Optional[TaskType] = None,
    ) -> Task:
        """
        Create the first pending task of a graph. Execution is started
        separately by the caller.

        Raises:
            ValidationError: If neither graph nor an entry type is given, or
                the payload does not fit the graph
        """
        if task_type is not None:
            if not registry.is_entry_type(task_type):
                raise ValidationError(f"{TaskType(task_type).value} is not the first task of a graph")
            task_graph = registry.graph_of(task_type)
            if graph is not None and TaskGraph(graph) != task_graph:
                raise ValidationError(f"{TaskType(task_type).value} does not belong to the {TaskGraph(graph).value} graph")
        elif graph is not None:
            task_graph = TaskGraph(graph)
        else:
            raise ValidationError("Either graph or type is required")

        state = build_initial_state(task_graph, payload, user_id, session_id)
        task = await self.tasks.create(session_id, user_id, registry.entry_type_of(task_graph), state)
        logger.info(f"Enqueued {task_graph.value} chain with task {task.id} in session {session_id}")
        return task

    async def list(self, user_id: str, session_id: str) -> List[Task]:
        return await self.tasks.list_by_session(session_id, user_id)

    async def list_events(self, user_id: str, session_id: str) -> List[TaskEvent]:
        # Ownership is enforced through the tasks of the session
        await self.tasks.list_by_session(session_id, user_id)
        return await self.events.list_by_session(session_id, user_id)

    async def _owned(self, user_id: str, task_id: str) -> Task:
        task = await self.tasks.get(task_id)
        if task is None:
            raise NotFound("Task not found")
        if task.user_id != user_id:
            logger.warning(f"User {user_id} denied access to task {task_id}")
            raise Forbidden("You don't have permission to access this task")
        return task

    async def cancel(self, user_id: str, task_id: str) -> Task:
        """
        Force a pending or running task to failed. A running handler finishes,
        but its result is discarded and no successor is created.

        Raises:
            ValidationError: If the task already finished
        """
        task = await self._owned(user_id, task_id)
        if task.status.is_terminal:
            raise ValidationError(f"Task is already {task.status.value}")

        cancelled = await self.tasks.cancel(task_id)
        if cancelled is None:
            # Finished between the read and the update
            current = await self.tasks.get(task_id)
            raise ValidationError(f"Task is already {current.status.value if current else 'gone'}")

        logger.info(f"User {user_id} cancelled task {task_id} in session {task.session_id}")
        return cancelled

    async def retry(self, user_id: str, task_id: str) -> Task:
        """
        Reset a failed task to pending and clear its error. Does not start it.

        Raises:
            ValidationError: If the task is not failed
        """
        task = await self._owned(user_id, task_id)
        if task.status != TaskStatus.FAILED:
            raise ValidationError(f"Only failed tasks can be retried; task is {task.status.value}")

        reset = await self.tasks.reset_for_retry(task)
        if reset is None:
            raise ValidationError("Task is no longer failed")

        logger.info(f"User {user_id} reset task {task_id} for retry (attempt {reset.retry_count})")
        return reset
