"""
Task executor: runs exactly one task per call.

The successor of a task is created only after the task's success is durably
recorded, so an invocation that dies mid-handler leaves the task `running`
with no successor, never a duplicated or skipped step.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from journal_engine.core.config import settings
from journal_engine.core.errors import GraphConfigurationError, HandlerFailure, NotFound
from journal_engine.core.logging import logger
from journal_engine.db.journal import JournalStore
from journal_engine.db.models import Task, TaskEventType, TaskStatus
from journal_engine.db.task_events import TaskEventStore
from journal_engine.db.tasks import TaskStore
from journal_engine.graph import registry
from journal_engine.graph.nodes import NODE_HANDLERS, EmbedFn, Handler, LLMFn, NodeContext
from journal_engine.services.memory import MemoryRetriever


class ExecutionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Already terminal, or claimed elsewhere, or its session is busy
    SKIPPED = "skipped"
    # Cancelled while its handler ran
    CANCELLED = "cancelled"


@dataclass
class ExecutionOutcome:
    status: ExecutionStatus
    task: Optional[Task] = None
    successor: Optional[Task] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != ExecutionStatus.FAILED


class TaskExecutor:
    """Claims a task, runs its node handler and materializes its successor."""

    def __init__(
        self,
        tasks: TaskStore,
        events: TaskEventStore,
        journal: JournalStore,
        llm: LLMFn,
        embed: EmbedFn,
        handlers: Optional[Dict[str, Handler]] = None,
    ):
        self.tasks = tasks
        self.events = events
        self.journal = journal
        self.llm = llm
        self.embed = embed
        self.handlers = handlers if handlers is not None else NODE_HANDLERS
        self.retriever = MemoryRetriever(embed, journal.match_embeddings)
        registry.validate_registry(self.handlers)

    def _context(self, task: Task) -> NodeContext:
        return NodeContext(
            task_id=task.id,
            user_id=task.user_id,
            session_id=task.session_id,
            llm=self.llm,
            retriever=self.retriever,
            journal=self.journal,
            embed=self.embed,
            memory_threshold=settings.MEMORY_MATCH_THRESHOLD,
            memory_limit_per_level=settings.MEMORY_LIMIT_PER_LEVEL,
            memory_max_tokens=settings.MEMORY_CONTEXT_MAX_TOKENS,
        )

    async def _job_id(self, task: Task) -> str:
        """Id of the first task of the chain `task` belongs to."""
        current = task
        while current.parent_task_id:
            parent = await self.tasks.get(current.parent_task_id)
            if parent is None:
                break
            current = parent
        return current.id

    async def _record(self, task: Task, event_type: TaskEventType, **extra: Any) -> None:
        payload = {
            "job_id": await self._job_id(task),
            "task_id": task.id,
            "session_id": task.session_id,
            "task_type": task.type.value,
            **extra,
        }
        await self.events.record(task.id, task.session_id, task.user_id, event_type, payload=payload)

    async def execute(self, task_id: str) -> ExecutionOutcome:
        """
        Run one task.

        Returns:
            The outcome; a handler failure is recorded on the task and
            returned, not raised

        Raises:
            NotFound: If the task does not exist
            GraphConfigurationError: If the registry cannot resolve the successor
        """
        task = await self.tasks.get(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")

        if task.status.is_terminal:
            logger.info(f"Task {task_id} already {task.status.value}, nothing to do")
            return ExecutionOutcome(ExecutionStatus.SKIPPED, task=task)

        running = await self.tasks.claim(task_id)
        if running is None:
            logger.info(f"Task {task_id} in session {task.session_id} not claimed, skipping")
            return ExecutionOutcome(ExecutionStatus.SKIPPED, task=task)

        logger.info(f"Claimed task {running.id} ({running.type.value}) in session {running.session_id}")
        if running.parent_task_id is None:
            await self._record(running, TaskEventType.JOB_STARTED)

        node_id = registry.node_id_of(running.type)
        handler = self.handlers[node_id]

        try:
            result = await handler(dict(running.payload), self._context(running))
        except Exception as e:
            failure = HandlerFailure(running.id, node_id, str(e) or type(e).__name__)
            logger.exception(
                f"Task {running.id} ({running.type.value}) in session {running.session_id} failed: {failure.message}"
            )
            failed = await self.tasks.update_status(
                running.id, TaskStatus.FAILED, error=failure.message, expected=[TaskStatus.RUNNING]
            )
            await self._record(running, TaskEventType.JOB_FAILED, error=failure.message)
            return ExecutionOutcome(ExecutionStatus.FAILED, task=failed or running, error=failure.message)

        try:
            successor_type = registry.successor_of(running.type, result.outcome)
        except GraphConfigurationError as e:
            logger.error(f"Task {running.id}: {e.message}")
            await self.tasks.update_status(
                running.id, TaskStatus.FAILED, error=e.message, expected=[TaskStatus.RUNNING]
            )
            raise

        output: Dict[str, Any] = dict(result.update)
        succeeded = await self.tasks.update_status(
            running.id, TaskStatus.SUCCEEDED, result=output, expected=[TaskStatus.RUNNING]
        )
        if succeeded is None:
            logger.warning(f"Task {running.id} was cancelled while running; chain halted")
            return ExecutionOutcome(ExecutionStatus.CANCELLED, task=await self.tasks.get(running.id))

        if successor_type is None:
            logger.info(f"Task {running.id} ({running.type.value}) completed its chain in session {running.session_id}")
            await self._record(succeeded, TaskEventType.JOB_COMPLETED)
            return ExecutionOutcome(ExecutionStatus.SUCCEEDED, task=succeeded)

        successor = await self.tasks.create(
            running.session_id,
            running.user_id,
            successor_type,
            {**running.payload, **output},
            parent_task_id=running.id,
        )
        logger.info(f"Task {running.id} succeeded; successor {successor.id} ({successor.type.value}) queued")
        return ExecutionOutcome(ExecutionStatus.SUCCEEDED, task=succeeded, successor=successor)
