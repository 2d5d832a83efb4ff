"""
Database models for the task engine.
"""
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Task status enum."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


class TaskGraph(str, Enum):
    """Named task graphs."""
    ROOT = "root"
    ORCHESTRATOR = "orchestrator"
    DAILY = "daily"


class TaskType(str, Enum):
    """Closed enumeration of task types, prefixed by their graph."""
    ROOT_SAVE_USER_MESSAGE = "root.save_user_message"
    ROOT_MEMORY_RETRIEVER = "root.memory_retriever"
    ROOT_RESPONSE_AGENT = "root.response_agent"
    ROOT_SAVE_ASSISTANT_MESSAGE = "root.save_assistant_message"
    ORCHESTRATOR_ROUTER = "orchestrator.router"
    ORCHESTRATOR_TOOL_EXECUTOR = "orchestrator.tool_executor"
    ORCHESTRATOR_GRADE_DOCUMENTS = "orchestrator.grade_documents"
    ORCHESTRATOR_REWRITE_QUERY = "orchestrator.rewrite_query"
    ORCHESTRATOR_SYNTHESIZE = "orchestrator.synthesize"
    ORCHESTRATOR_SAVE_MESSAGES = "orchestrator.save_messages"
    DAILY_CLASSIFIER_AGENT = "daily.classifier_agent"
    DAILY_MEMORY_RETRIEVER = "daily.memory_retriever"
    DAILY_RESPONSE_AGENT = "daily.response_agent"
    DAILY_NOTE_ACKNOWLEDGMENT = "daily.note_acknowledgment"
    DAILY_SUGGEST_ASK_AI = "daily.suggest_ask_ai"
    DAILY_SAVE_EVENTS = "daily.save_events"


class Task(BaseModel):
    """Task database model."""
    id: str
    session_id: str
    user_id: str
    type: TaskType
    status: TaskStatus = TaskStatus.PENDING
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    sequence: int
    retry_count: int = 0
    parent_task_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TaskEventType(str, Enum):
    """Job-level events recorded while a chain runs."""
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"


class TaskEvent(BaseModel):
    """Task event database model."""
    id: str
    task_id: str
    session_id: str
    user_id: str
    event_type: TaskEventType
    node_key: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class HierarchyLevel(str, Enum):
    """Memory granularity, coarsest first."""
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"
    RAW = "raw"

    @property
    def match_type(self) -> str:
        """Embedding type stored for this level."""
        if self is HierarchyLevel.RAW:
            return "daily_event"
        return f"{self.value}_summary"


class FragmentMetadata(BaseModel):
    """Where a memory fragment came from."""
    source_id: Optional[str] = None
    date: Optional[str] = None
    type: Optional[str] = None


class MemoryFragment(BaseModel):
    """One retrieved unit of context."""
    content: str
    metadata: FragmentMetadata = Field(default_factory=FragmentMetadata)
    similarity: float = Field(ge=0.0, le=1.0)


class MemoryRetrievalResult(BaseModel):
    """Fragments retrieved for one hierarchy level."""
    hierarchy_level: HierarchyLevel
    fragments: List[MemoryFragment] = Field(default_factory=list)

    @property
    def total_found(self) -> int:
        return len(self.fragments)
