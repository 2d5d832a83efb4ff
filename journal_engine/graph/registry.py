"""
Task graph registry.

A static table from task type to its graph, its node id and its successor.
Successor resolution is an explicit function of (type, outcome); a pair the
table does not cover raises GraphConfigurationError instead of falling back.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from journal_engine.core.errors import GraphConfigurationError
from journal_engine.db.models import TaskGraph, TaskType


# Orchestrator loop bounds
MAX_REWRITES = 2
MAX_ITERATIONS = 5


class Branch(str, Enum):
    """Branch decisions a node can report."""
    NEXT = "next"
    # orchestrator.router / orchestrator.tool_executor
    USE_TOOLS = "use_tools"
    RESPOND = "respond"
    # orchestrator.grade_documents
    RELEVANT = "relevant"
    IRRELEVANT = "irrelevant"
    # daily.classifier_agent
    NOTE = "NOTE"
    QUESTION = "QUESTION"
    NOTE_PLUS_QUESTION = "NOTE_PLUS_QUESTION"
    ESCALATE_TO_ASK = "ESCALATE_TO_ASK"


@dataclass(frozen=True)
class BranchOutcome:
    """Branch-determining data produced by a node."""
    branch: Branch = Branch.NEXT
    rewrite_count: int = 0
    iteration_count: int = 0


@dataclass(frozen=True)
class TaskDefinition:
    graph: TaskGraph
    node_id: str


TASK_DEFINITIONS: Dict[TaskType, TaskDefinition] = {
    TaskType.ROOT_SAVE_USER_MESSAGE: TaskDefinition(TaskGraph.ROOT, "save_user_message"),
    TaskType.ROOT_MEMORY_RETRIEVER: TaskDefinition(TaskGraph.ROOT, "memory_retriever"),
    TaskType.ROOT_RESPONSE_AGENT: TaskDefinition(TaskGraph.ROOT, "root_response_agent"),
    TaskType.ROOT_SAVE_ASSISTANT_MESSAGE: TaskDefinition(TaskGraph.ROOT, "save_assistant_message"),
    TaskType.ORCHESTRATOR_ROUTER: TaskDefinition(TaskGraph.ORCHESTRATOR, "router"),
    TaskType.ORCHESTRATOR_TOOL_EXECUTOR: TaskDefinition(TaskGraph.ORCHESTRATOR, "tool_executor"),
    TaskType.ORCHESTRATOR_GRADE_DOCUMENTS: TaskDefinition(TaskGraph.ORCHESTRATOR, "grade_documents"),
    TaskType.ORCHESTRATOR_REWRITE_QUERY: TaskDefinition(TaskGraph.ORCHESTRATOR, "rewrite_query"),
    TaskType.ORCHESTRATOR_SYNTHESIZE: TaskDefinition(TaskGraph.ORCHESTRATOR, "synthesize"),
    TaskType.ORCHESTRATOR_SAVE_MESSAGES: TaskDefinition(TaskGraph.ORCHESTRATOR, "save_messages"),
    TaskType.DAILY_CLASSIFIER_AGENT: TaskDefinition(TaskGraph.DAILY, "classifier_agent"),
    TaskType.DAILY_MEMORY_RETRIEVER: TaskDefinition(TaskGraph.DAILY, "memory_retriever"),
    TaskType.DAILY_RESPONSE_AGENT: TaskDefinition(TaskGraph.DAILY, "daily_response_agent"),
    TaskType.DAILY_NOTE_ACKNOWLEDGMENT: TaskDefinition(TaskGraph.DAILY, "note_acknowledgment"),
    TaskType.DAILY_SUGGEST_ASK_AI: TaskDefinition(TaskGraph.DAILY, "suggest_ask_ai"),
    TaskType.DAILY_SAVE_EVENTS: TaskDefinition(TaskGraph.DAILY, "save_events"),
}

ENTRY_TYPES: Dict[TaskGraph, TaskType] = {
    TaskGraph.ROOT: TaskType.ROOT_SAVE_USER_MESSAGE,
    TaskGraph.ORCHESTRATOR: TaskType.ORCHESTRATOR_ROUTER,
    TaskGraph.DAILY: TaskType.DAILY_CLASSIFIER_AGENT,
}

# None marks a terminal node
_LINEAR: Dict[TaskType, Optional[TaskType]] = {
    TaskType.ROOT_SAVE_USER_MESSAGE: TaskType.ROOT_MEMORY_RETRIEVER,
    TaskType.ROOT_MEMORY_RETRIEVER: TaskType.ROOT_RESPONSE_AGENT,
    TaskType.ROOT_RESPONSE_AGENT: TaskType.ROOT_SAVE_ASSISTANT_MESSAGE,
    TaskType.ROOT_SAVE_ASSISTANT_MESSAGE: None,
    TaskType.ORCHESTRATOR_SYNTHESIZE: TaskType.ORCHESTRATOR_SAVE_MESSAGES,
    TaskType.ORCHESTRATOR_SAVE_MESSAGES: None,
    TaskType.DAILY_MEMORY_RETRIEVER: TaskType.DAILY_RESPONSE_AGENT,
    TaskType.DAILY_RESPONSE_AGENT: TaskType.DAILY_SAVE_EVENTS,
    TaskType.DAILY_NOTE_ACKNOWLEDGMENT: TaskType.DAILY_SAVE_EVENTS,
    TaskType.DAILY_SUGGEST_ASK_AI: TaskType.DAILY_SAVE_EVENTS,
    TaskType.DAILY_SAVE_EVENTS: None,
}

_BRANCHES: Dict[TaskType, Dict[Branch, TaskType]] = {
    TaskType.ORCHESTRATOR_ROUTER: {
        Branch.USE_TOOLS: TaskType.ORCHESTRATOR_TOOL_EXECUTOR,
        Branch.RESPOND: TaskType.ORCHESTRATOR_SYNTHESIZE,
    },
    TaskType.ORCHESTRATOR_TOOL_EXECUTOR: {
        Branch.USE_TOOLS: TaskType.ORCHESTRATOR_GRADE_DOCUMENTS,
        Branch.RESPOND: TaskType.ORCHESTRATOR_SYNTHESIZE,
    },
    TaskType.ORCHESTRATOR_GRADE_DOCUMENTS: {
        Branch.RELEVANT: TaskType.ORCHESTRATOR_SYNTHESIZE,
        Branch.IRRELEVANT: TaskType.ORCHESTRATOR_REWRITE_QUERY,
    },
    TaskType.ORCHESTRATOR_REWRITE_QUERY: {
        Branch.NEXT: TaskType.ORCHESTRATOR_ROUTER,
    },
    TaskType.DAILY_CLASSIFIER_AGENT: {
        Branch.NOTE: TaskType.DAILY_NOTE_ACKNOWLEDGMENT,
        Branch.QUESTION: TaskType.DAILY_MEMORY_RETRIEVER,
        Branch.NOTE_PLUS_QUESTION: TaskType.DAILY_MEMORY_RETRIEVER,
        Branch.ESCALATE_TO_ASK: TaskType.DAILY_SUGGEST_ASK_AI,
    },
}


def _definition(task_type: TaskType) -> TaskDefinition:
    try:
        return TASK_DEFINITIONS[TaskType(task_type)]
    except (KeyError, ValueError):
        raise GraphConfigurationError(f"Unknown task type: {task_type}")


def graph_of(task_type: TaskType) -> TaskGraph:
    return _definition(task_type).graph


def node_id_of(task_type: TaskType) -> str:
    return _definition(task_type).node_id


def entry_type_of(graph: TaskGraph) -> TaskType:
    return ENTRY_TYPES[TaskGraph(graph)]


def is_entry_type(task_type: TaskType) -> bool:
    return task_type in ENTRY_TYPES.values()


def _loop_exhausted(outcome: BranchOutcome) -> bool:
    return outcome.iteration_count >= MAX_ITERATIONS


def successor_of(task_type: TaskType, outcome: BranchOutcome) -> Optional[TaskType]:
    """
    Resolve the task type that follows `task_type` given the node's outcome.

    Returns:
        The successor type, or None when the node is terminal

    Raises:
        GraphConfigurationError: If (task_type, outcome.branch) is not mapped
    """
    _definition(task_type)
    task_type = TaskType(task_type)

    if task_type in _LINEAR:
        if outcome.branch is not Branch.NEXT:
            raise GraphConfigurationError(
                f"Unmapped branch {outcome.branch.value} for {task_type.value}"
            )
        return _LINEAR[task_type]

    branches = _BRANCHES.get(task_type)
    if branches is None or outcome.branch not in branches:
        raise GraphConfigurationError(
            f"Unmapped branch {outcome.branch.value} for {task_type.value}"
        )
    successor = branches[outcome.branch]

    if task_type == TaskType.ORCHESTRATOR_GRADE_DOCUMENTS and outcome.rewrite_count >= MAX_REWRITES:
        return TaskType.ORCHESTRATOR_SYNTHESIZE

    if (
        task_type in (TaskType.ORCHESTRATOR_ROUTER, TaskType.ORCHESTRATOR_REWRITE_QUERY)
        and successor != TaskType.ORCHESTRATOR_SYNTHESIZE
        and _loop_exhausted(outcome)
    ):
        return TaskType.ORCHESTRATOR_SYNTHESIZE

    return successor


def validate_registry(handlers: Dict[str, Callable]) -> None:
    """
    Check that every task type has a handler and a successor rule.

    Raises:
        GraphConfigurationError: On the first gap found
    """
    for task_type, definition in TASK_DEFINITIONS.items():
        if definition.node_id not in handlers:
            raise GraphConfigurationError(f"No handler for node {definition.node_id}")
        if task_type not in _LINEAR and task_type not in _BRANCHES:
            raise GraphConfigurationError(f"No successor rule for {task_type.value}")
        for successor in list(_BRANCHES.get(task_type, {}).values()) + [_LINEAR.get(task_type)]:
            if successor is not None and graph_of(successor) != definition.graph:
                raise GraphConfigurationError(
                    f"{task_type.value} leads out of graph {definition.graph.value}"
                )
