"""
Initial state for a task chain.

The payload of an entry task is validated per graph and expanded into the
state dict that flows from task to task.
"""
from datetime import date
from typing import Any, Dict, Optional, Type

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from journal_engine.core.errors import ValidationError
from journal_engine.db.models import TaskGraph


class ConversationInput(BaseModel):
    """Payload accepted by the root and orchestrator graphs."""
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1)
    conversation_history: Optional[str] = None
    user_email: Optional[str] = None
    user_message_id: Optional[str] = None
    current_date: Optional[date] = None


class DailyInput(BaseModel):
    """Payload accepted by the daily graph."""
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1)
    current_date: Optional[date] = None


INPUT_MODELS: Dict[TaskGraph, Type[BaseModel]] = {
    TaskGraph.ROOT: ConversationInput,
    TaskGraph.ORCHESTRATOR: ConversationInput,
    TaskGraph.DAILY: DailyInput,
}


def build_initial_state(
    graph: TaskGraph,
    payload: Dict[str, Any],
    user_id: str,
    session_id: str,
) -> Dict[str, Any]:
    """
    Validate an entry payload and build the chain state.

    Raises:
        ValidationError: If the payload does not fit the graph
    """
    model = INPUT_MODELS[TaskGraph(graph)]
    try:
        data = model(**(payload or {}))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid payload for {graph.value} graph: {e.errors()[0]['msg']}")

    state: Dict[str, Any] = {
        "user_id": user_id,
        "session_id": session_id,
        "current_date": (data.current_date or date.today()).isoformat(),
        "user_message": data.content,
    }

    if isinstance(data, ConversationInput):
        state.update({
            "conversation_history": data.conversation_history,
            "user_email": data.user_email,
            "user_message_id": data.user_message_id,
        })

    if graph == TaskGraph.ORCHESTRATOR:
        state.update({
            "original_query": state["user_message"],
            "rewrite_count": 0,
            "iteration_count": 0,
        })

    return state
