"""
Task event log: job started / completed / failed per chain.
"""
import uuid
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from journal_engine.core.logging import logger
from journal_engine.db.models import TaskEvent, TaskEventType, utc_now


TASK_EVENTS_TABLE = "task_events"


class TaskEventStore:
    """Append-only job events, one per (task, event type, node)."""

    def __init__(self, client: Client):
        self.client = client

    async def record(
        self,
        task_id: str,
        session_id: str,
        user_id: str,
        event_type: TaskEventType,
        node_key: str = "job",
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[TaskEvent]:
        """
        Record an event. A duplicate (same task, type and node) is ignored.

        Returns:
            The stored event, or None for a duplicate
        """
        event_data = {
            "id": str(uuid.uuid4()),
            "task_id": task_id,
            "session_id": session_id,
            "user_id": user_id,
            "event_type": event_type.value,
            "node_key": node_key,
            "event_key": f"{event_type.value}:{node_key}",
            "payload": payload or {},
            "created_at": utc_now().isoformat(),
        }

        try:
            response = self.client.table(TASK_EVENTS_TABLE).insert(event_data).execute()
        except APIError as e:
            if getattr(e, "code", None) == "23505":
                logger.debug(f"Event {event_type.value} already recorded for task {task_id}")
                return None
            raise

        logger.debug(f"Recorded {event_type.value} for task {task_id}")
        return TaskEvent(**response.data[0])

    async def list_by_session(self, session_id: str, user_id: str) -> List[TaskEvent]:
        """Events of a session owned by the user, oldest first."""
        response = self.client.table(TASK_EVENTS_TABLE)\
            .select("*")\
            .eq("session_id", session_id)\
            .eq("user_id", user_id)\
            .order("created_at")\
            .execute()

        return [TaskEvent(**row) for row in response.data or []]
