"""
Journal rows written and read by task handlers: conversation messages, daily
events, embeddings and summaries.
"""
import uuid
from typing import Any, Dict, List, Optional

from supabase import Client

from journal_engine.core.logging import logger
from journal_engine.db.models import utc_now


ASK_MESSAGES_TABLE = "ask_messages"
ASK_THREADS_TABLE = "ask_threads"
DAILY_EVENTS_TABLE = "daily_events"
DAILY_SUMMARIES_TABLE = "daily_summaries"
WEEKLY_SUMMARIES_TABLE = "weekly_summaries"
MONTHLY_SUMMARIES_TABLE = "monthly_summaries"
EMBEDDINGS_TABLE = "embeddings"
USERS_TABLE = "users"

MATCH_EMBEDDINGS_RPC = "match_embeddings"


def _first_row(response, what: str) -> Dict[str, Any]:
    if not response.data:
        raise RuntimeError(f"Failed to save {what}")
    return response.data[0]


class JournalStore:
    """Data store operations for the journal and conversation tables."""

    def __init__(self, client: Client):
        self.client = client

    async def save_ask_message(self, thread_id: str, role: str, content: str) -> str:
        """Persist a conversation message and return its id."""
        response = self.client.table(ASK_MESSAGES_TABLE).insert({
            "id": str(uuid.uuid4()),
            "thread_id": thread_id,
            "role": role,
            "content": content,
            "created_at": utc_now().isoformat(),
        }).execute()

        row = _first_row(response, f"{role} message")
        logger.info(f"Saved {role} message {row['id']} in thread {thread_id}")
        return row["id"]

    async def touch_thread(self, thread_id: str) -> None:
        """Bump a thread's updated_at so it sorts first."""
        self.client.table(ASK_THREADS_TABLE)\
            .update({"updated_at": utc_now().isoformat()})\
            .eq("id", thread_id)\
            .execute()

    async def save_daily_event(
        self,
        user_id: str,
        date: str,
        role: str,
        event_type: str,
        content: str,
    ) -> Dict[str, Any]:
        """Persist one daily event."""
        response = self.client.table(DAILY_EVENTS_TABLE).insert({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "date": date,
            "role": role,
            "type": event_type,
            "content": content,
            "created_at": utc_now().isoformat(),
        }).execute()

        return _first_row(response, "daily event")

    async def list_daily_events(self, user_id: str, date: str) -> List[Dict[str, Any]]:
        response = self.client.table(DAILY_EVENTS_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("date", date)\
            .order("created_at")\
            .execute()
        return response.data or []

    async def store_embedding(
        self,
        user_id: str,
        content: str,
        embedding: List[float],
        metadata: Dict[str, Any],
    ) -> None:
        """Store a vector for later similarity search."""
        self.client.table(EMBEDDINGS_TABLE).insert({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "content": content,
            "embedding": embedding,
            "metadata": metadata,
            "created_at": utc_now().isoformat(),
        }).execute()

    async def match_embeddings(
        self,
        embedding: List[float],
        user_id: str,
        threshold: float,
        count: int,
        match_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Similarity search over a user's embeddings (pgvector RPC).

        Returns:
            Rows with content, metadata and similarity
        """
        response = self.client.rpc(MATCH_EMBEDDINGS_RPC, {
            "query_embedding": f"[{','.join(str(v) for v in embedding)}]",
            "match_user_id": user_id,
            "match_threshold": threshold,
            "match_count": count,
            "match_type": match_type,
        }).execute()
        return response.data or []

    async def list_user_ids(self) -> List[str]:
        response = self.client.table(USERS_TABLE).select("id").execute()
        return [row["id"] for row in response.data or []]

    async def get_daily_summary(self, user_id: str, date: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(DAILY_SUMMARIES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("date", date)\
            .limit(1)\
            .execute()
        return response.data[0] if response.data else None

    async def save_daily_summary(
        self,
        user_id: str,
        date: str,
        summary: Dict[str, Any],
    ) -> Dict[str, Any]:
        response = self.client.table(DAILY_SUMMARIES_TABLE).insert({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "date": date,
            "content": summary,
            "created_at": utc_now().isoformat(),
        }).execute()

        row = _first_row(response, "daily summary")
        logger.info(f"Saved daily summary {row['id']} for user {user_id} on {date}")
        return row

    async def list_daily_summaries(self, user_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Daily summaries dated between start and end, inclusive."""
        response = self.client.table(DAILY_SUMMARIES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .gte("date", start)\
            .lte("date", end)\
            .order("date")\
            .execute()
        return response.data or []

    async def get_weekly_summary(self, user_id: str, week_start: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(WEEKLY_SUMMARIES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("week_start", week_start)\
            .limit(1)\
            .execute()
        return response.data[0] if response.data else None

    async def list_weekly_summaries(self, user_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Weekly summaries whose week starts between start and end, inclusive."""
        response = self.client.table(WEEKLY_SUMMARIES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .gte("week_start", start)\
            .lte("week_start", end)\
            .order("week_start")\
            .execute()
        return response.data or []

    async def save_weekly_summary(
        self,
        user_id: str,
        week_start: str,
        summary: Dict[str, Any],
    ) -> Dict[str, Any]:
        response = self.client.table(WEEKLY_SUMMARIES_TABLE).insert({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "week_start": week_start,
            "content": summary,
            "created_at": utc_now().isoformat(),
        }).execute()

        row = _first_row(response, "weekly summary")
        logger.info(f"Saved weekly summary {row['id']} for user {user_id}, week of {week_start}")
        return row

    async def get_monthly_summary(self, user_id: str, month_start: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(MONTHLY_SUMMARIES_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("month_start", month_start)\
            .limit(1)\
            .execute()
        return response.data[0] if response.data else None

    async def save_monthly_summary(
        self,
        user_id: str,
        month_start: str,
        summary: Dict[str, Any],
    ) -> Dict[str, Any]:
        response = self.client.table(MONTHLY_SUMMARIES_TABLE).insert({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "month_start": month_start,
            "content": summary,
            "created_at": utc_now().isoformat(),
        }).execute()

        row = _first_row(response, "monthly summary")
        logger.info(f"Saved monthly summary {row['id']} for user {user_id}, month of {month_start}")
        return row
