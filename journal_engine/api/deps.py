"""
Dependency injection utilities for FastAPI.
"""
import secrets
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from supabase import Client

from journal_engine.core.config import settings
from journal_engine.core.errors import Unauthorized
from journal_engine.core.logging import logger
from journal_engine.db.journal import JournalStore
from journal_engine.db.supabase import create_supabase_client
from journal_engine.db.task_events import TaskEventStore
from journal_engine.db.tasks import TaskStore
from journal_engine.graph.continuation import ChainContinuation
from journal_engine.graph.executor import TaskExecutor
from journal_engine.services.embeddings import embed_query
from journal_engine.services.llm import generate_text
from journal_engine.services.session_tasks import SessionTaskService
from journal_engine.services.summaries import DailySummaryService, MonthlySummaryService, WeeklySummaryService

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


class User(BaseModel):
    """User model."""
    id: str
    email: str = ""


def get_supabase() -> Client:
    """A fresh data-store client for the current request."""
    return create_supabase_client()


def build_executor(client: Optional[Client] = None) -> TaskExecutor:
    """Executor with its own client, for one task invocation."""
    client = client or create_supabase_client()
    return TaskExecutor(
        tasks=TaskStore(client),
        events=TaskEventStore(client),
        journal=JournalStore(client),
        llm=generate_text,
        embed=embed_query,
    )


def _user_from_supabase(client: Client, token: str) -> User:
    user_data = client.auth.get_user(token).user
    if isinstance(user_data, dict):
        return User(id=user_data.get("id"), email=user_data.get("email") or "")
    return User(id=getattr(user_data, "id", ""), email=getattr(user_data, "email", "") or "")


def _user_from_jwt(token: str) -> User:
    payload = jwt.decode(
        token,
        settings.SUPABASE_JWT_SECRET,
        algorithms=["HS256"],
        audience="authenticated",
        options={"verify_signature": settings.VERIFY_JWT, "verify_aud": settings.VERIFY_JWT},
    )
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return User(id=payload["sub"], email=payload.get("email") or "")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    client: Client = Depends(get_supabase),
) -> User:
    """
    Get current user from the bearer token.

    Raises:
        Unauthorized: If the token is missing or invalid
    """
    if credentials is None or not credentials.credentials:
        logger.warning("No token provided in request")
        raise Unauthorized("Not authenticated")

    token = credentials.credentials
    try:
        logger.debug("Attempting to verify token with Supabase")
        return _user_from_supabase(client, token)
    except Exception as e:
        # If Supabase auth fails, fall back to JWT verification
        logger.warning(f"Supabase auth failed, falling back to JWT verification: {e}")

    try:
        return _user_from_jwt(token)
    except JWTError as e:
        logger.error(f"JWT decode error: {e}")
        raise Unauthorized("Invalid authentication credentials")


def verify_internal_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Allow only calls carrying the internal task secret.

    Raises:
        Unauthorized: If the secret is unset, missing or wrong
    """
    expected = settings.INTERNAL_TASK_SECRET
    provided = credentials.credentials if credentials else ""
    if not expected or not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Rejected internal call with a missing or invalid secret")
        raise Unauthorized("Unauthorized")


def get_session_tasks(client: Client = Depends(get_supabase)) -> SessionTaskService:
    return SessionTaskService(TaskStore(client), TaskEventStore(client))


def get_task_store(client: Client = Depends(get_supabase)) -> TaskStore:
    return TaskStore(client)


def get_summary_service(client: Client = Depends(get_supabase)) -> DailySummaryService:
    return DailySummaryService(JournalStore(client), generate_text, embed_query)


def get_weekly_summary_service(client: Client = Depends(get_supabase)) -> WeeklySummaryService:
    return WeeklySummaryService(JournalStore(client), generate_text, embed_query)


def get_monthly_summary_service(client: Client = Depends(get_supabase)) -> MonthlySummaryService:
    return MonthlySummaryService(JournalStore(client), generate_text, embed_query)


def get_continuation(request: Request) -> ChainContinuation:
    return request.app.state.continuation
