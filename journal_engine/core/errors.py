"""
Error taxonomy for the task engine.

Every error carries the HTTP status it maps to, so the API layer can render
it without a lookup table.
"""
from fastapi import status


class TaskEngineError(Exception):
    """Base class for errors surfaced by the task engine."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(TaskEngineError):
    """No caller identity, or an invalid one."""

    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(TaskEngineError):
    """The caller does not own the resource."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFound(TaskEngineError):
    """Task or session absent."""

    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(TaskEngineError):
    """Malformed payload or an action the task's state does not allow."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class HandlerFailure(TaskEngineError):
    """A node handler raised while executing a task."""

    def __init__(self, task_id: str, node_id: str, reason: str):
        super().__init__(reason)
        self.task_id = task_id
        self.node_id = node_id


class DispatchFailure(TaskEngineError):
    """The continuation trigger could not be delivered."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, task_id: str, reason: str):
        super().__init__(f"Failed to trigger task {task_id}: {reason}")
        self.task_id = task_id


class GraphConfigurationError(TaskEngineError):
    """The registry has no mapping for a (task type, outcome) pair."""
