"""
Recovery sweep for chains whose continuation trigger was lost.
"""
from datetime import timedelta
from typing import Dict, Optional

from journal_engine.core.config import settings
from journal_engine.core.logging import logger
from journal_engine.db.models import utc_now
from journal_engine.db.tasks import TaskStore
from journal_engine.graph.continuation import ChainContinuation
from journal_engine.graph.executor import ExecutionStatus


async def run_recovery_sweep(
    tasks: TaskStore,
    continuation: ChainContinuation,
    max_sessions: Optional[int] = None,
    stale_after_seconds: Optional[int] = None,
) -> Dict[str, int]:
    """
    Fail running tasks past their deadline, then drive the next pending task
    of each session that has one.

    Returns:
        Counts of stale tasks failed and of tasks processed by outcome
    """
    max_sessions = max_sessions if max_sessions is not None else settings.TASK_SWEEP_MAX_SESSIONS
    stale_after = stale_after_seconds if stale_after_seconds is not None else settings.TASK_STALE_AFTER_SECONDS

    stale = await tasks.fail_stale_running(utc_now() - timedelta(seconds=stale_after))

    counts = {"stale_failed": len(stale), "processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}

    for session_id in await tasks.pending_sessions(max_sessions):
        task = await tasks.next_pending(session_id)
        if task is None:
            continue

        logger.info(f"Sweep driving task {task.id} ({task.type.value}) in session {session_id}")
        outcome = await continuation.process(task.id)
        counts["processed"] += 1
        if outcome.status == ExecutionStatus.SUCCEEDED:
            counts["succeeded"] += 1
        elif outcome.status == ExecutionStatus.FAILED:
            counts["failed"] += 1
        else:
            counts["skipped"] += 1

    logger.info(f"Recovery sweep finished: {counts}")
    return counts
