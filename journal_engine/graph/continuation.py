"""
Chain continuation.

After a task completes, the next task of the session is started in a new,
independent invocation: a POST to the internal process endpoint authenticated
with the shared secret. Without a public base URL (local development, tests)
the next task runs in-process in a detached asyncio task instead.
"""
import asyncio
from typing import Callable, Optional, Set

import aiohttp

from journal_engine.core.config import settings
from journal_engine.core.errors import DispatchFailure
from journal_engine.core.logging import logger
from journal_engine.graph.executor import ExecutionOutcome, ExecutionStatus, TaskExecutor


ExecutorFactory = Callable[[], TaskExecutor]


class ChainContinuation:
    """Drives a session's chain one task per invocation."""

    def __init__(
        self,
        executor_factory: ExecutorFactory,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.executor_factory = executor_factory
        self.base_url = base_url if base_url is not None else settings.APP_BASE_URL
        self.secret = secret if secret is not None else settings.INTERNAL_TASK_SECRET
        self.timeout = timeout if timeout is not None else settings.CONTINUATION_TIMEOUT_SECONDS
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def remote(self) -> bool:
        return bool(self.base_url and self.secret)

    async def process(self, task_id: str) -> ExecutionOutcome:
        """
        Execute one task, then dispatch whatever the session should run next.

        The successor, if one was created. Otherwise, once the session is idle
        again, its lowest pending task (a chain enqueued while this one ran).
        """
        executor = self.executor_factory()
        outcome = await executor.execute(task_id)

        if outcome.successor is not None:
            self.dispatch(outcome.successor.id)
        elif outcome.status != ExecutionStatus.SKIPPED and outcome.task is not None:
            next_task = await executor.tasks.next_pending(outcome.task.session_id)
            if next_task is not None:
                logger.info(f"Session {next_task.session_id} has queued task {next_task.id}, continuing")
                self.dispatch(next_task.id)

        return outcome

    def dispatch(self, task_id: str) -> None:
        """Start a task without waiting for it."""
        if self.remote:
            coro = self._trigger_detached(task_id)
        else:
            coro = self._process_detached(task_id)

        job = asyncio.create_task(coro)
        self._in_flight.add(job)
        job.add_done_callback(self._in_flight.discard)
        logger.debug(f"Dispatched task {task_id} ({'remote' if self.remote else 'in-process'})")

    async def trigger(self, task_id: str) -> None:
        """
        POST the internal process endpoint for a task.

        Raises:
            DispatchFailure: If the request could not be delivered or was rejected
        """
        url = f"{self.base_url}{settings.API_PREFIX}/tasks/{task_id}/process"
        headers = {"Authorization": f"Bearer {self.secret}"}
        # Only connecting is bounded; the remote invocation runs the whole handler
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, headers=headers) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise DispatchFailure(task_id, f"HTTP {response.status} {body}")
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DispatchFailure(task_id, str(e) or type(e).__name__) from e

        if data and not data.get("ok", True):
            logger.warning(f"Task {task_id} ran remotely and failed: {data.get('error')}")

    async def _trigger_detached(self, task_id: str) -> None:
        try:
            await self.trigger(task_id)
        except DispatchFailure as e:
            logger.warning(f"{e.message}; task stays pending for the recovery sweep")

    async def _process_detached(self, task_id: str) -> None:
        try:
            await self.process(task_id)
        except Exception as e:
            logger.exception(f"Error processing task {task_id} in-process: {e}")

    async def drain(self) -> None:
        """Wait until no dispatched task is in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
