"""
Tracking of background cleanup tasks.

Cleanups that run after a response was sent are not owned by any request.
The application lifespan owns one BackgroundTaskGroup: services spawn into
it, and shutdown closes it and waits for in-flight tasks before the store
connections are released.
"""
import asyncio
from typing import Any, Coroutine, Optional, Set

from app.config.logging import get_logger

logger = get_logger(__name__)


class BackgroundTaskGroup:
    """
    Registry of fire-and-forget tasks with a closable, drainable lifecycle.

    A task is registered before spawn() returns, and spawning is refused
    once shutdown has started, so draining cannot miss a task.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> Optional[asyncio.Task]:
        """
        Schedule a coroutine as a tracked background task.

        Args:
            coro: Coroutine to run; it must handle its own expected errors
            name: Task name used in logs

        Returns:
            The created task, or None if the group is closed
        """
        if self._closed:
            coro.close()
            logger.error("background_task_rejected_during_shutdown", task=name)
            return None

        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("background_task_spawned", task=name, pending=len(self._tasks))
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning("background_task_cancelled", task=name)
            raise
        except Exception as e:
            logger.error("background_task_failed", task=name, error=str(e), exc_info=True)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all tasks currently in flight.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)

        Returns:
            True if every task finished, False if the deadline passed first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            _, pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            if pending:
                logger.warning("background_tasks_drain_timeout", pending=len(pending))
                return False
        return True

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Refuse new tasks and wait for in-flight ones.

        Background cleanups are never cancelled here; the caller owns the
        overall deadline.
        """
        self._closed = True
        logger.info("background_tasks_draining", pending=len(self._tasks), timeout=timeout)
        drained = await self.drain(timeout)
        if drained:
            logger.info("background_tasks_drained")
        return drained
