"""
Best-effort execution of cleanup steps.

Rollbacks and orphan cleanups are allowed to fail: the inconsistency they
leave behind is accepted and reported through logs only. Wrapping such calls
in best_effort() makes the swallowed error visible at the call site.
"""
from typing import Any, Awaitable

from app.config.logging import get_logger

logger = get_logger(__name__)


async def best_effort(awaitable: Awaitable[Any], event: str, **context: Any) -> bool:
    """
    Await a cleanup step, logging instead of raising on failure.

    Args:
        awaitable: Cleanup coroutine to run
        event: Log event name emitted on failure
        **context: Identifying information for manual remediation

    Returns:
        True if the step succeeded, False if it failed and was logged
    """
    try:
        await awaitable
        return True
    except Exception as e:
        logger.error(
            event,
            error_type=type(e).__name__,
            error=str(e),
            **context,
        )
        return False
