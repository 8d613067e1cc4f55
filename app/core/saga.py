"""
Compensating-action sequences across stores without a shared transaction.

The metadata store, the secrets vault and Kubernetes cannot commit
atomically together. Multi-store operations are therefore written as an
ordered list of steps, each carrying the action that undoes it. When a step
fails, the compensations of every step that already completed run in
reverse order (best-effort) and the original error is re-raised.

Usage:
    >>> saga = Saga("backup_storage.create", name="s3-main")
    >>> saga.step("store_access_key", store_access_key, delete_access_key)
    >>> saga.step("store_secret_key", store_secret_key, delete_secret_key)
    >>> saga.step("create_record", create_record)
    >>> await saga.run()
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from app.config.logging import get_logger
from app.core.best_effort import best_effort

logger = get_logger(__name__)

Action = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class SagaStep:
    """A single forward action and the action compensating it."""

    name: str
    action: Action
    compensation: Optional[Action] = None


class Saga:
    """Ordered {action, compensation} pairs executed front to back."""

    def __init__(self, name: str, /, **context: Any):
        self.name = name
        self.steps: List[SagaStep] = []
        self._context = context

    def step(self, name: str, action: Action, compensation: Optional[Action] = None) -> "Saga":
        """Append a step. Returns the saga for chaining."""
        self.steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    async def run(self) -> List[Any]:
        """
        Execute all steps in order.

        Returns:
            Results of each step's action, in order

        Raises:
            Exception: The error of the first failing step, after compensation
        """
        completed: List[SagaStep] = []
        results: List[Any] = []

        for step in self.steps:
            try:
                results.append(await step.action())
            except Exception as e:
                logger.warning(
                    "saga_step_failed",
                    saga=self.name,
                    step=step.name,
                    completed_steps=[s.name for s in completed],
                    error=str(e),
                    **self._context,
                )
                await self._compensate(completed)
                raise
            completed.append(step)

        return results

    async def _compensate(self, completed: List[SagaStep]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            ok = await best_effort(
                step.compensation(),
                "saga_compensation_failed",
                saga=self.name,
                step=step.name,
                **self._context,
            )
            if ok:
                logger.info("saga_step_compensated", saga=self.name, step=step.name, **self._context)
