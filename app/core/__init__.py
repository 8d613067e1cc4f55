"""
Core building blocks for the reconciliation engine.

This package provides the primitives the services compose:
- Saga: ordered steps with compensating actions across independent stores
- best_effort: explicit wrapper for cleanups that must never propagate
- BackgroundTaskGroup: tracking of fire-and-forget cleanup tasks for shutdown
"""

# Users should import directly from submodules:
# from app.core.saga import Saga
# from app.core.best_effort import best_effort
# from app.core.task_group import BackgroundTaskGroup

__all__ = [
    "Saga",
    "best_effort",
    "BackgroundTaskGroup",
]
