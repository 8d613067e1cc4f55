"""
Health check endpoints for monitoring and orchestration.
Provides liveness, readiness and startup endpoints.

Readiness covers what requests need: the metadata database, the secrets
vault database, and a background task group that still accepts cleanups.
"""
from datetime import datetime

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.config.database import Database
from app.config.settings import settings

router = APIRouter()


def _healthy(ok: bool) -> str:
    return "healthy" if ok else "unhealthy"


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness check.
    Indicates whether the application should be restarted.
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness check.

    Not ready while either database is unreachable, or once shutdown has
    closed the background task group (cleanups would be rejected).
    """
    metadata_ok = await Database.ping()
    vault_ok = await Database.ping_vault()
    tasks = getattr(request.app.state, "task_group", None)
    shutting_down = tasks is not None and tasks.closed

    content = {
        "status": "ready",
        "database": _healthy(metadata_ok),
        "vault": _healthy(vault_ok),
        "background_tasks": tasks.pending if tasks is not None else 0,
        "timestamp": datetime.utcnow().isoformat(),
    }

    if shutting_down:
        content["status"] = "shutting_down"
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)
    if not (metadata_ok and vault_ok):
        content["status"] = "not_ready"
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)
    return content


@router.get("/startup")
async def startup():
    """
    Kubernetes startup check.
    Started once the metadata database connection is up.
    """
    if not await Database.ping():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "starting",
                "database": "connecting",
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return {
        "status": "started",
        "database": "connected",
        "timestamp": datetime.utcnow().isoformat(),
    }
