"""
Main FastAPI application entry point.
DBaaS control plane: registers Kubernetes clusters, backup storages and
monitoring instances, and keeps the configs database clusters reference
materialized in Kubernetes.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.config.database import Database
from app.config.logging import configure_logging, get_logger
from app.config.settings import settings
from app.core.task_group import BackgroundTaskGroup
from app.exceptions import DBaaSException
from app.api.v1 import (
    backup_storages,
    database_clusters,
    health,
    kubernetes_clusters,
    monitoring_instances,
)
from app.repositories.metadata_store import MongoMetadataStore
from app.repositories.models import METADATA_DOCUMENTS, VAULT_DOCUMENTS
from app.repositories.secrets_vault import MongoSecretsVault
from app.services.backup_storage_service import BackupStorageService
from app.services.connectivity import PMMClient, StorageAccessChecker
from app.services.database_cluster_service import DatabaseClusterService
from app.services.kubernetes_client import KubernetesClientFactory
from app.services.kubernetes_cluster_service import KubernetesClusterService
from app.services.monitoring_instance_service import MonitoringInstanceService

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Initialize Sentry for error tracking (production)
if settings.sentry_dsn and settings.is_production:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        environment=settings.environment,
        release=settings.app_version,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.
    Handles startup and shutdown events.

    Shutdown order matters: background cleanups still use the Kubernetes
    clients and the stores, so they are drained before either is closed.
    """
    logger.info(
        "application_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    try:
        logger.info("initializing_mongodb_connection")
        await Database.connect_db(METADATA_DOCUMENTS, VAULT_DOCUMENTS)
        logger.info("mongodb_initialized_successfully")
    except Exception as e:
        logger.error("application_startup_failed", error=str(e))
        raise

    store = MongoMetadataStore(Database.client, use_transactions=settings.mongodb_use_transactions)
    vault = MongoSecretsVault()
    clients = KubernetesClientFactory(store, vault)
    tasks = BackgroundTaskGroup()

    app.state.task_group = tasks
    app.state.kubernetes_clients = clients
    app.state.kubernetes_cluster_service = KubernetesClusterService(store, vault, clients)
    app.state.database_cluster_service = DatabaseClusterService(store, vault, clients, tasks)
    app.state.backup_storage_service = BackupStorageService(
        store, vault, clients, access_checker=StorageAccessChecker()
    )
    app.state.monitoring_instance_service = MonitoringInstanceService(
        store, vault, clients, pmm=PMMClient()
    )

    logger.info("application_started", version=settings.app_version)

    yield

    logger.info("application_shutting_down")

    drained = await tasks.shutdown(timeout=settings.shutdown_timeout_seconds)
    if not drained:
        logger.warning("background_tasks_abandoned", pending=tasks.pending)

    try:
        await clients.close()
    except Exception as e:
        logger.error("kubernetes_clients_close_error", error=str(e))

    try:
        await Database.close_db()
    except Exception as e:
        logger.error("mongodb_close_error", error=str(e))

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Database as a Service control plane for Kubernetes database operators",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


# Exception handlers
@app.exception_handler(DBaaSException)
async def dbaas_exception_handler(request: Request, exc: DBaaSException) -> JSONResponse:
    """Handle custom DBaaS exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "dbaas_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "details": exc.details,
                "status_code": exc.status_code,
            }
        },
    )


def _sanitize_errors(errors):
    """Sanitize Pydantic validation errors to be JSON serializable."""
    sanitized = []
    for error in errors:
        sanitized_error = {}
        for key, value in error.items():
            if key == 'ctx' and isinstance(value, dict):
                sanitized_error[key] = {k: str(v) for k, v in value.items()}
            elif key == 'input':
                # may carry credentials
                continue
            elif isinstance(value, (str, int, float, bool, type(None))):
                sanitized_error[key] = value
            elif isinstance(value, (list, tuple)):
                sanitized_error[key] = list(value)
            else:
                sanitized_error[key] = str(value)
        sanitized.append(sanitized_error)
    return sanitized


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    errors = _sanitize_errors(exc.errors())

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "details": errors,
                "status_code": 422,
            }
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "details": {} if settings.is_production else {"error": str(exc)},
                "status_code": 500,
            }
        },
    )


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests."""
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client=request.client.host if request.client else None,
    )

    response = await call_next(request)

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
    )

    return response


# Initialize Prometheus metrics
if settings.prometheus_enabled:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


# Include routers
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(kubernetes_clusters.router, prefix="/api/v1/kubernetes", tags=["Kubernetes Clusters"])
app.include_router(
    database_clusters.router,
    prefix="/api/v1/kubernetes/{kubernetes_id}/database-clusters",
    tags=["Database Clusters"],
)
app.include_router(backup_storages.router, prefix="/api/v1/backup-storages", tags=["Backup Storages"])
app.include_router(
    monitoring_instances.router, prefix="/api/v1/monitoring-instances", tags=["Monitoring Instances"]
)


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "status": "running",
        "docs": "/docs" if not settings.is_production else "disabled",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(settings.shutdown_timeout_seconds),
    )
