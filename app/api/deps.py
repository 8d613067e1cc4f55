"""
FastAPI dependencies resolving the services built by the application lifespan.
"""
from fastapi import Request

from app.services.backup_storage_service import BackupStorageService
from app.services.database_cluster_service import DatabaseClusterService
from app.services.kubernetes_cluster_service import KubernetesClusterService
from app.services.monitoring_instance_service import MonitoringInstanceService


def get_kubernetes_cluster_service(request: Request) -> KubernetesClusterService:
    return request.app.state.kubernetes_cluster_service


def get_database_cluster_service(request: Request) -> DatabaseClusterService:
    return request.app.state.database_cluster_service


def get_backup_storage_service(request: Request) -> BackupStorageService:
    return request.app.state.backup_storage_service


def get_monitoring_instance_service(request: Request) -> MonitoringInstanceService:
    return request.app.state.monitoring_instance_service
