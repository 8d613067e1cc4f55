"""
Database cluster API endpoints.

DatabaseCluster objects are proxied to the registered Kubernetes cluster.
Backup storages and monitoring instances they reference are materialized in
the cluster's namespace before the object is created or updated.

URL Pattern: /api/v1/kubernetes/{kubernetes_id}/database-clusters
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path, Response, status

from app.api.deps import get_database_cluster_service
from app.models.database_cluster import DatabaseCluster
from app.services.database_cluster_service import DatabaseClusterService

router = APIRouter()


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_database_cluster(
    cluster: DatabaseCluster,
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    service: DatabaseClusterService = Depends(get_database_cluster_service),
) -> Dict[str, Any]:
    created = await service.create(kubernetes_id, cluster)
    return created.to_k8s()


@router.get("/")
async def list_database_clusters(
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    service: DatabaseClusterService = Depends(get_database_cluster_service),
) -> List[Dict[str, Any]]:
    return [c.to_k8s() for c in await service.list(kubernetes_id)]


@router.get("/{name}")
async def get_database_cluster(
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    name: str = Path(..., description="Database cluster name"),
    service: DatabaseClusterService = Depends(get_database_cluster_service),
) -> Dict[str, Any]:
    cluster = await service.get(kubernetes_id, name)
    return cluster.to_k8s()


@router.put("/{name}")
async def update_database_cluster(
    cluster: DatabaseCluster,
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    name: str = Path(..., description="Database cluster name"),
    service: DatabaseClusterService = Depends(get_database_cluster_service),
) -> Dict[str, Any]:
    """
    Replace a database cluster.

    Configs no longer referenced are released in the background after the
    response is sent.
    """
    updated = await service.update(kubernetes_id, name, cluster)
    return updated.to_k8s()


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_database_cluster(
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    name: str = Path(..., description="Database cluster name"),
    service: DatabaseClusterService = Depends(get_database_cluster_service),
):
    await service.delete(kubernetes_id, name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
