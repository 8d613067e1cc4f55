"""
Kubernetes cluster registration API endpoints.

URL Pattern: /api/v1/kubernetes
"""
from typing import List

from fastapi import APIRouter, Depends, Path, Response, status

from app.api.deps import get_kubernetes_cluster_service
from app.models.kubernetes_cluster import KubernetesClusterCreateRequest, KubernetesClusterResponse
from app.services.kubernetes_cluster_service import KubernetesClusterService

router = APIRouter()


@router.post("/", response_model=KubernetesClusterResponse, status_code=status.HTTP_201_CREATED)
async def register_kubernetes_cluster(
    request: KubernetesClusterCreateRequest,
    service: KubernetesClusterService = Depends(get_kubernetes_cluster_service),
):
    """
    Register a Kubernetes cluster.

    The kubeconfig (raw or base64 encoded YAML) must grant access to the
    namespace. It is stored in the secrets vault and never returned.
    """
    record = await service.register(request)
    return KubernetesClusterResponse.from_record(record)


@router.get("/", response_model=List[KubernetesClusterResponse])
async def list_kubernetes_clusters(
    service: KubernetesClusterService = Depends(get_kubernetes_cluster_service),
):
    return [KubernetesClusterResponse.from_record(r) for r in await service.list()]


@router.get("/{kubernetes_id}", response_model=KubernetesClusterResponse)
async def get_kubernetes_cluster(
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    service: KubernetesClusterService = Depends(get_kubernetes_cluster_service),
):
    return KubernetesClusterResponse.from_record(await service.get(kubernetes_id))


@router.delete("/{kubernetes_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_kubernetes_cluster(
    kubernetes_id: str = Path(..., description="Kubernetes cluster ID"),
    service: KubernetesClusterService = Depends(get_kubernetes_cluster_service),
):
    """Remove the registration. Nothing is deleted inside the cluster."""
    await service.unregister(kubernetes_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
