"""
Pydantic models for registered Kubernetes clusters.
"""

from pydantic import BaseModel, Field

from app.config.settings import settings


class KubernetesClusterRecord(BaseModel):
    """Kubernetes cluster as persisted in the metadata store."""

    id: str
    name: str
    namespace: str
    kubeconfig_secret_id: str = Field(..., description="Vault id of the kubeconfig")


class KubernetesClusterCreateRequest(BaseModel):
    """Request model for registering a Kubernetes cluster."""

    name: str = Field(..., min_length=1, max_length=100)
    namespace: str = Field(
        default_factory=lambda: settings.k8s_namespace,
        min_length=1,
        max_length=63,
        description="Namespace where configs and database clusters live",
    )
    kubeconfig: str = Field(..., min_length=1, description="Kubeconfig, raw YAML or base64 encoded")


class KubernetesClusterResponse(BaseModel):
    """Kubernetes cluster as returned by the API."""

    id: str
    name: str
    namespace: str

    @classmethod
    def from_record(cls, record: KubernetesClusterRecord) -> "KubernetesClusterResponse":
        return cls(id=record.id, name=record.name, namespace=record.namespace)
