"""
Beanie document models for MongoDB collections.
These are the ORM models that map to MongoDB collections.
"""
from datetime import datetime
from typing import Optional
from uuid import uuid4

from beanie import Document, Indexed
from pydantic import Field

from app.models.backup_storage import BackupStorageType
from app.models.monitoring_instance import MonitoringInstanceType


class BackupStorage(Document):
    """Backup storage document model. The name is the natural key."""

    name: Indexed(str, unique=True)  # type: ignore
    type: BackupStorageType
    bucket_name: str
    region: str
    url: Optional[str] = None
    description: Optional[str] = None
    access_key_id: str
    secret_key_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "backup_storages"
        indexes = ["type"]


class MonitoringInstance(Document):
    """Monitoring instance document model. The name is the natural key."""

    name: Indexed(str, unique=True)  # type: ignore
    type: MonitoringInstanceType = MonitoringInstanceType.PMM
    url: str
    api_key_secret_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "monitoring_instances"


class KubernetesCluster(Document):
    """Registered Kubernetes cluster document model."""

    id: Indexed(str) = Field(default_factory=lambda: f"k8s-{uuid4().hex[:12]}")  # type: ignore
    name: Indexed(str, unique=True)  # type: ignore
    namespace: str
    kubeconfig_secret_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "kubernetes_clusters"


class Secret(Document):
    """Credential material, addressed by a generated id. Stored in the vault database."""

    id: str  # type: ignore
    value: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "secrets"


METADATA_DOCUMENTS = [BackupStorage, MonitoringInstance, KubernetesCluster]
VAULT_DOCUMENTS = [Secret]
