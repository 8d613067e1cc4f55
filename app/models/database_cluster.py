"""
Pydantic models for the DatabaseCluster custom resource.

The resource is owned by the database operator; this service only reads the
fields it needs to resolve config references and validate transitions.
Field names follow the Kubernetes camelCase wire format through aliases, and
unknown fields are kept so bodies pass through to the API server unchanged.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

EVEREST_GROUP = "everest.percona.com"
EVEREST_VERSION = "v1alpha1"
EVEREST_API_VERSION = f"{EVEREST_GROUP}/{EVEREST_VERSION}"


class EngineType(str, Enum):
    """Database engines managed by the operator."""

    PXC = "pxc"
    PSMDB = "psmdb"
    POSTGRESQL = "postgresql"


class ResourceModel(BaseModel):
    """Base for custom-resource fragments."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ObjectMeta(ResourceModel):
    name: str
    namespace: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None


class Engine(ResourceModel):
    type: EngineType
    version: Optional[str] = None
    replicas: Optional[int] = Field(default=None, ge=1)


class BackupSource(ResourceModel):
    backup_storage_name: Optional[str] = Field(default=None, alias="backupStorageName")
    path: Optional[str] = None


class DataSource(ResourceModel):
    backup_source: Optional[BackupSource] = Field(default=None, alias="backupSource")
    db_cluster_backup_name: Optional[str] = Field(default=None, alias="dbClusterBackupName")


class BackupSchedule(ResourceModel):
    name: str
    enabled: bool = True
    schedule: str
    backup_storage_name: Optional[str] = Field(default=None, alias="backupStorageName")
    keep_copies: Optional[int] = Field(default=None, alias="keepCopies")


class Backup(ResourceModel):
    enabled: bool = False
    schedules: Optional[List[BackupSchedule]] = None


class Monitoring(ResourceModel):
    monitoring_config_name: Optional[str] = Field(default=None, alias="monitoringConfigName")


class DatabaseClusterSpec(ResourceModel):
    engine: Engine
    data_source: Optional[DataSource] = Field(default=None, alias="dataSource")
    backup: Optional[Backup] = None
    monitoring: Optional[Monitoring] = None


class DatabaseCluster(ResourceModel):
    """A DatabaseCluster object, either requested by a caller or read back from Kubernetes."""

    api_version: str = Field(default=EVEREST_API_VERSION, alias="apiVersion")
    kind: str = "DatabaseCluster"
    metadata: ObjectMeta
    spec: Optional[DatabaseClusterSpec] = None
    status: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> str:
        return self.metadata.name

    def to_k8s(self) -> Dict[str, Any]:
        """Serialize to the Kubernetes wire format."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
