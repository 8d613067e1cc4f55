from app.models.backup_storage import BackupStorageRecord, BackupStorageType
from app.models.database_cluster import DatabaseCluster, EngineType
from app.models.kubernetes_cluster import KubernetesClusterRecord
from app.models.monitoring_instance import MonitoringInstanceRecord, MonitoringInstanceType
# Note: the Beanie documents backing these records live in app.repositories.models

__all__ = [
    "BackupStorageRecord",
    "BackupStorageType",
    "DatabaseCluster",
    "EngineType",
    "KubernetesClusterRecord",
    "MonitoringInstanceRecord",
    "MonitoringInstanceType",
]
