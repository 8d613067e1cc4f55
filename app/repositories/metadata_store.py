"""
Metadata store: persistent records for backup storages, monitoring instances
and registered Kubernetes clusters.

Records cross this boundary as plain pydantic models; Beanie documents stay
inside the MongoDB implementation. Mutating calls accept the session yielded
by transaction() so multi-step updates commit atomically.
"""
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from beanie.operators import Set
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError

from app.config.logging import get_logger
from app.exceptions import ConflictError, NotFoundError
from app.models.backup_storage import BackupStorageRecord
from app.models.kubernetes_cluster import KubernetesClusterRecord
from app.models.monitoring_instance import MonitoringInstanceRecord
from app.repositories.models import BackupStorage, KubernetesCluster, MonitoringInstance

logger = get_logger(__name__)


class MetadataStore(ABC):
    """Contract consumed by the services. Missing records raise NotFoundError."""

    @abstractmethod
    def transaction(self) -> Any:
        """Async context manager yielding a session for the mutating calls."""

    # Backup storages

    @abstractmethod
    async def get_backup_storage(self, name: str, session: Any = None) -> BackupStorageRecord: ...

    @abstractmethod
    async def list_backup_storages(self) -> List[BackupStorageRecord]: ...

    @abstractmethod
    async def create_backup_storage(self, record: BackupStorageRecord, session: Any = None) -> BackupStorageRecord: ...

    @abstractmethod
    async def update_backup_storage(
        self, name: str, changes: Dict[str, Any], session: Any = None
    ) -> BackupStorageRecord: ...

    @abstractmethod
    async def delete_backup_storage(self, name: str, session: Any = None) -> None: ...

    # Monitoring instances

    @abstractmethod
    async def get_monitoring_instance(self, name: str, session: Any = None) -> MonitoringInstanceRecord: ...

    @abstractmethod
    async def list_monitoring_instances(self) -> List[MonitoringInstanceRecord]: ...

    @abstractmethod
    async def create_monitoring_instance(
        self, record: MonitoringInstanceRecord, session: Any = None
    ) -> MonitoringInstanceRecord: ...

    @abstractmethod
    async def update_monitoring_instance(
        self, name: str, changes: Dict[str, Any], session: Any = None
    ) -> MonitoringInstanceRecord: ...

    @abstractmethod
    async def delete_monitoring_instance(self, name: str, session: Any = None) -> None: ...

    # Kubernetes clusters

    @abstractmethod
    async def get_kubernetes_cluster(self, kubernetes_id: str) -> KubernetesClusterRecord: ...

    @abstractmethod
    async def list_kubernetes_clusters(self) -> List[KubernetesClusterRecord]: ...

    @abstractmethod
    async def create_kubernetes_cluster(
        self, record: KubernetesClusterRecord, session: Any = None
    ) -> KubernetesClusterRecord: ...

    @abstractmethod
    async def delete_kubernetes_cluster(self, kubernetes_id: str, session: Any = None) -> None: ...


def _fields_of(document: Any, record_type: type) -> Dict[str, Any]:
    return document.model_dump(include=set(record_type.model_fields))


class MongoMetadataStore(MetadataStore):
    """Metadata store backed by MongoDB through Beanie."""

    def __init__(self, client: Optional[AsyncIOMotorClient], use_transactions: bool = True):
        self.client = client
        self.use_transactions = use_transactions

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """
        Open a MongoDB client session with a transaction.

        Yields None when transactions are disabled (standalone servers); the
        calls then run one by one without atomicity.
        """
        if not self.use_transactions or self.client is None:
            yield None
            return

        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    # Backup storages

    async def _find_backup_storage(self, name: str, session: Any = None) -> BackupStorage:
        doc = await BackupStorage.find_one(BackupStorage.name == name, session=session)
        if doc is None:
            raise NotFoundError("Backup storage", name)
        return doc

    async def get_backup_storage(self, name: str, session: Any = None) -> BackupStorageRecord:
        doc = await self._find_backup_storage(name, session)
        return BackupStorageRecord(**_fields_of(doc, BackupStorageRecord))

    async def list_backup_storages(self) -> List[BackupStorageRecord]:
        docs = await BackupStorage.find_all().sort("+name").to_list()
        return [BackupStorageRecord(**_fields_of(d, BackupStorageRecord)) for d in docs]

    async def create_backup_storage(self, record: BackupStorageRecord, session: Any = None) -> BackupStorageRecord:
        try:
            await BackupStorage(**record.model_dump()).insert(session=session)
        except DuplicateKeyError:
            raise ConflictError(f"Backup storage '{record.name}' already exists")
        logger.info("backup_storage_record_created", name=record.name)
        return record

    async def update_backup_storage(
        self, name: str, changes: Dict[str, Any], session: Any = None
    ) -> BackupStorageRecord:
        doc = await self._find_backup_storage(name, session)
        await doc.update(Set({**changes, "updated_at": datetime.utcnow()}), session=session)
        logger.info("backup_storage_record_updated", name=name, fields=sorted(changes))
        return await self.get_backup_storage(name, session)

    async def delete_backup_storage(self, name: str, session: Any = None) -> None:
        doc = await self._find_backup_storage(name, session)
        await doc.delete(session=session)
        logger.info("backup_storage_record_deleted", name=name)

    # Monitoring instances

    async def _find_monitoring_instance(self, name: str, session: Any = None) -> MonitoringInstance:
        doc = await MonitoringInstance.find_one(MonitoringInstance.name == name, session=session)
        if doc is None:
            raise NotFoundError("Monitoring instance", name)
        return doc

    async def get_monitoring_instance(self, name: str, session: Any = None) -> MonitoringInstanceRecord:
        doc = await self._find_monitoring_instance(name, session)
        return MonitoringInstanceRecord(**_fields_of(doc, MonitoringInstanceRecord))

    async def list_monitoring_instances(self) -> List[MonitoringInstanceRecord]:
        docs = await MonitoringInstance.find_all().sort("+name").to_list()
        return [MonitoringInstanceRecord(**_fields_of(d, MonitoringInstanceRecord)) for d in docs]

    async def create_monitoring_instance(
        self, record: MonitoringInstanceRecord, session: Any = None
    ) -> MonitoringInstanceRecord:
        try:
            await MonitoringInstance(**record.model_dump()).insert(session=session)
        except DuplicateKeyError:
            raise ConflictError(f"Monitoring instance '{record.name}' already exists")
        logger.info("monitoring_instance_record_created", name=record.name)
        return record

    async def update_monitoring_instance(
        self, name: str, changes: Dict[str, Any], session: Any = None
    ) -> MonitoringInstanceRecord:
        doc = await self._find_monitoring_instance(name, session)
        await doc.update(Set({**changes, "updated_at": datetime.utcnow()}), session=session)
        logger.info("monitoring_instance_record_updated", name=name, fields=sorted(changes))
        return await self.get_monitoring_instance(name, session)

    async def delete_monitoring_instance(self, name: str, session: Any = None) -> None:
        doc = await self._find_monitoring_instance(name, session)
        await doc.delete(session=session)
        logger.info("monitoring_instance_record_deleted", name=name)

    # Kubernetes clusters

    async def get_kubernetes_cluster(self, kubernetes_id: str) -> KubernetesClusterRecord:
        doc = await KubernetesCluster.get(kubernetes_id)
        if doc is None:
            raise NotFoundError("Kubernetes cluster", kubernetes_id)
        return KubernetesClusterRecord(**_fields_of(doc, KubernetesClusterRecord))

    async def list_kubernetes_clusters(self) -> List[KubernetesClusterRecord]:
        docs = await KubernetesCluster.find_all().sort("+created_at").to_list()
        return [KubernetesClusterRecord(**_fields_of(d, KubernetesClusterRecord)) for d in docs]

    async def create_kubernetes_cluster(
        self, record: KubernetesClusterRecord, session: Any = None
    ) -> KubernetesClusterRecord:
        try:
            await KubernetesCluster(**record.model_dump()).insert(session=session)
        except DuplicateKeyError:
            raise ConflictError(f"Kubernetes cluster '{record.name}' already exists")
        logger.info("kubernetes_cluster_record_created", kubernetes_id=record.id, name=record.name)
        return record

    async def delete_kubernetes_cluster(self, kubernetes_id: str, session: Any = None) -> None:
        doc = await KubernetesCluster.get(kubernetes_id, session=session)
        if doc is None:
            raise NotFoundError("Kubernetes cluster", kubernetes_id)
        await doc.delete(session=session)
        logger.info("kubernetes_cluster_record_deleted", kubernetes_id=kubernetes_id)
