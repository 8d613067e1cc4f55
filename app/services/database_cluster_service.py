"""
Database cluster service: the reconciliation engine.

Creating, updating or deleting a DatabaseCluster changes which shared
configs a Kubernetes namespace needs. Configs a cluster starts to reference
are materialized before the cluster mutation is sent to Kubernetes; configs
it stops referencing are released afterwards by background tasks, and only
if no other cluster in the namespace still refers to them.
"""
import re
from typing import Callable, Iterable, List, Optional

from app.config.logging import get_logger
from app.core.best_effort import best_effort
from app.core.saga import Saga
from app.core.task_group import BackgroundTaskGroup
from app.exceptions import ConfigInUseError, ValidationError
from app.models.backup_storage import NAME_PATTERN
from app.models.database_cluster import DatabaseCluster
from app.repositories.metadata_store import MetadataStore
from app.repositories.secrets_vault import SecretsVault
from app.services.config_materializer import ConfigKind, ConfigMaterializer
from app.services.kubernetes_client import KubernetesClient, KubernetesClientFactory
from app.services.references import resolve
from app.utils.version import check_version_change

logger = get_logger(__name__)

MAX_NAME_LENGTH = 63


def validate_database_cluster(cluster: DatabaseCluster) -> None:
    """
    Check a requested DatabaseCluster before anything is materialized.

    Raises:
        ValidationError: If the object cannot be accepted
    """
    name = cluster.metadata.name
    if not name or len(name) > MAX_NAME_LENGTH or not re.match(NAME_PATTERN, name):
        raise ValidationError(
            f"metadata.name '{name}' must be a DNS-1123 label of at most {MAX_NAME_LENGTH} characters"
        )

    spec = cluster.spec
    if spec is None:
        raise ValidationError("spec is required")

    if spec.data_source and spec.data_source.backup_source:
        if not spec.data_source.backup_source.backup_storage_name:
            raise ValidationError("spec.dataSource.backupSource.backupStorageName is required")

    if spec.backup and spec.backup.schedules:
        seen = set()
        for schedule in spec.backup.schedules:
            if not schedule.backup_storage_name:
                raise ValidationError(f"schedule '{schedule.name}': backupStorageName is required")
            if schedule.name in seen:
                raise ValidationError(f"duplicate schedule name '{schedule.name}'")
            seen.add(schedule.name)


def validate_database_cluster_update(name: str, old: DatabaseCluster, new: DatabaseCluster) -> None:
    """
    Check that the stored cluster may transition to the requested one.

    Raises:
        ValidationError: If the transition is not allowed
    """
    if new.metadata.name != name:
        raise ValidationError(f"metadata.name '{new.metadata.name}' does not match '{name}'")

    if old.spec is None or new.spec is None:
        return

    old_engine, new_engine = old.spec.engine, new.spec.engine
    if old_engine.type != new_engine.type:
        raise ValidationError("Changing the engine type is not allowed")

    if old_engine.version and new_engine.version:
        reason = check_version_change(old_engine.version, new_engine.version)
        if reason:
            raise ValidationError(reason)

    if (old_engine.replicas or 0) > 1 and new_engine.replicas == 1:
        raise ValidationError("Cannot scale down a multi-node cluster to a single node")


class DatabaseClusterService:
    """Create, update, delete and read DatabaseClusters of a registered Kubernetes cluster."""

    def __init__(
        self,
        store: MetadataStore,
        vault: SecretsVault,
        clients: KubernetesClientFactory,
        tasks: BackgroundTaskGroup,
        materializer_factory: Callable[[KubernetesClient], ConfigMaterializer] = ConfigMaterializer,
    ):
        self.store = store
        self.vault = vault
        self.clients = clients
        self.tasks = tasks
        self.materializer_factory = materializer_factory

    async def list(self, kubernetes_id: str) -> List[DatabaseCluster]:
        kube = await self.clients.get(kubernetes_id)
        return await kube.list_database_clusters()

    async def get(self, kubernetes_id: str, name: str) -> DatabaseCluster:
        kube = await self.clients.get(kubernetes_id)
        return await kube.get_database_cluster(name)

    async def create(self, kubernetes_id: str, cluster: DatabaseCluster) -> DatabaseCluster:
        """
        Materialize the referenced configs, then create the cluster.

        Raises:
            ValidationError: If the request is invalid
            NotFoundError: If a referenced config has no record
            MaterializationError: If a config could not be materialized
            KubernetesError: If Kubernetes refused the cluster
        """
        validate_database_cluster(cluster)
        kube = await self.clients.get(kubernetes_id)
        materializer = self.materializer_factory(kube)
        refs = resolve(cluster)

        await self._ensure_backup_storages(materializer, refs.backup_storages, cluster.name)
        if refs.monitoring:
            await self._ensure_monitoring(materializer, refs.monitoring)

        created = await kube.create_database_cluster(cluster)
        logger.info(
            "database_cluster_created",
            name=cluster.name,
            kubernetes_id=kubernetes_id,
            backup_storages=sorted(refs.backup_storages),
            monitoring=refs.monitoring,
        )
        return created

    async def update(self, kubernetes_id: str, name: str, cluster: DatabaseCluster) -> DatabaseCluster:
        """
        Materialize newly referenced configs, replace the cluster, then
        release the configs it no longer references in the background.
        """
        validate_database_cluster(cluster)
        kube = await self.clients.get(kubernetes_id)
        old = await kube.get_database_cluster(name)
        validate_database_cluster_update(name, old, cluster)

        materializer = self.materializer_factory(kube)
        new_refs, old_refs = resolve(cluster), resolve(old)

        await self._ensure_backup_storages(
            materializer, new_refs.backup_storages - old_refs.backup_storages, name
        )
        if new_refs.monitoring and new_refs.monitoring != old_refs.monitoring:
            await self._ensure_monitoring(materializer, new_refs.monitoring)

        if cluster.metadata.resource_version is None:
            cluster.metadata.resource_version = old.metadata.resource_version
        updated = await kube.replace_database_cluster(cluster)
        logger.info("database_cluster_updated", name=name, kubernetes_id=kubernetes_id)

        released_monitoring = old_refs.monitoring if old_refs.monitoring != new_refs.monitoring else ""
        self._spawn_cleanup(
            materializer,
            old_refs.backup_storages - new_refs.backup_storages,
            released_monitoring,
            name,
        )
        return updated

    async def delete(self, kubernetes_id: str, name: str) -> None:
        """Delete the cluster, then release all of its configs in the background."""
        kube = await self.clients.get(kubernetes_id)
        old = await kube.get_database_cluster(name)

        await kube.delete_database_cluster(name)
        logger.info("database_cluster_deleted", name=name, kubernetes_id=kubernetes_id)

        refs = resolve(old)
        self._spawn_cleanup(self.materializer_factory(kube), refs.backup_storages, refs.monitoring, name)

    async def _ensure_backup_storages(
        self, materializer: ConfigMaterializer, names: Iterable[str], cluster_name: str
    ) -> None:
        """Materialize storages in name order; on the first failure roll back the ones already done."""
        saga = Saga(
            "database_cluster.materialize_backup_storages",
            cluster=cluster_name,
            kubernetes_id=materializer.kube.kubernetes_id,
        )
        for storage in sorted(names):
            saga.step(
                storage,
                lambda storage=storage: self._ensure_backup_storage(materializer, storage),
                lambda storage=storage: self._release(materializer, ConfigKind.BACKUP_STORAGE, storage),
            )
        await saga.run()

    async def _ensure_backup_storage(self, materializer: ConfigMaterializer, name: str) -> None:
        record = await self.store.get_backup_storage(name)
        await materializer.ensure_exists(record, self.vault.get_secret)

    async def _ensure_monitoring(self, materializer: ConfigMaterializer, name: str) -> None:
        record = await self.store.get_monitoring_instance(name)
        await materializer.ensure_exists(record, self.vault.get_secret)

    async def _release(self, materializer: ConfigMaterializer, kind: ConfigKind, name: str) -> None:
        """Delete a materialized config unless it is still used; being in use is not an error here."""
        try:
            await materializer.delete_if_unreferenced(kind, name, materializer.in_use_check(kind))
        except ConfigInUseError:
            logger.debug(
                "materialized_config_still_in_use",
                kind=kind.value,
                name=name,
                kubernetes_id=materializer.kube.kubernetes_id,
            )

    def _spawn_cleanup(
        self,
        materializer: ConfigMaterializer,
        backup_storages: Iterable[str],
        monitoring: Optional[str],
        cluster_name: str,
    ) -> None:
        storages = sorted(backup_storages)
        if not storages and not monitoring:
            return
        self.tasks.spawn(
            self._cleanup(materializer, storages, monitoring),
            name=f"release-configs-{cluster_name}",
        )

    async def _cleanup(
        self, materializer: ConfigMaterializer, backup_storages: List[str], monitoring: Optional[str]
    ) -> None:
        kubernetes_id = materializer.kube.kubernetes_id
        for name in backup_storages:
            await best_effort(
                self._release(materializer, ConfigKind.BACKUP_STORAGE, name),
                "backup_storage_cleanup_failed",
                name=name,
                kubernetes_id=kubernetes_id,
            )
        if monitoring:
            await best_effort(
                self._release(materializer, ConfigKind.MONITORING_CONFIG, monitoring),
                "monitoring_config_cleanup_failed",
                name=monitoring,
                kubernetes_id=kubernetes_id,
            )
