"""
Steps shared by the backup storage and monitoring instance services.

Both kinds of config follow the same lifecycle across the three stores:
secrets are written to the vault before the record points at them, the
materialized copies are refreshed in every registered Kubernetes cluster
after the record changed, and superseded secrets are removed last.
"""
from typing import Callable, List, Sequence

from app.config.logging import get_logger
from app.core.best_effort import best_effort
from app.core.saga import Saga
from app.exceptions import (
    ConfigInUseError,
    ConsistencyError,
    DBaaSException,
    MaterializationError,
    OperationalError,
)
from app.repositories.metadata_store import MetadataStore
from app.repositories.secrets_vault import SecretsVault
from app.services.config_materializer import ConfigKind, ConfigMaterializer, ConfigRecord
from app.services.kubernetes_client import KubernetesClient, KubernetesClientFactory

logger = get_logger(__name__)


class ConfigLifecycleService:
    """Base for services owning a kind of shared config."""

    kind: ConfigKind

    def __init__(
        self,
        store: MetadataStore,
        vault: SecretsVault,
        clients: KubernetesClientFactory,
        materializer_factory: Callable[[KubernetesClient], ConfigMaterializer] = ConfigMaterializer,
    ):
        self.store = store
        self.vault = vault
        self.clients = clients
        self.materializer_factory = materializer_factory

    def add_secret_step(self, saga: Saga, step: str, secret_id: str, value: str) -> None:
        """Write a secret as a saga step, deleting it again on rollback."""
        saga.step(
            step,
            lambda: self.vault.create_secret(secret_id, value),
            lambda: self.vault.delete_secret(secret_id),
        )

    async def update_materialized(self, record: ConfigRecord) -> None:
        """
        Refresh the materialized config in every cluster where it is deployed.

        Every cluster is attempted even if an earlier one failed.

        Raises:
            MaterializationError: If any cluster could not be updated
        """
        clusters = await self.store.list_kubernetes_clusters()
        if not clusters:
            logger.info("no_kubernetes_clusters_to_update", kind=self.kind.value, name=record.name)
            return

        failed: List[str] = []
        for cluster in clusters:
            try:
                kube = await self.clients.get(cluster.id)
                updated = await self.materializer_factory(kube).update_in_place(record, self.vault.get_secret)
            except DBaaSException as e:
                logger.error(
                    "materialized_config_update_failed",
                    kind=self.kind.value,
                    name=record.name,
                    kubernetes_id=cluster.id,
                    error=e.message,
                )
                failed.append(cluster.id)
                continue
            if not updated:
                logger.debug("materialized_config_not_deployed", kind=self.kind.value, name=record.name,
                             kubernetes_id=cluster.id)

        if failed:
            raise MaterializationError(
                self.kind.value,
                record.name,
                f"could not update config on Kubernetes clusters {', '.join(failed)}",
                details={"kind": self.kind.value, "name": record.name, "kubernetes_ids": failed},
            )

    async def delete_materialized(self, name: str) -> None:
        """
        Delete the materialized config from every registered cluster.

        All clusters are checked before anything is deleted, so a config in
        use anywhere is left in place everywhere.

        Raises:
            OperationalError: If no Kubernetes cluster is registered
            ConfigInUseError: If a database cluster still references the config
            MaterializationError: If a check or a deletion failed
        """
        clusters = await self.store.list_kubernetes_clusters()
        if not clusters:
            raise OperationalError("No registered Kubernetes clusters available")

        materializers = []
        for cluster in clusters:
            materializer = self.materializer_factory(await self.clients.get(cluster.id))
            try:
                used = await materializer.in_use_check(self.kind)(name)
            except DBaaSException as e:
                raise MaterializationError(self.kind.value, name, f"in-use check failed: {e.message}")
            if used:
                raise ConfigInUseError(self.kind.value, name, cluster.id)
            materializers.append(materializer)

        for materializer in materializers:
            await materializer.delete_if_unreferenced(self.kind, name, materializer.in_use_check(self.kind))

    async def delete_superseded_secrets(self, secret_ids: Sequence[str], name: str) -> None:
        """Remove secrets the record no longer points at. Failures only leave orphans."""
        for secret_id in secret_ids:
            await best_effort(
                self.vault.delete_secret(secret_id),
                "superseded_secret_delete_failed",
                kind=self.kind.value,
                name=name,
                secret_id=secret_id,
            )

    async def delete_owned_secrets(self, secret_ids: Sequence[str], name: str) -> None:
        """
        Remove the secrets of a record that was already deleted.

        Raises:
            ConsistencyError: If any secret could not be deleted
        """
        failed = []
        for secret_id in secret_ids:
            try:
                await self.vault.delete_secret(secret_id)
            except Exception as e:
                logger.error(
                    "secret_delete_failed_after_record_removed",
                    kind=self.kind.value,
                    name=name,
                    secret_id=secret_id,
                    error=str(e),
                )
                failed.append(secret_id)

        if failed:
            raise ConsistencyError(
                f"{self.kind.value} '{name}' was deleted but its secrets could not be removed",
                details={"name": name, "secret_ids": failed},
            )
