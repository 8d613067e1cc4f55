"""
Kubernetes cluster service: registration of the clusters database clusters run on.

The kubeconfig is kept in the secrets vault; the metadata record only holds
its id and the namespace configs are materialized into.
"""
from typing import List
from uuid import uuid4

from app.config.logging import get_logger
from app.core.saga import Saga
from app.exceptions import ConflictError, ConsistencyError
from app.models.kubernetes_cluster import KubernetesClusterCreateRequest, KubernetesClusterRecord
from app.repositories.metadata_store import MetadataStore
from app.repositories.secrets_vault import SecretsVault
from app.services.kubernetes_client import KubernetesClientFactory, decode_kubeconfig

logger = get_logger(__name__)


class KubernetesClusterService:
    """Register, list, read and unregister Kubernetes clusters."""

    def __init__(self, store: MetadataStore, vault: SecretsVault, clients: KubernetesClientFactory):
        self.store = store
        self.vault = vault
        self.clients = clients

    async def list(self) -> List[KubernetesClusterRecord]:
        return await self.store.list_kubernetes_clusters()

    async def get(self, kubernetes_id: str) -> KubernetesClusterRecord:
        return await self.store.get_kubernetes_cluster(kubernetes_id)

    async def register(self, request: KubernetesClusterCreateRequest) -> KubernetesClusterRecord:
        """
        Register a Kubernetes cluster after checking its kubeconfig can reach the namespace.

        Raises:
            ConflictError: If the name is taken
            ValidationError: If the kubeconfig is invalid or the namespace unreachable
        """
        existing = await self.store.list_kubernetes_clusters()
        if any(c.name == request.name for c in existing):
            raise ConflictError(f"Kubernetes cluster '{request.name}' already exists")

        kubeconfig = decode_kubeconfig(request.kubeconfig)
        await self.clients.validate_kubeconfig(kubeconfig, request.namespace)

        record = KubernetesClusterRecord(
            id=f"k8s-{uuid4().hex[:12]}",
            name=request.name,
            namespace=request.namespace,
            kubeconfig_secret_id=str(uuid4()),
        )

        saga = Saga("kubernetes_cluster.register", name=request.name)
        saga.step(
            "store_kubeconfig",
            lambda: self.vault.create_secret(record.kubeconfig_secret_id, kubeconfig),
            lambda: self.vault.delete_secret(record.kubeconfig_secret_id),
        )
        saga.step("create_record", lambda: self.store.create_kubernetes_cluster(record))
        await saga.run()

        logger.info("kubernetes_cluster_registered", kubernetes_id=record.id, name=record.name,
                    namespace=record.namespace)
        return record

    async def unregister(self, kubernetes_id: str) -> None:
        """
        Remove a Kubernetes cluster registration. Nothing is deleted in the cluster itself.

        Raises:
            NotFoundError: If the cluster is not registered
            ConsistencyError: If the kubeconfig could not be removed from the vault
        """
        record = await self.store.get_kubernetes_cluster(kubernetes_id)

        async with self.store.transaction() as session:
            await self.store.delete_kubernetes_cluster(kubernetes_id, session=session)
        await self.clients.invalidate(kubernetes_id)

        try:
            await self.vault.delete_secret(record.kubeconfig_secret_id)
        except Exception as e:
            logger.error(
                "secret_delete_failed_after_record_removed",
                kubernetes_id=kubernetes_id,
                secret_id=record.kubeconfig_secret_id,
                error=str(e),
            )
            raise ConsistencyError(
                f"Kubernetes cluster '{record.name}' was unregistered but its kubeconfig could not be removed",
                details={"kubernetes_id": kubernetes_id, "secret_ids": [record.kubeconfig_secret_id]},
            )

        logger.info("kubernetes_cluster_unregistered", kubernetes_id=kubernetes_id, name=record.name)
