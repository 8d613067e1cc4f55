"""
Projection of shared configs into a Kubernetes namespace.

A backup storage becomes a BackupStorage custom object, a monitoring
instance a MonitoringConfig custom object. Each is paired with a Secret of
the same name holding the resolved credentials. The projection is always
recomputed from the metadata store and the vault, so an existing object that
drifted is overwritten.

Secret values are resolved through a callable supplied by the caller; this
module never reads the vault itself.
"""
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Tuple, Union

from app.config.logging import get_logger
from app.config.settings import settings
from app.exceptions import ConfigInUseError, KubernetesError, MaterializationError
from app.models.backup_storage import BackupStorageRecord, BackupStorageType
from app.models.database_cluster import EVEREST_API_VERSION
from app.models.monitoring_instance import MonitoringInstanceRecord
from app.services.kubernetes_client import KubernetesClient
from app.services.references import is_backup_storage_in_use, is_monitoring_config_in_use

logger = get_logger(__name__)

SecretResolver = Callable[[str], Awaitable[str]]
InUseCheck = Callable[[str], Awaitable[bool]]
ConfigRecord = Union[BackupStorageRecord, MonitoringInstanceRecord]


class ConfigKind(str, Enum):
    """Kinds of materialized configs."""

    BACKUP_STORAGE = "BackupStorage"
    MONITORING_CONFIG = "MonitoringConfig"

    @property
    def plural(self) -> str:
        return {
            ConfigKind.BACKUP_STORAGE: "backupstorages",
            ConfigKind.MONITORING_CONFIG: "monitoringconfigs",
        }[self]

    @property
    def spec_keys(self) -> Tuple[str, ...]:
        """Spec fields written by this service; other fields belong to the operator."""
        if self is ConfigKind.BACKUP_STORAGE:
            return ("type", "bucket", "region", "endpointURL", "credentialsSecretName", "description")
        return ("type", "credentialsSecretName", "pmm")


CREDENTIAL_KEYS = {
    BackupStorageType.S3: ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"),
    BackupStorageType.AZURE: ("AZURE_STORAGE_ACCOUNT_NAME", "AZURE_STORAGE_ACCOUNT_KEY"),
}


def kind_of(record: ConfigRecord) -> ConfigKind:
    if isinstance(record, BackupStorageRecord):
        return ConfigKind.BACKUP_STORAGE
    return ConfigKind.MONITORING_CONFIG


class ConfigMaterializer:
    """Creates, updates and deletes materialized configs in one namespace."""

    def __init__(self, kube: KubernetesClient, pmm_client_image: str = settings.pmm_client_image):
        self.kube = kube
        self.pmm_client_image = pmm_client_image

    async def _desired(
        self, record: ConfigRecord, get_secret: SecretResolver
    ) -> Tuple[Dict[str, str], Dict[str, Any]]:
        """Build the secret data and the custom object for a record."""
        kind = kind_of(record)
        try:
            if isinstance(record, BackupStorageRecord):
                access_key = await get_secret(record.access_key_id)
                secret_key = await get_secret(record.secret_key_id)
            else:
                api_key = await get_secret(record.api_key_secret_id)
        except Exception as e:
            raise MaterializationError(kind.value, record.name, f"could not resolve credentials: {e}")

        if isinstance(record, BackupStorageRecord):
            access_name, secret_name = CREDENTIAL_KEYS[record.type]
            data = {access_name: access_key, secret_name: secret_key}
            spec: Dict[str, Any] = {
                "type": record.type.value,
                "bucket": record.bucket_name,
                "region": record.region,
                "credentialsSecretName": record.name,
            }
            if record.url:
                spec["endpointURL"] = record.url
            if record.description:
                spec["description"] = record.description
        else:
            data = {"apiKey": api_key}
            spec = {
                "type": record.type.value,
                "credentialsSecretName": record.name,
                "pmm": {"url": record.url, "image": self.pmm_client_image},
            }

        body = {
            "apiVersion": EVEREST_API_VERSION,
            "kind": kind.value,
            "metadata": {"name": record.name, "namespace": self.kube.namespace},
            "spec": spec,
        }
        return data, body

    async def ensure_exists(self, record: ConfigRecord, get_secret: SecretResolver) -> None:
        """
        Make the materialized config match the record.

        Creates it when absent, leaves it alone when identical and overwrites
        it when it drifted.

        Raises:
            MaterializationError: On credential resolution or Kubernetes failure
        """
        kind = kind_of(record)
        data, body = await self._desired(record, get_secret)

        try:
            if await self.kube.get_secret_data(record.name) != data:
                await self.kube.apply_secret(record.name, data)

            existing = await self.kube.get_custom_object(kind.plural, record.name)
            if existing is None:
                await self.kube.create_custom_object(kind.plural, body)
                logger.info("materialized_config_created", kind=kind.value, name=record.name,
                            kubernetes_id=self.kube.kubernetes_id)
                return

            current = existing.get("spec") or {}
            if all(current.get(k) == body["spec"].get(k) for k in kind.spec_keys):
                return

            body["metadata"]["resourceVersion"] = existing["metadata"].get("resourceVersion")
            await self.kube.replace_custom_object(kind.plural, record.name, body)
            logger.info("materialized_config_drift_corrected", kind=kind.value, name=record.name,
                        kubernetes_id=self.kube.kubernetes_id)
        except KubernetesError as e:
            raise MaterializationError(kind.value, record.name, e.message)

    async def update_in_place(self, record: ConfigRecord, get_secret: SecretResolver) -> bool:
        """
        Overwrite an already materialized config.

        Returns:
            False if the config is not deployed in this namespace

        Raises:
            MaterializationError: On credential resolution or Kubernetes failure
        """
        kind = kind_of(record)
        try:
            existing = await self.kube.get_custom_object(kind.plural, record.name)
        except KubernetesError as e:
            raise MaterializationError(kind.value, record.name, e.message)
        if existing is None:
            return False

        data, body = await self._desired(record, get_secret)
        body["metadata"]["resourceVersion"] = existing["metadata"].get("resourceVersion")
        try:
            await self.kube.apply_secret(record.name, data)
            await self.kube.replace_custom_object(kind.plural, record.name, body)
        except KubernetesError as e:
            raise MaterializationError(kind.value, record.name, e.message)

        logger.info("materialized_config_updated", kind=kind.value, name=record.name,
                    kubernetes_id=self.kube.kubernetes_id)
        return True

    async def delete_if_unreferenced(self, kind: ConfigKind, name: str, in_use: InUseCheck) -> None:
        """
        Delete a materialized config and its secret unless a cluster refers to it.

        Deleting a config that is already gone succeeds.

        Raises:
            ConfigInUseError: If a database cluster still references it
            MaterializationError: If the check or the deletion failed
        """
        try:
            used = await in_use(name)
        except Exception as e:
            raise MaterializationError(kind.value, name, f"in-use check failed: {e}")
        if used:
            raise ConfigInUseError(kind.value, name, self.kube.kubernetes_id)

        try:
            await self.kube.delete_custom_object(kind.plural, name)
            await self.kube.delete_secret(name)
        except KubernetesError as e:
            raise MaterializationError(kind.value, name, e.message)

        logger.info("materialized_config_deleted", kind=kind.value, name=name,
                    kubernetes_id=self.kube.kubernetes_id)

    def in_use_check(self, kind: ConfigKind) -> InUseCheck:
        """Predicate over the database clusters stored in the namespace at call time."""
        predicate = is_backup_storage_in_use if kind is ConfigKind.BACKUP_STORAGE else is_monitoring_config_in_use

        async def check(name: str) -> bool:
            clusters = await self.kube.list_database_clusters()
            return predicate(name, clusters)

        return check
