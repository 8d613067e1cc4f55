"""
Kubernetes access for registered clusters.

Each registered Kubernetes cluster gets its own isolated kubernetes_asyncio
configuration, loaded from the kubeconfig kept in the secrets vault. Clients
are bound to the cluster's namespace and cached by the factory with a TTL.

API failures are translated to KubernetesError; 4xx statuses reported by
the API server are kept so proxied mutations answer like Kubernetes did.
"""
import asyncio
import base64
import binascii
import os
import tempfile
import time
from typing import Any, Dict, List, Optional, Tuple

import yaml
from kubernetes_asyncio import client, config
from pydantic import ValidationError as ModelValidationError
from kubernetes_asyncio.client.exceptions import ApiException

from app.config.logging import get_logger
from app.config.settings import settings
from app.exceptions import KubernetesError, NotFoundError, ValidationError
from app.models.database_cluster import EVEREST_GROUP, EVEREST_VERSION, DatabaseCluster
from app.utils.retry import retry_on_k8s_error

logger = get_logger(__name__)

DATABASE_CLUSTER_PLURAL = "databaseclusters"


def _to_kubernetes_error(e: Exception, action: str, **context: Any) -> KubernetesError:
    if isinstance(e, ApiException):
        status_code = e.status if e.status and 400 <= e.status < 500 else 502
        logger.error(f"k8s_{action}_failed", status=e.status, reason=e.reason, **context)
        return KubernetesError(
            f"{action.replace('_', ' ')} failed: {e.reason}",
            status_code=status_code,
            details={"status": e.status, **context},
        )
    logger.error(f"k8s_{action}_failed", error=str(e), **context)
    return KubernetesError(f"{action.replace('_', ' ')} failed: {e}", details=context)


class KubernetesClient:
    """
    API access to one namespace of one registered Kubernetes cluster.

    Custom objects are all in the everest.percona.com/v1alpha1 group.
    """

    def __init__(self, kubernetes_id: str, namespace: str, api_client: client.ApiClient):
        self.kubernetes_id = kubernetes_id
        self.namespace = namespace
        self.api_client = api_client
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)

    async def close(self) -> None:
        """Close the underlying API client."""
        if self.api_client:
            await self.api_client.close()

    # Custom objects

    @retry_on_k8s_error(max_retries=3, initial_delay=0.5, max_delay=5.0)
    async def _read_custom_object(self, plural: str, name: str) -> Dict[str, Any]:
        return await self.custom_api.get_namespaced_custom_object(
            group=EVEREST_GROUP,
            version=EVEREST_VERSION,
            namespace=self.namespace,
            plural=plural,
            name=name,
        )

    @retry_on_k8s_error(max_retries=3, initial_delay=0.5, max_delay=5.0)
    async def _list_custom_objects(self, plural: str) -> Dict[str, Any]:
        return await self.custom_api.list_namespaced_custom_object(
            group=EVEREST_GROUP,
            version=EVEREST_VERSION,
            namespace=self.namespace,
            plural=plural,
        )

    async def get_custom_object(self, plural: str, name: str) -> Optional[Dict[str, Any]]:
        """Read a custom object. Returns None if it does not exist."""
        try:
            return await self._read_custom_object(plural, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _to_kubernetes_error(e, "get_custom_object", plural=plural, name=name,
                                       kubernetes_id=self.kubernetes_id)
        except OSError as e:
            raise _to_kubernetes_error(e, "get_custom_object", plural=plural, name=name,
                                       kubernetes_id=self.kubernetes_id)

    async def list_custom_objects(self, plural: str) -> List[Dict[str, Any]]:
        try:
            result = await self._list_custom_objects(plural)
        except (ApiException, OSError) as e:
            raise _to_kubernetes_error(e, "list_custom_objects", plural=plural,
                                       kubernetes_id=self.kubernetes_id)
        return result.get("items", [])

    async def create_custom_object(self, plural: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self.custom_api.create_namespaced_custom_object(
                group=EVEREST_GROUP,
                version=EVEREST_VERSION,
                namespace=self.namespace,
                plural=plural,
                body=body,
            )
        except (ApiException, OSError) as e:
            raise _to_kubernetes_error(e, "create_custom_object", plural=plural,
                                       name=body["metadata"]["name"], kubernetes_id=self.kubernetes_id)

    async def replace_custom_object(self, plural: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Replace a custom object. The body must carry metadata.resourceVersion."""
        try:
            return await self.custom_api.replace_namespaced_custom_object(
                group=EVEREST_GROUP,
                version=EVEREST_VERSION,
                namespace=self.namespace,
                plural=plural,
                name=name,
                body=body,
            )
        except (ApiException, OSError) as e:
            raise _to_kubernetes_error(e, "replace_custom_object", plural=plural, name=name,
                                       kubernetes_id=self.kubernetes_id)

    async def delete_custom_object(self, plural: str, name: str) -> bool:
        """Delete a custom object. Returns False if it was already gone."""
        try:
            await self.custom_api.delete_namespaced_custom_object(
                group=EVEREST_GROUP,
                version=EVEREST_VERSION,
                namespace=self.namespace,
                plural=plural,
                name=name,
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise _to_kubernetes_error(e, "delete_custom_object", plural=plural, name=name,
                                       kubernetes_id=self.kubernetes_id)
        except OSError as e:
            raise _to_kubernetes_error(e, "delete_custom_object", plural=plural, name=name,
                                       kubernetes_id=self.kubernetes_id)

    # Secrets

    async def get_secret_data(self, name: str) -> Optional[Dict[str, str]]:
        """Read a Secret and decode its data. Returns None if it does not exist."""
        try:
            secret = await self.core_api.read_namespaced_secret(name=name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _to_kubernetes_error(e, "get_secret", name=name, kubernetes_id=self.kubernetes_id)
        except OSError as e:
            raise _to_kubernetes_error(e, "get_secret", name=name, kubernetes_id=self.kubernetes_id)

        return {k: base64.b64decode(v).decode("utf-8") for k, v in (secret.data or {}).items()}

    async def apply_secret(self, name: str, data: Dict[str, str]) -> None:
        """Create the Secret, or replace its data if it already exists."""
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {"name": name, "namespace": self.namespace},
            "data": {k: base64.b64encode(v.encode("utf-8")).decode("ascii") for k, v in data.items()},
        }
        try:
            try:
                await self.core_api.create_namespaced_secret(namespace=self.namespace, body=body)
            except ApiException as e:
                if e.status != 409:
                    raise
                await self.core_api.replace_namespaced_secret(name=name, namespace=self.namespace, body=body)
        except (ApiException, OSError) as e:
            raise _to_kubernetes_error(e, "apply_secret", name=name, kubernetes_id=self.kubernetes_id)

    async def delete_secret(self, name: str) -> bool:
        """Delete a Secret. Returns False if it was already gone."""
        try:
            await self.core_api.delete_namespaced_secret(name=name, namespace=self.namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise _to_kubernetes_error(e, "delete_secret", name=name, kubernetes_id=self.kubernetes_id)
        except OSError as e:
            raise _to_kubernetes_error(e, "delete_secret", name=name, kubernetes_id=self.kubernetes_id)

    async def check_namespace(self) -> None:
        """Read the bound namespace; fails if the cluster is unreachable or it is missing."""
        try:
            await self.core_api.read_namespace(name=self.namespace)
        except (ApiException, OSError) as e:
            raise _to_kubernetes_error(e, "read_namespace", namespace=self.namespace,
                                       kubernetes_id=self.kubernetes_id)

    # Database clusters

    def _parse_database_cluster(self, obj: Dict[str, Any]) -> DatabaseCluster:
        try:
            return DatabaseCluster.model_validate(obj)
        except ModelValidationError as e:
            name = (obj.get("metadata") or {}).get("name")
            logger.error("k8s_database_cluster_unreadable", name=name, kubernetes_id=self.kubernetes_id,
                         errors=e.error_count())
            raise KubernetesError(
                f"database cluster '{name}' could not be read: {e.error_count()} invalid field(s)",
                status_code=502,
                details={"name": name, "kubernetes_id": self.kubernetes_id},
            )

    async def list_database_clusters(self) -> List[DatabaseCluster]:
        items = await self.list_custom_objects(DATABASE_CLUSTER_PLURAL)
        return [self._parse_database_cluster(item) for item in items]

    async def get_database_cluster(self, name: str) -> DatabaseCluster:
        obj = await self.get_custom_object(DATABASE_CLUSTER_PLURAL, name)
        if obj is None:
            raise NotFoundError("Database cluster", name)
        return self._parse_database_cluster(obj)

    async def create_database_cluster(self, cluster: DatabaseCluster) -> DatabaseCluster:
        body = cluster.to_k8s()
        body["metadata"]["namespace"] = self.namespace
        created = await self.create_custom_object(DATABASE_CLUSTER_PLURAL, body)
        return self._parse_database_cluster(created)

    async def replace_database_cluster(self, cluster: DatabaseCluster) -> DatabaseCluster:
        body = cluster.to_k8s()
        body["metadata"]["namespace"] = self.namespace
        replaced = await self.replace_custom_object(DATABASE_CLUSTER_PLURAL, cluster.name, body)
        return self._parse_database_cluster(replaced)

    async def delete_database_cluster(self, name: str) -> None:
        if not await self.delete_custom_object(DATABASE_CLUSTER_PLURAL, name):
            raise NotFoundError("Database cluster", name)


def decode_kubeconfig(kubeconfig: str) -> str:
    """
    Accept a kubeconfig as raw YAML or base64 encoded YAML.

    Raises:
        ValidationError: If the content is not a YAML mapping
    """
    try:
        content = base64.b64decode(kubeconfig, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        content = kubeconfig

    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid kubeconfig YAML: {e}")
    if not isinstance(parsed, dict):
        raise ValidationError("Kubeconfig must be a YAML mapping")
    return content


async def load_api_client(kubeconfig: str, verify_ssl: bool = True) -> client.ApiClient:
    """
    Build an ApiClient with its own Configuration from kubeconfig content.

    The global kubernetes_asyncio configuration is never touched.
    """
    content = decode_kubeconfig(kubeconfig)

    # kubernetes_asyncio needs a file path
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(content)
        path = f.name

    configuration = client.Configuration()
    try:
        await config.load_kube_config(config_file=path, client_configuration=configuration)
    except Exception as e:
        raise ValidationError(f"Could not load kubeconfig: {e}")
    finally:
        try:
            os.unlink(path)
        except OSError as e:
            logger.warning("failed_to_cleanup_temp_kubeconfig", path=path, error=str(e))

    if not verify_ssl:
        logger.warning("ssl_verification_disabled", host=configuration.host)
        configuration.verify_ssl = False

    return client.ApiClient(configuration=configuration)


class KubernetesClientFactory:
    """
    Resolves registered Kubernetes clusters to cached clients.

    The cluster record and its kubeconfig are read from the metadata store
    and the secrets vault on first use.
    """

    def __init__(
        self,
        store,
        vault,
        ttl_seconds: int = settings.k8s_client_ttl_seconds,
        verify_ssl: bool = settings.k8s_verify_ssl,
    ):
        self.store = store
        self.vault = vault
        self.ttl_seconds = ttl_seconds
        self.verify_ssl = verify_ssl
        self._clients: Dict[str, Tuple[KubernetesClient, float]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, kubernetes_id: str, namespace: str, kubeconfig: str) -> KubernetesClient:
        """Build a new, uncached client."""
        api_client = await load_api_client(kubeconfig, verify_ssl=self.verify_ssl)
        return KubernetesClient(kubernetes_id, namespace, api_client)

    async def validate_kubeconfig(self, kubeconfig: str, namespace: str) -> None:
        """
        Connect with the kubeconfig and read the namespace.

        Raises:
            ValidationError: If the cluster or the namespace cannot be reached
        """
        kube = await self.connect("unregistered", namespace, kubeconfig)
        try:
            await kube.check_namespace()
        except KubernetesError as e:
            raise ValidationError(f"Cannot access namespace '{namespace}': {e.message}")
        finally:
            await kube.close()

    async def get(self, kubernetes_id: str) -> KubernetesClient:
        """
        Return the client for a registered Kubernetes cluster.

        Raises:
            NotFoundError: If the cluster is not registered
        """
        async with self._lock:
            await self._cleanup_expired()

            cached = self._clients.get(kubernetes_id)
            if cached is not None:
                kube, _ = cached
                self._clients[kubernetes_id] = (kube, time.monotonic())
                return kube

            record = await self.store.get_kubernetes_cluster(kubernetes_id)
            kubeconfig = await self.vault.get_secret(record.kubeconfig_secret_id)

            logger.info("creating_kubernetes_client", kubernetes_id=kubernetes_id, namespace=record.namespace)
            kube = await self.connect(kubernetes_id, record.namespace, kubeconfig)
            self._clients[kubernetes_id] = (kube, time.monotonic())
            return kube

    async def invalidate(self, kubernetes_id: str) -> None:
        """Drop and close the cached client of a cluster."""
        async with self._lock:
            cached = self._clients.pop(kubernetes_id, None)
        if cached is not None:
            await cached[0].close()
            logger.info("kubernetes_client_invalidated", kubernetes_id=kubernetes_id)

    async def _cleanup_expired(self) -> None:
        now = time.monotonic()
        expired = [kid for kid, (_, last) in self._clients.items() if now - last > self.ttl_seconds]
        for kid in expired:
            kube, _ = self._clients.pop(kid)
            try:
                await kube.close()
            except Exception as e:
                logger.warning("failed_to_close_expired_client", kubernetes_id=kid, error=str(e))
        if expired:
            logger.info("expired_clients_cleaned_up", count=len(expired), remaining_clients=len(self._clients))

    async def close(self) -> None:
        """Close all Kubernetes clients."""
        async with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()
        for kid, (kube, _) in clients:
            await kube.close()
            logger.info("kubernetes_client_closed", kubernetes_id=kid)
