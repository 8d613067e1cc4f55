"""
Pytest configuration and fixtures.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from typing import AsyncGenerator

from app.main import app
from app.api import deps
from app.config.settings import settings
from app.core.task_group import BackgroundTaskGroup
from app.models.kubernetes_cluster import KubernetesClusterRecord
from app.services.backup_storage_service import BackupStorageService
from app.services.database_cluster_service import DatabaseClusterService
from app.services.kubernetes_cluster_service import KubernetesClusterService
from app.services.monitoring_instance_service import MonitoringInstanceService
from tests.fakes import FakeClientFactory, FakeKubernetesClient, FakeMetadataStore, FakeSecretsVault


class AllowAllStorageChecker:
    def __init__(self):
        self.checked = []
        self.error = None

    async def check(self, storage_type, bucket_name, region, url, access_key, secret_key):
        self.checked.append((bucket_name, access_key, secret_key))
        if self.error:
            raise self.error


class StubPMMClient:
    def __init__(self, key: str = "minted-key"):
        self.key = key
        self.requests = []
        self.checked = []
        self.check_error = None

    async def create_api_key(self, url, name, user, password):
        self.requests.append((url, name, user, password))
        return self.key

    async def check_api_key(self, url, api_key):
        self.checked.append((url, api_key))
        if self.check_error:
            raise self.check_error


@pytest.fixture(scope="session")
def test_settings():
    """Override settings for testing."""
    settings.environment = "testing"
    settings.debug = True
    return settings


@pytest.fixture
def store() -> FakeMetadataStore:
    return FakeMetadataStore()


@pytest.fixture
def vault() -> FakeSecretsVault:
    return FakeSecretsVault()


@pytest.fixture
def kube(store) -> FakeKubernetesClient:
    """Fake client of the registered Kubernetes cluster "k8s-main"."""
    store.kubernetes_clusters["k8s-main"] = KubernetesClusterRecord(
        id="k8s-main", name="main", namespace="everest", kubeconfig_secret_id="kubeconfig-main"
    )
    return FakeKubernetesClient("k8s-main", "everest")


@pytest.fixture
def clients(kube) -> FakeClientFactory:
    return FakeClientFactory(kube)


@pytest.fixture
def tasks() -> BackgroundTaskGroup:
    return BackgroundTaskGroup()


@pytest.fixture
def storage_checker() -> AllowAllStorageChecker:
    return AllowAllStorageChecker()


@pytest.fixture
def pmm() -> StubPMMClient:
    return StubPMMClient()


@pytest.fixture
def database_cluster_service(store, vault, clients, tasks) -> DatabaseClusterService:
    return DatabaseClusterService(store, vault, clients, tasks)


@pytest.fixture
def backup_storage_service(store, vault, clients, storage_checker) -> BackupStorageService:
    return BackupStorageService(store, vault, clients, access_checker=storage_checker)


@pytest.fixture
def monitoring_instance_service(store, vault, clients, pmm) -> MonitoringInstanceService:
    return MonitoringInstanceService(store, vault, clients, pmm=pmm)


@pytest.fixture
def kubernetes_cluster_service(store, vault, clients) -> KubernetesClusterService:
    return KubernetesClusterService(store, vault, clients)


@pytest_asyncio.fixture
async def test_client(
    database_cluster_service,
    backup_storage_service,
    monitoring_instance_service,
    kubernetes_cluster_service,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with services backed by the in-memory fakes."""
    app.dependency_overrides[deps.get_database_cluster_service] = lambda: database_cluster_service
    app.dependency_overrides[deps.get_backup_storage_service] = lambda: backup_storage_service
    app.dependency_overrides[deps.get_monitoring_instance_service] = lambda: monitoring_instance_service
    app.dependency_overrides[deps.get_kubernetes_cluster_service] = lambda: kubernetes_cluster_service
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
