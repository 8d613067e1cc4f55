"""
Tests for Kubernetes error translation, kubeconfig decoding and the client cache.
"""
import base64

import pytest

from app.exceptions import KubernetesError, NotFoundError, ValidationError
from app.models.kubernetes_cluster import KubernetesClusterRecord
from app.services.kubernetes_client import KubernetesClientFactory, decode_kubeconfig
from tests.fakes import FakeKubernetesClient, make_database_cluster

KUBECONFIG = "apiVersion: v1\nkind: Config\n"


class RecordingFactory(KubernetesClientFactory):
    """Factory whose connections are in-memory fakes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.connected = []

    async def connect(self, kubernetes_id, namespace, kubeconfig):
        self.connected.append((kubernetes_id, namespace, kubeconfig))
        return FakeKubernetesClient(kubernetes_id, namespace)


@pytest.fixture
def factory(store, vault):
    store.kubernetes_clusters["k8s-a"] = KubernetesClusterRecord(
        id="k8s-a", name="a", namespace="dbaas", kubeconfig_secret_id="kubeconfig-a"
    )
    vault.secrets["kubeconfig-a"] = KUBECONFIG
    return RecordingFactory(store, vault, ttl_seconds=300)


@pytest.mark.asyncio
async def test_factory_connects_once(factory):
    first = await factory.get("k8s-a")
    second = await factory.get("k8s-a")

    assert first is second
    assert factory.connected == [("k8s-a", "dbaas", KUBECONFIG)]


@pytest.mark.asyncio
async def test_factory_reconnects_after_invalidate(factory):
    first = await factory.get("k8s-a")
    await factory.invalidate("k8s-a")
    second = await factory.get("k8s-a")

    assert first is not second
    assert len(factory.connected) == 2


@pytest.mark.asyncio
async def test_factory_expires_idle_clients(store, vault, factory):
    factory.ttl_seconds = -1
    await factory.get("k8s-a")
    await factory.get("k8s-a")

    assert len(factory.connected) == 2


@pytest.mark.asyncio
async def test_factory_unknown_cluster(factory):
    with pytest.raises(NotFoundError):
        await factory.get("k8s-missing")


def test_decode_raw_kubeconfig():
    assert decode_kubeconfig(KUBECONFIG) == KUBECONFIG


def test_decode_base64_kubeconfig():
    assert decode_kubeconfig(base64.b64encode(KUBECONFIG.encode()).decode()) == KUBECONFIG


@pytest.mark.parametrize("content", ["plain text", "- a\n- b\n", "key: [unclosed"])
def test_decode_rejects_non_mapping(content):
    with pytest.raises(ValidationError):
        decode_kubeconfig(content)


@pytest.mark.asyncio
async def test_missing_objects_are_not_errors():
    kube = FakeKubernetesClient("k8s-a")

    assert await kube.get_custom_object("backupstorages", "absent") is None
    assert await kube.get_secret_data("absent") is None
    assert await kube.delete_custom_object("backupstorages", "absent") is False
    assert await kube.delete_secret("absent") is False


@pytest.mark.asyncio
async def test_client_errors_keep_their_status():
    kube = FakeKubernetesClient("k8s-a")
    kube.state.fail("create_custom_object", "db1", status=422)

    with pytest.raises(KubernetesError) as exc_info:
        await kube.create_database_cluster(make_database_cluster("db1"))

    assert exc_info.value.status_code == 422
    assert exc_info.value.details["kubernetes_id"] == "k8s-a"


@pytest.mark.asyncio
async def test_server_errors_become_bad_gateway():
    kube = FakeKubernetesClient("k8s-a")
    kube.state.fail("delete_custom_object", "db1", status=500)

    with pytest.raises(KubernetesError) as exc_info:
        await kube.delete_custom_object("databaseclusters", "db1")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_apply_secret_replaces_existing():
    kube = FakeKubernetesClient("k8s-a")

    await kube.apply_secret("s3-main", {"AWS_ACCESS_KEY_ID": "old"})
    await kube.apply_secret("s3-main", {"AWS_ACCESS_KEY_ID": "new"})

    assert await kube.get_secret_data("s3-main") == {"AWS_ACCESS_KEY_ID": "new"}
    assert kube.state.called("replace_secret") == ["s3-main"]


@pytest.mark.asyncio
async def test_database_cluster_round_trip_keeps_unknown_fields():
    kube = FakeKubernetesClient("k8s-a")
    cluster = make_database_cluster("db1")
    cluster.spec.proxy = {"type": "haproxy", "replicas": 2}

    created = await kube.create_database_cluster(cluster)
    fetched = await kube.get_database_cluster("db1")

    assert fetched.to_k8s()["spec"]["proxy"] == {"type": "haproxy", "replicas": 2}
    assert fetched.metadata.namespace == "everest"
    assert fetched.metadata.resource_version == created.metadata.resource_version


@pytest.mark.asyncio
async def test_get_missing_database_cluster():
    with pytest.raises(NotFoundError):
        await FakeKubernetesClient("k8s-a").get_database_cluster("db1")


UNREADABLE_CLUSTER = {
    "apiVersion": "everest.percona.com/v1alpha1",
    "kind": "DatabaseCluster",
    "metadata": {"name": "db9", "resourceVersion": "9"},
    "spec": {"engine": {"type": "redis", "replicas": 0}},
}


@pytest.mark.asyncio
async def test_unreadable_database_cluster_is_a_kubernetes_error():
    kube = FakeKubernetesClient("k8s-a")
    kube.state.objects[("databaseclusters", "db9")] = UNREADABLE_CLUSTER

    with pytest.raises(KubernetesError) as exc_info:
        await kube.list_database_clusters()
    assert exc_info.value.status_code == 502
    assert exc_info.value.details["name"] == "db9"

    with pytest.raises(KubernetesError):
        await kube.get_database_cluster("db9")
