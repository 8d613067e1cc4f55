"""
Tests for projecting configs into a Kubernetes namespace.
"""
import pytest

from app.exceptions import ConfigInUseError, MaterializationError
from app.services.config_materializer import ConfigKind, ConfigMaterializer
from tests.fakes import FakeKubernetesClient, make_database_cluster, seed_backup_storage, seed_monitoring_instance


@pytest.fixture
def materializer(kube: FakeKubernetesClient) -> ConfigMaterializer:
    return ConfigMaterializer(kube, pmm_client_image="percona/pmm-client:2.41.0")


@pytest.mark.asyncio
async def test_ensure_exists_creates_backup_storage_and_secret(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")

    await materializer.ensure_exists(record, vault.get_secret)

    obj = kube.state.objects[("backupstorages", "s3-a")]
    assert obj["kind"] == "BackupStorage"
    assert obj["spec"] == {
        "type": "s3",
        "bucket": "s3-a-bucket",
        "region": "us-east-1",
        "credentialsSecretName": "s3-a",
        "endpointURL": "https://s3.example.com",
    }
    assert kube.secret_values("s3-a") == {"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "s3cr3t"}


@pytest.mark.asyncio
async def test_ensure_exists_is_a_noop_when_identical(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)
    kube.state.calls.clear()

    await materializer.ensure_exists(record, vault.get_secret)

    assert kube.state.called("create_custom_object") == []
    assert kube.state.called("replace_custom_object") == []
    assert kube.state.called("create_secret") == []
    assert kube.state.called("replace_secret") == []


@pytest.mark.asyncio
async def test_ensure_exists_overwrites_drifted_object(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)
    kube.state.objects[("backupstorages", "s3-a")]["spec"]["bucket"] = "tampered"

    await materializer.ensure_exists(record, vault.get_secret)

    assert kube.state.objects[("backupstorages", "s3-a")]["spec"]["bucket"] == "s3-a-bucket"
    assert kube.state.called("replace_custom_object") == ["s3-a"]


@pytest.mark.asyncio
async def test_ensure_exists_removes_stale_endpoint(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)
    record = record.model_copy(update={"url": None})

    await materializer.ensure_exists(record, vault.get_secret)

    assert "endpointURL" not in kube.state.objects[("backupstorages", "s3-a")]["spec"]
    assert kube.state.called("replace_custom_object") == ["s3-a"]


@pytest.mark.asyncio
async def test_ensure_exists_keeps_operator_owned_fields(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)
    kube.state.objects[("backupstorages", "s3-a")]["spec"]["forcePathStyle"] = True

    await materializer.ensure_exists(record, vault.get_secret)

    assert kube.state.called("replace_custom_object") == []


@pytest.mark.asyncio
async def test_ensure_exists_creates_monitoring_config(materializer, kube, store, vault):
    record = seed_monitoring_instance(store, vault, "pmm-1")

    await materializer.ensure_exists(record, vault.get_secret)

    obj = kube.state.objects[("monitoringconfigs", "pmm-1")]
    assert obj["spec"]["pmm"] == {"url": "https://pmm.example.com", "image": "percona/pmm-client:2.41.0"}
    assert obj["spec"]["credentialsSecretName"] == "pmm-1"
    assert kube.secret_values("pmm-1") == {"apiKey": "pmm-key"}


@pytest.mark.asyncio
async def test_unresolvable_secret_is_a_materialization_error(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    del vault.secrets[record.secret_key_id]

    with pytest.raises(MaterializationError):
        await materializer.ensure_exists(record, vault.get_secret)
    assert not kube.has_object("backupstorages", "s3-a")


@pytest.mark.asyncio
async def test_kubernetes_write_failure_is_a_materialization_error(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    kube.state.fail("create_custom_object", "s3-a", status=403)

    with pytest.raises(MaterializationError, match="s3-a"):
        await materializer.ensure_exists(record, vault.get_secret)


@pytest.mark.asyncio
async def test_update_in_place_skips_configs_not_deployed(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")

    assert await materializer.update_in_place(record, vault.get_secret) is False
    assert not kube.has_object("backupstorages", "s3-a")


@pytest.mark.asyncio
async def test_update_in_place_rewrites_secret_and_object(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)

    vault.secrets["rotated"] = "NEWKEY"
    updated = record.model_copy(update={"access_key_id": "rotated", "region": "eu-west-1"})

    assert await materializer.update_in_place(updated, vault.get_secret) is True
    assert kube.secret_values("s3-a")["AWS_ACCESS_KEY_ID"] == "NEWKEY"
    assert kube.state.objects[("backupstorages", "s3-a")]["spec"]["region"] == "eu-west-1"


@pytest.mark.asyncio
async def test_delete_if_unreferenced_deletes_object_and_secret(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)

    await materializer.delete_if_unreferenced(
        ConfigKind.BACKUP_STORAGE, "s3-a", materializer.in_use_check(ConfigKind.BACKUP_STORAGE)
    )

    assert not kube.has_object("backupstorages", "s3-a")
    assert kube.secret_values("s3-a") is None


@pytest.mark.asyncio
async def test_delete_if_unreferenced_is_idempotent(materializer, kube):
    check = materializer.in_use_check(ConfigKind.BACKUP_STORAGE)
    await materializer.delete_if_unreferenced(ConfigKind.BACKUP_STORAGE, "missing", check)
    await materializer.delete_if_unreferenced(ConfigKind.BACKUP_STORAGE, "missing", check)


@pytest.mark.asyncio
async def test_delete_if_unreferenced_refuses_config_in_use(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)
    kube.add_database_cluster(make_database_cluster("db1", schedules=["s3-a"]))

    with pytest.raises(ConfigInUseError) as exc_info:
        await materializer.delete_if_unreferenced(
            ConfigKind.BACKUP_STORAGE, "s3-a", materializer.in_use_check(ConfigKind.BACKUP_STORAGE)
        )

    assert exc_info.value.kubernetes_id == "k8s-main"
    assert kube.has_object("backupstorages", "s3-a")


@pytest.mark.asyncio
async def test_failing_in_use_check_deletes_nothing(materializer, kube, store, vault):
    record = seed_backup_storage(store, vault, "s3-a")
    await materializer.ensure_exists(record, vault.get_secret)
    kube.state.fail("list_custom_objects", "databaseclusters", status=403)

    with pytest.raises(MaterializationError):
        await materializer.delete_if_unreferenced(
            ConfigKind.BACKUP_STORAGE, "s3-a", materializer.in_use_check(ConfigKind.BACKUP_STORAGE)
        )

    assert kube.has_object("backupstorages", "s3-a")
    assert kube.state.called("delete_custom_object") == []
