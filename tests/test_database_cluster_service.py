"""
Tests for materializing shared configs around database cluster mutations.
"""
import pytest

from app.exceptions import ConfigInUseError, KubernetesError, MaterializationError, NotFoundError, ValidationError
from app.services.config_materializer import ConfigKind, ConfigMaterializer
from app.services.database_cluster_service import (
    validate_database_cluster,
    validate_database_cluster_update,
)
from tests.fakes import make_database_cluster, seed_backup_storage, seed_monitoring_instance


async def materialize(kube, store, vault, *names):
    materializer = ConfigMaterializer(kube)
    for name in names:
        await materializer.ensure_exists(store.backup_storages[name], vault.get_secret)


# Create


@pytest.mark.asyncio
async def test_create_materializes_configs_before_the_cluster(database_cluster_service, kube, store, vault):
    seed_backup_storage(store, vault, "s3-a")
    seed_backup_storage(store, vault, "s3-b")
    seed_monitoring_instance(store, vault, "pmm-1")
    cluster = make_database_cluster("db1", restore_from="s3-a", schedules=["s3-b"], monitoring="pmm-1")

    created = await database_cluster_service.create("k8s-main", cluster)

    assert created.name == "db1"
    assert created.metadata.resource_version is not None
    assert kube.state.called("create_custom_object") == ["s3-a", "s3-b", "pmm-1", "db1"]
    assert kube.secret_values("s3-b") == {"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "s3cr3t"}


@pytest.mark.asyncio
async def test_create_rolls_back_when_a_storage_fails(database_cluster_service, kube, store, vault):
    seed_backup_storage(store, vault, "a")
    seed_backup_storage(store, vault, "b")
    kube.state.fail("create_custom_object", "b")

    with pytest.raises(MaterializationError):
        await database_cluster_service.create("k8s-main", make_database_cluster("db1", schedules=["a", "b"]))

    assert not kube.has_object("backupstorages", "a")
    assert kube.secret_values("a") is None
    assert "db1" not in kube.state.called("create_custom_object")
    assert not kube.has_object("databaseclusters", "db1")


@pytest.mark.asyncio
async def test_rollback_keeps_storages_used_by_other_clusters(database_cluster_service, kube, store, vault):
    seed_backup_storage(store, vault, "a")
    await materialize(kube, store, vault, "a")
    kube.add_database_cluster(make_database_cluster("other", schedules=["a"]))

    with pytest.raises(NotFoundError):
        await database_cluster_service.create("k8s-main", make_database_cluster("db1", schedules=["a", "b"]))

    assert kube.has_object("backupstorages", "a")
    assert not kube.has_object("databaseclusters", "db1")


@pytest.mark.asyncio
async def test_create_with_unknown_monitoring_keeps_storages(database_cluster_service, kube, store, vault):
    seed_backup_storage(store, vault, "a")

    with pytest.raises(NotFoundError):
        await database_cluster_service.create(
            "k8s-main", make_database_cluster("db1", schedules=["a"], monitoring="missing")
        )

    assert kube.has_object("backupstorages", "a")
    assert not kube.has_object("databaseclusters", "db1")


@pytest.mark.asyncio
async def test_create_surfaces_kubernetes_rejection(database_cluster_service, kube):
    kube.state.fail("create_custom_object", "db1", status=422)

    with pytest.raises(KubernetesError) as exc_info:
        await database_cluster_service.create("k8s-main", make_database_cluster("db1"))

    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_create_on_unregistered_kubernetes_cluster(database_cluster_service):
    with pytest.raises(NotFoundError):
        await database_cluster_service.create("k8s-unknown", make_database_cluster("db1"))


# Update


@pytest.mark.asyncio
async def test_update_only_creates_added_and_releases_removed(
    database_cluster_service, kube, store, vault, tasks
):
    for name in ("a", "b", "c"):
        seed_backup_storage(store, vault, name)
    await materialize(kube, store, vault, "a", "b")
    kube.add_database_cluster(make_database_cluster("db1", schedules=["a", "b"]))
    kube.state.calls.clear()

    await database_cluster_service.update("k8s-main", "db1", make_database_cluster("db1", schedules=["b", "c"]))

    created = kube.state.called("create_custom_object")
    assert created == ["c"]
    assert kube.state.called("replace_custom_object") == ["db1"]

    await tasks.drain(timeout=1)

    assert kube.state.called("delete_custom_object") == ["a"]
    assert not kube.has_object("backupstorages", "a")
    assert kube.has_object("backupstorages", "b")
    assert kube.has_object("backupstorages", "c")
    assert "b" not in kube.state.called("replace_custom_object")


@pytest.mark.asyncio
async def test_update_carries_over_resource_version(database_cluster_service, kube):
    kube.add_database_cluster(make_database_cluster("db1"))

    updated = await database_cluster_service.update(
        "k8s-main", "db1", make_database_cluster("db1", version="8.0.37-29")
    )

    assert updated.spec.engine.version == "8.0.37-29"


@pytest.mark.asyncio
async def test_update_switches_monitoring(database_cluster_service, kube, store, vault, tasks):
    seed_monitoring_instance(store, vault, "pmm-old")
    seed_monitoring_instance(store, vault, "pmm-new")
    await ConfigMaterializer(kube).ensure_exists(store.monitoring_instances["pmm-old"], vault.get_secret)
    kube.add_database_cluster(make_database_cluster("db1", monitoring="pmm-old"))

    await database_cluster_service.update("k8s-main", "db1", make_database_cluster("db1", monitoring="pmm-new"))
    await tasks.drain(timeout=1)

    assert kube.has_object("monitoringconfigs", "pmm-new")
    assert not kube.has_object("monitoringconfigs", "pmm-old")


@pytest.mark.asyncio
async def test_failed_update_releases_nothing(database_cluster_service, kube, store, vault, tasks):
    seed_backup_storage(store, vault, "a")
    await materialize(kube, store, vault, "a")
    kube.add_database_cluster(make_database_cluster("db1", schedules=["a"]))
    kube.state.fail("replace_custom_object", "db1", status=409)

    with pytest.raises(KubernetesError):
        await database_cluster_service.update("k8s-main", "db1", make_database_cluster("db1"))

    assert tasks.pending == 0
    assert kube.has_object("backupstorages", "a")


@pytest.mark.asyncio
async def test_update_rejects_forbidden_transition(database_cluster_service, kube):
    kube.add_database_cluster(make_database_cluster("db1", version="8.0.36-28"))

    with pytest.raises(ValidationError):
        await database_cluster_service.update("k8s-main", "db1", make_database_cluster("db1", version="8.0.35-27"))

    assert kube.state.called("replace_custom_object") == []


# Delete


@pytest.mark.asyncio
async def test_delete_releases_sole_monitoring_config(database_cluster_service, kube, store, vault, tasks):
    seed_monitoring_instance(store, vault, "pmm-1")
    materializer = ConfigMaterializer(kube)
    await materializer.ensure_exists(store.monitoring_instances["pmm-1"], vault.get_secret)
    kube.add_database_cluster(make_database_cluster("db1", monitoring="pmm-1"))

    await database_cluster_service.delete("k8s-main", "db1")
    await tasks.drain(timeout=1)

    check = materializer.in_use_check(ConfigKind.MONITORING_CONFIG)
    assert await check("pmm-1") is False
    assert not kube.has_object("monitoringconfigs", "pmm-1")
    await materializer.delete_if_unreferenced(ConfigKind.MONITORING_CONFIG, "pmm-1", check)


@pytest.mark.asyncio
async def test_delete_keeps_storage_used_by_another_cluster(database_cluster_service, kube, store, vault, tasks):
    seed_backup_storage(store, vault, "a")
    await materialize(kube, store, vault, "a")
    kube.add_database_cluster(make_database_cluster("db1", schedules=["a"]))
    kube.add_database_cluster(make_database_cluster("db2", restore_from="a"))

    await database_cluster_service.delete("k8s-main", "db1")
    await tasks.drain(timeout=1)

    assert not kube.has_object("databaseclusters", "db1")
    assert kube.has_object("backupstorages", "a")
    assert kube.state.called("delete_custom_object") == ["db1"]

    materializer = ConfigMaterializer(kube)
    with pytest.raises(ConfigInUseError):
        await materializer.delete_if_unreferenced(
            ConfigKind.BACKUP_STORAGE, "a", materializer.in_use_check(ConfigKind.BACKUP_STORAGE)
        )
    assert kube.has_object("backupstorages", "a")


@pytest.mark.asyncio
async def test_failed_delete_touches_no_config(database_cluster_service, kube, store, vault, tasks):
    seed_backup_storage(store, vault, "a")
    await materialize(kube, store, vault, "a")
    kube.add_database_cluster(make_database_cluster("db1", schedules=["a"]))
    kube.state.fail("delete_custom_object", "db1", status=403)

    with pytest.raises(KubernetesError):
        await database_cluster_service.delete("k8s-main", "db1")

    assert tasks.pending == 0
    assert kube.has_object("backupstorages", "a")


@pytest.mark.asyncio
async def test_cleanup_failure_is_contained(database_cluster_service, kube, store, vault, tasks):
    seed_backup_storage(store, vault, "a")
    await materialize(kube, store, vault, "a")
    kube.add_database_cluster(make_database_cluster("db1", schedules=["a"]))
    kube.state.fail("delete_custom_object", "a", status=403)

    await database_cluster_service.delete("k8s-main", "db1")
    assert await tasks.drain(timeout=1) is True

    assert kube.has_object("backupstorages", "a")


@pytest.mark.asyncio
async def test_delete_unknown_cluster(database_cluster_service):
    with pytest.raises(NotFoundError):
        await database_cluster_service.delete("k8s-main", "missing")


# Validation


def test_validate_rejects_invalid_name():
    with pytest.raises(ValidationError):
        validate_database_cluster(make_database_cluster("Not_Valid"))


def test_validate_rejects_missing_spec():
    cluster = make_database_cluster("db1")
    cluster.spec = None
    with pytest.raises(ValidationError):
        validate_database_cluster(cluster)


def test_validate_rejects_duplicate_schedule_names():
    cluster = make_database_cluster("db1", schedules=["a", "b"])
    cluster.spec.backup.schedules[1].name = cluster.spec.backup.schedules[0].name
    with pytest.raises(ValidationError, match="duplicate"):
        validate_database_cluster(cluster)


def test_validate_rejects_schedule_without_storage():
    cluster = make_database_cluster("db1", schedules=[""])
    with pytest.raises(ValidationError):
        validate_database_cluster(cluster)


@pytest.mark.parametrize(
    "old_kwargs, new_kwargs",
    [
        ({"version": "8.0.36-28"}, {"version": "8.0.35-27"}),
        ({"version": "5.7.44-31"}, {"version": "8.0.36-28"}),
        ({"replicas": 3}, {"replicas": 1}),
    ],
)
def test_update_transition_rules(old_kwargs, new_kwargs):
    old = make_database_cluster("db1", **old_kwargs)
    new = make_database_cluster("db1", **new_kwargs)
    with pytest.raises(ValidationError):
        validate_database_cluster_update("db1", old, new)


def test_update_transition_rejects_engine_change():
    old = make_database_cluster("db1")
    new = make_database_cluster("db1")
    new.spec.engine.type = "psmdb"
    with pytest.raises(ValidationError, match="engine type"):
        validate_database_cluster_update("db1", old, new)


def test_update_transition_rejects_name_mismatch():
    with pytest.raises(ValidationError):
        validate_database_cluster_update("db1", make_database_cluster("db1"), make_database_cluster("db2"))


def test_update_transition_allows_minor_upgrade_and_scale_up():
    old = make_database_cluster("db1", version="8.0.36-28", replicas=1)
    new = make_database_cluster("db1", version="8.4.0-1", replicas=3)
    validate_database_cluster_update("db1", old, new)
