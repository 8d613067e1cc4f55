"""
Resolution of the shared configs a DatabaseCluster refers to.

Pure functions over DatabaseCluster objects. The in-use predicates take a
snapshot of the clusters currently stored in Kubernetes and are evaluated at
delete time; results must not be cached.
"""
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable

from app.models.database_cluster import DatabaseCluster


@dataclass(frozen=True)
class ClusterReferences:
    """Names of the shared configs one DatabaseCluster points at."""

    backup_storages: FrozenSet[str] = field(default_factory=frozenset)
    monitoring: str = ""


def backup_storage_names(cluster: DatabaseCluster) -> FrozenSet[str]:
    """
    Collect backup storage names from the data source and every schedule.

    Missing sub-structures and empty names contribute nothing.
    """
    spec = cluster.spec
    if spec is None:
        return frozenset()

    names = set()
    if spec.data_source and spec.data_source.backup_source:
        names.add(spec.data_source.backup_source.backup_storage_name)
    if spec.backup and spec.backup.schedules:
        names.update(s.backup_storage_name for s in spec.backup.schedules)

    return frozenset(n for n in names if n)


def monitoring_name(cluster: DatabaseCluster) -> str:
    """Monitoring config name, or "" when the cluster has none."""
    spec = cluster.spec
    if spec is None or spec.monitoring is None:
        return ""
    return spec.monitoring.monitoring_config_name or ""


def resolve(cluster: DatabaseCluster) -> ClusterReferences:
    return ClusterReferences(
        backup_storages=backup_storage_names(cluster),
        monitoring=monitoring_name(cluster),
    )


def is_config_in_use(
    name: str,
    clusters: Iterable[DatabaseCluster],
    extract: Callable[[DatabaseCluster], Iterable[str]],
) -> bool:
    return any(name in extract(c) for c in clusters)


def is_backup_storage_in_use(name: str, clusters: Iterable[DatabaseCluster]) -> bool:
    return is_config_in_use(name, clusters, backup_storage_names)


def is_monitoring_config_in_use(name: str, clusters: Iterable[DatabaseCluster]) -> bool:
    if not name:
        return False
    return is_config_in_use(name, clusters, lambda c: (monitoring_name(c),))
