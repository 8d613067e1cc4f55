"""
Backup storage service: registration and lifecycle of backup targets.
"""
from typing import Any, Dict, List
from uuid import uuid4

from app.config.logging import get_logger
from app.core.saga import Saga
from app.exceptions import ConflictError, NotFoundError
from app.models.backup_storage import (
    BackupStorageCreateRequest,
    BackupStorageRecord,
    BackupStorageUpdateRequest,
)
from app.services.config_lifecycle import ConfigLifecycleService
from app.services.config_materializer import ConfigKind
from app.services.connectivity import StorageAccessChecker

logger = get_logger(__name__)


class BackupStorageService(ConfigLifecycleService):
    """Create, update, delete and read backup storages."""

    kind = ConfigKind.BACKUP_STORAGE

    def __init__(self, *args: Any, access_checker: StorageAccessChecker, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.access_checker = access_checker

    async def list(self) -> List[BackupStorageRecord]:
        return await self.store.list_backup_storages()

    async def get(self, name: str) -> BackupStorageRecord:
        return await self.store.get_backup_storage(name)

    async def create(self, request: BackupStorageCreateRequest) -> BackupStorageRecord:
        """
        Register a backup storage.

        The name is checked before any secret is written. Secrets are stored
        first and removed again if the record cannot be created.

        Raises:
            ConflictError: If the name is taken
            ValidationError: If the storage cannot be reached
        """
        try:
            await self.store.get_backup_storage(request.name)
        except NotFoundError:
            pass
        else:
            raise ConflictError(f"Backup storage '{request.name}' already exists")

        await self.access_checker.check(
            request.type,
            request.bucket_name,
            request.region,
            request.url,
            request.access_key,
            request.secret_key,
        )

        record = BackupStorageRecord(
            name=request.name,
            type=request.type,
            bucket_name=request.bucket_name,
            region=request.region,
            url=request.url,
            description=request.description,
            access_key_id=str(uuid4()),
            secret_key_id=str(uuid4()),
        )

        saga = Saga("backup_storage.create", name=request.name)
        self.add_secret_step(saga, "store_access_key", record.access_key_id, request.access_key)
        self.add_secret_step(saga, "store_secret_key", record.secret_key_id, request.secret_key)
        saga.step("create_record", lambda: self.store.create_backup_storage(record))
        await saga.run()

        logger.info("backup_storage_created", name=record.name, type=record.type.value)
        return record

    async def update(self, name: str, request: BackupStorageUpdateRequest) -> BackupStorageRecord:
        """
        Update a backup storage and its materialized copies.

        New credentials are stored under new ids before the record switches
        to them; the old ids are deleted once nothing points at them.

        Raises:
            NotFoundError: If the storage does not exist
            ValidationError: If the merged settings cannot reach the storage
            MaterializationError: If a Kubernetes cluster could not be updated
        """
        current = await self.store.get_backup_storage(name)
        access_key = request.access_key or await self.vault.get_secret(current.access_key_id)
        secret_key = request.secret_key or await self.vault.get_secret(current.secret_key_id)

        changes: Dict[str, Any] = request.model_dump(exclude_unset=True, exclude={"access_key", "secret_key"})
        merged = current.model_copy(update=changes)

        await self.access_checker.check(
            merged.type, merged.bucket_name, merged.region, merged.url, access_key, secret_key
        )

        saga = Saga("backup_storage.update", name=name)
        superseded = []
        if request.access_key:
            changes["access_key_id"] = str(uuid4())
            superseded.append(current.access_key_id)
            self.add_secret_step(saga, "store_access_key", changes["access_key_id"], request.access_key)
        if request.secret_key:
            changes["secret_key_id"] = str(uuid4())
            superseded.append(current.secret_key_id)
            self.add_secret_step(saga, "store_secret_key", changes["secret_key_id"], request.secret_key)

        async def update_record() -> BackupStorageRecord:
            async with self.store.transaction() as session:
                return await self.store.update_backup_storage(name, changes, session=session)

        saga.step("update_record", update_record)
        updated = (await saga.run())[-1]
        logger.info("backup_storage_updated", name=name, fields=sorted(changes))

        try:
            await self.update_materialized(updated)
        finally:
            await self.delete_superseded_secrets(superseded, name)

        return updated

    async def delete(self, name: str) -> None:
        """
        Delete a backup storage that no database cluster uses.

        Raises:
            NotFoundError: If the storage does not exist
            OperationalError: If no Kubernetes cluster is registered
            ConfigInUseError: If a database cluster still uses it
            ConsistencyError: If its secrets could not be removed
        """
        record = await self.store.get_backup_storage(name)
        await self.delete_materialized(name)

        async with self.store.transaction() as session:
            await self.store.delete_backup_storage(name, session=session)

        await self.delete_owned_secrets([record.access_key_id, record.secret_key_id], name)
        logger.info("backup_storage_deleted", name=name)
