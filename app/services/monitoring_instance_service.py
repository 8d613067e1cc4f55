"""
Monitoring instance service: registration and lifecycle of PMM servers.

The API key is the only credential kept in the vault. Callers either pass
one or a PMM user/password pair, which is exchanged for a new key.
"""
from typing import Any, Dict, List
from uuid import uuid4

from app.config.logging import get_logger
from app.core.saga import Saga
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.monitoring_instance import (
    MonitoringInstanceCreateRequest,
    MonitoringInstanceRecord,
    MonitoringInstanceUpdateRequest,
    PMMCredentials,
)
from app.services.config_lifecycle import ConfigLifecycleService
from app.services.config_materializer import ConfigKind
from app.services.connectivity import PMMClient

logger = get_logger(__name__)


class MonitoringInstanceService(ConfigLifecycleService):
    """Create, update, delete and read monitoring instances."""

    kind = ConfigKind.MONITORING_CONFIG

    def __init__(self, *args: Any, pmm: PMMClient, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.pmm = pmm

    async def list(self) -> List[MonitoringInstanceRecord]:
        return await self.store.list_monitoring_instances()

    async def get(self, name: str) -> MonitoringInstanceRecord:
        return await self.store.get_monitoring_instance(name)

    async def _api_key(self, url: str, name: str, credentials: PMMCredentials) -> str:
        if credentials.api_key:
            return credentials.api_key
        return await self.pmm.create_api_key(url, name, credentials.user, credentials.password)

    async def create(self, request: MonitoringInstanceCreateRequest) -> MonitoringInstanceRecord:
        """
        Register a monitoring instance.

        Raises:
            ConflictError: If the name is taken
            ValidationError: If no API key could be obtained from PMM
        """
        try:
            await self.store.get_monitoring_instance(request.name)
        except NotFoundError:
            pass
        else:
            raise ConflictError(f"Monitoring instance '{request.name}' already exists")

        api_key = await self._api_key(request.url, request.name, request.pmm)
        record = MonitoringInstanceRecord(
            name=request.name,
            type=request.type,
            url=request.url,
            api_key_secret_id=str(uuid4()),
        )

        saga = Saga("monitoring_instance.create", name=request.name)
        self.add_secret_step(saga, "store_api_key", record.api_key_secret_id, api_key)
        saga.step("create_record", lambda: self.store.create_monitoring_instance(record))
        await saga.run()

        logger.info("monitoring_instance_created", name=record.name, url=record.url)
        return record

    async def update(self, name: str, request: MonitoringInstanceUpdateRequest) -> MonitoringInstanceRecord:
        """
        Update a monitoring instance and its materialized copies.

        Setting the type requires PMM credentials. Changing only the URL
        keeps the current API key once PMM at the new URL accepts it.

        Raises:
            NotFoundError: If the instance does not exist
            ValidationError: If credentials are missing or PMM refuses them
            MaterializationError: If a Kubernetes cluster could not be updated
        """
        if request.type is not None and request.pmm is None:
            raise ValidationError("PMM key is required")

        current = await self.store.get_monitoring_instance(name)
        changes: Dict[str, Any] = request.model_dump(exclude_unset=True, exclude={"pmm"})

        url = request.url or current.url
        saga = Saga("monitoring_instance.update", name=name)
        superseded = []
        if request.pmm is None:
            if request.url and request.url != current.url:
                await self.pmm.check_api_key(url, await self.vault.get_secret(current.api_key_secret_id))
        else:
            api_key = await self._api_key(url, name, request.pmm)
            if request.pmm.api_key:
                await self.pmm.check_api_key(url, api_key)
            changes["api_key_secret_id"] = str(uuid4())
            superseded.append(current.api_key_secret_id)
            self.add_secret_step(saga, "store_api_key", changes["api_key_secret_id"], api_key)

        async def update_record() -> MonitoringInstanceRecord:
            async with self.store.transaction() as session:
                return await self.store.update_monitoring_instance(name, changes, session=session)

        saga.step("update_record", update_record)
        updated = (await saga.run())[-1]
        logger.info("monitoring_instance_updated", name=name, fields=sorted(changes))

        try:
            await self.update_materialized(updated)
        finally:
            await self.delete_superseded_secrets(superseded, name)

        return updated

    async def delete(self, name: str) -> None:
        """
        Delete a monitoring instance that no database cluster uses.

        Raises:
            NotFoundError: If the instance does not exist
            OperationalError: If no Kubernetes cluster is registered
            ConfigInUseError: If a database cluster still uses it
            ConsistencyError: If its API key could not be removed
        """
        record = await self.store.get_monitoring_instance(name)
        await self.delete_materialized(name)

        async with self.store.transaction() as session:
            await self.store.delete_monitoring_instance(name, session=session)

        await self.delete_owned_secrets([record.api_key_secret_id], name)
        logger.info("monitoring_instance_deleted", name=name)
