"""
Secrets vault: opaque key-value store for credential material.

Secrets are addressed by generated identifiers and have a lifecycle
independent from the metadata store. The MongoDB implementation keeps them
in a dedicated database.
"""
from abc import ABC, abstractmethod

from pymongo.errors import DuplicateKeyError, PyMongoError

from app.config.logging import get_logger
from app.exceptions import ConflictError, NotFoundError, VaultError
from app.repositories.models import Secret

logger = get_logger(__name__)


class SecretsVault(ABC):
    """Contract consumed by the services. No partial writes."""

    @abstractmethod
    async def get_secret(self, secret_id: str) -> str:
        """Return the secret value. Raises NotFoundError if absent."""

    @abstractmethod
    async def create_secret(self, secret_id: str, value: str) -> None:
        """Store a new secret. Raises ConflictError if the id is taken."""

    @abstractmethod
    async def delete_secret(self, secret_id: str) -> bool:
        """Delete a secret. Returns False if it did not exist."""


class MongoSecretsVault(SecretsVault):
    """Secrets vault backed by the vault MongoDB database."""

    async def get_secret(self, secret_id: str) -> str:
        try:
            secret = await Secret.get(secret_id)
        except PyMongoError as e:
            raise VaultError(f"could not read secret {secret_id}: {e}")
        if secret is None:
            raise NotFoundError("Secret", secret_id)
        return secret.value

    async def create_secret(self, secret_id: str, value: str) -> None:
        try:
            await Secret(id=secret_id, value=value).insert()
        except DuplicateKeyError:
            raise ConflictError(f"Secret '{secret_id}' already exists")
        except PyMongoError as e:
            raise VaultError(f"could not store secret {secret_id}: {e}")
        logger.debug("secret_created", secret_id=secret_id)

    async def delete_secret(self, secret_id: str) -> bool:
        try:
            result = await Secret.find_one(Secret.id == secret_id).delete()
        except PyMongoError as e:
            raise VaultError(f"could not delete secret {secret_id}: {e}")
        deleted = bool(result and result.deleted_count)
        logger.debug("secret_deleted", secret_id=secret_id, existed=deleted)
        return deleted
