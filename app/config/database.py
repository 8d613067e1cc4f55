"""
MongoDB database connection and initialization using Motor and Beanie ODM.

The metadata store and the secrets vault share one client but live in two
databases, so their document models are initialized separately.
"""
import asyncio
from typing import List, Optional

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from app.config.settings import settings
from app.config.logging import get_logger

logger = get_logger(__name__)


class Database:
    """MongoDB database connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    database = None
    vault_database = None

    @classmethod
    async def connect_db(cls, document_models: List[type], vault_models: List[type]) -> None:
        """
        Connect to MongoDB and initialize Beanie ODM with retry logic.

        Retries up to 10 times with exponential backoff (2s, 4s, 8s, 16s, 30s max).

        Args:
            document_models: Beanie models stored in the metadata database
            vault_models: Beanie models stored in the vault database
        """
        max_attempts = 10
        base_delay = 2
        max_delay = 30

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info(
                    "connecting_to_mongodb",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    url=settings.mongodb_url.split("@")[-1],  # Log without credentials
                    database=settings.mongodb_database,
                    vault_database=settings.vault_database,
                )

                cls.client = AsyncIOMotorClient(
                    str(settings.mongodb_url),
                    maxPoolSize=settings.mongodb_max_pool_size,
                    minPoolSize=settings.mongodb_min_pool_size,
                    maxIdleTimeMS=settings.mongodb_max_idle_time_ms,
                    serverSelectionTimeoutMS=5000,
                    connectTimeoutMS=10000,
                    socketTimeoutMS=20000,
                    retryWrites=True,
                )

                cls.database = cls.client[settings.mongodb_database]
                cls.vault_database = cls.client[settings.vault_database]

                await init_beanie(database=cls.database, document_models=document_models)  # type: ignore
                await init_beanie(database=cls.vault_database, document_models=vault_models)  # type: ignore

                await cls.client.admin.command("ping")

                logger.info(
                    "mongodb_connected",
                    database=settings.mongodb_database,
                    vault_database=settings.vault_database,
                    models_count=len(document_models) + len(vault_models),
                )
                return

            except asyncio.CancelledError:
                logger.info("mongodb_connection_cancelled")
                raise
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(
                    "mongodb_connection_failed",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                    url=settings.mongodb_url.split("@")[-1],
                )

                if attempt >= max_attempts:
                    logger.error("mongodb_max_retries_exceeded")
                    raise

                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                logger.info("retrying_mongodb_connection", delay_seconds=delay)
                await asyncio.sleep(delay)

    @classmethod
    async def close_db(cls) -> None:
        """Close MongoDB connection."""
        if cls.client:
            logger.info("closing_mongodb_connection")
            cls.client.close()
            cls.client = None
            cls.database = None
            cls.vault_database = None
            logger.info("mongodb_connection_closed")

    @classmethod
    async def ping(cls) -> bool:
        """
        Check database connectivity.

        Returns:
            True if connected, False otherwise
        """
        if cls.client is None:
            return False
        try:
            await cls.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error("database_ping_failed", error=str(e))
            return False

    @classmethod
    async def ping_vault(cls) -> bool:
        """
        Check the secrets vault database is reachable.

        Returns:
            True if reachable, False otherwise
        """
        if cls.client is None or cls.vault_database is None:
            return False
        try:
            await cls.vault_database.command("ping")
            return True
        except Exception as e:
            logger.error("vault_database_ping_failed", error=str(e))
            return False
