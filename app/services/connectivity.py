"""
Live checks against external targets before credentials are stored.

StorageAccessChecker verifies that S3 credentials can reach the bucket.
PMMClient exchanges a PMM user/password for an API key.
"""
import asyncio
from typing import Optional
from uuid import uuid4

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config.logging import get_logger
from app.config.settings import settings
from app.exceptions import ValidationError
from app.models.backup_storage import BackupStorageType

logger = get_logger(__name__)


class StorageAccessChecker:
    """Checks backup storage credentials with an S3 HeadBucket request."""

    def __init__(self, enabled: bool = settings.storage_access_check_enabled):
        self.enabled = enabled

    def _head_bucket(
        self, bucket_name: str, region: str, url: Optional[str], access_key: str, secret_key: str
    ) -> None:
        s3 = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=url or None,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=BotoConfig(
                s3={"addressing_style": "path"},
                retries={"max_attempts": 2},
                connect_timeout=5,
                read_timeout=10,
            ),
        )
        s3.head_bucket(Bucket=bucket_name)

    async def check(
        self,
        storage_type: BackupStorageType,
        bucket_name: str,
        region: str,
        url: Optional[str],
        access_key: str,
        secret_key: str,
    ) -> None:
        """
        Raises:
            ValidationError: If the bucket cannot be reached with the credentials
        """
        if not self.enabled:
            return
        if storage_type != BackupStorageType.S3:
            logger.debug("storage_access_check_skipped", storage_type=storage_type.value, bucket=bucket_name)
            return

        try:
            await asyncio.to_thread(self._head_bucket, bucket_name, region, url, access_key, secret_key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("storage_access_check_failed", bucket=bucket_name, region=region, error=str(e))
            raise ValidationError(
                f"Could not connect to the backup storage, please check the credentials are correct: {e}",
                details={"bucket_name": bucket_name, "region": region},
            )

        logger.info("storage_access_checked", bucket=bucket_name, region=region)


class PMMClient:
    """Minimal client for the PMM server API."""

    def __init__(
        self,
        timeout: float = settings.pmm_request_timeout_seconds,
        verify: bool = settings.pmm_verify_tls,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.verify = verify
        self.transport = transport

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _request(self, method: str, url: str, path: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout, verify=self.verify, transport=self.transport
        ) as http:
            return await http.request(method, f"{url.rstrip('/')}{path}", **kwargs)

    async def create_api_key(self, url: str, name: str, user: str, password: str) -> str:
        """
        Create an Admin API key on the PMM server.

        Raises:
            ValidationError: If PMM is unreachable or refuses the credentials
        """
        key_name = f"dbaas-{name}-{uuid4().hex[:8]}"
        try:
            response = await self._request(
                "POST",
                url,
                "/graph/api/auth/keys",
                json={"name": key_name, "role": "Admin"},
                auth=(user, password),
            )
        except httpx.HTTPError as e:
            logger.warning("pmm_api_key_request_failed", url=url, error=str(e))
            raise ValidationError(f"Could not reach PMM at {url}: {e}")

        if response.status_code == 404:
            raise ValidationError(f"PMM API not found at {url}, check the monitoring instance URL")
        if response.status_code in (401, 403):
            raise ValidationError("PMM rejected the provided user and password")
        if response.status_code >= 400:
            logger.warning("pmm_api_key_rejected", url=url, status=response.status_code)
            raise ValidationError(f"Could not create a PMM API key: HTTP {response.status_code}")

        try:
            key = response.json()["key"]
        except (ValueError, KeyError):
            raise ValidationError("Unexpected response from PMM when creating an API key")

        logger.info("pmm_api_key_created", url=url, key_name=key_name)
        return key

    async def check_api_key(self, url: str, api_key: str) -> None:
        """
        Check that an API key is accepted by the PMM server at url.

        Raises:
            ValidationError: If PMM is unreachable or refuses the key
        """
        try:
            response = await self._request(
                "GET", url, "/v1/version", headers={"Authorization": f"Bearer {api_key}"}
            )
        except httpx.HTTPError as e:
            logger.warning("pmm_api_key_check_failed", url=url, error=str(e))
            raise ValidationError(f"Could not reach PMM at {url}: {e}")

        if response.status_code == 404:
            raise ValidationError(f"PMM API not found at {url}, check the monitoring instance URL")
        if response.status_code in (401, 403):
            raise ValidationError(f"PMM at {url} rejected the current API key, provide new credentials")
        if response.status_code >= 400:
            logger.warning("pmm_api_key_check_rejected", url=url, status=response.status_code)
            raise ValidationError(f"Could not verify the PMM API key: HTTP {response.status_code}")

        logger.info("pmm_api_key_checked", url=url)
