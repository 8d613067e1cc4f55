"""
Pydantic models for backup storage targets.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

NAME_PATTERN = "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class BackupStorageType(str, Enum):
    """Supported backup storage providers."""

    S3 = "s3"
    AZURE = "azure"


class BackupStorageRecord(BaseModel):
    """Backup storage as persisted in the metadata store."""

    name: str
    type: BackupStorageType
    bucket_name: str
    region: str
    url: Optional[str] = None
    description: Optional[str] = None
    access_key_id: str = Field(..., description="Vault id of the access key")
    secret_key_id: str = Field(..., description="Vault id of the secret key")


class BackupStorageCreateRequest(BaseModel):
    """Request model for registering a backup storage."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=NAME_PATTERN,
        description="Backup storage name (DNS-1123 compliant, immutable)",
    )
    type: BackupStorageType = Field(..., description="Storage provider")
    bucket_name: str = Field(..., min_length=1, description="Bucket or container name")
    region: str = Field(..., min_length=1, description="Storage region")
    url: Optional[str] = Field(default=None, description="Endpoint URL for S3-compatible storages")
    description: Optional[str] = Field(default=None, max_length=255)
    access_key: str = Field(..., min_length=1, description="Access key (account name for Azure)")
    secret_key: str = Field(..., min_length=1, description="Secret key (account key for Azure)")


class BackupStorageUpdateRequest(BaseModel):
    """Request model for updating a backup storage. Omitted fields are unchanged."""

    bucket_name: Optional[str] = Field(default=None, min_length=1)
    region: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=255)
    access_key: Optional[str] = Field(default=None, min_length=1)
    secret_key: Optional[str] = Field(default=None, min_length=1)

    @field_validator("bucket_name", "region", "access_key", "secret_key")
    @classmethod
    def reject_null(cls, v: Optional[str]) -> str:
        """Omit a field to keep it; these fields cannot be cleared."""
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class BackupStorageResponse(BaseModel):
    """Backup storage as returned by the API. Credentials are never exposed."""

    name: str
    type: BackupStorageType
    bucket_name: str
    region: str
    url: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_record(cls, record: BackupStorageRecord) -> "BackupStorageResponse":
        return cls(
            name=record.name,
            type=record.type,
            bucket_name=record.bucket_name,
            region=record.region,
            url=record.url,
            description=record.description,
        )
