"""
Pydantic models for monitoring instances (PMM servers).
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.backup_storage import NAME_PATTERN


class MonitoringInstanceType(str, Enum):
    """Supported monitoring backends."""

    PMM = "pmm"


class PMMCredentials(BaseModel):
    """PMM credentials: either an API key, or a user/password pair to mint one."""

    api_key: Optional[str] = Field(default=None, min_length=1)
    user: Optional[str] = Field(default=None, min_length=1)
    password: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def check_credentials(self) -> "PMMCredentials":
        if self.api_key:
            return self
        if not (self.user and self.password):
            raise ValueError("PMM api_key or user and password are required")
        return self


class MonitoringInstanceRecord(BaseModel):
    """Monitoring instance as persisted in the metadata store."""

    name: str
    type: MonitoringInstanceType
    url: str
    api_key_secret_id: str = Field(..., description="Vault id of the PMM API key")


class MonitoringInstanceCreateRequest(BaseModel):
    """Request model for registering a monitoring instance."""

    name: str = Field(..., min_length=1, max_length=63, pattern=NAME_PATTERN)
    type: MonitoringInstanceType = Field(default=MonitoringInstanceType.PMM)
    url: str = Field(..., min_length=1, description="Monitoring server URL")
    pmm: PMMCredentials


class MonitoringInstanceUpdateRequest(BaseModel):
    """Request model for updating a monitoring instance. Omitted fields are unchanged."""

    type: Optional[MonitoringInstanceType] = None
    url: Optional[str] = Field(default=None, min_length=1)
    pmm: Optional[PMMCredentials] = None

    @field_validator("type", "url")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class MonitoringInstanceResponse(BaseModel):
    """Monitoring instance as returned by the API."""

    name: str
    type: MonitoringInstanceType
    url: str
    api_key_secret_id: str

    @classmethod
    def from_record(cls, record: MonitoringInstanceRecord) -> "MonitoringInstanceResponse":
        return cls(
            name=record.name,
            type=record.type,
            url=record.url,
            api_key_secret_id=record.api_key_secret_id,
        )
