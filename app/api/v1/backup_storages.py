"""
Backup storage API endpoints.

URL Pattern: /api/v1/backup-storages
"""
from typing import List

from fastapi import APIRouter, Depends, Path, Response, status

from app.api.deps import get_backup_storage_service
from app.models.backup_storage import (
    BackupStorageCreateRequest,
    BackupStorageResponse,
    BackupStorageUpdateRequest,
)
from app.services.backup_storage_service import BackupStorageService

router = APIRouter()


@router.post("/", response_model=BackupStorageResponse, status_code=status.HTTP_201_CREATED)
async def create_backup_storage(
    request: BackupStorageCreateRequest,
    service: BackupStorageService = Depends(get_backup_storage_service),
):
    """
    Register a backup storage.

    S3 credentials are checked against the bucket before anything is stored.
    """
    return BackupStorageResponse.from_record(await service.create(request))


@router.get("/", response_model=List[BackupStorageResponse])
async def list_backup_storages(service: BackupStorageService = Depends(get_backup_storage_service)):
    return [BackupStorageResponse.from_record(r) for r in await service.list()]


@router.get("/{name}", response_model=BackupStorageResponse)
async def get_backup_storage(
    name: str = Path(..., description="Backup storage name"),
    service: BackupStorageService = Depends(get_backup_storage_service),
):
    return BackupStorageResponse.from_record(await service.get(name))


@router.patch("/{name}", response_model=BackupStorageResponse)
async def update_backup_storage(
    request: BackupStorageUpdateRequest,
    name: str = Path(..., description="Backup storage name"),
    service: BackupStorageService = Depends(get_backup_storage_service),
):
    """Update a backup storage and the copies deployed to Kubernetes clusters."""
    return BackupStorageResponse.from_record(await service.update(name, request))


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_backup_storage(
    name: str = Path(..., description="Backup storage name"),
    service: BackupStorageService = Depends(get_backup_storage_service),
):
    """Delete a backup storage. Refused with 409 while a database cluster uses it."""
    await service.delete(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
