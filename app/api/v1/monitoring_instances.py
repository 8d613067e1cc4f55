"""
Monitoring instance API endpoints.

URL Pattern: /api/v1/monitoring-instances
"""
from typing import List

from fastapi import APIRouter, Depends, Path, Response, status

from app.api.deps import get_monitoring_instance_service
from app.models.monitoring_instance import (
    MonitoringInstanceCreateRequest,
    MonitoringInstanceResponse,
    MonitoringInstanceUpdateRequest,
)
from app.services.monitoring_instance_service import MonitoringInstanceService

router = APIRouter()


@router.post("/", response_model=MonitoringInstanceResponse, status_code=status.HTTP_201_CREATED)
async def create_monitoring_instance(
    request: MonitoringInstanceCreateRequest,
    service: MonitoringInstanceService = Depends(get_monitoring_instance_service),
):
    """
    Register a PMM server.

    Pass either an API key or a user and password; the latter is exchanged
    for a new API key on the PMM server.
    """
    return MonitoringInstanceResponse.from_record(await service.create(request))


@router.get("/", response_model=List[MonitoringInstanceResponse])
async def list_monitoring_instances(
    service: MonitoringInstanceService = Depends(get_monitoring_instance_service),
):
    return [MonitoringInstanceResponse.from_record(r) for r in await service.list()]


@router.get("/{name}", response_model=MonitoringInstanceResponse)
async def get_monitoring_instance(
    name: str = Path(..., description="Monitoring instance name"),
    service: MonitoringInstanceService = Depends(get_monitoring_instance_service),
):
    return MonitoringInstanceResponse.from_record(await service.get(name))


@router.patch("/{name}", response_model=MonitoringInstanceResponse)
async def update_monitoring_instance(
    request: MonitoringInstanceUpdateRequest,
    name: str = Path(..., description="Monitoring instance name"),
    service: MonitoringInstanceService = Depends(get_monitoring_instance_service),
):
    return MonitoringInstanceResponse.from_record(await service.update(name, request))


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_monitoring_instance(
    name: str = Path(..., description="Monitoring instance name"),
    service: MonitoringInstanceService = Depends(get_monitoring_instance_service),
):
    await service.delete(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
