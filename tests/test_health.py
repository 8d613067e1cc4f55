"""
Tests for health check endpoints.
"""
import pytest
from fastapi import status
from httpx import AsyncClient

from app.config.database import Database
from app.core.task_group import BackgroundTaskGroup
from app.main import app


def stub_pings(monkeypatch, metadata: bool, vault: bool):
    async def ping():
        return metadata

    async def ping_vault():
        return vault

    monkeypatch.setattr(Database, "ping", ping)
    monkeypatch.setattr(Database, "ping_vault", ping_vault)


@pytest.fixture
def task_group():
    """Task group installed on the app the way the lifespan does."""
    tasks = BackgroundTaskGroup()
    app.state.task_group = tasks
    yield tasks
    del app.state.task_group


@pytest.mark.asyncio
async def test_health_check(test_client: AsyncClient):
    response = await test_client.get("/health/")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == app.version


@pytest.mark.asyncio
async def test_liveness(test_client: AsyncClient):
    response = await test_client.get("/health/live")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "alive"


@pytest.mark.asyncio
async def test_ready_when_both_databases_answer(test_client: AsyncClient, monkeypatch, task_group):
    stub_pings(monkeypatch, metadata=True, vault=True)

    response = await test_client.get("/health/ready")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "ready"
    assert data["database"] == "healthy"
    assert data["vault"] == "healthy"
    assert data["background_tasks"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("metadata, vault", [(False, True), (True, False), (False, False)])
async def test_not_ready_when_a_database_is_down(test_client: AsyncClient, monkeypatch, metadata, vault):
    stub_pings(monkeypatch, metadata=metadata, vault=vault)

    response = await test_client.get("/health/ready")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["database"] == ("healthy" if metadata else "unhealthy")
    assert data["vault"] == ("healthy" if vault else "unhealthy")


@pytest.mark.asyncio
async def test_not_ready_during_shutdown(test_client: AsyncClient, monkeypatch, task_group):
    stub_pings(monkeypatch, metadata=True, vault=True)
    await task_group.shutdown(timeout=1)

    response = await test_client.get("/health/ready")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["status"] == "shutting_down"


@pytest.mark.asyncio
async def test_pings_fail_without_a_connection():
    Database.client = None

    assert await Database.ping() is False
    assert await Database.ping_vault() is False


@pytest.mark.asyncio
async def test_startup_waits_for_metadata_database(test_client: AsyncClient, monkeypatch):
    stub_pings(monkeypatch, metadata=False, vault=False)
    response = await test_client.get("/health/startup")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["status"] == "starting"

    stub_pings(monkeypatch, metadata=True, vault=True)
    response = await test_client.get("/health/startup")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "started"
