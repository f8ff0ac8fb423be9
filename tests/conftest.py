"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("RUNNER_API_KEY", "")
os.environ.setdefault("RUNNER_LOG_LEVEL", "DEBUG")

import pytest
from httpx import ASGITransport, AsyncClient

from script_runner.services.command_service import CommandService
from script_runner.storage.store import CommandStore
from tests.helpers import make_settings


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
async def store(test_settings):
    """A CommandStore on a fresh temp database."""
    s = CommandStore(test_settings)
    await s.create_schema()
    yield s
    s.close()


@pytest.fixture
async def make_service(tmp_path):
    """Factory for started services sharing the temp database."""
    created: list[CommandService] = []

    async def _make(**overrides) -> CommandService:
        svc = CommandService(make_settings(tmp_path, **overrides))
        await svc.start()
        created.append(svc)
        return svc

    yield _make

    for svc in created:
        await svc.close()


@pytest.fixture
async def service(make_service):
    return await make_service()


@pytest.fixture
async def client(service):
    """Async test client with the service dependency overridden."""
    from script_runner.main import app as fastapi_app
    from script_runner.services.command_service import get_command_service

    fastapi_app.dependency_overrides[get_command_service] = lambda: service

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    fastapi_app.dependency_overrides.clear()
