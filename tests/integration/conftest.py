"""Integration test fixtures — app over a seeded in-memory database, async client, processor."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import traininghub.database as db_mod
import traininghub.dependencies as dep_mod
from traininghub.export.processor import ExportProcessor


def _reset_singletons():
    """Reset module-level singletons so each test starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod._config_instance = None
    dep_mod._export_processor = None
    dep_mod._retention_manager = None


@pytest_asyncio.fixture
async def test_app(db_engine, seeded_factory, export_config):
    """App wired to the per-test seeded database and temporary export dir."""
    _reset_singletons()

    # Inject into database module BEFORE app import
    db_mod._engine = db_engine
    db_mod._session_factory = seeded_factory
    dep_mod._config_instance = export_config

    from traininghub.main import app

    yield app

    _reset_singletons()


@pytest_asyncio.fixture
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def processor(test_app, seeded_factory, export_config):
    """Processor driven manually by the tests (never started)."""
    return ExportProcessor(seeded_factory, export_config)


@pytest.fixture
def super_admin_headers(auth_headers, seed):
    return auth_headers(seed.super_admin_id, "super_admin")


@pytest.fixture
def admin_headers(auth_headers, seed):
    return auth_headers(seed.admin_id, "admin")
