"""Pytest configuration and fixtures."""
from __future__ import annotations

from collections.abc import Generator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from dooly.document.store import reset_document_store
from dooly.main import app
from dooly.realtime.broadcaster import reset_broadcaster
from dooly.realtime.clock import ManualClock
from dooly.realtime.hub import reset_sync_hub


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"


@pytest.fixture(autouse=True)
def _reset_singletons() -> Generator[None, None, None]:
    """Reset hub, broadcaster and document store between tests to prevent cross-test pollution."""
    yield
    reset_sync_hub()
    reset_broadcaster()
    reset_document_store()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start_ms=1_700_000_000_000)


@pytest_asyncio.fixture
async def client():
    """Async HTTP test client (no lifespan; the hub is created lazily)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
