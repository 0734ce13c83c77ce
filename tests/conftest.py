"""Shared test fixtures."""

# ruff: noqa: E402  -- settings are read at import time

import os

os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app


@pytest.fixture
def db_session() -> AsyncMock:
    """AsyncSession stand-in whose begin_nested() works as `async with`."""
    db = AsyncMock()
    db.begin_nested = MagicMock(return_value=AsyncMock())
    return db


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
