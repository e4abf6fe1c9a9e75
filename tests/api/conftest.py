"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

import vellum.dashboard as dash_module
from vellum.core import VellumDB
from vellum.dashboard import create_app


@pytest.fixture
async def client(populated_db: VellumDB) -> AsyncIterator[AsyncClient]:
    """Test client backed by the populated ledger."""
    dash_module._db = populated_db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    dash_module._db = None


@pytest.fixture
async def empty_client(db: VellumDB) -> AsyncIterator[AsyncClient]:
    """Test client backed by an empty ledger."""
    dash_module._db = db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    dash_module._db = None
