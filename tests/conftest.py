"""
Pytest configuration and shared fixtures.

No database is needed: routes run against the ASGI app with the session,
identity provider and staff context replaced through dependency overrides.
"""
import os

os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("OPENAI_API_KEY", "")

import uuid
from contextlib import asynccontextmanager
from typing import Any, Iterable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.request_context import StaffContext
from clinicbook.identity import IdentityClient


def make_result(value: Any = None, rows: Iterable[Any] | None = None) -> MagicMock:
    """Stand-in for a SQLAlchemy Result returning ``value`` (single) or ``rows`` (many)."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    result.scalars.return_value.all.return_value = list(rows or [])
    return result


@pytest.fixture
def mock_session():
    """AsyncSession double: async methods are AsyncMock, ``add`` is a plain MagicMock."""
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def identity():
    return MagicMock(spec=IdentityClient)


@pytest.fixture
def staff_ctx():
    return StaffContext(
        user_id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        email="owner@beauty-berlin.de",
        role="owner",
        full_name="Lena Owner",
    )


@pytest.fixture
def session_factory():
    """async_sessionmaker double handing out a fresh AsyncSession mock per call."""
    sessions: list[AsyncMock] = []

    @asynccontextmanager
    async def _open():
        session = AsyncMock(spec=AsyncSession)
        sessions.append(session)
        yield session

    factory = MagicMock(side_effect=lambda: _open())
    factory.sessions = sessions
    return factory


@pytest_asyncio.fixture
async def client(mock_session, identity):
    """AsyncClient against the app with session and identity overrides."""
    from clinicbook.main import app
    from clinicbook.core.db import get_session
    from clinicbook.identity import get_identity_client

    async def override_get_session():
        yield mock_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_identity_client] = lambda: identity

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def staff_client(client, staff_ctx):
    """Client whose requests are authenticated as ``staff_ctx``."""
    from clinicbook.main import app
    from clinicbook.core.request_context import get_staff_context, require_staff_page

    app.dependency_overrides[get_staff_context] = lambda: staff_ctx
    app.dependency_overrides[require_staff_page] = lambda: staff_ctx
    yield client
