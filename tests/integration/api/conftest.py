"""
Conftest for API integration tests
Defines fixtures specific to API testing

Note: These tests use ASGI transport for testing without requiring a running server.
The request-scoped database session is replaced by the in-memory test session.
"""

from typing import Callable, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from timeline_backend.core.logging import get_logger
from timeline_backend.core.security import create_access_token
from timeline_backend.db.session import get_db_session
from timeline_backend.main import app

logger = get_logger(__name__)


@pytest_asyncio.fixture
async def client(db_session) -> AsyncClient:
    """
    Test HTTP client using ASGI transport
    Tests the FastAPI app directly without requiring a running server
    """
    async def override_get_db_session():
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[int], Dict[str, str]]:
    """
    Authentication headers for a given user id
    Tokens are signed with the test secret key
    """
    def _auth_headers(user_id: int) -> Dict[str, str]:
        token = create_access_token({"sub": user_id})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
