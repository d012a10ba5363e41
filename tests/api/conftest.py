"""Fixtures for API tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from tally.api.app import create_app
from tally.api.dependencies import get_artifact_store, get_db_session


def actor_headers(actor) -> dict[str, str]:
    return {
        "X-Firm-ID": str(actor.firm_id),
        "X-User-ID": str(actor.user_id),
        "X-Role": actor.role.value,
    }


@pytest.fixture
async def api_client(session, artifact_store):
    """HTTP client bound to the test session and artifact store."""
    app = create_app()

    async def override_session():
        yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_artifact_store] = lambda: artifact_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
