"""
API test fixtures.

The app is driven through httpx's ASGI transport without running the
lifespan, so the queue and cooldown are wired onto app.state here.
"""

import httpx
import pytest

from app.db.session import get_async_db
from app.features.integrations import SyncCooldown, WebhookQueue
from app.main import app

AUTH_HEADERS = {"X-User-Id": "athlete-1", "X-Club-Id": "club-1"}


@pytest.fixture
async def api(session_factory):
    """HTTP client bound to the app and the test database."""
    queue = WebhookQueue(session_factory)
    app.state.session_factory = session_factory
    app.state.webhook_queue = queue
    app.state.sync_cooldown = SyncCooldown(60)

    async def override_get_async_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_get_async_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    await queue.stop()
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return dict(AUTH_HEADERS)
