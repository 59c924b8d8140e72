import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from cliploop.config import settings
from cliploop.models import Clip


@pytest.fixture(autouse=True)
def no_pacing_delay():
    # Sequential page requests don't need to be polite in tests
    original = settings.PAGINATION_DELAY
    settings.PAGINATION_DELAY = 0
    yield
    settings.PAGINATION_DELAY = original


@pytest.fixture
def make_clip():
    def _make(i, views=0, created_at=None, **fields):
        return Clip(
            id=f"clip{i}",
            slug=f"slug{i}",
            title=f"Clip {i}",
            view_count=views,
            created_at=created_at or datetime.now(timezone.utc) - timedelta(days=1),
            url=f"https://www.twitch.tv/chan/clip/slug{i}",
            **fields,
        )
    return _make


@pytest.fixture
def mock_client():
    """
    Builds an httpx.AsyncClient whose requests are answered by `handler`.
    Every request body is decoded and recorded on `client.sent`.
    """
    def _make(handler):
        sent = []

        def _handle(request: httpx.Request):
            sent.append(json.loads(request.content))
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_handle))
        client.sent = sent
        return client
    return _make
