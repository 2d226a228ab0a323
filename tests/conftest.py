import httpx
import pytest

from notifeed.core.config import settings
from notifeed.core.session import SessionStore
from notifeed.services.notification_center import NotificationCenter
from notifeed.services.realtime import RealtimeChannel
from notifeed.services.transport import TransportClient
from notifeed.store.feed import NotificationStore
from tests.utils import FakeBackend, FakeSocketServer, make_token

@pytest.fixture
def token():
    return make_token()

@pytest.fixture
def backend(token):
    backend = FakeBackend()
    backend.valid_tokens.add(token)
    return backend

@pytest.fixture
def session(token):
    return SessionStore(token)

@pytest.fixture
def store():
    return NotificationStore()

@pytest.fixture
async def transport(session, backend):
    client = TransportClient(session, base_url="http://test", transport=httpx.ASGITransport(app=backend.app))
    yield client
    await client.aclose()

@pytest.fixture
def socket_server():
    return FakeSocketServer()

@pytest.fixture
async def center(monkeypatch, session, backend, socket_server):
    # Short timings so lifecycle tests settle quickly
    monkeypatch.setattr(settings, "FETCH_DEBOUNCE_SECONDS", 0.01)
    monkeypatch.setattr(settings, "FETCH_MIN_INTERVAL_SECONDS", 0.2)

    transport = TransportClient(session, base_url="http://test", transport=httpx.ASGITransport(app=backend.app))
    channel = RealtimeChannel(
        session,
        url="http://test",
        reconnect_attempts=2,
        reconnect_delay=0.01,
        client_factory=socket_server.factory,
    )
    center = NotificationCenter(session, transport=transport, channel=channel)
    yield center
    await center.aclose()
