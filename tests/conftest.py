"""Shared test fixtures"""
import json
import os
from datetime import datetime, timedelta
from typing import Generator, List

import httpx
import pytest
from fastapi.testclient import TestClient

from match_gateway_server.auth import AuthenticationGate
from match_gateway_server.credential_store import CredentialStore
from match_gateway_server.database import build_engine, build_session_factory, create_tables
from match_gateway_server.downstream import ProfileServiceClient
from match_gateway_server.health import metrics
from match_gateway_server.key_manager import KeyLifecycleManager
from match_gateway_server.main_api import create_app
from match_gateway_server.quota import QuotaEnforcer
from match_gateway_server.usage_ledger import SQLUsageLedger


class FakeClock:
    """Controllable replacement for utcnow()"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0))


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = build_engine("sqlite://", echo=False)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory) -> CredentialStore:
    """Shares the app salt so keys issued here resolve through the app too"""
    return CredentialStore(session_factory)


@pytest.fixture
def ledger(session_factory) -> SQLUsageLedger:
    return SQLUsageLedger(session_factory)


@pytest.fixture
def key_manager(store, clock) -> KeyLifecycleManager:
    return KeyLifecycleManager(store, default_rate_limit=100, clock=clock)


@pytest.fixture
def gate(store, clock) -> AuthenticationGate:
    return AuthenticationGate(store, clock=clock)


@pytest.fixture
def enforcer(ledger, clock) -> QuotaEnforcer:
    return QuotaEnforcer(ledger, window_seconds=3600, retry_after=3600, clock=clock)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def downstream_calls() -> List[httpx.Request]:
    """Requests received by the fake profile service"""
    return []


@pytest.fixture
def profile_service(downstream_calls) -> ProfileServiceClient:
    """Profile service client backed by an in-process mock transport"""

    def handler(request: httpx.Request) -> httpx.Response:
        downstream_calls.append(request)
        if request.url.path == "/profiles/missing":
            return httpx.Response(404, json={"success": False, "error": "Profile not found"})
        body = json.loads(request.content) if request.content else None
        return httpx.Response(
            200,
            json={
                "success": True,
                "path": request.url.path,
                "clientId": request.headers.get("X-Client-Id"),
                "body": body,
            },
        )

    return ProfileServiceClient("http://profiles.internal", transport=httpx.MockTransport(handler))


@pytest.fixture
def app(engine, clock, profile_service):
    return create_app(engine=engine, profile_service=profile_service, clock=clock, run_sweeper=False)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Password": os.environ["ADMIN_PASSWORD"]}


@pytest.fixture
def issue_key(key_manager):
    """Create a client and return its plaintext key"""

    def _issue(client_id: str = "acme_1", name: str = "Acme", **kwargs) -> str:
        return key_manager.create(name=name, client_id=client_id, **kwargs).api_key

    return _issue
