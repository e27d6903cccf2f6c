from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from creator_studio import db
from creator_studio.config import Settings
from creator_studio.connections import ConnectionManager
from creator_studio.graph_client import GraphClient
from creator_studio.main import create_app
from creator_studio.models import Role, User
from creator_studio.publishing import PublishWorkflow
from creator_studio.sessions import COOKIE_NAME, SessionUser, create_session_token
from creator_studio.token_cipher import TokenCipher

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
SESSION_SECRET = "test-session-secret"
ENCRYPTION_SECRET = "an-encryption-secret-that-is-longer-than-32-bytes"

FB = "graph.facebook.com/v21.0"
IG = "graph.instagram.com/v21.0"


class FakeProvider:
    """MockTransport handler answering Meta / Google calls from canned responses.

    Routes are keyed by ``host + path``; the long-lived exchange shares its
    path with the code exchange and is keyed with a ``#long_lived`` suffix.
    When a route has several responses they are served in order and the last
    one repeats.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[tuple[int, Any]]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, key: str, *responses: tuple[int, Any]) -> None:
        self.routes[key] = list(responses)

    def _key(self, request: httpx.Request) -> str:
        key = f"{request.url.host}{request.url.path}"
        if request.url.params.get("grant_type") == "fb_exchange_token":
            key += "#long_lived"
        return key

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get(self._key(request))
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"unexpected call {self._key(request)}"}})
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, json=body)

    def called(self, key: str) -> list[httpx.Request]:
        return [request for request in self.calls if self._key(request) == key]

    def connect_flow(
        self,
        user_token: str = "user-token",
        page_token: str = "page-token",
        long_lived: tuple[int, Any] = (200, {"access_token": "long-token", "expires_in": 5184000}),
        username: tuple[int, Any] = (200, {"username": "creator", "id": "ig-1"}),
    ) -> None:
        self.add(f"{FB}/oauth/access_token", (200, {"access_token": user_token, "token_type": "bearer"}))
        self.add(
            f"{FB}/me/accounts",
            (
                200,
                {
                    "data": [
                        {"id": "page-0", "name": "No IG", "access_token": "other-token"},
                        {
                            "id": "page-1",
                            "name": "Studio",
                            "access_token": page_token,
                            "instagram_business_account": {"id": "ig-1"},
                        },
                    ]
                },
            ),
        )
        self.add(f"{FB}/oauth/access_token#long_lived", long_lived)
        self.add(f"{IG}/ig-1", username)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        public_base_url="http://testserver",
        database_url="sqlite://",
        session_secret=SESSION_SECRET,
        encryption_secret=ENCRYPTION_SECRET,
        facebook_app_id="app-id",
        facebook_app_secret="app-secret",
        google_client_id="google-id",
        google_client_secret="google-secret",
        upload_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def session_factory(settings):
    engine = db.create_db_engine(settings.database_url)
    db.init_db(engine)
    yield db.create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def graph(settings, fake_provider) -> GraphClient:
    return GraphClient(settings, httpx.Client(transport=httpx.MockTransport(fake_provider)))


@pytest.fixture
def manager(settings, graph) -> ConnectionManager:
    return ConnectionManager(settings, graph, TokenCipher(settings.encryption_secret), clock=lambda: FIXED_NOW)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def workflow(manager, graph, sleeps) -> PublishWorkflow:
    return PublishWorkflow(manager, graph, sleep=sleeps.append)


@pytest.fixture
def user(session_factory) -> User:
    return make_user(session_factory, "creator@example.com")


@pytest.fixture
def app(settings, fake_provider, sleeps):
    return create_app(settings, transport=httpx.MockTransport(fake_provider), sleep=sleeps.append)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def make_user(session_factory, email: str, role: Role = Role.USER, name: str = "Creator") -> User:
    with db.session_scope(session_factory) as session:
        user = User(email=email, name=name, role=role, provider="google", provider_id=email)
        session.add(user)
        session.flush()
    return user


def sign_in(client: TestClient, user: User) -> SessionUser:
    session_user = SessionUser.from_user(user)
    client.cookies.set(COOKIE_NAME, create_session_token(session_user, SESSION_SECRET))
    return session_user
