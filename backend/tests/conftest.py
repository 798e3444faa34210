import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from contract_finder.config import settings
from contract_finder.database import get_db, init_db
from contract_finder.errors import MissingImpersonationTarget
from contract_finder.main import app
from contract_finder.services.credential_service import AuthHandle, ServiceAccountKey, parse_credential
from contract_finder.services.inference_service import FieldInferrer
from contract_finder.services.search_service import SearchService
from contract_finder.services.user_service import create_user, save_credential


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class FakeGoogle:
    """Routes requests by (method, path) to canned JSON responses.

    A route value may be a dict (200 JSON), a ``(status, body)`` tuple, an
    ``httpx.Response``, an exception instance to raise, or a callable taking
    the request. A list of values is consumed one per call.
    """

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, value):
        self.routes[(method, httpx.URL(url).path)] = value

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        path = httpx.URL(url).path
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        value = self.routes.get((request.method, request.url.path))
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if value is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": "Not found"}})
        if callable(value) and not isinstance(value, httpx.Response):
            value = value(request)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, httpx.Response):
            return value
        if isinstance(value, tuple):
            status, body = value
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=value)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class StubOpenAI:
    """Stands in for ``AsyncOpenAI``; only ``chat.completions.create`` is used."""

    def __init__(self, reply: str = "{}"):
        self.reply = reply
        self.error: Exception | None = None
        self.calls: list[dict] = []
        self.closed = False
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])

    async def close(self):
        self.closed = True


class StubResolver:
    def __init__(self):
        self.error: Exception | None = None
        self.calls: list[tuple] = []
        self.refreshed: dict | None = None

    async def resolve(self, raw, impersonation_hint=None, scopes=None):
        self.calls.append((raw, impersonation_hint))
        if self.error is not None:
            raise self.error
        credential = parse_credential(raw)
        if isinstance(credential, ServiceAccountKey):
            if not impersonation_hint:
                raise MissingImpersonationTarget()
            return AuthHandle(access_token="ya29.test", kind=credential.kind, email=impersonation_hint)
        return AuthHandle(
            access_token="ya29.test",
            kind=credential.kind,
            email=credential.email or impersonation_hint,
            refreshed=self.refreshed,
        )


OAUTH_RECORD = {"refresh_token": "1//refresh", "access_token": "ya29.old", "email": "owner@example.com"}


@pytest.fixture
def test_db(tmp_path):
    db_path = tmp_path / "db.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    init_db(db_path)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestSession
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def openai_stub():
    return StubOpenAI()


@pytest.fixture
def resolver():
    return StubResolver()


@pytest.fixture
def inferrer(openai_stub):
    return FieldInferrer(openai_stub, "gpt-test")


@pytest.fixture
def search_service(google, resolver, inferrer):
    test_settings = settings.model_copy(update={"mail_batch_pause_seconds": 0})
    return SearchService.from_settings(test_settings, google.client(), resolver, inferrer)


@pytest.fixture
def client(test_db, search_service, resolver, inferrer):
    app.state.search_service = search_service
    app.state.resolver = resolver
    app.state.inferrer = inferrer
    c = TestClient(app)
    yield c
    for name in ("search_service", "resolver", "inferrer"):
        delattr(app.state, name)


@pytest.fixture
def user(test_db):
    with test_db() as db:
        user, token = create_user(db, "owner@example.com")
        return SimpleNamespace(id=user.id, token=token, headers={"Authorization": f"Bearer {token}"})


@pytest.fixture
def other_user(test_db):
    with test_db() as db:
        user, token = create_user(db, "other@example.com")
        return SimpleNamespace(id=user.id, token=token, headers={"Authorization": f"Bearer {token}"})


@pytest.fixture
def connected_user(test_db, user):
    with test_db() as db:
        save_credential(db, user.id, json.dumps(OAUTH_RECORD))
    return user
