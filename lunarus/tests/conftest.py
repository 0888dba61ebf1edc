"""
Pytest configuration and fixtures for testing.
Provides test database, test client, tokens and a fake gateway socket.
"""
import pytest
from typing import Callable, Dict, Generator, List, Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from lunarus.core.security import Principal, create_access_token
from lunarus.db.database import init_db
from lunarus.main import create_app
from lunarus.services.upload_storage import UploadStorage


# In-memory SQLite shared across threads through a single connection
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture(scope="function")
def test_engine():
    """Fresh in-memory database with all tables for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    """Database session for direct repository access."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def app(test_engine, session_factory, tmp_path):
    """Application wired to the test database and a temporary uploads dir."""
    return create_app(
        engine=test_engine,
        session_factory=session_factory,
        upload_storage=UploadStorage(str(tmp_path / "uploads")),
        expose_metrics=False,
    )


@pytest.fixture(scope="function")
def test_client(app) -> Generator[TestClient, None, None]:
    """
    Test client running the app lifespan (schema + default server seed).
    HTTP calls and WebSocket sessions share one event loop.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_token() -> Callable[[str], str]:
    def _make(username: str) -> str:
        return create_access_token(username, username)["token"]
    return _make


@pytest.fixture
def auth_headers(make_token) -> Callable[[str], Dict[str, str]]:
    def _headers(username: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(username)}"}
    return _headers


class FakeWebSocket:
    """
    Minimal stand-in for a connected WebSocket.
    Records every text frame sent; can be told to fail like a dropped socket.
    """

    def __init__(self, fail_with: Optional[Exception] = None):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[str] = []
        self.fail_with = fail_with
        self.close_code: Optional[int] = None

    async def send_text(self, data: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.close_code = code

    def disconnect(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self.fail_with = WebSocketDisconnect(1001)


@pytest.fixture
def fake_websocket() -> Callable[..., FakeWebSocket]:
    return FakeWebSocket


@pytest.fixture
def principal() -> Callable[[str], Principal]:
    def _principal(user_id: str) -> Principal:
        return Principal(user_id=user_id, display_name=user_id)
    return _principal
