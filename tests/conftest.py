"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="huddle-media-"))
os.environ.pop("REALTIME_REDIS_URL", None)

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from passlib.context import CryptContext
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from huddle.realtime import configure_realtime

from app.api import ws as ws_module
from app.core import security
from app.database import SessionLocal, get_db
from app.main import app
from app.models import Base, Channel, ChannelMember, ChannelRole, ChannelVisibility, User
from app.services.broadcast_auth import PolicyAuthorizer

security.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class DummyWebSocket:
    """Minimal stand-in for a connected websocket that records sent frames."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("event") == name]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory, monkeypatch) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient wired to the test database.

    HTTP handlers, websocket handlers and the realtime authorizer all share
    the in-memory engine.
    """

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def override_db_session() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(ws_module, "get_db_session", override_db_session)
    configure_realtime(authorizer=PolicyAuthorizer(session_factory))
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        configure_realtime(authorizer=PolicyAuthorizer(SessionLocal))


@pytest.fixture()
def make_user(db_session):
    """Create users directly in the database."""

    def factory(login: str, display_name: str | None = None) -> User:
        user = User(login=login, display_name=display_name, hashed_password="hashed")
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def make_channel(db_session):
    """Create a channel with its creator as admin and optional extra members."""

    def factory(
        creator: User,
        name: str = "general",
        *,
        visibility: ChannelVisibility = ChannelVisibility.PUBLIC,
        members: tuple[User, ...] = (),
    ) -> Channel:
        channel = Channel(name=name, visibility=visibility, creator_id=creator.id)
        channel.members.append(ChannelMember(user_id=creator.id, role=ChannelRole.ADMIN))
        for member in members:
            channel.members.append(ChannelMember(user_id=member.id, role=ChannelRole.MEMBER))
        db_session.add(channel)
        db_session.commit()
        db_session.refresh(channel)
        return channel

    return factory
