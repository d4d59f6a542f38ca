"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Iterator

os.environ.setdefault("DATABASE_DSN", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app import database
from app.core.security import create_user_token
from app.database import get_db
from app.main import app
from app.models import Base, User
from parley.realtime import RoomRegistry, RoutingTable
from parley.realtime import gateway as realtime_gateway


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

    return sessionmaker(bind=test_engine, autoflush=False, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def chat_gateway(monkeypatch, session_factory) -> realtime_gateway.ChatGateway:
    """Install a fresh gateway with empty routing state for each test."""

    gateway = realtime_gateway.ChatGateway(RoutingTable(), RoomRegistry())
    monkeypatch.setattr(realtime_gateway, "chat_gateway", gateway)
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    return gateway


@pytest.fixture()
def client(session_factory, chat_gateway) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient with the database dependency overridden."""

    def override_get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(session_factory) -> Callable[..., int]:
    """Create a user row and return its id."""

    def _make_user(username: str, display_name: str | None = None) -> int:
        with session_factory() as session:
            user = User(username=username, display_name=display_name)
            session.add(user)
            session.commit()
            return user.id

    return _make_user


@pytest.fixture()
def auth_headers() -> Callable[[int], dict[str, str]]:
    def _auth_headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_user_token(user_id)}"}

    return _auth_headers


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"
