from __future__ import annotations

import os

# Must be set before the app modules build their engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from typing import Callable, Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from constituency_desk.database import build_engine, get_db, init_db
from constituency_desk.main import app
from constituency_desk.models.user import User, UserRole
from constituency_desk.models.visitor import Visitor, VisitorCategory
from constituency_desk.security import create_access_token


@pytest.fixture()
def engine():
    eng = build_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture()
def users(session: Session) -> Dict[str, User]:
    rows = {
        "admin": User(email="admin@test.local", name="Admin", role=UserRole.ADMIN),
        "politician": User(email="mla@test.local", name="Representative", role=UserRole.POLITICIAN),
        "staff": User(email="desk@test.local", name="Desk", role=UserRole.STAFF),
        "viewer": User(email="viewer@test.local", name="Viewer", role=UserRole.VIEWER),
    }
    for u in rows.values():
        session.add(u)
    session.commit()
    for u in rows.values():
        session.refresh(u)
    return rows


@pytest.fixture()
def make_visitor(session: Session) -> Callable[..., Visitor]:
    counter = {"n": 0}

    def _make(**overrides) -> Visitor:
        counter["n"] += 1
        values = {
            "name": f"Visitor {counter['n']}",
            "phone": f"98000000{counter['n']:02d}",
            "village": "Wai",
            "district": "Satara",
            "category": VisitorCategory.FARMER,
        }
        values.update(overrides)
        visitor = Visitor(**values)
        session.add(visitor)
        session.commit()
        session.refresh(visitor)
        return visitor

    return _make


@pytest.fixture()
def tokens(users: Dict[str, User]) -> Dict[str, str]:
    return {key: create_access_token(u.id, u.role, u.email) for key, u in users.items()}


@pytest.fixture()
def auth(tokens: Dict[str, str]) -> Callable[[str], Dict[str, str]]:
    def _headers(who: str = "staff") -> Dict[str, str]:
        return {"Authorization": f"Bearer {tokens[who]}"}

    return _headers


@pytest.fixture()
def client(engine) -> Generator[TestClient, None, None]:
    def _get_db() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
