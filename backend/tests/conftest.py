import os

# The app creates its tables at import time; keep that away from the on-disk DB.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

from stemlearn import models, services
from stemlearn.database import get_session, get_session_factory


@pytest.fixture(autouse=True)
def side_effect_dir(tmp_path, monkeypatch):
    """Write side-effect observability files under the test's tmp dir."""
    monkeypatch.setenv("SIDE_EFFECT_OBSERVABILITY_DIR", str(tmp_path / "side_effects"))
    return tmp_path / "side_effects"


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file per test; request and background sessions get their own connections."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client(engine):
    from stemlearn.main import app

    def _session():
        with Session(engine) as s:
            yield s

    def _factory():
        return lambda: Session(engine)

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_session_factory] = _factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_student(session):
    counter = {"n": 0}

    def _make(name=None, grade="6"):
        counter["n"] += 1
        n = counter["n"]
        return services.AuthService(session).register_student(
            name or f"Student {n}", f"student{n}@example.com", "pw", grade
        )
    return _make


@pytest.fixture
def make_game(session):
    def _make(name="Fraction Fun", subject="Mathematics", topic="Fractions", max_score=100):
        game = models.Game(name=name, subject=subject, topic=topic, difficulty="Basic", max_score=max_score)
        session.add(game)
        session.commit()
        session.refresh(game)
        return game
    return _make


@pytest.fixture
def teacher(session):
    return services.AuthService(session).register_teacher(
        "John Smith", "TCH001", "teacher@example.com", "teacher123", "Science"
    )
