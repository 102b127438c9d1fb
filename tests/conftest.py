import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assessly.core.auth import create_token
from assessly.core.database import get_db
from assessly.main import app
from assessly.models import orm
from assessly.services import authoring

TIMEOUT = timedelta(hours=2)


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 1, 1, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    eng = create_engine("sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    orm.Base.metadata.create_all(eng)
    yield eng
    orm.Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def author_headers():
    return {"Authorization": f"Bearer {create_token('author-1', ['author'])}"}


def single_options(correct="0", n=3):
    return {str(i): {"text": f"Option {i}", "is_correct": str(i) == correct} for i in range(n)}


def multiple_options(correct=("0", "1"), n=4):
    return {str(i): {"text": f"Option {i}", "is_correct": str(i) in correct} for i in range(n)}


@pytest.fixture
def make_question(db):
    def _make(title="Question", question_type=orm.QuestionType.SINGLE, options=None, visibility=orm.Visibility.PUBLIC):
        if options is None:
            options = single_options() if question_type == orm.QuestionType.SINGLE else multiple_options()
        return authoring.create_question(db, "author-1", title, f"{title} text", question_type, options, visibility)
    return _make


@pytest.fixture
def make_test(db):
    def _make(title="Test", visibility=orm.Visibility.PUBLIC, is_enabled=True, pass_threshold=60, questions=()):
        test = authoring.create_test(db, "author-1", title, visibility=visibility, is_enabled=is_enabled, pass_threshold=pass_threshold)
        if questions:
            authoring.attach_questions(db, test.id, list(questions))
        return test
    return _make
