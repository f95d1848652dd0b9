"""Shared pytest fixtures for backend tests."""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lms.db.models import DifficultyEnum, Question, RoleEnum, Test, TestQuestion, User
from lms.db.session import Base, get_db
from lms.main import app

from _helpers import FakeClock


# Use an in-memory SQLite database for testing with static pool
SQLALCHEMY_TEST_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool to keep connection alive
    echo=False,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

# Create all tables once at startup
Base.metadata.create_all(bind=engine)


@pytest.fixture(scope="function")
def db():
    """Fresh DB session per test; every table is emptied afterwards."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture(scope="function")
def client(db: Session):
    """FastAPI test client with overridden DB dependency."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Remove TrustedHostMiddleware for tests to allow 'testserver' host
    app.user_middleware = [m for m in app.user_middleware if "TrustedHost" not in str(m)]

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ── Users ─────────────────────────────────────────────────────────────────────


def _create_user(db: Session, role: RoleEnum) -> User:
    uid = str(uuid.uuid4())[:8]
    user = User(
        email=f"{role.value}_{uid}@ex.com",
        full_name=f"Test {role.value.title()}",
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def student(db: Session) -> User:
    return _create_user(db, RoleEnum.STUDENT)


@pytest.fixture
def other_student(db: Session) -> User:
    return _create_user(db, RoleEnum.STUDENT)


@pytest.fixture
def admin(db: Session) -> User:
    return _create_user(db, RoleEnum.ADMIN)


# ── Tests & questions ─────────────────────────────────────────────────────────


@pytest.fixture
def make_test(db: Session):
    """Factory: ``make_test([single_choice(0), ...], duration_minutes=1, ...)``."""

    def _make(questions: list[dict], **test_kwargs) -> Test:
        test_kwargs.setdefault("title", "Unit test")
        test_kwargs.setdefault("duration_minutes", 10)
        test = Test(**test_kwargs)
        db.add(test)
        db.flush()
        for position, fields in enumerate(questions):
            fields = dict(fields)
            fields.setdefault("difficulty", DifficultyEnum.MEDIUM)
            q = Question(text=fields.pop("text", f"Question {position + 1}"), **fields)
            db.add(q)
            db.flush()
            db.add(TestQuestion(test_id=test.id, question_id=q.id, position=position))
        db.commit()
        db.refresh(test)
        return test

    return _make
