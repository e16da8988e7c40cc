import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from zkpaste.config import Settings
from zkpaste.database import Base, build_engine
from zkpaste.main import create_app
from zkpaste.middleware.rate_limit import limiter
from zkpaste.models import paste  # noqa: F401 - registers the pastes table
from zkpaste.services.paste_store import PasteStore

TEST_PEPPER = "test-pepper"
TEST_DIFFICULTY = 8


@pytest.fixture
def db_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite so concurrent threads get their own connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}", timeout_seconds=10.0)
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def store(session_factory):
    return PasteStore(session_factory, pepper=TEST_PEPPER)


@pytest.fixture
def test_settings():
    return Settings(
        deletion_token_pepper=TEST_PEPPER,
        pow_difficulty=TEST_DIFFICULTY,
        rate_limit_capacity=1000,
        cleanup_interval_minutes=0,
    )


@pytest.fixture
def make_client(db_engine):
    """Build a test client for the given settings, with slowapi limits disabled."""
    clients = []

    def _make(settings: Settings) -> TestClient:
        app = create_app(settings, engine=db_engine)
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    limiter.enabled = False
    try:
        yield _make
    finally:
        for test_client in clients:
            test_client.__exit__(None, None, None)
        limiter.enabled = True


@pytest.fixture
def client(make_client, test_settings):
    return make_client(test_settings)
