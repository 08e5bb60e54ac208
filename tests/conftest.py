import pytest

from services.identity import FixedSession
from services.store import MemoryPassStore
from tests.factories import STUDENT, T0


@pytest.fixture
def session():
    return FixedSession(STUDENT)


@pytest.fixture
def signed_out():
    return FixedSession(None)


@pytest.fixture
def store():
    return MemoryPassStore(rooms=["Nurse", "Library", "Gym", "Library"], clock=lambda: T0)


@pytest.fixture
def app(store, session):
    from app import create_app

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SNAPSHOT_POLL_SECONDS": 0.01,
            "GOOGLE_CLIENT_ID": "",
            "GOOGLE_CLIENT_SECRET": "",
        },
        store=store,
        session_provider=session,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
