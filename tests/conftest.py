# tests/conftest.py
import os
import tempfile

import pytest

# The engine is created lazily from DATABASE_URL; point it at a throwaway
# SQLite file before anything imports the app.
_DB_DIR = tempfile.mkdtemp(prefix="wompi-ledger-tests-")
os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(_DB_DIR, "test.sqlite3"))

from app import create_app  # noqa: E402
from models.base import Base, init_engine_and_session  # noqa: E402
from models.users_db import create_user  # noqa: E402
from services.payments.signature import SignatureVerifier  # noqa: E402
from tests.utils import (  # noqa: E402
    EVENTS_KEY, GATEWAY_CONFIG, INTEGRITY_KEY, FakeGateway, RecordingNotifier, bearer,
)


@pytest.fixture(scope="session", autouse=True)
def _set_env():
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "1")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    yield


@pytest.fixture(scope="session")
def gateway():
    return FakeGateway()


@pytest.fixture(scope="session")
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="session")
def app(gateway, notifier):
    return create_app({"TESTING": True, **GATEWAY_CONFIG},
                      notifier=notifier, http_session=gateway)


@pytest.fixture(scope="session")
def db_engine():
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _db_clean(db_engine, gateway, notifier):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    gateway.reset()
    notifier.reset()
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def components(app):
    return app.extensions["payments"]


@pytest.fixture()
def verifier():
    return SignatureVerifier(INTEGRITY_KEY, EVENTS_KEY)


@pytest.fixture
def api_user():
    uid, token = create_user("sponsor@example.org", "Ana Sponsor")
    return {"id": uid, "token": token, "headers": bearer(token)}
