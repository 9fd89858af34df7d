"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app imports, so the
cached settings, engine and app are built against the test database with
the bot transport disabled.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_enquiry_relay.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ["BOT_MODE"] = "disabled"
os.environ.pop("ADMIN_TELEGRAM_ID", None)
os.environ.pop("WEBHOOK_SECRET", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from enquiry_relay.config import get_settings  # noqa: E402

get_settings.cache_clear()

from enquiry_relay.main import app, get_notifier  # noqa: E402
from enquiry_relay.storage import Base, SessionLocal, engine  # noqa: E402
import enquiry_relay.models  # noqa: E402,F401
from enquiry_relay.errors import TransportError  # noqa: E402


class FakeNotifier:
    """Records outbound calls instead of talking to Telegram."""

    def __init__(self, fail_send: bool = False, fail_ack: bool = False):
        self.sent = []
        self.acknowledged = []
        self.fail_send = fail_send
        self.fail_ack = fail_ack

    async def send(self, chat_id, text, reply_markup=None):
        if self.fail_send:
            raise TransportError("Failed to send message")
        self.sent.append((str(chat_id), text, reply_markup))

    async def acknowledge(self, callback_query_id, text=None):
        if self.fail_ack:
            raise TransportError("Failed to answer callback query")
        self.acknowledged.append(callback_query_id)


@pytest.fixture(scope="function")
def db_tables():
    """Fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(db_tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture(scope="function")
def client(db_tables, notifier):
    """Test client with a fresh database and a fake notifier."""
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
