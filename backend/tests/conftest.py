import pytest
from fastapi.testclient import TestClient

from nedapay.api.main import create_app
from nedapay.referral.counters import InMemoryCounterStore, seed_counters
from nedapay.referral.service import ReferralService
from nedapay.settings import settings
from nedapay.storage.db import Database

PAYCREST_SECRET = "paycrest-test-secret"
SUMSUB_SECRET = "sumsub-test-secret"


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_tables()
    seed_counters(database)
    yield database
    database.drop_tables()
    database.engine.dispose()


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def referral_service(database):
    return ReferralService(database)


@pytest.fixture
def webhook_secrets(monkeypatch):
    monkeypatch.setattr(settings, "paycrest_client_secret", PAYCREST_SECRET)
    monkeypatch.setattr(settings, "sumsub_webhook_secret", SUMSUB_SECRET)


@pytest.fixture
def client(database, webhook_secrets):
    app = create_app(database)
    return TestClient(app)
