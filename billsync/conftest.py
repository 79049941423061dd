# billsync/conftest.py
import pytest
from fastapi.testclient import TestClient

from billsync.core.metrics import METRICS
from billsync.tests.mocks import CountingStore, FakeGateway, make_settings


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    """Counters are process-wide; each test starts from zero."""
    METRICS.reset()
    yield


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app_factory(store, gateway):
    """Build an app around the test store and fake gateway."""
    from billsync.main import create_app

    def _build(with_gateway: bool = True, **overrides):
        if not with_gateway:
            overrides.setdefault("STRIPE_SECRET_KEY", None)
        cfg = make_settings(**overrides)
        return create_app(settings_obj=cfg, store=store, gateway=gateway if with_gateway else None)

    return _build


@pytest.fixture
def client(app_factory):
    return TestClient(app_factory(), raise_server_exceptions=False)
