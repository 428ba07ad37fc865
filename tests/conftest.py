import pytest
from fastapi.testclient import TestClient

from dyntables import config
from dyntables.database import Services, create_db_engine
from dyntables.main import app, limiter

PRODUCT_COLUMNS = [
    {"name": "title", "type": "string", "nullable": False},
    {"name": "price", "type": "decimal", "nullable": True},
]

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture()
def services(engine):
    return Services(engine).start()


@pytest.fixture()
def registry(services):
    return services.registry


@pytest.fixture()
def provisioning(services):
    return services.provisioning


@pytest.fixture()
def rows(services):
    return services.rows


@pytest.fixture()
def products(provisioning):
    return provisioning.provision("products", PRODUCT_COLUMNS)


@pytest.fixture()
def client(services, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", ADMIN_TOKEN)
    monkeypatch.setattr(limiter, "enabled", False)
    app.state.services = services
    yield TestClient(app, headers={"Authorization": f"Bearer {ADMIN_TOKEN}"})
    del app.state.services
