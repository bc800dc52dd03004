from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from manha_pos.core.config import Settings
from manha_pos.core.security import get_pin_hash
from manha_pos.db.documents import SERVER_TIMESTAMP, DocumentStore
from manha_pos.db.session import build_engine, make_session_factory
from manha_pos.main import create_app
from manha_pos.schemas.inventory import Product
from manha_pos.services.lock import AppLock
from manha_pos.services.sync import LiveSync
from manha_pos.services.terminal import Terminal

FIXED_NOW = datetime(2024, 3, 15, 14, 5, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        jwt_secret="test-secret",
        security_pin="1234",
    )


@pytest.fixture
def store():
    engine = build_engine("sqlite://")
    store = DocumentStore(make_session_factory(engine), clock=lambda: FIXED_NOW)
    store.create_schema()
    yield store
    engine.dispose()


@pytest.fixture(scope="session")
def pin_hash():
    return get_pin_hash("1234")


@pytest.fixture
def lock(pin_hash):
    return AppLock(pin_hash)


@pytest.fixture
def terminal(store, settings):
    sync = LiveSync(
        store,
        settings.collection_path("products"),
        settings.collection_path("sales"),
    )
    sync.start()
    terminal = Terminal("user-1", sync)
    yield terminal
    terminal.close()


@pytest.fixture
def seed_product(store, terminal):
    def _seed(name: str, price: str, stock: int, **extra) -> Product:
        data = {
            "name": name,
            "price": price,
            "stock": stock,
            "unit": "pieces",
            "category": "",
            "created_at": SERVER_TIMESTAMP,
            **extra,
        }
        product_id = store.add(terminal.products_path, data)
        return terminal.sync.product(product_id)

    return _seed


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
def auth_headers(client):
    token = client.post("/auth/anonymous").json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
