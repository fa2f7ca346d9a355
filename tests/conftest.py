import os

# Must be set before the service modules read their configuration
os.environ["LOG_FILE"] = os.devnull
os.environ["NOTIFICATION_TRANSPORT"] = "background"

import pytest
from fastapi.testclient import TestClient

from mock_services import mock_store_service
from storefront_service import main
from storefront_service.auth import SessionManager, setup_admin
from storefront_service.cart import CartRegistry
from storefront_service.clients import StorageClient, StoreClient
from storefront_service.models import ProductCreate
from storefront_service.notifications import NotificationService

from factories import FakeEmailClient

ADMIN_EMAIL = "admin@barber-supplies.co"
ADMIN_PASSWORD = "s3cret-pass"


@pytest.fixture
def store():
    mock_store_service.reset_tables()
    client = StoreClient(client=TestClient(mock_store_service.app))
    yield client
    client.close()


@pytest.fixture
def storage(store):
    client = StorageClient(base_url="http://testserver", client=TestClient(mock_store_service.app))
    yield client
    client.close()


@pytest.fixture
def make_product(store):
    def _make(name="مقص حلاقة متخصص", price=80.0, category="مقصات"):
        return store.create_product(ProductCreate(name=name, price=price, category=category))
    return _make


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def api(store, storage, email_client):
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    registry = CartRegistry()
    sessions = SessionManager()
    main.app.dependency_overrides[main.get_carts] = lambda: registry
    main.app.dependency_overrides[main.get_sessions] = lambda: sessions
    main.app.dependency_overrides[main.get_notification_service] = (
        lambda: NotificationService(store, email_client, sleep=lambda _: None))
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(api, store):
    setup_admin(store, ADMIN_EMAIL, ADMIN_PASSWORD)
    response = api.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}

