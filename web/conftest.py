import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from apps.orders import providers
from apps.orders.adapters import CatalogStub


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    # throttle history lives in the cache
    cache.clear()


@pytest.fixture
def catalog(monkeypatch):
    """Fresh in-process catalog wired into ``providers``."""
    stub = CatalogStub()
    stub.add_product("P1", name="Dog Bed", price_cents=1000, stock=5, category="Pets", brand="Acme")
    stub.add_product("P2", name="Cat Tree", price_cents=2500, stock=2, category="Pets", brand="Felix")
    stub.add_product("P3", name="Hidden Lamp", price_cents=900, stock=10, is_visible=False)
    monkeypatch.setattr(providers, "_catalog_stub", stub)
    return stub


@pytest.fixture
def customer(db):
    return get_user_model().objects.create_user("alice", password="pw-alice")


@pytest.fixture
def stranger(db):
    return get_user_model().objects.create_user("bob", password="pw-bob")


@pytest.fixture
def staff(db):
    return get_user_model().objects.create_user("admin", password="pw-admin", is_staff=True)


@pytest.fixture
def api_as():
    """Return an APIClient authenticated as the given user (or anonymous)."""

    def make(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client

    return make


@pytest.fixture
def order_payload():
    return {
        "items": [{"product": "P1", "quantity": 2}],
        "deliveryAddress": "1 Main St",
        "phone": "555-0100",
    }
