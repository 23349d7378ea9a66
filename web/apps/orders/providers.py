"""Service provider helpers for wiring OrderService with ports.

``get_catalog`` returns the catalog adapter selected by
``settings.USE_HTTP_ADAPTERS``: the HTTP client for the catalog service, or
a process-wide ``CatalogStub`` for tests and local development.
``get_order_service`` combines it with the Django order repository.
"""

from django.conf import settings

from .adapters import CatalogStub
from .domain import CatalogPort, OrderService
from .http_adapters import HttpCatalogClient
from .repository import OrderRepository

# Shared so stock survives between requests when running without the
# catalog service.
_catalog_stub = CatalogStub()


def get_catalog() -> CatalogPort:
    """Return the configured catalog adapter."""
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpCatalogClient()
    return _catalog_stub


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    Returns:
        OrderService: A service using the configured catalog adapter and
        the Django ORM repository.
    """
    return OrderService(
        catalog=get_catalog(),
        orders=OrderRepository(),
        currency=getattr(settings, "ORDER_CURRENCY", "EUR"),
    )
