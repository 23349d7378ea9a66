"""Unit tests for the catalog HTTP adapter.

These tests verify that ``HttpCatalogClient`` maps catalog responses to
domain results and errors, retries transport errors and 5xx, and trips the
circuit breaker, by monkeypatching ``httpx.Client`` verbs.
"""

import httpx
import pytest

from apps.orders import http_adapters
from apps.orders.domain import OrderItem
from apps.orders.http_adapters import CircuitBreaker, HttpCatalogClient, _catalog_cb
from gateway.middleware import REQUEST_ID_CTX

BASE = "http://catalog:9002"


def respond(method, url, status_code, body=None):
    return httpx.Response(status_code, json=body or {}, request=httpx.Request(method, url))


@pytest.fixture(autouse=True)
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_MAX = 2
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    # reset the shared breaker so state does not leak between tests
    _catalog_cb.on_success()
    yield
    _catalog_cb.on_success()


def test_reserve_ok_returns_line_snapshots(monkeypatch):
    seen = {}

    def fake_put(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return respond("PUT", url, 200, {
            "reservation_id": "r1",
            "reserved": True,
            "replayed": False,
            "items": [{"product_id": "P1", "name": "Dog Bed", "unit_price_cents": 1000, "quantity": 2, "image_ref": "img/p1.jpg"}],
        })

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    token = REQUEST_ID_CTX.set("req-42")
    try:
        lines = HttpCatalogClient(base_url=BASE).reserve("r1", [OrderItem("P1", 2)])
    finally:
        REQUEST_ID_CTX.reset(token)

    assert seen["url"] == f"{BASE}/reservations/r1"
    assert seen["json"] == {"items": [{"product_id": "P1", "quantity": 2}]}
    assert seen["headers"]["X-Request-ID"] == "req-42"
    assert len(lines) == 1
    assert lines[0].line_total_cents == 2000
    assert lines[0].image_ref == "img/p1.jpg"


@pytest.mark.parametrize(
    "status_code,body,code",
    [
        (404, {"detail": "PRODUCT_NOT_FOUND", "message": "Product not found: X1"}, "PRODUCT_NOT_FOUND"),
        (422, {"detail": "INSUFFICIENT_STOCK", "product_id": "P2", "name": "Cat Tree"}, "INSUFFICIENT_STOCK"),
        (409, {"detail": "STOCK_CONFLICT", "message": "retry"}, "STOCK_CONFLICT"),
    ],
)
def test_reserve_maps_business_errors(monkeypatch, status_code, body, code):
    monkeypatch.setattr(
        httpx.Client, "put", lambda self, url, **kw: respond("PUT", url, status_code, body), raising=True
    )
    with pytest.raises(ValueError) as e:
        HttpCatalogClient(base_url=BASE).reserve("r1", [OrderItem("P2", 9)])
    assert str(e.value) == code
    if code == "INSUFFICIENT_STOCK":
        assert e.value.message == "Insufficient stock for: Cat Tree"
    assert _catalog_cb.state == "CLOSED"


def test_release_reports_whether_stock_was_returned(monkeypatch):
    answers = iter([(200, {"released": True}), (200, {"released": False}), (404, {"detail": "RESERVATION_NOT_FOUND"})])

    def fake_post(self, url, **kw):
        status_code, body = next(answers)
        return respond("POST", url, status_code, body)

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    client = HttpCatalogClient(base_url=BASE)
    assert client.release("r1") is True
    assert client.release("r1") is False
    assert client.release("missing") is False


def test_reserve_retries_on_5xx(monkeypatch):
    calls = {"n": 0, "retry": []}

    def fake_put(self, url, json=None, headers=None, **kw):
        calls["n"] += 1
        calls["retry"].append(headers["X-Retry-Count"])
        if calls["n"] == 1:
            return respond("PUT", url, 503)
        return respond("PUT", url, 200, {"items": [{"product_id": "P1", "name": "Dog Bed", "unit_price_cents": 1000, "quantity": 1}]})

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    lines = HttpCatalogClient(base_url=BASE).reserve("r1", [OrderItem("P1", 1)])
    assert len(lines) == 1
    assert calls["n"] == 2
    assert calls["retry"] == ["0", "1"]


def test_network_error_is_raised_after_retries(monkeypatch):
    calls = {"n": 0}

    def fake_get(self, url, **kw):
        calls["n"] += 1
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    with pytest.raises(httpx.ConnectError):
        HttpCatalogClient(base_url=BASE).list_products()
    assert calls["n"] == 3


def test_get_product_missing_returns_none(monkeypatch):
    monkeypatch.setattr(
        httpx.Client, "get", lambda self, url, **kw: respond("GET", url, 404, {"detail": "PRODUCT_NOT_FOUND"}), raising=True
    )
    assert HttpCatalogClient(base_url=BASE).get_product("NOPE") is None


def test_featured_and_brands_unwrap_the_catalog_reply(monkeypatch):
    seen = []

    def fake_get(self, url, params=None, **kw):
        seen.append((url, params))
        if url.endswith("/brands"):
            return respond("GET", url, 200, {"brands": ["Acme", "Felix"]})
        return respond("GET", url, 200, {"results": [{"id": "P1"}]})

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    client = HttpCatalogClient(base_url=BASE)
    assert client.featured_products(limit=3) == [{"id": "P1"}]
    assert client.brands() == ["Acme", "Felix"]
    assert seen[0] == (f"{BASE}/products/featured", {"limit": 3})
    assert seen[1][0] == f"{BASE}/products/brands"


def test_breaker_opens_after_repeated_failures(monkeypatch):
    monkeypatch.setattr(http_adapters, "_catalog_cb", CircuitBreaker("catalog", fail_threshold=2, reset_timeout=60))
    monkeypatch.setattr(
        httpx.Client, "get", lambda self, url, **kw: respond("GET", url, 500), raising=True
    )
    client = HttpCatalogClient(base_url=BASE)
    for _ in range(2):
        with pytest.raises(httpx.HTTPStatusError):
            client.ping()
    with pytest.raises(RuntimeError, match="CIRCUIT_OPEN"):
        client.ping()


def test_half_open_probe_failure_reopens(monkeypatch):
    cb = CircuitBreaker("catalog", fail_threshold=1, reset_timeout=0)
    cb.on_failure()
    assert cb.state == "HALF_OPEN"
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_HALF_OPEN_BUSY"):
        cb.before_call()
    cb.on_failure()
    cb.reset_timeout = 60
    assert cb.state == "OPEN"
