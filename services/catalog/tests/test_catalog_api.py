"""HTTP tests for the catalog service endpoints."""

import json
import logging
from datetime import datetime, timedelta, timezone

from main import REQUEST_ID_CTX, RequestIdFilter, logger


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_list_hides_invisible_products_unless_requested(api, make_product):
    make_product("P1")
    make_product("P2", is_visible=False)

    r = api.get("/products")
    assert r.status_code == 200
    assert [p["id"] for p in r.json()["results"]] == ["P1"]

    r = api.get("/products", params={"include_hidden": "true"})
    assert {p["id"] for p in r.json()["results"]} == {"P1", "P2"}


def test_list_filters_by_category_and_search(api, make_product):
    make_product("P1", name="Wireless Mouse", category="Electronics & Gadgets")
    make_product("P2", name="Dog Bowl", category="Pets")
    make_product("P3", name="Cat toy", description="A MOUSE on a string", category="Pets")

    r = api.get("/products", params={"category": "Pets"})
    assert {p["id"] for p in r.json()["results"]} == {"P2", "P3"}

    r = api.get("/products", params={"search": "mouse"})
    assert {p["id"] for p in r.json()["results"]} == {"P1", "P3"}

    r = api.get("/products", params={"search": "acm"})
    assert r.json()["pagination"]["total"] == 3


def test_search_treats_wildcards_literally(api, make_product):
    make_product("P1", name="100% cotton shirt")
    make_product("P2", name="1000 piece puzzle")
    r = api.get("/products", params={"search": "100%"})
    assert [p["id"] for p in r.json()["results"]] == ["P1"]


def test_unknown_category_is_rejected(api):
    r = api.get("/products", params={"category": "Weapons"})
    assert r.status_code == 422


def test_pagination_newest_first(api, make_product):
    now = datetime.now(timezone.utc)
    for i in range(3):
        make_product(f"P{i}", created_at=now + timedelta(seconds=i))

    r = api.get("/products", params={"page": 1, "limit": 2})
    body = r.json()
    assert [p["id"] for p in body["results"]] == ["P2", "P1"]
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}

    r = api.get("/products", params={"page": 2, "limit": 2})
    assert [p["id"] for p in r.json()["results"]] == ["P0"]


def test_get_product_404(api):
    r = api.get("/products/NOPE")
    assert r.status_code == 404


def test_categories_are_the_fixed_list(api):
    r = api.get("/products/categories")
    assert r.status_code == 200
    assert r.json()["categories"][0] == "Electronics & Gadgets"
    assert len(r.json()["categories"]) == 9


def test_brands_lists_visible_brands_once_sorted(api, make_product):
    make_product("P1", brand="Zoomies")
    make_product("P2", brand="Acme")
    make_product("P3", brand="Acme")
    make_product("P4", brand="")
    make_product("P5", brand="Secret", is_visible=False)

    r = api.get("/products/brands")
    assert r.status_code == 200
    assert r.json() == {"brands": ["Acme", "Zoomies"]}


def test_featured_returns_visible_featured_products_newest_first(api, make_product):
    now = datetime.now(timezone.utc)
    make_product("P1", is_featured=True, created_at=now)
    make_product("P2", is_featured=True, created_at=now + timedelta(seconds=1))
    make_product("P3", created_at=now + timedelta(seconds=2))
    make_product("P4", is_featured=True, is_visible=False, created_at=now + timedelta(seconds=3))

    r = api.get("/products/featured")
    assert [p["id"] for p in r.json()["results"]] == ["P2", "P1"]

    r = api.get("/products/featured", params={"limit": 1})
    assert [p["id"] for p in r.json()["results"]] == ["P2"]

    assert api.get("/products/featured", params={"limit": 0}).status_code == 422


def test_on_sale_filter(api, make_product):
    make_product("P1", price_cents=1000, discount_price_cents=800)
    make_product("P2", price_cents=1000)

    r = api.get("/products", params={"on_sale": "true"})
    assert [p["id"] for p in r.json()["results"]] == ["P1"]
    assert r.json()["results"][0]["on_sale"] is True

    r = api.get("/products", params={"on_sale": "false"})
    assert [p["id"] for p in r.json()["results"]] == ["P2"]


def test_upsert_validates_discount(api):
    body = {"name": "Lamp", "category": "Home & Kitchen", "price_cents": 1000,
            "discount_price_cents": 1200, "stock": 3}
    r = api.put("/products/LAMP-1", json=body)
    assert r.status_code == 422

    body["discount_price_cents"] = 900
    r = api.put("/products/LAMP-1", json=body)
    assert r.status_code == 200
    assert r.json()["unit_price_cents"] == 900


def test_reserve_and_release_over_http(api, make_product, catalog_repo):
    make_product("P1", stock=5, price_cents=1000)
    r = api.put("/reservations/order-1", json={"items": [{"product_id": "P1", "quantity": 2}]})
    assert r.status_code == 200
    body = r.json()
    assert body["reserved"] is True and body["replayed"] is False
    assert body["items"][0]["unit_price_cents"] == 1000
    assert catalog_repo.get("P1")["stock"] == 3

    r = api.post("/reservations/order-1/release")
    assert r.json() == {"released": True}
    assert catalog_repo.get("P1")["stock"] == 5


def test_reserve_error_codes(api, make_product):
    make_product("P1", stock=1)

    r = api.put("/reservations/o1", json={"items": [{"product_id": "P1", "quantity": 2}]})
    assert r.status_code == 422
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert r.json()["name"] == "Product P1"

    r = api.put("/reservations/o2", json={"items": [{"product_id": "NOPE", "quantity": 1}]})
    assert r.status_code == 404
    assert r.json()["detail"] == "PRODUCT_NOT_FOUND"

    api.put("/reservations/o3", json={"items": [{"product_id": "P1", "quantity": 1}]})
    r = api.put("/reservations/o3", json={"items": [{"product_id": "P1", "quantity": 2}]})
    assert r.status_code == 409
    assert r.json()["detail"] == "RESERVATION_CONFLICT"


def test_reserve_rejects_empty_items(api):
    r = api.put("/reservations/o1", json={"items": []})
    assert r.status_code == 422


def test_promo_endpoints(api):
    a = api.post("/promos", json={"image_ref": "img/a.jpg"}).json()
    b = api.post("/promos", json={"image_ref": "img/b.jpg"}).json()
    api.put(f"/promos/{a['id']}/show")
    r = api.put(f"/promos/{b['id']}/show")
    assert r.json()["is_visible"] is True
    assert api.get("/promos/visible").json()["promo"]["id"] == b["id"]
    assert api.put("/promos/999/show").status_code == 404


def test_log_records_carry_the_request_id():
    handler = logger.handlers[0]
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        record = logging.LogRecord("catalog", logging.INFO, __file__, 1, "reservation created", None, None)
        assert RequestIdFilter().filter(record) is True
        assert json.loads(handler.format(record))["request_id"] == "rid-42"
    finally:
        REQUEST_ID_CTX.reset(token)

    record = logging.LogRecord("catalog", logging.INFO, __file__, 1, "startup", None, None)
    RequestIdFilter().filter(record)
    assert record.request_id == "-"


def test_request_id_is_echoed(api):
    r = api.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"
