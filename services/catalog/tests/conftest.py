# The engine is created at import time, so point it at SQLite first.
import os

os.environ.setdefault("CATALOG_DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

import repo
from main import app


@pytest.fixture(autouse=True)
def fresh_db():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    yield


@pytest.fixture
def catalog_repo():
    return repo.CatalogRepo()


@pytest.fixture
def api():
    return TestClient(app)


@pytest.fixture
def make_product(catalog_repo):
    def _make(product_id="P1", stock=5, price_cents=1000, **fields):
        data = {
            "name": f"Product {product_id}",
            "brand": "Acme",
            "description": "",
            "category": "Pets",
            "price_cents": price_cents,
            "stock": stock,
            "image_ref": f"img/{product_id.lower()}.jpg",
        }
        data.update(fields)
        return catalog_repo.upsert(product_id, **data)

    return _make
