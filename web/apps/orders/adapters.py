"""In-process adapters for the orders domain ports.

``CatalogStub`` implements ``CatalogPort`` and ``InMemoryOrderStore``
implements ``OrderStorePort`` without any network or database access. They
are intended for unit tests and local development where deterministic
behavior is useful and the catalog service is not running. Both are
thread-safe so concurrent checkouts can be exercised against them.
"""

import threading
import uuid
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .domain import (
    InsufficientStock,
    Order,
    OrderItem,
    OrderLine,
    OrderNotFound,
    ProductNotFound,
    StockConflict,
)


class CatalogStub:
    """Stub implementation of ``CatalogPort`` backed by a dict.

    Products are plain dicts with at least ``name``, ``price_cents`` and
    ``stock``. Reservations are kept in memory so release is idempotent,
    mirroring the catalog service.
    """

    def __init__(self, products: Optional[Dict[str, dict]] = None):
        self._lock = threading.Lock()
        self.products: Dict[str, dict] = {}
        self.reservations: Dict[str, dict] = {}
        for pid, data in (products or {}).items():
            self.add_product(pid, **data)

    def add_product(self, product_id: str, name: str, price_cents: int, stock: int, **extra) -> dict:
        product = {
            "id": product_id,
            "name": name,
            "brand": extra.get("brand", ""),
            "description": extra.get("description", ""),
            "category": extra.get("category", "Lifestyle & Hobbies"),
            "price_cents": price_cents,
            "discount_price_cents": extra.get("discount_price_cents"),
            "stock": stock,
            "image_ref": extra.get("image_ref", ""),
            "is_visible": extra.get("is_visible", True),
            "is_featured": extra.get("is_featured", False),
            "on_sale": extra.get("discount_price_cents") is not None,
        }
        with self._lock:
            self.products[product_id] = product
        return product

    def stock(self, product_id: str) -> int:
        return self.products[product_id]["stock"]

    def reserve(self, reservation_id: str, items: List[OrderItem]) -> List[OrderLine]:
        """Reserve all items or none, under a single lock."""
        key = [(it.product_id, it.quantity) for it in items]
        with self._lock:
            existing = self.reservations.get(reservation_id)
            if existing is not None:
                if existing["key"] != key:
                    raise StockConflict("Reservation id already used for different items")
                return list(existing["lines"])

            wanted: Dict[str, int] = {}
            for pid, qty in key:
                p = self.products.get(pid)
                if p is None or not p["is_visible"]:
                    raise ProductNotFound(f"Product not found: {pid}")
                wanted[pid] = wanted.get(pid, 0) + qty
            for pid, qty in wanted.items():
                if self.products[pid]["stock"] < qty:
                    raise InsufficientStock(self.products[pid]["name"])

            for pid, qty in wanted.items():
                self.products[pid]["stock"] -= qty
            lines = [self._snapshot(pid, qty) for pid, qty in key]
            self.reservations[reservation_id] = {"key": key, "lines": lines, "released": False}
            return list(lines)

    def _snapshot(self, pid: str, qty: int) -> OrderLine:
        p = self.products[pid]
        price = p["discount_price_cents"] if p["discount_price_cents"] is not None else p["price_cents"]
        return OrderLine(pid, p["name"], price, qty, p["image_ref"])

    def release(self, reservation_id: str) -> bool:
        with self._lock:
            rec = self.reservations.get(reservation_id)
            if rec is None or rec["released"]:
                return False
            for line in rec["lines"]:
                if line.product_id in self.products:
                    self.products[line.product_id]["stock"] += line.quantity
            rec["released"] = True
            return True

    def _visible(self) -> List[dict]:
        with self._lock:
            return [deepcopy(p) for p in self.products.values() if p["is_visible"]]

    def list_products(
        self, category=None, search=None, brand=None, on_sale=None, page=1, limit=10, include_hidden=False
    ) -> dict:
        with self._lock:
            rows = [deepcopy(p) for p in self.products.values()]
        if not include_hidden:
            rows = [p for p in rows if p["is_visible"]]
        if category:
            rows = [p for p in rows if p["category"] == category]
        if brand:
            rows = [p for p in rows if brand.lower() in p["brand"].lower()]
        if on_sale is not None:
            rows = [p for p in rows if (p["discount_price_cents"] is not None) == on_sale]
        if search:
            term = search.lower()
            rows = [
                p for p in rows
                if term in p["name"].lower() or term in p["description"].lower() or term in p["brand"].lower()
            ]
        total = len(rows)
        start = (page - 1) * limit
        return {
            "results": rows[start:start + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": (total + limit - 1) // limit,
            },
        }

    def get_product(self, product_id: str, include_hidden: bool = False) -> Optional[dict]:
        p = self.products.get(product_id)
        if p is None or (not p["is_visible"] and not include_hidden):
            return None
        return deepcopy(p)

    def featured_products(self, limit: int = 8) -> List[dict]:
        # insertion order stands in for creation time
        rows = [p for p in self._visible() if p["is_featured"]]
        return list(reversed(rows))[:limit]

    def brands(self) -> List[str]:
        return sorted({p["brand"] for p in self._visible() if p["brand"]})

    def ping(self) -> bool:
        return True


class InMemoryOrderStore:
    """Stub implementation of ``OrderStorePort`` keeping orders in a dict."""

    def __init__(self):
        self._lock = threading.RLock()
        self._orders: Dict[uuid.UUID, Order] = {}
        self._counter = 0

    def create(self, order: Order) -> Order:
        with self._lock:
            self._counter += 1
            now = datetime.now(timezone.utc)
            order.internal_id = self._counter
            order.created_at = order.updated_at = now
            self._orders[order.id] = deepcopy(order)
            return order

    def get(self, order_id: uuid.UUID) -> Order:
        with self._lock:
            if order_id not in self._orders:
                raise OrderNotFound("Order not found")
            return deepcopy(self._orders[order_id])

    @contextmanager
    def locked(self, order_id: uuid.UUID):
        with self._lock:
            order = self.get(order_id)
            yield order
            order.updated_at = datetime.now(timezone.utc)
            self._orders[order_id] = deepcopy(order)
