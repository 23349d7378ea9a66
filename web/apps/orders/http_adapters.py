"""HTTP adapter client for the catalog service with retries and a circuit breaker.

This module implements ``CatalogPort`` over HTTP using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
  the gateway middleware.
- A circuit breaker for the catalog service to avoid hammering an unhealthy
  dependency, with HALF_OPEN probing after a timeout.
- A retry policy with exponential backoff for transport errors and 5xx.
  Retrying a reservation is safe because the catalog deduplicates
  reservations by id (the order id).
"""

import logging
import threading
import time
from typing import List, Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import InsufficientStock, InvalidItem, OrderItem, OrderLine, ProductNotFound, StockConflict

logger = logging.getLogger(__name__)

# Statuses the catalog uses for business outcomes; they are answers, not
# failures, and never trip the breaker.
BUSINESS_STATUSES = (200, 201, 404, 409, 422)


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                # only one probe at a time
                if self._half_open_probe_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close/reset the breaker."""
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (
                self._failures >= self.fail_threshold and self._state != "OPEN"
            ):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _error_message(resp) -> str:
    try:
        return resp.json().get("message", "")
    except ValueError:
        return ""


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient:
    """HTTP client for the catalog service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.CATALOG_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _send(self, method: str, path: str, **kwargs):
        """Send a request with circuit-breaker precheck and retries.

        Business statuses (see ``BUSINESS_STATUSES``) are returned to the
        caller; transport errors and 5xx are retried with exponential
        backoff and re-raised once retries are exhausted.

        Raises:
            RuntimeError: When the circuit is open.
            httpx.RequestError: For network/transport errors after retries.
            httpx.HTTPStatusError: For non-retriable or exhausted non-2xx
                responses.
        """
        max_retries, backoff = _retry_policy()
        tries = 0

        state = _catalog_cb.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        if method == "GET":
                            resp = client.get(f"{self.base_url}{path}", headers=headers, **kwargs)
                        elif method == "PUT":
                            resp = client.put(f"{self.base_url}{path}", headers=headers, **kwargs)
                        else:
                            resp = client.post(f"{self.base_url}{path}", headers=headers, **kwargs)
                        if resp.status_code in BUSINESS_STATUSES:
                            _catalog_cb.on_success()
                            return resp
                        if not _should_retry(resp, None):
                            resp.raise_for_status()
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries or not _should_retry(resp, exc):
                        _catalog_cb.on_failure()
                        logger.warning(
                            "catalog call failed",
                            extra={"path": path, "tries": tries, "status": getattr(resp, "status_code", None)},
                        )
                        if exc:
                            raise exc
                        resp.raise_for_status()

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    time.sleep(min(sleep_s, cap))
        finally:
            _catalog_cb.on_finish()

    def reserve(self, reservation_id: str, items: List[OrderItem]) -> List[OrderLine]:
        """Reserve stock for the given items under ``reservation_id``.

        Maps catalog responses:
        - 200 → one ``OrderLine`` snapshot per item
        - 404 → ``ProductNotFound``
        - 422 → ``InsufficientStock`` naming the product
        - 409 → ``StockConflict``
        """
        payload = {"items": [{"product_id": i.product_id, "quantity": i.quantity} for i in items]}
        resp = self._send("PUT", f"/reservations/{reservation_id}", json=payload)

        if resp.status_code == 404:
            raise ProductNotFound(_error_message(resp) or "Product not found")
        if resp.status_code == 422:
            body = resp.json()
            if body.get("detail") != "INSUFFICIENT_STOCK":
                # request validation error from the catalog
                raise InvalidItem("Catalog rejected the reservation items")
            raise InsufficientStock(body.get("name") or body.get("product_id", ""))
        if resp.status_code == 409:
            raise StockConflict(_error_message(resp))

        return [
            OrderLine(
                product_id=line["product_id"],
                name=line["name"],
                unit_price_cents=line["unit_price_cents"],
                quantity=line["quantity"],
                image_ref=line.get("image_ref", ""),
            )
            for line in resp.json()["items"]
        ]

    def release(self, reservation_id: str) -> bool:
        """Release a reservation; False if it was already released or unknown."""
        resp = self._send("POST", f"/reservations/{reservation_id}/release")
        if resp.status_code == 404:
            logger.warning("reservation not found on release", extra={"reservation_id": reservation_id})
            return False
        return bool(resp.json().get("released", False))

    def list_products(
        self, category=None, search=None, brand=None, on_sale=None, page=1, limit=10, include_hidden=False
    ) -> dict:
        params = {"page": page, "limit": limit}
        if category:
            params["category"] = category
        if search:
            params["search"] = search
        if brand:
            params["brand"] = brand
        if on_sale is not None:
            params["on_sale"] = "true" if on_sale else "false"
        if include_hidden:
            params["include_hidden"] = "true"
        resp = self._send("GET", "/products", params=params)
        resp.raise_for_status()
        return resp.json()

    def get_product(self, product_id: str, include_hidden: bool = False) -> Optional[dict]:
        params = {"include_hidden": "true"} if include_hidden else {}
        resp = self._send("GET", f"/products/{product_id}", params=params)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def featured_products(self, limit: int = 8) -> List[dict]:
        resp = self._send("GET", "/products/featured", params={"limit": limit})
        resp.raise_for_status()
        return resp.json()["results"]

    def brands(self) -> List[str]:
        resp = self._send("GET", "/products/brands")
        resp.raise_for_status()
        return resp.json()["brands"]

    def ping(self) -> bool:
        resp = self._send("GET", "/health")
        return resp.status_code == 200
