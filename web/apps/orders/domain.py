"""Domain models, ports and service for orders.

This module contains the dataclasses used as DTOs for orders, the protocol
definitions (ports) for the catalog and the order store, the domain errors,
and the service that places orders and moves them through their lifecycle.

Stock is never checked and decremented item by item here. The whole cart is
handed to the catalog as one reservation keyed by the order id, which the
catalog applies all-or-nothing; the order is persisted afterwards. The
reservation is released when either step fails for a non-business reason.
"""

import logging
import uuid
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    Orders move forward through PENDING, CONFIRMED, OUT_FOR_DELIVERY and
    DELIVERED. CANCELLED can be reached from any other status and is
    terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


FORWARD_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]


# ---- Errors ----
class OrderError(ValueError):
    """Base class for order errors.

    ``str(err)`` is a stable upper-case code the HTTP layer maps to a status;
    ``message`` is the human readable explanation.
    """

    code = "ORDER_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(self.code)
        self.message = message or self.code


class EmptyOrder(OrderError):
    code = "EMPTY_ORDER"


class InvalidItem(OrderError):
    code = "INVALID_ITEM"


class ProductNotFound(OrderError):
    code = "PRODUCT_NOT_FOUND"


class InsufficientStock(OrderError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str):
        super().__init__(f"Insufficient stock for: {product_name}")
        self.product_name = product_name


class StockConflict(OrderError):
    code = "STOCK_CONFLICT"


class OrderNotFound(OrderError):
    code = "NOT_FOUND"


class InvalidStatus(OrderError):
    code = "INVALID_STATUS"


class InvalidTransition(OrderError):
    code = "INVALID_TRANSITION"


class NotAuthorized(OrderError):
    code = "NOT_AUTHORIZED"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """A cart line: the product requested and how many units.

    Attributes:
        product_id: Catalog identifier of the product.
        quantity: Number of units requested; at least 1.
    """

    product_id: str
    quantity: int


@dataclass(frozen=True)
class OrderLine:
    """Snapshot of a product as it was sold.

    Name, price and image are copied from the catalog when stock is
    reserved; later catalog edits never change a placed order.
    """

    product_id: str
    name: str
    unit_price_cents: int
    quantity: int
    image_ref: str = ""

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Order identifier; also the id of the catalog reservation.
        user_id: Owner of the order.
        items: Immutable line snapshots.
        total_cents: Sum of ``unit_price_cents * quantity`` over the lines,
            in integer cents to avoid floating point rounding issues.
        currency: ISO currency code (e.g. 'EUR').
    """

    id: uuid.UUID
    user_id: int
    items: List[OrderLine]
    delivery_address: str
    phone: str
    description: str = ""
    status: OrderStatus = OrderStatus.PENDING
    total_cents: int = 0
    currency: str = "EUR"
    is_paid: bool = False
    internal_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def parse_status(value) -> OrderStatus:
    """Return the ``OrderStatus`` named by ``value`` or raise InvalidStatus."""
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(f"Invalid status: {value!r}") from None


def check_transition(current: OrderStatus, new: OrderStatus) -> None:
    """Raise InvalidTransition unless ``current -> new`` is allowed.

    Forward moves (skipping steps included) and cancellation of any
    non-cancelled order are allowed. Backward moves and leaving CANCELLED
    are not.
    """
    if current == OrderStatus.CANCELLED:
        raise InvalidTransition("Cancelled orders cannot change status")
    if new == OrderStatus.CANCELLED:
        return
    if FORWARD_FLOW.index(new) < FORWARD_FLOW.index(current):
        raise InvalidTransition(f"Cannot move order from {current.value} to {new.value}")


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog operations used by the domain."""

    def reserve(self, reservation_id: str, items: List[OrderItem]) -> List[OrderLine]:
        """Atomically take stock for every item.

        Either every item is reserved or no stock changes. Calling again
        with the same id and items returns the same snapshots without
        reserving twice.

        Returns:
            One OrderLine snapshot per item, in the same order.

        Raises:
            ProductNotFound: An item names an unknown product.
            InsufficientStock: A product has less stock than requested.
            StockConflict: The catalog could not serialize the update.
        """
        raise NotImplementedError()

    def release(self, reservation_id: str) -> bool:
        """Return reserved stock; a second release is a no-op (False)."""
        raise NotImplementedError()

    def list_products(self, **query) -> dict:
        """Return ``{"results": [...], "pagination": {...}}``."""
        raise NotImplementedError()

    def get_product(self, product_id: str, include_hidden: bool = False) -> Optional[dict]:
        raise NotImplementedError()

    def featured_products(self, limit: int = 8) -> List[dict]:
        """Visible products flagged as featured, newest first."""
        raise NotImplementedError()

    def brands(self) -> List[str]:
        """Sorted distinct brands of visible products."""
        raise NotImplementedError()

    def ping(self) -> bool:
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Port describing order persistence."""

    def create(self, order: Order) -> Order:
        """Persist a new order and return it with store-assigned fields."""
        raise NotImplementedError()

    def get(self, order_id: uuid.UUID) -> Order:
        """Return an order or raise OrderNotFound."""
        raise NotImplementedError()

    def locked(self, order_id: uuid.UUID) -> AbstractContextManager:
        """Lock an order for update and yield it.

        Status changes made to the yielded order are written when the block
        exits normally; an exception discards them.
        """
        raise NotImplementedError()


# ---- Domain service ----
class OrderService:
    """Domain service responsible for placing orders and changing status.

    The service orchestrates the catalog (stock and product snapshots) and
    the order store. Authentication and HTTP concerns stay in the views.
    """

    def __init__(self, catalog: CatalogPort, orders: OrderStorePort, currency: str = "EUR"):
        """Initialize the service with required dependencies.

        Args:
            catalog: CatalogPort used to reserve and release stock.
            orders: OrderStorePort used to persist orders.
            currency: Currency recorded on new orders.
        """
        self.catalog = catalog
        self.orders = orders
        self.currency = currency

    def place_order(
        self,
        user_id: int,
        items: List[OrderItem],
        delivery_address: str,
        phone: str,
        description: str = "",
    ) -> Order:
        """Place an order: validate, reserve stock, price, persist.

        Lines naming the same product are merged. The catalog reserves the
        whole cart in one step under the new order's id and returns price
        snapshots; the total is computed from those snapshots. If the
        reservation call fails without a business answer (timeout, 5xx,
        open circuit) or the order cannot be persisted, the reservation is
        released before the error propagates, so stock and orders never
        disagree.

        Returns:
            The persisted Order with status PENDING and ``is_paid`` False.

        Raises:
            EmptyOrder: If there are no items.
            InvalidItem: If a quantity is below 1.
            ProductNotFound, InsufficientStock, StockConflict: From the
                catalog; no stock has changed in these cases.
        """
        if not items:
            raise EmptyOrder("No order items")

        merged: dict[str, int] = {}
        for it in items:
            if it.quantity < 1:
                raise InvalidItem(f"Quantity must be at least 1 for {it.product_id}")
            merged[it.product_id] = merged.get(it.product_id, 0) + it.quantity
        wanted = [OrderItem(pid, qty) for pid, qty in merged.items()]

        order_id = uuid.uuid4()
        try:
            lines = self.catalog.reserve(str(order_id), wanted)
        except OrderError:
            raise
        except Exception:
            # the catalog may have committed before the reply was lost
            self._compensate(order_id, "reservation outcome unknown")
            raise

        order = Order(
            id=order_id,
            user_id=user_id,
            items=list(lines),
            delivery_address=delivery_address,
            phone=phone,
            description=description,
            total_cents=sum(line.line_total_cents for line in lines),
            currency=self.currency,
        )
        try:
            order = self.orders.create(order)
        except Exception:
            self._compensate(order_id, "order persistence failed")
            raise

        logger.info(
            "order placed",
            extra={"order_id": str(order.id), "user_id": user_id, "total_cents": order.total_cents},
        )
        return order

    def _compensate(self, order_id: uuid.UUID, reason: str) -> None:
        """Release the reservation for a checkout that did not complete.

        Unknown reservation ids release nothing, so this is safe when the
        catalog never committed. A failing release is logged and the
        caller's original error is the one that propagates.
        """
        logger.warning("%s, releasing stock", reason, extra={"order_id": str(order_id)})
        try:
            released = self.catalog.release(str(order_id))
        except Exception:
            logger.exception("stock release failed", extra={"order_id": str(order_id)})
            return
        if released:
            logger.info("stock released", extra={"order_id": str(order_id)})

    def set_status(self, order_id: uuid.UUID, new_status) -> Order:
        """Move an order to ``new_status``.

        Cancelling releases the order's stock reservation while the order is
        locked, before the new status is written. Setting the current status
        again is a no-op, so a repeated cancellation never restores stock
        twice.

        Raises:
            InvalidStatus: ``new_status`` is not a known status.
            OrderNotFound: The order does not exist.
            InvalidTransition: Backward move or change of a cancelled order.
        """
        target = parse_status(new_status)
        with self.orders.locked(order_id) as order:
            if order.status == target:
                return order
            check_transition(order.status, target)
            if target == OrderStatus.CANCELLED:
                released = self.catalog.release(str(order.id))
                if not released:
                    logger.warning("stock already released", extra={"order_id": str(order.id)})
            previous = order.status
            order.status = target

        logger.info(
            "order status changed",
            extra={"order_id": str(order.id), "from": previous.value, "to": target.value},
        )
        return order

    def get_order(self, order_id: uuid.UUID, user_id: int, is_admin: bool = False) -> Order:
        """Return an order visible to the caller.

        Raises:
            OrderNotFound: The order does not exist.
            NotAuthorized: The caller is neither the owner nor an admin.
        """
        order = self.orders.get(order_id)
        if order.user_id != user_id and not is_admin:
            raise NotAuthorized("Not authorized to view this order")
        return order
