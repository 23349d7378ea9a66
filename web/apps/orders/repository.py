"""Repository layer for persisting orders.

This module maps domain ``Order`` objects to the Django ORM. It implements
``OrderStorePort`` for the domain service and a couple of read helpers used
by the views, keeping ORM types out of the domain layer.
"""

import uuid
from contextlib import contextmanager
from typing import List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from .domain import Order, OrderLine, OrderNotFound, OrderStatus
from .models import OrderLineModel, OrderModel


def to_domain(obj: OrderModel) -> Order:
    """Build a domain ``Order`` from a model instance (lines included)."""
    return Order(
        id=obj.id,
        user_id=obj.user_id,
        items=[
            OrderLine(
                product_id=line.product_id,
                name=line.name,
                unit_price_cents=line.unit_price_cents,
                quantity=line.quantity,
                image_ref=line.image_ref,
            )
            for line in obj.items.all()
        ],
        delivery_address=obj.delivery_address,
        phone=obj.phone,
        description=obj.description,
        status=OrderStatus(obj.status),
        total_cents=obj.total_cents,
        currency=obj.currency,
        is_paid=obj.is_paid,
        internal_id=obj.internal_id,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM."""

    def create(self, order: Order) -> Order:
        """Persist a new order and its line snapshots in one transaction.

        Args:
            order: Domain ``Order`` with its id already assigned.

        Returns:
            The same order with ``internal_id`` and timestamps filled in.
        """
        with transaction.atomic():
            obj = OrderModel.objects.create(
                id=order.id,
                user_id=order.user_id,
                status=order.status.value,
                total_cents=order.total_cents,
                currency=order.currency,
                delivery_address=order.delivery_address,
                phone=order.phone,
                description=order.description,
                is_paid=order.is_paid,
            )
            OrderLineModel.objects.bulk_create(
                [
                    OrderLineModel(
                        order=obj,
                        position=pos,
                        product_id=line.product_id,
                        name=line.name,
                        unit_price_cents=line.unit_price_cents,
                        quantity=line.quantity,
                        image_ref=line.image_ref,
                    )
                    for pos, line in enumerate(order.items)
                ]
            )
        order.internal_id = obj.internal_id
        order.created_at = obj.created_at
        order.updated_at = obj.updated_at
        return order

    def _get_model(self, queryset, order_id) -> OrderModel:
        try:
            return queryset.get(id=order_id)
        except (OrderModel.DoesNotExist, DjangoValidationError):
            raise OrderNotFound("Order not found") from None

    def get(self, order_id: uuid.UUID) -> Order:
        return to_domain(self._get_model(OrderModel.objects.prefetch_related("items"), order_id))

    @contextmanager
    def locked(self, order_id: uuid.UUID):
        """Yield the order under ``SELECT ... FOR UPDATE``.

        The status is written back when the block exits normally. Any
        exception rolls the transaction back and leaves the row untouched.
        """
        with transaction.atomic():
            obj = self._get_model(OrderModel.objects.select_for_update(), order_id)
            order = to_domain(obj)
            yield order
            if order.status.value != obj.status:
                obj.status = order.status.value
                obj.save(update_fields=["status", "updated_at"])
                order.updated_at = obj.updated_at

    def list_for_user(self, user_id: int) -> List[Order]:
        """Return the user's orders, newest first."""
        qs = OrderModel.objects.filter(user_id=user_id).prefetch_related("items").order_by("-created_at", "-internal_id")
        return [to_domain(o) for o in qs]

    def admin_queryset(self, status: Optional[str] = None):
        """Queryset of all orders (optionally by status), newest first."""
        qs = OrderModel.objects.prefetch_related("items").order_by("-created_at", "-internal_id")
        if status:
            qs = qs.filter(status=status)
        return qs
