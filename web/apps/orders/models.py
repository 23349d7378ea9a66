import uuid
from django.conf import settings
from django.db import models, transaction


class OrderModel(models.Model):
    # UUID PK exposed by the API; also the catalog reservation id
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        OUT_FOR_DELIVERY = "out_for_delivery"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    total_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="EUR")
    delivery_address = models.TextField()
    phone = models.CharField(max_length=32)
    description = models.TextField(blank=True, default="")
    is_paid = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="orders_user_created_idx"),
            models.Index(fields=["status"], name="orders_status_idx"),
        ]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1
                super().save(*args, **kwargs)
            return
        super().save(*args, **kwargs)


class OrderLineModel(models.Model):
    # Snapshot of the product at checkout; never updated afterwards
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveSmallIntegerField()
    product_id = models.CharField(max_length=32)
    name = models.CharField(max_length=200)
    unit_price_cents = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField()
    image_ref = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        db_table = "order_lines"
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(fields=["order", "position"], name="uq_order_line_position"),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="ck_order_line_quantity"),
        ]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
