"""HTTP views for the orders app.

This module contains the DRF API views of the storefront: checkout, the
customer's own orders, the admin order board and status updates, and the
product listing gateway. Views are kept intentionally small: they validate
requests (via Pydantic), delegate to the domain service obtained from
``providers``, and map domain error codes to HTTP responses.

Idempotency: when an ``Idempotency-Key`` header is sent with a checkout,
the first request is processed and its response stored. Retries with the
same payload replay the stored response (``Idempotent-Replay: true``);
reusing the key with a different payload returns HTTP 409.
"""

import json
import logging
from dataclasses import asdict

import httpx
from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import Order, OrderError, OrderItem
from .idempotency import claim, discard, finalize, scoped_key
from .repository import OrderRepository, to_domain
from .schemas import (
    CATEGORIES,
    AdminOrderQueryDTO,
    CreateOrderDTO,
    FeaturedQueryDTO,
    OrderReadDTO,
    ProductQueryDTO,
    StatusUpdateDTO,
    normalize_product_id,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "EMPTY_ORDER": status.HTTP_400_BAD_REQUEST,
    "INVALID_ITEM": status.HTTP_400_BAD_REQUEST,
    "INSUFFICIENT_STOCK": status.HTTP_400_BAD_REQUEST,
    "INVALID_STATUS": status.HTTP_400_BAD_REQUEST,
    "INVALID_TRANSITION": status.HTTP_400_BAD_REQUEST,
    "NOT_AUTHORIZED": status.HTTP_401_UNAUTHORIZED,
    "PRODUCT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "STOCK_CONFLICT": status.HTTP_409_CONFLICT,
}

# Catalog unreachable: transport errors, exhausted retries, open circuit.
UPSTREAM_ERRORS = (httpx.HTTPError, RuntimeError)


def serialize_order(order: Order) -> dict:
    data = asdict(order)
    data["status"] = order.status.value
    return OrderReadDTO.model_validate(data).model_dump(mode="json")


def error_response(err: OrderError) -> Response:
    body = {"detail": str(err), "message": err.message}
    return Response(body, status=ERROR_STATUS.get(str(err), status.HTTP_400_BAD_REQUEST))


def validation_response(err: ValidationError) -> Response:
    return Response(
        {"detail": "VALIDATION_ERROR", "errors": json.loads(err.json(include_url=False))},
        status=status.HTTP_400_BAD_REQUEST,
    )


def upstream_response() -> Response:
    return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module."""

    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """Place an order for the authenticated user.

    The payload is validated with a Pydantic DTO, the domain service
    reserves stock in the catalog and persists the order, and the created
    order is returned with HTTP 201.
    """

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_create"

    def post(self, request):
        """Create a new order.

        Returns:
            Response: One of the following responses.
            - 201 with {order} when the order is created.
            - Replay of the stored response when the same idempotency key
              and payload are retried.
            - 409 IDEMPOTENCY_CONFLICT when the key is reused with another
              payload, or STOCK_CONFLICT when the catalog kept conflicting.
            - 400 for validation errors, an empty cart, or insufficient
              stock (``message`` names the product).
            - 404 PRODUCT_NOT_FOUND for unknown products.
            - 503 UPSTREAM_UNAVAILABLE when the catalog is unreachable.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        # 2) Claim the idempotency key
        rec = None
        if idem_key:
            try:
                existing, rec = claim(scoped_key(request.user.pk, idem_key), request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        items = [OrderItem(product_id=i.product, quantity=i.quantity) for i in dto.items]
        service = providers.get_order_service()
        try:
            order = service.place_order(
                user_id=request.user.pk,
                items=items,
                delivery_address=dto.delivery_address,
                phone=dto.phone,
                description=dto.description,
            )
        except OrderError as e:
            resp = error_response(e)
            if rec:
                finalize(rec, resp.status_code, resp.data)
            return resp
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during checkout")
            resp = upstream_response()
            if rec:
                finalize(rec, resp.status_code, resp.data)
            return resp
        except Exception:
            # no answer to store; free the key so the client can retry
            if rec:
                discard(rec)
            raise

        # 4) Response
        body = {"order": serialize_order(order)}
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class MyOrdersView(APIView):
    """List the caller's orders, newest first."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        orders = OrderRepository().list_for_user(request.user.pk)
        return Response({"orders": [serialize_order(o) for o in orders]})


class RetrieveOrderView(APIView):
    """Return one order to its owner or to an admin (401 otherwise)."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        service = providers.get_order_service()
        try:
            order = service.get_order(oid, user_id=request.user.pk, is_admin=request.user.is_staff)
        except OrderError as e:
            return error_response(e)
        return Response({"order": serialize_order(order)})


class AdminOrdersView(APIView):
    """Paginated list of every order, optionally filtered by status."""

    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            q = AdminOrderQueryDTO.model_validate(request.query_params.dict())
        except ValidationError as e:
            return validation_response(e)

        qs = OrderRepository().admin_queryset(status=q.status)
        p = Paginator(qs, q.limit)
        page_obj = p.get_page(q.page)
        return Response(
            {
                "orders": [serialize_order(to_domain(o)) for o in page_obj.object_list],
                "pagination": {
                    "page": page_obj.number,
                    "limit": q.limit,
                    "total": p.count,
                    "total_pages": p.num_pages if p.count else 0,
                },
            }
        )


class AdminOrderStatusView(APIView):
    """Move an order to a new status; cancelling restores its stock."""

    permission_classes = [IsAdminUser]

    def put(self, request, oid):
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        service = providers.get_order_service()
        try:
            order = service.set_status(oid, dto.status)
        except OrderError as e:
            return error_response(e)
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during status change", extra={"order_id": str(oid)})
            return upstream_response()
        return Response({"order": serialize_order(order)})


class ProductListView(APIView):
    """Product listing. Admins also see hidden products."""

    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "products"

    def get(self, request):
        try:
            q = ProductQueryDTO.model_validate(request.query_params.dict())
        except ValidationError as e:
            return validation_response(e)
        try:
            data = providers.get_catalog().list_products(
                category=q.category,
                search=q.search,
                brand=q.brand,
                on_sale=q.on_sale,
                page=q.page,
                limit=q.limit,
                include_hidden=request.user.is_staff,
            )
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during listing")
            return upstream_response()
        return Response(data)


class ProductDetailView(APIView):
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "products"

    def get(self, request, product_id):
        try:
            pid = normalize_product_id(product_id)
        except ValueError:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        try:
            product = providers.get_catalog().get_product(pid, include_hidden=request.user.is_staff)
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during product lookup")
            return upstream_response()
        if product is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response({"product": product})


class ProductCategoriesView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"categories": list(CATEGORIES)})


class ProductBrandsView(APIView):
    """Distinct brands of visible products, for the storefront filters."""

    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "products"

    def get(self, request):
        try:
            brands = providers.get_catalog().brands()
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during brand listing")
            return upstream_response()
        return Response({"brands": brands})


class FeaturedProductsView(APIView):
    """Visible products flagged as featured, newest first (``limit`` 1-50)."""

    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "products"

    def get(self, request):
        try:
            q = FeaturedQueryDTO.model_validate(request.query_params.dict())
        except ValidationError as e:
            return validation_response(e)
        try:
            products = providers.get_catalog().featured_products(limit=q.limit)
        except UPSTREAM_ERRORS:
            logger.exception("catalog unavailable during featured listing")
            return upstream_response()
        return Response({"results": products})
