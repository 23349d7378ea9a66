"""Catalog service API built with FastAPI.

This module exposes the product catalog (filtered, paginated listing and
lookup), the stock reservation endpoints used by the orders web app, and
promo banner management. Validation is performed with Pydantic models,
while persistence and the atomic stock protocol are delegated to the
SQLAlchemy-backed repository in ``repo.CatalogRepo``.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from enum import Enum
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, constr, model_validator
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CATEGORIES, CatalogError, CatalogRepo, engine, init_db

app = FastAPI(title="Catalog Service")

ProductId = constr(pattern=r"^[A-Z0-9_-]{2,32}$")
Category = Enum("Category", {c: c for c in CATEGORIES}, type=str)

REQUEST_ID_CTX: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamp records with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True


# JSON logger
logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.addFilter(RequestIdFilter())
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)

ERROR_STATUS = {
    "PRODUCT_NOT_FOUND": 404,
    "RESERVATION_NOT_FOUND": 404,
    "PROMO_NOT_FOUND": 404,
    "INSUFFICIENT_STOCK": 422,
    "RESERVATION_CONFLICT": 409,
    "STOCK_CONFLICT": 409,
}


@app.on_event("startup")
def _startup_db():
    # wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    body = {"detail": str(exc), "message": exc.message, **exc.context}
    return JSONResponse(body, status_code=ERROR_STATUS.get(str(exc), 400))


class ProductIn(BaseModel):
    """Body for creating or replacing a product."""

    name: str = Field(min_length=1, max_length=200)
    brand: str = Field(default="", max_length=120)
    description: str = ""
    category: Category
    price_cents: int = Field(ge=0)
    discount_price_cents: Optional[int] = Field(default=None, ge=0)
    stock: int = Field(ge=0)
    image_ref: str = ""
    is_visible: bool = True
    is_featured: bool = False

    @model_validator(mode="after")
    def check_discount(self):
        if self.discount_price_cents is not None and self.discount_price_cents >= self.price_cents:
            raise ValueError("Discount price must be less than original price")
        return self


class Item(BaseModel):
    """A line to reserve.

    Attributes:
        product_id: Product id matching the allowed pattern.
        quantity: Positive integer quantity to reserve.
    """
    product_id: ProductId
    quantity: int = Field(gt=0)


class ReserveRequest(BaseModel):
    """Request body for the reservation endpoint."""
    items: List[Item] = Field(min_length=1)


class Snapshot(BaseModel):
    product_id: str
    name: str
    unit_price_cents: int
    quantity: int
    image_ref: str


class ReserveResponse(BaseModel):
    """Response body for the reservation endpoint.

    Attributes:
        reserved: Always True; failures are reported as error responses.
        replayed: True when the reservation already existed.
        items: One snapshot per requested line, in request order.
    """
    reservation_id: str
    reserved: bool
    replayed: bool = False
    items: List[Snapshot]


class PromoIn(BaseModel):
    image_ref: str = Field(min_length=1, max_length=500)


@app.get("/health")
def health():
    """Liveness/health probe endpoint.

    Returns:
        dict: A small JSON payload indicating service health.
    """
    return {"ok": True}


@app.get("/products")
def list_products(
    category: Optional[Category] = None,
    search: Optional[str] = None,
    brand: Optional[str] = None,
    on_sale: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    include_hidden: bool = False,
):
    """List products, newest first.

    Only visible products are returned unless ``include_hidden`` is set,
    which the web gateway does for admin callers.
    """
    results, total = CatalogRepo().search(
        category=category.value if category else None,
        search=search,
        brand=brand,
        on_sale=on_sale,
        page=page,
        limit=limit,
        include_hidden=include_hidden,
    )
    return {
        "results": results,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@app.get("/products/categories")
def list_categories():
    return {"categories": list(CATEGORIES)}


@app.get("/products/brands")
def list_brands():
    """Distinct non-empty brands of visible products, sorted."""
    return {"brands": CatalogRepo().brands()}


@app.get("/products/featured")
def featured_products(limit: int = Query(8, ge=1, le=50)):
    return {"results": CatalogRepo().featured(limit=limit)}


@app.get("/products/{product_id}")
def get_product(product_id: str, include_hidden: bool = False):
    product = CatalogRepo().get(product_id.upper(), include_hidden=include_hidden)
    if product is None:
        raise HTTPException(status_code=404, detail="PRODUCT_NOT_FOUND")
    return product


@app.put("/products/{product_id}")
def upsert_product(product_id: ProductId, body: ProductIn):
    data = body.model_dump()
    data["category"] = body.category.value
    return CatalogRepo().upsert(product_id, **data)


@app.put("/reservations/{reservation_id}", response_model=ReserveResponse)
def reserve(reservation_id: constr(min_length=1, max_length=64), req: ReserveRequest):
    """Reserve stock for a batch of items under ``reservation_id``.

    Delegates to ``CatalogRepo.reserve``, which decrements every product in
    one transaction with a conditional update so stock can never go
    negative. Repeating the call with the same id and items replays the
    stored snapshots.

    Raises:
        CatalogError: 404 for unknown products, 422 for insufficient
            stock, 409 for a reused id or persistent DB conflicts.
    """
    items = [(it.product_id, it.quantity) for it in req.items]
    snapshots, replayed = CatalogRepo().reserve(reservation_id, items)
    return ReserveResponse(
        reservation_id=reservation_id,
        reserved=True,
        replayed=replayed,
        items=snapshots,
    )


@app.post("/reservations/{reservation_id}/release")
def release(reservation_id: str):
    """Give the stock held by a reservation back to the catalog.

    Returns ``released: false`` when the reservation was already released.
    """
    return {"released": CatalogRepo().release(reservation_id)}


@app.post("/promos", status_code=201)
def create_promo(body: PromoIn):
    return CatalogRepo().create_promo(body.image_ref)


@app.put("/promos/{promo_id}/show")
def show_promo(promo_id: int):
    return CatalogRepo().show_promo(promo_id)


@app.get("/promos/visible")
def visible_promo():
    return {"promo": CatalogRepo().visible_promo()}


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
        REQUEST_ID_CTX.reset(token)
    response.headers["X-Request-ID"] = rid
    return response
