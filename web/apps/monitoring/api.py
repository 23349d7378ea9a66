import logging

import httpx
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders import providers

logger = logging.getLogger(__name__)


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("health: database check failed")

    catalog_ok = False
    try:
        catalog_ok = providers.get_catalog().ping()
    except (httpx.HTTPError, RuntimeError):
        logger.warning("health: catalog unreachable")

    ok = db_ok and catalog_ok
    code = 200 if ok else 503
    return JsonResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}, "catalog": {"ok": catalog_ok}}},
        status=code,
    )
