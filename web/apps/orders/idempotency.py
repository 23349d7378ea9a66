"""Per-user ``Idempotency-Key`` records for checkout.

A checkout carrying an ``Idempotency-Key`` header claims a row keyed by
``"<user id>:<key>"`` before any stock is reserved. The row stores a hash
of the request body and, once the view has answered, the status code and
JSON body of that answer. A retry with the same body gets the stored answer
back; a retry with another body is refused.

A row whose answer was never stored (``response_status == 0``) belongs to a
checkout still in flight. If that checkout dies on an unexpected error the
view discards the row, so the client can retry with the same key.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

PENDING = 0


def request_fingerprint(payload: dict) -> str:
    """SHA-256 of the checkout body in canonical JSON form."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def scoped_key(user_id: int, key: str) -> str:
    return f"{user_id}:{key}"


@transaction.atomic
def claim(key: str, payload: dict) -> tuple[bool, IdempotencyKey]:
    """Claim ``key`` for this checkout, or find the earlier claim.

    Returns:
        tuple[bool, IdempotencyKey]: ``(False, rec)`` when this request
        owns a fresh claim, ``(True, rec)`` when an earlier checkout with
        the same body already holds the key. ``rec.response_status`` is
        ``PENDING`` while that earlier checkout is still running.

    Raises:
        ValueError: ``IDEMPOTENCY_CONFLICT`` when the key was used for a
            different body.
    """
    fingerprint = request_fingerprint(payload)
    try:
        # savepoint: a duplicate key only rolls back the insert
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=fingerprint, response_status=PENDING, response_body={}
            )
        return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
    if rec.request_hash != fingerprint:
        raise ValueError("IDEMPOTENCY_CONFLICT")
    return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the answer given to the claiming checkout (and its order)."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])


def discard(rec: IdempotencyKey) -> None:
    """Drop a claim whose checkout failed before producing an answer."""
    IdempotencyKey.objects.filter(key=rec.key, response_status=PENDING).delete()
