"""Idempotency records for order submission.

A client retrying a submission with the same ``Idempotency-Key`` gets the
stored response of the first attempt instead of a second order. The record
is created before the order is placed and finalized with the response once
it is known; reusing a key with a different payload is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .domain import OrderError
from .models import IdempotencyKey


class IdempotencyConflict(OrderError):
    code = "IDEMPOTENCY_CONFLICT"


def request_hash(payload: dict) -> str:
    """SHA-256 of the payload serialized with sorted keys and compact separators."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Claim ``key`` for ``payload``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``. ``existing`` is False
        when this call created the record and the caller must run the request
        and ``finalize`` it.

    Raises:
        IdempotencyConflict: ``IDEMPOTENCY_CONFLICT`` when the key was used
            with another payload, ``IDEMPOTENCY_IN_PROGRESS`` when the first
            attempt has not finished yet.
    """
    h = request_hash(payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)

    if rec.request_hash != h:
        raise IdempotencyConflict("Idempotency-Key was already used with a different request.")
    if not rec.response_status:
        raise IdempotencyConflict(
            "A request with this Idempotency-Key is still being processed.", code="IDEMPOTENCY_IN_PROGRESS"
        )
    return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the final response so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey) -> None:
    """Forget a claim whose request crashed, so the client may retry."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()
