"""Idempotency utilities for safely handling duplicate create requests.

This module stores and retrieves idempotency keys to de-duplicate client
requests. It supports creating an idempotent record, detecting conflicts
when the same key is reused for a different request, and finalizing a
stored response so subsequent retries can short-circuit.

A record whose ``response_status`` is still 0 belongs to a request that is
being processed right now.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IN_PROGRESS = 0


class IdempotencyConflict(ValueError):
    """The key was already used for a different request."""

    code = "IDEMPOTENCY_CONFLICT"


def request_fingerprint(customer_id: str, region: str, payload: dict) -> str:
    """Compute a stable SHA-256 hash of the caller and request body.

    The caller identity is part of the hash so two customers can never
    replay each other's responses through a shared key.

    Args:
        customer_id: Caller's customer id.
        region: Caller's region.
        payload: A JSON-serializable request body.

    Returns:
        str: Hex-encoded SHA-256 digest of the normalized input.
    """
    body = json.dumps(
        {"customer_id": customer_id, "region": region, "body": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, fingerprint: str):
    """Get-or-create an idempotency record for the given key.

    Behavior:
        - New key: create an in-progress record and return (False, rec).
        - Known key, same fingerprint: lock and return (True, rec); the
          caller replays ``rec`` or reports it as in progress.
        - Known key, other fingerprint: raise ``IdempotencyConflict``.

    The create path runs in a nested savepoint so an IntegrityError only
    rolls back that block; the existing-record path takes a row lock
    (SELECT ... FOR UPDATE).

    Args:
        key: Client-provided idempotency key.
        fingerprint: Output of ``request_fingerprint``.

    Returns:
        tuple[bool, IdempotencyKey]: (existing, rec).

    Raises:
        IdempotencyConflict: The key exists with a different fingerprint.
    """
    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=fingerprint, response_status=IN_PROGRESS, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != fingerprint:
            raise IdempotencyConflict(key)
        return True, rec


def is_in_progress(rec: IdempotencyKey) -> bool:
    return rec.response_status == IN_PROGRESS


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response so retries can replay it.

    Args:
        rec: The idempotency record to update.
        status_code: HTTP status code to store.
        body: JSON-serializable response body.
        order_id: Optional order created by the request.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey) -> None:
    """Forget a key whose request crashed, so a retry is processed anew."""
    IdempotencyKey.objects.filter(pk=rec.pk).delete()
