"""Confirmation authority API built with FastAPI.

The order engine calls ``POST /confirm`` once per order, after stock has
been reserved, and treats anything but a 200 carrying a confirmation number
as a failure. Requests may carry an ``Idempotency-Key`` header; a retry
with the same key and payload gets the number issued the first time.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from repo import ConfirmationRepo, IdempotencyKey, canonical_hash, engine, get_session

logger = logging.getLogger("confirmation")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


def wait_for_db(timeout_secs: float = 30.0) -> None:
    """Block until the database accepts connections or ``timeout_secs`` pass."""
    deadline = time.time() + timeout_secs
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    wait_for_db()
    yield


app = FastAPI(title="Confirmation Service", lifespan=lifespan)


class ConfirmRequest(BaseModel):
    """Request body for the confirm endpoint.

    Attributes:
        order_id: Identifier of the order being confirmed.
        total_price: VAT-inclusive order total, strictly positive.
    """

    order_id: uuid.UUID
    total_price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class ConfirmResponse(BaseModel):
    order_id: uuid.UUID
    confirmation_number: str


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/confirm", response_model=ConfirmResponse)
def confirm(
    req: ConfirmRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Issue a confirmation number for an order.

    Args:
        req: Validated body with ``order_id`` and ``total_price``.
        idempotency_key: Optional key from the ``Idempotency-Key`` header.

    Returns:
        ConfirmResponse: The order id and its confirmation number.

    Raises:
        HTTPException: 409 when the key is reused with a different payload.
    """
    repo = ConfirmationRepo()

    if not idempotency_key:
        with get_session() as s:
            row = repo.issue(s, req.order_id, req.total_price)
            number = row.confirmation_number
            s.commit()
        logger.info("order confirmed", extra={"order_id": str(req.order_id), "confirmation_number": number})
        return ConfirmResponse(order_id=req.order_id, confirmation_number=number)

    payload_hash = canonical_hash(req.model_dump(mode="json"))
    with get_session() as s:
        try:
            s.add(IdempotencyKey(key=idempotency_key, request_hash=payload_hash))
            s.commit()
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == idempotency_key).with_for_update()
            ).scalars().first()
            if not rec:
                raise HTTPException(status_code=500, detail="IDEMPOTENCY_LOOKUP_ERROR")
            if rec.request_hash != payload_hash:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
            if rec.confirmation_number:
                logger.info("confirmation replayed", extra={"order_id": str(req.order_id)})
                return ConfirmResponse(order_id=req.order_id, confirmation_number=rec.confirmation_number)

        rec = s.get(IdempotencyKey, idempotency_key)
        row = repo.issue(s, req.order_id, req.total_price)
        rec.confirmation_number = row.confirmation_number
        number = row.confirmation_number
        s.commit()

    logger.info("order confirmed", extra={"order_id": str(req.order_id), "confirmation_number": number})
    return ConfirmResponse(order_id=req.order_id, confirmation_number=number)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8002")), log_config=None)
