"""Notifications service API built with FastAPI.

Receiving end of the orders core's notification dispatcher. It accepts
lifecycle events, stores them in the notification log and lists the log per
order. Validation is performed with Pydantic models; persistence is
delegated to ``repo.NotificationLog``.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional

from fastapi import FastAPI, Header, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from repo import KeyConflict, NotificationLog, engine, init_db

logger = logging.getLogger("notifications")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


def _wait_for_db(timeout: float = 30.0) -> None:
    deadline = time.time() + timeout
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _wait_for_db()
    init_db()
    yield


app = FastAPI(title="Notifications Service", lifespan=lifespan)


class EventName(str, Enum):
    ORDER_PLACED = "ORDER_PLACED"
    SCHEDULED_ORDER_CONFIRMED = "SCHEDULED_ORDER_CONFIRMED"
    ORDER_ACTIVATED = "ORDER_ACTIVATED"
    ORDER_ACCEPTED = "ORDER_ACCEPTED"
    ORDER_PREPARING = "ORDER_PREPARING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    ORDER_CANCELLED = "ORDER_CANCELLED"


class EventPayload(BaseModel):
    """Flat payload sent with every event. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    order_id: str = Field(min_length=1, max_length=64)
    customer_name: Optional[str] = None
    amount: Optional[str] = None
    phone: Optional[str] = None
    scheduled_for: Optional[str] = None


class EventIn(BaseModel):
    event: EventName
    payload: EventPayload


class EventOut(BaseModel):
    id: int
    event: str
    order_id: str
    payload: dict
    request_id: Optional[str] = None
    created_at: datetime


def _out(row) -> EventOut:
    return EventOut(
        id=row.id,
        event=row.event,
        order_id=row.order_id,
        payload=row.payload,
        request_id=row.request_id,
        created_at=row.created_at,
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/events", response_model=EventOut, status_code=201)
def record_event(
    req: EventIn,
    request: Request,
    response: Response,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Store one lifecycle event.

    Retries carrying the same ``Idempotency-Key`` and body return the stored
    record with HTTP 200; the same key with another body is a 409.
    """
    payload = req.payload.model_dump(exclude_none=True)
    try:
        row, created = NotificationLog().record(
            event=req.event.value,
            order_id=req.payload.order_id,
            payload=payload,
            request_id=request.state.request_id,
            idempotency_key=idempotency_key,
        )
    except KeyConflict:
        raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")

    if not created:
        response.status_code = 200
        response.headers["Idempotent-Replay"] = "true"
    logger.info(
        "event recorded",
        extra={"request_id": request.state.request_id, "event": row.event, "order_id": row.order_id},
    )
    return _out(row)


@app.get("/events", response_model=List[EventOut])
def list_events(order_id: str):
    return [_out(row) for row in NotificationLog().list_for_order(order_id)]


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
