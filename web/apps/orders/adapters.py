"""In-process stub adapters for the orders domain ports.

These stubs implement the catalog, coupon, settings, zone, address, order
store, partner and notification ports without a database or network calls.
They are intended for unit tests and local development where deterministic
behavior is useful. ``InMemoryStore`` serialises every write behind a single
lock, which gives it the same all-or-nothing commit semantics as the Django
store.
"""

import itertools
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from . import lifecycle
from .domain import (
    UNRESTRICTED,
    CatalogError,
    CatalogItemSnapshot,
    CouponError,
    CouponSnapshot,
    DeliveryZone,
    EligibilityError,
    NotificationEvent,
    Order,
    OrderDraft,
    OrderKind,
    OrderLine,
    OrderNotFound,
    OrderStatus,
    OutOfStock,
    PartnerStatus,
    StatusConflict,
    TransitionError,
    format_invoice_number,
)
from .pricing import requested_quantities

logger = logging.getLogger("orders")


class InMemoryStore:
    """Catalog, coupons, partners and orders kept in dictionaries.

    Implements ``CatalogReader``, ``CouponBook``, ``OrderStore`` and
    ``PartnerRegistry``.
    """

    def __init__(self, items=(), coupons=(), partners=None, clock=None):
        self._lock = threading.Lock()
        self.items: Dict[str, CatalogItemSnapshot] = {i.id: i for i in items}
        self.coupons: Dict[str, CouponSnapshot] = {c.code: c for c in coupons}
        self.partners: Dict[int, PartnerStatus] = dict(partners or {})
        self.orders: Dict[str, Order] = {}
        self._numbers = itertools.count(1)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # CatalogReader
    def snapshot(self, item_ids) -> dict:
        with self._lock:
            return {i: self.items[i] for i in set(item_ids) if i in self.items}

    # CouponBook
    def find(self, code: str) -> Optional[CouponSnapshot]:
        with self._lock:
            return self.coupons.get(code)

    # PartnerRegistry (callers hold the lock)
    def assign(self, partner_id: int) -> None:
        if partner_id not in self.partners:
            raise TransitionError("Delivery partner not found.", code="PARTNER_NOT_FOUND", partner_id=partner_id)
        self.partners[partner_id] = PartnerStatus.BUSY

    def free(self, partner_id: int) -> None:
        if partner_id in self.partners:
            self.partners[partner_id] = PartnerStatus.AVAILABLE

    # OrderStore
    def commit(self, draft: OrderDraft) -> Order:
        quote = draft.quote
        with self._lock:
            quantities = requested_quantities(quote.lines)
            for item_id, quantity in quantities.items():
                item = self.items.get(item_id)
                if item is None:
                    raise CatalogError("Item no longer exists.", code="ITEM_NOT_FOUND", item_id=item_id)
                if item.is_stock_managed and item.stock < quantity:
                    raise OutOfStock(f'Item "{item.name}" is out of stock.', item_id=item_id)

            coupon = None
            if quote.coupon_code:
                coupon = self.coupons.get(quote.coupon_code)
                if coupon is None or not coupon.is_active:
                    raise CouponError("Coupon is no longer valid", code="COUPON_INACTIVE")
                if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
                    raise CouponError("Coupon usage limit reached", code="COUPON_LIMIT_REACHED")

            # All checks passed: apply every write
            for item_id, quantity in quantities.items():
                item = self.items[item_id]
                if item.is_stock_managed:
                    self.items[item_id] = replace(item, stock=item.stock - quantity)
            if coupon is not None:
                self.coupons[coupon.code] = replace(coupon, used_count=coupon.used_count + 1)

            request, intent = draft.request, draft.request.intent
            created_at = self._clock()
            number = next(self._numbers)
            order = Order(
                id=str(uuid.uuid4()),
                number=number,
                status=draft.status,
                kind=intent.kind,
                subtotal=quote.subtotal,
                discount=quote.discount,
                tax=quote.tax,
                total=quote.total,
                payment_method=request.payment_method,
                payment_status=draft.payment_status,
                created_at=created_at,
                lines=[
                    OrderLine(
                        item_id=line.item_id,
                        name=line.name,
                        unit_price=line.unit_price,
                        quantity=line.quantity,
                        line_total=line.line_total,
                        variants=line.variants,
                        addons=line.addons,
                    )
                    for line in quote.lines
                ],
                customer_id=intent.customer_id,
                customer_name=request.customer_name,
                customer_phone=request.customer_phone,
                coupon_code=quote.coupon_code,
                scheduled_for=intent.scheduled_for if intent.kind == OrderKind.SCHEDULED else None,
                invoice_number=format_invoice_number(created_at, number),
                updated_at=created_at,
            )
            self.orders[order.id] = order
            return replace(order)

    def get(self, order_id: str) -> Order:
        with self._lock:
            order = self.orders.get(str(order_id))
            if order is None:
                raise OrderNotFound("Order not found")
            return replace(order)

    def apply_transition(self, order_id, requested, trigger, partner_id=None):
        with self._lock:
            order = self.orders.get(str(order_id))
            if order is None:
                raise OrderNotFound("Order not found")
            current = order.status
            step = lifecycle.resolve(current, requested, trigger)

            engaged = order.partner_id
            if step.effect == lifecycle.Effect.ENGAGE_PARTNER:
                engaged = partner_id or order.partner_id
                if engaged is None:
                    raise TransitionError(
                        "Cannot mark as Out For Delivery! Please assign a Delivery Partner first.",
                        code="PARTNER_REQUIRED",
                    )
                self.assign(engaged)
            elif partner_id is not None:
                raise TransitionError(
                    f"A delivery partner cannot be assigned to a {current.value} order.",
                    code="ILLEGAL_TRANSITION",
                )
            if step.effect == lifecycle.Effect.RELEASE_PARTNER and order.partner_id is not None:
                self.free(order.partner_id)

            updated = replace(order, status=requested, partner_id=engaged, updated_at=self._clock())
            self.orders[updated.id] = updated
            return current, replace(updated)

    def due_for_activation(self, before: datetime) -> List[str]:
        with self._lock:
            due = [
                o for o in self.orders.values()
                if o.status == OrderStatus.SCHEDULED and o.scheduled_for and o.scheduled_for <= before
            ]
            return [o.id for o in sorted(due, key=lambda o: o.scheduled_for)]

    def ensure_invoice_number(self, order_id: str) -> Order:
        with self._lock:
            order = self.orders.get(str(order_id))
            if order is None:
                raise OrderNotFound("Order not found")
            if not order.invoice_number:
                order = replace(order, invoice_number=format_invoice_number(order.created_at, order.number))
                self.orders[order.id] = order
            return replace(order)

    def find_by_reference(self, reference: str, phone: str) -> Optional[Order]:
        reference = str(reference).strip()
        with self._lock:
            for order in self.orders.values():
                if order.customer_phone != phone:
                    continue
                if order.id == reference or str(order.number) == reference:
                    return replace(order)
        return None

    def list_by_status(self, statuses) -> List[Order]:
        wanted = {OrderStatus(s) for s in statuses}
        with self._lock:
            return [replace(o) for o in sorted(self.orders.values(), key=lambda o: o.created_at) if o.status in wanted]

    # Test helper
    def force_status(self, order_id: str, status: OrderStatus) -> None:
        with self._lock:
            self.orders[order_id] = replace(self.orders[order_id], status=status)


class FixedSettings:
    """``StoreSettingsProvider`` returning a fixed value (default: unrestricted)."""

    def __init__(self, settings=UNRESTRICTED):
        self.settings = settings

    def current(self):
        return self.settings


class InMemoryZones:
    def __init__(self, zones=()):
        self.zones = {z.pincode: z for z in zones}

    def find(self, pincode: str) -> Optional[DeliveryZone]:
        return self.zones.get(pincode)


class InMemoryAddressBook:
    """Saved addresses keyed by id, as ``(owner_id, pincode)`` pairs."""

    def __init__(self, addresses=None):
        self.addresses = dict(addresses or {})

    def pincode_for(self, address_id: int, customer_id: Optional[str]) -> str:
        if address_id not in self.addresses:
            raise EligibilityError("Selected address not found", code="ADDRESS_NOT_FOUND")
        owner_id, pincode = self.addresses[address_id]
        if customer_id and owner_id != customer_id:
            raise EligibilityError("Unauthorized: You cannot use this address.", code="ADDRESS_FORBIDDEN")
        return pincode


class LoggingNotifier:
    """``NotificationDispatcher`` that logs and records events instead of sending them.

    The recorded events double as the ``NotificationLog`` when the
    notifications service is not in use.
    """

    def __init__(self):
        self.sent = []

    def notify(self, event: NotificationEvent, payload: dict) -> None:
        self.sent.append((event, payload))
        logger.info("notification", extra={"event": event.value, "order_id": payload.get("order_id")})

    def for_order(self, order_id: str) -> List[dict]:
        return [
            {"event": event.value, "order_id": payload.get("order_id"), "payload": payload}
            for event, payload in self.sent
            if payload.get("order_id") == order_id
        ]
