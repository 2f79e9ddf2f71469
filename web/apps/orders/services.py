"""Domain services orchestrating order intake and the order lifecycle.

``OrderService`` turns a submitted cart into a committed order:
eligibility gate, price integrity engine, coupon, tax, payment
verification, then the single commit transaction owned by the ``OrderStore``
port. ``LifecycleService`` drives committed orders through the status state
machine. Both notify the dispatcher after the fact; a notification failure is
logged and never undoes or fails the operation that triggered it.

The services do not handle HTTP or ORM details; they only talk to ports.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone, tzinfo
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from . import lifecycle
from .domain import (
    AccessDenied,
    AddressBook,
    CartLine,
    CatalogReader,
    CouponBook,
    DeliveryZone,
    NotificationDispatcher,
    NotificationEvent,
    Order,
    OrderDraft,
    OrderIntent,
    OrderKind,
    OrderNotFound,
    OrderRequest,
    OrderStatus,
    OrderStore,
    PricedLine,
    Quote,
    StatusConflict,
    StoreSettingsProvider,
    TransitionError,
    ZoneDirectory,
)
from .eligibility import DEFAULT_MIN_LEAD, check_eligibility, check_zone
from .payments import SignatureVerifier
from .pricing import DEFAULT_GST_RATE, build_quote, resolve_line

logger = logging.getLogger("orders")


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def notification_payload(order: Order) -> dict:
    """Flat payload handed to the notification dispatcher."""
    payload = {
        "order_id": order.id,
        "customer_name": order.customer_name or order.customer_id or "Guest",
        "amount": str(order.total),
        "phone": order.customer_phone,
    }
    if order.scheduled_for is not None:
        payload["scheduled_for"] = order.scheduled_for.isoformat()
    return payload


class _Notifying:
    notifier: NotificationDispatcher

    def _notify(self, event: Optional[NotificationEvent], order: Order) -> None:
        if event is None:
            return
        try:
            self.notifier.notify(event, notification_payload(order))
        except Exception:
            logger.exception(
                "notification dispatch failed", extra={"event": event.value, "order_id": order.id}
            )


@dataclass
class RepeatQuote:
    """A past order re-priced against the current catalog."""

    lines: List[PricedLine] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class OrderService(_Notifying):
    """Domain service responsible for placing orders.

    Validation runs before the commit transaction opens wherever possible.
    Only the stock and coupon-limit re-checks are deferred into
    ``OrderStore.commit`` because only there can they be made atomic.
    """

    def __init__(
        self,
        catalog: CatalogReader,
        coupons: CouponBook,
        store_settings: StoreSettingsProvider,
        zones: ZoneDirectory,
        addresses: AddressBook,
        orders: OrderStore,
        payments: SignatureVerifier,
        notifier: NotificationDispatcher,
        gst_rate: Decimal = DEFAULT_GST_RATE,
        min_lead: timedelta = DEFAULT_MIN_LEAD,
        clock: Callable[[], datetime] = _utcnow,
        tz: Optional[tzinfo] = None,
    ):
        self.catalog = catalog
        self.coupons = coupons
        self.store_settings = store_settings
        self.zones = zones
        self.addresses = addresses
        self.orders = orders
        self.payments = payments
        self.notifier = notifier
        self.gst_rate = gst_rate
        self.min_lead = min_lead
        self.clock = clock
        self.tz = tz

    def _resolve_pincode(self, intent: OrderIntent) -> Optional[str]:
        if intent.address_id is not None:
            return self.addresses.pincode_for(intent.address_id, intent.customer_id)
        if intent.guest_address is not None:
            return intent.guest_address.zip.strip()
        return None

    def validate_delivery(self, intent: OrderIntent) -> DeliveryZone:
        """Serviceability preflight for an address, without store checks."""
        return check_zone(self._resolve_pincode(intent), self.zones.find)

    def quote(self, request: OrderRequest) -> Tuple[Quote, str]:
        """Run the eligibility gate and price the cart.

        Returns:
            tuple[Quote, str]: server-computed money and the destination pincode.

        Raises:
            EligibilityError, CatalogError, CouponError: on the first failing check.
        """
        now = self.clock()
        pincode = check_eligibility(
            request.intent,
            self.store_settings.current(),
            self._resolve_pincode,
            self.zones.find,
            now,
            tz=self.tz,
            min_lead=self.min_lead,
        )

        snapshot = self.catalog.snapshot([line.item_id for line in request.lines])
        coupon = self.coupons.find(request.coupon_code) if request.coupon_code else None
        quote = build_quote(
            request.lines,
            snapshot,
            now,
            coupon=coupon,
            coupon_code=request.coupon_code,
            gst_rate=self.gst_rate,
        )
        return quote, pincode

    def place_order(self, request: OrderRequest) -> Order:
        """Place an order: gate, price, verify payment, commit, notify.

        Returns:
            The committed Order with server-computed totals and an invoice number.

        Raises:
            OrderError: Any rejection from the taxonomy; nothing is persisted
                unless the commit transaction succeeds as a whole.
        """
        quote, pincode = self.quote(request)
        payment_status = self.payments.verify(request.payment_method, request.payment_proof)

        scheduled = request.intent.kind == OrderKind.SCHEDULED
        draft = OrderDraft(
            request=request,
            quote=quote,
            status=OrderStatus.SCHEDULED if scheduled else OrderStatus.PENDING,
            payment_status=payment_status,
            pincode=pincode,
        )
        order = self.orders.commit(draft)
        logger.info(
            "order committed",
            extra={
                "order_id": order.id,
                "order_number": order.number,
                "total": str(order.total),
                "payment_status": order.payment_status.value,
            },
        )

        event = NotificationEvent.SCHEDULED_ORDER_CONFIRMED if scheduled else NotificationEvent.ORDER_PLACED
        self._notify(event, order)
        return order

    def repeat_order(self, order_id: str, customer_id: Optional[str] = None, phone: Optional[str] = None) -> RepeatQuote:
        """Rebuild a past order's cart at today's prices.

        Items that are gone or unavailable are dropped, as are variants and
        addons no longer offered; each drop is reported as a warning.
        """
        original = self.orders.get(order_id)
        if customer_id:
            if original.customer_id != customer_id:
                raise AccessDenied("Unauthorized to repeat this order")
        elif not phone or original.customer_phone != phone:
            raise AccessDenied("Phone number verification failed")

        snapshot = self.catalog.snapshot([line.item_id for line in original.lines])
        result = RepeatQuote()
        for line in original.lines:
            item = snapshot.get(line.item_id)
            if item is None or not item.is_available:
                result.warnings.append(f'Item "{line.name}" is no longer available')
                continue

            variant_ids = tuple(
                v.id for v in line.variants if item.variant(v.id) and item.variant(v.id).is_available
            )
            addon_ids = tuple(
                a.id for a in line.addons if item.addon(a.id) and item.addon(a.id).is_available
            )
            if len(variant_ids) != len(line.variants) or len(addon_ids) != len(line.addons):
                result.warnings.append(
                    f'Some options for "{line.name}" are no longer available. Please customize again.'
                )

            cart_line = CartLine(
                item_id=line.item_id, quantity=line.quantity, variant_ids=variant_ids, addon_ids=addon_ids
            )
            result.lines.append(resolve_line(cart_line, item, check_stock=False))
        return result


class LifecycleService(_Notifying):
    """Drives committed orders through the status state machine.

    Status changes and their partner side effects are applied by the
    ``OrderStore`` in a single compare-and-set update; this service only
    chooses the trigger and emits the notification keyed by the transition.
    """

    def __init__(
        self,
        orders: OrderStore,
        notifier: NotificationDispatcher,
        activation_lead: timedelta = timedelta(0),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.orders = orders
        self.notifier = notifier
        self.activation_lead = activation_lead
        self.clock = clock

    def _apply(self, order_id, requested, trigger, partner_id=None) -> Order:
        previous, order = self.orders.apply_transition(order_id, requested, trigger, partner_id=partner_id)
        logger.info(
            "order status changed",
            extra={"order_id": order.id, "from": previous.value, "to": order.status.value},
        )
        self._notify(lifecycle.notification_event(previous, order.status), order)
        return order

    def update_status(self, order_id: str, requested: OrderStatus) -> Order:
        return self._apply(order_id, requested, lifecycle.Trigger.OPERATOR)

    def assign_partner(self, order_id: str, partner_id: int) -> Order:
        """Assign a delivery partner and move the order out for delivery in one step."""
        return self._apply(
            order_id, OrderStatus.OUT_FOR_DELIVERY, lifecycle.Trigger.OPERATOR, partner_id=partner_id
        )

    def activate(self, order_id: str) -> Order:
        """Release a scheduled order to the kitchen (timer or manual override)."""
        return self._apply(order_id, OrderStatus.PENDING, lifecycle.Trigger.ACTIVATION)

    def activate_due(self, now: Optional[datetime] = None) -> List[Order]:
        """Activate every scheduled order due within the activation lead.

        Orders another worker activated first are skipped.
        """
        horizon = (now or self.clock()) + self.activation_lead
        activated = []
        for order_id in self.orders.due_for_activation(horizon):
            try:
                activated.append(self.activate(order_id))
            except (StatusConflict, TransitionError, OrderNotFound) as exc:
                logger.info("activation skipped", extra={"order_id": order_id, "reason": str(exc)})
        return activated

    def get(self, order_id: str) -> Order:
        return self.orders.get(order_id)

    def ensure_invoice_number(self, order_id: str) -> Order:
        return self.orders.ensure_invoice_number(order_id)

    def lookup(self, reference: str, phone: str) -> Order:
        """Guest lookup by order id or number, confirmed by phone."""
        order = self.orders.find_by_reference(reference, phone)
        if order is None:
            raise OrderNotFound("Order not found")
        return order

    def kitchen_board(self) -> Dict[str, List[Order]]:
        groups = ("PENDING", "KITCHEN", "READY", "OUT_FOR_DELIVERY")
        return {name: self.orders.list_by_status(lifecycle.STATUS_GROUPS[name]) for name in groups}
