"""Domain models, errors and ports for order intake and lifecycle.

This module contains the enums and frozen dataclasses used as DTOs by the
pure pricing, eligibility and lifecycle modules, the error taxonomy raised
by the core, and the protocol definitions (ports) for the collaborators the
core depends on: catalog, coupons, store settings, delivery zones, saved
addresses, order storage, delivery partners and notifications.

Nothing here touches the database; the Django-backed implementations live in
``repository`` and the in-process stubs in ``adapters``.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Protocol, Tuple


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle states of a persisted order.

    ``DELIVERED``, ``CANCELLED`` and ``REFUNDED`` are terminal.
    """

    SCHEDULED = "SCHEDULED"
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    PREPARING = "PREPARING"
    BAKING = "BAKING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderKind(str, Enum):
    INSTANT = "INSTANT"
    SCHEDULED = "SCHEDULED"


class PaymentMethod(str, Enum):
    COD = "COD"
    UPI = "UPI"
    CARD = "CARD"
    NET_BANKING = "NET_BANKING"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class CouponType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FLAT = "FLAT"


class PartnerStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"


class NotificationEvent(str, Enum):
    """Lifecycle events forwarded to the notification dispatcher."""

    ORDER_PLACED = "ORDER_PLACED"
    SCHEDULED_ORDER_CONFIRMED = "SCHEDULED_ORDER_CONFIRMED"
    ORDER_ACTIVATED = "ORDER_ACTIVATED"
    ORDER_ACCEPTED = "ORDER_ACCEPTED"
    ORDER_PREPARING = "ORDER_PREPARING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    ORDER_CANCELLED = "ORDER_CANCELLED"


# ---- Errors ----
class OrderError(ValueError):
    """Base class for every rejection raised by the order core.

    The exception's string value is its short error code (for example
    ``"OUT_OF_STOCK"``) so callers can switch on ``str(exc)``. The
    customer-facing text lives in ``message`` and the offending identifier,
    when there is one, in ``subject``.

    Args:
        message: Human-readable reason. Defaults to the code.
        code: Overrides the class-level default code.
        **subject: Offending identifiers (``item_id``, ``pincode`` ...).
    """

    code = "ORDER_REJECTED"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, **subject):
        if code:
            self.code = code
        self.message = message or self.code
        self.subject = subject
        super().__init__(self.code)

    def as_dict(self) -> dict:
        """Serialise the rejection for an HTTP response body."""
        body = {"detail": self.code, "message": self.message}
        body.update({k: v for k, v in self.subject.items() if v is not None})
        return body


class EligibilityError(OrderError):
    """Store closed or paused, cutoff passed, zone unserviceable, schedule too soon."""

    code = "NOT_ELIGIBLE"


class CatalogError(OrderError):
    """Item missing, unavailable, or visibly short on stock at preflight."""

    code = "CATALOG_REJECTED"


class CouponError(OrderError):
    code = "COUPON_REJECTED"


class PaymentError(OrderError):
    """Missing or forged payment proof. No order is ever created."""

    code = "PAYMENT_REJECTED"


class ConcurrencyError(OrderError):
    code = "CONFLICT"


class OutOfStock(ConcurrencyError):
    """Stock ran out between the preflight and the commit transaction."""

    code = "OUT_OF_STOCK"


class StatusConflict(ConcurrencyError):
    """The order's status changed underneath a compare-and-set update."""

    code = "STATUS_CONFLICT"


class TransitionError(OrderError):
    code = "ILLEGAL_TRANSITION"


class OrderNotFound(OrderError):
    code = "NOT_FOUND"


class AccessDenied(OrderError):
    code = "FORBIDDEN"


class NotificationsUnavailable(OrderError):
    """The notifications service could not be reached to read an order's log."""

    code = "NOTIFICATIONS_UNAVAILABLE"


# ---- Catalog snapshot ----
@dataclass(frozen=True)
class VariantSnapshot:
    """A priced, mutually exclusive alternative of a catalog item (e.g. size)."""

    id: str
    name: str
    price: Decimal
    type: str = ""
    is_available: bool = True


@dataclass(frozen=True)
class AddonSnapshot:
    id: str
    name: str
    price: Decimal
    is_available: bool = True


@dataclass(frozen=True)
class CatalogItemSnapshot:
    """Authoritative view of a catalog item at read time.

    Attributes:
        id: Catalog item identifier.
        name: Display name, copied onto order lines.
        price: Base price used when no priced variant is selected.
        is_available: Whether the item can be ordered at all.
        is_stock_managed: When True, ``stock`` governs availability.
        stock: Units left for managed-stock items.
        variants: Variants owned by the item.
        addons: Addons owned by the item.
    """

    id: str
    name: str
    price: Decimal
    is_available: bool = True
    is_stock_managed: bool = False
    stock: int = 0
    variants: Tuple[VariantSnapshot, ...] = ()
    addons: Tuple[AddonSnapshot, ...] = ()

    def variant(self, variant_id: str) -> Optional[VariantSnapshot]:
        return next((v for v in self.variants if v.id == variant_id), None)

    def addon(self, addon_id: str) -> Optional[AddonSnapshot]:
        return next((a for a in self.addons if a.id == addon_id), None)


@dataclass(frozen=True)
class CouponSnapshot:
    code: str
    type: CouponType
    value: Decimal
    expiry: datetime
    usage_limit: Optional[int] = None
    used_count: int = 0
    is_active: bool = True


# ---- Cart and quote ----
@dataclass(frozen=True)
class CartLine:
    """A line as submitted by the client.

    ``client_name`` and ``client_price`` are carried for logging only; the
    pricing engine never reads them.
    """

    item_id: str
    quantity: int
    variant_ids: Tuple[str, ...] = ()
    addon_ids: Tuple[str, ...] = ()
    client_name: Optional[str] = None
    client_price: Optional[Decimal] = None


@dataclass(frozen=True)
class PricedLine:
    """A cart line resolved against the catalog with server-side prices."""

    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    variants: Tuple[VariantSnapshot, ...] = ()
    addons: Tuple[AddonSnapshot, ...] = ()

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class TaxBreakdown:
    cgst_rate: Decimal
    cgst_amount: Decimal
    sgst_rate: Decimal
    sgst_amount: Decimal
    total_tax: Decimal


@dataclass(frozen=True)
class Quote:
    """Server-computed money for a cart.

    Invariant: ``total == subtotal - discount + tax.total_tax``.
    """

    lines: Tuple[PricedLine, ...]
    subtotal: Decimal
    discount: Decimal
    tax: TaxBreakdown
    total: Decimal
    coupon_code: Optional[str] = None

    @property
    def taxable_amount(self) -> Decimal:
        return self.subtotal - self.discount


# ---- Intake ----
@dataclass(frozen=True)
class GuestAddress:
    street: str
    city: str
    zip: str


@dataclass(frozen=True)
class PaymentProof:
    """The processor's order/payment/signature triple supplied by the client."""

    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.order_id and self.payment_id and self.signature)


@dataclass(frozen=True)
class OrderIntent:
    """What the eligibility gate needs to know, independent of cart contents."""

    kind: OrderKind = OrderKind.INSTANT
    scheduled_for: Optional[datetime] = None
    address_id: Optional[int] = None
    guest_address: Optional[GuestAddress] = None
    customer_id: Optional[str] = None


@dataclass
class OrderRequest:
    lines: List[CartLine]
    intent: OrderIntent = field(default_factory=OrderIntent)
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_proof: Optional[PaymentProof] = None
    coupon_code: Optional[str] = None


@dataclass(frozen=True)
class OrderDraft:
    """Validated inputs handed to the commit transaction."""

    request: OrderRequest
    quote: Quote
    status: OrderStatus
    payment_status: PaymentStatus
    pincode: str


# ---- Persisted order ----
@dataclass(frozen=True)
class OrderLine:
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    variants: Tuple[VariantSnapshot, ...] = ()
    addons: Tuple[AddonSnapshot, ...] = ()


@dataclass
class Order:
    """Container for a committed order as returned to callers.

    Monetary fields are computed server-side once, at commit, and never
    recomputed from client input afterward.
    """

    id: str
    number: int
    status: OrderStatus
    kind: OrderKind
    subtotal: Decimal
    discount: Decimal
    tax: TaxBreakdown
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    created_at: datetime
    lines: List[OrderLine] = field(default_factory=list)
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    coupon_code: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    partner_id: Optional[int] = None
    invoice_number: Optional[str] = None
    updated_at: Optional[datetime] = None


# ---- Store settings ----
@dataclass(frozen=True)
class StoreSettings:
    """The store's operating switches.

    Attributes:
        is_open: When False only scheduled orders are accepted.
        is_paused: When True no orders are accepted at all.
        closed_message: Shown to customers while the store is closed.
        last_order_time: Same-day cutoff for instant orders.
    """

    is_open: bool = True
    is_paused: bool = False
    closed_message: str = ""
    last_order_time: Optional[time] = None


class Unrestricted:
    """No store settings are configured: every settings check is skipped."""

    def __repr__(self) -> str:
        return "UNRESTRICTED"


UNRESTRICTED = Unrestricted()


@dataclass(frozen=True)
class DeliveryZone:
    pincode: str
    name: str = ""
    is_active: bool = True


def format_invoice_number(created_at: datetime, number: int) -> str:
    """Return ``INV-YYYYMM-NNNNN`` for an order created at ``created_at``."""
    return f"INV-{created_at:%Y%m}-{number:05d}"


# ---- Ports (DIP) ----
class CatalogReader(Protocol):
    """Port returning authoritative catalog data for a set of items."""

    def snapshot(self, item_ids: List[str]) -> dict:
        """Return ``{item_id: CatalogItemSnapshot}`` for the known ids.

        Unknown ids are simply absent from the mapping.
        """
        raise NotImplementedError()


class CouponBook(Protocol):
    def find(self, code: str) -> Optional[CouponSnapshot]:
        raise NotImplementedError()


class StoreSettingsProvider(Protocol):
    def current(self):
        """Return a ``StoreSettings`` or the ``UNRESTRICTED`` sentinel."""
        raise NotImplementedError()


class ZoneDirectory(Protocol):
    def find(self, pincode: str) -> Optional[DeliveryZone]:
        raise NotImplementedError()


class AddressBook(Protocol):
    def pincode_for(self, address_id: int, customer_id: Optional[str]) -> str:
        """Return the pincode of a saved address.

        Raises:
            EligibilityError: ``ADDRESS_NOT_FOUND`` or ``ADDRESS_FORBIDDEN``.
        """
        raise NotImplementedError()


class PartnerRegistry(Protocol):
    """Port over the delivery-partner roster, keyed by partner id."""

    def assign(self, partner_id: int) -> None:
        raise NotImplementedError()

    def free(self, partner_id: int) -> None:
        raise NotImplementedError()


class OrderStore(Protocol):
    """Port describing the transactional storage the core needs.

    ``commit`` is the only path that mutates stock; ``apply_transition`` is
    the only path that mutates an order's status.
    """

    def commit(self, draft: OrderDraft) -> Order:
        raise NotImplementedError()

    def get(self, order_id: str) -> Order:
        raise NotImplementedError()

    def apply_transition(self, order_id: str, requested: OrderStatus, trigger, partner_id: Optional[int] = None):
        """Apply a status change with its side effects in one atomic step.

        Returns:
            tuple[OrderStatus, Order]: the previous status and the updated order.
        """
        raise NotImplementedError()

    def due_for_activation(self, before: datetime) -> List[str]:
        raise NotImplementedError()

    def ensure_invoice_number(self, order_id: str) -> Order:
        raise NotImplementedError()

    def find_by_reference(self, reference: str, phone: str) -> Optional[Order]:
        raise NotImplementedError()

    def list_by_status(self, statuses) -> List[Order]:
        raise NotImplementedError()


class NotificationDispatcher(Protocol):
    def notify(self, event: NotificationEvent, payload: dict) -> None:
        """Hand an event over for best-effort delivery. Must not block."""
        raise NotImplementedError()


class NotificationLog(Protocol):
    def for_order(self, order_id: str) -> List[dict]:
        """Events sent for an order, oldest first.

        Raises:
            NotificationsUnavailable: When the log cannot be read.
        """
        raise NotImplementedError()
