"""Pydantic schemas for the orders API.

Request DTOs validate and normalize incoming JSON before it is mapped onto
domain dataclasses. Read DTOs shape domain objects into response bodies;
dump them with ``mode="json"`` so Decimals and datetimes serialize as strings.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from django.utils import timezone
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from . import lifecycle
from .domain import (
    CartLine,
    GuestAddress,
    Order,
    OrderIntent,
    OrderKind,
    OrderRequest,
    OrderStatus,
    PaymentMethod,
    PaymentProof,
    PaymentStatus,
    PricedLine,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes are read in the store's time zone
    if value is not None and timezone.is_naive(value):
        return timezone.make_aware(value)
    return value


class CartLineIn(BaseModel):
    """A cart line as sent by the client.

    ``name`` and ``price`` are accepted for compatibility with older clients
    and are never used for pricing.
    """

    item_id: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("item_id", "id", "menu_item_id"))
    quantity: int
    variant_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices("variant_ids", "variants"))
    addon_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices("addon_ids", "addons"))
    name: Optional[str] = None
    price: Optional[Decimal] = None

    def to_domain(self) -> CartLine:
        return CartLine(
            item_id=self.item_id,
            quantity=self.quantity,
            variant_ids=tuple(self.variant_ids),
            addon_ids=tuple(self.addon_ids),
            client_name=self.name,
            client_price=self.price,
        )


class GuestAddressIn(BaseModel):
    street: str = ""
    city: str = ""
    zip: str = Field(default="", validation_alias=AliasChoices("zip", "pincode"))

    def to_domain(self) -> GuestAddress:
        return GuestAddress(street=self.street, city=self.city, zip=self.zip.strip())


class PaymentDetailsIn(BaseModel):
    """Processor proof of payment. Accepts the processor's field names."""

    order_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("order_id", "razorpay_order_id"))
    payment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("payment_id", "razorpay_payment_id")
    )
    signature: Optional[str] = Field(default=None, validation_alias=AliasChoices("signature", "razorpay_signature"))

    def to_domain(self) -> PaymentProof:
        return PaymentProof(order_id=self.order_id, payment_id=self.payment_id, signature=self.signature)


class _DestinationIn(BaseModel):
    address_id: Optional[int] = None
    guest_address: Optional[GuestAddressIn] = None


class CreateOrderDTO(_DestinationIn):
    """Schema for submitting an order.

    Attributes:
        items: Cart lines; prices are always recomputed server-side.
        order_type: ``INSTANT`` (default) or ``SCHEDULED``.
        scheduled_for: Delivery time for scheduled orders.
        address_id: Saved address of the authenticated customer.
        guest_address: Delivery address for guest checkout.
        payment_method: ``COD`` (default), ``UPI``, ``CARD`` or ``NET_BANKING``.
        payment_details: Processor proof, required unless COD.
        coupon_code: Optional coupon, normalized to uppercase.
    """

    items: List[CartLineIn]
    order_type: OrderKind = Field(default=OrderKind.INSTANT, validation_alias=AliasChoices("order_type", "kind"))
    scheduled_for: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("scheduled_for", "scheduled_time")
    )
    customer_name: Optional[str] = Field(default=None, max_length=120)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_details: Optional[PaymentDetailsIn] = None
    coupon_code: Optional[str] = Field(default=None, max_length=40)

    @field_validator("order_type", "payment_method", mode="before")
    @classmethod
    def upper_enum(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("scheduled_for")
    @classmethod
    def make_aware(cls, v):
        return _aware(v)

    @field_validator("coupon_code")
    @classmethod
    def normalize_coupon(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip().upper()
        return v or None

    def to_domain(self, customer_id: Optional[str] = None) -> OrderRequest:
        return OrderRequest(
            lines=[line.to_domain() for line in self.items],
            intent=OrderIntent(
                kind=self.order_type,
                scheduled_for=self.scheduled_for,
                address_id=self.address_id,
                guest_address=self.guest_address.to_domain() if self.guest_address else None,
                customer_id=customer_id,
            ),
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            payment_method=self.payment_method,
            payment_proof=self.payment_details.to_domain() if self.payment_details else None,
            coupon_code=self.coupon_code,
        )


class ValidateDeliveryDTO(_DestinationIn):
    pincode: Optional[str] = None

    def to_intent(self, customer_id: Optional[str] = None) -> OrderIntent:
        guest = self.guest_address.to_domain() if self.guest_address else None
        if guest is None and self.pincode:
            guest = GuestAddress(street="", city="", zip=self.pincode.strip())
        return OrderIntent(address_id=self.address_id, guest_address=guest, customer_id=customer_id)


class StatusUpdateDTO(BaseModel):
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def parse(cls, v):
        parsed = lifecycle.parse_status(v) if isinstance(v, str) else v
        if parsed is None:
            raise ValueError("Unknown status")
        return parsed


class AssignPartnerDTO(BaseModel):
    partner_id: int = Field(validation_alias=AliasChoices("partner_id", "partnerId"))


class LookupDTO(BaseModel):
    reference: str = Field(
        min_length=1, validation_alias=AliasChoices("reference", "order_id", "orderId", "order_number")
    )
    phone: str = Field(min_length=1)


class RepeatDTO(BaseModel):
    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"))
    phone: Optional[str] = None


# ---- Read models ----
class OrderLineReadDTO(BaseModel):
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    variants: List[dict] = Field(default_factory=list)
    addons: List[dict] = Field(default_factory=list)

    @classmethod
    def from_line(cls, line) -> "OrderLineReadDTO":
        return cls(
            item_id=line.item_id,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            line_total=line.line_total,
            variants=[{"id": v.id, "name": v.name, "price": str(v.price)} for v in line.variants],
            addons=[{"id": a.id, "name": a.name, "price": str(a.price)} for a in line.addons],
        )


class TaxReadDTO(BaseModel):
    cgst_rate: Decimal
    cgst_amount: Decimal
    sgst_rate: Decimal
    sgst_amount: Decimal
    total_tax: Decimal


class OrderReadDTO(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str
    number: int
    status: OrderStatus
    status_label: str
    kind: OrderKind
    subtotal: Decimal
    discount: Decimal
    tax: TaxReadDTO
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    coupon_code: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    partner_id: Optional[int] = None
    invoice_number: Optional[str] = None
    created_at: datetime
    lines: List[OrderLineReadDTO] = Field(default_factory=list)

    @classmethod
    def from_order(cls, order: Order) -> "OrderReadDTO":
        tax = order.tax
        return cls(
            id=order.id,
            number=order.number,
            status=order.status,
            status_label=lifecycle.STATUS_LABELS[order.status],
            kind=order.kind,
            subtotal=order.subtotal,
            discount=order.discount,
            tax=TaxReadDTO(
                cgst_rate=tax.cgst_rate,
                cgst_amount=tax.cgst_amount,
                sgst_rate=tax.sgst_rate,
                sgst_amount=tax.sgst_amount,
                total_tax=tax.total_tax,
            ),
            total=order.total,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            coupon_code=order.coupon_code,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            scheduled_for=order.scheduled_for,
            partner_id=order.partner_id,
            invoice_number=order.invoice_number,
            created_at=order.created_at,
            lines=[OrderLineReadDTO.from_line(line) for line in order.lines],
        )


class RepeatLineDTO(BaseModel):
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    variant_ids: List[str]
    addon_ids: List[str]

    @classmethod
    def from_priced(cls, line: PricedLine) -> "RepeatLineDTO":
        return cls(
            item_id=line.item_id,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            variant_ids=[v.id for v in line.variants],
            addon_ids=[a.id for a in line.addons],
        )
