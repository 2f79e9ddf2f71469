"""Repository layer implementing the order ports with the Django ORM.

The domain code never sees ORM types: each class here maps rows to the
frozen dataclasses in ``domain`` and back. Two operations own all writes:

* ``DjangoOrderStore.commit``: the order commit transaction. Within one
  ``transaction.atomic()`` block it locks the affected catalog rows, re-reads
  and re-checks managed stock, decrements it, re-checks and increments the
  coupon's usage counter, inserts the order and its lines from the
  server-computed quote and assigns the invoice number. Any failure rolls
  the whole block back.
* ``DjangoOrderStore.apply_transition``: a compare-and-set on the order's
  own status plus the partner side effect the transition table asks for.
"""

import logging
import uuid
from decimal import Decimal
from typing import Iterable, List, Optional

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from . import lifecycle
from .domain import (
    UNRESTRICTED,
    AddonSnapshot,
    CatalogError,
    CatalogItemSnapshot,
    CouponError,
    CouponSnapshot,
    CouponType,
    DeliveryZone as ZoneDTO,
    EligibilityError,
    Order,
    OrderDraft,
    OrderKind,
    OrderLine,
    OrderNotFound,
    OrderStatus,
    OutOfStock,
    PaymentMethod,
    PaymentStatus,
    PartnerStatus,
    StatusConflict,
    StoreSettings as StoreSettingsDTO,
    TaxBreakdown,
    TransitionError,
    VariantSnapshot,
    format_invoice_number,
)
from .eligibility import parse_cutoff
from .models import (
    Address,
    CatalogItem,
    Coupon,
    DeliveryPartner,
    DeliveryZone,
    OrderLineModel,
    OrderModel,
    StoreSettings,
)
from .pricing import requested_quantities

logger = logging.getLogger("orders")


# ---- Read-side providers ----
class DjangoCatalog:
    """Catalog snapshot reader. Plain reads, no locks."""

    def snapshot(self, item_ids: Iterable[str]) -> dict:
        rows = CatalogItem.objects.filter(pk__in=set(item_ids)).prefetch_related("variants", "addons")
        return {row.pk: self._to_snapshot(row) for row in rows}

    @staticmethod
    def _to_snapshot(row: CatalogItem) -> CatalogItemSnapshot:
        return CatalogItemSnapshot(
            id=row.pk,
            name=row.name,
            price=row.price,
            is_available=row.is_available,
            is_stock_managed=row.is_stock_managed,
            stock=row.stock,
            variants=tuple(
                VariantSnapshot(id=v.pk, name=v.name, price=v.price, type=v.type, is_available=v.is_available)
                for v in row.variants.all()
            ),
            addons=tuple(
                AddonSnapshot(id=a.pk, name=a.name, price=a.price, is_available=a.is_available)
                for a in row.addons.all()
            ),
        )


def _coupon_snapshot(row: Coupon) -> CouponSnapshot:
    return CouponSnapshot(
        code=row.code,
        type=CouponType(row.type),
        value=row.value,
        expiry=row.expiry,
        usage_limit=row.usage_limit,
        used_count=row.used_count,
        is_active=row.is_active,
    )


class DjangoCoupons:
    def find(self, code: str) -> Optional[CouponSnapshot]:
        row = Coupon.objects.filter(code=code).first()
        return _coupon_snapshot(row) if row else None


class DjangoStoreSettings:
    """Returns the singleton settings row, or ``UNRESTRICTED`` when there is none."""

    def current(self):
        row = StoreSettings.objects.order_by("pk").first()
        if row is None:
            return UNRESTRICTED
        try:
            cutoff = parse_cutoff(row.last_order_time)
        except ValueError:
            logger.warning(
                "ignoring malformed store cutoff", extra={"last_order_time": row.last_order_time}
            )
            cutoff = None
        return StoreSettingsDTO(
            is_open=row.is_open,
            is_paused=row.is_paused,
            closed_message=row.closed_message,
            last_order_time=cutoff,
        )


class DjangoZones:
    def find(self, pincode: str) -> Optional[ZoneDTO]:
        row = DeliveryZone.objects.filter(pincode=pincode).first()
        return ZoneDTO(pincode=row.pincode, name=row.name, is_active=row.is_active) if row else None


class DjangoAddressBook:
    def pincode_for(self, address_id: int, customer_id: Optional[str]) -> str:
        row = Address.objects.filter(pk=address_id).first()
        if row is None:
            raise EligibilityError("Selected address not found", code="ADDRESS_NOT_FOUND")
        if customer_id and row.owner_id != customer_id:
            raise EligibilityError("Unauthorized: You cannot use this address.", code="ADDRESS_FORBIDDEN")
        return row.zip.strip()


class DjangoPartnerRegistry:
    """Assign/free delivery partners. Callers provide the surrounding transaction."""

    def assign(self, partner_id: int) -> None:
        updated = DeliveryPartner.objects.filter(pk=partner_id).update(status=PartnerStatus.BUSY.value)
        if not updated:
            raise TransitionError(
                "Delivery partner not found.", code="PARTNER_NOT_FOUND", partner_id=partner_id
            )

    def free(self, partner_id: int) -> None:
        DeliveryPartner.objects.filter(pk=partner_id).update(status=PartnerStatus.AVAILABLE.value)


# ---- Order store ----
def _variant_json(v: VariantSnapshot) -> dict:
    return {"id": v.id, "name": v.name, "type": v.type, "price": str(v.price)}


def _addon_json(a: AddonSnapshot) -> dict:
    return {"id": a.id, "name": a.name, "price": str(a.price)}


def to_order(row: OrderModel) -> Order:
    """Map an ``OrderModel`` (with its lines) to the domain ``Order``."""
    lines = [
        OrderLine(
            item_id=line.item_id,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            line_total=line.line_total,
            variants=tuple(
                VariantSnapshot(id=v["id"], name=v["name"], price=Decimal(v["price"]), type=v.get("type", ""))
                for v in line.variants
            ),
            addons=tuple(
                AddonSnapshot(id=a["id"], name=a["name"], price=Decimal(a["price"])) for a in line.addons
            ),
        )
        for line in row.lines.all()
    ]
    return Order(
        id=str(row.pk),
        number=row.number,
        status=OrderStatus(row.status),
        kind=OrderKind(row.kind),
        subtotal=row.subtotal,
        discount=row.discount,
        tax=TaxBreakdown(
            cgst_rate=row.cgst_rate,
            cgst_amount=row.cgst_amount,
            sgst_rate=row.sgst_rate,
            sgst_amount=row.sgst_amount,
            total_tax=row.tax,
        ),
        total=row.total,
        payment_method=PaymentMethod(row.payment_method),
        payment_status=PaymentStatus(row.payment_status),
        created_at=row.created_at,
        lines=lines,
        customer_id=row.customer_id,
        customer_name=row.customer_name or None,
        customer_phone=row.customer_phone or None,
        coupon_code=row.coupon_code,
        scheduled_for=row.scheduled_for,
        partner_id=row.partner_id,
        invoice_number=row.invoice_number,
        updated_at=row.updated_at,
    )


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class DjangoOrderStore:
    """Transactional order storage over the Django ORM."""

    def __init__(self, partners: Optional[DjangoPartnerRegistry] = None):
        self.partners = partners or DjangoPartnerRegistry()

    def _load(self, order_id) -> OrderModel:
        pk = _parse_uuid(order_id)
        row = OrderModel.objects.prefetch_related("lines").filter(pk=pk).first() if pk else None
        if row is None:
            raise OrderNotFound("Order not found")
        return row

    def get(self, order_id: str) -> Order:
        return to_order(self._load(order_id))

    def _reserve_stock(self, quantities: dict) -> None:
        # Lock rows in primary-key order so concurrent commits cannot deadlock
        rows = {
            row.pk: row
            for row in CatalogItem.objects.select_for_update().filter(pk__in=quantities.keys()).order_by("pk")
        }
        for item_id in sorted(quantities):
            row = rows.get(item_id)
            if row is None:
                raise CatalogError("Item no longer exists.", code="ITEM_NOT_FOUND", item_id=item_id)
            if row.is_stock_managed and row.stock < quantities[item_id]:
                raise OutOfStock(
                    f'Item "{row.name}" is out of stock. It sold out while you were checking out; '
                    "please review your cart.",
                    item_id=item_id,
                )
        for item_id in sorted(quantities):
            if rows[item_id].is_stock_managed:
                CatalogItem.objects.filter(pk=item_id).update(stock=F("stock") - quantities[item_id])

    def _redeem_coupon(self, code: str) -> None:
        coupon = Coupon.objects.select_for_update().filter(code=code).first()
        if coupon is None or not coupon.is_active:
            raise CouponError("Coupon is no longer valid", code="COUPON_INACTIVE", coupon_code=code)
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponError("Coupon usage limit reached", code="COUPON_LIMIT_REACHED", coupon_code=code)
        Coupon.objects.filter(pk=coupon.pk).update(used_count=F("used_count") + 1)

    def commit(self, draft: OrderDraft) -> Order:
        """Run the order commit transaction.

        Args:
            draft: Validated request, server-computed quote and statuses.

        Returns:
            The committed Order, invoice number included.

        Raises:
            OutOfStock: When a managed item no longer has enough stock.
            CouponError: When the coupon hit its limit since the preflight.
        """
        request, quote = draft.request, draft.quote
        intent = request.intent
        proof = request.payment_proof

        with transaction.atomic():
            self._reserve_stock(requested_quantities(quote.lines))
            if quote.coupon_code:
                self._redeem_coupon(quote.coupon_code)

            row = OrderModel(
                customer_id=intent.customer_id,
                customer_name=request.customer_name or "",
                customer_phone=request.customer_phone or "",
                address_id=intent.address_id,
                guest_address=(
                    {"street": intent.guest_address.street, "city": intent.guest_address.city,
                     "zip": intent.guest_address.zip}
                    if intent.guest_address else None
                ),
                status=draft.status.value,
                kind=intent.kind.value,
                scheduled_for=intent.scheduled_for if intent.kind == OrderKind.SCHEDULED else None,
                subtotal=quote.subtotal,
                discount=quote.discount,
                cgst_rate=quote.tax.cgst_rate,
                cgst_amount=quote.tax.cgst_amount,
                sgst_rate=quote.tax.sgst_rate,
                sgst_amount=quote.tax.sgst_amount,
                tax=quote.tax.total_tax,
                total=quote.total,
                payment_method=request.payment_method.value,
                payment_status=draft.payment_status.value,
                payment_reference=(
                    {"order_id": proof.order_id, "payment_id": proof.payment_id} if proof and proof.complete else {}
                ),
                coupon_code=quote.coupon_code,
            )
            row.save()

            OrderLineModel.objects.bulk_create(
                [
                    OrderLineModel(
                        order=row,
                        item_id=line.item_id,
                        name=line.name,
                        unit_price=line.unit_price,
                        quantity=line.quantity,
                        line_total=line.line_total,
                        variants=[_variant_json(v) for v in line.variants],
                        addons=[_addon_json(a) for a in line.addons],
                    )
                    for line in quote.lines
                ]
            )

            row.invoice_number = format_invoice_number(row.created_at, row.number)
            row.invoice_generated_at = timezone.now()
            row.save(update_fields=["invoice_number", "invoice_generated_at"])

        return self.get(str(row.pk))

    def apply_transition(self, order_id, requested: OrderStatus, trigger, partner_id=None):
        """Apply a status change and its partner side effect atomically.

        The status update is a compare-and-set guarded by the status read at
        the start; if another request moved the order first nothing is
        written and ``StatusConflict`` is raised.
        """
        with transaction.atomic():
            row = self._load(order_id)
            current = OrderStatus(row.status)
            step = lifecycle.resolve(current, requested, trigger)

            updates = {"status": requested.value, "updated_at": timezone.now()}
            if step.effect == lifecycle.Effect.ENGAGE_PARTNER:
                engaged = partner_id or row.partner_id
                if engaged is None:
                    raise TransitionError(
                        "Cannot mark as Out For Delivery! Please assign a Delivery Partner first.",
                        code="PARTNER_REQUIRED",
                    )
                self.partners.assign(engaged)
                updates["partner_id"] = engaged
            elif partner_id is not None:
                raise TransitionError(
                    f"A delivery partner cannot be assigned to a {current.value} order.",
                    code="ILLEGAL_TRANSITION",
                )

            changed = OrderModel.objects.filter(pk=row.pk, status=current.value).update(**updates)
            if not changed:
                raise StatusConflict("Order status changed concurrently; reload and retry.")

            if step.effect == lifecycle.Effect.RELEASE_PARTNER and row.partner_id is not None:
                self.partners.free(row.partner_id)

        return current, self.get(str(row.pk))

    def due_for_activation(self, before) -> List[str]:
        ids = (
            OrderModel.objects.filter(status=OrderStatus.SCHEDULED.value, scheduled_for__lte=before)
            .order_by("scheduled_for")
            .values_list("pk", flat=True)
        )
        return [str(pk) for pk in ids]

    def ensure_invoice_number(self, order_id: str) -> Order:
        """Backfill the invoice number of an order that lacks one. Write-once."""
        pk = _parse_uuid(order_id)
        with transaction.atomic():
            row = OrderModel.objects.select_for_update().filter(pk=pk).first() if pk else None
            if row is None:
                raise OrderNotFound("Order not found")
            if not row.invoice_number:
                row.invoice_number = format_invoice_number(row.created_at, row.number)
                row.invoice_generated_at = timezone.now()
                row.save(update_fields=["invoice_number", "invoice_generated_at"])
        return self.get(order_id)

    def find_by_reference(self, reference: str, phone: str) -> Optional[Order]:
        reference = str(reference).strip()
        match = Q(pk=_parse_uuid(reference)) if _parse_uuid(reference) else Q(pk__in=[])
        if reference.isdigit():
            match |= Q(number=int(reference))
        row = (
            OrderModel.objects.prefetch_related("lines")
            .filter(match, customer_phone=phone)
            .first()
        )
        return to_order(row) if row else None

    def list_by_status(self, statuses) -> List[Order]:
        rows = (
            OrderModel.objects.prefetch_related("lines")
            .filter(status__in=[OrderStatus(s).value for s in statuses])
            .order_by("created_at")
        )
        return [to_order(row) for row in rows]
