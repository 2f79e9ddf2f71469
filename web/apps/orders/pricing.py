"""Price integrity engine, coupon evaluator and tax calculator.

Every function in this module is pure: it works on catalog and coupon
snapshots already loaded in memory and never reads client-supplied prices.
Amounts are ``Decimal`` and are rounded to two places with ROUND_HALF_UP.
"""

from collections import OrderedDict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .domain import (
    CartLine,
    CatalogError,
    CatalogItemSnapshot,
    CouponError,
    CouponSnapshot,
    CouponType,
    PricedLine,
    Quote,
    TaxBreakdown,
)

CENT = Decimal("0.01")
DEFAULT_GST_RATE = Decimal("5")
ZERO = Decimal("0")


def q2(value) -> Decimal:
    """Round to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _unique(ids: Iterable[str]) -> List[str]:
    return list(OrderedDict.fromkeys(ids))


def requested_quantities(lines: Iterable) -> Dict[str, int]:
    """Sum requested quantities per catalog item across all lines."""
    totals: Dict[str, int] = {}
    for line in lines:
        totals[line.item_id] = totals.get(line.item_id, 0) + line.quantity
    return totals


def resolve_line(line: CartLine, item: Optional[CatalogItemSnapshot], check_stock: bool = True) -> PricedLine:
    """Resolve one cart line into a server-priced line.

    Selected variants with a non-zero total replace the base price; addons
    that belong to the item are added on top. Variant or addon ids the item
    does not own are ignored.

    Args:
        line: The client's line. Its name and price are never used.
        item: The catalog snapshot for ``line.item_id`` or None if unknown.
        check_stock: Run the advisory stock preflight for this line alone.

    Raises:
        CatalogError: ``ITEM_NOT_FOUND``, ``ITEM_UNAVAILABLE``,
            ``VARIANT_UNAVAILABLE``, ``ADDON_UNAVAILABLE``,
            ``INVALID_QUANTITY`` or ``INSUFFICIENT_STOCK``.
    """
    if item is None:
        label = line.client_name or line.item_id
        raise CatalogError(f'Item "{label}" not found.', code="ITEM_NOT_FOUND", item_id=line.item_id)
    if not item.is_available:
        raise CatalogError(
            f'Item "{item.name}" is currently unavailable.', code="ITEM_UNAVAILABLE", item_id=item.id
        )
    if line.quantity <= 0:
        raise CatalogError("Quantity must be positive.", code="INVALID_QUANTITY", item_id=item.id)
    if check_stock and item.is_stock_managed and item.stock < line.quantity:
        raise CatalogError(
            f'Item "{item.name}" is out of stock (Only {item.stock} left).',
            code="INSUFFICIENT_STOCK",
            item_id=item.id,
        )

    variants = []
    for variant_id in _unique(line.variant_ids):
        variant = item.variant(variant_id)
        if variant is None:
            continue
        if not variant.is_available:
            raise CatalogError(
                f'Option "{variant.name}" of "{item.name}" is currently unavailable.',
                code="VARIANT_UNAVAILABLE",
                item_id=item.id,
            )
        variants.append(variant)

    addons = []
    for addon_id in _unique(line.addon_ids):
        addon = item.addon(addon_id)
        if addon is None:
            continue
        if not addon.is_available:
            raise CatalogError(
                f'Addon "{addon.name}" of "{item.name}" is currently unavailable.',
                code="ADDON_UNAVAILABLE",
                item_id=item.id,
            )
        addons.append(addon)

    variants_price = sum((v.price for v in variants), ZERO)
    unit_price = variants_price if variants_price > 0 else item.price
    unit_price += sum((a.price for a in addons), ZERO)

    return PricedLine(
        item_id=item.id,
        name=item.name,
        unit_price=q2(unit_price),
        quantity=line.quantity,
        variants=tuple(variants),
        addons=tuple(addons),
    )


def price_cart(lines: List[CartLine], catalog: Mapping[str, CatalogItemSnapshot]) -> Tuple[List[PricedLine], Decimal]:
    """Price every line against the catalog and return ``(lines, subtotal)``.

    The stock preflight is run against the combined quantity of every line
    that targets the same item. It is advisory: the commit transaction
    re-checks stock under lock.

    Raises:
        CatalogError: ``EMPTY_ORDER`` or any rejection from ``resolve_line``.
    """
    if not lines:
        raise CatalogError("Your cart is empty.", code="EMPTY_ORDER")

    priced = [resolve_line(line, catalog.get(line.item_id)) for line in lines]

    for item_id, quantity in requested_quantities(lines).items():
        item = catalog[item_id]
        if item.is_stock_managed and item.stock < quantity:
            raise CatalogError(
                f'Item "{item.name}" is out of stock (Only {item.stock} left).',
                code="INSUFFICIENT_STOCK",
                item_id=item_id,
            )

    subtotal = q2(sum((p.line_total for p in priced), ZERO))
    return priced, subtotal


def evaluate_coupon(coupon: Optional[CouponSnapshot], subtotal: Decimal, now: datetime, code: str = "") -> Decimal:
    """Validate a coupon and return the discount it grants on ``subtotal``.

    The discount is capped at the subtotal so a coupon can bring the order
    down to zero but never below.

    Raises:
        CouponError: ``COUPON_NOT_FOUND``, ``COUPON_INACTIVE``,
            ``COUPON_EXPIRED`` or ``COUPON_LIMIT_REACHED``.
    """
    if coupon is None:
        raise CouponError("Invalid coupon code", code="COUPON_NOT_FOUND", coupon_code=code or None)
    if not coupon.is_active:
        raise CouponError("Coupon is inactive", code="COUPON_INACTIVE", coupon_code=coupon.code)
    if now > coupon.expiry:
        raise CouponError("Coupon has expired", code="COUPON_EXPIRED", coupon_code=coupon.code)
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponError("Coupon usage limit reached", code="COUPON_LIMIT_REACHED", coupon_code=coupon.code)

    if coupon.type == CouponType.PERCENTAGE:
        discount = q2(subtotal * coupon.value / 100)
    else:
        discount = q2(coupon.value)
    return min(discount, subtotal)


def compute_tax(taxable_amount: Decimal, rate: Decimal = DEFAULT_GST_RATE) -> TaxBreakdown:
    """Split GST at ``rate`` percent into two equal, independently rounded halves.

    ``total_tax`` is the sum of the rounded halves, not the full rate applied
    once, so the two printed components always add up to the total.
    """
    half_rate = Decimal(rate) / 2
    cgst = q2(taxable_amount * half_rate / 100)
    sgst = q2(taxable_amount * half_rate / 100)
    return TaxBreakdown(
        cgst_rate=half_rate,
        cgst_amount=cgst,
        sgst_rate=half_rate,
        sgst_amount=sgst,
        total_tax=cgst + sgst,
    )


def build_quote(
    lines: List[CartLine],
    catalog: Mapping[str, CatalogItemSnapshot],
    now: datetime,
    coupon: Optional[CouponSnapshot] = None,
    coupon_code: Optional[str] = None,
    gst_rate: Decimal = DEFAULT_GST_RATE,
) -> Quote:
    """Price a cart end to end: lines, subtotal, coupon discount and tax."""
    priced, subtotal = price_cart(lines, catalog)

    discount = ZERO
    applied = None
    if coupon_code:
        discount = evaluate_coupon(coupon, subtotal, now, code=coupon_code)
        applied = coupon.code

    taxable = subtotal - discount
    tax = compute_tax(taxable, gst_rate)
    return Quote(
        lines=tuple(priced),
        subtotal=subtotal,
        discount=q2(discount),
        tax=tax,
        total=q2(taxable + tax.total_tax),
        coupon_code=applied,
    )
