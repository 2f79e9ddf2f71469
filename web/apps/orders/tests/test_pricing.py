"""Unit tests for the price integrity engine, coupon evaluator and tax calculator."""

from datetime import timedelta
from decimal import Decimal

import pytest

from apps.orders.domain import CartLine, CatalogError, CouponError, CouponType
from apps.orders.pricing import build_quote, compute_tax, evaluate_coupon, price_cart, q2

from .conftest import NOW, coke, margherita, welcome_coupon


def catalog(**items):
    base = {"pizza-margherita": margherita(), "coke": coke()}
    base.update(items)
    return base


def test_base_price_used_without_variants():
    priced, subtotal = price_cart([CartLine("pizza-margherita", 2)], catalog())
    assert priced[0].unit_price == Decimal("199.00")
    assert subtotal == Decimal("398.00")


def test_variant_price_replaces_base_and_addons_are_added():
    line = CartLine("pizza-margherita", 1, variant_ids=("size-l",), addon_ids=("extra-cheese",))
    priced, subtotal = price_cart([line], catalog())
    assert priced[0].unit_price == Decimal("339.00")
    assert [v.name for v in priced[0].variants] == ["Large"]
    assert subtotal == Decimal("339.00")


def test_client_price_and_name_are_ignored():
    line = CartLine("coke", 3, client_name="Free coke", client_price=Decimal("0.01"))
    priced, subtotal = price_cart([line], catalog())
    assert priced[0].name == "Coke"
    assert subtotal == Decimal("150.00")


def test_unknown_variant_and_addon_ids_are_ignored():
    line = CartLine("pizza-margherita", 1, variant_ids=("size-s",), addon_ids=("olives",))
    priced, _ = price_cart([line], catalog())
    assert priced[0].unit_price == Decimal("199.00")
    assert priced[0].variants == () and priced[0].addons == ()


def test_unavailable_variant_is_rejected():
    with pytest.raises(CatalogError) as e:
        price_cart([CartLine("pizza-margherita", 1, variant_ids=("size-xl",))], catalog())
    assert str(e.value) == "VARIANT_UNAVAILABLE"


def test_missing_item_names_the_item():
    with pytest.raises(CatalogError) as e:
        price_cart([CartLine("garlic-bread", 1)], catalog())
    assert str(e.value) == "ITEM_NOT_FOUND"
    assert e.value.subject["item_id"] == "garlic-bread"


def test_unavailable_item_is_rejected():
    with pytest.raises(CatalogError) as e:
        price_cart([CartLine("coke", 1)], catalog(coke=coke(is_available=False)))
    assert str(e.value) == "ITEM_UNAVAILABLE"


def test_non_positive_quantity_is_rejected():
    with pytest.raises(CatalogError) as e:
        price_cart([CartLine("coke", 0)], catalog())
    assert str(e.value) == "INVALID_QUANTITY"


def test_empty_cart_is_rejected():
    with pytest.raises(CatalogError) as e:
        price_cart([], catalog())
    assert str(e.value) == "EMPTY_ORDER"


def test_stock_preflight_reports_units_left():
    with pytest.raises(CatalogError) as e:
        price_cart([CartLine("pizza-margherita", 3)], catalog(**{"pizza-margherita": margherita(stock=2)}))
    assert str(e.value) == "INSUFFICIENT_STOCK"
    assert "Only 2 left" in e.value.message


def test_stock_preflight_sums_lines_for_the_same_item():
    lines = [
        CartLine("pizza-margherita", 2),
        CartLine("pizza-margherita", 2, variant_ids=("size-l",)),
    ]
    with pytest.raises(CatalogError) as e:
        price_cart(lines, catalog(**{"pizza-margherita": margherita(stock=3)}))
    assert str(e.value) == "INSUFFICIENT_STOCK"


def test_unmanaged_stock_is_never_short():
    _, subtotal = price_cart([CartLine("coke", 500)], catalog())
    assert subtotal == Decimal("25000.00")


# ---- Coupons ----
def test_percentage_coupon():
    assert evaluate_coupon(welcome_coupon(), Decimal("398.00"), NOW) == Decimal("39.80")


def test_flat_coupon_is_capped_at_subtotal():
    coupon = welcome_coupon(type=CouponType.FLAT, value=Decimal("500"))
    assert evaluate_coupon(coupon, Decimal("199.00"), NOW) == Decimal("199.00")


@pytest.mark.parametrize(
    "coupon, code",
    [
        (None, "COUPON_NOT_FOUND"),
        (welcome_coupon(is_active=False), "COUPON_INACTIVE"),
        (welcome_coupon(expiry=NOW - timedelta(minutes=1)), "COUPON_EXPIRED"),
        (welcome_coupon(usage_limit=5, used_count=5), "COUPON_LIMIT_REACHED"),
    ],
)
def test_coupon_rejections(coupon, code):
    with pytest.raises(CouponError) as e:
        evaluate_coupon(coupon, Decimal("100.00"), NOW, code="WELCOME10")
    assert str(e.value) == code


# ---- Tax ----
def test_tax_halves_are_rounded_independently():
    tax = compute_tax(Decimal("10.10"), Decimal("5"))
    assert tax.cgst_rate == tax.sgst_rate == Decimal("2.5")
    assert tax.cgst_amount == tax.sgst_amount == Decimal("0.25")
    assert tax.total_tax == Decimal("0.50")


def test_q2_rounds_half_up():
    assert q2(Decimal("8.955")) == Decimal("8.96")
    assert q2(Decimal("8.954")) == Decimal("8.95")


def test_quote_totals_add_up():
    quote = build_quote(
        [CartLine("pizza-margherita", 2)], catalog(), NOW, coupon=welcome_coupon(), coupon_code="WELCOME10"
    )
    assert quote.subtotal == Decimal("398.00")
    assert quote.discount == Decimal("39.80")
    assert quote.tax.cgst_amount == Decimal("8.96")
    assert quote.tax.total_tax == Decimal("17.92")
    assert quote.total == Decimal("376.12")
    assert quote.total == quote.subtotal - quote.discount + quote.tax.total_tax
    assert quote.coupon_code == "WELCOME10"


def test_quote_without_coupon():
    quote = build_quote([CartLine("coke", 1)], catalog(), NOW)
    assert quote.discount == Decimal("0.00")
    assert quote.coupon_code is None
    assert quote.total == Decimal("52.50")
