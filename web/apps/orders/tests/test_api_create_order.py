"""API tests for the order submission endpoint.

These tests exercise the full stack: DTO validation, eligibility, server-side
pricing, payment verification and the commit transaction against the test
database, with the logging notifier standing in for the notifications service.
"""

import logging
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from apps.orders.domain import OutOfStock
from apps.orders.models import CatalogItem, OrderModel, StoreSettings

from .conftest import signed_details

CREATE_URL = "/api/orders/"

pytestmark = pytest.mark.django_db


def post(client, payload, **headers):
    return client.post(CREATE_URL, data=payload, content_type="application/json", **headers)


def test_create_order_computes_totals_server_side(client, catalog, zone, order_payload):
    payload = order_payload(
        items=[
            {"id": "pizza-margherita", "quantity": 1, "variants": ["size-l"], "name": "Pizza", "price": "1.00"},
            {"item_id": "coke", "quantity": 2, "price": "0"},
        ]
    )
    r = post(client, payload)
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "PENDING"
    assert body["subtotal"] == "399.00"
    assert Decimal(body["total"]) == Decimal("418.96")
    assert body["tax"]["cgst_amount"] == "9.98"
    assert body["payment_status"] == "PENDING"
    assert body["invoice_number"].startswith("INV-")
    assert [line["name"] for line in body["lines"]] == ["Margherita", "Coke"]
    assert CatalogItem.objects.get(pk="pizza-margherita").stock == 9


def test_create_order_with_online_payment(client, catalog, zone, order_payload):
    r = post(client, order_payload(payment_method="upi", payment_details=signed_details()))
    assert r.status_code == 201
    assert r.json()["payment_status"] == "PAID"
    assert OrderModel.objects.get().payment_reference == {"order_id": "order_Q1", "payment_id": "pay_Q1"}


def test_create_order_payment_signature_mismatch(client, catalog, zone, order_payload):
    details = dict(signed_details(), razorpay_signature="0" * 64)
    r = post(client, order_payload(payment_method="CARD", payment_details=details))
    assert r.status_code == 402
    assert r.json()["detail"] == "PAYMENT_SIGNATURE_MISMATCH"
    assert OrderModel.objects.count() == 0


def test_create_order_payment_details_missing(client, catalog, zone, order_payload):
    r = post(client, order_payload(payment_method="CARD"))
    assert r.status_code == 402
    assert r.json()["message"] == "Payment details missing for online order"


def test_create_order_store_closed(client, catalog, zone, order_payload):
    StoreSettings.objects.create(is_open=False, closed_message="Closed for Diwali")
    r = post(client, order_payload())
    assert r.status_code == 503
    assert r.json() == {"detail": "STORE_CLOSED", "message": "Closed for Diwali"}


def test_create_order_ignores_malformed_store_cutoff(client, catalog, zone, order_payload, caplog):
    StoreSettings.objects.create(last_order_time="9pm")
    with caplog.at_level(logging.WARNING, logger="orders"):
        r = post(client, order_payload())
    assert r.status_code == 201
    assert any(rec.getMessage() == "ignoring malformed store cutoff" for rec in caplog.records)


def test_store_cutoff_must_be_hh_mm():
    with pytest.raises(ValidationError):
        StoreSettings(last_order_time="25:00").full_clean()
    StoreSettings(last_order_time="22:30").full_clean()


def test_create_order_unserviceable_pincode(client, catalog, zone, order_payload):
    r = post(client, order_payload(guest_address={"street": "x", "city": "Delhi", "zip": "110001"}))
    assert r.status_code == 400
    assert r.json()["detail"] == "ZONE_UNSERVICEABLE"
    assert r.json()["pincode"] == "110001"


def test_create_order_insufficient_stock(client, catalog, zone, order_payload):
    r = post(client, order_payload(items=[{"item_id": "pizza-margherita", "quantity": 11}]))
    assert r.status_code == 400
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert r.json()["item_id"] == "pizza-margherita"


def test_create_order_out_of_stock_at_commit(client, catalog, zone, order_payload, monkeypatch):
    def sold_out(self, draft):
        raise OutOfStock('Item "Margherita" is out of stock.', item_id="pizza-margherita")

    monkeypatch.setattr("apps.orders.repository.DjangoOrderStore.commit", sold_out)
    r = post(client, order_payload())
    assert r.status_code == 409
    assert r.json()["detail"] == "OUT_OF_STOCK"


def test_create_order_unknown_item(client, catalog, zone, order_payload):
    r = post(client, order_payload(items=[{"item_id": "garlic-bread", "quantity": 1}]))
    assert r.status_code == 400
    assert r.json()["detail"] == "ITEM_NOT_FOUND"


def test_create_order_uses_owned_saved_address(client, catalog, zone, order_payload, django_user_model):
    from apps.orders.models import Address

    user = django_user_model.objects.create_user(username="asha", password="pw")
    other = Address.objects.create(owner_id="someone-else", street="x", city="y", zip="560001")
    mine = Address.objects.create(owner_id=str(user.pk), street="x", city="y", zip="560001")
    client.force_login(user)

    r = post(client, order_payload(guest_address=None, address_id=other.pk))
    assert r.status_code == 403
    assert r.json()["detail"] == "ADDRESS_FORBIDDEN"

    r = post(client, order_payload(guest_address=None, address_id=mine.pk))
    assert r.status_code == 201
    assert OrderModel.objects.get().customer_id == str(user.pk)


def test_create_order_validation_error(client):
    r = post(client, {"items": [{"item_id": "", "quantity": "many"}], "payment_method": "BITCOIN"})
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


def test_unexpected_failure_returns_generic_error(client, catalog, zone, order_payload, monkeypatch):
    def boom(self, draft):
        raise RuntimeError("database exploded")

    monkeypatch.setattr("apps.orders.repository.DjangoOrderStore.commit", boom)
    r = post(client, order_payload())
    assert r.status_code == 500
    assert r.json() == {"detail": "INTERNAL_ERROR"}
