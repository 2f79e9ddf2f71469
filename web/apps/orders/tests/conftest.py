from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.orders.adapters import (
    FixedSettings,
    InMemoryAddressBook,
    InMemoryStore,
    InMemoryZones,
    LoggingNotifier,
)
from apps.orders.domain import (
    AddonSnapshot,
    CatalogItemSnapshot,
    CouponSnapshot,
    CouponType,
    DeliveryZone as ZoneDTO,
    PartnerStatus,
    VariantSnapshot,
)
from apps.orders.models import Addon, CatalogItem, Coupon, DeliveryPartner, DeliveryZone, Variant
from apps.orders.payments import SignatureVerifier, sign
from apps.orders.services import LifecycleService, OrderService

NOW = datetime(2026, 3, 14, 6, 30, tzinfo=timezone.utc)  # 12:00 in Asia/Kolkata
SECRET = "test-secret"
PINCODE = "560001"


def signed_details(order_id="order_Q1", payment_id="pay_Q1"):
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": sign(SECRET, order_id, payment_id),
    }


# ---- In-memory wiring ----
def margherita(stock=10, **kw):
    return CatalogItemSnapshot(
        id="pizza-margherita",
        name="Margherita",
        price=Decimal("199.00"),
        is_stock_managed=True,
        stock=stock,
        variants=(
            VariantSnapshot(id="size-l", name="Large", price=Decimal("299.00"), type="size"),
            VariantSnapshot(id="size-xl", name="XL", price=Decimal("399.00"), type="size", is_available=False),
        ),
        addons=(AddonSnapshot(id="extra-cheese", name="Extra cheese", price=Decimal("40.00")),),
        **kw,
    )


def coke(**kw):
    return CatalogItemSnapshot(id="coke", name="Coke", price=Decimal("50.00"), **kw)


def welcome_coupon(**kw):
    values = dict(code="WELCOME10", type=CouponType.PERCENTAGE, value=Decimal("10"), expiry=NOW + timedelta(days=30))
    values.update(kw)
    return CouponSnapshot(**values)


@pytest.fixture
def store():
    return InMemoryStore(
        items=[margherita(), coke()],
        coupons=[welcome_coupon()],
        partners={7: PartnerStatus.AVAILABLE},
        clock=lambda: NOW,
    )


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def make_service(store, notifier):
    def build(settings=None, clock=lambda: NOW, **overrides):
        kwargs = dict(
            catalog=store,
            coupons=store,
            store_settings=FixedSettings(settings) if settings is not None else FixedSettings(),
            zones=InMemoryZones([ZoneDTO(pincode=PINCODE, name="MG Road")]),
            addresses=InMemoryAddressBook({1: ("cust-1", PINCODE), 2: ("cust-2", "110001")}),
            orders=store,
            payments=SignatureVerifier(SECRET),
            notifier=notifier,
            clock=clock,
        )
        kwargs.update(overrides)
        return OrderService(**kwargs)

    return build


@pytest.fixture
def lifecycle_service(store, notifier):
    return LifecycleService(orders=store, notifier=notifier, activation_lead=timedelta(minutes=45), clock=lambda: NOW)


# ---- Database fixtures ----
@pytest.fixture
def catalog(db):
    pizza = CatalogItem.objects.create(
        id="pizza-margherita", name="Margherita", price=Decimal("199.00"), is_stock_managed=True, stock=10
    )
    Variant.objects.create(id="size-l", item=pizza, type="size", name="Large", price=Decimal("299.00"))
    Variant.objects.create(
        id="size-xl", item=pizza, type="size", name="XL", price=Decimal("399.00"), is_available=False
    )
    Addon.objects.create(id="extra-cheese", item=pizza, name="Extra cheese", price=Decimal("40.00"))
    CatalogItem.objects.create(id="coke", name="Coke", price=Decimal("50.00"))
    return pizza


@pytest.fixture
def zone(db):
    return DeliveryZone.objects.create(pincode=PINCODE, name="MG Road")


@pytest.fixture
def coupon(db):
    from django.utils import timezone as dj_tz

    return Coupon.objects.create(
        code="WELCOME10", type="PERCENTAGE", value=Decimal("10"), expiry=dj_tz.now() + timedelta(days=30)
    )


@pytest.fixture
def partner(db):
    return DeliveryPartner.objects.create(name="Ravi", phone="9000000001")


@pytest.fixture
def order_payload():
    def build(**overrides):
        payload = {
            "items": [{"item_id": "pizza-margherita", "quantity": 2}],
            "guest_address": {"street": "1 MG Road", "city": "Bengaluru", "zip": PINCODE},
            "customer_name": "Asha",
            "customer_phone": "9876543210",
            "payment_method": "COD",
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def place(client, catalog, zone, order_payload):
    """Submit an order through the API and return the response body."""

    def submit(**overrides):
        r = client.post("/api/orders/", data=order_payload(**overrides), content_type="application/json")
        assert r.status_code == 201, r.json()
        return r.json()

    return submit
