import uuid

from django.core.validators import RegexValidator
from django.db import IntegrityError, models, transaction
from django.db.models import F, Max

from .domain import (
    CouponType,
    OrderKind,
    OrderStatus,
    PartnerStatus,
    PaymentMethod,
    PaymentStatus,
)
from .eligibility import CUTOFF_RE


def _choices(enum):
    return [(member.value, member.value) for member in enum]


def _money(**kwargs):
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


# ---- Catalog (managed elsewhere; the core reads and decrements stock) ----
class CatalogItem(models.Model):
    id = models.CharField(primary_key=True, max_length=64)
    name = models.CharField(max_length=200)
    price = _money()
    is_available = models.BooleanField(default=True)
    is_stock_managed = models.BooleanField(default=False)
    stock = models.IntegerField(default=0)

    class Meta:
        db_table = "catalog_items"


class Variant(models.Model):
    id = models.CharField(primary_key=True, max_length=64)
    item = models.ForeignKey(CatalogItem, on_delete=models.CASCADE, related_name="variants")
    type = models.CharField(max_length=50, blank=True, default="")
    name = models.CharField(max_length=100)
    price = _money(default=0)
    is_available = models.BooleanField(default=True)

    class Meta:
        db_table = "catalog_variants"


class Addon(models.Model):
    id = models.CharField(primary_key=True, max_length=64)
    item = models.ForeignKey(CatalogItem, on_delete=models.CASCADE, related_name="addons")
    name = models.CharField(max_length=100)
    price = _money(default=0)
    is_available = models.BooleanField(default=True)

    class Meta:
        db_table = "catalog_addons"


class Coupon(models.Model):
    code = models.CharField(max_length=40, unique=True)
    type = models.CharField(max_length=16, choices=_choices(CouponType))
    value = _money()
    expiry = models.DateTimeField()
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "coupons"


class DeliveryZone(models.Model):
    pincode = models.CharField(max_length=12, unique=True)
    name = models.CharField(max_length=100, blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "delivery_zones"


class StoreSettings(models.Model):
    # Singleton: the first row wins; no row means no restrictions.
    is_open = models.BooleanField(default=True)
    is_paused = models.BooleanField(default=False)
    closed_message = models.CharField(max_length=255, blank=True, default="")
    last_order_time = models.CharField(
        max_length=5,
        blank=True,
        default="",
        validators=[RegexValidator(CUTOFF_RE, "Use a 24-hour HH:MM time, e.g. 22:30.")],
    )

    class Meta:
        db_table = "store_settings"


class Address(models.Model):
    owner_id = models.CharField(max_length=64, db_index=True)
    street = models.CharField(max_length=255)
    city = models.CharField(max_length=100)
    zip = models.CharField(max_length=12)

    class Meta:
        db_table = "addresses"


class DeliveryPartner(models.Model):
    name = models.CharField(max_length=100)
    phone = models.CharField(max_length=20, blank=True, default="")
    status = models.CharField(max_length=16, choices=_choices(PartnerStatus), default=PartnerStatus.AVAILABLE.value)

    class Meta:
        db_table = "delivery_partners"


# ---- Orders ----
ORDER_NUMBER_SEQUENCE = "order_number"


class OrderSequence(models.Model):
    """Named counter handing out human-facing order numbers.

    ``next_value`` increments the row with an ``UPDATE ... SET value = value + 1``.
    The row lock it takes is held until the caller's transaction ends, so
    concurrent commits are serialised on the counter and never see the same
    value, even when the orders table is empty.
    """

    name = models.CharField(primary_key=True, max_length=40)
    value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "order_sequences"

    @classmethod
    def next_value(cls, name: str) -> int:
        with transaction.atomic():
            if not cls.objects.filter(pk=name).update(value=F("value") + 1):
                start = OrderModel.objects.aggregate(top=Max("number"))["top"] or 0
                try:
                    with transaction.atomic():
                        cls.objects.create(name=name, value=start)
                except IntegrityError:
                    # Another transaction created the counter first; use its row
                    pass
                cls.objects.filter(pk=name).update(value=F("value") + 1)
            return cls.objects.values_list("value", flat=True).get(pk=name)


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-facing sequence number
    number = models.BigIntegerField(unique=True, editable=False, null=True)

    customer_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    customer_name = models.CharField(max_length=120, blank=True, default="")
    customer_phone = models.CharField(max_length=20, blank=True, default="", db_index=True)
    address = models.ForeignKey(Address, null=True, blank=True, on_delete=models.SET_NULL)
    guest_address = models.JSONField(null=True, blank=True)

    status = models.CharField(max_length=32, choices=_choices(OrderStatus), default=OrderStatus.PENDING.value)
    kind = models.CharField(max_length=16, choices=_choices(OrderKind), default=OrderKind.INSTANT.value)
    scheduled_for = models.DateTimeField(null=True, blank=True)

    subtotal = _money()
    discount = _money(default=0)
    cgst_rate = models.DecimalField(max_digits=5, decimal_places=2)
    cgst_amount = _money()
    sgst_rate = models.DecimalField(max_digits=5, decimal_places=2)
    sgst_amount = _money()
    tax = _money()
    total = _money()

    payment_method = models.CharField(max_length=16, choices=_choices(PaymentMethod), default=PaymentMethod.COD.value)
    payment_status = models.CharField(max_length=16, choices=_choices(PaymentStatus), default=PaymentStatus.PENDING.value)
    payment_reference = models.JSONField(default=dict, blank=True)
    coupon_code = models.CharField(max_length=40, null=True, blank=True)

    partner = models.ForeignKey(DeliveryPartner, null=True, blank=True, on_delete=models.PROTECT, related_name="orders")

    invoice_number = models.CharField(max_length=32, unique=True, null=True, blank=True)
    invoice_generated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-number"]

    def save(self, *args, **kwargs):
        # Assign the sequence number only on creation
        if self.number is None:
            self.number = OrderSequence.next_value(ORDER_NUMBER_SEQUENCE)

        super().save(*args, **kwargs)


class OrderLineModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="lines")
    item_id = models.CharField(max_length=64)
    # Snapshots keep historical orders meaningful after catalog edits
    name = models.CharField(max_length=200)
    unit_price = _money()
    quantity = models.PositiveIntegerField()
    line_total = _money()
    variants = models.JSONField(default=list, blank=True)
    addons = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = "order_lines"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict, blank=True)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
