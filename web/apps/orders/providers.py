"""Service provider helpers for wiring the order services with ports.

``get_order_service`` and ``get_lifecycle_service`` return services backed by
the Django repositories. The notification dispatcher and the notification
log are HTTP clients when ``settings.USE_HTTP_ADAPTERS`` is truthy and a
shared logging stub otherwise, so tests and local development run without
the notifications service.
"""

from datetime import timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from django.conf import settings

from .adapters import LoggingNotifier
from .http_adapters import HttpNotificationDispatcher, HttpNotificationLog
from .payments import SignatureVerifier
from .repository import (
    DjangoAddressBook,
    DjangoCatalog,
    DjangoCoupons,
    DjangoOrderStore,
    DjangoStoreSettings,
    DjangoZones,
)
from .services import LifecycleService, OrderService


# One recorder per process, so the events it logs can be read back
_local_notifier = LoggingNotifier()


def get_notifier():
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpNotificationDispatcher()
    return _local_notifier


def get_notification_log():
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpNotificationLog()
    return _local_notifier


def get_order_service() -> OrderService:
    """Return an OrderService wired to the database and the configured notifier."""
    return OrderService(
        catalog=DjangoCatalog(),
        coupons=DjangoCoupons(),
        store_settings=DjangoStoreSettings(),
        zones=DjangoZones(),
        addresses=DjangoAddressBook(),
        orders=DjangoOrderStore(),
        payments=SignatureVerifier(settings.ORDERS_PAYMENT_SIGNING_SECRET),
        notifier=get_notifier(),
        gst_rate=Decimal(str(settings.ORDERS_GST_RATE)),
        min_lead=timedelta(minutes=settings.ORDERS_SCHEDULE_MIN_LEAD_MINUTES),
        tz=ZoneInfo(settings.TIME_ZONE),
    )


def get_lifecycle_service() -> LifecycleService:
    return LifecycleService(
        orders=DjangoOrderStore(),
        notifier=get_notifier(),
        activation_lead=timedelta(minutes=settings.ORDERS_ACTIVATION_LEAD_MINUTES),
    )
