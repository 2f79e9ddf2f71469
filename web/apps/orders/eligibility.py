"""Eligibility gate run before any pricing work.

The gate decides whether an order may be placed at all, independent of the
cart contents. Checks run in a fixed order and stop at the first failure:

1. store paused;
2. store closed (instant orders only);
3. same-day last-order cutoff (instant orders only);
4. delivery-zone serviceability of the destination pincode;
5. minimum lead time for scheduled orders.

Store settings are passed in explicitly as either a ``StoreSettings`` value
or the ``UNRESTRICTED`` sentinel, in which case checks 1-3 are skipped.

Known limitation: the cutoff is compared against *today's* cutoff instant
in the store's local time. A cutoff meant to fall after midnight (for
example ``02:00``) therefore rejects every instant order placed later the
same evening. The intended semantics for overnight cutoffs are undefined, so
stores that trade past midnight should clear ``last_order_time`` and manage
the ``is_open`` switch instead.
"""

import re
from datetime import datetime, time, timedelta, tzinfo
from typing import Callable, Optional

from .domain import (
    DeliveryZone,
    EligibilityError,
    OrderIntent,
    OrderKind,
    StoreSettings,
)

DEFAULT_MIN_LEAD = timedelta(minutes=30)
DEFAULT_CLOSED_MESSAGE = "Store is currently closed. We are accepting scheduled orders only."
CUTOFF_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_cutoff(value: Optional[str]) -> Optional[time]:
    """Parse an ``HH:MM`` (24-hour) cutoff. Empty values mean no cutoff.

    Raises:
        ValueError: When the value is not a valid 24-hour time.
    """
    if not value or not value.strip():
        return None
    match = CUTOFF_RE.match(value.strip())
    if match is None:
        raise ValueError(f"invalid cutoff time {value!r}, expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def cutoff_passed(cutoff: time, now: datetime, tz: Optional[tzinfo] = None) -> bool:
    """Return True when ``now`` is past today's cutoff in the store's time zone."""
    local_now = now.astimezone(tz) if tz is not None else now
    cutoff_at = local_now.replace(hour=cutoff.hour, minute=cutoff.minute, second=0, microsecond=0)
    return local_now > cutoff_at


def check_store(settings, kind: OrderKind, now: datetime, tz: Optional[tzinfo] = None) -> None:
    """Apply the store switches (checks 1-3)."""
    if not isinstance(settings, StoreSettings):
        return

    if settings.is_paused:
        raise EligibilityError(
            "Store is temporarily paused. Please check back later.", code="STORE_PAUSED"
        )
    if not settings.is_open and kind == OrderKind.INSTANT:
        raise EligibilityError(settings.closed_message or DEFAULT_CLOSED_MESSAGE, code="STORE_CLOSED")
    if settings.last_order_time and kind == OrderKind.INSTANT:
        if cutoff_passed(settings.last_order_time, now, tz):
            cutoff = settings.last_order_time.strftime("%H:%M")
            raise EligibilityError(
                f"We are not accepting new instant orders after {cutoff}. "
                "You can schedule an order for tomorrow.",
                code="CUTOFF_PASSED",
            )


def check_zone(pincode: Optional[str], find_zone: Callable[[str], Optional[DeliveryZone]]) -> DeliveryZone:
    """Confirm an *active* delivery zone covers ``pincode`` (check 4)."""
    if not pincode:
        raise EligibilityError("Delivery address is missing a valid pincode.", code="PINCODE_MISSING")

    zone = find_zone(pincode)
    if zone is None or not zone.is_active:
        raise EligibilityError(
            f"Sorry, we do not deliver to pincode {pincode} yet. Please try another location.",
            code="ZONE_UNSERVICEABLE",
            pincode=pincode,
        )
    return zone


def check_schedule(intent: OrderIntent, now: datetime, min_lead: timedelta = DEFAULT_MIN_LEAD) -> None:
    """Scheduled orders must be at least ``min_lead`` in the future (check 5)."""
    if intent.kind != OrderKind.SCHEDULED:
        return
    if intent.scheduled_for is None:
        raise EligibilityError("Scheduled orders need a delivery time.", code="SCHEDULE_MISSING")
    if intent.scheduled_for < now + min_lead:
        minutes = int(min_lead.total_seconds() // 60)
        raise EligibilityError(
            f"Scheduled time must be at least {minutes} minutes in the future",
            code="SCHEDULE_TOO_SOON",
        )


def check_eligibility(
    intent: OrderIntent,
    settings,
    resolve_pincode: Callable[[OrderIntent], Optional[str]],
    find_zone: Callable[[str], Optional[DeliveryZone]],
    now: datetime,
    tz: Optional[tzinfo] = None,
    min_lead: timedelta = DEFAULT_MIN_LEAD,
) -> str:
    """Run the whole gate and return the resolved destination pincode.

    Args:
        intent: Order kind, schedule and destination.
        settings: ``StoreSettings`` or ``UNRESTRICTED``.
        resolve_pincode: Maps the intent's saved or guest address to a pincode.
        find_zone: Delivery-zone lookup keyed by pincode.
        now: Current aware datetime.
        tz: Store time zone used for the cutoff comparison.
        min_lead: Minimum lead time for scheduled orders.

    Raises:
        EligibilityError: On the first failing check.
    """
    check_store(settings, intent.kind, now, tz)
    pincode = resolve_pincode(intent)
    check_zone(pincode, find_zone)
    check_schedule(intent, now, min_lead)
    return pincode
