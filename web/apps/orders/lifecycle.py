"""Order status state machine.

Legal moves are held in an explicit transition table keyed by
``(current, requested)``. Each entry names the side effect the storage
layer must perform in the same atomic update and the triggers allowed to
request it. Notification events are a separate lookup keyed by transition.

Staff may move an order between any two kitchen states, forward or back, to
correct a mistaken update or skip steps that do not apply (not every item is
baked). Only terminal states and the activation of scheduled orders are
guarded. Notifications go out for forward moves only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from .domain import NotificationEvent, OrderStatus, TransitionError


class Trigger(str, Enum):
    OPERATOR = "OPERATOR"
    ACTIVATION = "ACTIVATION"


class Effect(str, Enum):
    """Side effect applied together with the status change."""

    NONE = "NONE"
    ENGAGE_PARTNER = "ENGAGE_PARTNER"  # partner must be on the order; marked BUSY
    RELEASE_PARTNER = "RELEASE_PARTNER"  # assigned partner goes back to AVAILABLE


@dataclass(frozen=True)
class Transition:
    source: OrderStatus
    target: OrderStatus
    effect: Effect = Effect.NONE
    triggers: FrozenSet[Trigger] = frozenset({Trigger.OPERATOR})


KITCHEN_FLOW: Tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.BAKING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

TERMINAL_STATES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)


def _build_table() -> Dict[Tuple[OrderStatus, OrderStatus], Transition]:
    table = {}

    table[(OrderStatus.SCHEDULED, OrderStatus.PENDING)] = Transition(
        OrderStatus.SCHEDULED, OrderStatus.PENDING, triggers=frozenset({Trigger.ACTIVATION})
    )

    for source in KITCHEN_FLOW[:-1]:
        for target in KITCHEN_FLOW:
            if target == source:
                continue
            effect = Effect.NONE
            if target == OrderStatus.OUT_FOR_DELIVERY:
                effect = Effect.ENGAGE_PARTNER
            elif target == OrderStatus.DELIVERED or source == OrderStatus.OUT_FOR_DELIVERY:
                effect = Effect.RELEASE_PARTNER
            table[(source, target)] = Transition(source, target, effect)

    for source in OrderStatus:
        if source in TERMINAL_STATES:
            continue
        for target in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            effect = Effect.RELEASE_PARTNER if source == OrderStatus.OUT_FOR_DELIVERY else Effect.NONE
            table[(source, target)] = Transition(source, target, effect)

    return table


TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], Transition] = _build_table()


def resolve(current: OrderStatus, requested: OrderStatus, trigger: Trigger = Trigger.OPERATOR) -> Transition:
    """Look up the transition for a requested status change.

    Raises:
        TransitionError: ``ORDER_TERMINAL`` when the order can no longer move,
            ``ACTIVATION_ONLY`` when a scheduled order is moved by hand
            instead of through activation, ``ILLEGAL_TRANSITION`` otherwise.
    """
    if current in TERMINAL_STATES:
        raise TransitionError(
            f"Order is already {current.value} and cannot change status.", code="ORDER_TERMINAL"
        )

    transition = TRANSITIONS.get((current, requested))
    if transition is None:
        if current == OrderStatus.SCHEDULED and requested in KITCHEN_FLOW:
            raise TransitionError(
                "Scheduled orders must be activated before kitchen work starts.", code="ACTIVATION_ONLY"
            )
        raise TransitionError(
            f"Cannot move order from {current.value} to {requested.value}.", code="ILLEGAL_TRANSITION"
        )

    if trigger not in transition.triggers:
        if transition.triggers == {Trigger.ACTIVATION}:
            raise TransitionError(
                "Scheduled orders are released to the kitchen by activation only.", code="ACTIVATION_ONLY"
            )
        raise TransitionError(
            f"Cannot move order from {current.value} to {requested.value} by {trigger.value.lower()}.",
            code="ILLEGAL_TRANSITION",
        )
    return transition


def allowed_targets(current: OrderStatus, trigger: Trigger = Trigger.OPERATOR) -> Tuple[OrderStatus, ...]:
    return tuple(t.target for (source, _), t in TRANSITIONS.items() if source == current and trigger in t.triggers)


# ---- Notifications ----
_EVENT_BY_TARGET = {
    OrderStatus.ACCEPTED: NotificationEvent.ORDER_ACCEPTED,
    OrderStatus.PREPARING: NotificationEvent.ORDER_PREPARING,
    OrderStatus.OUT_FOR_DELIVERY: NotificationEvent.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: NotificationEvent.DELIVERED,
    OrderStatus.CANCELLED: NotificationEvent.ORDER_CANCELLED,
}

def _is_forward(source: OrderStatus, target: OrderStatus) -> bool:
    if source in KITCHEN_FLOW and target in KITCHEN_FLOW:
        return KITCHEN_FLOW.index(source) < KITCHEN_FLOW.index(target)
    return True


NOTIFICATION_EVENTS: Dict[Tuple[OrderStatus, OrderStatus], NotificationEvent] = {
    (source, target): _EVENT_BY_TARGET[target]
    for (source, target) in TRANSITIONS
    if target in _EVENT_BY_TARGET and _is_forward(source, target)
}
NOTIFICATION_EVENTS[(OrderStatus.SCHEDULED, OrderStatus.PENDING)] = NotificationEvent.ORDER_ACTIVATED


def notification_event(current: OrderStatus, requested: OrderStatus) -> Optional[NotificationEvent]:
    return NOTIFICATION_EVENTS.get((current, requested))


# ---- Kitchen board ----
STATUS_GROUPS: Dict[str, Tuple[OrderStatus, ...]] = {
    "PENDING": (OrderStatus.PENDING,),
    "KITCHEN": (OrderStatus.ACCEPTED, OrderStatus.PREPARING, OrderStatus.BAKING),
    "READY": (OrderStatus.READY_FOR_PICKUP,),
    "OUT_FOR_DELIVERY": (OrderStatus.OUT_FOR_DELIVERY,),
    "ACTIVE": (
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.PREPARING,
        OrderStatus.BAKING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.OUT_FOR_DELIVERY,
    ),
    "COMPLETED": (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED),
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.SCHEDULED: "Scheduled",
    OrderStatus.PENDING: "Pending",
    OrderStatus.ACCEPTED: "Accepted",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.BAKING: "Baking",
    OrderStatus.READY_FOR_PICKUP: "Ready for Pickup",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.REFUNDED: "Refunded",
}

_STATUS_ALIASES = {
    "READY": OrderStatus.READY_FOR_PICKUP,
    "OUT": OrderStatus.OUT_FOR_DELIVERY,
    "DELIVERY": OrderStatus.OUT_FOR_DELIVERY,
    "IN_KITCHEN": OrderStatus.PREPARING,
    "KITCHEN": OrderStatus.PREPARING,
}


def parse_status(value: Optional[str]) -> Optional[OrderStatus]:
    """Leniently parse a status from a query parameter or request body.

    Returns None for empty or unknown values.
    """
    if not value:
        return None
    key = value.strip().upper()
    try:
        return OrderStatus(key)
    except ValueError:
        return _STATUS_ALIASES.get(key)
