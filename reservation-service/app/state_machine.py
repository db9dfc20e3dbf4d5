"""
Reservation lifecycle state machine.

    RESERVED --pickup--> PICKED_UP --install--> INSTALLED
    RESERVED --cancel--> CANCELLED
    PICKED_UP --return--> RETURNED

INSTALLED, RETURNED and CANCELLED are terminal. Every other move is rejected
with InvalidTransitionError (HTTP 409).
"""
from typing import Dict, FrozenSet

from app.errors import InvalidTransitionError
from app.models import ReservationStatus, ComponentStatus

RESERVATION_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.RESERVED: frozenset({ReservationStatus.PICKED_UP, ReservationStatus.CANCELLED}),
    ReservationStatus.PICKED_UP: frozenset({ReservationStatus.INSTALLED, ReservationStatus.RETURNED}),
    ReservationStatus.INSTALLED: frozenset(),
    ReservationStatus.RETURNED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}

# Component status that must accompany each reservation status
COMPONENT_STATUS_FOR = {
    ReservationStatus.RESERVED: ComponentStatus.RESERVED,
    ReservationStatus.PICKED_UP: ComponentStatus.WITH_TECHNICIAN,
    ReservationStatus.INSTALLED: ComponentStatus.INSTALLED,
    ReservationStatus.RETURNED: ComponentStatus.IN_WAREHOUSE,
    ReservationStatus.CANCELLED: ComponentStatus.IN_WAREHOUSE,
}


def is_terminal(status: ReservationStatus) -> bool:
    return not RESERVATION_TRANSITIONS[status]


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in RESERVATION_TRANSITIONS[current]


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError("reservation", current, target)
