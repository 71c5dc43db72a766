"""
Ride status state machine for scheduled rides.

  scheduled → active → completed
  scheduled → cancelled
  scheduled → expired
"""
from enum import Enum


class RideStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


VALID_TRANSITIONS: dict[str, set[str]] = {
    RideStatus.SCHEDULED.value: {
        RideStatus.ACTIVE.value,
        RideStatus.CANCELLED.value,
        RideStatus.EXPIRED.value,
    },
    # completion is driven by the trip flow, outside the scheduling engine
    RideStatus.ACTIVE.value: {RideStatus.COMPLETED.value},
    RideStatus.COMPLETED.value: set(),
    RideStatus.CANCELLED.value: set(),
    RideStatus.EXPIRED.value: set(),
}


def can_transition(current: str, next_state: str) -> bool:
    return next_state in VALID_TRANSITIONS.get(current, set())
