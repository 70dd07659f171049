"""Timer status derivation.

Everything here is pure: the same cart, latest check-in and instant always
produce the same CartTimer. Nothing in this module touches the database.

Status rules:
- waiting: the cart never started a round and is not paused
- paused: the cart reported in and awaits a new round
- green: more than the warning lead remains
- orange: 0 < remaining <= warning lead (boundary is orange)
- expired: remaining <= 0, reported as 0 seconds
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NamedTuple, Optional


ROUNDING_MINUTES = 5
ROUND_UP_FROM = 3


class TimerStatus:
    WAITING = "waiting"
    PAUSED = "paused"
    GREEN = "green"
    ORANGE = "orange"
    EXPIRED = "expired"

    RUNNING = (GREEN, ORANGE, EXPIRED)


class LatestCheckIn(NamedTuple):
    """The fields of a cart's most recent check-in row that derivation needs."""

    id: int
    checked_in_at: datetime
    next_deadline: datetime


@dataclass(frozen=True)
class CartTimer:
    """Derived, never-stored view of a cart's timer at one instant."""

    cart_id: int
    cart_number: int
    cart_type: int
    diver_names: tuple
    dive_id: Optional[int]
    status: str
    seconds_remaining: int
    next_deadline: Optional[datetime]
    last_checkin_at: Optional[datetime]
    checkin_id: Optional[int]
    paused_at: Optional[datetime]
    checkin_location: str

    @property
    def is_running(self) -> bool:
        return self.status in TimerStatus.RUNNING

    def as_dict(self) -> dict:
        return {
            "id": self.cart_id,
            "cart_number": self.cart_number,
            "cart_type": self.cart_type,
            "diver_names": list(self.diver_names),
            "dive_id": self.dive_id,
            "timer_status": self.status,
            "seconds_remaining": self.seconds_remaining,
            "next_deadline": _iso(self.next_deadline),
            "last_checkin": _iso(self.last_checkin_at),
            "paused_at": _iso(self.paused_at),
            "checkin_location": self.checkin_location or None,
        }


def round_to_5min(value: datetime) -> datetime:
    """
    Round an instant to the nearest 5-minute mark on the clock.

    Seconds are dropped first; a minute remainder below 3 rounds down,
    3 or 4 rounds up (12:02 -> 12:00, 12:03 -> 12:05, 12:58 -> 13:00).
    """
    base = value.replace(second=0, microsecond=0)
    remainder = base.minute % ROUNDING_MINUTES
    if remainder < ROUND_UP_FROM:
        return base - timedelta(minutes=remainder)
    return base + timedelta(minutes=ROUNDING_MINUTES - remainder)


def next_deadline_for(now: datetime, period: timedelta) -> datetime:
    """Deadline of a round starting at ``now``."""
    return round_to_5min(now + period)


def seconds_until(deadline: datetime, now: datetime) -> int:
    """Whole seconds from now until deadline, floored (negative once past)."""
    return math.floor((deadline - now).total_seconds())


def classify(seconds_remaining: int, warning_lead: timedelta) -> str:
    """Map remaining seconds of a running timer to green/orange/expired."""
    if seconds_remaining <= 0:
        return TimerStatus.EXPIRED
    if seconds_remaining <= warning_lead.total_seconds():
        return TimerStatus.ORANGE
    return TimerStatus.GREEN


def derive_timer(
    cart,
    latest: Optional[LatestCheckIn],
    now: datetime,
    warning_lead: timedelta,
) -> CartTimer:
    """
    Derive a cart's timer state.

    Args:
        cart: Cart row (only its fields are read)
        latest: The cart's most recent check-in, or None
        now: The current instant
        warning_lead: How long before the deadline the cart turns orange

    Returns:
        CartTimer for this instant
    """
    next_deadline = latest.next_deadline if latest else None

    if cart.paused_at is not None:
        status, remaining = TimerStatus.PAUSED, 0
    elif latest is None:
        status, remaining = TimerStatus.WAITING, 0
    else:
        raw = seconds_until(next_deadline, now)
        status, remaining = classify(raw, warning_lead), max(0, raw)

    return CartTimer(
        cart_id=cart.pk,
        cart_number=cart.cart_number,
        cart_type=cart.cart_type,
        diver_names=tuple(_diver_names(cart.diver_names)),
        dive_id=cart.dive_id,
        status=status,
        seconds_remaining=remaining,
        next_deadline=next_deadline,
        last_checkin_at=latest.checked_in_at if latest else None,
        checkin_id=latest.id if latest else None,
        paused_at=cart.paused_at,
        checkin_location=cart.checkin_location or "",
    )


def _diver_names(value) -> list:
    if isinstance(value, (list, tuple)):
        return [str(name) for name in value]
    if value:
        return [str(value)]
    return []


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
