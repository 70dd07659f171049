"""Alert escalation bookkeeping.

EscalationTracker remembers, per cart, which alert levels were already
emitted in the current epoch. An epoch is the span between two resets of the
cart's timer; it is identified by the id of the cart's latest check-in row,
so a new round or manual reset starts a new epoch even if reset() was never
called.

The tracker is in-memory only and not thread-safe; DiveMonitor serializes
access under its lock.

Usage:
    tracker = EscalationTracker()
    for level in tracker.evaluate(timer, now):
        ...store an Event...
        tracker.mark_fired(timer.cart_id, level)
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .conf import get_emergency_minutes
from .models import EventType
from .timing import CartTimer, TimerStatus


WARNING = EventType.WARNING.value
OVERDUE = EventType.OVERDUE.value
EMERGENCY = EventType.EMERGENCY.value


@dataclass
class _Entry:
    epoch: int | None
    fired: set = field(default_factory=set)


class EscalationTracker:
    """Per-cart, per-epoch set of alert levels already emitted."""

    def __init__(self, emergency_after: timedelta = None):
        if emergency_after is None:
            emergency_after = timedelta(minutes=get_emergency_minutes())
        self.emergency_after = emergency_after
        self._entries: dict[int, _Entry] = {}

    def __contains__(self, cart_id) -> bool:
        return cart_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def due_levels(self, timer: CartTimer, now: datetime) -> list[str]:
        """Levels the timer qualifies for right now, ignoring what already fired."""
        if not timer.is_running:
            return []
        if timer.status == TimerStatus.ORANGE:
            return [WARNING]
        if timer.status == TimerStatus.EXPIRED:
            levels = [OVERDUE]
            if now - timer.next_deadline >= self.emergency_after:
                levels.append(EMERGENCY)
            return levels
        return []

    def evaluate(self, timer: CartTimer, now: datetime) -> list[str]:
        """
        Levels to emit for this timer now.

        Waiting and paused timers are never evaluated. Returned levels are
        not marked as fired; call mark_fired() once the alert is stored.
        """
        if not timer.is_running:
            return []
        entry = self._entry_for(timer.cart_id, timer.checkin_id)
        return [level for level in self.due_levels(timer, now) if level not in entry.fired]

    def mark_fired(self, cart_id: int, level: str) -> None:
        entry = self._entries.get(cart_id)
        if entry is None:
            entry = self._entries[cart_id] = _Entry(epoch=None)
        entry.fired.add(str(level))

    def fired(self, cart_id: int) -> frozenset:
        entry = self._entries.get(cart_id)
        return frozenset(entry.fired) if entry else frozenset()

    def reset(self, cart_id: int) -> None:
        """Start a new epoch for the cart."""
        self._entries.pop(cart_id, None)

    def retain(self, cart_ids) -> None:
        """Drop entries of carts that are no longer monitored."""
        keep = set(cart_ids)
        for cart_id in list(self._entries):
            if cart_id not in keep:
                del self._entries[cart_id]

    def prime(self, cart_id: int, epoch: int | None, levels) -> None:
        """Seed an entry, e.g. from open events after a restart."""
        self._entries[cart_id] = _Entry(epoch=epoch, fired={str(level) for level in levels})

    def clear(self) -> None:
        self._entries.clear()

    def _entry_for(self, cart_id: int, epoch: int | None) -> _Entry:
        entry = self._entries.get(cart_id)
        if entry is None:
            entry = self._entries[cart_id] = _Entry(epoch=epoch)
        elif entry.epoch is None:
            entry.epoch = epoch
        elif entry.epoch != epoch:
            entry = self._entries[cart_id] = _Entry(epoch=epoch)
        return entry
