"""DiveMonitor: the tick loop and the single entry point for mutations.

Every public method runs under one re-entrant lock, so a mutation and the
tracker reset that follows it always complete before the next tick looks at
the cart.

Usage:
    monitor = DiveMonitor()
    with monitor.publisher.subscribe() as inbox:
        monitor.start()
        dive = monitor.start_dive("Dana")
        ...
        monitor.stop()
"""

import logging
import threading
import time
from datetime import datetime

from django.db import close_old_connections, connection
from django.utils import timezone

from . import selectors, services
from .broadcast import TICK, SnapshotPublisher
from .conf import get_tick_seconds
from .escalation import EscalationTracker
from .exceptions import DivewatchError
from .selectors import (
    get_monitored_carts,
    get_open_event_types,
    get_settings_for_dive,
    is_settings_locked,
    latest_checkin_of,
)
from .timing import CartTimer, derive_timer

logger = logging.getLogger(__name__)


class DiveMonitor:
    """Derives, escalates and broadcasts the state of all monitored carts."""

    def __init__(self, publisher: SnapshotPublisher = None, tracker: EscalationTracker = None, interval: float = None):
        self.publisher = publisher or SnapshotPublisher()
        self.tracker = tracker or EscalationTracker()
        self.interval = interval if interval is not None else get_tick_seconds()
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread = None

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self, now: datetime = None) -> dict:
        """Derive every monitored cart, escalate, publish. Returns the snapshot."""
        with self._lock:
            return self._refresh(TICK, now)

    def snapshot(self, now: datetime = None) -> dict:
        """Derive only; no escalation and no broadcast."""
        with self._lock:
            now = now or timezone.now()
            dive, _, timers = self._derive(now)
            return self._snapshot_payload(dive, timers, now)

    def restore(self) -> int:
        """
        Prime the tracker from events still open in the store.

        Levels with an open event are treated as already fired in the cart's
        current epoch, so a restarted process does not alert twice for the
        same incident.

        Returns:
            Number of carts primed
        """
        with self._lock:
            _, carts = get_monitored_carts()
            open_types = get_open_event_types(cart.pk for cart in carts)
            primed = 0
            for cart in carts:
                levels = open_types.get(cart.pk)
                if not levels:
                    continue
                latest = latest_checkin_of(cart)
                self.tracker.prime(cart.pk, latest.id if latest else None, levels)
                primed += 1
            if primed:
                logger.info("Restored alert state for %d carts", primed)
            return primed

    # =========================================================================
    # Thread loop
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self.restore()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="divewatch-monitor", daemon=True)
        self._thread.start()
        logger.info("Dive monitor started (interval %.2fs)", self.interval)

    def stop(self, timeout: float = None) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            logger.info("Dive monitor stopped")

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                started = time.monotonic()
                close_old_connections()
                try:
                    self.tick()
                except Exception:
                    logger.exception("Tick failed")
                finally:
                    close_old_connections()
                elapsed = time.monotonic() - started
                self._stop_event.wait(max(0.0, self.interval - elapsed))
        finally:
            connection.close()

    # =========================================================================
    # Dives
    # =========================================================================

    def start_dive(self, manager_name, team_members=None, name="", settings=None):
        return self._mutate(
            "dive:started", services.start_dive, manager_name, team_members, name, settings, clear=True
        )

    def end_dive(self, dive_id):
        return self._mutate("dive:ended", services.end_dive, dive_id, clear=True)

    def update_dive(self, dive_id, **fields):
        return self._mutate("dive:updated", services.update_dive, dive_id, **fields)

    def get_active_dive(self):
        with self._lock:
            return selectors.get_active_dive()

    # =========================================================================
    # Carts
    # =========================================================================

    def create_cart(self, cart_number, diver_names, cart_type=2, dive_id=None):
        return self._mutate("cart:created", services.create_cart, cart_number, diver_names, cart_type, dive_id)

    def import_carts(self, rows, dive_id=None):
        return self._mutate("cart:created", services.import_carts, rows, dive_id)

    def update_cart(self, cart_id, **fields):
        return self._mutate("cart:updated", services.update_cart, cart_id, **fields)

    def delete_cart(self, cart_id):
        return self._mutate("cart:deleted", services.delete_cart, cart_id, reset=[cart_id])

    def end_cart(self, cart_id):
        return self._mutate("cart:ended", services.end_cart, cart_id, reset=[cart_id])

    # =========================================================================
    # Check-in protocol
    # =========================================================================

    def start_timers(self, cart_ids, location=None):
        cart_ids = list(cart_ids)
        result = self._mutate("timers:started", services.start_timers, cart_ids, location, reset=cart_ids)
        if result.failed:
            logger.info("Timers not started for carts %s", sorted(result.failed))
        return result

    def checkin(self, cart_id, location=None):
        return self._mutate("checkin:recorded", services.checkin, cart_id, location, reset=[cart_id])

    def new_round(self, cart_id, location=None):
        return self._mutate("checkin:recorded", services.new_round, cart_id, location, reset=[cart_id])

    def reset_timer(self, cart_id, reason):
        return self._mutate("timer:reset", services.reset_timer, cart_id, reason, reset=[cart_id])

    def get_checkin_history(self, cart_id):
        with self._lock:
            return list(selectors.get_checkin_history(cart_id))

    # =========================================================================
    # Events, attachments, protocols, reports
    # =========================================================================

    def open_event(self, cart_id, event_type, note=None):
        with self._lock:
            event = services.open_event(cart_id, event_type, note)
            # A manual event counts as the alert for this epoch
            self.tracker.mark_fired(event.cart_id, event.event_type)
            self._safe_refresh("event:updated", "open_event")
            return event

    def resolve_event(self, event_id):
        return self._mutate("event:updated", services.resolve_event, event_id)

    def add_event_note(self, event_id, note):
        return self._mutate("event:updated", services.add_event_note, event_id, note)

    def list_events(self, status=None, cart_id=None):
        with self._lock:
            return list(selectors.list_events(status=status, cart_id=cart_id))

    def add_attachment(self, cart_id, filename, filepath):
        with self._lock:
            return services.add_attachment(cart_id, filename, filepath)

    def list_attachments(self, cart_id):
        with self._lock:
            return list(selectors.list_attachments(cart_id))

    def create_protocol(self, title, content):
        with self._lock:
            return services.create_protocol(title, content)

    def list_protocols(self):
        with self._lock:
            return list(selectors.list_protocols())

    def get_dive_summaries(self):
        with self._lock:
            return selectors.get_dive_summaries()

    def get_dive_report(self, dive_id):
        with self._lock:
            return selectors.get_dive_report(dive_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _mutate(self, reason, func, *args, reset=(), clear=False, **kwargs):
        with self._lock:
            try:
                result = func(*args, **kwargs)
            except DivewatchError:
                raise
            except Exception:
                logger.exception("%s failed", func.__name__)
                raise

            # Starting or ending a dive completes every monitored cart
            if clear:
                self.tracker.clear()
            for cart_id in reset:
                self.tracker.reset(cart_id)

            self._safe_refresh(reason, func.__name__)
            return result

    def _safe_refresh(self, reason: str, operation: str) -> None:
        try:
            self._refresh(reason)
        except Exception:
            logger.exception("Refresh after %s failed", operation)

    def _refresh(self, reason: str, now: datetime = None) -> dict:
        now = now or timezone.now()
        dive, monitored, timers = self._derive(now)
        self.tracker.retain(monitored)

        alerts = []
        for timer in timers:
            try:
                alerts.extend(self._escalate(timer, now))
            except Exception:
                logger.exception("Escalation failed for cart %s", timer.cart_id)

        payload = self._snapshot_payload(dive, timers, now)
        self.publisher.publish_snapshot(reason, payload)
        for level, timer, event in alerts:
            self.publisher.publish_alert(level, timer.as_dict(), event.as_dict())
        return payload

    def _derive(self, now: datetime) -> tuple:
        dive, carts = get_monitored_carts()
        warning_lead = get_settings_for_dive(dive).warning_lead
        timers = []
        for cart in carts:
            try:
                timers.append(derive_timer(cart, latest_checkin_of(cart), now, warning_lead))
            except Exception:
                logger.exception("Could not derive timer for cart %s", cart.pk)
        return dive, [cart.pk for cart in carts], timers

    def _escalate(self, timer: CartTimer, now: datetime) -> list:
        fired = []
        for level in self.tracker.evaluate(timer, now):
            event = services.open_event(timer.cart_id, level, opened_at=now)
            self.tracker.mark_fired(timer.cart_id, level)
            logger.warning(
                "Cart #%s %s alert (deadline %s)",
                timer.cart_number,
                level,
                timer.next_deadline.isoformat(),
            )
            fired.append((level, timer, event))
        return fired

    def _snapshot_payload(self, dive, timers, now: datetime) -> dict:
        counts = {}
        for timer in timers:
            counts[timer.status] = counts.get(timer.status, 0) + 1
        return {
            "timestamp": now.isoformat(),
            "dive": _dive_payload(dive) if dive is not None else None,
            "carts": [timer.as_dict() for timer in timers],
            "counts": counts,
        }


def _dive_payload(dive) -> dict:
    return {
        "id": dive.pk,
        "name": dive.name,
        "manager_name": dive.manager_name,
        "team_members": list(dive.team_members or []),
        "settings": dive.get_settings().as_dict(),
        "settings_locked": is_settings_locked(dive),
        "started_at": dive.started_at.isoformat(),
    }
