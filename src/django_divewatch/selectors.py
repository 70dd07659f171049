"""
Django Divewatch Selectors - Read-only queries.

Mutations live in services.py; nothing here writes.

Usage:
    from django_divewatch.selectors import get_active_dive, get_checkin_history
"""
from datetime import datetime

from django.db.models import Count, OuterRef, Q, QuerySet, Subquery

from .dive_settings import DiveSettings, parse_dive_settings
from .exceptions import DiveNotFound
from .models import (
    Attachment,
    Cart,
    CartStatus,
    CheckIn,
    Dive,
    DiveStatus,
    Event,
    EventStatus,
    Protocol,
)
from .timing import LatestCheckIn


def find_by_pk(queryset, pk):
    """First row with this primary key, or None. Malformed ids match nothing."""
    try:
        return queryset.filter(pk=pk).first()
    except (TypeError, ValueError):
        return None


# =============================================================================
# DIVE SELECTORS
# =============================================================================

def get_active_dive() -> Dive | None:
    """Get the active dive, or None if no dive is running."""
    return Dive.objects.filter(status=DiveStatus.ACTIVE).order_by("-id").first()


def get_dive(dive_id: int) -> Dive:
    """Get a dive by ID in any status."""
    dive = find_by_pk(Dive.objects.all(), dive_id)
    if dive is None:
        raise DiveNotFound(dive_id, f"Dive '{dive_id}' not found")
    return dive


def is_settings_locked(dive: Dive) -> bool:
    """Settings lock as soon as any cart of the dive has a check-in row."""
    return CheckIn.objects.filter(cart__dive=dive).exists()


def get_settings_for_dive(dive: Dive | None) -> DiveSettings:
    """Settings of a dive; defaults for carts not attached to one."""
    if dive is None:
        return parse_dive_settings(None)
    return dive.get_settings()


# =============================================================================
# CART SELECTORS
# =============================================================================

def get_cart(cart_id: int) -> Cart | None:
    """Get a cart by ID in any status, or None if not found."""
    return find_by_pk(Cart.objects.all(), cart_id)


def with_latest_checkin(queryset: QuerySet[Cart]) -> QuerySet[Cart]:
    """Annotate carts with the id, time and deadline of their latest check-in."""
    latest = CheckIn.objects.filter(cart=OuterRef("pk")).order_by("-checked_in_at", "-id")
    return queryset.annotate(
        latest_checkin_id=Subquery(latest.values("id")[:1]),
        latest_checked_in_at=Subquery(latest.values("checked_in_at")[:1]),
        latest_next_deadline=Subquery(latest.values("next_deadline")[:1]),
    )


def latest_checkin_of(cart: Cart) -> LatestCheckIn | None:
    """
    Latest check-in of a cart.

    Uses the with_latest_checkin() annotations when present, otherwise
    queries the history table.
    """
    if hasattr(cart, "latest_checkin_id"):
        if cart.latest_checkin_id is None:
            return None
        return LatestCheckIn(
            id=cart.latest_checkin_id,
            checked_in_at=cart.latest_checked_in_at,
            next_deadline=cart.latest_next_deadline,
        )
    row = (
        CheckIn.objects.filter(cart=cart)
        .order_by("-checked_in_at", "-id")
        .values_list("id", "checked_in_at", "next_deadline")
        .first()
    )
    return LatestCheckIn(*row) if row else None


def get_monitored_carts() -> tuple[Dive | None, list[Cart]]:
    """
    Active carts whose timers are monitored.

    Carts of the active dive; when no dive is active, active carts that are
    not attached to any dive.

    Returns:
        (dive, carts) with carts annotated by with_latest_checkin()
    """
    dive = get_active_dive()
    carts = Cart.objects.filter(status=CartStatus.ACTIVE)
    if dive is not None:
        carts = carts.filter(dive=dive)
    else:
        carts = carts.filter(dive__isnull=True)
    return dive, list(with_latest_checkin(carts).order_by("cart_number", "id"))


def get_checkin_history(cart_id: int) -> QuerySet[CheckIn]:
    """Check-in rows of a cart, newest first."""
    return CheckIn.objects.filter(cart_id=cart_id).order_by("-checked_in_at", "-id")


def list_attachments(cart_id: int) -> QuerySet[Attachment]:
    return Attachment.objects.filter(cart_id=cart_id)


# =============================================================================
# EVENT SELECTORS
# =============================================================================

def list_events(status: str = None, cart_id: int = None) -> QuerySet[Event]:
    """Events newest first, optionally filtered by status and cart."""
    events = Event.objects.all()
    if status:
        events = events.filter(status=status)
    if cart_id is not None:
        events = events.filter(cart_id=cart_id)
    return events.order_by("-opened_at", "-id")


def get_open_event_types(cart_ids) -> dict[int, set[str]]:
    """Map cart id -> event types currently open for that cart."""
    result: dict[int, set[str]] = {}
    rows = Event.objects.filter(
        cart_id__in=list(cart_ids),
        status=EventStatus.OPEN,
    ).values_list("cart_id", "event_type")
    for cart_id, event_type in rows:
        result.setdefault(cart_id, set()).add(event_type)
    return result


def list_protocols() -> QuerySet[Protocol]:
    return Protocol.objects.all()


# =============================================================================
# REPORT SELECTORS
# =============================================================================

def get_dive_summaries() -> list[dict]:
    """
    One summary per dive, newest first.

    Each summary holds the dive plus cart, check-in and event counts and the
    duration in minutes (None while the dive is active).
    """
    dives = Dive.objects.annotate(
        cart_count=Count("carts", distinct=True),
        checkin_count=Count("carts__checkins", distinct=True),
        event_count=Count("carts__events", distinct=True),
    ).order_by("-started_at", "-id")

    return [
        {
            "dive": _dive_dict(dive),
            "cart_count": dive.cart_count,
            "checkin_count": dive.checkin_count,
            "event_count": dive.event_count,
            "duration_minutes": _duration_minutes(dive.started_at, dive.ended_at),
        }
        for dive in dives
    ]


def get_dive_report(dive_id: int) -> dict:
    """
    Full report data for one dive.

    Returns:
        Dict with dive, summary, carts, events and a chronological timeline

    Raises:
        DiveNotFound: If the dive does not exist
    """
    dive = get_dive(dive_id)
    carts = list(
        Cart.objects.filter(dive=dive)
        .annotate(
            checkin_count=Count("checkins", distinct=True),
            event_count=Count("events", distinct=True),
        )
        .order_by("cart_number", "id")
    )
    checkins = list(
        CheckIn.objects.filter(cart__dive=dive)
        .select_related("cart")
        .order_by("checked_in_at", "id")
    )
    events = list(
        Event.objects.filter(cart__dive=dive)
        .select_related("cart")
        .order_by("opened_at", "id")
    )

    events_by_type: dict[str, int] = {}
    for event in events:
        events_by_type[event.event_type] = events_by_type.get(event.event_type, 0) + 1

    return {
        "dive": _dive_dict(dive),
        "summary": {
            "cart_count": len(carts),
            "checkin_count": len(checkins),
            "event_count": len(events),
            "open_event_count": sum(1 for event in events if event.is_open),
            "events_by_type": events_by_type,
            "duration_minutes": _duration_minutes(dive.started_at, dive.ended_at),
        },
        "carts": [
            {
                "id": cart.pk,
                "cart_number": cart.cart_number,
                "cart_type": cart.cart_type,
                "diver_names": list(cart.diver_names),
                "status": cart.status,
                "started_at": cart.started_at,
                "ended_at": cart.ended_at,
                "checkin_count": cart.checkin_count,
                "event_count": cart.event_count,
            }
            for cart in carts
        ],
        "events": [
            dict(event.as_dict(), cart_number=event.cart.cart_number)
            for event in events
        ],
        "timeline": _build_timeline(dive, carts, checkins, events),
    }


def _build_timeline(dive, carts, checkins, events) -> list[dict]:
    entries = [{"type": "dive_start", "timestamp": dive.started_at, "cart_number": None}]

    for cart in carts:
        entries.append({"type": "cart_start", "timestamp": cart.started_at, "cart_number": cart.cart_number})

    for checkin in checkins:
        entry = {
            "type": "reset" if checkin.is_reset else "checkin",
            "timestamp": checkin.checked_in_at,
            "cart_number": checkin.cart.cart_number,
            "next_deadline": checkin.next_deadline,
        }
        if checkin.is_reset:
            entry["reason"] = checkin.reset_reason
        entries.append(entry)

    for event in events:
        entries.append({
            "type": "event_open",
            "timestamp": event.opened_at,
            "cart_number": event.cart.cart_number,
            "event_type": event.event_type,
        })
        if event.resolved_at:
            entries.append({
                "type": "event_resolve",
                "timestamp": event.resolved_at,
                "cart_number": event.cart.cart_number,
                "event_type": event.event_type,
            })

    for cart in carts:
        if cart.ended_at:
            entries.append({"type": "cart_end", "timestamp": cart.ended_at, "cart_number": cart.cart_number})

    if dive.ended_at:
        entries.append({"type": "dive_end", "timestamp": dive.ended_at, "cart_number": None})

    # Stable sort keeps insertion order for equal timestamps
    return sorted(entries, key=lambda entry: entry["timestamp"])


def _dive_dict(dive: Dive) -> dict:
    return {
        "id": dive.pk,
        "name": dive.name,
        "manager_name": dive.manager_name,
        "team_members": list(dive.team_members or []),
        "settings": dive.get_settings().as_dict(),
        "status": dive.status,
        "started_at": dive.started_at,
        "ended_at": dive.ended_at,
    }


def _duration_minutes(started_at: datetime, ended_at: datetime | None) -> int | None:
    if ended_at is None:
        return None
    return int((ended_at - started_at).total_seconds() // 60)
