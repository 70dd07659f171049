"""Service functions for django-divewatch.

Provides:
- start_dive / end_dive / update_dive: Dive session lifecycle
- create_cart / import_carts / update_cart / delete_cart / end_cart: Carts
- start_timers / checkin / new_round / reset_timer: Check-in protocol
- open_event / resolve_event / add_event_note: Alert incidents
- add_attachment / create_protocol: Supporting records

Every function is atomic and server-timestamped. Services only touch the
store; escalation bookkeeping and broadcast are handled by DiveMonitor.

Timer states of an active cart:
    waiting --start_timers--> running --checkin--> paused --new_round--> running
    running/paused --reset_timer--> running
    any --end_cart--> completed (terminal)
"""

import logging
from dataclasses import dataclass, field

from django.db import IntegrityError, transaction
from django.utils import timezone

from .dive_settings import merge_dive_settings
from .exceptions import (
    CartNotFound,
    CartNotRunning,
    DiveAlreadyActive,
    DiveNotFound,
    DivewatchError,
    DuplicateCartNumber,
    EventNotFound,
    InvalidInput,
    InvalidTimerState,
    SettingsLocked,
)
from .models import (
    Attachment,
    Cart,
    CartStatus,
    CheckIn,
    Dive,
    DiveStatus,
    Event,
    EventStatus,
    EventType,
    Protocol,
)
from .selectors import find_by_pk, get_active_dive, get_settings_for_dive, is_settings_locked
from .timing import TimerStatus, next_deadline_for

logger = logging.getLogger(__name__)

MIN_CART_TYPE = 2
MAX_CART_TYPE = 8


@dataclass
class StartTimersResult:
    """Outcome of a batch start: carts started and per-cart failures."""

    started: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)


@dataclass
class ImportResult:
    """Outcome of a cart import: created carts and skipped rows with reasons."""

    created: list = field(default_factory=list)
    skipped: list = field(default_factory=list)


def _get_constraint_name(exc: IntegrityError) -> str | None:
    """Extract PostgreSQL constraint name from IntegrityError.

    Returns constraint name if available, None otherwise.
    """
    if exc.__cause__ and hasattr(exc.__cause__, "diag"):
        return exc.__cause__.diag.constraint_name
    return None


def _violates(exc: IntegrityError, constraint: str, *columns: str) -> bool:
    """Match a unique violation by constraint name, or by columns on SQLite."""
    name = _get_constraint_name(exc)
    if name is not None:
        return name == constraint
    message = str(exc)
    return "UNIQUE" in message.upper() and all(column in message for column in columns)


# =============================================================================
# Internal helpers
# =============================================================================


def _lock_active_cart(cart_id) -> Cart:
    """Fetch and row-lock an active cart; completed counts as not found."""
    cart = find_by_pk(Cart.objects.select_for_update(), cart_id)
    if cart is None or not cart.is_active:
        raise CartNotFound(cart_id)
    return cart


def _lock_active_dive(dive_id) -> Dive:
    dive = find_by_pk(Dive.objects.select_for_update(), dive_id)
    if dive is None or not dive.is_active:
        raise DiveNotFound(dive_id)
    return dive


def _timer_state(cart: Cart) -> str:
    """Protocol state of an active cart: waiting, paused or running."""
    if cart.paused_at is not None:
        return TimerStatus.PAUSED
    if not CheckIn.objects.filter(cart=cart).exists():
        return TimerStatus.WAITING
    return "running"


def _resolve_open_events(cart_ids, now) -> int:
    """Resolve every open event of the given carts. Returns rows resolved."""
    return Event.objects.filter(
        cart_id__in=list(cart_ids),
        status=EventStatus.OPEN,
    ).update(status=EventStatus.RESOLVED, resolved_at=now, updated_at=now)


def _complete_carts(carts, now) -> list[int]:
    """Force-complete active carts and resolve their events. Returns cart ids."""
    cart_ids = list(carts.filter(status=CartStatus.ACTIVE).values_list("pk", flat=True))
    if cart_ids:
        Cart.objects.filter(pk__in=cart_ids).update(
            status=CartStatus.COMPLETED,
            ended_at=now,
            updated_at=now,
        )
        _resolve_open_events(cart_ids, now)
    return cart_ids


def _clean_text(value, label: str, required: bool = True) -> str:
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise InvalidInput(f"{label} must be a string")
    value = value.strip()
    if required and not value:
        raise InvalidInput(f"{label} is required")
    return value


def _clean_team(team_members) -> list[dict]:
    if team_members is None:
        return []
    if not isinstance(team_members, list):
        raise InvalidInput("team_members must be a list")
    cleaned = []
    errors = []
    for index, member in enumerate(team_members):
        if not isinstance(member, dict):
            errors.append(f"team_members[{index}] must be an object with role and name")
            continue
        role = member.get("role")
        name = member.get("name")
        if not isinstance(role, str) or not isinstance(name, str) or not name.strip():
            errors.append(f"team_members[{index}] needs a role and a name")
            continue
        cleaned.append({"role": role.strip(), "name": name.strip()})
    if errors:
        raise InvalidInput(errors)
    return cleaned


def _clean_cart_fields(cart_number=None, cart_type=None, diver_names=None, partial=False) -> dict:
    """Validate cart fields; with partial=True, None means 'leave unchanged'."""
    errors = []
    values = {}

    if cart_number is not None or not partial:
        if not isinstance(cart_number, int) or isinstance(cart_number, bool) or cart_number <= 0:
            errors.append("cart_number must be a positive integer")
        else:
            values["cart_number"] = cart_number

    if cart_type is not None:
        if (
            not isinstance(cart_type, int)
            or isinstance(cart_type, bool)
            or not MIN_CART_TYPE <= cart_type <= MAX_CART_TYPE
        ):
            errors.append(f"cart_type must be between {MIN_CART_TYPE} and {MAX_CART_TYPE}")
        else:
            values["cart_type"] = cart_type

    if diver_names is not None or not partial:
        if not isinstance(diver_names, (list, tuple)):
            errors.append("diver_names must be a list")
        else:
            names = [name.strip() for name in diver_names if isinstance(name, str) and name.strip()]
            if not names or len(names) != len(diver_names):
                errors.append("diver_names needs at least one name and no blank entries")
            else:
                values["diver_names"] = names

    if errors:
        raise InvalidInput(errors)
    return values


def _resolve_dive_for_new_cart(dive_id) -> Dive:
    if dive_id is None:
        dive = get_active_dive()
        if dive is None:
            raise DiveNotFound(None, "No active dive to add carts to")
        return dive
    return _lock_active_dive(dive_id)


# =============================================================================
# Dive lifecycle
# =============================================================================


@transaction.atomic
def start_dive(manager_name: str, team_members: list = None, name: str = "", settings: dict = None) -> Dive:
    """
    Start a new dive session.

    Leftover active carts from a previous session (e.g. after a crash) are
    completed and their open events resolved before the dive is created.

    Args:
        manager_name: Dive manager on duty (required)
        team_members: Ordered list of {'role', 'name'} dicts
        name: Optional display name
        settings: Partial settings merged over the defaults

    Returns:
        The new active Dive

    Raises:
        InvalidInput: If manager_name is blank or team/settings are malformed
        DiveAlreadyActive: If another dive is active
    """
    manager_name = _clean_text(manager_name, "manager_name")
    name = _clean_text(name, "name", required=False)
    team = _clean_team(team_members)
    merged_settings = merge_dive_settings({}, settings)

    active = get_active_dive()
    if active is not None:
        raise DiveAlreadyActive(active.pk)

    now = timezone.now()
    leftovers = _complete_carts(Cart.objects.all(), now)
    if leftovers:
        logger.warning("Completed %d leftover active carts before starting a dive", len(leftovers))

    try:
        with transaction.atomic():
            dive = Dive.objects.create(
                name=name,
                manager_name=manager_name,
                team_members=team,
                settings=merged_settings,
                status=DiveStatus.ACTIVE,
                started_at=now,
            )
    except IntegrityError as e:
        if _violates(e, "divewatch_single_active_dive", "status"):
            raise DiveAlreadyActive(None) from e
        raise

    logger.info("Dive %s started by %s", dive.pk, manager_name)
    return dive


@transaction.atomic
def end_dive(dive_id) -> Dive:
    """
    End a dive and every cart still active under it.

    Raises:
        DiveNotFound: If the dive does not exist or is already completed
    """
    dive = _lock_active_dive(dive_id)
    now = timezone.now()

    ended = _complete_carts(Cart.objects.filter(dive=dive), now)

    dive.status = DiveStatus.COMPLETED
    dive.ended_at = now
    dive.save(update_fields=["status", "ended_at", "updated_at"])

    logger.info("Dive %s ended; %d carts force-ended", dive.pk, len(ended))
    return dive


@transaction.atomic
def update_dive(
    dive_id,
    manager_name: str = None,
    team_members: list = None,
    name: str = None,
    settings: dict = None,
) -> Dive:
    """
    Update dive details.

    manager_name, team_members and name are always editable. settings are
    editable only until the first check-in of any cart of the dive.

    Raises:
        DiveNotFound: If the dive does not exist
        InvalidInput: If nothing to update or values are malformed
        SettingsLocked: If settings are supplied after the lock
    """
    dive = find_by_pk(Dive.objects.select_for_update(), dive_id)
    if dive is None:
        raise DiveNotFound(dive_id, f"Dive '{dive_id}' not found")

    update_fields = []
    if manager_name is not None:
        dive.manager_name = _clean_text(manager_name, "manager_name")
        update_fields.append("manager_name")
    if team_members is not None:
        dive.team_members = _clean_team(team_members)
        update_fields.append("team_members")
    if name is not None:
        dive.name = _clean_text(name, "name", required=False)
        update_fields.append("name")
    if settings is not None:
        merged = merge_dive_settings(dive.settings, settings)
        if is_settings_locked(dive):
            raise SettingsLocked(dive.pk)
        dive.settings = merged
        update_fields.append("settings")

    if not update_fields:
        raise InvalidInput("No fields to update")

    dive.save(update_fields=update_fields + ["updated_at"])
    return dive


# =============================================================================
# Carts
# =============================================================================


@transaction.atomic
def create_cart(cart_number: int, diver_names: list, cart_type: int = 2, dive_id=None) -> Cart:
    """
    Create a waiting cart under a dive (the active dive by default).

    Raises:
        InvalidInput: If cart fields are invalid
        DiveNotFound: If the dive is unknown or completed, or none is active
        DuplicateCartNumber: If the number is taken within the dive
    """
    values = _clean_cart_fields(cart_number, cart_type, diver_names)
    dive = _resolve_dive_for_new_cart(dive_id)

    if Cart.objects.filter(dive=dive, cart_number=values["cart_number"]).exists():
        raise DuplicateCartNumber(values["cart_number"], dive.pk)

    try:
        with transaction.atomic():
            return Cart.objects.create(dive=dive, **values)
    except IntegrityError as e:
        if _violates(e, "divewatch_unique_cart_number", "cart_number"):
            raise DuplicateCartNumber(values["cart_number"], dive.pk) from e
        raise


def import_carts(rows: list, dive_id=None) -> ImportResult:
    """
    Create many carts at once, skipping invalid or duplicate rows.

    Args:
        rows: Dicts with cart_number, diver_names and optional cart_type
        dive_id: Target dive (the active dive by default)

    Returns:
        ImportResult with created carts and skipped (row, reason) pairs

    Raises:
        InvalidInput: If rows is not a list
        DiveNotFound: If there is no dive to import into
    """
    if not isinstance(rows, list):
        raise InvalidInput("carts must be a list")

    result = ImportResult()
    with transaction.atomic():
        dive = _resolve_dive_for_new_cart(dive_id)
        for row in rows:
            if not isinstance(row, dict):
                result.skipped.append((row, "row must be an object"))
                continue
            try:
                cart = create_cart(
                    row.get("cart_number"),
                    row.get("diver_names"),
                    cart_type=row.get("cart_type") or 2,
                    dive_id=dive.pk,
                )
            except (InvalidInput, DuplicateCartNumber) as e:
                logger.info("Skipping imported cart row %r: %s", row, e)
                result.skipped.append((row, str(e)))
            else:
                result.created.append(cart)
    return result


@transaction.atomic
def update_cart(cart_id, cart_number: int = None, cart_type: int = None, diver_names: list = None) -> Cart:
    """
    Update an active cart's number, type or divers.

    Raises:
        CartNotFound: If the cart does not exist or is completed
        InvalidInput: If nothing to update or values are invalid
        DuplicateCartNumber: If the new number is taken within the dive
    """
    cart = _lock_active_cart(cart_id)
    values = _clean_cart_fields(cart_number, cart_type, diver_names, partial=True)
    if not values:
        raise InvalidInput("No fields to update")

    new_number = values.get("cart_number")
    if new_number is not None and new_number != cart.cart_number:
        taken = Cart.objects.filter(dive_id=cart.dive_id, cart_number=new_number).exclude(pk=cart.pk)
        if cart.dive_id is not None and taken.exists():
            raise DuplicateCartNumber(new_number, cart.dive_id)

    for name, value in values.items():
        setattr(cart, name, value)

    try:
        with transaction.atomic():
            cart.save(update_fields=list(values) + ["updated_at"])
    except IntegrityError as e:
        if _violates(e, "divewatch_unique_cart_number", "cart_number"):
            raise DuplicateCartNumber(new_number, cart.dive_id) from e
        raise
    return cart


@transaction.atomic
def delete_cart(cart_id) -> None:
    """
    Delete a cart with its check-ins, events and attachments.

    Completed carts may be deleted too.

    Raises:
        CartNotFound: If the cart does not exist
    """
    cart = find_by_pk(Cart.objects.select_for_update(), cart_id)
    if cart is None:
        raise CartNotFound(cart_id, f"Cart '{cart_id}' not found")
    cart.delete()


@transaction.atomic
def end_cart(cart_id) -> Cart:
    """
    End a cart's activity. Irreversible.

    Raises:
        CartNotFound: If the cart does not exist or is already completed
    """
    cart = _lock_active_cart(cart_id)
    now = timezone.now()

    cart.status = CartStatus.COMPLETED
    cart.ended_at = now
    cart.save(update_fields=["status", "ended_at", "updated_at"])
    _resolve_open_events([cart.pk], now)
    return cart


# =============================================================================
# Check-in protocol
# =============================================================================


def start_timers(cart_ids, location: str = None) -> StartTimersResult:
    """
    Start the first round for a batch of waiting carts.

    Each cart is handled in its own transaction; one failure never blocks
    the others.

    Returns:
        StartTimersResult with started carts and {cart_id: message} failures
    """
    location = _clean_text(location, "location", required=False)
    result = StartTimersResult()

    for cart_id in cart_ids:
        try:
            result.started.append(_start_timer(cart_id, location))
        except DivewatchError as e:
            result.failed[cart_id] = str(e)

    return result


@transaction.atomic
def _start_timer(cart_id, location: str) -> Cart:
    cart = _lock_active_cart(cart_id)
    state = _timer_state(cart)
    if state != TimerStatus.WAITING:
        raise InvalidTimerState(cart.pk, state, "start the timer of")

    now = timezone.now()
    period = get_settings_for_dive(cart.dive).period
    CheckIn.objects.create(
        cart=cart,
        checked_in_at=now,
        next_deadline=next_deadline_for(now, period),
        location=location,
    )

    if location:
        cart.checkin_location = location
        cart.save(update_fields=["checkin_location", "updated_at"])
    return cart


@transaction.atomic
def checkin(cart_id, location: str = None) -> Cart:
    """
    Record that a running cart reported in and pause its timer.

    No check-in row is written; the cart freezes on its last deadline until
    new_round(). Open events of the cart are resolved.

    Raises:
        CartNotFound: If the cart does not exist or is completed
        CartNotRunning: If the cart is waiting or already paused
    """
    location = _clean_text(location, "location", required=False)
    cart = _lock_active_cart(cart_id)
    state = _timer_state(cart)
    if state != "running":
        raise CartNotRunning(cart.pk, state)

    now = timezone.now()
    cart.paused_at = now
    update_fields = ["paused_at", "updated_at"]
    if location:
        cart.checkin_location = location
        update_fields.append("checkin_location")
    cart.save(update_fields=update_fields)

    _resolve_open_events([cart.pk], now)
    return cart


@transaction.atomic
def new_round(cart_id, location: str = None) -> CheckIn:
    """
    Start a new round for a paused cart.

    Raises:
        CartNotFound: If the cart does not exist or is completed
        InvalidTimerState: If the cart is not paused
    """
    location = _clean_text(location, "location", required=False)
    cart = _lock_active_cart(cart_id)
    state = _timer_state(cart)
    if state != TimerStatus.PAUSED:
        raise InvalidTimerState(cart.pk, state, "start a new round for")

    return _insert_round(cart, location=location)


@transaction.atomic
def reset_timer(cart_id, reason: str) -> CheckIn:
    """
    Restart a cart's timer with a mandatory reason.

    Works from running or paused, independent of the pause protocol, and
    resolves any open events.

    Raises:
        InvalidInput: If reason is blank (checked before any write)
        CartNotFound: If the cart does not exist or is completed
        InvalidTimerState: If the cart never started
    """
    reason = _clean_text(reason, "reason")
    cart = _lock_active_cart(cart_id)
    state = _timer_state(cart)
    if state == TimerStatus.WAITING:
        raise InvalidTimerState(cart.pk, state, "reset")

    checkin_row = _insert_round(cart, reset_reason=reason)
    _resolve_open_events([cart.pk], checkin_row.checked_in_at)
    logger.info("Timer of cart %s reset: %s", cart.pk, reason)
    return checkin_row


def _insert_round(cart: Cart, location: str = "", reset_reason: str = "") -> CheckIn:
    now = timezone.now()
    period = get_settings_for_dive(cart.dive).period
    row = CheckIn.objects.create(
        cart=cart,
        checked_in_at=now,
        next_deadline=next_deadline_for(now, period),
        location=location,
        reset_reason=reset_reason,
    )

    cart.paused_at = None
    update_fields = ["paused_at", "updated_at"]
    if location:
        cart.checkin_location = location
        update_fields.append("checkin_location")
    cart.save(update_fields=update_fields)
    return row


# =============================================================================
# Events
# =============================================================================


@transaction.atomic
def open_event(cart_id, event_type: str, note: str = None, opened_at=None) -> Event:
    """
    Open an alert event for an active cart.

    Raises:
        InvalidInput: If event_type is unknown
        CartNotFound: If the cart does not exist or is completed
    """
    if event_type not in EventType.values:
        raise InvalidInput(f"event_type must be one of {', '.join(EventType.values)}")
    note = _clean_text(note, "note", required=False)
    cart = _lock_active_cart(cart_id)

    return Event.objects.create(
        cart=cart,
        event_type=event_type,
        opened_at=opened_at or timezone.now(),
        notes=[note] if note else [],
    )


@transaction.atomic
def resolve_event(event_id) -> Event:
    """
    Resolve an event. Resolving twice keeps the first resolved_at.

    Raises:
        EventNotFound: If the event does not exist
    """
    event = find_by_pk(Event.objects.select_for_update(), event_id)
    if event is None:
        raise EventNotFound(event_id)
    if event.is_open:
        event.status = EventStatus.RESOLVED
        event.resolved_at = timezone.now()
        event.save(update_fields=["status", "resolved_at", "updated_at"])
    return event


@transaction.atomic
def add_event_note(event_id, note: str) -> Event:
    """
    Append a free-text note to an event.

    Raises:
        InvalidInput: If note is blank
        EventNotFound: If the event does not exist
    """
    note = _clean_text(note, "note")
    event = find_by_pk(Event.objects.select_for_update(), event_id)
    if event is None:
        raise EventNotFound(event_id)
    event.notes = list(event.notes or []) + [note]
    event.save(update_fields=["notes", "updated_at"])
    return event


# =============================================================================
# Attachments and protocols
# =============================================================================


@transaction.atomic
def add_attachment(cart_id, filename: str, filepath: str) -> Attachment:
    """
    Link a stored file to a cart. The file itself is managed by the caller.

    Raises:
        InvalidInput: If filename or filepath is blank
        CartNotFound: If the cart does not exist
    """
    filename = _clean_text(filename, "filename")
    filepath = _clean_text(filepath, "filepath")
    cart = find_by_pk(Cart.objects.all(), cart_id)
    if cart is None:
        raise CartNotFound(cart_id, f"Cart '{cart_id}' not found")
    return Attachment.objects.create(cart=cart, filename=filename, filepath=filepath)


def create_protocol(title: str, content: str) -> Protocol:
    """
    Create an operating procedure.

    Raises:
        InvalidInput: If title or content is blank
    """
    errors = []
    if not isinstance(title, str) or not title.strip():
        errors.append("title is required")
    if not isinstance(content, str) or not content.strip():
        errors.append("content is required")
    if errors:
        raise InvalidInput(errors)
    return Protocol.objects.create(title=title.strip(), content=content.strip())
