"""Models for django-divewatch.

Provides:
- Dive: A supervised session scoping carts and their timer settings
- Cart: A group of divers sharing one check-in timer
- CheckIn: Append-only history that establishes each deadline
- Event: Alert incident opened by escalation or by an operator
- Attachment: File record attached to a cart
- Protocol: Reference procedure shown to operators

Timer status is never stored; see timing.derive_timer().
"""

from django.db import models
from django.db.models import Q
from django.utils import timezone

from .dive_settings import DiveSettings, parse_dive_settings
from .exceptions import ImmutableCheckIn


class DivewatchBaseModel(models.Model):
    """Base model with timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class DiveStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"


class CartStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    COMPLETED = "completed", "Completed"


class EventType(models.TextChoices):
    """Escalation levels, ordered by severity."""

    WARNING = "warning", "Warning"
    OVERDUE = "overdue", "Overdue"
    EMERGENCY = "emergency", "Emergency"


class EventStatus(models.TextChoices):
    OPEN = "open", "Open"
    RESOLVED = "resolved", "Resolved"


class Dive(DivewatchBaseModel):
    """
    A supervised dive session.

    Key invariants:
    - At most one dive with status=active
    - settings are locked once any cart of the dive has checked in
    - No carts may be created under a completed dive
    """

    name = models.CharField(
        max_length=200,
        blank=True,
        default="",
        help_text="Optional display name",
    )
    manager_name = models.CharField(
        max_length=200,
        help_text="Dive manager on duty",
    )
    team_members = models.JSONField(
        default=list,
        blank=True,
        help_text="Ordered list of {'role': ..., 'name': ...}",
    )
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Timer settings; read through get_settings()",
    )
    status = models.CharField(
        max_length=20,
        choices=DiveStatus.choices,
        default=DiveStatus.ACTIVE,
    )
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-started_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["status"],
                condition=Q(status="active"),
                name="divewatch_single_active_dive",
            ),
        ]

    def __str__(self):
        label = self.name or self.manager_name
        return f"Dive({label}, {self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == DiveStatus.ACTIVE

    def get_settings(self) -> DiveSettings:
        return parse_dive_settings(self.settings)


class Cart(DivewatchBaseModel):
    """
    A monitored group of divers.

    Key invariants:
    - cart_number is unique within a dive (reusable across dives)
    - completed is terminal; no further timer operations
    - paused_at set means the cart reported in and awaits a new round
    """

    dive = models.ForeignKey(
        Dive,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="carts",
    )
    cart_number = models.PositiveIntegerField()
    cart_type = models.PositiveSmallIntegerField(
        default=2,
        help_text="Number of divers the cart holds",
    )
    diver_names = models.JSONField(default=list)
    status = models.CharField(
        max_length=20,
        choices=CartStatus.choices,
        default=CartStatus.ACTIVE,
    )
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    checkin_location = models.CharField(max_length=200, blank=True, default="")

    class Meta:
        ordering = ["cart_number", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["dive", "cart_number"],
                name="divewatch_unique_cart_number",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="divewatch_cart_status_idx"),
        ]

    def __str__(self):
        return f"Cart #{self.cart_number} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == CartStatus.ACTIVE


class CheckIn(models.Model):
    """
    Append-only check-in record.

    The most recent row (by checked_in_at, then id) holds the deadline the
    cart is currently running against.
    """

    cart = models.ForeignKey(
        Cart,
        on_delete=models.CASCADE,
        related_name="checkins",
    )
    checked_in_at = models.DateTimeField()
    next_deadline = models.DateTimeField()
    reset_reason = models.TextField(blank=True, default="")
    location = models.CharField(max_length=200, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-checked_in_at", "-id"]
        indexes = [
            models.Index(fields=["cart", "-checked_in_at"], name="divewatch_checkin_latest_idx"),
        ]

    def __str__(self):
        return f"CheckIn(cart={self.cart_id}, deadline={self.next_deadline:%H:%M})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableCheckIn(self.pk)
        super().save(*args, **kwargs)

    @property
    def is_reset(self) -> bool:
        return bool(self.reset_reason)


class Event(DivewatchBaseModel):
    """
    Alert incident for a cart.

    status only moves open -> resolved; resolved_at is set once.
    """

    cart = models.ForeignKey(
        Cart,
        on_delete=models.CASCADE,
        related_name="events",
    )
    event_type = models.CharField(max_length=20, choices=EventType.choices)
    status = models.CharField(
        max_length=20,
        choices=EventStatus.choices,
        default=EventStatus.OPEN,
    )
    opened_at = models.DateTimeField(default=timezone.now)
    resolved_at = models.DateTimeField(null=True, blank=True)
    notes = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["-opened_at", "-id"]
        indexes = [
            models.Index(fields=["cart", "status"], name="divewatch_event_cart_idx"),
            models.Index(fields=["status"], name="divewatch_event_status_idx"),
        ]

    def __str__(self):
        return f"Event({self.event_type}, cart={self.cart_id}, {self.status})"

    @property
    def is_open(self) -> bool:
        return self.status == EventStatus.OPEN

    def as_dict(self) -> dict:
        return {
            "id": self.pk,
            "cart_id": self.cart_id,
            "event_type": self.event_type,
            "status": self.status,
            "opened_at": self.opened_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "notes": list(self.notes or []),
        }


class Attachment(models.Model):
    """A file stored elsewhere and linked to a cart."""

    cart = models.ForeignKey(
        Cart,
        on_delete=models.CASCADE,
        related_name="attachments",
    )
    filename = models.CharField(max_length=255)
    filepath = models.CharField(max_length=500)
    uploaded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-uploaded_at", "-id"]

    def __str__(self):
        return self.filename


class Protocol(DivewatchBaseModel):
    """Operating procedure text, e.g. what to do when a cart is overdue."""

    title = models.CharField(max_length=200)
    content = models.TextField()

    class Meta:
        ordering = ["title"]

    def __str__(self):
        return self.title
