"""Configuration helpers for django-divewatch."""

from django.conf import settings


DEFAULT_EMERGENCY_MINUTES = 15
DEFAULT_TICK_SECONDS = 1.0
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 100


def get_setting(name: str, default=None):
    """Get a setting with DIVEWATCH_ prefix."""
    return getattr(settings, f"DIVEWATCH_{name}", default)


def get_default_dive_settings() -> dict:
    """Project-wide overrides for new dives (DIVEWATCH_DEFAULT_SETTINGS)."""
    return dict(get_setting("DEFAULT_SETTINGS", {}) or {})


def get_emergency_minutes() -> int:
    """Minutes past the deadline after which an overdue cart is an emergency."""
    return int(get_setting("EMERGENCY_MINUTES", DEFAULT_EMERGENCY_MINUTES))


def get_tick_seconds() -> float:
    return float(get_setting("TICK_SECONDS", DEFAULT_TICK_SECONDS))


def get_subscriber_queue_size() -> int:
    return int(get_setting("SUBSCRIBER_QUEUE_SIZE", DEFAULT_SUBSCRIBER_QUEUE_SIZE))
