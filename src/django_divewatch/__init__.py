"""Django Divewatch - Dive safety timers and alert escalation for Django."""

__version__ = "0.1.0"

__all__ = [
    # Models
    "Dive",
    "Cart",
    "CheckIn",
    "Event",
    # Engine
    "DiveMonitor",
    "EscalationTracker",
    "SnapshotPublisher",
    # Exceptions
    "DivewatchError",
    "InvalidInput",
    "ConflictError",
    "NotFoundError",
]


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name in ("Dive", "Cart", "CheckIn", "Event"):
        from django_divewatch import models
        return getattr(models, name)
    if name == "DiveMonitor":
        from django_divewatch.monitor import DiveMonitor
        return DiveMonitor
    if name == "EscalationTracker":
        from django_divewatch.escalation import EscalationTracker
        return EscalationTracker
    if name == "SnapshotPublisher":
        from django_divewatch.broadcast import SnapshotPublisher
        return SnapshotPublisher
    if name in ("DivewatchError", "InvalidInput", "ConflictError", "NotFoundError"):
        from django_divewatch import exceptions
        return getattr(exceptions, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
