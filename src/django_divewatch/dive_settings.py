"""Per-dive timer settings.

Settings live as JSON on the Dive row. Reads always go through
parse_dive_settings(), which fills missing or malformed keys from the
defaults, so older rows keep working when new keys are added.
"""

from dataclasses import asdict, dataclass, field
from datetime import timedelta

from .conf import get_default_dive_settings
from .exceptions import InvalidInput


BUILTIN_DEFAULTS = {
    "period_minutes": 60,
    "warning_minutes": 5,
    "overdue_checklist": [],
}


@dataclass(frozen=True)
class DiveSettings:
    """Timer configuration shared by every cart of a dive."""

    period_minutes: int = 60
    warning_minutes: int = 5
    overdue_checklist: list = field(default_factory=list)

    @property
    def period(self) -> timedelta:
        return timedelta(minutes=self.period_minutes)

    @property
    def warning_lead(self) -> timedelta:
        return timedelta(minutes=self.warning_minutes)

    def as_dict(self) -> dict:
        return asdict(self)


def get_defaults() -> dict:
    """Built-in defaults with DIVEWATCH_DEFAULT_SETTINGS applied on top."""
    defaults = dict(BUILTIN_DEFAULTS)
    defaults.update(get_default_dive_settings())
    defaults["overdue_checklist"] = list(defaults["overdue_checklist"])
    return defaults


def parse_dive_settings(raw) -> DiveSettings:
    """Build DiveSettings from a stored JSON value, merging with defaults."""
    defaults = get_defaults()
    if not isinstance(raw, dict):
        raw = {}

    period = raw.get("period_minutes")
    warning = raw.get("warning_minutes")
    checklist = raw.get("overdue_checklist")

    return DiveSettings(
        period_minutes=period if _is_int(period) else defaults["period_minutes"],
        warning_minutes=warning if _is_int(warning) else defaults["warning_minutes"],
        overdue_checklist=(
            list(checklist) if isinstance(checklist, list) else defaults["overdue_checklist"]
        ),
    )


def merge_dive_settings(current, overrides) -> dict:
    """
    Merge overrides into current settings and validate the result.

    Args:
        current: Stored settings dict (may be empty)
        overrides: Partial settings dict supplied by the caller

    Returns:
        The complete settings dict to store

    Raises:
        InvalidInput: If overrides contain unknown keys or invalid values
    """
    if overrides is None:
        overrides = {}
    if not isinstance(overrides, dict):
        raise InvalidInput("settings must be an object")

    unknown = sorted(set(overrides) - set(BUILTIN_DEFAULTS))
    if unknown:
        raise InvalidInput([f"unknown setting '{key}'" for key in unknown])

    merged = parse_dive_settings(current).as_dict()
    merged.update(overrides)

    errors = validate_dive_settings(merged)
    if errors:
        raise InvalidInput(errors)

    merged["overdue_checklist"] = [item.strip() for item in merged["overdue_checklist"]]
    return merged


def validate_dive_settings(values: dict) -> list[str]:
    """Return a list of error messages for invalid settings values."""
    errors = []
    period = values.get("period_minutes")
    warning = values.get("warning_minutes")
    checklist = values.get("overdue_checklist")

    if not _is_int(period) or period <= 0:
        errors.append("period_minutes must be a positive integer")
    if not _is_int(warning) or warning < 0:
        errors.append("warning_minutes must be a non-negative integer")
    elif _is_int(period) and warning >= period:
        errors.append("warning_minutes must be less than period_minutes")
    if not isinstance(checklist, list) or not all(isinstance(item, str) for item in checklist):
        errors.append("overdue_checklist must be a list of strings")

    return errors


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
