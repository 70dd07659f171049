# tests/conftest.py
"""
Pytest configuration for django-divewatch tests.
"""
import django
import pytest
from django.conf import settings
from freezegun import freeze_time


def pytest_configure():
    if not settings.configured:
        settings.configure(
            DEBUG=True,
            SECRET_KEY="test-secret-key-for-divewatch-tests",
            DATABASES={
                "default": {
                    "ENGINE": "django.db.backends.sqlite3",
                    "NAME": ":memory:",
                }
            },
            INSTALLED_APPS=[
                "django.contrib.contenttypes",
                "django_divewatch",
            ],
            DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
            USE_TZ=True,
            TIME_ZONE="UTC",
        )
    django.setup()


@pytest.fixture
def clock():
    """Freeze time at 10:00 UTC; move with clock.move_to() or clock.tick()."""
    with freeze_time("2025-06-01 10:00:00") as frozen:
        yield frozen


@pytest.fixture
def dive(db, clock):
    """An active dive with default settings (60 minute period, 5 minute warning)."""
    from django_divewatch.services import start_dive

    return start_dive("Dana", team_members=[{"role": "safety", "name": "Ravi"}])


@pytest.fixture
def make_cart(dive):
    """Factory creating carts under the active dive."""
    from django_divewatch.services import create_cart

    def _make(cart_number, diver_names=None, cart_type=2):
        return create_cart(cart_number, diver_names or ["Ana", "Ben"], cart_type=cart_type)

    return _make


@pytest.fixture
def running_cart(make_cart):
    """A cart whose first round started at 10:00 (deadline 11:00)."""
    from django_divewatch.services import start_timers

    cart = make_cart(1)
    start_timers([cart.pk])
    cart.refresh_from_db()
    return cart


@pytest.fixture
def monitor(db):
    from django_divewatch.monitor import DiveMonitor

    return DiveMonitor(interval=0.01)
