"""Tests for the dive session lifecycle."""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction

from django_divewatch.exceptions import (
    ConflictError,
    DiveAlreadyActive,
    DiveNotFound,
    InvalidInput,
    SettingsLocked,
)
from django_divewatch.models import Cart, CartStatus, Dive, DiveStatus, Event, EventStatus
from django_divewatch.selectors import get_active_dive, get_dive, is_settings_locked
from django_divewatch.services import (
    create_cart,
    end_dive,
    open_event,
    start_dive,
    start_timers,
    update_dive,
)


@pytest.mark.django_db
class TestStartDive:
    """Tests for start_dive service."""

    def test_creates_active_dive_with_defaults(self, clock):
        dive = start_dive("  Dana  ", team_members=[{"role": "safety", "name": "Ravi"}])

        assert dive.status == DiveStatus.ACTIVE
        assert dive.manager_name == "Dana"
        assert dive.team_members == [{"role": "safety", "name": "Ravi"}]
        assert dive.settings == {"period_minutes": 60, "warning_minutes": 5, "overdue_checklist": []}
        assert get_active_dive() == dive

    def test_merges_supplied_settings(self, clock):
        dive = start_dive("Dana", settings={"period_minutes": 30})

        assert dive.get_settings().period_minutes == 30
        assert dive.get_settings().warning_minutes == 5

    def test_blank_manager_rejected(self):
        with pytest.raises(InvalidInput, match="manager_name is required"):
            start_dive("   ")

    def test_malformed_team_rejected(self):
        with pytest.raises(InvalidInput):
            start_dive("Dana", team_members=[{"role": "safety"}])

    def test_second_active_dive_is_conflict(self, dive):
        with pytest.raises(DiveAlreadyActive) as exc_info:
            start_dive("Someone else")

        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.dive_id == dive.pk
        assert Dive.objects.count() == 1

    def test_database_rejects_two_active_dives(self, dive):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Dive.objects.create(manager_name="Raw insert")

    def test_completes_leftover_carts(self, clock):
        """Carts left active by a crashed session are closed on the next start."""
        orphan = Cart.objects.create(cart_number=4, diver_names=["Ana"])
        stale = open_event(orphan.pk, "overdue")

        start_dive("Dana")

        orphan.refresh_from_db()
        stale.refresh_from_db()
        assert orphan.status == CartStatus.COMPLETED
        assert orphan.ended_at is not None
        assert stale.status == EventStatus.RESOLVED


@pytest.mark.django_db
class TestEndDive:
    """Tests for end_dive service."""

    def test_ends_all_active_carts_and_resolves_events(self, dive, make_cart, clock):
        carts = [make_cart(number) for number in (1, 2, 3)]
        start_timers([cart.pk for cart in carts])
        open_event(carts[0].pk, "warning")
        open_event(carts[2].pk, "overdue")
        clock.tick(timedelta(minutes=20))

        ended = end_dive(dive.pk)

        assert ended.status == DiveStatus.COMPLETED
        assert ended.ended_at is not None
        assert not Cart.objects.filter(dive=dive, status=CartStatus.ACTIVE).exists()
        assert all(cart.ended_at == ended.ended_at for cart in Cart.objects.filter(dive=dive))
        assert not Event.objects.filter(status=EventStatus.OPEN).exists()
        assert get_active_dive() is None

    def test_ending_twice_is_not_found(self, dive):
        end_dive(dive.pk)

        with pytest.raises(DiveNotFound):
            end_dive(dive.pk)

    def test_unknown_dive_is_not_found(self, db):
        with pytest.raises(DiveNotFound):
            end_dive(999)

    def test_no_carts_under_completed_dive(self, dive):
        end_dive(dive.pk)

        with pytest.raises(DiveNotFound):
            create_cart(1, ["Ana"], dive_id=dive.pk)

    def test_new_dive_allowed_after_end(self, dive):
        end_dive(dive.pk)

        second = start_dive("Eli")

        assert second.is_active
        assert get_dive(dive.pk).status == DiveStatus.COMPLETED


@pytest.mark.django_db
class TestUpdateDive:
    """Tests for update_dive service and the settings lock."""

    def test_updates_details(self, dive):
        updated = update_dive(
            dive.pk,
            manager_name="Eli",
            name="Morning reef",
            team_members=[{"role": "boat", "name": "Kai"}],
        )

        assert updated.manager_name == "Eli"
        assert updated.name == "Morning reef"
        assert updated.team_members == [{"role": "boat", "name": "Kai"}]

    def test_settings_editable_before_first_checkin(self, dive, make_cart):
        make_cart(1)

        updated = update_dive(dive.pk, settings={"period_minutes": 45})

        assert not is_settings_locked(dive)
        assert updated.get_settings().period_minutes == 45

    def test_settings_locked_after_first_checkin(self, dive, running_cart):
        assert is_settings_locked(dive)

        with pytest.raises(SettingsLocked) as exc_info:
            update_dive(dive.pk, settings={"period_minutes": 45})

        assert exc_info.value.dive_id == dive.pk
        assert f"dive {dive.pk}" in str(exc_info.value)
        dive.refresh_from_db()
        assert dive.get_settings().period_minutes == 60

    def test_details_editable_after_lock(self, dive, running_cart):
        updated = update_dive(dive.pk, manager_name="Eli")

        assert updated.manager_name == "Eli"

    def test_invalid_settings_rejected(self, dive):
        with pytest.raises(InvalidInput):
            update_dive(dive.pk, settings={"warning_minutes": 90})

    def test_nothing_to_update_rejected(self, dive):
        with pytest.raises(InvalidInput, match="No fields to update"):
            update_dive(dive.pk)

    def test_unknown_dive_is_not_found(self, db):
        with pytest.raises(DiveNotFound):
            update_dive(404, name="x")
