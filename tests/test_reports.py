"""Tests for dive summaries and dive reports."""

import pytest

from django_divewatch.exceptions import DiveNotFound
from django_divewatch.selectors import get_dive_report, get_dive_summaries
from django_divewatch.services import (
    checkin,
    end_cart,
    end_dive,
    new_round,
    open_event,
    reset_timer,
    resolve_event,
    start_dive,
    start_timers,
)


@pytest.fixture
def finished_dive(dive, make_cart, clock):
    """A dive with two carts, one reset and one resolved warning, ended at 11:30."""
    first = make_cart(1)
    second = make_cart(2, ["Cy", "Dee", "Eve"], cart_type=3)
    start_timers([first.pk, second.pk])

    clock.move_to("2025-06-01 10:55:00")
    event = open_event(first.pk, "warning")
    clock.move_to("2025-06-01 10:58:00")
    checkin(first.pk)
    resolve_event(event.pk)
    clock.move_to("2025-06-01 11:00:00")
    new_round(first.pk)
    clock.move_to("2025-06-01 11:10:00")
    reset_timer(second.pk, "Lost line")
    end_cart(second.pk)
    clock.move_to("2025-06-01 11:30:00")
    end_dive(dive.pk)
    return dive


@pytest.mark.django_db
class TestDiveSummaries:
    """Tests for get_dive_summaries selector."""

    def test_counts_and_duration(self, finished_dive):
        (summary,) = get_dive_summaries()

        assert summary["dive"]["id"] == finished_dive.pk
        assert summary["cart_count"] == 2
        assert summary["checkin_count"] == 4
        assert summary["event_count"] == 1
        assert summary["duration_minutes"] == 90

    def test_newest_first_and_active_has_no_duration(self, finished_dive, clock):
        clock.move_to("2025-06-01 12:00:00")
        current = start_dive("Eli")

        summaries = get_dive_summaries()

        assert [s["dive"]["id"] for s in summaries] == [current.pk, finished_dive.pk]
        assert summaries[0]["duration_minutes"] is None
        assert summaries[0]["cart_count"] == 0


@pytest.mark.django_db
class TestDiveReport:
    """Tests for get_dive_report selector."""

    def test_summary_and_carts(self, finished_dive):
        report = get_dive_report(finished_dive.pk)

        assert report["dive"]["manager_name"] == "Dana"
        assert report["summary"]["events_by_type"] == {"warning": 1}
        assert report["summary"]["open_event_count"] == 0
        assert [(c["cart_number"], c["checkin_count"], c["event_count"]) for c in report["carts"]] == [
            (1, 2, 1),
            (2, 2, 0),
        ]
        assert report["events"][0]["cart_number"] == 1
        assert report["events"][0]["status"] == "resolved"

    def test_timeline_is_chronological(self, finished_dive):
        timeline = get_dive_report(finished_dive.pk)["timeline"]

        assert [(entry["type"], entry["cart_number"]) for entry in timeline] == [
            ("dive_start", None),
            ("cart_start", 1),
            ("cart_start", 2),
            ("checkin", 1),
            ("checkin", 2),
            ("event_open", 1),
            ("event_resolve", 1),
            ("checkin", 1),
            ("reset", 2),
            ("cart_end", 2),
            ("cart_end", 1),
            ("dive_end", None),
        ]
        reset = timeline[8]
        assert reset["reason"] == "Lost line"
        assert timeline == sorted(timeline, key=lambda entry: entry["timestamp"])

    def test_unknown_dive_is_not_found(self, db):
        with pytest.raises(DiveNotFound):
            get_dive_report(404)
