"""Tests for dive settings parsing, merging and validation."""

from datetime import timedelta

import pytest

from django_divewatch.dive_settings import (
    merge_dive_settings,
    parse_dive_settings,
    validate_dive_settings,
)
from django_divewatch.exceptions import InvalidInput


class TestParseDiveSettings:
    """Tests for parse_dive_settings."""

    def test_empty_uses_defaults(self):
        values = parse_dive_settings({})

        assert values.period_minutes == 60
        assert values.warning_minutes == 5
        assert values.overdue_checklist == []
        assert values.period == timedelta(minutes=60)
        assert values.warning_lead == timedelta(minutes=5)

    def test_non_dict_uses_defaults(self):
        assert parse_dive_settings(None).period_minutes == 60
        assert parse_dive_settings("garbage").warning_minutes == 5

    def test_malformed_keys_fall_back(self):
        """Bad stored values are replaced by defaults, good ones kept."""
        values = parse_dive_settings({"period_minutes": "45", "warning_minutes": 10})

        assert values.period_minutes == 60
        assert values.warning_minutes == 10

    def test_booleans_are_not_minutes(self):
        assert parse_dive_settings({"period_minutes": True}).period_minutes == 60

    def test_project_defaults_override_builtins(self, settings):
        settings.DIVEWATCH_DEFAULT_SETTINGS = {"period_minutes": 45}

        assert parse_dive_settings({}).period_minutes == 45


class TestMergeDiveSettings:
    """Tests for merge_dive_settings."""

    def test_merges_over_current(self):
        merged = merge_dive_settings({"period_minutes": 30}, {"warning_minutes": 10})

        assert merged == {
            "period_minutes": 30,
            "warning_minutes": 10,
            "overdue_checklist": [],
        }

    def test_none_overrides_returns_complete_settings(self):
        assert merge_dive_settings({}, None)["period_minutes"] == 60

    def test_strips_checklist_items(self):
        merged = merge_dive_settings({}, {"overdue_checklist": ["  Call cart  ", "Radio boat"]})

        assert merged["overdue_checklist"] == ["Call cart", "Radio boat"]

    def test_unknown_key_rejected(self):
        with pytest.raises(InvalidInput) as exc_info:
            merge_dive_settings({}, {"agula_period": 30})

        assert "unknown setting 'agula_period'" in exc_info.value.errors

    def test_warning_must_be_shorter_than_period(self):
        with pytest.raises(InvalidInput, match="less than period_minutes"):
            merge_dive_settings({}, {"period_minutes": 5, "warning_minutes": 5})

    def test_non_dict_rejected(self):
        with pytest.raises(InvalidInput):
            merge_dive_settings({}, ["period_minutes"])


class TestValidateDiveSettings:
    """Tests for validate_dive_settings."""

    def test_valid_settings_have_no_errors(self):
        assert validate_dive_settings(
            {"period_minutes": 60, "warning_minutes": 0, "overdue_checklist": []}
        ) == []

    def test_collects_every_error(self):
        errors = validate_dive_settings(
            {"period_minutes": 0, "warning_minutes": -1, "overdue_checklist": [1]}
        )

        assert len(errors) == 3
