"""Tests for recurrence parsing and expansion."""
from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import patch

import pytest

from hopedeeds.config import Settings
from hopedeeds.recurrence import (
    CountBound,
    DailyRule,
    HorizonBound,
    MonthlyRule,
    RecurrenceWindowError,
    UntilBound,
    WeeklyRule,
    expand,
    occurrence_dates,
    parse_rule,
    rule_to_dict,
    weekday_abbr,
)

MONDAY = date(2024, 6, 3)


@pytest.fixture()
def parent() -> dict:
    return {
        "id": 42, "organization_id": 7, "title": "Pantry shift",
        "description": "Sort donations", "duration": "2", "time": "09:00",
        "end_time": "11:00", "area": "Warehouse", "max_capacity": 8,
        "special_type": None, "frequency_type": "weekly", "start_date": MONDAY,
    }


def _dates(rows: list[dict]) -> list[date]:
    return [r["start_date"] for r in rows]


class TestExpandCountBound:
    def test_weekly_count_one_is_empty(self, parent):
        rule = parse_rule({"type": "weekly", "days": ["mon", "wed"], "count": 1})
        assert expand(parent, rule) == []

    def test_weekly_count_scans_days_not_instances(self, parent):
        rule = parse_rule({"type": "weekly", "days": ["mon"], "count": 8})
        rows = expand(parent, rule)
        assert _dates(rows) == [MONDAY + timedelta(days=7)]

    def test_weekly_two_days(self, parent):
        rule = parse_rule({"type": "weekly", "days": ["mon", "wed"], "count": 10})
        assert _dates(expand(parent, rule)) == [
            date(2024, 6, 5), date(2024, 6, 10), date(2024, 6, 12),
        ]

    def test_daily_count_five(self, parent):
        rule = parse_rule({"type": "daily", "count": 5})
        assert _dates(expand(parent, rule)) == [MONDAY + timedelta(days=n) for n in range(1, 5)]

    def test_weekly_empty_days_is_empty(self, parent):
        assert parse_rule({"type": "weekly", "days": [], "count": 10}) is None
        assert expand(parent, WeeklyRule(days=frozenset(), bound=CountBound(10))) == []

    def test_count_defaults_to_one(self, parent):
        rule = parse_rule({"type": "daily"})
        assert rule == DailyRule(bound=CountBound(1))
        assert expand(parent, rule) == []

    def test_zero_and_negative_count(self, parent):
        assert expand(parent, DailyRule(bound=CountBound(0))) == []
        assert expand(parent, DailyRule(bound=CountBound(-3))) == []

    def test_monthly_steps_by_day(self, parent):
        rule = parse_rule({"type": "monthly", "count": 4})
        assert isinstance(rule, MonthlyRule)
        assert _dates(expand(parent, rule)) == [date(2024, 6, 4), date(2024, 6, 5), date(2024, 6, 6)]

    def test_no_rule(self, parent):
        assert expand(parent, None) == []

    def test_idempotent(self, parent):
        rule = parse_rule({"type": "weekly", "days": ["tue", "sat"], "count": 30})
        assert expand(parent, rule) == expand(parent, rule)

    def test_instances_copy_parent(self, parent):
        rule = parse_rule({"type": "daily", "count": 6})
        rows = expand(parent, rule)
        assert len(rows) == 5
        for row in rows:
            assert row["organization_id"] == 7
            assert row["title"] == "Pantry shift"
            assert row["description"] == "Sort donations"
            assert row["duration"] == "2"
            assert row["time"] == "09:00"
            assert row["parent_id"] == 42
            assert row["status"] == "active"
            assert row["recurrence_rule_json"] is None
            assert row["start_date"] != parent["start_date"]
        assert len({r["start_date"] for r in rows}) == len(rows)

    def test_scan_limit(self, parent):
        with patch("hopedeeds.recurrence.get_settings", return_value=Settings(max_scan_days=10)):
            assert len(expand(parent, DailyRule(bound=CountBound(11)))) == 10
            with pytest.raises(RecurrenceWindowError) as excinfo:
                expand(parent, DailyRule(bound=CountBound(1000)))
        assert excinfo.value.days == 999
        assert excinfo.value.limit == 10


class TestExpandHorizonBound:
    def test_weekly_until_horizon(self, parent):
        rule = WeeklyRule(days=frozenset({"mon"}), bound=HorizonBound(1))
        dates = occurrence_dates(MONDAY, rule, today=date(2024, 6, 1))
        # today + 1 month = 2024-07-01, a Monday, included
        assert dates == [date(2024, 6, 10), date(2024, 6, 17), date(2024, 6, 24), date(2024, 7, 1)]

    def test_daily_horizon_excludes_anchor(self, parent):
        rule = DailyRule(bound=HorizonBound(1))
        dates = occurrence_dates(MONDAY, rule, today=MONDAY)
        assert dates[0] == MONDAY + timedelta(days=1)
        assert dates[-1] == date(2024, 7, 3)
        assert len(dates) == 30

    def test_month_end_horizon(self):
        rule = DailyRule(bound=HorizonBound(1))
        # 2024-01-31 + 1 month clamps to 2024-02-29
        dates = occurrence_dates(date(2024, 1, 30), rule, today=date(2024, 1, 31))
        assert dates == [date(2024, 1, 31)] + [date(2024, 2, d) for d in range(1, 30)]

    def test_anchor_past_horizon_is_empty(self):
        rule = DailyRule(bound=HorizonBound(3))
        assert occurrence_dates(date(2030, 1, 1), rule, today=date(2024, 1, 1)) == []

    def test_old_anchor_reaches_horizon(self):
        rule = WeeklyRule(days=frozenset({"mon"}), bound=HorizonBound(3))
        dates = occurrence_dates(date(2020, 1, 6), rule, today=date(2024, 6, 1))
        assert dates[0] == date(2020, 1, 13)
        assert dates[-1] == date(2024, 8, 26)

    def test_window_over_limit_raises(self):
        rule = WeeklyRule(days=frozenset({"mon"}), bound=HorizonBound(3))
        with pytest.raises(RecurrenceWindowError, match="at most 1825"):
            occurrence_dates(date(2015, 1, 5), rule, today=date(2024, 6, 1))

    def test_parse_horizon(self):
        rule = parse_rule({"type": "weekly", "days": ["fri"], "bound_by": "horizon", "horizon_months": 2})
        assert rule == WeeklyRule(days=frozenset({"fri"}), bound=HorizonBound(2))

    def test_parse_horizon_default_months(self):
        rule = parse_rule({"type": "daily", "bound_by": "horizon"})
        assert rule.bound == HorizonBound(3)

    def test_configured_default_bound(self):
        settings = Settings(default_bound_by="horizon", default_horizon_months=6)
        with patch("hopedeeds.recurrence.get_settings", return_value=settings):
            rule = parse_rule({"type": "daily", "count": 5})
        assert rule.bound == HorizonBound(6)


class TestParseRule:
    @pytest.mark.parametrize("raw", [
        None, {}, {"type": "yearly", "count": 5}, {"type": "", "count": 5}, {"count": 5},
    ])
    def test_no_recurrence(self, raw):
        assert parse_rule(raw) is None

    def test_weekly_missing_days(self):
        assert parse_rule({"type": "weekly", "count": 5}) is None

    def test_weekly_unknown_days_dropped(self):
        assert parse_rule({"type": "weekly", "days": ["funday", "noday"], "count": 5}) is None
        rule = parse_rule({"type": "weekly", "days": ["Mon", " wed ", "xyz"], "count": 5})
        assert rule.days == frozenset({"mon", "wed"})

    def test_type_case_insensitive(self):
        assert isinstance(parse_rule({"type": "Daily", "count": 2}), DailyRule)

    def test_days_ignored_for_daily(self):
        assert parse_rule({"type": "daily", "days": ["mon"], "count": 3}) == DailyRule(bound=CountBound(3))

    def test_bad_count_falls_back(self):
        assert parse_rule({"type": "daily", "count": "lots"}).bound == CountBound(1)
        assert parse_rule({"type": "daily", "count": "4"}).bound == CountBound(4)

    def test_rule_to_dict(self):
        rule = parse_rule({"type": "weekly", "days": ["wed", "mon"], "count": 14})
        assert rule_to_dict(rule) == {"type": "weekly", "days": ["mon", "wed"], "bound_by": "count", "count": 14}
        horizon = rule_to_dict(MonthlyRule(bound=HorizonBound(2)))
        assert horizon == {"type": "monthly", "bound_by": "horizon", "horizon_months": 2}

    def test_rule_to_dict_parses_back(self):
        rule = parse_rule({"type": "weekly", "days": ["sun"], "bound_by": "horizon", "horizon_months": 4})
        assert parse_rule(rule_to_dict(rule)) == rule


def test_weekday_abbr():
    assert weekday_abbr(MONDAY) == "mon"
    assert weekday_abbr(date(2024, 6, 9)) == "sun"
    assert weekday_abbr(date(2024, 6, 8)) == "sat"


class TestExpandUntilBound:
    def test_weekly_until_inclusive(self, parent):
        rule = parse_rule({"type": "weekly", "days": ["mon"], "until": "2024-06-24"})
        assert rule == WeeklyRule(days=frozenset({"mon"}), bound=UntilBound(date(2024, 6, 24)))
        assert _dates(expand(parent, rule)) == [date(2024, 6, 10), date(2024, 6, 17), date(2024, 6, 24)]

    def test_daily_until_excludes_anchor(self):
        dates = occurrence_dates(MONDAY, DailyRule(bound=UntilBound(date(2024, 6, 6))))
        assert dates == [date(2024, 6, 4), date(2024, 6, 5), date(2024, 6, 6)]

    @pytest.mark.parametrize("until", [MONDAY, date(2024, 5, 1)])
    def test_until_on_or_before_anchor_is_empty(self, until):
        assert occurrence_dates(MONDAY, DailyRule(bound=UntilBound(until))) == []

    def test_until_ignores_today(self):
        rule = DailyRule(bound=UntilBound(date(2024, 6, 5)))
        assert occurrence_dates(MONDAY, rule, today=date(2030, 1, 1)) == [date(2024, 6, 4), date(2024, 6, 5)]

    def test_explicit_bound_by_wins(self):
        rule = parse_rule({"type": "daily", "bound_by": "count", "count": 3, "until": "2024-12-31"})
        assert rule.bound == CountBound(3)

    def test_bad_until_falls_back_to_count(self):
        rule = parse_rule({"type": "daily", "bound_by": "until", "until": "someday", "count": 4})
        assert rule.bound == CountBound(4)

    def test_accepts_date_object(self):
        assert parse_rule({"type": "daily", "until": date(2024, 7, 1)}).bound == UntilBound(date(2024, 7, 1))

    def test_rule_to_dict(self):
        rule = DailyRule(bound=UntilBound(date(2024, 6, 5)))
        assert rule_to_dict(rule) == {"type": "daily", "bound_by": "until", "until": "2024-06-05"}
        assert parse_rule(rule_to_dict(rule)) == rule
