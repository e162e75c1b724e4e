"""Recurrence expansion: turn a parent opportunity into dated child instances.

Rules
-----
A rule is one of three variants, each carrying a bound:

- ``DailyRule``: every scanned day produces an instance.
- ``WeeklyRule``: a scanned day produces an instance only when its weekday
  abbreviation (``sun`` .. ``sat``) is in ``days``.
- ``MonthlyRule``: steps by calendar day exactly like ``DailyRule``.  Kept
  this way so existing schedules expand to the same dates.

Bounds
------
- ``CountBound(count)``: scan ``count`` calendar days starting at the anchor
  (the parent's ``start_date``).  The anchor is scanned but never emitted,
  since the parent row already represents it.  For weekly rules ``count``
  therefore limits days scanned, not instances produced.
- ``HorizonBound(horizon_months)``: scan from the day after the anchor up to
  and including ``today + horizon_months``.
- ``UntilBound(until)``: scan from the day after the anchor up to and
  including ``until`` (the opportunity's ``recur_until``).

A rule whose window is longer than ``max_scan_days`` raises
``RecurrenceWindowError`` rather than being cut short.

``parse_rule`` is deliberately permissive: an unknown ``type`` or a weekly rule
without usable days parses to ``None`` (no recurrence) instead of raising.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Union

from dateutil.relativedelta import relativedelta

from hopedeeds.config import get_settings

log = logging.getLogger(__name__)

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")  # date.weekday() order
RULE_TYPES = ("daily", "weekly", "monthly")

# Copied verbatim from the parent onto each generated instance
INSTANCE_FIELDS = (
    "organization_id", "title", "description", "duration",
    "time", "end_time", "area", "max_capacity", "special_type", "frequency_type",
    "recur_until",
)


class RecurrenceWindowError(ValueError):
    """The rule would scan more days than ``max_scan_days`` allows."""
    def __init__(self, days: int, limit: int):
        super().__init__(f"Recurrence spans {days} days; at most {limit} are allowed")
        self.days = days
        self.limit = limit


@dataclass(frozen=True)
class CountBound:
    count: int = 1


@dataclass(frozen=True)
class HorizonBound:
    horizon_months: int = 3


@dataclass(frozen=True)
class UntilBound:
    until: date


Bound = Union[CountBound, HorizonBound, UntilBound]


@dataclass(frozen=True)
class DailyRule:
    bound: Bound = CountBound()
    type = "daily"

    def matches(self, day: date) -> bool:
        return True


@dataclass(frozen=True)
class WeeklyRule:
    days: frozenset[str]
    bound: Bound = CountBound()
    type = "weekly"

    def matches(self, day: date) -> bool:
        return weekday_abbr(day) in self.days


@dataclass(frozen=True)
class MonthlyRule:
    bound: Bound = CountBound()
    type = "monthly"

    def matches(self, day: date) -> bool:
        return True


RecurrenceRule = Union[DailyRule, WeeklyRule, MonthlyRule]


def weekday_abbr(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def _as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def parse_rule(raw: Mapping[str, Any] | None) -> RecurrenceRule | None:
    """Build a typed rule from its JSON shape, or ``None`` when it describes no recurrence.

    ``bound_by`` picks the bound; without it a rule carrying ``until`` is bounded
    by that date, and anything else falls back to the configured default.
    """
    if not raw:
        return None
    rule_type = str(raw.get("type") or "").strip().lower()
    if rule_type not in RULE_TYPES:
        log.info("Ignoring recurrence rule with unsupported type %r", raw.get("type"))
        return None

    settings = get_settings()
    until = coerce_date(raw.get("until"))
    bound_by = str(raw.get("bound_by") or ("until" if until else settings.default_bound_by)).strip().lower()
    if bound_by == "until" and until is None:
        log.info("Recurrence rule bound by 'until' without a valid date %r, using count", raw.get("until"))
        bound_by = "count"
    if bound_by == "horizon":
        bound: Bound = HorizonBound(
            _as_int(raw.get("horizon_months"), settings.default_horizon_months))
    elif bound_by == "until":
        bound = UntilBound(until)
    else:
        bound = CountBound(_as_int(raw.get("count"), 1))

    if rule_type == "daily":
        return DailyRule(bound=bound)
    if rule_type == "monthly":
        return MonthlyRule(bound=bound)

    days = frozenset(
        str(d).strip().lower() for d in (raw.get("days") or []) if str(d).strip().lower() in WEEKDAYS
    )
    if not days:
        log.info("Ignoring weekly recurrence rule without valid days: %r", raw.get("days"))
        return None
    return WeeklyRule(days=days, bound=bound)


def rule_to_dict(rule: RecurrenceRule) -> dict[str, Any]:
    """JSON shape of a rule, as stored on the parent row."""
    out: dict[str, Any] = {"type": rule.type}
    if isinstance(rule, WeeklyRule):
        out["days"] = [d for d in WEEKDAYS if d in rule.days]
    if isinstance(rule.bound, HorizonBound):
        out["bound_by"] = "horizon"
        out["horizon_months"] = rule.bound.horizon_months
    elif isinstance(rule.bound, UntilBound):
        out["bound_by"] = "until"
        out["until"] = rule.bound.until.isoformat()
    else:
        out["bound_by"] = "count"
        out["count"] = rule.bound.count
    return out


def last_scanned_day(anchor: date, rule: RecurrenceRule, *, today: date | None = None) -> date | None:
    """Inclusive end of the scan window, or ``None`` when nothing is scanned."""
    bound = rule.bound
    if isinstance(bound, HorizonBound):
        end = (today or date.today()) + relativedelta(months=bound.horizon_months)
    elif isinstance(bound, UntilBound):
        end = bound.until
    else:
        if bound.count <= 1:
            return None
        end = anchor + timedelta(days=bound.count - 1)
    return end if end > anchor else None


def check_window(anchor: date, rule: RecurrenceRule, *, today: date | None = None) -> None:
    """Raise ``RecurrenceWindowError`` if the rule scans more than ``max_scan_days``."""
    end = last_scanned_day(anchor, rule, today=today)
    if end is None:
        return
    days = (end - anchor).days
    limit = get_settings().max_scan_days
    if days > limit:
        log.warning("Rejecting %s recurrence from %s to %s: %d days exceeds %d",
                    rule.type, anchor, end, days, limit)
        raise RecurrenceWindowError(days, limit)


def occurrence_dates(anchor: date, rule: RecurrenceRule, *, today: date | None = None) -> list[date]:
    """Dates that get an instance, in ascending order. Never includes ``anchor``.

    Every bound scans the days after ``anchor`` through ``last_scanned_day``.
    """
    check_window(anchor, rule, today=today)
    end = last_scanned_day(anchor, rule, today=today)
    dates: list[date] = []
    if end is None:
        return dates
    cursor = anchor + timedelta(days=1)
    while cursor <= end:
        if rule.matches(cursor):
            dates.append(cursor)
        cursor += timedelta(days=1)
    return dates


def expand(parent: Mapping[str, Any], rule: RecurrenceRule | None, *, today: date | None = None) -> list[dict]:
    """Instance rows for ``parent`` (which must already carry its assigned ``id``).

    Pure: identical inputs (including ``today`` for horizon rules) give identical rows.
    """
    if rule is None:
        return []
    base = {f: parent.get(f) for f in INSTANCE_FIELDS}
    return [
        {**base, "start_date": day, "parent_id": parent["id"],
         "status": "active", "recurrence_rule_json": None}
        for day in occurrence_dates(parent["start_date"], rule, today=today)
    ]
