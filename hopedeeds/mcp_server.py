from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager
from datetime import date

from mcp.server.fastmcp import FastMCP

from hopedeeds import services
from hopedeeds.db import close_db, get_session, init_db
from hopedeeds.models import Opportunity, Organization
from hopedeeds.recurrence import RecurrenceWindowError, occurrence_dates, parse_rule
from hopedeeds.store import PersistenceError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def hopedeeds_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    try:
        yield
    finally:
        close_db()


mcp = FastMCP(
    "HopeDeeds",
    instructions=(
        "HopeDeeds coordinates volunteers for organizations. "
        "Use these tools to list, inspect, create and cancel volunteer opportunities (shifts). "
        "Start with get_stats() for an overview, then list_opportunities() to browse, "
        "then get_opportunity(id) for signups. Use preview_recurrence() before creating a repeating shift."
    ),
    lifespan=hopedeeds_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _get_or_error(session, model, entity_id, label="Entity"):
    obj = services.get_entity(session, model, entity_id)
    if not obj:
        return None, {"error": f"{label} {entity_id} not found"}
    return obj, None


def _parse_date(value: str) -> tuple[date | None, dict | None]:
    try:
        return date.fromisoformat(value.strip()), None
    except (AttributeError, ValueError):
        return None, {"error": f"Invalid date {value!r}, expected YYYY-MM-DD"}


def _rule_args(rule_type, days, count, bound_by, horizon_months, until=None) -> dict | None:
    if not rule_type:
        return None
    return {
        "type": rule_type,
        "days": [d.strip() for d in days.split(",")] if days else None,
        "count": count, "bound_by": bound_by, "horizon_months": horizon_months, "until": until,
    }


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("hopedeeds://overview")
def hopedeeds_overview() -> str:
    """Overview of HopeDeeds: data model and recurrence rules."""
    return json.dumps({
        "system": "HopeDeeds, volunteer coordination",
        "data_model": {
            "organization": "Posts opportunities. Identified by id or email.",
            "opportunity": "A dated shift. Recurring parents have generated instances (parent_id set).",
            "volunteer": "A registered person who signs up for opportunities.",
            "signup": "Volunteer on an opportunity, status pending | confirmed | cancelled.",
        },
        "recurrence": {
            "types": ["daily", "weekly", "monthly"],
            "weekly_days": ["sun", "mon", "tue", "wed", "thu", "fri", "sat"],
            "count": "Days scanned starting at start_date, including start_date itself. "
                     "start_date is the parent, so count=1 creates no instances.",
            "horizon": "bound_by='horizon' scans from start_date to today + horizon_months.",
            "until": "bound_by='until' (or just until=YYYY-MM-DD) scans from start_date to that date.",
            "limit": "Rules spanning more than max_scan_days (default 1825) are rejected.",
            "monthly": "Steps by day, same as daily.",
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Opportunities
# ---------------------------------------------------------------------------


@mcp.tool()
def list_opportunities(
    on_date: str | None = None, organization_id: int | None = None,
    area: str | None = None, frequency_type: str | None = None,
    search: str | None = None, include_cancelled: bool = False,
) -> list[dict] | dict:
    """List opportunities ordered by date.

    Args:
        on_date: Only opportunities on this date (YYYY-MM-DD).
        organization_id: Only opportunities of this organization.
        area: Area name, case-insensitive.
        frequency_type: daily, weekly, monthly or one-time.
        search: Text the title must contain, case-insensitive.
        include_cancelled: Also list cancelled opportunities.
    """
    parsed = None
    if on_date:
        parsed, err = _parse_date(on_date)
        if err:
            return err
    with _session() as session:
        return services.query_opportunities(
            session, on_date=parsed, organization=organization_id, area=area,
            frequency_type=frequency_type, search=search, include_inactive=include_cancelled,
        )


@mcp.tool()
def get_opportunity(opportunity_id: int) -> dict:
    """Get one opportunity with its signed-up volunteers and instance count."""
    with _session() as session:
        opp, err = _get_or_error(session, Opportunity, opportunity_id, "Opportunity")
        return err if err else services.opportunity_detail(session, opp)


@mcp.tool()
def create_opportunity(
    organization_id: int, title: str, start_date: str, time: str,
    description: str = "", duration: str | None = None, end_time: str | None = None,
    area: str | None = None, max_capacity: int | None = None,
    rule_type: str | None = None, days: str | None = None, count: int | None = None,
    bound_by: str | None = None, horizon_months: int | None = None, until: str | None = None,
) -> dict:
    """Create an opportunity, plus its instances when a recurrence is given.

    Args:
        organization_id: Owning organization.
        title: Shift title.
        start_date: First date (YYYY-MM-DD).
        time: Start time, "HH:MM".
        rule_type: daily, weekly or monthly. Omit for a one-time shift.
        days: Weekly rules only, comma-separated, e.g. "mon,wed".
        count: Days scanned including start_date (default 1, i.e. no instances).
        bound_by: "count" (default), "horizon" or "until".
        horizon_months: Months ahead of today to scan when bound_by="horizon".
        until: Last date to scan (YYYY-MM-DD), stored as the opportunity's recur_until.
    """
    parsed, err = _parse_date(start_date)
    if err:
        return err
    recur_until = None
    if until:
        recur_until, err = _parse_date(until)
        if err:
            return err
    with _session() as session:
        _, err = _get_or_error(session, Organization, organization_id, "Organization")
        if err:
            return err
        draft = {
            "title": title, "start_date": parsed, "time": time, "description": description,
            "duration": duration, "end_time": end_time, "area": area, "max_capacity": max_capacity,
            "recur_until": recur_until,
        }
        rule = _rule_args(rule_type, days, count, bound_by, horizon_months)
        try:
            result = services.create_opportunity_with_recurrence(session, organization_id, draft, rule)
        except services.InvalidDraftError as exc:
            return {"error": str(exc)}
        except PersistenceError as exc:
            return {"error": f"Failed to create opportunity: {exc}"}
        result["failed_dates"] = [d.isoformat() for d in result["failed_dates"]]
        return result


@mcp.tool()
def delete_opportunity(opportunity_id: int, hard: bool = False) -> dict:
    """Cancel an opportunity, or delete the row with hard=True. Generated instances are not touched."""
    with _session() as session:
        opp, err = _get_or_error(session, Opportunity, opportunity_id, "Opportunity")
        if err:
            return err
        return services.delete_opportunity(session, opp, hard=hard)


@mcp.tool()
def preview_recurrence(
    start_date: str, rule_type: str, days: str | None = None, count: int | None = None,
    bound_by: str | None = None, horizon_months: int | None = None, until: str | None = None,
) -> dict:
    """Show the instance dates a rule would generate, without saving anything."""
    parsed, err = _parse_date(start_date)
    if err:
        return err
    rule = parse_rule(_rule_args(rule_type, days, count, bound_by, horizon_months, until))
    if rule is None:
        return {"rule": None, "dates": [], "note": "Rule describes no recurrence"}
    try:
        dates = occurrence_dates(parsed, rule)
    except RecurrenceWindowError as exc:
        return {"error": str(exc)}
    return {"rule": rule.type, "dates": [d.isoformat() for d in dates]}


# ---------------------------------------------------------------------------
# Tools: Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Get counts of organizations, volunteers, opportunities and signups."""
    with _session() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the HopeDeeds MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
