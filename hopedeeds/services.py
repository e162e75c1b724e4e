"""Shared business logic for the HopeDeeds API, MCP server and CLI."""
from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import UTC, date, datetime
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hopedeeds.config import get_settings
from hopedeeds.models import Organization, Opportunity, Signup, Volunteer
from hopedeeds.recurrence import (
    RecurrenceRule,
    RecurrenceWindowError,
    UntilBound,
    check_window,
    coerce_date,
    expand,
    parse_rule,
    rule_to_dict,
)
from hopedeeds.store import OpportunityStore, PersistenceError, SqlOpportunityStore
from hopedeeds.utils import as_bool, json_parse, missing_fields, normalize_duration

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class InvalidDraftError(ValueError):
    """Client input cannot be turned into a row."""
    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []

    @classmethod
    def for_missing(cls, missing: list[str]) -> InvalidDraftError:
        return cls(f"Missing required fields: {', '.join(missing)}", missing)


class SignupRejected(Exception):
    """A signup could not be created or changed."""
    def __init__(self, message: str, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found


# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

OPPORTUNITY_REQUIRED = ("title", "start_date", "time")
VOLUNTEER_REQUIRED = ("full_name", "email", "phone", "birthdate", "waiver_agreed")

OPPORTUNITY_FIELDS = (
    "id", "organization_id", "title", "description", "start_date", "time",
    "end_time", "duration", "area", "max_capacity", "special_type",
    "frequency_type", "recur_until", "parent_id", "status",
)

VOLUNTEER_PUBLIC_FIELDS = (
    "full_name", "email", "phone", "birthdate", "zipcode", "emergency_contact", "waiver_agreed",
)

SIGNUP_STATUSES = ("pending", "confirmed", "cancelled")

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id: int):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def opportunity_summary(opp: Opportunity) -> dict:
    result = {f: getattr(opp, f) for f in OPPORTUNITY_FIELDS}
    result["recurrence_rule"] = json_parse(opp.recurrence_rule_json, None)
    return result


def opportunity_detail(session: Session, opp: Opportunity) -> dict:
    base = opportunity_summary(opp)
    base["volunteers"] = [
        {"signup_id": s.id, "volunteer_id": s.volunteer_id,
         "full_name": s.volunteer.full_name, "email": s.volunteer.email, "status": s.status}
        for s in sorted(opp.signups, key=lambda s: s.id)
    ]
    base["instance_count"] = session.execute(
        select(func.count(Opportunity.id)).where(Opportunity.parent_id == opp.id)
    ).scalar_one()
    return base


def organization_summary(org: Organization) -> dict:
    return {"id": org.id, "org_name": org.org_name, "email": org.email,
            "phone": org.phone, "address": org.address}


def volunteer_public(vol: Volunteer) -> dict:
    """Profile as shown to the volunteer: no internal id or creation timestamp."""
    result = {f: getattr(vol, f) for f in VOLUNTEER_PUBLIC_FIELDS}
    result["waiver_agreed_at"] = vol.waiver_agreed_at.isoformat() if vol.waiver_agreed_at else None
    return result


def volunteer_admin(vol: Volunteer) -> dict:
    result = volunteer_public(vol)
    result["id"] = vol.id
    result["created_at"] = vol.created_at.isoformat() if vol.created_at else None
    result["signup_count"] = len(vol.signups)
    return result


def signup_summary(signup: Signup) -> dict:
    return {"id": signup.id, "opportunity_id": signup.opportunity_id,
            "volunteer_id": signup.volunteer_id, "status": signup.status}


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


def validate_draft(draft: Mapping[str, Any]) -> None:
    missing = missing_fields(draft, OPPORTUNITY_REQUIRED)
    if missing:
        raise InvalidDraftError.for_missing(missing)


def create_opportunity_with_recurrence(
    session: Session,
    organization_id: int,
    draft: Mapping[str, Any],
    rule: RecurrenceRule | Mapping[str, Any] | None,
    *,
    store: OpportunityStore | None = None,
    today: date | None = None,
) -> dict:
    """Insert the parent row, then one row per generated instance.

    Instance inserts that fail are reported in ``failed_dates``; the parent and
    the instances already inserted are kept. A failing parent insert raises
    ``PersistenceError``. A draft ``recur_until`` bounds a rule that names no
    end date of its own; a window longer than ``max_scan_days`` raises
    ``InvalidDraftError`` before anything is stored.
    """
    validate_draft(draft)
    recur_until = coerce_date(draft.get("recur_until"))
    if isinstance(rule, Mapping):
        if recur_until and not rule.get("until"):
            rule = {**rule, "until": recur_until}
        rule = parse_rule(rule)
    if rule is not None:
        try:
            check_window(draft["start_date"], rule, today=today)
        except RecurrenceWindowError as exc:
            raise InvalidDraftError(str(exc)) from exc
        if isinstance(rule.bound, UntilBound):
            recur_until = rule.bound.until
    if store is None:
        store = SqlOpportunityStore(session)

    parent_row = {
        "organization_id": organization_id,
        "title": draft["title"].strip(),
        "description": (draft.get("description") or "").strip(),
        "start_date": draft["start_date"],
        "time": draft["time"],
        "end_time": draft.get("end_time") or None,
        "duration": normalize_duration(draft.get("duration")),
        "area": draft.get("area") or None,
        "max_capacity": draft.get("max_capacity") or get_settings().default_max_capacity,
        "special_type": draft.get("special_type") or None,
        "frequency_type": rule.type if rule else None,
        "recurrence_rule_json": json.dumps(rule_to_dict(rule)) if rule else None,
        "recur_until": recur_until,
        "parent_id": None,
        "status": "active",
    }
    parent_id = store.insert_opportunity(parent_row)
    parent_row["id"] = parent_id

    instances: list[dict] = []
    failed_dates: list[date] = []
    for row in expand(parent_row, rule, today=today):
        try:
            instances.append({**row, "id": store.insert_opportunity(dict(row))})
        except PersistenceError as exc:
            log.warning("Instance of opportunity %s on %s not stored: %s", parent_id, row["start_date"], exc)
            failed_dates.append(row["start_date"])

    log.info("Created opportunity %s with %d instances (%d failed)",
             parent_id, len(instances), len(failed_dates))
    instances.sort(key=lambda r: r["start_date"])
    return {
        "parent": _row_summary(parent_row),
        "instances": [_row_summary(r) for r in instances],
        "failed_dates": failed_dates,
    }


def _row_summary(row: Mapping[str, Any]) -> dict:
    result = {f: row.get(f) for f in OPPORTUNITY_FIELDS}
    result["recurrence_rule"] = json_parse(row.get("recurrence_rule_json"), None)
    return result


def query_opportunities(
    session: Session, *, on_date: date | None = None, organization: int | None = None,
    area: str | None = None, frequency_type: str | None = None, search: str | None = None,
    include_inactive: bool = False,
) -> list[dict]:
    query = select(Opportunity)
    if not include_inactive:
        query = query.where(Opportunity.status == "active")
    if on_date is not None:
        query = query.where(Opportunity.start_date == on_date)
    if organization is not None:
        query = query.where(Opportunity.organization_id == organization)
    if area:
        query = query.where(func.lower(Opportunity.area) == area.strip().lower())
    if frequency_type:
        if frequency_type.strip().lower() in ("one-time", "once", "none"):
            query = query.where(Opportunity.frequency_type.is_(None))
        else:
            query = query.where(Opportunity.frequency_type == frequency_type.strip().lower())
    if search and search.strip():
        query = query.where(Opportunity.title.icontains(search.strip(), autoescape=True))
    query = query.order_by(Opportunity.start_date.asc(), Opportunity.time.asc(), Opportunity.id.asc())
    return [opportunity_summary(o) for o in session.execute(query).scalars().all()]


def list_instances(session: Session, parent_id: int) -> list[dict]:
    rows = session.execute(
        select(Opportunity).where(Opportunity.parent_id == parent_id)
        .order_by(Opportunity.start_date.asc())
    ).scalars().all()
    return [opportunity_summary(o) for o in rows]


def delete_opportunity(session: Session, opp: Opportunity, *, hard: bool = False) -> dict:
    """Cancel (or, with ``hard``, delete) one row. Generated instances are left as they are."""
    opp_id = opp.id
    if hard:
        session.delete(opp)
    else:
        opp.status = "cancelled"
    session.commit()
    log.info("Opportunity %s %s", opp_id, "deleted" if hard else "cancelled")
    return {"ok": True, "id": opp_id, "hard": hard}


# ---------------------------------------------------------------------------
# Organizations & volunteers
# ---------------------------------------------------------------------------


def create_organization(session: Session, *, org_name: str, email: str,
                        phone: str = "", address: str = "") -> dict | None:
    """Create an organization. Returns None if the email is already registered."""
    email = email.strip().lower()
    if organization_by_email(session, email) is not None:
        return None
    org = Organization(org_name=org_name.strip(), email=email, phone=phone, address=address)
    session.add(org)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return None
    session.refresh(org)
    log.info("Registered organization %s", org.id)
    return organization_summary(org)


def organization_by_email(session: Session, email: str) -> Organization | None:
    return session.execute(
        select(Organization).where(Organization.email == email.strip().lower())
    ).scalars().first()


def volunteer_by_email(session: Session, email: str) -> Volunteer | None:
    return session.execute(
        select(Volunteer).where(Volunteer.email == email.strip().lower())
    ).scalars().first()


def register_volunteer(session: Session, data: Mapping[str, Any]) -> Volunteer | None:
    """Register a volunteer. Returns None if the email is already registered."""
    data = {**data, "waiver_agreed": as_bool(data.get("waiver_agreed"))}
    missing = missing_fields(data, VOLUNTEER_REQUIRED)
    if missing:
        raise InvalidDraftError.for_missing(missing)
    if volunteer_by_email(session, data["email"]) is not None:
        return None
    now = datetime.now(UTC).replace(tzinfo=None)
    vol = Volunteer(
        full_name=data["full_name"].strip(), email=data["email"].strip().lower(),
        phone=data["phone"].strip(), birthdate=data["birthdate"].strip(),
        zipcode=data.get("zipcode") or None, emergency_contact=data.get("emergency_contact") or None,
        waiver_agreed=True, waiver_agreed_at=now,
    )
    session.add(vol)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return None
    session.refresh(vol)
    log.info("Registered volunteer %s", vol.id)
    return vol


def list_volunteers(session: Session) -> list[dict]:
    vols = session.execute(select(Volunteer).order_by(Volunteer.full_name)).scalars().all()
    return [volunteer_admin(v) for v in vols]


# ---------------------------------------------------------------------------
# Signups
# ---------------------------------------------------------------------------


def sign_up(session: Session, opp: Opportunity, volunteer_email: str) -> dict:
    vol = volunteer_by_email(session, volunteer_email)
    if vol is None:
        raise SignupRejected("Volunteer not found", not_found=True)
    if opp.status != "active":
        raise SignupRejected("Opportunity is not active")
    existing = next((s for s in opp.signups if s.volunteer_id == vol.id), None)
    if existing is not None and existing.status != "cancelled":
        raise SignupRejected("Volunteer already signed up")
    taken = sum(1 for s in opp.signups if s.status != "cancelled")
    if taken >= opp.max_capacity:
        raise SignupRejected("Opportunity is full")
    # A cancelled signup is reopened; the (opportunity, volunteer) pair is unique
    if existing is not None:
        signup = existing
        signup.status = "pending"
    else:
        signup = Signup(volunteer_id=vol.id, status="pending")
        opp.signups.append(signup)
    session.commit()
    session.refresh(signup)
    return signup_summary(signup)


def update_signup_status(session: Session, signup_id: int, status: str) -> dict:
    if status not in SIGNUP_STATUSES:
        raise SignupRejected(f"Unknown signup status '{status}'")
    signup = get_entity(session, Signup, signup_id)
    if signup is None:
        raise SignupRejected("Signup not found", not_found=True)
    signup.status = status
    session.commit()
    return signup_summary(signup)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session) -> dict:
    def count(query) -> int:
        return session.execute(query).scalar_one()

    by_status: Counter[str] = Counter(
        session.execute(select(Signup.status)).scalars().all()
    )
    return {
        "organizations": count(select(func.count(Organization.id))),
        "volunteers": count(select(func.count(Volunteer.id))),
        "active_opportunities": count(
            select(func.count(Opportunity.id)).where(Opportunity.status == "active")),
        "recurring_parents": count(
            select(func.count(Opportunity.id)).where(Opportunity.recurrence_rule_json.is_not(None))),
        "generated_instances": count(
            select(func.count(Opportunity.id)).where(Opportunity.parent_id.is_not(None))),
        "signups_by_status": dict(by_status),
    }
