from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from hopedeeds import services
from hopedeeds.config import get_settings
from hopedeeds.db import close_db, init_db, session_generator
from hopedeeds.exporter import EXPORT_MEDIA_TYPE, build_workbook, workbook_bytes
from hopedeeds.models import Opportunity, Organization
from hopedeeds.schemas import (
    CreateOpportunityResult,
    DeleteOpportunity,
    OpportunityCreate,
    OpportunityDetail,
    OpportunityOut,
    OrganizationCreate,
    OrganizationOut,
    SignupCreate,
    SignupOut,
    SignupUpdate,
    StatsOut,
    VolunteerAdminOut,
    VolunteerCreate,
    VolunteerOut,
)
from hopedeeds.store import PersistenceError

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    close_db()


app = FastAPI(
    title="HopeDeeds",
    version="0.1.0",
    description=(
        "Volunteer coordination API. Organizations post opportunities (shifts), "
        "optionally repeating daily, weekly or monthly; volunteers register and sign up. "
        "All endpoints return JSON."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Opportunities", "description": "Create, browse and cancel opportunities and their recurring instances."},
        {"name": "Organizations", "description": "Organizations that post opportunities."},
        {"name": "Volunteers", "description": "Volunteer registration and profiles."},
        {"name": "Signups", "description": "Volunteers joining opportunities."},
        {"name": "Admin", "description": "Admin listings and export. Requires an admin or manager role."},
        {"name": "Stats", "description": "Aggregate counts."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def require_admin(x_user_role: str | None = Header(None)) -> str:
    role = (x_user_role or "").strip().lower()
    if role not in get_settings().admin_roles:
        log.warning("Unauthorized admin access attempt (role=%r)", x_user_role)
        raise HTTPException(403, "Forbidden: Administrator access required.")
    return role


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = services.get_entity(session, model, entity_id)
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=False)
async def health():
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Organizations
# ---------------------------------------------------------------------------


@app.post("/api/organizations", response_model=OrganizationOut, status_code=201,
          tags=["Organizations"], summary="Register an organization")
async def create_organization(body: OrganizationCreate, session: Session = Depends(db_session)):
    result = services.create_organization(
        session, org_name=body.org_name, email=body.email, phone=body.phone, address=body.address,
    )
    if result is None:
        raise HTTPException(409, "This email address is already registered.")
    return result


@app.get("/api/organization/{email}", response_model=OrganizationOut,
         tags=["Organizations"], summary="Get an organization profile by email")
async def get_organization(email: str, session: Session = Depends(db_session)):
    org = services.organization_by_email(session, email)
    if org is None:
        raise HTTPException(404, "Organization not found")
    return services.organization_summary(org)


# ---------------------------------------------------------------------------
# Routes: Opportunities
# ---------------------------------------------------------------------------


@app.post("/api/org/{org_id}/opportunities", response_model=CreateOpportunityResult, status_code=201,
          tags=["Opportunities"], summary="Create an opportunity and any recurring instances")
async def create_opportunity(org_id: int, body: OpportunityCreate, session: Session = Depends(db_session)):
    _get_or_404(session, Organization, org_id, "Organization")
    draft = body.model_dump(exclude={"recurrence"})
    rule = body.recurrence.model_dump() if body.recurrence else None
    try:
        return services.create_opportunity_with_recurrence(session, org_id, draft, rule)
    except services.InvalidDraftError as exc:
        raise HTTPException(400, str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(500, "Failed to create opportunity.") from exc


@app.get("/api/opportunities", response_model=list[OpportunityOut],
         tags=["Opportunities"], summary="List active opportunities ordered by date")
async def list_opportunities(
    on_date: date | None = Query(None, alias="date", description="Only opportunities on this date"),
    organization: int | None = Query(None, description="Organization id"),
    area: str | None = Query(None, description="Area, case-insensitive"),
    frequency_type: str | None = Query(None, description="daily, weekly, monthly or one-time"),
    search: str | None = Query(None, description="Title contains, case-insensitive"),
    session: Session = Depends(db_session),
):
    return services.query_opportunities(
        session, on_date=on_date, organization=organization, area=area,
        frequency_type=frequency_type, search=search,
    )


@app.get("/api/opportunities/{opportunity_id}", response_model=OpportunityDetail,
         tags=["Opportunities"], summary="Get an opportunity with its signed-up volunteers")
async def get_opportunity(opportunity_id: int, session: Session = Depends(db_session)):
    opp = _get_or_404(session, Opportunity, opportunity_id, "Opportunity")
    return services.opportunity_detail(session, opp)


@app.get("/api/opportunities/{opportunity_id}/instances", response_model=list[OpportunityOut],
         tags=["Opportunities"], summary="List the instances generated from a recurring opportunity")
async def list_instances(opportunity_id: int, session: Session = Depends(db_session)):
    _get_or_404(session, Opportunity, opportunity_id, "Opportunity")
    return services.list_instances(session, opportunity_id)


@app.delete("/api/opportunities/{opportunity_id}", tags=["Opportunities"],
            summary="Cancel an opportunity (hard=true deletes the row); instances are not touched")
async def delete_opportunity(
    opportunity_id: int,
    body: DeleteOpportunity | None = None,
    hard: bool = Query(False),
    session: Session = Depends(db_session),
):
    opp = _get_or_404(session, Opportunity, opportunity_id, "Opportunity")
    if body is not None and body.org_id is not None and body.org_id != opp.organization_id:
        raise HTTPException(403, "Opportunity belongs to another organization")
    return services.delete_opportunity(session, opp, hard=hard)


# ---------------------------------------------------------------------------
# Routes: Volunteers
# ---------------------------------------------------------------------------


@app.post("/api/volunteers", response_model=VolunteerOut, status_code=201,
          tags=["Volunteers"], summary="Register a volunteer")
async def register_volunteer(body: VolunteerCreate, session: Session = Depends(db_session)):
    try:
        vol = services.register_volunteer(session, body.model_dump())
    except services.InvalidDraftError as exc:
        raise HTTPException(400, str(exc)) from exc
    if vol is None:
        raise HTTPException(409, "This email address is already registered. Please log in.")
    return services.volunteer_public(vol)


@app.get("/api/volunteer/{email}", response_model=VolunteerOut,
         tags=["Volunteers"], summary="Get a volunteer profile by email")
async def get_volunteer(email: str, session: Session = Depends(db_session)):
    vol = services.volunteer_by_email(session, email)
    if vol is None:
        raise HTTPException(404, "Volunteer not found.")
    return services.volunteer_public(vol)


# ---------------------------------------------------------------------------
# Routes: Signups
# ---------------------------------------------------------------------------


@app.post("/api/opportunities/{opportunity_id}/signups", response_model=SignupOut, status_code=201,
          tags=["Signups"], summary="Sign a volunteer up for an opportunity")
async def create_signup(opportunity_id: int, body: SignupCreate, session: Session = Depends(db_session)):
    opp = _get_or_404(session, Opportunity, opportunity_id, "Opportunity")
    try:
        return services.sign_up(session, opp, body.volunteer_email)
    except services.SignupRejected as exc:
        raise HTTPException(404 if exc.not_found else 409, str(exc)) from exc


@app.put("/api/signups/{signup_id}", response_model=SignupOut,
         tags=["Signups"], summary="Change a signup's status")
async def update_signup(signup_id: int, body: SignupUpdate, session: Session = Depends(db_session)):
    try:
        return services.update_signup_status(session, signup_id, body.status)
    except services.SignupRejected as exc:
        raise HTTPException(404 if exc.not_found else 409, str(exc)) from exc


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.get("/api/admin/volunteers", response_model=list[VolunteerAdminOut],
         tags=["Admin"], summary="List all volunteers")
async def admin_volunteers(_: str = Depends(require_admin), session: Session = Depends(db_session)):
    return services.list_volunteers(session)


@app.get("/api/admin/opportunities", response_model=list[OpportunityOut],
         tags=["Admin"], summary="List all opportunities, including cancelled ones")
async def admin_opportunities(_: str = Depends(require_admin), session: Session = Depends(db_session)):
    return services.query_opportunities(session, include_inactive=True)


@app.get("/api/admin/export", tags=["Admin"], summary="Download volunteers and opportunities as XLSX")
async def admin_export(_: str = Depends(require_admin), session: Session = Depends(db_session)):
    content = workbook_bytes(build_workbook(session))
    return Response(
        content, media_type=EXPORT_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="hopedeeds_export.xlsx"'},
    )


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Get aggregate counts")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("hopedeeds.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
