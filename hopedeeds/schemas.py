"""Pydantic request/response schemas for the HopeDeeds API."""
from __future__ import annotations

from datetime import date
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field


class RecurrenceRuleIn(BaseModel):
    # Left as a plain string: unsupported types mean "no recurrence", not a 422
    type: str
    days: list[str] | None = None
    count: int | None = None
    bound_by: Literal["count", "horizon", "until"] | None = None
    horizon_months: int | None = Field(None, ge=0)
    until: date | None = None


class OpportunityCreate(BaseModel):
    # Required fields are checked by the service so the error names all of them
    title: str = ""
    description: str = ""
    start_date: date | None = None
    time: str = Field("", validation_alias=AliasChoices("time", "start_time"))
    end_time: str | None = None
    duration: float | str | None = None
    area: str | None = None
    max_capacity: int | None = Field(None, ge=1)
    special_type: str | None = None
    recur_until: date | None = None
    recurrence: RecurrenceRuleIn | None = Field(
        None, validation_alias=AliasChoices("recurrence", "recurrence_rule"))


class OpportunityOut(BaseModel):
    id: int
    organization_id: int
    title: str
    description: str
    start_date: date
    time: str
    end_time: str | None = None
    duration: str | None = None
    area: str | None = None
    max_capacity: int
    special_type: str | None = None
    frequency_type: str | None = None
    recurrence_rule: dict[str, Any] | None = None
    recur_until: date | None = None
    parent_id: int | None = None
    status: str


class SignupVolunteerOut(BaseModel):
    signup_id: int
    volunteer_id: int
    full_name: str
    email: str
    status: str


class OpportunityDetail(OpportunityOut):
    volunteers: list[SignupVolunteerOut] = []
    instance_count: int = 0


class CreateOpportunityResult(BaseModel):
    parent: OpportunityOut
    instances: list[OpportunityOut]
    failed_dates: list[date] = []


class DeleteOpportunity(BaseModel):
    org_id: int | None = None


class OrganizationCreate(BaseModel):
    org_name: str
    email: str
    phone: str = ""
    address: str = ""


class OrganizationOut(BaseModel):
    id: int
    org_name: str
    email: str
    phone: str
    address: str


class VolunteerCreate(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    birthdate: str = ""
    zipcode: str | None = None
    emergency_contact: str | None = None
    # The registration form posts "true"/"false" strings
    waiver_agreed: bool | str = False


class VolunteerOut(BaseModel):
    full_name: str
    email: str
    phone: str
    birthdate: str
    zipcode: str | None = None
    emergency_contact: str | None = None
    waiver_agreed: bool
    waiver_agreed_at: str | None = None


class VolunteerAdminOut(VolunteerOut):
    id: int
    created_at: str | None = None
    signup_count: int = 0


class SignupCreate(BaseModel):
    volunteer_email: str


class SignupUpdate(BaseModel):
    status: Literal["pending", "confirmed", "cancelled"]


class SignupOut(BaseModel):
    id: int
    opportunity_id: int
    volunteer_id: int
    status: str


class StatsOut(BaseModel):
    organizations: int
    volunteers: int
    active_opportunities: int
    recurring_parents: int
    generated_instances: int
    signups_by_status: dict[str, int]
