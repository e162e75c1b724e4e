from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(50), default="")
    address: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    opportunities: Mapped[list[Opportunity]] = relationship("Opportunity", back_populates="organization")


class Volunteer(Base):
    __tablename__ = "volunteers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    birthdate: Mapped[str] = mapped_column(String(20), nullable=False)
    zipcode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    emergency_contact: Mapped[str | None] = mapped_column(String(300), nullable=True)
    waiver_agreed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    waiver_agreed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    signups: Mapped[list[Signup]] = relationship("Signup", back_populates="volunteer", cascade="all, delete-orphan")


class Opportunity(Base):
    __tablename__ = "opportunities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    time: Mapped[str] = mapped_column(String(20), nullable=False)  # "HH:MM", not validated
    end_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    duration: Mapped[str | None] = mapped_column(String(50), nullable=True)  # "2", "1.5" or free text like "1h"
    area: Mapped[str | None] = mapped_column(String(200), nullable=True)
    max_capacity: Mapped[int] = mapped_column(Integer, default=10)
    special_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    frequency_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # parent's rule type, copied to instances
    recurrence_rule_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    recur_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    # No FK constraint: instances outlive a hard-deleted parent
    parent_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active | cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    organization: Mapped[Organization] = relationship("Organization", back_populates="opportunities")
    signups: Mapped[list[Signup]] = relationship("Signup", back_populates="opportunity", cascade="all, delete-orphan")


class Signup(Base):
    __tablename__ = "signups"
    __table_args__ = (UniqueConstraint("opportunity_id", "volunteer_id", name="uq_signup_opportunity_volunteer"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    opportunity_id: Mapped[int] = mapped_column(Integer, ForeignKey("opportunities.id"), nullable=False)
    volunteer_id: Mapped[int] = mapped_column(Integer, ForeignKey("volunteers.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending | confirmed | cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    opportunity: Mapped[Opportunity] = relationship("Opportunity", back_populates="signups")
    volunteer: Mapped[Volunteer] = relationship("Volunteer", back_populates="signups")
