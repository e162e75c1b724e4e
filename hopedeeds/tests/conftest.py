from __future__ import annotations

import os

os.environ["HOPEDEEDS_DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hopedeeds.config import get_settings
from hopedeeds.models import Base, Organization

get_settings.cache_clear()


@pytest.fixture()
def engine():
    """In-memory SQLite shared across connections via StaticPool."""
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def org(session) -> Organization:
    org = Organization(org_name="Food Bank", email="food@bank.org", phone="555-0100", address="1 Main St")
    session.add(org)
    session.commit()
    return org
