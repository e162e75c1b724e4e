"""Persistence collaborator for opportunity rows."""
from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hopedeeds.models import Opportunity

log = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A row could not be written to the store."""


class OpportunityStore(Protocol):
    def insert_opportunity(self, row: dict[str, Any]) -> int: ...


class SqlOpportunityStore:
    """Inserts one row per call and commits it immediately.

    Rows already written stay written when a later insert fails.
    """

    def __init__(self, session: Session):
        self.session = session

    def insert_opportunity(self, row: dict[str, Any]) -> int:
        opp = Opportunity(**row)
        self.session.add(opp)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.warning("Insert failed for %r on %s: %s", row.get("title"), row.get("start_date"), exc)
            raise PersistenceError(str(exc)) from exc
        return opp.id
