from __future__ import annotations

import io
import logging
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from sqlalchemy.orm import Session

from hopedeeds import services

log = logging.getLogger(__name__)

EXPORT_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, key) per sheet, in column order
_VOLUNTEER_COLS = (
    ("ID", "id"), ("Full name", "full_name"), ("Email", "email"), ("Phone", "phone"),
    ("Birthdate", "birthdate"), ("Zipcode", "zipcode"), ("Emergency contact", "emergency_contact"),
    ("Waiver agreed", "waiver_agreed"), ("Waiver agreed at", "waiver_agreed_at"),
    ("Registered", "created_at"), ("Signups", "signup_count"),
)
_OPPORTUNITY_COLS = (
    ("ID", "id"), ("Organization", "organization_id"), ("Title", "title"),
    ("Date", "start_date"), ("Time", "time"), ("End time", "end_time"),
    ("Duration", "duration"), ("Area", "area"), ("Capacity", "max_capacity"),
    ("Schedule", "frequency_type"), ("Parent", "parent_id"), ("Status", "status"),
    ("Special type", "special_type"), ("Description", "description"), ("Until", "recur_until"),
)

_HEADER_FONT = Font(bold=True, color="FFFFFF")
_HEADER_FILL = PatternFill("solid", fgColor="1F4E78")


def _write_sheet(ws, columns: tuple[tuple[str, str], ...], rows: list[dict]) -> None:
    ws.append([header for header, _ in columns])
    for cell in ws[1]:
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center")
    for row in rows:
        ws.append([row.get(key) for _, key in columns])
    for idx, (header, key) in enumerate(columns, start=1):
        width = max([len(header)] + [len(str(r.get(key) or "")) for r in rows])
        ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = min(width + 2, 60)
    ws.freeze_panes = "A2"


def build_workbook(session: Session) -> Workbook:
    """Admin workbook with one sheet of volunteers and one of all opportunities."""
    wb = Workbook()
    volunteers = wb.active
    volunteers.title = "Volunteers"
    _write_sheet(volunteers, _VOLUNTEER_COLS, services.list_volunteers(session))

    opportunities = wb.create_sheet("Opportunities")
    _write_sheet(opportunities, _OPPORTUNITY_COLS,
                 services.query_opportunities(session, include_inactive=True))
    return wb


def workbook_bytes(wb: Workbook) -> bytes:
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_xlsx(session: Session, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    build_workbook(session).save(path)
    log.info("Exported workbook to %s", path)
    return path
