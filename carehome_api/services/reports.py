# carehome_api/services/reports.py
"""Discrepancy and completion workbooks for supervisors and the office."""
from __future__ import annotations

import io
import logging
from typing import Dict, List, Optional, Tuple

import openpyxl
from openpyxl.styles import Font

from carehome_api.common.errors import Forbidden, NotFound
from carehome_api.common.months import month_key, parse_month
from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.models.rota import ShiftType
from carehome_api.models.timesheet import Timesheet
from carehome_api.services import completion
from carehome_api.services.membership import Actor, MembershipResolver, SqlMembershipResolver
from carehome_api.services.reconciliation import compute_mismatches, tally
from carehome_api.services.schedule_source import shift_kinds
from carehome_api.services import timesheet_store as store

log = logging.getLogger(__name__)

TALLY_HEADERS = ["Total hours", "Sleep-ins", "Annual leave", "Sickness", "Waking nights", "Other leave"]


def _tally_cells(t: Dict) -> List:
    return [t["total_hours"], t["sleep"], t["annual_leave"], t["sickness"], t["waking_night"], t["other_leave"]]


def _sheet(wb, title: str, headers: List[str], first: bool = False):
    ws = wb.active if first else wb.create_sheet()
    ws.title = title
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A2"
    return ws


def _save(wb) -> bytes:
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def discrepancy_workbook(actor: Actor, site_id: int, month,
                         resolver: Optional[MembershipResolver] = None) -> Tuple[bytes, str]:
    """
    One row per timesheet at the site (status, tallies, mismatch count) plus a
    sheet listing every mismatched day against the live rota.
    """
    month = parse_month(month)
    resolver = resolver or SqlMembershipResolver()
    site = db.session.get(Site, site_id)
    if not site:
        raise NotFound("Site not found", {"site_id": site_id})
    if not (actor.can_supervise(site.id) or actor.can_oversee_company(site.company_id)):
        raise Forbidden("Site is outside your scope", {"site_id": site_id})

    kinds = shift_kinds(site.company_id)
    codes = {s.id: s.code for s in ShiftType.query.filter_by(company_id=site.company_id).all()}
    timesheets = (
        Timesheet.query.filter_by(site_id=site.id, month_date=month)
        .order_by(Timesheet.worker_id.asc())
        .all()
    )

    wb = openpyxl.Workbook()
    summary = _sheet(wb, "Summary", ["Worker", "Status"] + TALLY_HEADERS + ["Mismatched days"], first=True)
    detail = _sheet(wb, "Mismatches", ["Worker", "Day", "Reason", "Timesheet shift", "Timesheet hours",
                                        "Rota shift", "Rota hours"])
    for ts in timesheets:
        name = resolver.lookup_display_name(ts.worker_id)
        mismatches = compute_mismatches(ts)
        t = tally(store.list_entries(ts), kinds).as_dict()
        summary.append([name, ts.status] + _tally_cells(t) + [len(mismatches)])
        for m in mismatches:
            d = m.as_dict()
            detail.append([
                name, m.day, m.reason,
                codes.get(m.timesheet_shift_type_id), d["timesheet_hours"],
                codes.get(m.rota_shift_type_id), d["rota_hours"],
            ])

    log.info("discrepancy report site=%s month=%s rows=%s", site.id, month, len(timesheets))
    return _save(wb), f"discrepancies_{site.id}_{month_key(month)}.xlsx"


def completion_workbook(actor: Actor, company_id: int, month,
                        resolver: Optional[MembershipResolver] = None) -> Tuple[bytes, str]:
    month = parse_month(month)
    resolver = resolver or SqlMembershipResolver()
    progress = completion.company_progress(actor, company_id, month, resolver)
    rows = completion.company_summary(actor, company_id, month, resolver=resolver)
    names = {s.id: s.name for s in Site.query.filter_by(company_id=company_id).all()}

    wb = openpyxl.Workbook()
    ws = _sheet(wb, "Progress", ["Month", "Required", "Submitted", "Forwarded"], first=True)
    ws.append([progress["month"], progress["total_required"], progress["submitted_count"], progress["forwarded_count"]])

    missing = _sheet(wb, "Missing", ["Worker", "Missing sites"])
    for row in progress["missing"]:
        missing.append([row["display_name"], ", ".join(names.get(s, str(s)) for s in row["missing_site_ids"])])

    fwd = _sheet(wb, "Forwarded", ["Worker", "Type", "Sites"] + TALLY_HEADERS + ["Mismatched days"])
    for row in rows:
        sites = ", ".join(n or "" for n in row["site_names"]) if row["row_type"] == "floating" else row["site_name"]
        fwd.append([row["display_name"], row["classification"], sites] + _tally_cells(row["tally"])
                   + [row["mismatch_count"]])

    return _save(wb), f"completion_{company_id}_{month_key(month)}.xlsx"
