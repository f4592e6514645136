# carehome_api/services/completion.py
"""
Submission progress for a site (supervisor) or a whole company (office).

Required workers come from the live rota; progress is recomputed on every
call and never cached.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from carehome_api.common.errors import Forbidden, NotFound
from carehome_api.common.months import month_key, parse_month
from carehome_api.extensions import db
from carehome_api.models.master import Company, Site
from carehome_api.models.timesheet import FORWARDED, SUBMITTED_STATUSES, Timesheet
from carehome_api.services.membership import Actor, Fixed, Floating, MembershipResolver, SqlMembershipResolver
from carehome_api.services.reconciliation import Tally, compute_mismatches, tally
from carehome_api.services.schedule_source import list_schedule_entries, shift_kinds
from carehome_api.services import timesheet_store as store

log = logging.getLogger(__name__)

WorkerSites = Dict[int, Set[int]]


def required_sites(month: date, site_ids: Iterable[int]) -> WorkerSites:
    out: WorkerSites = {}
    for s in list_schedule_entries(None, None, month, site_ids=site_ids):
        out.setdefault(s.worker_id, set()).add(s.site_id)
    return out


def timesheet_sites(month: date, site_ids: Iterable[int], statuses) -> WorkerSites:
    ids = list(site_ids)
    out: WorkerSites = {}
    if not ids:
        return out
    rows = (
        db.session.query(Timesheet.worker_id, Timesheet.site_id)
        .filter(Timesheet.month_date == month, Timesheet.site_id.in_(ids), Timesheet.status.in_(statuses))
        .all()
    )
    for worker_id, site_id in rows:
        out.setdefault(worker_id, set()).add(site_id)
    return out


def compute_progress(required: WorkerSites, submitted: WorkerSites, forwarded: WorkerSites) -> Dict:
    """
    A worker counts as submitted (or forwarded) only when every site they
    were rostered at is covered. The missing list names only the sites still
    outstanding for each worker.
    """
    def covered(stage: WorkerSites, worker_id: int, sites: Set[int]) -> bool:
        return sites <= stage.get(worker_id, set())

    missing = []
    for worker_id in sorted(required):
        gap = required[worker_id] - submitted.get(worker_id, set())
        if gap:
            missing.append({"worker_id": worker_id, "missing_site_ids": sorted(gap)})

    return {
        "total_required": len(required),
        "submitted_count": sum(1 for w, s in required.items() if covered(submitted, w, s)),
        "forwarded_count": sum(1 for w, s in required.items() if covered(forwarded, w, s)),
        "missing": missing,
    }


def _progress(site_ids: List[int], month: date, resolver: MembershipResolver) -> Dict:
    required = required_sites(month, site_ids)
    submitted = timesheet_sites(month, site_ids, SUBMITTED_STATUSES)
    forwarded = timesheet_sites(month, site_ids, (FORWARDED,))
    out = compute_progress(required, submitted, forwarded)
    log.debug("progress %s sites=%s required=%s submitted=%s", month, site_ids, len(required), len(submitted))
    for row in out["missing"]:
        row["display_name"] = resolver.lookup_display_name(row["worker_id"])
    out["month"] = month_key(month)
    return out


def site_progress(actor: Actor, site_id: int, month, resolver: Optional[MembershipResolver] = None) -> Dict:
    month = parse_month(month)
    site = db.session.get(Site, site_id)
    if not site:
        raise NotFound("Site not found", {"site_id": site_id})
    if not (actor.can_supervise(site.id) or actor.can_oversee_company(site.company_id)):
        raise Forbidden("Site is outside your scope", {"site_id": site_id})
    out = _progress([site.id], month, resolver or SqlMembershipResolver())
    out["site_id"] = site.id
    return out


def _company_sites(actor: Actor, company_id: int) -> List[int]:
    if not db.session.get(Company, company_id):
        raise NotFound("Company not found", {"company_id": company_id})
    if not actor.can_oversee_company(company_id):
        raise Forbidden("Company is outside your scope", {"company_id": company_id})
    return [s.id for s in Site.query.filter_by(company_id=company_id).order_by(Site.id).all()]


def company_progress(actor: Actor, company_id: int, month, resolver: Optional[MembershipResolver] = None) -> Dict:
    month = parse_month(month)
    out = _progress(_company_sites(actor, company_id), month, resolver or SqlMembershipResolver())
    out["company_id"] = company_id
    return out


def company_summary(actor: Actor, company_id: int, month, site_id: Optional[int] = None,
                    resolver: Optional[MembershipResolver] = None) -> List[Dict]:
    """
    Forwarded timesheets as report rows. Floating workers get one synthetic
    row summing their per-site timesheets.
    """
    month = parse_month(month)
    resolver = resolver or SqlMembershipResolver()
    site_ids = _company_sites(actor, company_id)
    if site_id is not None:
        site_ids = [s for s in site_ids if s == int(site_id)]

    q = (
        Timesheet.query.filter(Timesheet.month_date == month, Timesheet.status == FORWARDED)
        .filter(Timesheet.site_id.in_(site_ids or [-1]))
        .order_by(Timesheet.worker_id, Timesheet.site_id)
    )
    kinds = shift_kinds(company_id)
    site_names = {s.id: s.name for s in Site.query.filter(Site.id.in_(site_ids or [-1])).all()}
    classes: Dict[int, object] = {}
    floating_rows: Dict[int, Dict] = {}
    rows: List[Dict] = []

    for ts in q.all():
        if ts.worker_id not in classes:
            classes[ts.worker_id] = resolver.resolve_worker_classification(ts.worker_id, month)
        cls = classes[ts.worker_id]
        t = tally(store.list_entries(ts), kinds)
        mismatches = len(compute_mismatches(ts))

        if isinstance(cls, Floating):
            row = floating_rows.get(ts.worker_id)
            if row is None:
                row = {
                    "row_type": "floating",
                    "classification": "FLOATING",
                    "worker_id": ts.worker_id,
                    "display_name": resolver.lookup_display_name(ts.worker_id),
                    "timesheet_ids": [],
                    "site_ids": [],
                    "site_names": [],
                    "_tally": Tally(),
                    "mismatch_count": 0,
                }
                floating_rows[ts.worker_id] = row
                rows.append(row)
            row["timesheet_ids"].append(ts.id)
            row["site_ids"].append(ts.site_id)
            row["site_names"].append(site_names.get(ts.site_id))
            row["_tally"].add(t)
            row["mismatch_count"] += mismatches
        elif isinstance(cls, Fixed):
            rows.append({
                "row_type": "timesheet",
                "classification": "FIXED",
                "worker_id": ts.worker_id,
                "display_name": resolver.lookup_display_name(ts.worker_id),
                "timesheet_id": ts.id,
                "site_id": ts.site_id,
                "site_name": site_names.get(ts.site_id),
                "forwarded_at": ts.forwarded_at.isoformat() if ts.forwarded_at else None,
                "tally": t.as_dict(),
                "mismatch_count": mismatches,
            })
        else:
            raise TypeError(f"unknown classification {cls!r}")

    for row in floating_rows.values():
        row["tally"] = row.pop("_tally").as_dict()
    rows.sort(key=lambda r: ((r["display_name"] or "").lower(), r["worker_id"]))
    return rows
