# carehome_api/services/approval.py
"""
Timesheet status machine.

    DRAFT -> SUBMITTED -> FORWARDED
    SUBMITTED -> RETURNED -> SUBMITTED

Workers submit a whole month. Supervisors return or approve their own
site's portion. A worker's month is forwarded once every site touching it
has an APPROVED review; the promotion is decided in the same transaction as
the approval that completes it, with the worker's month rows locked in id
order.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import update

from carehome_api.common.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from carehome_api.common.months import parse_month
from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.models.timesheet import (
    EDITABLE_STATUSES, FORWARDED, RETURNED, SUBMITTED,
    REVIEW_APPROVED, REVIEW_PENDING, REVIEW_RETURNED,
    Timesheet, TimesheetEntry, TimesheetSiteReview,
)
from carehome_api.services import timesheet_store as store
from carehome_api.services.membership import Actor

log = logging.getLogger(__name__)


def sites_touching(ts: Timesheet) -> Set[int]:
    """The timesheet's own site plus any site its entries are routed to."""
    rows = db.session.query(TimesheetEntry.site_id).filter(TimesheetEntry.timesheet_id == ts.id).distinct().all()
    return {ts.site_id} | {r[0] for r in rows if r[0] is not None}


def _review(ts_id: int, site_id: int) -> TimesheetSiteReview:
    rv = TimesheetSiteReview.query.filter_by(timesheet_id=ts_id, site_id=site_id).first()
    if rv is None:
        rv = TimesheetSiteReview(timesheet_id=ts_id, site_id=site_id, status=REVIEW_PENDING)
        db.session.add(rv)
    return rv


def _transition(ids: List[int], from_statuses: Tuple[str, ...], **values) -> int:
    res = db.session.execute(
        update(Timesheet)
        .where(Timesheet.id.in_(ids), Timesheet.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def _lock_month(worker_id: int, month) -> List[Timesheet]:
    return (
        Timesheet.query.filter_by(worker_id=worker_id, month_date=month)
        .order_by(Timesheet.id.asc())
        .with_for_update()
        .populate_existing()
        .all()
    )


def _resolve_site(ts: Timesheet, site_id: Optional[int]) -> int:
    if site_id is None:
        site_id = ts.site_id
    else:
        try:
            site_id = int(site_id)
        except (TypeError, ValueError):
            raise ValidationError("site_id must be an integer", {"site_id": site_id})
    if site_id not in sites_touching(ts):
        raise ValidationError("Timesheet has no work at this site", {"timesheet_id": ts.id, "site_id": site_id})
    return site_id


# ---------- worker ----------

def submit_month(actor: Actor, worker_id: int, month) -> List[Timesheet]:
    """Move every DRAFT/RETURNED timesheet of the worker's month to SUBMITTED, all or none."""
    month = parse_month(month)
    if actor.user_id != worker_id:
        raise Forbidden("Workers submit their own timesheets", {"worker_id": worker_id})

    owned = _lock_month(worker_id, month)
    if not owned:
        raise NotFound("No timesheets for this month", {"month": str(month)})
    pending = [ts for ts in owned if store.is_editable(ts)]
    if not pending:
        raise InvalidTransition("Month already submitted", {"statuses": sorted({ts.status for ts in owned})})

    ids = [ts.id for ts in pending]
    now = datetime.utcnow()
    moved = _transition(ids, EDITABLE_STATUSES, status=SUBMITTED, submitted_at=now, updated_at=now)
    if moved != len(ids):
        db.session.rollback()
        raise InvalidTransition("Timesheet status changed, reload and retry", {"timesheet_ids": ids})

    for ts in pending:
        # resubmitted content needs a fresh decision from every site
        for site_id in sites_touching(ts):
            rv = _review(ts.id, site_id)
            rv.status = REVIEW_PENDING
            rv.acted_by_user_id = None
            rv.acted_at = None
        store.record_action(ts, "submitted", actor.user_id)
    db.session.commit()

    for ts in pending:
        db.session.refresh(ts)
    log.info("worker %s submitted %s timesheet(s) for %s", worker_id, len(pending), month)
    return pending


# ---------- supervisor ----------

def return_timesheet(actor: Actor, timesheet_id: int, site_id: Optional[int] = None, comment: Optional[str] = None) -> Timesheet:
    ts = store.get_timesheet(timesheet_id)
    site_id = _resolve_site(ts, site_id)
    if not actor.can_supervise(site_id):
        raise Forbidden("Site is outside your scope", {"site_id": site_id})

    now = datetime.utcnow()
    if not _transition([ts.id], (SUBMITTED,), status=RETURNED, updated_at=now):
        status = db.session.query(Timesheet.status).filter(Timesheet.id == ts.id).scalar()
        db.session.rollback()
        raise InvalidTransition(f"Cannot return timesheet in '{status}' status", {"timesheet_id": ts.id})

    rv = _review(ts.id, site_id)
    rv.status = REVIEW_RETURNED
    rv.acted_by_user_id = actor.user_id
    rv.acted_at = now
    rv.comment = (comment or "").strip() or None
    store.record_action(ts, "returned", actor.user_id, comment=rv.comment, site_id=site_id)
    db.session.commit()
    db.session.refresh(ts)
    log.info("timesheet %s returned by %s (site %s)", ts.id, actor.user_id, site_id)
    return ts


def approve_site(actor: Actor, timesheet_id: int, site_id: Optional[int] = None) -> Dict:
    """
    Record the site's approval and forward the worker's month when it was the
    last one outstanding. Returns {"timesheet_id", "site_id", "forwarded", "forwarded_ids"}.
    """
    ts = store.get_timesheet(timesheet_id)
    site_id = _resolve_site(ts, site_id)
    if not actor.can_supervise(site_id):
        raise Forbidden("Site is outside your scope", {"site_id": site_id})

    group = _lock_month(ts.worker_id, ts.month_date)
    now = datetime.utcnow()
    if not _transition([ts.id], (SUBMITTED,), updated_at=now):
        status = db.session.query(Timesheet.status).filter(Timesheet.id == ts.id).scalar()
        db.session.rollback()
        raise InvalidTransition(f"Cannot approve timesheet in '{status}' status", {"timesheet_id": ts.id})

    rv = _review(ts.id, site_id)
    if rv.status == REVIEW_APPROVED:
        db.session.rollback()
        raise InvalidTransition("Site portion already approved", {"timesheet_id": ts.id, "site_id": site_id})
    rv.status = REVIEW_APPROVED
    rv.acted_by_user_id = actor.user_id
    rv.acted_at = now
    store.record_action(ts, "site_approved", actor.user_id, site_id=site_id)
    db.session.flush()

    forwarded_ids = _forward_if_complete(actor, group, now)
    db.session.commit()
    log.info("timesheet %s site %s approved by %s; forwarded=%s", ts.id, site_id, actor.user_id, forwarded_ids)
    return {
        "timesheet_id": ts.id,
        "site_id": site_id,
        "forwarded": ts.id in forwarded_ids,
        "forwarded_ids": forwarded_ids,
    }


def outstanding_sites(group: List[Timesheet]) -> List[Tuple[int, int]]:
    """(timesheet_id, site_id) pairs still lacking an APPROVED review."""
    missing = []
    for ts in group:
        approved = {
            rv.site_id
            for rv in TimesheetSiteReview.query.filter_by(timesheet_id=ts.id, status=REVIEW_APPROVED).all()
        }
        for site_id in sorted(sites_touching(ts)):
            if site_id not in approved:
                missing.append((ts.id, site_id))
    return missing


def _forward_if_complete(actor: Actor, group: List[Timesheet], now: datetime) -> List[int]:
    active = [ts for ts in group if ts.status != FORWARDED]
    if not active or any(ts.status != SUBMITTED for ts in active):
        return []
    if outstanding_sites(active):
        return []

    ids = [ts.id for ts in active]
    if _transition(ids, (SUBMITTED,), status=FORWARDED, forwarded_at=now, updated_at=now) != len(ids):
        db.session.rollback()
        raise InvalidTransition("Timesheet status changed, reload and retry", {"timesheet_ids": ids})
    for ts in active:
        store.record_action(ts, "forwarded", actor.user_id)
    return ids


def approve_all(actor: Actor, site_id: int, month, confirm: bool = False) -> Dict:
    """
    Approve every submitted timesheet at the site. When some rostered workers
    have not submitted yet the caller must pass confirm=True.
    """
    from carehome_api.services.completion import site_progress  # circular

    month = parse_month(month)
    if not actor.can_supervise(site_id):
        raise Forbidden("Site is outside your scope", {"site_id": site_id})

    progress = site_progress(actor, site_id, month)
    if progress["submitted_count"] < progress["total_required"] and not confirm:
        raise InvalidTransition(
            "Not every rostered worker has submitted; confirm to continue",
            {"progress": progress},
            code="CONFIRM_REQUIRED",
        )

    candidates = (
        Timesheet.query.filter_by(site_id=site_id, month_date=month, status=SUBMITTED)
        .order_by(Timesheet.id.asc())
        .all()
    )
    approved, forwarded = [], []
    for ts in candidates:
        rv = TimesheetSiteReview.query.filter_by(timesheet_id=ts.id, site_id=site_id).first()
        if rv is not None and rv.status == REVIEW_APPROVED:
            continue
        out = approve_site(actor, ts.id, site_id)
        approved.append(ts.id)
        forwarded.extend(i for i in out["forwarded_ids"] if i not in forwarded)
    return {"approved_ids": approved, "forwarded_ids": forwarded, "progress": progress}


# ---------- company admin ----------

def admin_delete(actor: Actor, timesheet_id: int) -> Dict:
    """
    Administrative removal of a timesheet and its entries. Company admins may
    only remove FORWARDED timesheets of their company; platform admins any.
    """
    ts = store.get_timesheet(timesheet_id)
    site = db.session.get(Site, ts.site_id)
    if not actor.is_admin:
        if site is None or not actor.can_oversee_company(site.company_id):
            raise Forbidden("Timesheet is outside your company", {"timesheet_id": ts.id})
        if ts.status != FORWARDED:
            raise InvalidTransition(f"Cannot delete timesheet in '{ts.status}' status", {"timesheet_id": ts.id})

    detail = {
        "timesheet_id": ts.id,
        "status": ts.status,
        "entries": len(ts.entries),
        "reviews": len(ts.reviews),
    }
    audit = store.record_action(ts, "deleted", actor.user_id, detail=detail)
    audit.timesheet_id = None
    # loaded entries and reviews go with the parent through the relationship cascade
    db.session.delete(ts)
    db.session.commit()
    log.warning("timesheet %s deleted by %s (%s)", timesheet_id, actor.user_id, detail)
    return detail
