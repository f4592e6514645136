# carehome_api/services/timesheet_store.py
"""
Timesheet persistence: one timesheet per (site, worker, month), one entry
per day. Every entry write first "claims" the parent row with a conditional
UPDATE guarded by the editable statuses, so the status that matters is the
one persisted at the instant of the write.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from carehome_api.common.errors import Forbidden, NotEditable, NotFound, ValidationError
from carehome_api.common.months import days_in_month, parse_month
from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.models.rota import Rota, RotaEntry, ShiftType
from carehome_api.models.timesheet import (
    DRAFT, EDITABLE_STATUSES, SOURCE_MANUAL,
    Timesheet, TimesheetAction, TimesheetEntry,
)
from carehome_api.services.membership import Actor, Fixed, Floating, MembershipResolver, SqlMembershipResolver

log = logging.getLogger(__name__)


# ---------- lock flags ----------

def is_editable(ts: Optional[Timesheet]) -> bool:
    return ts is not None and ts.status in EDITABLE_STATUSES


def all_locked(timesheets: Iterable[Timesheet]) -> bool:
    """True when there is at least one timesheet and none of them is editable."""
    items = list(timesheets)
    if not items:
        return False
    return not any(is_editable(ts) for ts in items)


# ---------- lookups ----------

def get_timesheet(timesheet_id: int) -> Timesheet:
    ts = db.session.get(Timesheet, timesheet_id)
    if not ts:
        raise NotFound("Timesheet not found", {"timesheet_id": timesheet_id})
    return ts


def find_timesheet(site_id: int, worker_id: int, month: date) -> Optional[Timesheet]:
    return Timesheet.query.filter_by(site_id=site_id, worker_id=worker_id, month_date=month).first()


def list_worker_timesheets(worker_id: int, month: date) -> List[Timesheet]:
    return (
        Timesheet.query.filter_by(worker_id=worker_id, month_date=month)
        .order_by(Timesheet.site_id.asc())
        .all()
    )


def list_entries(ts: Timesheet) -> List[TimesheetEntry]:
    return (
        TimesheetEntry.query.filter_by(timesheet_id=ts.id)
        .order_by(TimesheetEntry.day_of_month.asc())
        .all()
    )


def record_action(ts: Optional[Timesheet], action: str, actor_id: Optional[int], comment=None, detail=None, site_id=None):
    row = TimesheetAction(
        timesheet_id=ts.id if ts is not None else None,
        site_id=site_id if site_id is not None else (ts.site_id if ts is not None else None),
        worker_id=ts.worker_id if ts is not None else None,
        month_date=ts.month_date if ts is not None else None,
        action=action,
        actor_user_id=actor_id,
        comment=comment,
        detail=detail,
    )
    db.session.add(row)
    return row


# ---------- access ----------

def ensure_owner(actor: Actor, ts: Timesheet) -> None:
    """Only the worker edits their own entries; admins and supervisors view only."""
    if actor.user_id != ts.worker_id:
        raise Forbidden("Only the timesheet owner can change entries", {"timesheet_id": ts.id})


def can_view(actor: Actor, ts: Timesheet) -> bool:
    if actor.user_id == ts.worker_id or actor.can_supervise(ts.site_id):
        return True
    if not actor.can_view_site(ts.site_id):
        return False
    site = db.session.get(Site, ts.site_id)
    return site is not None and actor.can_oversee_company(site.company_id)


def _rostered_at(site_id: int, worker_id: int, month: date) -> bool:
    return (
        db.session.query(RotaEntry.id)
        .join(Rota, Rota.id == RotaEntry.rota_id)
        .filter(Rota.site_id == site_id, Rota.month_date == month, Rota.status == "LIVE",
                RotaEntry.user_id == worker_id)
        .first()
        is not None
    )


def _ensure_may_hold(actor: Actor, site_id: int, worker_id: int, month: date,
                     resolver: Optional[MembershipResolver] = None) -> None:
    """Fixed workers hold only their home site; floating workers any site in scope or rostered."""
    if actor.is_admin:
        return
    if actor.user_id != worker_id:
        raise Forbidden("Timesheets are created by their worker", {"worker_id": worker_id})
    cls = (resolver or SqlMembershipResolver()).resolve_worker_classification(worker_id, month)
    if isinstance(cls, Fixed):
        if site_id == cls.site_id:
            return
        raise Forbidden("Fixed workers record time on their own site", {"site_id": site_id})
    if isinstance(cls, Floating):
        if site_id in actor.site_ids or _rostered_at(site_id, worker_id, month):
            return
        raise Forbidden("Site is outside your scope", {"site_id": site_id})
    raise TypeError(f"unknown classification {cls!r}")


# ---------- write guard ----------

def claim_editable(timesheet_id: int) -> None:
    """
    Conditional touch of the parent row; raises NotEditable when the persisted
    status is no longer DRAFT/RETURNED. Holds the row lock until commit.
    """
    res = db.session.execute(
        update(Timesheet)
        .where(Timesheet.id == timesheet_id, Timesheet.status.in_(EDITABLE_STATUSES))
        .values(updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount:
        return
    status = db.session.query(Timesheet.status).filter(Timesheet.id == timesheet_id).scalar()
    db.session.rollback()
    if status is None:
        raise NotFound("Timesheet not found", {"timesheet_id": timesheet_id})
    raise NotEditable(f"Timesheet is {status}", {"timesheet_id": timesheet_id, "status": status})


# ---------- validation ----------

def _to_hours(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        hours = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("hours must be a number", {"hours": value})
    if not hours.is_finite():
        raise ValidationError("hours must be a number", {"hours": value})
    if hours < 0:
        raise ValidationError("hours cannot be negative", {"hours": value})
    return hours.quantize(Decimal("0.01"))


def validate_entry(ts: Timesheet, day, shift_type_id, hours) -> Tuple[int, Optional[ShiftType], Decimal]:
    try:
        day = int(day)
    except (TypeError, ValueError):
        raise ValidationError("day must be an integer", {"day": day})
    last = days_in_month(ts.month_date)
    if day < 1 or day > last:
        raise ValidationError(f"day must be between 1 and {last}", {"day": day})

    shift = None
    if shift_type_id not in (None, ""):
        site = db.session.get(Site, ts.site_id)
        try:
            shift = db.session.get(ShiftType, int(shift_type_id))
        except (TypeError, ValueError):
            raise ValidationError("shift_type_id must be an integer", {"shift_type_id": shift_type_id})
        if not shift or not site or shift.company_id != site.company_id:
            raise ValidationError("Unknown shift type", {"shift_type_id": shift_type_id})

    parsed = _to_hours(hours)
    if parsed is None:
        parsed = Decimal(str(shift.default_hours)) if shift is not None else Decimal("0")
    return day, shift, parsed


# ---------- operations ----------

def find_or_create(site_id: int, worker_id: int, month: date, actor_id: Optional[int] = None) -> Tuple[Timesheet, bool]:
    """Idempotent create; a concurrent insert of the same key is resolved by re-reading."""
    ts = find_timesheet(site_id, worker_id, month)
    if ts:
        return ts, False
    if not db.session.get(Site, site_id):
        raise NotFound("Site not found", {"site_id": site_id})

    ts = Timesheet(site_id=site_id, worker_id=worker_id, month_date=month, status=DRAFT)
    db.session.add(ts)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        ts = find_timesheet(site_id, worker_id, month)
        if ts is None:
            raise
        return ts, False
    record_action(ts, "created", actor_id)
    db.session.commit()
    log.info("timesheet %s created site=%s worker=%s month=%s", ts.id, site_id, worker_id, month)
    return ts, True


def get_or_create(actor: Actor, site_id: int, worker_id: int, month, autofill: bool = True,
                  resolver: Optional[MembershipResolver] = None) -> Timesheet:
    month = parse_month(month)
    _ensure_may_hold(actor, site_id, worker_id, month, resolver)
    ts, created = find_or_create(site_id, worker_id, month, actor.user_id)
    if created and autofill:
        from carehome_api.services.reconciliation import autofill_timesheet  # circular
        autofill_timesheet(ts, actor_id=actor.user_id, explicit=False)
    return ts


def write_entry(ts: Timesheet, day: int, shift: Optional[ShiftType], hours: Decimal, notes, source: str) -> TimesheetEntry:
    """Insert or update the day row. Caller holds the claim on `ts`."""
    entry = TimesheetEntry.query.filter_by(timesheet_id=ts.id, day_of_month=day).first()
    if entry is None:
        entry = TimesheetEntry(timesheet_id=ts.id, site_id=ts.site_id, day_of_month=day)
        db.session.add(entry)
    entry.shift_type_id = shift.id if shift is not None else None
    entry.hours = hours
    entry.notes = notes
    entry.source = source
    return entry


def upsert_entry(actor: Actor, timesheet_id: int, day, shift_type_id=None, hours=None, notes=None) -> TimesheetEntry:
    ts = get_timesheet(timesheet_id)
    ensure_owner(actor, ts)
    day, shift, hours = validate_entry(ts, day, shift_type_id, hours)
    notes = (notes or "").strip() or None

    try:
        return _commit_manual_entry(ts, day, shift, hours, notes)
    except IntegrityError:
        # same day inserted concurrently; the second pass updates it
        db.session.rollback()
        return _commit_manual_entry(ts, day, shift, hours, notes)


def _commit_manual_entry(ts, day, shift, hours, notes) -> TimesheetEntry:
    claim_editable(ts.id)
    entry = write_entry(ts, day, shift, hours, notes, SOURCE_MANUAL)
    db.session.commit()
    return entry


def delete_entry(actor: Actor, entry_id: int) -> None:
    entry = db.session.get(TimesheetEntry, entry_id)
    if not entry:
        raise NotFound("Entry not found", {"entry_id": entry_id})
    ts = get_timesheet(entry.timesheet_id)
    ensure_owner(actor, ts)
    claim_editable(ts.id)
    db.session.delete(entry)
    db.session.commit()
