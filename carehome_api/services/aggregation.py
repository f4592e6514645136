# carehome_api/services/aggregation.py
"""
The worker's editing surface for a month.

Fixed workers edit the single timesheet of their site. Floating (bank)
workers see every timesheet they hold for the month merged into one
calendar; each entry keeps its own site and its own lock, and a single
submit covers them all.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from carehome_api.common.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from carehome_api.common.months import month_key, parse_month
from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.models.timesheet import Timesheet, TimesheetEntry
from carehome_api.services import approval
from carehome_api.services import timesheet_store as store
from carehome_api.services.membership import Actor, Fixed, Floating, MembershipResolver, SqlMembershipResolver
from carehome_api.services.reconciliation import Tally, tally
from carehome_api.services.schedule_source import shift_kinds


def timesheet_row(ts: Timesheet, site_name: Optional[str] = None) -> Dict:
    return {
        "id": ts.id,
        "site_id": ts.site_id,
        "site_name": site_name,
        "worker_id": ts.worker_id,
        "month": month_key(ts.month_date),
        "status": ts.status,
        "editable": store.is_editable(ts),
        "submitted_at": ts.submitted_at.isoformat() if ts.submitted_at else None,
        "forwarded_at": ts.forwarded_at.isoformat() if ts.forwarded_at else None,
    }


def entry_row(e: TimesheetEntry, ts: Timesheet, site_name: Optional[str] = None) -> Dict:
    return {
        "id": e.id,
        "timesheet_id": e.timesheet_id,
        "site_id": e.site_id,
        "site_name": site_name,
        "day": e.day_of_month,
        "shift_type_id": e.shift_type_id,
        "hours": float(e.hours or 0),
        "notes": e.notes,
        "source": e.source,
        "editable": store.is_editable(ts),
    }


def _classification(resolver: MembershipResolver, worker_id: int, month):
    cls = resolver.resolve_worker_classification(worker_id, month)
    if isinstance(cls, Fixed):
        return cls, "FIXED"
    if isinstance(cls, Floating):
        return cls, "FLOATING"
    raise TypeError(f"unknown classification {cls!r}")


def _ensure_self(actor: Actor, worker_id: int) -> None:
    if actor.user_id != worker_id and not actor.is_admin:
        raise Forbidden("You can only open your own timesheets", {"worker_id": worker_id})


def build_worker_view(actor: Actor, worker_id: int, month, resolver: Optional[MembershipResolver] = None,
                      autofill: bool = True) -> Dict:
    month = parse_month(month)
    _ensure_self(actor, worker_id)
    resolver = resolver or SqlMembershipResolver()
    cls, label = _classification(resolver, worker_id, month)

    if isinstance(cls, Fixed):
        timesheets = [store.get_or_create(actor, cls.site_id, worker_id, month, autofill=autofill, resolver=resolver)]
    else:
        timesheets = store.list_worker_timesheets(worker_id, month)

    site_ids = {ts.site_id for ts in timesheets}
    names = {s.id: s.name for s in Site.query.filter(Site.id.in_(site_ids or [-1])).all()}
    kinds = shift_kinds()

    entries, total = [], Tally()
    for ts in timesheets:
        rows = store.list_entries(ts)
        total.add(tally(rows, kinds))
        entries.extend(entry_row(e, ts, names.get(e.site_id)) for e in rows)
    entries.sort(key=lambda r: (r["day"], r["site_id"]))

    locked = store.all_locked(timesheets)
    return {
        "worker_id": worker_id,
        "month": month_key(month),
        "classification": label,
        "fixed_site_id": cls.site_id if isinstance(cls, Fixed) else None,
        "timesheets": [timesheet_row(ts, names.get(ts.site_id)) for ts in timesheets],
        "entries": entries,
        "all_locked": locked,
        "can_submit": bool(timesheets) and not locked,
        "tally": total.as_dict(),
    }


def add_entry(actor: Actor, worker_id: int, month, site_id: Optional[int], day, shift_type_id=None, hours=None,
              notes=None, resolver: Optional[MembershipResolver] = None, autofill: bool = True) -> TimesheetEntry:
    """
    Record a day at a site. Floating workers must name the site; the
    timesheet for that site is created on first use.
    """
    month = parse_month(month)
    resolver = resolver or SqlMembershipResolver()
    cls, _ = _classification(resolver, worker_id, month)

    if site_id is None:
        if not isinstance(cls, Fixed):
            raise ValidationError("site_id is required", {"site_id": None})
        site_id = cls.site_id

    ts = store.get_or_create(actor, int(site_id), worker_id, month, autofill=autofill, resolver=resolver)
    return store.upsert_entry(actor, ts.id, day, shift_type_id, hours, notes)


_UNSET = object()


def edit_entry(actor: Actor, entry_id: int, shift_type_id=_UNSET, hours=_UNSET, notes=_UNSET) -> TimesheetEntry:
    """
    Fields left out keep their stored value. Lock is taken from the entry's
    own timesheet, not from its siblings.
    """
    entry = db.session.get(TimesheetEntry, entry_id)
    if not entry:
        raise NotFound("Entry not found", {"entry_id": entry_id})
    if shift_type_id is _UNSET:
        shift_type_id = entry.shift_type_id
    if hours is _UNSET:
        hours = entry.hours
    if notes is _UNSET:
        notes = entry.notes
    return store.upsert_entry(actor, entry.timesheet_id, entry.day_of_month, shift_type_id, hours, notes)


def remove_entry(actor: Actor, entry_id: int) -> None:
    store.delete_entry(actor, entry_id)


def submit_view(actor: Actor, worker_id: int, month) -> List[Timesheet]:
    month = parse_month(month)
    owned = store.list_worker_timesheets(worker_id, month)
    if store.all_locked(owned):
        raise InvalidTransition("Everything for this month is already submitted", {"month": month_key(month)})
    return approval.submit_month(actor, worker_id, month)
