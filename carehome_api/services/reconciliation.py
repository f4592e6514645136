# carehome_api/services/reconciliation.py
"""
Timesheet vs live rota: autofill, mismatch detection and category tallies.

Mismatches are advisory. A supervisor can still approve a timesheet that
disagrees with the rota; the count is a review flag.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from carehome_api.common.errors import NotEditable
from carehome_api.common.months import parse_month
from carehome_api.extensions import db
from carehome_api.models.timesheet import SOURCE_ROTA, Timesheet, TimesheetEntry
from carehome_api.services import timesheet_store as store
from carehome_api.services.membership import Actor, MembershipResolver
from carehome_api.services.schedule_source import ScheduleEntry, list_schedule_entries

log = logging.getLogger(__name__)

HOURS_TOLERANCE = Decimal("0.001")

# (shift_type_id, hours) for one day
DayValue = Tuple[Optional[int], Decimal]


def _dec(v) -> Decimal:
    return Decimal(str(v or 0))


def same_day(a: DayValue, b: DayValue) -> bool:
    return (a[0] or None) == (b[0] or None) and abs(_dec(a[1]) - _dec(b[1])) <= HOURS_TOLERANCE


# ---------- mismatches ----------

@dataclass
class MismatchDay:
    day: int
    reason: str  # missing_in_timesheet | missing_in_rota | shift | hours
    timesheet_shift_type_id: Optional[int] = None
    timesheet_hours: Optional[Decimal] = None
    rota_shift_type_id: Optional[int] = None
    rota_hours: Optional[Decimal] = None

    def as_dict(self):
        d = asdict(self)
        for k in ("timesheet_hours", "rota_hours"):
            if d[k] is not None:
                d[k] = float(d[k])
        return d


def entries_by_day(entries: Iterable[TimesheetEntry]) -> Dict[int, DayValue]:
    return {e.day_of_month: (e.shift_type_id, _dec(e.hours)) for e in entries}


def schedule_by_day(schedule: Iterable[ScheduleEntry]) -> Dict[int, DayValue]:
    return {s.day: (s.shift_type_id, _dec(s.hours)) for s in schedule}


def find_mismatches(timesheet_days: Dict[int, DayValue], rota_days: Dict[int, DayValue]) -> List[MismatchDay]:
    out: List[MismatchDay] = []
    for day in sorted(set(timesheet_days) | set(rota_days)):
        t = timesheet_days.get(day)
        r = rota_days.get(day)
        if t is None:
            out.append(MismatchDay(day, "missing_in_timesheet", rota_shift_type_id=r[0], rota_hours=_dec(r[1])))
            continue
        if r is None:
            out.append(MismatchDay(day, "missing_in_rota", timesheet_shift_type_id=t[0], timesheet_hours=_dec(t[1])))
            continue
        if (t[0] or None) != (r[0] or None):
            reason = "shift"
        elif abs(_dec(t[1]) - _dec(r[1])) > HOURS_TOLERANCE:
            reason = "hours"
        else:
            continue
        out.append(MismatchDay(day, reason, t[0], _dec(t[1]), r[0], _dec(r[1])))
    return out


def compute_mismatches(ts: Timesheet) -> List[MismatchDay]:
    schedule = list_schedule_entries(ts.site_id, ts.worker_id, ts.month_date)
    return find_mismatches(entries_by_day(store.list_entries(ts)), schedule_by_day(schedule))


# ---------- tallies ----------

_KIND_FIELD = {
    "SLEEP": "sleep",
    "ANNUAL_LEAVE": "annual_leave",
    "SICKNESS": "sickness",
    "WAKING_NIGHT": "waking_night",
    "OTHER_LEAVE": "other_leave",
}


@dataclass
class Tally:
    total_hours: Decimal = field(default_factory=Decimal)
    sleep: int = 0
    annual_leave: int = 0
    sickness: int = 0
    waking_night: int = 0
    other_leave: int = 0

    def add(self, other: "Tally") -> "Tally":
        self.total_hours += other.total_hours
        for name in _KIND_FIELD.values():
            setattr(self, name, getattr(self, name) + getattr(other, name))
        return self

    def as_dict(self):
        d = asdict(self)
        d["total_hours"] = float(self.total_hours)
        return d


def tally(entries: Iterable, kinds: Dict[int, Optional[str]]) -> Tally:
    """
    Every entry adds its hours; an entry whose shift type carries a kind also
    bumps that kind's day counter. Entries without a shift count hours only.
    """
    t = Tally()
    for e in entries:
        t.total_hours += _dec(e.hours)
        kind = kinds.get(e.shift_type_id) if e.shift_type_id else None
        name = _KIND_FIELD.get(kind or "")
        if name:
            setattr(t, name, getattr(t, name) + 1)
    return t


# ---------- autofill ----------

@dataclass
class AutofillResult:
    timesheet_id: int
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    kept: List[int] = field(default_factory=list)
    skipped_manual: List[int] = field(default_factory=list)
    overwritten_manual: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    fallback: bool = False

    def as_dict(self):
        return asdict(self)


def _plan(ts: Timesheet, schedule: List[ScheduleEntry], explicit: bool, overwrite_manual: bool,
          result: AutofillResult) -> List[Tuple[str, ScheduleEntry]]:
    existing = {e.day_of_month: e for e in store.list_entries(ts)}
    plan = []
    for s in schedule:
        current = existing.get(s.day)
        if current is None:
            plan.append(("create", s))
        elif same_day((current.shift_type_id, current.hours), (s.shift_type_id, s.hours)):
            result.unchanged += 1
        elif not explicit:
            result.kept.append(s.day)
        elif current.source == SOURCE_ROTA:
            plan.append(("update", s))
        elif overwrite_manual:
            plan.append(("update", s))
            result.overwritten_manual.append(s.day)
        else:
            result.skipped_manual.append(s.day)
    return plan


def _apply(ts: Timesheet, s: ScheduleEntry) -> None:
    entry = TimesheetEntry.query.filter_by(timesheet_id=ts.id, day_of_month=s.day).first()
    if entry is None:
        entry = TimesheetEntry(timesheet_id=ts.id, site_id=ts.site_id, day_of_month=s.day)
        db.session.add(entry)
    entry.shift_type_id = s.shift_type_id
    entry.hours = s.hours
    entry.source = SOURCE_ROTA


def autofill_timesheet(ts: Timesheet, actor_id: Optional[int] = None, explicit: bool = False,
                       overwrite_manual: bool = False) -> AutofillResult:
    """
    Copy the worker's live rota days into the timesheet.

    Implicit fills (on creation) only fill empty days. Explicit fills also
    refresh days last written by a previous fill; manually edited days are
    left alone unless overwrite_manual is set. Days that already match are
    never touched.
    """
    store.claim_editable(ts.id)
    result = AutofillResult(timesheet_id=ts.id)
    schedule = list_schedule_entries(ts.site_id, ts.worker_id, ts.month_date)
    plan = _plan(ts, schedule, explicit, overwrite_manual, result)

    try:
        with db.session.begin_nested():
            for _, s in plan:
                _apply(ts, s)
            db.session.flush()
        for kind, _ in plan:
            if kind == "create":
                result.created += 1
            else:
                result.updated += 1
    except SQLAlchemyError as e:
        log.warning("autofill bulk write failed for timesheet %s, falling back to per-day: %s", ts.id, e)
        result.fallback = True
        _fill_per_day(ts, plan, result)

    if plan or explicit:
        store.record_action(ts, "autofilled", actor_id, detail=result.as_dict())
    db.session.commit()
    log.info("autofill timesheet=%s created=%s updated=%s fallback=%s",
             ts.id, result.created, result.updated, result.fallback)
    return result


def _fill_per_day(ts: Timesheet, plan, result: AutofillResult) -> None:
    for kind, s in plan:
        try:
            with db.session.begin_nested():
                _apply(ts, s)
                db.session.flush()
        except SQLAlchemyError as e:
            log.warning("autofill day %s of timesheet %s failed: %s", s.day, ts.id, e)
            result.failed.append(s.day)
            continue
        if kind == "create":
            result.created += 1
        else:
            result.updated += 1


def autofill(actor: Actor, site_id: int, worker_id: int, month, overwrite_manual: bool = False,
             resolver: Optional[MembershipResolver] = None) -> AutofillResult:
    """Worker-triggered "auto-fill from live rota" for one site."""
    month = parse_month(month)
    ts = store.get_or_create(actor, site_id, worker_id, month, autofill=False, resolver=resolver)
    return autofill_timesheet(ts, actor.user_id, explicit=True, overwrite_manual=overwrite_manual)


def autofill_floating(actor: Actor, worker_id: int, month, overwrite_manual: bool = False,
                      resolver: Optional[MembershipResolver] = None) -> List[AutofillResult]:
    """Autofill every site the worker is rostered at; locked sites are skipped."""
    month = parse_month(month)
    site_ids = sorted({s.site_id for s in list_schedule_entries(None, worker_id, month)})
    results = []
    for site_id in site_ids:
        try:
            results.append(autofill(actor, site_id, worker_id, month, overwrite_manual=overwrite_manual, resolver=resolver))
        except NotEditable as e:
            log.info("autofill skipped locked site %s for worker %s: %s", site_id, worker_id, e.message)
    return results


def timesheet_summary(ts: Timesheet, kinds: Dict[int, Optional[str]]) -> dict:
    entries = store.list_entries(ts)
    return {
        "tally": tally(entries, kinds).as_dict(),
        "mismatch_count": len(compute_mismatches(ts)),
        "entry_count": len(entries),
    }
