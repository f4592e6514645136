# carehome_api/services/schedule_source.py
"""Read-only access to the published (LIVE) rota and the shift catalog."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from carehome_api.extensions import db
from carehome_api.models.rota import Rota, RotaEntry, ShiftType

LIVE = "LIVE"


@dataclass(frozen=True)
class ScheduleEntry:
    site_id: int
    worker_id: int
    day: int
    shift_type_id: Optional[int]
    hours: Decimal


def list_schedule_entries(
    site_id: Optional[int],
    worker_id: Optional[int],
    month: date,
    site_ids: Optional[Iterable[int]] = None,
) -> List[ScheduleEntry]:
    """
    Entries of LIVE rotas for the month.

    site_id narrows to one site, site_ids to a set of sites; with neither,
    worker_id must be given and every site the worker is rostered at is read.
    """
    if site_id is None and site_ids is None and worker_id is None:
        raise ValueError("site_id, site_ids or worker_id is required")

    q = (
        db.session.query(RotaEntry, Rota.site_id)
        .join(Rota, Rota.id == RotaEntry.rota_id)
        .filter(Rota.status == LIVE, Rota.month_date == month)
    )
    if site_id is not None:
        q = q.filter(Rota.site_id == site_id)
    if site_ids is not None:
        ids = list(site_ids)
        if not ids:
            return []
        q = q.filter(Rota.site_id.in_(ids))
    if worker_id is not None:
        q = q.filter(RotaEntry.user_id == worker_id)

    rows = q.order_by(Rota.site_id, RotaEntry.user_id, RotaEntry.day_of_month).all()
    return [
        ScheduleEntry(
            site_id=sid,
            worker_id=e.user_id,
            day=e.day_of_month,
            shift_type_id=e.shift_type_id,
            hours=Decimal(str(e.hours or 0)),
        )
        for e, sid in rows
    ]


def list_shift_catalog(company_id: int, active_only: bool = True) -> List[ShiftType]:
    q = ShiftType.query.filter_by(company_id=company_id)
    if active_only:
        q = q.filter(ShiftType.is_active.is_(True))
    return q.order_by(ShiftType.code.asc()).all()


def shift_kinds(company_id: Optional[int] = None) -> Dict[int, Optional[str]]:
    """shift_type_id -> kind, inactive types included so old entries still tally."""
    q = db.session.query(ShiftType.id, ShiftType.kind)
    if company_id is not None:
        q = q.filter(ShiftType.company_id == company_id)
    return {sid: kind for sid, kind in q.all()}

