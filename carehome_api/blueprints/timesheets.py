# carehome_api/blueprints/timesheets.py
"""Worker-facing timesheet endpoints (own month, entries, submit, autofill)."""
from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required

from carehome_api.common.auth import current_actor, current_resolver, requires_perms
from carehome_api.common.errors import Forbidden, ValidationError
from carehome_api.common.http import ok
from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.services import aggregation, reconciliation
from carehome_api.services import timesheet_store as store
from carehome_api.services.membership import Fixed
from carehome_api.services.schedule_source import list_shift_catalog, shift_kinds

bp = Blueprint("timesheets", __name__, url_prefix="/api/v1/timesheets")


def _json():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _month(data=None):
    value = (data or {}).get("month") if data is not None else request.args.get("month")
    if not value:
        raise ValidationError("month is required", {"month": None})
    return value


def _int_or_none(value, field):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", {field: value})


def _autofill_on_create():
    return bool(current_app.config.get("TIMESHEET_AUTOFILL_ON_CREATE", True))


def _entry_payload(e):
    site = db.session.get(Site, e.site_id)
    return aggregation.entry_row(e, e.timesheet, site.name if site else None)


# ---------- catalog ----------

@bp.get("/shift-types")
@requires_perms("shift_types.read")
def shift_types():
    actor = current_actor()
    company_id = _int_or_none(request.args.get("company_id"), "company_id")
    if company_id is None:
        if not actor.company_ids:
            return ok([])
        company_id = min(actor.company_ids)
    elif not actor.is_admin and company_id not in actor.company_ids:
        raise Forbidden("Company is outside your scope", {"company_id": company_id})
    active_only = request.args.get("all") not in ("1", "true")
    items = list_shift_catalog(company_id, active_only=active_only)
    return ok([{
        "id": s.id, "code": s.code, "label": s.label,
        "default_hours": float(s.default_hours or 0),
        "kind": s.kind, "is_active": s.is_active,
    } for s in items])


# ---------- own month ----------

@bp.get("/me")
@requires_perms("timesheet.self.read")
def my_month():
    actor = current_actor()
    view = aggregation.build_worker_view(
        actor, actor.user_id, _month(), resolver=current_resolver(), autofill=_autofill_on_create()
    )
    return ok(view)


@bp.post("/me/entries")
@requires_perms("timesheet.self.edit")
def add_entry():
    data = _json()
    actor = current_actor()
    entry = aggregation.add_entry(
        actor, actor.user_id, _month(data),
        site_id=_int_or_none(data.get("site_id"), "site_id"),
        day=data.get("day"),
        shift_type_id=_int_or_none(data.get("shift_type_id"), "shift_type_id"),
        hours=data.get("hours"),
        notes=data.get("notes"),
        resolver=current_resolver(),
        autofill=_autofill_on_create(),
    )
    return ok(_entry_payload(entry), 201)


@bp.put("/entries/<int:entry_id>")
@requires_perms("timesheet.self.edit")
def edit_entry(entry_id):
    data = _json()
    # omitted fields keep their stored value
    fields = {k: data[k] for k in ("hours", "notes") if k in data}
    if "shift_type_id" in data:
        fields["shift_type_id"] = _int_or_none(data["shift_type_id"], "shift_type_id")
    entry = aggregation.edit_entry(current_actor(), entry_id, **fields)
    return ok(_entry_payload(entry))


@bp.delete("/entries/<int:entry_id>")
@requires_perms("timesheet.self.edit")
def delete_entry(entry_id):
    aggregation.remove_entry(current_actor(), entry_id)
    return ok({"id": entry_id, "deleted": True})


@bp.post("/me/submit")
@requires_perms("timesheet.self.submit")
def submit_month():
    actor = current_actor()
    submitted = aggregation.submit_view(actor, actor.user_id, _month(_json()))
    return ok([aggregation.timesheet_row(ts) for ts in submitted])


@bp.post("/me/autofill")
@requires_perms("timesheet.self.edit")
def autofill():
    """Re-run the fill from the live rota. Manually edited days are kept unless overwrite_manual."""
    data = _json()
    actor = current_actor()
    month = _month(data)
    overwrite = bool(data.get("overwrite_manual"))
    site_id = _int_or_none(data.get("site_id"), "site_id")
    resolver = current_resolver()

    if site_id is None:
        cls = resolver.resolve_worker_classification(actor.user_id, month)
        if isinstance(cls, Fixed):
            site_id = cls.site_id
    if site_id is None:
        results = reconciliation.autofill_floating(actor, actor.user_id, month, overwrite_manual=overwrite,
                                                   resolver=resolver)
    else:
        results = [reconciliation.autofill(actor, site_id, actor.user_id, month, overwrite_manual=overwrite,
                                           resolver=resolver)]
    return ok([r.as_dict() for r in results])


# ---------- single timesheet ----------

@bp.get("/<int:timesheet_id>")
@jwt_required()
def get_timesheet(timesheet_id):
    actor = current_actor()
    ts = store.get_timesheet(timesheet_id)
    if not store.can_view(actor, ts):
        raise Forbidden("Timesheet is outside your scope", {"timesheet_id": ts.id})
    site = db.session.get(Site, ts.site_id)
    entries = store.list_entries(ts)
    data = aggregation.timesheet_row(ts, site.name if site else None)
    data["entries"] = [aggregation.entry_row(e, ts, site.name if site else None) for e in entries]
    data["tally"] = reconciliation.tally(entries, shift_kinds(site.company_id if site else None)).as_dict()
    return ok(data)


@bp.get("/<int:timesheet_id>/mismatches")
@jwt_required()
def mismatches(timesheet_id):
    actor = current_actor()
    ts = store.get_timesheet(timesheet_id)
    if not store.can_view(actor, ts):
        raise Forbidden("Timesheet is outside your scope", {"timesheet_id": ts.id})
    items = reconciliation.compute_mismatches(ts)
    return ok([m.as_dict() for m in items], count=len(items))
