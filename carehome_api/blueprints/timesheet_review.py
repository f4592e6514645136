# carehome_api/blueprints/timesheet_review.py
"""Site supervisor review: list, return, approve, progress banner, report."""
import logging

from flask import Blueprint, request
from sqlalchemy.exc import SQLAlchemyError

from carehome_api.common.auth import current_actor, current_resolver, requires_perms
from carehome_api.common.errors import Forbidden, NotFound, ValidationError
from carehome_api.common.http import ok, xlsx_response
from carehome_api.common.months import parse_month
from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.models.timesheet import Timesheet, TimesheetSiteReview
from carehome_api.services import approval, completion, reports
from carehome_api.services.aggregation import timesheet_row
from carehome_api.services.reconciliation import timesheet_summary
from carehome_api.services.schedule_source import shift_kinds

log = logging.getLogger(__name__)

bp = Blueprint("timesheet_review", __name__, url_prefix="/api/v1/timesheets/review")


def _json():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _site_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("site_id is required", {"site_id": value})


def _optional_site_id(value):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("site_id must be an integer", {"site_id": value})


def _site_in_scope(actor, site_id) -> Site:
    site = db.session.get(Site, site_id)
    if not site:
        raise NotFound("Site not found", {"site_id": site_id})
    if not (actor.can_supervise(site.id) or actor.can_oversee_company(site.company_id)):
        raise Forbidden("Site is outside your scope", {"site_id": site_id})
    return site


@bp.get("")
@requires_perms("timesheet.review.read")
def list_site_timesheets():
    actor = current_actor()
    site = _site_in_scope(actor, _site_id(request.args.get("site_id")))
    month = parse_month(request.args.get("month"))
    status = (request.args.get("status") or "").strip().upper()
    resolver = current_resolver()

    q = Timesheet.query.filter_by(site_id=site.id, month_date=month)
    if status:
        q = q.filter(Timesheet.status == status)
    kinds = shift_kinds(site.company_id)
    reviews = {
        rv.timesheet_id: rv.status
        for rv in (
            TimesheetSiteReview.query.join(Timesheet, Timesheet.id == TimesheetSiteReview.timesheet_id)
            .filter(TimesheetSiteReview.site_id == site.id, Timesheet.month_date == month)
            .all()
        )
    }

    items = []
    for ts in q.order_by(Timesheet.worker_id.asc()).all():
        row = timesheet_row(ts, site.name)
        row["display_name"] = resolver.lookup_display_name(ts.worker_id)
        row["site_review"] = reviews.get(ts.id)
        row.update(timesheet_summary(ts, kinds))
        items.append(row)
    return ok(items, count=len(items))


@bp.post("/<int:timesheet_id>/return")
@requires_perms("timesheet.review.act")
def return_timesheet(timesheet_id):
    data = _json()
    ts = approval.return_timesheet(
        current_actor(), timesheet_id,
        site_id=_optional_site_id(data.get("site_id")),
        comment=data.get("comment"),
    )
    return ok(timesheet_row(ts))


@bp.post("/<int:timesheet_id>/approve")
@requires_perms("timesheet.review.act")
def approve(timesheet_id):
    data = _json()
    out = approval.approve_site(current_actor(), timesheet_id, site_id=_optional_site_id(data.get("site_id")))
    return ok(out)


@bp.post("/approve-all")
@requires_perms("timesheet.review.act")
def approve_all():
    data = _json()
    out = approval.approve_all(
        current_actor(),
        _site_id(data.get("site_id")),
        data.get("month"),
        confirm=bool(data.get("confirm")),
    )
    return ok(out)


@bp.get("/progress")
@requires_perms("timesheet.review.read")
def progress():
    actor = current_actor()
    site_id = _site_id(request.args.get("site_id"))
    month = request.args.get("month")
    try:
        data = completion.site_progress(actor, site_id, month, current_resolver())
    except SQLAlchemyError as e:
        db.session.rollback()
        log.warning("site progress unavailable site=%s month=%s: %s", site_id, month, e)
        return ok({"state": "unknown", "site_id": site_id})
    data["state"] = "ok"
    return ok(data)


@bp.get("/report.xlsx")
@requires_perms("timesheet.review.report")
def report():
    content, name = reports.discrepancy_workbook(
        current_actor(),
        _site_id(request.args.get("site_id")),
        request.args.get("month"),
        current_resolver(),
    )
    return xlsx_response(content, name)
