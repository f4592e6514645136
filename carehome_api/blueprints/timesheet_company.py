# carehome_api/blueprints/timesheet_company.py
"""Company view of forwarded timesheets and company-wide submission progress."""
import logging

from flask import Blueprint, request
from sqlalchemy.exc import SQLAlchemyError

from carehome_api.common.auth import current_actor, current_resolver, requires_perms
from carehome_api.common.errors import ValidationError
from carehome_api.common.http import ok, xlsx_response
from carehome_api.extensions import db
from carehome_api.services import approval, completion, reports

log = logging.getLogger(__name__)

bp = Blueprint("timesheet_company", __name__, url_prefix="/api/v1/timesheets/company")


def _int_arg(name, required=True):
    value = request.args.get(name)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{name} is required", {name: None})
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", {name: value})


@bp.get("")
@requires_perms("timesheet.company.read")
def forwarded():
    rows = completion.company_summary(
        current_actor(),
        _int_arg("company_id"),
        request.args.get("month"),
        site_id=_int_arg("site_id", required=False),
        resolver=current_resolver(),
    )
    return ok(rows, count=len(rows))


@bp.get("/progress")
@requires_perms("timesheet.company.read")
def progress():
    actor = current_actor()
    company_id = _int_arg("company_id")
    month = request.args.get("month")
    try:
        data = completion.company_progress(actor, company_id, month, current_resolver())
    except SQLAlchemyError as e:
        db.session.rollback()
        log.warning("company progress unavailable company=%s month=%s: %s", company_id, month, e)
        return ok({"state": "unknown", "company_id": company_id})
    data["state"] = "ok"
    return ok(data)


@bp.delete("/<int:timesheet_id>")
@requires_perms("timesheet.company.delete")
def delete_timesheet(timesheet_id):
    return ok(approval.admin_delete(current_actor(), timesheet_id))


@bp.get("/report.xlsx")
@requires_perms("timesheet.company.report")
def report():
    content, name = reports.completion_workbook(
        current_actor(),
        _int_arg("company_id"),
        request.args.get("month"),
        current_resolver(),
    )
    return xlsx_response(content, name)
