from flask import Blueprint
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from carehome_api.common.http import ok, fail
from carehome_api.extensions import db

bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@bp.get("")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return fail("Database unavailable", status=503, code="DB_DOWN", detail=str(e))
    return ok({"status": "ok"})
