# carehome_api/common/errors.py
from flask import Blueprint
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from carehome_api.common.http import fail


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        app.logger.warning("integrity error: %s", getattr(e, "orig", e))
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR")

    @app.errorhandler(404)
    def _404(_): return fail("Not found", status=404)

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)


bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Error carrying an API code, a message and an HTTP status."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


# ---- timesheet engine taxonomy ----

class NotEditable(APIError):
    """Entry mutation attempted while the timesheet is not DRAFT/RETURNED."""
    def __init__(self, message="Timesheet is locked", payload=None):
        super().__init__("NOT_EDITABLE", message, 409, payload)


class InvalidTransition(APIError):
    def __init__(self, message="Status change not allowed", payload=None, code="INVALID_TRANSITION"):
        super().__init__(code, message, 409, payload)


class Forbidden(APIError):
    def __init__(self, message="Forbidden", payload=None):
        super().__init__("FORBIDDEN", message, 403, payload)


class NotFound(APIError):
    def __init__(self, message="Not found", payload=None):
        super().__init__("NOT_FOUND", message, 404, payload)


class ValidationError(APIError):
    def __init__(self, message="Invalid input", payload=None):
        super().__init__("VALIDATION_ERROR", message, 422, payload)


@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)
