# carehome_api/common/auth.py
from __future__ import annotations

from functools import wraps
from typing import Iterable, Set

from flask import current_app
from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from carehome_api.common.http import fail
from carehome_api.extensions import db
from carehome_api.models.user import User
from carehome_api.models.security import ROLE_ADMIN, is_platform_admin, user_permission_codes


# ---------- helpers ----------

def _wildcard_match(user_perm: str, required: str) -> bool:
    """
    'timesheet.*'        matches 'timesheet.review.act'
    'timesheet.review.*' matches 'timesheet.review.read'
    anything else must match exactly
    """
    if user_perm == required:
        return True
    if user_perm.endswith(".*"):
        return required.startswith(user_perm[:-2])
    return False


def _has_any_perm(user_perms: Set[str], required_perms: Iterable[str]) -> bool:
    if not required_perms:
        return True
    if not user_perms:
        return False
    return any(_wildcard_match(up, req) for req in required_perms for up in user_perms)


def _current_user():
    uid = get_jwt_identity()
    if uid is None:
        return None
    try:
        return db.session.get(User, int(uid))
    except (TypeError, ValueError):
        return None


# ---------- actor context ----------

def current_resolver():
    return current_app.extensions["membership_resolver"]


def current_actor():
    """Explicit Actor for the JWT identity; services receive this, never the JWT."""
    return current_resolver().resolve_actor(int(get_jwt_identity()))


# ---------- decorators ----------

def requires_perms(*perm_codes: str):
    """
    Require ANY of the given permission codes.

    Fast path reads 'perms' from the JWT; a miss falls back to the DB in case
    the token predates a role change. Granted wildcards like 'timesheet.*' work.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            if not perm_codes:
                return fn(*args, **kwargs)

            claims = get_jwt() or {}
            if ROLE_ADMIN in set(claims.get("roles") or []):
                return fn(*args, **kwargs)
            if _has_any_perm(set(claims.get("perms") or []), perm_codes):
                return fn(*args, **kwargs)

            user = _current_user()
            if not user:
                return fail("Unauthorized", status=401)
            if is_platform_admin(user.id):
                return fn(*args, **kwargs)
            if not _has_any_perm(user_permission_codes(user.id), perm_codes):
                return fail("Forbidden", status=403, code="FORBIDDEN")
            return fn(*args, **kwargs)
        return inner
    return outer
