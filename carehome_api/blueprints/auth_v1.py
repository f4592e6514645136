from datetime import timedelta

from flask import Blueprint, request, jsonify
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)

from carehome_api.common.auth import current_resolver
from carehome_api.extensions import db
from carehome_api.models.security import user_permission_codes
from carehome_api.models.user import User

bp = Blueprint("auth_v1", __name__, url_prefix="/api/v1/auth")


def _claims(u: User):
    return {
        "roles": u.role_codes(),
        "perms": sorted(user_permission_codes(u.id)),
        "email": u.email,
        "name": u.full_name,
    }


def _user_payload(u: User):
    actor = current_resolver().resolve_actor(u.id)
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "roles": u.role_codes(),
        "effective_role": actor.role,
        "site_ids": sorted(actor.site_ids),
        "managed_site_ids": sorted(actor.managed_site_ids),
        "company_ids": sorted(actor.company_ids),
    }


@bp.post("/login")
def login():
    data = request.get_json(silent=True, force=True)
    if not isinstance(data, dict):
        data = {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password) or u.status != "active":
        return jsonify({"success": False, "error": {"message": "Invalid credentials"}}), 401

    access = create_access_token(identity=str(u.id), additional_claims=_claims(u), expires_delta=timedelta(days=1))
    refresh = create_refresh_token(identity=str(u.id), additional_claims={"roles": u.role_codes()})
    return jsonify({"success": True, "access": access, "refresh": refresh, "user": _user_payload(u)}), 200


@bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u:
        return jsonify({"success": False, "error": {"message": "User not found"}}), 401
    new_access = create_access_token(identity=str(u.id), additional_claims=_claims(u))
    return jsonify({"success": True, "access": new_access}), 200


@bp.get("/me")
@jwt_required()
def me():
    u = db.session.get(User, int(get_jwt_identity()))
    if not u:
        return jsonify({"success": False, "error": {"message": "User not found"}}), 404
    return jsonify({"success": True, "data": _user_payload(u)}), 200
