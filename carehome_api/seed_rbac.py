# carehome_api/seed_rbac.py
from carehome_api.extensions import db
from carehome_api.models.security import (
    ROLE_ADMIN, ROLE_COMPANY_ADMIN, ROLE_SUPERVISOR, ROLE_WORKER,
    Permission, Role, RolePermission, UserRole,
)
from carehome_api.models.user import User

DEFAULT_ROLES = [
    (ROLE_ADMIN, "Administrator"),
    (ROLE_COMPANY_ADMIN, "Company administrator"),
    (ROLE_SUPERVISOR, "Site supervisor"),
    (ROLE_WORKER, "Worker"),
]

DEFAULT_PERMS = [
    # own timesheets
    "timesheet.self.read", "timesheet.self.edit", "timesheet.self.submit",
    # site review
    "timesheet.review.read", "timesheet.review.act", "timesheet.review.report",
    # company view
    "timesheet.company.read", "timesheet.company.delete", "timesheet.company.report",
    # catalog
    "shift_types.read",
]

_SELF = ["timesheet.self.read", "timesheet.self.edit", "timesheet.self.submit", "shift_types.read"]

ROLE_PERM_MAP = {
    ROLE_ADMIN: DEFAULT_PERMS,
    ROLE_COMPANY_ADMIN: _SELF + [
        "timesheet.review.read", "timesheet.review.report",
        "timesheet.company.read", "timesheet.company.delete", "timesheet.company.report",
    ],
    ROLE_SUPERVISOR: _SELF + ["timesheet.review.read", "timesheet.review.act", "timesheet.review.report"],
    ROLE_WORKER: _SELF,
}


def _ensure_roles():
    code_to_role = {}
    for code, _name in DEFAULT_ROLES:
        r = Role.query.filter_by(code=code).first()
        if not r:
            r = Role(code=code)
            db.session.add(r)
            db.session.flush()
        code_to_role[code] = r
    return code_to_role


def _ensure_permissions():
    code_to_perm = {}
    for code in DEFAULT_PERMS:
        p = Permission.query.filter_by(code=code).first()
        if not p:
            p = Permission(code=code, name=code.replace(".", " ").replace("_", " ").title())
            db.session.add(p)
            db.session.flush()
        code_to_perm[code] = p
    return code_to_perm


def _map_role_perms(code_to_role, code_to_perm):
    for rcode, perms in ROLE_PERM_MAP.items():
        r = code_to_role[rcode]
        existing = {rp.permission_id for rp in r.permissions}
        for pcode in perms:
            p = code_to_perm[pcode]
            if p.id not in existing:
                db.session.add(RolePermission(role_id=r.id, permission_id=p.id))


def assign_role(user: User, code: str) -> bool:
    role = Role.query.filter_by(code=code).first()
    if not role:
        return False
    if UserRole.query.filter_by(user_id=user.id, role_id=role.id).first():
        return False
    db.session.add(UserRole(user_id=user.id, role_id=role.id))
    return True


def run():
    code_to_role = _ensure_roles()
    code_to_perm = _ensure_permissions()
    _map_role_perms(code_to_role, code_to_perm)
    db.session.commit()
    return {"ok": True, "roles": len(DEFAULT_ROLES), "perms": len(DEFAULT_PERMS)}
