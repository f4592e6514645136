# carehome_api/models/security.py
"""
RBAC tables and the lookups built on them.

Roles decide which endpoints a user may call (through permission codes in
the JWT); which sites and companies they may act on is decided separately
by the membership tables.
"""
from typing import Set

from carehome_api.extensions import db

ROLE_ADMIN = "admin"
ROLE_COMPANY_ADMIN = "company_admin"
ROLE_SUPERVISOR = "supervisor"
ROLE_WORKER = "worker"


class Role(db.Model):
    __tablename__ = "roles"
    id   = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)

    users = db.relationship("UserRole", back_populates="role", cascade="all, delete-orphan", passive_deletes=True)
    permissions = db.relationship(
        "RolePermission", back_populates="role", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Role {self.code}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)

    role = db.relationship("Role", back_populates="users")
    user = db.relationship(
        "User",
        backref=db.backref("user_roles", cascade="all, delete-orphan", passive_deletes=True),
    )


class Permission(db.Model):
    """Dotted permission code, e.g. "timesheet.review.act"; "timesheet.*" grants a subtree."""
    __tablename__ = "permissions"
    id   = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(150), nullable=True)

    roles = db.relationship("RolePermission", back_populates="permission", cascade="all, delete-orphan",
                            passive_deletes=True)


class RolePermission(db.Model):
    __tablename__ = "role_permissions"
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id = db.Column(db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)

    role = db.relationship("Role", back_populates="permissions")
    permission = db.relationship("Permission", back_populates="roles")


# ---------- lookups ----------

def user_role_codes(user_id: int) -> Set[str]:
    q = (
        db.session.query(Role.code)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
    )
    return {row[0] for row in q.all()}


def user_permission_codes(user_id: int) -> Set[str]:
    """Codes granted through any of the user's roles; issued as the `perms` claim."""
    q = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
    )
    return {row[0] for row in q.all()}


def is_platform_admin(user_id: int) -> bool:
    return ROLE_ADMIN in user_role_codes(user_id)
