# carehome_api/services/membership.py
"""
Who is who: role, site scope and fixed/floating classification.

Membership data is owned by the admin panels; this module only reads it.
`MembershipResolver` is the interface the timesheet engine depends on and
`SqlMembershipResolver` answers it from the membership tables. Engine
functions receive an explicit `Actor` built here and never look at the
request or the JWT themselves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import FrozenSet, List, Optional, Tuple, Union

from carehome_api.extensions import db
from carehome_api.models.master import Site
from carehome_api.models.membership import BankMembership, CompanyMembership, SiteMembership
from carehome_api.models.security import is_platform_admin
from carehome_api.models.user import User

log = logging.getLogger(__name__)

# effective roles, highest first
ADMIN = "ADMIN"
COMPANY_ADMIN = "COMPANY_ADMIN"
SITE_SUPERVISOR = "SITE_SUPERVISOR"
WORKER = "WORKER"


# ---------- assignment variants ----------

@dataclass(frozen=True)
class Fixed:
    site_id: int
    supervisor: bool = False


@dataclass(frozen=True)
class Floating:
    company_id: Optional[int] = None


@dataclass(frozen=True)
class CompanyAccess:
    company_id: int
    positions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Admin:
    pass


Assignment = Union[Fixed, Floating, CompanyAccess, Admin]


def role_for(assignment: Assignment) -> str:
    if isinstance(assignment, Admin):
        return ADMIN
    if isinstance(assignment, CompanyAccess):
        return COMPANY_ADMIN
    if isinstance(assignment, Fixed):
        return SITE_SUPERVISOR if assignment.supervisor else WORKER
    if isinstance(assignment, Floating):
        return WORKER
    raise TypeError(f"unknown assignment {assignment!r}")


_ROLE_RANK = {ADMIN: 0, COMPANY_ADMIN: 1, SITE_SUPERVISOR: 2, WORKER: 3}


def effective_role(assignments: List[Assignment]) -> str:
    """Highest role across all assignments; a user with none is a plain worker."""
    roles = [role_for(a) for a in assignments]
    if not roles:
        return WORKER
    return min(roles, key=_ROLE_RANK.__getitem__)


def classify(assignments: List[Assignment]) -> Union[Fixed, Floating]:
    """
    FIXED(site) when the worker has a staff attachment and no bank row,
    otherwise FLOATING (bank workers and workers with no fixed home).
    """
    fixed_sites: List[int] = []
    floating: Optional[Floating] = None
    for a in assignments:
        if isinstance(a, Floating):
            floating = floating or a
        elif isinstance(a, Fixed):
            if not a.supervisor:
                fixed_sites.append(a.site_id)
        elif isinstance(a, (CompanyAccess, Admin)):
            continue
        else:
            raise TypeError(f"unknown assignment {a!r}")
    if floating is not None:
        return floating
    if fixed_sites:
        return Fixed(site_id=min(fixed_sites))
    return Floating()


# ---------- actor context ----------

@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str
    site_ids: FrozenSet[int] = field(default_factory=frozenset)
    company_ids: FrozenSet[int] = field(default_factory=frozenset)
    managed_site_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    def can_supervise(self, site_id: int) -> bool:
        if self.role == ADMIN:
            return True
        return self.role == SITE_SUPERVISOR and site_id in self.managed_site_ids

    def can_oversee_company(self, company_id: int) -> bool:
        if self.role == ADMIN:
            return True
        return self.role == COMPANY_ADMIN and company_id in self.company_ids

    def can_view_site(self, site_id: int) -> bool:
        return self.role == ADMIN or site_id in self.site_ids


# ---------- resolver interface ----------

def managed_sites(assignments: List[Assignment]) -> List[int]:
    return sorted({a.site_id for a in assignments if isinstance(a, Fixed) and a.supervisor})


class MembershipResolver:
    """
    Read-only membership lookups used by the engine. Subclasses provide
    `assignments` plus scopes derived from an already fetched assignment
    list; `resolve_actor` fetches the assignments once.
    """

    def assignments(self, user_id: int) -> List[Assignment]:
        raise NotImplementedError

    def site_scope(self, assignments: List[Assignment]) -> List[int]:
        raise NotImplementedError

    def company_scope(self, assignments: List[Assignment]) -> List[int]:
        raise NotImplementedError

    def lookup_display_name(self, worker_id: int) -> str:
        raise NotImplementedError

    def resolve_effective_role(self, user_id: int) -> str:
        return effective_role(self.assignments(user_id))

    def resolve_site_scope(self, user_id: int) -> List[int]:
        return self.site_scope(self.assignments(user_id))

    def resolve_company_scope(self, user_id: int) -> List[int]:
        return self.company_scope(self.assignments(user_id))

    def resolve_managed_sites(self, user_id: int) -> List[int]:
        return managed_sites(self.assignments(user_id))

    def resolve_worker_classification(self, worker_id: int, month: Optional[date] = None) -> Union[Fixed, Floating]:
        return classify(self.assignments(worker_id))

    def resolve_actor(self, user_id: int) -> Actor:
        found = self.assignments(user_id)
        return Actor(
            user_id=user_id,
            role=effective_role(found),
            site_ids=frozenset(self.site_scope(found)),
            company_ids=frozenset(self.company_scope(found)),
            managed_site_ids=frozenset(managed_sites(found)),
        )


class SqlMembershipResolver(MembershipResolver):
    """Answers membership questions from the membership tables."""

    def assignments(self, user_id: int) -> List[Assignment]:
        out: List[Assignment] = []
        if is_platform_admin(user_id):
            out.append(Admin())
        for cm in CompanyMembership.query.filter_by(user_id=user_id).order_by(CompanyMembership.id).all():
            out.append(CompanyAccess(company_id=cm.company_id, positions=tuple(cm.positions or ())))
        for sm in SiteMembership.query.filter_by(user_id=user_id).order_by(SiteMembership.id).all():
            out.append(Fixed(site_id=sm.site_id, supervisor=(sm.role == "MANAGER")))
        for bm in BankMembership.query.filter_by(user_id=user_id).order_by(BankMembership.id).all():
            out.append(Floating(company_id=bm.company_id))
        return out

    def company_scope(self, assignments: List[Assignment]) -> List[int]:
        ids = set()
        fixed_sites = set()
        for a in assignments:
            if isinstance(a, CompanyAccess):
                ids.add(a.company_id)
            elif isinstance(a, Floating):
                if a.company_id is not None:
                    ids.add(a.company_id)
            elif isinstance(a, Fixed):
                fixed_sites.add(a.site_id)
            elif isinstance(a, Admin):
                continue
            else:
                raise TypeError(f"unknown assignment {a!r}")
        if fixed_sites:
            ids.update(s.company_id for s in Site.query.filter(Site.id.in_(sorted(fixed_sites))).all())
        return sorted(ids)

    def site_scope(self, assignments: List[Assignment]) -> List[int]:
        """
        Sites the user can act on:
          Admin          -> every site
          CompanyAccess  -> every site of the company
          Fixed          -> the attached site
          Floating       -> every active site of the bank company
        """
        site_ids = set()
        for a in assignments:
            if isinstance(a, Admin):
                return [s.id for s in Site.query.order_by(Site.id).all()]
            if isinstance(a, CompanyAccess):
                site_ids.update(s.id for s in Site.query.filter_by(company_id=a.company_id).all())
            elif isinstance(a, Fixed):
                site_ids.add(a.site_id)
            elif isinstance(a, Floating):
                if a.company_id is not None:
                    site_ids.update(
                        s.id for s in Site.query.filter_by(company_id=a.company_id, is_active=True).all()
                    )
            else:
                raise TypeError(f"unknown assignment {a!r}")
        return sorted(site_ids)

    def lookup_display_name(self, worker_id: int) -> str:
        u = db.session.get(User, worker_id)
        if not u:
            return f"User #{worker_id}"
        return u.display_name
