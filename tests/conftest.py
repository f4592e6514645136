import os
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from carehome_api import create_app
from carehome_api.extensions import db
from carehome_api.models.master import Company, Site
from carehome_api.models.membership import BankMembership, CompanyMembership, SiteMembership
from carehome_api.models.rota import Rota, RotaEntry, ShiftType
from carehome_api.models.user import User
from carehome_api.seed_rbac import assign_role, run as seed_rbac
from carehome_api.services.membership import SqlMembershipResolver

MONTH = date(2025, 3, 1)  # 31 days


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def session(app):
    with app.app_context():
        yield db.session


def _user(email, name, role):
    u = User(email=email, full_name=name)
    u.set_password("pw")
    db.session.add(u)
    db.session.flush()
    assign_role(u, role)
    return u


@pytest.fixture(scope="function")
def world(session):
    """
    Company with two homes (a, b) and:
      fixed   - staff at a
      bank    - floating worker of the company
      sup_a   - manager of a
      sup_b   - manager of b
      office  - company admin
      admin   - platform admin
    """
    seed_rbac()
    c = Company(code="ACME", name="Acme Care")
    other = Company(code="OTHER", name="Other Care")
    session.add_all([c, other])
    session.flush()
    a = Site(company_id=c.id, name="Oak House")
    b = Site(company_id=c.id, name="Elm Lodge")
    session.add_all([a, b])
    session.flush()

    shifts = {}
    for code, hours, kind in (
        ("E", "7.5", None), ("L", "7.5", None), ("SL", "0", "SLEEP"), ("WN", "10", "WAKING_NIGHT"),
        ("AL", "7.5", "ANNUAL_LEAVE"), ("SK", "0", "SICKNESS"), ("OL", "0", "OTHER_LEAVE"),
    ):
        st = ShiftType(company_id=c.id, code=code, label=code, default_hours=Decimal(hours), kind=kind)
        session.add(st)
        shifts[code] = st
    foreign = ShiftType(company_id=other.id, code="E", label="Early", default_hours=Decimal("7.5"))
    session.add(foreign)

    fixed = _user("fixed@acme.test", "Fiona Fixed", "worker")
    bank = _user("bank@acme.test", "Bram Bank", "worker")
    sup_a = _user("sup.a@acme.test", "Sam Oak", "supervisor")
    sup_b = _user("sup.b@acme.test", "Sol Elm", "supervisor")
    office = _user("office@acme.test", "Olu Office", "company_admin")
    admin = _user("admin@acme.test", "Ada Admin", "admin")

    session.add_all([
        SiteMembership(user_id=fixed.id, site_id=a.id, role="STAFF"),
        SiteMembership(user_id=sup_a.id, site_id=a.id, role="MANAGER"),
        SiteMembership(user_id=sup_b.id, site_id=b.id, role="MANAGER"),
        BankMembership(user_id=bank.id, company_id=c.id),
        CompanyMembership(user_id=office.id, company_id=c.id, positions=["Operations"]),
    ])
    session.commit()

    resolver = SqlMembershipResolver()

    def roster(site, user, days, month=MONTH, status="LIVE"):
        """days: {day: (shift_code or None, hours)}"""
        rota = Rota.query.filter_by(site_id=site.id, month_date=month).first()
        if rota is None:
            rota = Rota(site_id=site.id, month_date=month, status=status)
            session.add(rota)
            session.flush()
        for day, (code, hours) in days.items():
            session.add(RotaEntry(
                rota_id=rota.id, user_id=user.id, day_of_month=day,
                shift_type_id=shifts[code].id if code else None, hours=Decimal(str(hours)),
            ))
        session.commit()
        return rota

    return SimpleNamespace(
        company=c, other=other, a=a, b=b, shifts=shifts, foreign_shift=foreign,
        fixed=fixed, bank=bank, sup_a=sup_a, sup_b=sup_b, office=office, admin=admin,
        resolver=resolver, month=MONTH, roster=roster,
        actor=lambda u: resolver.resolve_actor(u.id),
    )
