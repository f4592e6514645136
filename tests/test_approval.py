import warnings

import pytest
from sqlalchemy.exc import SAWarning

from carehome_api.common.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from carehome_api.extensions import db
from carehome_api.models.timesheet import Timesheet, TimesheetAction, TimesheetEntry, TimesheetSiteReview
from carehome_api.services import approval
from carehome_api.services import timesheet_store as store


def _status(ts_id):
    return db.session.get(Timesheet, ts_id).status


def _fixed_submitted(world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5), 2: ("L", 7.5)})
    actor = world.actor(world.fixed)
    ts = store.get_or_create(actor, world.a.id, world.fixed.id, world.month)
    approval.submit_month(actor, world.fixed.id, world.month)
    return ts.id


def _bank_two_sites(world):
    world.roster(world.a, world.bank, {3: ("E", 7.5)})
    world.roster(world.b, world.bank, {4: ("WN", 10)})
    actor = world.actor(world.bank)
    ts_a = store.get_or_create(actor, world.a.id, world.bank.id, world.month)
    ts_b = store.get_or_create(actor, world.b.id, world.bank.id, world.month)
    return ts_a.id, ts_b.id


def test_fixed_worker_flow(world):
    ts_id = _fixed_submitted(world)
    assert _status(ts_id) == "SUBMITTED"
    assert db.session.get(Timesheet, ts_id).submitted_at is not None

    out = approval.approve_site(world.actor(world.sup_a), ts_id)
    assert out == {"timesheet_id": ts_id, "site_id": world.a.id, "forwarded": True, "forwarded_ids": [ts_id]}
    assert _status(ts_id) == "FORWARDED"

    actions = [a.action for a in TimesheetAction.query.filter_by(timesheet_id=ts_id).order_by(TimesheetAction.id)]
    assert actions[-3:] == ["submitted", "site_approved", "forwarded"]


def test_floating_worker_forwarded_after_last_site(world):
    ts_a, ts_b = _bank_two_sites(world)
    submitted = approval.submit_month(world.actor(world.bank), world.bank.id, world.month)
    assert sorted(ts.id for ts in submitted) == sorted([ts_a, ts_b])

    first = approval.approve_site(world.actor(world.sup_a), ts_a)
    assert first["forwarded"] is False
    assert first["forwarded_ids"] == []
    assert _status(ts_a) == "SUBMITTED"
    assert _status(ts_b) == "SUBMITTED"

    last = approval.approve_site(world.actor(world.sup_b), ts_b)
    assert last["forwarded"] is True
    assert sorted(last["forwarded_ids"]) == sorted([ts_a, ts_b])
    assert _status(ts_a) == "FORWARDED"
    assert _status(ts_b) == "FORWARDED"


def test_site_portion_cannot_be_approved_twice(world):
    ts_a, _ = _bank_two_sites(world)
    approval.submit_month(world.actor(world.bank), world.bank.id, world.month)
    approval.approve_site(world.actor(world.sup_a), ts_a)
    with pytest.raises(InvalidTransition):
        approval.approve_site(world.actor(world.sup_a), ts_a)


def test_return_and_resubmit(world):
    ts_id = _fixed_submitted(world)
    sup = world.actor(world.sup_a)
    worker = world.actor(world.fixed)

    ts = approval.return_timesheet(sup, ts_id, comment=" day 2 was a late ")
    assert ts.status == "RETURNED"
    rv = TimesheetSiteReview.query.filter_by(timesheet_id=ts_id, site_id=world.a.id).one()
    assert rv.status == "RETURNED"
    assert rv.comment == "day 2 was a late"

    store.upsert_entry(worker, ts_id, 2, world.shifts["L"].id, 6)
    approval.submit_month(worker, world.fixed.id, world.month)
    assert _status(ts_id) == "SUBMITTED"
    rv = TimesheetSiteReview.query.filter_by(timesheet_id=ts_id, site_id=world.a.id).one()
    assert rv.status == "PENDING"

    assert approval.approve_site(sup, ts_id)["forwarded"] is True


def test_resubmit_moves_only_returned_part(world):
    ts_a, ts_b = _bank_two_sites(world)
    bank = world.actor(world.bank)
    approval.submit_month(bank, world.bank.id, world.month)
    approval.return_timesheet(world.actor(world.sup_b), ts_b)

    moved = approval.submit_month(bank, world.bank.id, world.month)
    assert [ts.id for ts in moved] == [ts_b]
    assert _status(ts_a) == "SUBMITTED"
    assert _status(ts_b) == "SUBMITTED"


def test_submit_errors(world):
    actor = world.actor(world.fixed)
    with pytest.raises(NotFound):
        approval.submit_month(actor, world.fixed.id, world.month)

    ts_id = _fixed_submitted(world)
    with pytest.raises(InvalidTransition):
        approval.submit_month(actor, world.fixed.id, world.month)
    with pytest.raises(Forbidden):
        approval.submit_month(world.actor(world.sup_a), world.fixed.id, world.month)
    assert _status(ts_id) == "SUBMITTED"


def test_review_needs_submitted_status(world):
    ts = store.get_or_create(world.actor(world.fixed), world.a.id, world.fixed.id, world.month)
    sup = world.actor(world.sup_a)
    with pytest.raises(InvalidTransition):
        approval.approve_site(sup, ts.id)
    with pytest.raises(InvalidTransition):
        approval.return_timesheet(sup, ts.id)

    approval.submit_month(world.actor(world.fixed), world.fixed.id, world.month)
    approval.approve_site(sup, ts.id)
    with pytest.raises(InvalidTransition):
        approval.return_timesheet(sup, ts.id)


def test_review_outside_scope(world):
    ts_id = _fixed_submitted(world)
    for who in (world.sup_b, world.fixed, world.office):
        with pytest.raises(Forbidden):
            approval.approve_site(world.actor(who), ts_id)
        with pytest.raises(Forbidden):
            approval.return_timesheet(world.actor(who), ts_id)
    with pytest.raises(ValidationError):
        approval.approve_site(world.actor(world.sup_b), ts_id, site_id=world.b.id)
    assert _status(ts_id) == "SUBMITTED"


def test_approve_all_requires_confirmation_when_incomplete(world):
    world.roster(world.a, world.bank, {9: ("E", 7.5)})
    ts_id = _fixed_submitted(world)
    sup = world.actor(world.sup_a)

    with pytest.raises(InvalidTransition) as exc:
        approval.approve_all(sup, world.a.id, world.month)
    assert exc.value.code == "CONFIRM_REQUIRED"
    assert exc.value.payload["progress"]["missing"][0]["worker_id"] == world.bank.id
    assert _status(ts_id) == "SUBMITTED"

    out = approval.approve_all(sup, world.a.id, world.month, confirm=True)
    assert out["approved_ids"] == [ts_id]
    assert out["forwarded_ids"] == [ts_id]


def test_approve_all_when_everyone_submitted(world):
    ts_id = _fixed_submitted(world)
    out = approval.approve_all(world.actor(world.sup_a), world.a.id, "2025-03")
    assert out["approved_ids"] == [ts_id]
    assert out["progress"]["submitted_count"] == out["progress"]["total_required"] == 1

    with pytest.raises(Forbidden):
        approval.approve_all(world.actor(world.sup_b), world.a.id, world.month, confirm=True)


def test_company_admin_deletes_forwarded_only(world):
    ts_id = _fixed_submitted(world)
    office = world.actor(world.office)
    with pytest.raises(InvalidTransition):
        approval.admin_delete(office, ts_id)
    with pytest.raises(Forbidden):
        approval.admin_delete(world.actor(world.sup_a), ts_id)

    approval.approve_site(world.actor(world.sup_a), ts_id)
    with warnings.catch_warnings():
        # each child row is deleted exactly once
        warnings.simplefilter("error", SAWarning)
        detail = approval.admin_delete(office, ts_id)
    assert detail == {"timesheet_id": ts_id, "status": "FORWARDED", "entries": 2, "reviews": 1}

    assert db.session.get(Timesheet, ts_id) is None
    assert TimesheetEntry.query.filter_by(timesheet_id=ts_id).count() == 0
    assert TimesheetSiteReview.query.filter_by(timesheet_id=ts_id).count() == 0
    audit = TimesheetAction.query.filter_by(action="deleted").one()
    assert audit.timesheet_id is None
    assert audit.worker_id == world.fixed.id
    assert audit.actor_user_id == world.office.id
    assert audit.detail["timesheet_id"] == ts_id


def test_platform_admin_deletes_any_status(world):
    ts = store.get_or_create(world.actor(world.fixed), world.a.id, world.fixed.id, world.month)
    ts_id = ts.id
    approval.admin_delete(world.actor(world.admin), ts_id)
    assert db.session.get(Timesheet, ts_id) is None
