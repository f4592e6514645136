import pytest

from carehome_api.common.errors import Forbidden, NotFound
from carehome_api.services import approval, completion
from carehome_api.services import timesheet_store as store
from carehome_api.services.completion import compute_progress

W1, W2 = 101, 102
SITE_A, SITE_B = 1, 2


def test_partially_covered_worker_is_missing_only_the_open_site():
    required = {W1: {SITE_A}, W2: {SITE_A, SITE_B}}
    submitted = {W1: {SITE_A}, W2: {SITE_A}}
    out = compute_progress(required, submitted, {})

    assert out["missing"] == [{"worker_id": W2, "missing_site_ids": [SITE_B]}]
    assert out["submitted_count"] == 1
    assert out["total_required"] == 2
    assert out["forwarded_count"] == 0


def test_timesheets_for_unrostered_sites_do_not_count():
    out = compute_progress({W1: {SITE_A}}, {W1: {SITE_B}, W2: {SITE_A}}, {W1: {SITE_A}})
    assert out["submitted_count"] == 0
    assert out["forwarded_count"] == 1
    assert out["missing"] == [{"worker_id": W1, "missing_site_ids": [SITE_A]}]


def test_empty_rota():
    assert compute_progress({}, {}, {}) == {
        "total_required": 0, "submitted_count": 0, "forwarded_count": 0, "missing": [],
    }


def test_site_progress(world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    world.roster(world.a, world.bank, {2: ("E", 7.5)})
    fixed = world.actor(world.fixed)
    store.get_or_create(fixed, world.a.id, world.fixed.id, world.month)
    approval.submit_month(fixed, world.fixed.id, world.month)

    out = completion.site_progress(world.actor(world.sup_a), world.a.id, "2025-03")
    assert out["site_id"] == world.a.id
    assert out["month"] == "2025-03"
    assert out["total_required"] == 2
    assert out["submitted_count"] == 1
    assert out["missing"] == [{"worker_id": world.bank.id, "missing_site_ids": [world.a.id], "display_name": "Bram Bank"}]

    with pytest.raises(Forbidden):
        completion.site_progress(world.actor(world.sup_b), world.a.id, world.month)
    with pytest.raises(NotFound):
        completion.site_progress(world.actor(world.admin), 999, world.month)


def test_company_progress_tracks_floating_workers_across_sites(world):
    world.roster(world.a, world.bank, {3: ("E", 7.5)})
    world.roster(world.b, world.bank, {4: ("E", 7.5)})
    bank = world.actor(world.bank)
    ts_a = store.get_or_create(bank, world.a.id, world.bank.id, world.month)
    ts_a_id = ts_a.id
    approval.submit_month(bank, world.bank.id, world.month)

    office = world.actor(world.office)
    out = completion.company_progress(office, world.company.id, world.month)
    assert out["company_id"] == world.company.id
    assert out["submitted_count"] == 0
    assert out["missing"][0]["missing_site_ids"] == [world.b.id]

    store.get_or_create(bank, world.b.id, world.bank.id, world.month)
    approval.submit_month(bank, world.bank.id, world.month)
    approval.approve_site(world.actor(world.sup_a), ts_a_id)
    out = completion.company_progress(office, world.company.id, world.month)
    assert out["submitted_count"] == 1
    assert out["forwarded_count"] == 0
    assert out["missing"] == []

    with pytest.raises(Forbidden):
        completion.company_progress(world.actor(world.sup_a), world.company.id, world.month)
    with pytest.raises(Forbidden):
        completion.company_progress(office, world.other.id, world.month)


def _forward(world, user, site, days):
    world.roster(site, user, days)
    actor = world.actor(user)
    ts = store.get_or_create(actor, site.id, user.id, world.month)
    return ts.id


def test_company_summary_rows(world):
    fixed_ts = _forward(world, world.fixed, world.a, {1: ("E", 7.5), 2: ("SL", 0)})
    bank_a = _forward(world, world.bank, world.a, {5: ("WN", 10)})
    bank_b = _forward(world, world.bank, world.b, {6: ("AL", 7.5)})
    approval.submit_month(world.actor(world.fixed), world.fixed.id, world.month)
    approval.submit_month(world.actor(world.bank), world.bank.id, world.month)
    approval.approve_site(world.actor(world.sup_a), fixed_ts)
    approval.approve_site(world.actor(world.sup_a), bank_a)
    approval.approve_site(world.actor(world.sup_b), bank_b)

    rows = completion.company_summary(world.actor(world.office), world.company.id, world.month)
    assert [r["display_name"] for r in rows] == ["Bram Bank", "Fiona Fixed"]

    floating, fixed = rows
    assert floating["row_type"] == "floating"
    assert floating["classification"] == "FLOATING"
    assert sorted(floating["timesheet_ids"]) == sorted([bank_a, bank_b])
    assert floating["tally"]["total_hours"] == 17.5
    assert floating["tally"]["waking_night"] == 1
    assert floating["tally"]["annual_leave"] == 1
    assert floating["mismatch_count"] == 0

    assert fixed["row_type"] == "timesheet"
    assert fixed["classification"] == "FIXED"
    assert fixed["timesheet_id"] == fixed_ts
    assert fixed["site_name"] == "Oak House"
    assert fixed["tally"]["sleep"] == 1
    assert fixed["forwarded_at"] is not None

    only_b = completion.company_summary(world.actor(world.office), world.company.id, world.month, site_id=world.b.id)
    assert len(only_b) == 1
    assert only_b[0]["timesheet_ids"] == [bank_b]


def test_company_summary_lists_forwarded_only(world):
    _forward(world, world.fixed, world.a, {1: ("E", 7.5)})
    approval.submit_month(world.actor(world.fixed), world.fixed.id, world.month)
    assert completion.company_summary(world.actor(world.office), world.company.id, world.month) == []
