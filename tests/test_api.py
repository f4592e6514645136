import pytest
from sqlalchemy.exc import OperationalError

from carehome_api.services import completion


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    r = client.post("/api/v1/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200, r.get_json()
    return {"Authorization": f"Bearer {r.get_json()['access']}"}


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200


def test_login(client, world):
    bad = client.post("/api/v1/auth/login", json={"email": "fixed@acme.test", "password": "nope"})
    assert bad.status_code == 401

    r = client.post("/api/v1/auth/login", json={"email": "SUP.A@acme.test", "password": "pw"})
    user = r.get_json()["user"]
    assert user["effective_role"] == "SITE_SUPERVISOR"
    assert user["managed_site_ids"] == [world.a.id]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {r.get_json()['access']}"})
    assert me.get_json()["data"]["email"] == "sup.a@acme.test"


def test_worker_month_and_entries(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    h = _login(client, "fixed@acme.test")

    r = client.get("/api/v1/timesheets/me?month=2025-03", headers=h)
    assert r.status_code == 200
    view = r.get_json()["data"]
    assert view["classification"] == "FIXED"
    assert [e["day"] for e in view["entries"]] == [1]

    r = client.post("/api/v1/timesheets/me/entries", headers=h,
                    json={"month": "2025-03", "day": 5, "shift_type_id": world.shifts["L"].id, "hours": 7})
    assert r.status_code == 201
    entry = r.get_json()["data"]
    assert entry["day"] == 5
    assert entry["hours"] == 7.0
    assert entry["source"] == "MANUAL"
    assert entry["site_name"] == "Oak House"

    r = client.put(f"/api/v1/timesheets/entries/{entry['id']}", headers=h, json={"hours": 6.5})
    assert r.get_json()["data"]["hours"] == 6.5

    r = client.post("/api/v1/timesheets/me/entries", headers=h, json={"month": "2025-03", "day": 40, "hours": 7})
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"

    r = client.get(f"/api/v1/timesheets/{view['timesheets'][0]['id']}/mismatches", headers=h)
    assert r.get_json()["meta"]["count"] == 1

    r = client.delete(f"/api/v1/timesheets/entries/{entry['id']}", headers=h)
    assert r.get_json()["data"] == {"id": entry["id"], "deleted": True}


def test_locked_after_submit(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    h = _login(client, "fixed@acme.test")
    ts_id = client.get("/api/v1/timesheets/me?month=2025-03", headers=h).get_json()["data"]["timesheets"][0]["id"]

    r = client.post("/api/v1/timesheets/me/submit", headers=h, json={"month": "2025-03"})
    assert r.status_code == 200
    assert r.get_json()["data"][0]["status"] == "SUBMITTED"

    r = client.post("/api/v1/timesheets/me/entries", headers=h, json={"month": "2025-03", "day": 2, "hours": 7})
    assert r.status_code == 409
    err = r.get_json()["error"]
    assert err["code"] == "NOT_EDITABLE"
    assert err["detail"]["timesheet_id"] == ts_id

    r = client.post("/api/v1/timesheets/me/submit", headers=h, json={"month": "2025-03"})
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "INVALID_TRANSITION"

    r = client.post("/api/v1/timesheets/me/autofill", headers=h, json={"month": "2025-03"})
    assert r.status_code == 409


def test_supervisor_review(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    world.roster(world.a, world.bank, {2: ("E", 7.5)})
    worker = _login(client, "fixed@acme.test")
    ts_id = client.get("/api/v1/timesheets/me?month=2025-03", headers=worker).get_json()["data"]["timesheets"][0]["id"]
    client.post("/api/v1/timesheets/me/submit", headers=worker, json={"month": "2025-03"})

    r = client.post(f"/api/v1/timesheets/review/{ts_id}/approve", headers=worker, json={})
    assert r.status_code == 403

    sup = _login(client, "sup.a@acme.test")
    r = client.get(f"/api/v1/timesheets/review?site_id={world.a.id}&month=2025-03", headers=sup)
    rows = r.get_json()["data"]
    assert [(x["id"], x["status"], x["site_review"], x["mismatch_count"]) for x in rows] == [
        (ts_id, "SUBMITTED", "PENDING", 0),
    ]
    assert rows[0]["display_name"] == "Fiona Fixed"

    r = client.get(f"/api/v1/timesheets/review/progress?site_id={world.a.id}&month=2025-03", headers=sup)
    progress = r.get_json()["data"]
    assert progress["state"] == "ok"
    assert (progress["submitted_count"], progress["total_required"]) == (1, 2)

    r = client.post("/api/v1/timesheets/review/approve-all", headers=sup,
                    json={"site_id": world.a.id, "month": "2025-03"})
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "CONFIRM_REQUIRED"

    r = client.post("/api/v1/timesheets/review/approve-all", headers=sup,
                    json={"site_id": world.a.id, "month": "2025-03", "confirm": True})
    assert r.status_code == 200
    assert r.get_json()["data"]["forwarded_ids"] == [ts_id]

    other = _login(client, "sup.b@acme.test")
    r = client.get(f"/api/v1/timesheets/review?site_id={world.a.id}&month=2025-03", headers=other)
    assert r.status_code == 403


def test_return_with_comment(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    worker = _login(client, "fixed@acme.test")
    ts_id = client.get("/api/v1/timesheets/me?month=2025-03", headers=worker).get_json()["data"]["timesheets"][0]["id"]
    client.post("/api/v1/timesheets/me/submit", headers=worker, json={"month": "2025-03"})

    sup = _login(client, "sup.a@acme.test")
    r = client.post(f"/api/v1/timesheets/review/{ts_id}/return", headers=sup, json={"comment": "check day 1"})
    assert r.get_json()["data"]["status"] == "RETURNED"
    r = client.post(f"/api/v1/timesheets/review/{ts_id}/approve", headers=sup, json={})
    assert r.status_code == 409


def test_progress_degrades_when_database_fails(client, world, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(completion, "site_progress", broken)
    monkeypatch.setattr(completion, "company_progress", broken)

    sup = _login(client, "sup.a@acme.test")
    r = client.get(f"/api/v1/timesheets/review/progress?site_id={world.a.id}&month=2025-03", headers=sup)
    assert r.status_code == 200
    assert r.get_json()["data"] == {"state": "unknown", "site_id": world.a.id}

    office = _login(client, "office@acme.test")
    r = client.get(f"/api/v1/timesheets/company/progress?company_id={world.company.id}&month=2025-03", headers=office)
    assert r.get_json()["data"]["state"] == "unknown"


def test_company_endpoints(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    worker = _login(client, "fixed@acme.test")
    ts_id = client.get("/api/v1/timesheets/me?month=2025-03", headers=worker).get_json()["data"]["timesheets"][0]["id"]
    client.post("/api/v1/timesheets/me/submit", headers=worker, json={"month": "2025-03"})

    office = _login(client, "office@acme.test")
    r = client.delete(f"/api/v1/timesheets/company/{ts_id}", headers=office)
    assert r.status_code == 409

    sup = _login(client, "sup.a@acme.test")
    client.post(f"/api/v1/timesheets/review/{ts_id}/approve", headers=sup, json={})

    r = client.get(f"/api/v1/timesheets/company?company_id={world.company.id}&month=2025-03", headers=office)
    assert [row["timesheet_id"] for row in r.get_json()["data"]] == [ts_id]

    r = client.get(f"/api/v1/timesheets/company/report.xlsx?company_id={world.company.id}&month=2025-03",
                   headers=office)
    assert r.status_code == 200
    assert r.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert r.data[:2] == b"PK"

    r = client.delete(f"/api/v1/timesheets/company/{ts_id}", headers=sup)
    assert r.status_code == 403

    r = client.delete(f"/api/v1/timesheets/company/{ts_id}", headers=office)
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == "FORWARDED"

    r = client.get(f"/api/v1/timesheets/{ts_id}", headers=worker)
    assert r.status_code == 404
    assert r.get_json()["error"]["code"] == "NOT_FOUND"


def test_shift_catalog(client, world):
    h = _login(client, "fixed@acme.test")
    r = client.get("/api/v1/timesheets/shift-types", headers=h)
    codes = [s["code"] for s in r.get_json()["data"]]
    assert codes == sorted(["E", "L", "SL", "WN", "AL", "SK", "OL"])

    r = client.get(f"/api/v1/timesheets/shift-types?company_id={world.other.id}", headers=h)
    assert r.status_code == 403


def test_review_rejects_non_numeric_site(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    worker = _login(client, "fixed@acme.test")
    ts_id = client.get("/api/v1/timesheets/me?month=2025-03", headers=worker).get_json()["data"]["timesheets"][0]["id"]
    client.post("/api/v1/timesheets/me/submit", headers=worker, json={"month": "2025-03"})

    sup = _login(client, "sup.a@acme.test")
    for action in ("approve", "return"):
        r = client.post(f"/api/v1/timesheets/review/{ts_id}/{action}", headers=sup, json={"site_id": "oak"})
        assert r.status_code == 422, action
        assert r.get_json()["error"]["code"] == "VALIDATION_ERROR"

    r = client.get(f"/api/v1/timesheets/{ts_id}", headers=worker)
    assert r.get_json()["data"]["status"] == "SUBMITTED"


def test_partial_entry_edit_keeps_other_fields(client, world):
    world.roster(world.a, world.fixed, {1: ("E", 7.5)})
    h = _login(client, "fixed@acme.test")
    entry = client.get("/api/v1/timesheets/me?month=2025-03", headers=h).get_json()["data"]["entries"][0]

    r = client.put(f"/api/v1/timesheets/entries/{entry['id']}", headers=h, json={"notes": "ran late"})
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["notes"] == "ran late"
    assert data["shift_type_id"] == world.shifts["E"].id
    assert data["hours"] == 7.5

    r = client.put(f"/api/v1/timesheets/entries/{entry['id']}", headers=h, json={"shift_type_id": None, "hours": 0})
    data = r.get_json()["data"]
    assert (data["shift_type_id"], data["hours"], data["notes"]) == (None, 0.0, "ran late")
