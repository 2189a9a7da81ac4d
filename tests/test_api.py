import asyncio

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from livestock_registry.app import create_app
from livestock_registry.db import SQLiteStore
from livestock_registry.models import Caller, Role
from livestock_registry.services import firebase_auth
from livestock_registry.services.firebase_auth import caller_from_claims, get_caller, verify_bearer_id_token

ADMIN = Caller(id=1, role=Role.ADMIN)
ATTENDANT = Caller(id=10, role=Role.FARM_ATTENDANT)
INVESTOR = Caller(id=30, role=Role.INVESTOR)


@pytest.fixture
def api(tmp_path):
    store = SQLiteStore(str(tmp_path / "api.db"))
    asyncio.run(store.open())
    app = create_app(store)
    current = {"caller": ADMIN}
    app.dependency_overrides[get_caller] = lambda: current["caller"]
    client = TestClient(app)

    def act_as(caller):
        current["caller"] = caller

    client.act_as = act_as
    return client


def _pen(api, name="North", capacity=2, species="cattle"):
    response = api.post("/pens", json={"name": name, "capacity": capacity, "species": species})
    assert response.status_code == 201, response.text
    return response.json()


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_admission_errors_map_to_status_codes(api):
    pen = _pen(api, capacity=1)
    created = api.post("/animals", json={"species": "cattle", "pen_id": pen["id"], "name": "Daisy"})
    assert created.status_code == 201
    assert created.json()["tag"] == "CTL-1"

    full = api.post("/animals", json={"species": "cattle", "pen_id": pen["id"]})
    assert full.status_code == 409
    assert full.json()["error"] == "capacity_exceeded"

    mismatch = api.post("/animals", json={"species": "goat", "pen_id": pen["id"]})
    assert mismatch.status_code == 400
    assert mismatch.json()["error"] == "species_mismatch"

    missing = api.get("/animals/999")
    assert missing.status_code == 404
    assert missing.json()["error"] == "animal_not_found"

    duplicate = api.post("/animals", json={"species": "goat", "tag": "CTL-1"})
    assert duplicate.status_code == 409


def test_death_and_listing(api):
    animal = api.post("/animals", json={"species": "pig"}).json()
    death = api.post(f"/animals/{animal['id']}/death", json={"cause_of_death": "heat", "date_of_death": "2024-07-01"})
    assert death.status_code == 201
    assert death.json()["mortality_record"]["date_of_death"] == "2024-07-01"

    again = api.post(f"/animals/{animal['id']}/death", json={"cause_of_death": "heat"})
    assert again.status_code == 409
    assert again.json()["error"] == "already_deceased"

    listing = api.get("/animals", params={"status": "deceased"})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1

    bad = api.get("/animals", params={"species": "dragon"})
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_filter"

    events = api.get(f"/animals/{animal['id']}/events").json()
    assert [e["event_type"] for e in events["events"]] == ["death_recorded", "animal_admitted"]


def test_attendant_scoping_over_http(api):
    mine = _pen(api, name="Mine")
    theirs = _pen(api, name="Theirs")
    inside = api.post("/animals", json={"species": "cattle", "pen_id": mine["id"]}).json()
    outside = api.post("/animals", json={"species": "cattle", "pen_id": theirs["id"]}).json()
    assignment = api.post(f"/pens/{mine['id']}/assignments", json={"attendant_id": ATTENDANT.id}).json()

    api.act_as(ATTENDANT)
    assert api.get(f"/animals/{inside['id']}").status_code == 200
    assert api.put(f"/animals/{inside['id']}/health", json={"status": "sick"}).status_code == 200
    denied = api.get(f"/animals/{outside['id']}")
    assert denied.status_code == 403
    assert denied.json() == {"error": "access_denied", "detail": "Access denied"}
    assert api.get("/animals/424242").status_code == 403
    assert [a["id"] for a in api.get("/animals").json()["items"]] == [inside["id"]]
    assert [p["id"] for p in api.get("/pens").json()["pens"]] == [mine["id"]]
    assert api.get("/pens/my-assignments").json()["count"] == 1
    assert api.post("/pens", json={"name": "Mine too", "capacity": 1, "species": "goat"}).status_code == 403
    assert api.post("/animals", json={"species": "cattle", "pen_id": mine["id"]}).status_code == 403

    api.act_as(ADMIN)
    assert api.delete(f"/pens/assignments/{assignment['id']}").status_code == 200

    api.act_as(ATTENDANT)
    assert api.get(f"/animals/{inside['id']}").status_code == 403


def test_roles_without_grants_are_denied(api):
    animal = api.post("/animals", json={"species": "goat"}).json()
    api.act_as(INVESTOR)
    assert api.get(f"/animals/{animal['id']}").status_code == 403
    assert api.get("/animals").status_code == 403
    assert api.get("/pens").status_code == 403


def test_genealogy_endpoints(api):
    dam = api.post("/animals", json={"species": "sheep", "gender": "female"}).json()
    lamb = api.post("/animals", json={"species": "sheep", "dam_id": dam["id"]}).json()

    offspring = api.get(f"/animals/{dam['id']}/offspring", params={"role": "dam"}).json()
    assert [a["id"] for a in offspring["offspring"]] == [lamb["id"]]
    parents = api.get(f"/animals/{lamb['id']}/parents").json()
    assert parents["dam"]["id"] == dam["id"]
    assert parents["sire"] is None

    goat = api.post("/animals", json={"species": "goat"}).json()
    wrong = api.put(f"/animals/{lamb['id']}/parents", json={"dam_id": goat["id"]})
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "invalid_parentage"


def test_report_endpoints(api):
    north = _pen(api, name="North", capacity=3)
    cow = api.post("/animals", json={"species": "cattle", "pen_id": north["id"], "name": "Bella", "gender": "female"}).json()
    sick = api.post("/animals", json={"species": "cattle", "pen_id": north["id"], "name": "Clara"}).json()
    api.put(f"/animals/{sick['id']}/health", json={"status": "sick"})
    api.post(f"/pens/{north['id']}/assignments", json={"attendant_id": ATTENDANT.id})

    stats = api.get("/animals/stats")
    assert stats.status_code == 200
    assert stats.json()["total_animals"] == 2
    assert stats.json()["by_species"] == [{"species": "cattle", "count": 2}]

    breeding = api.get("/animals/breeding", params={"species": "cattle", "gender": "female"}).json()
    assert [a["id"] for a in breeding["animals"]] == [cow["id"]]
    assert api.get("/animals/breeding", params={"species": "dragon"}).status_code == 422

    alerts = api.get("/animals/alerts").json()
    assert alerts["count"] == 1
    assert alerts["alerts"][0]["animal"]["pen_name"] == "North"

    details = api.get(f"/animals/{cow['id']}/details").json()
    assert details["attendant_id"] == ATTENDANT.id

    api.act_as(ATTENDANT)
    in_pen = api.get(f"/pens/{north['id']}/animals").json()
    assert [a["name"] for a in in_pen["animals"]] == ["Bella", "Clara"]
    assert api.get("/animals/stats").json()["total_animals"] == 2

    api.act_as(INVESTOR)
    assert api.get("/animals/stats").status_code == 403
    assert api.get(f"/pens/{north['id']}/animals").status_code == 403


def test_caller_from_claims():
    assert caller_from_claims({"staff_id": "7", "role": "Admin User"}) == Caller(id=7, role=Role.ADMIN)
    with pytest.raises(HTTPException) as excinfo:
        caller_from_claims({"staff_id": 7, "role": "Owner"})
    assert excinfo.value.status_code == 403


@pytest.mark.parametrize("staff_id", ["abc", "", [7], {"id": 7}])
def test_malformed_staff_id_is_forbidden(staff_id):
    with pytest.raises(HTTPException) as excinfo:
        caller_from_claims({"staff_id": staff_id, "role": "Admin"})
    assert excinfo.value.status_code == 403


@pytest.mark.parametrize(
    "error, status",
    [
        (firebase_auth.fb_auth.UserDisabledError("user disabled"), 401),
        (firebase_auth.fb_auth.InvalidIdTokenError("bad signature"), 401),
        (firebase_auth.fb_auth.CertificateFetchError("no route to host", None), 503),
    ],
)
def test_token_verification_failures(monkeypatch, error, status):
    def reject(token):
        raise error

    monkeypatch.setattr(firebase_auth, "_firebase_ready", True)
    monkeypatch.setattr(firebase_auth.fb_auth, "verify_id_token", reject)
    with pytest.raises(HTTPException) as excinfo:
        verify_bearer_id_token("Bearer some.id.token")
    assert excinfo.value.status_code == status


def test_missing_token_is_unauthorized(tmp_path):
    store = SQLiteStore(str(tmp_path / "auth.db"))
    asyncio.run(store.open())
    client = TestClient(create_app(store))
    assert client.get("/animals").status_code == 401
