from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import SCHOOL, T0, north
from schoolpool.api.main import create_app
from schoolpool.application.config import Settings
from schoolpool.application.container import build_services
from schoolpool.domain.models import SchoolLocation
from schoolpool.infrastructure.providers import StaticGeoRiskProvider
from schoolpool.utils.clock import ManualClock


def family_json(family_id, metres_north, **kw):
    home = north(SCHOOL, metres_north)
    return {
        "family_id": family_id,
        "home_lat": home.lat,
        "home_lng": home.lng,
        "school_id": "school-1",
        "school_lat": SCHOOL.lat,
        "school_lng": SCHOOL.lng,
        "departure_time": "08:15",
        **kw,
    }


SEEKER = family_json("s", 1000, driver_available=True, available_seats=4)
DRIVER = family_json(
    "d",
    1200,
    driver_available=True,
    available_seats=4,
    verification="verified",
    average_rating=4.9,
    rating_count=20,
    background_check="cleared",
)
PASSENGER = family_json("p", 1300)


@pytest.fixture
def client():
    services = build_services(
        Settings(enable_scheduler=False, _env_file=None),
        clock=ManualClock(T0),
        geo_provider=StaticGeoRiskProvider([SchoolLocation("school-1", "Lyneham Primary", SCHOOL)]),
    )
    with TestClient(create_app(services)) as c:
        yield c


@pytest.fixture
def registered(client):
    r = client.post("/families", json={"families": [SEEKER, DRIVER, PASSENGER]})
    assert r.status_code == 200
    assert r.json() == {"registered": 3}
    return client


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["scheduler"]["running"] is False


def test_rank_from_directory(registered):
    r = registered.post("/matches/rank", json={"seeker": SEEKER})
    assert r.status_code == 200
    matches = r.json()["matches"]
    ids = [m["candidate_id"] for m in matches]
    assert ids[0] == "d"
    assert "s" not in ids
    assert matches[0]["match_quality"] in ("excellent", "good")
    assert matches[0]["breakdown"]["schedule_score"] == 1.0


def test_rank_with_explicit_candidates_and_swipe(client):
    r = client.post("/matches/swipe", json={"seeker_id": "s", "candidate_id": "d"})
    assert r.json()["swiped"] == ["d"]
    r = client.post("/matches/rank", json={"seeker": SEEKER, "candidates": [DRIVER, PASSENGER]})
    assert [m["candidate_id"] for m in r.json()["matches"]] == ["p"]


def test_rank_rejects_invalid_profile(client):
    bad = {**SEEKER, "home_lat": 95.0}
    r = client.post("/matches/rank", json={"seeker": bad, "candidates": [DRIVER]})
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "ValidationError"

    out_of_range = {**DRIVER, "average_rating": -10.0}
    r = client.post("/matches/rank", json={"seeker": SEEKER, "candidates": [out_of_range]})
    assert r.status_code == 422


def test_sequence(client):
    a, b, c = north(SCHOOL, 2000), north(SCHOOL, 1000), north(SCHOOL, 1800)
    r = client.post("/routes/sequence", json={
        "points": [
            {"family_id": "a", "lat": a.lat, "lng": a.lng},
            {"family_id": "b", "lat": b.lat, "lng": b.lng},
            {"family_id": "c", "lat": c.lat, "lng": c.lng},
        ],
        "destination": {"lat": SCHOOL.lat, "lng": SCHOOL.lng},
        "base_time": T0.isoformat(),
    })
    assert r.status_code == 200
    body = r.json()
    assert [p["family_id"] for p in body["pickups"]] == ["a", "c", "b"]
    assert body["route_distance_m"] == pytest.approx(2000.0, rel=1e-6)


def test_route_risk(client):
    start, end = north(SCHOOL, -150), north(SCHOOL, 150)
    r = client.post("/routes/risk", json={
        "coordinates": [{"lat": start.lat, "lng": start.lng}, {"lat": end.lat, "lng": end.lng}],
        "duration_s": 54.0,
    })
    assert r.status_code == 200
    body = r.json()
    assert body["acceptable"] is True
    assert body["risk_level"] == "low"
    assert body["degraded"] is False

    r = client.post("/routes/risk", json={"coordinates": [{"lat": 0.0, "lng": 0.0}], "duration_s": 10.0})
    assert r.status_code == 400


def test_group_lifecycle(registered):
    r = registered.post("/groups", json={"seeker_id": "s", "matched_ids": ["d"]})
    assert r.status_code == 200
    group = r.json()
    assert group["status"] == "active"
    assert group["departure_time"] == "08:15"
    assert [m["family_id"] for m in group["members"]] == ["s", "d"]

    r = registered.post("/groups/join", json={"invite_code": group["invite_code"], "family_id": "p"})
    assert r.status_code == 200
    assert len(r.json()["members"]) == 3

    r = registered.post("/groups/join", json={"invite_code": "NOPE00", "family_id": "p"})
    assert r.status_code == 400

    r = registered.post(f"/groups/{group['group_id']}/archive", json={"requested_by": "p"})
    assert r.status_code == 400
    r = registered.post(f"/groups/{group['group_id']}/archive", json={"requested_by": "s"})
    assert r.json()["status"] == "archived"
    r = registered.post(f"/groups/{group['group_id']}/archive", json={"requested_by": "s"})
    assert r.status_code == 409


def test_unknown_family_cannot_form_group(registered):
    r = registered.post("/groups", json={"seeker_id": "s", "matched_ids": ["ghost"]})
    assert r.status_code == 400


def test_invitation_response(registered):
    group = registered.post("/groups", json={"seeker_id": "s", "matched_ids": ["d", "p"]}).json()
    services = registered.app.state.services
    invitation = next(i for i in services.invitations.for_group(group["group_id"]) if i.invitee_id == "p")
    r = registered.post(f"/invitations/{invitation.invitation_id}/respond", json={"accept": False})
    assert r.status_code == 200
    assert r.json()["status"] == "declined"
    assert [m.family_id for m in services.groups.get(group["group_id"]).members] == ["s", "d"]


def test_proposal_voting(registered):
    group = registered.post("/groups", json={"seeker_id": "s", "matched_ids": ["d", "p"]}).json()
    current = T0 + timedelta(days=1)
    r = registered.post("/proposals", json={
        "group_id": group["group_id"],
        "proposer_id": "s",
        "current_time": current.isoformat(),
        "proposed_time": (current + timedelta(minutes=15)).isoformat(),
        "reason": "Later start on Tuesdays",
    })
    assert r.status_code == 200
    proposal = r.json()
    assert proposal["status"] == "pending"
    assert proposal["votes_required"] == 3
    pid = proposal["proposal_id"]

    r = registered.post("/proposals", json={
        "group_id": group["group_id"],
        "proposer_id": "d",
        "current_time": current.isoformat(),
        "proposed_time": (current + timedelta(minutes=30)).isoformat(),
    })
    assert r.status_code == 409

    r = registered.post(f"/proposals/{pid}/votes", json={"voter_id": "s", "choice": "maybe"})
    assert r.status_code == 400

    for voter, choice in (("s", "approve"), ("d", "approve"), ("p", "reject")):
        r = registered.post(f"/proposals/{pid}/votes", json={"voter_id": voter, "choice": choice})
        assert r.status_code == 200
    assert r.json()["status"] == "approved"

    r = registered.post(f"/proposals/{pid}/votes", json={"voter_id": "p", "choice": "approve"})
    assert r.status_code == 409

    r = registered.get(f"/groups/{group['group_id']}/proposals")
    assert [p["proposal_id"] for p in r.json()] == [pid]


def test_cancel_proposal(registered):
    group = registered.post("/groups", json={"seeker_id": "s", "matched_ids": ["d"]}).json()
    current = T0 + timedelta(days=1)
    pid = registered.post("/proposals", json={
        "group_id": group["group_id"],
        "proposer_id": "d",
        "current_time": current.isoformat(),
        "proposed_time": (current - timedelta(minutes=15)).isoformat(),
    }).json()["proposal_id"]

    r = registered.post(f"/proposals/{pid}/cancel", json={"requested_by": "s"})
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    r = registered.post("/proposals/missing/cancel", json={"requested_by": "s"})
    assert r.status_code == 400


class ClosingGeoProvider(StaticGeoRiskProvider):
    def __init__(self):
        super().__init__([SchoolLocation("school-1", "Lyneham Primary", SCHOOL)])
        self.closed = False

    def close(self):
        self.closed = True


def test_shutdown_closes_geo_provider():
    provider = ClosingGeoProvider()
    services = build_services(Settings(enable_scheduler=False, _env_file=None), geo_provider=provider)
    with TestClient(create_app(services)) as c:
        assert c.get("/health").status_code == 200
        assert provider.closed is False
    assert provider.closed is True


def test_docs_hidden_in_production():
    services = build_services(
        Settings(app_env="production", enable_scheduler=False, _env_file=None),
        geo_provider=StaticGeoRiskProvider(),
    )
    with TestClient(create_app(services)) as c:
        assert c.get("/docs").status_code == 404
        assert c.get("/health").status_code == 200
