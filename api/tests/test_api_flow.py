from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import recommender.main as m
from recommender.deps import get_recommendation_service
from recommender.errors import UpstreamUnavailable
from recommender.records import ActivityRecord, GeoPoint, Profile
from recommender.services import rate_limit
from recommender.services.engine import RecommendationService
from recommender.stores import InMemoryActivityStore, InMemoryInteractionStore, InMemoryProfileStore

NOW = datetime.now(timezone.utc)


def _user(user_id: str, age: int = 30):
    return Profile(
        user_id=user_id,
        age=age,
        display_name=user_id,
        location=GeoPoint(40.7128, -74.0060, "new york"),
        interests=["coffee", "hiking"],
        last_active=NOW - timedelta(hours=1),
    )


@pytest.fixture
def service():
    activities = [
        ActivityRecord(
            activity_id="a1",
            category="sports",
            title="Morning run",
            tags=("hiking",),
            location=GeoPoint(40.7130, -74.0050),
            scheduled_at=NOW + timedelta(days=2),
            organizer_id="c0",
            participant_ids=("c0", "c1", "c2"),
        )
    ]
    svc = RecommendationService(
        profile_store=InMemoryProfileStore([_user("me")] + [_user(f"c{i}", 27 + i) for i in range(3)]),
        interaction_store=InMemoryInteractionStore(),
        activity_store=InMemoryActivityStore(activities),
    )
    m.app.dependency_overrides[get_recommendation_service] = lambda: svc
    rate_limit.limiter.reset()
    yield svc
    m.app.dependency_overrides.clear()


@pytest.fixture
def client(service):
    return TestClient(m.app)


def _headers(user_id: str = "me"):
    return {"X-User-Id": user_id}


def test_people_recommendations_and_cache_flag(client):
    r1 = client.get("/recommendations/people", params={"minScore": 0, "limit": 2}, headers=_headers())
    assert r1.status_code == 200
    body = r1.json()
    assert body["count"] == len(body["recommendations"]) == 2
    assert body["cached"] is False
    assert {"user_id", "score", "confidence", "reasons", "breakdown"} <= set(body["recommendations"][0])

    r2 = client.get("/recommendations/people", params={"minScore": 0, "limit": 2}, headers=_headers())
    assert r2.json()["cached"] is True


def test_missing_user_header_is_rejected(client):
    r = client.get("/recommendations/people")
    assert r.status_code == 401


def test_unknown_user_is_404(client):
    r = client.get("/recommendations/people", headers=_headers("ghost"))
    assert r.status_code == 404


def test_invalid_age_range_is_400(client):
    r = client.get("/recommendations/people", params={"ageMin": 40, "ageMax": 30}, headers=_headers())
    assert r.status_code == 400


def test_activity_recommendations(client):
    r = client.get("/recommendations/activities", params={"minScore": 0}, headers=_headers())
    assert r.status_code == 200
    assert [a["activity_id"] for a in r.json()["recommendations"]] == ["a1"]


def test_explanation_and_unknown_candidate(client):
    ok = client.get("/recommendations/people/c0/explanation", headers=_headers())
    assert ok.status_code == 200
    assert ok.json()["candidate_id"] == "c0"
    assert ok.json()["reasons"]

    missing = client.get("/recommendations/people/ghost/explanation", headers=_headers())
    assert missing.status_code == 404


def test_feedback_then_refresh_excludes_candidate(client):
    r = client.post("/recommendations/feedback", json={"candidateId": "c0", "action": "pass"}, headers=_headers())
    assert r.status_code == 200
    assert r.json()["recorded"] is True

    refreshed = client.post("/recommendations/refresh", headers=_headers())
    assert refreshed.status_code == 200
    assert "c0" not in [c["user_id"] for c in refreshed.json()["recommendations"]]


def test_feedback_rejects_unknown_action(client):
    r = client.post("/recommendations/feedback", json={"candidateId": "c0", "action": "superlike"}, headers=_headers())
    assert r.status_code == 422


def test_category_routes(client):
    people = client.get("/recommendations/categories/people", headers=_headers())
    assert people.status_code == 200
    assert people.json()["category"] == "people"

    bad = client.get("/recommendations/categories/events", headers=_headers())
    assert bad.status_code == 400


def test_upstream_failure_is_503(client, service, monkeypatch):
    def _down(user_id):
        raise UpstreamUnavailable("db down")

    monkeypatch.setattr(service.profile_store, "get", _down)
    r = client.get("/recommendations/people", headers=_headers())
    assert r.status_code == 503


def test_rate_limit_returns_429(client, monkeypatch):
    class _Exhausted:
        def check(self, key, limit, window_seconds):
            return rate_limit.RateDecision(allowed=False, retry_after_seconds=30)

    monkeypatch.setattr(rate_limit, "limiter", _Exhausted())
    r = client.get("/recommendations/people", headers=_headers())
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "30"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/_scaffold/recommendations/health").json()["module"] == "recommendations"
