from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from recommender.errors import UpstreamUnavailable
from recommender.records import AgeRange, GeoPoint, InteractionRecord
from recommender.stores import (
    ActivityQuery,
    ProfileQuery,
    SqlActivityStore,
    SqlInteractionStore,
    SqlProfileStore,
)


class _FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def all(self):
        return list(self._rows)


class _FakeDB:
    def __init__(self, rows=None):
        self.rows = rows or []
        self.calls = []
        self.committed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, stmt, params=None):
        self.calls.append((str(stmt), params or {}))
        return _FakeResult(self.rows)

    def commit(self):
        self.committed = True


def _profile_row(user_id: str, **kw):
    row = {
        "user_id": user_id,
        "age": 30,
        "gender": "woman",
        "latitude": 40.7128,
        "longitude": -74.0060,
        "city": "new york",
        "display_name": "Ana",
        "bio": None,
        "occupation": None,
        "education": None,
        "interests": '["Coffee", "hiking"]',
        "lifestyle": None,
        "personality": {"openness": 70},
        "activity_level": 5,
        "last_active": datetime(2026, 10, 1, tzinfo=timezone.utc),
        "preferences": '{"age_range": {"min": 25, "max": 35}}',
    }
    row.update(kw)
    return row


def test_profile_get_maps_row():
    db = _FakeDB([_profile_row("u1")])
    profile = SqlProfileStore(session_factory=lambda: db).get("u1")

    assert profile.user_id == "u1"
    assert profile.interests == ["coffee", "hiking"]
    assert profile.location == GeoPoint(40.7128, -74.0060, "new york")
    assert profile.preferences.age_range == AgeRange(25, 35)
    assert profile.personality == {"openness": 70.0}
    assert db.calls[0][1] == {"user_id": "u1"}


def test_profile_get_missing_returns_none():
    assert SqlProfileStore(session_factory=lambda: _FakeDB([])).get("ghost") is None


def test_profile_query_binds_filters_and_rechecks_radius():
    db = _FakeDB([_profile_row("near"), _profile_row("far", latitude=40.95)])
    filters = ProfileQuery(
        exclude_ids={"me", "liked"},
        genders=["woman"],
        age_range=AgeRange(25, 35),
        center=GeoPoint(40.7128, -74.0060),
        max_distance_km=10,
        limit=5,
    )

    out = SqlProfileStore(session_factory=lambda: db).query(filters)

    assert [p.user_id for p in out] == ["near"]
    sql, params = db.calls[0]
    assert "user_id = ANY(:exclude_ids)" in sql
    assert "gender = ANY(:genders)" in sql
    assert params["exclude_ids"] == ["liked", "me"]
    assert params["age_min"] == 25 and params["age_max"] == 35
    assert params["min_lat"] < 40.7128 < params["max_lat"]
    assert params["limit"] == 10


def test_interaction_append_commits():
    db = _FakeDB()
    record = InteractionRecord("u1", "u2", "like", datetime.now(timezone.utc), 0.8)
    SqlInteractionStore(session_factory=lambda: db).append(record)

    sql, params = db.calls[0]
    assert "INSERT INTO interaction" in sql
    assert params["actor_id"] == "u1"
    assert params["type"] == "like"
    assert db.committed


def test_interaction_list_filters_types():
    row = {"actor_id": "u1", "target_id": "u2", "type": "LIKE", "created_at": "2026-10-01T10:00:00Z", "confidence": None}
    db = _FakeDB([row])
    out = SqlInteractionStore(session_factory=lambda: db).list_by_actor("u1", {"like", "pass"})

    assert out[0].type == "like"
    assert out[0].created_at.tzinfo is not None
    assert db.calls[0][1]["types"] == ["like", "pass"]
    assert db.calls[0][1]["all_types"] is False


def test_activity_query_excludes_own_activities():
    rows = [
        {
            "activity_id": "a1",
            "title": "Run",
            "category": "sports",
            "tags": '["running"]',
            "latitude": 40.71,
            "longitude": -74.0,
            "city": "new york",
            "scheduled_at": datetime(2030, 1, 1, 18, tzinfo=timezone.utc),
            "organizer_id": "u9",
            "participant_ids": '["u9", "u1"]',
        },
        {
            "activity_id": "a2",
            "title": "Brunch",
            "category": "food",
            "tags": [],
            "latitude": 40.71,
            "longitude": -74.0,
            "city": "new york",
            "scheduled_at": datetime(2030, 1, 2, 11, tzinfo=timezone.utc),
            "organizer_id": "u8",
            "participant_ids": ["u8"],
        },
    ]
    db = _FakeDB(rows)
    filters = ActivityQuery(exclude_participant="u1", starts_after=datetime(2029, 1, 1, tzinfo=timezone.utc))

    out = SqlActivityStore(session_factory=lambda: db).query(filters)

    assert [a.activity_id for a in out] == ["a2"]


def test_operational_error_becomes_upstream_unavailable():
    def _down():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    with pytest.raises(UpstreamUnavailable):
        SqlProfileStore(session_factory=_down).get("u1")
