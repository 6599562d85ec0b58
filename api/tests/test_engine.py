from datetime import datetime, timedelta, timezone

import pytest

from recommender.errors import InvalidOptionsError, NotFoundError
from recommender.records import ActivityRecord, GeoPoint, InteractionRecord, Profile
from recommender.services.engine import RecommendationService
from recommender.stores import InMemoryActivityStore, InMemoryInteractionStore, InMemoryProfileStore

NOW = datetime.now(timezone.utc)


def _user(user_id: str, age: int = 30, interests=("coffee", "hiking")):
    return Profile(
        user_id=user_id,
        age=age,
        display_name=user_id,
        location=GeoPoint(40.7128, -74.0060, "new york"),
        interests=list(interests),
        last_active=NOW - timedelta(hours=2),
    )


def _service(n: int = 4, activities=(), interactions=()):
    profiles = [_user("me")] + [_user(f"c{i}", age=28 + i) for i in range(n)]
    return RecommendationService(
        profile_store=InMemoryProfileStore(profiles),
        interaction_store=InMemoryInteractionStore(interactions),
        activity_store=InMemoryActivityStore(activities),
    )


class _CountingPipeline:
    def __init__(self, pipeline):
        self._pipeline = pipeline
        self.calls = 0

    def __getattr__(self, name):
        return getattr(self._pipeline, name)

    def rank(self, requester, options):
        self.calls += 1
        return self._pipeline.rank(requester, options)


def _counting(service):
    counter = _CountingPipeline(service.pipeline)
    service.pipeline = counter
    return counter


def test_repeat_call_is_served_from_cache():
    service = _service()
    counter = _counting(service)

    first = service.get_person_recommendations("me", {"minScore": 0.0})
    second = service.get_person_recommendations("me", {"minScore": 0.0})

    assert counter.calls == 1
    assert first.cached is False
    assert second.cached is True
    assert second.model_dump(exclude={"cached"}) == first.model_dump(exclude={"cached"})
    assert second.model_dump_json(include={"recommendations"}) == first.model_dump_json(include={"recommendations"})


def test_force_refresh_recomputes():
    service = _service()
    counter = _counting(service)
    service.get_person_recommendations("me", {"minScore": 0.0})
    service.get_person_recommendations("me", {"minScore": 0.0, "forceRefresh": True})
    assert counter.calls == 2


def test_different_options_use_different_cache_entries():
    service = _service()
    counter = _counting(service)
    service.get_person_recommendations("me", {"limit": 5, "minScore": 0.0})
    service.get_person_recommendations("me", {"limit": 2, "minScore": 0.0})
    assert counter.calls == 2


def test_feedback_invalidates_cache_and_next_call_recomputes():
    service = _service()
    counter = _counting(service)
    before = service.get_person_recommendations("me", {"minScore": 0.0})
    assert "c0" in [r.user_id for r in before.recommendations]

    receipt = service.submit_feedback("me", "c0", "pass")
    after = service.get_person_recommendations("me", {"minScore": 0.0})

    assert receipt.recorded is True
    assert receipt.invalidated_entries == 1
    assert counter.calls == 2
    assert after.cached is False
    assert "c0" not in [r.user_id for r in after.recommendations]


def test_reciprocated_like_records_match_for_both_users():
    interactions = [InteractionRecord("c1", "me", "like", NOW - timedelta(days=1))]
    service = _service(interactions=interactions)
    service.get_person_recommendations("c1", {"minScore": 0.0})

    receipt = service.submit_feedback("me", "c1", "like", confidence=0.9)

    assert receipt.matched is True
    matches = service.interaction_store.list_by_actor("c1", {"match"})
    assert [r.target_id for r in matches] == ["me"]
    assert receipt.invalidated_entries == 1


def test_feedback_validation():
    service = _service()
    with pytest.raises(InvalidOptionsError):
        service.submit_feedback("me", "c0", "superlike")
    with pytest.raises(InvalidOptionsError):
        service.submit_feedback("me", "me", "like")
    with pytest.raises(InvalidOptionsError):
        service.submit_feedback("me", "c0", "like", confidence=2.0)
    with pytest.raises(NotFoundError):
        service.submit_feedback("me", "ghost", "like")


def test_unknown_requester_raises_not_found():
    with pytest.raises(NotFoundError):
        _service().get_person_recommendations("ghost")


def test_invalid_options_raise():
    service = _service()
    with pytest.raises(InvalidOptionsError):
        service.get_person_recommendations("me", {"ageRange": {"min": 40, "max": 30}})
    with pytest.raises(InvalidOptionsError):
        service.get_person_recommendations("me", {"limit": 0})


def test_explain_returns_breakdown_and_reasons():
    service = _service()
    out = service.explain("me", "c0")

    assert out.candidate_id == "c0"
    assert set(out.breakdown) == {"location", "age", "interests", "personality", "activity", "behavior"}
    assert out.reasons
    assert 0.0 <= out.score <= 1.0
    assert out.summary.endswith(".")


def test_explain_unknown_candidate_raises_not_found():
    with pytest.raises(NotFoundError) as exc:
        _service().explain("me", "ghost")
    assert exc.value.kind == "candidate"


def test_activity_recommendations_are_cached_separately():
    activities = [
        ActivityRecord(
            activity_id="a1",
            category="food",
            title="Brunch",
            tags=("coffee",),
            location=GeoPoint(40.7130, -74.0050),
            scheduled_at=NOW + timedelta(days=3),
            organizer_id="c0",
            participant_ids=("c0", "c1", "c2"),
        )
    ]
    service = _service(activities=activities)
    first = service.get_activity_recommendations("me", {"minScore": 0.0})
    second = service.get_activity_recommendations("me", {"minScore": 0.0})

    assert [a.activity_id for a in first.recommendations] == ["a1"]
    assert first.recommendations[0].title == "Brunch"
    assert second.cached is True


def test_refresh_and_warm_cache():
    service = _service()
    counter = _counting(service)
    assert service.warm_cache(["me", "ghost"]) == {"warmed": 1, "failed": 1}
    service.refresh("me")
    assert counter.calls == 2
