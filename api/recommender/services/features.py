from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from ..config import BEHAVIOR_MIN_EVENTS, DEFAULT_ACTIVITY_WEIGHTS, DEFAULT_PERSON_WEIGHTS, TRAIT_SCALE_MAX
from ..records import PERSONALITY_TRAITS, ActivityRecord, GeoPoint, InteractionRecord, Profile
from .geo import distance_km

logger = logging.getLogger(__name__)

NEUTRAL = 0.5
PERSON = "person"
ACTIVITY = "activity"

PERSON_FEATURE_NAMES = ("location", "age", "interests", "personality", "activity", "behavior")
ACTIVITY_FEATURE_NAMES = ("location", "interests", "category", "timing", "group_size", "social")

PREFERRED_HOURS: dict[str, tuple[int, ...]] = {
    "morning": (8, 9, 10, 11),
    "afternoon": (12, 13, 14, 15, 16),
    "evening": (17, 18, 19, 20),
    "night": (21, 22, 23),
}
DEFAULT_PREFERRED_HOURS = tuple(range(12, 21))


@dataclass
class FeatureInputs:
    """History snapshots needed by the extractors, loaded once per scored pair."""

    subject_history: list[InteractionRecord] = field(default_factory=list)
    target_history: list[InteractionRecord] = field(default_factory=list)
    subject_activities: list[ActivityRecord] = field(default_factory=list)
    target_activities: list[ActivityRecord] = field(default_factory=list)


@dataclass
class ExtractedFeatures:
    values: dict[str, float]
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FeatureSet:
    kind: str
    names: tuple[str, ...]
    default_weights: dict[str, float]
    extract: Callable[[Profile, Any, FeatureInputs], ExtractedFeatures]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _safe(name: str, fn: Callable[[], float]) -> float:
    try:
        return _clamp(fn())
    except (TypeError, ValueError, AttributeError, KeyError, ZeroDivisionError) as exc:
        logger.warning("[FEATURES] %s fell back to neutral: %s", name, exc)
        return NEUTRAL


def _jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def location_score(a: GeoPoint | None, b: GeoPoint | None) -> float:
    if a is None or b is None or not a.is_valid() or not b.is_valid():
        return 0.3
    distance = distance_km(a, b)
    if distance <= 5:
        return 1.0
    if distance <= 15:
        return 0.8
    if distance <= 30:
        return 0.6
    if distance <= 50:
        return 0.4
    return 0.2


def age_score(requester: Profile, candidate: Profile) -> float:
    if requester.age is None or candidate.age is None:
        return NEUTRAL
    score = 1.0
    wanted_by_requester = requester.preferences.age_range
    wanted_by_candidate = candidate.preferences.age_range
    if (wanted_by_requester and not wanted_by_requester.contains(candidate.age)) or (
        wanted_by_candidate and not wanted_by_candidate.contains(requester.age)
    ):
        score *= 0.3

    diff = abs(requester.age - candidate.age)
    if diff <= 2:
        score *= 1.0
    elif diff <= 5:
        score *= 0.9
    elif diff <= 10:
        score *= 0.7
    else:
        score *= 0.4
    return score


def shared_interests(a: list[str], b: list[str]) -> list[str]:
    other = set(b)
    return [tag for tag in a if tag in other]


def interest_score(a: list[str], b: list[str]) -> float:
    if not a or not b:
        return 0.4
    common = len(shared_interests(a, b))
    score = _jaccard(set(a), set(b))
    if common >= 5:
        score += 0.2
    elif common >= 3:
        score += 0.1
    return min(score, 1.0)


def personality_score(a: dict[str, float] | None, b: dict[str, float] | None) -> float:
    if not a or not b:
        return NEUTRAL
    sims = [
        1.0 - abs(float(a[t]) - float(b[t])) / TRAIT_SCALE_MAX
        for t in PERSONALITY_TRAITS
        if a.get(t) is not None and b.get(t) is not None
    ]
    if not sims:
        return NEUTRAL
    return sum(sims) / len(sims)


def _categories(user_id: str, activities: list[ActivityRecord]) -> set[str]:
    return {a.category for a in activities if a.category and a.involves(user_id)}


def activity_overlap_score(
    a_id: str,
    a_activities: list[ActivityRecord],
    b_id: str,
    b_activities: list[ActivityRecord],
) -> float:
    cats_a = _categories(a_id, a_activities)
    cats_b = _categories(b_id, b_activities)
    if not cats_a and not cats_b:
        return NEUTRAL
    return _jaccard(cats_a, cats_b)


def like_response_rate(user_id: str, history: list[InteractionRecord]) -> float | None:
    """Share of users who liked `user_id` that were liked (or matched) back."""
    received = {r.actor_id for r in history if r.target_id == user_id and r.type == "like"}
    if not received:
        return None
    returned = {r.target_id for r in history if r.actor_id == user_id and r.type in {"like", "match"}}
    return len(received & returned) / len(received)


def active_hour_histogram(user_id: str, history: list[InteractionRecord]) -> list[float] | None:
    hours = [r.created_at.hour for r in history if r.actor_id == user_id and r.created_at is not None]
    if len(hours) < BEHAVIOR_MIN_EVENTS:
        return None
    counts = Counter(hours)
    total = float(len(hours))
    return [counts.get(h, 0) / total for h in range(24)]


def behavior_score(
    a_id: str,
    a_history: list[InteractionRecord],
    b_id: str,
    b_history: list[InteractionRecord],
) -> float:
    rate_a = like_response_rate(a_id, a_history)
    rate_b = like_response_rate(b_id, b_history)
    hist_a = active_hour_histogram(a_id, a_history)
    hist_b = active_hour_histogram(b_id, b_history)

    response = None
    if rate_a is not None and rate_b is not None:
        response = 1.0 - abs(rate_a - rate_b)
    timing = None
    if hist_a is not None and hist_b is not None:
        timing = sum(min(x, y) for x, y in zip(hist_a, hist_b))

    if response is None and timing is None:
        return NEUTRAL
    return 0.6 * (NEUTRAL if response is None else response) + 0.4 * (NEUTRAL if timing is None else timing)


def extract_person_features(requester: Profile, candidate: Profile, inputs: FeatureInputs) -> ExtractedFeatures:
    values = {
        "location": _safe("location", lambda: location_score(requester.location, candidate.location)),
        "age": _safe("age", lambda: age_score(requester, candidate)),
        "interests": _safe("interests", lambda: interest_score(requester.interests, candidate.interests)),
        "personality": _safe("personality", lambda: personality_score(requester.personality, candidate.personality)),
        "activity": _safe(
            "activity",
            lambda: activity_overlap_score(
                requester.user_id, inputs.subject_activities, candidate.user_id, inputs.target_activities
            ),
        ),
        "behavior": _safe(
            "behavior",
            lambda: behavior_score(requester.user_id, inputs.subject_history, candidate.user_id, inputs.target_history),
        ),
    }
    context: dict[str, Any] = {"shared_interests": shared_interests(requester.interests, candidate.interests)}
    if requester.location and candidate.location:
        context["distance_km"] = round(distance_km(requester.location, candidate.location), 1)
    return ExtractedFeatures(values=values, context=context)


def activity_interest_score(interests: list[str], tags: tuple[str, ...]) -> float:
    if not interests or not tags:
        return 0.4
    common = len(set(interests) & set(tags))
    score = common / len(set(tags))
    if common >= 3:
        score += 0.1
    return min(score, 1.0)


def category_score(user_id: str, activity: ActivityRecord, history: list[ActivityRecord]) -> float:
    cats = _categories(user_id, history)
    if not cats:
        return NEUTRAL
    return 1.0 if activity.category in cats else 0.3


def timing_score(user: Profile, activity: ActivityRecord) -> float:
    if activity.scheduled_at is None:
        return NEUTRAL
    hours = PREFERRED_HOURS.get(user.preferences.time_preference or "", DEFAULT_PREFERRED_HOURS)
    return 1.0 if activity.scheduled_at.hour in hours else 0.3


def is_optimal_group_size(size: int, preference: str | None) -> bool:
    preference = preference or "medium"
    if preference == "small":
        return size < 5
    if preference == "medium":
        return 3 <= size <= 8
    if preference == "large":
        return size > 5
    return True


def group_size_score(user: Profile, activity: ActivityRecord) -> float:
    return 1.0 if is_optimal_group_size(len(activity.participant_ids), user.preferences.group_size_preference) else 0.4


def social_score(user_id: str, activity: ActivityRecord, history: list[InteractionRecord]) -> float:
    liked = {r.target_id for r in history if r.actor_id == user_id and r.type in {"like", "match"}}
    people = set(activity.participant_ids)
    if activity.organizer_id:
        people.add(activity.organizer_id)
    return 1.0 if liked & people else NEUTRAL


def extract_activity_features(user: Profile, activity: ActivityRecord, inputs: FeatureInputs) -> ExtractedFeatures:
    values = {
        "location": _safe("location", lambda: location_score(user.location, activity.location)),
        "interests": _safe("interests", lambda: activity_interest_score(user.interests, activity.tags)),
        "category": _safe("category", lambda: category_score(user.user_id, activity, inputs.subject_activities)),
        "timing": _safe("timing", lambda: timing_score(user, activity)),
        "group_size": _safe("group_size", lambda: group_size_score(user, activity)),
        "social": _safe("social", lambda: social_score(user.user_id, activity, inputs.subject_history)),
    }
    context: dict[str, Any] = {
        "shared_interests": [t for t in user.interests if t in set(activity.tags)],
        "category": activity.category,
    }
    if user.location and activity.location:
        context["distance_km"] = round(distance_km(user.location, activity.location), 1)
    return ExtractedFeatures(values=values, context=context)


PERSON_FEATURES = FeatureSet(
    kind=PERSON,
    names=PERSON_FEATURE_NAMES,
    default_weights=DEFAULT_PERSON_WEIGHTS,
    extract=extract_person_features,
)
ACTIVITY_FEATURES = FeatureSet(
    kind=ACTIVITY,
    names=ACTIVITY_FEATURE_NAMES,
    default_weights=DEFAULT_ACTIVITY_WEIGHTS,
    extract=extract_activity_features,
)


def feature_vector(values: dict[str, float], feature_set: FeatureSet) -> list[float]:
    return [float(values.get(name, NEUTRAL)) for name in feature_set.names]
