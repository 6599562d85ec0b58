from __future__ import annotations

from collections import Counter
from typing import Callable, Hashable

from ..config import DIVERSITY_GROUP_CAP, DIVERSITY_OVERFLOW_PENALTY
from ..records import ActivityRecord, Profile, ScoreResult

CITY_BOOST = 0.10
AGE_BUCKET_BOOST = 0.05
INTEREST_BOOST = 0.05

GroupKeyFn = Callable[[ScoreResult, Counter], tuple[Hashable, ...]]


def age_bucket(age: int | None) -> int | None:
    if age is None:
        return None
    return (age // 5) * 5


def dominant_interest(interests: list[str], popularity: Counter) -> str | None:
    """The candidate's tag that is most common across the result list; ties keep the candidate's order."""
    best = None
    best_count = -1
    for tag in interests:
        if popularity[tag] > best_count:
            best, best_count = tag, popularity[tag]
    return best


def person_group_key(result: ScoreResult, popularity: Counter) -> tuple[Hashable, ...]:
    profile = result.subject if isinstance(result.subject, Profile) else None
    if profile is None:
        return (None, None, None)
    return (profile.city, age_bucket(profile.age), dominant_interest(profile.interests, popularity))


def activity_group_key(result: ScoreResult, popularity: Counter) -> tuple[Hashable, ...]:
    activity = result.subject if isinstance(result.subject, ActivityRecord) else None
    return (activity.category if activity else None,)


def _interest_popularity(results: list[ScoreResult]) -> Counter:
    counts: Counter = Counter()
    for r in results:
        if isinstance(r.subject, Profile):
            counts.update(set(r.subject.interests))
    return counts


def diversify(
    sorted_results: list[ScoreResult],
    cap_per_group: int = DIVERSITY_GROUP_CAP,
    group_key: GroupKeyFn = person_group_key,
    boosts: tuple[float, ...] = (CITY_BOOST, AGE_BUCKET_BOOST, INTEREST_BOOST),
    floor: float = 0.0,
) -> list[ScoreResult]:
    """Boost the first result of each new city / age bucket / interest, damp over-full groups, re-sort.

    Input must already be in rank order and at or above `floor`; damping never pushes a score below
    `floor`. Ties after boosting keep the input order, so the output is deterministic for a given input.
    """
    popularity = _interest_popularity(sorted_results)
    seen: list[set] = []
    group_counts: Counter = Counter()
    boosted: list[tuple[float, int, ScoreResult]] = []

    for rank, result in enumerate(sorted_results):
        key = group_key(result, popularity)
        if len(seen) < len(key):
            seen.extend(set() for _ in range(len(key) - len(seen)))

        multiplier = 1.0
        for i, part in enumerate(key):
            if i < len(boosts) and part is not None and part not in seen[i]:
                multiplier += boosts[i]
                seen[i].add(part)

        if group_counts[key] >= cap_per_group:
            multiplier *= DIVERSITY_OVERFLOW_PENALTY
        group_counts[key] += 1

        result.score = round(max(floor, 0.0, min(1.0, result.score * multiplier)), 6)
        boosted.append((result.score, rank, result))

    boosted.sort(key=lambda item: (-item[0], item[1]))
    return [r for _, _, r in boosted]
