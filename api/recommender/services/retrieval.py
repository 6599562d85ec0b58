from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..config import RETRIEVAL_ACTIVE_WITHIN_DAYS
from ..records import AgeRange, Profile
from ..stores import ProfileQuery, ProfileStore, profile_matches

logger = logging.getLogger(__name__)


@dataclass
class RetrievalConstraints:
    age_range: AgeRange | None = None
    max_distance_km: float | None = None
    active_within_days: int | None = RETRIEVAL_ACTIVE_WITHIN_DAYS


class CandidateRetrieval:
    """Applies the requester's hard filters and returns an oversized candidate pool."""

    def __init__(self, profile_store: ProfileStore) -> None:
        self.profile_store = profile_store

    def build_query(
        self,
        requester: Profile,
        exclusions: set[str],
        constraints: RetrievalConstraints,
        pool_size: int,
        now: datetime | None = None,
    ) -> ProfileQuery:
        now = now or datetime.now(timezone.utc)
        active_since = None
        if constraints.active_within_days:
            active_since = now - timedelta(days=constraints.active_within_days)
        center = requester.location if constraints.max_distance_km else None
        return ProfileQuery(
            exclude_ids=set(exclusions) | {requester.user_id},
            genders=list(requester.preferences.gender_preferences),
            age_range=constraints.age_range or requester.preferences.age_range,
            center=center,
            max_distance_km=constraints.max_distance_km if center else None,
            active_since=active_since,
            limit=pool_size,
        )

    def fetch(
        self,
        requester: Profile,
        exclusions: set[str],
        constraints: RetrievalConstraints,
        pool_size: int,
    ) -> list[Profile]:
        if pool_size <= 0:
            return []
        query = self.build_query(requester, exclusions, constraints, pool_size)
        rows = self.profile_store.query(query)
        # Stores may apply filters coarsely (e.g. a bounding box); re-check every hard filter here.
        candidates = [p for p in rows if profile_matches(p, query)][:pool_size]
        if not candidates:
            logger.info("[RETRIEVAL] no candidates for user_id=%s", requester.user_id)
        return candidates
