from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from ..config import ACTIVITY_CACHE_TTL_SECONDS, PERSON_CACHE_TTL_SECONDS
from ..errors import InvalidOptionsError, NotFoundError
from ..records import ActivityRecord, InteractionRecord, Profile, ScoreResult
from ..schemas import (
    ActivityOptions,
    ActivityRecommendationList,
    Explanation,
    FeedbackReceipt,
    RankedActivity,
    RankedCandidate,
    RecommendationList,
    RecommendationOptions,
)
from ..stores import ActivityStore, InteractionStore, ProfileStore
from .cache import CacheKey, RecommendationCache
from .explanations import explain as explain_breakdown, summarize
from .features import ACTIVITY, PERSON, PERSON_FEATURES
from .ranking import RankingOutcome, RankingPipeline
from .scoring import InferenceFn, ScoringModel

logger = logging.getLogger(__name__)

FEEDBACK_ACTIONS = ("like", "pass", "report")


def _to_ranked_candidate(r: ScoreResult) -> RankedCandidate:
    return RankedCandidate(
        user_id=r.entity_id,
        score=round(r.score, 6),
        confidence=r.confidence,
        reasons=list(r.reasons),
        breakdown=dict(r.breakdown),
        distance_km=r.context.get("distance_km"),
        shared_interests=list(r.context.get("shared_interests") or []),
        model_version=r.model_version,
    )


def _to_ranked_activity(r: ScoreResult) -> RankedActivity:
    activity = r.subject if isinstance(r.subject, ActivityRecord) else None
    return RankedActivity(
        activity_id=r.entity_id,
        title=activity.title if activity else None,
        category=activity.category if activity else None,
        scheduled_at=r.scheduled_at,
        score=round(r.score, 6),
        confidence=r.confidence,
        reasons=list(r.reasons),
        breakdown=dict(r.breakdown),
        distance_km=r.context.get("distance_km"),
    )


class RecommendationService:
    """Entry points used by the HTTP layer: ranked people, ranked activities, explanations, feedback."""

    def __init__(
        self,
        profile_store: ProfileStore,
        interaction_store: InteractionStore,
        activity_store: ActivityStore,
        inference: InferenceFn | None = None,
        cache: RecommendationCache | None = None,
        pipeline: RankingPipeline | None = None,
    ) -> None:
        self.profile_store = profile_store
        self.interaction_store = interaction_store
        self.activity_store = activity_store
        self.cache = cache or RecommendationCache()
        self.pipeline = pipeline or RankingPipeline(
            profile_store,
            interaction_store,
            activity_store,
            person_model=ScoringModel(PERSON_FEATURES, inference=inference),
        )

    def _require_profile(self, user_id: str) -> Profile:
        profile = self.profile_store.get(user_id)
        if profile is None:
            raise NotFoundError("user", user_id)
        return profile

    def get_person_recommendations(self, user_id: str, options: Any = None) -> RecommendationList:
        """Ranked people for `user_id`. A cache hit returns the stored page unchanged except for `cached=True`."""
        opts = RecommendationOptions.parse(options)
        key = CacheKey.for_options(user_id, PERSON, opts.fingerprint())
        if opts.force_refresh:
            self.cache.invalidate_key(key)

        computed = False

        def _compute() -> RecommendationList:
            nonlocal computed
            computed = True
            requester = self._require_profile(user_id)
            outcome = self.pipeline.rank(requester, opts)
            items = [_to_ranked_candidate(r) for r in outcome.results]
            return RecommendationList(recommendations=items, count=len(items), partial=outcome.partial)

        page = self.cache.get_or_compute(key, _compute, PERSON_CACHE_TTL_SECONDS, cacheable=lambda p: not p.partial)
        if not computed:
            page = page.model_copy(update={"cached": True})
        logger.info("[RECS] people user_id=%s count=%s cached=%s partial=%s", user_id, page.count, page.cached, page.partial)
        return page

    def get_activity_recommendations(self, user_id: str, options: Any = None) -> ActivityRecommendationList:
        opts = ActivityOptions.parse(options)
        key = CacheKey.for_options(user_id, ACTIVITY, opts.fingerprint())
        if opts.force_refresh:
            self.cache.invalidate_key(key)

        computed = False

        def _compute() -> ActivityRecommendationList:
            nonlocal computed
            computed = True
            user = self._require_profile(user_id)
            outcome: RankingOutcome = self.pipeline.rank_activities(user, opts)
            items = [_to_ranked_activity(r) for r in outcome.results]
            return ActivityRecommendationList(recommendations=items, count=len(items), partial=outcome.partial)

        page = self.cache.get_or_compute(key, _compute, ACTIVITY_CACHE_TTL_SECONDS, cacheable=lambda p: not p.partial)
        if not computed:
            page = page.model_copy(update={"cached": True})
        logger.info("[RECS] activities user_id=%s count=%s cached=%s", user_id, page.count, page.cached)
        return page

    def explain(self, user_id: str, candidate_id: str) -> Explanation:
        requester = self._require_profile(user_id)
        candidate = self.profile_store.get(candidate_id)
        if candidate is None:
            raise NotFoundError("candidate", candidate_id)

        pipeline = self.pipeline
        result = pipeline.score_candidate(
            requester,
            candidate,
            pipeline.history(user_id),
            self.activity_store.list_for_user(user_id),
        )
        return Explanation(
            user_id=user_id,
            candidate_id=candidate_id,
            score=result.score,
            confidence=result.confidence,
            breakdown=result.breakdown,
            reasons=explain_breakdown(result.breakdown, result.context, kind=PERSON),
            summary=summarize(result.breakdown),
            model_version=result.model_version,
        )

    def submit_feedback(
        self,
        user_id: str,
        candidate_id: str,
        action: str,
        confidence: float | None = None,
    ) -> FeedbackReceipt:
        action = str(action or "").strip().lower()
        if action not in FEEDBACK_ACTIONS:
            raise InvalidOptionsError(f"Unsupported feedback action '{action}', expected one of {FEEDBACK_ACTIONS}")
        if confidence is not None and not 0.0 <= float(confidence) <= 1.0:
            raise InvalidOptionsError("Feedback confidence must be within [0, 1]")
        if user_id == candidate_id:
            raise InvalidOptionsError("Feedback must reference another user")
        self._require_profile(user_id)
        if self.profile_store.get(candidate_id) is None:
            raise NotFoundError("candidate", candidate_id)

        now = datetime.now(timezone.utc)
        self.interaction_store.append(
            InteractionRecord(actor_id=user_id, target_id=candidate_id, type=action, created_at=now, confidence=confidence)
        )

        matched = False
        if action == "like":
            liked_back = self.interaction_store.list_by_actor(candidate_id, {"like"})
            matched = any(r.target_id == user_id for r in liked_back)
            if matched:
                self.interaction_store.append(InteractionRecord(actor_id=user_id, target_id=candidate_id, type="match", created_at=now))
                self.interaction_store.append(InteractionRecord(actor_id=candidate_id, target_id=user_id, type="match", created_at=now))

        invalidated = self.cache.invalidate(user_id)
        if matched:
            invalidated += self.cache.invalidate(candidate_id)
        logger.info(
            "[FEEDBACK] user_id=%s candidate_id=%s action=%s matched=%s invalidated=%s",
            user_id,
            candidate_id,
            action,
            matched,
            invalidated,
        )
        return FeedbackReceipt(recorded=True, action=action, matched=matched, invalidated_entries=invalidated)

    def refresh(self, user_id: str) -> RecommendationList:
        self._require_profile(user_id)
        self.cache.invalidate(user_id)
        return self.get_person_recommendations(user_id)

    def warm_cache(self, user_ids: Iterable[str]) -> dict[str, int]:
        summary = {"warmed": 0, "failed": 0}
        for user_id in user_ids:
            try:
                self.get_person_recommendations(user_id)
                self.get_activity_recommendations(user_id)
            except Exception as exc:
                summary["failed"] += 1
                logger.warning("[RECS] warmup failed for user_id=%s: %s", user_id, exc)
            else:
                summary["warmed"] += 1
        return summary
