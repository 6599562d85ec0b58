from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence, TypeVar

from ..config import (
    ACTIVITY_POOL_MULTIPLIER,
    CANDIDATE_POOL_MULTIPLIER,
    DIVERSITY_GROUP_CAP,
    MIN_SCORE,
    RANKING_TIMEOUT_SECONDS,
    RANKING_WORKERS,
)
from ..records import EXCLUDING_INTERACTION_TYPES, ActivityRecord, InteractionRecord, Profile, ScoreResult
from ..schemas import RecommendationOptions
from ..stores import ActivityQuery, ActivityStore, InteractionStore, ProfileStore
from .diversity import activity_group_key, diversify
from .explanations import explain
from .features import ACTIVITY, ACTIVITY_FEATURES, PERSON, PERSON_FEATURES, FeatureInputs
from .retrieval import CandidateRetrieval, RetrievalConstraints
from .scoring import ScoringModel, activity_confidence, person_confidence

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RankingOutcome:
    results: list[ScoreResult] = field(default_factory=list)
    partial: bool = False
    considered: int = 0
    failures: int = 0


def _person_sort_key(r: ScoreResult) -> tuple[float, float, str]:
    ts = r.last_active.timestamp() if r.last_active else float("-inf")
    return (-r.score, -ts, r.entity_id)


def _activity_sort_key(r: ScoreResult) -> tuple[float, float, str]:
    ts = r.scheduled_at.timestamp() if r.scheduled_at else float("inf")
    return (-r.score, ts, r.entity_id)


class RankingPipeline:
    def __init__(
        self,
        profile_store: ProfileStore,
        interaction_store: InteractionStore,
        activity_store: ActivityStore,
        person_model: ScoringModel | None = None,
        activity_model: ScoringModel | None = None,
        max_workers: int = RANKING_WORKERS,
        timeout_seconds: float | None = RANKING_TIMEOUT_SECONDS,
        diversity_cap: int = DIVERSITY_GROUP_CAP,
    ) -> None:
        self.profile_store = profile_store
        self.interaction_store = interaction_store
        self.activity_store = activity_store
        self.retrieval = CandidateRetrieval(profile_store)
        self.person_model = person_model or ScoringModel(PERSON_FEATURES)
        self.activity_model = activity_model or ScoringModel(ACTIVITY_FEATURES)
        self.max_workers = max(1, int(max_workers))
        self.timeout_seconds = timeout_seconds
        self.diversity_cap = diversity_cap

    def exclusion_set(self, user_id: str) -> set[str]:
        records = self.interaction_store.list_by_actor(user_id, EXCLUDING_INTERACTION_TYPES)
        return {r.target_id for r in records}

    def history(self, user_id: str) -> list[InteractionRecord]:
        return self.interaction_store.list_by_actor(user_id) + self.interaction_store.list_by_target(user_id)

    def score_candidate(
        self,
        requester: Profile,
        candidate: Profile,
        requester_history: list[InteractionRecord],
        requester_activities: list[ActivityRecord],
        now: datetime | None = None,
    ) -> ScoreResult:
        inputs = FeatureInputs(
            subject_history=requester_history,
            target_history=self.history(candidate.user_id),
            subject_activities=requester_activities,
            target_activities=self.activity_store.list_for_user(candidate.user_id),
        )
        extracted = PERSON_FEATURES.extract(requester, candidate, inputs)
        comp = self.person_model.score(extracted.values)
        return ScoreResult(
            entity_id=candidate.user_id,
            kind=PERSON,
            score=comp.score,
            breakdown=comp.breakdown,
            confidence=person_confidence(requester, candidate, now),
            rule_score=comp.rule_score,
            ml_score=comp.ml_score,
            model_version=comp.model_version,
            last_active=candidate.last_active,
            context=extracted.context,
            subject=candidate,
        )

    def score_activity(self, user: Profile, activity: ActivityRecord, inputs: FeatureInputs) -> ScoreResult:
        extracted = ACTIVITY_FEATURES.extract(user, activity, inputs)
        comp = self.activity_model.score(extracted.values)
        return ScoreResult(
            entity_id=activity.activity_id,
            kind=ACTIVITY,
            score=comp.score,
            breakdown=comp.breakdown,
            confidence=activity_confidence(user, activity),
            rule_score=comp.rule_score,
            ml_score=comp.ml_score,
            model_version=comp.model_version,
            scheduled_at=activity.scheduled_at,
            context=extracted.context,
            subject=activity,
        )

    def _score_concurrently(
        self,
        items: Sequence[T],
        task: Callable[[T], ScoreResult],
        timeout: float | None,
        describe: Callable[[T], Any],
    ) -> tuple[list[ScoreResult], bool, int]:
        if not items:
            return [], False, 0
        cancelled = threading.Event()

        def _run(item: T) -> ScoreResult | None:
            if cancelled.is_set():
                return None
            return task(item)

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(items)), thread_name_prefix="ranking")
        try:
            futures = [executor.submit(_run, item) for item in items]
            done, not_done = wait(futures, timeout=timeout)
        finally:
            cancelled.set()
            executor.shutdown(wait=False, cancel_futures=True)

        results: list[ScoreResult] = []
        failures = 0
        for item, future in zip(items, futures):
            if future not in done:
                continue
            try:
                result = future.result()
            except Exception as exc:
                failures += 1
                logger.warning("[RANKING] skipped %s: %s", describe(item), exc)
                continue
            if result is not None:
                results.append(result)

        if not_done:
            logger.warning("[RANKING] deadline reached, %s of %s items unscored", len(not_done), len(items))
        return results, bool(not_done), failures

    def _min_score(self, options: RecommendationOptions, fallback: float | None = None) -> float:
        if options.min_score is not None:
            return options.min_score
        if fallback is not None:
            return fallback
        return MIN_SCORE

    def _timeout(self, options: RecommendationOptions) -> float | None:
        return options.timeout_seconds if options.timeout_seconds is not None else self.timeout_seconds

    def rank(self, requester: Profile, options: RecommendationOptions) -> RankingOutcome:
        exclusions = self.exclusion_set(requester.user_id)
        constraints = RetrievalConstraints(
            age_range=options.age_range.to_record() if options.age_range else None,
            max_distance_km=options.max_distance_km,
        )
        candidates = self.retrieval.fetch(
            requester, exclusions, constraints, pool_size=options.limit * CANDIDATE_POOL_MULTIPLIER
        )
        if not candidates:
            return RankingOutcome()

        requester_history = self.history(requester.user_id)
        requester_activities = self.activity_store.list_for_user(requester.user_id)
        now = datetime.now(timezone.utc)
        scored, partial, failures = self._score_concurrently(
            candidates,
            lambda c: self.score_candidate(requester, c, requester_history, requester_activities, now),
            self._timeout(options),
            describe=lambda c: f"candidate_id={c.user_id}",
        )

        threshold = self._min_score(options, requester.preferences.min_score)
        kept = sorted((r for r in scored if r.score >= threshold), key=_person_sort_key)
        top = diversify(kept, self.diversity_cap, floor=threshold)[: options.limit]
        for r in top:
            r.reasons = explain(r.breakdown, r.context, kind=PERSON)

        logger.info(
            "[RANKING] user_id=%s considered=%s scored=%s kept=%s returned=%s partial=%s",
            requester.user_id,
            len(candidates),
            len(scored),
            len(kept),
            len(top),
            partial,
        )
        return RankingOutcome(results=top, partial=partial, considered=len(candidates), failures=failures)

    def rank_activities(self, user: Profile, options: RecommendationOptions) -> RankingOutcome:
        now = datetime.now(timezone.utc)
        query = ActivityQuery(
            center=user.location,
            max_distance_km=options.max_distance_km if user.location else None,
            category=(options.category or "").strip().lower() or None,
            starts_after=now,
            exclude_participant=user.user_id,
            limit=options.limit * ACTIVITY_POOL_MULTIPLIER,
        )
        activities = self.activity_store.query(query)
        if not activities:
            return RankingOutcome()

        inputs = FeatureInputs(
            subject_history=self.interaction_store.list_by_actor(user.user_id),
            subject_activities=self.activity_store.list_for_user(user.user_id),
        )
        scored, partial, failures = self._score_concurrently(
            activities,
            lambda a: self.score_activity(user, a, inputs),
            self._timeout(options),
            describe=lambda a: f"activity_id={a.activity_id}",
        )

        threshold = self._min_score(options)
        kept = sorted((r for r in scored if r.score >= threshold), key=_activity_sort_key)
        top = diversify(kept, self.diversity_cap, group_key=activity_group_key, boosts=(), floor=threshold)[: options.limit]
        for r in top:
            r.reasons = explain(r.breakdown, r.context, kind=ACTIVITY)

        logger.info(
            "[RANKING] activities user_id=%s considered=%s returned=%s partial=%s",
            user.user_id,
            len(activities),
            len(top),
            partial,
        )
        return RankingOutcome(results=top, partial=partial, considered=len(activities), failures=failures)
