from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from ..config import ML_BLEND_WEIGHT, RECENCY_WINDOW_DAYS
from ..errors import ConfigurationError, InvalidWeightsError
from ..records import ActivityRecord, Profile
from .features import FeatureSet, feature_vector

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6

InferenceFn = Callable[[Sequence[float]], float]


@dataclass
class ScoreComputation:
    score: float
    rule_score: float
    breakdown: dict[str, float]
    ml_score: float | None = None
    model_version: str | None = None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def validate_weights(feature_set: FeatureSet, weights: dict[str, float]) -> None:
    unknown = set(weights) - set(feature_set.names)
    missing = set(feature_set.names) - set(weights)
    if unknown or missing:
        raise ConfigurationError(
            f"Weights for feature set '{feature_set.kind}' do not match its features "
            f"(missing={sorted(missing)}, unknown={sorted(unknown)})"
        )
    total = sum(float(w) for w in weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE or any(float(w) < 0 for w in weights.values()):
        raise InvalidWeightsError(feature_set.kind, total)


class ScoringModel:
    """Blends the weighted rule score with an optional learned model into one [0, 1] score."""

    def __init__(
        self,
        feature_set: FeatureSet,
        weights: dict[str, float] | None = None,
        inference: InferenceFn | None = None,
        ml_blend_weight: float = ML_BLEND_WEIGHT,
    ) -> None:
        self.feature_set = feature_set
        self.weights = {k: float(v) for k, v in (weights or feature_set.default_weights).items()}
        validate_weights(feature_set, self.weights)
        if not 0.0 <= ml_blend_weight <= 1.0:
            raise ConfigurationError(f"ML blend weight must be within [0, 1], got {ml_blend_weight}")
        self.inference = inference
        self.ml_blend_weight = ml_blend_weight

    def rule_score(self, features: dict[str, float]) -> float:
        return _clamp(sum(self.weights[name] * _clamp(features.get(name, 0.5)) for name in self.feature_set.names))

    def score(self, features: dict[str, float], inference: InferenceFn | None = None) -> ScoreComputation:
        breakdown = {name: round(_clamp(features.get(name, 0.5)), 6) for name in self.feature_set.names}
        rule = self.rule_score(breakdown)
        model = inference or self.inference
        ml_score = None
        version = None
        final = rule

        if model is not None:
            try:
                raw = float(model(feature_vector(breakdown, self.feature_set)))
            except Exception as exc:
                logger.warning("[SCORING] inference failed, using rule score only: %s", exc)
            else:
                if math.isnan(raw):
                    logger.warning("[SCORING] inference returned NaN, using rule score only")
                else:
                    ml_score = _clamp(raw)
                    version = getattr(model, "version", None)
                    final = self.ml_blend_weight * ml_score + (1.0 - self.ml_blend_weight) * rule

        return ScoreComputation(
            score=round(_clamp(final), 6),
            rule_score=round(rule, 6),
            breakdown=breakdown,
            ml_score=None if ml_score is None else round(ml_score, 6),
            model_version=version,
        )


def _days_inactive(last_active: datetime | None, now: datetime) -> float:
    if last_active is None:
        return float(RECENCY_WINDOW_DAYS)
    return max(0.0, (now - last_active).total_seconds() / 86400.0)


def person_confidence(a: Profile, b: Profile, now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    completeness = (a.completeness() + b.completeness()) / 2.0
    idle = _days_inactive(a.last_active, now) + _days_inactive(b.last_active, now)
    recency = max(0.0, 1.0 - idle / RECENCY_WINDOW_DAYS)
    return round(min(1.0, completeness * (1.0 + recency * 0.2)), 6)


def activity_confidence(user: Profile, activity: ActivityRecord) -> float:
    present = sum(1 for v in (activity.location, activity.scheduled_at, activity.tags) if v)
    return round(min(1.0, user.completeness() * (0.5 + 0.5 * present / 3.0)), 6)
