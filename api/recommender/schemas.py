from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .config import (
    DEFAULT_ACTIVITY_DISTANCE_KM,
    DEFAULT_ACTIVITY_LIMIT,
    DEFAULT_MAX_DISTANCE_KM,
    DEFAULT_PERSON_LIMIT,
    MAX_LIMIT,
)
from .errors import InvalidOptionsError
from .records import AgeRange


class AgeRangeInput(BaseModel):
    min: int = Field(ge=18, le=99)
    max: int = Field(ge=18, le=99)

    @model_validator(mode="after")
    def _ordered(self) -> AgeRangeInput:
        if self.min > self.max:
            raise ValueError("ageRange.min must not exceed ageRange.max")
        return self

    def to_record(self) -> AgeRange:
        return AgeRange(min=self.min, max=self.max)


class RecommendationOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    limit: int = Field(DEFAULT_PERSON_LIMIT, ge=1, le=MAX_LIMIT)
    max_distance_km: float = Field(DEFAULT_MAX_DISTANCE_KM, gt=0, le=20000, alias="maxDistanceKm")
    age_range: AgeRangeInput | None = Field(None, alias="ageRange")
    category: str | None = None
    force_refresh: bool = Field(False, alias="forceRefresh")
    min_score: float | None = Field(None, ge=0.0, le=1.0, alias="minScore")
    timeout_seconds: float | None = Field(None, gt=0, alias="timeoutSeconds")

    @classmethod
    def parse(cls, raw: Any = None) -> RecommendationOptions:
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(raw or {})
        except ValidationError as exc:
            raise InvalidOptionsError(f"Invalid recommendation options: {exc.errors()}") from exc

    def fingerprint(self) -> dict[str, Any]:
        """Option fields that change the result set; used as part of the cache key."""
        return self.model_dump(mode="json", exclude={"force_refresh", "timeout_seconds"})


class ActivityOptions(RecommendationOptions):
    limit: int = Field(DEFAULT_ACTIVITY_LIMIT, ge=1, le=MAX_LIMIT)
    max_distance_km: float = Field(DEFAULT_ACTIVITY_DISTANCE_KM, gt=0, le=20000, alias="maxDistanceKm")


class RankedCandidate(BaseModel):
    user_id: str
    score: float
    confidence: float
    reasons: list[str]
    breakdown: dict[str, float]
    distance_km: float | None = None
    shared_interests: list[str] = Field(default_factory=list)
    model_version: str | None = None


class RankedActivity(BaseModel):
    activity_id: str
    title: str | None = None
    category: str | None = None
    scheduled_at: datetime | None = None
    score: float
    confidence: float
    reasons: list[str]
    breakdown: dict[str, float]
    distance_km: float | None = None


class RecommendationList(BaseModel):
    recommendations: list[RankedCandidate]
    count: int
    partial: bool = False
    cached: bool = False
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActivityRecommendationList(BaseModel):
    recommendations: list[RankedActivity]
    count: int
    partial: bool = False
    cached: bool = False
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Explanation(BaseModel):
    user_id: str
    candidate_id: str
    score: float
    confidence: float
    breakdown: dict[str, float]
    reasons: list[str]
    summary: str
    model_version: str | None = None


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    candidate_id: str = Field(alias="candidateId", min_length=1)
    action: Literal["like", "pass", "report"]
    confidence: float | None = Field(None, ge=0.0, le=1.0)


class FeedbackReceipt(BaseModel):
    recorded: bool
    action: str
    matched: bool = False
    invalidated_entries: int = 0
