from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidOptionsError

INTERACTION_TYPES = ("like", "pass", "match", "report")
EXCLUDING_INTERACTION_TYPES = frozenset({"like", "pass", "match"})
PERSONALITY_TRAITS = ("openness", "conscientiousness", "extraversion", "agreeableness", "neuroticism")


def _to_float(value: Any, default: float | None = None) -> float | None:
    try:
        if value is None:
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any) -> int | None:
    try:
        if value is None or value == "":
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _normalize_tags(values: Any) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out: list[str] = []
    for value in values:
        tag = str(value or "").strip().lower()
        if tag and tag not in out:
            out.append(tag)
    return out


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    city: str | None = None

    def is_valid(self) -> bool:
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0

    @classmethod
    def from_dict(cls, data: Any) -> GeoPoint | None:
        if not isinstance(data, dict):
            return None
        lat = _to_float(data.get("latitude", data.get("lat")))
        lon = _to_float(data.get("longitude", data.get("lon")))
        if lat is None or lon is None:
            return None
        point = cls(latitude=lat, longitude=lon, city=(data.get("city") or None))
        return point if point.is_valid() else None


@dataclass(frozen=True)
class AgeRange:
    min: int
    max: int

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise InvalidOptionsError(f"Age range min ({self.min}) is greater than max ({self.max})")

    def contains(self, age: int | None) -> bool:
        return age is not None and self.min <= age <= self.max

    @classmethod
    def from_dict(cls, data: Any) -> AgeRange | None:
        if not isinstance(data, dict):
            return None
        lo, hi = _to_int(data.get("min")), _to_int(data.get("max"))
        if lo is None or hi is None:
            return None
        return cls(min=lo, max=hi)


@dataclass
class MatchPreferences:
    age_range: AgeRange | None = None
    gender_preferences: list[str] = field(default_factory=list)
    max_distance_km: float | None = None
    min_score: float | None = None
    time_preference: str | None = None
    group_size_preference: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> MatchPreferences:
        data = data if isinstance(data, dict) else {}
        return cls(
            age_range=AgeRange.from_dict(data.get("age_range")),
            gender_preferences=_normalize_tags(data.get("gender_preferences")),
            max_distance_km=_to_float(data.get("max_distance_km")),
            min_score=_to_float(data.get("min_score")),
            time_preference=data.get("time_preference") or None,
            group_size_preference=data.get("group_size_preference") or None,
        )


@dataclass
class Lifestyle:
    energy_level: str | None = None
    social_style: str | None = None


@dataclass
class Profile:
    user_id: str
    age: int | None = None
    gender: str | None = None
    location: GeoPoint | None = None
    display_name: str | None = None
    bio: str | None = None
    occupation: str | None = None
    education: str | None = None
    interests: list[str] = field(default_factory=list)
    lifestyle: Lifestyle = field(default_factory=Lifestyle)
    personality: dict[str, float] | None = None
    activity_level: float | None = None
    last_active: datetime | None = None
    preferences: MatchPreferences = field(default_factory=MatchPreferences)

    def __post_init__(self) -> None:
        self.last_active = _to_datetime(self.last_active)

    @property
    def city(self) -> str | None:
        return self.location.city if self.location else None

    def completeness(self) -> float:
        """Weighted share of filled profile fields: 70% core fields, 30% optional ones."""
        score = 0.0
        for value in (self.display_name, self.age, self.bio, self.location):
            if value:
                score += 0.175
        for value in (self.occupation, self.education, self.interests):
            if value:
                score += 0.1
        return round(min(1.0, score), 6)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Profile:
        personality = data.get("personality")
        if isinstance(personality, dict):
            parsed = {t: _to_float(personality.get(t)) for t in PERSONALITY_TRAITS}
            personality = {t: v for t, v in parsed.items() if v is not None} or None
        else:
            personality = None
        lifestyle = data.get("lifestyle") if isinstance(data.get("lifestyle"), dict) else {}
        gender = str(data.get("gender") or "").strip().lower() or None
        return cls(
            user_id=str(data["user_id"]),
            age=_to_int(data.get("age")),
            gender=gender,
            location=GeoPoint.from_dict(data.get("location")),
            display_name=data.get("display_name") or None,
            bio=data.get("bio") or None,
            occupation=data.get("occupation") or None,
            education=data.get("education") or None,
            interests=_normalize_tags(data.get("interests")),
            lifestyle=Lifestyle(
                energy_level=lifestyle.get("energy_level"),
                social_style=lifestyle.get("social_style"),
            ),
            personality=personality,
            activity_level=_to_float(data.get("activity_level")),
            last_active=data.get("last_active"),
            preferences=MatchPreferences.from_dict(data.get("preferences")),
        )


@dataclass(frozen=True)
class InteractionRecord:
    actor_id: str
    target_id: str
    type: str
    created_at: datetime
    confidence: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", _to_datetime(self.created_at) or datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InteractionRecord:
        return cls(
            actor_id=str(data["actor_id"]),
            target_id=str(data["target_id"]),
            type=str(data["type"]).strip().lower(),
            created_at=data.get("created_at"),
            confidence=_to_float(data.get("confidence")),
        )


@dataclass(frozen=True)
class ActivityRecord:
    activity_id: str
    category: str | None = None
    title: str | None = None
    tags: tuple[str, ...] = ()
    location: GeoPoint | None = None
    scheduled_at: datetime | None = None
    organizer_id: str | None = None
    participant_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "scheduled_at", _to_datetime(self.scheduled_at))

    def involves(self, user_id: str) -> bool:
        return self.organizer_id == user_id or user_id in self.participant_ids

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityRecord:
        participants = data.get("participant_ids")
        return cls(
            activity_id=str(data["activity_id"]),
            category=(str(data.get("category") or "").strip().lower() or None),
            title=data.get("title") or None,
            tags=tuple(_normalize_tags(data.get("tags"))),
            location=GeoPoint.from_dict(data.get("location")),
            scheduled_at=data.get("scheduled_at"),
            organizer_id=str(data["organizer_id"]) if data.get("organizer_id") else None,
            participant_ids=tuple(str(p) for p in participants) if isinstance(participants, (list, tuple)) else (),
        )


@dataclass
class ScoreResult:
    entity_id: str
    kind: str
    score: float
    breakdown: dict[str, float]
    confidence: float
    rule_score: float
    ml_score: float | None = None
    model_version: str | None = None
    reasons: list[str] = field(default_factory=list)
    last_active: datetime | None = None
    scheduled_at: datetime | None = None
    context: dict[str, Any] = field(default_factory=dict)
    subject: Profile | ActivityRecord | None = None
