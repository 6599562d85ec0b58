from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .database import SessionLocal
from .errors import UpstreamUnavailable
from .records import ActivityRecord, AgeRange, GeoPoint, InteractionRecord, Profile
from .services.geo import bounding_box, within_radius


@dataclass
class ProfileQuery:
    exclude_ids: set[str] = field(default_factory=set)
    genders: list[str] = field(default_factory=list)
    age_range: AgeRange | None = None
    center: GeoPoint | None = None
    max_distance_km: float | None = None
    active_since: datetime | None = None
    limit: int = 60


@dataclass
class ActivityQuery:
    center: GeoPoint | None = None
    max_distance_km: float | None = None
    category: str | None = None
    starts_after: datetime | None = None
    exclude_participant: str | None = None
    limit: int = 20


class ProfileStore(Protocol):
    def query(self, filters: ProfileQuery) -> list[Profile]: ...

    def get(self, user_id: str) -> Profile | None: ...


class InteractionStore(Protocol):
    def list_by_actor(self, user_id: str, types: Iterable[str] | None = None) -> list[InteractionRecord]: ...

    def list_by_target(self, user_id: str, types: Iterable[str] | None = None) -> list[InteractionRecord]: ...

    def append(self, record: InteractionRecord) -> None: ...


class ActivityStore(Protocol):
    def query(self, filters: ActivityQuery) -> list[ActivityRecord]: ...

    def list_for_user(self, user_id: str) -> list[ActivityRecord]: ...


def profile_matches(profile: Profile, filters: ProfileQuery) -> bool:
    if profile.user_id in filters.exclude_ids:
        return False
    if filters.genders and profile.gender not in filters.genders:
        return False
    if filters.age_range and not filters.age_range.contains(profile.age):
        return False
    if filters.center is not None and filters.max_distance_km:
        if not within_radius(profile.location, filters.center, filters.max_distance_km):
            return False
    if filters.active_since is not None and profile.last_active is not None:
        if profile.last_active < filters.active_since:
            return False
    return True


def activity_matches(activity: ActivityRecord, filters: ActivityQuery) -> bool:
    if filters.category and activity.category != filters.category:
        return False
    if filters.exclude_participant and activity.involves(filters.exclude_participant):
        return False
    if filters.starts_after is not None:
        if activity.scheduled_at is None or activity.scheduled_at < filters.starts_after:
            return False
    if filters.center is not None and filters.max_distance_km:
        if not within_radius(activity.location, filters.center, filters.max_distance_km):
            return False
    return True


def _recency_key(profile: Profile) -> tuple[float, str]:
    ts = profile.last_active.timestamp() if profile.last_active else float("-inf")
    return (-ts, profile.user_id)


class InMemoryProfileStore:
    def __init__(self, profiles: Iterable[Profile] = ()) -> None:
        self._profiles: dict[str, Profile] = {p.user_id: p for p in profiles}

    def add(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = profile

    def get(self, user_id: str) -> Profile | None:
        return self._profiles.get(user_id)

    def query(self, filters: ProfileQuery) -> list[Profile]:
        rows = [p for p in self._profiles.values() if profile_matches(p, filters)]
        rows.sort(key=_recency_key)
        return rows[: filters.limit]


class InMemoryInteractionStore:
    def __init__(self, records: Iterable[InteractionRecord] = ()) -> None:
        self._records: list[InteractionRecord] = list(records)
        self._lock = threading.Lock()

    def _select(self, pred: Callable[[InteractionRecord], bool], types: Iterable[str] | None) -> list[InteractionRecord]:
        wanted = set(types) if types is not None else None
        with self._lock:
            snapshot = list(self._records)
        return [r for r in snapshot if pred(r) and (wanted is None or r.type in wanted)]

    def list_by_actor(self, user_id: str, types: Iterable[str] | None = None) -> list[InteractionRecord]:
        return self._select(lambda r: r.actor_id == user_id, types)

    def list_by_target(self, user_id: str, types: Iterable[str] | None = None) -> list[InteractionRecord]:
        return self._select(lambda r: r.target_id == user_id, types)

    def append(self, record: InteractionRecord) -> None:
        with self._lock:
            self._records.append(record)


class InMemoryActivityStore:
    def __init__(self, activities: Iterable[ActivityRecord] = ()) -> None:
        self._activities: list[ActivityRecord] = list(activities)

    def query(self, filters: ActivityQuery) -> list[ActivityRecord]:
        rows = [a for a in self._activities if activity_matches(a, filters)]
        rows.sort(key=lambda a: (a.scheduled_at is None, a.scheduled_at or datetime.max, a.activity_id))
        return rows[: filters.limit]

    def list_for_user(self, user_id: str) -> list[ActivityRecord]:
        return [a for a in self._activities if a.involves(user_id)]


def _json_value(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def _row_to_profile(row: dict[str, Any]) -> Profile:
    data = dict(row)
    data["location"] = {"latitude": row.get("latitude"), "longitude": row.get("longitude"), "city": row.get("city")}
    for key in ("interests", "lifestyle", "personality", "preferences"):
        data[key] = _json_value(row.get(key))
    return Profile.from_dict(data)


def _row_to_activity(row: dict[str, Any]) -> ActivityRecord:
    data = dict(row)
    data["location"] = {"latitude": row.get("latitude"), "longitude": row.get("longitude"), "city": row.get("city")}
    data["tags"] = _json_value(row.get("tags"))
    data["participant_ids"] = _json_value(row.get("participant_ids"))
    return ActivityRecord.from_dict(data)


def _run(session_factory, fn):
    try:
        with session_factory() as db:
            return fn(db)
    except OperationalError as exc:
        raise UpstreamUnavailable(str(exc)) from exc


_PROFILE_COLUMNS = """
    user_id, age, gender, latitude, longitude, city, display_name, bio, occupation,
    education, interests, lifestyle, personality, activity_level, last_active, preferences
"""


class SqlProfileStore:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def get(self, user_id: str) -> Profile | None:
        def _q(db):
            return db.execute(
                text(f"SELECT {_PROFILE_COLUMNS} FROM user_profile WHERE user_id=:user_id"),
                {"user_id": user_id},
            ).mappings().first()

        row = _run(self._session_factory, _q)
        return _row_to_profile(dict(row)) if row else None

    def query(self, filters: ProfileQuery) -> list[Profile]:
        clauses = ["NOT (user_id = ANY(:exclude_ids))"]
        params: dict[str, Any] = {"exclude_ids": sorted(filters.exclude_ids), "limit": filters.limit}
        if filters.genders:
            clauses.append("gender = ANY(:genders)")
            params["genders"] = list(filters.genders)
        if filters.age_range:
            clauses.append("age BETWEEN :age_min AND :age_max")
            params.update({"age_min": filters.age_range.min, "age_max": filters.age_range.max})
        if filters.center is not None and filters.max_distance_km:
            min_lat, max_lat, min_lon, max_lon = bounding_box(filters.center, filters.max_distance_km)
            clauses.append("latitude BETWEEN :min_lat AND :max_lat AND longitude BETWEEN :min_lon AND :max_lon")
            params.update({"min_lat": min_lat, "max_lat": max_lat, "min_lon": min_lon, "max_lon": max_lon})
        if filters.active_since is not None:
            clauses.append("(last_active IS NULL OR last_active >= :active_since)")
            params["active_since"] = filters.active_since

        # The bounding box over-selects corners, so fetch extra rows before the exact radius check.
        params["limit"] = filters.limit * 2

        def _q(db):
            return db.execute(
                text(
                    f"""
                    SELECT {_PROFILE_COLUMNS}
                    FROM user_profile
                    WHERE {" AND ".join(clauses)}
                    ORDER BY last_active DESC NULLS LAST, user_id
                    LIMIT :limit
                    """
                ),
                params,
            ).mappings().all()

        profiles = [_row_to_profile(dict(r)) for r in _run(self._session_factory, _q)]
        return [p for p in profiles if profile_matches(p, filters)][: filters.limit]


class SqlInteractionStore:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def _list(self, column: str, user_id: str, types: Iterable[str] | None) -> list[InteractionRecord]:
        type_list = sorted(set(types)) if types is not None else None

        def _q(db):
            return db.execute(
                text(
                    f"""
                    SELECT actor_id, target_id, type, created_at, confidence
                    FROM interaction
                    WHERE {column} = :user_id
                      AND (CAST(:all_types AS boolean) OR type = ANY(:types))
                    ORDER BY created_at
                    """
                ),
                {"user_id": user_id, "all_types": type_list is None, "types": type_list or []},
            ).mappings().all()

        return [InteractionRecord.from_dict(dict(r)) for r in _run(self._session_factory, _q)]

    def list_by_actor(self, user_id: str, types: Iterable[str] | None = None) -> list[InteractionRecord]:
        return self._list("actor_id", user_id, types)

    def list_by_target(self, user_id: str, types: Iterable[str] | None = None) -> list[InteractionRecord]:
        return self._list("target_id", user_id, types)

    def append(self, record: InteractionRecord) -> None:
        def _q(db):
            db.execute(
                text(
                    """
                    INSERT INTO interaction (id, actor_id, target_id, type, created_at, confidence)
                    VALUES (:id, :actor_id, :target_id, :type, :created_at, :confidence)
                    """
                ),
                {
                    "id": str(uuid.uuid4()),
                    "actor_id": record.actor_id,
                    "target_id": record.target_id,
                    "type": record.type,
                    "created_at": record.created_at,
                    "confidence": record.confidence,
                },
            )
            db.commit()

        _run(self._session_factory, _q)


_ACTIVITY_COLUMNS = """
    id AS activity_id, title, category, tags, latitude, longitude, city,
    scheduled_at, organizer_id, participant_ids
"""


class SqlActivityStore:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def query(self, filters: ActivityQuery) -> list[ActivityRecord]:
        clauses = ["status = 'active'"]
        params: dict[str, Any] = {"limit": filters.limit * 2}
        if filters.category:
            clauses.append("category = :category")
            params["category"] = filters.category
        if filters.starts_after is not None:
            clauses.append("scheduled_at >= :starts_after")
            params["starts_after"] = filters.starts_after
        if filters.center is not None and filters.max_distance_km:
            min_lat, max_lat, min_lon, max_lon = bounding_box(filters.center, filters.max_distance_km)
            clauses.append("latitude BETWEEN :min_lat AND :max_lat AND longitude BETWEEN :min_lon AND :max_lon")
            params.update({"min_lat": min_lat, "max_lat": max_lat, "min_lon": min_lon, "max_lon": max_lon})

        def _q(db):
            return db.execute(
                text(
                    f"""
                    SELECT {_ACTIVITY_COLUMNS}
                    FROM activity
                    WHERE {" AND ".join(clauses)}
                    ORDER BY scheduled_at, id
                    LIMIT :limit
                    """
                ),
                params,
            ).mappings().all()

        activities = [_row_to_activity(dict(r)) for r in _run(self._session_factory, _q)]
        return [a for a in activities if activity_matches(a, filters)][: filters.limit]

    def list_for_user(self, user_id: str) -> list[ActivityRecord]:
        def _q(db):
            return db.execute(
                text(
                    f"""
                    SELECT {_ACTIVITY_COLUMNS}
                    FROM activity
                    WHERE organizer_id = :user_id
                       OR participant_ids @> CAST(:user_json AS jsonb)
                    """
                ),
                {"user_id": user_id, "user_json": json.dumps([user_id])},
            ).mappings().all()

        return [_row_to_activity(dict(r)) for r in _run(self._session_factory, _q)]
