from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    user_id: str
    kind: str
    options_digest: str

    @classmethod
    def for_options(cls, user_id: str, kind: str, options: dict[str, Any]) -> CacheKey:
        payload = json.dumps(options, sort_keys=True, separators=(",", ":"), default=str)
        digest = hashlib.sha256(f"{user_id}|{kind}|{payload}".encode("utf-8")).hexdigest()
        return cls(user_id=user_id, kind=kind, options_digest=digest[:32])


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


@dataclass
class _Flight:
    generation: int
    event: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: BaseException | None = None


class RecommendationCache:
    """In-process TTL cache with per-key single-flight computation.

    Only one computation runs per key at a time; concurrent callers for that key
    wait for it and share its result. Reads of other keys are never blocked by a
    running computation. Expiry is lazy: an entry read past its TTL is a miss.
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._flights: dict[CacheKey, _Flight] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.max_entries = max_entries
        self._stats = {"hits": 0, "misses": 0, "computes": 0, "invalidations": 0, "expired": 0}

    def peek(self, key: CacheKey) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expired(self._clock()):
                return None
            return entry.value

    def get_or_compute(
        self,
        key: CacheKey,
        compute_fn: Callable[[], Any],
        ttl: float,
        cacheable: Callable[[Any], bool] | None = None,
    ) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.expired(self._clock()):
                    self._stats["hits"] += 1
                    logger.debug("[CACHE] hit user_id=%s kind=%s", key.user_id, key.kind)
                    return entry.value
                del self._entries[key]
                self._stats["expired"] += 1
            self._stats["misses"] += 1
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight(generation=self._generations.get(key.user_id, 0))
                self._flights[key] = flight

        if not leader:
            logger.debug("[CACHE] waiting on in-flight computation user_id=%s kind=%s", key.user_id, key.kind)
            flight.event.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value

        try:
            value = compute_fn()
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            flight.value = value
            with self._lock:
                self._stats["computes"] += 1
                stale = self._generations.get(key.user_id, 0) != flight.generation
                if stale:
                    logger.debug("[CACHE] dropping result invalidated mid-flight user_id=%s", key.user_id)
                elif cacheable is None or cacheable(value):
                    self._store(key, value, ttl)
            return value
        finally:
            with self._lock:
                self._flights.pop(key, None)
            flight.event.set()

    def _store(self, key: CacheKey, value: Any, ttl: float) -> None:
        if len(self._entries) >= self.max_entries and key not in self._entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].created_at)
            del self._entries[oldest]
        self._entries[key] = CacheEntry(value=value, created_at=self._clock(), ttl=ttl)

    def invalidate(self, user_id: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.user_id == user_id]
            for k in doomed:
                del self._entries[k]
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            self._stats["invalidations"] += len(doomed)
        logger.info("[CACHE] invalidated %s entries for user_id=%s", len(doomed), user_id)
        return len(doomed)

    def invalidate_key(self, key: CacheKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for user_id in set(self._generations) | {k.user_id for k in self._flights}:
                self._generations[user_id] = self._generations.get(user_id, 0) + 1

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {**self._stats, "size": len(self._entries), "in_flight": len(self._flights)}
