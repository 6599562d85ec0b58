import threading
import time

import pytest

from recommender.services.cache import CacheKey, RecommendationCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _key(user_id: str = "u1", kind: str = "person", **options):
    return CacheKey.for_options(user_id, kind, options or {"limit": 20})


def test_key_is_stable_for_equal_options():
    assert _key(limit=20, maxDistanceKm=50) == _key(maxDistanceKm=50, limit=20)
    assert _key(limit=20) != _key(limit=10)
    assert _key("u1") != _key("u2")


def test_hit_returns_cached_value_without_recompute():
    cache = RecommendationCache()
    calls = []
    cache.get_or_compute(_key(), lambda: calls.append(1) or "v1", ttl=60)
    out = cache.get_or_compute(_key(), lambda: calls.append(1) or "v2", ttl=60)
    assert out == "v1"
    assert len(calls) == 1
    assert cache.stats()["hits"] == 1


def test_expired_entry_is_recomputed():
    clock = _Clock()
    cache = RecommendationCache(clock=clock)
    cache.get_or_compute(_key(), lambda: "old", ttl=60)
    clock.now += 61
    assert cache.peek(_key()) is None
    assert cache.get_or_compute(_key(), lambda: "new", ttl=60) == "new"


def test_concurrent_callers_share_one_computation():
    cache = RecommendationCache()
    started = threading.Event()
    release = threading.Event()
    calls = []

    def _slow():
        calls.append(1)
        started.set()
        release.wait(5)
        return "shared"

    results = []
    threads = [threading.Thread(target=lambda: results.append(cache.get_or_compute(_key(), _slow, ttl=60))) for _ in range(8)]
    threads[0].start()
    assert started.wait(5)
    for t in threads[1:]:
        t.start()
    time.sleep(0.05)
    release.set()
    for t in threads:
        t.join(5)

    assert len(calls) == 1
    assert results == ["shared"] * 8


def test_other_keys_not_blocked_by_running_computation():
    cache = RecommendationCache()
    started = threading.Event()
    release = threading.Event()

    def _slow():
        started.set()
        release.wait(5)
        return "slow"

    t = threading.Thread(target=lambda: cache.get_or_compute(_key("u1"), _slow, ttl=60))
    t.start()
    assert started.wait(5)
    assert cache.get_or_compute(_key("u2"), lambda: "fast", ttl=60) == "fast"
    release.set()
    t.join(5)


def test_error_reaches_waiters_and_is_not_cached():
    cache = RecommendationCache()
    started = threading.Event()
    release = threading.Event()

    def _boom():
        started.set()
        release.wait(5)
        raise RuntimeError("store down")

    errors = []

    def _call():
        try:
            cache.get_or_compute(_key(), _boom, ttl=60)
        except RuntimeError as exc:
            errors.append(str(exc))

    leader = threading.Thread(target=_call)
    leader.start()
    assert started.wait(5)
    waiter = threading.Thread(target=_call)
    waiter.start()
    time.sleep(0.05)
    release.set()
    leader.join(5)
    waiter.join(5)

    assert errors == ["store down", "store down"]
    assert cache.peek(_key()) is None


def test_invalidate_drops_every_entry_for_user():
    cache = RecommendationCache()
    cache.get_or_compute(_key("u1", limit=5), lambda: "a", ttl=60)
    cache.get_or_compute(_key("u1", "activity"), lambda: "b", ttl=60)
    cache.get_or_compute(_key("u2"), lambda: "c", ttl=60)

    assert cache.invalidate("u1") == 2
    assert cache.peek(_key("u1", limit=5)) is None
    assert cache.peek(_key("u2")) == "c"


def test_invalidation_during_computation_discards_stale_result():
    cache = RecommendationCache()

    def _compute():
        cache.invalidate("u1")
        return "stale"

    assert cache.get_or_compute(_key(), _compute, ttl=60) == "stale"
    assert cache.peek(_key()) is None
    assert cache.get_or_compute(_key(), lambda: "fresh", ttl=60) == "fresh"
    assert cache.peek(_key()) == "fresh"


def test_cacheable_predicate_skips_storage():
    cache = RecommendationCache()
    cache.get_or_compute(_key(), lambda: {"partial": True}, ttl=60, cacheable=lambda v: not v["partial"])
    assert cache.peek(_key()) is None


def test_max_entries_evicts_oldest():
    clock = _Clock()
    cache = RecommendationCache(max_entries=2, clock=clock)
    for i, user_id in enumerate(["u1", "u2", "u3"]):
        clock.now += 1
        cache.get_or_compute(_key(user_id), lambda i=i: i, ttl=60)
    assert cache.peek(_key("u1")) is None
    assert cache.peek(_key("u3")) == 2
    assert cache.stats()["size"] == 2


@pytest.mark.parametrize("ttl", [0, -1])
def test_non_positive_ttl_never_serves_hits(ttl):
    cache = RecommendationCache()
    cache.get_or_compute(_key(), lambda: "v", ttl=ttl)
    assert cache.peek(_key()) is None
