# python -m pytest pgoptimizer/tests/cores/test_ttl_cache.py -v

from pgoptimizer.core.ttl_cache import TTLCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_get_returns_value_until_ttl_elapses():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.put("indexes", [1, 2])

    clock.now = 9.9
    assert cache.get("indexes") == [1, 2]
    assert cache.age("indexes") == 9.9

    clock.now = 10.0
    assert cache.get("indexes") is None
    assert cache.age("indexes") is None


def test_invalidate_and_clear():
    cache = TTLCache(ttl_seconds=10, clock=FakeClock())
    cache.put("a", 1)
    cache.put("b", 2)

    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert cache.clear() == 1
    assert cache.get("b") is None


def test_stats_track_hits_and_misses():
    cache = TTLCache(ttl_seconds=10, clock=FakeClock())
    cache.get("missing")
    cache.put("k", "v")
    cache.get("k")
    cache.get("k")

    stats = cache.stats()

    assert stats["size"] == 1
    assert stats["total_hits"] == 2
    assert stats["total_misses"] == 1
    assert stats["hit_rate"] == round(2 / 3, 4)
