import pytest

from chordfinder.cache import CacheKey, ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _key(q, limit=2):
    return CacheKey(query=q, scope="en", limit=limit)


def test_get_returns_value_until_expiry():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=10, max_entries=4, clock=clock)
    cache.set(_key("holy forever"), "hit")
    clock.now = 9.9
    assert cache.get(_key("holy forever")) == "hit"
    clock.now = 10.0
    assert cache.get(_key("holy forever")) is None
    assert len(cache) == 0


def test_limit_is_part_of_the_key():
    cache = ResponseCache(ttl_seconds=10, max_entries=4, clock=FakeClock())
    cache.set(_key("way maker", limit=2), "two")
    assert cache.get(_key("way maker", limit=5)) is None


def test_least_recently_used_entry_is_evicted():
    cache = ResponseCache(ttl_seconds=10, max_entries=2, clock=FakeClock())
    cache.set(_key("a"), 1)
    cache.set(_key("b"), 2)
    cache.get(_key("a"))
    cache.set(_key("c"), 3)
    assert cache.get(_key("b")) is None
    assert cache.get(_key("a")) == 1
    assert cache.get(_key("c")) == 3


def test_clear():
    cache = ResponseCache(ttl_seconds=10, max_entries=2, clock=FakeClock())
    cache.set(_key("a"), 1)
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("ttl, size", [(0, 10), (-1, 10), (10, 0)])
def test_invalid_settings_are_rejected(ttl, size):
    with pytest.raises(ValueError):
        ResponseCache(ttl_seconds=ttl, max_entries=size)
