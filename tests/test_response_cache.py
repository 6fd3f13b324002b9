import pytest

from timeline_ai.llm.cache import ResponseCache, request_fingerprint
from timeline_ai.llm.schemas import Message, MessageRole, RequestOptions


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _history(*contents: str) -> list[Message]:
    return [Message(role=MessageRole.USER, content=c) for c in contents]


def test_get_returns_value_until_ttl_expires():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=300, clock=clock)
    cache.put("k", "v")

    clock.now += 300
    assert cache.get("k") == "v"

    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_oldest_inserted_entry_is_evicted_even_after_reads():
    cache = ResponseCache(max_entries=2, clock=FakeClock())
    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1

    cache.put("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_rewriting_an_entry_makes_it_newest():
    cache = ResponseCache(max_entries=2, clock=FakeClock())
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 10)

    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 10


def test_put_overwrites_and_refreshes_entry():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=10, clock=clock)
    cache.put("k", "old")
    clock.now += 8
    cache.put("k", "new")
    clock.now += 8

    assert cache.get("k") == "new"
    assert len(cache) == 1


def test_purge_expired_and_evict():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=10, clock=clock)
    cache.put("old", 1)
    clock.now += 20
    cache.put("fresh", 2)

    assert cache.purge_expired() == 1
    assert cache.evict("fresh") is True
    assert cache.evict("fresh") is False
    assert cache.stats() == {"size": 0, "ttl_seconds": 10, "max_entries": 100}


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)


def test_fingerprint_is_deterministic():
    options = RequestOptions(temperature=0.2, max_tokens=50)
    assert request_fingerprint("gpt-4o", _history("a", "b"), options) == request_fingerprint(
        "gpt-4o", _history("a", "b"), RequestOptions(temperature=0.2, max_tokens=50)
    )


def test_fingerprint_covers_model_history_and_output_options():
    base = request_fingerprint("gpt-4o", _history("a", "b"))

    assert request_fingerprint("gpt-4", _history("a", "b")) != base
    assert request_fingerprint("gpt-4o", _history("a")) != base
    assert request_fingerprint("gpt-4o", _history("b", "a")) != base
    assert request_fingerprint("gpt-4o", _history("a", "b"), RequestOptions(temperature=0.1)) != base
    assert request_fingerprint("gpt-4o", _history("a", "b"), RequestOptions(max_tokens=10)) != base
    system = [Message(role=MessageRole.SYSTEM, content="a"), Message(role=MessageRole.USER, content="b")]
    assert request_fingerprint("gpt-4o", system) != base


def test_fingerprint_ignores_routing_options():
    base = request_fingerprint("gpt-4o", _history("a"))
    routed = RequestOptions(fallback_model_ids=["claude-4-sonnet"], retry_attempts_per_model=3)
    assert request_fingerprint("gpt-4o", _history("a"), routed) == base
