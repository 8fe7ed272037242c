import pytest

from toolrelay.domain.services.recursion import RecursionCounter, parse_max_depth


@pytest.mark.parametrize("value,expected", [
    (None, 2),
    (5, 5),
    ("7", 7),
    ("infinite", None),
    (" Infinite ", None),
    (1, 2),
    (16, 2),
    ("lots", 2),
    (True, 2),
    (15, 15),
])
def test_parse_max_depth(value, expected):
    assert parse_max_depth(value) == expected


def test_counter_stops_at_limit_and_resets():
    counter = RecursionCounter()

    assert counter.try_advance("c1", 2)
    assert counter.try_advance("c1", 2)
    assert counter.get("c1") == 2
    assert not counter.try_advance("c1", 2)
    assert counter.get("c1") == 0


def test_counter_is_per_conversation_and_unbounded_with_none():
    counter = RecursionCounter()
    for _ in range(20):
        assert counter.try_advance("c1", None)
    assert counter.get("c1") == 20
    assert counter.get("c2") == 0

    counter.reset("c1")
    assert counter.get("c1") == 0
