"""Shared builders for the odds test-suite."""

import operator

import matplotlib

matplotlib.use("Agg")

import pytest

from odds_core import Odds


def make_odds(weights=None, **functions) -> Odds:
    """Build an Odds of integer outcomes hashed by value."""
    functions.setdefault("copy_function", int)
    functions.setdefault("combine_function", operator.add)
    functions.setdefault("display_function", str)
    odds = Odds(hash_function=int, **functions)
    for value, weight in (weights or {}).items():
        odds.add(value, weight)
    return odds


def assert_consistent(odds: Odds) -> None:
    assert odds.total == sum(entry.weight for entry in odds.entries())
    for entry in odds.entries():
        assert entry.hash == odds.behavior.hash(entry.data)


@pytest.fixture
def die():
    return make_odds({face: 1 for face in range(1, 7)})


@pytest.fixture
def tens():
    """Entries 1..10 with weight 10 x value, total 550."""
    return make_odds({value: 10 * value for value in range(1, 11)})
