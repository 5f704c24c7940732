"""Tests for convolution and per-entry expansion."""

from fractions import Fraction

import pytest

from conftest import assert_consistent, make_odds
from entry_core import FunctionBehavior, InvariantViolationError, ModifyFlag, OddsBehavior
from odds_core import Odds


def sum_outcomes(odds, entry, other):
    return [odds.new_entry(entry.data + other.data, 1)]


def uniform_up_to(context, entry):
    """Expand an outcome n into a uniform draw from 1..n."""
    expanded = context.new_from_reference()
    for value in range(1, entry.data + 1):
        expanded.add(value, 1)
    return expanded


class Counter(OddsBehavior):
    """Mutable outcomes {"value": v}, hashed by value."""

    def hash(self, data):
        return data["value"]

    def convolve_in_place(self, odds, entry, other):
        entry.data["value"] += other.data["value"]


def counters(values):
    odds = Odds(Counter())
    for value in values:
        odds.add({"value": value}, 1)
    return odds


def test_convolving_two_dice():
    first = make_odds({face: 1 for face in range(1, 7)}, convolve_function=sum_outcomes)
    second = make_odds({face: 1 for face in range(1, 7)})

    first.convolve(second)

    assert first.total == 36
    assert first.get(7).weight == 6
    assert first.get(2).weight == 1
    assert first.get(12).weight == 1
    assert_consistent(first)


def test_convolving_several_maps_in_sequence():
    first = make_odds({face: 1 for face in range(1, 7)}, convolve_function=sum_outcomes)

    first.convolve(make_odds({face: 1 for face in range(1, 7)}),
                   make_odds({face: 1 for face in range(1, 7)}))

    assert first.total == 216
    assert first.get(10).weight == 27
    assert first.get(11).weight == 27
    assert first.get(3).weight == 1


def test_convolution_preserves_pair_weights():
    first = make_odds({1: 1, 2: 2}, convolve_function=sum_outcomes)
    second = make_odds({10: 1, 20: 3})
    expected_total = first.total * second.total

    first.convolve(second)

    assert first.total == expected_total
    assert first.weights() == {11: 1, 21: 3, 12: 2, 22: 6}


def test_convolution_splits_pair_weight_by_returned_proportions():
    def split(odds, entry, other):
        return [odds.new_entry(entry.data * 10 + 1, 1), odds.new_entry(entry.data * 10 + 2, 3)]

    first = make_odds({0: 1, 1: 1}, convolve_function=split)
    first.convolve(make_odds({0: 1}))

    assert first.weights() == {1: 1, 2: 3, 11: 1, 12: 3}
    assert first.probabilities()[12] == Fraction(3, 8)
    assert_consistent(first)


def test_convolved_outcomes_are_not_convolved_again():
    first = make_odds({1: 1, 2: 1}, convolve_function=sum_outcomes)
    first.convolve(make_odds({1: 1}))
    assert first.weights() == {2: 1, 3: 1}


def test_convolving_with_itself_is_rejected():
    odds = make_odds({1: 1}, convolve_function=sum_outcomes)
    with pytest.raises(ValueError):
        odds.convolve(odds)


def test_convolve_in_place_keeps_weights():
    odds = counters([1, 2])

    odds.convolve_in_place(counters([0, 1]))

    assert odds.weights() == {2: 1, 3: 1}
    assert odds.total == 2
    assert_consistent(odds)


def test_convolve_in_place_against_several_maps():
    odds = counters([1, 2])

    odds.convolve_in_place(counters([10]), counters([100]))

    assert odds.weights() == {111: 1, 112: 1}
    assert odds.total == 2
    assert_consistent(odds)


def test_convolve_in_place_merges_new_collisions():
    behavior = FunctionBehavior(
        lambda data: data["value"],
        convolve_in_place_function=lambda odds, entry, other: entry.data.update(value=other.data["value"]))
    odds = Odds(behavior).add({"value": 1}, 1).add({"value": 2}, 2)
    other = Odds(behavior).add({"value": 5}, 1)

    odds.convolve_in_place(other)

    assert odds.weights() == {5: 3}


def test_extend_replaces_data_and_merges_collisions(die):
    die.extend(lambda entry: entry.data % 2)

    assert die.weights() == {0: 3, 1: 3}
    assert die.total == 6
    assert_consistent(die)


def test_extend_odds_over_a_common_denominator():
    odds = make_odds({1: 1, 2: 1})
    odds.extend_odds(uniform_up_to)
    assert odds.weights() == {1: 3, 2: 1}


def test_extend_odds_with_heterogeneous_totals(die):
    die.extend_odds(uniform_up_to)

    expected = {value: Fraction(1, 6) * sum(Fraction(1, n) for n in range(value, 7))
                for value in range(1, 7)}
    assert die.probabilities() == expected
    assert_consistent(die)


def test_extend_odds_with_combine_flag():
    behavior = FunctionBehavior(lambda data: data[0], combine_function=lambda a, b: (a[0], a[1] | b[1]))

    def tagged_uniform(context, entry):
        expanded = context.new_from_reference()
        for value in range(1, entry.data[0] + 1):
            expanded.add((value, entry.data[1]), 1)
        return expanded

    odds = Odds(behavior).add((1, frozenset("a")), 1).add((2, frozenset("b")), 1)
    odds.extend_odds(tagged_uniform, ModifyFlag.COMBINE)

    assert odds.weights() == {1: 3, 2: 1}
    assert odds.get(1).data == (1, frozenset("ab"))


def test_extend_odds_keeps_zero_weight_entries_at_zero():
    odds = make_odds({2: 0, 3: 1})
    odds.extend_odds(uniform_up_to)
    assert odds.weights() == {1: 1, 2: 1, 3: 1}


def test_extend_odds_rejects_empty_expansions():
    odds = make_odds({1: 1, 2: 1})
    with pytest.raises(InvariantViolationError):
        odds.extend_odds(lambda context, entry: context.new_from_reference())
