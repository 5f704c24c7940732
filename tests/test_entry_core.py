"""Tests for entries and behaviour capability sets."""

import pytest

from entry_core import (Entry, FunctionBehavior, InvariantViolationError, MissingCapabilityError,
                        ModifyFlag, OddsBehavior, OddsError)


class HashOnly(OddsBehavior):
    def hash(self, data):
        return data


def test_behavior_without_hash_cannot_be_instantiated():
    with pytest.raises(TypeError):
        OddsBehavior()


def test_unsupplied_capabilities_raise():
    behavior = HashOnly()

    assert behavior.supports("hash")
    assert not behavior.supports("copy")
    with pytest.raises(MissingCapabilityError):
        behavior.copy(1)
    with pytest.raises(MissingCapabilityError):
        behavior.convolve(None, Entry(1, 1, 1), Entry(2, 2, 1))


def test_function_behavior_reports_supplied_callables():
    behavior = FunctionBehavior(str, combine_function=lambda a, b: a + b)

    assert behavior.hash(3) == "3"
    assert behavior.combine(1, 2) == 3
    assert behavior.supports("combine")
    assert not behavior.supports("display")
    with pytest.raises(MissingCapabilityError):
        behavior.display(3)


def test_function_behavior_requires_a_callable_hash():
    with pytest.raises(MissingCapabilityError):
        FunctionBehavior(None)


def test_error_hierarchy():
    assert issubclass(MissingCapabilityError, NotImplementedError)
    assert issubclass(InvariantViolationError, ValueError)
    assert issubclass(InvariantViolationError, OddsError)


def test_modify_flags_are_distinct_bits():
    flags = [ModifyFlag.DEFAULT, ModifyFlag.COMBINE, ModifyFlag.COMBINE_IN_PLACE]
    assert len({int(flag) for flag in flags}) == 3
    assert not ModifyFlag.DEFAULT & ModifyFlag.COMBINE
