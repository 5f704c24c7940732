from abc import ABC, abstractmethod
from enum import IntFlag
from typing import Any, Callable, Hashable, List, Optional
import logging

logger = logging.getLogger(__name__)


class OddsError(Exception):
    """Base class for every error raised by the odds cores."""


class MissingCapabilityError(OddsError, NotImplementedError):
    """An operation needed a behaviour capability that was never supplied."""


class InvariantViolationError(OddsError, ValueError):
    """The caller's weight bookkeeping would break an exactness invariant."""


class ParallelExecutionError(OddsError, RuntimeError):
    """A worker thread failed while running a parallel operation."""


class ModifyFlag(IntFlag):
    """Selects how colliding entries are folded together on merge/add."""
    DEFAULT = 1
    COMBINE = 2
    COMBINE_IN_PLACE = 4


class Entry:
    """One weighted outcome: opaque data, its hash key and an integer weight."""

    __slots__ = ("hash", "data", "weight")

    def __init__(self, hash: Hashable, data: Any, weight: int):
        self.hash = hash
        self.data = data
        self.weight = weight

    def __repr__(self) -> str:
        return f"Entry(hash={self.hash!r}, data={self.data!r}, weight={self.weight})"


def _missing(capability: str):
    logger.error("Behaviour capability '%s' is required but was not supplied", capability)
    return MissingCapabilityError(f"Behaviour capability '{capability}' was not supplied")


class OddsBehavior(ABC):
    """Capability set attached to an Odds object and shared by every map derived from it.

    Only ``hash`` is mandatory. Every other capability raises
    MissingCapabilityError unless a subclass provides it.
    """

    @abstractmethod
    def hash(self, data: Any) -> Hashable:
        """Return a deterministic key consistent with data equality."""
        pass

    def copy(self, data: Any) -> Any:
        raise _missing("copy")

    def combine(self, existing: Any, incoming: Any) -> Any:
        """Return a new data value folding ``incoming`` into ``existing``."""
        raise _missing("combine")

    def combine_in_place(self, existing: Any, incoming: Any) -> None:
        """Fold ``incoming`` into ``existing`` by mutating ``existing``."""
        raise _missing("combine_in_place")

    def convolve(self, odds: Any, entry: Entry, other: Entry) -> List[Entry]:
        """Return the weighted outcomes of combining ``entry`` with ``other``.

        The returned weights only need to be proportionally correct.
        """
        raise _missing("convolve")

    def convolve_in_place(self, odds: Any, entry: Entry, other: Entry) -> None:
        raise _missing("convolve_in_place")

    def display(self, data: Any) -> str:
        raise _missing("display")

    def supports(self, capability: str) -> bool:
        """Check whether a capability was overridden by the concrete behaviour."""
        method = getattr(type(self), capability, None)
        return method is not None and method is not getattr(OddsBehavior, capability, None)


class FunctionBehavior(OddsBehavior):
    """Behaviour built from plain callables; absent callables stay unsupported."""

    def __init__(self, hash_function: Callable[[Any], Hashable],
                 copy_function: Optional[Callable[[Any], Any]] = None,
                 combine_function: Optional[Callable[[Any, Any], Any]] = None,
                 combine_in_place_function: Optional[Callable[[Any, Any], None]] = None,
                 convolve_function: Optional[Callable[[Any, Entry, Entry], List[Entry]]] = None,
                 convolve_in_place_function: Optional[Callable[[Any, Entry, Entry], None]] = None,
                 display_function: Optional[Callable[[Any], str]] = None):
        if not callable(hash_function):
            logger.error("hash_function must be callable, got %r", hash_function)
            raise MissingCapabilityError("A callable hash function is required")
        self.hash_function = hash_function
        self.copy_function = copy_function
        self.combine_function = combine_function
        self.combine_in_place_function = combine_in_place_function
        self.convolve_function = convolve_function
        self.convolve_in_place_function = convolve_in_place_function
        self.display_function = display_function

    def hash(self, data):
        return self.hash_function(data)

    def copy(self, data):
        if self.copy_function is None:
            raise _missing("copy")
        return self.copy_function(data)

    def combine(self, existing, incoming):
        if self.combine_function is None:
            raise _missing("combine")
        return self.combine_function(existing, incoming)

    def combine_in_place(self, existing, incoming):
        if self.combine_in_place_function is None:
            raise _missing("combine_in_place")
        self.combine_in_place_function(existing, incoming)

    def convolve(self, odds, entry, other):
        if self.convolve_function is None:
            raise _missing("convolve")
        return self.convolve_function(odds, entry, other)

    def convolve_in_place(self, odds, entry, other):
        if self.convolve_in_place_function is None:
            raise _missing("convolve_in_place")
        self.convolve_in_place_function(odds, entry, other)

    def display(self, data):
        if self.display_function is None:
            raise _missing("display")
        return self.display_function(data)

    def supports(self, capability: str) -> bool:
        if capability == "hash":
            return True
        return getattr(self, f"{capability}_function", None) is not None
