from fractions import Fraction
from functools import reduce as fold
from math import gcd
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional
import logging
import secrets

import numpy as np
import matplotlib.pyplot as plt

from entry_core import (Entry, FunctionBehavior, InvariantViolationError, ModifyFlag,
                        MissingCapabilityError, OddsBehavior)
from extend_core import ExtendMixin
from parallel_core import ParallelMixin

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

Condition = Callable[[Entry], bool]


class Odds(ExtendMixin, ParallelMixin):
    """A map of weighted outcomes whose weights are exact, arbitrary-precision integers.

    ``total`` always equals the sum of every entry's weight. Probabilities are
    ``weight / total`` and are never materialised as floats by the arithmetic.
    """

    def __init__(self, behavior: Optional[OddsBehavior] = None,
                 hash_function: Optional[Callable[[Any], Hashable]] = None, **functions):
        """Initialize an empty map.

        Args:
            behavior: Capability set (hash, copy, combine, convolve, display).
            hash_function: Shortcut used to build a FunctionBehavior when no behavior is given.
            **functions: Optional callables forwarded to FunctionBehavior
                (copy_function, combine_function, ...).
        Raises:
            MissingCapabilityError: If neither a behavior nor a hash function is supplied.
        """
        if behavior is None:
            if hash_function is None:
                logger.error("Odds created without a behavior or hash function")
                raise MissingCapabilityError("Odds requires a behavior or a hash function")
            behavior = FunctionBehavior(hash_function, **functions)
        elif hash_function is not None or functions:
            logger.error("Odds given both a behavior and loose functions")
            raise ValueError("Pass either a behavior or loose functions, not both")
        self.behavior = behavior
        self._entries: Dict[Hashable, Entry] = {}
        self.total = 0

    def new_from_reference(self) -> "Odds":
        """Create an empty map sharing this map's behavior."""
        return Odds(self.behavior)

    # --- Entries ---

    def new_entry(self, data: Any, weight: int) -> Entry:
        return Entry(self.behavior.hash(data), data, self._check_weight(weight))

    def new_entry_with_hash(self, hash: Hashable, data: Any, weight: int) -> Entry:
        return Entry(hash, data, self._check_weight(weight))

    def copy_entry(self, entry: Entry) -> Entry:
        """Duplicate an entry, copying its data through the behavior."""
        self._require("copy")
        data = self.behavior.copy(entry.data)
        return Entry(self.behavior.hash(data), data, entry.weight)

    def exists(self, data: Any) -> Optional[Entry]:
        return self._entries.get(self.behavior.hash(data))

    def get(self, hash: Hashable) -> Optional[Entry]:
        return self._entries.get(hash)

    def entries(self) -> List[Entry]:
        """Snapshot of the current entries, safe to iterate while mutating the map."""
        return list(self._entries.values())

    def entries_by_weight(self) -> List[Entry]:
        return sorted(self._entries.values(), key=lambda entry: entry.weight)

    def weights(self) -> Dict[Hashable, int]:
        return {hash: entry.weight for hash, entry in self._entries.items()}

    def probabilities(self) -> Dict[Hashable, Fraction]:
        """Exact probability of every outcome, keyed by hash."""
        if self.total == 0:
            return {hash: Fraction(0) for hash in self._entries}
        return {hash: Fraction(entry.weight, self.total) for hash, entry in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, hash: Hashable) -> bool:
        return hash in self._entries

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries())

    # --- Additions ---

    def add(self, data: Any, weight: int) -> "Odds":
        """Add data with a weight. Existing data with the same hash accumulates the weight."""
        return self.add_entry(self.new_entry(data, weight))

    def add_entry(self, entry: Entry) -> "Odds":
        weight = self._check_weight(entry.weight)
        existing = self._entries.get(entry.hash)
        if existing is not None:
            existing.weight += weight
        else:
            entry.weight = weight
            self._entries[entry.hash] = entry
        self.total += weight
        return self

    def add_combine(self, data: Any, weight: int) -> "Odds":
        return self.add_entry_combine(self.new_entry(data, weight))

    def add_entry_combine(self, entry: Entry) -> "Odds":
        """Add an entry, replacing colliding data with ``behavior.combine(existing, new)``."""
        self._require("combine")
        existing = self._entries.get(entry.hash)
        if existing is not None:
            weight = self._check_weight(entry.weight)
            existing.weight += weight
            existing.data = self.behavior.combine(existing.data, entry.data)
            self.total += weight
            return self
        return self.add_entry(entry)

    def add_combine_in_place(self, data: Any, weight: int) -> "Odds":
        return self.add_entry_combine_in_place(self.new_entry(data, weight))

    def add_entry_combine_in_place(self, entry: Entry) -> "Odds":
        """Add an entry, folding colliding data into the existing data in place."""
        self._require("combine_in_place")
        existing = self._entries.get(entry.hash)
        if existing is not None:
            weight = self._check_weight(entry.weight)
            existing.weight += weight
            self.behavior.combine_in_place(existing.data, entry.data)
            self.total += weight
            return self
        return self.add_entry(entry)

    def add_entry_function(self, modify_flag: ModifyFlag = ModifyFlag.DEFAULT) -> Callable[[Entry], "Odds"]:
        if modify_flag & ModifyFlag.COMBINE:
            return self.add_entry_combine
        if modify_flag & ModifyFlag.COMBINE_IN_PLACE:
            return self.add_entry_combine_in_place
        return self.add_entry

    def add_odds(self, new_odds: "Odds", weight: int) -> "Odds":
        """Add a whole distribution that should occupy ``weight`` units relative to this map.

        Both maps are scaled by the smallest factors that keep the intended
        proportion exact. ``new_odds`` is consumed.

        Raises:
            InvariantViolationError: If weight is zero or new_odds has no weight.
        """
        weight = self._check_weight(weight)
        if weight == 0:
            logger.error("add_odds called with a zero weight")
            raise InvariantViolationError("Cannot add odds with a weight of zero")
        self._check_replacement(new_odds)
        divisor = gcd(new_odds.total, weight)
        reduced_total = new_odds.total // divisor
        reduced_weight = weight // divisor
        self.scale(reduced_total)
        new_odds.scale(reduced_weight)
        return self.merge(new_odds)

    # --- Removal ---

    def remove_hash(self, hash: Hashable) -> Optional[int]:
        """Remove the entry stored under ``hash`` and return its weight, or None if absent."""
        existing = self._entries.pop(hash, None)
        if existing is None:
            return None
        self.total -= existing.weight
        return existing.weight

    def remove_data(self, data: Any) -> Optional[int]:
        return self.remove_hash(self.behavior.hash(data))

    def remove_entry(self, entry: Entry) -> Optional[int]:
        return self.remove_hash(entry.hash)

    def remove_subset(self, subset: "Odds") -> int:
        """Remove every entry of ``subset`` present here; returns the weight actually removed."""
        removed = 0
        for hash in list(subset._entries):
            weight = self.remove_hash(hash)
            if weight is not None:
                removed += weight
        return removed

    def clear(self) -> "Odds":
        self._entries = {}
        self.total = 0
        return self

    # --- Replacements ---

    def _removed_weight(self, removed: Optional[int], what: str) -> int:
        if not removed:
            logger.error("Nothing to redistribute when replacing %s", what)
            raise InvariantViolationError(f"Replacing {what} removed no weight")
        return removed

    def _check_replacement(self, new_odds: "Odds") -> None:
        if new_odds.total == 0:
            logger.error("Replacement odds carry no weight to redistribute")
            raise InvariantViolationError("Cannot add odds whose total weight is zero")

    def replace_subset_with_odds(self, subset: "Odds", new_odds: "Odds") -> "Odds":
        self._check_replacement(new_odds)
        removed = self._removed_weight(self.remove_subset(subset), "subset")
        return self.add_odds(new_odds, removed)

    def replace_subset_with_data(self, subset: "Odds", data: Any) -> "Odds":
        removed = self._removed_weight(self.remove_subset(subset), "subset")
        return self.add(data, removed)

    def replace_hash_with_odds(self, hash: Hashable, new_odds: "Odds") -> "Odds":
        self._check_replacement(new_odds)
        removed = self._removed_weight(self.remove_hash(hash), f"hash {hash!r}")
        return self.add_odds(new_odds, removed)

    def replace_hash_with_data(self, hash: Hashable, data: Any) -> "Odds":
        removed = self._removed_weight(self.remove_hash(hash), f"hash {hash!r}")
        return self.add(data, removed)

    def replace_data_with_odds(self, data: Any, new_odds: "Odds") -> "Odds":
        return self.replace_hash_with_odds(self.behavior.hash(data), new_odds)

    def replace_data_with_data(self, old_data: Any, new_data: Any) -> "Odds":
        return self.replace_hash_with_data(self.behavior.hash(old_data), new_data)

    def replace_entry_with_odds(self, entry: Entry, new_odds: "Odds") -> "Odds":
        return self.replace_hash_with_odds(entry.hash, new_odds)

    def replace_entry_with_data(self, entry: Entry, data: Any) -> "Odds":
        return self.replace_hash_with_data(entry.hash, data)

    # --- Adjustments ---

    def scale(self, factor: int) -> "Odds":
        """Multiply every weight and the total by ``factor``."""
        factor = self._check_weight(factor)
        for entry in self._entries.values():
            entry.weight *= factor
        self.total *= factor
        return self

    def reduce(self) -> "Odds":
        """Divide every weight and the total by the GCD of all the weights."""
        if self.total == 0:
            return self
        divisor = fold(gcd, (entry.weight for entry in self._entries.values()), 0)
        if divisor > 1:
            for entry in self._entries.values():
                entry.weight //= divisor
            self.total //= divisor
        logger.debug("Reduced %d entries by %d", len(self._entries), divisor)
        return self

    def copy(self) -> "Odds":
        """Duplicate the map, copying every entry's data through the behavior.

        Raises:
            InvariantViolationError: If copied data hashes differently from the original.
        """
        self._require("copy")
        duplicate = self.new_from_reference()
        for entry in self._entries.values():
            copied = self.copy_entry(entry)
            if copied.hash != entry.hash:
                logger.error("Copied data hashes to %r instead of %r", copied.hash, entry.hash)
                raise InvariantViolationError(
                    f"Copy and hash functions disagree: {copied.hash!r} != {entry.hash!r}")
            duplicate.add_entry(copied)
        return duplicate

    def update_hashes(self, modify_flag: ModifyFlag = ModifyFlag.DEFAULT) -> "Odds":
        """Recompute every hash from the current data, folding entries that now collide."""
        entries = self.entries()
        add = self.add_entry_function(modify_flag)
        self.clear()
        for entry in entries:
            entry.hash = self.behavior.hash(entry.data)
            add(entry)
        return self

    # --- Merge ---

    def merge(self, *others: Optional["Odds"]) -> "Odds":
        """Move every entry of ``others`` into this map; None sources are skipped.

        Merged sources are left empty, since their entries now belong to this map.
        """
        return self._merge(self.add_entry, others)

    def merge_combine(self, *others: Optional["Odds"]) -> "Odds":
        self._require("combine")
        return self._merge(self.add_entry_combine, others)

    def merge_combine_in_place(self, *others: Optional["Odds"]) -> "Odds":
        self._require("combine_in_place")
        return self._merge(self.add_entry_combine_in_place, others)

    def merge_function(self, modify_flag: ModifyFlag = ModifyFlag.DEFAULT) -> Callable[..., "Odds"]:
        if modify_flag & ModifyFlag.COMBINE:
            return self.merge_combine
        if modify_flag & ModifyFlag.COMBINE_IN_PLACE:
            return self.merge_combine_in_place
        return self.merge

    def _merge(self, add: Callable[[Entry], "Odds"], others) -> "Odds":
        for other in others:
            if other is None:
                continue
            if other is self:
                raise ValueError("Cannot merge an odds object into itself")
            for entry in other.entries():
                add(entry)
            other.clear()
        return self

    # --- Conditions ---

    def remove_condition(self, condition: Condition) -> "Odds":
        for entry in self.entries():
            if condition(entry):
                self.remove_entry(entry)
        return self

    def split_by_conditions(self, *conditions: Condition) -> List["Odds"]:
        """Partition the map by ordered conditions; earlier conditions win.

        Returns one map per condition followed by this map holding the remainder.
        """
        groups = []
        for condition in conditions:
            group = self.new_from_reference()
            for entry in self.entries():
                if condition(entry):
                    self.remove_entry(entry)
                    group.add_entry(entry)
            groups.append(group)
        groups.append(self)
        return groups

    def condition_weight(self, condition: Condition) -> int:
        return sum(entry.weight for entry in self.entries() if condition(entry))

    def condition_all_true(self, condition: Condition) -> bool:
        return all(condition(entry) for entry in self.entries())

    def condition_all_false(self, condition: Condition) -> bool:
        return not any(condition(entry) for entry in self.entries())

    # --- Sampling ---

    def sample(self) -> Entry:
        """Draw one entry with probability weight / total using a CSPRNG.

        Raises:
            InvariantViolationError: If the map has no weight to draw from.
        """
        if self.total <= 0:
            logger.error("Cannot sample from odds with total weight %d", self.total)
            raise InvariantViolationError("Cannot sample from odds with no weight")
        point = secrets.randbelow(self.total)
        cumulative = 0
        for entry in self._entries.values():
            cumulative += entry.weight
            if cumulative > point:
                return entry
        raise InvariantViolationError("Total weight does not match the entry weights")

    # --- Display ---

    def _label(self, entry: Entry) -> str:
        if self.behavior.supports("display"):
            return self.behavior.display(entry.data)
        return str(entry.hash)

    def __str__(self) -> str:
        labelled = sorted((self._label(entry), entry.weight) for entry in self._entries.values())
        width = max((len(label) for label, _ in labelled), default=0)
        lines = [f"Total Weight: {self.total}"]
        lines.extend(f"{label.ljust(width)}: {weight}" for label, weight in labelled)
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Odds(entries={len(self._entries)}, total={self.total})"

    def plot(self, ax: Optional[plt.Axes] = None, save_path: Optional[str] = None, **plot_kwargs):
        """Bar chart of the exact outcome probabilities.

        Args:
            ax: Optional matplotlib Axes to plot on.
            save_path: Optional file path to save the plot.
            **plot_kwargs: Additional bar options (e.g., color).
        Returns:
            Matplotlib Axes object.
        """
        standalone = ax is None
        if standalone:
            fig, ax = plt.subplots()

        labelled = sorted((self._label(entry), entry.weight) for entry in self._entries.values())
        x = np.arange(len(labelled))
        heights = [float(Fraction(weight, self.total)) if self.total else 0.0 for _, weight in labelled]
        ax.bar(x, heights, **plot_kwargs)
        ax.set_xticks(x)
        ax.set_xticklabels([label for label, _ in labelled])
        ax.set_ylabel("Probability")
        ax.set_title(f"Odds (total weight {self.total})")
        ax.grid(True)

        if save_path:
            plt.savefig(save_path, bbox_inches="tight")
        if standalone:
            plt.show()

        return ax

    # --- Helpers ---

    def _require(self, capability: str) -> None:
        if not self.behavior.supports(capability):
            logger.error("Operation requires the '%s' capability", capability)
            raise MissingCapabilityError(f"Behaviour capability '{capability}' was not supplied")

    @staticmethod
    def _check_weight(weight) -> int:
        if isinstance(weight, bool) or not isinstance(weight, (int, np.integer)):
            logger.error("Weight must be an integer, got %r", weight)
            raise InvariantViolationError(f"Weight must be an integer, got {weight!r}")
        weight = int(weight)
        if weight < 0:
            logger.error("Negative weight %d rejected", weight)
            raise InvariantViolationError(f"Weight must be non-negative, got {weight}")
        return weight


def combine(first: Odds, second: Odds) -> Odds:
    """Cross every outcome of ``first`` with every outcome of ``second`` through ``behavior.combine``.

    The combined weight of a pair is the product of the two weights.
    """
    first._require("combine")
    combined = first.new_from_reference()
    for entry in first.entries():
        for other in second.entries():
            combined.add(first.behavior.combine(entry.data, other.data), entry.weight * other.weight)
    logger.debug("Combined %d x %d entries into %d", len(first), len(second), len(combined))
    return combined
