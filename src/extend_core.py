from typing import Any, Callable, Iterable
import logging

from entry_core import Entry, InvariantViolationError, ModifyFlag

logger = logging.getLogger(__name__)


class ExtendMixin:
    """Convolution and per-entry expansion of an Odds object.

    Every algorithm keeps weights as integers: instead of dividing, the map
    is scaled up to a common denominator and reduced by GCD at the end.
    """

    def convolve(self, *others):
        """Replace every entry with its convolution against each entry of ``others[0]``.

        ``behavior.convolve(self, entry, other)`` returns entries whose weights
        only need to be proportionally correct. The pair ``(entry, other)`` is
        given ``entry.weight * other.weight`` units of the result, split over
        the returned entries. Remaining ``others`` are convolved in order.

        Raises:
            ValueError: If one of ``others`` is this map.
        """
        self._require("convolve")
        if any(other is self for other in others):
            raise ValueError("Odds cannot be convolved with itself; convolve a copy instead")

        for other in others:
            convolved = self.new_from_reference()
            other_entries = other.entries()
            for entry in self.entries():
                weight = self.remove_entry(entry)
                for other_entry in other_entries:
                    results = self.behavior.convolve(self, entry, other_entry)
                    result_total = sum(result.weight for result in results)
                    pair_weight = weight * other_entry.weight

                    # Scale up rather than divide the pair weight by result_total.
                    if result_total > 1:
                        self.scale(result_total)
                        convolved.scale(result_total)
                        weight *= result_total

                    for result in results:
                        convolved.add(result.data, result.weight * pair_weight)

            self.merge(convolved)
            self.reduce()
            logger.debug("Convolved against %d entries: %d entries, total %d",
                         len(other_entries), len(self), self.total)
        return self

    def convolve_in_place(self, *others):
        """Let ``behavior.convolve_in_place`` mutate every entry against every entry of each other map.

        Weights are untouched; hashes are recomputed afterwards.
        """
        self._require("convolve_in_place")
        if any(other is self for other in others):
            raise ValueError("Odds cannot be convolved with itself; convolve a copy instead")

        for other in others:
            other_entries = other.entries()
            for entry in self.entries():
                for other_entry in other_entries:
                    self.behavior.convolve_in_place(self, entry, other_entry)
            self.update_hashes()
        return self

    def extend(self, extend_function: Callable[[Entry], Any]):
        """Replace each entry's data with ``extend_function(entry)`` and merge collisions."""
        for entry in self.entries():
            entry.data = extend_function(entry)
        return self.update_hashes()

    def extend_odds(self, extend_function: Callable[[Any, Entry], Any],
                    modify_flag: ModifyFlag = ModifyFlag.DEFAULT):
        """Replace each entry with the distribution returned by ``extend_function(self, entry)``.

        Each returned distribution keeps the share of the total its entry had.
        Returned maps are consumed.

        Raises:
            InvariantViolationError: If an entry expands into a distribution with no weight.
        """
        expanded = self._expand_entries(self.entries(), extend_function, self, modify_flag)
        self.clear()
        self.merge(expanded)
        return self.reduce()

    def _expand_entries(self, entries: Iterable[Entry], extend_function, context,
                        modify_flag: ModifyFlag):
        """Expand ``entries`` into one fresh map over a common denominator.

        With ``L`` the product of all sub-totals, the expansion of entry ``i``
        is scaled by ``L * weight[i] / subtotal[i]``, which divides exactly.
        """
        expansions = []
        common_total = 1
        for entry in entries:
            extended = extend_function(context, entry).reduce()
            if extended.total == 0:
                logger.error("Entry %r expanded into a distribution with no weight", entry.hash)
                raise InvariantViolationError(f"Entry {entry.hash!r} expanded into an empty distribution")
            expansions.append((entry.weight, extended))
            common_total *= extended.total

        expanded = self.new_from_reference()
        merge = expanded.merge_function(modify_flag)
        for weight, extended in expansions:
            merge(extended.scale(common_total * weight // extended.total))
        logger.debug("Expanded %d entries into %d entries", len(expansions), len(expanded))
        return expanded
