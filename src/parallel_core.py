from functools import reduce as fold
from math import gcd
from multiprocessing import cpu_count
from threading import Barrier, BrokenBarrierError, Lock, Thread
from typing import Any, Callable, List, Optional, Sequence, Tuple
import logging
import queue

import numpy as np
from joblib import Parallel, delayed

from entry_core import Entry, ModifyFlag, OddsError, ParallelExecutionError

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = min(cpu_count(), 8)


def resolve_workers(workers: Optional[int]) -> int:
    if workers is None:
        return DEFAULT_WORKERS
    if not isinstance(workers, int) or workers <= 0:
        logger.error("workers must be a positive integer, got %r", workers)
        raise ValueError("workers must be a positive integer")
    return workers


def partition_entries(entries: Sequence[Entry], workers: Optional[int] = None) -> List[List[Entry]]:
    """Split entries into contiguous index ranges, one per worker; empty ranges are dropped."""
    workers = resolve_workers(workers)
    chunks = np.array_split(np.arange(len(entries)), workers)
    return [[entries[i] for i in chunk] for chunk in chunks if len(chunk)]


class TwoPhaseBarrier:
    """Rendezvous between ``parties`` workers and one coordinator.

    Workers ``report`` a partial result and block. The coordinator ``collect``s
    every report once all have arrived, computes the global aggregate and
    ``broadcast``s one reply per worker, which releases them. No worker can
    observe its reply before every worker has reported.
    """

    def __init__(self, parties: int):
        if parties <= 0:
            raise ValueError("A barrier needs at least one worker")
        self.parties = parties
        self._reports: List[Any] = [None] * parties
        self._replies: List[Any] = [None] * parties
        self._barrier = Barrier(parties + 1)
        self._errors: List[BaseException] = []
        self._lock = Lock()

    def report(self, index: int, value: Any) -> Any:
        """Worker side: publish ``value`` and wait for the coordinator's reply."""
        self._reports[index] = value
        self._barrier.wait()
        self._barrier.wait()
        return self._replies[index]

    def collect(self) -> List[Any]:
        """Coordinator side: wait for every worker's report."""
        self._barrier.wait()
        return list(self._reports)

    def broadcast(self, replies: Sequence[Any]) -> None:
        """Coordinator side: hand each worker its reply and release them."""
        if len(replies) != self.parties:
            raise ValueError(f"Expected {self.parties} replies, got {len(replies)}")
        self._replies = list(replies)
        self._barrier.wait()

    def fail(self, error: BaseException) -> None:
        """Record a worker failure and break the rendezvous for every party."""
        with self._lock:
            self._errors.append(error)
        self._barrier.abort()

    def raise_if_failed(self) -> None:
        """Re-raise the first worker failure.

        OddsError subclasses propagate unchanged, so callers see the same
        error as in the serial algorithms. Anything else is wrapped in
        ParallelExecutionError.
        """
        if not self._errors:
            return
        first = self._errors[0]
        logger.error("%d worker(s) failed: %s", len(self._errors), first)
        if isinstance(first, OddsError):
            raise first
        raise ParallelExecutionError(f"Parallel worker failed: {first}") from first

    def run(self, work: Callable[[int, List[Entry]], None], partitions: Sequence[List[Entry]],
            coordinate: Callable[[List[Any]], Sequence[Any]]) -> None:
        """Start one thread per partition and coordinate the two phases.

        ``coordinate`` turns the collected reports into per-worker replies.
        Worker errors are re-raised here through ``raise_if_failed``.
        """
        threads = [Thread(target=self._guard, args=(work, index, partition),
                          name=f"odds-worker-{index}", daemon=True)
                   for index, partition in enumerate(partitions)]
        for thread in threads:
            thread.start()
        try:
            self.broadcast(coordinate(self.collect()))
        except BrokenBarrierError:
            if not self._errors:
                raise
        except BaseException as exc:
            self.fail(exc)
            raise
        finally:
            for thread in threads:
                thread.join()
        self.raise_if_failed()

    def _guard(self, work, index, partition) -> None:
        try:
            work(index, partition)
        except BrokenBarrierError:
            # Another party failed; its error is already recorded.
            return
        except Exception as exc:
            self.fail(exc)


class ParallelMixin:
    """Thread-pool variants of Extend, ExtendOdds and Reduce.

    Results are identical to the serial algorithms for any worker count.
    The receiver is only mutated by the calling thread once workers are done
    reading it.
    """

    def extend_parallel(self, extend_function: Callable[[Entry], Any], workers: Optional[int] = None):
        """Perform ``extend`` with workers draining a shared queue of entries."""
        workers = resolve_workers(workers)
        entry_queue: "queue.Queue[Entry]" = queue.Queue()
        for entry in self.entries():
            entry_queue.put(entry)

        def drain() -> int:
            processed = 0
            while True:
                try:
                    entry = entry_queue.get_nowait()
                except queue.Empty:
                    return processed
                entry.data = extend_function(entry)
                processed += 1

        processed = Parallel(n_jobs=workers, prefer="threads")(delayed(drain)() for _ in range(workers))
        logger.debug("extend_parallel: %d workers processed %s entries", workers, processed)
        return self.update_hashes()

    def reduce_parallel(self, workers: Optional[int] = None):
        """Perform ``reduce`` with partial GCDs computed and applied per worker."""
        if self.total == 0:
            return self
        partitions = partition_entries(self.entries(), workers)
        barrier = TwoPhaseBarrier(len(partitions))

        def work(index: int, partition: List[Entry]) -> None:
            divisor = barrier.report(index, fold(gcd, (entry.weight for entry in partition), 0))
            for entry in partition:
                entry.weight //= divisor

        divisor = 0

        def coordinate(partial_divisors: List[int]) -> List[int]:
            nonlocal divisor
            divisor = fold(gcd, partial_divisors, 0)
            return [divisor] * len(partial_divisors)

        barrier.run(work, partitions, coordinate)
        self.total //= divisor
        logger.debug("reduce_parallel: %d workers reduced by %d", len(partitions), divisor)
        return self

    def extend_odds_parallel(self, extend_function: Callable[[Any, Entry], Any],
                             workers: Optional[int] = None,
                             modify_flag: ModifyFlag = ModifyFlag.DEFAULT):
        """Perform ``extend_odds`` with each worker expanding a slice of the entries.

        Each worker builds a reduced local map and reports its total together
        with the summed weight of the entries it expanded. Local maps are then
        rescaled onto a common denominator chosen by the coordinator.
        ``extend_function`` receives a worker-local empty map as its context.
        """
        partitions = partition_entries(self.entries(), workers)
        if not partitions:
            return self.reduce()
        barrier = TwoPhaseBarrier(len(partitions))
        completed: List[Any] = [None] * len(partitions)

        def work(index: int, partition: List[Entry]) -> None:
            context = self.new_from_reference()
            local = self._expand_entries(partition, extend_function, context, modify_flag).reduce()
            entry_weight = sum(entry.weight for entry in partition)
            factor = barrier.report(index, (local.total, entry_weight))
            completed[index] = local.scale(factor)

        barrier.run(work, partitions, self._rescale_factors)

        self.clear()
        merge = self.merge_function(modify_flag)
        for local in completed:
            merge(local)
        logger.debug("extend_odds_parallel: merged %d worker maps into %d entries",
                     len(completed), len(self))
        return self.reduce_parallel(len(partitions))

    @staticmethod
    def _rescale_factors(reports: List[Tuple[int, int]]) -> List[int]:
        """Scale factors putting each worker's map at its entries' share of a common total.

        A worker whose entries all weigh zero reports a zero total and gets a zero factor.
        """
        common_total = 1
        for local_total, _ in reports:
            if local_total:
                common_total *= local_total
        factors = [entry_weight * common_total // local_total if local_total else 0
                   for local_total, entry_weight in reports]
        divisor = fold(gcd, factors, 0)
        if divisor > 1:
            factors = [factor // divisor for factor in factors]
        return factors
