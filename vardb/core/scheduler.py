"""
Sharded execution of whole-dataset operations with parallel and sequential paths.

Work is split into shards (per-chromosome row blocks, sample pairs or samples).
The same shard function runs either on a thread pool or in order on the calling
thread; results are merged in shard order, so both paths give identical output.
"""

import enum
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..utils.data_types import RowRange
from ..utils.errors import InternalError, QueryCancelledError


class SchedulerState(enum.Enum):
    IDLE = 'idle'
    SHARDING = 'sharding'
    PARALLEL_REDUCE = 'parallel-reduce'
    SEQUENTIAL_SCAN = 'sequential-scan'
    MERGE = 'merge'
    RANKED = 'ranked'


class CancellationToken:
    """Cooperative cancellation flag checked by shards at batch boundaries.

    A child token is cancelled when either it or its parent is.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise QueryCancelledError("Query cancelled")


@dataclass(frozen=True)
class Shard:
    """Contiguous block of variant rows on one chromosome"""

    index: int
    chrom: int
    rows: RowRange


def make_shards(blocks: Dict[int, RowRange], shard_rows: int) -> List[Shard]:
    """Split per-chromosome row blocks into shards of at most shard_rows rows

    Args:
        blocks: Chromosome code -> row range (see RegionIndex.chromosome_blocks)
        shard_rows: Maximum rows per shard

    Returns:
        Shards in chromosome then row order
    """
    if shard_rows < 1:
        raise ValueError("shard_rows must be >= 1")
    shards = []
    for chrom in sorted(blocks):
        block = blocks[chrom]
        for start in range(block.start, block.stop, shard_rows):
            shards.append(Shard(len(shards), chrom, RowRange(start, min(start + shard_rows, block.stop))))
    return shards


def chunk_units(units: Sequence[Any], chunk_size: int) -> List[Sequence[Any]]:
    """Group work units (pairs, samples) into chunks of at most chunk_size"""
    chunk_size = max(int(chunk_size), 1)
    return [units[i:i + chunk_size] for i in range(0, len(units), chunk_size)]


def shard_top_n(pvalues: np.ndarray, rows: np.ndarray, n: int) -> Tuple[np.ndarray, np.ndarray]:
    """The n smallest (p-value, row) pairs of one shard, as (p-values, rows)"""
    pvalues = np.asarray(pvalues, dtype=np.float64)
    rows = np.asarray(rows, dtype=np.int64)
    if pvalues.size <= n:
        return pvalues, rows
    keep = np.lexsort((rows, pvalues))[:max(n, 0)]
    return pvalues[keep], rows[keep]


def merge_ranked(results: Sequence[Tuple[np.ndarray, np.ndarray]], n: int) -> Tuple[np.ndarray, np.ndarray]:
    """Merge per-shard (p-values, rows) and keep the n smallest

    Ties on p-value break by global row index.

    Returns:
        Tuple of (rows, p-values) in rank order
    """
    if not results:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64)
    pvalues = np.concatenate([np.asarray(p, dtype=np.float64) for p, _ in results])
    rows = np.concatenate([np.asarray(r, dtype=np.int64) for _, r in results])
    order = np.lexsort((rows, pvalues))[:max(n, 0)]
    return rows[order], pvalues[order]


class Scheduler:
    """Runs one query's shards.

    Args:
        workers: Thread pool size (0 = all CPUs)
        verbose: Print shard progress
    """

    def __init__(self, workers: int = 0, verbose: bool = False):
        if workers == 0:
            import multiprocessing
            workers = multiprocessing.cpu_count()
        self.workers = max(int(workers), 1)
        self.verbose = verbose
        self.history: List[SchedulerState] = [SchedulerState.IDLE]

    @property
    def state(self) -> SchedulerState:
        return self.history[-1]

    def _enter(self, state: SchedulerState) -> None:
        self.history.append(state)

    def run(self,
            fn: Callable[[Any, CancellationToken], Any],
            units: Sequence[Any],
            seq: bool = False,
            token: Optional[CancellationToken] = None,
            label: str = "query") -> List[Any]:
        """Apply fn to every unit and return the results in unit order

        Args:
            fn: Shard function called as fn(unit, token)
            units: Shards or chunks of work
            seq: Run on the calling thread in unit order
            token: Cancellation token of the query
            label: Name used in progress messages

        Raises:
            QueryCancelledError: If the token is cancelled
            InternalError: If any shard fails; remaining shards are cancelled
        """
        self._enter(SchedulerState.SHARDING)
        local = CancellationToken(parent=token)
        local.raise_if_cancelled()
        n_units = len(units)
        results: List[Any] = [None] * n_units
        t0 = time.time()

        if seq or n_units <= 1 or self.workers == 1:
            self._enter(SchedulerState.SEQUENTIAL_SCAN)
            for i, unit in enumerate(units):
                local.raise_if_cancelled()
                try:
                    results[i] = fn(unit, local)
                except QueryCancelledError:
                    raise
                except Exception as e:
                    raise InternalError(f"{label}: shard {i} failed: {e}") from e
        else:
            self._enter(SchedulerState.PARALLEL_REDUCE)
            n_workers = min(self.workers, n_units)
            if self.verbose:
                print(f"   {label}: {n_units} shards on {n_workers} workers")
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                futures = {executor.submit(fn, unit, local): i for i, unit in enumerate(units)}
                failed = None
                try:
                    for done in as_completed(futures):
                        failed = futures[done]
                        results[failed] = done.result()
                except QueryCancelledError:
                    local.cancel()
                    for pending in futures:
                        pending.cancel()
                    raise
                except Exception as e:
                    local.cancel()
                    for pending in futures:
                        pending.cancel()
                    raise InternalError(f"{label}: shard {failed} failed: {e}") from e

        local.raise_if_cancelled()
        self._enter(SchedulerState.MERGE)
        if self.verbose:
            print(f"   {label}: {n_units} shards completed in {time.time() - t0:.2f} seconds")
        return results

    def top_n(self,
              fn: Callable[[Shard, CancellationToken], Tuple[np.ndarray, np.ndarray]],
              shards: Sequence[Shard],
              n: int,
              seq: bool = False,
              token: Optional[CancellationToken] = None,
              label: str = "ranking") -> Tuple[np.ndarray, np.ndarray]:
        """Run a ranking shard function and merge to the n smallest p-values

        fn returns (p-values, global rows) for the tested rows of its shard;
        each shard keeps only its own n smallest before the merge.
        """
        def ranked_shard(shard, tok):
            pvalues, rows = fn(shard, tok)
            return shard_top_n(pvalues, rows, n)

        results = self.run(ranked_shard, shards, seq=seq, token=token, label=label)
        ranked = merge_ranked(results, n)
        self._enter(SchedulerState.RANKED)
        return ranked
