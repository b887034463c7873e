"""
substrate.py

Data-parallel execution substrate for the driver:
- partition_dataset: contiguous, order-preserving split of (X, y)
- Broadcast: publish-once / read-many value with explicit release
- PartitionExecutor: per-partition parallel map (none / threads / processes)
  whose results always come back in partition-index order
"""

from __future__ import annotations

import multiprocessing as mp
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from .aux import PARALLEL_MODES, Array, Record, as_record


def partition_dataset(X: Array, y: Array, num_partitions: int) -> List[Tuple[Record, ...]]:
    """Split rows of X / entries of y into `num_partitions` contiguous partitions."""
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64).ravel()
    if X.ndim != 2:
        raise ValueError(f"X must be 2-D, got shape {X.shape}")
    if X.shape[0] != y.shape[0]:
        raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]} labels")
    if num_partitions < 1 or num_partitions > X.shape[0]:
        raise ValueError(
            f"num_partitions must be in [1, {X.shape[0]}], got {num_partitions}"
        )
    bounds = np.array_split(np.arange(X.shape[0]), num_partitions)
    return [tuple(as_record((y[i], X[i])) for i in rows) for rows in bounds]


def _freeze(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        out = value.copy()
        out.setflags(write=False)
        return out
    if isinstance(value, dict):
        return {k: _freeze(v) for k, v in value.items()}
    return value


class Broadcast:
    """
    Read-only value shared with every partition for one round.
    Arrays are copied and frozen on publish; reading after destroy() raises.
    """

    def __init__(self, value: Any):
        self._value = _freeze(value)
        self._destroyed = False

    @property
    def value(self) -> Any:
        if self._destroyed:
            raise RuntimeError("broadcast value was destroyed")
        return self._value

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        self._value = None
        self._destroyed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()


class PartitionExecutor:
    """
    Context manager owning the worker pool for a run.

    parallel_mode:
        'none'            : run partitions one after another in the caller
        'threading'       : ThreadPoolExecutor
        'multiprocessing' : ProcessPoolExecutor (task functions and their
                            arguments must be picklable)
    """

    def __init__(self, parallel_mode: str = "none", max_workers: Optional[int] = None):
        if parallel_mode not in PARALLEL_MODES:
            raise ValueError(
                f"parallel_mode must be one of {PARALLEL_MODES}, got {parallel_mode!r}"
            )
        self.parallel_mode = parallel_mode
        self.max_workers = max_workers or min(mp.cpu_count(), 8)
        self._executor: Optional[Executor] = None

    def __enter__(self):
        if self.parallel_mode == "threading":
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers)
        elif self.parallel_mode == "multiprocessing":
            self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._executor is not None:
            # on failure, drop queued partitions instead of finishing the round
            self._executor.shutdown(wait=True, cancel_futures=exc_type is not None)
            self._executor = None

    def map_partitions(self, fn: Callable[..., Any], tasks: Sequence[Tuple[Any, ...]]) -> List[Any]:
        """
        Apply fn(*task) to every task; results are returned in task order.
        The first failing task (in task order) re-raises its exception.
        """
        if self._executor is None:
            return [fn(*task) for task in tasks]
        futures = [self._executor.submit(fn, *task) for task in tasks]
        return [f.result() for f in futures]
