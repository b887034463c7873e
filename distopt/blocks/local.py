"""
local.py

Partition local solver: one sequential gradient/update pass over a
partition's records, in the order the partition stores them. The iteration
counter and the evolving weights make the order observable, so the same
partition in the same order always yields the same result.

Used by the driver for the unregularized bootstrap pass and for every
consensus round's augmented pass (via `Correction`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence

import numpy as np

from .aux import Array, Record, StepSizeFunction, _nan_guard, axpy
from .gradient import Gradient
from .updater import Updater


@dataclass(frozen=True)
class PartitionState:
    """Per-round message from one partition to the driver."""

    index: int
    weights: Array
    loss: float
    num_records: int


class Correction(NamedTuple):
    """
    Consensus terms added to every record's gradient:
        g + penalty/num_records + (rho/num_records)·(w - anchor)
    `anchor` is the broadcast global weights (fixed during the pass).
    """

    penalty: Array
    anchor: Array
    rho: float
    num_records: int


def solve_partition(
    index: int,
    records: Sequence[Record],
    start_weights: Array,
    gradient: Gradient,
    updater: Updater,
    step_size: float,
    step_size_function: StepSizeFunction,
    reg_param: float = 0.0,
    correction: Optional[Correction] = None,
) -> PartitionState:
    w = np.array(start_weights, dtype=np.float64)
    dim = w.shape[0]

    if correction is not None:
        if correction.num_records != len(records):
            raise ValueError(
                f"partition {index}: record count changed from "
                f"{correction.num_records} to {len(records)}"
            )
        penalty_term = np.asarray(correction.penalty, dtype=np.float64) / correction.num_records
        factor = correction.rho / correction.num_records
        anchor = np.asarray(correction.anchor, dtype=np.float64)

    loss = 0.0
    for t, (label, features) in enumerate(records, start=1):
        grad, rec_loss = gradient.compute(features, label, w)
        grad = np.array(grad, dtype=np.float64)
        if grad.shape != (dim,):
            raise ValueError(
                f"partition {index}: gradient has shape {grad.shape}, expected ({dim},)"
            )
        if correction is not None:
            grad += penalty_term
            axpy(factor, w - anchor, grad)

        w_new, _ = updater.compute(w, grad, step_size, step_size_function, t, reg_param)
        w = np.asarray(w_new, dtype=np.float64)
        loss += float(rec_loss)

        if _nan_guard(grad, w, loss):
            raise FloatingPointError(
                f"partition {index}: NaN/Inf encountered at record {t - 1}"
            )

    return PartitionState(index=index, weights=w, loss=loss, num_records=len(records))
