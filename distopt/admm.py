from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .blocks.aux import (
    ADMMConfig,
    Array,
    Record,
    StepSizeFunction,
    _nan_guard,
    axpy,
    identity_schedule,
    scal,
    validate_partitions,
    zeros,
)
from .blocks.gradient import Gradient
from .blocks.local import Correction, PartitionState, solve_partition
from .blocks.substrate import Broadcast, PartitionExecutor
from .blocks.updater import Updater


def _sqnorm(x: Array) -> float:
    v = float(np.dot(x.ravel(), x.ravel()))
    return v if np.isfinite(v) else np.inf


# ------------------------------ round state ------------------------------- #


@dataclass(frozen=True)
class GlobalState:
    """
    Driver-owned state committed at the end of each round. A round builds a
    new GlobalState and swaps it in; fields are never updated in place.
    """

    global_weights: Array
    regularization_weights: Array
    regularization_penalty: Array
    penalties: Mapping[int, Array]

    def __post_init__(self):
        object.__setattr__(self, "penalties", MappingProxyType(dict(self.penalties)))
        for arr in (
            self.global_weights,
            self.regularization_weights,
            self.regularization_penalty,
            *self.penalties.values(),
        ):
            arr.setflags(write=False)

    def thaw(self) -> Dict[str, Any]:
        """Writable copies of every field, keyed by field name."""
        return {
            "global_weights": self.global_weights.copy(),
            "regularization_weights": self.regularization_weights.copy(),
            "regularization_penalty": self.regularization_penalty.copy(),
            "penalties": {i: p.copy() for i, p in self.penalties.items()},
        }

    @classmethod
    def initial(cls, initial_weights: Array, indices: Sequence[int]) -> "GlobalState":
        dim = initial_weights.shape[0]
        return cls(
            global_weights=np.array(initial_weights, dtype=np.float64),
            regularization_weights=zeros(dim),
            regularization_penalty=zeros(dim),
            penalties={i: zeros(dim) for i in indices},
        )


@dataclass
class History:
    loss: List[float] = field(default_factory=list)
    primal_residual: List[float] = field(default_factory=list)
    dual_residual: List[float] = field(default_factory=list)
    timing: Dict[str, List[float]] = field(
        default_factory=lambda: {
            "local_updates": [],
            "global_updates": [],
            "regularization": [],
        }
    )
    iters: int = 0
    reason: str = ""

    def as_arrays(self) -> Dict[str, Array]:
        return {
            "loss": np.asarray(self.loss, dtype=float),
            "primal_residual": np.asarray(self.primal_residual, dtype=float),
            "dual_residual": np.asarray(self.dual_residual, dtype=float),
        }


# ------------------------------ worker tasks ------------------------------ #
# Module level so process pools can pickle them.


def _bootstrap_task(
    index: int,
    records: Sequence[Record],
    dim: int,
    gradient: Gradient,
    updater: Updater,
    step_size: float,
    step_size_function: StepSizeFunction,
) -> PartitionState:
    return solve_partition(
        index, records, zeros(dim), gradient, updater, step_size, step_size_function, 0.0
    )


def _consensus_task(
    index: int,
    records: Sequence[Record],
    bc_weights: Broadcast,
    bc_penalties: Broadcast,
    num_records: int,
    rho: float,
    gradient: Gradient,
    updater: Updater,
    step_size: float,
    step_size_function: StepSizeFunction,
) -> PartitionState:
    anchor = bc_weights.value
    correction = Correction(
        penalty=bc_penalties.value[index], anchor=anchor, rho=rho, num_records=num_records
    )
    # regularization is handled by the driver's closed-form step, never locally
    return solve_partition(
        index,
        records,
        anchor,
        gradient,
        updater,
        step_size,
        step_size_function,
        0.0,
        correction,
    )


# =========================== Consensus ADMM driver ======================== #


class ConsensusADMM:
    """
    Synchronous consensus ADMM over disjoint data partitions.

    Round 0 (bootstrap): every partition runs one unregularized pass from the
    zero vector. Each later round:

        global   = (Σ_p w_p + reg_w) / (P + 1)
        loss    += Σ_p loss_p + reg_param · R(global)
        pen_p   += rho (w_p - global)                      (own slot only)
        reg_pen += rho reg_w - rho global
        w_p      = augmented local pass from global         (parallel)
        reg_w    = (rho global - reg_pen) / (rho + reg_param)

    All partitions finish before the driver touches shared state (full
    barrier); the reduction order is ascending partition index, so results
    are bit-reproducible for a fixed partitioning.
    """

    def __init__(
        self,
        gradient: Gradient,
        updater: Updater,
        config: Optional[ADMMConfig] = None,
        callback: Optional[Callable[[int, "ConsensusADMM", History], None]] = None,
    ):
        self.gradient = gradient
        self.updater = updater
        self.config = config if config is not None else ADMMConfig()
        self.callback = callback

        # State
        self.state_: Optional[GlobalState] = None
        self.partition_states_: Dict[int, PartitionState] = {}
        self.num_records_: Dict[int, int] = {}
        self.history_: Optional[History] = None

    # ------------------------------ phases -------------------------------- #

    def _bootstrap(
        self,
        executor: PartitionExecutor,
        parts: List[Tuple[Record, ...]],
        dim: int,
        schedule: StepSizeFunction,
    ) -> Dict[int, PartitionState]:
        cfg = self.config
        tasks = [
            (idx, part, dim, self.gradient, self.updater, cfg.step_size, schedule)
            for idx, part in enumerate(parts)
        ]
        results = executor.map_partitions(_bootstrap_task, tasks)
        return {s.index: s for s in results}

    def _aggregate(
        self, states: Dict[int, PartitionState], regularization_weights: Array
    ) -> Tuple[Array, float]:
        """Average with the regularization variable as an extra partition."""
        total = zeros(regularization_weights.shape[0])
        total_loss = 0.0
        for idx in sorted(states):
            axpy(1.0, states[idx].weights, total)
            total_loss += states[idx].loss
        axpy(1.0, regularization_weights, total)
        scal(1.0 / (len(states) + 1), total)
        return total, total_loss

    def _regularization_value(self, weights: Array) -> float:
        _, reg_val = self.updater.compute(
            weights, zeros(weights.shape[0]), 0.0, identity_schedule, 1, self.config.reg_param
        )
        return float(reg_val)

    def _dual_update(
        self,
        states: Dict[int, PartitionState],
        penalties: Mapping[int, Array],
        global_weights: Array,
    ) -> Dict[int, Array]:
        rho = self.config.rho
        updated: Dict[int, Array] = {}
        for idx in sorted(states):
            pen = np.array(penalties[idx], dtype=np.float64)
            axpy(rho, states[idx].weights, pen)
            axpy(-rho, global_weights, pen)
            updated[idx] = pen
        return updated

    def _regularization_dual_update(self, state: GlobalState, global_weights: Array) -> Array:
        rho = self.config.rho
        pen = np.array(state.regularization_penalty, dtype=np.float64)
        axpy(rho, state.regularization_weights, pen)
        axpy(-rho, global_weights, pen)
        return pen

    def _local_update(
        self,
        executor: PartitionExecutor,
        parts: List[Tuple[Record, ...]],
        global_weights: Array,
        penalties: Dict[int, Array],
        schedule: StepSizeFunction,
    ) -> Dict[int, PartitionState]:
        cfg = self.config
        with Broadcast(global_weights) as bc_weights, Broadcast(penalties) as bc_penalties:
            tasks = [
                (
                    idx,
                    part,
                    bc_weights,
                    bc_penalties,
                    self.num_records_[idx],
                    cfg.rho,
                    self.gradient,
                    self.updater,
                    cfg.step_size,
                    schedule,
                )
                for idx, part in enumerate(parts)
            ]
            results = executor.map_partitions(_consensus_task, tasks)
        return {s.index: s for s in results}

    def _regularization_primal_update(self, global_weights: Array, regularization_penalty: Array) -> Array:
        """Closed-form argmin of reg_param·½‖x‖² + (rho/2)‖x - global + pen/rho‖²."""
        rho, reg = self.config.rho, self.config.reg_param
        reg_w = zeros(global_weights.shape[0])
        axpy(-1.0 / (rho + reg), regularization_penalty, reg_w)
        axpy(rho / (rho + reg), global_weights, reg_w)
        return reg_w

    # -------------------------------- API --------------------------------- #

    def snapshot(self) -> Dict[str, object]:
        """Deep copy of the last committed state (for inspection / restarts)."""
        return {
            "state": None if self.state_ is None else self.state_.thaw(),
            "partition_states": copy.deepcopy(self.partition_states_),
            "num_records": dict(self.num_records_),
            "history": copy.deepcopy(self.history_),
        }

    def restore(self, snapshot: Dict[str, object]) -> None:
        """Restore from a snapshot produced by `snapshot()`."""
        state = snapshot["state"]
        # rebuilt through the constructor so the restored state is frozen again
        self.state_ = None if state is None else GlobalState(**copy.deepcopy(state))
        self.partition_states_ = copy.deepcopy(snapshot["partition_states"])
        self.num_records_ = dict(snapshot["num_records"])
        self.history_ = copy.deepcopy(snapshot["history"])

    @property
    def loss_history(self) -> Array:
        if self.history_ is None:
            return np.zeros(0)
        return self.history_.as_arrays()["loss"]

    def run(self, partitions: Sequence[Sequence[Any]], initial_weights: Array) -> Tuple[Array, Array]:
        """
        Run bootstrap + (num_iterations - 1) consensus rounds.

        Args:
            partitions: sequence of partitions; each an ordered sequence of
                Records or (label, features) pairs
            initial_weights: 1-D array fixing the dimension D

        Returns:
            (final global weights, loss history with one entry per round)
        """
        cfg = self.config.validate()
        w0 = np.array(initial_weights, dtype=np.float64)
        if w0.ndim != 1:
            raise ValueError(f"initial_weights must be 1-D, got shape {w0.shape}")
        dim = w0.shape[0]
        parts = validate_partitions(partitions, dim)
        schedule = cfg.schedule()
        rho, reg_param = cfg.rho, cfg.reg_param

        if reg_param > 0 and not getattr(self.updater, "is_quadratic", False):
            logging.warning(
                f"{type(self.updater).__name__} is not a quadratic regularizer; the "
                f"closed-form regularization step assumes R(x) = ½‖x‖²"
            )

        hist = History()
        self.history_ = hist
        self.num_records_ = {}
        self.partition_states_ = {}
        self.state_ = GlobalState.initial(w0, range(len(parts)))
        num_parts = len(parts)

        with PartitionExecutor(cfg.parallel_mode, cfg.max_workers) as executor:
            # --------------- bootstrap (round 0) --------------- #
            local_start = time.time()
            states = self._bootstrap(executor, parts, dim, schedule)
            self.num_records_ = {idx: s.num_records for idx, s in states.items()}
            self.partition_states_ = states
            logging.debug(
                f"[ADMM] bootstrap done: {num_parts} partitions in {time.time() - local_start:.3f}s"
            )

            # --------------- consensus rounds --------------- #
            for rnd in range(1, cfg.num_iterations):
                iter_start_time = time.time()
                state = self.state_

                # (1) aggregate
                global_start = time.time()
                global_w, total_loss = self._aggregate(states, state.regularization_weights)

                # (2-3) regularization readout -> round loss
                reg_val = self._regularization_value(global_w)
                round_loss = total_loss + reg_param * reg_val

                # (4-5) dual updates
                penalties = self._dual_update(states, state.penalties, global_w)
                reg_pen = self._regularization_dual_update(state, global_w)
                global_time = time.time() - global_start

                # (6-7) broadcast + local primal update (barrier)
                local_start = time.time()
                new_states = self._local_update(executor, parts, global_w, penalties, schedule)
                local_time = time.time() - local_start

                # (8) regularization primal update (closed form)
                reg_start = time.time()
                reg_w = self._regularization_primal_update(global_w, reg_pen)
                if _nan_guard(global_w, reg_w, reg_pen, round_loss):
                    raise FloatingPointError(f"[ADMM] NaN/Inf in global state at round {rnd}")

                # diagnostics (against the states the round consumed)
                r_sq = sum(_sqnorm(states[i].weights - global_w) for i in sorted(states))
                r_norm = float(np.sqrt(r_sq))
                s_norm = float(rho * np.sqrt(num_parts) * np.sqrt(_sqnorm(global_w - state.global_weights)))

                # commit
                self.state_ = GlobalState(
                    global_weights=global_w,
                    regularization_weights=reg_w,
                    regularization_penalty=reg_pen,
                    penalties=penalties,
                )
                states = new_states
                self.partition_states_ = new_states
                hist.loss.append(round_loss)
                hist.primal_residual.append(r_norm)
                hist.dual_residual.append(s_norm)
                hist.timing["global_updates"].append(global_time)
                hist.timing["local_updates"].append(local_time)
                hist.timing["regularization"].append(time.time() - reg_start)
                hist.iters = rnd

                iter_time = time.time() - iter_start_time
                logging.debug(
                    f"[ADMM] round {rnd}: loss={round_loss:.6g} r={r_norm:.3e} "
                    f"s={s_norm:.3e} t={iter_time:.3f}s"
                )
                if cfg.verbose:
                    print(
                        f"[{rnd:4d}] loss={round_loss:.6g} | r={r_norm:.3e} | "
                        f"s={s_norm:.3e} | t={iter_time:.3f}s "
                        f"(loc:{local_time:.3f}, glob:{global_time:.3f})"
                    )

                # callback (early stop by raising StopIteration)
                if self.callback is not None:
                    try:
                        self.callback(rnd, self, hist)
                    except StopIteration as e:
                        hist.reason = f"stopped by callback: {e}"
                        if cfg.verbose:
                            print(f"Stopped by callback at round {rnd}.")
                        break
            else:
                hist.reason = "num_iterations reached"

        logging.info(
            "ADMM finished. Last 10 losses %s"
            % ", ".join(f"{v:g}" for v in hist.loss[-10:])
        )
        return self.state_.global_weights.copy(), hist.as_arrays()["loss"]


def run_admm(
    partitions: Sequence[Sequence[Any]],
    gradient: Gradient,
    updater: Updater,
    step_size: float,
    rho: float,
    step_size_function: Optional[StepSizeFunction],
    num_iterations: int,
    reg_param: float,
    initial_weights: Array,
    parallel_mode: str = "none",
    max_workers: Optional[int] = None,
) -> Tuple[Array, Array]:
    """
    Run distributed ADMM; returns (weights, loss per round).

    Loss of a round = Σ of per-record losses from the previous local pass
    (each taken at the local weights current for that record) + reg_param ·
    R(global weights of this round).
    """
    config = ADMMConfig(
        num_iterations=num_iterations,
        reg_param=reg_param,
        step_size=step_size,
        rho=rho,
        step_size_function=step_size_function,
        parallel_mode=parallel_mode,
        max_workers=max_workers,
    )
    return ConsensusADMM(gradient, updater, config).run(partitions, initial_weights)
