"""
aux.py

Shared building blocks for the consensus-ADMM driver:
- dense vector primitives (axpy / scal / dot) and a NaN/Inf guard
- Record type and partition coercion/validation
- step-size schedules (named, picklable presets)
- ADMMConfig (global tunables) with eager validation
"""

from __future__ import annotations

# =========================
# Standard library
# =========================
import math
import numbers
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

# =========================
# Third-party
# =========================
import numpy as np

Array = np.ndarray
StepSizeFunction = Callable[[int], float]

PARALLEL_MODES = ("none", "threading", "multiprocessing")


# ======================================
# Vector primitives
# ======================================
def zeros(n: int) -> Array:
    return np.zeros(int(n), dtype=np.float64)


def axpy(a: float, x: Array, y: Array) -> Array:
    """y <- a*x + y, in place. Returns y."""
    y += a * x
    return y


def scal(a: float, x: Array) -> Array:
    """x <- a*x, in place. Returns x."""
    x *= a
    return x


def dot(x: Array, y: Array) -> float:
    return float(np.dot(x, y))


def soft_threshold(v: Array, tau: float) -> Array:
    """Elementwise soft-thresholding: prox_{tau ||·||_1}(v)."""
    return np.sign(v) * np.maximum(np.abs(v) - tau, 0.0)


def _nan_guard(*xs: Any) -> bool:
    """Return True if any array (or scalar) contains NaN or Inf."""
    for x in xs:
        if x is None:
            continue
        if isinstance(x, np.ndarray):
            if x.size == 0:
                continue
            if not np.isfinite(x).all():
                return True
        elif not math.isfinite(float(x)):
            return True
    return False


# ======================================
# Records & partitions
# ======================================
class Record(NamedTuple):
    """One labeled example. Features are a read-only float64 copy."""

    label: float
    features: Array


def as_record(item: Any) -> Record:
    label, features = item
    feats = np.array(features, dtype=np.float64)
    feats.setflags(write=False)
    return Record(float(label), feats)


def as_partition(records: Iterable[Any]) -> Tuple[Record, ...]:
    return tuple(as_record(r) for r in records)


def validate_partitions(partitions: Sequence[Iterable[Any]], dim: int) -> List[Tuple[Record, ...]]:
    """
    Coerce every partition into an ordered tuple of Records and reject the
    layouts the driver cannot run on (no partitions, an empty partition, a
    record whose feature vector is not of length `dim`).
    """
    parts = [as_partition(p) for p in partitions]
    if not parts:
        raise ValueError("dataset must contain at least one partition")
    for idx, part in enumerate(parts):
        if len(part) == 0:
            raise ValueError(f"partition {idx} has no records")
        for offset, rec in enumerate(part):
            if rec.features.ndim != 1 or rec.features.shape[0] != dim:
                raise ValueError(
                    f"partition {idx}, record {offset}: features have shape "
                    f"{rec.features.shape}, expected ({dim},)"
                )
    return parts


# ======================================
# Step-size schedules
# ======================================
def _check_iteration(t: int) -> None:
    if t < 1:
        raise ValueError(f"step-size schedules are defined for t >= 1, got {t}")


class InverseSqrtSchedule:
    """f(t) = 1/sqrt(t); the default when there is no regularization."""

    name = "inverse_sqrt"

    def __call__(self, t: int) -> float:
        _check_iteration(t)
        return 1.0 / math.sqrt(t)

    def __repr__(self) -> str:
        return "InverseSqrtSchedule()"


class RegularizedInverseSqrtSchedule:
    """f(t) = 1/(1 + reg_param*sqrt(t)); the default when reg_param > 0."""

    name = "regularized_inverse_sqrt"

    def __init__(self, reg_param: float):
        self.reg_param = float(reg_param)

    def __call__(self, t: int) -> float:
        _check_iteration(t)
        return 1.0 / (1.0 + self.reg_param * math.sqrt(t))

    def __repr__(self) -> str:
        return f"RegularizedInverseSqrtSchedule(reg_param={self.reg_param!r})"


def identity_schedule(t: int) -> float:
    return float(t)


def default_schedule(reg_param: float) -> StepSizeFunction:
    if reg_param > 0:
        return RegularizedInverseSqrtSchedule(reg_param)
    return InverseSqrtSchedule()


SCHEDULES = {
    InverseSqrtSchedule.name: InverseSqrtSchedule,
    RegularizedInverseSqrtSchedule.name: RegularizedInverseSqrtSchedule,
}


def make_schedule(name: str, reg_param: float) -> StepSizeFunction:
    """Build a preset schedule by name; the regularized one binds reg_param."""
    try:
        cls = SCHEDULES[name]
    except KeyError:
        raise ValueError(
            f"unknown step-size schedule {name!r}; choose from {sorted(SCHEDULES)}"
        ) from None
    if cls is RegularizedInverseSqrtSchedule:
        return cls(reg_param)
    return cls()


# ======================================
# Global configuration
# ======================================
@dataclass
class ADMMConfig:
    """
    Tunables for a consensus-ADMM run.

    Notes
    -----
    • Defaults mirror the classic Spark ADMM optimizer (2 iterations,
      reg_param=1, step_size=1, rho=1e-4).
    • step_size_function=None resolves to default_schedule(reg_param); a
      string is looked up in SCHEDULES.
    • Process pools pickle the step-size function: use the schedule classes
      above (or any module-level callable), not lambdas.
    """

    # ---------------- ADMM ----------------
    num_iterations: int = 2
    reg_param: float = 1.0
    step_size: float = 1.0
    rho: float = 1e-4
    step_size_function: Optional[Union[str, StepSizeFunction]] = None

    # ---------------- Execution ----------------
    parallel_mode: str = "none"  # {"none","threading","multiprocessing"}
    max_workers: Optional[int] = None
    verbose: bool = False

    def schedule(self) -> StepSizeFunction:
        if self.step_size_function is None:
            return default_schedule(self.reg_param)
        if isinstance(self.step_size_function, str):
            return make_schedule(self.step_size_function, self.reg_param)
        return self.step_size_function

    def validate(self) -> "ADMMConfig":
        if isinstance(self.num_iterations, bool) or not isinstance(self.num_iterations, numbers.Integral):
            raise ValueError(f"num_iterations must be an integer, got {self.num_iterations!r}")
        self.num_iterations = int(self.num_iterations)
        if self.num_iterations < 1:
            raise ValueError(f"num_iterations must be >= 1, got {self.num_iterations}")
        if not math.isfinite(self.reg_param) or self.reg_param < 0:
            raise ValueError(f"reg_param must be finite and >= 0, got {self.reg_param}")
        if not math.isfinite(self.step_size) or self.step_size <= 0:
            raise ValueError(f"step_size must be finite and > 0, got {self.step_size}")
        if not math.isfinite(self.rho) or self.rho <= 0:
            raise ValueError(f"rho must be finite and > 0, got {self.rho}")
        if self.rho + self.reg_param == 0:
            raise ValueError("rho + reg_param must be non-zero")
        if isinstance(self.step_size_function, str):
            if self.step_size_function not in SCHEDULES:
                raise ValueError(
                    f"unknown step-size schedule {self.step_size_function!r}; "
                    f"choose from {sorted(SCHEDULES)}"
                )
        elif self.step_size_function is not None and not callable(self.step_size_function):
            raise ValueError("step_size_function must be callable or a schedule name")
        if self.parallel_mode not in PARALLEL_MODES:
            raise ValueError(
                f"parallel_mode must be one of {PARALLEL_MODES}, got {self.parallel_mode!r}"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        return self
