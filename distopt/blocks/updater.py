"""
updater.py

Proximal step strategies. An Updater takes one gradient step of size
step_size * step_size_function(iteration) and applies its regularizer with
weight reg_param, returning the new weights and the regularization value
R(new weights).

Calling compute(w, 0, 0.0, f, 1, reg_param) is a pure value query: the
returned weights equal w and the second element is R(w).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np

from .aux import Array, StepSizeFunction, soft_threshold


def _effective_step(step_size: float, step_size_function: StepSizeFunction, iteration: int) -> float:
    if step_size == 0.0:
        return 0.0
    return float(step_size) * float(step_size_function(iteration))


class Updater(ABC):
    # True when R(x) = ½‖x‖², i.e. the driver's closed-form
    # regularization solve is the exact minimizer.
    is_quadratic = False

    @abstractmethod
    def compute(
        self,
        weights: Array,
        gradient: Array,
        step_size: float,
        step_size_function: StepSizeFunction,
        iteration: int,
        reg_param: float,
    ) -> Tuple[Array, float]:
        raise NotImplementedError


class SimpleUpdater(Updater):
    """Plain gradient step, no regularization (R = 0)."""

    def compute(self, weights, gradient, step_size, step_size_function, iteration, reg_param):
        eta = _effective_step(step_size, step_size_function, iteration)
        return weights - eta * gradient, 0.0


class SquaredL2Updater(Updater):
    """Ridge: w' = w(1 - ηλ) - ηg, R(w') = ½‖w'‖²."""

    is_quadratic = True

    def compute(self, weights, gradient, step_size, step_size_function, iteration, reg_param):
        eta = _effective_step(step_size, step_size_function, iteration)
        new = weights * (1.0 - eta * reg_param) - eta * gradient
        norm = float(np.linalg.norm(new))
        return new, 0.5 * norm * norm


class L1Updater(Updater):
    """Lasso: soft-threshold after the gradient step, R(w') = ‖w'‖₁."""

    def compute(self, weights, gradient, step_size, step_size_function, iteration, reg_param):
        eta = _effective_step(step_size, step_size_function, iteration)
        new = weights - eta * gradient
        new = soft_threshold(new, reg_param * eta)
        return new, float(np.abs(new).sum())
