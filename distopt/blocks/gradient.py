"""
gradient.py

Per-record loss/gradient strategies. A Gradient is pure and stateless: it is
called once per record per pass with the current local weights and must not
modify its inputs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np
from scipy.special import expit

from .aux import Array, dot


class Gradient(ABC):
    """Loss and gradient of a single example at a given weight vector."""

    @abstractmethod
    def compute(self, features: Array, label: float, weights: Array) -> Tuple[Array, float]:
        """Return (gradient, loss); the gradient must be a fresh array."""
        raise NotImplementedError


class LeastSquaresGradient(Gradient):
    """
    Squared error: loss = (w·x - y)^2 / 2, gradient = (w·x - y) x.
    """

    def compute(self, features, label, weights):
        diff = dot(features, weights) - label
        return diff * features, 0.5 * diff * diff


class LogisticGradient(Gradient):
    """
    Binary logistic loss for labels in {0, 1}:
    loss = log(1 + exp(-w·x)) if y = 1 else log(1 + exp(w·x)).
    """

    def compute(self, features, label, weights):
        margin = -dot(features, weights)
        multiplier = float(expit(-margin)) - label
        # log1p(exp(margin)) without overflow
        log1p_exp = float(np.logaddexp(0.0, margin))
        loss = log1p_exp if label > 0 else log1p_exp - margin
        return multiplier * features, loss


class HingeGradient(Gradient):
    """
    Hinge loss for labels in {0, 1} (rescaled to ±1):
    loss = max(0, 1 - y' w·x).
    """

    def compute(self, features, label, weights):
        dot_product = dot(features, weights)
        label_scaled = 2.0 * label - 1.0
        if 1.0 > label_scaled * dot_product:
            return -label_scaled * features, 1.0 - label_scaled * dot_product
        return np.zeros_like(features, dtype=np.float64), 0.0
