# optimizer.py
# Configuration facade: chained setters over ADMMConfig plus optimize(),
# which hands the run to ConsensusADMM and keeps its history around.
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np

from .admm import ConsensusADMM, History
from .blocks.aux import ADMMConfig, Array, StepSizeFunction
from .blocks.gradient import Gradient
from .blocks.updater import Updater


class ADMM:
    """
    Distributed ADMM optimizer for regularized linear models.

    Example
    -------
    >>> opt = (ADMM(LeastSquaresGradient(), SquaredL2Updater())
    ...        .set_num_iterations(20).set_reg_param(0.1).set_rho(1.0))
    >>> w = opt.optimize(partitions, np.zeros(d))
    >>> opt.loss_history
    """

    def __init__(self, gradient: Gradient, updater: Updater, config: Optional[ADMMConfig] = None):
        self.gradient = gradient
        self.updater = updater
        self.cfg = config if config is not None else ADMMConfig()
        self.callback: Optional[Callable[[int, ConsensusADMM, History], None]] = None
        self._driver: Optional[ConsensusADMM] = None

    # ---- ADMM tunables ----
    def set_num_iterations(self, iters: int) -> "ADMM":
        """Number of ADMM iterations, counting the bootstrap round; >= 1."""
        self._set(num_iterations=iters)
        return self

    def set_reg_param(self, reg_param: float) -> "ADMM":
        self._set(reg_param=float(reg_param))
        return self

    def set_step_size(self, step: float) -> "ADMM":
        """Initial step size; later steps are step * schedule(t)."""
        self._set(step_size=float(step))
        return self

    def set_rho(self, value: float) -> "ADMM":
        self._set(rho=float(value))
        return self

    def set_step_size_function(self, func: Union[str, StepSizeFunction]) -> "ADMM":
        """
        Override the default 1/sqrt(t) or 1/(1+reg_param·sqrt(t)) schedule,
        either with a callable or with a preset name from SCHEDULES.
        """
        self._set(step_size_function=func)
        return self

    # ---- strategies ----
    def set_gradient(self, gradient: Gradient) -> "ADMM":
        self.gradient = gradient
        return self

    def set_updater(self, updater: Updater) -> "ADMM":
        """The updater also determines the kind of regularization used, if any."""
        self.updater = updater
        return self

    # ---- execution ----
    def set_parallel_mode(self, mode: str) -> "ADMM":
        self._set(parallel_mode=mode)
        return self

    def set_max_workers(self, n: int) -> "ADMM":
        self._set(max_workers=int(n))
        return self

    def set_callback(self, callback: Callable[[int, ConsensusADMM, History], None]) -> "ADMM":
        self.callback = callback
        return self

    def _set(self, **changes: Any) -> None:
        # validate on a copy so a rejected value leaves the config untouched
        self.cfg = replace(self.cfg, **changes).validate()

    def to_config(self) -> ADMMConfig:
        return replace(self.cfg, step_size_function=self.cfg.schedule())

    # ---- run ----
    def optimize(self, data: Sequence[Sequence[Any]], initial_weights: Array) -> Array:
        self._driver = ConsensusADMM(self.gradient, self.updater, self.to_config(), self.callback)
        weights, _ = self._driver.run(data, initial_weights)
        return weights

    @property
    def history(self) -> Optional[History]:
        return None if self._driver is None else self._driver.history_

    @property
    def loss_history(self) -> Array:
        if self._driver is None:
            return np.zeros(0)
        return self._driver.loss_history
