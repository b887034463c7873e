import logging

import numpy as np

from distopt.blocks.gradient import LeastSquaresGradient
from distopt.blocks.substrate import partition_dataset
from distopt.blocks.updater import SquaredL2Updater
from distopt.optimizer import ADMM


def main(n_samples=400, n_features=5, num_partitions=4, num_iterations=30,
         parallel_mode="none", seed=0, verbose=True):
    rng = np.random.RandomState(seed)
    w_true = rng.randn(n_features)
    X = rng.randn(n_samples, n_features)
    y = X @ w_true + 0.01 * rng.randn(n_samples)

    # ridge regression over 4 partitions
    data = partition_dataset(X, y, num_partitions)
    opt = (ADMM(LeastSquaresGradient(), SquaredL2Updater())
           .set_num_iterations(num_iterations)
           .set_reg_param(1e-3)
           .set_step_size(0.05)
           .set_rho(1.0)
           .set_step_size_function("regularized_inverse_sqrt")
           .set_parallel_mode(parallel_mode))
    w = opt.optimize(data, np.zeros(n_features))

    if verbose:
        trace = opt.history.as_arrays()
        print("w*    =", w)
        print("w_true=", w_true)
        print("loss  =", trace["loss"][-5:])
        print("r     =", trace["primal_residual"][-5:])
    return w, w_true, opt.loss_history


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
