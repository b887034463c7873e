import numpy as np
import pytest

from distopt.blocks.gradient import LeastSquaresGradient
from distopt.blocks.updater import SimpleUpdater, SquaredL2Updater


@pytest.fixture
def two_point_partitions():
    """A = [(1.0, [1.0])], B = [(1.0, [2.0])]."""
    return [[(1.0, np.array([1.0]))], [(1.0, np.array([2.0]))]]


@pytest.fixture
def least_squares():
    return LeastSquaresGradient()


@pytest.fixture
def simple_updater():
    return SimpleUpdater()


@pytest.fixture
def ridge_updater():
    return SquaredL2Updater()


@pytest.fixture
def consistent_regression():
    """Noise-free linear data with bounded features: y = X @ w_true."""
    rng = np.random.RandomState(7)
    w_true = np.array([0.8, -0.5])
    X = rng.uniform(-1.0, 1.0, size=(40, 2))
    y = X @ w_true
    return X, y, w_true


@pytest.fixture
def noisy_regression():
    rng = np.random.RandomState(3)
    w_true = rng.randn(3)
    X = rng.uniform(-1.0, 1.0, size=(60, 3))
    y = X @ w_true + 0.05 * rng.randn(60)
    return X, y, w_true
