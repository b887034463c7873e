import math

import numpy as np
import pytest

from distopt.blocks.gradient import HingeGradient, LeastSquaresGradient, LogisticGradient


def test_least_squares_gradient_and_loss():
    x = np.array([1.0, 2.0])
    w = np.array([0.5, 0.5])
    grad, loss = LeastSquaresGradient().compute(x, 2.0, w)
    # diff = 1.5 - 2.0
    np.testing.assert_allclose(grad, [-0.5, -1.0])
    assert loss == pytest.approx(0.125)


def test_least_squares_does_not_alias_inputs():
    x = np.array([1.0, 1.0])
    w = np.zeros(2)
    grad, _ = LeastSquaresGradient().compute(x, 1.0, w)
    grad += 10.0
    np.testing.assert_array_equal(x, [1.0, 1.0])
    np.testing.assert_array_equal(w, [0.0, 0.0])


@pytest.mark.parametrize("label", [0.0, 1.0])
def test_logistic_at_zero_weights(label):
    x = np.array([2.0, -1.0])
    grad, loss = LogisticGradient().compute(x, label, np.zeros(2))
    assert loss == pytest.approx(math.log(2.0))
    np.testing.assert_allclose(grad, (0.5 - label) * x)


def test_logistic_large_margin_is_finite():
    x = np.array([1.0])
    grad, loss = LogisticGradient().compute(x, 0.0, np.array([800.0]))
    assert np.isfinite(grad).all()
    assert loss == pytest.approx(800.0)


def test_hinge_active_and_inactive():
    x = np.array([1.0, 0.0])
    # label 1 -> +1, margin 0.5 < 1: active
    grad, loss = HingeGradient().compute(x, 1.0, np.array([0.5, 0.0]))
    np.testing.assert_allclose(grad, [-1.0, 0.0])
    assert loss == pytest.approx(0.5)

    # margin 2 >= 1: zero gradient and loss
    grad, loss = HingeGradient().compute(x, 1.0, np.array([2.0, 0.0]))
    np.testing.assert_array_equal(grad, [0.0, 0.0])
    assert loss == 0.0


def test_hinge_negative_label():
    x = np.array([1.0])
    grad, loss = HingeGradient().compute(x, 0.0, np.array([0.5]))
    # label 0 -> -1, margin -0.5
    np.testing.assert_allclose(grad, [1.0])
    assert loss == pytest.approx(1.5)
