import math
import pickle

import numpy as np
import pytest

from distopt.blocks.aux import (
    ADMMConfig,
    InverseSqrtSchedule,
    RegularizedInverseSqrtSchedule,
    SCHEDULES,
    _nan_guard,
    as_record,
    axpy,
    default_schedule,
    dot,
    identity_schedule,
    make_schedule,
    scal,
    soft_threshold,
    validate_partitions,
)


def test_axpy_scal_dot_in_place():
    y = np.array([1.0, 2.0])
    out = axpy(2.0, np.array([1.0, -1.0]), y)
    assert out is y
    np.testing.assert_array_equal(y, [3.0, 0.0])

    scal(0.5, y)
    np.testing.assert_array_equal(y, [1.5, 0.0])
    assert dot(y, np.array([2.0, 5.0])) == 3.0


def test_soft_threshold():
    v = np.array([-2.0, -0.5, 0.0, 0.3, 1.5])
    np.testing.assert_allclose(soft_threshold(v, 1.0), [-1.0, 0.0, 0.0, 0.0, 0.5])


def test_nan_guard():
    assert not _nan_guard(np.ones(3), 1.0, None, np.zeros(0))
    assert _nan_guard(np.array([1.0, np.nan]))
    assert _nan_guard(np.ones(2), math.inf)


def test_record_is_read_only_copy():
    feats = np.array([1.0, 2.0])
    rec = as_record((1, feats))
    assert rec.label == 1.0
    assert rec.features is not feats
    with pytest.raises(ValueError):
        rec.features[0] = 5.0
    # caller's array untouched
    assert feats.flags.writeable


# ---------- schedules ----------
def test_default_schedules():
    no_reg = default_schedule(0.0)
    assert isinstance(no_reg, InverseSqrtSchedule)
    assert no_reg(1) == 1.0
    assert no_reg(4) == 0.5

    with_reg = default_schedule(0.5)
    assert isinstance(with_reg, RegularizedInverseSqrtSchedule)
    assert with_reg(4) == pytest.approx(1.0 / (1.0 + 0.5 * 2.0))


def test_schedule_rejects_non_positive_t():
    with pytest.raises(ValueError):
        InverseSqrtSchedule()(0)
    with pytest.raises(ValueError):
        RegularizedInverseSqrtSchedule(1.0)(-1)


def test_schedules_are_picklable():
    s = pickle.loads(pickle.dumps(RegularizedInverseSqrtSchedule(0.25)))
    assert s(9) == pytest.approx(1.0 / 1.75)
    assert identity_schedule(3) == 3.0


# ---------- config ----------
def test_config_defaults_validate():
    cfg = ADMMConfig().validate()
    assert cfg.num_iterations == 2
    assert cfg.reg_param == 1.0
    assert cfg.rho == 1e-4
    assert isinstance(cfg.schedule(), RegularizedInverseSqrtSchedule)


def test_config_custom_schedule_wins():
    cfg = ADMMConfig(reg_param=0.0, step_size_function=identity_schedule)
    assert cfg.schedule() is identity_schedule


def test_schedule_presets_by_name():
    assert sorted(SCHEDULES) == ["inverse_sqrt", "regularized_inverse_sqrt"]
    assert make_schedule("inverse_sqrt", 0.5)(4) == 0.5
    reg = make_schedule("regularized_inverse_sqrt", 0.5)
    assert isinstance(reg, RegularizedInverseSqrtSchedule)
    assert reg(4) == pytest.approx(0.5)
    with pytest.raises(ValueError, match="unknown step-size schedule"):
        make_schedule("cosine", 0.0)


def test_config_resolves_schedule_name_with_its_reg_param():
    cfg = ADMMConfig(reg_param=0.25, step_size_function="regularized_inverse_sqrt").validate()
    sched = cfg.schedule()
    assert isinstance(sched, RegularizedInverseSqrtSchedule)
    assert sched.reg_param == 0.25
    # a name overrides the reg_param-based default
    cfg = ADMMConfig(reg_param=0.25, step_size_function="inverse_sqrt")
    assert isinstance(cfg.schedule(), InverseSqrtSchedule)


def test_config_normalizes_integral_iteration_count():
    cfg = ADMMConfig(num_iterations=np.int64(4)).validate()
    assert cfg.num_iterations == 4
    assert type(cfg.num_iterations) is int


@pytest.mark.parametrize(
    "changes",
    [
        {"rho": 0.0},
        {"rho": -1.0},
        {"num_iterations": 0},
        {"num_iterations": 2.5},
        {"num_iterations": 3.0},
        {"step_size_function": "cosine"},
        {"reg_param": -0.1},
        {"step_size": 0.0},
        {"step_size": float("nan")},
        {"parallel_mode": "gpu"},
        {"max_workers": 0},
        {"step_size_function": 3},
    ],
)
def test_config_rejects_invalid(changes):
    with pytest.raises(ValueError):
        ADMMConfig(**changes).validate()


# ---------- partitions ----------
def test_validate_partitions_coerces_tuples():
    parts = validate_partitions([[(1.0, [1.0, 2.0])], [(0.0, (3.0, 4.0))]], dim=2)
    assert len(parts) == 2
    assert parts[1][0].features.dtype == np.float64


def test_validate_partitions_rejects_empty_dataset():
    with pytest.raises(ValueError, match="at least one partition"):
        validate_partitions([], dim=1)


def test_validate_partitions_rejects_empty_partition():
    with pytest.raises(ValueError, match="partition 1 has no records"):
        validate_partitions([[(1.0, [1.0])], []], dim=1)


def test_validate_partitions_rejects_dimension_mismatch():
    with pytest.raises(ValueError, match="record 1"):
        validate_partitions([[(1.0, [1.0, 2.0]), (1.0, [1.0])]], dim=2)
