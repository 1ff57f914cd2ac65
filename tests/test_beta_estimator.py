"""Tests for beta_estimator: method-of-moments Beta fits."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np
import pandas as pd
import pytest

from beta_estimator import (beta_param_validity, estimate_beta_params,
                            props_from_counts)
from count_simulator import simulate_null
from errors import DegenerateEstimation

# c0 has a constant proportion (zero variance); c1 and c2 are valid.
CONSTANT_ROW = np.array([
    [10, 10, 10],
    [30, 50, 70],
    [60, 40, 20],
])

# proportions are all 0 or 1: v >= m (1 - m), more spread than any Beta allows
BEYOND_BETA_LIMIT = np.array([
    [0, 10, 0, 10],
    [10, 0, 10, 0],
])


def test_round_trip_recovers_known_parameters():
    a = np.array([20.0, 30.0])
    props = [0.3, 0.7]
    b = np.array([20.0 * 0.7 / 0.3, 30.0 * 0.3 / 0.7])
    counts = simulate_null(props, 1000, depth=5000, a=a, b=b,
                           rng=np.random.default_rng(11))
    alpha, beta = estimate_beta_params(counts)
    np.testing.assert_allclose(alpha, a, rtol=0.2)
    np.testing.assert_allclose(beta, b, rtol=0.2)


def test_known_moments():
    alpha, beta = estimate_beta_params(CONSTANT_ROW[1:])
    props = CONSTANT_ROW[1:] / CONSTANT_ROW[1:].sum(axis=0)
    m = props.mean(axis=1)
    v = props.var(axis=1, ddof=1)
    common = m * (1 - m) / v - 1
    np.testing.assert_allclose(alpha, m * common)
    np.testing.assert_allclose(beta, (1 - m) * common)


def test_zero_variance_row_raises():
    with pytest.raises(DegenerateEstimation) as exc:
        estimate_beta_params(CONSTANT_ROW)
    np.testing.assert_array_equal(exc.value.valid, [False, True, True])
    assert exc.value.cell_types == ["c0"]


def test_dataframe_labels_in_error():
    df = pd.DataFrame(CONSTANT_ROW, index=["B", "T", "NK"])
    with pytest.raises(DegenerateEstimation) as exc:
        estimate_beta_params(df)
    assert exc.value.cell_types == ["B"]


def test_nan_mode_marks_invalid_rows():
    alpha, beta = estimate_beta_params(CONSTANT_ROW, on_degenerate="nan")
    assert np.isnan(alpha[0]) and np.isnan(beta[0])
    assert np.all(np.isfinite(alpha[1:])) and np.all(alpha[1:] > 0)


def test_abs_mode_reproduces_reference_with_warning():
    with pytest.warns(UserWarning):
        alpha, beta = estimate_beta_params(BEYOND_BETA_LIMIT,
                                           on_degenerate="abs")
    # m = 0.5, v = 1/3 -> common = -0.25 -> alpha = beta = -0.125
    np.testing.assert_allclose(alpha, [0.125, 0.125])
    np.testing.assert_allclose(beta, [0.125, 0.125])


def test_rows_beyond_beta_limit_invalid():
    np.testing.assert_array_equal(beta_param_validity(BEYOND_BETA_LIMIT),
                                  [False, False])
    np.testing.assert_array_equal(beta_param_validity(CONSTANT_ROW),
                                  [False, True, True])
    with pytest.raises(DegenerateEstimation):
        estimate_beta_params(BEYOND_BETA_LIMIT)


def test_unknown_mode_raises():
    with pytest.raises(ValueError):
        estimate_beta_params(CONSTANT_ROW, on_degenerate="clip")


def test_props_from_counts():
    p = props_from_counts(CONSTANT_ROW)
    np.testing.assert_allclose(p, [0.1, 0.5, 0.4])
    assert abs(p.sum() - 1.0) < 1e-12


def test_empty_samples_are_ignored():
    counts = np.column_stack([CONSTANT_ROW, np.zeros(3, dtype=int)])
    np.testing.assert_allclose(props_from_counts(counts), [0.1, 0.5, 0.4])
