"""Tests for count_simulator: hierarchical NB / Beta / Binomial draws."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np
import pytest

from config import SCENARIOS
from count_simulator import (beta_b_from_props, draw_depths, get_simulator,
                             group_props_from_fold_change, implied_props,
                             shape_vector, simulate_null, simulate_null_array,
                             simulate_true_diff, simulate_true_diff_array,
                             validate_props)
from errors import InvalidConfiguration


def test_null_matrix_shape_and_labels():
    counts = simulate_null([0.2, 0.8], 10, depth=5000, a=10, b=[40, 2.5],
                           rng=np.random.default_rng(0))
    assert counts.shape == (2, 10)
    assert list(counts.index) == ["c0", "c1"]
    assert np.issubdtype(counts.to_numpy().dtype, np.integer)


def test_counts_bounded_by_sample_depth():
    depths = draw_depths(50, 5000, 20, np.random.default_rng(5))
    # the depth draw is the first use of the generator inside the simulator
    counts = simulate_null_array([0.1, 0.3, 0.6], 50, a=5, b=[45, 11.67, 3.33],
                                 rng=np.random.default_rng(5))
    assert np.all(counts >= 0)
    assert np.all(counts <= depths[np.newaxis, :])


def test_depth_mean_and_overdispersion():
    depths = draw_depths(20000, 5000, 20, np.random.default_rng(1))
    assert abs(depths.mean() - 5000) < 50
    # NB variance is depth + depth**2 / size, far above Poisson
    assert depths.var() > 10 * 5000


def test_column_totals_track_depth_on_average():
    counts = simulate_null_array([0.2, 0.8], 5000, a=10, b=[40, 2.5],
                                 rng=np.random.default_rng(2))
    assert abs(counts.sum(axis=0).mean() - 5000) < 100


def test_scalar_a_broadcasts_like_vector():
    kw = dict(props=[0.2, 0.8], n_samples=8, b=[40, 2.5])
    x1 = simulate_null_array(a=10, rng=np.random.default_rng(3), **kw)
    x2 = simulate_null_array(a=[10, 10], rng=np.random.default_rng(3), **kw)
    np.testing.assert_array_equal(x1, x2)


def test_b_derived_from_props_when_missing():
    b = beta_b_from_props([0.2, 0.8], 10)
    np.testing.assert_allclose(b, [40.0, 2.5])
    x1 = simulate_null([0.2, 0.8], 6, a=10, rng=np.random.default_rng(4))
    x2 = simulate_null([0.2, 0.8], 6, a=10, b=[40, 2.5],
                       rng=np.random.default_rng(4))
    np.testing.assert_array_equal(x1.to_numpy(), x2.to_numpy())


def test_true_zero_counts_are_emitted():
    counts = simulate_null([0.0001, 0.9999], 200, depth=50, a=1,
                           rng=np.random.default_rng(6))
    assert (counts.loc["c0"] == 0).any()


def test_true_diff_halves_follow_group_means():
    a = 10.0
    b1 = beta_b_from_props([0.1, 0.9], a)
    b2 = beta_b_from_props([0.3, 0.7], a)
    counts = simulate_true_diff([0.1, 0.9], 400, depth=5000, a=a, b_grp1=b1,
                                b_grp2=b2, rng=np.random.default_rng(7))
    props = counts.to_numpy() / counts.to_numpy().sum(axis=0)
    assert abs(props[0, :200].mean() - 0.1) < 0.02
    assert abs(props[0, 200:].mean() - 0.3) < 0.02


def test_true_diff_rejects_odd_sample_count_before_drawing():
    rng = np.random.default_rng(8)
    state = rng.bit_generator.state
    with pytest.raises(InvalidConfiguration):
        simulate_true_diff_array([0.5, 0.5], 7, a=1, b_grp1=[1, 1],
                                 b_grp2=[1, 1], rng=rng)
    assert rng.bit_generator.state == state


def test_true_diff_rejects_group_params_off_the_simplex():
    b1 = beta_b_from_props([0.2, 0.8], 10)
    rng = np.random.default_rng(8)
    state = rng.bit_generator.state
    # group-2 Beta means 10 / 15 sum to 4/3
    with pytest.raises(InvalidConfiguration, match="group-2 props"):
        simulate_true_diff([0.2, 0.8], 6, a=10, b_grp1=b1, b_grp2=[5, 5],
                           rng=rng)
    with pytest.raises(InvalidConfiguration, match="group-1 props"):
        simulate_true_diff_array([0.2, 0.8], 6, a=10, b_grp1=[5, 5],
                                 b_grp2=b1, rng=rng)
    assert rng.bit_generator.state == state


def test_implied_props():
    b = beta_b_from_props([0.1, 0.3, 0.6], 4)
    np.testing.assert_allclose(implied_props(4, b), [0.1, 0.3, 0.6])
    with pytest.raises(InvalidConfiguration):
        implied_props(1, [1, 1, 1])


@pytest.mark.parametrize("props", [
    [0.0, 1.0],
    [-0.1, 1.1],
    [0.3, 0.3],
    [1.0],
])
def test_invalid_props_raise(props):
    with pytest.raises(InvalidConfiguration):
        validate_props(props)
    with pytest.raises(InvalidConfiguration):
        simulate_null(props, 4, a=1, b=[1] * len(props))


def test_nonpositive_hyperparameters_raise():
    with pytest.raises(InvalidConfiguration):
        simulate_null([0.5, 0.5], 4, a=0, b=[1, 1])
    with pytest.raises(InvalidConfiguration):
        simulate_null([0.5, 0.5], 4, a=1, b=[1, -1])
    with pytest.raises(InvalidConfiguration):
        simulate_null([0.5, 0.5], 4, a=1, b=[1, 1, 1])


def test_group_props_from_fold_change():
    sc = SCENARIOS["six_type_true_diff"]
    p2, truth = group_props_from_fold_change(sc["props"], sc["fold_change"])
    assert abs(p2.sum() - 1.0) < 1e-9
    np.testing.assert_array_equal(truth, [True, False, False, False, False, True])

    with pytest.raises(InvalidConfiguration):
        group_props_from_fold_change([0.5, 0.5], [2.0, 1.0])
    p2, truth = group_props_from_fold_change([0.5, 0.5], [3.0, 1.0],
                                             renormalize=True)
    np.testing.assert_allclose(p2, [0.75, 0.25])
    np.testing.assert_array_equal(truth, [True, False])


def test_get_simulator():
    assert get_simulator("null") is simulate_null
    assert get_simulator("true_diff") is simulate_true_diff
    with pytest.raises(ValueError):
        get_simulator("multinomial")


def test_shape_vector_broadcasts_and_checks():
    np.testing.assert_array_equal(shape_vector(2, 3, "a"), [2.0, 2.0, 2.0])
    np.testing.assert_array_equal(shape_vector([1, 2], 2, "b"), [1.0, 2.0])
    with pytest.raises(InvalidConfiguration, match="b_grp2"):
        shape_vector([1, 2], 3, "b_grp2")
    with pytest.raises(InvalidConfiguration):
        shape_vector([1, np.inf], 2, "a")
