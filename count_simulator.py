"""
Hierarchical count simulation for cell-type composition benchmarks.

Each simulated dataset is drawn in three nested layers:

  1. total cells per sample       depth_j ~ NegBin(mean=depth, size=size)
  2. latent proportion per type   p_kj    ~ Beta(a_k, b_k)
  3. count per type and sample    n_kj    ~ Binomial(depth_j, p_kj)

The Beta layer is what makes the counts overdispersed relative to a
binomial or Poisson model.  Counts for different cell types in the same
sample are drawn independently, so a column need not sum exactly to its
depth; this mirrors the reference simulation and is kept on purpose.

Two modes are provided:
  simulate_null       one set of Beta hyperparameters for every sample
  simulate_true_diff  first half of the samples uses b_grp1, second half
                      b_grp2 (a shared)
"""

import numpy as np
import pandas as pd

from config import DEPTH, NB_SIZE, PROP_TOLERANCE
from errors import InvalidConfiguration


def get_simulator(name):
    """Return the simulation function for *name* ('null' or 'true_diff')."""
    funcs = {
        "null": simulate_null,
        "true_diff": simulate_true_diff,
    }
    if name not in funcs:
        raise ValueError(f"Unknown simulation mode {name!r}; choose from {list(funcs)}")
    return funcs[name]


def cell_type_labels(n_types):
    """Stable row labels 'c0' .. 'c{K-1}'."""
    return [f"c{k}" for k in range(n_types)]


# ---------------------------------------------------------------------------
# Validation and hyperparameters
# ---------------------------------------------------------------------------

def validate_props(props, name="props"):
    """Return *props* as a float array, raising if it is not a valid
    proportion vector (all entries > 0, sum 1 within PROP_TOLERANCE)."""
    p = np.asarray(props, dtype=float)
    if p.ndim != 1 or p.size < 2:
        raise InvalidConfiguration(
            f"{name} must be a 1-D vector with at least two cell types")
    if not np.all(np.isfinite(p)) or np.any(p <= 0):
        raise InvalidConfiguration(
            f"{name} must be strictly positive; got {p.tolist()}")
    if abs(p.sum() - 1.0) > PROP_TOLERANCE:
        raise InvalidConfiguration(
            f"{name} must sum to 1 (tolerance {PROP_TOLERANCE}); "
            f"sums to {p.sum():.8f}")
    return p


def shape_vector(x, n_types, name):
    """Broadcast a scalar or length-K hyperparameter to shape (K,)."""
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 0:
        arr = np.full(n_types, float(arr))
    elif arr.shape != (n_types,):
        raise InvalidConfiguration(
            f"{name} must be a scalar or have one entry per cell type "
            f"({n_types}); got shape {arr.shape}")
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        raise InvalidConfiguration(f"{name} must be strictly positive")
    return arr


def implied_props(a, b, name="props"):
    """Beta means a / (a + b); must form a valid proportion vector."""
    a_vec = np.asarray(a, dtype=float)
    b_vec = np.asarray(b, dtype=float)
    return validate_props(a_vec / (a_vec + b_vec), name=name)


def beta_b_from_props(props, a):
    """Second Beta shape parameter giving mean *props*: b = a (1 - p) / p."""
    p = validate_props(props)
    a_vec = shape_vector(a, p.size, "a")
    return a_vec * (1.0 - p) / p


def group_props_from_fold_change(props, fold_change, renormalize=False):
    """Group-2 proportions and ground truth from a fold-change vector.

    Parameters
    ----------
    props : array-like
        Group-1 (baseline) proportions.
    fold_change : array-like
        Multiplicative change per cell type; 1 means no true difference.
    renormalize : bool
        If True, rescale props * fold_change to sum to 1.  Otherwise the
        product must already sum to 1.

    Returns
    -------
    props_grp2 : ndarray of shape (K,)
    truth : ndarray of bool, shape (K,)
        True where the cell type differs between groups by construction.
    """
    p = validate_props(props)
    fc = np.asarray(fold_change, dtype=float)
    if fc.shape != p.shape:
        raise InvalidConfiguration(
            f"fold_change must have one entry per cell type ({p.size})")
    if np.any(fc <= 0):
        raise InvalidConfiguration("fold_change must be strictly positive")

    p2 = p * fc
    if renormalize:
        p2 = p2 / p2.sum()
    p2 = validate_props(p2, name="props * fold_change")
    return p2, fc != 1.0


def _check_depth(depth, size):
    if not depth > 0:
        raise InvalidConfiguration(f"depth must be positive; got {depth}")
    if not size > 0:
        raise InvalidConfiguration(f"size must be positive; got {size}")


# ---------------------------------------------------------------------------
# Random draws
# ---------------------------------------------------------------------------

def draw_depths(n_samples, depth, size, rng):
    """Total cells per sample, NegBin with mean *depth* and dispersion *size*.

    NumPy parameterises the negative binomial by (n, p); with n = size and
    p = size / (size + depth) the mean is depth and the variance is
    depth + depth**2 / size.
    """
    return rng.negative_binomial(size, size / (size + depth), size=n_samples)


def _binomial_counts(depths, latent_p, rng):
    """Independent Binomial(depth_j, p_kj) for every (k, j)."""
    return rng.binomial(depths[np.newaxis, :], latent_p).astype(np.int64)


def simulate_null_array(props, n_samples, a, b, depth=DEPTH, size=NB_SIZE,
                        rng=None):
    """Array form of :func:`simulate_null`; returns an int64 (K, J) array."""
    p = validate_props(props)
    n_types = p.size
    a_vec = shape_vector(a, n_types, "a")
    b_vec = shape_vector(b, n_types, "b")
    if n_samples < 1:
        raise InvalidConfiguration(f"n_samples must be >= 1; got {n_samples}")
    _check_depth(depth, size)

    if rng is None:
        rng = np.random.default_rng()

    depths = draw_depths(n_samples, depth, size, rng)
    latent = rng.beta(a_vec[:, np.newaxis], b_vec[:, np.newaxis],
                      size=(n_types, n_samples))
    return _binomial_counts(depths, latent, rng)


def simulate_true_diff_array(props, n_samples, a, b_grp1, b_grp2,
                             depth=DEPTH, size=NB_SIZE, rng=None):
    """Array form of :func:`simulate_true_diff`; returns int64 (K, J)."""
    p = validate_props(props)
    n_types = p.size
    if n_samples < 2 or n_samples % 2 != 0:
        raise InvalidConfiguration(
            f"true-difference mode needs an even number of samples; "
            f"got {n_samples}")
    a_vec = shape_vector(a, n_types, "a")
    b1 = shape_vector(b_grp1, n_types, "b_grp1")
    b2 = shape_vector(b_grp2, n_types, "b_grp2")
    implied_props(a_vec, b1, name="group-1 props")
    implied_props(a_vec, b2, name="group-2 props")
    _check_depth(depth, size)

    if rng is None:
        rng = np.random.default_rng()

    half = n_samples // 2
    depths = draw_depths(n_samples, depth, size, rng)
    latent = np.empty((n_types, n_samples))
    latent[:, :half] = rng.beta(a_vec[:, np.newaxis], b1[:, np.newaxis],
                                size=(n_types, half))
    latent[:, half:] = rng.beta(a_vec[:, np.newaxis], b2[:, np.newaxis],
                                size=(n_types, half))
    return _binomial_counts(depths, latent, rng)


def simulate_null(props, n_samples, depth=DEPTH, a=None, b=None,
                  size=NB_SIZE, rng=None):
    """Simulate a K x J count matrix with no true difference between samples.

    Parameters
    ----------
    props : array-like
        True proportion per cell type; fixes K and the row order.
    n_samples : int
        Number of samples (columns).
    depth : float
        Mean total cells per sample.
    a : float or array-like
        First Beta shape parameter, scalar (shared) or one per cell type.
    b : array-like or None
        Second Beta shape parameter per cell type.  If None it is derived
        from *props* as a (1 - p) / p.
    size : float
        Negative-binomial dispersion of the depth draw.
    rng : numpy.random.Generator or None

    Returns
    -------
    pandas.DataFrame
        Integer counts, index 'c0'..'c{K-1}', one column per sample.
    """
    if a is None:
        raise InvalidConfiguration("Beta concentration a is required")
    if b is None:
        b = beta_b_from_props(props, a)
    counts = simulate_null_array(props, n_samples, a, b, depth=depth,
                                 size=size, rng=rng)
    return _as_frame(counts)


def simulate_true_diff(props, n_samples, depth=DEPTH, a=None, b_grp1=None,
                       b_grp2=None, size=NB_SIZE, rng=None):
    """Simulate counts where the second half of the samples has different
    Beta hyperparameters (b_grp2) from the first half (b_grp1).

    *n_samples* must be even; the first n_samples / 2 columns are group 1.
    """
    if a is None or b_grp1 is None or b_grp2 is None:
        raise InvalidConfiguration(
            "true-difference mode requires a, b_grp1 and b_grp2")
    counts = simulate_true_diff_array(props, n_samples, a, b_grp1, b_grp2,
                                      depth=depth, size=size, rng=rng)
    return _as_frame(counts)


def _as_frame(counts):
    n_types, n_samples = counts.shape
    return pd.DataFrame(counts, index=cell_type_labels(n_types),
                        columns=[f"s{j}" for j in range(n_samples)])
