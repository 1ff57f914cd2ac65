"""
Method-of-moments Beta hyperparameters from an observed count matrix.

For each cell type the per-sample proportions (counts divided by the
sample's total) have empirical mean m and variance v.  Matching these to
the mean and variance of a Beta(alpha, beta) gives

    common = m (1 - m) / v - 1
    alpha  = m * common
    beta   = (1 - m) * common

The estimate only exists when v > 0 and common > 0; a cell type with
constant proportions, or one over-dispersed beyond the Beta limit
(v >= m (1 - m)), has no valid solution.  Such rows are reported rather
than silently coerced.
"""

import warnings

import numpy as np
import pandas as pd

from count_simulator import cell_type_labels
from errors import DegenerateEstimation

ON_DEGENERATE = ("raise", "nan", "abs")


def _row_labels(counts):
    if isinstance(counts, pd.DataFrame):
        return [str(i) for i in counts.index]
    return cell_type_labels(np.asarray(counts).shape[0])


def sample_proportions(counts):
    """Column-normalised proportions (K, J); empty samples are dropped."""
    c = np.asarray(counts, dtype=float)
    if c.ndim != 2:
        raise ValueError("counts must be a 2-D (cell types x samples) matrix")
    totals = c.sum(axis=0)
    keep = totals > 0
    return c[:, keep] / totals[keep]


def _moments(counts):
    props = sample_proportions(counts)
    if props.shape[1] < 2:
        raise ValueError("need at least two non-empty samples to estimate "
                         "Beta parameters")
    m = props.mean(axis=1)
    v = props.var(axis=1, ddof=1)
    return m, v


def beta_param_validity(counts):
    """Boolean mask: True where the moment estimate is valid (v > 0 and
    common factor > 0)."""
    m, v = _moments(counts)
    with np.errstate(divide="ignore", invalid="ignore"):
        common = m * (1.0 - m) / v - 1.0
    return (v > 0) & np.isfinite(common) & (common > 0)


def estimate_beta_params(counts, on_degenerate="raise"):
    """Estimate Beta(alpha, beta) per cell type by matching moments.

    Parameters
    ----------
    counts : array-like or pandas.DataFrame, shape (K, J)
        Observed counts, one row per cell type.
    on_degenerate : str
        What to do with rows that have no valid estimate:
        'raise' -- raise DegenerateEstimation (default);
        'nan'   -- return NaN for those rows;
        'abs'   -- take abs(alpha), abs(beta) as the reference analysis did.
                   Zero-variance rows are still NaN.  Emits a UserWarning.

    Returns
    -------
    alpha, beta : ndarray of shape (K,)
    """
    if on_degenerate not in ON_DEGENERATE:
        raise ValueError(f"Unknown on_degenerate {on_degenerate!r}; "
                         f"choose from {list(ON_DEGENERATE)}")

    m, v = _moments(counts)
    with np.errstate(divide="ignore", invalid="ignore"):
        common = m * (1.0 - m) / v - 1.0
    alpha = m * common
    beta = (1.0 - m) * common

    valid = (v > 0) & np.isfinite(common) & (common > 0)
    if valid.all():
        return alpha, beta

    labels = _row_labels(counts)
    bad = [labels[k] for k in np.flatnonzero(~valid)]

    if on_degenerate == "raise":
        raise DegenerateEstimation(valid, bad)

    if on_degenerate == "abs":
        warnings.warn(
            f"Using abs() of invalid Beta estimates for {', '.join(bad)}; "
            "these rows are over-dispersed beyond the Beta limit and the "
            "coerced parameters do not reproduce their observed variance.",
            UserWarning,
            stacklevel=2,
        )
        alpha = np.where(v > 0, np.abs(alpha), np.nan)
        beta = np.where(v > 0, np.abs(beta), np.nan)
        return alpha, beta

    alpha = np.where(valid, alpha, np.nan)
    beta = np.where(valid, beta, np.nan)
    return alpha, beta


def props_from_counts(counts):
    """Baseline proportion vector from observed counts.

    Mean per-sample proportion of each cell type, renormalised to sum to 1.
    Cell types never observed get no mass, which the simulator rejects, so
    callers should drop or merge them first.
    """
    m = sample_proportions(counts).mean(axis=1)
    return m / m.sum()
