"""
Rank and Mann-Whitney helpers used by the AUC metrics.

Provides:
- rank_rows(a)                    : mid-ranks of every row of a 2-D array
- mann_whitney_rows(scores, truth): per-row U / (n1 n2) between the
                                    differential and null columns

A metrics run scores nsim trials of only K cell types each, so the work is
many tiny rows.  When config.USE_NUMBA is True the AUC is computed by a
JIT-compiled pairwise count, parallel over trials (prange); otherwise it
uses the rank-sum formula on scipy mid-ranks.
"""

import numpy as np
from numba import njit, prange
from scipy.stats import rankdata

import config


def use_numba() -> bool:
    """Return True if the Numba kernels are enabled via config."""
    return config.USE_NUMBA


@njit(cache=True, parallel=True)
def _pairwise_auc_numba(scores, pos, neg):
    """Fraction of (differential, null) pairs ordered correctly, ties 1/2."""
    m = scores.shape[0]
    n_pairs = pos.shape[0] * neg.shape[0]
    out = np.empty(m, dtype=np.float64)
    for i in prange(m):
        wins = 0.0
        for a in pos:
            for b in neg:
                if scores[i, a] > scores[i, b]:
                    wins += 1.0
                elif scores[i, a] == scores[i, b]:
                    wins += 0.5
        out[i] = wins / n_pairs
    return out


def _rank_sum_auc(scores, truth):
    n1 = (~truth).sum()
    n2 = truth.sum()
    ranks = rank_rows(scores)
    u = ranks[:, ~truth].sum(axis=1) - n1 * (n1 + 1) / 2.0
    return 1.0 - u / (n1 * n2)


def rank_rows(a: np.ndarray) -> np.ndarray:
    """Average (mid) ranks for each row of a 2-D array.

    Ties share the mean of the ranks they span, so [0.2, 0.5, 0.5, 0.9]
    ranks as [1, 2.5, 2.5, 4].  NaN values are not supported.
    """
    a = np.asarray(a, dtype=np.float64)
    if a.ndim != 2:
        raise ValueError("rank_rows expects a 2-D array")
    if a.size == 0:
        return np.empty(a.shape, dtype=np.float64)
    return rankdata(a, method="average", axis=1)


def mann_whitney_rows(scores: np.ndarray, truth: np.ndarray) -> np.ndarray:
    """Mann-Whitney AUC of every row of *scores* (trials x cell types).

    *truth* marks the differential columns; it must contain both classes.
    """
    scores = np.asarray(scores, dtype=np.float64)
    truth = np.asarray(truth, dtype=bool)
    if scores.ndim != 2 or scores.shape[1] != truth.size:
        raise ValueError("scores must be 2-D with one column per truth label")
    if truth.all() or not truth.any():
        raise ValueError("truth needs both differential and null columns")
    if scores.shape[0] == 0:
        return np.empty(0, dtype=np.float64)
    if use_numba():
        return _pairwise_auc_numba(np.ascontiguousarray(scores),
                                   np.flatnonzero(truth),
                                   np.flatnonzero(~truth))
    return _rank_sum_auc(scores, truth)
