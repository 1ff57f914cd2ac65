"""
Calibration and discrimination metrics over a p-value tensor.

Inputs are p-values of shape (K, nsim) for one test, or (n_tests, K, nsim)
where noted, plus a boolean ground-truth vector of length K (True = the
cell type differs between groups by construction).  NaN p-values are
missing results and are left out of every rate; the number of trials left
out of each per-trial average is reported next to the value.

Recall, precision, F1, AUC and ROC need at least one truly different and
one truly null cell type.  Without both they are reported as not
applicable (value NaN, applicable False) rather than raising.
"""

import numpy as np

from config import ALPHA
from rank_helpers import mann_whitney_rows


def _summary(per_trial, applicable=True):
    """Mean of the defined (non-NaN) per-trial values plus usage counts."""
    per_trial = np.asarray(per_trial, dtype=float)
    used = ~np.isnan(per_trial)
    n_used = int(used.sum())
    return {
        "value": float(per_trial[used].mean()) if n_used else float("nan"),
        "n_used": n_used,
        "n_excluded": int(per_trial.size - n_used),
        "applicable": applicable,
    }


def _not_applicable(nsim):
    return _summary(np.full(nsim, np.nan), applicable=False)


def _check_truth(truth, n_types):
    truth = np.asarray(truth, dtype=bool)
    if truth.shape != (n_types,):
        raise ValueError(f"truth must have one entry per cell type "
                         f"({n_types}); got shape {truth.shape}")
    return truth


def is_applicable(truth):
    """True when truth has both a differential and a null cell type."""
    truth = np.asarray(truth, dtype=bool)
    return bool(truth.any() and (~truth).any())


# ---------------------------------------------------------------------------
# Rejection rates
# ---------------------------------------------------------------------------

def rejection_rate(pvalues, alpha=None):
    """Fraction of non-missing trials with p < alpha, per cell type.

    Works on any array whose last axis is the trial axis, e.g.
    (n_tests, K, nsim) -> (n_tests, K).  Entries with no non-missing trial
    are NaN.  On a null cell type this is the type-I error; on a truly
    different one it is the power.
    """
    if alpha is None:
        alpha = ALPHA
    p = np.asarray(pvalues, dtype=float)
    valid = ~np.isnan(p)
    n_valid = valid.sum(axis=-1)
    n_rej = ((p < alpha) & valid).sum(axis=-1)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(n_valid > 0, n_rej / n_valid, np.nan)


def type1_error(pvalues, truth, alpha=None):
    """Per-cell-type false-positive rate; NaN on truly different types.

    An all-null truth vector (no differential cell types) is valid.
    """
    rates = rejection_rate(pvalues, alpha)
    truth = _check_truth(truth, rates.shape[-1])
    return np.where(truth, np.nan, rates)


# ---------------------------------------------------------------------------
# Recall / precision / F1
# ---------------------------------------------------------------------------

def classification_per_trial(pvalues, truth, alpha=None):
    """Per-trial recall, precision and F1 for one test.

    Parameters
    ----------
    pvalues : ndarray, shape (K, nsim)
    truth : array-like of bool, shape (K,)

    Returns
    -------
    recall, precision, f1 : ndarray of shape (nsim,)
        NaN where the metric is undefined for that trial (no non-missing
        differential cell type for recall; nothing called significant for
        precision; either undefined for F1).
    """
    if alpha is None:
        alpha = ALPHA
    p = np.asarray(pvalues, dtype=float)
    truth = _check_truth(truth, p.shape[0])
    valid = ~np.isnan(p)
    sig = (p < alpha) & valid

    t = truth[:, np.newaxis]
    n_true = (t & valid).sum(axis=0)
    n_sig = sig.sum(axis=0)
    tp = (sig & t).sum(axis=0)

    with np.errstate(divide="ignore", invalid="ignore"):
        recall = np.where(n_true > 0, tp / n_true, np.nan)
        precision = np.where(n_sig > 0, tp / n_sig, np.nan)
        # 2PR / (P + R) written on counts; 0 when tp == 0
        f1 = np.where((n_true > 0) & (n_sig > 0),
                      2.0 * tp / (n_true + n_sig), np.nan)
    return recall, precision, f1


def classification_metrics(pvalues, truth, alpha=None):
    """Mean recall, precision and F1 over trials for one test.

    Returns
    -------
    dict with keys 'recall', 'precision', 'f1', each a dict with 'value',
    'n_used', 'n_excluded', 'applicable'.
    """
    p = np.asarray(pvalues, dtype=float)
    if not is_applicable(_check_truth(truth, p.shape[0])):
        na = _not_applicable(p.shape[1])
        return {"recall": dict(na), "precision": dict(na), "f1": dict(na)}

    recall, precision, f1 = classification_per_trial(p, truth, alpha)
    return {
        "recall": _summary(recall),
        "precision": _summary(precision),
        "f1": _summary(f1),
    }


# ---------------------------------------------------------------------------
# AUC (Mann-Whitney) and ROC
# ---------------------------------------------------------------------------

def auroc(score, truth):
    """Rank AUC for one set of scores (higher = more likely differential).

    AUC = 1 - (R_null - n1 (n1 + 1) / 2) / (n1 n2), where R_null is the
    mid-rank sum of the n1 null scores and n2 the number of differential
    ones.  Ties count one half.
    """
    score = np.asarray(score, dtype=float)
    truth = _check_truth(truth, score.size)
    if not is_applicable(truth):
        return float("nan")
    return float(mann_whitney_rows(score[np.newaxis, :], truth)[0])


def auc_per_trial(pvalues, truth):
    """AUC of score 1 - p per trial; NaN for trials with a missing p-value
    or when truth is not applicable."""
    p = np.asarray(pvalues, dtype=float)
    truth = _check_truth(truth, p.shape[0])
    out = np.full(p.shape[1], np.nan)
    if not is_applicable(truth):
        return out
    complete = ~np.isnan(p).any(axis=0)
    if complete.any():
        out[complete] = mann_whitney_rows((1.0 - p[:, complete]).T, truth)
    return out


def auc(pvalues, truth):
    """Mean AUC across trials for one test (see :func:`auroc`)."""
    p = np.asarray(pvalues, dtype=float)
    if not is_applicable(_check_truth(truth, p.shape[0])):
        return _not_applicable(p.shape[1])
    return _summary(auc_per_trial(p, truth))


def roc_curve(pvalues, truth):
    """Empirical ROC averaged pointwise over trials.

    In each trial the cell types are ordered by ascending p-value (ties
    keep row order); cumulative true and false positives are divided by the
    number of differential (n2) and null (n1) cell types.  Every trial has
    K steps, so the curves are averaged at each rank position.

    Returns
    -------
    dict with 'fpr', 'tpr' (ndarrays of length K + 1 starting at 0, or None
    when not applicable), 'n_used', 'n_excluded', 'applicable'.
    """
    p = np.asarray(pvalues, dtype=float)
    truth = _check_truth(truth, p.shape[0])
    nsim = p.shape[1]
    if not is_applicable(truth):
        return {"fpr": None, "tpr": None, "n_used": 0, "n_excluded": nsim,
                "applicable": False}

    complete = ~np.isnan(p).any(axis=0)
    n_used = int(complete.sum())
    if n_used == 0:
        return {"fpr": None, "tpr": None, "n_used": 0, "n_excluded": nsim,
                "applicable": True}

    order = np.argsort(p[:, complete].T, axis=1, kind="stable")
    hits = truth[order]                                  # (n_used, K)
    tpr = np.cumsum(hits, axis=1) / truth.sum()
    fpr = np.cumsum(~hits, axis=1) / (~truth).sum()
    zero = np.zeros(1)
    return {
        "fpr": np.concatenate([zero, fpr.mean(axis=0)]),
        "tpr": np.concatenate([zero, tpr.mean(axis=0)]),
        "n_used": n_used,
        "n_excluded": nsim - n_used,
        "applicable": True,
    }


# ---------------------------------------------------------------------------
# Whole-run summary
# ---------------------------------------------------------------------------

def summarize(results, alpha=None, truth=None):
    """All metrics for every test in a trial_runner result.

    Parameters
    ----------
    results : dict
        Output of trial_runner.run_trials.
    alpha : float or None
        Significance threshold (default config.ALPHA).
    truth : array-like of bool or None
        Overrides results['truth'], e.g. to score null data against
        arbitrary labels.

    Returns
    -------
    dict keyed by test name, each with 'rejection_rate', 'type1_error'
    (per cell type), 'mean_type1_error', 'recall', 'precision', 'f1',
    'auc', 'roc' and 'failures'.
    """
    if alpha is None:
        alpha = ALPHA
    if truth is None:
        truth = results["truth"]
    truth = _check_truth(truth, len(results["cell_types"]))

    out = {}
    for t, name in enumerate(results["tests"]):
        p = results["pvalues"][t]
        t1 = type1_error(p, truth, alpha)
        null_rates = t1[~truth]
        null_rates = null_rates[~np.isnan(null_rates)]
        entry = {
            "rejection_rate": rejection_rate(p, alpha),
            "type1_error": t1,
            "mean_type1_error": (float(null_rates.mean()) if null_rates.size
                                 else float("nan")),
            "auc": auc(p, truth),
            "roc": roc_curve(p, truth),
            "failures": int(results["failures"][t]),
        }
        entry.update(classification_metrics(p, truth, alpha))
        out[name] = entry
    return out
