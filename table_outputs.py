"""
Summary table generation (in memory, no plots or files).

Produces three table types:
  1. Rejection rates – one row per (test, n_per_group, cell type)
  2. Metrics report – one row per (test, n_per_group) with type-I error,
     recall, precision, F1, AUC and exclusion / failure counts
  3. ROC coordinates – averaged curve per (test, n_per_group)
"""

import numpy as np
import pandas as pd

from config import ALPHA
from metrics import summarize


def _as_list(results):
    return [results] if isinstance(results, dict) else list(results)


def summarize_results(results, alpha=None):
    """One metrics.summarize dict per result, in the same order.

    Pass the list to the table builders to avoid recomputing the metrics
    for every table.
    """
    return [summarize(res, alpha) for res in _as_list(results)]


def _paired(results, alpha, summaries):
    results = _as_list(results)
    if summaries is None:
        summaries = summarize_results(results, alpha)
    elif len(summaries) != len(results):
        raise ValueError(
            f"got {len(summaries)} summaries for {len(results)} results")
    return zip(results, summaries)


# ---------------------------------------------------------------------------
# Table 1: Per-cell-type rejection rates
# ---------------------------------------------------------------------------

def build_rate_table(results, alpha=None, summaries=None):
    """Long DataFrame of rejection rates.

    *results* is one trial_runner result dict or a list of them (e.g. from
    run_sample_sizes).  *summaries*, from summarize_results, skips
    recomputing the metrics.  'rejection_rate' is type-I error on rows with
    truth False and power on rows with truth True.
    """
    if alpha is None:
        alpha = ALPHA
    rows = []
    for res, summary in _paired(results, alpha, summaries):
        for name, s in summary.items():
            for k, ct in enumerate(res["cell_types"]):
                rows.append({
                    "test": name,
                    "n_per_group": res["n_per_group"],
                    "cell_type": ct,
                    "truth": bool(res["truth"][k]),
                    "rejection_rate": s["rejection_rate"][k],
                    "failures": s["failures"],
                })
    return pd.DataFrame(rows).sort_values(
        ["test", "n_per_group", "cell_type"]).reset_index(drop=True)


# ---------------------------------------------------------------------------
# Table 2: Metrics report
# ---------------------------------------------------------------------------

def build_metrics_table(results, alpha=None, summaries=None):
    """One row per (test, n_per_group).

    Columns: mean_type1_error, recall, precision, f1, auc (NaN when not
    applicable), the number of trials excluded from each per-trial
    average, and the adapter's failure count.
    """
    if alpha is None:
        alpha = ALPHA
    rows = []
    for res, summary in _paired(results, alpha, summaries):
        for name, s in summary.items():
            row = {
                "test": name,
                "n_per_group": res["n_per_group"],
                "mode": res["mode"],
                "nsim": res["nsim"],
                "mean_type1_error": s["mean_type1_error"],
            }
            for metric in ("recall", "precision", "f1", "auc"):
                row[metric] = s[metric]["value"]
                row[f"{metric}_excluded"] = s[metric]["n_excluded"]
            row["failures"] = s["failures"]
            rows.append(row)
    return pd.DataFrame(rows).sort_values(
        ["test", "n_per_group"]).reset_index(drop=True)


def type1_wide(rate_df):
    """Pivot null rows of a rate table to test x cell_type (per n)."""
    null = rate_df[~rate_df["truth"]]
    if null.empty:
        return pd.DataFrame()
    return null.pivot_table(
        index=["test", "n_per_group"],
        columns="cell_type",
        values="rejection_rate",
        aggfunc="first",
    ).reset_index()


# ---------------------------------------------------------------------------
# Table 3: ROC coordinates
# ---------------------------------------------------------------------------

def build_roc_table(results, summaries=None):
    """Averaged ROC coordinates; empty when no result has both classes."""
    rows = []
    for res, summary in _paired(results, None, summaries):
        for name, s in summary.items():
            roc = s["roc"]
            if roc["fpr"] is None:
                continue
            for step, (fpr, tpr) in enumerate(zip(roc["fpr"], roc["tpr"])):
                rows.append({
                    "test": name,
                    "n_per_group": res["n_per_group"],
                    "step": step,
                    "fpr": fpr,
                    "tpr": tpr,
                })
    if not rows:
        return pd.DataFrame(columns=["test", "n_per_group", "step", "fpr",
                                     "tpr"])
    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# Console display
# ---------------------------------------------------------------------------

def print_summary(metrics_df, rate_df=None):
    """Print key results to console."""
    pd.set_option("display.max_columns", 20)
    pd.set_option("display.width", 160)

    print("\n" + "=" * 80)
    print("METRICS BY TEST AND SAMPLE SIZE")
    print("=" * 80)
    cols = [c for c in metrics_df.columns if not c.endswith("_excluded")]
    print(metrics_df[cols].to_string(index=False, float_format="{:.4f}".format))

    excluded = metrics_df[[c for c in metrics_df.columns
                           if c.endswith("_excluded")]]
    if not excluded.empty and np.any(excluded.to_numpy() > 0):
        print("\nTrials excluded from per-trial averages:")
        print(metrics_df[["test", "n_per_group"] + list(excluded.columns)]
              .to_string(index=False))

    if rate_df is not None and not rate_df.empty:
        print("\n" + "=" * 80)
        print("TYPE-I ERROR PER CELL TYPE")
        print("=" * 80)
        wide = type1_wide(rate_df)
        if not wide.empty:
            print(wide.to_string(index=False, float_format="{:.4f}".format))
    print()
