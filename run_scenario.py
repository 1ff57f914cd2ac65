"""
Run the composition-test benchmark for a single scenario.

Simulates every samples-per-group setting of one scenario, runs all
requested adapters on each trial, and returns the in-memory report
tables.  The statsmodels GLM adapters fit two or three models per cell
type per trial and dominate the runtime; use n_jobs=-1 for large nsim.

Programmatic usage
------------------
    from run_scenario import main
    tables = main("two_type_null", nsim=1000, adapters=["chisq"],
                  sample_sizes=[5])
    tables = main("six_type_true_diff", nsim=500, seed=1, n_jobs=-1)

Seeding from observed data
--------------------------
    tables = main("six_type_null", observed_counts=counts_df)

replaces the scenario's proportions and Beta hyperparameters with values
estimated from an observed (cell types x samples) count matrix.
"""

import time

from beta_estimator import estimate_beta_params, props_from_counts
from config import SCENARIOS, ALPHA
from table_outputs import (build_rate_table, build_metrics_table,
                           build_roc_table, print_summary,
                           summarize_results)
from trial_runner import run_sample_sizes


def _log(msg):
    print(msg, flush=True)


def scenario_from_counts(scenario, observed_counts, on_degenerate="raise"):
    """Copy of *scenario* with props, a and b estimated from real counts.

    The fold change (true_diff scenarios) is kept, so it must have one
    entry per row of *observed_counts*.
    """
    base = dict(SCENARIOS[scenario]) if isinstance(scenario, str) else dict(scenario)
    alpha, beta = estimate_beta_params(observed_counts,
                                       on_degenerate=on_degenerate)
    base["props"] = props_from_counts(observed_counts)
    base["a"] = alpha
    base["b"] = beta
    base["label"] = f"{base.get('label', 'custom')} (estimated from data)"
    return base


def main(scenario, nsim=None, sample_sizes=None, adapters=None, seed=None,
         alpha=None, n_jobs=1, depth=None, size=None, observed_counts=None,
         verbose=True):
    """Run one scenario and build its report tables.

    Parameters
    ----------
    scenario : str or dict
        Key of config.SCENARIOS or a dict with the same fields.
    observed_counts : array-like or pandas.DataFrame or None
        If given, proportions and Beta hyperparameters are estimated from
        it (see scenario_from_counts).
    verbose : bool
        Print progress and the summary tables.

    Returns
    -------
    dict with keys 'results' (list of run_trials dicts), 'metrics',
    'rates' and 'roc' (pandas DataFrames).
    """
    if alpha is None:
        alpha = ALPHA
    if observed_counts is not None:
        scenario = scenario_from_counts(scenario, observed_counts)
    label = (SCENARIOS[scenario]["label"] if isinstance(scenario, str)
             else scenario.get("label", "custom scenario"))

    if verbose:
        _log(f"Running {label}...")
    t0 = time.time()
    results = run_sample_sizes(scenario, sample_sizes=sample_sizes,
                               nsim=nsim, adapters=adapters, seed=seed,
                               n_jobs=n_jobs, depth=depth, size=size,
                               verbose=verbose)
    if verbose:
        _log(f"  done in {time.time() - t0:.1f}s  ({len(results)} sample sizes)")

    summaries = summarize_results(results, alpha)
    metrics_df = build_metrics_table(results, alpha, summaries=summaries)
    rate_df = build_rate_table(results, alpha, summaries=summaries)
    roc_df = build_roc_table(results, summaries=summaries)

    if verbose:
        print_summary(metrics_df, rate_df)

    return {"results": results, "metrics": metrics_df, "rates": rate_df,
            "roc": roc_df}
