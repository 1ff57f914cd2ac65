"""
Monte Carlo trial runner for differential-composition tests.

Each trial simulates one count matrix and passes it to every requested
test adapter.  The result is a p-value tensor of shape
(n_tests, n_cell_types, nsim) plus per-adapter failure counts.

Reproducibility
---------------
Trial *i* draws from its own generator, the i-th child of
``np.random.SeedSequence(seed).spawn(nsim)``.  Results are therefore
identical for any n_jobs and any chunking, and a single trial can be
regenerated in isolation from (seed, i).

Failure handling
----------------
An adapter that raises, or returns something other than K values in
[0, 1] (NaN allowed), gets a NaN row for that trial and its failure count
is incremented.  Other adapters and other trials are unaffected.
Configuration errors are raised before any trial runs.
"""

import time
import warnings

import numpy as np
from joblib import Parallel, delayed

from config import (N_SIMS, SAMPLE_SIZES, DEPTH, NB_SIZE, ZERO_REPLACEMENT,
                    TRIAL_CHUNK_SIZE, DEFAULT_ADAPTERS, SCENARIOS)
from count_simulator import (beta_b_from_props, cell_type_labels,
                             group_props_from_fold_change, validate_props,
                             implied_props, shape_vector, simulate_null_array,
                             simulate_true_diff_array)
from errors import InvalidConfiguration
from stat_adapters import get_adapter


def group_labels(n_samples, n_groups=2):
    """Balanced contiguous group ids: [0]*J/G + [1]*J/G + ..."""
    if n_groups < 2 or n_samples % n_groups != 0:
        raise InvalidConfiguration(
            f"cannot split {n_samples} samples into {n_groups} equal groups")
    return np.repeat(np.arange(n_groups), n_samples // n_groups)


def trial_seeds(seed, nsim):
    """Independent per-trial seed sequences derived from one base seed."""
    return np.random.SeedSequence(seed).spawn(nsim)


# ---------------------------------------------------------------------------
# Single trial
# ---------------------------------------------------------------------------

def _call_adapter(entry, counts, groups):
    """Run one adapter; returns (pvalues, failed)."""
    n_types = counts.shape[0]
    data = counts
    if entry["replace_zeros"]:
        data = counts.astype(float)
        data[data == 0] = ZERO_REPLACEMENT
    try:
        p = np.asarray(entry["fn"](data, groups), dtype=float)
        if p.shape != (n_types,):
            raise ValueError(f"adapter returned shape {p.shape}, expected "
                             f"({n_types},)")
        finite = p[~np.isnan(p)]
        if np.any((finite < 0) | (finite > 1)):
            raise ValueError("adapter returned p-values outside [0, 1]")
    except Exception:
        return np.full(n_types, np.nan), True
    return p, False


def run_one_trial(trial_seed, simulate, sim_kwargs, adapters, groups):
    """Simulate one dataset and test it with every adapter.

    Returns
    -------
    pvals : ndarray, shape (n_tests, K)
    failed : ndarray of bool, shape (n_tests,)
    """
    rng = np.random.default_rng(trial_seed)
    counts = simulate(rng=rng, **sim_kwargs)
    pvals = np.empty((len(adapters), counts.shape[0]))
    failed = np.zeros(len(adapters), dtype=bool)
    for t, entry in enumerate(adapters):
        pvals[t], failed[t] = _call_adapter(entry, counts, groups)
    return pvals, failed


def _run_chunk(seeds, simulate, sim_kwargs, adapters, groups):
    out = [run_one_trial(s, simulate, sim_kwargs, adapters, groups)
           for s in seeds]
    pvals = np.stack([o[0] for o in out], axis=-1)      # (T, K, n_chunk)
    failed = np.stack([o[1] for o in out], axis=-1)     # (T, n_chunk)
    return pvals, failed


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _resolve_model(props, n_per_group, a, b, mode, fold_change, b_grp2,
                   depth, size):
    """Validate everything and return (simulate, sim_kwargs, truth)."""
    p = validate_props(props)
    n_types = p.size
    if n_per_group < 2:
        raise InvalidConfiguration(
            f"n_per_group must be >= 2; got {n_per_group}")
    if not depth > 0 or not size > 0:
        raise InvalidConfiguration("depth and size must be positive")

    a_vec = shape_vector(a, n_types, "a")
    b_vec = (beta_b_from_props(p, a_vec) if b is None
             else shape_vector(b, n_types, "b"))
    n_samples = 2 * n_per_group
    common = dict(props=p, n_samples=n_samples, a=a_vec, depth=depth,
                  size=size)

    if mode == "null":
        if fold_change is not None and np.any(np.asarray(fold_change) != 1.0):
            raise InvalidConfiguration(
                "null mode cannot have a fold change other than 1")
        if b_grp2 is not None:
            raise InvalidConfiguration("b_grp2 is only used in true_diff mode")
        return (simulate_null_array, dict(common, b=b_vec),
                np.zeros(n_types, dtype=bool))

    if mode == "true_diff":
        if b_grp2 is None:
            if fold_change is None:
                raise InvalidConfiguration(
                    "true_diff mode needs fold_change or b_grp2")
            props_grp2, truth = group_props_from_fold_change(p, fold_change)
            b2 = beta_b_from_props(props_grp2, a_vec)
        else:
            b2 = shape_vector(b_grp2, n_types, "b_grp2")
            implied_props(a_vec, b2, name="group-2 props")
            truth = ~np.isclose(b_vec, b2)
        implied_props(a_vec, b_vec, name="group-1 props")
        return (simulate_true_diff_array,
                dict(common, b_grp1=b_vec, b_grp2=b2), truth)

    raise InvalidConfiguration(
        f"Unknown mode {mode!r}; choose from ['null', 'true_diff']")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def run_trials(props, n_per_group, a, b=None, nsim=None, mode="null",
               fold_change=None, b_grp2=None, depth=None, size=None,
               adapters=None, seed=None, n_jobs=1, chunk_size=None):
    """Run *nsim* independent simulate-then-test trials.

    Parameters
    ----------
    props : array-like
        True (group-1) proportions, one per cell type.
    n_per_group : int
        Samples per group; two equal groups, first half is group 0.
    a : float or array-like
        Beta concentration, scalar or per cell type.
    b : array-like or None
        Group-1 Beta b per cell type; derived from props when None.
    mode : str
        'null' or 'true_diff'.
    fold_change : array-like or None
        true_diff only: group-2 proportions are props * fold_change.
    b_grp2 : array-like or None
        true_diff only: explicit group-2 Beta b (overrides fold_change).
    adapters : list of str or None
        Registered adapter names; defaults to config.DEFAULT_ADAPTERS.
    seed : int or None
        Base seed for the per-trial streams.
    n_jobs : int
        joblib workers over chunks of trials (1 = sequential).

    Returns
    -------
    dict with keys
        'pvalues'     ndarray (n_tests, K, nsim), NaN = not computed
        'tests'       list of adapter names
        'cell_types'  list of row labels
        'truth'       ndarray of bool (K,), True = differs by construction
        'failures'    ndarray of int (n_tests,), trials where the adapter failed
        'groups'      ndarray (J,) group ids
        'n_per_group', 'nsim', 'mode', 'seed'
    """
    if nsim is None:
        nsim = N_SIMS
    if depth is None:
        depth = DEPTH
    if size is None:
        size = NB_SIZE
    if adapters is None:
        adapters = DEFAULT_ADAPTERS
    if chunk_size is None:
        chunk_size = TRIAL_CHUNK_SIZE
    if nsim < 1:
        raise InvalidConfiguration(f"nsim must be >= 1; got {nsim}")

    simulate, sim_kwargs, truth = _resolve_model(
        props, n_per_group, a, b, mode, fold_change, b_grp2, depth, size)
    entries = [get_adapter(name) for name in adapters]
    groups = group_labels(2 * n_per_group)
    n_types = truth.size

    seeds = trial_seeds(seed, nsim)
    pvalues = np.empty((len(entries), n_types, nsim))
    failed = np.empty((len(entries), nsim), dtype=bool)

    bounds = [(lo, min(lo + chunk_size, nsim))
              for lo in range(0, nsim, chunk_size)]
    if n_jobs == 1:
        chunks = [_run_chunk(seeds[lo:hi], simulate, sim_kwargs, entries,
                             groups) for lo, hi in bounds]
    else:
        chunks = Parallel(n_jobs=n_jobs)(
            delayed(_run_chunk)(seeds[lo:hi], simulate, sim_kwargs, entries,
                                groups) for lo, hi in bounds)

    for (lo, hi), (pv, fl) in zip(bounds, chunks):
        pvalues[:, :, lo:hi] = pv
        failed[:, lo:hi] = fl

    failures = failed.sum(axis=1)
    for name, n_fail in zip(adapters, failures):
        if n_fail:
            warnings.warn(
                f"Adapter {name!r} failed on {n_fail}/{nsim} trials; "
                "those trials are excluded from its metrics.",
                UserWarning,
                stacklevel=2,
            )

    return {
        "pvalues": pvalues,
        "tests": list(adapters),
        "cell_types": cell_type_labels(n_types),
        "truth": truth,
        "failures": failures,
        "groups": groups,
        "n_per_group": n_per_group,
        "nsim": nsim,
        "mode": mode,
        "seed": seed,
    }


def _scenario_kwargs(scenario):
    if isinstance(scenario, str):
        if scenario not in SCENARIOS:
            raise ValueError(f"Unknown scenario {scenario!r}; choose from "
                             f"{list(SCENARIOS)}")
        scenario = SCENARIOS[scenario]
    kw = {"props": scenario["props"], "a": scenario["a"],
          "b": scenario.get("b"), "mode": scenario.get("mode", "null")}
    if kw["mode"] == "true_diff":
        kw["fold_change"] = scenario.get("fold_change")
        kw["b_grp2"] = scenario.get("b_grp2")
    return kw


def _log(msg):
    print(msg, flush=True)


def run_sample_sizes(scenario, sample_sizes=None, nsim=None, adapters=None,
                     seed=None, n_jobs=1, depth=None, size=None,
                     verbose=False):
    """Run one scenario once per samples-per-group value.

    Parameters
    ----------
    scenario : str or dict
        Key of config.SCENARIOS or a dict with the same fields.
    sample_sizes : list of int or None
        Samples per group; defaults to config.SAMPLE_SIZES.

    Returns
    -------
    list of dict
        One run_trials result per sample size, in order.
    """
    if sample_sizes is None:
        sample_sizes = SAMPLE_SIZES
    kw = _scenario_kwargs(scenario)

    # validate every configuration before running any of them
    for n in sample_sizes:
        _resolve_model(kw["props"], n, kw["a"], kw["b"], kw["mode"],
                       kw.get("fold_change"), kw.get("b_grp2"),
                       DEPTH if depth is None else depth,
                       NB_SIZE if size is None else size)

    results = []
    for idx, n in enumerate(sample_sizes):
        sc_seed = (seed + idx) if seed is not None else None
        t0 = time.time()
        res = run_trials(n_per_group=n, nsim=nsim, adapters=adapters,
                         seed=sc_seed, n_jobs=n_jobs, depth=depth, size=size,
                         **kw)
        if verbose:
            _log(f"  n={n} per group: {res['nsim']} trials in "
                 f"{time.time() - t0:.1f}s")
        results.append(res)
    return results
