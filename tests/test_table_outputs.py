"""Tests for the in-memory report tables and the scenario driver."""

import sys
from pathlib import Path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import numpy as np
import pandas as pd
import pytest

from config import SCENARIOS
from count_simulator import simulate_null
from errors import DegenerateEstimation
from run_scenario import main, scenario_from_counts
import table_outputs
from table_outputs import (build_metrics_table, build_rate_table,
                           build_roc_table, print_summary, summarize_results,
                           type1_wide)
from trial_runner import run_sample_sizes

ADAPTERS = ["chisq", "ttest_asin"]


@pytest.fixture(scope="module")
def true_diff_results():
    return run_sample_sizes("six_type_true_diff", sample_sizes=[3, 5],
                            nsim=10, adapters=ADAPTERS, seed=1)


def test_metrics_table(true_diff_results):
    df = build_metrics_table(true_diff_results)
    assert len(df) == 4
    assert set(df["test"]) == set(ADAPTERS)
    for col in ("mean_type1_error", "recall", "precision", "f1", "auc",
                "recall_excluded", "auc_excluded", "failures"):
        assert col in df.columns
    assert df["auc"].between(0, 1).all()


def test_rate_table(true_diff_results):
    df = build_rate_table(true_diff_results)
    assert len(df) == 2 * 2 * 6
    assert df.loc[df["cell_type"] == "c0", "truth"].all()
    wide = type1_wide(df)
    # only null cell types are pivoted
    assert "c0" not in wide.columns and "c1" in wide.columns


def test_roc_table(true_diff_results):
    df = build_roc_table(true_diff_results)
    assert len(df) == 2 * 2 * 7
    last = df[df["step"] == 6]
    np.testing.assert_allclose(last["fpr"], 1.0)
    np.testing.assert_allclose(last["tpr"], 1.0)


def test_null_run_has_no_discrimination_metrics():
    results = run_sample_sizes("two_type_null", sample_sizes=[3], nsim=5,
                               adapters=["chisq"], seed=0)
    df = build_metrics_table(results)
    assert df["auc"].isna().all()
    assert df["recall"].isna().all()
    assert df["mean_type1_error"].notna().all()
    assert build_roc_table(results).empty


def test_print_summary(true_diff_results, capsys):
    print_summary(build_metrics_table(true_diff_results),
                  build_rate_table(true_diff_results))
    out = capsys.readouterr().out
    assert "METRICS BY TEST AND SAMPLE SIZE" in out
    assert "ttest_asin" in out


def test_main_returns_tables():
    tables = main("two_type_null", nsim=5, sample_sizes=[3],
                  adapters=["chisq"], seed=4, verbose=False)
    assert set(tables) == {"results", "metrics", "rates", "roc"}
    assert len(tables["results"]) == 1


def test_scenario_seeded_from_observed_counts():
    sc = SCENARIOS["six_type_null"]
    observed = simulate_null(sc["props"], 60, a=sc["a"],
                             rng=np.random.default_rng(8))
    seeded = scenario_from_counts("six_type_null", observed)
    assert abs(np.sum(seeded["props"]) - 1.0) < 1e-9
    assert np.all(np.asarray(seeded["a"]) > 0)
    assert np.all(np.asarray(seeded["b"]) > 0)

    tables = main("six_type_null", observed_counts=observed, nsim=3,
                  sample_sizes=[3], adapters=["ttest_asin"], seed=0,
                  verbose=False)
    assert tables["metrics"]["nsim"].iloc[0] == 3


def test_degenerate_observed_counts_raise():
    observed = np.array([[10, 10, 10], [30, 50, 70], [60, 40, 20]])
    with pytest.raises(DegenerateEstimation):
        scenario_from_counts("six_type_null", observed)


def test_precomputed_summaries_give_same_tables(true_diff_results):
    summaries = summarize_results(true_diff_results)
    assert len(summaries) == 2
    pd.testing.assert_frame_equal(
        build_metrics_table(true_diff_results, summaries=summaries),
        build_metrics_table(true_diff_results))
    pd.testing.assert_frame_equal(
        build_rate_table(true_diff_results, summaries=summaries),
        build_rate_table(true_diff_results))
    pd.testing.assert_frame_equal(
        build_roc_table(true_diff_results, summaries=summaries),
        build_roc_table(true_diff_results))
    with pytest.raises(ValueError):
        build_rate_table(true_diff_results, summaries=summaries[:1])


def test_main_summarizes_each_result_once(monkeypatch):
    calls = []
    real = table_outputs.summarize

    def counting(results, alpha=None, truth=None):
        calls.append(results["n_per_group"])
        return real(results, alpha, truth)

    monkeypatch.setattr(table_outputs, "summarize", counting)
    main("two_type_null", nsim=3, sample_sizes=[3, 5], adapters=["chisq"],
         seed=2, verbose=False)
    assert sorted(calls) == [3, 5]
