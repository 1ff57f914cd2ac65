"""
Configuration for cell-type composition benchmark simulations.

Counts are simulated from a three-layer hierarchy: negative-binomial total
cells per sample, Beta-distributed latent proportion per cell type and
sample, then an independent binomial count per cell type.  Scenarios below
give the true proportions and Beta hyperparameters used in the benchmark.
"""

# ---------------------------------------------------------------------------
# Simulation parameters
# ---------------------------------------------------------------------------
N_SIMS = 1000
# Samples per group used across the benchmark grid.
SAMPLE_SIZES = [3, 5, 10, 20]

# Mean total cells per sample, and the negative-binomial "size" (dispersion).
# Var(depth) = DEPTH + DEPTH**2 / NB_SIZE, so the default is far from Poisson.
DEPTH = 5000
NB_SIZE = 20

ALPHA = 0.05

# Proportion vectors must sum to 1 within this tolerance.
PROP_TOLERANCE = 1e-6

# Value substituted for zero counts before log-ratio transforms.
ZERO_REPLACEMENT = 0.5

# Trials per joblib task when n_jobs != 1.
TRIAL_CHUNK_SIZE = 50

USE_NUMBA = True

# ---------------------------------------------------------------------------
# Scenario definitions
# ---------------------------------------------------------------------------
# "a" is the Beta concentration for every cell type; b is derived from the
# true proportions as a * (1 - p) / p unless given explicitly.
SCENARIOS = {
    "two_type_null": {
        "label": "Two cell types, no difference",
        "mode": "null",
        "props": [0.2, 0.8],
        "a": 10.0,
        "b": [40.0, 2.5],
        "fold_change": [1.0, 1.0],
    },
    "six_type_null": {
        "label": "Six cell types, no difference",
        "mode": "null",
        "props": [0.05, 0.05, 0.1, 0.1, 0.2, 0.5],
        "a": 10.0,
        "b": None,
        "fold_change": [1.0, 1.0, 1.0, 1.0, 1.0, 1.0],
    },
    "six_type_true_diff": {
        "label": "Six cell types, c0 up 3x and c5 down to 0.8x",
        "mode": "true_diff",
        "props": [0.05, 0.05, 0.1, 0.1, 0.2, 0.5],
        "a": 10.0,
        "b": None,
        # Group 2 proportions are props * fold_change and still sum to 1.
        "fold_change": [3.0, 1.0, 1.0, 1.0, 1.0, 0.8],
    },
}

DEFAULT_ADAPTERS = ["chisq", "ttest_prop", "ttest_asin", "ttest_logratio",
                    "poisson_glm", "quasibinomial_glm", "nb_glm"]
