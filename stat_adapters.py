"""
Registry of differential-composition tests.

Every adapter has the same signature::

    fn(counts, groups) -> pvalues

where *counts* is an integer (K, J) array (cell types x samples), *groups*
is a length-J integer array of group ids 0 .. G-1, and *pvalues* is a
length-K float array with NaN for "not computed".  Adapters may raise on
data they cannot handle; the trial runner records that as a missing
result for the trial.

Adapters registered with ``replace_zeros=True`` receive a private copy of
the counts in which zeros are replaced by config.ZERO_REPLACEMENT, for
tests that take logarithms.

The statistical procedures themselves come from SciPy and statsmodels.
"""

import warnings

import numpy as np
import statsmodels.api as sm
from scipy import stats
from statsmodels.tools.sm_exceptions import ConvergenceWarning

ADAPTERS = {}


def register_adapter(name, replace_zeros=False):
    """Decorator adding *fn* to the registry under *name*."""
    def decorator(fn):
        ADAPTERS[name] = {"fn": fn, "replace_zeros": replace_zeros}
        return fn
    return decorator


def get_adapter(name):
    """Return the registry entry (dict with 'fn' and 'replace_zeros')."""
    if name not in ADAPTERS:
        raise ValueError(f"Unknown adapter {name!r}; choose from {list(ADAPTERS)}")
    return ADAPTERS[name]


def available_adapters():
    return list(ADAPTERS)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _n_groups(groups):
    g = np.unique(groups)
    if g.size < 2:
        raise ValueError("need at least two groups")
    return g


def _split_columns(x, groups):
    """List of (K, J_g) column blocks, one per group id."""
    return [x[:, groups == g] for g in _n_groups(groups)]


def _proportions(counts):
    totals = counts.sum(axis=0)
    if np.any(totals <= 0):
        raise ValueError("sample with zero total cells")
    return counts / totals


def _group_mean_test(values, groups):
    """Pooled-variance t-test for two groups, one-way ANOVA for more,
    applied to every row of *values*."""
    blocks = _split_columns(values, groups)
    with warnings.catch_warnings():
        # constant rows give NaN p-values; the NaN is the result
        warnings.simplefilter("ignore", RuntimeWarning)
        if len(blocks) == 2:
            _, p = stats.ttest_ind(blocks[0], blocks[1], axis=1,
                                   equal_var=True)
        else:
            _, p = stats.f_oneway(*blocks, axis=1)
    return np.asarray(p, dtype=float)


def _design(groups):
    """Intercept plus treatment-coded group dummies."""
    levels = _n_groups(groups)
    dummies = (groups[:, None] == levels[None, 1:]).astype(float)
    return sm.add_constant(dummies, has_constant="add")


def _fit_glm(endog, exog, family, offset=None, scale=None):
    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        res = sm.GLM(endog, exog, family=family, offset=offset).fit(scale=scale)
    if not res.converged:
        raise RuntimeError("GLM did not converge")
    return res


# ---------------------------------------------------------------------------
# Contingency test on pooled counts
# ---------------------------------------------------------------------------

@register_adapter("chisq")
def chisq_test(counts, groups):
    """Chi-square test of equal proportions on group-summed counts.

    For each cell type the 2 x G table is (this type, all other types) by
    group.  The 2 x 2 case uses Yates' continuity correction.  Ignores
    sample-to-sample variation, so it is anti-conservative under
    overdispersion.
    """
    levels = _n_groups(groups)
    pooled = np.column_stack([counts[:, groups == g].sum(axis=1)
                              for g in levels])
    totals = pooled.sum(axis=0)
    pvals = np.empty(counts.shape[0])
    for k in range(counts.shape[0]):
        table = np.vstack([pooled[k], totals - pooled[k]])
        _, pvals[k], _, _ = stats.chi2_contingency(table, correction=True)
    return pvals


# ---------------------------------------------------------------------------
# Tests on transformed sample proportions
# ---------------------------------------------------------------------------

@register_adapter("ttest_prop")
def ttest_proportions(counts, groups):
    """t-test (ANOVA for >2 groups) on raw per-sample proportions."""
    return _group_mean_test(_proportions(counts), groups)


@register_adapter("ttest_asin")
def ttest_arcsin_sqrt(counts, groups):
    """t-test (ANOVA for >2 groups) on arcsine square-root proportions."""
    return _group_mean_test(np.arcsin(np.sqrt(_proportions(counts))), groups)


@register_adapter("anova_asin")
def anova_arcsin_sqrt(counts, groups):
    """One-way ANOVA on arcsine square-root proportions."""
    values = np.arcsin(np.sqrt(_proportions(counts)))
    blocks = _split_columns(values, groups)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        _, p = stats.f_oneway(*blocks, axis=1)
    return np.asarray(p, dtype=float)


@register_adapter("ttest_logratio", replace_zeros=True)
def ttest_log_ratio(counts, groups):
    """t-test on log(count / rest-of-sample count).

    Expects zero counts to have been replaced already; a zero left in the
    data makes the log ratio infinite and the test raises.
    """
    counts = np.asarray(counts, dtype=float)
    rest = counts.sum(axis=0) - counts
    if np.any(counts <= 0) or np.any(rest <= 0):
        raise ValueError("log-ratio test needs strictly positive counts")
    return _group_mean_test(np.log(counts / rest), groups)


# ---------------------------------------------------------------------------
# Count GLMs (statsmodels)
# ---------------------------------------------------------------------------

@register_adapter("poisson_glm")
def poisson_glm_lrt(counts, groups):
    """Poisson GLM with log total-cells offset; likelihood-ratio test for
    the group effect."""
    exog = _design(groups)
    exog0 = exog[:, :1]
    df = exog.shape[1] - 1
    offset = np.log(counts.sum(axis=0).astype(float))
    pvals = np.empty(counts.shape[0])
    for k in range(counts.shape[0]):
        y = counts[k].astype(float)
        full = _fit_glm(y, exog, sm.families.Poisson(), offset=offset)
        null = _fit_glm(y, exog0, sm.families.Poisson(), offset=offset)
        lr = max(2.0 * (full.llf - null.llf), 0.0)
        pvals[k] = stats.chi2.sf(lr, df)
    return pvals


@register_adapter("quasibinomial_glm")
def quasibinomial_glm_ftest(counts, groups):
    """Binomial GLM with Pearson-estimated dispersion; F test on the
    deviance drop for the group effect (quasi-likelihood)."""
    exog = _design(groups)
    exog0 = exog[:, :1]
    df_num = exog.shape[1] - 1
    df_den = counts.shape[1] - exog.shape[1]
    if df_den < 1:
        raise ValueError("not enough samples to estimate dispersion")
    totals = counts.sum(axis=0)
    pvals = np.empty(counts.shape[0])
    for k in range(counts.shape[0]):
        endog = np.column_stack([counts[k], totals - counts[k]]).astype(float)
        full = _fit_glm(endog, exog, sm.families.Binomial(), scale="X2")
        null = _fit_glm(endog, exog0, sm.families.Binomial(), scale="X2")
        f_stat = (null.deviance - full.deviance) / df_num / full.scale
        pvals[k] = stats.f.sf(max(f_stat, 0.0), df_num, df_den)
    return pvals


def _nb_alpha_moments(y, mu, df_resid):
    """Method-of-moments NB2 dispersion from a Poisson fit:
    Var(y) = mu + alpha * mu**2."""
    alpha = np.sum(((y - mu) ** 2 - y) / mu ** 2) / df_resid
    return max(alpha, 1e-8)


@register_adapter("nb_glm")
def negative_binomial_glm_lrt(counts, groups):
    """Negative-binomial GLM with log total-cells offset.

    The dispersion is estimated once per cell type from the full Poisson
    fit and held fixed for both models; the group effect is tested with a
    likelihood-ratio test.
    """
    exog = _design(groups)
    exog0 = exog[:, :1]
    df = exog.shape[1] - 1
    df_resid = counts.shape[1] - exog.shape[1]
    if df_resid < 1:
        raise ValueError("not enough samples to estimate dispersion")
    offset = np.log(counts.sum(axis=0).astype(float))
    pvals = np.empty(counts.shape[0])
    for k in range(counts.shape[0]):
        y = counts[k].astype(float)
        pois = _fit_glm(y, exog, sm.families.Poisson(), offset=offset)
        alpha = _nb_alpha_moments(y, pois.fittedvalues, df_resid)
        family = sm.families.NegativeBinomial(alpha=alpha)
        full = _fit_glm(y, exog, family, offset=offset)
        null = _fit_glm(y, exog0, family, offset=offset)
        lr = max(2.0 * (full.llf - null.llf), 0.0)
        pvals[k] = stats.chi2.sf(lr, df)
    return pvals
