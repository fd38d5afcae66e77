import dataclasses
import threading

import numpy as np
import pandas as pd
import pytest

from olstraj import fit_case_by_case
from olstraj.estimators.base import BootConfig, CaseByCaseResult, normalize_ci_level
from olstraj.estimators.cbc import CaseByCaseOLS, pool_and_bootstrap
from olstraj.exceptions import (
    BootstrapCancelled,
    DegenerateBootstrap,
    DegenerateCase,
    IncompleteAggregation,
    InvalidInput,
)
from olstraj.sim.montecarlo import simulate_trajectories

# ---------------------------------------------------------------------
# End-to-end on the interleaved five-case example
# ---------------------------------------------------------------------

@pytest.fixture
def example_result(example_panel):
    return fit_case_by_case(example_panel, "outs ~ vals", "ids", n_bootstrap=4000, random_seed=42)


def test_example_terms_and_cases(example_result):
    res = example_result
    assert isinstance(res, CaseByCaseResult)
    assert res.terms == ["(Intercept)", "vals"]
    assert res.cases == [1, 2, 3, 4, 5]
    assert res.n_obs == 25
    assert res.coef_table.shape == (5, 2)
    assert res.coef_table.index.name == "ids"


def test_example_pooled_mean_is_case_mean(example_panel, example_result):
    res = example_result
    expected = []
    for key in [1, 2, 3, 4, 5]:
        sub = example_panel[example_panel["ids"] == key]
        X = np.column_stack([np.ones(len(sub)), sub["vals"].to_numpy()])
        beta, *_ = np.linalg.lstsq(X, sub["outs"].to_numpy(), rcond=None)
        expected.append(beta)
    np.testing.assert_allclose(res.mean_coef.to_numpy(), np.mean(expected, axis=0), rtol=1e-10)
    np.testing.assert_allclose(res.coef_table.to_numpy(), np.asarray(expected), rtol=1e-10)


def test_example_bootstrap_summaries(example_result):
    res = example_result
    for term in res.terms:
        reps = res.replicates(term)
        assert reps.shape == (4000,)
        est = res.estimates[term]
        assert est.se >= 0.0
        assert est.se == pytest.approx(np.std(reps, ddof=1))
        assert est.boot_mean == pytest.approx(reps.mean())
        assert est.ci_lower <= est.ci_upper
        assert reps.min() <= est.ci_lower <= reps.max()
        assert reps.min() <= est.ci_upper <= reps.max()
        assert est.n_cases == 5
    assert list(res.ci_coef.columns) == ["lower", "upper"]


def test_example_replicates_read_only(example_result):
    reps = example_result.replicates("vals")
    with pytest.raises(ValueError):
        reps[0] = 0.0


def test_example_reproducible_with_seed(example_panel, example_result):
    again = fit_case_by_case(example_panel, "outs ~ vals", "ids", n_bootstrap=4000, random_seed=42)
    for term in example_result.terms:
        assert again.replicates(term).tobytes() == example_result.replicates(term).tobytes()
    pd.testing.assert_frame_equal(again.summary_frame(), example_result.summary_frame())


def test_summary_and_glance_frames(example_result):
    summary = example_result.summary_frame()
    assert list(summary.index) == ["(Intercept)", "vals"]
    assert {"mean", "boot_mean", "se", "ci_lower", "ci_upper", "n_cases"} <= set(summary.columns)
    glance = example_result.glance()
    assert list(glance.index) == [1, 2, 3, 4, 5]
    assert (glance["n_obs"] == 5).all()


def test_unknown_term_replicates(example_result):
    with pytest.raises(KeyError, match="Unknown term"):
        example_result.replicates("nope")


def test_result_rejects_incomplete_aggregation(example_result):
    partial = {"vals": example_result.estimates["vals"]}
    with pytest.raises(IncompleteAggregation, match="missing"):
        dataclasses.replace(example_result, estimates=partial)


# ---------------------------------------------------------------------
# Degenerate cases and invalid input
# ---------------------------------------------------------------------

def test_single_case_raises(example_panel):
    one = example_panel[example_panel["ids"] == 1]
    with pytest.raises(DegenerateCase, match="at least 2"):
        fit_case_by_case(one, "outs ~ vals", "ids", n_bootstrap=50, random_seed=1)


def test_case_with_too_few_rows_is_named(linear_panel):
    df = linear_panel[~((linear_panel["id"] == 4) & (linear_panel["time"] > 0))]
    with pytest.raises(DegenerateCase, match="Case 4") as err:
        fit_case_by_case(df, "y ~ time", "id", n_bootstrap=50, random_seed=1)
    assert err.value.case == 4


def test_missing_predictor_rows_are_dropped_per_case(linear_panel):
    df = linear_panel.copy()
    df.loc[0, "time"] = np.nan
    res = fit_case_by_case(df, "y ~ time", "id", n_bootstrap=100, random_seed=3)
    assert res.fits[1].n_obs == 4
    assert res.fits[2].n_obs == 5


def test_missing_case_key_raises(linear_panel):
    df = linear_panel.astype({"id": float})
    df.loc[3, "id"] = np.nan
    with pytest.raises(InvalidInput, match="missing values"):
        fit_case_by_case(df, "y ~ time", "id", n_bootstrap=50)


def test_unknown_formula_column(linear_panel):
    with pytest.raises(InvalidInput, match="not found"):
        fit_case_by_case(linear_panel, "y ~ age", "id", n_bootstrap=50)


def test_unknown_case_column(linear_panel):
    with pytest.raises(InvalidInput, match="Case column"):
        fit_case_by_case(linear_panel, "y ~ time", "subject", n_bootstrap=50)


def test_case_column_in_formula(linear_panel):
    with pytest.raises(InvalidInput, match="cannot also appear"):
        fit_case_by_case(linear_panel, "y ~ time + id", "id", n_bootstrap=50)


def test_duplicate_index_rejected(linear_panel):
    df = linear_panel.copy()
    df.index = np.zeros(len(df), dtype=int)
    with pytest.raises(InvalidInput, match="unique"):
        CaseByCaseOLS.from_formula("y ~ time", df, case="id")


def test_non_dataframe_rejected():
    with pytest.raises(InvalidInput, match="DataFrame"):
        CaseByCaseOLS({"y": [1.0]}, "y ~ 1", "id")


def test_divergent_terms_across_cases():
    df = pd.DataFrame(
        {
            "id": [1] * 6 + [2] * 6,
            "x": np.arange(12, dtype=float),
            "g": ["a", "b", "a", "b", "a", "b"] + ["a"] * 6,
            "y": np.sin(np.arange(12, dtype=float)) + np.arange(12) * 0.3,
        },
    )
    with pytest.raises(DegenerateCase) as err:
        fit_case_by_case(df, "y ~ x + g", "id", n_bootstrap=50, random_seed=1)
    assert err.value.case == 2


def test_rng_and_seed_conflict(linear_panel):
    with pytest.raises(InvalidInput, match="not both"):
        fit_case_by_case(
            linear_panel, "y ~ time", "id", n_bootstrap=50, random_seed=1,
            rng=np.random.default_rng(1),
        )


def test_invalid_missing_policy(linear_panel):
    with pytest.raises(InvalidInput, match="missing_policy"):
        fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=50, missing_policy="drop")


# ---------------------------------------------------------------------
# Pooling policies and bootstrap degeneracy
# ---------------------------------------------------------------------

@pytest.fixture
def coef_table():
    return pd.DataFrame(
        {
            "(Intercept)": [1.0, 1.4, 0.7, 1.1, 0.9, 1.3],
            "time": [0.5, np.nan, 0.4, 0.8, 0.3, 0.6],
        },
        index=pd.Index(list("abcdef"), name="id"),
    )


def test_missing_estimate_fails_by_default(coef_table):
    with pytest.raises(DegenerateCase, match="Case 'b'") as err:
        pool_and_bootstrap(coef_table, boot=BootConfig(n_boot=100, seed=1))
    assert err.value.case == "b"


def test_missing_estimate_skipped(coef_table):
    out = pool_and_bootstrap(
        coef_table, boot=BootConfig(n_boot=200, seed=1), missing_policy="skip",
    )
    assert out["(Intercept)"].n_cases == 6
    assert out["time"].n_cases == 5
    assert out["time"].mean == pytest.approx(np.nanmean(coef_table["time"]))
    assert np.all(np.isfinite(out["time"].replicates))


def test_zero_variance_term_raises(coef_table):
    table = coef_table.fillna(0.5).assign(time=0.5)
    with pytest.raises(DegenerateBootstrap) as err:
        pool_and_bootstrap(table, boot=BootConfig(n_boot=100, seed=1))
    assert err.value.term == "time"


def test_cancelled_fit(linear_panel):
    ev = threading.Event()
    ev.set()
    with pytest.raises(BootstrapCancelled):
        fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=100, random_seed=1, cancel=ev)


# ---------------------------------------------------------------------
# Statistical behaviour and determinism
# ---------------------------------------------------------------------

def test_pooled_mean_converges_with_more_cases():
    coefs = np.array([3.0, 0.5])
    ses = []
    for n_cases in (10, 400):
        df = simulate_trajectories(
            n_cases=n_cases, n_waves=6, coefs=tuple(coefs), case_sd=0.5, noise_sd=0.5, seed=99,
        )
        res = fit_case_by_case(df, "y ~ time", "id", n_bootstrap=200, random_seed=5)
        ses.append(res.se_coef.to_numpy())
    # Standard errors shrink roughly with sqrt(n_cases)
    assert np.all(ses[1] < ses[0] / 2.0)
    np.testing.assert_allclose(res.mean_coef.to_numpy(), coefs, atol=0.15)


def test_quadratic_trajectories():
    df = simulate_trajectories(
        n_cases=60, n_waves=6, coefs=(2.0, 1.0, -0.2), case_sd=0.1, noise_sd=0.2, seed=4,
    )
    res = fit_case_by_case(df, "y ~ time + I(time**2)", "id", n_bootstrap=300, random_seed=8)
    assert res.terms == ["(Intercept)", "time", "I(time ** 2)"]
    np.testing.assert_allclose(res.mean_coef.to_numpy(), [2.0, 1.0, -0.2], atol=0.15)


def test_injected_generator_is_deterministic(linear_panel):
    a = fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=300, rng=np.random.default_rng(5))
    b = fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=300, rng=np.random.default_rng(5))
    for term in a.terms:
        np.testing.assert_array_equal(a.replicates(term), b.replicates(term))


def test_results_independent_of_n_jobs(linear_panel):
    serial = fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=300, random_seed=2, n_jobs=1)
    threaded = fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=300, random_seed=2, n_jobs=4)
    pd.testing.assert_frame_equal(serial.summary_frame(), threaded.summary_frame())
    for term in serial.terms:
        np.testing.assert_array_equal(serial.replicates(term), threaded.replicates(term))


def test_percentage_ci_level(linear_panel):
    res = fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=200, ci_level=95, random_seed=1)
    assert res.boot.ci_level == pytest.approx(0.95)
    np.testing.assert_allclose(res.summary_frame()["ci_level"].to_numpy(), 0.95)


@pytest.mark.parametrize(("level", "expected"), [(0.9, 0.9), (50, 0.5), (95, 0.95), (99.5, 0.995)])
def test_normalize_ci_level_accepts_probabilities_and_percentages(level, expected):
    assert normalize_ci_level(level) == pytest.approx(expected)


@pytest.mark.parametrize("level", [1.0, 1.5, 10, 49.9, 100, 0.0, -0.2])
def test_normalize_ci_level_rejects_ambiguous_levels(level):
    with pytest.raises(InvalidInput, match="ci_level"):
        normalize_ci_level(level)


def test_fit_rejects_level_between_one_and_fifty(linear_panel):
    with pytest.raises(InvalidInput):
        fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=50, ci_level=1.5, random_seed=1)


def test_wider_level_gives_wider_interval(linear_panel):
    kw = {"n_bootstrap": 1000, "random_seed": 6}
    r90 = fit_case_by_case(linear_panel, "y ~ time", "id", ci_level=0.90, **kw)
    r99 = fit_case_by_case(linear_panel, "y ~ time", "id", ci_level=0.99, **kw)
    assert r99.ci_coef.loc["time", "lower"] <= r90.ci_coef.loc["time", "lower"]
    assert r99.ci_coef.loc["time", "upper"] >= r90.ci_coef.loc["time", "upper"]


def test_class_interface(linear_panel):
    model = CaseByCaseOLS.from_formula("y ~ time", linear_panel, case="id")
    assert model.n_cases == 12
    res = model.fit(boot=BootConfig(n_boot=150, seed=3))
    assert model.results is res
    assert res.model_info["B"] == 150
    pd.testing.assert_series_equal(model.params, res.mean_coef)
    assert set(res.n_cases) == {12}


def test_fit_cases_without_bootstrap(linear_panel):
    fits = CaseByCaseOLS.from_formula("y ~ time", linear_panel, case="id").fit_cases(n_jobs=2)
    assert list(fits) == list(range(1, 13))
    assert all(f.terms == ["(Intercept)", "time"] for f in fits.values())


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "kwargs",
    [{"n_boot": 0}, {"n_boot": 2.5}, {"ci_level": 1.5}, {"seed": -1}, {"chunk_size": 0}, {"n_jobs": 0}],
)
def test_boot_config_validation(kwargs):
    with pytest.raises(InvalidInput):
        BootConfig(**kwargs)


def test_boot_config_defaults():
    cfg = BootConfig()
    assert cfg.n_boot == 4000
    assert cfg.ci_level == pytest.approx(0.95)
    assert cfg.alpha == pytest.approx(0.05)
