import numpy as np
import pytest

from biasadjust.core import strata
from biasadjust.estimators import (
    EstimatorSuite,
    ResampleConfig,
    SuiteConfig,
    default_estimators,
)
from biasadjust.output import render, summarize
from biasadjust.output.summary import estimates_table, fit_table, trends_table
from biasadjust.sim.montecarlo import beta_posterior, synthetic_spec


@pytest.fixture(scope="module")
def posterior(synthetic_frame):
    spec = synthetic_spec()
    table = strata.build(synthetic_frame.population_aux(spec.names), spec)
    return {p: beta_posterior(synthetic_frame, table, p, n_draws=300, seed=17) for p in (1, 2)}


@pytest.fixture(scope="module")
def suite_result(synthetic_frame, posterior):
    suite = EstimatorSuite(
        default_estimators(ResampleConfig(n_boot=300, seed=5, n_jobs=1)),
        SuiteConfig(fit_auxiliaries=("elev",), fit_repetitions=20, fit_seed=3),
    )
    return suite.run(synthetic_frame, synthetic_spec(), posterior=posterior, posterior_alignment="joint")


def test_suite_runs_every_method(suite_result):
    assert suite_result.methods == [
        "quasi_randomisation",
        "poststratification",
        "calibration",
        "subsampling",
        "mrp",
    ]
    assert not suite_result.failures
    assert set(suite_result.trends) == set(suite_result.methods)
    for method in suite_result.methods:
        o1 = suite_result.output(method, 1)
        o2 = suite_result.output(method, 2)
        assert suite_result.trends[method].estimate == pytest.approx(o2.estimate - o1.estimate)


def test_suite_fits_skip_mrp(suite_result):
    methods = {f.method for f in suite_result.fits}
    assert "mrp" not in methods
    assert methods == {"quasi_randomisation", "poststratification", "calibration", "subsampling"}
    by_method = {f.method: f.provenance for f in suite_result.fits}
    assert by_method["subsampling"] == "diagnostic-only"
    assert by_method["poststratification"] == "exact"


def test_unseeded_subsampling_gets_paired_trend(synthetic_frame):
    suite = EstimatorSuite(
        [default_estimators(ResampleConfig(n_boot=100, n_jobs=1), include_mrp=False)[3]],
        SuiteConfig(diagnostics=False),
    )
    result = suite.run(synthetic_frame, synthetic_spec())
    o1 = result.output("subsampling", 1)
    o2 = result.output("subsampling", 2)
    assert o1.extra["alignment"] == o2.extra["alignment"]
    assert result.trends["subsampling"].policy == "paired"


def test_failure_is_isolated(synthetic_frame):
    bad_posterior = {p: np.full((50, 7), 0.5) for p in (1, 2)}
    suite = EstimatorSuite(
        default_estimators(ResampleConfig(n_boot=100, seed=1, n_jobs=1)),
        SuiteConfig(diagnostics=False),
    )
    result = suite.run(synthetic_frame, synthetic_spec(), posterior=bad_posterior)
    assert ("mrp", 1) in result.failures
    assert ("mrp", 2) in result.failures
    assert "StratumMismatch" in result.failures[("mrp", 1)]
    assert "mrp" not in result.trends
    assert "poststratification" in result.trends
    with pytest.raises(KeyError, match="StratumMismatch"):
        result.output("mrp", 1)


def test_unaligned_posteriors_recorded_as_trend_failure(synthetic_frame):
    spec = synthetic_spec()
    table = strata.build(synthetic_frame.population_aux(spec.names), spec)
    separate = {
        1: beta_posterior(synthetic_frame, table, 1, n_draws=200, seed=1),
        2: beta_posterior(synthetic_frame, table, 2, n_draws=200, seed=999),
    }
    config = SuiteConfig(diagnostics=False)
    est = [default_estimators(include_mrp=True)[4]]
    result = EstimatorSuite(est, config).run(synthetic_frame, spec, posterior=separate)
    assert "mrp" not in result.trends
    assert "ReplicateCountMismatch" in result.failures[("mrp", "trend")]
    assert ("mrp", 1) in result.outputs

    independent = EstimatorSuite(est, SuiteConfig(diagnostics=False, trend_policy="independent"))
    result = independent.run(synthetic_frame, spec, posterior=separate)
    assert result.trends["mrp"].policy == "independent"
    assert not result.failures


def test_missing_posterior_is_a_precondition_error(synthetic_frame):
    suite = EstimatorSuite(config=SuiteConfig(diagnostics=False))
    with pytest.raises(ValueError, match="posterior"):
        suite.run(synthetic_frame, synthetic_spec())


def test_duplicate_estimator_names():
    ests = default_estimators(include_mrp=False)
    with pytest.raises(ValueError, match="unique"):
        EstimatorSuite([ests[0], ests[0]])


def test_suite_config_validation():
    with pytest.raises(ValueError):
        SuiteConfig(trend_policy="joint")
    assert SuiteConfig(ci_level=90).ci_level == 0.9


# ---------------------------------------------------------------------
# Summary tables
# ---------------------------------------------------------------------


def test_estimates_table(synthetic_frame, suite_result):
    truth = {p: synthetic_frame.population_mean(p) for p in (1, 2)}
    df = estimates_table(suite_result, truth)
    assert len(df) == 10
    assert {"method", "period", "estimate", "lower", "upper", "provenance", "bias"} <= set(df.columns)
    row = df[(df["method"] == "quasi_randomisation") & (df["period"] == 1)].iloc[0]
    assert row["bias"] == pytest.approx(row["estimate"] - truth[1])


def test_trends_and_fit_tables(suite_result):
    tr = trends_table(suite_result, {1: 0.3, 2: 0.45})
    assert len(tr) == 5
    assert tr.loc[tr["method"] == "subsampling", "interval"].iloc[0] == "resampling/paired"
    fits = fit_table(suite_result)
    assert (fits["mae_sample"] >= 0).all()
    assert (fits["mae_adjusted"] >= 0).all()


def test_summarize_renders_text(synthetic_frame, suite_result):
    text = summarize(suite_result, {p: synthetic_frame.population_mean(p) for p in (1, 2)})
    assert "Period estimates" in text
    assert "poststratification" in text
    assert "Auxiliary fit" in text
    assert render(estimates_table(suite_result).iloc[0:0]) == "(empty)"
