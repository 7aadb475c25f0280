import numpy as np
import pytest

from biasadjust.estimators import (
    AuxiliaryInputs,
    MultilevelPoststratification,
    Poststratification,
    QuasiRandomisation,
    ResampleConfig,
    WeightedSubsampling,
)
from biasadjust.output.fit import (
    auxiliary_fit,
    bin_edges,
    mean_absolute_error,
    relative_frequency,
    resampled_frequency,
)
from biasadjust.sim.montecarlo import beta_posterior


def test_mae_zero_for_identical_distributions():
    rng = np.random.default_rng(0)
    x = rng.normal(size=1000)
    edges = bin_edges(x, 50)
    f = relative_frequency(x, edges)
    assert mean_absolute_error(f, f) == 0.0
    assert np.isclose(f.sum(), 1.0)


def test_mae_non_negative():
    rng = np.random.default_rng(1)
    pop = rng.normal(size=2000)
    edges = bin_edges(pop, 30)
    a = relative_frequency(pop, edges)
    b = relative_frequency(rng.normal(0.5, 1.0, 300), edges)
    assert mean_absolute_error(a, b) > 0.0
    with pytest.raises(ValueError):
        mean_absolute_error(a, b[:-1])


def test_bins_span_population_range():
    edges = bin_edges(np.array([2.0, 5.0, 3.0]), 3)
    assert np.allclose(edges, [2.0, 3.0, 4.0, 5.0])
    flat = bin_edges(np.array([1.0, 1.0]), 2)
    assert flat[0] < 1.0 < flat[-1]
    with pytest.raises(ValueError):
        bin_edges(np.array([]), 5)


def test_empty_bins_are_kept():
    edges = np.linspace(0.0, 1.0, 11)
    f = relative_frequency(np.array([0.05, 0.05, 0.95]), edges)
    assert f.shape == (10,)
    assert np.count_nonzero(f) == 2
    # out-of-range values land in the end bins
    g = relative_frequency(np.array([-1.0, 2.0]), edges)
    assert g[0] == 0.5 and g[-1] == 0.5


def test_weighted_frequency():
    edges = np.array([0.0, 0.5, 1.0])
    f = relative_frequency(np.array([0.1, 0.9]), edges, weights=np.array([3.0, 1.0]))
    assert np.allclose(f, [0.75, 0.25])


def test_resampled_frequency_is_seeded():
    x = np.linspace(0.0, 1.0, 20)
    p = np.full(20, 1.0 / 20)
    edges = bin_edges(x, 4)
    a = resampled_frequency(x, p, edges, size=50, n_rep=10, seed=4)
    b = resampled_frequency(x, p, edges, size=50, n_rep=10, seed=4)
    assert np.array_equal(a, b)
    assert np.isclose(a.sum(), 1.0)


def test_poststratification_restores_auxiliary_distribution(synthetic_frame, synthetic_table):
    inputs = AuxiliaryInputs(table=synthetic_table)
    out = Poststratification().estimate(synthetic_frame.sample(1), inputs)
    fit = auxiliary_fit(synthetic_frame, out, "elev", n_bins=10)
    assert fit.provenance == "exact"
    assert fit.mae_adjusted < fit.mae_sample
    assert fit.improvement > 0.0
    frame_view = fit.to_frame()
    assert list(frame_view.columns) == ["bin_lower", "bin_upper", "population", "sample", "adjusted"]
    assert len(frame_view) == 10


def test_quasi_randomisation_fit(synthetic_frame, synthetic_table):
    out = QuasiRandomisation().estimate(synthetic_frame.sample(2), AuxiliaryInputs(table=synthetic_table))
    fit = auxiliary_fit(synthetic_frame, out, "temp", n_bins=20)
    assert fit.mae_sample >= 0.0
    assert fit.mae_adjusted >= 0.0
    assert np.isclose(fit.adjusted.sum(), 1.0)


def test_subsampling_fit_is_diagnostic_only(synthetic_frame, synthetic_table):
    inputs = AuxiliaryInputs(table=synthetic_table)
    out = WeightedSubsampling(ResampleConfig(n_boot=50, seed=2, n_jobs=1)).estimate(
        synthetic_frame.sample(1), inputs,
    )
    a = auxiliary_fit(synthetic_frame, out, "elev", n_bins=10, n_rep=50, seed=9)
    b = auxiliary_fit(synthetic_frame, out, "elev", n_bins=10, n_rep=50, seed=9)
    assert a.provenance == "diagnostic-only"
    assert np.array_equal(a.adjusted, b.adjusted)
    assert a.mae_adjusted < a.mae_sample


def test_mrp_has_no_fit(synthetic_frame, synthetic_table):
    post = beta_posterior(synthetic_frame, synthetic_table, 1, n_draws=20, seed=0)
    out = MultilevelPoststratification().estimate(
        synthetic_frame.sample(1), AuxiliaryInputs(table=synthetic_table, posterior=post),
    )
    with pytest.raises(ValueError, match="do not apply"):
        auxiliary_fit(synthetic_frame, out, "elev")
