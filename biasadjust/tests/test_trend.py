import numpy as np
import pytest

from biasadjust.core import strata
from biasadjust.core.errors import ReplicateCountMismatch
from biasadjust.core.frame import PeriodSample, SurveyFrame
from biasadjust.core.inference import trend
from biasadjust.estimators import (
    AuxiliaryInputs,
    Calibration,
    MultilevelPoststratification,
    Poststratification,
    QuasiRandomisation,
    ResampleConfig,
    WeightedSubsampling,
)
from biasadjust.sim.montecarlo import SYNTHETIC_SCHEMA, beta_posterior, simulate_population, synthetic_spec


@pytest.fixture(scope="module")
def frozen_frame():
    """Population whose period-2 columns repeat period 1."""
    df = simulate_population(n_units=3000, n_sample=300, seed=5)
    df = df.assign(occ2=df["occ1"], sampled2=df["sampled1"], pi2=df["pi1"])
    return SurveyFrame.from_dataframe(df, SYNTHETIC_SCHEMA)


def _inputs(frame):
    spec = synthetic_spec()
    return AuxiliaryInputs(
        table=strata.build(frame.population_aux(spec.names), spec),
        totals=frame.population_totals(),
    )


@pytest.mark.parametrize("estimator", [QuasiRandomisation(), Poststratification(), Calibration()])
def test_analytic_trend_is_difference(synthetic_frame, estimator):
    inputs = _inputs(synthetic_frame)
    o1 = estimator.estimate(synthetic_frame.sample(1), inputs)
    o2 = estimator.estimate(synthetic_frame.sample(2), inputs)
    tr = trend(o1, o2)
    assert tr.estimate == pytest.approx(o2.estimate - o1.estimate)
    assert tr.se == pytest.approx(np.hypot(o1.se, o2.se))
    assert tr.interval[0] < tr.estimate < tr.interval[1]
    assert tr.kind == "analytic"


@pytest.mark.parametrize("estimator", [QuasiRandomisation(), Poststratification(), Calibration()])
def test_identical_periods_give_zero_trend(frozen_frame, estimator):
    inputs = _inputs(frozen_frame)
    tr = trend(
        estimator.estimate(frozen_frame.sample(1), inputs),
        estimator.estimate(frozen_frame.sample(2), inputs),
    )
    assert tr.estimate == 0.0
    assert tr.interval[0] <= 0.0 <= tr.interval[1]


def test_identical_periods_paired_subsampling(frozen_frame):
    inputs = _inputs(frozen_frame)
    est = WeightedSubsampling(ResampleConfig(n_boot=200, seed=8, n_jobs=1))
    tr = trend(est.estimate(frozen_frame.sample(1), inputs), est.estimate(frozen_frame.sample(2), inputs))
    assert tr.estimate == 0.0
    assert tr.interval == (0.0, 0.0)
    assert tr.policy == "paired"


def test_identical_periods_mrp(frozen_frame):
    base = _inputs(frozen_frame)
    outs = []
    for period in (1, 2):
        post = beta_posterior(frozen_frame, base.table, period, n_draws=200, seed=3)
        inputs = AuxiliaryInputs(table=base.table, posterior=post, alignment="fit-1")
        outs.append(MultilevelPoststratification().estimate(frozen_frame.sample(period), inputs))
    tr = trend(*outs)
    assert tr.estimate == 0.0
    assert tr.interval[0] <= 0.0 <= tr.interval[1]


def test_paired_trend_uses_replicate_difference(synthetic_frame):
    inputs = _inputs(synthetic_frame)
    est = WeightedSubsampling(ResampleConfig(n_boot=300, seed=21, n_jobs=1))
    o1 = est.estimate(synthetic_frame.sample(1), inputs)
    o2 = est.estimate(synthetic_frame.sample(2), inputs)
    tr = trend(o1, o2)
    diff = o2.draws - o1.draws
    assert tr.estimate == pytest.approx(o2.estimate - o1.estimate)
    assert tr.interval[0] == pytest.approx(np.percentile(diff, 2.5))
    assert tr.se == pytest.approx(diff.std(ddof=1))


def test_unequal_replicate_counts(synthetic_frame):
    inputs = _inputs(synthetic_frame)
    o1 = WeightedSubsampling(ResampleConfig(n_boot=100, seed=1, n_jobs=1)).estimate(synthetic_frame.sample(1), inputs)
    o2 = WeightedSubsampling(ResampleConfig(n_boot=150, seed=1, n_jobs=1)).estimate(synthetic_frame.sample(2), inputs)
    with pytest.raises(ReplicateCountMismatch):
        trend(o1, o2)
    tr = trend(o1, o2, policy="independent")
    assert tr.se == pytest.approx(np.hypot(o1.draws.std(ddof=1), o2.draws.std(ddof=1)))
    assert tr.estimate == pytest.approx(o2.estimate - o1.estimate)


def test_misaligned_seeds(synthetic_frame):
    inputs = _inputs(synthetic_frame)
    o1 = WeightedSubsampling(ResampleConfig(n_boot=100, seed=1, n_jobs=1)).estimate(synthetic_frame.sample(1), inputs)
    o2 = WeightedSubsampling(ResampleConfig(n_boot=100, seed=2, n_jobs=1)).estimate(synthetic_frame.sample(2), inputs)
    with pytest.raises(ReplicateCountMismatch):
        trend(o1, o2)


def test_trend_rejects_mixed_inputs(synthetic_frame):
    inputs = _inputs(synthetic_frame)
    q1 = QuasiRandomisation().estimate(synthetic_frame.sample(1), inputs)
    q2 = QuasiRandomisation().estimate(synthetic_frame.sample(2), inputs)
    p2 = Poststratification().estimate(synthetic_frame.sample(2), inputs)
    with pytest.raises(ValueError, match="one method"):
        trend(q1, p2)
    with pytest.raises(ValueError, match="period-1"):
        trend(q2, q1)
    with pytest.raises(ValueError, match="policy"):
        trend(q1, q2, policy="bayes")


def test_unaligned_posteriors_cannot_be_paired(synthetic_frame):
    base = _inputs(synthetic_frame)
    outs = []
    for period, seed in ((1, 1), (2, 999)):
        post = beta_posterior(synthetic_frame, base.table, period, n_draws=200, seed=seed)
        inputs = AuxiliaryInputs(table=base.table, posterior=post)
        outs.append(MultilevelPoststratification().estimate(synthetic_frame.sample(period), inputs))
    with pytest.raises(ReplicateCountMismatch, match="alignment"):
        trend(*outs)
    tr = trend(*outs, policy="independent")
    assert tr.policy == "independent"
    assert tr.estimate == pytest.approx(outs[1].estimate - outs[0].estimate)


def test_undefined_se_makes_trend_partial(synthetic_frame):
    inputs = _inputs(synthetic_frame)
    s1 = synthetic_frame.sample(1)
    single = PeriodSample(1, s1.unit_ids[:1], s1.y[:1], s1.aux.iloc[:1], s1.inclusion[:1], s1.population_size)
    o1 = QuasiRandomisation().estimate(single, inputs)
    o2 = QuasiRandomisation().estimate(synthetic_frame.sample(2), inputs)
    tr = trend(o1, o2)
    assert np.isnan(tr.se)
    assert tr.provenance == "partial"
