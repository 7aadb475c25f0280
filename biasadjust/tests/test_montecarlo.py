"""Behaviour of the adjustments on the opposite-bias synthetic population."""

import numpy as np
import pytest

from biasadjust.core.inference import trend
from biasadjust.estimators import AuxiliaryInputs, Poststratification, ResampleConfig
from biasadjust.estimators.subsample import subsample_sensitivity
from biasadjust.sim.montecarlo import SYNTHETIC_SCHEMA, simulate_population


def test_population_layout():
    df = simulate_population(n_units=2000, n_sample=200, seed=1)
    assert set(SYNTHETIC_SCHEMA.columns()) <= set(df.columns)
    assert int(df["sampled1"].sum()) == 200
    assert int(df["sampled2"].sum()) == 200
    pi = df.loc[df["sampled1"] == 1, "pi1"]
    assert ((pi > 0) & (pi <= 1)).all()
    assert df.loc[df["sampled1"] == 0, "pi1"].isna().all()
    with pytest.raises(ValueError):
        simulate_population(n_units=10, n_sample=20)


def test_raw_means_are_biased_in_opposite_directions(synthetic_frame):
    bias1 = synthetic_frame.sample(1).mean() - synthetic_frame.population_mean(1)
    bias2 = synthetic_frame.sample(2).mean() - synthetic_frame.population_mean(2)
    assert bias1 > 0.05
    assert bias2 < -0.05


def test_poststratification_beats_raw_mean(synthetic_frame, synthetic_table):
    inputs = AuxiliaryInputs(table=synthetic_table)
    for period in (1, 2):
        sample = synthetic_frame.sample(period)
        truth = synthetic_frame.population_mean(period)
        out = Poststratification().estimate(sample, inputs)
        assert abs(out.estimate - truth) < abs(sample.mean() - truth)


def test_poststratification_recovers_trend_sign(synthetic_frame, synthetic_table):
    inputs = AuxiliaryInputs(table=synthetic_table)
    raw_trend = synthetic_frame.sample(2).mean() - synthetic_frame.sample(1).mean()
    est = Poststratification()
    tr = trend(
        est.estimate(synthetic_frame.sample(1), inputs),
        est.estimate(synthetic_frame.sample(2), inputs),
    )
    true_trend = synthetic_frame.population_mean(2) - synthetic_frame.population_mean(1)
    assert raw_trend < 0.0
    assert true_trend > 0.0
    assert tr.estimate > 0.0


def test_subsample_width_shrinks_with_size(synthetic_frame, synthetic_table):
    df = subsample_sensitivity(
        synthetic_frame.sample(1),
        AuxiliaryInputs(table=synthetic_table),
        sizes=(100, 200, 400, 800, 1600, 3200),
        config=ResampleConfig(n_boot=1000, seed=13, n_jobs=1),
    )
    assert df["subsample_size"].tolist() == [100, 200, 400, 800, 1600, 3200]
    assert np.all(np.diff(df["width"].to_numpy()) <= 0.0)
    assert (df["lower"] <= df["estimate"]).all()
    assert (df["estimate"] <= df["upper"]).all()
