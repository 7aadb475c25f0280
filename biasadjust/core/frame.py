"""Population and period-sample data model.

A :class:`SurveyFrame` holds one row per population unit with named, validated
columns for the two-period outcome, the sampled indicators, the externally
estimated inclusion probabilities and the auxiliary covariates. Period-specific
views of the observed sample are produced as immutable :class:`PeriodSample`
records that every estimator consumes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from biasadjust.core.errors import InvalidProbability

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = [
    "INTERCEPT",
    "PERIODS",
    "FrameSchema",
    "PeriodSample",
    "SurveyFrame",
    "check_period",
]

PERIODS: tuple[int, int] = (1, 2)

INTERCEPT = "(Intercept)"


def check_period(period: int) -> int:
    """Return ``period`` as int, rejecting anything but 1 or 2."""
    p = int(period)
    if p not in PERIODS:
        raise ValueError(f"period must be one of {PERIODS}; got {period!r}.")
    return p


def _freeze(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


def _check_binary(values: pd.Series, label: str) -> np.ndarray:
    if values.isna().any():
        raise ValueError(f"{label} contains missing values; drop incomplete rows upstream.")
    arr = values.to_numpy(dtype=np.float64)
    bad = ~np.isin(arr, (0.0, 1.0))
    if bad.any():
        head = np.unique(arr[bad])[:5].tolist()
        raise ValueError(f"{label} must be binary (0/1); found {head}.")
    return arr.astype(np.int8)


@dataclass(frozen=True)
class FrameSchema:
    """Column names of the input table.

    ``outcome``, ``sampled`` and ``inclusion`` are pairs indexed by period
    (first entry for period 1, second for period 2).
    """

    auxiliaries: tuple[str, ...]
    unit_id: str = "id"
    outcome: tuple[str, str] = ("occ1", "occ2")
    sampled: tuple[str, str] = ("sampled1", "sampled2")
    inclusion: tuple[str, str] = ("pi1", "pi2")

    def __post_init__(self) -> None:
        object.__setattr__(self, "auxiliaries", tuple(str(a) for a in self.auxiliaries))
        if not self.auxiliaries:
            raise ValueError("FrameSchema requires at least one auxiliary column.")
        if len(set(self.auxiliaries)) != len(self.auxiliaries):
            raise ValueError("auxiliary column names must be unique.")
        for label in ("outcome", "sampled", "inclusion"):
            pair = getattr(self, label)
            if len(pair) != len(PERIODS):
                raise ValueError(f"{label} must name one column per period.")

    def columns(self) -> list[str]:
        return [
            self.unit_id,
            *self.outcome,
            *self.sampled,
            *self.inclusion,
            *self.auxiliaries,
        ]

    def column(self, kind: str, period: int) -> str:
        return getattr(self, kind)[check_period(period) - 1]


@dataclass(frozen=True)
class PeriodSample:
    """Observed sample of one period, aligned row by row."""

    period: int
    unit_ids: NDArray
    y: NDArray[np.float64]
    aux: pd.DataFrame
    inclusion: NDArray[np.float64]
    population_size: int

    def __post_init__(self) -> None:
        n = self.y.shape[0]
        if self.unit_ids.shape[0] != n or self.aux.shape[0] != n or self.inclusion.shape[0] != n:
            raise ValueError("PeriodSample arrays must have equal length.")
        object.__setattr__(self, "unit_ids", _freeze(self.unit_ids))
        object.__setattr__(self, "y", _freeze(self.y))
        object.__setattr__(self, "inclusion", _freeze(self.inclusion))

    @property
    def n(self) -> int:
        return int(self.y.shape[0])

    def mean(self) -> float:
        """Unweighted sample mean of the outcome."""
        return float(np.mean(self.y)) if self.n else float("nan")


@dataclass(frozen=True)
class SurveyFrame:
    """Complete-case population table with period-specific sample membership."""

    data: pd.DataFrame
    schema: FrameSchema

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, schema: FrameSchema) -> SurveyFrame:
        """Validate ``df`` against ``schema`` and return a frame.

        Raises
        ------
        ValueError
            Missing columns, duplicate unit ids, non-binary outcome/indicator
            columns, non-finite auxiliaries or a sampled unit without an
            inclusion probability.
        InvalidProbability
            A sampled unit's inclusion probability lies outside (0, 1].

        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame.")
        missing = [c for c in schema.columns() if c not in df.columns]
        if missing:
            raise ValueError(f"input table lacks required columns: {missing}")
        data = df.loc[:, schema.columns()].reset_index(drop=True).copy()
        if data.empty:
            raise ValueError("input table has no rows.")
        if data[schema.unit_id].duplicated().any():
            raise ValueError(f"unit id column '{schema.unit_id}' has duplicates.")

        for period in PERIODS:
            y_col = schema.column("outcome", period)
            s_col = schema.column("sampled", period)
            pi_col = schema.column("inclusion", period)
            data[y_col] = _check_binary(data[y_col], y_col)
            data[s_col] = _check_binary(data[s_col], s_col)
            pi = pd.to_numeric(data[pi_col], errors="coerce").to_numpy(dtype=np.float64)
            sampled = data[s_col].to_numpy() == 1
            pi_s = pi[sampled]
            if not np.all(np.isfinite(pi_s)):
                raise ValueError(
                    f"{pi_col} is undefined for {int(np.sum(~np.isfinite(pi_s)))} sampled units.",
                )
            if np.any(pi_s <= 0.0) or np.any(pi_s > 1.0):
                raise InvalidProbability(
                    f"{pi_col} must lie in (0, 1] for sampled units; "
                    f"range is [{pi_s.min():.4g}, {pi_s.max():.4g}].",
                )
            data[pi_col] = np.where(sampled, pi, np.nan)

        for name in schema.auxiliaries:
            col = pd.to_numeric(data[name], errors="coerce").to_numpy(dtype=np.float64)
            if not np.all(np.isfinite(col)):
                raise ValueError(f"auxiliary '{name}' must be finite for every population unit.")
            data[name] = col
        return cls(data=data, schema=schema)

    # ------------------------------------------------------------------
    @property
    def population_size(self) -> int:
        return int(self.data.shape[0])

    def population_aux(self, names: Sequence[str] | None = None) -> pd.DataFrame:
        cols = list(self.schema.auxiliaries if names is None else names)
        unknown = [c for c in cols if c not in self.schema.auxiliaries]
        if unknown:
            raise ValueError(f"unknown auxiliaries: {unknown}")
        return self.data.loc[:, cols]

    def population_outcome(self, period: int) -> NDArray[np.float64]:
        col = self.schema.column("outcome", period)
        return self.data[col].to_numpy(dtype=np.float64)

    def population_mean(self, period: int) -> float:
        """True population mean of the outcome (evaluation only)."""
        return float(np.mean(self.population_outcome(period)))

    def population_totals(self, names: Sequence[str] | None = None) -> pd.Series:
        """Calibration totals: population count plus the sum of each auxiliary."""
        aux = self.population_aux(names)
        totals = aux.sum(axis=0).astype(np.float64)
        return pd.concat(
            [pd.Series({INTERCEPT: float(self.population_size)}), totals],
        )

    def sampled_mask(self, period: int) -> NDArray[np.bool_]:
        col = self.schema.column("sampled", period)
        return self.data[col].to_numpy() == 1

    def sample(self, period: int) -> PeriodSample:
        """Return the immutable sample view of ``period``."""
        p = check_period(period)
        rows = self.data.loc[self.sampled_mask(p)]
        return PeriodSample(
            period=p,
            unit_ids=rows[self.schema.unit_id].to_numpy(),
            y=rows[self.schema.column("outcome", p)].to_numpy(dtype=np.float64),
            aux=rows.loc[:, list(self.schema.auxiliaries)].reset_index(drop=True),
            inclusion=rows[self.schema.column("inclusion", p)].to_numpy(dtype=np.float64),
            population_size=self.population_size,
        )
