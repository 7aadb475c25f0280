"""Poststratum index.

Continuous auxiliaries are discretized with breakpoints computed once over the
*population* and reused for every sample, so bin edges never depend on which
units happened to be observed. The cross-tabulation of the discretized
auxiliaries forms the poststratum cells.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = [
    "TERCILE_PROBS",
    "AuxiliaryRule",
    "AuxiliarySpec",
    "PoststratumTable",
    "build",
]

LOGGER = logging.getLogger(__name__)

TERCILE_PROBS: tuple[float, float] = (0.33, 0.66)
_RULE_LEVELS: dict[str, tuple[int, ...]] = {"tercile": (1, 2, 3), "binary": (0, 1)}


@dataclass(frozen=True)
class AuxiliaryRule:
    """Discretization rule of one auxiliary.

    ``kind="tercile"`` cuts at the population 33rd/66th percentiles into levels
    1, 2, 3 (right-inclusive). ``kind="binary"`` maps ``value > 0`` to 1 and
    everything else to 0; use it for proportion-type covariates dominated by
    exact zeros.
    """

    name: str
    kind: str = "tercile"

    def __post_init__(self) -> None:
        kind = str(self.kind).lower()
        if kind not in _RULE_LEVELS:
            raise ValueError(f"kind must be one of {sorted(_RULE_LEVELS)}; got {self.kind!r}.")
        object.__setattr__(self, "kind", kind)

    @property
    def levels(self) -> tuple[int, ...]:
        return _RULE_LEVELS[self.kind]

    def fit(self, population: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the breakpoints of this rule for ``population`` values."""
        if self.kind == "binary":
            return np.array([0.0])
        return np.quantile(np.asarray(population, dtype=np.float64), TERCILE_PROBS)

    def apply(self, values: NDArray[np.float64], breaks: NDArray[np.float64]) -> NDArray[np.int64]:
        x = np.asarray(values, dtype=np.float64)
        if self.kind == "binary":
            return (x > 0.0).astype(np.int64)
        return (np.searchsorted(breaks, x, side="left") + 1).astype(np.int64)


@dataclass(frozen=True)
class AuxiliarySpec:
    """Ordered set of discretization rules, one per stratifying auxiliary."""

    rules: tuple[AuxiliaryRule, ...]

    def __post_init__(self) -> None:
        rules = tuple(self.rules)
        if not rules:
            raise ValueError("AuxiliarySpec requires at least one rule.")
        names = [r.name for r in rules]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate auxiliaries in spec: {names}")
        object.__setattr__(self, "rules", rules)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.rules)

    @classmethod
    def infer(cls, population_aux: pd.DataFrame, *, zero_share: float = 0.5) -> AuxiliarySpec:
        """Classify each column as ``binary`` (mostly zero) or ``tercile``."""
        if not (0.0 < zero_share <= 1.0):
            raise ValueError("zero_share must lie in (0, 1].")
        rules = []
        for name in population_aux.columns:
            col = population_aux[name].to_numpy(dtype=np.float64)
            kind = "binary" if np.mean(col == 0.0) >= zero_share else "tercile"
            rules.append(AuxiliaryRule(str(name), kind))
        return cls(tuple(rules))

    def subset(self, names: Sequence[str]) -> AuxiliarySpec:
        """Return a spec restricted to ``names`` (sensitivity variants)."""
        by_name = {r.name: r for r in self.rules}
        missing = [n for n in names if n not in by_name]
        if missing:
            raise ValueError(f"unknown auxiliaries: {missing}")
        return AuxiliarySpec(tuple(by_name[n] for n in names))


@dataclass(frozen=True)
class PoststratumTable:
    """Poststratum cells with population frequencies.

    ``keys`` has one integer column per auxiliary and one row per cell, in
    lexicographic key order. Read-only once built.
    """

    spec: AuxiliarySpec
    breaks: dict[str, NDArray[np.float64]]
    keys: pd.DataFrame
    frequency: NDArray[np.int64]

    def __post_init__(self) -> None:
        freq = np.array(self.frequency, dtype=np.int64, copy=True)
        freq.setflags(write=False)
        object.__setattr__(self, "frequency", freq)
        if freq.shape[0] != self.keys.shape[0]:
            raise ValueError("frequency must have one entry per cell.")
        if int(freq.sum()) <= 0:
            raise ValueError("poststratum table has no population units.")

    @property
    def n_cells(self) -> int:
        return int(self.keys.shape[0])

    @property
    def population_size(self) -> int:
        return int(self.frequency.sum())

    @property
    def share(self) -> NDArray[np.float64]:
        return self.frequency / float(self.population_size)

    @property
    def labels(self) -> list[str]:
        return ["|".join(str(v) for v in row) for row in self.keys.itertuples(index=False)]

    def frequencies(self, floor: int = 0) -> NDArray[np.float64]:
        """Population frequency per cell, raised to at least ``floor``."""
        return np.maximum(self.frequency.astype(np.float64), float(floor))

    def discretize(self, aux: pd.DataFrame) -> pd.DataFrame:
        """Map continuous auxiliaries to levels using the population breakpoints."""
        missing = [n for n in self.spec.names if n not in aux.columns]
        if missing:
            raise ValueError(f"auxiliary columns missing: {missing}")
        return pd.DataFrame(
            {
                r.name: r.apply(aux[r.name].to_numpy(dtype=np.float64), self.breaks[r.name])
                for r in self.spec.rules
            },
            index=aux.index,
        )

    def cell_of(self, aux: pd.DataFrame) -> NDArray[np.int64]:
        """Cell position of every row of ``aux``; -1 when the key is not a cell."""
        levels = self.discretize(aux)
        table_index = pd.MultiIndex.from_frame(self.keys)
        return table_index.get_indexer(pd.MultiIndex.from_frame(levels)).astype(np.int64)


def build(
    population_aux: pd.DataFrame,
    spec: AuxiliarySpec,
    *,
    full_grid: bool = False,
) -> PoststratumTable:
    """Build the poststratum table of ``population_aux`` under ``spec``.

    Only keys observed in the population are cells unless ``full_grid`` is
    True, in which case every level combination is a cell (possibly with zero
    frequency).
    """
    missing = [n for n in spec.names if n not in population_aux.columns]
    if missing:
        raise ValueError(f"population lacks auxiliaries: {missing}")
    if population_aux.shape[0] == 0:
        raise ValueError("population is empty.")

    breaks = {
        r.name: r.fit(population_aux[r.name].to_numpy(dtype=np.float64)) for r in spec.rules
    }
    for r in spec.rules:
        b = breaks[r.name]
        if r.kind == "tercile" and b[0] == b[1]:
            LOGGER.debug("tercile breakpoints of %s coincide (%.4g); level 2 is empty.", r.name, b[0])

    levels = pd.DataFrame(
        {r.name: r.apply(population_aux[r.name].to_numpy(dtype=np.float64), breaks[r.name]) for r in spec.rules},
    )
    counts = levels.groupby(list(spec.names), sort=True).size()
    if not isinstance(counts.index, pd.MultiIndex):
        counts.index = pd.MultiIndex.from_arrays([counts.index], names=list(spec.names))
    if full_grid:
        grid = pd.MultiIndex.from_tuples(
            list(itertools.product(*(r.levels for r in spec.rules))),
            names=list(spec.names),
        )
        counts = counts.reindex(grid, fill_value=0)
    keys = counts.index.to_frame(index=False).astype(np.int64)
    return PoststratumTable(
        spec=spec,
        breaks=breaks,
        keys=keys,
        frequency=counts.to_numpy(dtype=np.int64),
    )
