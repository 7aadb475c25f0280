"""Summary tables of suite results.

Produces tidy ``pandas`` tables for the reporting layer (one row per method and
period, per method trend, per fit record) and a plain-text rendering.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from tabulate import tabulate

if TYPE_CHECKING:
    from collections.abc import Mapping

    from biasadjust.estimators.suite import SuiteResult

__all__ = ["estimates_table", "fit_table", "render", "summarize", "trends_table"]


def estimates_table(result: SuiteResult, truth: Mapping[int, float] | None = None) -> pd.DataFrame:
    """One row per (method, period): estimate, interval, SE, provenance.

    When ``truth`` maps periods to known population means a ``bias`` column is
    added (simulation studies).
    """
    rows = []
    for (method, period), out in result.outputs.items():
        lo, hi = out.interval
        row = {
            "method": method,
            "period": period,
            "estimate": out.estimate,
            "lower": lo,
            "upper": hi,
            "se": np.nan if out.se is None else out.se,
            "interval": out.interval_kind,
            "n_sample": out.n_sample,
            "unit_weights": out.weights is not None,
            "provenance": out.provenance,
        }
        if truth is not None:
            row["bias"] = out.estimate - float(truth[period])
        rows.append(row)
    for (method, period), reason in result.failures.items():
        if period == "trend":
            continue
        rows.append({"method": method, "period": period, "provenance": "failed", "note": reason})
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values(["method", "period"], kind="stable").reset_index(drop=True)


def trends_table(result: SuiteResult, truth: Mapping[int, float] | None = None) -> pd.DataFrame:
    """One row per method: trend estimate and interval."""
    rows = []
    for method, tr in result.trends.items():
        row = {
            "method": method,
            "trend": tr.estimate,
            "lower": tr.interval[0],
            "upper": tr.interval[1],
            "se": np.nan if tr.se is None else tr.se,
            "interval": tr.kind if tr.policy is None else f"{tr.kind}/{tr.policy}",
            "provenance": tr.provenance,
        }
        if truth is not None:
            row["bias"] = tr.estimate - (float(truth[2]) - float(truth[1]))
        rows.append(row)
    return pd.DataFrame(rows)


def fit_table(result: SuiteResult) -> pd.DataFrame:
    """One row per (auxiliary, period, method) with both MAE scores."""
    return pd.DataFrame(
        [
            {
                "auxiliary": f.auxiliary,
                "period": f.period,
                "method": f.method,
                "mae_sample": f.mae_sample,
                "mae_adjusted": f.mae_adjusted,
                "improvement": f.improvement,
                "provenance": f.provenance,
            }
            for f in result.fits
        ],
    )


def render(df: pd.DataFrame, *, tablefmt: str = "github", floatfmt: str = ".4f") -> str:
    """Render a table as text."""
    if df.empty:
        return "(empty)"
    return tabulate(df, headers="keys", tablefmt=tablefmt, floatfmt=floatfmt, showindex=False)


def summarize(result: SuiteResult, truth: Mapping[int, float] | None = None) -> str:
    """Text report of estimates, trends and (if present) fit scores."""
    parts = [
        "Period estimates",
        render(estimates_table(result, truth)),
        "",
        "Trends (period 2 - period 1)",
        render(trends_table(result, truth)),
    ]
    if result.fits:
        parts += ["", "Auxiliary fit (mean absolute error)", render(fit_table(result))]
    return "\n".join(parts)
