"""PSIS-LOO model comparison across independently fitted models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import arviz as az
import numpy as np
import pandas as pd
from arviz import ELPDData

from src.modeling.fitting import FittedModel

PARETO_K_THRESHOLD = 0.7


@dataclass(frozen=True)
class ComparisonResult:
    """Ranking of candidate models by expected log pointwise predictive density."""

    table: pd.DataFrame
    loo: Mapping[str, ELPDData] = field(default_factory=dict)
    high_pareto_k: Mapping[str, int] = field(default_factory=dict)

    @property
    def ranking(self) -> List[str]:
        return [str(name) for name in self.table.index]

    @property
    def best(self) -> str:
        return self.ranking[0]

    @property
    def indistinguishable(self) -> List[str]:
        """Models whose ELPD is within one standard error of the difference from the best."""
        tied = self.table[self.table["indistinguishable"]]
        return [str(name) for name in tied.index if name != self.best]

    @property
    def warnings(self) -> List[str]:
        messages: List[str] = []
        for name, count in sorted(self.high_pareto_k.items()):
            if count:
                messages.append(
                    f"{name}: {count} observation(s) with Pareto k > {PARETO_K_THRESHOLD}; "
                    "the LOO estimate for this model is unreliable."
                )
        return messages


def rank_elpd(pointwise: Mapping[str, np.ndarray]) -> pd.DataFrame:
    """Rank models from pointwise ELPD contributions.

    Differences and their standard errors are computed pairwise against the
    top model. Ordering depends only on the scores (ties broken by name), so
    the result does not depend on the order models are supplied in.
    """
    if not pointwise:
        raise ValueError("At least one model is required for comparison.")

    values = {name: np.asarray(points, dtype=float).ravel() for name, points in pointwise.items()}
    sizes = {points.size for points in values.values()}
    if len(sizes) != 1:
        raise ValueError("All models must be scored on the same observations.")
    n_obs = sizes.pop()
    if n_obs < 2:
        raise ValueError("At least two observations are required to estimate standard errors.")

    elpd = {name: float(points.sum()) for name, points in values.items()}
    order = sorted(values, key=lambda name: (-elpd[name], name))
    best = values[order[0]]

    rows = []
    for rank, name in enumerate(order):
        points = values[name]
        diff = best - points
        dse = float(np.sqrt(n_obs * np.var(diff, ddof=0))) if rank else 0.0
        elpd_diff = float(diff.sum())
        rows.append(
            {
                "model": name,
                "rank": rank,
                "elpd_loo": elpd[name],
                "se": float(np.sqrt(n_obs * np.var(points, ddof=0))),
                "elpd_diff": elpd_diff,
                "dse": dse,
                "indistinguishable": rank == 0 or elpd_diff <= dse,
            }
        )
    return pd.DataFrame(rows).set_index("model")


def compare_models(
    models: Mapping[str, FittedModel],
    pareto_k_threshold: float = PARETO_K_THRESHOLD,
) -> ComparisonResult:
    """Compute PSIS-LOO for every model and rank them; high Pareto k values are reported."""
    if not models:
        raise ValueError("No models supplied for comparison.")

    loo_results: Dict[str, ELPDData] = {}
    pointwise: Dict[str, np.ndarray] = {}
    high_k: Dict[str, int] = {}
    for name in sorted(models):
        fitted = models[name]
        if "log_likelihood" not in fitted.idata.groups():
            raise RuntimeError(f"Model '{name}' was sampled without pointwise log likelihood.")
        loo = az.loo(fitted.idata, pointwise=True)
        loo_results[name] = loo
        pointwise[name] = np.asarray(loo.loo_i, dtype=float)
        k_values = np.asarray(loo.pareto_k, dtype=float)
        high_k[name] = int(np.sum(k_values > pareto_k_threshold))
        print(f"[loo] {name}: elpd_loo={float(loo.elpd_loo):.2f} (se {float(loo.se):.2f}), p_loo={float(loo.p_loo):.2f}")

    table = rank_elpd(pointwise)
    table["p_loo"] = [float(loo_results[name].p_loo) for name in table.index]
    table["n_high_pareto_k"] = [high_k[name] for name in table.index]
    if len(loo_results) > 1:
        weights = az.compare(dict(loo_results), ic="loo")["weight"]
        table["weight"] = [float(weights[name]) for name in table.index]
    else:
        table["weight"] = [1.0]

    result = ComparisonResult(table=table, loo=loo_results, high_pareto_k=high_k)
    for message in result.warnings:
        print(f"[loo] WARNING {message}")
    return result


def format_comparison(result: ComparisonResult, digits: Optional[int] = 2) -> str:
    """Plain-text report with the recommended model and statistical ties."""
    lines = [result.table.round(digits).to_string() if digits is not None else result.table.to_string()]
    lines.append(f"Recommended model: {result.best}")
    if result.indistinguishable:
        tied = ", ".join(result.indistinguishable)
        lines.append(f"Statistically indistinguishable from the recommended model: {tied}")
    lines.extend(result.warnings)
    return "\n".join(lines)


__all__ = [
    "ComparisonResult",
    "PARETO_K_THRESHOLD",
    "compare_models",
    "format_comparison",
    "rank_elpd",
]
