"""Prior/posterior predictive checks and predictions for new texts."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import pymc as pm

from src.corpus.config import LENGTH_100, WORDS_PER_UNIT
from src.corpus.transform import PredictorTransform
from src.modeling.builders import DesignMatrix, build_design, build_model, group_offset_var
from src.modeling.fitting import FittedModel
from src.modeling.formula import ModelFormula
from src.modeling.priors import INTERCEPT, PriorSet

DEFAULT_QUANTILES = (0.025, 0.975)
CHECK_STATISTICS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "mean": lambda y: y.mean(axis=-1),
    "variance": lambda y: y.var(axis=-1, ddof=1),
    "max": lambda y: y.max(axis=-1),
    "zeros": lambda y: (y == 0).mean(axis=-1),
}


@dataclass(frozen=True)
class PredictiveCheck:
    """Observed statistic against its replicated distribution."""

    statistic: str
    observed: float
    replicated_mean: float
    lower: float
    upper: float
    p_value: float


def linear_predictor(fitted: FittedModel, design: DesignMatrix) -> np.ndarray:
    """Posterior draws of the log rate, shape (chain, draw, n_obs), including the exposure offset."""
    posterior = fitted.posterior
    intercept = np.asarray(posterior[INTERCEPT].values, dtype=float)
    eta = intercept[..., None] + design.log_exposure[None, None, :]

    if design.coefficients:
        beta = posterior["beta"].sel(coef=list(design.coefficients))
        beta_values = np.asarray(beta.transpose("chain", "draw", "coef").values, dtype=float)
        eta = eta + np.einsum("cdk,nk->cdn", beta_values, design.X)

    if design.group is not None and design.group_ids is not None:
        offsets = posterior[group_offset_var(design.group)].transpose("chain", "draw", design.group)
        eta = eta + np.asarray(offsets.values, dtype=float)[..., design.group_ids]
    return eta


def simulate_counts(fitted: FittedModel, design: DesignMatrix, random_seed: Optional[int] = None) -> np.ndarray:
    """Draw replicated counts from the posterior predictive distribution."""
    rng = np.random.default_rng(random_seed)
    rate = np.exp(linear_predictor(fitted, design))
    return rng.poisson(rate)


def predict(
    fitted: FittedModel,
    records: pd.DataFrame,
    exposure: Optional[float] = None,
    quantiles: Sequence[float] = DEFAULT_QUANTILES,
    random_seed: Optional[int] = None,
) -> pd.DataFrame:
    """Posterior predictive summary of counts for new records.

    ``exposure`` overrides the text length in hundred-word units; with
    ``exposure=1.0`` the summary is a rate per hundred words.
    """
    table = records.copy()
    if exposure is not None:
        if exposure <= 0:
            raise ValueError("exposure must be positive.")
        table["tokens"] = exposure * WORDS_PER_UNIT
    elif "tokens" not in table:
        raise ValueError("Records need a 'tokens' column or an explicit exposure.")

    transformed = fitted.transform.apply(table, fitted.formula.categorical_variables(fitted.transform))
    design = build_design(transformed, fitted.formula, fitted.transform, require_outcome=False)
    counts = simulate_counts(fitted, design, random_seed=random_seed).astype(float)
    flat = counts.reshape(-1, design.n_obs)

    summary = pd.DataFrame(
        {
            "mean": flat.mean(axis=0),
            "sd": flat.std(axis=0, ddof=1),
        },
        index=records.index,
    )
    for q in quantiles:
        if not 0 < q < 1:
            raise ValueError("Quantiles must fall within (0, 1).")
        summary[f"q{q * 100:g}"] = np.quantile(flat, q, axis=0)
    summary[LENGTH_100] = transformed[LENGTH_100].to_numpy()
    return summary


def posterior_predictive_check(
    fitted: FittedModel,
    data: pd.DataFrame,
    interval: float = 0.95,
    random_seed: Optional[int] = None,
) -> List[PredictiveCheck]:
    """Compare observed summary statistics with their posterior predictive distribution."""
    transformed = fitted.transform.apply(data, fitted.formula.categorical_variables(fitted.transform))
    design = build_design(transformed, fitted.formula, fitted.transform)
    if design.outcome is None:
        raise RuntimeError("Observed outcomes are required for a predictive check.")
    replicated = simulate_counts(fitted, design, random_seed=random_seed).reshape(-1, design.n_obs)
    observed = design.outcome.astype(float)

    tail = (1.0 - interval) / 2.0
    checks: List[PredictiveCheck] = []
    for name, statistic in CHECK_STATISTICS.items():
        observed_value = float(statistic(observed))
        replicated_values = np.asarray(statistic(replicated.astype(float)), dtype=float)
        lower, upper = np.quantile(replicated_values, [tail, 1.0 - tail])
        checks.append(
            PredictiveCheck(
                statistic=name,
                observed=observed_value,
                replicated_mean=float(replicated_values.mean()),
                lower=float(lower),
                upper=float(upper),
                p_value=float(np.mean(replicated_values >= observed_value)),
            )
        )
    return checks


def prior_predictive_summary(
    data: pd.DataFrame,
    formula: ModelFormula,
    priors: PriorSet,
    transform: PredictorTransform,
    draws: int = 500,
    quantiles: Sequence[float] = (0.05, 0.25, 0.5, 0.75, 0.95),
    random_seed: Optional[int] = None,
) -> pd.DataFrame:
    """Quantiles of prior-simulated rates per hundred words next to the observed rates."""
    transformed = transform.apply(data, formula.categorical_variables(transform))
    design = build_design(transformed, formula, transform)
    model = build_model(design, priors)
    with model:
        prior_idata = pm.sample_prior_predictive(draws=draws, random_seed=random_seed)

    simulated = np.asarray(prior_idata.prior_predictive["y"].values, dtype=float)
    exposure = np.asarray(transformed[LENGTH_100], dtype=float)
    simulated_rates = (simulated / exposure).ravel()
    observed_rates = np.asarray(transformed[formula.outcome], dtype=float) / exposure

    return pd.DataFrame(
        {
            "observed": np.quantile(observed_rates, quantiles),
            "prior_predictive": np.quantile(simulated_rates, quantiles),
        },
        index=pd.Index(list(quantiles), name="quantile"),
    )


def format_checks(checks: Sequence[PredictiveCheck]) -> pd.DataFrame:
    return pd.DataFrame([asdict(check) for check in checks]).set_index("statistic")


__all__ = [
    "CHECK_STATISTICS",
    "PredictiveCheck",
    "format_checks",
    "linear_predictor",
    "posterior_predictive_check",
    "predict",
    "prior_predictive_summary",
    "simulate_counts",
]
