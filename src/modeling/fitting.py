"""Posterior sampling for the verb-phrase Poisson models based on PyMC."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, cast

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import xarray as xr
from arviz import InferenceData

from src.corpus.transform import PredictorTransform, expand_level_effects

from .builders import build_design, build_model, group_offset_var, group_sd_var
from .formula import ModelFormula
from .priors import INTERCEPT, PriorSet, group_sd_name

RHAT_THRESHOLD = 1.1


class ConvergenceError(RuntimeError):
    """Raised when any parameter's R-hat exceeds the acceptance threshold."""

    def __init__(self, model_name: str, offending: Mapping[str, float], threshold: float) -> None:
        self.model_name = model_name
        self.offending = dict(offending)
        self.threshold = threshold
        listed = ", ".join(f"{name}={value:.3f}" for name, value in sorted(self.offending.items()))
        super().__init__(
            f"Model '{model_name}' did not converge (R-hat > {threshold}): {listed}. "
            "Run longer chains or reparameterize before using this fit."
        )


@dataclass(frozen=True)
class SamplerConfig:
    """NUTS settings shared by every fit in an analysis."""

    draws: int = 2000
    tune: int = 1000
    chains: int = 4
    cores: Optional[int] = None
    target_accept: float = 0.9
    random_seed: Optional[int] = None
    rhat_threshold: float = RHAT_THRESHOLD

    def validate(self) -> None:
        if self.draws < 1 or self.tune < 0:
            raise ValueError("draws must be positive and tune non-negative.")
        if self.chains < 2:
            raise ValueError("At least two chains are required to compute R-hat.")
        if not 0 < self.target_accept < 1:
            raise ValueError("target_accept must fall within (0, 1).")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SamplerConfig":
        return cls(**{key: payload[key] for key in cls.__dataclass_fields__ if key in payload})


@dataclass(frozen=True)
class CoefficientSummary:
    """Posterior summary for a single coefficient."""

    coefficient: str
    mean: float
    sd: float
    lower: float
    upper: float
    r_hat: float
    ess_bulk: float


@dataclass(frozen=True)
class FittedModel:
    """Immutable posterior sample collection plus the inputs that produced it."""

    name: str
    formula: ModelFormula
    priors: PriorSet
    transform: PredictorTransform
    sampler: SamplerConfig
    idata: InferenceData

    @property
    def posterior(self) -> xr.Dataset:
        posterior_group = getattr(self.idata, "posterior", None)
        if posterior_group is None:
            raise RuntimeError(f"Model '{self.name}' has no posterior group.")
        return cast(xr.Dataset, posterior_group)

    @property
    def coefficient_names(self) -> Tuple[str, ...]:
        names: List[str] = [INTERCEPT]
        if "beta" in self.posterior:
            names.extend(str(label) for label in self.posterior["beta"].coords["coef"].values)
        if self.formula.group is not None:
            names.append(group_sd_name(self.formula.group))
        return tuple(names)

    @property
    def n_draws(self) -> int:
        return int(self.posterior.sizes["chain"] * self.posterior.sizes["draw"])

    def coefficient_draws(self, coefficient: str) -> xr.DataArray:
        """Posterior draws (chain × draw) for a coefficient identifier."""
        posterior = self.posterior
        if coefficient == INTERCEPT:
            return posterior[INTERCEPT]
        if self.formula.group is not None and coefficient == group_sd_name(self.formula.group):
            return posterior[group_sd_var(self.formula.group)]
        if "beta" in posterior:
            labels = [str(label) for label in posterior["beta"].coords["coef"].values]
            if coefficient in labels:
                return posterior["beta"].sel(coef=coefficient, drop=True)
        raise KeyError(f"Coefficient '{coefficient}' not found in model '{self.name}'. Known: {self.coefficient_names}")

    def level_effects(self, variable: str) -> xr.DataArray:
        """Draws of every level's effect, including the omitted sum-coded level."""
        levels = self.transform.levels.get(variable)
        if levels is None:
            raise ValueError(f"'{variable}' is not a categorical predictor.")
        if variable == self.formula.group:
            return self.posterior[group_offset_var(variable)].rename({variable: "level"})
        if variable not in self.formula.terms:
            raise ValueError(f"'{variable}' is not a fixed term of model '{self.name}'.")

        contrasts = np.stack(
            [self.coefficient_draws(name).values for name in self.transform.contrast_columns(variable)],
            axis=-1,
        )
        effects = expand_level_effects(contrasts)
        posterior = self.posterior
        return xr.DataArray(
            effects,
            dims=("chain", "draw", "level"),
            coords={
                "chain": posterior.coords["chain"].values,
                "draw": posterior.coords["draw"].values,
                "level": list(levels),
            },
            name=f"{variable}_effects",
        )

    def summarize(self, hdi_prob: float = 0.95) -> List[CoefficientSummary]:
        """Posterior mean, sd, HDI, R-hat and bulk ESS per coefficient."""
        if not 0 < hdi_prob < 1:
            raise ValueError("hdi_prob must fall within (0, 1).")
        results: List[CoefficientSummary] = []
        for name in self.coefficient_names:
            draws = np.asarray(self.coefficient_draws(name).values, dtype=float)
            interval = np.asarray(az.hdi(draws.ravel(), hdi_prob=hdi_prob), dtype=float)
            results.append(
                CoefficientSummary(
                    coefficient=name,
                    mean=float(draws.mean()),
                    sd=float(draws.std(ddof=1)),
                    lower=float(interval[0]),
                    upper=float(interval[1]),
                    r_hat=float(az.rhat(draws)),
                    ess_bulk=float(az.ess(draws, method="bulk")),
                )
            )
        return results

    def summary_frame(self, hdi_prob: float = 0.95) -> pd.DataFrame:
        frame = pd.DataFrame([asdict(summary) for summary in self.summarize(hdi_prob)])
        return frame.set_index("coefficient")


def max_rhat(idata: InferenceData, var_names: Optional[Sequence[str]] = None) -> Dict[str, float]:
    """Maximum R-hat over the elements of each posterior variable."""
    rhat = cast(xr.Dataset, az.rhat(idata, var_names=list(var_names) if var_names else None))
    results: Dict[str, float] = {}
    for name, values in rhat.data_vars.items():
        arr = np.asarray(values, dtype=float)
        results[str(name)] = float(np.max(arr)) if np.all(np.isfinite(arr)) else float("nan")
    return results


def check_convergence(idata: InferenceData, model_name: str, threshold: float = RHAT_THRESHOLD) -> Dict[str, float]:
    """Return per-variable max R-hat, raising ConvergenceError above ``threshold``."""
    rhat = max_rhat(idata)
    offending = {name: value for name, value in rhat.items() if not value <= threshold}
    if offending:
        raise ConvergenceError(model_name, offending, threshold)
    return rhat


class CountModelFitter:
    """Fits Poisson rate models with PyMC and rejects non-converged posteriors."""

    def __init__(self, sampler: Optional[SamplerConfig] = None) -> None:
        self.sampler = sampler or SamplerConfig()
        self.sampler.validate()

    def fit(
        self,
        data: pd.DataFrame,
        formula: ModelFormula,
        priors: PriorSet,
        transform: PredictorTransform,
        name: Optional[str] = None,
    ) -> FittedModel:
        """Sample the posterior for ``formula`` under ``priors`` on the transformed ``data``."""
        model_name = name or f"{formula.describe()} | {priors.name}"
        design = build_design(transform.apply(data, formula.categorical_variables(transform)), formula, transform)
        model = build_model(design, priors)

        cfg = self.sampler
        print(
            f"[fit] {model_name}: {design.n_obs} texts, {len(design.coefficients)} slopes, "
            f"{cfg.chains}×{cfg.draws} draws after {cfg.tune} warm-up"
        )
        with model:
            idata = pm.sample(
                draws=cfg.draws,
                tune=cfg.tune,
                chains=cfg.chains,
                cores=cfg.cores,
                target_accept=cfg.target_accept,
                random_seed=cfg.random_seed,
                return_inferencedata=True,
                progressbar=False,
                idata_kwargs={"log_likelihood": True},
            )

        rhat = check_convergence(idata, model_name, cfg.rhat_threshold)
        print(f"[fit] {model_name}: converged (max R-hat {max(rhat.values()):.3f})")

        return FittedModel(
            name=model_name,
            formula=formula,
            priors=priors,
            transform=transform,
            sampler=cfg,
            idata=idata,
        )


def fit_model(
    data: pd.DataFrame,
    formula: ModelFormula,
    priors: PriorSet,
    transform: PredictorTransform,
    name: Optional[str] = None,
    sampler: Optional[SamplerConfig] = None,
) -> FittedModel:
    """Fit a single model in one call."""
    return CountModelFitter(sampler).fit(data, formula, priors, transform, name=name)


__all__ = [
    "CoefficientSummary",
    "ConvergenceError",
    "CountModelFitter",
    "FittedModel",
    "RHAT_THRESHOLD",
    "SamplerConfig",
    "check_convergence",
    "fit_model",
    "max_rhat",
]
