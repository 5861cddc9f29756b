"""Design-matrix builders and PyMC model construction helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import pymc as pm

from src.corpus.transform import PredictorTransform

from .formula import ModelFormula
from .priors import INTERCEPT, PriorSet, group_sd_name


def group_sd_var(group: str) -> str:
    return f"sd_{group}"


def group_offset_var(group: str) -> str:
    return f"r_{group}"


@dataclass(frozen=True)
class DesignMatrix:
    """Numeric inputs for the Poisson model, one row per text."""

    X: np.ndarray
    coefficients: Tuple[str, ...]
    log_exposure: np.ndarray
    outcome: Optional[np.ndarray]
    group: Optional[str]
    group_ids: Optional[np.ndarray]
    group_labels: Tuple[str, ...]

    @property
    def n_obs(self) -> int:
        return int(self.X.shape[0])


def fixed_effect_columns(
    table: pd.DataFrame,
    formula: ModelFormula,
    transform: PredictorTransform,
) -> Tuple[np.ndarray, Tuple[str, ...]]:
    """Expand main effects and interactions into named numeric columns."""
    columns: List[np.ndarray] = []
    names: List[str] = []
    per_term: dict[str, List[Tuple[str, np.ndarray]]] = {}

    for term in formula.terms:
        if transform.is_categorical(term):
            source = transform.contrast_columns(term)
        else:
            source = (term,)
        entries = [(name, np.asarray(table[name], dtype=float)) for name in source]
        per_term[term] = entries
        for name, values in entries:
            names.append(name)
            columns.append(values)

    for left, right in formula.interactions:
        for left_name, left_values in per_term[left]:
            for right_name, right_values in per_term[right]:
                names.append(f"{left_name}:{right_name}")
                columns.append(left_values * right_values)

    if columns:
        X = np.column_stack(columns)
    else:
        X = np.zeros((len(table), 0), dtype=float)
    if not np.all(np.isfinite(X)):
        raise ValueError("Design matrix contains non-finite entries.")
    return X, tuple(names)


def build_design(
    table: pd.DataFrame,
    formula: ModelFormula,
    transform: PredictorTransform,
    require_outcome: bool = True,
) -> DesignMatrix:
    """Convert a transformed table into arrays ready for PyMC."""
    if table.empty:
        raise ValueError("No texts supplied for modelling.")
    formula.validate(table.columns, transform, require_outcome=require_outcome)

    X, names = fixed_effect_columns(table, formula, transform)

    if formula.offset is not None:
        exposure = np.asarray(table[formula.offset], dtype=float)
        if np.any(exposure <= 0):
            raise ValueError("Exposure values must be strictly positive.")
        log_exposure = np.log(exposure)
    else:
        log_exposure = np.zeros(len(table), dtype=float)

    outcome: Optional[np.ndarray] = None
    if require_outcome:
        outcome = np.asarray(table[formula.outcome], dtype=np.int64)
        if np.any(outcome < 0):
            raise ValueError("Outcome counts must be non-negative.")

    group_ids: Optional[np.ndarray] = None
    group_labels: Tuple[str, ...] = ()
    if formula.group is not None:
        group_ids = transform.encode_levels(formula.group, table[formula.group])
        group_labels = tuple(transform.levels[formula.group])

    return DesignMatrix(
        X=X,
        coefficients=names,
        log_exposure=log_exposure,
        outcome=outcome,
        group=formula.group,
        group_ids=group_ids,
        group_labels=group_labels,
    )


def coefficient_priors(coefficients: Sequence[str], priors: PriorSet) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorize the prior means and standard deviations for the slope vector."""
    resolved = [priors.for_coefficient(name) for name in coefficients]
    mus = np.asarray([prior.mu for prior in resolved], dtype=float)
    sigmas = np.asarray([prior.sigma for prior in resolved], dtype=float)
    return mus, sigmas


def build_model(design: DesignMatrix, priors: PriorSet) -> pm.Model:
    """Create the PyMC Poisson model with a log link and exposure offset."""
    if design.outcome is None:
        raise ValueError("A design with observed outcomes is required to build the model.")

    coords: dict[str, Sequence[object]] = {
        "obs_id": list(range(design.n_obs)),
        "coef": list(design.coefficients),
    }
    if design.group is not None:
        coords[design.group] = list(design.group_labels)

    intercept_prior = priors.for_coefficient(INTERCEPT)
    with pm.Model(coords=coords) as model:
        log_exposure = pm.Data("log_exposure", design.log_exposure, dims="obs_id")
        intercept = pm.Normal(INTERCEPT, mu=intercept_prior.mu, sigma=intercept_prior.sigma)
        eta = intercept + log_exposure

        if design.coefficients:
            X = pm.Data("X", design.X, dims=("obs_id", "coef"))
            mus, sigmas = coefficient_priors(design.coefficients, priors)
            beta = pm.Normal("beta", mu=mus, sigma=sigmas, dims="coef")
            eta = eta + pm.math.dot(X, beta)

        if design.group is not None and design.group_ids is not None:
            sd_prior = priors.for_coefficient(group_sd_name(design.group))
            sd = pm.TruncatedNormal(
                group_sd_var(design.group),
                mu=sd_prior.mu,
                sigma=sd_prior.sigma,
                lower=0.0,
            )
            z = pm.Normal(f"z_{design.group}", mu=0.0, sigma=1.0, dims=design.group)
            offsets = pm.Deterministic(group_offset_var(design.group), z * sd, dims=design.group)
            group_idx = pm.Data(f"{design.group}_idx", design.group_ids, dims="obs_id")
            eta = eta + offsets[group_idx]

        pm.Poisson("y", mu=pm.math.exp(eta), observed=design.outcome, dims="obs_id")
    return model


__all__ = [
    "DesignMatrix",
    "build_design",
    "build_model",
    "coefficient_priors",
    "fixed_effect_columns",
    "group_offset_var",
    "group_sd_var",
]
