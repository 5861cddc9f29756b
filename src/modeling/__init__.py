"""Structured formulas, priors and PyMC fitting for verb-phrase rate models."""

from .builders import DesignMatrix, build_design, build_model
from .fitting import (
    CoefficientSummary,
    ConvergenceError,
    CountModelFitter,
    FittedModel,
    SamplerConfig,
    check_convergence,
    fit_model,
)
from .formula import FormulaError, ModelFormula
from .persistence import has_artifact, load_fitted, load_or_fit, save_fitted
from .priors import (
    FLAT_PRIORS,
    ORIGINAL_PRIORS,
    PRIOR_SETS,
    NormalPrior,
    PriorSet,
    get_prior_set,
    sensitivity_prior_sets,
)

__all__ = [
    "CoefficientSummary",
    "ConvergenceError",
    "CountModelFitter",
    "DesignMatrix",
    "FLAT_PRIORS",
    "FittedModel",
    "FormulaError",
    "ModelFormula",
    "NormalPrior",
    "ORIGINAL_PRIORS",
    "PRIOR_SETS",
    "PriorSet",
    "SamplerConfig",
    "build_design",
    "build_model",
    "check_convergence",
    "fit_model",
    "get_prior_set",
    "has_artifact",
    "load_fitted",
    "load_or_fit",
    "save_fitted",
    "sensitivity_prior_sets",
]
