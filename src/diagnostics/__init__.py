"""Posterior diagnostics: predictive checks, LOO comparison, hypotheses and prior sensitivity."""

from .comparison import ComparisonResult, compare_models, format_comparison, rank_elpd
from .hypothesis import HypothesisResult, evaluate_hypothesis, evidence_ratio
from .predictive import (
    PredictiveCheck,
    format_checks,
    posterior_predictive_check,
    predict,
    prior_predictive_summary,
)
from .sensitivity import SensitivityReport, compare_to_reference, run_sensitivity

__all__ = [
    "ComparisonResult",
    "HypothesisResult",
    "PredictiveCheck",
    "SensitivityReport",
    "compare_models",
    "compare_to_reference",
    "evaluate_hypothesis",
    "evidence_ratio",
    "format_checks",
    "format_comparison",
    "posterior_predictive_check",
    "predict",
    "prior_predictive_summary",
    "rank_elpd",
    "run_sensitivity",
]
