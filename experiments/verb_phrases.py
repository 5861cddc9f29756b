from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from src.corpus import PredictorTransform, load_texts
from src.diagnostics import (
    ComparisonResult,
    HypothesisResult,
    SensitivityReport,
    compare_models,
    evaluate_hypothesis,
    format_checks,
    posterior_predictive_check,
    prior_predictive_summary,
    run_sensitivity,
)
from src.modeling import (
    CountModelFitter,
    FittedModel,
    ModelFormula,
    PriorSet,
    SamplerConfig,
    load_or_fit,
    save_fitted,
)

# Nested sequence from the language-only model up to the full model, plus a
# variant that treats register as a fixed effect instead of a random intercept.
CANDIDATE_FORMULAS: Dict[str, ModelFormula] = {
    "m1_language": ModelFormula(terms=("language",)),
    "m2_mode": ModelFormula(terms=("language", "mode")),
    "m3_density": ModelFormula(terms=("language", "mode", "density_z")),
    "m4_language_mode": ModelFormula(
        terms=("language", "mode", "density_z"),
        interactions=(("language", "mode"),),
    ),
    "m5_language_density": ModelFormula(
        terms=("language", "mode", "density_z"),
        interactions=(("language", "mode"), ("language", "density_z")),
    ),
    "m6_register_random": ModelFormula(
        terms=("language", "mode", "density_z"),
        interactions=(("language", "mode"), ("language", "density_z")),
        group="register",
    ),
    "m7_register_fixed": ModelFormula(
        terms=("language", "mode", "density_z", "register"),
        interactions=(("language", "mode"), ("language", "density_z")),
    ),
}
FULL_MODEL = "m6_register_random"


def get_formula(key: str, outcome: str = "vp_total") -> ModelFormula:
    try:
        formula = CANDIDATE_FORMULAS[key]
    except KeyError as exc:
        raise ValueError(f"Unknown model '{key}'. Available: {list(CANDIDATE_FORMULAS)}") from exc
    return formula.with_outcome(outcome)


def prepare_corpus(path: Path, sheet_name: Optional[str] = None) -> Tuple[pd.DataFrame, PredictorTransform]:
    """Load the per-text table and freeze the predictor transform over the full sample."""
    texts = load_texts(path, sheet_name=sheet_name)
    transform = PredictorTransform.fit(texts)
    levels = ", ".join(f"{name}={len(values)}" for name, values in transform.levels.items())
    print(f"[data] Loaded {len(texts)} texts from {path} ({levels})")
    return texts, transform


def model_name(key: str, priors: PriorSet, outcome: str) -> str:
    return f"{key}-{outcome}-{priors.name}"


def fit_candidate(
    texts: pd.DataFrame,
    transform: PredictorTransform,
    key: str,
    priors: PriorSet,
    sampler: SamplerConfig,
    model_root: Optional[Path] = None,
    reuse: bool = False,
    outcome: str = "vp_total",
) -> FittedModel:
    """Fit one candidate; with ``reuse`` a stored artifact is loaded instead of refitting."""
    formula = get_formula(key, outcome)
    name = model_name(key, priors, outcome)
    if reuse:
        if model_root is None:
            raise ValueError("reuse requires a model_root to load artifacts from.")
        return load_or_fit(model_root, texts, formula, priors, transform, name=name, sampler=sampler)

    fitted = CountModelFitter(sampler).fit(texts, formula, priors, transform, name=name)
    if model_root is not None:
        save_fitted(fitted, model_root)
    return fitted


def run_comparison(
    texts: pd.DataFrame,
    transform: PredictorTransform,
    priors: PriorSet,
    sampler: SamplerConfig,
    keys: Optional[Sequence[str]] = None,
    model_root: Optional[Path] = None,
    reuse: bool = False,
    outcome: str = "vp_total",
) -> Tuple[ComparisonResult, Dict[str, FittedModel]]:
    """Fit every candidate and rank them by PSIS-LOO."""
    selected = list(keys or CANDIDATE_FORMULAS)
    fits: Dict[str, FittedModel] = {}
    for key in selected:
        print(f"[compare] Fitting {key}: {get_formula(key, outcome).describe()}")
        fits[key] = fit_candidate(texts, transform, key, priors, sampler, model_root, reuse, outcome)
    result = compare_models(fits)
    print(f"[compare] Recommended model: {result.best}")
    if result.indistinguishable:
        print(f"[compare] Within one standard error of the best: {', '.join(result.indistinguishable)}")
    return result, fits


def run_diagnostics(
    fitted: FittedModel,
    texts: pd.DataFrame,
    random_seed: Optional[int] = None,
) -> Dict[str, pd.DataFrame]:
    """Coefficient summary, prior predictive quantiles and posterior predictive checks."""
    summary = fitted.summary_frame()
    prior_check = prior_predictive_summary(
        texts, fitted.formula, fitted.priors, fitted.transform, random_seed=random_seed
    )
    posterior_check = format_checks(posterior_predictive_check(fitted, texts, random_seed=random_seed))
    for row in posterior_check.itertuples():
        if row.p_value < 0.025 or row.p_value > 0.975:
            print(
                f"[ppc] {fitted.name}: observed {row.Index} ({row.observed:.2f}) is extreme under the "
                f"posterior predictive (p={row.p_value:.3f})"
            )
    return {"summary": summary, "prior_predictive": prior_check, "posterior_predictive": posterior_check}


def run_prior_sensitivity(
    texts: pd.DataFrame,
    transform: PredictorTransform,
    priors: PriorSet,
    sampler: SamplerConfig,
    key: str = FULL_MODEL,
    tolerance: float = 0.1,
    outcome: str = "vp_total",
) -> SensitivityReport:
    formula = get_formula(key, outcome)
    report = run_sensitivity(texts, formula, transform, base_priors=priors, sampler=sampler, tolerance=tolerance)
    if report.robust:
        print(f"[sensitivity] {key}: estimates stable within ±{tolerance} under all prior sets")
    return report


def run_hypotheses(fitted: FittedModel, hypotheses: Sequence[str]) -> List[HypothesisResult]:
    results: List[HypothesisResult] = []
    for hypothesis in hypotheses:
        result = evaluate_hypothesis(fitted, hypothesis)
        note = " (degenerate: one side has no posterior mass)" if result.degenerate else ""
        print(
            f"[hypothesis] {result.hypothesis}: P={result.post_prob:.3f}, "
            f"evidence ratio={result.evidence_ratio}{note}"
        )
        results.append(result)
    return results


__all__ = [
    "CANDIDATE_FORMULAS",
    "FULL_MODEL",
    "fit_candidate",
    "get_formula",
    "model_name",
    "prepare_corpus",
    "run_comparison",
    "run_diagnostics",
    "run_hypotheses",
    "run_prior_sensitivity",
]
