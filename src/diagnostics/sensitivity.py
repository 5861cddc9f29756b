"""Prior sensitivity: refit one formula under perturbed prior sets and compare estimates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import pandas as pd

from src.corpus.transform import PredictorTransform
from src.modeling.fitting import CountModelFitter, FittedModel, SamplerConfig
from src.modeling.formula import ModelFormula
from src.modeling.priors import ORIGINAL_PRIORS, PriorSet, sensitivity_prior_sets

DEFAULT_TOLERANCE = 0.1
SHIFT_COLUMNS = (
    "prior_set",
    "coefficient",
    "reference_mean",
    "mean",
    "mean_shift",
    "lower_shift",
    "upper_shift",
    "max_shift",
    "exceeds_tolerance",
)


@dataclass(frozen=True)
class SensitivityReport:
    """Shifts of fixed-effect estimates relative to the reference prior fit."""

    reference: str
    tolerance: float
    shifts: pd.DataFrame
    fits: Mapping[str, FittedModel] = field(default_factory=dict)

    @property
    def prior_driven(self) -> List[str]:
        """Coefficients whose estimate or interval moved beyond the tolerance under some prior."""
        flagged = self.shifts[self.shifts["exceeds_tolerance"].astype(bool)]
        return sorted({str(name) for name in flagged["coefficient"]})

    @property
    def robust(self) -> bool:
        return not self.prior_driven

    def caveats(self) -> List[str]:
        messages: List[str] = []
        flagged = self.shifts[self.shifts["exceeds_tolerance"].astype(bool)]
        for row in flagged.itertuples(index=False):
            messages.append(
                f"{row.coefficient} under '{row.prior_set}' prior moved by up to {row.max_shift:.3f} "
                f"(tolerance {self.tolerance}); the '{self.reference}' estimate is prior-driven."
            )
        return messages


def fixed_effect_names(fitted: FittedModel) -> List[str]:
    """Intercept and slope identifiers, excluding group-level standard deviations."""
    return [name for name in fitted.coefficient_names if not name.startswith("sd(")]


def compare_to_reference(
    reference: FittedModel,
    alternatives: Mapping[str, FittedModel],
    tolerance: float = DEFAULT_TOLERANCE,
    hdi_prob: float = 0.95,
) -> SensitivityReport:
    """Measure how far each alternative fit's means and interval bounds sit from the reference."""
    if tolerance <= 0:
        raise ValueError("tolerance must be positive.")
    base = {summary.coefficient: summary for summary in reference.summarize(hdi_prob)}
    names = fixed_effect_names(reference)

    rows = []
    for prior_name in sorted(alternatives):
        fitted = alternatives[prior_name]
        if fitted.formula != reference.formula:
            raise ValueError(f"Fit '{prior_name}' uses a different formula than the reference.")
        current = {summary.coefficient: summary for summary in fitted.summarize(hdi_prob)}
        for name in names:
            ref, alt = base[name], current[name]
            mean_shift = alt.mean - ref.mean
            lower_shift = alt.lower - ref.lower
            upper_shift = alt.upper - ref.upper
            max_shift = max(abs(mean_shift), abs(lower_shift), abs(upper_shift))
            rows.append(
                {
                    "prior_set": prior_name,
                    "coefficient": name,
                    "reference_mean": ref.mean,
                    "mean": alt.mean,
                    "mean_shift": mean_shift,
                    "lower_shift": lower_shift,
                    "upper_shift": upper_shift,
                    "max_shift": max_shift,
                    "exceeds_tolerance": max_shift > tolerance,
                }
            )

    report = SensitivityReport(
        reference=reference.priors.name,
        tolerance=tolerance,
        shifts=pd.DataFrame(rows, columns=list(SHIFT_COLUMNS)),
        fits={reference.priors.name: reference, **alternatives},
    )
    for message in report.caveats():
        print(f"[sensitivity] CAVEAT {message}")
    return report


def run_sensitivity(
    data: pd.DataFrame,
    formula: ModelFormula,
    transform: PredictorTransform,
    base_priors: PriorSet = ORIGINAL_PRIORS,
    sampler: Optional[SamplerConfig] = None,
    tolerance: float = DEFAULT_TOLERANCE,
    reference: Optional[FittedModel] = None,
) -> SensitivityReport:
    """Refit ``formula`` under the uninformative / wider / narrower / more-informative sets."""
    fitter = CountModelFitter(sampler)
    prior_sets = sensitivity_prior_sets(base_priors)

    if reference is None:
        reference = fitter.fit(data, formula, base_priors, transform, name=f"sensitivity-{base_priors.name}")
    elif reference.priors != base_priors or reference.formula != formula:
        raise ValueError("Reference fit must use the base prior set and the same formula.")

    alternatives: Dict[str, FittedModel] = {}
    for name, priors in prior_sets.items():
        if name == base_priors.name:
            continue
        print(f"[sensitivity] Refitting under '{name}' priors")
        alternatives[name] = fitter.fit(data, formula, priors, transform, name=f"sensitivity-{name}")

    return compare_to_reference(reference, alternatives, tolerance=tolerance)


__all__ = [
    "DEFAULT_TOLERANCE",
    "SensitivityReport",
    "compare_to_reference",
    "fixed_effect_names",
    "run_sensitivity",
]
