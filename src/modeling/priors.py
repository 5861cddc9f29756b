"""Normal priors per coefficient and the named prior sets used for sensitivity analysis."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

import numpy as np

INTERCEPT = "Intercept"
_LEVEL_SUFFIX = re.compile(r"\[[^\]]*\]")


def group_sd_name(group: str) -> str:
    """Coefficient identifier for a random-intercept standard deviation."""
    return f"sd({group})"


@dataclass(frozen=True)
class NormalPrior:
    """Normal(mu, sigma) prior on a single coefficient."""

    mu: float = 0.0
    sigma: float = 1.0

    def __post_init__(self) -> None:
        if not np.isfinite(self.mu):
            raise ValueError("Prior mean must be finite.")
        if not np.isfinite(self.sigma) or self.sigma <= 0:
            raise ValueError("Prior standard deviation must be strictly positive.")

    def scaled(self, mean_factor: float = 1.0, sd_factor: float = 1.0) -> "NormalPrior":
        return NormalPrior(mu=self.mu * mean_factor, sigma=self.sigma * sd_factor)


@dataclass(frozen=True)
class PriorSet:
    """Immutable mapping from coefficient identifier to a normal prior.

    Lookup order for a coefficient: an exact entry, then an entry named after
    the variables with level suffixes removed (``"register"`` covers every
    ``"register[...]"`` contrast, ``"language:mode"`` every cell of that
    interaction), then the intercept / group-sd / slope defaults.
    """

    name: str
    priors: Mapping[str, NormalPrior] = field(default_factory=dict)
    intercept: NormalPrior = NormalPrior(0.0, 5.0)
    slope: NormalPrior = NormalPrior(0.0, 1.0)
    group_sd: NormalPrior = NormalPrior(0.0, 1.0)

    def for_coefficient(self, coefficient: str) -> NormalPrior:
        if coefficient in self.priors:
            return self.priors[coefficient]
        stem = _LEVEL_SUFFIX.sub("", coefficient)
        if stem in self.priors:
            return self.priors[stem]
        if coefficient == INTERCEPT:
            return self.intercept
        if coefficient.startswith("sd("):
            return self.group_sd
        return self.slope

    def scaled(self, name: str, mean_factor: float = 1.0, sd_factor: float = 1.0) -> "PriorSet":
        """Derive a new set with every mean and standard deviation rescaled."""
        return PriorSet(
            name=name,
            priors={key: prior.scaled(mean_factor, sd_factor) for key, prior in self.priors.items()},
            intercept=self.intercept.scaled(mean_factor, sd_factor),
            slope=self.slope.scaled(mean_factor, sd_factor),
            group_sd=self.group_sd.scaled(mean_factor, sd_factor),
        )

    def to_dict(self) -> Dict[str, Any]:
        def _pair(prior: NormalPrior) -> Dict[str, float]:
            return {"mu": prior.mu, "sigma": prior.sigma}

        return {
            "name": self.name,
            "priors": {key: _pair(prior) for key, prior in self.priors.items()},
            "intercept": _pair(self.intercept),
            "slope": _pair(self.slope),
            "group_sd": _pair(self.group_sd),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PriorSet":
        def _prior(raw: Mapping[str, Any]) -> NormalPrior:
            return NormalPrior(mu=float(raw["mu"]), sigma=float(raw["sigma"]))

        return cls(
            name=str(payload["name"]),
            priors={str(key): _prior(value) for key, value in payload.get("priors", {}).items()},
            intercept=_prior(payload["intercept"]),
            slope=_prior(payload["slope"]),
            group_sd=_prior(payload["group_sd"]),
        )


# ---------------------------------------------------------------------------
# Literature-informed priors on the log rate per hundred words.

ORIGINAL_PRIORS = PriorSet(
    name="original",
    priors={
        "language": NormalPrior(0.05, 0.1),
        "mode": NormalPrior(0.1, 0.1),
        "register": NormalPrior(0.0, 0.2),
        "density_z": NormalPrior(-0.1, 0.1),
        "language:mode": NormalPrior(0.0, 0.1),
        "language:density_z": NormalPrior(0.0, 0.1),
    },
    intercept=NormalPrior(2.5, 0.5),
    slope=NormalPrior(0.0, 0.2),
    group_sd=NormalPrior(0.2, 0.1),
)

FLAT_PRIORS = PriorSet(
    name="flat",
    intercept=NormalPrior(0.0, 10.0),
    slope=NormalPrior(0.0, 10.0),
    group_sd=NormalPrior(0.0, 5.0),
)

SENSITIVITY_SCALING: Mapping[str, tuple[float, float]] = {
    "uninformative": (0.5, 1.0),
    "wider": (1.0, 2.0),
    "narrower": (1.0, 0.5),
    "more_informative": (1.5, 1.0),
}


def sensitivity_prior_sets(base: PriorSet = ORIGINAL_PRIORS) -> Dict[str, PriorSet]:
    """Return the base set plus its four perturbed variants keyed by name."""
    sets: Dict[str, PriorSet] = {base.name: base}
    for name, (mean_factor, sd_factor) in SENSITIVITY_SCALING.items():
        sets[name] = base.scaled(name, mean_factor=mean_factor, sd_factor=sd_factor)
    return sets


PRIOR_SETS: Dict[str, PriorSet] = {**sensitivity_prior_sets(ORIGINAL_PRIORS), FLAT_PRIORS.name: FLAT_PRIORS}


def get_prior_set(name: str) -> PriorSet:
    """Return the registered prior set called ``name``."""
    try:
        return PRIOR_SETS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown prior set '{name}'. Available: {list(PRIOR_SETS)}") from exc


__all__ = [
    "FLAT_PRIORS",
    "INTERCEPT",
    "NormalPrior",
    "ORIGINAL_PRIORS",
    "PRIOR_SETS",
    "PriorSet",
    "SENSITIVITY_SCALING",
    "get_prior_set",
    "group_sd_name",
    "sensitivity_prior_sets",
]
