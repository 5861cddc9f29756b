"""Directional posterior hypotheses and evidence ratios."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Tuple, Union

import numpy as np

from src.modeling.fitting import FittedModel

Direction = Literal[">", "<"]
_HYPOTHESIS = re.compile(r"^\s*(?P<left>.+?)\s*(?P<op>[<>])\s*(?P<right>.+?)\s*$")
_LEVEL_REF = re.compile(r"^(?P<variable>[^\[\]:]+)\[(?P<level>[^\]]+)\]$")


@dataclass(frozen=True)
class HypothesisResult:
    """Posterior evidence for a one-sided inequality."""

    hypothesis: str
    estimate: float
    est_error: float
    lower: float
    upper: float
    post_prob: float
    evidence_ratio: float

    @property
    def degenerate(self) -> bool:
        """True when one side of the inequality has no posterior mass."""
        return self.evidence_ratio == 0.0 or np.isinf(self.evidence_ratio)


def evidence_ratio(
    left: Union[np.ndarray, float],
    right: Union[np.ndarray, float],
    direction: Direction = ">",
) -> float:
    """Ratio of draws satisfying ``left <direction> right`` to draws that do not.

    Returns ``inf`` when every draw satisfies the inequality and ``0.0`` when
    none does; neither case is replaced by a finite stand-in.
    """
    hits = _satisfied(left, right, direction)
    if hits.size == 0:
        raise ValueError("Cannot compute an evidence ratio without posterior draws.")
    n_hit = int(hits.sum())
    n_miss = int(hits.size - n_hit)
    if n_miss == 0:
        return float("inf")
    return n_hit / n_miss


def parse_hypothesis(text: str) -> Tuple[str, Direction, str]:
    """Split ``"A > B"`` into its operands and direction."""
    match = _HYPOTHESIS.match(text)
    if match is None:
        raise ValueError(f"Hypothesis must look like 'A > B' or 'A < B', got {text!r}")
    op = match.group("op")
    direction: Direction = ">" if op == ">" else "<"
    return match.group("left"), direction, match.group("right")


def operand_draws(fitted: FittedModel, token: str) -> np.ndarray:
    """Flattened draws for a coefficient identifier, a level effect or a numeric constant."""
    try:
        return np.asarray([float(token)])
    except ValueError:
        pass

    if token in fitted.coefficient_names:
        return np.asarray(fitted.coefficient_draws(token).values, dtype=float).ravel()

    match = _LEVEL_REF.match(token)
    if match is not None:
        variable, level = match.group("variable"), match.group("level")
        levels = fitted.transform.levels.get(variable, ())
        if level in levels:
            effects = fitted.level_effects(variable).sel(level=level)
            return np.asarray(effects.values, dtype=float).ravel()

    raise KeyError(f"Unknown operand '{token}' for model '{fitted.name}'. Known coefficients: {fitted.coefficient_names}")


def evaluate_hypothesis(fitted: FittedModel, hypothesis: str, ci: float = 0.95) -> HypothesisResult:
    """Evaluate a directional hypothesis such as ``"mode[spoken] > language[English]"``."""
    if not 0 < ci < 1:
        raise ValueError("ci must fall within (0, 1).")
    left_token, direction, right_token = parse_hypothesis(hypothesis)
    left = operand_draws(fitted, left_token)
    right = operand_draws(fitted, right_token)

    difference = np.broadcast_arrays(left, right)
    diff = difference[0] - difference[1]
    if direction == "<":
        diff = -diff
    tail = (1.0 - ci) / 2.0
    lower, upper = np.quantile(diff, [tail, 1.0 - tail])
    hits = _satisfied(left, right, direction)

    return HypothesisResult(
        hypothesis=hypothesis.strip(),
        estimate=float(diff.mean()),
        est_error=float(diff.std(ddof=1)) if diff.size > 1 else 0.0,
        lower=float(lower),
        upper=float(upper),
        post_prob=float(hits.mean()),
        evidence_ratio=evidence_ratio(left, right, direction),
    )


def _satisfied(left: Union[np.ndarray, float], right: Union[np.ndarray, float], direction: Direction) -> np.ndarray:
    left_arr, right_arr = np.broadcast_arrays(np.asarray(left, dtype=float), np.asarray(right, dtype=float))
    if direction == ">":
        return (left_arr > right_arr).ravel()
    if direction == "<":
        return (left_arr < right_arr).ravel()
    raise ValueError(f"Unsupported direction {direction!r}")


__all__ = [
    "Direction",
    "HypothesisResult",
    "evidence_ratio",
    "operand_draws",
    "parse_hypothesis",
    "evaluate_hypothesis",
]
