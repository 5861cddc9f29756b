"""Frozen predictor transform: density z-scores, exposure units and sum-to-zero contrasts.

The transform is learned once over the full analysis sample and reused for
every model fit and every prediction, so that coefficients from different
models stay on the same scale.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import CATEGORICAL_COLUMNS, DENSITY_Z, LENGTH_100, WORDS_PER_UNIT


class UnknownCategoryError(ValueError):
    """Raised when a categorical level was not present in the fitted sample."""


def contrast_name(variable: str, level: str) -> str:
    """Coefficient identifier for the contrast column of ``level``."""
    return f"{variable}[{level}]"


def sum_contrasts(levels: Sequence[str]) -> np.ndarray:
    """Return the k × (k-1) sum-to-zero coding matrix; the last level is omitted.

    Row ``i`` holds the contrast values for ``levels[i]``.
    """
    k = len(levels)
    if k < 2:
        raise ValueError("Sum coding needs at least two levels.")
    matrix = np.zeros((k, k - 1), dtype=float)
    matrix[: k - 1, :] = np.eye(k - 1)
    matrix[k - 1, :] = -1.0
    return matrix


def expand_level_effects(coefficients: np.ndarray) -> np.ndarray:
    """Append the omitted level's effect (minus the sum of the others) along the last axis."""
    arr = np.asarray(coefficients, dtype=float)
    omitted = -arr.sum(axis=-1, keepdims=True)
    return np.concatenate([arr, omitted], axis=-1)


@dataclass(frozen=True)
class PredictorTransform:
    """Frozen parameters of the predictor transform."""

    density_mean: float
    density_sd: float
    levels: Mapping[str, Tuple[str, ...]]

    @classmethod
    def fit(
        cls,
        table: pd.DataFrame,
        categorical: Iterable[str] = CATEGORICAL_COLUMNS,
    ) -> "PredictorTransform":
        """Learn density moments (ddof=1) and the sorted level sets from ``table``.

        A categorical column with a single level is recorded as is; it only
        becomes an error once a formula uses it as a predictor.
        """
        if len(table) < 2:
            raise ValueError("At least two texts are required to standardize density.")

        density = np.asarray(table["lexical_density"], dtype=float)
        mean = float(density.mean())
        sd = float(density.std(ddof=1))
        if not np.isfinite(sd) or sd <= 0:
            raise ValueError("Lexical density has zero variance; cannot compute z-scores.")

        levels: Dict[str, Tuple[str, ...]] = {}
        for column in categorical:
            levels[column] = tuple(sorted({str(value) for value in table[column]}))

        return cls(density_mean=mean, density_sd=sd, levels=levels)

    def apply(self, table: pd.DataFrame, variables: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """Derive density z-scores, hundred-word units and contrast columns.

        ``variables`` restricts encoding (and the unknown-level check) to the
        categorical predictors a model actually uses; by default all are encoded.
        """
        selected = set(self.levels) if variables is None else set(variables)
        out = table.copy()
        if "lexical_density" in out:
            density = np.asarray(out["lexical_density"], dtype=float)
            out[DENSITY_Z] = (density - self.density_mean) / self.density_sd

        tokens = np.asarray(out["tokens"], dtype=float)
        if np.any(tokens <= 0):
            raise ValueError("Token counts must be positive to form an exposure term.")
        out[LENGTH_100] = tokens / WORDS_PER_UNIT

        for variable, levels in self.levels.items():
            if variable not in selected or variable not in out:
                continue
            codes = self.encode_levels(variable, out[variable])
            if len(levels) < 2:
                continue
            contrasts = sum_contrasts(levels)[codes]
            for col_idx, level in enumerate(levels[:-1]):
                out[contrast_name(variable, level)] = contrasts[:, col_idx]
        return out

    def encode_levels(self, variable: str, values: Iterable[Any]) -> np.ndarray:
        """Map raw category values to integer level indices, rejecting unseen levels."""
        levels = self._levels_for(variable)
        index = {level: idx for idx, level in enumerate(levels)}
        raw = [str(value) for value in values]
        unknown = sorted({value for value in raw if value not in index})
        if unknown:
            raise UnknownCategoryError(
                f"Unknown category for '{variable}': {', '.join(unknown)}. Known levels: {list(levels)}"
            )
        return np.asarray([index[value] for value in raw], dtype=int)

    def contrast_columns(self, variable: str) -> Tuple[str, ...]:
        """Names of the k-1 contrast columns generated for ``variable``."""
        return tuple(contrast_name(variable, level) for level in self._levels_for(variable)[:-1])

    def reference_level(self, variable: str) -> str:
        """The omitted level whose effect is implied by the others."""
        return self._levels_for(variable)[-1]

    def is_categorical(self, variable: str) -> bool:
        return variable in self.levels

    def to_dict(self) -> Dict[str, Any]:
        return {
            "density_mean": self.density_mean,
            "density_sd": self.density_sd,
            "levels": {key: list(value) for key, value in self.levels.items()},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PredictorTransform":
        return cls(
            density_mean=float(payload["density_mean"]),
            density_sd=float(payload["density_sd"]),
            levels={str(key): tuple(str(v) for v in value) for key, value in payload["levels"].items()},
        )

    def _levels_for(self, variable: str) -> Tuple[str, ...]:
        try:
            return self.levels[variable]
        except KeyError as exc:
            raise ValueError(f"'{variable}' is not a categorical predictor of this transform.") from exc


__all__ = [
    "PredictorTransform",
    "UnknownCategoryError",
    "contrast_name",
    "expand_level_effects",
    "sum_contrasts",
]
