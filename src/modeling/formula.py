"""Structured model formulas validated against the transformed table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection, Dict, Mapping, Optional, Tuple

from src.corpus.config import LENGTH_100, OUTCOME_COLUMNS
from src.corpus.transform import PredictorTransform

Interaction = Tuple[str, str]


class FormulaError(ValueError):
    """Raised when a formula references unknown columns or is malformed."""


@dataclass(frozen=True)
class ModelFormula:
    """Fixed terms, pairwise interactions, an optional random intercept and an exposure offset."""

    outcome: str = "vp_total"
    terms: Tuple[str, ...] = ()
    interactions: Tuple[Interaction, ...] = ()
    group: Optional[str] = None
    offset: Optional[str] = LENGTH_100

    def validate(
        self,
        columns: Collection[str],
        transform: PredictorTransform,
        require_outcome: bool = True,
    ) -> None:
        """Check every referenced variable exists before any fit is attempted."""
        if self.outcome not in OUTCOME_COLUMNS:
            raise FormulaError(f"Outcome '{self.outcome}' is not one of {OUTCOME_COLUMNS}.")
        if require_outcome and self.outcome not in columns:
            raise FormulaError(f"Outcome column '{self.outcome}' is missing from the data.")
        if len(set(self.terms)) != len(self.terms):
            raise FormulaError("Fixed terms must not repeat.")

        for term in self.terms:
            self._require_predictor(term, columns, transform)

        seen: set[frozenset[str]] = set()
        for pair in self.interactions:
            if len(pair) != 2 or pair[0] == pair[1]:
                raise FormulaError(f"Interaction {pair!r} must name two distinct predictors.")
            for variable in pair:
                if variable not in self.terms:
                    raise FormulaError(f"Interaction {pair!r} requires main effect '{variable}'.")
            key = frozenset(pair)
            if key in seen:
                raise FormulaError(f"Interaction {pair!r} appears twice.")
            seen.add(key)

        if self.group is not None:
            if not transform.is_categorical(self.group):
                raise FormulaError(f"Grouping factor '{self.group}' must be categorical.")
            if self.group not in columns:
                raise FormulaError(f"Grouping factor '{self.group}' is missing from the data.")
            if self.group in self.terms:
                raise FormulaError(f"'{self.group}' cannot be both a fixed term and a grouping factor.")
            if len(transform.levels[self.group]) < 2:
                raise FormulaError(f"Grouping factor '{self.group}' has a single level in the data.")

        if self.offset is not None and self.offset not in columns:
            raise FormulaError(f"Offset column '{self.offset}' is missing from the data.")

    def categorical_variables(self, transform: PredictorTransform) -> Tuple[str, ...]:
        """Categorical fixed terms plus the grouping factor, in formula order."""
        used = [term for term in self.terms if transform.is_categorical(term)]
        if self.group is not None:
            used.append(self.group)
        return tuple(used)

    def describe(self) -> str:
        """Render an lme4-style formula string for reports."""
        parts = list(self.terms)
        parts.extend(f"{a}:{b}" for a, b in self.interactions)
        if self.offset is not None:
            parts.append(f"offset(log({self.offset}))")
        if self.group is not None:
            parts.append(f"(1 | {self.group})")
        rhs = " + ".join(parts) if parts else "1"
        return f"{self.outcome} ~ {rhs}"

    def with_outcome(self, outcome: str) -> "ModelFormula":
        return ModelFormula(
            outcome=outcome,
            terms=self.terms,
            interactions=self.interactions,
            group=self.group,
            offset=self.offset,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "terms": list(self.terms),
            "interactions": [list(pair) for pair in self.interactions],
            "group": self.group,
            "offset": self.offset,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ModelFormula":
        return cls(
            outcome=str(payload["outcome"]),
            terms=tuple(str(term) for term in payload.get("terms", ())),
            interactions=tuple((str(a), str(b)) for a, b in payload.get("interactions", ())),
            group=payload.get("group"),
            offset=payload.get("offset"),
        )

    @staticmethod
    def _require_predictor(term: str, columns: Collection[str], transform: PredictorTransform) -> None:
        if transform.is_categorical(term):
            if len(transform.levels[term]) < 2:
                raise FormulaError(f"Categorical predictor '{term}' has a single level: {transform.levels[term]}")
            missing = [name for name in transform.contrast_columns(term) if name not in columns]
            if missing:
                raise FormulaError(f"Contrast columns for '{term}' are missing: {', '.join(missing)}")
            return
        if term not in columns:
            raise FormulaError(f"Predictor '{term}' is missing from the data.")


__all__ = ["FormulaError", "Interaction", "ModelFormula"]
