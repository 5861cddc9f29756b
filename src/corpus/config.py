"""Static configuration for corpus tables and derived predictor columns."""

from __future__ import annotations

from pathlib import Path
from typing import Tuple, TypedDict


class ColumnMap(TypedDict):
    language: str
    register: str
    mode: str
    tokens: str
    vp_total: str
    vp_finite: str
    vp_nonfinite: str
    lexical_density: str


class RegisterColumnMap(TypedDict):
    register: str
    mode: str
    vp_rate: str
    density: str


# Default locations used by the Typer CLI; callers may override these.
DEFAULT_TEXT_TABLE = Path("data/raw/texts.xlsx")
DEFAULT_REGISTER_TABLE = Path("data/raw/registers.xlsx")
DEFAULT_MODEL_ROOT = Path("data/models")

# ---------------------------------------------------------------------------
# Spreadsheet headers mapped onto the canonical column names used downstream.

TEXT_COLUMNS: ColumnMap = {
    "language": "Language",
    "register": "Register",
    "mode": "Mode",
    "tokens": "Tokens",
    "vp_total": "VP",
    "vp_finite": "VP_finite",
    "vp_nonfinite": "VP_nonfinite",
    "lexical_density": "LexicalDensity",
}

REGISTER_COLUMNS: RegisterColumnMap = {
    "register": "Register",
    "mode": "Mode",
    "vp_rate": "VP_per_100",
    "density": "LexicalDensity",
}

CATEGORICAL_COLUMNS: Tuple[str, ...] = ("language", "register", "mode")
OUTCOME_COLUMNS: Tuple[str, ...] = ("vp_total", "vp_finite", "vp_nonfinite")

# Derived columns produced by PredictorTransform.
DENSITY_Z = "density_z"
LENGTH_100 = "length_100"
WORDS_PER_UNIT = 100.0


__all__ = [
    "CATEGORICAL_COLUMNS",
    "ColumnMap",
    "DEFAULT_MODEL_ROOT",
    "DEFAULT_REGISTER_TABLE",
    "DEFAULT_TEXT_TABLE",
    "DENSITY_Z",
    "LENGTH_100",
    "OUTCOME_COLUMNS",
    "REGISTER_COLUMNS",
    "RegisterColumnMap",
    "TEXT_COLUMNS",
    "WORDS_PER_UNIT",
]
