from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from .config import (
    CATEGORICAL_COLUMNS,
    OUTCOME_COLUMNS,
    REGISTER_COLUMNS,
    TEXT_COLUMNS,
    ColumnMap,
    RegisterColumnMap,
)

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xls")


def read_table(path: Path, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """Read a CSV or spreadsheet file into a DataFrame."""
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        return pd.read_excel(path, sheet_name=sheet_name or 0)
    if suffix in (".csv", ".txt"):
        return pd.read_csv(path)
    if suffix == ".tsv":
        return pd.read_csv(path, sep="\t")
    raise ValueError(f"Unsupported table format '{suffix}' for {path}")


def load_texts(
    path: Path,
    columns: Optional[ColumnMap] = None,
    sheet_name: Optional[str] = None,
) -> pd.DataFrame:
    """Load the per-text table and normalize it to canonical column names."""
    frame = read_table(path, sheet_name=sheet_name)
    return normalize_texts(frame, columns)


def normalize_texts(frame: pd.DataFrame, columns: Optional[ColumnMap] = None) -> pd.DataFrame:
    """Rename, type-check and clean a raw per-text table."""
    mapping: Mapping[str, str] = columns or TEXT_COLUMNS
    renamed = _select_columns(frame, mapping)

    for column in CATEGORICAL_COLUMNS:
        if renamed[column].isna().any():
            raise ValueError(f"Column '{column}' contains missing categories.")
        renamed[column] = renamed[column].astype(str).str.strip()

    tokens = pd.to_numeric(renamed["tokens"], errors="raise")
    if (tokens <= 0).any() or not np.allclose(tokens, np.round(tokens)):
        raise ValueError("Token counts must be positive integers.")
    renamed["tokens"] = tokens.astype(int)

    for column in OUTCOME_COLUMNS:
        counts = pd.to_numeric(renamed[column], errors="raise")
        if counts.isna().any() or (counts < 0).any() or not np.allclose(counts, np.round(counts)):
            raise ValueError(f"Column '{column}' must hold non-negative integer counts.")
        renamed[column] = counts.astype(int)

    density = pd.to_numeric(renamed["lexical_density"], errors="raise").astype(float)
    if not np.all(np.isfinite(density)):
        raise ValueError("Lexical density contains non-finite entries.")
    renamed["lexical_density"] = density

    return renamed.reset_index(drop=True)


def load_register_summary(
    path: Path,
    columns: Optional[RegisterColumnMap] = None,
    sheet_name: Optional[str] = None,
) -> pd.DataFrame:
    """Load the register-level aggregate table used for plotting."""
    frame = read_table(path, sheet_name=sheet_name)
    mapping: Mapping[str, str] = columns or REGISTER_COLUMNS
    renamed = _select_columns(frame, mapping)
    renamed["register"] = renamed["register"].astype(str).str.strip()
    renamed["mode"] = renamed["mode"].astype(str).str.strip()
    renamed["vp_rate"] = pd.to_numeric(renamed["vp_rate"], errors="raise").astype(float)
    renamed["density"] = pd.to_numeric(renamed["density"], errors="raise").astype(float)
    return renamed.reset_index(drop=True)


def _select_columns(frame: pd.DataFrame, mapping: Mapping[str, str]) -> pd.DataFrame:
    missing = [source for source in mapping.values() if source not in frame.columns]
    if missing:
        raise ValueError(f"Input table is missing columns: {', '.join(missing)}")
    inverse = {source: canonical for canonical, source in mapping.items()}
    return frame[list(mapping.values())].rename(columns=inverse).copy()


__all__ = [
    "load_register_summary",
    "load_texts",
    "normalize_texts",
    "read_table",
]
