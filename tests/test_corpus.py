"""Tests for corpus loading and the frozen predictor transform."""

from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.corpus.config import DENSITY_Z, LENGTH_100, TEXT_COLUMNS
from src.corpus.loader import load_register_summary, load_texts, normalize_texts, read_table
from src.corpus.transform import (
    PredictorTransform,
    UnknownCategoryError,
    contrast_name,
    expand_level_effects,
    sum_contrasts,
)


# ---------------------------------------------------------------------------
# Helper fixtures and utilities


def _raw_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Language": ["English", "German", "English", "German", "English", "German"],
            "Register": ["news", "news", "fiction", "fiction", "conversation", "conversation"],
            "Mode": ["written", "written", "written", "written", "spoken", "spoken"],
            "Tokens": [500, 420, 610, 380, 720, 300],
            "VP": [61, 44, 80, 41, 110, 39],
            "VP_finite": [40, 30, 55, 28, 90, 30],
            "VP_nonfinite": [21, 14, 25, 13, 20, 9],
            "LexicalDensity": [0.55, 0.58, 0.48, 0.50, 0.40, 0.43],
        }
    )


def _texts() -> pd.DataFrame:
    return normalize_texts(_raw_table())


# ---------------------------------------------------------------------------
# Loader tests


def test_normalize_texts_renames_and_types() -> None:
    texts = _texts()
    assert list(texts.columns) == list(TEXT_COLUMNS)
    assert texts["tokens"].dtype.kind == "i"
    assert texts["vp_total"].tolist() == [61, 44, 80, 41, 110, 39]
    assert texts["language"].tolist()[:2] == ["English", "German"]


def test_normalize_texts_missing_column() -> None:
    raw = _raw_table().drop(columns=["Mode"])
    with pytest.raises(ValueError, match="Mode"):
        normalize_texts(raw)


@pytest.mark.parametrize(
    "column, value",
    [("Tokens", 0), ("Tokens", 12.5), ("VP", -1), ("VP_finite", 3.3)],
)
def test_normalize_texts_rejects_invalid_counts(column: str, value: float) -> None:
    raw = _raw_table()
    raw[column] = raw[column].astype(float)
    raw.loc[0, column] = value
    with pytest.raises(ValueError):
        normalize_texts(raw)


def test_load_texts_from_csv_and_excel(tmp_path: Path) -> None:
    csv_path = tmp_path / "texts.csv"
    xlsx_path = tmp_path / "texts.xlsx"
    _raw_table().to_csv(csv_path, index=False)
    _raw_table().to_excel(xlsx_path, index=False)

    from_csv = load_texts(csv_path)
    from_excel = load_texts(xlsx_path)
    pd.testing.assert_frame_equal(from_csv, from_excel)


def test_read_table_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_table(tmp_path / "missing.csv")
    odd = tmp_path / "texts.json"
    odd.write_text("{}")
    with pytest.raises(ValueError):
        read_table(odd)


def test_load_register_summary(tmp_path: Path) -> None:
    path = tmp_path / "registers.csv"
    pd.DataFrame(
        {
            "Register": ["news ", "fiction"],
            "Mode": ["written", "written"],
            "VP_per_100": ["12.1", "13.4"],
            "LexicalDensity": [0.55, 0.49],
        }
    ).to_csv(path, index=False)
    registers = load_register_summary(path)
    assert registers["register"].tolist() == ["news", "fiction"]
    assert registers["vp_rate"].tolist() == [12.1, 13.4]


# ---------------------------------------------------------------------------
# Transform tests


def test_sum_contrasts_matrix() -> None:
    matrix = sum_contrasts(["a", "b", "c"])
    expected = np.array([[1.0, 0.0], [0.0, 1.0], [-1.0, -1.0]])
    assert np.array_equal(matrix, expected)
    assert np.allclose(matrix.sum(axis=0), 0.0)
    with pytest.raises(ValueError):
        sum_contrasts(["only"])


def test_expand_level_effects_sums_to_zero() -> None:
    rng = np.random.default_rng(7)
    coefficients = rng.normal(size=(4, 50, 13))
    effects = expand_level_effects(coefficients)
    assert effects.shape == (4, 50, 14)
    assert np.allclose(effects.sum(axis=-1), 0.0)


def test_transform_density_z_has_zero_mean_unit_sd() -> None:
    texts = _texts()
    transform = PredictorTransform.fit(texts)
    transformed = transform.apply(texts)
    assert transformed[DENSITY_Z].mean() == pytest.approx(0.0, abs=1e-12)
    assert transformed[DENSITY_Z].std(ddof=1) == pytest.approx(1.0)
    assert transformed[LENGTH_100].tolist() == pytest.approx([5.0, 4.2, 6.1, 3.8, 7.2, 3.0])


def test_transform_contrast_columns_and_reference() -> None:
    texts = _texts()
    transform = PredictorTransform.fit(texts)
    assert transform.levels["register"] == ("conversation", "fiction", "news")
    assert transform.reference_level("register") == "news"
    assert transform.contrast_columns("register") == ("register[conversation]", "register[fiction]")

    transformed = transform.apply(texts)
    news_rows = transformed[transformed["register"] == "news"]
    assert (news_rows[contrast_name("register", "conversation")] == -1.0).all()
    assert (news_rows[contrast_name("register", "fiction")] == -1.0).all()
    fiction_rows = transformed[transformed["register"] == "fiction"]
    assert (fiction_rows["register[fiction]"] == 1.0).all()
    assert (fiction_rows["register[conversation]"] == 0.0).all()
    # every contrast column is balanced when levels are equally represented
    for name in transform.contrast_columns("register"):
        assert transformed[name].sum() == pytest.approx(0.0)


def test_transform_is_frozen_for_new_data() -> None:
    texts = _texts()
    transform = PredictorTransform.fit(texts)
    subset = texts.iloc[:2]
    transformed = transform.apply(subset)
    expected = (subset["lexical_density"] - transform.density_mean) / transform.density_sd
    assert np.allclose(transformed[DENSITY_Z], expected)


def test_unknown_category_fails_at_apply_not_fit() -> None:
    texts = _texts()
    transform = PredictorTransform.fit(texts)
    new = texts.iloc[:1].copy()
    new["register"] = "sermon"
    with pytest.raises(UnknownCategoryError, match="sermon"):
        transform.apply(new)
    # refitting on data that contains the level is fine
    assert "sermon" in PredictorTransform.fit(pd.concat([texts, new])).levels["register"]


def test_transform_rejects_degenerate_input() -> None:
    texts = _texts()
    with pytest.raises(ValueError):
        PredictorTransform.fit(texts.iloc[:1])
    constant = texts.copy()
    constant["lexical_density"] = 0.5
    with pytest.raises(ValueError):
        PredictorTransform.fit(constant)
    assert PredictorTransform.fit(texts, categorical=("mode",)).levels == {"mode": ("spoken", "written")}


def test_single_level_categorical_is_recorded_without_contrasts() -> None:
    texts = _texts()
    texts["register"] = "news"
    transform = PredictorTransform.fit(texts)
    assert transform.levels["register"] == ("news",)
    assert transform.contrast_columns("register") == ()
    transformed = transform.apply(texts)
    assert not any(column.startswith("register[") for column in transformed.columns)
    assert "language[English]" in transformed.columns


def test_apply_encodes_only_requested_variables() -> None:
    texts = _texts()
    transform = PredictorTransform.fit(texts)
    new = texts.iloc[:1].copy()
    new["register"] = "sermon"
    transformed = transform.apply(new, variables=("language", "mode"))
    assert "mode[spoken]" in transformed.columns
    assert not any(column.startswith("register[") for column in transformed.columns)
    with pytest.raises(UnknownCategoryError):
        transform.apply(new, variables=("register",))


def test_transform_dict_round_trip() -> None:
    transform = PredictorTransform.fit(_texts())
    restored = PredictorTransform.from_dict(transform.to_dict())
    assert restored == transform
