"""Tests for formulas, priors, design matrices, PyMC fitting and persistence."""

from __future__ import annotations

from pathlib import Path
import json
import sys

import arviz as az
import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.corpus.transform import PredictorTransform
from src.modeling.builders import build_design, build_model
from src.modeling.fitting import (
    ConvergenceError,
    CountModelFitter,
    FittedModel,
    SamplerConfig,
    check_convergence,
)
from src.modeling.formula import FormulaError, ModelFormula
from src.modeling.persistence import artifact_paths, has_artifact, load_fitted, load_or_fit, save_fitted
from src.modeling.priors import (
    FLAT_PRIORS,
    ORIGINAL_PRIORS,
    NormalPrior,
    PriorSet,
    get_prior_set,
    sensitivity_prior_sets,
)


# ---------------------------------------------------------------------------
# Helper fixtures and utilities


def _make_texts(n: int = 120, seed: int = 0, mode_effect: float = 0.2) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    language = np.where(np.arange(n) % 2 == 0, "English", "German")
    mode = np.where((np.arange(n) // 2) % 2 == 0, "spoken", "written")
    register = np.array(["academic", "conversation", "news"])[np.arange(n) % 3]
    tokens = rng.integers(300, 800, size=n)
    density = rng.normal(0.5, 0.05, size=n)
    log_rate = np.log(12.0) + np.where(mode == "spoken", mode_effect, -mode_effect)
    vp_total = rng.poisson(np.exp(log_rate) * tokens / 100.0)
    vp_finite = rng.binomial(vp_total, 0.7)
    return pd.DataFrame(
        {
            "language": language,
            "register": register,
            "mode": mode,
            "tokens": tokens,
            "vp_total": vp_total,
            "vp_finite": vp_finite,
            "vp_nonfinite": vp_total - vp_finite,
            "lexical_density": density,
        }
    )


def _transform() -> PredictorTransform:
    return PredictorTransform(
        density_mean=0.5,
        density_sd=0.05,
        levels={
            "language": ("English", "German"),
            "mode": ("spoken", "written"),
            "register": ("academic", "conversation", "news"),
        },
    )


def _fake_fitted(name: str = "fake", priors: PriorSet = ORIGINAL_PRIORS, seed: int = 0) -> FittedModel:
    rng = np.random.default_rng(seed)
    coefs = ["language[English]", "mode[spoken]"]
    idata = az.from_dict(
        posterior={
            "Intercept": rng.normal(2.5, 0.02, size=(2, 100)),
            "beta": rng.normal([0.05, 0.2], 0.02, size=(2, 100, 2)),
        },
        coords={"coef": coefs},
        dims={"beta": ["coef"]},
    )
    return FittedModel(
        name=name,
        formula=ModelFormula(terms=("language", "mode")),
        priors=priors,
        transform=_transform(),
        sampler=SamplerConfig(draws=100, tune=100, chains=2, random_seed=1),
        idata=idata,
    )


FAST_SAMPLER = SamplerConfig(draws=300, tune=300, chains=2, cores=1, random_seed=123)


# ---------------------------------------------------------------------------
# Formula tests


def test_formula_describe() -> None:
    formula = ModelFormula(
        terms=("language", "mode", "density_z"),
        interactions=(("language", "mode"),),
        group="register",
    )
    assert formula.describe() == (
        "vp_total ~ language + mode + density_z + language:mode + offset(log(length_100)) + (1 | register)"
    )
    assert ModelFormula(offset=None).describe() == "vp_total ~ 1"


@pytest.mark.parametrize(
    "formula",
    [
        ModelFormula(outcome="tokens", terms=("language",)),
        ModelFormula(terms=("language", "language")),
        ModelFormula(terms=("genre",)),
        ModelFormula(terms=("language",), interactions=(("language", "mode"),)),
        ModelFormula(terms=("language", "mode"), interactions=(("language", "mode"), ("mode", "language"))),
        ModelFormula(terms=("language",), group="density_z"),
        ModelFormula(terms=("register",), group="register"),
        ModelFormula(terms=("language",), offset="exposure"),
    ],
)
def test_formula_validation_errors(formula: ModelFormula) -> None:
    transform = _transform()
    columns = transform.apply(_make_texts(12)).columns
    with pytest.raises(FormulaError):
        formula.validate(columns, transform)


def test_formula_rejects_single_level_predictors() -> None:
    texts = _make_texts(12)
    texts["register"] = "news"
    transform = PredictorTransform.fit(texts)
    columns = transform.apply(texts).columns
    ModelFormula(terms=("language", "mode")).validate(columns, transform)
    with pytest.raises(FormulaError, match="single level"):
        ModelFormula(terms=("language", "register")).validate(columns, transform)
    with pytest.raises(FormulaError, match="single level"):
        ModelFormula(terms=("language",), group="register").validate(columns, transform)


def test_formula_categorical_variables() -> None:
    formula = ModelFormula(terms=("language", "density_z", "mode"), group="register")
    assert formula.categorical_variables(_transform()) == ("language", "mode", "register")
    assert ModelFormula(terms=("density_z",)).categorical_variables(_transform()) == ()


def test_formula_dict_round_trip_and_outcome() -> None:
    formula = ModelFormula(terms=("language", "density_z"), interactions=(("language", "density_z"),), group="register")
    assert ModelFormula.from_dict(json.loads(json.dumps(formula.to_dict()))) == formula
    assert formula.with_outcome("vp_finite").outcome == "vp_finite"


# ---------------------------------------------------------------------------
# Prior tests


def test_prior_lookup_order() -> None:
    priors = PriorSet(
        name="custom",
        priors={"register": NormalPrior(0.0, 0.3), "language:mode": NormalPrior(0.0, 0.05), "mode[spoken]": NormalPrior(0.2, 0.1)},
        intercept=NormalPrior(2.0, 1.0),
        slope=NormalPrior(0.0, 0.5),
        group_sd=NormalPrior(0.1, 0.1),
    )
    assert priors.for_coefficient("Intercept") == NormalPrior(2.0, 1.0)
    assert priors.for_coefficient("register[news]") == NormalPrior(0.0, 0.3)
    assert priors.for_coefficient("language[English]:mode[spoken]") == NormalPrior(0.0, 0.05)
    assert priors.for_coefficient("mode[spoken]") == NormalPrior(0.2, 0.1)
    assert priors.for_coefficient("density_z") == NormalPrior(0.0, 0.5)
    assert priors.for_coefficient("sd(register)") == NormalPrior(0.1, 0.1)


def test_prior_rejects_invalid_sigma() -> None:
    with pytest.raises(ValueError):
        NormalPrior(0.0, 0.0)
    with pytest.raises(ValueError):
        NormalPrior(float("nan"), 1.0)


def test_sensitivity_prior_sets() -> None:
    sets = sensitivity_prior_sets(ORIGINAL_PRIORS)
    assert set(sets) == {"original", "uninformative", "wider", "narrower", "more_informative"}
    base = ORIGINAL_PRIORS.for_coefficient("mode[spoken]")
    assert sets["wider"].for_coefficient("mode[spoken]") == NormalPrior(base.mu, base.sigma * 2)
    assert sets["narrower"].for_coefficient("mode[spoken]") == NormalPrior(base.mu, base.sigma * 0.5)
    assert abs(sets["uninformative"].for_coefficient("mode[spoken]").mu) < abs(base.mu)
    assert abs(sets["more_informative"].for_coefficient("mode[spoken]").mu) > abs(base.mu)


def test_prior_set_registry_and_round_trip() -> None:
    assert get_prior_set("flat") is FLAT_PRIORS
    with pytest.raises(ValueError):
        get_prior_set("bogus")
    restored = PriorSet.from_dict(json.loads(json.dumps(ORIGINAL_PRIORS.to_dict())))
    assert restored == ORIGINAL_PRIORS


# ---------------------------------------------------------------------------
# Design and model construction tests


def test_build_design_columns() -> None:
    transform = _transform()
    texts = _make_texts(12)
    formula = ModelFormula(
        terms=("language", "mode", "density_z", "register"),
        interactions=(("language", "mode"), ("language", "density_z")),
    )
    design = build_design(transform.apply(texts), formula, transform)
    assert design.coefficients == (
        "language[English]",
        "mode[spoken]",
        "density_z",
        "register[academic]",
        "register[conversation]",
        "language[English]:mode[spoken]",
        "language[English]:density_z",
    )
    assert design.X.shape == (12, 7)
    assert np.allclose(design.X[:, 5], design.X[:, 0] * design.X[:, 1])
    assert np.allclose(np.exp(design.log_exposure), texts["tokens"] / 100.0)
    assert design.outcome is not None and design.outcome.tolist() == texts["vp_total"].tolist()
    assert design.group_ids is None


def test_build_design_with_group() -> None:
    transform = _transform()
    texts = _make_texts(9)
    design = build_design(transform.apply(texts), ModelFormula(terms=("language",), group="register"), transform)
    assert design.group_labels == ("academic", "conversation", "news")
    assert design.group_ids is not None and design.group_ids.tolist() == [0, 1, 2] * 3


def test_build_model_constructs_pymc_model() -> None:
    transform = _transform()
    design = build_design(
        transform.apply(_make_texts(12)),
        ModelFormula(terms=("language", "mode"), group="register"),
        transform,
    )
    model = build_model(design, ORIGINAL_PRIORS)
    assert {"Intercept", "beta", "sd_register", "z_register", "r_register", "y"}.issubset(model.named_vars)


def test_build_model_intercept_only() -> None:
    transform = _transform()
    design = build_design(transform.apply(_make_texts(12)), ModelFormula(), transform)
    model = build_model(design, FLAT_PRIORS)
    assert "beta" not in model.named_vars
    assert "Intercept" in model.named_vars


# ---------------------------------------------------------------------------
# Convergence and persistence tests (no sampling)


def test_sampler_config_validation() -> None:
    with pytest.raises(ValueError):
        SamplerConfig(chains=1).validate()
    with pytest.raises(ValueError):
        SamplerConfig(target_accept=1.2).validate()
    with pytest.raises(ValueError):
        CountModelFitter(SamplerConfig(draws=0))


def test_check_convergence_flags_disagreeing_chains() -> None:
    rng = np.random.default_rng(3)
    chains = np.stack([rng.normal(0.0, 0.1, 200), rng.normal(2.0, 0.1, 200)])
    idata = az.from_dict(posterior={"Intercept": chains, "ok": rng.normal(size=(2, 200))})
    with pytest.raises(ConvergenceError) as excinfo:
        check_convergence(idata, "bad-model")
    assert "Intercept" in excinfo.value.offending
    assert "ok" not in excinfo.value.offending

    good = az.from_dict(posterior={"Intercept": rng.normal(size=(2, 200))})
    assert check_convergence(good, "good-model")["Intercept"] <= 1.1


def test_save_and_load_fitted_round_trip(tmp_path: Path) -> None:
    fitted = _fake_fitted(name="m2 | original")
    save_fitted(fitted, tmp_path)
    assert has_artifact(tmp_path, fitted.name)

    loaded = load_fitted(tmp_path, fitted.name)
    assert loaded.name == fitted.name
    assert loaded.formula == fitted.formula
    assert loaded.priors == fitted.priors
    assert loaded.transform == fitted.transform
    assert loaded.sampler == fitted.sampler
    assert loaded.coefficient_names == fitted.coefficient_names
    np.testing.assert_allclose(
        loaded.coefficient_draws("mode[spoken]").values,
        fitted.coefficient_draws("mode[spoken]").values,
    )


def test_load_fitted_rejects_tampered_posterior(tmp_path: Path) -> None:
    fitted = _fake_fitted()
    save_fitted(fitted, tmp_path)
    other = _fake_fitted(seed=99)
    posterior_path, _ = artifact_paths(tmp_path, fitted.name)
    other.idata.to_netcdf(str(posterior_path))
    with pytest.raises(ValueError, match="checksum"):
        load_fitted(tmp_path, fitted.name)


def test_load_fitted_missing(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_fitted(tmp_path, "nothing-here")


def test_load_or_fit_reuses_matching_artifact(tmp_path: Path) -> None:
    fitted = _fake_fitted()
    save_fitted(fitted, tmp_path)
    texts = _make_texts(12)
    loaded = load_or_fit(
        tmp_path, texts, fitted.formula, fitted.priors, fitted.transform, name=fitted.name, sampler=fitted.sampler
    )
    assert loaded.coefficient_names == fitted.coefficient_names

    with pytest.raises(ValueError, match="different inputs"):
        load_or_fit(
            tmp_path, texts, fitted.formula, FLAT_PRIORS, fitted.transform, name=fitted.name, sampler=fitted.sampler
        )


@pytest.mark.parametrize(
    "sampler",
    [
        SamplerConfig(draws=200, tune=100, chains=2, random_seed=1),
        SamplerConfig(draws=100, tune=100, chains=4, random_seed=1),
        SamplerConfig(draws=100, tune=100, chains=2, random_seed=2),
        None,
    ],
)
def test_load_or_fit_rejects_different_sampler_settings(tmp_path: Path, sampler: SamplerConfig | None) -> None:
    fitted = _fake_fitted()
    save_fitted(fitted, tmp_path)
    with pytest.raises(ValueError, match="different inputs"):
        load_or_fit(
            tmp_path, _make_texts(12), fitted.formula, fitted.priors, fitted.transform, name=fitted.name, sampler=sampler
        )


# ---------------------------------------------------------------------------
# Sampling tests


@pytest.mark.filterwarnings("ignore::UserWarning")
@pytest.mark.filterwarnings("ignore::RuntimeWarning")
def test_fitter_recovers_mode_effect() -> None:
    texts = _make_texts(120, seed=1, mode_effect=0.2)
    transform = PredictorTransform.fit(texts)
    formula = ModelFormula(terms=("language", "mode", "density_z"))
    fitted = CountModelFitter(FAST_SAMPLER).fit(texts, formula, FLAT_PRIORS, transform, name="recovery")

    assert fitted.coefficient_names == ("Intercept", "language[English]", "mode[spoken]", "density_z")
    assert "log_likelihood" in fitted.idata.groups()
    summary = fitted.summary_frame()
    assert summary.loc["mode[spoken]", "mean"] == pytest.approx(0.2, abs=0.05)
    assert np.exp(summary.loc["Intercept", "mean"]) == pytest.approx(12.0, rel=0.1)
    assert (summary["r_hat"] <= 1.1).all()
    effects = fitted.level_effects("mode")
    assert list(effects.coords["level"].values) == ["spoken", "written"]
    assert np.allclose(effects.sum(dim="level").values, 0.0)


@pytest.mark.filterwarnings("ignore::UserWarning")
@pytest.mark.filterwarnings("ignore::RuntimeWarning")
def test_load_or_fit_fits_then_loads(tmp_path: Path) -> None:
    texts = _make_texts(60, seed=2)
    transform = PredictorTransform.fit(texts)
    formula = ModelFormula(terms=("mode",))
    first = load_or_fit(tmp_path, texts, formula, FLAT_PRIORS, transform, name="m-mode", sampler=FAST_SAMPLER)
    assert has_artifact(tmp_path, "m-mode")
    second = load_or_fit(tmp_path, texts, formula, FLAT_PRIORS, transform, name="m-mode", sampler=FAST_SAMPLER)
    np.testing.assert_allclose(
        first.coefficient_draws("mode[spoken]").values,
        second.coefficient_draws("mode[spoken]").values,
    )
