from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer

from experiments.plots import (
    PlotSaveConfig,
    plot_all_prior_posterior,
    plot_level_effects,
    plot_rate_by_group,
    plot_rate_density,
    plot_rate_vs_density,
    plot_register_pointrange,
)
from experiments.verb_phrases import (
    CANDIDATE_FORMULAS,
    FULL_MODEL,
    fit_candidate,
    model_name,
    prepare_corpus,
    run_comparison,
    run_diagnostics,
    run_hypotheses,
    run_prior_sensitivity,
)
from src.corpus import UnknownCategoryError, load_register_summary
from src.corpus.config import DEFAULT_MODEL_ROOT, DEFAULT_REGISTER_TABLE, DEFAULT_TEXT_TABLE, OUTCOME_COLUMNS
from src.diagnostics import format_comparison, predict
from src.modeling import FormulaError, SamplerConfig, get_prior_set, load_fitted

app = typer.Typer()

TEXTS_OPTION = typer.Option(DEFAULT_TEXT_TABLE, "--texts", help="Per-text table (CSV or Excel).")
SHEET_OPTION = typer.Option(None, "--sheet", help="Worksheet name when reading Excel files.")
OUTCOME_OPTION = typer.Option("vp_total", "--outcome", help=f"Count outcome ({', '.join(OUTCOME_COLUMNS)}).")
PRIOR_OPTION = typer.Option("original", "--priors", help="Named prior set.")
MODEL_ROOT_OPTION = typer.Option(DEFAULT_MODEL_ROOT, "--model-root", help="Directory for persisted model artifacts.")


def _sampler(draws: int, tune: int, chains: int, cores: Optional[int], seed: Optional[int]) -> SamplerConfig:
    sampler = SamplerConfig(draws=draws, tune=tune, chains=chains, cores=cores, random_seed=seed)
    try:
        sampler.validate()
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return sampler


def _check_choice(outcome: str, model: Optional[str] = None) -> None:
    if outcome not in OUTCOME_COLUMNS:
        raise typer.BadParameter(f"--outcome must be one of {OUTCOME_COLUMNS}")
    if model is not None and model not in CANDIDATE_FORMULAS:
        raise typer.BadParameter(f"--model must be one of {list(CANDIDATE_FORMULAS)}")


@app.command()
def fit(
    model: str = typer.Option(FULL_MODEL, "--model", help="Candidate formula key."),
    texts: Path = TEXTS_OPTION,
    sheet: Optional[str] = SHEET_OPTION,
    outcome: str = OUTCOME_OPTION,
    prior_set: str = PRIOR_OPTION,
    model_root: Path = MODEL_ROOT_OPTION,
    reuse: bool = typer.Option(False, "--reuse", help="Load a stored artifact instead of refitting when present."),
    draws: int = typer.Option(2000, "--draws"),
    tune: int = typer.Option(1000, "--tune"),
    chains: int = typer.Option(4, "--chains"),
    cores: Optional[int] = typer.Option(None, "--cores"),
    seed: Optional[int] = typer.Option(None, "--seed"),
    diagnostics: bool = typer.Option(True, help="Run prior and posterior predictive checks after fitting."),
) -> None:
    """Fit one candidate model, save it, and print its coefficient summary."""
    _check_choice(outcome, model)
    try:
        priors = get_prior_set(prior_set)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    data, transform = prepare_corpus(texts, sheet_name=sheet)
    fitted = fit_candidate(
        data,
        transform,
        model,
        priors,
        _sampler(draws, tune, chains, cores, seed),
        model_root=model_root,
        reuse=reuse,
        outcome=outcome,
    )
    if diagnostics:
        for label, table in run_diagnostics(fitted, data, random_seed=seed).items():
            print(f"\n== {label} ==")
            print(table.round(3).to_string())
    else:
        print(fitted.summary_frame().round(3).to_string())


@app.command()
def compare(
    models: List[str] = typer.Option(list(CANDIDATE_FORMULAS), "--model", help="Candidate keys to compare."),
    texts: Path = TEXTS_OPTION,
    sheet: Optional[str] = SHEET_OPTION,
    outcome: str = OUTCOME_OPTION,
    prior_set: str = PRIOR_OPTION,
    model_root: Path = MODEL_ROOT_OPTION,
    reuse: bool = typer.Option(False, "--reuse"),
    draws: int = typer.Option(2000, "--draws"),
    tune: int = typer.Option(1000, "--tune"),
    chains: int = typer.Option(4, "--chains"),
    cores: Optional[int] = typer.Option(None, "--cores"),
    seed: Optional[int] = typer.Option(None, "--seed"),
) -> None:
    """Rank candidate models by PSIS-LOO expected log predictive density."""
    for key in models:
        _check_choice(outcome, key)
    data, transform = prepare_corpus(texts, sheet_name=sheet)
    result, _ = run_comparison(
        data,
        transform,
        get_prior_set(prior_set),
        _sampler(draws, tune, chains, cores, seed),
        keys=models,
        model_root=model_root,
        reuse=reuse,
        outcome=outcome,
    )
    print(format_comparison(result))


@app.command()
def sensitivity(
    model: str = typer.Option(FULL_MODEL, "--model"),
    texts: Path = TEXTS_OPTION,
    sheet: Optional[str] = SHEET_OPTION,
    outcome: str = OUTCOME_OPTION,
    tolerance: float = typer.Option(0.1, "--tolerance", help="Allowed shift on the log scale."),
    draws: int = typer.Option(2000, "--draws"),
    tune: int = typer.Option(1000, "--tune"),
    chains: int = typer.Option(4, "--chains"),
    cores: Optional[int] = typer.Option(None, "--cores"),
    seed: Optional[int] = typer.Option(None, "--seed"),
) -> None:
    """Refit one model under the alternative prior sets and report prior-driven estimates."""
    _check_choice(outcome, model)
    data, transform = prepare_corpus(texts, sheet_name=sheet)
    report = run_prior_sensitivity(
        data,
        transform,
        get_prior_set("original"),
        _sampler(draws, tune, chains, cores, seed),
        key=model,
        tolerance=tolerance,
        outcome=outcome,
    )
    print(report.shifts.round(3).to_string(index=False))
    for caveat in report.caveats():
        print(f"CAVEAT: {caveat}")


@app.command()
def hypothesis(
    statements: List[str] = typer.Argument(..., help="Hypotheses such as 'mode[spoken] > 0'."),
    model: str = typer.Option(FULL_MODEL, "--model"),
    outcome: str = OUTCOME_OPTION,
    prior_set: str = PRIOR_OPTION,
    model_root: Path = MODEL_ROOT_OPTION,
) -> None:
    """Evaluate directional hypotheses on a stored model."""
    _check_choice(outcome, model)
    fitted = load_fitted(model_root, model_name(model, get_prior_set(prior_set), outcome))
    try:
        results = run_hypotheses(fitted, statements)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    frame = pd.DataFrame([asdict(result) for result in results]).set_index("hypothesis")
    print(frame.to_string())


@app.command(name="predict")
def predict_command(
    records: Path = typer.Argument(..., help="CSV of new texts (language, register, mode, lexical_density, ...)."),
    model: str = typer.Option(FULL_MODEL, "--model"),
    outcome: str = OUTCOME_OPTION,
    prior_set: str = PRIOR_OPTION,
    model_root: Path = MODEL_ROOT_OPTION,
    rate: bool = typer.Option(True, help="Predict per hundred words instead of per text length."),
    seed: Optional[int] = typer.Option(None, "--seed"),
) -> None:
    """Posterior predictive summary for new texts from a stored model."""
    _check_choice(outcome, model)
    fitted = load_fitted(model_root, model_name(model, get_prior_set(prior_set), outcome))
    table = pd.read_csv(records)
    try:
        summary = predict(fitted, table, exposure=1.0 if rate else None, random_seed=seed)
    except (UnknownCategoryError, FormulaError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    print(pd.concat([table, summary], axis=1).to_string())


@app.command()
def plots(
    texts: Path = TEXTS_OPTION,
    registers: Optional[Path] = typer.Option(DEFAULT_REGISTER_TABLE, "--registers", help="Register-level table."),
    sheet: Optional[str] = SHEET_OPTION,
    outcome: str = OUTCOME_OPTION,
    model: Optional[str] = typer.Option(None, "--model", help="Stored model for prior/posterior overlays."),
    prior_set: str = PRIOR_OPTION,
    model_root: Path = MODEL_ROOT_OPTION,
    plots_root: Optional[Path] = typer.Option(None, "--plots-root", help="Directory where plots should be saved."),
    plots_tag: Optional[str] = typer.Option(None, "--plots-tag", help="Folder suffix for this run (defaults to timestamp)."),
    save_static: bool = typer.Option(True, help="Write static PNG snapshots when saving plots."),
    save_html: bool = typer.Option(True, help="Write interactive HTML plots when saving."),
) -> None:
    """Render data overviews and, given a stored model, prior-vs-posterior overlays."""
    _check_choice(outcome, model)
    data, _ = prepare_corpus(texts, sheet_name=sheet)
    register_table = load_register_summary(registers) if registers and registers.exists() else None

    save_config: Optional[PlotSaveConfig] = None
    if plots_root:
        tag = plots_tag or datetime.utcnow().strftime("%Y%m%d-%H%M%S")
        save_config = PlotSaveConfig(base_dir=plots_root, run_tag=tag, save_static=save_static, save_html=save_html)
        print(f"[plots] Saving figures under {plots_root / tag}")

    def dest(slug: str):
        return save_config.for_plot(slug) if save_config else None

    for group in ("language", "mode", "register"):
        plot_rate_by_group(data, group, outcome=outcome, save_to=dest(f"rate_by_{group}"))
    plot_rate_density(data, outcome=outcome, save_to=dest("rate_density"))
    plot_rate_vs_density(data, outcome=outcome, save_to=dest("rate_vs_density"))
    plot_register_pointrange(data, register_table, outcome=outcome, save_to=dest("register_pointrange"))

    if model is not None:
        fitted = load_fitted(model_root, model_name(model, get_prior_set(prior_set), outcome))
        plot_all_prior_posterior(fitted, save_to=dest(f"{model}-prior_posterior"))
        for variable in ("language", "mode", "register"):
            if variable in fitted.formula.terms or variable == fitted.formula.group:
                plot_level_effects(fitted, variable, save_to=dest(f"{model}-{variable}_effects"))


if __name__ == "__main__":
    app()
