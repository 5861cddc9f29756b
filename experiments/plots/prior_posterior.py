"""Prior-versus-posterior density overlays on the log and natural (count) scales."""

from __future__ import annotations

from typing import Iterable, List, Literal, Optional

import numpy as np
import plotly.graph_objects as go
import pymc as pm
from scipy.stats import gaussian_kde

from src.modeling.fitting import FittedModel
from .save_config import PlotSaveDestinations, emit_figure

Scale = Literal["log", "natural"]
GRID_POINTS = 400


def prior_draws(fitted: FittedModel, coefficient: str, n_draws: int = 4000, seed: Optional[int] = None) -> np.ndarray:
    """Sample the prior of ``coefficient``; group standard deviations are truncated at zero."""
    prior = fitted.priors.for_coefficient(coefficient)
    rng = np.random.default_rng(seed)
    if coefficient.startswith("sd("):
        dist = pm.TruncatedNormal.dist(mu=prior.mu, sigma=prior.sigma, lower=0.0)
        return np.asarray(pm.draw(dist, draws=n_draws, random_seed=rng), dtype=float)
    return rng.normal(prior.mu, prior.sigma, size=n_draws)


def _density(draws: np.ndarray, grid: np.ndarray) -> np.ndarray:
    if np.ptp(draws) == 0:
        return np.zeros_like(grid)
    return gaussian_kde(draws)(grid)


def plot_prior_posterior(
    fitted: FittedModel,
    coefficient: str,
    scale: Scale = "log",
    n_prior_draws: int = 4000,
    seed: Optional[int] = None,
    save_to: Optional[PlotSaveDestinations] = None,
) -> go.Figure:
    """Overlay prior and posterior densities of one coefficient.

    On the natural scale the individual draws are exponentiated before the
    density is estimated.
    """
    posterior = np.asarray(fitted.coefficient_draws(coefficient).values, dtype=float).ravel()
    prior = prior_draws(fitted, coefficient, n_draws=n_prior_draws, seed=seed)
    if scale == "natural":
        posterior = np.exp(posterior)
        prior = np.exp(prior)
    elif scale != "log":
        raise ValueError(f"Unknown scale '{scale}'")

    low = min(np.quantile(posterior, 0.001), np.quantile(prior, 0.005))
    high = max(np.quantile(posterior, 0.999), np.quantile(prior, 0.995))
    grid = np.linspace(low, high, GRID_POINTS)

    fig = go.Figure()
    fig.add_trace(go.Scatter(x=grid, y=_density(prior, grid), mode="lines", name="Prior", line=dict(dash="dash")))
    fig.add_trace(go.Scatter(x=grid, y=_density(posterior, grid), mode="lines", name="Posterior", fill="tozeroy"))
    axis_label = coefficient if scale == "log" else f"exp({coefficient})"
    fig.update_layout(
        title=f"{fitted.name}: prior vs posterior for {coefficient} ({scale} scale)",
        xaxis_title=axis_label,
        yaxis_title="Density",
    )
    emit_figure(fig, save_to)
    return fig


def plot_all_prior_posterior(
    fitted: FittedModel,
    coefficients: Optional[Iterable[str]] = None,
    scales: Iterable[Scale] = ("log", "natural"),
    seed: Optional[int] = None,
    save_to: Optional[PlotSaveDestinations] = None,
) -> List[go.Figure]:
    """One overlay per coefficient and scale."""
    figures: List[go.Figure] = []
    for coefficient in coefficients or fitted.coefficient_names:
        for scale in scales:
            dest = save_to.child(f"{_slug(coefficient)}-{scale}") if save_to else None
            figures.append(plot_prior_posterior(fitted, coefficient, scale=scale, seed=seed, save_to=dest))
    return figures


def plot_level_effects(
    fitted: FittedModel,
    variable: str,
    hdi_prob: float = 0.95,
    save_to: Optional[PlotSaveDestinations] = None,
) -> go.Figure:
    """Point-range plot of every level's effect, including the omitted sum-coded level."""
    effects = fitted.level_effects(variable)
    values = np.asarray(effects.transpose("chain", "draw", "level").values, dtype=float)
    flat = values.reshape(-1, values.shape[-1])
    tail = (1.0 - hdi_prob) / 2.0
    means = flat.mean(axis=0)
    lower = np.quantile(flat, tail, axis=0)
    upper = np.quantile(flat, 1.0 - tail, axis=0)
    levels = [str(level) for level in effects.coords["level"].values]

    fig = go.Figure(
        go.Scatter(
            x=means,
            y=levels,
            mode="markers",
            error_x=dict(type="data", symmetric=False, array=upper - means, arrayminus=means - lower),
        )
    )
    fig.add_vline(x=0.0, line_dash="dot")
    fig.update_layout(
        title=f"{fitted.name}: {variable} effects (log scale, {int(hdi_prob * 100)}% interval)",
        xaxis_title="Deviation from grand mean",
        yaxis_title=variable.capitalize(),
    )
    emit_figure(fig, save_to)
    return fig


def _slug(text: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in text).strip("_")


__all__ = [
    "plot_all_prior_posterior",
    "plot_level_effects",
    "plot_prior_posterior",
    "prior_draws",
]
