"""Violin, box and density views of verb-phrase rates across text groupings."""

from __future__ import annotations

from typing import Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from src.corpus.config import WORDS_PER_UNIT
from .save_config import PlotSaveDestinations, emit_figure

OUTCOME_LABELS = {
    "vp_total": "Verb phrases per 100 words",
    "vp_finite": "Finite verb phrases per 100 words",
    "vp_nonfinite": "Non-finite verb phrases per 100 words",
}


def with_rate(texts: pd.DataFrame, outcome: str = "vp_total") -> pd.DataFrame:
    """Add a ``rate`` column holding the outcome per hundred words."""
    if outcome not in texts:
        raise ValueError(f"Outcome column '{outcome}' is missing.")
    frame = texts.copy()
    frame["rate"] = frame[outcome] / (frame["tokens"] / WORDS_PER_UNIT)
    return frame


def plot_rate_by_group(
    texts: pd.DataFrame,
    group: str,
    outcome: str = "vp_total",
    color: Optional[str] = "language",
    save_to: Optional[PlotSaveDestinations] = None,
) -> Optional[go.Figure]:
    """Violin plot with embedded box of the per-text rate for each level of ``group``."""
    if texts.empty:
        return None
    df = with_rate(texts, outcome).sort_values(group)
    color_by = color if color and color != group and color in df else None

    fig = px.violin(
        df,
        x=group,
        y="rate",
        color=color_by,
        box=True,
        points="all",
        title=f"{OUTCOME_LABELS.get(outcome, outcome)} by {group}",
        labels={"rate": OUTCOME_LABELS.get(outcome, outcome), group: group.capitalize()},
    )
    if group == "register":
        fig.update_xaxes(tickangle=45)
    emit_figure(fig, save_to)
    return fig


def plot_rate_density(
    texts: pd.DataFrame,
    group: str = "language",
    outcome: str = "vp_total",
    save_to: Optional[PlotSaveDestinations] = None,
) -> Optional[go.Figure]:
    """Overlaid density histograms of the per-text rate, one trace per level of ``group``."""
    if texts.empty:
        return None
    df = with_rate(texts, outcome)

    fig = px.histogram(
        df,
        x="rate",
        color=group,
        histnorm="probability density",
        barmode="overlay",
        marginal="box",
        opacity=0.6,
        title=f"Distribution of {OUTCOME_LABELS.get(outcome, outcome).lower()} by {group}",
        labels={"rate": OUTCOME_LABELS.get(outcome, outcome)},
    )
    emit_figure(fig, save_to)
    return fig


def plot_rate_vs_density(
    texts: pd.DataFrame,
    outcome: str = "vp_total",
    save_to: Optional[PlotSaveDestinations] = None,
) -> Optional[go.Figure]:
    """Scatter of rate against lexical density, coloured by language and split by mode."""
    if texts.empty:
        return None
    df = with_rate(texts, outcome)

    fig = px.scatter(
        df,
        x="lexical_density",
        y="rate",
        color="language",
        facet_col="mode",
        hover_data=["register", "tokens"],
        title=f"{OUTCOME_LABELS.get(outcome, outcome)} against lexical density",
        labels={"lexical_density": "Lexical density", "rate": OUTCOME_LABELS.get(outcome, outcome)},
    )
    emit_figure(fig, save_to)
    return fig


__all__ = ["plot_rate_by_group", "plot_rate_density", "plot_rate_vs_density", "with_rate"]
