"""Point-range summaries per register, with the register-level aggregate table overlaid."""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from .data_overview import OUTCOME_LABELS, with_rate
from .save_config import PlotSaveDestinations, emit_figure


def register_rate_table(texts: pd.DataFrame, outcome: str = "vp_total") -> pd.DataFrame:
    """Mean per-text rate and its standard error for each register."""
    df = with_rate(texts, outcome)
    grouped = df.groupby("register")["rate"]
    table = pd.DataFrame(
        {
            "mean": grouped.mean(),
            "se": grouped.std(ddof=1) / np.sqrt(grouped.count()),
            "n": grouped.count(),
        }
    )
    table["se"] = table["se"].fillna(0.0)
    table["lower"] = table["mean"] - 1.96 * table["se"]
    table["upper"] = table["mean"] + 1.96 * table["se"]
    return table.sort_values("mean")


def plot_register_pointrange(
    texts: pd.DataFrame,
    registers: Optional[pd.DataFrame] = None,
    outcome: str = "vp_total",
    save_to: Optional[PlotSaveDestinations] = None,
) -> Optional[go.Figure]:
    """Horizontal point-range plot of per-register means with 95% normal intervals.

    The register-level table, when given, is overlaid as one diamond trace per
    mode with its lexical density in the hover text.
    """
    if texts.empty:
        return None
    table = register_rate_table(texts, outcome)

    fig = go.Figure()
    fig.add_trace(
        go.Scatter(
            x=table["mean"],
            y=table.index,
            mode="markers",
            name="Text sample mean",
            error_x=dict(
                type="data",
                symmetric=False,
                array=table["upper"] - table["mean"],
                arrayminus=table["mean"] - table["lower"],
            ),
        )
    )
    if registers is not None and not registers.empty:
        for mode, subset in registers.groupby("mode"):
            aggregate = subset.groupby("register")[["vp_rate", "density"]].mean().reindex(table.index)
            fig.add_trace(
                go.Scatter(
                    x=aggregate["vp_rate"].to_numpy(),
                    y=aggregate.index,
                    mode="markers",
                    marker=dict(symbol="diamond", size=10),
                    name=f"Register aggregate ({mode})",
                    customdata=aggregate["density"].to_numpy(),
                    hovertemplate="%{y}: %{x:.2f} per 100 words<br>lexical density %{customdata:.2f}",
                )
            )
    fig.update_layout(
        title=f"{OUTCOME_LABELS.get(outcome, outcome)} per register",
        xaxis_title=OUTCOME_LABELS.get(outcome, outcome),
        yaxis_title="Register",
    )
    emit_figure(fig, save_to)
    return fig


__all__ = ["plot_register_pointrange", "register_rate_table"]
