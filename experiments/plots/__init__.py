"""Plotting utilities for the verb-phrase analysis."""

from .data_overview import plot_rate_by_group, plot_rate_density, plot_rate_vs_density
from .prior_posterior import plot_all_prior_posterior, plot_level_effects, plot_prior_posterior
from .register_summary import plot_register_pointrange
from .save_config import PlotSaveConfig, PlotSaveDestinations, emit_figure

__all__ = [
    "PlotSaveConfig",
    "PlotSaveDestinations",
    "emit_figure",
    "plot_all_prior_posterior",
    "plot_level_effects",
    "plot_prior_posterior",
    "plot_rate_by_group",
    "plot_rate_density",
    "plot_rate_vs_density",
    "plot_register_pointrange",
]
