"""Shared configuration for storing Plotly figures on disk."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import plotly.graph_objects as go


@dataclass(frozen=True)
class PlotSaveDestinations:
    """Resolved destinations for saving a single plot."""

    directory: Path
    slug: str
    save_static: bool
    save_html: bool

    def ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def png_path(self) -> Path:
        return self.directory / f"{self.slug}.png"

    @property
    def html_path(self) -> Path:
        return self.directory / f"{self.slug}.html"

    def child(self, suffix: str) -> "PlotSaveDestinations":
        """Destination for one of several figures produced by a single plot call."""
        return PlotSaveDestinations(
            directory=self.directory,
            slug=f"{self.slug}-{suffix}",
            save_static=self.save_static,
            save_html=self.save_html,
        )


@dataclass(frozen=True)
class PlotSaveConfig:
    """Factory for generating per-plot destinations under a structured folder."""

    base_dir: Path
    run_tag: str
    save_static: bool = True
    save_html: bool = True

    def for_plot(self, slug: str) -> PlotSaveDestinations:
        return PlotSaveDestinations(
            directory=self.base_dir / self.run_tag,
            slug=slug,
            save_static=self.save_static,
            save_html=self.save_html,
        )


def emit_figure(fig: go.Figure, save_to: Optional[PlotSaveDestinations]) -> None:
    """Write the figure to the configured destinations, or show it interactively."""
    if save_to is None:
        fig.show()
        return
    save_to.ensure_dir()
    if save_to.save_static:
        fig.write_image(str(save_to.png_path), engine="kaleido")
    if save_to.save_html:
        fig.write_html(
            str(save_to.html_path),
            include_plotlyjs="cdn",
            full_html=True,
        )


__all__ = ["PlotSaveConfig", "PlotSaveDestinations", "emit_figure"]
