from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import geopandas as gpd
import matplotlib

matplotlib.use("Agg")
import matplotlib as mpl
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from loguru import logger

from nyc_poll_sites.analysis.config import COLS
from nyc_poll_sites.analysis.models import OlsResult
from nyc_poll_sites.config import BOROUGH_COUNTY_FIPS, POPULATION_BREAKS
from .io import mkdir_p
from .keys import county_from_geoid


def population_norm(breaks: Sequence[float] = POPULATION_BREAKS, cmap: str = "YlGnBu"):
    """Fixed class breaks; values above the last break share the top colour."""
    cm = plt.get_cmap(cmap)
    norm = mpl.colors.BoundaryNorm(list(breaks), ncolors=cm.N, extend="max")
    return cm, norm


def borough_map(
    tracts: gpd.GeoDataFrame,
    points: gpd.GeoDataFrame,
    borough: str,
    fname: Path,
    breaks: Sequence[float] = POPULATION_BREAKS,
) -> Path:
    """Choropleth of tract population with the borough's poll sites on top."""
    county = BOROUGH_COUNTY_FIPS[borough]
    t = tracts[county_from_geoid(tracts[COLS.geoid]) == county]
    p = points[points[COLS.borough] == borough] if COLS.borough in points.columns else points.iloc[0:0]
    cm, norm = population_norm(breaks)

    fig, ax = plt.subplots(figsize=(9, 9), dpi=150)
    t.plot(
        column=COLS.estimate,
        cmap=cm,
        norm=norm,
        linewidth=0.2,
        edgecolor="#666666",
        ax=ax,
        missing_kwds={"color": "#f2f2f2", "edgecolor": "#cccccc", "hatch": "///", "linewidth": 0.2},
    )
    if len(p):
        p.plot(ax=ax, color="#d7301f", markersize=6, alpha=0.8, label="poll site")
        ax.legend(loc="upper left", frameon=False)

    sm = mpl.cm.ScalarMappable(norm=norm, cmap=cm)
    cbar = fig.colorbar(sm, ax=ax, shrink=0.6, ticks=list(breaks))
    cbar.set_label("Tract population (ACS estimate)")
    ax.set_axis_off()
    ax.set_aspect("equal")
    ax.set_title(f"{borough.title()}: poll sites and tract population ({len(p)} sites, {len(t)} tracts)", loc="left")

    mkdir_p(fname.parent)
    fig.savefig(fname, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    logger.info(f"Map saved: {fname}")
    return fname


def borough_maps(tracts: gpd.GeoDataFrame, points: gpd.GeoDataFrame, out_dir: Path) -> List[Path]:
    return [
        borough_map(tracts, points, b, out_dir / f"poll_sites_{b.lower().replace(' ', '_')}.png")
        for b in BOROUGH_COUNTY_FIPS
    ]


def count_vs_population(summary: pd.DataFrame, fname: Path, model: Optional[OlsResult] = None) -> Path:
    fig, ax = plt.subplots(figsize=(7, 5), dpi=150)
    ax.scatter(summary[COLS.estimate], summary[COLS.poll_site_count], s=8, alpha=0.5, color="#2c7fb8")
    if model is not None and COLS.estimate in model.params:
        x = np.linspace(0, float(np.nanmax(summary[COLS.estimate])), 100)
        y = model.params["const"] + model.params[COLS.estimate] * x
        ax.plot(x, y, color="#d7301f", linewidth=1.5, label=f"OLS fit (R² = {model.rsquared:.3f})")
        ax.legend(frameon=False)
    ax.set_xlabel("Tract population (ACS estimate)")
    ax.set_ylabel("Poll sites in tract")
    ax.spines[["top", "right"]].set_visible(False)

    mkdir_p(fname.parent)
    fig.savefig(fname, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    logger.info(f"Plot saved: {fname}")
    return fname


def render_figures(
    tracts: gpd.GeoDataFrame,
    points: gpd.GeoDataFrame,
    summary: pd.DataFrame,
    models: Dict[str, OlsResult],
    out_dir: Path,
) -> List[Path]:
    figures = borough_maps(tracts, points, out_dir)
    figures.append(count_vs_population(summary, out_dir / "poll_sites_vs_population.png", models.get("population")))
    return figures
