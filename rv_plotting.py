from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

from rv_data import (
    RUNNER_SYMBOL,
    GraphCache,
    GraphSeries,
    MapCache,
    hairline_for,
    interior_index,
    path_degrees,
)


SERIES_COLORS = {
    "distance_pace": "green",
    "distance_heart_rate": "blue",
    "distance_cadence": "cyan",
    "distance_elevation": "red",
    "distance_temperature": "brown",
}
PATH_COLOR = "blue"
START_COLOR = "tab:green"
STOP_COLOR = "tab:red"

DPI = 120

_MATPLOTLIB_STYLE_READY = False


def _import_pyplot():
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except Exception as e:  # pragma: no cover
        raise RuntimeError("matplotlib is required for plotting. Install with: pip install matplotlib") from e
    return plt


def _ensure_matplotlib_style(plt) -> None:
    global _MATPLOTLIB_STYLE_READY
    if not _MATPLOTLIB_STYLE_READY:
        try:
            plt.style.use("ggplot")
        except OSError:
            pass
        _MATPLOTLIB_STYLE_READY = True


def _figsize(size_px: Optional[Tuple[int, int]], default: Tuple[float, float]) -> Tuple[float, float]:
    if size_px is None:
        return default
    width, height = size_px
    return max(width, 1) / DPI, max(height, 1) / DPI


def _usable_limits(lo: float, hi: float) -> bool:
    return math.isfinite(lo) and math.isfinite(hi) and hi > lo


def _setup_value_axis(ax, series: GraphSeries, lo: float, hi: float, n_ticks: int = 5) -> None:
    import numpy as np

    ticks = [float(t) for t in np.linspace(lo, hi, n_ticks)]
    ax.set_ylim(lo, hi)
    ax.set_yticks(ticks)
    ax.set_yticklabels([series.format_y(t) for t in ticks])


def _draw_series(ax, key: str, series: GraphSeries, position: Optional[float]) -> None:
    xs = series.plotvals[:, 0]
    ys = series.plotvals[:, 1]
    ax.plot(xs, ys, color=SERIES_COLORS.get(key, "C0"), linewidth=1.2)
    ax.set_title(series.caption, fontsize=12)
    ax.set_xlabel(series.xlabel)
    ax.set_ylabel(series.ylabel)
    (x0, x1), (y0, y1) = series.plot_range
    if _usable_limits(x0, x1):
        ax.set_xlim(x0, x1)
    if _usable_limits(y0, y1):
        _setup_value_axis(ax, series, y0, y1)
    ax.grid(True, which="both", axis="both", linestyle=":", alpha=0.6)

    if position is None:
        return
    hair = hairline_for(series, position)
    if hair is None:
        return
    ax.plot(
        [hair.x, hair.x],
        [hair.y_min, hair.y_max],
        linestyle=(0, (1, 4)),
        linewidth=1.0,
        color="black",
        label=hair.label,
    )
    ax.legend(loc="upper left", fontsize=8, handlelength=0, frameon=False)


def plot_graphs(
    cache: GraphCache,
    out_png: str,
    position: Optional[float] = None,
    size_px: Optional[Tuple[int, int]] = None,
) -> int:
    """Draw the non-empty series on a 2x3 grid; returns the number of panels drawn."""
    plt = _import_pyplot()
    _ensure_matplotlib_style(plt)

    fig, axes = plt.subplots(2, 3, figsize=_figsize(size_px, (15, 8)))
    flat = list(axes.flat)
    drawn = 0
    for ax, (key, series) in zip(flat, cache.series()):
        if len(series) == 0:
            ax.set_visible(False)
            continue
        _draw_series(ax, key, series, position)
        drawn += 1
    for ax in flat[len(cache.series()):]:
        ax.set_visible(False)

    fig.tight_layout()
    fig.savefig(out_png, dpi=DPI)
    plt.close(fig)
    logging.debug("Drew %d graph panels", drawn)
    return drawn


def plot_map(
    map_cache: MapCache,
    out_png: str,
    position: Optional[float] = None,
    symbol: str = RUNNER_SYMBOL,
    center: Optional[Sequence[float]] = None,
    size_px: Optional[Tuple[int, int]] = None,
) -> None:
    plt = _import_pyplot()
    _ensure_matplotlib_style(plt)

    fig, ax = plt.subplots(figsize=_figsize(size_px, (8, 8)))
    path = path_degrees(map_cache)
    n = len(map_cache)
    if n:
        lats = path[:, 0]
        lons = path[:, 1]
        ax.plot(lons, lats, color=PATH_COLOR, linewidth=2.0)
        ax.plot([lons[0]], [lats[0]], marker="o", markersize=9, color=START_COLOR, label="Start")
        ax.plot([lons[-1]], [lats[-1]], marker="o", markersize=9, color=STOP_COLOR, label="Stop")
        idx = interior_index(position, n) if position is not None else None
        if idx is not None:
            ax.annotate(symbol, (lons[idx], lats[idx]), ha="center", va="baseline", fontsize=18)
        ax.legend(loc="upper right", fontsize=8)
    elif center is not None:
        ax.plot([center[1]], [center[0]], marker="+", color="0.4")
    ax.set_xlabel("Longitude (°)")
    ax.set_ylabel("Latitude (°)")
    ax.set_aspect("equal", adjustable="datalim")

    fig.tight_layout()
    fig.savefig(out_png, dpi=DPI)
    plt.close(fig)
