"""Ensemble and refinement-history plots.

- plot_weights: sorted weight curve of one axis with the half-height line
- plot_class_distribution: total weight per class label
- plot_rotation_ensemble: planar angles, or distance to the rank-1 quaternion
- plot_translation_ensemble: weighted offsets and the re-centre ellipse
- plot_defocus_ensemble: weighted defocus histogram
- plot_refinement_history: per-axis metric recorded by a RefinementMonitor
- create_dashboard: all of the above on one figure
"""

import math
from typing import Optional, Tuple, TYPE_CHECKING

import numpy as np
import torch

# Matplotlib imports with lazy loading
try:
    import matplotlib.pyplot as plt
    from matplotlib.figure import Figure
    from matplotlib.axes import Axes
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

from ..utils.config import Axis, ParticleMode, as_axis
from ..utils.weights import normalize_weights
from .themes import DEFAULT_THEME, Theme

if TYPE_CHECKING:
    from ..core.particle_filter import ParticleFilter
    from ..utils.monitoring import RefinementMonitor


def _check_matplotlib():
    if not HAS_MATPLOTLIB:
        raise ImportError(
            "matplotlib is required for visualization. "
            "Install with: pip install matplotlib"
        )


def _create_figure(ax=None, figsize: Tuple[int, int] = (8, 5)) -> Tuple["Figure", "Axes"]:
    """Create or get figure and axes."""
    _check_matplotlib()
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.get_figure()
    return fig, ax


def _axis_name(axis: Axis) -> str:
    return axis.name.lower()


def _weights(pf: "ParticleFilter", axis: Axis) -> np.ndarray:
    return normalize_weights(pf.weights(axis)).numpy()


def plot_weights(
    pf: "ParticleFilter",
    axis,
    ax=None,
    theme: Optional[Theme] = None,
    figsize: Tuple[int, int] = (8, 4),
) -> Tuple["Figure", "Axes"]:
    """Plot the normalized weights of one axis sorted in descending order.

    The dashed line marks half the maximum weight, the cut used by
    keep_half_height_peak.
    """
    axis = as_axis(axis)
    theme = theme or DEFAULT_THEME
    fig, ax = _create_figure(ax, figsize)
    theme.apply_to_axes(ax)

    w = np.sort(_weights(pf, axis))[::-1]
    rank = np.arange(1, len(w) + 1)
    ax.plot(rank, w, color=theme.axis_color(_axis_name(axis)),
            linewidth=theme.line_widths["main"], drawstyle="steps-mid")
    ax.axhline(w[0] / 2.0, color=theme.colors["threshold"], linestyle="--",
               linewidth=theme.line_widths["threshold"], label="Half height")

    ax.set_xlabel("Sample (sorted by weight)")
    ax.set_ylabel("Weight")
    ax.set_title(f"{_axis_name(axis).capitalize()} weights (ESS {pf.ess(axis):.1f} / {len(w)})")
    ax.legend(loc="upper right", fontsize=theme.font_sizes["legend"])
    return fig, ax


def plot_class_distribution(
    pf: "ParticleFilter",
    ax=None,
    theme: Optional[Theme] = None,
    figsize: Tuple[int, int] = (8, 4),
) -> Tuple["Figure", "Axes"]:
    """Bar chart of the total weight carried by each class label."""
    theme = theme or DEFAULT_THEME
    fig, ax = _create_figure(ax, figsize)
    theme.apply_to_axes(ax)

    labels = pf.values(Axis.CLASS).numpy()
    mass = np.bincount(labels, weights=_weights(pf, Axis.CLASS), minlength=pf.n_classes)
    ax.bar(np.arange(pf.n_classes), mass, color=theme.axis_color("class"),
           alpha=theme.alpha_values["histogram"])
    ax.axvline(pf.rank1(Axis.CLASS), color=theme.colors["rank1"], linestyle=":",
               linewidth=theme.line_widths["thin"], label="Rank-1")

    ax.set_xlabel("Class")
    ax.set_ylabel("Weight")
    ax.set_title("Class distribution")
    ax.legend(loc="upper right", fontsize=theme.font_sizes["legend"])
    return fig, ax


def plot_rotation_ensemble(
    pf: "ParticleFilter",
    ax=None,
    theme: Optional[Theme] = None,
    bins: int = 36,
    figsize: Tuple[int, int] = (8, 4),
) -> Tuple["Figure", "Axes"]:
    """Weighted histogram of the rotation ensemble.

    Planar mode shows the in-plane angles in degrees. Volumetric mode shows
    the geodesic distance acos(|<q, rank1>|) of every quaternion to the
    current rank-1 rotation, the same measure diff() reports.
    """
    theme = theme or DEFAULT_THEME
    fig, ax = _create_figure(ax, figsize)
    theme.apply_to_axes(ax)

    values = pf.values(Axis.ROTATION)
    reference = pf.rank1(Axis.ROTATION)
    if pf.mode == ParticleMode.TWO_D:
        data = np.degrees(torch.atan2(values[:, 1], values[:, 0]).numpy())
        marker = math.degrees(math.atan2(float(reference[1]), float(reference[0])))
        value_range = (-180.0, 180.0)
        xlabel = "Angle (deg)"
    else:
        dots = torch.clamp((values @ reference).abs(), max=1.0)
        data = torch.acos(dots).numpy()
        marker = 0.0
        value_range = (0.0, math.pi / 2.0)
        xlabel = "Distance to rank-1 (rad)"

    ax.hist(data, bins=bins, range=value_range, weights=_weights(pf, Axis.ROTATION),
            color=theme.axis_color("rotation"), alpha=theme.alpha_values["histogram"])
    ax.axvline(marker, color=theme.colors["rank1"], linestyle=":",
               linewidth=theme.line_widths["thin"], label="Rank-1")

    ax.set_xlabel(xlabel)
    ax.set_ylabel("Weight")
    ax.set_title(f"Rotation ({pf.mode.value}, compression {pf.compression(Axis.ROTATION):.3g})")
    ax.legend(loc="upper right", fontsize=theme.font_sizes["legend"])
    return fig, ax


def recentre_ellipse(pf: "ParticleFilter", n_points: int = 200) -> np.ndarray:
    """Boundary of the re-centre ellipse as points [n_points, 2].

    Matches re_centre(): centred on the origin, sigmas floored at trans_s,
    squared Mahalanobis radius -2 ln(trans_q).
    """
    p = pf.params
    s0 = max(p.s0, pf.trans_s)
    s1 = max(p.s1, pf.trans_s)
    radius = math.sqrt(-2.0 * math.log(pf.trans_q))
    t = np.linspace(0.0, 2.0 * math.pi, n_points)
    x = s0 * radius * np.cos(t)
    y = s1 * radius * (p.rho * np.cos(t) + math.sqrt(1.0 - p.rho ** 2) * np.sin(t))
    return np.stack([x, y], axis=-1)


def plot_translation_ensemble(
    pf: "ParticleFilter",
    ax=None,
    theme: Optional[Theme] = None,
    show_ellipse: bool = True,
    figsize: Tuple[int, int] = (6, 6),
) -> Tuple["Figure", "Axes"]:
    """Scatter of the translation offsets, marker area proportional to weight."""
    theme = theme or DEFAULT_THEME
    fig, ax = _create_figure(ax, figsize)
    theme.apply_to_axes(ax)

    t = pf.values(Axis.TRANSLATION).numpy()
    w = _weights(pf, Axis.TRANSLATION)
    sizes = 5.0 + 200.0 * w / w.max()
    ax.scatter(t[:, 0], t[:, 1], s=sizes, color=theme.axis_color("translation"),
               alpha=theme.alpha_values["samples"], edgecolors="none")

    best = pf.rank1(Axis.TRANSLATION).numpy()
    ax.scatter([best[0]], [best[1]], marker="x", s=80, color=theme.colors["rank1"], label="Rank-1")
    if show_ellipse:
        boundary = recentre_ellipse(pf)
        ax.plot(boundary[:, 0], boundary[:, 1], color=theme.colors["ellipse"], linestyle="--",
                linewidth=theme.line_widths["threshold"], label=f"Re-centre ({1 - pf.trans_q:.0%})")

    ax.set_aspect("equal", adjustable="datalim")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_title(f"Translation (compression {pf.compression(Axis.TRANSLATION):.3g})")
    ax.legend(loc="upper right", fontsize=theme.font_sizes["legend"])
    return fig, ax


def plot_defocus_ensemble(
    pf: "ParticleFilter",
    ax=None,
    theme: Optional[Theme] = None,
    bins: int = 30,
    figsize: Tuple[int, int] = (8, 4),
) -> Tuple["Figure", "Axes"]:
    """Weighted histogram of the defocus multipliers."""
    theme = theme or DEFAULT_THEME
    fig, ax = _create_figure(ax, figsize)
    theme.apply_to_axes(ax)

    d = pf.values(Axis.DEFOCUS).numpy()
    ax.hist(d, bins=bins, weights=_weights(pf, Axis.DEFOCUS),
            color=theme.axis_color("defocus"), alpha=theme.alpha_values["histogram"])
    ax.axvline(pf.rank1(Axis.DEFOCUS), color=theme.colors["rank1"], linestyle=":",
               linewidth=theme.line_widths["thin"], label="Rank-1")

    ax.set_xlabel("Defocus factor")
    ax.set_ylabel("Weight")
    ax.set_title(f"Defocus (compression {pf.compression(Axis.DEFOCUS):.3g})")
    ax.legend(loc="upper right", fontsize=theme.font_sizes["legend"])
    return fig, ax


def plot_refinement_history(
    monitor: "RefinementMonitor",
    metric: str = "ess",
    ax=None,
    theme: Optional[Theme] = None,
    log_scale: bool = False,
    figsize: Tuple[int, int] = (10, 4),
) -> Tuple["Figure", "Axes"]:
    """Plot one recorded metric of every axis against the round number.

    Args:
        monitor: RefinementMonitor with logged rounds
        metric: Suffix of the history keys ('ess', 'max_weight',
            'compression', 'diversity', 'diff') or 'score'
        ax: Matplotlib axes (created if None)
        theme: Visual theme
        log_scale: Logarithmic y axis
        figsize: Figure size if creating new figure

    Returns:
        Matplotlib figure and axes
    """
    theme = theme or DEFAULT_THEME
    fig, ax = _create_figure(ax, figsize)
    theme.apply_to_axes(ax)

    if metric == "score":
        series = {"score": monitor.get_history("score")}
    else:
        series = {
            _axis_name(axis): monitor.get_history(f"{_axis_name(axis)}_{metric}")
            for axis in Axis
        }
    if not any(series.values()):
        raise ValueError(f"No history recorded for metric '{metric}'")

    for name, values in series.items():
        ax.plot(np.arange(len(values)), values, color=theme.axis_color(name),
                linewidth=theme.line_widths["main"], label=name)

    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Round")
    ax.set_ylabel(metric)
    ax.set_title(f"{metric} per round")
    ax.legend(loc="best", fontsize=theme.font_sizes["legend"])
    return fig, ax


def create_dashboard(
    pf: "ParticleFilter",
    monitor: Optional["RefinementMonitor"] = None,
    figsize: Tuple[int, int] = (16, 10),
    theme: Optional[Theme] = None,
) -> "Figure":
    """Create a multi-panel view of the four ensembles.

    With a monitor holding at least one round, the last panel shows the
    per-axis compression history; otherwise the rotation weights.
    """
    _check_matplotlib()
    theme = theme or DEFAULT_THEME

    fig = plt.figure(figsize=figsize)
    theme.apply_to_figure(fig)
    gs = fig.add_gridspec(2, 3, hspace=0.35, wspace=0.3)

    plot_class_distribution(pf, ax=fig.add_subplot(gs[0, 0]), theme=theme)
    plot_rotation_ensemble(pf, ax=fig.add_subplot(gs[0, 1]), theme=theme)
    plot_translation_ensemble(pf, ax=fig.add_subplot(gs[0, 2]), theme=theme)
    plot_defocus_ensemble(pf, ax=fig.add_subplot(gs[1, 0]), theme=theme)
    plot_weights(pf, Axis.TRANSLATION, ax=fig.add_subplot(gs[1, 1]), theme=theme)

    last = fig.add_subplot(gs[1, 2])
    if monitor is not None and monitor.get_history("score"):
        plot_refinement_history(monitor, "compression", ax=last, theme=theme, log_scale=True)
    else:
        plot_weights(pf, Axis.ROTATION, ax=last, theme=theme)

    fig.suptitle(f"Particle filter ({pf.mode.value}, score {pf.score():.4g})",
                 fontsize=theme.font_sizes["title"])
    return fig
