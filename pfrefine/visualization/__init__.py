"""pfrefine Visualization Submodule.

Matplotlib views of a ParticleFilter's four ensembles and of the round
history recorded by a RefinementMonitor.

Quick Start:
    >>> from pfrefine.visualization import create_dashboard, save_all_plots
    >>> fig = create_dashboard(pf, monitor)
    >>> save_all_plots(pf, "./figures/", monitor=monitor)

Requires matplotlib (``pip install pfrefine[viz]``).
"""

from .themes import (
    Theme,
    get_theme,
    register_theme,
    AVAILABLE_THEMES,
)
from .plots import (
    plot_weights,
    plot_class_distribution,
    plot_rotation_ensemble,
    plot_translation_ensemble,
    plot_defocus_ensemble,
    plot_refinement_history,
    recentre_ellipse,
    create_dashboard,
)
from .export import save_all_plots

__all__ = [
    # Themes
    "Theme",
    "get_theme",
    "register_theme",
    "AVAILABLE_THEMES",
    # Plots
    "plot_weights",
    "plot_class_distribution",
    "plot_rotation_ensemble",
    "plot_translation_ensemble",
    "plot_defocus_ensemble",
    "plot_refinement_history",
    "recentre_ellipse",
    "create_dashboard",
    # Export
    "save_all_plots",
]
