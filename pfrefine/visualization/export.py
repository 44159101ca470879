"""Export utilities for pfrefine visualizations."""

import os
from typing import List, Optional, TYPE_CHECKING

from ..utils.config import Axis
from .plots import (
    _check_matplotlib,
    create_dashboard,
    plot_class_distribution,
    plot_defocus_ensemble,
    plot_refinement_history,
    plot_rotation_ensemble,
    plot_translation_ensemble,
    plot_weights,
)
from .themes import Theme

if TYPE_CHECKING:
    from ..core.particle_filter import ParticleFilter
    from ..utils.monitoring import RefinementMonitor


def save_all_plots(
    pf: "ParticleFilter",
    output_dir: str,
    monitor: Optional["RefinementMonitor"] = None,
    format: str = "png",
    dpi: int = 150,
    theme: Optional[Theme] = None,
) -> List[str]:
    """Save every ensemble plot (and the history plots) to a directory.

    Args:
        pf: ParticleFilter to draw
        output_dir: Output directory path, created if missing
        monitor: Optional RefinementMonitor; adds history plots
        format: Image format ("png", "pdf", "svg")
        dpi: Resolution for raster formats
        theme: Visual theme

    Returns:
        List of saved file paths
    """
    _check_matplotlib()
    import matplotlib.pyplot as plt

    os.makedirs(output_dir, exist_ok=True)
    saved_files = []

    plot_configs = [
        ("class", lambda: plot_class_distribution(pf, theme=theme)),
        ("rotation", lambda: plot_rotation_ensemble(pf, theme=theme)),
        ("translation", lambda: plot_translation_ensemble(pf, theme=theme)),
        ("defocus", lambda: plot_defocus_ensemble(pf, theme=theme)),
    ]
    for axis in Axis:
        name = axis.name.lower()
        plot_configs.append((f"{name}_weights", lambda axis=axis: plot_weights(pf, axis, theme=theme)))
    if monitor is not None and monitor.get_history("score"):
        for metric in ("ess", "compression", "diff"):
            plot_configs.append(
                (f"history_{metric}", lambda metric=metric: plot_refinement_history(monitor, metric, theme=theme))
            )
    plot_configs.append(("dashboard", lambda: (create_dashboard(pf, monitor, theme=theme),)))

    for name, plot_fn in plot_configs:
        fig = plot_fn()[0]
        filepath = os.path.join(output_dir, f"{name}.{format}")
        fig.savefig(filepath, format=format, dpi=dpi, bbox_inches="tight")
        plt.close(fig)
        saved_files.append(filepath)

    return saved_files
