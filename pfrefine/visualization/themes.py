"""Visual theme configuration for pfrefine visualizations.

Provides consistent styling across all plots with support for
different themes: default, paper (publication-ready), and dark.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class Theme:
    """Visual theme configuration.

    Attributes:
        name: Theme identifier
        colors: Color palette; one entry per axis ('class', 'rotation',
            'translation', 'defocus') plus semantic entries
        font_sizes: Font sizes for different text elements
        line_widths: Line widths for different plot elements
        alpha_values: Transparency values for different elements
        figure_defaults: Default figure settings
    """
    name: str
    colors: Dict[str, str] = field(default_factory=dict)
    font_sizes: Dict[str, int] = field(default_factory=dict)
    line_widths: Dict[str, float] = field(default_factory=dict)
    alpha_values: Dict[str, float] = field(default_factory=dict)
    figure_defaults: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Fill in defaults for anything not provided."""
        self.colors = {**_DEFAULT_COLORS, **self.colors}
        self.font_sizes = {
            "title": 14,
            "axis_label": 12,
            "tick_label": 10,
            "legend": 10,
            **self.font_sizes,
        }
        self.line_widths = {
            "main": 2.0,
            "thin": 1.0,
            "threshold": 1.5,
            **self.line_widths,
        }
        self.alpha_values = {
            "samples": 0.5,
            "histogram": 0.7,
            "grid": 0.3,
            **self.alpha_values,
        }
        self.figure_defaults = {
            "figsize": (10, 6),
            "dpi": 100,
            "facecolor": "white",
            **self.figure_defaults,
        }

    def axis_color(self, axis_name: str) -> str:
        """Color of one axis by its lower-case name, e.g. 'rotation'."""
        return self.colors.get(axis_name, self.colors["primary"])

    def axis_colors(self) -> List[str]:
        return [self.axis_color(name) for name in ("class", "rotation", "translation", "defocus")]

    def apply_to_axes(self, ax) -> None:
        """Apply theme styling to matplotlib axes."""
        ax.set_facecolor(self.colors["background"])
        ax.grid(True, alpha=self.alpha_values["grid"], color=self.colors["grid"])
        ax.tick_params(labelsize=self.font_sizes["tick_label"], colors=self.colors["text"])
        for spine in ax.spines.values():
            spine.set_color(self.colors["grid"])

    def apply_to_figure(self, fig) -> None:
        fig.patch.set_facecolor(self.figure_defaults["facecolor"])


_DEFAULT_COLORS = {
    "primary": "#1f77b4",
    "class": "#8c564b",
    "rotation": "#1f77b4",
    "translation": "#2ca02c",
    "defocus": "#ff7f0e",
    "weights": "#d62728",
    "rank1": "#d62728",
    "ellipse": "#e377c2",
    "threshold": "#7f7f7f",
    "background": "#ffffff",
    "grid": "#e0e0e0",
    "text": "#333333",
}


# Pre-defined themes

DEFAULT_THEME = Theme(name="default")

PAPER_THEME = Theme(
    name="paper",
    colors={
        "primary": "#000000",
        "class": "#222222",
        "rotation": "#000000",
        "translation": "#444444",
        "defocus": "#666666",
        "weights": "#333333",
        "rank1": "#000000",
        "ellipse": "#555555",
        "threshold": "#888888",
        "grid": "#cccccc",
        "text": "#000000",
    },
    font_sizes={"title": 12, "axis_label": 11, "legend": 9},
    line_widths={"main": 1.5, "thin": 0.75, "threshold": 1.0},
    alpha_values={"samples": 0.4, "histogram": 0.6, "grid": 0.2},
    figure_defaults={"figsize": (6, 4), "dpi": 300},
)

DARK_THEME = Theme(
    name="dark",
    colors={
        "primary": "#58a6ff",
        "class": "#e3b341",
        "rotation": "#58a6ff",
        "translation": "#56d364",
        "defocus": "#f78166",
        "weights": "#f78166",
        "rank1": "#db61a2",
        "ellipse": "#a371f7",
        "threshold": "#8b949e",
        "background": "#0d1117",
        "grid": "#30363d",
        "text": "#c9d1d9",
    },
    figure_defaults={"facecolor": "#0d1117"},
)

# Theme registry
AVAILABLE_THEMES = {
    "default": DEFAULT_THEME,
    "paper": PAPER_THEME,
    "dark": DARK_THEME,
}


def get_theme(name: str) -> Theme:
    """Get theme by name.

    Raises:
        ValueError: If theme name is not recognized
    """
    if name not in AVAILABLE_THEMES:
        raise ValueError(
            f"Unknown theme '{name}'. Available themes: {list(AVAILABLE_THEMES.keys())}"
        )
    return AVAILABLE_THEMES[name]


def register_theme(name: str, theme: Theme) -> None:
    """Register a custom theme."""
    AVAILABLE_THEMES[name] = theme
