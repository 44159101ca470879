"""Per-observation particle filter and its components."""

from .ensembles import (
    AxisEnsemble,
    ClassEnsemble,
    RotationEnsemble,
    TranslationEnsemble,
    DefocusEnsemble,
)
from .symmetry import Symmetry
from .rank import Rank1, Rank1Tracker
from .particle_filter import ParticleFilter
from .io import format_header, format_particles, display, save, save_binary

__all__ = [
    # Ensembles
    "AxisEnsemble",
    "ClassEnsemble",
    "RotationEnsemble",
    "TranslationEnsemble",
    "DefocusEnsemble",
    # Symmetry
    "Symmetry",
    # Rank-1 tracking
    "Rank1",
    "Rank1Tracker",
    # Filter
    "ParticleFilter",
    # I/O
    "format_header",
    "format_particles",
    "display",
    "save",
    "save_binary",
]
