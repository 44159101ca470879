"""Particle filters for per-image refinement (pfrefine).

Each observation (a 2D image) keeps four independent weighted ensembles
over its latent state:
- **Class**: which reference the image belongs to
- **Rotation**: in-plane angle (2D references) or quaternion (3D references)
- **Translation**: 2D offset
- **Defocus**: multiplicative defocus correction

An external scorer assigns weights; the filter normalizes, fits spread
statistics, resamples, and perturbs, shrinking the perturbation as the
ensembles sharpen.

Example:
    >>> import pfrefine as pr
    >>>
    >>> sym = pr.Symmetry.from_point_group("C2")
    >>> pf = pr.ParticleFilter("3d", n_c=1, n_r=1000, n_t=500, n_d=1,
    ...                        trans_s=2.0, symmetry=sym, seed=0)
    >>>
    >>> # One refinement round of the rotation axis
    >>> pf.set_log_weights("r", log_likelihoods)
    >>> pf.update_rank1("r")
    >>> pf.fit("r")
    >>> pf.set_peak_factor("r")
    >>> pf.resample("r", 1000)
    >>> pf.perturb("r")

See Also:
    - `pfrefine.core`: the particle filter and its ensembles
    - `pfrefine.utils`: weights, resampling, noise and directional statistics
    - `pfrefine.visualization`: matplotlib views (optional, not imported here)
"""

from .utils.config import (
    Axis,
    ParticleMode,
    SpreadParams,
    PerturbationConfig,
    FitConfig,
)
from .utils.resampling import ResampleScheme
from .utils.monitoring import RefinementMonitor, check_numerical_health
from .core.symmetry import Symmetry
from .core.rank import Rank1
from .core.particle_filter import ParticleFilter

__version__ = "0.1.0"
__author__ = "pfrefine Authors"

__all__ = [
    "core",
    "utils",
    "Axis",
    "ParticleMode",
    "SpreadParams",
    "PerturbationConfig",
    "FitConfig",
    "ResampleScheme",
    "RefinementMonitor",
    "check_numerical_health",
    "Symmetry",
    "Rank1",
    "ParticleFilter",
]
