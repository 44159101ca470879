"""Enumerations, distribution parameters and tunable constants.

All configuration objects are frozen dataclasses; pass modified copies
(dataclasses.replace) rather than mutating shared state.
"""

from dataclasses import dataclass
from enum import Enum


class Axis(Enum):
    """The four independent latent variables of one observation."""
    CLASS = "c"
    ROTATION = "r"
    TRANSLATION = "t"
    DEFOCUS = "d"


class ParticleMode(Enum):
    """Rotation representation, fixed at construction.

    TWO_D: the reference is a 2D image, rotations are planar angles
    THREE_D: the reference is a 3D volume, rotations are quaternions
    """
    TWO_D = "2d"
    THREE_D = "3d"


def as_axis(axis) -> Axis:
    """Accept an Axis or its string value."""
    if isinstance(axis, Axis):
        return axis
    return Axis(axis)


def as_mode(mode) -> ParticleMode:
    """Accept a ParticleMode or its string value."""
    if isinstance(mode, ParticleMode):
        return mode
    return ParticleMode(mode)


@dataclass(frozen=True)
class SpreadParams:
    """Fitted spread of every continuous axis.

    Attributes:
        k1, k2, k3: Rotation concentration. Volumetric mode: eigenvalue
            ratios of the ACG matrix in (0, 1], smaller is tighter.
            Planar mode: k1 is the von Mises kappa (larger is tighter);
            k2 and k3 mirror it.
        s0, s1: Translation standard deviations along x and y
        rho: Translation correlation, strictly inside (-1, 1)
        s: Defocus standard deviation
    """
    k1: float = 1.0
    k2: float = 1.0
    k3: float = 1.0
    s0: float = 1.0
    s1: float = 1.0
    rho: float = 0.0
    s: float = 0.05

    def __post_init__(self):
        for name in ("k1", "k2", "k3", "s0", "s1", "s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be nonnegative, got {getattr(self, name)}")
        if not -1.0 < self.rho < 1.0:
            raise ValueError(f"rho must lie strictly inside (-1, 1), got {self.rho}")

    @classmethod
    def uninformative(cls, mode, trans_s: float, defocus_s: float) -> "SpreadParams":
        """Parameters describing the uniform/Gaussian priors used by reset."""
        mode = as_mode(mode)
        k = 1.0 if mode == ParticleMode.THREE_D else 0.0
        return cls(k1=k, k2=k, k3=k, s0=trans_s, s1=trans_s, rho=0.0, s=defocus_s)


@dataclass(frozen=True)
class PerturbationConfig:
    """Peak-factor bounds and cooling schedule of the perturbation engine.

    Attributes:
        peak_factor_max: Ceiling, also the starting value after a reset
        peak_factor_min: Floor
        cooling: Geometric cooling multiplier applied every update (<= 1)
        base: Root taken of the compression when deriving the target factor
    """
    peak_factor_max: float = 0.5
    peak_factor_min: float = 1e-3
    cooling: float = 0.99
    base: float = 2.0

    def __post_init__(self):
        if not 0 < self.peak_factor_min <= self.peak_factor_max:
            raise ValueError("Require 0 < peak_factor_min <= peak_factor_max")
        if not 0 < self.cooling <= 1:
            raise ValueError(f"cooling must be in (0, 1], got {self.cooling}")
        if self.base <= 0:
            raise ValueError(f"base must be positive, got {self.base}")


@dataclass(frozen=True)
class FitConfig:
    """Clamps and floors used by the statistics fits.

    Attributes:
        rho_max: Translation correlation is clamped to [-rho_max, rho_max]
        sigma_floor_t: Minimum translation standard deviation
        sigma_floor_d: Minimum defocus standard deviation
        acg_floor: Minimum ACG eigenvalue ratio
        kappa_max: Maximum von Mises concentration
        acg_max_iter: Iteration cap of the ACG fit
        acg_tol: Convergence tolerance of the ACG fit
    """
    rho_max: float = 0.9
    sigma_floor_t: float = 1e-3
    sigma_floor_d: float = 1e-5
    acg_floor: float = 1e-6
    kappa_max: float = 1e6
    acg_max_iter: int = 100
    acg_tol: float = 1e-10

    def __post_init__(self):
        if not 0 < self.rho_max < 1:
            raise ValueError(f"rho_max must be in (0, 1), got {self.rho_max}")
        if self.sigma_floor_t <= 0 or self.sigma_floor_d <= 0:
            raise ValueError("Sigma floors must be positive")
        if not 0 < self.acg_floor <= 1:
            raise ValueError(f"acg_floor must be in (0, 1], got {self.acg_floor}")
        if self.kappa_max <= 0:
            raise ValueError(f"kappa_max must be positive, got {self.kappa_max}")
