"""Perturbation noise for resampled particle ensembles.

Supports one noise model per axis:
- Von Mises: planar rotation, angle offsets keyed to kappa
- ACG: volumetric rotation, offset quaternions composed on the right
- Gaussian: bivariate for translation, scalar for defocus
- Null: class labels are never perturbed

The magnitude of every model is scaled by a peak factor, whose cooling
schedule lives in PeakFactorSchedule.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Union
import math

import torch
from torch import Tensor

from .config import Axis, ParticleMode, PerturbationConfig, SpreadParams, as_axis, as_mode
from .directional import (
    normalize_quaternions,
    planar_angles,
    planar_from_angles,
    quaternion_multiply,
    sample_acg,
    sample_von_mises,
)
from .functional import DTYPE, ensure_generator


def _check_peak_factor(peak_factor: float) -> float:
    peak_factor = float(peak_factor)
    if not math.isfinite(peak_factor) or peak_factor < 0:
        raise ValueError(f"Peak factor must be a nonnegative number, got {peak_factor}")
    return peak_factor


class NoiseModel(ABC):
    """Abstract base class for per-axis perturbation."""

    @abstractmethod
    def perturb(
        self,
        values: Tensor,
        params: SpreadParams,
        peak_factor: float,
        generator: Optional[torch.Generator] = None,
    ) -> Tensor:
        """Compose an independent random offset onto every sample.

        Args:
            values: Sample values [K, ...]
            params: Fitted spread of the ensemble
            peak_factor: Scale of the offsets relative to the fitted spread
            generator: Random source

        Returns:
            perturbed: New sample values [K, ...]
        """
        pass

    @abstractmethod
    def get_noise_scale(self, params: SpreadParams, peak_factor: float) -> Tensor:
        """Get the effective noise scale (recorded by RefinementMonitor).

        Args:
            params: Fitted spread of the ensemble
            peak_factor: Scale of the offsets

        Returns:
            scale: Standard deviation per perturbed dimension
        """
        pass


class NullNoise(NoiseModel):
    """Leaves values untouched (discrete class labels)."""

    def perturb(self, values, params, peak_factor, generator=None):
        _check_peak_factor(peak_factor)
        return values.clone()

    def get_noise_scale(self, params, peak_factor):
        return torch.zeros(1, dtype=DTYPE)


class VonMisesRotationNoise(NoiseModel):
    """Planar rotation noise: angle offsets ~ vM(0, k1 / peak_factor^2).

    The angular standard deviation of a von Mises is roughly 1 / sqrt(kappa),
    so dividing kappa by peak_factor^2 scales the spread by peak_factor.
    """

    def perturb(self, values, params, peak_factor, generator=None):
        pf2 = _check_peak_factor(peak_factor) ** 2
        if pf2 == 0:
            return values.clone()
        generator = ensure_generator(generator)
        kappa = params.k1 / pf2
        offsets = sample_von_mises(values.shape[0], kappa, generator)
        return planar_from_angles(planar_angles(values) + offsets)

    def get_noise_scale(self, params, peak_factor):
        if params.k1 <= 0:
            return torch.tensor([math.pi], dtype=DTYPE)
        return torch.tensor([peak_factor / math.sqrt(params.k1)], dtype=DTYPE)


class ACGRotationNoise(NoiseModel):
    """Volumetric rotation noise: q <- q * d, d ~ ACG(diag(1, pf^2 k1, pf^2 k2, pf^2 k3))."""

    def perturb(self, values, params, peak_factor, generator=None):
        pf2 = _check_peak_factor(peak_factor) ** 2
        if pf2 == 0:
            return values.clone()
        generator = ensure_generator(generator)
        offsets = sample_acg(
            values.shape[0],
            (1.0, pf2 * params.k1, pf2 * params.k2, pf2 * params.k3),
            generator,
        )
        return normalize_quaternions(quaternion_multiply(values, offsets))

    def get_noise_scale(self, params, peak_factor):
        k = torch.tensor([params.k1, params.k2, params.k3], dtype=DTYPE)
        return peak_factor * torch.sqrt(k)


class GaussianTranslationNoise(NoiseModel):
    """Translation noise: bivariate Gaussian (s0, s1, rho) scaled by peak_factor."""

    def perturb(self, values, params, peak_factor, generator=None):
        peak_factor = _check_peak_factor(peak_factor)
        generator = ensure_generator(generator)
        z = torch.randn(values.shape[0], 2, generator=generator, dtype=DTYPE)
        dx = params.s0 * z[:, 0]
        dy = params.s1 * (params.rho * z[:, 0] + math.sqrt(1.0 - params.rho ** 2) * z[:, 1])
        return values + peak_factor * torch.stack([dx, dy], dim=-1)

    def get_noise_scale(self, params, peak_factor):
        return peak_factor * torch.tensor([params.s0, params.s1], dtype=DTYPE)


class GaussianDefocusNoise(NoiseModel):
    """Defocus noise: N(0, s) scaled by peak_factor."""

    def perturb(self, values, params, peak_factor, generator=None):
        peak_factor = _check_peak_factor(peak_factor)
        generator = ensure_generator(generator)
        z = torch.randn(values.shape[0], generator=generator, dtype=DTYPE)
        return values + peak_factor * params.s * z

    def get_noise_scale(self, params, peak_factor):
        return torch.tensor([peak_factor * params.s], dtype=DTYPE)


def create_noise_model(
    axis: Union[str, Axis],
    mode: Union[str, ParticleMode] = ParticleMode.THREE_D,
) -> NoiseModel:
    """Factory function to create the noise model of one axis.

    Args:
        axis: Axis to perturb
        mode: Rotation representation (only matters for the rotation axis)

    Returns:
        NoiseModel instance
    """
    axis = as_axis(axis)
    mode = as_mode(mode)

    if axis == Axis.CLASS:
        return NullNoise()
    elif axis == Axis.ROTATION:
        if mode == ParticleMode.TWO_D:
            return VonMisesRotationNoise()
        return ACGRotationNoise()
    elif axis == Axis.TRANSLATION:
        return GaussianTranslationNoise()
    elif axis == Axis.DEFOCUS:
        return GaussianDefocusNoise()
    else:
        raise ValueError(f"Unknown axis: {axis}")


class PeakFactorSchedule:
    """Per-axis peak factor with a geometric cooling rule.

    update(axis, compression) sets

        pf = clamp(min(pf * cooling, pf_max * max(compression, 1) ** (-1 / base)),
                   pf_min, pf_max)

    so the factor never grows between resets and shrinks faster once the
    ensemble sharpens.

    Example:
        >>> schedule = PeakFactorSchedule()
        >>> schedule.update(Axis.TRANSLATION, compression=4.0)
        0.25
    """

    def __init__(self, config: Optional[PerturbationConfig] = None):
        self.config = config if config is not None else PerturbationConfig()
        self._factors: Dict[Axis, float] = {}
        self.reset()

    def reset(self):
        """Set every axis back to the ceiling."""
        self._factors = {axis: self.config.peak_factor_max for axis in Axis}

    def get(self, axis: Union[str, Axis]) -> float:
        return self._factors[as_axis(axis)]

    def target(self, compression: float) -> float:
        """Peak factor suggested by a compression value alone."""
        compression = float(compression)
        if not math.isfinite(compression):
            return self.config.peak_factor_min
        c = max(compression, 1.0)
        return self.config.peak_factor_max * c ** (-1.0 / self.config.base)

    def update(self, axis: Union[str, Axis], compression: float) -> float:
        """Cool the factor of one axis and return the new value."""
        axis = as_axis(axis)
        cfg = self.config
        cooled = min(self._factors[axis] * cfg.cooling, self.target(compression))
        self._factors[axis] = min(cfg.peak_factor_max, max(cfg.peak_factor_min, cooled))
        return self._factors[axis]

    def copy(self) -> "PeakFactorSchedule":
        clone = PeakFactorSchedule(self.config)
        clone._factors = dict(self._factors)
        return clone

    def as_dict(self) -> Dict[str, float]:
        return {axis.value: value for axis, value in self._factors.items()}

    def __repr__(self) -> str:
        factors = ", ".join(f"{k}={v:.4g}" for k, v in self.as_dict().items())
        return f"PeakFactorSchedule({factors})"
