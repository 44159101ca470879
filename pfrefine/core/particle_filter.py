"""Per-observation particle filter over class, rotation, translation and defocus.

The filter holds one weighted ensemble per axis. A refinement round, driven
from outside, typically looks like

    pf.set_log_weights("r", log_likelihoods)   # external scoring
    pf.normalize("r")
    pf.update_rank1("r")
    pf.fit("r")
    pf.set_peak_factor("r")
    pf.resample("r", n)
    pf.perturb("r")

Axes are independent: every operation either takes an axis ('c', 'r', 't',
'd' or an Axis member) or applies to all four when the axis is None.
"""

from dataclasses import asdict, replace
import math
from typing import Dict, List, Optional, Union

import torch
from torch import Tensor

from ..utils.config import (
    Axis,
    FitConfig,
    ParticleMode,
    PerturbationConfig,
    SpreadParams,
    as_axis,
    as_mode,
)
from ..utils.directional import (
    angle_to_rotation_matrix,
    fit_acg,
    fit_bivariate_gaussian,
    fit_gaussian_sigma,
    fit_von_mises,
    normalize_quaternions,
    quaternion_to_rotation_matrix,
    uniform_planar,
    uniform_quaternions,
)
from ..utils.functional import DTYPE, as_float_tensor, clone_generator, ensure_generator
from ..utils.noise import NoiseModel, PeakFactorSchedule, create_noise_model
from ..utils.resampling import ResampleScheme, draw_index, resample_indices
from ..utils.weights import (
    compute_ess,
    half_height_mask,
    normalize_weights,
    weights_from_log,
)
from .ensembles import (
    AxisEnsemble,
    ClassEnsemble,
    DefocusEnsemble,
    RotationEnsemble,
    TranslationEnsemble,
)
from .rank import Rank1, Rank1Tracker
from .symmetry import Symmetry


AxisLike = Union[str, Axis]

# Orbit members must beat the current sample by this much to replace it
_FOLD_TOL = 1e-12


def _check_count(name: str, n) -> int:
    n = int(n)
    if n < 1:
        raise ValueError(f"{name} must be positive, got {n}")
    return n


class ParticleFilter:
    """Weighted sample ensembles describing one observation's latent state.

    Args:
        mode: '2d' (planar rotations) or '3d' (quaternions)
        n_c: Number of classes (also the initial class ensemble size)
        n_r: Rotation ensemble size
        n_t: Translation ensemble size
        n_d: Defocus ensemble size
        trans_s: Translation prior standard deviation
        trans_q: Tail probability outside the re-centre ellipse
        symmetry: Shared point group; only used in 3D mode
        perturbation: Peak-factor bounds and cooling schedule
        fit_config: Clamps and floors of the statistics fits
        defocus_s: Defocus prior standard deviation
        generator: Random source (takes precedence over seed)
        seed: Seed for a fresh generator

    Example:
        >>> pf = ParticleFilter("3d", 1, 1000, 500, 1, trans_s=2.0, seed=0)
        >>> pf.set_log_weights("r", log_likelihoods)
        >>> pf.update_rank1("r")
        >>> pf.fit("r"); pf.set_peak_factor("r")
        >>> pf.resample("r", 1000); pf.perturb("r")
    """

    def __init__(
        self,
        mode: Union[str, ParticleMode],
        n_c: int,
        n_r: int,
        n_t: int,
        n_d: int,
        trans_s: float,
        trans_q: float = 0.01,
        symmetry: Optional[Symmetry] = None,
        *,
        perturbation: Optional[PerturbationConfig] = None,
        fit_config: Optional[FitConfig] = None,
        defocus_s: float = 0.05,
        generator: Optional[torch.Generator] = None,
        seed: Optional[int] = None,
    ):
        self._mode = as_mode(mode)
        if symmetry is not None and self._mode != ParticleMode.THREE_D:
            raise ValueError("A symmetry group can only be attached in 3D mode")
        self._symmetry = symmetry
        self.trans_s = trans_s
        self.trans_q = trans_q
        self.defocus_s = defocus_s

        self.fit_config = fit_config if fit_config is not None else FitConfig()
        self.schedule = PeakFactorSchedule(perturbation)
        self.generator = ensure_generator(generator, seed)
        self._noise: Dict[Axis, NoiseModel] = {
            axis: create_noise_model(axis, self._mode) for axis in Axis
        }
        self._rank = Rank1Tracker()

        self._n_classes = _check_count("n_c", n_c)
        self._ensembles: Dict[Axis, AxisEnsemble] = {}
        self.reset(n_c, n_r, n_t, n_d)

    # =========================================================================
    # Settings
    # =========================================================================

    @property
    def mode(self) -> ParticleMode:
        return self._mode

    @property
    def symmetry(self) -> Optional[Symmetry]:
        return self._symmetry

    @property
    def trans_s(self) -> float:
        return self._trans_s

    @trans_s.setter
    def trans_s(self, value: float):
        value = float(value)
        if not value > 0 or not math.isfinite(value):
            raise ValueError(f"trans_s must be positive, got {value}")
        self._trans_s = value

    @property
    def trans_q(self) -> float:
        return self._trans_q

    @trans_q.setter
    def trans_q(self, value: float):
        value = float(value)
        if not 0 < value < 1:
            raise ValueError(f"trans_q must be in (0, 1), got {value}")
        self._trans_q = value

    @property
    def defocus_s(self) -> float:
        return self._defocus_s

    @defocus_s.setter
    def defocus_s(self, value: float):
        value = float(value)
        if value < 0 or not math.isfinite(value):
            raise ValueError(f"defocus_s must be nonnegative, got {value}")
        self._defocus_s = value

    @property
    def n_classes(self) -> int:
        """Range of valid class labels."""
        return self._n_classes

    @property
    def n_c(self) -> int:
        return len(self._ensembles[Axis.CLASS])

    @property
    def n_r(self) -> int:
        return len(self._ensembles[Axis.ROTATION])

    @property
    def n_t(self) -> int:
        return len(self._ensembles[Axis.TRANSLATION])

    @property
    def n_d(self) -> int:
        return len(self._ensembles[Axis.DEFOCUS])

    @property
    def params(self) -> SpreadParams:
        """Most recently fitted (or loaded) spread of every axis."""
        return self._params

    @params.setter
    def params(self, value: SpreadParams):
        if not isinstance(value, SpreadParams):
            raise TypeError(f"Expected SpreadParams, got {type(value).__name__}")
        self._params = value

    # =========================================================================
    # Initialization
    # =========================================================================

    def reset(
        self,
        n_c: Optional[int] = None,
        n_r: Optional[int] = None,
        n_t: Optional[int] = None,
        n_d: Optional[int] = None,
    ):
        """Re-seed every axis from its uninformative prior.

        Counts left as None keep the current ensemble size.
        """
        if n_c is not None:
            self._n_classes = _check_count("n_c", n_c)
        n_c = self._n_classes
        n_r = _check_count("n_r", n_r if n_r is not None else self.n_r)
        n_t = _check_count("n_t", n_t if n_t is not None else self.n_t)
        n_d = _check_count("n_d", n_d if n_d is not None else self.n_d)

        self._ensembles[Axis.CLASS] = ClassEnsemble(torch.arange(n_c), self._n_classes)

        if self._mode == ParticleMode.THREE_D:
            rotations = uniform_quaternions(n_r, self.generator)
            if self._symmetry is not None:
                identity = torch.tensor([1.0, 0.0, 0.0, 0.0], dtype=DTYPE)
                rotations = self._fold(rotations, identity)
        else:
            rotations = uniform_planar(n_r, self.generator)
        self._ensembles[Axis.ROTATION] = RotationEnsemble(rotations, self._mode)

        translations = torch.randn(n_t, 2, generator=self.generator, dtype=DTYPE) * self._trans_s
        self._ensembles[Axis.TRANSLATION] = TranslationEnsemble(translations)

        self._ensembles[Axis.DEFOCUS] = DefocusEnsemble(self._prior_defocus(n_d))

        self._params = SpreadParams.uninformative(self._mode, self._trans_s, self._defocus_s)
        self.schedule.reset()
        self._rank.reset()

    def _prior_defocus(self, n_d: int) -> Tensor:
        z = torch.randn(n_d, generator=self.generator, dtype=DTYPE)
        return 1.0 + self._defocus_s * z

    def init_defocus(self, n_d: int, s_d: float = 0.05):
        """Re-seed only the defocus axis from N(1, s_d)."""
        n_d = _check_count("n_d", n_d)
        self.defocus_s = s_d
        self._ensembles[Axis.DEFOCUS] = DefocusEnsemble(self._prior_defocus(n_d))
        self._params = replace(self._params, s=self._defocus_s)

    def load(
        self,
        n_r: int,
        n_t: int,
        n_d: int,
        rotation,
        translation,
        defocus: float,
        spread: SpreadParams,
        cls: Optional[int] = None,
    ):
        """Seed the ensembles around a prior point estimate.

        Every axis starts as copies of the estimate, then spreads out by one
        perturbation with peak factor 1 under the given spread.

        Args:
            n_r: Rotation ensemble size
            n_t: Translation ensemble size
            n_d: Defocus ensemble size
            rotation: Padded direction or quaternion [4]
            translation: Offset [2]
            defocus: Defocus multiplier
            spread: Spread of the prior around the estimate
            cls: Collapse the class axis to this single label
        """
        n_r = _check_count("n_r", n_r)
        n_t = _check_count("n_t", n_t)
        n_d = _check_count("n_d", n_d)
        if not isinstance(spread, SpreadParams):
            raise TypeError(f"Expected SpreadParams, got {type(spread).__name__}")

        rotation = as_float_tensor(rotation, shape_tail=(4,)).reshape(4)
        translation = as_float_tensor(translation, shape_tail=(2,)).reshape(2)

        self._ensembles[Axis.ROTATION] = RotationEnsemble(rotation.expand(n_r, 4), self._mode)
        self._ensembles[Axis.TRANSLATION] = TranslationEnsemble(translation.expand(n_t, 2))
        self._ensembles[Axis.DEFOCUS] = DefocusEnsemble(torch.full((n_d,), float(defocus), dtype=DTYPE))
        if cls is not None:
            self._ensembles[Axis.CLASS] = ClassEnsemble([int(cls)], self._n_classes)

        self._params = spread
        self._rank.reset()
        self._rank.seed(Axis.ROTATION, self._ensembles[Axis.ROTATION].get(0))
        self._rank.seed(Axis.TRANSLATION, translation.clone())
        self._rank.seed(Axis.DEFOCUS, float(defocus))
        classes = self._ensembles[Axis.CLASS]
        self._rank.seed(Axis.CLASS, classes.to_python(classes.get(classes.argmax())))

        for axis in (Axis.ROTATION, Axis.TRANSLATION, Axis.DEFOCUS):
            self.perturb(axis, peak_factor=1.0)

    # =========================================================================
    # Ensemble access
    # =========================================================================

    def ensemble(self, axis: AxisLike) -> AxisEnsemble:
        """The live ensemble of one axis."""
        return self._ensembles[as_axis(axis)]

    def _axes(self, axis: Optional[AxisLike]) -> List[Axis]:
        return list(Axis) if axis is None else [as_axis(axis)]

    def count(self, axis: AxisLike) -> int:
        return len(self.ensemble(axis))

    def values(self, axis: AxisLike) -> Tensor:
        return self.ensemble(axis).values

    def weights(self, axis: AxisLike) -> Tensor:
        return self.ensemble(axis).weights

    def aux(self, axis: AxisLike) -> Tensor:
        return self.ensemble(axis).aux

    def set_values(self, axis: AxisLike, values):
        self.ensemble(axis).set_values(values)

    def set_weights(self, axis: AxisLike, weights):
        self.ensemble(axis).set_weights(weights)

    def set_log_weights(self, axis: AxisLike, log_weights):
        """Set normalized weights from unnormalized log-likelihoods."""
        self.ensemble(axis).set_weights(weights_from_log(as_float_tensor(log_weights)))

    def set_aux(self, axis: AxisLike, aux):
        self.ensemble(axis).set_aux(aux)

    def value(self, axis: AxisLike, i: int):
        ensemble = self.ensemble(axis)
        return ensemble.to_python(ensemble.get(i))

    def set_value(self, axis: AxisLike, i: int, value):
        self.ensemble(axis).set(i, value)

    def weight(self, axis: AxisLike, i: int) -> float:
        return self.ensemble(axis).weight(i)

    def set_weight(self, axis: AxisLike, i: int, weight: float):
        self.ensemble(axis).set_weight(i, weight)

    def mul_weight(self, axis: AxisLike, i: int, factor: float):
        self.ensemble(axis).mul_weight(i, factor)

    def aux_at(self, axis: AxisLike, i: int) -> float:
        return self.ensemble(axis).aux_at(i)

    def set_aux_at(self, axis: AxisLike, i: int, value: float):
        self.ensemble(axis).set_aux_at(i, value)

    def quaternion(self, i: int) -> Tensor:
        """Quaternion of rotation sample i (3D mode only)."""
        if self._mode != ParticleMode.THREE_D:
            raise RuntimeError("Quaternions are only available in 3D mode")
        return self.ensemble(Axis.ROTATION).get(i)

    def angle(self, i: int) -> float:
        """In-plane angle of rotation sample i (2D mode only)."""
        if self._mode != ParticleMode.TWO_D:
            raise RuntimeError("Planar angles are only available in 2D mode")
        direction = self.ensemble(Axis.ROTATION).get(i)
        return math.atan2(float(direction[1]), float(direction[0]))

    def rotation_matrix(self, i: int) -> Tensor:
        """2x2 (planar) or 3x3 (volumetric) matrix of rotation sample i."""
        return self._to_matrix(self.ensemble(Axis.ROTATION).get(i))

    def _to_matrix(self, rotation: Tensor) -> Tensor:
        if self._mode == ParticleMode.THREE_D:
            return quaternion_to_rotation_matrix(rotation)
        return angle_to_rotation_matrix(rotation)

    def normalize(self, axis: Optional[AxisLike] = None):
        """Rescale weights to sum to 1; ValueError if a sum is not positive."""
        for ax in self._axes(axis):
            self._ensembles[ax].normalize()

    def _normalized_weights(self, axis: Axis) -> Tensor:
        return normalize_weights(self._ensembles[axis].weights)

    # =========================================================================
    # Resampling
    # =========================================================================

    def resample(
        self,
        axis: AxisLike,
        n: int,
        scheme: Union[str, ResampleScheme] = ResampleScheme.SYSTEMATIC,
    ):
        """Replace an axis by n equally weighted draws from its ensemble.

        Values and aux weights are copied from the selected ancestors.
        Zero-weight samples are never selected.
        """
        axis = as_axis(axis)
        n = _check_count("n", n)
        indices = resample_indices(self._normalized_weights(axis), n, scheme, self.generator)
        self._ensembles[axis].select(indices)

    def draw(self, axis: Optional[AxisLike] = None):
        """Weighted random value of one axis, or a Rank1 of all four."""
        if axis is not None:
            axis = as_axis(axis)
            ensemble = self._ensembles[axis]
            i = draw_index(self._normalized_weights(axis), self.generator)
            return ensemble.to_python(ensemble.get(i))
        return Rank1(
            cls=self.draw(Axis.CLASS),
            rotation=self.draw(Axis.ROTATION),
            translation=self.draw(Axis.TRANSLATION),
            defocus=self.draw(Axis.DEFOCUS),
        )

    # =========================================================================
    # Perturbation
    # =========================================================================

    def perturb(self, axis: Optional[AxisLike] = None, peak_factor: Optional[float] = None):
        """Compose random offsets onto every sample of an axis.

        Args:
            axis: Axis to perturb (all when None)
            peak_factor: Offset scale; the scheduled factor when None
        """
        for ax in self._axes(axis):
            factor = self.schedule.get(ax) if peak_factor is None else peak_factor
            ensemble = self._ensembles[ax]
            ensemble.set_values(
                self._noise[ax].perturb(ensemble.values, self._params, factor, self.generator)
            )

    def set_peak_factor(self, axis: Optional[AxisLike] = None):
        """Cool the peak factor of an axis according to its compression."""
        for ax in self._axes(axis):
            self.schedule.update(ax, self.compression(ax))

    def peak_factor(self, axis: AxisLike) -> float:
        return self.schedule.get(axis)

    def noise_scale(self, axis: AxisLike) -> float:
        """Largest per-dimension offset scale perturb() would apply now."""
        axis = as_axis(axis)
        scale = self._noise[axis].get_noise_scale(self._params, self.schedule.get(axis))
        return float(scale.max())

    def reset_peak_factor(self):
        self.schedule.reset()

    def keep_half_height_peak(self, axis: AxisLike):
        """Zero every weight below half the maximum, then renormalize."""
        ensemble = self.ensemble(axis)
        weights = ensemble.weights
        ensemble.set_weights(weights * half_height_mask(weights).to(DTYPE))
        ensemble.normalize()

    # =========================================================================
    # Statistics
    # =========================================================================

    def fit(self, axis: Optional[AxisLike] = None):
        """Fit the spread of an axis (all when None) and store it in params.

        The class axis has no parametric spread; its compression comes
        straight from the weights.
        """
        cfg = self.fit_config
        for ax in self._axes(axis):
            if ax == Axis.ROTATION:
                if self._mode == ParticleMode.THREE_D:
                    if self._symmetry is not None:
                        self.symmetrise()
                    ensemble = self._ensembles[ax]
                    _, (k1, k2, k3) = fit_acg(
                        ensemble.values,
                        self._normalized_weights(ax),
                        floor=cfg.acg_floor,
                        max_iter=cfg.acg_max_iter,
                        tol=cfg.acg_tol,
                    )
                    self._params = replace(self._params, k1=k1, k2=k2, k3=k3)
                else:
                    _, kappa = fit_von_mises(
                        self._ensembles[ax].values,
                        self._normalized_weights(ax),
                        kappa_max=cfg.kappa_max,
                    )
                    self._params = replace(self._params, k1=kappa, k2=kappa, k3=kappa)
            elif ax == Axis.TRANSLATION:
                s0, s1, rho = fit_bivariate_gaussian(
                    self._ensembles[ax].values,
                    self._normalized_weights(ax),
                    sigma_floor=cfg.sigma_floor_t,
                    rho_max=cfg.rho_max,
                )
                self._params = replace(self._params, s0=s0, s1=s1, rho=rho)
            elif ax == Axis.DEFOCUS:
                s = fit_gaussian_sigma(
                    self._ensembles[ax].values,
                    self._normalized_weights(ax),
                    sigma_floor=cfg.sigma_floor_d,
                )
                self._params = replace(self._params, s=s)

    def compression(self, axis: AxisLike) -> float:
        """Concentration summary of one axis; larger means tighter.

        class:        n * sum(w^2) (1 for uniform weights, n for a spike)
        rotation 2D:  sqrt(kappa)
        rotation 3D:  (k1 k2 k3) ** (-1/6)
        translation:  1 / sqrt(s0 s1)
        defocus:      1 / s
        """
        axis = as_axis(axis)
        p = self._params
        cfg = self.fit_config
        if axis == Axis.CLASS:
            w = self._normalized_weights(axis)
            return float(len(w) * torch.sum(w * w))
        if axis == Axis.ROTATION:
            if self._mode == ParticleMode.TWO_D:
                return math.sqrt(p.k1)
            k = max(p.k1 * p.k2 * p.k3, cfg.acg_floor ** 3)
            return k ** (-1.0 / 6.0)
        if axis == Axis.TRANSLATION:
            return 1.0 / math.sqrt(max(p.s0, cfg.sigma_floor_t) * max(p.s1, cfg.sigma_floor_t))
        return 1.0 / max(p.s, cfg.sigma_floor_d)

    def score(self) -> float:
        """Product of the four compressions."""
        result = 1.0
        for axis in Axis:
            result *= self.compression(axis)
        return result

    def variance(self, axis: AxisLike) -> float:
        """Spread summary 1 / compression^2 (s0 s1 for translation, s^2 for defocus)."""
        c = self.compression(axis)
        if c == 0:
            return math.inf
        return 1.0 / (c * c)

    def ess(self, axis: AxisLike) -> float:
        """Effective sample size of the normalized weights of one axis."""
        return compute_ess(self._normalized_weights(as_axis(axis)))

    # =========================================================================
    # Symmetry folding and re-centring
    # =========================================================================

    def _fold(self, quaternions: Tensor, anchor: Tensor) -> Tensor:
        if self._symmetry is not None:
            orbits = self._symmetry.equivalents(quaternions)
        else:
            orbits = quaternions.unsqueeze(0)

        closeness = torch.abs(orbits @ anchor)
        best = torch.argmax(closeness, dim=0)
        cols = torch.arange(quaternions.shape[0])
        improved = closeness[best, cols] > closeness[0] + _FOLD_TOL
        best = torch.where(improved, best, torch.zeros_like(best))

        folded = orbits[best, cols]
        sign = torch.where(folded @ anchor < 0, -1.0, 1.0).to(DTYPE)
        return normalize_quaternions(folded * sign.unsqueeze(-1))

    def symmetrise(self, reference=None):
        """Fold every rotation sample into the fundamental domain around reference.

        Each sample is replaced by the symmetry-equivalent orientation closest
        to reference (the current rank-1 rotation when None), signed so that
        its dot product with reference is nonnegative. Without a symmetry
        group only the sign is fixed.

        Raises:
            RuntimeError: In 2D mode
        """
        if self._mode != ParticleMode.THREE_D:
            raise RuntimeError("symmetrise is only defined in 3D mode")
        if reference is None:
            anchor = self._rank.current.rotation
        else:
            anchor = normalize_quaternions(as_float_tensor(reference, shape_tail=(4,)).reshape(4))
        ensemble = self._ensembles[Axis.ROTATION]
        ensemble.set_values(self._fold(ensemble.values, anchor))

    def re_centre(self):
        """Reset translations outside the confidence ellipse to the origin.

        The ellipse is centred on (0, 0) with the fitted (s0, s1, rho), each
        sigma floored at trans_s, and encloses 1 - trans_q of the mass.
        """
        p = self._params
        s0 = max(p.s0, self._trans_s)
        s1 = max(p.s1, self._trans_s)
        rho = p.rho
        threshold = -2.0 * math.log(self._trans_q)

        ensemble = self._ensembles[Axis.TRANSLATION]
        t = ensemble.values
        x = t[:, 0] / s0
        y = t[:, 1] / s1
        radius2 = (x * x - 2.0 * rho * x * y + y * y) / (1.0 - rho * rho)
        outside = radius2 > threshold
        if torch.any(outside):
            t[outside] = 0.0
            ensemble.set_values(t)

    # =========================================================================
    # Rank-1 tracking
    # =========================================================================

    def update_rank1(self, axis: Optional[AxisLike] = None):
        """Store the heaviest value of an axis as its rank-1 estimate.

        The previous rank-1 value is kept for diff(). Ties resolve to the
        lowest index.
        """
        for ax in self._axes(axis):
            ensemble = self._ensembles[ax]
            self._rank.update(ax, ensemble.to_python(ensemble.get(ensemble.argmax())))

    def rank1(self, axis: Optional[AxisLike] = None):
        """Current rank-1 value of an axis, or the whole Rank1 when None."""
        if axis is None:
            return self._rank.current
        return self._rank.current.get(axis)

    def rank1_previous(self, axis: Optional[AxisLike] = None):
        if axis is None:
            return self._rank.previous
        return self._rank.previous.get(axis)

    def rank1_rotation_matrix(self) -> Tensor:
        return self._to_matrix(self._rank.current.rotation)

    def diff(self, axis: AxisLike):
        """Change of the rank-1 estimate between the last two updates.

        Returns:
            bool for the class axis, otherwise a nonnegative distance
            (geodesic angle in radians for rotations)
        """
        axis = as_axis(axis)
        current = self._rank.current.get(axis)
        previous = self._rank.previous.get(axis)
        if axis == Axis.CLASS:
            return current != previous
        if axis == Axis.DEFOCUS:
            return abs(current - previous)
        return self._ensembles[axis].distance(current, previous)

    # =========================================================================
    # Ordering and bookkeeping
    # =========================================================================

    def sorted_indices(self, axis: AxisLike) -> Tensor:
        """Sample indices by descending weight (stable for ties)."""
        weights = self.ensemble(axis).weights
        return torch.sort(weights, descending=True, stable=True).indices

    def sort(self, axis: AxisLike, n: int):
        """Keep only the n heaviest samples of an axis, renormalized."""
        ensemble = self.ensemble(axis)
        n = _check_count("n", n)
        if n > len(ensemble):
            raise ValueError(f"Cannot keep {n} of {len(ensemble)} samples")
        ensemble.select(self.sorted_indices(axis)[:n], keep_weights=True)
        ensemble.normalize()

    def shuffle(self, axis: Optional[AxisLike] = None):
        """Randomly permute the samples of an axis (weights travel along)."""
        for ax in self._axes(axis):
            ensemble = self._ensembles[ax]
            order = torch.randperm(len(ensemble), generator=self.generator)
            ensemble.select(order, keep_weights=True)

    def balance_weight(self, axis: Optional[AxisLike] = None):
        """Give every sample of an axis the same weight."""
        for ax in self._axes(axis):
            self._ensembles[ax].balance()

    def copy(self) -> "ParticleFilter":
        """Independent copy sharing only the Symmetry.

        The generator state is cloned, so the copy replays the same random
        stream as the original from this point on.
        """
        clone = ParticleFilter.__new__(ParticleFilter)
        clone._mode = self._mode
        clone._symmetry = self._symmetry
        clone._trans_s = self._trans_s
        clone._trans_q = self._trans_q
        clone._defocus_s = self._defocus_s
        clone.fit_config = self.fit_config
        clone.schedule = self.schedule.copy()
        clone.generator = clone_generator(self.generator)
        clone._noise = dict(self._noise)
        clone._rank = self._rank.copy()
        clone._n_classes = self._n_classes
        clone._ensembles = {axis: ens.clone() for axis, ens in self._ensembles.items()}
        clone._params = self._params
        return clone

    def state_dict(self) -> dict:
        """Plain snapshot of the filter (tensors cloned)."""
        ensembles = {}
        for axis, ensemble in self._ensembles.items():
            ensembles[axis.value] = {
                "values": ensemble.values,
                "weights": ensemble.weights,
                "aux": ensemble.aux,
            }

        def _rank_dict(rank: Rank1) -> dict:
            return {
                "cls": rank.cls,
                "rotation": rank.rotation.clone(),
                "translation": rank.translation.clone(),
                "defocus": rank.defocus,
            }

        return {
            "mode": self._mode.value,
            "n_classes": self._n_classes,
            "trans_s": self._trans_s,
            "trans_q": self._trans_q,
            "defocus_s": self._defocus_s,
            "symmetry": self._symmetry.name if self._symmetry is not None else None,
            "ensembles": ensembles,
            "params": asdict(self._params),
            "peak_factors": self.schedule.as_dict(),
            "rank1": _rank_dict(self._rank.current),
            "rank1_previous": _rank_dict(self._rank.previous),
            "diff": {axis.value: self.diff(axis) for axis in Axis},
            "score": self.score(),
        }

    def __repr__(self) -> str:
        return (
            f"ParticleFilter(mode={self._mode.value}, n_c={self.n_c}, n_r={self.n_r}, "
            f"n_t={self.n_t}, n_d={self.n_d}, symmetry={self._symmetry!r})"
        )
