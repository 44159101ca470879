"""Numerical building blocks for per-observation particle filters."""

from .config import (
    Axis,
    ParticleMode,
    SpreadParams,
    PerturbationConfig,
    FitConfig,
    as_axis,
    as_mode,
)
from .resampling import (
    ResampleScheme,
    systematic_resample,
    stratified_resample,
    multinomial_resample,
    resample_indices,
    draw_index,
)
from .weights import (
    normalize_weights,
    weights_from_log,
    compute_ess,
    compute_entropy,
    safe_logsumexp,
    uniform_weights,
    half_height_mask,
    weighted_mean,
    weighted_variance,
    weighted_covariance,
)
from .noise import (
    NoiseModel,
    NullNoise,
    VonMisesRotationNoise,
    ACGRotationNoise,
    GaussianTranslationNoise,
    GaussianDefocusNoise,
    PeakFactorSchedule,
    create_noise_model,
)
from .directional import (
    normalize_quaternions,
    quaternion_multiply,
    quaternion_conjugate,
    quaternion_from_axis_angle,
    quaternion_to_rotation_matrix,
    angle_to_rotation_matrix,
    geodesic_angle,
    uniform_quaternions,
    uniform_planar,
    fit_von_mises,
    sample_von_mises,
    fit_acg,
    sample_acg,
    fit_bivariate_gaussian,
    fit_gaussian_sigma,
)
from .monitoring import (
    RefinementMonitor,
    AxisMetrics,
    compute_sample_diversity,
    check_numerical_health,
)
from .functional import make_generator, ensure_generator, clone_generator

__all__ = [
    # Configuration
    "Axis",
    "ParticleMode",
    "SpreadParams",
    "PerturbationConfig",
    "FitConfig",
    "as_axis",
    "as_mode",
    # Resampling
    "ResampleScheme",
    "systematic_resample",
    "stratified_resample",
    "multinomial_resample",
    "resample_indices",
    "draw_index",
    # Weights
    "normalize_weights",
    "weights_from_log",
    "compute_ess",
    "compute_entropy",
    "safe_logsumexp",
    "uniform_weights",
    "half_height_mask",
    "weighted_mean",
    "weighted_variance",
    "weighted_covariance",
    # Noise
    "NoiseModel",
    "NullNoise",
    "VonMisesRotationNoise",
    "ACGRotationNoise",
    "GaussianTranslationNoise",
    "GaussianDefocusNoise",
    "PeakFactorSchedule",
    "create_noise_model",
    # Directional statistics
    "normalize_quaternions",
    "quaternion_multiply",
    "quaternion_conjugate",
    "quaternion_from_axis_angle",
    "quaternion_to_rotation_matrix",
    "angle_to_rotation_matrix",
    "geodesic_angle",
    "uniform_quaternions",
    "uniform_planar",
    "fit_von_mises",
    "sample_von_mises",
    "fit_acg",
    "sample_acg",
    "fit_bivariate_gaussian",
    "fit_gaussian_sigma",
    # Monitoring
    "RefinementMonitor",
    "AxisMetrics",
    "compute_sample_diversity",
    "check_numerical_health",
    # Functional
    "make_generator",
    "ensure_generator",
    "clone_generator",
]
