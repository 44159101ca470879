"""Directional statistics on rotation manifolds.

Rotations are stored as 4-vectors in both modes:
- Planar: (cos t, sin t, 0, 0), a point on the unit circle
- Volumetric: unit quaternion (w, x, y, z); q and -q are the same rotation

Planar ensembles are modelled with the von Mises distribution. Volumetric
ensembles are modelled with the angular central Gaussian (ACG) distribution
on S^3, whose density depends on q only through q q^T and therefore treats
antipodal quaternions as identical.

Reference:
- Mardia & Jupp (2000), Directional Statistics
- Tyler (1987), Statistical analysis for the angular central Gaussian
- Best & Fisher (1979), Efficient simulation of the von Mises distribution
"""

import math
import warnings
from typing import Optional, Tuple

import torch
from torch import Tensor

from .functional import DTYPE, ensure_generator


# =============================================================================
# Quaternion algebra
# =============================================================================

_UNIT_TOL = 1e-14


def normalize_quaternions(q: Tensor, eps: float = 1e-12) -> Tensor:
    """Scale rows of q [..., 4] to unit norm.

    Rows already unit within _UNIT_TOL are returned unchanged, so
    normalizing twice gives bit-identical output.
    """
    norm = torch.linalg.norm(q, dim=-1, keepdim=True)
    if torch.any(norm < eps):
        raise ValueError("Cannot normalize a zero-length rotation vector")
    return torch.where((norm - 1.0).abs() <= _UNIT_TOL, q, q / norm)


def quaternion_multiply(q1: Tensor, q2: Tensor) -> Tensor:
    """Hamilton product q1 * q2, broadcasting over leading dimensions.

    Args:
        q1: Quaternions [..., 4] as (w, x, y, z)
        q2: Quaternions [..., 4] as (w, x, y, z)

    Returns:
        Product [..., 4]
    """
    w1, x1, y1, z1 = q1.unbind(-1)
    w2, x2, y2, z2 = q2.unbind(-1)
    return torch.stack([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
    ], dim=-1)


def quaternion_conjugate(q: Tensor) -> Tensor:
    """Conjugate (inverse for unit quaternions)."""
    return q * torch.tensor([1.0, -1.0, -1.0, -1.0], dtype=q.dtype)


def quaternion_from_axis_angle(axis, angle: float) -> Tensor:
    """Unit quaternion rotating by angle (radians) about axis."""
    axis = torch.as_tensor(axis, dtype=DTYPE)
    axis = axis / torch.linalg.norm(axis)
    half = 0.5 * angle
    return torch.cat([
        torch.tensor([math.cos(half)], dtype=DTYPE),
        axis * math.sin(half),
    ])


def quaternion_to_rotation_matrix(q: Tensor) -> Tensor:
    """Convert unit quaternions to rotation matrices.

    Args:
        q: Quaternions [..., 4] as (w, x, y, z)

    Returns:
        Rotation matrices [..., 3, 3]
    """
    q = normalize_quaternions(q)
    w, x, y, z = q.unbind(-1)
    R = torch.stack([
        1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y),
        2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x),
        2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y),
    ], dim=-1)
    return R.reshape(q.shape[:-1] + (3, 3))


def angle_to_rotation_matrix(direction: Tensor) -> Tensor:
    """Planar rotation matrices from padded unit directions [..., 4]."""
    c = direction[..., 0]
    s = direction[..., 1]
    R = torch.stack([c, -s, s, c], dim=-1)
    return R.reshape(direction.shape[:-1] + (2, 2))


def planar_from_angles(theta: Tensor) -> Tensor:
    """Padded planar rotation vectors (cos t, sin t, 0, 0) from angles [n]."""
    zeros = torch.zeros_like(theta)
    return torch.stack([torch.cos(theta), torch.sin(theta), zeros, zeros], dim=-1)


def planar_angles(direction: Tensor) -> Tensor:
    """Angles in (-pi, pi] of padded planar rotation vectors [..., 4]."""
    return torch.atan2(direction[..., 1], direction[..., 0])


def geodesic_angle(a: Tensor, b: Tensor, antipodal: bool = True) -> float:
    """Angle between two unit rotation vectors on their sphere.

    Args:
        a: Unit vector [4]
        b: Unit vector [4]
        antipodal: Identify a with -a (quaternions); False for planar
            directions

    Returns:
        Angle in radians, in [0, pi/2] when antipodal, else [0, pi]
    """
    dot = float(torch.dot(a, b))
    if antipodal:
        dot = abs(dot)
    return math.acos(max(-1.0, min(1.0, dot)))


# =============================================================================
# Uniform sampling
# =============================================================================

def uniform_quaternions(n: int, generator: Optional[torch.Generator] = None) -> Tensor:
    """Draw n quaternions uniformly from SO(3) (normalized 4D Gaussians)."""
    generator = ensure_generator(generator)
    z = torch.randn(n, 4, generator=generator, dtype=DTYPE)
    return normalize_quaternions(z)


def uniform_planar(n: int, generator: Optional[torch.Generator] = None) -> Tensor:
    """Draw n planar rotations uniformly on the circle, padded to [n, 4]."""
    generator = ensure_generator(generator)
    theta = (torch.rand(n, generator=generator, dtype=DTYPE) * 2.0 - 1.0) * math.pi
    return planar_from_angles(theta)


# =============================================================================
# Von Mises (planar)
# =============================================================================

def fit_von_mises(
    directions: Tensor,
    weights: Tensor,
    kappa_max: float = 1e6,
) -> Tuple[Tensor, float]:
    """Weighted von Mises fit of planar directions.

    The concentration uses the Banerjee et al. approximation for p = 2,
    kappa = R (2 - R^2) / (1 - R^2), where R is the mean resultant length.

    Args:
        directions: Padded unit directions [K, 4]
        weights: Normalized weights [K]
        kappa_max: Ceiling for kappa when the ensemble has collapsed

    Returns:
        mean_direction: Unit direction [2] (arbitrary when R = 0)
        kappa: Concentration parameter
    """
    resultant = (weights.unsqueeze(-1) * directions[:, :2]).sum(dim=0)
    r = float(torch.linalg.norm(resultant))
    if not math.isfinite(r):
        warnings.warn("Non-finite resultant in von Mises fit, using kappa = 0")
        return torch.tensor([1.0, 0.0], dtype=DTYPE), 0.0

    mean = resultant / r if r > 0 else torch.tensor([1.0, 0.0], dtype=DTYPE)
    r = min(r, 1.0)
    if r >= 1.0 - 1e-12:
        return mean, float(kappa_max)
    kappa = r * (2.0 - r * r) / (1.0 - r * r)
    return mean, float(min(kappa, kappa_max))


def sample_von_mises(
    n: int,
    kappa: float,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Draw n angles from a zero-mean von Mises distribution.

    Uses the Best-Fisher rejection sampler; for very large kappa the wrapped
    normal N(0, 1/kappa) is used since the two agree to machine precision.

    Args:
        n: Number of angles
        kappa: Concentration (>= 0)
        generator: Random source

    Returns:
        Angles [n] in (-pi, pi]
    """
    generator = ensure_generator(generator)
    if kappa < 1e-8:
        return (torch.rand(n, generator=generator, dtype=DTYPE) * 2.0 - 1.0) * math.pi
    if kappa > 1e5:
        return torch.randn(n, generator=generator, dtype=DTYPE) / math.sqrt(kappa)

    tau = 1.0 + math.sqrt(1.0 + 4.0 * kappa * kappa)
    rho = (tau - math.sqrt(2.0 * tau)) / (2.0 * kappa)
    r = (1.0 + rho * rho) / (2.0 * rho)

    out = torch.empty(n, dtype=DTYPE)
    pending = torch.arange(n)
    while pending.numel() > 0:
        m = pending.numel()
        u1 = torch.rand(m, generator=generator, dtype=DTYPE)
        u2 = torch.rand(m, generator=generator, dtype=DTYPE)
        u3 = torch.rand(m, generator=generator, dtype=DTYPE)

        z = torch.cos(math.pi * u1)
        f = (1.0 + r * z) / (r + z)
        c = kappa * (r - f)

        accept = (c * (2.0 - c) - u2 > 0) | (torch.log(c / u2) + 1.0 - c >= 0)
        theta = torch.sign(u3 - 0.5) * torch.acos(torch.clamp(f, -1.0, 1.0))

        out[pending[accept]] = theta[accept]
        pending = pending[~accept]

    return out


# =============================================================================
# Angular central Gaussian (volumetric)
# =============================================================================

def fit_acg(
    quaternions: Tensor,
    weights: Tensor,
    floor: float = 1e-6,
    max_iter: int = 100,
    tol: float = 1e-10,
) -> Tuple[Tensor, Tuple[float, float, float]]:
    """Weighted maximum-likelihood ACG fit (Tyler's fixed-point iteration).

    Sigma <- 4 * sum_i w_i q_i q_i^T / (q_i^T Sigma^-1 q_i), rescaled to
    trace 4 after every step. Eigenvalues are floored at floor * lambda_max
    so a collapsed ensemble keeps an invertible matrix.

    Args:
        quaternions: Unit quaternions [K, 4]
        weights: Normalized weights [K]
        floor: Smallest allowed eigenvalue ratio
        max_iter: Iteration cap
        tol: Frobenius-norm convergence tolerance

    Returns:
        sigma: Fitted ACG matrix [4, 4] (trace 4)
        ratios: (k1, k2, k3) = lambda_{1,2,3} / lambda_0 with lambda sorted
            in descending order; each in [floor, 1]
    """
    d = 4
    w = weights / weights.sum()
    sigma = torch.eye(d, dtype=DTYPE)

    for _ in range(max_iter):
        inv = torch.linalg.inv(sigma)
        m = torch.einsum("ni,ij,nj->n", quaternions, inv, quaternions)
        m = torch.clamp(m, min=1e-300)
        new = d * torch.einsum("n,ni,nj->ij", w / m, quaternions, quaternions)
        new = 0.5 * (new + new.T)

        evals, evecs = torch.linalg.eigh(new)
        if not torch.all(torch.isfinite(evals)):
            warnings.warn("Non-finite ACG fit, falling back to the uniform distribution")
            return torch.eye(d, dtype=DTYPE), (1.0, 1.0, 1.0)
        evals = torch.clamp(evals, min=floor * float(evals.max()))
        new = (evecs * evals) @ evecs.T
        new = new * (d / torch.trace(new))

        converged = float(torch.linalg.norm(new - sigma)) < tol
        sigma = new
        if converged:
            break

    evals = torch.linalg.eigvalsh(sigma).flip(0)
    ratios = torch.clamp(evals[1:] / evals[0], min=floor, max=1.0)
    return sigma, (float(ratios[0]), float(ratios[1]), float(ratios[2]))


def sample_acg(
    n: int,
    diag: Tuple[float, float, float, float],
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Draw n unit quaternions from an ACG with diagonal matrix diag.

    x = z * sqrt(diag), z ~ N(0, I_4), returned as x / |x|. With
    diag = (1, a, b, c) and small a, b, c the draws concentrate around the
    identity rotation (+-1, 0, 0, 0).

    Args:
        n: Number of samples
        diag: Diagonal of the ACG matrix
        generator: Random source

    Returns:
        Unit quaternions [n, 4]
    """
    generator = ensure_generator(generator)
    scale = torch.sqrt(torch.as_tensor(diag, dtype=DTYPE))
    z = torch.randn(n, 4, generator=generator, dtype=DTYPE)
    return normalize_quaternions(z * scale)


# =============================================================================
# Gaussian fits (translation, defocus)
# =============================================================================

def fit_bivariate_gaussian(
    points: Tensor,
    weights: Tensor,
    sigma_floor: float = 1e-3,
    rho_max: float = 0.9,
) -> Tuple[float, float, float]:
    """Weighted bivariate Gaussian fit of 2D offsets.

    Args:
        points: Offsets [K, 2]
        weights: Normalized weights [K]
        sigma_floor: Minimum standard deviation per axis
        rho_max: Correlation is clamped to [-rho_max, rho_max]

    Returns:
        (s0, s1, rho)
    """
    from .weights import weighted_covariance

    cov = weighted_covariance(points, weights)
    var0 = float(cov[0, 0])
    var1 = float(cov[1, 1])
    if not (math.isfinite(var0) and math.isfinite(var1)):
        warnings.warn("Non-finite translation covariance, using sigma floor")
        return sigma_floor, sigma_floor, 0.0

    s0 = max(math.sqrt(max(var0, 0.0)), sigma_floor)
    s1 = max(math.sqrt(max(var1, 0.0)), sigma_floor)
    rho = float(cov[0, 1]) / (s0 * s1)
    rho = max(-rho_max, min(rho_max, rho))
    return s0, s1, rho


def fit_gaussian_sigma(
    values: Tensor,
    weights: Tensor,
    sigma_floor: float = 1e-5,
) -> float:
    """Weighted standard deviation of scalar values, floored."""
    from .weights import weighted_variance

    var = float(weighted_variance(values, weights))
    if not math.isfinite(var):
        warnings.warn("Non-finite defocus variance, using sigma floor")
        return sigma_floor
    return max(math.sqrt(max(var, 0.0)), sigma_floor)
