"""Weight operations for per-axis particle ensembles.

Weights are stored in linear space and normalized per axis. External
likelihood scorers often produce log-likelihoods instead, so the log-space
helpers convert those into linear weights without overflow.
"""

import math
import warnings

import torch
from torch import Tensor


def safe_logsumexp(
    log_weights: Tensor,
    dim: int = -1,
    keepdim: bool = False,
) -> Tensor:
    """Numerically stable logsumexp operation.

    Equivalent to torch.logsumexp but with additional NaN/Inf checking.

    Args:
        log_weights: Log weights tensor
        dim: Dimension to reduce
        keepdim: Whether to keep the reduced dimension

    Returns:
        Result of logsumexp operation
    """
    result = torch.logsumexp(log_weights, dim=dim, keepdim=keepdim)

    if torch.isnan(result).any() or torch.isinf(result).any():
        warnings.warn("NaN/Inf detected in logsumexp, returning zeros")
        result = torch.where(
            torch.isnan(result) | torch.isinf(result),
            torch.zeros_like(result),
            result
        )

    return result


def normalize_weights(weights: Tensor) -> Tensor:
    """Rescale a nonnegative weight vector so that it sums to 1.

    Args:
        weights: Unnormalized weights [K]

    Returns:
        Normalized weights [K]

    Raises:
        ValueError: If any weight is negative or the sum is not a positive
            finite number. The caller must make at least one weight
            informative before normalizing.
    """
    if torch.any(weights < 0):
        raise ValueError("Weights must be nonnegative")
    total = float(weights.sum())
    if not math.isfinite(total) or total <= 0.0:
        raise ValueError(f"Cannot normalize weights with sum {total}")
    return weights / total


def weights_from_log(log_weights: Tensor) -> Tensor:
    """Convert log weights into normalized linear weights.

    log w_i - logsumexp(log w) is exponentiated, so arbitrarily large or
    small log-likelihoods do not overflow.

    Args:
        log_weights: Unnormalized log weights [K]

    Returns:
        Normalized linear weights [K]
    """
    finite = torch.isfinite(log_weights) | (log_weights == -math.inf)
    if not torch.all(finite):
        raise ValueError("Log weights must be finite or -inf")
    if torch.all(log_weights == -math.inf):
        raise ValueError("All log weights are -inf")
    log_normalizer = safe_logsumexp(log_weights, dim=-1, keepdim=True)
    return torch.exp(log_weights - log_normalizer)


def compute_ess(weights: Tensor) -> float:
    """Compute Effective Sample Size (ESS) from normalized weights.

    ESS = 1 / sum(w_i^2)

    ESS = K means uniform weights (maximum diversity).
    ESS = 1 means one particle dominates (degeneracy).

    Args:
        weights: Normalized weights [K]

    Returns:
        ess: Effective sample size
    """
    sum_sq = float(torch.sum(weights * weights))
    if sum_sq <= 0.0:
        return 0.0
    return 1.0 / sum_sq


def compute_entropy(weights: Tensor) -> float:
    """Compute entropy of a normalized weight distribution.

    H = -sum(w_i * log(w_i)), with 0 * log(0) taken as 0.

    Args:
        weights: Normalized weights [K]

    Returns:
        entropy: Weight distribution entropy
    """
    positive = weights[weights > 0]
    return float(-(positive * torch.log(positive)).sum())


def uniform_weights(n: int) -> Tensor:
    """Return n equal weights that sum to 1."""
    if n <= 0:
        raise ValueError(f"Number of weights must be positive, got {n}")
    return torch.full((n,), 1.0 / n, dtype=torch.float64)


def half_height_mask(weights: Tensor) -> Tensor:
    """Mask of samples whose weight reaches half of the maximum weight.

    Args:
        weights: Weights [K]

    Returns:
        Boolean mask [K]
    """
    half_height = weights.max() / 2
    return weights >= half_height


def weighted_mean(values: Tensor, weights: Tensor) -> Tensor:
    """Compute weighted mean over the sample dimension.

    mean = sum(w_i * v_i)

    Args:
        values: Values tensor [K, ...]
        weights: Normalized weights [K]

    Returns:
        weighted_mean: Mean over samples [...]
    """
    w = weights
    while w.dim() < values.dim():
        w = w.unsqueeze(-1)
    return (w * values).sum(dim=0)


def weighted_variance(values: Tensor, weights: Tensor) -> Tensor:
    """Compute weighted variance over the sample dimension.

    var = sum(w_i * (v_i - mean)^2)

    Args:
        values: Values tensor [K, ...]
        weights: Normalized weights [K]

    Returns:
        weighted_var: Variance over samples [...]
    """
    w = weights
    while w.dim() < values.dim():
        w = w.unsqueeze(-1)
    mean = (w * values).sum(dim=0, keepdim=True)
    return (w * (values - mean) ** 2).sum(dim=0)


def weighted_covariance(points: Tensor, weights: Tensor) -> Tensor:
    """Weighted covariance matrix of row vectors.

    Args:
        points: Points [K, d]
        weights: Normalized weights [K]

    Returns:
        Covariance [d, d], symmetrized
    """
    mean = weighted_mean(points, weights)
    centred = points - mean.unsqueeze(0)
    cov = (centred.T * weights) @ centred
    return 0.5 * (cov + cov.T)
