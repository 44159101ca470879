"""Resampling utilities for particle ensembles.

Implements three ancestor-selection schemes:
- Systematic: One shared jitter, evenly spaced offsets (lowest variance)
- Stratified: One jitter per stratum
- Multinomial: Independent draws from the weight distribution

Every scheme only selects indices into the existing ensemble; values are
never synthesized here.
"""

from enum import Enum
from typing import Optional, Union

import torch
from torch import Tensor

from .functional import ensure_generator


class ResampleScheme(Enum):
    """Scheme used to draw ancestor indices."""
    SYSTEMATIC = "systematic"
    STRATIFIED = "stratified"
    MULTINOMIAL = "multinomial"


def _cumulative(weights: Tensor) -> Tensor:
    """Cumulative weight curve normalized so its last entry is exactly 1."""
    if weights.dim() != 1 or weights.numel() == 0:
        raise ValueError("Cannot resample from an empty ensemble")
    cumulative = torch.cumsum(weights.to(torch.float64), dim=0)
    total = cumulative[-1]
    if not torch.isfinite(total) or total <= 0:
        raise ValueError(f"Cannot resample from weights with sum {float(total)}")
    return cumulative / total


def _search(cumulative: Tensor, positions: Tensor) -> Tensor:
    # right=True: a sample with zero weight spans an empty interval and is
    # never hit, even by a position of exactly 0.
    idx = torch.searchsorted(cumulative, positions, right=True)
    return torch.clamp(idx, max=cumulative.numel() - 1)


def _check_count(n: int) -> int:
    n = int(n)
    if n <= 0:
        raise ValueError(f"Number of resampled particles must be positive, got {n}")
    return n


def systematic_resample(
    weights: Tensor,
    n: int,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Systematic (low-variance) resampling.

    Positions are (u + k) / n for k = 0..n-1 with a single u ~ U[0, 1).
    Each sample i is selected either floor(n w_i) or ceil(n w_i) times.

    Args:
        weights: Weights [K], need not be normalized
        n: Number of indices to draw
        generator: Random source

    Returns:
        indices: Ancestor indices [n]
    """
    n = _check_count(n)
    cumulative = _cumulative(weights)
    generator = ensure_generator(generator)
    u = torch.rand(1, generator=generator, dtype=torch.float64)
    positions = (u + torch.arange(n, dtype=torch.float64)) / n
    return _search(cumulative, positions)


def stratified_resample(
    weights: Tensor,
    n: int,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Stratified resampling: one independent jitter per stratum [k/n, (k+1)/n).

    Args:
        weights: Weights [K], need not be normalized
        n: Number of indices to draw
        generator: Random source

    Returns:
        indices: Ancestor indices [n]
    """
    n = _check_count(n)
    cumulative = _cumulative(weights)
    generator = ensure_generator(generator)
    u = torch.rand(n, generator=generator, dtype=torch.float64)
    positions = (u + torch.arange(n, dtype=torch.float64)) / n
    return _search(cumulative, positions)


def multinomial_resample(
    weights: Tensor,
    n: int,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Naive multinomial resampling with n independent draws.

    Args:
        weights: Weights [K], need not be normalized
        n: Number of indices to draw
        generator: Random source

    Returns:
        indices: Ancestor indices [n]
    """
    n = _check_count(n)
    cumulative = _cumulative(weights)
    generator = ensure_generator(generator)
    positions = torch.rand(n, generator=generator, dtype=torch.float64)
    return _search(cumulative, positions)


def resample_indices(
    weights: Tensor,
    n: int,
    scheme: Union[str, ResampleScheme] = ResampleScheme.SYSTEMATIC,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Draw n ancestor indices with the requested scheme.

    Args:
        weights: Weights [K]
        n: Number of indices to draw
        scheme: One of 'systematic', 'stratified', 'multinomial'
        generator: Random source

    Returns:
        indices: Ancestor indices [n]
    """
    if isinstance(scheme, str):
        scheme = ResampleScheme(scheme)

    if scheme == ResampleScheme.SYSTEMATIC:
        return systematic_resample(weights, n, generator)
    elif scheme == ResampleScheme.STRATIFIED:
        return stratified_resample(weights, n, generator)
    elif scheme == ResampleScheme.MULTINOMIAL:
        return multinomial_resample(weights, n, generator)
    else:
        raise ValueError(f"Unknown resampling scheme: {scheme}")


def draw_index(
    weights: Tensor,
    generator: Optional[torch.Generator] = None,
) -> int:
    """Draw a single index with probability proportional to its weight."""
    return int(multinomial_resample(weights, 1, generator)[0])
