"""Monitoring and diagnostic utilities for particle filter refinement.

Provides tools for:
- Tracking per-axis ensemble health (ESS, diversity, compression)
- Detecting numerical issues (NaN, Inf, degenerate weights)
- Logging refinement rounds
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from collections import defaultdict

import torch
from torch import Tensor

from .config import Axis


@dataclass
class AxisMetrics:
    """Health metrics of one axis ensemble after a refinement round."""
    ess: float
    ess_ratio: float
    max_weight: float
    weight_entropy: float
    compression: float
    diversity: float
    noise_scale: float
    has_nan: bool
    has_inf: bool


def compute_sample_diversity(values: Tensor) -> float:
    """Fraction of distinct samples in an ensemble.

    Repeated resampling without perturbation duplicates values; a fraction
    near 1/K means the ensemble has collapsed onto a single value.

    Args:
        values: Sample values [K, ...]

    Returns:
        diversity: Number of distinct rows divided by K
    """
    if values.shape[0] == 0:
        return 0.0
    rows = values.reshape(values.shape[0], -1)
    distinct = torch.unique(rows, dim=0).shape[0]
    return distinct / values.shape[0]


def _axis_metrics(pf, axis: Axis) -> AxisMetrics:
    from .weights import compute_entropy, compute_ess

    ensemble = pf.ensemble(axis)
    values = ensemble.values
    weights = ensemble.weights
    has_nan = bool(torch.isnan(weights).any())
    has_inf = bool(torch.isinf(weights).any())
    if values.is_floating_point():
        has_nan = has_nan or bool(torch.isnan(values).any())
        has_inf = has_inf or bool(torch.isinf(values).any())

    total = float(weights.sum())
    if has_nan or has_inf or total <= 0:
        ess = 0.0
        entropy = 0.0
        max_weight = float("nan")
        compression = float("nan")
    else:
        normalized = weights / total
        ess = compute_ess(normalized)
        entropy = compute_entropy(normalized)
        max_weight = float(normalized.max())
        compression = pf.compression(axis)

    return AxisMetrics(
        ess=ess,
        ess_ratio=ess / len(ensemble),
        max_weight=max_weight,
        weight_entropy=entropy,
        compression=compression,
        diversity=compute_sample_diversity(values),
        noise_scale=pf.noise_scale(axis),
        has_nan=has_nan,
        has_inf=has_inf,
    )


def check_numerical_health(
    pf,
    thresholds: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """Check numerical health of every axis of a particle filter.

    Axes holding a single sample are exempt from the ESS check.

    Args:
        pf: ParticleFilter to inspect
        thresholds: Optional dict of threshold values

    Returns:
        Dict with health checks and any warnings
    """
    thresholds = thresholds or {
        "min_ess_ratio": 0.01,
        "max_weight_ratio": 0.99,
        "min_diversity": 0.05,
    }

    health = {
        "healthy": True,
        "warnings": [],
        "metrics": {},
    }

    for axis in Axis:
        name = axis.name.lower()
        metrics = _axis_metrics(pf, axis)
        health["metrics"][name] = metrics

        if metrics.has_nan:
            health["healthy"] = False
            health["warnings"].append(f"{name}: NaN detected")
        if metrics.has_inf:
            health["healthy"] = False
            health["warnings"].append(f"{name}: Inf detected")
        if metrics.has_nan or metrics.has_inf:
            continue

        if pf.count(axis) > 1 and metrics.ess_ratio < thresholds["min_ess_ratio"]:
            health["healthy"] = False
            health["warnings"].append(f"{name}: Low ESS ratio: {metrics.ess_ratio:.3f}")

        if pf.count(axis) > 1 and metrics.max_weight > thresholds["max_weight_ratio"]:
            health["warnings"].append(f"{name}: Weight degeneracy: max_w={metrics.max_weight:.3f}")

        if axis != Axis.CLASS and metrics.diversity < thresholds["min_diversity"]:
            health["warnings"].append(f"{name}: Collapsed diversity: {metrics.diversity:.3f}")

    return health


class RefinementMonitor:
    """Monitor particle filter health across refinement rounds.

    Tracks per-axis metrics over time and provides diagnostics.

    Example:
        >>> monitor = RefinementMonitor()
        >>> for round in range(n_rounds):
        ...     score(pf)
        ...     monitor.log(pf)
        ...     advance(pf)
        >>> monitor.summary()
    """

    def __init__(
        self,
        log_interval: int = 10,
        warn_on_issues: bool = True,
    ):
        """Initialize monitor.

        Args:
            log_interval: Rounds between summary printouts
            warn_on_issues: Whether to print warnings on issues
        """
        self.log_interval = log_interval
        self.warn_on_issues = warn_on_issues

        self.step = 0
        self.history: Dict[str, List[float]] = defaultdict(list)

    def log(
        self,
        pf,
        extra_metrics: Optional[Dict[str, float]] = None,
    ) -> Dict[str, AxisMetrics]:
        """Log metrics of every axis for the current round.

        History keys are '<axis>_<metric>', e.g. 'rotation_ess', plus
        '<axis>_diff' (rank-1 change) and 'score'.

        Args:
            pf: ParticleFilter after weighting
            extra_metrics: Optional additional metrics to log

        Returns:
            Dict of AxisMetrics keyed by axis name
        """
        round_metrics = {}
        for axis in Axis:
            name = axis.name.lower()
            metrics = _axis_metrics(pf, axis)
            round_metrics[name] = metrics

            self.history[f"{name}_ess"].append(metrics.ess)
            self.history[f"{name}_max_weight"].append(metrics.max_weight)
            self.history[f"{name}_compression"].append(metrics.compression)
            self.history[f"{name}_diversity"].append(metrics.diversity)
            self.history[f"{name}_noise_scale"].append(metrics.noise_scale)
            self.history[f"{name}_diff"].append(float(pf.diff(axis)))

            if self.warn_on_issues:
                if metrics.has_nan:
                    print(f"[Round {self.step}] WARNING: NaN detected on {name}!")
                if metrics.has_inf:
                    print(f"[Round {self.step}] WARNING: Inf detected on {name}!")
                if pf.count(axis) > 1 and metrics.ess < 2:
                    print(f"[Round {self.step}] WARNING: Low {name} ESS ({metrics.ess:.2f})")
                if axis != Axis.CLASS and pf.count(axis) > 1 and metrics.diversity <= 1.0 / pf.count(axis):
                    print(f"[Round {self.step}] WARNING: {name} ensemble collapsed to one value")

        self.history["score"].append(
            float("nan") if any(math.isnan(m.compression) for m in round_metrics.values())
            else pf.score()
        )

        if extra_metrics:
            for k, v in extra_metrics.items():
                self.history[k].append(v)

        # Periodic logging
        if self.step % self.log_interval == 0 and self.step > 0:
            self._print_summary()

        self.step += 1
        return round_metrics

    def _print_summary(self):
        """Print summary of recent metrics."""
        recent = min(self.log_interval, len(self.history["score"]))
        if recent == 0:
            return

        print(f"\n=== Round {self.step} ===")
        for axis in Axis:
            name = axis.name.lower()
            ess = self.history[f"{name}_ess"]
            print(f"{name}: ESS {ess[-1]:.2f} "
                  f"(avg: {sum(ess[-recent:]) / recent:.2f}), "
                  f"compression {self.history[f'{name}_compression'][-1]:.4g}, "
                  f"diff {self.history[f'{name}_diff'][-1]:.4g}")
        print(f"Score: {self.history['score'][-1]:.4g}")

    def summary(self) -> Dict[str, float]:
        """Get summary statistics over all logged rounds.

        Returns:
            Dict with summary statistics
        """
        if not self.history["score"]:
            return {}

        summary = {}
        for key, values in self.history.items():
            if values:
                summary[f"{key}_mean"] = sum(values) / len(values)
                summary[f"{key}_min"] = min(values)
                summary[f"{key}_max"] = max(values)
                summary[f"{key}_last"] = values[-1]

        return summary

    def reset(self):
        """Reset monitor state."""
        self.step = 0
        self.history = defaultdict(list)

    def get_history(self, key: str) -> List[float]:
        """Get history for a specific metric.

        Args:
            key: Metric name

        Returns:
            List of values over time
        """
        return self.history.get(key, [])
