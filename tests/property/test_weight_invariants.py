"""Property-based tests for weight, resampling and ensemble invariants.

Uses Hypothesis to test mathematical invariants that must always hold
regardless of input values.
"""

import math
import pytest
import torch
from hypothesis import given, strategies as st, settings, assume

from pfrefine.core.particle_filter import ParticleFilter
from pfrefine.core.symmetry import Symmetry
from pfrefine.utils.config import Axis, PerturbationConfig
from pfrefine.utils.directional import (
    fit_acg,
    geodesic_angle,
    quaternion_from_axis_angle,
    uniform_quaternions,
)
from pfrefine.utils.functional import DTYPE, make_generator
from pfrefine.utils.noise import PeakFactorSchedule
from pfrefine.utils.resampling import resample_indices
from pfrefine.utils.weights import (
    compute_ess,
    half_height_mask,
    normalize_weights,
    weighted_variance,
    weights_from_log,
)


seeds = st.integers(0, 2 ** 31 - 1)
schemes = st.sampled_from(["systematic", "stratified", "multinomial"])
modes = st.sampled_from(["2d", "3d"])


def _random_weights(n, seed, zero_fraction=0.0):
    g = make_generator(seed)
    w = torch.rand(n, generator=g, dtype=DTYPE)
    if zero_fraction > 0:
        w[torch.rand(n, generator=g, dtype=DTYPE) < zero_fraction] = 0.0
        w[0] = max(float(w[0]), 1e-3)
    return w


# =============================================================================
# Property Tests for Weight Normalization
# =============================================================================

class TestWeightNormalizationInvariants:
    """Property-based tests for weight normalization invariants."""

    @given(
        n_samples=st.integers(1, 64),
        scale=st.floats(1e-6, 1e6, allow_nan=False, allow_infinity=False),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_normalization_sums_to_one(self, n_samples, scale, seed):
        """Normalized weights sum to 1 for any positive scale."""
        w = _random_weights(n_samples, seed) * scale + 1e-300
        normalized = normalize_weights(w)
        assert abs(float(normalized.sum()) - 1.0) < 1e-10
        assert torch.all(normalized >= 0)

    @given(
        n_samples=st.integers(1, 64),
        scale=st.floats(0.1, 1e4, allow_nan=False, allow_infinity=False),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_log_weights_never_overflow(self, n_samples, scale, seed):
        """weights_from_log is finite and normalized for large log-likelihoods."""
        g = make_generator(seed)
        log_w = torch.randn(n_samples, generator=g, dtype=DTYPE) * scale
        w = weights_from_log(log_w)
        assert torch.all(torch.isfinite(w))
        assert abs(float(w.sum()) - 1.0) < 1e-10

    @given(
        n_samples=st.integers(2, 64),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_log_weights_preserve_ordering(self, n_samples, seed):
        """Converting from log space preserves the heaviest sample."""
        g = make_generator(seed)
        log_w = torch.randn(n_samples, generator=g, dtype=DTYPE)
        assert int(weights_from_log(log_w).argmax()) == int(log_w.argmax())

    @given(
        n_samples=st.integers(1, 64),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_half_height_keeps_maximum(self, n_samples, seed):
        """The half-height mask always keeps the heaviest sample."""
        w = _random_weights(n_samples, seed, zero_fraction=0.3)
        mask = half_height_mask(w)
        assert bool(mask[int(w.argmax())])
        assert torch.all(w[mask] >= w.max() / 2)


# =============================================================================
# Property Tests for ESS Computation
# =============================================================================

class TestESSInvariants:
    """Property-based tests for ESS invariants."""

    @given(
        n_samples=st.integers(1, 128),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_ess_in_valid_range(self, n_samples, seed):
        """ESS always lies in [1, K]."""
        w = normalize_weights(_random_weights(n_samples, seed, zero_fraction=0.5))
        ess = compute_ess(w)
        assert 1.0 - 1e-9 <= ess <= n_samples + 1e-9

    @given(n_samples=st.integers(1, 128))
    @settings(max_examples=50, deadline=None)
    def test_uniform_weights_max_ess(self, n_samples):
        """Uniform weights reach ESS = K."""
        w = torch.full((n_samples,), 1.0 / n_samples, dtype=DTYPE)
        assert compute_ess(w) == pytest.approx(n_samples)

    @given(
        n_samples=st.integers(1, 64),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_weighted_variance_non_negative(self, n_samples, seed):
        """Weighted variance is never negative."""
        g = make_generator(seed)
        values = torch.randn(n_samples, 2, generator=g, dtype=DTYPE) * 100
        w = normalize_weights(_random_weights(n_samples, seed))
        assert torch.all(weighted_variance(values, w) >= -1e-9)


# =============================================================================
# Property Tests for Resampling
# =============================================================================

class TestResamplingInvariants:
    """Property-based tests for ancestor selection."""

    @given(
        n_samples=st.integers(1, 64),
        n_out=st.integers(1, 128),
        scheme=schemes,
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_indices_in_range_and_supported(self, n_samples, n_out, scheme, seed):
        """Resampling returns n valid indices and never picks a zero weight."""
        w = _random_weights(n_samples, seed, zero_fraction=0.5)
        indices = resample_indices(w, n_out, scheme, make_generator(seed + 1))
        assert indices.shape == (n_out,)
        assert torch.all((indices >= 0) & (indices < n_samples))
        assert torch.all(w[indices] > 0)

    @given(
        n_samples=st.integers(1, 32),
        n_out=st.integers(1, 128),
        seed=seeds,
    )
    @settings(max_examples=50, deadline=None)
    def test_systematic_counts_bounded(self, n_samples, n_out, seed):
        """Systematic resampling picks each sample floor(n w) or ceil(n w) times."""
        w = normalize_weights(_random_weights(n_samples, seed) + 1e-3)
        indices = resample_indices(w, n_out, "systematic", make_generator(seed))
        counts = torch.bincount(indices, minlength=n_samples).to(DTYPE)
        expected = n_out * w
        assert torch.all(counts >= torch.floor(expected - 1e-9))
        assert torch.all(counts <= torch.ceil(expected + 1e-9))

    @given(
        n_out=st.integers(1, 64),
        axis=st.sampled_from(["c", "r", "t", "d"]),
        scheme=schemes,
        mode=modes,
        seed=seeds,
    )
    @settings(max_examples=30, deadline=None)
    def test_filter_resample_closure(self, n_out, axis, scheme, mode, seed):
        """After resample: count n, weights 1/n, values drawn from the old set."""
        pf = ParticleFilter(mode, 3, 20, 20, 20, trans_s=1.0, seed=seed)
        pf.set_weights(axis, _random_weights(pf.count(axis), seed, zero_fraction=0.4))
        before = pf.values(axis).reshape(pf.count(axis), -1)
        pf.resample(axis, n_out, scheme=scheme)

        after = pf.values(axis).reshape(n_out, -1)
        assert pf.count(axis) == n_out
        assert torch.allclose(pf.weights(axis), torch.full((n_out,), 1.0 / n_out, dtype=DTYPE))
        matches = (after.unsqueeze(1) == before.unsqueeze(0)).all(dim=-1)
        assert bool(matches.any(dim=1).all())


# =============================================================================
# Property Tests for the Peak-Factor Schedule
# =============================================================================

class TestPeakFactorInvariants:
    """Property-based tests for the cooling schedule."""

    @given(
        compressions=st.lists(
            st.floats(0.0, 1e8, allow_nan=False, allow_infinity=False),
            min_size=1,
            max_size=30,
        ),
        cooling=st.floats(0.5, 1.0),
    )
    @settings(max_examples=50, deadline=None)
    def test_monotone_and_bounded(self, compressions, cooling):
        """The factor never increases and stays inside its bounds."""
        config = PerturbationConfig(cooling=cooling)
        schedule = PeakFactorSchedule(config)
        previous = schedule.get(Axis.ROTATION)
        for c in compressions:
            current = schedule.update(Axis.ROTATION, c)
            assert current <= previous
            assert config.peak_factor_min <= current <= config.peak_factor_max
            previous = current

    @given(c=st.floats(1.0, 1e8, allow_nan=False, allow_infinity=False))
    @settings(max_examples=50, deadline=None)
    def test_target_decreases_with_compression(self, c):
        """A sharper ensemble never gets a larger target factor."""
        schedule = PeakFactorSchedule()
        assert schedule.target(2.0 * c) <= schedule.target(c)


# =============================================================================
# Property Tests for Rotations
# =============================================================================

class TestRotationInvariants:
    """Property-based tests for rotation ensembles."""

    @given(
        mode=modes,
        peak_factor=st.floats(0.0, 1.0),
        seed=seeds,
    )
    @settings(max_examples=30, deadline=None)
    def test_perturbed_rotations_unit(self, mode, peak_factor, seed):
        """Perturbation keeps every rotation on the unit sphere."""
        pf = ParticleFilter(mode, 1, 50, 1, 1, trans_s=1.0, seed=seed)
        pf.fit("r")
        pf.perturb("r", peak_factor=peak_factor)
        norms = pf.values("r").norm(dim=-1)
        assert torch.allclose(norms, torch.ones_like(norms), atol=1e-10)

    @given(
        group=st.sampled_from(["C2", "C5", "D3", "T", "O"]),
        angle=st.floats(0.0, math.pi),
        seed=seeds,
    )
    @settings(max_examples=25, deadline=None)
    def test_symmetrise_idempotent(self, group, angle, seed):
        """Folding twice around the same reference equals folding once."""
        pf = ParticleFilter("3d", 1, 40, 1, 1, trans_s=1.0,
                            symmetry=Symmetry.from_point_group(group), seed=seed)
        reference = quaternion_from_axis_angle((0.3, -0.5, 0.8), angle)
        pf.symmetrise(reference)
        once = pf.values("r")
        pf.symmetrise(reference)
        assert torch.allclose(pf.values("r"), once, atol=1e-12)

    @given(
        group=st.sampled_from(["C3", "D2", "O"]),
        seed=seeds,
    )
    @settings(max_examples=25, deadline=None)
    def test_symmetrise_brings_closer(self, group, seed):
        """Folding never moves a sample further from the reference."""
        sym = Symmetry.from_point_group(group)
        pf = ParticleFilter("3d", 1, 40, 1, 1, trans_s=1.0, seed=seed)
        before = pf.values("r")
        pf = ParticleFilter("3d", 1, 40, 1, 1, trans_s=1.0, symmetry=sym, seed=seed)
        pf.set_values("r", before)
        reference = uniform_quaternions(1, make_generator(seed))[0]
        pf.symmetrise(reference)
        after = pf.values("r")
        assert torch.all((after @ reference) >= (before @ reference).abs() - 1e-12)

    @given(seed=seeds)
    @settings(max_examples=25, deadline=None)
    def test_acg_fit_sign_invariant(self, seed):
        """The ACG fit does not depend on quaternion signs."""
        q = uniform_quaternions(30, make_generator(seed))
        w = torch.full((30,), 1.0 / 30, dtype=DTYPE)
        flips = torch.where(torch.rand(30, generator=make_generator(seed + 1)) < 0.5, -1.0, 1.0)
        _, ratios = fit_acg(q, w)
        _, flipped = fit_acg(q * flips.to(DTYPE).unsqueeze(-1), w)
        assert ratios == pytest.approx(flipped, rel=1e-8)

    @given(
        angle=st.floats(0.0, math.pi),
    )
    @settings(max_examples=50, deadline=None)
    def test_geodesic_angle_matches_rotation(self, angle):
        """The antipodal geodesic of a rotation by theta is min(theta, 2pi - theta) / 2."""
        assume(angle > 1e-6)
        identity = torch.tensor([1.0, 0.0, 0.0, 0.0], dtype=DTYPE)
        q = quaternion_from_axis_angle((0.0, 0.0, 1.0), angle)
        assert geodesic_angle(identity, q) == pytest.approx(angle / 2.0, abs=1e-7)
