"""Numerical stability tests.

Tests for edge cases, extreme values, and numerical robustness
across the pfrefine library.
"""

import math
import pytest
import torch

from pfrefine.core.particle_filter import ParticleFilter
from pfrefine.core.symmetry import Symmetry
from pfrefine.utils.config import SpreadParams
from pfrefine.utils.directional import fit_acg, fit_von_mises, sample_von_mises
from pfrefine.utils.functional import DTYPE, make_generator
from pfrefine.utils.weights import compute_ess, weighted_mean, weighted_variance, weights_from_log

from conftest import assert_no_nan_inf, assert_normalized, assert_unit_norm


# =============================================================================
# Extreme Value Tests for Weights
# =============================================================================

class TestExtremeLogWeights:
    """Tests for numerical stability with extreme log-likelihoods."""

    def test_very_large_positive(self):
        """Very large positive log weights handled without NaN/Inf."""
        w = weights_from_log(torch.full((32,), 1e6, dtype=DTYPE))
        assert_normalized(w)
        assert torch.allclose(w, torch.full((32,), 1.0 / 32, dtype=DTYPE))

    def test_very_large_negative(self):
        """Very large negative log weights handled without NaN/Inf."""
        w = weights_from_log(torch.full((32,), -1e10, dtype=DTYPE))
        assert_normalized(w)

    def test_mixed_extreme_values(self):
        """Mixed extreme positive and negative values handled."""
        log_w = torch.randn(32, generator=make_generator(0), dtype=DTYPE) * 1e6
        assert_normalized(weights_from_log(log_w))

    def test_single_extreme_high(self):
        """Single extremely high value dominates but no overflow."""
        log_w = torch.full((32,), -100.0, dtype=DTYPE)
        log_w[0] = 1e6
        w = weights_from_log(log_w)
        assert_normalized(w)
        assert float(w[0]) > 0.99

    def test_negative_infinity_allowed(self):
        """-inf marks an impossible sample."""
        log_w = torch.tensor([0.0, -math.inf, 1.0], dtype=DTYPE)
        w = weights_from_log(log_w)
        assert_normalized(w)
        assert float(w[1]) == 0.0

    def test_all_negative_infinity_raises(self):
        """No informative sample is an error, not a silent NaN."""
        with pytest.raises(ValueError):
            weights_from_log(torch.full((4,), -math.inf, dtype=DTYPE))

    def test_nan_raises(self):
        """NaN log weights are rejected."""
        with pytest.raises(ValueError):
            weights_from_log(torch.tensor([0.0, math.nan], dtype=DTYPE))

    def test_ess_with_extreme_weights(self):
        """ESS computation stable with extreme weights."""
        log_w = torch.full((32,), -1000.0, dtype=DTYPE)
        log_w[0] = 0.0
        ess = compute_ess(weights_from_log(log_w))
        assert math.isfinite(ess)
        assert 1.0 - 1e-9 <= ess <= 32

    def test_weighted_statistics_extreme_weights(self):
        """Weighted mean and variance stable with extreme weights."""
        g = make_generator(1)
        values = torch.randn(32, 2, generator=g, dtype=DTYPE)
        w = weights_from_log(torch.randn(32, generator=g, dtype=DTYPE) * 100)
        assert_no_nan_inf(weighted_mean(values, w))
        variance = weighted_variance(values, w)
        assert_no_nan_inf(variance)
        assert torch.all(variance >= 0)


# =============================================================================
# Collapsed Ensembles
# =============================================================================

class TestCollapsedEnsembles:
    """Fits of ensembles that have collapsed onto a single value."""

    def test_acg_identical_quaternions(self):
        """Identical quaternions give floored ratios, not a singular matrix."""
        q = torch.tensor([[0.5, 0.5, 0.5, 0.5]], dtype=DTYPE).repeat(20, 1)
        w = torch.full((20,), 1.0 / 20, dtype=DTYPE)
        sigma, ratios = fit_acg(q, w, floor=1e-6)
        assert_no_nan_inf(sigma)
        assert all(r == pytest.approx(1e-6, rel=1e-3) for r in ratios)

    def test_von_mises_identical_directions(self):
        """Identical directions give the kappa ceiling."""
        d = torch.tensor([[0.6, 0.8, 0.0, 0.0]], dtype=DTYPE).repeat(10, 1)
        w = torch.full((10,), 0.1, dtype=DTYPE)
        mean, kappa = fit_von_mises(d, w, kappa_max=1e6)
        assert kappa == 1e6
        assert torch.allclose(mean, torch.tensor([0.6, 0.8], dtype=DTYPE))

    def test_von_mises_huge_kappa_sampling(self):
        """Very concentrated noise stays finite."""
        angles = sample_von_mises(100, 1e300, make_generator(0))
        assert_no_nan_inf(angles)
        assert float(angles.abs().max()) < 1e-100

    @pytest.mark.parametrize("mode", ["2d", "3d"])
    def test_filter_compression_finite(self, mode):
        """Every compression is finite when all samples coincide."""
        pf = ParticleFilter(mode, 1, 30, 30, 30, trans_s=1.0, seed=0)
        pf.set_values("r", pf.values("r")[:1].repeat(30, 1))
        pf.set_values("t", torch.zeros(30, 2, dtype=DTYPE))
        pf.set_values("d", torch.ones(30, dtype=DTYPE))
        pf.fit()
        for axis in "crtd":
            assert math.isfinite(pf.compression(axis))
        assert math.isfinite(pf.score())
        assert pf.variance("t") > 0

    @pytest.mark.parametrize("mode", ["2d", "3d"])
    def test_single_sample_axes(self, mode):
        """One-sample ensembles fit, resample and perturb."""
        pf = ParticleFilter(mode, 1, 1, 1, 1, trans_s=1.0, seed=0)
        pf.fit()
        pf.set_peak_factor()
        for axis in "rtd":
            pf.resample(axis, 1)
        pf.perturb()
        assert_unit_norm(pf.values("r"))
        assert pf.ess("r") == pytest.approx(1.0)

    def test_collinear_translations(self):
        """Perfectly correlated offsets keep a valid re-centre ellipse."""
        pf = ParticleFilter("2d", 1, 1, 50, 1, trans_s=1.0, seed=0)
        t = torch.linspace(-3, 3, 50, dtype=DTYPE)
        pf.set_values("t", torch.stack([t, t], -1))
        pf.fit("t")
        pf.re_centre()
        assert_no_nan_inf(pf.values("t"))


# =============================================================================
# Resampling Edge Cases
# =============================================================================

class TestResamplingEdgeCases:
    """Tests for resampling edge cases."""

    def test_tiny_weights(self):
        """Weights near the smallest double still resample."""
        pf = ParticleFilter("2d", 1, 10, 1, 1, trans_s=1.0, seed=0)
        w = torch.full((10,), 1e-300, dtype=DTYPE)
        w[3] = 2e-300
        pf.set_weights("r", w)
        pf.resample("r", 20)
        assert pf.count("r") == 20
        assert_unit_norm(pf.values("r"))

    def test_zero_weights_raise(self):
        """All-zero weights cannot be resampled."""
        pf = ParticleFilter("2d", 1, 10, 1, 1, trans_s=1.0, seed=0)
        pf.set_weights("r", torch.zeros(10, dtype=DTYPE))
        with pytest.raises(ValueError):
            pf.resample("r", 5)

    def test_grow_and_shrink(self):
        """Resampling may change the ensemble size in either direction."""
        pf = ParticleFilter("3d", 1, 10, 1, 1, trans_s=1.0, seed=0)
        pf.resample("r", 1000)
        assert pf.n_r == 1000
        pf.resample("r", 3)
        assert pf.n_r == 3

    def test_huge_offsets_re_centre(self):
        """Re-centring handles offsets far beyond the prior."""
        pf = ParticleFilter("2d", 1, 1, 3, 1, trans_s=1.0, seed=0)
        pf.set_values("t", [[1e150, 1e150], [-1e100, 0.0], [0.0, 0.0]])
        pf.re_centre()
        assert pf.values("t").abs().max() == 0.0


# =============================================================================
# Long Refinement Stability
# =============================================================================

class TestLongRefinementStability:
    """Invariants over many refinement rounds with random scores."""

    @pytest.mark.slow
    @pytest.mark.parametrize("mode", ["2d", "3d"])
    def test_many_rounds(self, mode):
        """Weights stay normalized and rotations unit over 60 rounds."""
        symmetry = Symmetry.from_point_group("D2") if mode == "3d" else None
        pf = ParticleFilter(mode, 2, 64, 64, 16, trans_s=2.0, symmetry=symmetry, seed=3)
        g = make_generator(4)
        for _ in range(60):
            for axis in "crtd":
                pf.set_log_weights(axis, torch.randn(pf.count(axis), generator=g, dtype=DTYPE) * 20)
            pf.update_rank1()
            pf.fit()
            pf.set_peak_factor()
            for axis in "rtd":
                pf.resample(axis, pf.count(axis))
                assert_normalized(pf.weights(axis))
            pf.perturb()
            pf.re_centre()
            assert_unit_norm(pf.values("r"))
            for axis in "rtd":
                assert_no_nan_inf(pf.values(axis), axis)
            assert math.isfinite(pf.score())

    def test_peak_factor_reaches_floor(self):
        """Cooling a sharp ensemble for long enough reaches the floor exactly."""
        pf = ParticleFilter("2d", 1, 1, 1, 1, trans_s=1.0, seed=0)
        pf.params = SpreadParams(k1=1e6, k2=1e6, k3=1e6, s0=1e-3, s1=1e-3, s=1e-5)
        for _ in range(2000):
            pf.set_peak_factor()
        for axis in "rtd":
            assert pf.peak_factor(axis) == 1e-3
