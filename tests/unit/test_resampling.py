"""Unit tests for ancestor resampling (pfrefine/utils/resampling.py).

These tests verify that resampling only selects existing samples, with
frequencies proportional to their weights.

Key Invariants Tested:
- R1: Exactly n indices, all inside [0, K)
- R2: Zero-weight samples are never selected
- R3: Selection frequency is proportional to weight
"""

import pytest
import torch

from pfrefine.utils.functional import DTYPE, make_generator
from pfrefine.utils.resampling import (
    ResampleScheme,
    draw_index,
    multinomial_resample,
    resample_indices,
    stratified_resample,
    systematic_resample,
)
from pfrefine.utils.weights import uniform_weights


# =============================================================================
# Tests shared by every scheme
# =============================================================================

class TestResampleIndices:
    """Tests for resample_indices across all schemes."""

    def test_output_count(self, scheme, random_weights, generator):
        """Invariant R1: exactly n indices are drawn."""
        indices = resample_indices(random_weights, 37, scheme, generator)
        assert indices.shape == (37,)

    def test_indices_in_range(self, scheme, random_weights, n_samples, generator):
        """Invariant R1: every index points into the ensemble."""
        indices = resample_indices(random_weights, 100, scheme, generator)
        assert torch.all(indices >= 0)
        assert torch.all(indices < n_samples)

    def test_zero_weight_never_selected(self, scheme, generator):
        """Invariant R2: zero-weight samples are never ancestors."""
        w = torch.tensor([0.0, 0.3, 0.0, 0.7, 0.0], dtype=DTYPE)
        indices = resample_indices(w, 500, scheme, generator)
        assert set(indices.tolist()) <= {1, 3}

    def test_one_hot_selects_single_sample(self, scheme, generator):
        """All the mass on one sample selects it every time."""
        w = torch.zeros(10, dtype=DTYPE)
        w[6] = 1.0
        indices = resample_indices(w, 50, scheme, generator)
        assert torch.all(indices == 6)

    def test_frequency_proportional_to_weight(self, scheme):
        """Invariant R3: empirical frequencies match the weights."""
        generator = make_generator(99)
        w = torch.tensor([0.1, 0.2, 0.3, 0.4], dtype=DTYPE)
        indices = resample_indices(w, 20000, scheme, generator)
        freq = torch.bincount(indices, minlength=4).to(DTYPE) / 20000
        assert torch.allclose(freq, w, atol=0.02)

    def test_unnormalized_weights_accepted(self, scheme, generator):
        """Weights need not sum to one."""
        w = torch.tensor([0.0, 5.0], dtype=DTYPE)
        indices = resample_indices(w, 10, scheme, generator)
        assert torch.all(indices == 1)

    def test_non_positive_count_raises(self, scheme, random_weights, generator):
        """n <= 0 is rejected."""
        with pytest.raises(ValueError):
            resample_indices(random_weights, 0, scheme, generator)

    def test_empty_ensemble_raises(self, scheme, generator):
        """Cannot resample from nothing."""
        with pytest.raises(ValueError, match="empty"):
            resample_indices(torch.zeros(0, dtype=DTYPE), 3, scheme, generator)

    def test_zero_sum_raises(self, scheme, generator):
        """All-zero weights cannot be resampled."""
        with pytest.raises(ValueError):
            resample_indices(torch.zeros(4, dtype=DTYPE), 3, scheme, generator)

    def test_scheme_enum_and_string_agree(self, random_weights):
        """String and enum scheme names dispatch identically."""
        a = resample_indices(random_weights, 20, "systematic", make_generator(3))
        b = resample_indices(random_weights, 20, ResampleScheme.SYSTEMATIC, make_generator(3))
        assert torch.equal(a, b)

    def test_unknown_scheme_raises(self, random_weights, generator):
        """Unknown scheme names are rejected."""
        with pytest.raises(ValueError):
            resample_indices(random_weights, 5, "residual", generator)


# =============================================================================
# Tests for systematic_resample
# =============================================================================

class TestSystematicResample:
    """Tests for the systematic_resample function."""

    def test_counts_are_floor_or_ceil(self, generator):
        """Each sample is drawn floor(n w) or ceil(n w) times."""
        w = torch.tensor([0.5, 0.25, 0.25], dtype=DTYPE)
        indices = systematic_resample(w, 8, generator)
        assert torch.bincount(indices, minlength=3).tolist() == [4, 2, 2]

    def test_uniform_weights_select_each_once(self, generator):
        """Uniform weights with n = K keep every sample exactly once."""
        indices = systematic_resample(uniform_weights(16), 16, generator)
        assert sorted(indices.tolist()) == list(range(16))

    def test_output_sorted(self, random_weights, generator):
        """Evenly spaced positions give nondecreasing indices."""
        indices = systematic_resample(random_weights, 50, generator)
        assert torch.all(indices[1:] >= indices[:-1])

    def test_reproducible_with_seed(self, random_weights):
        """Same seed, same draw."""
        a = systematic_resample(random_weights, 30, make_generator(5))
        b = systematic_resample(random_weights, 30, make_generator(5))
        assert torch.equal(a, b)


# =============================================================================
# Tests for stratified_resample / multinomial_resample
# =============================================================================

class TestStratifiedResample:
    """Tests for the stratified_resample function."""

    def test_uniform_weights_select_each_once(self, generator):
        """One position per stratum hits each of K equal intervals once."""
        indices = stratified_resample(uniform_weights(10), 10, generator)
        assert sorted(indices.tolist()) == list(range(10))


class TestMultinomialResample:
    """Tests for the multinomial_resample function."""

    def test_reproducible_with_seed(self, random_weights):
        """Same seed, same draw."""
        a = multinomial_resample(random_weights, 30, make_generator(8))
        b = multinomial_resample(random_weights, 30, make_generator(8))
        assert torch.equal(a, b)


# =============================================================================
# Tests for draw_index
# =============================================================================

class TestDrawIndex:
    """Tests for the draw_index function."""

    def test_returns_int_in_range(self, random_weights, n_samples, generator):
        """A single valid index is returned."""
        i = draw_index(random_weights, generator)
        assert isinstance(i, int)
        assert 0 <= i < n_samples

    def test_one_hot(self, generator):
        """All the mass on one sample always draws it."""
        w = torch.tensor([0.0, 0.0, 1.0], dtype=DTYPE)
        assert all(draw_index(w, generator) == 2 for _ in range(20))
