"""Shared fixtures for pfrefine test suite."""

import math
from typing import Tuple

import pytest
import torch
from torch import Tensor

from pfrefine.core.particle_filter import ParticleFilter
from pfrefine.core.symmetry import Symmetry
from pfrefine.utils.functional import DTYPE, make_generator


# =============================================================================
# Random Source Fixtures
# =============================================================================

@pytest.fixture
def generator() -> torch.Generator:
    """Seeded generator so every test is reproducible."""
    return make_generator(1234)


@pytest.fixture(params=[0, 7, 2024])
def seed(request) -> int:
    """Test with several seeds."""
    return request.param


# =============================================================================
# Dimension Fixtures (Parameterized)
# =============================================================================

@pytest.fixture(params=[1, 8, 64])
def n_samples(request) -> int:
    """Test with various ensemble sizes."""
    return request.param


@pytest.fixture(params=["2d", "3d"])
def mode(request) -> str:
    """Test both rotation representations."""
    return request.param


@pytest.fixture(params=["systematic", "stratified", "multinomial"])
def scheme(request) -> str:
    """Test all resampling schemes."""
    return request.param


@pytest.fixture(params=["c", "r", "t", "d"])
def axis(request) -> str:
    """Test all axes."""
    return request.param


# =============================================================================
# Tensor Fixtures
# =============================================================================

@pytest.fixture
def random_weights(n_samples: int, generator: torch.Generator) -> Tensor:
    """Create random normalized weights."""
    w = torch.rand(n_samples, generator=generator, dtype=DTYPE) + 1e-3
    return w / w.sum()


@pytest.fixture
def peaked_weights(n_samples: int) -> Tensor:
    """Create weights where the first sample holds all the mass."""
    w = torch.zeros(n_samples, dtype=DTYPE)
    w[0] = 1.0
    return w


@pytest.fixture
def random_quaternions(n_samples: int, generator: torch.Generator) -> Tensor:
    """Create random unit quaternions."""
    q = torch.randn(n_samples, 4, generator=generator, dtype=DTYPE)
    return q / q.norm(dim=-1, keepdim=True)


# =============================================================================
# Tolerance Fixtures
# =============================================================================

@pytest.fixture
def tolerance() -> dict:
    """Default numerical tolerances for floating point comparisons."""
    return {"atol": 1e-8, "rtol": 1e-6}


@pytest.fixture
def loose_tolerance() -> dict:
    """Looser tolerances for stochastic operations."""
    return {"atol": 1e-2, "rtol": 5e-2}


@pytest.fixture
def strict_tolerance() -> dict:
    """Stricter tolerances for exact algebra."""
    return {"atol": 1e-12, "rtol": 1e-10}


# =============================================================================
# Symmetry Fixtures
# =============================================================================

@pytest.fixture(params=["C1", "C2", "C7", "D3", "T", "O", "I"])
def point_group(request) -> str:
    """Test all point group families."""
    return request.param


@pytest.fixture
def symmetry_c2() -> Symmetry:
    return Symmetry.from_point_group("C2")


@pytest.fixture
def symmetry_o() -> Symmetry:
    return Symmetry.from_point_group("O")


# =============================================================================
# Particle Filter Fixtures
# =============================================================================

@pytest.fixture
def pf_2d() -> ParticleFilter:
    """Planar filter with small ensembles."""
    return ParticleFilter("2d", 3, 200, 100, 20, trans_s=2.0, seed=11)


@pytest.fixture
def pf_3d() -> ParticleFilter:
    """Volumetric filter without symmetry."""
    return ParticleFilter("3d", 2, 300, 100, 20, trans_s=2.0, seed=12)


@pytest.fixture
def pf_3d_sym(symmetry_c2: Symmetry) -> ParticleFilter:
    """Volumetric filter with C2 symmetry."""
    return ParticleFilter("3d", 1, 300, 100, 20, trans_s=2.0, symmetry=symmetry_c2, seed=13)


@pytest.fixture
def pf(mode: str) -> ParticleFilter:
    """Filter in either rotation mode."""
    return ParticleFilter(mode, 2, 100, 80, 10, trans_s=1.5, seed=5)


# =============================================================================
# Helper Functions (Not fixtures)
# =============================================================================

def assert_no_nan_inf(tensor: Tensor, name: str = "tensor") -> None:
    """Assert that a tensor contains no NaN or Inf values."""
    assert not torch.isnan(tensor).any(), f"NaN detected in {name}"
    assert not torch.isinf(tensor).any(), f"Inf detected in {name}"


def assert_normalized(weights: Tensor, atol: float = 1e-10) -> None:
    """Assert that weights form a valid probability distribution."""
    assert_no_nan_inf(weights, "weights")
    assert torch.all(weights >= 0), "Negative weight"
    total = float(weights.sum())
    assert abs(total - 1.0) < atol, f"Weights sum to {total}"


def assert_unit_norm(values: Tensor, atol: float = 1e-10, name: str = "rotations") -> None:
    """Assert that every row has unit norm."""
    norms = values.norm(dim=-1)
    assert torch.allclose(norms, torch.ones_like(norms), atol=atol), \
        f"{name} are not unit vectors: {norms}"


def assert_shape(tensor: Tensor, expected_shape: Tuple[int, ...], name: str = "tensor") -> None:
    """Assert that a tensor has the expected shape."""
    assert tensor.shape == expected_shape, \
        f"{name} has shape {tensor.shape}, expected {expected_shape}"


def rows_subset(result: Tensor, source: Tensor) -> bool:
    """True if every row of result is an exact row of source."""
    result = result.reshape(result.shape[0], -1)
    source = source.reshape(source.shape[0], -1)
    matches = (result.unsqueeze(1) == source.unsqueeze(0)).all(dim=-1)
    return bool(matches.any(dim=1).all())


def axis_angle_quaternion(axis, angle: float) -> Tensor:
    """Reference quaternion built directly from the half-angle formulas."""
    axis = torch.as_tensor(axis, dtype=DTYPE)
    axis = axis / axis.norm()
    half = angle / 2.0
    return torch.cat([torch.tensor([math.cos(half)], dtype=DTYPE), math.sin(half) * axis])


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "hypothesis: marks property-based tests")
