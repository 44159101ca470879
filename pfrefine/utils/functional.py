"""Functional utilities shared by the particle filter operations."""

from typing import Optional

import torch
from torch import Tensor


DTYPE = torch.float64


def make_generator(seed: Optional[int] = None) -> torch.Generator:
    """Create a CPU generator from an optional seed.

    Without a seed the generator is seeded non-deterministically, so callers
    that need reproducible runs must pass one.

    Args:
        seed: Integer seed or None

    Returns:
        A fresh torch.Generator
    """
    generator = torch.Generator()
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(int(seed))
    return generator


def ensure_generator(
    generator: Optional[torch.Generator] = None,
    seed: Optional[int] = None,
) -> torch.Generator:
    """Return generator if provided, otherwise create one from seed."""
    return generator if generator is not None else make_generator(seed)


def clone_generator(generator: torch.Generator) -> torch.Generator:
    """Copy a generator so the copy replays the same random stream."""
    clone = torch.Generator()
    clone.set_state(generator.get_state())
    return clone


def as_float_tensor(values, shape_tail: tuple = ()) -> Tensor:
    """Convert array-like values to a float64 tensor and check trailing shape.

    Args:
        values: Array-like input
        shape_tail: Expected trailing dimensions, e.g. (4,) for quaternions

    Returns:
        Tensor of dtype float64
    """
    tensor = torch.as_tensor(values, dtype=DTYPE).clone()
    if shape_tail and tuple(tensor.shape[-len(shape_tail):]) != tuple(shape_tail):
        raise ValueError(
            f"Expected trailing shape {tuple(shape_tail)}, got {tuple(tensor.shape)}"
        )
    return tensor
