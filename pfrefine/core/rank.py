"""Rank-1 (maximum-weight) snapshots and their round-to-round change."""

from dataclasses import dataclass, replace
from typing import Union

import torch
from torch import Tensor

from ..utils.config import Axis, as_axis
from ..utils.functional import DTYPE


_FIELDS = {
    Axis.CLASS: "cls",
    Axis.ROTATION: "rotation",
    Axis.TRANSLATION: "translation",
    Axis.DEFOCUS: "defocus",
}


@dataclass(frozen=True, eq=False)
class Rank1:
    """One value per axis: a point estimate of the observation's latent state.

    Attributes:
        cls: Class label
        rotation: Padded planar direction or quaternion [4]
        translation: Offset [2]
        defocus: Defocus multiplier
    """
    cls: int = 0
    rotation: Tensor = None
    translation: Tensor = None
    defocus: float = 1.0

    def __post_init__(self):
        if self.rotation is None:
            object.__setattr__(self, "rotation", torch.tensor([1.0, 0.0, 0.0, 0.0], dtype=DTYPE))
        if self.translation is None:
            object.__setattr__(self, "translation", torch.zeros(2, dtype=DTYPE))

    def get(self, axis: Union[str, Axis]):
        value = getattr(self, _FIELDS[as_axis(axis)])
        if isinstance(value, Tensor):
            return value.clone()
        return value

    def with_value(self, axis: Union[str, Axis], value) -> "Rank1":
        return replace(self, **{_FIELDS[as_axis(axis)]: value})


class Rank1Tracker:
    """Current and previous rank-1 value of every axis.

    update() moves the current value to previous before storing the new one,
    so diff() always compares the two most recent extractions.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.current = Rank1()
        self.previous = Rank1()

    def update(self, axis: Union[str, Axis], value):
        axis = as_axis(axis)
        self.previous = self.previous.with_value(axis, self.current.get(axis))
        self.current = self.current.with_value(axis, value)

    def seed(self, axis: Union[str, Axis], value):
        """Set current and previous to the same value (no change pending)."""
        axis = as_axis(axis)
        self.current = self.current.with_value(axis, value)
        self.previous = self.previous.with_value(axis, value)

    def copy(self) -> "Rank1Tracker":
        clone = Rank1Tracker()
        clone.current = Rank1(
            self.current.cls,
            self.current.rotation.clone(),
            self.current.translation.clone(),
            self.current.defocus,
        )
        clone.previous = Rank1(
            self.previous.cls,
            self.previous.rotation.clone(),
            self.previous.translation.clone(),
            self.previous.defocus,
        )
        return clone
