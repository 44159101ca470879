"""Rotational point groups acting on quaternion orientations.

A Symmetry is immutable and meant to be shared read-only between many
particle filters (possibly on different threads). Its operators are stored
once and only ever handed out as copies.

Orientation q and q * g describe the same projection whenever the volume
is invariant under g, so the orbit of q is {q * g for g in G}.
"""

import math
import re
from typing import List, Sequence

import torch
from torch import Tensor

from ..utils.directional import (
    normalize_quaternions,
    quaternion_from_axis_angle,
    quaternion_multiply,
)
from ..utils.functional import DTYPE, as_float_tensor


_GOLDEN = (1.0 + math.sqrt(5.0)) / 2.0
_MAX_ORDER = 240


def _contains(elements: List[Tensor], q: Tensor, tol: float = 1e-8) -> bool:
    return any(abs(float(torch.dot(e, q))) > 1.0 - tol for e in elements)


def _closure(generators: Sequence[Tensor]) -> Tensor:
    """All products of the generators, identified up to sign."""
    elements = [torch.tensor([1.0, 0.0, 0.0, 0.0], dtype=DTYPE)]
    frontier = list(elements)
    while frontier:
        new = []
        for a in frontier:
            for g in generators:
                p = normalize_quaternions(quaternion_multiply(a, g))
                if p[0] < 0:
                    p = -p
                if not _contains(elements, p) and not _contains(new, p):
                    new.append(p)
        elements.extend(new)
        if len(elements) > _MAX_ORDER:
            raise ValueError("Generators do not close into a finite rotation group")
        frontier = new
    return torch.stack(elements)


class Symmetry:
    """Finite rotation group given by its operators as unit quaternions.

    Example:
        >>> sym = Symmetry.from_point_group("D7")
        >>> sym.order
        14
        >>> sym.equivalents(q).shape   # q: [n, 4]
        torch.Size([14, n, 4])
    """

    def __init__(self, operators, name: str = "custom"):
        """Initialize from explicit operators.

        Args:
            operators: Quaternions [m, 4]; the identity is added if missing
            name: Label used in diagnostics
        """
        ops = normalize_quaternions(as_float_tensor(operators, shape_tail=(4,)).reshape(-1, 4))
        identity = torch.tensor([1.0, 0.0, 0.0, 0.0], dtype=DTYPE)
        elements = [identity]
        for op in ops:
            op = -op if op[0] < 0 else op
            if not _contains(elements, op):
                elements.append(op)
        self._operators = torch.stack(elements)
        self.name = name

    @classmethod
    def from_point_group(cls, name: str) -> "Symmetry":
        """Build one of the standard point groups.

        Supported: Cn (n-fold about z), Dn (Cn plus a 2-fold about x),
        T, O and I (icosahedral, 2-folds on the coordinate axes).

        Args:
            name: Point group symbol, case-insensitive

        Returns:
            Symmetry instance
        """
        symbol = name.strip().upper()
        z = (0.0, 0.0, 1.0)
        match = re.fullmatch(r"([CD])(\d+)", symbol)
        if match:
            kind, n = match.group(1), int(match.group(2))
            if n < 1:
                raise ValueError(f"Invalid point group: {name}")
            generators = [quaternion_from_axis_angle(z, 2.0 * math.pi / n)]
            if kind == "D":
                generators.append(quaternion_from_axis_angle((1.0, 0.0, 0.0), math.pi))
        elif symbol == "T":
            generators = [
                quaternion_from_axis_angle(z, math.pi),
                quaternion_from_axis_angle((1.0, 1.0, 1.0), 2.0 * math.pi / 3.0),
            ]
        elif symbol == "O":
            generators = [
                quaternion_from_axis_angle(z, math.pi / 2.0),
                quaternion_from_axis_angle((1.0, 1.0, 1.0), 2.0 * math.pi / 3.0),
            ]
        elif symbol == "I":
            generators = [
                quaternion_from_axis_angle((0.0, 1.0, _GOLDEN), 2.0 * math.pi / 5.0),
                quaternion_from_axis_angle((1.0, 1.0, 1.0), 2.0 * math.pi / 3.0),
            ]
        else:
            raise ValueError(f"Unknown point group: {name}")

        return cls(_closure(generators), name=symbol)

    @property
    def order(self) -> int:
        """Number of rotations in the group."""
        return self._operators.shape[0]

    @property
    def operators(self) -> Tensor:
        """Copy of the operators [order, 4]; row 0 is the identity."""
        return self._operators.clone()

    def equivalents(self, quaternions: Tensor) -> Tensor:
        """Symmetry-equivalent orientations of every input quaternion.

        Args:
            quaternions: Orientations [n, 4]

        Returns:
            Orbits [order, n, 4]; entry [0] is the input itself
        """
        q = quaternions.unsqueeze(0)
        g = self._operators.unsqueeze(1)
        return quaternion_multiply(q, g)

    def __len__(self) -> int:
        return self.order

    def __repr__(self) -> str:
        return f"Symmetry({self.name}, order={self.order})"
