"""Weighted sample collections, one type per latent axis.

Each ensemble bundles its values, primary weights and auxiliary weights so
that the three arrays always have the same length (at least 1). Primary
weights are nonnegative and normalized on demand; auxiliary weights are a
free per-sample score carried alongside and never normalized.
"""

import math
from typing import Any, Optional

import torch
from torch import Tensor

from ..utils.config import Axis, ParticleMode, as_mode
from ..utils.directional import geodesic_angle, normalize_quaternions
from ..utils.functional import DTYPE, as_float_tensor
from ..utils.weights import normalize_weights, uniform_weights


class AxisEnsemble:
    """Base class for a weighted ensemble of samples on one axis.

    Subclasses define how values are validated and compared.

    Attributes:
        axis: Which latent variable this ensemble represents
    """

    axis: Axis = None

    def __init__(
        self,
        values,
        weights: Optional[Tensor] = None,
        aux: Optional[Tensor] = None,
    ):
        values = self._check_values(values)
        n = values.shape[0]
        if n < 1:
            raise ValueError(f"{type(self).__name__} needs at least one sample")
        self._values = values
        self._weights = uniform_weights(n)
        self._aux = torch.zeros(n, dtype=DTYPE)
        if weights is not None:
            self.set_weights(weights)
        if aux is not None:
            self.set_aux(aux)

    # -------------------------------------------------------------------------
    # Hooks for subclasses
    # -------------------------------------------------------------------------

    def _check_values(self, values) -> Tensor:
        raise NotImplementedError

    def _check_value(self, value) -> Tensor:
        return self._check_values(as_float_tensor(value).unsqueeze(0))[0]

    def distance(self, a: Tensor, b: Tensor) -> float:
        """Distance between two values of this axis."""
        raise NotImplementedError

    def to_python(self, value: Tensor) -> Any:
        """Convert one value to a plain Python object."""
        return value.clone()

    def _new(self, values: Tensor) -> "AxisEnsemble":
        return type(self)(values)

    # -------------------------------------------------------------------------
    # Arrays
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return self._values.shape[0]

    @property
    def count(self) -> int:
        return len(self)

    @property
    def values(self) -> Tensor:
        return self._values.clone()

    @property
    def weights(self) -> Tensor:
        return self._weights.clone()

    @property
    def aux(self) -> Tensor:
        return self._aux.clone()

    def set_values(self, values):
        """Replace all values; the count must stay the same."""
        values = self._check_values(values)
        if values.shape[0] != len(self):
            raise ValueError(
                f"Expected {len(self)} values, got {values.shape[0]}; use replace() to resize"
            )
        self._values = values

    def set_weights(self, weights):
        weights = as_float_tensor(weights)
        if weights.shape != (len(self),):
            raise ValueError(f"Expected weights of shape ({len(self)},), got {tuple(weights.shape)}")
        if torch.any(weights < 0) or not torch.all(torch.isfinite(weights)):
            raise ValueError("Weights must be finite and nonnegative")
        self._weights = weights

    def set_aux(self, aux):
        aux = as_float_tensor(aux)
        if aux.shape != (len(self),):
            raise ValueError(f"Expected aux weights of shape ({len(self)},), got {tuple(aux.shape)}")
        self._aux = aux

    def replace(self, values, weights=None, aux=None):
        """Replace the whole ensemble, possibly changing its count."""
        values = self._check_values(values)
        n = values.shape[0]
        if n < 1:
            raise ValueError(f"{type(self).__name__} needs at least one sample")
        self._values = values
        self._weights = uniform_weights(n)
        self._aux = torch.zeros(n, dtype=DTYPE)
        if weights is not None:
            self.set_weights(weights)
        if aux is not None:
            self.set_aux(aux)

    # -------------------------------------------------------------------------
    # Single-sample access
    # -------------------------------------------------------------------------

    def _index(self, i: int) -> int:
        i = int(i)
        if not 0 <= i < len(self):
            raise IndexError(
                f"{self.axis.name.lower()} index {i} out of range [0, {len(self)})"
            )
        return i

    def get(self, i: int) -> Tensor:
        return self._values[self._index(i)].clone()

    def set(self, i: int, value):
        self._values[self._index(i)] = self._check_value(value)

    def weight(self, i: int) -> float:
        return float(self._weights[self._index(i)])

    def set_weight(self, i: int, weight: float):
        weight = float(weight)
        if weight < 0 or not math.isfinite(weight):
            raise ValueError(f"Weight must be nonnegative, got {weight}")
        self._weights[self._index(i)] = weight

    def mul_weight(self, i: int, factor: float):
        self.set_weight(i, self.weight(i) * float(factor))

    def aux_at(self, i: int) -> float:
        return float(self._aux[self._index(i)])

    def set_aux_at(self, i: int, value: float):
        self._aux[self._index(i)] = float(value)

    # -------------------------------------------------------------------------
    # Whole-ensemble operations
    # -------------------------------------------------------------------------

    def normalize(self):
        """Rescale weights to sum to 1 (ValueError if the sum is not positive)."""
        self._weights = normalize_weights(self._weights)

    def balance(self):
        """Give every sample the same weight."""
        self._weights = uniform_weights(len(self))

    def argmax(self) -> int:
        """Index of the heaviest sample; ties resolve to the first occurrence."""
        return int(torch.argmax(self._weights))

    def select(self, indices: Tensor, keep_weights: bool = False):
        """Keep the samples at indices (repeats allowed), in that order.

        Args:
            indices: Indices into the current ensemble
            keep_weights: Carry the selected weights along (otherwise the
                result is equally weighted)
        """
        indices = torch.as_tensor(indices, dtype=torch.long)
        if indices.numel() == 0:
            raise ValueError("Selection must keep at least one sample")
        weights = self._weights[indices] if keep_weights else None
        self.replace(self._values[indices], weights=weights, aux=self._aux[indices])

    def clone(self) -> "AxisEnsemble":
        other = self._new(self._values.clone())
        other._weights = self._weights.clone()
        other._aux = self._aux.clone()
        return other

    def __repr__(self) -> str:
        return f"{type(self).__name__}(count={len(self)})"


class ClassEnsemble(AxisEnsemble):
    """Discrete class labels in [0, n_classes)."""

    axis = Axis.CLASS

    def __init__(self, values, n_classes: int, weights=None, aux=None):
        if n_classes < 1:
            raise ValueError(f"Number of classes must be positive, got {n_classes}")
        self.n_classes = int(n_classes)
        super().__init__(values, weights, aux)

    def _check_values(self, values) -> Tensor:
        values = torch.as_tensor(values)
        if values.is_floating_point():
            if not torch.all(values == torch.round(values)):
                raise ValueError("Class labels must be integers")
        values = values.to(torch.long).reshape(-1).clone()
        if torch.any(values < 0) or torch.any(values >= self.n_classes):
            raise ValueError(f"Class labels must lie in [0, {self.n_classes})")
        return values

    def _check_value(self, value) -> Tensor:
        return self._check_values(torch.as_tensor([value]))[0]

    def _new(self, values):
        return ClassEnsemble(values, self.n_classes)

    def distance(self, a, b) -> float:
        return float(int(a) != int(b))

    def to_python(self, value) -> int:
        return int(value)


class RotationEnsemble(AxisEnsemble):
    """Unit rotation vectors [n, 4].

    Planar mode stores (cos t, sin t, 0, 0); volumetric mode stores unit
    quaternions (w, x, y, z). Every write renormalizes.
    """

    axis = Axis.ROTATION

    def __init__(self, values, mode=ParticleMode.THREE_D, weights=None, aux=None):
        self.mode = as_mode(mode)
        super().__init__(values, weights, aux)

    def _check_values(self, values) -> Tensor:
        values = as_float_tensor(values, shape_tail=(4,)).reshape(-1, 4)
        if not torch.all(torch.isfinite(values)):
            raise ValueError("Rotations must be finite")
        if self.mode == ParticleMode.TWO_D:
            values[:, 2:] = 0.0
        return normalize_quaternions(values)

    def _new(self, values):
        return RotationEnsemble(values, self.mode)

    def distance(self, a, b) -> float:
        return geodesic_angle(a, b, antipodal=self.mode == ParticleMode.THREE_D)


class TranslationEnsemble(AxisEnsemble):
    """2D offsets [n, 2]."""

    axis = Axis.TRANSLATION

    def _check_values(self, values) -> Tensor:
        values = as_float_tensor(values, shape_tail=(2,)).reshape(-1, 2)
        if not torch.all(torch.isfinite(values)):
            raise ValueError("Translations must be finite")
        return values

    def distance(self, a, b) -> float:
        return float(torch.linalg.norm(a - b))


class DefocusEnsemble(AxisEnsemble):
    """Scalar defocus multipliers [n], nominally near 1."""

    axis = Axis.DEFOCUS

    def _check_values(self, values) -> Tensor:
        values = as_float_tensor(values).reshape(-1)
        if not torch.all(torch.isfinite(values)):
            raise ValueError("Defocus factors must be finite")
        return values

    def _check_value(self, value) -> Tensor:
        return self._check_values(torch.as_tensor([float(value)]))[0]

    def distance(self, a, b) -> float:
        return abs(float(a) - float(b))

    def to_python(self, value) -> float:
        return float(value)
