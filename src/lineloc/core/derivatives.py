"""
First-order forward derivatives with respect to the selected parameter drivers.

`Gradient` is a scalar carrying its partial derivatives, `GradientVector` is a
3D vector carrying a (3, n) Jacobian. Geometric functions used during
calibration are written once against these types and once against plain
numpy arrays.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence, Union

import numpy as np

if TYPE_CHECKING:
    from lineloc.sensor.parameters import ParameterDriver


class Gradient:
    __slots__ = ("value", "grad")
    # numpy operands defer to the reflected operators
    __array_ufunc__ = None

    def __init__(self, value: float, grad: np.ndarray) -> None:
        self.value = float(value)
        self.grad = np.asarray(grad, dtype=np.float64)

    @classmethod
    def constant(cls, value: float, n: int) -> "Gradient":
        return cls(value, np.zeros((n,), dtype=np.float64))

    @property
    def n_params(self) -> int:
        return int(self.grad.shape[0])

    def partial(self, index: int) -> float:
        return float(self.grad[index])

    def __add__(self, other: Scalar) -> "Gradient":
        if isinstance(other, Gradient):
            return Gradient(self.value + other.value, self.grad + other.grad)
        return Gradient(self.value + float(other), self.grad)

    __radd__ = __add__

    def __sub__(self, other: Scalar) -> "Gradient":
        if isinstance(other, Gradient):
            return Gradient(self.value - other.value, self.grad - other.grad)
        return Gradient(self.value - float(other), self.grad)

    def __rsub__(self, other: float) -> "Gradient":
        return Gradient(float(other) - self.value, -self.grad)

    def __neg__(self) -> "Gradient":
        return Gradient(-self.value, -self.grad)

    def __mul__(self, other: Scalar) -> "Gradient":
        if isinstance(other, Gradient):
            return Gradient(self.value * other.value, self.grad * other.value + other.grad * self.value)
        return Gradient(self.value * float(other), self.grad * float(other))

    __rmul__ = __mul__

    def __truediv__(self, other: Scalar) -> "Gradient":
        if isinstance(other, Gradient):
            inv = 1.0 / other.value
            return Gradient(self.value * inv, (self.grad - self.value * inv * other.grad) * inv)
        return Gradient(self.value / float(other), self.grad / float(other))

    def __rtruediv__(self, other: float) -> "Gradient":
        inv = 1.0 / self.value
        return Gradient(float(other) * inv, -float(other) * inv * inv * self.grad)

    def __pow__(self, k: int) -> "Gradient":
        return Gradient(self.value**k, k * self.value ** (k - 1) * self.grad)

    def sqrt(self) -> "Gradient":
        s = np.sqrt(self.value)
        if s == 0.0:
            # subgradient at the origin
            return Gradient(0.0, np.zeros_like(self.grad))
        return Gradient(s, self.grad / (2.0 * s))

    def sin(self) -> "Gradient":
        return Gradient(np.sin(self.value), np.cos(self.value) * self.grad)

    def cos(self) -> "Gradient":
        return Gradient(np.cos(self.value), -np.sin(self.value) * self.grad)

    def __repr__(self) -> str:
        return f"Gradient({self.value!r}, {self.grad.tolist()!r})"


Scalar = Union[Gradient, float, int]


@dataclass
class GradientVector:
    value: np.ndarray  # (3,)
    jacobian: np.ndarray  # (3,n)

    __array_ufunc__ = None

    @classmethod
    def constant(cls, v: np.ndarray, n: int) -> "GradientVector":
        return cls(np.asarray(v, dtype=np.float64).reshape(3).copy(), np.zeros((3, n), dtype=np.float64))

    @classmethod
    def from_components(cls, components: Sequence[Gradient]) -> "GradientVector":
        value = np.array([c.value for c in components], dtype=np.float64)
        jac = np.stack([c.grad for c in components], axis=0)
        return cls(value, jac)

    @property
    def n_params(self) -> int:
        return int(self.jacobian.shape[1])

    def component(self, i: int) -> Gradient:
        return Gradient(self.value[i], self.jacobian[i])

    def __add__(self, other: "GradientVector | np.ndarray") -> "GradientVector":
        if isinstance(other, GradientVector):
            return GradientVector(self.value + other.value, self.jacobian + other.jacobian)
        return GradientVector(self.value + np.asarray(other, dtype=np.float64), self.jacobian)

    __radd__ = __add__

    def __sub__(self, other: "GradientVector | np.ndarray") -> "GradientVector":
        if isinstance(other, GradientVector):
            return GradientVector(self.value - other.value, self.jacobian - other.jacobian)
        return GradientVector(self.value - np.asarray(other, dtype=np.float64), self.jacobian)

    def __rsub__(self, other: np.ndarray) -> "GradientVector":
        return GradientVector(np.asarray(other, dtype=np.float64) - self.value, -self.jacobian)

    def __neg__(self) -> "GradientVector":
        return GradientVector(-self.value, -self.jacobian)

    def scale(self, k: Scalar) -> "GradientVector":
        if isinstance(k, Gradient):
            return GradientVector(k.value * self.value, k.value * self.jacobian + np.outer(self.value, k.grad))
        return GradientVector(float(k) * self.value, float(k) * self.jacobian)

    def dot(self, other: "GradientVector | np.ndarray") -> Gradient:
        if isinstance(other, GradientVector):
            return Gradient(
                float(self.value @ other.value), self.value @ other.jacobian + other.value @ self.jacobian
            )
        o = np.asarray(other, dtype=np.float64)
        return Gradient(float(self.value @ o), o @ self.jacobian)

    def cross(self, other: "GradientVector | np.ndarray") -> "GradientVector":
        # a x b = -[b]x a = [a]x b
        if isinstance(other, GradientVector):
            value = np.cross(self.value, other.value)
            jac = _skew(self.value) @ other.jacobian - _skew(other.value) @ self.jacobian
            return GradientVector(value, jac)
        o = np.asarray(other, dtype=np.float64)
        return GradientVector(np.cross(self.value, o), -_skew(o) @ self.jacobian)

    def norm(self) -> Gradient:
        return self.dot(self).sqrt()

    def normalize(self) -> "GradientVector":
        return self.scale(1.0 / self.norm())

    def rotate(self, matrix: np.ndarray) -> "GradientVector":
        """Apply a constant (3,3) matrix."""
        m = np.asarray(matrix, dtype=np.float64)
        return GradientVector(m @ self.value, m @ self.jacobian)


def _skew(v: np.ndarray) -> np.ndarray:
    return np.array([[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]], dtype=np.float64)


class DerivativeGenerator:
    """
    Builds gradients over the ordered list of selected parameter drivers.

    Partial derivatives are taken with respect to the driver physical value;
    callers scale them by `driver.scale` to get derivatives with respect to
    normalized values. Drivers are identified by name, so drivers bound under
    one name share a single column.
    """

    def __init__(self, drivers: Sequence["ParameterDriver"]) -> None:
        self._selected = [d for d in drivers if d.selected]
        self._index = {d.name: i for i, d in enumerate(self._selected)}

    @property
    def selected(self) -> list["ParameterDriver"]:
        return list(self._selected)

    @property
    def n_params(self) -> int:
        return len(self._selected)

    def constant(self, value: float) -> Gradient:
        return Gradient.constant(value, self.n_params)

    def constant_vector(self, v: np.ndarray) -> GradientVector:
        return GradientVector.constant(v, self.n_params)

    def variable(self, driver: "ParameterDriver") -> Gradient:
        i = self._index.get(driver.name)
        if i is None:
            return self.constant(driver.value)
        grad = np.zeros((self.n_params,), dtype=np.float64)
        grad[i] = 1.0
        return Gradient(driver.value, grad)
