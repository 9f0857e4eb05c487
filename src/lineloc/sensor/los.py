"""
Lines of sight of a line sensor: raw per-pixel directions composed with a
chain of (possibly time-dependent) transforms whose parameters can be
estimated.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np

from lineloc.core.derivatives import DerivativeGenerator, Gradient, GradientVector
from lineloc.core.geometry import axis_angle_matrix, normalize
from lineloc.sensor.parameters import ParameterDriver

# Angular drivers are scaled so that one normalized unit is about a micro-radian.
ANGULAR_SCALE = 2.0**-20


class LOSTransform(ABC):
    @abstractmethod
    def transform_los(self, index: int, los: np.ndarray, date: float) -> np.ndarray:
        ...

    @abstractmethod
    def transform_los_derivatives(
        self, index: int, los: GradientVector, date: float, generator: DerivativeGenerator
    ) -> GradientVector:
        ...

    @abstractmethod
    def parameters_drivers(self) -> list[ParameterDriver]:
        ...


def _rotate(axis: np.ndarray, angle: Gradient, los: GradientVector) -> GradientVector:
    # Rodrigues: v cos + (k x v) sin + k (k.v)(1 - cos)
    c = angle.cos()
    s = angle.sin()
    k_cross_v = los.cross(axis).scale(-1.0)
    k_dot_v = los.dot(axis)
    along = GradientVector.constant(axis, los.n_params)
    return los.scale(c) + k_cross_v.scale(s) + along.scale(k_dot_v * (1.0 - c))


class FixedRotation(LOSTransform):
    """Constant rotation of all lines of sight around an axis."""

    def __init__(self, name: str, axis: np.ndarray, angle: float) -> None:
        self.axis = normalize(np.asarray(axis, dtype=np.float64).reshape(3))
        self.angle_driver = ParameterDriver(name, reference_value=float(angle), scale=ANGULAR_SCALE)

    def transform_los(self, index: int, los: np.ndarray, date: float) -> np.ndarray:
        return axis_angle_matrix(self.axis, self.angle_driver.value) @ los

    def transform_los_derivatives(
        self, index: int, los: GradientVector, date: float, generator: DerivativeGenerator
    ) -> GradientVector:
        return _rotate(self.axis, generator.variable(self.angle_driver), los)

    def parameters_drivers(self) -> list[ParameterDriver]:
        return [self.angle_driver]


class PolynomialRotation(LOSTransform):
    """Rotation whose angle is a polynomial of (date - reference_date)."""

    def __init__(self, name: str, axis: np.ndarray, reference_date: float, coefficients: Sequence[float]) -> None:
        if len(coefficients) == 0:
            raise ValueError("at least one polynomial coefficient is required")
        self.axis = normalize(np.asarray(axis, dtype=np.float64).reshape(3))
        self.reference_date = float(reference_date)
        self.coefficients_drivers = [
            ParameterDriver(f"{name}[{i}]", reference_value=float(c), scale=ANGULAR_SCALE)
            for i, c in enumerate(coefficients)
        ]

    def angle(self, date: float) -> float:
        dt = float(date) - self.reference_date
        return float(sum(d.value * dt**i for i, d in enumerate(self.coefficients_drivers)))

    def transform_los(self, index: int, los: np.ndarray, date: float) -> np.ndarray:
        return axis_angle_matrix(self.axis, self.angle(date)) @ los

    def transform_los_derivatives(
        self, index: int, los: GradientVector, date: float, generator: DerivativeGenerator
    ) -> GradientVector:
        dt = float(date) - self.reference_date
        angle = generator.constant(0.0)
        for i, d in enumerate(self.coefficients_drivers):
            angle = angle + generator.variable(d) * dt**i
        return _rotate(self.axis, angle, los)

    def parameters_drivers(self) -> list[ParameterDriver]:
        return list(self.coefficients_drivers)


class FixedZHomothety(LOSTransform):
    """Scale of the Z component, i.e. a focal length error for a Z-pointing sensor."""

    def __init__(self, name: str, factor: float) -> None:
        self.factor_driver = ParameterDriver(name, reference_value=float(factor), scale=1.0)

    def transform_los(self, index: int, los: np.ndarray, date: float) -> np.ndarray:
        return np.array([los[0], los[1], self.factor_driver.value * los[2]], dtype=np.float64)

    def transform_los_derivatives(
        self, index: int, los: GradientVector, date: float, generator: DerivativeGenerator
    ) -> GradientVector:
        z = los.component(2) * generator.variable(self.factor_driver)
        return GradientVector.from_components([los.component(0), los.component(1), z])

    def parameters_drivers(self) -> list[ParameterDriver]:
        return [self.factor_driver]


class TimeDependentLOS:
    def __init__(self, raw_los: np.ndarray, transforms: Sequence[LOSTransform] = ()) -> None:
        raw = np.asarray(raw_los, dtype=np.float64).reshape(-1, 3)
        if raw.shape[0] == 0:
            raise ValueError("a sensor needs at least one line of sight")
        self.raw_los = normalize(raw)
        self.transforms = list(transforms)

    @property
    def nb_pixels(self) -> int:
        return int(self.raw_los.shape[0])

    def get_los(self, index: int, date: float) -> np.ndarray:
        los = self.raw_los[index]
        for t in self.transforms:
            los = t.transform_los(index, los, date)
        return normalize(los)

    def get_los_derivatives(self, index: int, date: float, generator: DerivativeGenerator) -> GradientVector:
        los = generator.constant_vector(self.raw_los[index])
        for t in self.transforms:
            los = t.transform_los_derivatives(index, los, date, generator)
        return los.normalize()

    def parameters_drivers(self) -> list[ParameterDriver]:
        drivers: list[ParameterDriver] = []
        for t in self.transforms:
            drivers.extend(t.parameters_drivers())
        return drivers


class LOSBuilder:
    """Fluent builder: LOSBuilder(raw).add_transform(...).build()."""

    def __init__(self, raw_los: np.ndarray) -> None:
        self._raw = np.asarray(raw_los, dtype=np.float64).reshape(-1, 3)
        self._transforms: list[LOSTransform] = []

    def add_transform(self, transform: LOSTransform) -> "LOSBuilder":
        self._transforms.append(transform)
        return self

    def build(self) -> TimeDependentLOS:
        return TimeDependentLOS(self._raw, self._transforms)
