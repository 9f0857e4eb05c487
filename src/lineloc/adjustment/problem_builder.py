"""
Least-squares problems estimating the selected sensor parameter drivers.

The model function receives normalized parameter values, writes them into the
drivers, and returns the predicted observations with their Jacobian with
respect to the normalized values (physical partials times driver scale).
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np

from lineloc.api.localizer import Localizer
from lineloc.core.derivatives import DerivativeGenerator, Gradient
from lineloc.adjustment.measurements import Observables, SensorToGroundMapping, SensorToSensorMapping
from lineloc.errors import (
    CalibrationError,
    InvalidLocalizerNameError,
    LineLocError,
    NoParametersSelectedError,
    NoReferenceMappingsError,
)
from lineloc.sensor.line_sensor import LineSensor
from lineloc.sensor.parameters import ParameterDriver, ParameterDriversList

logger = logging.getLogger(__name__)

Model = Callable[[np.ndarray], "tuple[np.ndarray, np.ndarray]"]


class BuilderState(Enum):
    CONSTRUCTED = "constructed"
    MAPPINGS_INITIALIZED = "mappings_initialized"
    TARGETS_BUILT = "targets_built"
    FUNCTION_BUILT = "function_built"
    SOLVED = "solved"
    FAILED = "failed"


@dataclass(frozen=True)
class ParameterValidator:
    """Keeps normalized parameters within the driver bounds."""

    lower: np.ndarray
    upper: np.ndarray

    def validate(self, point: np.ndarray) -> np.ndarray:
        return np.clip(np.asarray(point, dtype=np.float64), self.lower, self.upper)

    @property
    def bounded(self) -> bool:
        return bool(np.any(np.isfinite(self.lower)) or np.any(np.isfinite(self.upper)))


@dataclass(frozen=True)
class ConvergenceChecker:
    """Stops once a cost reduction, relative to the cost, falls below `threshold`."""

    threshold: float

    def converged(self, previous: float, current: float) -> bool:
        scale = max(abs(previous), abs(current), np.finfo(np.float64).tiny)
        return bool(abs(previous - current) <= self.threshold * scale)

    def converged_history(self, costs: Sequence[float]) -> bool:
        """Check the last two improvements of a cost history (rejected trials are skipped)."""
        improvements: list[float] = []
        for c in costs:
            if not improvements or c < improvements[-1]:
                improvements.append(float(c))
        if len(improvements) < 2:
            return False
        return self.converged(improvements[-2], improvements[-1])


@dataclass(frozen=True)
class LeastSquaresProblem:
    target: np.ndarray
    weights: np.ndarray
    start: np.ndarray
    validator: ParameterValidator
    checker: ConvergenceChecker
    model: Model
    max_evaluations: int
    drivers: tuple[ParameterDriver, ...]
    builder: Optional["OptimizationProblemBuilder"] = field(default=None, compare=False, repr=False)


class OptimizationProblemBuilder(ABC):
    def __init__(self, sensors: Sequence[LineSensor], observables: Observables) -> None:
        self.sensors = list(sensors)
        self.observables = observables
        self.drivers = ParameterDriversList(d for s in self.sensors for d in s.parameters_drivers())
        self.selected = self.drivers.selected()
        if not self.selected:
            raise NoParametersSelectedError(sensors=[s.name for s in self.sensors])
        self.generator = DerivativeGenerator(self.selected)
        self.state = BuilderState.CONSTRUCTED

    @property
    def nb_params(self) -> int:
        return len(self.selected)

    @abstractmethod
    def init_mapping(self) -> None:
        ...

    @abstractmethod
    def create_target_and_weight(self) -> tuple[np.ndarray, np.ndarray]:
        ...

    @abstractmethod
    def create_function(self) -> Model:
        ...

    def _set_normalized(self, point: np.ndarray) -> None:
        for driver, v in zip(self.selected, np.asarray(point, dtype=np.float64)):
            self.drivers.set_normalized_value(driver.name, float(v))

    def _jacobian_row(self, g: Gradient) -> np.ndarray:
        return g.grad * np.array([d.scale for d in self.selected], dtype=np.float64)

    def require_state(self, expected: BuilderState) -> None:
        if self.state is not expected:
            raise CalibrationError(
                "optimization problem builder is not ready", state=self.state.value, expected=expected.value
            )

    def _initialize(self) -> None:
        try:
            self.init_mapping()
        except LineLocError:
            self.state = BuilderState.FAILED
            raise
        self.state = BuilderState.MAPPINGS_INITIALIZED

    def mark_solved(self, solved: bool) -> None:
        self.require_state(BuilderState.FUNCTION_BUILT)
        self.state = BuilderState.SOLVED if solved else BuilderState.FAILED

    def build(self, max_evaluations: int, convergence_threshold: float) -> LeastSquaresProblem:
        self.require_state(BuilderState.MAPPINGS_INITIALIZED)
        try:
            target, weights = self.create_target_and_weight()
            self.state = BuilderState.TARGETS_BUILT
            model = self.create_function()
        except LineLocError:
            self.state = BuilderState.FAILED
            raise
        self.state = BuilderState.FUNCTION_BUILT
        bounds = np.array([d.normalized_bounds for d in self.selected], dtype=np.float64).reshape(-1, 2)
        start = np.array([d.normalized_value for d in self.selected], dtype=np.float64)
        logger.info(
            "Built problem with [%d] observations and [%d] parameters %s",
            target.size,
            self.nb_params,
            [d.name for d in self.selected],
        )
        return LeastSquaresProblem(
            target=target,
            weights=weights,
            start=start,
            validator=ParameterValidator(bounds[:, 0], bounds[:, 1]),
            checker=ConvergenceChecker(float(convergence_threshold)),
            model=model,
            max_evaluations=int(max_evaluations),
            drivers=tuple(self.selected),
            builder=self,
        )


class InterSensorsOptimizationProblemBuilder(OptimizationProblemBuilder):
    """Calibration from tie points between sensors, possibly on several localizers."""

    def __init__(self, sensors: Sequence[LineSensor], observables: Observables, localizers: Sequence[Localizer]) -> None:
        super().__init__(sensors, observables)
        self.localizers = {loc.name: loc for loc in localizers}
        self.mappings: list[SensorToSensorMapping] = []
        self._initialize()

    def init_mapping(self) -> None:
        for m in self.observables.inter_mappings:
            for name in (m.localizer_name_a, m.localizer_name_b):
                if name not in self.localizers:
                    raise InvalidLocalizerNameError(localizer=name, known=sorted(self.localizers))
        self.mappings = []
        for name_a in self.localizers:
            for name_b in self.localizers:
                for sensor_a in self.sensors:
                    for sensor_b in self.sensors:
                        m = self.observables.get_inter_mapping(name_a, sensor_a.name, name_b, sensor_b.name)
                        if m is not None and len(m) > 0:
                            # sensors must be carried by their localizers (raises UnknownSensorError)
                            self.localizers[name_a].get_line_sensor(sensor_a.name)
                            self.localizers[name_b].get_line_sensor(sensor_b.name)
                            self.mappings.append(m)

    def create_target_and_weight(self) -> tuple[np.ndarray, np.ndarray]:
        n = sum(len(m) for m in self.mappings)
        if n == 0:
            raise NoReferenceMappingsError()
        target = np.empty((2 * n,), dtype=np.float64)
        weights = np.empty((2 * n,), dtype=np.float64)
        k = 0
        for m in self.mappings:
            w = m.earth_constraint_weight
            for los_distance, earth_distance in zip(m.los_distances, m.earth_distances):
                target[k], weights[k] = los_distance, 1.0 - w
                target[k + 1], weights[k + 1] = earth_distance, w
                k += 2
        return target, weights

    def create_function(self) -> Model:
        def model(point: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
            self._set_normalized(point)
            rows = 2 * sum(len(m) for m in self.mappings)
            values = np.empty((rows,), dtype=np.float64)
            jacobian = np.empty((rows, self.nb_params), dtype=np.float64)
            k = 0
            for m in self.mappings:
                loc_a = self.localizers.get(m.localizer_name_a)
                loc_b = self.localizers.get(m.localizer_name_b)
                if loc_a is None or loc_b is None:
                    raise InvalidLocalizerNameError(localizer_a=m.localizer_name_a, localizer_b=m.localizer_name_b)
                sensor_a = loc_a.get_line_sensor(m.sensor_name_a)
                sensor_b = loc_b.get_line_sensor(m.sensor_name_b)
                for sp_a, sp_b in m.mapping:
                    distance, earth = loc_a.distance_between_los_derivatives(
                        m.sensor_name_a,
                        sensor_a.get_date(sp_a.line_number),
                        sp_a.pixel_number,
                        m.sensor_name_b,
                        sensor_b.get_date(sp_b.line_number),
                        sp_b.pixel_number,
                        self.generator,
                        other=loc_b,
                    )
                    values[k], values[k + 1] = distance.value, earth.value
                    jacobian[k] = self._jacobian_row(distance)
                    jacobian[k + 1] = self._jacobian_row(earth)
                    k += 2
            return values, jacobian

        return model


class GroundOptimizationProblemBuilder(OptimizationProblemBuilder):
    """Calibration from ground control points seen by the sensors of one localizer."""

    def __init__(
        self,
        sensors: Sequence[LineSensor],
        observables: Observables,
        localizer: Localizer,
        *,
        line_margin: float = 100.0,
    ) -> None:
        super().__init__(sensors, observables)
        self.localizer = localizer
        self.line_margin = float(line_margin)
        self.mappings: list[SensorToGroundMapping] = []
        self._initialize()

    def init_mapping(self) -> None:
        self.mappings = []
        for sensor in self.sensors:
            m = self.observables.get_ground_mapping(self.localizer.name, sensor.name)
            if m is not None and len(m) > 0:
                self.localizer.get_line_sensor(sensor.name)
                self.mappings.append(m)

    def create_target_and_weight(self) -> tuple[np.ndarray, np.ndarray]:
        n = sum(len(m) for m in self.mappings)
        if n == 0:
            raise NoReferenceMappingsError()
        target = np.array(
            [v for m in self.mappings for sp, _gp in m for v in (sp.line_number, sp.pixel_number)],
            dtype=np.float64,
        )
        return target, np.ones_like(target)

    def _line_range(self, m: SensorToGroundMapping) -> tuple[float, float]:
        lines = [sp.line_number for sp, _gp in m]
        return math.floor(min(lines) - self.line_margin), math.ceil(max(lines) + self.line_margin)

    def create_function(self) -> Model:
        ranges = [self._line_range(m) for m in self.mappings]

        def model(point: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
            self._set_normalized(point)
            rows = 2 * sum(len(m) for m in self.mappings)
            values = np.empty((rows,), dtype=np.float64)
            jacobian = np.zeros((rows, self.nb_params), dtype=np.float64)
            k = 0
            for m, (min_line, max_line) in zip(self.mappings, ranges):
                for _sp, gp in m:
                    res = self.localizer.inverse_location_derivatives(
                        m.sensor_name, gp, min_line, max_line, self.generator
                    )
                    if res is None:
                        # point lost for these parameters: far away residual, no gradient
                        logger.warning("Ground point %s not seen by [%s]", gp, m.sensor_name)
                        values[k], values[k + 1] = min_line - self.line_margin, -self.line_margin
                    else:
                        line, pixel = res
                        values[k], values[k + 1] = line.value, pixel.value
                        jacobian[k] = self._jacobian_row(line)
                        jacobian[k + 1] = self._jacobian_row(pixel)
                    k += 2
            return values, jacobian

        return model
