"""
Sensor calibration: measurements, least-squares problem builders and solver.
"""

from __future__ import annotations

from lineloc.adjustment.measurements import Observables, SensorToGroundMapping, SensorToSensorMapping
from lineloc.adjustment.problem_builder import (
    BuilderState,
    ConvergenceChecker,
    GroundOptimizationProblemBuilder,
    InterSensorsOptimizationProblemBuilder,
    LeastSquaresProblem,
    OptimizationProblemBuilder,
)
from lineloc.adjustment.solver import Optimum, solve

__all__ = [
    "Observables",
    "SensorToGroundMapping",
    "SensorToSensorMapping",
    "BuilderState",
    "ConvergenceChecker",
    "OptimizationProblemBuilder",
    "InterSensorsOptimizationProblemBuilder",
    "GroundOptimizationProblemBuilder",
    "LeastSquaresProblem",
    "Optimum",
    "solve",
]
