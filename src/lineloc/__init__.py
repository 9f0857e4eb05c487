from lineloc import errors
from lineloc.adjustment import (
    GroundOptimizationProblemBuilder,
    InterSensorsOptimizationProblemBuilder,
    Observables,
    SensorToGroundMapping,
    SensorToSensorMapping,
    solve,
)
from lineloc.api import Localizer, LocalizerBuilder
from lineloc.config import load_localizer_config, parse_localizer_config
from lineloc.core.ellipsoid import EllipsoidId, ExtendedEllipsoid, GeodeticPoint, NormalizedGeodeticPoint
from lineloc.intersection.algorithms import AlgorithmId
from lineloc.sensor.line_sensor import LineSensor, SensorPixel

__all__ = [
    "errors",
    "AlgorithmId",
    "EllipsoidId",
    "ExtendedEllipsoid",
    "GeodeticPoint",
    "NormalizedGeodeticPoint",
    "LineSensor",
    "SensorPixel",
    "Localizer",
    "LocalizerBuilder",
    "load_localizer_config",
    "parse_localizer_config",
    "Observables",
    "SensorToGroundMapping",
    "SensorToSensorMapping",
    "InterSensorsOptimizationProblemBuilder",
    "GroundOptimizationProblemBuilder",
    "solve",
]
