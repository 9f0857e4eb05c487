from __future__ import annotations

from typing import Any


class LineLocError(Exception):
    """
    Base error. Keyword arguments are kept in `context` so a failing ray can be
    reproduced (sensor, date, pixel, tile bounds, ...).
    """

    default_message = "localization error"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.context: dict[str, Any] = dict(context)
        msg = message or self.default_message
        if self.context:
            details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            msg = f"{msg} ({details})"
        super().__init__(msg)


class ConfigurationError(LineLocError, ValueError):
    default_message = "invalid configuration"


class UninitializedContextError(ConfigurationError):
    default_message = "general context has not been initialized"


class UnknownSensorError(ConfigurationError):
    default_message = "unknown sensor"


class InvalidLocalizerNameError(ConfigurationError):
    default_message = "invalid localizer name"


class NoParametersSelectedError(ConfigurationError):
    default_message = "no parameters have been selected for estimation"


class OutOfTimeRangeError(ConfigurationError):
    default_message = "date is out of the orbit/attitude time range"


class GeometricError(LineLocError):
    default_message = "geometric computation failed"


class NoIntersectionError(GeometricError):
    default_message = "line-of-sight does not reach ground"


class InverseLocalizationError(GeometricError):
    default_message = "inverse localization did not converge"


class DemNonConvergenceError(GeometricError):
    default_message = "DEM intersection did not converge"


class CoverageError(LineLocError):
    default_message = "DEM coverage error"


class OutOfTileError(CoverageError):
    default_message = "point is out of tile"


class OutOfCoverageError(CoverageError):
    default_message = "no DEM tile covers the point"


class CalibrationError(LineLocError):
    default_message = "calibration failed"


class NoReferenceMappingsError(CalibrationError):
    default_message = "no reference mappings for parameters estimation"
