from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from lineloc.core.derivatives import DerivativeGenerator, GradientVector
from lineloc.core.geometry import as_vector, mean_plane_normal, normalize
from lineloc.sensor.datation import LineDatation
from lineloc.sensor.los import TimeDependentLOS
from lineloc.sensor.parameters import ParameterDriver


@dataclass(frozen=True)
class SensorPixel:
    line_number: float
    pixel_number: float


class LineSensor:
    """
    Push-broom sensor: one line of pixels acquired at a time.

    `position` is the sensor position in the spacecraft frame; lines of sight
    are expressed in the spacecraft frame as well.
    """

    def __init__(
        self,
        name: str,
        datation: LineDatation,
        position: np.ndarray,
        los: TimeDependentLOS,
    ) -> None:
        self.name = str(name)
        self.datation = datation
        self.position = as_vector(position)
        self.los = los

    def __repr__(self) -> str:
        return f"LineSensor(name={self.name!r}, nb_pixels={self.nb_pixels})"

    @property
    def nb_pixels(self) -> int:
        return self.los.nb_pixels

    def parameters_drivers(self) -> list[ParameterDriver]:
        return self.los.parameters_drivers()

    def get_date(self, line: float) -> float:
        return self.datation.get_date(line)

    def get_line(self, date: float) -> float:
        return self.datation.get_line(date)

    def get_rate(self, line: float) -> float:
        return self.datation.get_rate(line)

    def get_los(self, date: float, index: int) -> np.ndarray:
        return self.los.get_los(int(index), date)

    def _bracket(self, pixel: float) -> tuple[int, float]:
        i = min(max(int(math.floor(pixel)), 0), self.nb_pixels - 2)
        return i, float(pixel) - i

    def get_interpolated_los(self, date: float, pixel: float) -> np.ndarray:
        """LOS at a fractional pixel, linear between neighbours (extrapolated at the ends)."""
        if self.nb_pixels == 1:
            return self.los.get_los(0, date)
        i, t = self._bracket(pixel)
        return normalize((1.0 - t) * self.los.get_los(i, date) + t * self.los.get_los(i + 1, date))

    def get_los_derivatives(self, date: float, pixel: float, generator: DerivativeGenerator) -> GradientVector:
        if self.nb_pixels == 1:
            return self.los.get_los_derivatives(0, date, generator)
        i, t = self._bracket(pixel)
        a = self.los.get_los_derivatives(i, date, generator)
        b = self.los.get_los_derivatives(i + 1, date, generator)
        return (a.scale(1.0 - t) + b.scale(t)).normalize()

    def all_los(self, date: float) -> np.ndarray:
        return np.stack([self.los.get_los(i, date) for i in range(self.nb_pixels)], axis=0)

    def mean_plane_normal(self, date: float) -> np.ndarray:
        return mean_plane_normal(self.all_los(date))
