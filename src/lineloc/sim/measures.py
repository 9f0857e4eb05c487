"""
Synthetic calibration measurements obtained by direct location on a line/pixel
grid, optionally perturbed with Gaussian noise.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from lineloc.adjustment.measurements import SensorToGroundMapping, SensorToSensorMapping
from lineloc.api.localizer import Localizer
from lineloc.core.ellipsoid import GeodeticPoint
from lineloc.sensor.line_sensor import SensorPixel

logger = logging.getLogger(__name__)


class GroundMeasureGenerator:
    def __init__(self, localizer: Localizer, sensor_name: str, *, seed: Optional[int] = None) -> None:
        self.localizer = localizer
        self.sensor = localizer.get_line_sensor(sensor_name)
        self.mapping = SensorToGroundMapping(sensor_name, localizer.name)
        self.rng = np.random.default_rng(seed)

    @property
    def measure_count(self) -> int:
        return len(self.mapping)

    def estimate_ground_error(self, line: float = 0.0) -> tuple[float, float]:
        """(latitude, longitude) spacing between the first two pixels, i.e. one pixel on ground."""
        p0 = self.localizer.direct_location(self.sensor.name, line, 0.0)
        p1 = self.localizer.direct_location(self.sensor.name, line, 1.0)
        return abs(p0.latitude - p1.latitude), abs(p0.longitude - p1.longitude)

    def create_measure(
        self,
        nb_lines: int,
        line_sampling: int,
        pixel_sampling: int,
        *,
        noise_std: Optional[tuple[float, float]] = None,
    ) -> SensorToGroundMapping:
        """
        Add one ground control point per sampled (line, pixel).

        `noise_std` is the (latitude, longitude) standard deviation in radians;
        altitudes are kept exact.
        """
        for line in range(0, nb_lines, line_sampling):
            for pixel in range(0, self.sensor.nb_pixels, pixel_sampling):
                gp = self.localizer.direct_location(self.sensor.name, float(line), float(pixel))
                if noise_std is not None:
                    dlat, dlon = self.rng.normal(0.0, 1.0, size=2) * np.asarray(noise_std, dtype=np.float64)
                    gp = GeodeticPoint(gp.latitude + dlat, gp.longitude + dlon, gp.altitude)
                self.mapping.add_mapping(SensorPixel(float(line), float(pixel)), gp)
        logger.info("Generated [%d] ground measures for [%s]", self.measure_count, self.sensor.name)
        return self.mapping


class InterSensorMeasureGenerator:
    """
    Tie points: pixels of sensor A located on ground, then searched back in
    sensor B. The expected LOS distance is 0 and the expected Earth distance is
    the altitude of the closest approach mid-point.
    """

    def __init__(
        self,
        localizer_a: Localizer,
        sensor_name_a: str,
        localizer_b: Localizer,
        sensor_name_b: str,
        *,
        earth_constraint_weight: float = 0.0,
        seed: Optional[int] = None,
    ) -> None:
        self.localizer_a = localizer_a
        self.localizer_b = localizer_b
        self.sensor_a = localizer_a.get_line_sensor(sensor_name_a)
        self.sensor_b = localizer_b.get_line_sensor(sensor_name_b)
        self.mapping = SensorToSensorMapping(
            sensor_name_a,
            sensor_name_b,
            localizer_a.name,
            localizer_b.name,
            earth_constraint_weight=earth_constraint_weight,
        )
        self.rng = np.random.default_rng(seed)

    @property
    def measure_count(self) -> int:
        return len(self.mapping)

    def create_measure(
        self,
        nb_lines: int,
        line_sampling: int,
        pixel_sampling: int,
        min_line_b: float,
        max_line_b: float,
        *,
        noise_std: Optional[tuple[float, float]] = None,
    ) -> SensorToSensorMapping:
        """`noise_std` is the (line, pixel) standard deviation added to the B pixels."""
        for line in range(0, nb_lines, line_sampling):
            for pixel in range(0, self.sensor_a.nb_pixels, pixel_sampling):
                gp = self.localizer_a.direct_location(self.sensor_a.name, float(line), float(pixel))
                sp_b = self.localizer_b.inverse_localization(self.sensor_b.name, gp, min_line_b, max_line_b)
                if sp_b is None:
                    continue
                if noise_std is not None:
                    dl, dp = self.rng.normal(0.0, 1.0, size=2) * np.asarray(noise_std, dtype=np.float64)
                    sp_b = SensorPixel(sp_b.line_number + dl, sp_b.pixel_number + dp)
                sp_a = SensorPixel(float(line), float(pixel))
                _distance, earth = self.localizer_a.distance_between_los(
                    self.sensor_a.name,
                    self.sensor_a.get_date(sp_a.line_number),
                    sp_a.pixel_number,
                    self.sensor_b.name,
                    self.sensor_b.get_date(sp_b.line_number),
                    sp_b.pixel_number,
                    other=self.localizer_b,
                )
                self.mapping.add_mapping(sp_a, sp_b, 0.0, earth)
        logger.info(
            "Generated [%d] tie points between [%s] and [%s]",
            self.measure_count,
            self.sensor_a.name,
            self.sensor_b.name,
        )
        return self.mapping
