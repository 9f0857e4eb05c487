from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional

from lineloc.core.ellipsoid import GeodeticPoint
from lineloc.sensor.line_sensor import SensorPixel


@dataclass
class SensorToGroundMapping:
    """Ground control points: sensor pixels with the ground point they see."""

    sensor_name: str
    localizer_name: str = "localizer"
    mapping: list[tuple[SensorPixel, GeodeticPoint]] = field(default_factory=list)

    def add_mapping(self, pixel: SensorPixel, ground: GeodeticPoint) -> None:
        self.mapping.append((pixel, ground))

    def __len__(self) -> int:
        return len(self.mapping)

    def __iter__(self) -> Iterator[tuple[SensorPixel, GeodeticPoint]]:
        return iter(self.mapping)


@dataclass
class SensorToSensorMapping:
    """
    Tie points between sensor A and sensor B, possibly on two localizers.

    Each pair carries the expected LOS closest approach distance and the
    expected altitude of the closest approach mid-point; the Earth constraint
    weight w splits the pair weight as (1 - w, w).
    """

    sensor_name_a: str
    sensor_name_b: str
    localizer_name_a: str = "localizer"
    localizer_name_b: str = "localizer"
    earth_constraint_weight: float = 0.0
    mapping: list[tuple[SensorPixel, SensorPixel]] = field(default_factory=list)
    los_distances: list[float] = field(default_factory=list)
    earth_distances: list[float] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0.0 <= self.earth_constraint_weight <= 1.0:
            raise ValueError("earth_constraint_weight must be in [0, 1]")

    def add_mapping(
        self, pixel_a: SensorPixel, pixel_b: SensorPixel, los_distance: float = 0.0, earth_distance: float = 0.0
    ) -> None:
        self.mapping.append((pixel_a, pixel_b))
        self.los_distances.append(float(los_distance))
        self.earth_distances.append(float(earth_distance))

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.localizer_name_a, self.sensor_name_a, self.localizer_name_b, self.sensor_name_b)

    def __len__(self) -> int:
        return len(self.mapping)


class Observables:
    """Measurements fed to the calibration, keyed by localizer and sensor names."""

    def __init__(self) -> None:
        self._ground: dict[tuple[str, str], SensorToGroundMapping] = {}
        self._inter: dict[tuple[str, str, str, str], SensorToSensorMapping] = {}

    def add_ground_mapping(self, mapping: SensorToGroundMapping) -> None:
        self._ground[(mapping.localizer_name, mapping.sensor_name)] = mapping

    def get_ground_mapping(self, localizer_name: str, sensor_name: str) -> Optional[SensorToGroundMapping]:
        return self._ground.get((localizer_name, sensor_name))

    @property
    def ground_mappings(self) -> list[SensorToGroundMapping]:
        return list(self._ground.values())

    def add_inter_mapping(self, mapping: SensorToSensorMapping) -> None:
        self._inter[mapping.key] = mapping

    def get_inter_mapping(
        self, localizer_name_a: str, sensor_name_a: str, localizer_name_b: str, sensor_name_b: str
    ) -> Optional[SensorToSensorMapping]:
        return self._inter.get((localizer_name_a, sensor_name_a, localizer_name_b, sensor_name_b))

    @property
    def inter_mappings(self) -> list[SensorToSensorMapping]:
        return list(self._inter.values())
