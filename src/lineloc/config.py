"""
JSON configuration of a localizer.

Example (abridged)::

    {
      "schema_version": "lineloc.config.v0",
      "name": "sat-a",
      "ellipsoid": "WGS84",
      "algorithm": {"id": "IGNORE_DEM_USE_ELLIPSOID"},
      "orbit": {"dates": [...], "positions": [[x, y, z], ...], "velocities": [[vx, vy, vz], ...]},
      "attitude": {"dates": [...], "quaternions": [[q0, q1, q2, q3], ...]},
      "sensors": [
        {"name": "line", "position": [0, 0, 0],
         "datation": {"reference_date": 0.0, "reference_line": 0.0, "rate": 100.0},
         "los": [[x, y, z], ...],
         "transforms": [{"type": "fixed_rotation", "name": "roll", "axis": [1, 0, 0], "angle": 0.0}]}
      ]
    }
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from lineloc.core.ellipsoid import EllipsoidId
from lineloc.core.frames import EARTH_ROTATION_RATE
from lineloc.errors import ConfigurationError
from lineloc.intersection.algorithms import AlgorithmId

SCHEMA_VERSION = "lineloc.config.v0"

_TRANSFORM_TYPES = ("fixed_rotation", "polynomial_rotation", "z_homothety")


class ConfigValidationError(ConfigurationError):
    default_message = "invalid localizer configuration"


@dataclass(frozen=True)
class AlgorithmConfig:
    algorithm_id: AlgorithmId
    constant_elevation: float = 0.0
    max_cached_tiles: int = 8


@dataclass(frozen=True)
class DemConfig:
    min_latitude: float
    min_longitude: float
    latitude_step: float
    longitude_step: float
    elevations: tuple[tuple[float, ...], ...]
    tile_size: int = 65


@dataclass(frozen=True)
class OrbitConfig:
    dates: tuple[float, ...]
    positions: tuple[tuple[float, float, float], ...]
    velocities: tuple[tuple[float, float, float], ...]


@dataclass(frozen=True)
class AttitudeConfig:
    dates: tuple[float, ...]
    quaternions: tuple[tuple[float, float, float, float], ...]


@dataclass(frozen=True)
class TransformConfig:
    kind: str
    name: str
    axis: tuple[float, float, float] = (0.0, 0.0, 1.0)
    angle: float = 0.0
    reference_date: float = 0.0
    coefficients: tuple[float, ...] = ()
    factor: float = 1.0


@dataclass(frozen=True)
class DatationConfig:
    reference_date: Optional[float] = None
    reference_line: float = 0.0
    rate: Optional[float] = None
    lines: tuple[float, ...] = ()
    dates: tuple[float, ...] = ()


@dataclass(frozen=True)
class SensorConfig:
    name: str
    position: tuple[float, float, float]
    los: tuple[tuple[float, float, float], ...]
    datation: DatationConfig
    transforms: tuple[TransformConfig, ...] = ()


@dataclass(frozen=True)
class LocalizerConfig:
    schema_version: str
    name: str
    ellipsoid: EllipsoidId
    algorithm: AlgorithmConfig
    orbit: OrbitConfig
    attitude: AttitudeConfig
    sensors: tuple[SensorConfig, ...]
    reference_date: Optional[str] = None
    body_rotation_rate: float = EARTH_ROTATION_RATE
    initial_angle: float = 0.0
    overshoot_tolerance: float = 1.0
    dem: Optional[DemConfig] = None

    def absolute_date(self, date: float) -> Optional[datetime]:
        """Calendar date of `date` seconds after `reference_date`, None when no reference is configured."""
        if self.reference_date is None:
            return None
        return datetime.fromisoformat(self.reference_date) + timedelta(seconds=date)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def _number(raw: Any, what: str) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"{what} must be a number, got {raw!r}") from exc


def _integer(raw: Any, what: str) -> int:
    _require(isinstance(raw, int) and not isinstance(raw, bool), f"{what} must be an integer, got {raw!r}")
    return int(raw)


def _numbers(raw: Any, what: str) -> tuple[float, ...]:
    _require(isinstance(raw, (list, tuple)), f"{what} must be a list of numbers")
    return tuple(_number(v, f"{what}[{i}]") for i, v in enumerate(raw))


def _vector(raw: Any, n: int, what: str) -> tuple[float, ...]:
    _require(isinstance(raw, (list, tuple)) and len(raw) == n, f"{what} must be a list of {n} numbers")
    return _numbers(raw, what)


def _vectors(raw: Any, n: int, what: str) -> tuple[tuple[float, ...], ...]:
    _require(isinstance(raw, (list, tuple)) and len(raw) > 0, f"{what} must be a non-empty list")
    return tuple(_vector(v, n, f"{what}[{i}]") for i, v in enumerate(raw))


def _increasing(values: tuple[float, ...], what: str) -> None:
    _require(all(b > a for a, b in zip(values, values[1:])), f"{what} must be strictly increasing")


def load_localizer_config(path: Path) -> LocalizerConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_localizer_config(data)


def parse_localizer_config(data: dict[str, Any]) -> LocalizerConfig:
    _require(isinstance(data, dict), "configuration must be a JSON object")
    schema_version = data.get("schema_version")
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    name = str(data.get("name", "localizer"))
    _require(len(name) > 0, "name must not be empty")

    ellipsoid_raw = data.get("ellipsoid", "WGS84")
    _require(
        ellipsoid_raw in {e.value for e in EllipsoidId},
        f"ellipsoid must be one of {[e.value for e in EllipsoidId]}",
    )

    algorithm = _parse_algorithm(data.get("algorithm", {}))
    orbit = _parse_orbit(data.get("orbit"))
    attitude = _parse_attitude(data.get("attitude"))

    sensors_raw = data.get("sensors", [])
    _require(isinstance(sensors_raw, list) and len(sensors_raw) > 0, "sensors must be a non-empty list")
    sensors = tuple(_parse_sensor(s, i) for i, s in enumerate(sensors_raw))
    names = [s.name for s in sensors]
    _require(len(set(names)) == len(names), "sensor names must be unique")

    dem = _parse_dem(data["dem"]) if data.get("dem") is not None else None
    _require(
        algorithm.algorithm_id is not AlgorithmId.DEM_MARCHING or dem is not None,
        "algorithm DEM_MARCHING requires a dem section",
    )

    reference_date = data.get("reference_date")
    _require(reference_date is None or isinstance(reference_date, str), "reference_date must be an ISO-8601 string")
    if reference_date is not None:
        try:
            datetime.fromisoformat(reference_date)
        except ValueError as exc:
            raise ConfigValidationError(f"reference_date is not ISO-8601: {reference_date!r}") from exc

    body_rotation_rate = _number(data.get("body_rotation_rate", EARTH_ROTATION_RATE), "body_rotation_rate")
    initial_angle = _number(data.get("initial_angle", 0.0), "initial_angle")
    overshoot_tolerance = _number(data.get("overshoot_tolerance", 1.0), "overshoot_tolerance")
    _require(overshoot_tolerance >= 0.0, "overshoot_tolerance must be >= 0")

    return LocalizerConfig(
        schema_version=schema_version,
        name=name,
        ellipsoid=EllipsoidId(ellipsoid_raw),
        algorithm=algorithm,
        orbit=orbit,
        attitude=attitude,
        sensors=sensors,
        reference_date=reference_date,
        body_rotation_rate=body_rotation_rate,
        initial_angle=initial_angle,
        overshoot_tolerance=overshoot_tolerance,
        dem=dem,
    )


def _parse_algorithm(raw: Any) -> AlgorithmConfig:
    _require(isinstance(raw, dict), "algorithm must be an object")
    algorithm_id = raw.get("id", AlgorithmId.IGNORE_DEM_USE_ELLIPSOID.value)
    _require(
        algorithm_id in {a.value for a in AlgorithmId},
        f"algorithm.id must be one of {[a.value for a in AlgorithmId]}",
    )
    max_cached_tiles = _integer(raw.get("max_cached_tiles", 8), "algorithm.max_cached_tiles")
    _require(max_cached_tiles >= 1, "algorithm.max_cached_tiles must be >= 1")
    return AlgorithmConfig(
        algorithm_id=AlgorithmId(algorithm_id),
        constant_elevation=_number(raw.get("constant_elevation", 0.0), "algorithm.constant_elevation"),
        max_cached_tiles=max_cached_tiles,
    )


def _parse_orbit(raw: Any) -> OrbitConfig:
    _require(isinstance(raw, dict), "orbit is required")
    dates = _numbers(raw.get("dates", []), "orbit.dates")
    _require(len(dates) >= 2, "orbit.dates needs at least 2 samples")
    _increasing(dates, "orbit.dates")
    positions = _vectors(raw.get("positions"), 3, "orbit.positions")
    velocities = _vectors(raw.get("velocities"), 3, "orbit.velocities")
    _require(len(positions) == len(dates) and len(velocities) == len(dates), "orbit samples must have matching sizes")
    return OrbitConfig(dates=dates, positions=positions, velocities=velocities)  # type: ignore[arg-type]


def _parse_attitude(raw: Any) -> AttitudeConfig:
    _require(isinstance(raw, dict), "attitude is required")
    dates = _numbers(raw.get("dates", []), "attitude.dates")
    _require(len(dates) >= 2, "attitude.dates needs at least 2 samples")
    _increasing(dates, "attitude.dates")
    quaternions = _vectors(raw.get("quaternions"), 4, "attitude.quaternions")
    _require(len(quaternions) == len(dates), "attitude samples must have matching sizes")
    _require(all(sum(c * c for c in q) > 0.0 for q in quaternions), "attitude quaternions must be non-zero")
    return AttitudeConfig(dates=dates, quaternions=quaternions)  # type: ignore[arg-type]


def _parse_datation(raw: Any, where: str) -> DatationConfig:
    _require(isinstance(raw, dict), f"{where}.datation is required")
    if "lines" in raw:
        lines = _numbers(raw.get("lines", []), f"{where}.datation.lines")
        dates = _numbers(raw.get("dates", []), f"{where}.datation.dates")
        _require(len(lines) >= 2 and len(lines) == len(dates), f"{where}.datation lines/dates must match (>= 2)")
        _increasing(lines, f"{where}.datation.lines")
        _increasing(dates, f"{where}.datation.dates")
        return DatationConfig(lines=lines, dates=dates)
    _require("reference_date" in raw and "rate" in raw, f"{where}.datation needs reference_date and rate")
    rate = _number(raw["rate"], f"{where}.datation.rate")
    _require(rate > 0.0, f"{where}.datation.rate must be > 0")
    return DatationConfig(
        reference_date=_number(raw["reference_date"], f"{where}.datation.reference_date"),
        reference_line=_number(raw.get("reference_line", 0.0), f"{where}.datation.reference_line"),
        rate=rate,
    )


def _parse_transform(raw: Any, where: str) -> TransformConfig:
    _require(isinstance(raw, dict), f"{where} must be an object")
    kind = raw.get("type")
    _require(kind in _TRANSFORM_TYPES, f"{where}.type must be one of {list(_TRANSFORM_TYPES)}")
    name = raw.get("name")
    _require(isinstance(name, str) and len(name) > 0, f"{where}.name is required")
    if kind == "z_homothety":
        return TransformConfig(kind=kind, name=name, factor=_number(raw.get("factor", 1.0), f"{where}.factor"))
    axis = _vector(raw.get("axis"), 3, f"{where}.axis")
    _require(any(a != 0.0 for a in axis), f"{where}.axis must be non-zero")
    if kind == "fixed_rotation":
        return TransformConfig(kind=kind, name=name, axis=axis, angle=_number(raw.get("angle", 0.0), f"{where}.angle"))  # type: ignore[arg-type]
    coefficients = _numbers(raw.get("coefficients", []), f"{where}.coefficients")
    _require(len(coefficients) > 0, f"{where}.coefficients must be non-empty")
    return TransformConfig(
        kind=kind,
        name=name,
        axis=axis,  # type: ignore[arg-type]
        reference_date=_number(raw.get("reference_date", 0.0), f"{where}.reference_date"),
        coefficients=coefficients,
    )


def _parse_sensor(raw: Any, index: int) -> SensorConfig:
    where = f"sensors[{index}]"
    _require(isinstance(raw, dict), f"{where} must be an object")
    name = raw.get("name")
    _require(isinstance(name, str) and len(name) > 0, f"{where}.name is required")

    los_raw = raw.get("los")
    _require(isinstance(los_raw, list) and len(los_raw) > 0, f"{where}.los must be a non-empty list")
    position = raw.get("position")
    if all(isinstance(v, (list, tuple)) and len(v) == 6 for v in los_raw):
        # origin + direction pairs: the origin of the first one is the sensor position
        pairs = _vectors(los_raw, 6, f"{where}.los")
        los = tuple(p[3:] for p in pairs)
        if position is None:
            position = list(pairs[0][:3])
    else:
        los = _vectors(los_raw, 3, f"{where}.los")
    _require(all(any(c != 0.0 for c in v) for v in los), f"{where}.los directions must be non-zero")
    pos = _vector(position if position is not None else [0.0, 0.0, 0.0], 3, f"{where}.position")

    transforms_raw = raw.get("transforms", [])
    _require(isinstance(transforms_raw, list), f"{where}.transforms must be a list")
    transforms = tuple(_parse_transform(t, f"{where}.transforms[{i}]") for i, t in enumerate(transforms_raw))

    return SensorConfig(
        name=name,
        position=pos,  # type: ignore[arg-type]
        los=los,  # type: ignore[arg-type]
        datation=_parse_datation(raw.get("datation"), where),
        transforms=transforms,
    )


def _parse_dem(raw: Any) -> DemConfig:
    _require(isinstance(raw, dict), "dem must be an object")
    for key in ("min_latitude", "min_longitude", "latitude_step", "longitude_step", "elevations"):
        _require(key in raw, f"dem.{key} is required")
    lat_step = _number(raw["latitude_step"], "dem.latitude_step")
    lon_step = _number(raw["longitude_step"], "dem.longitude_step")
    _require(lat_step > 0.0 and lon_step > 0.0, "dem steps must be > 0")
    rows = raw["elevations"]
    _require(isinstance(rows, list) and len(rows) >= 2, "dem.elevations must have at least 2 rows")
    width = len(rows[0]) if isinstance(rows[0], list) else 0
    _require(width >= 2, "dem.elevations must have at least 2 columns")
    _require(all(isinstance(r, list) and len(r) == width for r in rows), "dem.elevations rows must have equal sizes")
    tile_size = _integer(raw.get("tile_size", 65), "dem.tile_size")
    _require(tile_size >= 2, "dem.tile_size must be >= 2")
    return DemConfig(
        min_latitude=_number(raw["min_latitude"], "dem.min_latitude"),
        min_longitude=_number(raw["min_longitude"], "dem.min_longitude"),
        latitude_step=lat_step,
        longitude_step=lon_step,
        elevations=tuple(_numbers(r, f"dem.elevations[{i}]") for i, r in enumerate(rows)),
        tile_size=tile_size,
    )
