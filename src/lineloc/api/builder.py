from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from lineloc.api.localizer import Localizer
from lineloc.config import LocalizerConfig, SensorConfig, TransformConfig
from lineloc.core.ellipsoid import EllipsoidId, ExtendedEllipsoid
from lineloc.core.frames import EARTH_ROTATION_RATE, SpacecraftToObservedBody
from lineloc.errors import ConfigurationError, UninitializedContextError
from lineloc.intersection.algorithms import AlgorithmId, select_algorithm
from lineloc.intersection.refraction import AtmosphericRefraction
from lineloc.raster.tile import TileUpdater
from lineloc.raster.updaters import GridTileUpdater
from lineloc.sensor.datation import LinearLineDatation, LineDatation, TabulatedLineDatation
from lineloc.sensor.line_sensor import LineSensor
from lineloc.sensor.los import FixedRotation, FixedZHomothety, LOSBuilder, LOSTransform, PolynomialRotation

logger = logging.getLogger(__name__)


def _transform_from_config(cfg: TransformConfig) -> LOSTransform:
    if cfg.kind == "fixed_rotation":
        return FixedRotation(cfg.name, np.asarray(cfg.axis), cfg.angle)
    if cfg.kind == "polynomial_rotation":
        return PolynomialRotation(cfg.name, np.asarray(cfg.axis), cfg.reference_date, cfg.coefficients)
    if cfg.kind == "z_homothety":
        return FixedZHomothety(cfg.name, cfg.factor)
    raise ConfigurationError("unknown LOS transform", kind=cfg.kind)


def sensor_from_config(cfg: SensorConfig) -> LineSensor:
    builder = LOSBuilder(np.asarray(cfg.los, dtype=np.float64))
    for t in cfg.transforms:
        builder.add_transform(_transform_from_config(t))
    datation: LineDatation
    if cfg.datation.lines:
        datation = TabulatedLineDatation(np.asarray(cfg.datation.lines), np.asarray(cfg.datation.dates))
    else:
        datation = LinearLineDatation(
            cfg.datation.reference_date, cfg.datation.reference_line, cfg.datation.rate  # type: ignore[arg-type]
        )
    return LineSensor(cfg.name, datation, np.asarray(cfg.position, dtype=np.float64), builder.build())


class LocalizerBuilder:
    """
    Step-by-step assembly of a `Localizer`.

    Ellipsoid and algorithm have defaults (WGS84, no DEM); the trajectory is
    mandatory.
    """

    def __init__(self, name: str = "localizer") -> None:
        self.name = name
        self._ellipsoid_id = EllipsoidId.WGS84
        self._algorithm_id = AlgorithmId.IGNORE_DEM_USE_ELLIPSOID
        self._constant_elevation = 0.0
        self._updater: Optional[TileUpdater] = None
        self._max_cached_tiles = 8
        self._context: Optional[SpacecraftToObservedBody] = None
        self._sensors: list[LineSensor] = []
        self._refraction: Optional[AtmosphericRefraction] = None

    def set_ellipsoid(self, ellipsoid_id: EllipsoidId | str) -> "LocalizerBuilder":
        self._ellipsoid_id = EllipsoidId(ellipsoid_id)
        return self

    def set_algorithm(
        self,
        algorithm_id: AlgorithmId | str,
        *,
        constant_elevation: float = 0.0,
        updater: Optional[TileUpdater] = None,
        max_cached_tiles: int = 8,
    ) -> "LocalizerBuilder":
        self._algorithm_id = AlgorithmId(algorithm_id)
        self._constant_elevation = float(constant_elevation)
        self._updater = updater
        self._max_cached_tiles = int(max_cached_tiles)
        return self

    def set_refraction(self, refraction: Optional[AtmosphericRefraction]) -> "LocalizerBuilder":
        self._refraction = refraction
        return self

    def set_context(self, context: SpacecraftToObservedBody) -> "LocalizerBuilder":
        self._context = context
        return self

    def set_trajectory(
        self,
        *,
        pv_dates: np.ndarray,
        positions: np.ndarray,
        velocities: np.ndarray,
        q_dates: np.ndarray,
        quaternions: np.ndarray,
        body_rotation_rate: float = EARTH_ROTATION_RATE,
        initial_angle: float = 0.0,
        overshoot_tolerance: float = 1.0,
    ) -> "LocalizerBuilder":
        self._context = SpacecraftToObservedBody(
            pv_dates=pv_dates,
            positions=positions,
            velocities=velocities,
            q_dates=q_dates,
            quaternions=quaternions,
            body_rotation_rate=body_rotation_rate,
            initial_angle=initial_angle,
            overshoot_tolerance=overshoot_tolerance,
        )
        return self

    def add_line_sensor(self, sensor: LineSensor) -> "LocalizerBuilder":
        self._sensors.append(sensor)
        return self

    def build(self) -> Localizer:
        if self._context is None:
            raise UninitializedContextError("trajectory has not been set", localizer=self.name)
        if self._algorithm_id is AlgorithmId.DEM_MARCHING and self._updater is None:
            raise ConfigurationError("DEM_MARCHING needs a tile updater", localizer=self.name)
        localizer = Localizer(self.name)
        localizer.set_general_context(
            ellipsoid=ExtendedEllipsoid.select(self._ellipsoid_id),
            algorithm=select_algorithm(
                self._algorithm_id,
                updater=self._updater,
                max_cached_tiles=self._max_cached_tiles,
                constant_elevation=self._constant_elevation,
            ),
            context=self._context,
            refraction=self._refraction,
        )
        for sensor in self._sensors:
            localizer.add_line_sensor(sensor)
        return localizer

    @classmethod
    def from_config(cls, config: LocalizerConfig, *, updater: Optional[TileUpdater] = None) -> "LocalizerBuilder":
        """Builder preloaded from a parsed configuration; `updater` overrides the config DEM."""
        if updater is None and config.dem is not None:
            dem = config.dem
            updater = GridTileUpdater(
                dem.min_latitude,
                dem.min_longitude,
                dem.latitude_step,
                dem.longitude_step,
                np.asarray(dem.elevations, dtype=np.float64),
                dem.tile_size,
            )
        builder = (
            cls(config.name)
            .set_ellipsoid(config.ellipsoid)
            .set_algorithm(
                config.algorithm.algorithm_id,
                constant_elevation=config.algorithm.constant_elevation,
                updater=updater,
                max_cached_tiles=config.algorithm.max_cached_tiles,
            )
            .set_trajectory(
                pv_dates=np.asarray(config.orbit.dates),
                positions=np.asarray(config.orbit.positions),
                velocities=np.asarray(config.orbit.velocities),
                q_dates=np.asarray(config.attitude.dates),
                quaternions=np.asarray(config.attitude.quaternions),
                body_rotation_rate=config.body_rotation_rate,
                initial_angle=config.initial_angle,
                overshoot_tolerance=config.overshoot_tolerance,
            )
        )
        for s in config.sensors:
            builder.add_line_sensor(sensor_from_config(s))
        logger.debug("Builder for [%s] loaded with [%d] sensors", config.name, len(config.sensors))
        return builder
