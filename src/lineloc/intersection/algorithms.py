"""
Line-of-sight / terrain intersection.

All algorithms work in the body frame: `position` is the ray origin and `los`
a unit direction, both (3,) arrays. Results are geodetic points normalized
around a central longitude.
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import numpy as np

from lineloc.core.ellipsoid import ExtendedEllipsoid, NormalizedGeodeticPoint
from lineloc.core.geometry import as_vector, normalize
from lineloc.errors import DemNonConvergenceError
from lineloc.raster.tile import SimpleTile, TileUpdater
from lineloc.raster.tiles_cache import TilesCache

logger = logging.getLogger(__name__)


class AlgorithmId(str, Enum):
    IGNORE_DEM_USE_ELLIPSOID = "IGNORE_DEM_USE_ELLIPSOID"
    CONSTANT_ELEVATION_OVER_ELLIPSOID = "CONSTANT_ELEVATION_OVER_ELLIPSOID"
    DEM_MARCHING = "DEM_MARCHING"


class IntersectionAlgorithm(ABC):
    @property
    @abstractmethod
    def algorithm_id(self) -> AlgorithmId:
        ...

    @abstractmethod
    def intersection(
        self, ellipsoid: ExtendedEllipsoid, position: np.ndarray, los: np.ndarray
    ) -> NormalizedGeodeticPoint:
        ...

    @abstractmethod
    def refine_intersection(
        self,
        ellipsoid: ExtendedEllipsoid,
        position: np.ndarray,
        los: np.ndarray,
        close_guess: NormalizedGeodeticPoint,
    ) -> NormalizedGeodeticPoint:
        """Intersection close to a previous guess, e.g. a neighbouring pixel result."""

    @abstractmethod
    def get_elevation(self, latitude: float, longitude: float) -> float:
        ...


class ConstantElevationAlgorithm(IntersectionAlgorithm):
    """Intersection with the ellipsoid inflated by a constant elevation."""

    def __init__(self, elevation: float = 0.0) -> None:
        self.elevation = float(elevation)

    @property
    def algorithm_id(self) -> AlgorithmId:
        return AlgorithmId.CONSTANT_ELEVATION_OVER_ELLIPSOID

    def intersection(self, ellipsoid, position, los):
        p = ellipsoid.point_at_altitude(position, los, self.elevation)
        return ellipsoid.transform_to_geodetic(p, central_longitude=0.0)

    def refine_intersection(self, ellipsoid, position, los, close_guess):
        p = ellipsoid.point_at_altitude(position, los, self.elevation)
        return ellipsoid.transform_to_geodetic(p, central_longitude=close_guess.central_longitude)

    def get_elevation(self, latitude: float, longitude: float) -> float:
        return self.elevation


class IgnoreDEMAlgorithm(ConstantElevationAlgorithm):
    """Intersection with the bare ellipsoid."""

    def __init__(self) -> None:
        super().__init__(0.0)

    @property
    def algorithm_id(self) -> AlgorithmId:
        return AlgorithmId.IGNORE_DEM_USE_ELLIPSOID


class DemMarchingAlgorithm(IntersectionAlgorithm):
    """
    Walk the ray cell by cell across the DEM.

    The walk starts where the ray crosses the highest elevation of the tiles
    it meets and stops where it crosses their lowest elevation. In every cell
    the sign of h(k) = altitude(ray(k)) - dem(ray(k)) is checked at both ends;
    the first sign change is refined with Brent's method.
    """

    def __init__(
        self,
        updater: Optional[TileUpdater],
        max_cached_tiles: int = 8,
        *,
        tile_factory: Callable[[], SimpleTile] = SimpleTile,
        max_cells: int = 10000,
        min_step: float = 1e-3,
    ) -> None:
        self.cache = TilesCache(tile_factory, updater, max_cached_tiles)
        self.max_cells = int(max_cells)
        self.min_step = float(min_step)

    @property
    def algorithm_id(self) -> AlgorithmId:
        return AlgorithmId.DEM_MARCHING

    def get_elevation(self, latitude: float, longitude: float) -> float:
        return self.cache.get_tile(latitude, longitude).interpolate_elevation(latitude, longitude)

    def _height(
        self, ellipsoid: ExtendedEllipsoid, position: np.ndarray, los: np.ndarray, k: float, central: float
    ) -> float:
        gp = ellipsoid.transform_to_geodetic(position + k * los, central_longitude=central)
        return gp.altitude - self.get_elevation(gp.latitude, gp.longitude)

    def _point(
        self, ellipsoid: ExtendedEllipsoid, position: np.ndarray, los: np.ndarray, k: float, central: float
    ) -> NormalizedGeodeticPoint:
        return ellipsoid.transform_to_geodetic(position + k * los, central_longitude=central)

    def _entry(
        self, ellipsoid: ExtendedEllipsoid, position: np.ndarray, los: np.ndarray, tile: SimpleTile
    ) -> tuple[float, float, float]:
        # shell at the highest elevation seen, refined while entering higher tiles
        h_max = tile.max_elevation
        h_min = tile.min_elevation
        start_altitude = ellipsoid.transform_to_geodetic(position).altitude
        k = 0.0
        for _ in range(10):
            if start_altitude <= h_max:
                k = 0.0
                break
            k = ellipsoid.ray_parameter_at_altitude(position, los, h_max)
            gp = ellipsoid.transform_to_geodetic(position + k * los)
            entry_tile = self.cache.get_tile(gp.latitude, gp.longitude)
            h_min = min(h_min, entry_tile.min_elevation)
            if entry_tile.max_elevation <= h_max:
                break
            h_max = entry_tile.max_elevation
        return k, h_max, h_min

    def _next_boundary(self, x: float, rate: float) -> float:
        """Fractional index distance to the next cell boundary along `rate`."""
        if rate == 0.0:
            return math.inf
        nearest = round(x)
        if abs(x - nearest) < 1e-6:
            x = float(nearest)
        target = math.floor(x) + 1.0 if rate > 0.0 else math.ceil(x) - 1.0
        return (target - x) / rate

    def intersection(self, ellipsoid, position, los):
        position = as_vector(position)
        los = normalize(as_vector(los))
        seed = ellipsoid.point_on_ground(position, los)
        tile = self.cache.get_tile(seed.latitude, seed.longitude)
        central = tile.center_longitude

        k, _h_max, h_min = self._entry(ellipsoid, position, los, tile)
        k_exit = ellipsoid.ray_parameter_at_altitude(position, los, h_min)

        h_k = self._height(ellipsoid, position, los, k, central)
        if h_k <= 0.0:
            # already below the terrain at the entry point
            return self._point(ellipsoid, position, los, k, central)

        for n_cells in range(self.max_cells):
            gp = self._point(ellipsoid, position, los, k, central)
            tile = self.cache.get_tile(gp.latitude, gp.longitude)
            if tile.min_elevation < h_min:
                h_min = tile.min_elevation
                k_exit = ellipsoid.ray_parameter_at_altitude(position, los, h_min)

            rates = ellipsoid.convert_los(gp, los)
            x = tile.get_double_latitude_index(gp.latitude)
            y = tile.get_double_longitude_index(gp.longitude)
            dk = min(
                self._next_boundary(x, rates[0] / tile.latitude_step),
                self._next_boundary(y, rates[1] / tile.longitude_step),
            )
            k_next = min(k + max(dk, self.min_step), k_exit)
            if k_next <= k:
                k_next = k + self.min_step
            h_next = self._height(ellipsoid, position, los, k_next, central)
            if h_next <= 0.0:
                k_root = self._refine_root(ellipsoid, position, los, k, k_next, central)
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug("DEM intersection after [%d] cells at k=[%.3f]", n_cells + 1, k_root)
                return self._point(ellipsoid, position, los, k_root, central)
            k = k_next

        raise DemNonConvergenceError(
            max_cells=self.max_cells,
            position=position.tolist(),
            los=los.tolist(),
        )

    def _refine_root(
        self,
        ellipsoid: ExtendedEllipsoid,
        position: np.ndarray,
        los: np.ndarray,
        k_lo: float,
        k_hi: float,
        central: float,
    ) -> float:
        from scipy.optimize import brentq  # type: ignore

        if self._height(ellipsoid, position, los, k_hi, central) == 0.0:
            return k_hi
        try:
            root = brentq(
                lambda t: self._height(ellipsoid, position, los, t, central),
                k_lo,
                k_hi,
                xtol=1e-7,
                maxiter=200,
            )
        except RuntimeError as exc:
            raise DemNonConvergenceError(
                f"root refinement failed: {exc}", k_lo=k_lo, k_hi=k_hi, position=position.tolist(), los=los.tolist()
            ) from exc
        return float(root)

    def refine_intersection(self, ellipsoid, position, los, close_guess):
        position = as_vector(position)
        los = normalize(as_vector(los))
        central = close_guess.central_longitude
        guess = ellipsoid.transform_to_cartesian(close_guess)
        k = float((guess - position) @ los)
        delta = 0.1
        for _ in range(20):
            h = self._height(ellipsoid, position, los, k, central)
            if abs(h) < 1e-6:
                return self._point(ellipsoid, position, los, k, central)
            slope = (
                self._height(ellipsoid, position, los, k + delta, central)
                - self._height(ellipsoid, position, los, k - delta, central)
            ) / (2.0 * delta)
            if slope == 0.0:
                break
            k -= h / slope
        logger.debug("Local refinement failed, falling back to full DEM marching")
        return self.intersection(ellipsoid, position, los)


def select_algorithm(
    algorithm_id: AlgorithmId | str,
    *,
    updater: Optional[TileUpdater] = None,
    max_cached_tiles: int = 8,
    constant_elevation: float = 0.0,
) -> IntersectionAlgorithm:
    algorithm_id = AlgorithmId(algorithm_id)
    if algorithm_id is AlgorithmId.IGNORE_DEM_USE_ELLIPSOID:
        return IgnoreDEMAlgorithm()
    if algorithm_id is AlgorithmId.CONSTANT_ELEVATION_OVER_ELLIPSOID:
        return ConstantElevationAlgorithm(constant_elevation)
    return DemMarchingAlgorithm(updater, max_cached_tiles)
