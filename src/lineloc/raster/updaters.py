from __future__ import annotations

import logging
import math

import numpy as np

from lineloc.core.ellipsoid import normalize_angle
from lineloc.errors import OutOfCoverageError
from lineloc.raster.tile import SimpleTile

logger = logging.getLogger(__name__)


class GridTileUpdater:
    """
    Tile provider cutting tiles out of one in-memory elevation grid.

    Neighbouring tiles share their border row/column, so the interpolated
    surface is continuous across tiles.
    """

    def __init__(
        self,
        min_latitude: float,
        min_longitude: float,
        latitude_step: float,
        longitude_step: float,
        elevations: np.ndarray,
        tile_size: int = 65,
    ) -> None:
        elevations = np.asarray(elevations, dtype=np.float64)
        if elevations.ndim != 2 or elevations.shape[0] < 2 or elevations.shape[1] < 2:
            raise ValueError("elevations must be a (rows>=2, columns>=2) grid")
        if tile_size < 2:
            raise ValueError("tile_size must be >= 2")
        self.min_latitude = float(min_latitude)
        self.min_longitude = float(min_longitude)
        self.latitude_step = float(latitude_step)
        self.longitude_step = float(longitude_step)
        self.elevations = elevations
        self.tile_size = int(tile_size)
        self.calls = 0

    @classmethod
    def flat(
        cls,
        elevation: float,
        min_latitude: float,
        min_longitude: float,
        max_latitude: float,
        max_longitude: float,
        step: float,
        tile_size: int = 65,
    ) -> "GridTileUpdater":
        rows = int(math.ceil((max_latitude - min_latitude) / step)) + 1
        columns = int(math.ceil((max_longitude - min_longitude) / step)) + 1
        grid = np.full((max(rows, 2), max(columns, 2)), float(elevation), dtype=np.float64)
        return cls(min_latitude, min_longitude, step, step, grid, tile_size)

    def _start(self, x: float, n: int) -> int:
        stride = self.tile_size - 1
        return min(int(x // stride) * stride, n - 2)

    def update_tile(self, latitude: float, longitude: float, tile: SimpleTile) -> None:
        rows, columns = self.elevations.shape
        center = self.min_longitude + 0.5 * (columns - 1) * self.longitude_step
        x = (latitude - self.min_latitude) / self.latitude_step
        y = (normalize_angle(longitude, center) - self.min_longitude) / self.longitude_step
        # same overshoot allowance as the tile lookups, nearest edge cell beyond the grid
        tol = tile.tolerance
        if not (-tol <= x <= rows - 1 + tol and -tol <= y <= columns - 1 + tol):
            raise OutOfCoverageError(latitude=latitude, longitude=longitude)
        x = min(max(x, 0.0), rows - 1.0)
        y = min(max(y, 0.0), columns - 1.0)
        r0 = self._start(x, rows)
        c0 = self._start(y, columns)
        r1 = min(r0 + self.tile_size, rows)
        c1 = min(c0 + self.tile_size, columns)
        tile.set_geometry(
            self.min_latitude + r0 * self.latitude_step,
            self.min_longitude + c0 * self.longitude_step,
            self.latitude_step,
            self.longitude_step,
            r1 - r0,
            c1 - c0,
        )
        tile.set_elevations(self.elevations[r0:r1, c0:c1])
        self.calls += 1
        logger.debug("Filled tile rows [%d, %d) columns [%d, %d)", r0, r1, c0, c1)
