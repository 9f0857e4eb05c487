from __future__ import annotations

import math
from enum import Enum
from typing import Protocol

import numpy as np

from lineloc.core.ellipsoid import normalize_angle
from lineloc.errors import OutOfTileError

# Fraction of a cell by which a lookup may overshoot the tile before failing.
DEFAULT_TOLERANCE = 1.0 / 8.0


class Location(Enum):
    SOUTH_WEST = "south_west"
    WEST = "west"
    NORTH_WEST = "north_west"
    NORTH = "north"
    NORTH_EAST = "north_east"
    EAST = "east"
    SOUTH_EAST = "south_east"
    SOUTH = "south"
    HAS_INTERPOLATION_NEIGHBORS = "has_interpolation_neighbors"


_LOCATIONS = {
    (-1, -1): Location.SOUTH_WEST,
    (0, -1): Location.WEST,
    (1, -1): Location.NORTH_WEST,
    (-1, 0): Location.SOUTH,
    (0, 0): Location.HAS_INTERPOLATION_NEIGHBORS,
    (1, 0): Location.NORTH,
    (-1, 1): Location.SOUTH_EAST,
    (0, 1): Location.EAST,
    (1, 1): Location.NORTH_EAST,
}


class SimpleTile:
    """
    Regular latitude/longitude elevation grid.

    Row i is at `min_latitude + i * latitude_step` (south to north), column j at
    `min_longitude + j * longitude_step` (west to east). Elevations are set by
    a tile updater; `tile_update_completed` must be called before any lookup.
    """

    def __init__(self, tolerance: float = DEFAULT_TOLERANCE) -> None:
        self.tolerance = float(tolerance)
        self.min_latitude = math.nan
        self.min_longitude = math.nan
        self.latitude_step = math.nan
        self.longitude_step = math.nan
        self.latitude_rows = 0
        self.longitude_columns = 0
        self.elevations = np.zeros((0, 0), dtype=np.float64)
        self.min_elevation = math.nan
        self.max_elevation = math.nan
        self.min_elevation_indices = (-1, -1)
        self.max_elevation_indices = (-1, -1)
        self.completed = False

    def __repr__(self) -> str:
        return (
            f"SimpleTile(lat=[{self.min_latitude}, {self.maximum_latitude}], "
            f"lon=[{self.min_longitude}, {self.maximum_longitude}], "
            f"shape=({self.latitude_rows}, {self.longitude_columns}))"
        )

    # -- updater side ------------------------------------------------------

    def set_geometry(
        self,
        min_latitude: float,
        min_longitude: float,
        latitude_step: float,
        longitude_step: float,
        latitude_rows: int,
        longitude_columns: int,
    ) -> None:
        if latitude_rows < 2 or longitude_columns < 2:
            raise ValueError("a tile needs at least 2 rows and 2 columns")
        if latitude_step <= 0.0 or longitude_step <= 0.0:
            raise ValueError("tile steps must be > 0")
        self.min_latitude = float(min_latitude)
        self.min_longitude = float(min_longitude)
        self.latitude_step = float(latitude_step)
        self.longitude_step = float(longitude_step)
        self.latitude_rows = int(latitude_rows)
        self.longitude_columns = int(longitude_columns)
        self.elevations = np.full((self.latitude_rows, self.longitude_columns), np.nan, dtype=np.float64)
        self.completed = False

    def set_elevation(self, latitude_index: int, longitude_index: int, elevation: float) -> None:
        if not (0 <= latitude_index < self.latitude_rows and 0 <= longitude_index < self.longitude_columns):
            raise OutOfTileError(
                "elevation indices out of tile", latitude_index=latitude_index, longitude_index=longitude_index
            )
        self.elevations[latitude_index, longitude_index] = float(elevation)

    def set_elevations(self, elevations: np.ndarray) -> None:
        elevations = np.asarray(elevations, dtype=np.float64)
        if elevations.shape != self.elevations.shape:
            raise ValueError(f"expected elevations of shape {self.elevations.shape}, got {elevations.shape}")
        self.elevations[...] = elevations

    def tile_update_completed(self) -> None:
        if self.latitude_rows == 0:
            raise ValueError("tile geometry has not been set")
        if not np.all(np.isfinite(self.elevations)):
            raise ValueError("tile has unset elevations")
        imin = np.unravel_index(int(np.argmin(self.elevations)), self.elevations.shape)
        imax = np.unravel_index(int(np.argmax(self.elevations)), self.elevations.shape)
        self.min_elevation = float(self.elevations[imin])
        self.max_elevation = float(self.elevations[imax])
        self.min_elevation_indices = (int(imin[0]), int(imin[1]))
        self.max_elevation_indices = (int(imax[0]), int(imax[1]))
        self.completed = True

    # -- geometry ----------------------------------------------------------

    @property
    def maximum_latitude(self) -> float:
        return self.get_latitude_at_index(self.latitude_rows - 1)

    @property
    def maximum_longitude(self) -> float:
        return self.get_longitude_at_index(self.longitude_columns - 1)

    @property
    def center_longitude(self) -> float:
        return 0.5 * (self.min_longitude + self.maximum_longitude)

    def get_latitude_at_index(self, latitude_index: int) -> float:
        return self.min_latitude + latitude_index * self.latitude_step

    def get_longitude_at_index(self, longitude_index: int) -> float:
        return self.min_longitude + longitude_index * self.longitude_step

    def get_double_latitude_index(self, latitude: float) -> float:
        return (latitude - self.min_latitude) / self.latitude_step

    def get_double_longitude_index(self, longitude: float) -> float:
        lon = normalize_angle(longitude, self.center_longitude)
        return (lon - self.min_longitude) / self.longitude_step

    def get_floor_latitude_index(self, latitude: float) -> int:
        return int(math.floor(self.get_double_latitude_index(latitude)))

    def get_floor_longitude_index(self, longitude: float) -> int:
        return int(math.floor(self.get_double_longitude_index(longitude)))

    def _zone(self, x: float, n: int) -> int:
        if x < -self.tolerance:
            return -1
        if x > n - 1 + self.tolerance:
            return 1
        return 0

    def get_location(self, latitude: float, longitude: float) -> Location:
        zi = self._zone(self.get_double_latitude_index(latitude), self.latitude_rows)
        zj = self._zone(self.get_double_longitude_index(longitude), self.longitude_columns)
        return _LOCATIONS[(zi, zj)]

    def covers(self, latitude: float, longitude: float) -> bool:
        return self.get_location(latitude, longitude) is Location.HAS_INTERPOLATION_NEIGHBORS

    def cell_indices(self, latitude: float, longitude: float) -> tuple[int, int]:
        """
        Indices (i, j) of the cell holding the point. Points on the north/east
        edge, or within tolerance outside the tile, are clamped to the nearest
        cell having interpolation neighbours.
        """
        x = self.get_double_latitude_index(latitude)
        y = self.get_double_longitude_index(longitude)
        i = min(max(int(math.floor(x)), 0), self.latitude_rows - 2)
        j = min(max(int(math.floor(y)), 0), self.longitude_columns - 2)
        return i, j

    def get_elevation_at_indices(self, latitude_index: int, longitude_index: int) -> float:
        return float(self.elevations[latitude_index, longitude_index])

    def interpolate_elevation(self, latitude: float, longitude: float) -> float:
        if not self.completed:
            raise ValueError("tile update has not been completed")
        if not self.covers(latitude, longitude):
            raise OutOfTileError(
                latitude=latitude,
                longitude=longitude,
                min_latitude=self.min_latitude,
                max_latitude=self.maximum_latitude,
                min_longitude=self.min_longitude,
                max_longitude=self.maximum_longitude,
            )
        x = min(max(self.get_double_latitude_index(latitude), 0.0), self.latitude_rows - 1.0)
        y = min(max(self.get_double_longitude_index(longitude), 0.0), self.longitude_columns - 1.0)
        i = min(int(math.floor(x)), self.latitude_rows - 2)
        j = min(int(math.floor(y)), self.longitude_columns - 2)
        dx = x - i
        dy = y - j
        z = self.elevations
        return float(
            (1.0 - dx) * (1.0 - dy) * z[i, j]
            + dx * (1.0 - dy) * z[i + 1, j]
            + (1.0 - dx) * dy * z[i, j + 1]
            + dx * dy * z[i + 1, j + 1]
        )


class TileUpdater(Protocol):
    """Tile provider: fills `tile` (geometry + elevations) so it covers (latitude, longitude)."""

    def update_tile(self, latitude: float, longitude: float, tile: SimpleTile) -> None:
        ...
