from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Callable, Optional

from lineloc.errors import OutOfCoverageError
from lineloc.raster.tile import SimpleTile, TileUpdater

logger = logging.getLogger(__name__)


class TilesCache:
    """
    Bounded least-recently-used cache of DEM tiles.

    A tile is loaded at most once while resident: lookups first scan the
    resident tiles, and only on a miss a fresh tile from `factory` is filled
    by the updater. A tile is registered only after `tile_update_completed`
    succeeded, so callers never see a partially filled tile.
    """

    def __init__(
        self,
        factory: Callable[[], SimpleTile] = SimpleTile,
        updater: Optional[TileUpdater] = None,
        max_tiles: int = 8,
    ) -> None:
        if max_tiles < 1:
            raise ValueError("max_tiles must be >= 1")
        self.factory = factory
        self.updater = updater
        self.max_tiles = int(max_tiles)
        self.fetch_count = 0
        self._tiles: OrderedDict[int, SimpleTile] = OrderedDict()
        self._next_key = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tiles)

    def tiles(self) -> list[SimpleTile]:
        """Resident tiles, least recently used first."""
        with self._lock:
            return list(self._tiles.values())

    def clear(self) -> None:
        with self._lock:
            self._tiles.clear()

    def get_tile(self, latitude: float, longitude: float) -> SimpleTile:
        with self._lock:
            for key, tile in self._tiles.items():
                if tile.covers(latitude, longitude):
                    self._tiles.move_to_end(key)
                    return tile
            tile = self._load(latitude, longitude)
            self._tiles[self._next_key] = tile
            self._next_key += 1
            while len(self._tiles) > self.max_tiles:
                _key, evicted = self._tiles.popitem(last=False)
                logger.debug("Evicted tile %r", evicted)
            return tile

    def _load(self, latitude: float, longitude: float) -> SimpleTile:
        if self.updater is None:
            raise OutOfCoverageError("no tile updater configured", latitude=latitude, longitude=longitude)
        tile = self.factory()
        try:
            self.updater.update_tile(latitude, longitude, tile)
        except OutOfCoverageError:
            raise
        except Exception as exc:
            raise OutOfCoverageError(
                f"tile updater failed: {exc}", latitude=latitude, longitude=longitude
            ) from exc
        tile.tile_update_completed()
        self.fetch_count += 1
        if not tile.covers(latitude, longitude):
            raise OutOfCoverageError(
                "updated tile does not cover the point",
                latitude=latitude,
                longitude=longitude,
                tile=repr(tile),
            )
        logger.debug("Loaded tile %r for [%s, %s]", tile, latitude, longitude)
        return tile
