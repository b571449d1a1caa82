"""
Bounded Grid Cache for MeteoGrid

Thread-safe cache of gridded fields keyed by (parameter, timestamp) or by a
literal name such as '/:DEM'. All access goes through one re-entrant lock,
so the check-then-insert sequence of push_if_absent is atomic. Grids are
copied in and out, so cached entries are never mutated by callers.

Eviction:
When more than max_grids entries are held, the oldest insertion is evicted
first.

Geometry:
Once a reference terrain model is set, the cache refuses to store or return
grids whose geometry disagrees with it.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Optional, Union, Tuple, Callable, List

from coordinate_systems import Grid2D


CacheKey = Union[str, Tuple[str, datetime]]


class GridBuffer:
    """
    Bounded, thread-safe grid cache.
    """

    def __init__(self, max_grids: int = 10):
        """
        Initialize the cache.

        Args:
            max_grids: Maximum number of resident entries
        """
        if max_grids < 1:
            raise ValueError(f"max_grids must be at least 1, got {max_grids}")
        self.max_grids = max_grids
        self.logger = logging.getLogger(self.__class__.__name__)
        self._grids: 'OrderedDict[CacheKey, Grid2D]' = OrderedDict()
        self._lock = threading.RLock()
        self._reference: Optional[Grid2D] = None

    def set_reference_geometry(self, reference: Grid2D) -> None:
        """
        Set the geometry every cached grid must share.

        Entries already cached under a different geometry are purged. Literal
        names (the terrain model itself, land use) are kept.
        """
        with self._lock:
            self._reference = reference.like()
            stale = [key for key, grid in self._grids.items()
                     if not isinstance(key, str) and not self._reference.is_same_geolocalization(grid)]
            for key in stale:
                del self._grids[key]
            if stale:
                self.logger.info(f"Purged {len(stale)} cached grids with a different geometry")

    def accepts(self, key: CacheKey, grid: Grid2D) -> bool:
        """Whether a grid may be cached under a key given the reference geometry"""
        if self._reference is None or isinstance(key, str):
            return True
        return self._reference.is_same_geolocalization(grid)

    def get(self, key: CacheKey) -> Optional[Grid2D]:
        """
        Cached grid for a key.

        Returns:
            Copy of the grid, or None on a miss or geometry mismatch
        """
        with self._lock:
            grid = self._grids.get(key)
            if grid is None or not self.accepts(key, grid):
                return None
            return grid.copy()

    def has(self, key: CacheKey) -> bool:
        with self._lock:
            grid = self._grids.get(key)
            return grid is not None and self.accepts(key, grid)

    def push(self, key: CacheKey, grid: Grid2D) -> None:
        """
        Insert or overwrite an entry, evicting the oldest when full.

        Raises:
            ValueError: If the grid's geometry disagrees with the reference
        """
        with self._lock:
            if not self.accepts(key, grid):
                raise ValueError(f"Grid for {key} does not match the terrain model geometry")
            if key in self._grids:
                del self._grids[key]
            self._grids[key] = grid.copy()
            while len(self._grids) > self.max_grids:
                evicted, _ = self._grids.popitem(last=False)
                self.logger.debug(f"Evicted {evicted} from grid cache")

    def push_if_absent(self, key: CacheKey, factory: Callable[[], Grid2D]) -> Grid2D:
        """
        Return the cached grid, creating and inserting it if absent.

        The check, the factory call and the insertion happen under the
        cache lock, so concurrent callers never compute the same entry twice.

        Args:
            key: Cache key
            factory: Callable producing the grid on a miss

        Returns:
            Copy of the cached or newly created grid
        """
        grid = self.get(key)
        if grid is not None:
            return grid
        with self._lock:
            grid = self.get(key)
            if grid is None:
                grid = factory()
                self.push(key, grid)
            return grid.copy()

    def remove(self, key: CacheKey) -> None:
        with self._lock:
            self._grids.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._grids.clear()

    def keys(self) -> List[CacheKey]:
        with self._lock:
            return list(self._grids.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._grids)

    def __contains__(self, key: CacheKey) -> bool:
        return self.has(key)
