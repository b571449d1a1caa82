"""
Terrain Model for MeteoGrid

The terrain model is the elevation grid every field is interpolated onto,
together with derived slope, aspect and curvature layers used as predictors
by the terrain-aware algorithms.

Scientific Background:
- Slope and aspect come from centred finite differences of the elevation.
  Aspect is the azimuth of steepest descent, in degrees clockwise from north.
- Curvature follows Liston & Elder (2006, MicroMet): the mean over four
  directions (W-E, S-N, SW-NE, NW-SE) of the elevation difference between a
  cell and the mean of its two opposite neighbours, divided by twice the
  distance to them. Ridges have positive, valleys negative curvature.

Thread Safety:
A terrain model is shared between all interpolations of a batch run. The
derived layers are computed on first access with a check-lock-recheck
pattern and afterwards only recomputed when update() is called explicitly.
"""

import logging
import threading
import numpy as np
from typing import Optional, Dict

from coordinate_systems import Grid2D, Coordinates


class TerrainModel(Grid2D):
    """
    Digital elevation model with derived slope, aspect and curvature.

    The derived layers always have the dimensions of the elevation grid.
    They are stale-but-present after the elevations are modified until
    update() is called.
    """

    def __init__(self, ncols: int, nrows: int, cellsize: float, llcorner: Coordinates,
                 values: Optional[np.ndarray] = None):
        super().__init__(ncols, nrows, cellsize, llcorner, values)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._slope: Optional[np.ndarray] = None
        self._aspect: Optional[np.ndarray] = None
        self._curvature: Optional[np.ndarray] = None
        self._statistics: Optional[Dict[str, float]] = None

    @classmethod
    def from_grid(cls, grid: Grid2D) -> 'TerrainModel':
        """Build a terrain model from a plain elevation grid"""
        return cls(grid.ncols, grid.nrows, grid.cellsize,
                   Coordinates(**vars(grid.llcorner)), grid.values.copy())

    # ------------------------------------------------------------------
    # Derived layers
    # ------------------------------------------------------------------

    def _ensure_layers(self) -> None:
        # Readers skip the lock once the layers exist
        if self._slope is not None:
            return
        with self._lock:
            if self._slope is None:
                self._compute_layers()

    def update(self) -> None:
        """Recompute all derived layers and statistics from the current elevations"""
        with self._lock:
            self._compute_layers()

    def _compute_layers(self) -> None:
        z = self.values
        # Single-row or single-column grids are flat along that axis
        dz_dy = np.gradient(z, self.cellsize, axis=0) if self.nrows > 1 else np.zeros_like(z)
        dz_dx = np.gradient(z, self.cellsize, axis=1) if self.ncols > 1 else np.zeros_like(z)

        gradient = np.hypot(dz_dx, dz_dy)
        slope = np.degrees(np.arctan(gradient))
        aspect = np.fmod(np.degrees(np.arctan2(-dz_dx, -dz_dy)) + 360.0, 360.0)
        aspect = np.where(gradient > 0.0, aspect, 0.0)
        aspect = np.where(np.isnan(gradient), np.nan, aspect)

        curvature = self._compute_curvature(z)

        # The slope layer is the "layers ready" flag, so it is published last
        self._statistics = _layer_statistics(z, slope, curvature)
        self._aspect = aspect
        self._curvature = curvature
        self._slope = slope

        self.logger.debug(f"Terrain layers computed for {self.ncols}x{self.nrows} grid")

    def _compute_curvature(self, z: np.ndarray) -> np.ndarray:
        padded = np.pad(z, 1, mode='edge')
        center = padded[1:-1, 1:-1]
        north = padded[2:, 1:-1]
        south = padded[:-2, 1:-1]
        east = padded[1:-1, 2:]
        west = padded[1:-1, :-2]
        north_east = padded[2:, 2:]
        south_west = padded[:-2, :-2]
        north_west = padded[2:, :-2]
        south_east = padded[:-2, 2:]

        eta = self.cellsize
        diagonal = np.sqrt(2.0) * eta
        return 0.25 * ((center - 0.5 * (west + east)) / (2.0 * eta) +
                       (center - 0.5 * (south + north)) / (2.0 * eta) +
                       (center - 0.5 * (south_west + north_east)) / (2.0 * diagonal) +
                       (center - 0.5 * (north_west + south_east)) / (2.0 * diagonal))

    @property
    def slope(self) -> np.ndarray:
        """Slope in degrees"""
        self._ensure_layers()
        return self._slope

    @property
    def aspect(self) -> np.ndarray:
        """Azimuth of steepest descent in degrees, 0 on flat cells"""
        self._ensure_layers()
        return self._aspect

    @property
    def curvature(self) -> Optional[np.ndarray]:
        """Curvature in 1/m, None if it has been dropped"""
        self._ensure_layers()
        return self._curvature

    def has_curvature(self) -> bool:
        self._ensure_layers()
        return self._curvature is not None and bool(np.any(np.isfinite(self._curvature)))

    def drop_curvature(self) -> None:
        """Discard the curvature layer, for algorithms that must run without it"""
        self._ensure_layers()
        self._curvature = None

    # ------------------------------------------------------------------
    # Statistics and sub-regions
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, float]:
        """Cached min/max/mean of elevation, slope and curvature"""
        self._ensure_layers()
        return dict(self._statistics)

    def subset(self, start_col: int, start_row: int, ncols: int, nrows: int) -> 'TerrainModel':
        """
        Extract a rectangular sub-region.

        Derived layers are sliced from the parent rather than recomputed, so
        border cells keep the values computed with their full neighbourhood.
        """
        grid = super().subset(start_col, start_row, ncols, nrows)
        terrain = TerrainModel.from_grid(grid)

        self._ensure_layers()
        rows = slice(start_row, start_row + nrows)
        cols = slice(start_col, start_col + ncols)
        with terrain._lock:
            terrain._aspect = self._aspect[rows, cols].copy()
            terrain._curvature = None if self._curvature is None else self._curvature[rows, cols].copy()
            sub_slope = self._slope[rows, cols].copy()
            terrain._statistics = _layer_statistics(terrain.values, sub_slope, terrain._curvature)
            terrain._slope = sub_slope
        return terrain

    def copy(self) -> 'TerrainModel':
        """Copy of the elevations and of the derived layers as they stand, stale or not"""
        terrain = TerrainModel.from_grid(self)
        with self._lock:
            terrain._slope = None if self._slope is None else self._slope.copy()
            terrain._aspect = None if self._aspect is None else self._aspect.copy()
            terrain._curvature = None if self._curvature is None else self._curvature.copy()
            terrain._statistics = None if self._statistics is None else dict(self._statistics)
        return terrain


def _finite_stats(layer: Optional[np.ndarray]):
    if layer is None:
        return float('nan'), float('nan'), float('nan')
    data = layer[np.isfinite(layer)]
    if data.size == 0:
        return float('nan'), float('nan'), float('nan')
    return float(data.min()), float(data.max()), float(data.mean())


def _layer_statistics(altitude: np.ndarray, slope: np.ndarray,
                      curvature: Optional[np.ndarray]) -> Dict[str, float]:
    stats = {}
    for name, layer in (('altitude', altitude), ('slope', slope), ('curvature', curvature)):
        stats[f'min_{name}'], stats[f'max_{name}'], stats[f'mean_{name}'] = _finite_stats(layer)
    return stats
