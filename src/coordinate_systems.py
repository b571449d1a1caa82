"""
Coordinate System and Grid Management for MeteoGrid

This module provides the geolocalised grid used both for the terrain model
and for every interpolated field. Grids live in a projected metric system
(easting/northing in meters) anchored at their lower-left corner; station
positions are expressed in the same system.

Layout:
values has shape (nrows, ncols). Row 0 is the southernmost row and column 0
the westernmost one, so cell (row, col) has its centre at
    easting  = llcorner.easting  + (col + 0.5) * cellsize
    northing = llcorner.northing + (row + 0.5) * cellsize
Missing cells are NaN; the external sentinel only appears through
from_sentinel_array / to_sentinel_array.
"""

import numpy as np
import xarray as xr
from dataclasses import dataclass
from typing import Tuple, Optional

from units_constants import PhysicalConstants, sentinel_to_nan, nan_to_sentinel


@dataclass
class Coordinates:
    """
    A location in the projected metric system of the grids.

    Latitude/longitude are optional; when the grid corner carries them they
    allow projecting positions that only have geographic coordinates.
    """
    easting: Optional[float] = None
    northing: Optional[float] = None
    altitude: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def has_projected_position(self) -> bool:
        return self.easting is not None and self.northing is not None

    def project_from(self, reference: 'Coordinates') -> 'Coordinates':
        """
        Fill easting/northing from latitude/longitude relative to a reference.

        Uses a local equirectangular projection around the reference point,
        adequate at the scale of a terrain model.

        Args:
            reference: Point with known easting/northing and latitude/longitude

        Returns:
            New Coordinates with easting/northing set

        Raises:
            ValueError: If either point lacks the geographic coordinates
        """
        if self.has_projected_position():
            return self
        if None in (self.latitude, self.longitude, reference.latitude, reference.longitude):
            raise ValueError("Cannot project a position without latitude/longitude on both points")

        ref_lat = np.radians(reference.latitude)
        dx = np.radians(self.longitude - reference.longitude) * np.cos(ref_lat) * PhysicalConstants.EARTH_RADIUS
        dy = np.radians(self.latitude - reference.latitude) * PhysicalConstants.EARTH_RADIUS

        return Coordinates(
            easting=(reference.easting or 0.0) + float(dx),
            northing=(reference.northing or 0.0) + float(dy),
            altitude=self.altitude,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class Grid2D:
    """
    Rectangular, geolocalised grid of doubles.

    The geometry (ncols, nrows, cellsize, lower-left corner) is the contract
    shared with the terrain model: two grids may only be combined or cached
    together when their geometries agree.
    """

    def __init__(self, ncols: int, nrows: int, cellsize: float, llcorner: Coordinates,
                 values: Optional[np.ndarray] = None, fill_value: float = np.nan):
        """
        Initialize a grid.

        Args:
            ncols: Number of columns (west to east)
            nrows: Number of rows (south to north)
            cellsize: Cell size in meters
            llcorner: Lower-left corner of the grid
            values: Optional (nrows, ncols) array; NaN marks missing cells
            fill_value: Initial value when no array is given
        """
        if ncols < 1 or nrows < 1:
            raise ValueError(f"Grid dimensions must be positive, got {ncols}x{nrows}")
        if cellsize <= 0:
            raise ValueError(f"Cell size must be positive, got {cellsize}")

        self.ncols = int(ncols)
        self.nrows = int(nrows)
        self.cellsize = float(cellsize)
        self.llcorner = llcorner

        if values is None:
            self.values = np.full((self.nrows, self.ncols), fill_value, dtype=float)
        else:
            values = np.array(values, dtype=float)
            if values.shape != (self.nrows, self.ncols):
                raise ValueError(f"Grid values have shape {values.shape}, "
                                 f"expected {(self.nrows, self.ncols)}")
            self.values = values

    @classmethod
    def from_sentinel_array(cls, values: np.ndarray, cellsize: float, llcorner: Coordinates) -> 'Grid2D':
        """Build a grid from an external array that uses the no-data sentinel"""
        array = sentinel_to_nan(values)
        nrows, ncols = array.shape
        return cls(ncols, nrows, cellsize, llcorner, array)

    def to_sentinel_array(self) -> np.ndarray:
        """Grid values with the external no-data sentinel in place of NaN"""
        return nan_to_sentinel(self.values)

    def copy(self) -> 'Grid2D':
        return Grid2D(self.ncols, self.nrows, self.cellsize,
                      Coordinates(**vars(self.llcorner)), self.values.copy())

    def like(self, values: Optional[np.ndarray] = None) -> 'Grid2D':
        """New grid with the same geometry, optionally with new values"""
        return Grid2D(self.ncols, self.nrows, self.cellsize,
                      Coordinates(**vars(self.llcorner)), values)

    def set_geometry(self, other: 'Grid2D') -> None:
        """Adopt another grid's geometry and reset all values to missing"""
        self.ncols = other.ncols
        self.nrows = other.nrows
        self.cellsize = other.cellsize
        self.llcorner = Coordinates(**vars(other.llcorner))
        self.values = np.full((self.nrows, self.ncols), np.nan)

    def is_same_geolocalization(self, other: 'Grid2D') -> bool:
        """True when both grids cover exactly the same cells"""
        return (self.ncols == other.ncols and self.nrows == other.nrows and
                np.isclose(self.cellsize, other.cellsize) and
                np.isclose(self.llcorner.easting or 0.0, other.llcorner.easting or 0.0) and
                np.isclose(self.llcorner.northing or 0.0, other.llcorner.northing or 0.0))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.nrows, self.ncols

    def cell_coordinates(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Easting and northing of every cell centre.

        Returns:
            Tuple (easting, northing) of (nrows, ncols) arrays
        """
        x0 = self.llcorner.easting or 0.0
        y0 = self.llcorner.northing or 0.0
        eastings = x0 + (np.arange(self.ncols) + 0.5) * self.cellsize
        northings = y0 + (np.arange(self.nrows) + 0.5) * self.cellsize
        return np.meshgrid(eastings, northings)

    def coords_to_grid(self, point: Coordinates) -> Optional[Tuple[int, int]]:
        """
        Cell (row, col) containing a point, or None outside the grid.
        """
        if not point.has_projected_position():
            point = point.project_from(self.llcorner)
        col = int(np.floor((point.easting - (self.llcorner.easting or 0.0)) / self.cellsize))
        row = int(np.floor((point.northing - (self.llcorner.northing or 0.0)) / self.cellsize))
        if 0 <= row < self.nrows and 0 <= col < self.ncols:
            return row, col
        return None

    def subset(self, start_col: int, start_row: int, ncols: int, nrows: int) -> 'Grid2D':
        """
        Extract a rectangular sub-grid.

        Args:
            start_col, start_row: Index of the lower-left cell of the sub-grid
            ncols, nrows: Extent of the sub-grid in cells

        Returns:
            New grid with a shifted corner

        Raises:
            ValueError: If the requested window is outside the grid
        """
        if (start_col < 0 or start_row < 0 or ncols < 1 or nrows < 1 or
                start_col + ncols > self.ncols or start_row + nrows > self.nrows):
            raise ValueError(f"Subset [{start_col}:{start_col + ncols}, {start_row}:{start_row + nrows}] "
                             f"is outside a {self.ncols}x{self.nrows} grid")

        corner = Coordinates(
            easting=(self.llcorner.easting or 0.0) + start_col * self.cellsize,
            northing=(self.llcorner.northing or 0.0) + start_row * self.cellsize,
        )
        values = self.values[start_row:start_row + nrows, start_col:start_col + ncols].copy()
        return Grid2D(ncols, nrows, self.cellsize, corner, values)

    # Statistics skip missing cells unless raw is requested, in which case
    # missing cells take part with the external sentinel value.
    def _stat_values(self, raw: bool) -> np.ndarray:
        if raw:
            return self.to_sentinel_array().ravel()
        return self.values[np.isfinite(self.values)]

    def get_min(self, raw: bool = False) -> float:
        data = self._stat_values(raw)
        return float(data.min()) if data.size else float('nan')

    def get_max(self, raw: bool = False) -> float:
        data = self._stat_values(raw)
        return float(data.max()) if data.size else float('nan')

    def get_mean(self, raw: bool = False) -> float:
        data = self._stat_values(raw)
        return float(data.mean()) if data.size else float('nan')

    def get_count(self) -> int:
        """Number of non-missing cells"""
        return int(np.count_nonzero(np.isfinite(self.values)))

    def to_xarray(self, name: str = 'data') -> xr.DataArray:
        """
        Convert to a DataArray with easting/northing cell-centre coordinates.
        """
        eastings, northings = self.cell_coordinates()
        return xr.DataArray(
            self.values.copy(),
            dims=('northing', 'easting'),
            coords={'northing': northings[:, 0], 'easting': eastings[0, :]},
            name=name,
            attrs={'cellsize': self.cellsize,
                   'llcorner_easting': self.llcorner.easting or 0.0,
                   'llcorner_northing': self.llcorner.northing or 0.0},
        )

    @classmethod
    def from_xarray(cls, data_array: xr.DataArray) -> 'Grid2D':
        """Inverse of to_xarray"""
        cellsize = float(data_array.attrs.get('cellsize'))
        corner = Coordinates(easting=float(data_array.attrs.get('llcorner_easting', 0.0)),
                             northing=float(data_array.attrs.get('llcorner_northing', 0.0)))
        values = np.asarray(data_array.values, dtype=float)
        return cls(values.shape[1], values.shape[0], cellsize, corner, values)

    def __repr__(self) -> str:
        return (f"{type(self).__name__}({self.ncols}x{self.nrows}, cellsize={self.cellsize}, "
                f"llcorner=({self.llcorner.easting}, {self.llcorner.northing}))")
