"""
Data Source Interfaces for MeteoGrid

Abstract interfaces for the external suppliers of point observations and
gridded fields, plus two concrete grid suppliers:

- MemoryDataSource keeps everything in dictionaries. It is used for tests and
  for embedding the engine in a larger pipeline that already holds the data.
- NetCDFGridSource reads and writes one NetCDF file per grid in a directory,
  named <YYYYmmddHHMM>_<PARAM>.nc, with the terrain model in dem.nc and the
  land-use grid in landuse.nc.

A supplier that cannot list its grids returns None from list_2d_grids; the
grids manager then falls back to direct reads.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import netCDF4
import numpy as np
import xarray as xr

from coordinate_systems import Grid2D, Coordinates
from logging_utils import NoDataError
from meteo_data import MeteoData
from terrain_model import TerrainModel
from units_constants import NODATA, sentinel_to_nan


GRID_DATE_FORMAT = '%Y%m%d%H%M'
GRID_FILENAME_PATTERN = re.compile(r'^(\d{12})_([A-Z0-9_]+)\.nc$')


def grid_filename(parameter: str, date: datetime, extension: str = '.nc') -> str:
    """File name of a gridded field: <YYYYmmddHHMM>_<PARAM><extension>"""
    return f"{date.strftime(GRID_DATE_FORMAT)}_{parameter}{extension}"


class PointDataSource(ABC):
    """Supplier of station observations"""

    @abstractmethod
    def get_meteo_data(self, date: datetime) -> List[MeteoData]:
        """
        All station observations at a timestamp.

        Args:
            date: Requested timestamp

        Returns:
            List of observations, empty when no station reported
        """
        pass


class GridSource(ABC):
    """
    Supplier of gridded fields.

    Reads raise NoDataError when the requested grid does not exist.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def read_dem(self) -> TerrainModel:
        pass

    @abstractmethod
    def read_landuse(self) -> Grid2D:
        pass

    @abstractmethod
    def read_2d_grid(self, parameter: str, date: datetime) -> Grid2D:
        pass

    @abstractmethod
    def read_2d_grid_file(self, filename: str) -> Grid2D:
        """Read a grid by file name, relative to the supplier's root"""
        pass

    def list_2d_grids(self, start: datetime, end: datetime) -> Optional[Dict[datetime, Set[str]]]:
        """
        Available grids in a time range (inclusive).

        Returns:
            Mapping timestamp to the parameters available at that time, or
            None when this supplier cannot list its content
        """
        return None

    def has_2d_grid_file(self, filename: str) -> bool:
        """Whether a named grid file can be read"""
        try:
            self.read_2d_grid_file(filename)
        except NoDataError:
            return False
        return True

    @abstractmethod
    def write_2d_grid(self, grid: Grid2D, parameter: str, date: Optional[datetime] = None) -> None:
        """Write a grid for a parameter and timestamp, or under a literal name when date is None"""
        pass


class MemoryDataSource(GridSource, PointDataSource):
    """
    In-memory grid and point data supplier.

    Counts reads so callers can check that buffering avoids repeated
    access to the supplier.
    """

    def __init__(self, dem: Optional[TerrainModel] = None, landuse: Optional[Grid2D] = None,
                 supports_listing: bool = True):
        super().__init__()
        self.dem = dem
        self.landuse = landuse
        self.supports_listing = supports_listing
        self.grids: Dict[Tuple[str, datetime], Grid2D] = {}
        self.named_grids: Dict[str, Grid2D] = {}
        self.observations: Dict[datetime, List[MeteoData]] = {}
        self.read_counts = {'dem': 0, 'landuse': 0, 'grid': 0, 'file': 0, 'list': 0}

    def add_grid(self, parameter: str, date: datetime, grid: Grid2D) -> None:
        self.grids[(parameter, date)] = grid.copy()

    def add_observations(self, date: datetime, observations: List[MeteoData]) -> None:
        self.observations.setdefault(date, []).extend(observations)

    def get_meteo_data(self, date: datetime) -> List[MeteoData]:
        return list(self.observations.get(date, []))

    def read_dem(self) -> TerrainModel:
        self.read_counts['dem'] += 1
        if self.dem is None:
            raise NoDataError("No terrain model available")
        return self.dem.copy()

    def read_landuse(self) -> Grid2D:
        self.read_counts['landuse'] += 1
        if self.landuse is None:
            raise NoDataError("No land-use grid available")
        return self.landuse.copy()

    def read_2d_grid(self, parameter: str, date: datetime) -> Grid2D:
        self.read_counts['grid'] += 1
        grid = self.grids.get((parameter, date))
        if grid is None:
            raise NoDataError(f"No {parameter} grid at {date.isoformat()}",
                              {'parameter': parameter, 'date': date.isoformat()})
        return grid.copy()

    def read_2d_grid_file(self, filename: str) -> Grid2D:
        self.read_counts['file'] += 1
        grid = self.named_grids.get(filename)
        if grid is None:
            raise NoDataError(f"Grid file not found: {filename}", {'filename': filename})
        return grid.copy()

    def has_2d_grid_file(self, filename: str) -> bool:
        return filename in self.named_grids

    def list_2d_grids(self, start: datetime, end: datetime) -> Optional[Dict[datetime, Set[str]]]:
        if not self.supports_listing:
            return None
        self.read_counts['list'] += 1
        listing: Dict[datetime, Set[str]] = {}
        for parameter, date in self.grids:
            if start <= date <= end:
                listing.setdefault(date, set()).add(parameter)
        return listing

    def write_2d_grid(self, grid: Grid2D, parameter: str, date: Optional[datetime] = None) -> None:
        if date is None:
            self.named_grids[parameter] = grid.copy()
        else:
            self.grids[(parameter, date)] = grid.copy()


class NetCDFGridSource(GridSource):
    """
    Directory of NetCDF grid files.

    Each file holds one 2D variable named after the parameter, on
    (northing, easting) dimensions, with the grid geometry stored as global
    attributes. Missing cells are written with the -999 fill value.
    """

    DEM_FILENAME = 'dem.nc'
    LANDUSE_FILENAME = 'landuse.nc'

    def __init__(self, root_directory: str, compression: bool = True):
        super().__init__()
        self.root = Path(root_directory)
        self.compression = compression

    def read_dem(self) -> TerrainModel:
        return TerrainModel.from_grid(self.read_2d_grid_file(self.DEM_FILENAME))

    def read_landuse(self) -> Grid2D:
        return self.read_2d_grid_file(self.LANDUSE_FILENAME)

    def read_2d_grid(self, parameter: str, date: datetime) -> Grid2D:
        return self.read_2d_grid_file(grid_filename(parameter, date))

    def read_2d_grid_file(self, filename: str) -> Grid2D:
        path = Path(filename)
        if not path.is_absolute():
            path = self.root / path
        if not path.exists():
            raise NoDataError(f"Grid file not found: {path}", {'filename': str(path)})
        return read_netcdf_grid(path)

    def has_2d_grid_file(self, filename: str) -> bool:
        path = Path(filename)
        return (path if path.is_absolute() else self.root / path).exists()

    def list_2d_grids(self, start: datetime, end: datetime) -> Optional[Dict[datetime, Set[str]]]:
        listing: Dict[datetime, Set[str]] = {}
        if not self.root.exists():
            return listing

        for path in self.root.iterdir():
            match = GRID_FILENAME_PATTERN.match(path.name)
            if not match:
                continue
            date = datetime.strptime(match.group(1), GRID_DATE_FORMAT)
            if start <= date <= end:
                listing.setdefault(date, set()).add(match.group(2))

        self.logger.debug(f"Listed {sum(len(p) for p in listing.values())} grids "
                          f"between {start.isoformat()} and {end.isoformat()}")
        return listing

    def write_2d_grid(self, grid: Grid2D, parameter: str, date: Optional[datetime] = None) -> None:
        if date is None:
            filename = parameter if parameter.endswith('.nc') else f"{parameter}.nc"
        else:
            filename = grid_filename(parameter, date)
        self.root.mkdir(parents=True, exist_ok=True)
        variable = parameter if date is not None else 'data'
        write_netcdf_grid(grid, self.root / filename, variable, date, self.compression)
        self.logger.info(f"Wrote {self.root / filename}")


def write_netcdf_grid(grid: Grid2D, path: Path, variable_name: str,
                      date: Optional[datetime] = None, compression: bool = True) -> None:
    """
    Write a grid to a NetCDF file.

    Args:
        grid: Grid to write, NaN cells become the -999 fill value
        path: Output file path
        variable_name: Name of the data variable
        date: Optional timestamp stored as a global attribute
        compression: Whether to apply zlib compression
    """
    eastings, northings = grid.cell_coordinates()

    with netCDF4.Dataset(str(path), 'w') as nc_dataset:
        nc_dataset.createDimension('northing', grid.nrows)
        nc_dataset.createDimension('easting', grid.ncols)

        northing_var = nc_dataset.createVariable('northing', 'f8', ('northing',))
        northing_var.units = 'm'
        northing_var[:] = northings[:, 0]

        easting_var = nc_dataset.createVariable('easting', 'f8', ('easting',))
        easting_var.units = 'm'
        easting_var[:] = eastings[0, :]

        data_var = nc_dataset.createVariable(variable_name, 'f8', ('northing', 'easting'),
                                             zlib=compression, fill_value=NODATA)
        data_var[:, :] = grid.to_sentinel_array()

        nc_dataset.cellsize = grid.cellsize
        nc_dataset.llcorner_easting = grid.llcorner.easting or 0.0
        nc_dataset.llcorner_northing = grid.llcorner.northing or 0.0
        if date is not None:
            nc_dataset.date = date.isoformat()
        nc_dataset.creation_date = datetime.now().isoformat()


def read_netcdf_grid(path: Path, variable_name: Optional[str] = None) -> Grid2D:
    """
    Read a grid written by write_netcdf_grid.

    Args:
        path: NetCDF file path
        variable_name: Data variable to read, the first one when None

    Returns:
        Grid with missing cells as NaN
    """
    with xr.open_dataset(path) as dataset:
        if variable_name is None:
            variable_name = next(iter(dataset.data_vars))
        values = sentinel_to_nan(dataset[variable_name].values)
        cellsize = float(dataset.attrs['cellsize'])
        corner = Coordinates(easting=float(dataset.attrs.get('llcorner_easting', 0.0)),
                             northing=float(dataset.attrs.get('llcorner_northing', 0.0)))

    nrows, ncols = values.shape
    return Grid2D(ncols, nrows, cellsize, corner, np.asarray(values, dtype=float))
