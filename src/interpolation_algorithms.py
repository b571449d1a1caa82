"""
Spatial Interpolation Algorithms for MeteoGrid

This module defines the interpolation algorithm interface and the generic
estimators of the catalog. Every algorithm is created for one parameter at
one timestamp and goes through three steps:

1. initialize(parameter): collect the usable station measurements
2. get_quality_rating(): self-assessed suitability in [0, 1]
3. calculate(grid): fill the grid on the terrain model geometry

The orchestrator rates all configured candidates and runs the best one.

Catalog (this module):
    CST         arithmetic mean of the measurements
    STD_PRESS   standard-atmosphere pressure from terrain elevation
    CST_LAPSE   mean value projected to every cell with an elevation trend
    IDW         inverse distance weighting
    IDW_LAPSE   inverse distance weighting of elevation-detrended values
    LIDW_LAPSE  IDW_LAPSE with a regression on the N nearest stations per cell
    USER        pre-computed grid read from a file
    ODKRIG      ordinary kriging, declared but not implemented

Lapse-rate arguments (CST_LAPSE, IDW_LAPSE):
    []               compute the trend by regression against altitude
    [rate]           use the given lapse rate
    [rate, "soft"]   regression, falling back to the given rate when it fails
    [rate, "frac"]   fractional projection with the given rate
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any, Tuple

import numpy as np

import statistics_utils as stats
from atmospheric_science import standard_air_pressure
from coordinate_systems import Grid2D
from data_sources import grid_filename, read_netcdf_grid
from logging_utils import (InterpolationFailedError, InvalidArgumentError,
                           AlgorithmNotImplementedError)
from meteo_data import MeteoData, StationData, MeteoGrids
from terrain_model import TerrainModel


@dataclass
class LapseSettings:
    """Parsed lapse-rate arguments"""
    mode: str = 'regression'  # regression | fixed | soft | frac
    rate: float = 0.0

    @property
    def projection(self) -> str:
        return 'fractional' if self.mode == 'frac' else 'linear'


def parse_lapse_arguments(args: List[str], algorithm_name: str) -> LapseSettings:
    """
    Parse the lapse-rate argument list shared by the lapse-rate algorithms.

    Raises:
        InvalidArgumentError: On a wrong argument count, a non-numeric rate
            or an unknown second argument
    """
    if len(args) == 0:
        return LapseSettings()
    if len(args) > 2:
        raise InvalidArgumentError(f"Wrong number of arguments supplied for the {algorithm_name} algorithm",
                                   {'algorithm': algorithm_name, 'arguments': args})

    try:
        rate = float(args[0])
    except ValueError as e:
        raise InvalidArgumentError(f"Invalid lapse rate '{args[0]}' supplied for the {algorithm_name} algorithm",
                                   {'algorithm': algorithm_name, 'arguments': args}) from e

    if len(args) == 1:
        return LapseSettings(mode='fixed', rate=rate)

    extra = args[1].strip().lower()
    if extra not in ('soft', 'frac'):
        raise InvalidArgumentError(f"Unknown argument \"{args[1]}\" supplied for the {algorithm_name} algorithm",
                                   {'algorithm': algorithm_name, 'arguments': args})
    return LapseSettings(mode=extra, rate=rate)


class InterpolationAlgorithm(ABC):
    """
    Abstract base class for spatial interpolation algorithms.

    Instances are scoped to one parameter/timestamp evaluation and are never
    reused, since the observation set changes with every timestamp.
    Arguments are parsed in the constructor, so argument errors surface as
    soon as an algorithm is created.
    """

    NAME = ''

    def __init__(self, args: Optional[List[str]], dem: TerrainModel, observations: List[MeteoData],
                 date: Optional[datetime] = None, interpolator: Any = None):
        """
        Initialize an algorithm instance.

        Args:
            args: String arguments from the configuration
            dem: Terrain model the grid is computed on
            observations: Station observations at the timestamp
            date: Timestamp being interpolated
            interpolator: Orchestrator used for call-backs (other parameters,
                configuration, grid reading); optional for self-contained algorithms
        """
        self.name = self.NAME
        self.args = [str(arg) for arg in (args or [])]
        self.options = self.parse_arguments(self.args)
        self.dem = dem
        self.observations = observations or []
        self.date = date
        self.interpolator = interpolator
        self.logger = logging.getLogger(self.__class__.__name__)

        self.parameter: Optional[str] = None
        self.values = np.array([], dtype=float)
        self.stations: List[StationData] = []
        self.measurement_count = 0
        self.info = ''

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        """
        Validate and parse the argument list.

        The default accepts no arguments.

        Raises:
            InvalidArgumentError: If the arguments are not accepted
        """
        if args:
            raise InvalidArgumentError(f"The {cls.NAME} algorithm does not take arguments",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        return {}

    @classmethod
    def base_algorithms(cls, args: List[str]) -> List[str]:
        """Names of the algorithms this one delegates to, given its arguments"""
        return []

    def initialize(self, parameter: str) -> None:
        """
        Collect the usable measurements of a parameter.

        Args:
            parameter: Parameter to interpolate
        """
        self.parameter = parameter
        values = []
        stations = []
        for observation in self.observations:
            value = observation.get(parameter)
            if value is not None:
                values.append(value)
                stations.append(observation.station)
        self.values = np.asarray(values, dtype=float)
        self.stations = stations
        self.measurement_count = len(values)

    @abstractmethod
    def get_quality_rating(self) -> float:
        """Self-assessed suitability in [0, 1] for the current data"""
        pass

    def calculate(self, grid: Grid2D) -> None:
        """
        Fill a grid on the terrain model geometry.

        The grid takes the terrain model's geometry; cells where the terrain
        model has no data stay missing.

        Raises:
            InterpolationFailedError: If the algorithm cannot produce a grid
        """
        if self.parameter is None:
            raise InterpolationFailedError(f"{self.name} algorithm used before initialize()")
        self.info = ''
        values = self._compute()
        grid.set_geometry(self.dem)
        grid.values[:, :] = values
        grid.values[~np.isfinite(self.dem.values)] = np.nan

    @abstractmethod
    def _compute(self) -> np.ndarray:
        """Values of all cells, shape (nrows, ncols)"""
        pass

    def get_info(self) -> str:
        """Diagnostic string: algorithm, station count and regression quality"""
        station_word = 'station' if self.measurement_count == 1 else 'stations'
        text = f"{self.name}, {self.measurement_count} {station_word}"
        if self.info:
            text += f", {self.info}"
        return text

    # ------------------------------------------------------------------
    # Helpers shared by the station-based algorithms
    # ------------------------------------------------------------------

    def _require_measurements(self, count: Optional[int] = None) -> None:
        if (self.measurement_count if count is None else count) == 0:
            raise InterpolationFailedError(f"Interpolation FAILED for parameter {self.parameter}",
                                           {'algorithm': self.name, 'parameter': self.parameter,
                                            'date': self.date.isoformat() if self.date else None})

    def _station_positions(self, stations: Optional[List[StationData]] = None) -> Tuple[np.ndarray, np.ndarray]:
        """Station easting/northing in the terrain model's coordinate system"""
        stations = self.stations if stations is None else stations
        eastings = []
        northings = []
        for station in stations:
            position = station.position
            if not position.has_projected_position():
                position = position.project_from(self.dem.llcorner)
            eastings.append(position.easting)
            northings.append(position.northing)
        return np.asarray(eastings, dtype=float), np.asarray(northings, dtype=float)

    def _with_altitude(self, values: np.ndarray,
                       stations: List[StationData]) -> Tuple[np.ndarray, List[StationData], np.ndarray]:
        """Keep only the stations with a known altitude"""
        keep = [ii for ii, station in enumerate(stations) if station.altitude is not None]
        kept_stations = [stations[ii] for ii in keep]
        altitudes = np.asarray([station.altitude for station in kept_stations], dtype=float)
        return np.asarray(values, dtype=float)[keep], kept_stations, altitudes

    def _compute_trend(self, altitudes: np.ndarray, values: np.ndarray, settings: LapseSettings,
                       soft_r_threshold: Optional[float] = None) -> Tuple[float, float]:
        """
        Lapse rate and |r| according to the lapse-rate settings.

        Returns:
            Tuple (slope, r); r is 0 when no regression was used
        """
        if settings.mode in ('fixed', 'frac'):
            return settings.rate, 0.0

        trend = stats.linear_regression(altitudes, values)
        if settings.mode == 'soft':
            if not trend.is_valid or (soft_r_threshold is not None and trend.r < soft_r_threshold):
                self.logger.debug(f"{self.name}: regression rejected (r={trend.r:.3f}), "
                                  f"using fixed lapse rate {settings.rate}")
                return settings.rate, 0.0
        return trend.slope, trend.r

    def _lapse_idw(self, values: np.ndarray, stations: List[StationData], altitudes: np.ndarray,
                   slope: float, projection: str = 'linear') -> np.ndarray:
        """Detrend-interpolate-retrend of station values onto the terrain model"""
        station_x, station_y = self._station_positions(stations)
        cell_x, cell_y = self.dem.cell_coordinates()
        return stats.detrend_interpolate_retrend(values, station_x, station_y, altitudes,
                                                 cell_x, cell_y, self.dem.values, slope, projection)


class ConstantAlgorithm(InterpolationAlgorithm):
    """Fills the grid with the arithmetic mean of the measurements"""

    NAME = 'CST'

    def get_quality_rating(self) -> float:
        if self.measurement_count == 0:
            return 0.0
        if self.measurement_count == 1:
            return 0.8
        return 0.2

    def _compute(self) -> np.ndarray:
        self._require_measurements()
        return np.full(self.dem.shape, stats.arithmetic_mean(self.values))


class StandardPressureAlgorithm(InterpolationAlgorithm):
    """
    Standard-atmosphere air pressure from the terrain elevation.

    Needs no station data; preferred for pressure when no station reports it.
    """

    NAME = 'STD_PRESS'

    def get_quality_rating(self) -> float:
        if self.parameter != MeteoGrids.P:
            return 0.0
        if self.measurement_count == 0:
            return 1.0
        return 0.1

    def _compute(self) -> np.ndarray:
        return standard_air_pressure(self.dem.values)


class ConstantLapseAlgorithm(InterpolationAlgorithm):
    """
    Mean value projected to every cell's altitude with an elevation trend.

    The station mean is taken at the stations' mean altitude; the trend comes
    from a regression or from the configured lapse rate.
    """

    NAME = 'CST_LAPSE'

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        return {'lapse': parse_lapse_arguments(args, cls.NAME)}

    def get_quality_rating(self) -> float:
        if self.measurement_count == 0:
            return 0.0
        if self.measurement_count == 1:
            # A single station needs a given lapse rate
            return 0.9 if self.args else 0.0
        if self.measurement_count == 2:
            return 0.71
        return 0.2

    def _compute(self) -> np.ndarray:
        self._require_measurements()
        values, _, altitudes = self._with_altitude(self.values, self.stations)
        self._require_measurements(len(values))

        settings: LapseSettings = self.options['lapse']
        slope, r = self._compute_trend(altitudes, values, settings)
        self.info = f"r^2={r ** 2:.4f}"

        projection = stats.PROJECTIONS[settings.projection]
        return projection(stats.arithmetic_mean(values), float(altitudes.mean()), self.dem.values, slope)


class IDWAlgorithm(InterpolationAlgorithm):
    """
    Inverse distance weighting of the station values.

    Optional argument: the weighting kernel, one of inv_dist (default),
    inv_dist2 or inv_dist_sqrt.
    """

    NAME = 'IDW'

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        if len(args) > 1:
            raise InvalidArgumentError(f"Wrong number of arguments supplied for the {cls.NAME} algorithm",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        kernel_name = args[0].strip().lower() if args else 'inv_dist'
        if kernel_name not in stats.WEIGHTING_KERNELS:
            raise InvalidArgumentError(f"Unknown weighting kernel '{args[0]}' for the {cls.NAME} algorithm, "
                                       f"expected one of {sorted(stats.WEIGHTING_KERNELS)}",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        return {'kernel': stats.WEIGHTING_KERNELS[kernel_name]}

    def get_quality_rating(self) -> float:
        if self.measurement_count == 0:
            return 0.0
        if self.measurement_count == 1:
            return 0.3
        return 0.5

    def _compute(self) -> np.ndarray:
        self._require_measurements()
        station_x, station_y = self._station_positions()
        cell_x, cell_y = self.dem.cell_coordinates()
        return stats.inverse_distance_weighting(self.values, station_x, station_y,
                                                cell_x, cell_y, self.options['kernel'])


class IDWLapseAlgorithm(InterpolationAlgorithm):
    """
    Inverse distance weighting of elevation-detrended values.

    Station values are detrended to their mean altitude, the residuals are
    interpolated, and the trend is added back at every cell's altitude. In
    "soft" mode the fixed rate also replaces regressions with |r| < 0.6.
    """

    NAME = 'IDW_LAPSE'
    SOFT_R_THRESHOLD = 0.6

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        return {'lapse': parse_lapse_arguments(args, cls.NAME)}

    def get_quality_rating(self) -> float:
        if self.measurement_count == 0:
            return 0.0
        return 0.7

    def _compute(self) -> np.ndarray:
        self._require_measurements()
        values, stations, altitudes = self._with_altitude(self.values, self.stations)
        self._require_measurements(len(values))

        settings: LapseSettings = self.options['lapse']
        slope, r = self._compute_trend(altitudes, values, settings, self.SOFT_R_THRESHOLD)
        self.info = f"r^2={r ** 2:.4f}"

        return self._lapse_idw(values, stations, altitudes, slope, settings.projection)


class LocalIDWLapseAlgorithm(InterpolationAlgorithm):
    """
    Lapse-rate IDW with a local trend.

    For every cell the N nearest stations are regressed against altitude,
    their values projected to the cell's altitude with that local trend, and
    combined by inverse distance weighting. The reported r² is the mean over
    all cells.
    """

    NAME = 'LIDW_LAPSE'

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        if len(args) != 1:
            raise InvalidArgumentError(f"The {cls.NAME} algorithm requires exactly one argument "
                                       f"(number of neighbors)",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        try:
            neighbors = int(args[0])
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid number of neighbors '{args[0]}' for the {cls.NAME} algorithm",
                                       {'algorithm': cls.NAME, 'arguments': list(args)}) from e
        if neighbors < 1:
            raise InvalidArgumentError(f"The {cls.NAME} algorithm needs at least one neighbor",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        return {'neighbors': neighbors}

    def get_quality_rating(self) -> float:
        if self.measurement_count == 0:
            return 0.0
        return 0.7

    def _compute(self) -> np.ndarray:
        self._require_measurements()
        values, stations, altitudes = self._with_altitude(self.values, self.stations)
        self._require_measurements(len(values))

        station_x, station_y = self._station_positions(stations)
        cell_x, cell_y = self.dem.cell_coordinates()
        distances2, indices = stats.nearest_neighbors(station_x, station_y, cell_x, cell_y,
                                                      self.options['neighbors'])

        neighbor_values = values[indices]
        neighbor_altitudes = altitudes[indices]
        slope, _, r = stats.batched_linear_regression(neighbor_altitudes, neighbor_values)

        cell_z = self.dem.values[..., np.newaxis]
        projected = neighbor_values + slope[..., np.newaxis] * (cell_z - neighbor_altitudes)

        exact = distances2 == 0.0
        weights = np.where(exact, 0.0, stats.weight_inverse_distance(np.where(exact, 1.0, distances2)))
        with np.errstate(divide='ignore', invalid='ignore'):
            result = np.sum(weights * projected, axis=-1) / np.sum(weights, axis=-1)
        hit = np.any(exact, axis=-1)
        if np.any(hit):
            hit_values = np.take_along_axis(projected, np.argmax(exact, axis=-1)[..., np.newaxis], axis=-1)[..., 0]
            result = np.where(hit, hit_values, result)

        valid_r = r[np.isfinite(self.dem.values)]
        mean_r2 = float(np.mean(valid_r ** 2)) if valid_r.size else 0.0
        self.info = f"r^2={mean_r2:.4f}"
        return result


class UserGridAlgorithm(InterpolationAlgorithm):
    """
    Pre-computed grid supplied by the user.

    Arguments: [directory] or [directory, extension]; the file read is
    <directory>/<YYYYmmddHHMM>_<PARAM><extension>, extension defaulting to .nc.
    The rating is 1 when that file exists and 0 otherwise.
    """

    NAME = 'USER'
    DEFAULT_EXTENSION = '.nc'

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        if len(args) not in (1, 2):
            raise InvalidArgumentError(f"Please provide the path to the grids for the {cls.NAME} algorithm",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        extension = args[1] if len(args) == 2 else cls.DEFAULT_EXTENSION
        if not extension.startswith('.'):
            extension = '.' + extension
        return {'directory': args[0], 'extension': extension}

    def initialize(self, parameter: str) -> None:
        self.parameter = parameter
        self.measurement_count = 0

    def get_filename(self) -> Optional[str]:
        if self.date is None or self.parameter is None:
            return None
        name = grid_filename(self.parameter, self.date, self.options['extension'])
        return str(Path(self.options['directory']) / name)

    def _grids_manager(self):
        return getattr(self.interpolator, 'grids_manager', None)

    def get_quality_rating(self) -> float:
        filename = self.get_filename()
        if filename is None:
            self.logger.warning(f"{self.name}: no timestamp, cannot build a grid file name")
            return 0.0

        manager = self._grids_manager()
        if manager is not None:
            return 1.0 if manager.has_2d_grid_file(filename) else 0.0
        return 1.0 if Path(filename).is_file() else 0.0

    def _compute(self) -> np.ndarray:
        filename = self.get_filename()
        if filename is None:
            raise InterpolationFailedError(f"{self.name} algorithm needs a timestamp",
                                           {'algorithm': self.name, 'parameter': self.parameter})

        manager = self._grids_manager()
        if manager is not None:
            user_grid = manager.read_2d_grid_file(filename)
        else:
            if not Path(filename).is_file():
                raise InterpolationFailedError(f"User grid not found: {filename}", {'filename': filename})
            user_grid = read_netcdf_grid(Path(filename))

        if not user_grid.is_same_geolocalization(self.dem):
            raise InvalidArgumentError(f"Grid {filename} does not have the same georeferencing as the DEM",
                                       {'filename': filename})
        self.info = Path(filename).name
        return user_grid.values


class OrdinaryKrigingAlgorithm(InterpolationAlgorithm):
    """Ordinary kriging; recognized but not implemented"""

    NAME = 'ODKRIG'

    def get_quality_rating(self) -> float:
        raise AlgorithmNotImplementedError(f"{self.NAME} interpolation algorithm not yet implemented",
                                           {'algorithm': self.NAME})

    def _compute(self) -> np.ndarray:
        raise AlgorithmNotImplementedError(f"{self.NAME} interpolation algorithm not yet implemented",
                                           {'algorithm': self.NAME})
