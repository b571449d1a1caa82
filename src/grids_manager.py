"""
Gridded Data Manager for MeteoGrid

GridsManager sits between the engine and a GridSource. It reads the terrain
model, the land-use grid and meteorological grids, keeps recently used
grids in a bounded cache, and derives grids the supplier does not hold from
grids it does (wind speed from its components, relative humidity from dew
point, and so on).

Listing window:
The supplier's content is listed once for a time window starting one day
before the requested timestamp and ending buffer_size_days after it. The
window is widened to the range of timestamps the supplier actually returned,
and re-listed only when a request falls outside it.

Processing levels:
'buffered' (default) caches every grid read or derived; 'raw' bypasses the
cache and the listing and reads every grid straight from the supplier.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

import numpy as np

from atmospheric_science import (dew_point_to_rh, rh_to_dew_point, specific_to_relative_humidity,
                                 wind_speed_from_components, wind_direction_from_components,
                                 wind_components)
from config_manager import InterpolationConfig
from coordinate_systems import Grid2D
from data_sources import GridSource
from grid_buffer import GridBuffer
from logging_utils import InterpolationLogger, NoDataError
from meteo_data import MeteoGrids as MG
from terrain_model import TerrainModel


DEM_KEY = '/:DEM'
LANDUSE_KEY = '/:LANDUSE'


def _ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """numerator / denominator where the denominator is positive, NaN elsewhere"""
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.where(denominator > 0.0, numerator / denominator, np.nan)


def _phase(liquid: np.ndarray, total: np.ndarray) -> np.ndarray:
    """Liquid fraction of the precipitation, 0 where nothing falls"""
    return np.where(total == 0.0, 0.0, _ratio(liquid, total))


# Derivation rules: target -> ordered list of (sources, function). The first
# rule whose sources are all obtainable wins. Functions take the source
# arrays in the listed order.
DERIVATIONS: Dict[str, List[Tuple[Tuple[str, ...], Callable[..., np.ndarray]]]] = {
    MG.VW: [((MG.U, MG.V), wind_speed_from_components)],
    MG.DW: [((MG.U, MG.V), wind_direction_from_components)],
    MG.U: [((MG.VW, MG.DW), lambda vw, dw: wind_components(vw, dw)[0])],
    MG.V: [((MG.VW, MG.DW), lambda vw, dw: wind_components(vw, dw)[1])],
    MG.RH: [((MG.TD, MG.TA), lambda td, ta: dew_point_to_rh(td, ta, force_water=False)),
            ((MG.QI, MG.TA, MG.DEM), lambda qi, ta, dem: specific_to_relative_humidity(dem, ta, qi))],
    MG.TD: [((MG.RH, MG.TA), lambda rh, ta: rh_to_dew_point(rh, ta, force_water=False))],
    MG.ISWR: [((MG.ISWR_DIR, MG.ISWR_DIFF), lambda direct, diffuse: direct + diffuse),
              ((MG.RSWR, MG.ALB), _ratio)],
    MG.RSWR: [((MG.ISWR, MG.ALB), lambda iswr, alb: iswr * alb)],
    MG.ALB: [((MG.RSWR, MG.ISWR), _ratio)],
    MG.HS: [((MG.SWE, MG.RSNO), _ratio)],
    MG.SWE: [((MG.HS, MG.RSNO), lambda hs, rsno: hs * rsno)],
    MG.PSUM: [((MG.PSUM_S, MG.PSUM_L), lambda solid, liquid: solid + liquid)],
    MG.PSUM_PH: [((MG.PSUM_L, MG.PSUM), _phase),
                 ((MG.PSUM_L, MG.PSUM_S), lambda liquid, solid: _phase(liquid, liquid + solid))],
    MG.PSUM_L: [((MG.PSUM, MG.PSUM_PH), lambda psum, phase: psum * phase)],
    MG.PSUM_S: [((MG.PSUM, MG.PSUM_PH), lambda psum, phase: psum * (1.0 - phase))],
}


class GridsManager:
    """
    Buffered, deriving access to a grid supplier.
    """

    def __init__(self, source: GridSource, config: InterpolationConfig,
                 buffer: Optional[GridBuffer] = None,
                 interpolation_logger: Optional[InterpolationLogger] = None):
        """
        Initialize the manager.

        Args:
            source: Grid supplier
            config: Engine configuration (general.buff_grids,
                general.buffer_size_days, general.processing_level)
            buffer: Grid cache; sized from the configuration when None
            interpolation_logger: Session logger; a new one when None
        """
        self.source = source
        self.config = config
        self.buffer = buffer or GridBuffer(config.get('general.buff_grids', 10))
        self.buffer_size = timedelta(days=config.get('general.buffer_size_days', 370))
        self.raw = config.get('general.processing_level', 'buffered') == 'raw'
        self.interpolation_logger = interpolation_logger or InterpolationLogger()
        self.logger = logging.getLogger(self.__class__.__name__)

        self._listing: Dict[datetime, Set[str]] = {}
        self._listing_start: Optional[datetime] = None
        self._listing_end: Optional[datetime] = None
        self._listing_supported = True
        self._listing_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Terrain and land use
    # ------------------------------------------------------------------

    def read_dem(self) -> TerrainModel:
        """
        Terrain model of the supplier.

        The first read in buffered mode also makes its geometry the reference
        geometry of the cache.

        Raises:
            NoDataError: If the supplier has no terrain model
        """
        if self.raw:
            return TerrainModel.from_grid(self.source.read_dem())

        cached = self.buffer.get(DEM_KEY)
        if cached is not None:
            return cached

        dem = TerrainModel.from_grid(self.source.read_dem())
        self.buffer.set_reference_geometry(dem)
        return self.buffer.push_if_absent(DEM_KEY, lambda: dem)

    def read_landuse(self) -> Grid2D:
        """
        Raises:
            NoDataError: If the supplier has no land-use grid
        """
        if self.raw:
            return self.source.read_landuse()
        return self.buffer.push_if_absent(LANDUSE_KEY, self.source.read_landuse)

    # ------------------------------------------------------------------
    # Named grid files
    # ------------------------------------------------------------------

    def read_2d_grid_file(self, filename: str) -> Grid2D:
        if self.raw:
            return self.source.read_2d_grid_file(filename)
        return self.buffer.push_if_absent(filename, lambda: self.source.read_2d_grid_file(filename))

    def has_2d_grid_file(self, filename: str) -> bool:
        if not self.raw and self.buffer.has(filename):
            return True
        return self.source.has_2d_grid_file(filename)

    def write_2d_grid(self, grid: Grid2D, parameter: str, date: Optional[datetime] = None) -> None:
        """Write a grid through the supplier and keep it in the cache"""
        self.source.write_2d_grid(grid, parameter, date)
        if not self.raw and date is not None:
            self._store((parameter.upper(), date), grid)

    # ------------------------------------------------------------------
    # Meteorological grids
    # ------------------------------------------------------------------

    def read_2d_grid(self, parameter: str, date: datetime) -> Grid2D:
        """
        Grid of a parameter at a timestamp, read or derived.

        Args:
            parameter: Grid parameter name (case-insensitive)
            date: Timestamp

        Returns:
            The grid

        Raises:
            NoDataError: If the supplier has no grid at that time, or the
                parameter can neither be read nor derived
        """
        parameter = parameter.upper()
        if self.raw:
            return self.source.read_2d_grid(parameter, date)

        cached = self.buffer.get((parameter, date))
        if cached is not None:
            return cached

        available = self._available_at(date)
        if available is None:
            # Supplier cannot list its content
            grid = self.source.read_2d_grid(parameter, date)
            self._store((parameter, date), grid)
            return grid

        if not available:
            raise NoDataError(f"Could not find any grids at time {date.isoformat()}",
                              {'parameter': parameter, 'date': date.isoformat()})

        grid = self._obtain(parameter, date, available, frozenset())
        if grid is None:
            raise NoDataError(f"Could not find or generate a grid of {parameter} at time {date.isoformat()}",
                              {'parameter': parameter, 'date': date.isoformat(),
                               'available': sorted(available)})
        return grid

    def is_available(self, parameter: str, date: datetime) -> bool:
        """Whether a grid is cached or listed by the supplier (derivations not considered)"""
        parameter = parameter.upper()
        if not self.raw and self.buffer.has((parameter, date)):
            return True
        available = self._available_at(date)
        return bool(available) and parameter in available

    def clear_cache(self) -> None:
        self.buffer.clear()
        with self._listing_lock:
            self._listing = {}
            self._listing_start = self._listing_end = None

    def _available_at(self, date: datetime) -> Optional[Set[str]]:
        """
        Parameters the supplier holds at a timestamp.

        Returns:
            Set of parameter names (empty when nothing is listed at that
            time), or None when the supplier cannot list its content
        """
        with self._listing_lock:
            if not self._listing_supported:
                return None

            outside = (self._listing_start is None
                       or date < self._listing_start or date > self._listing_end)
            if outside:
                start = date - timedelta(days=1)
                end = date + self.buffer_size
                listing = self.source.list_2d_grids(start, end)
                if listing is None:
                    self.logger.info("Grid supplier cannot list its content, reading grids directly")
                    self._listing_supported = False
                    return None

                if listing:
                    start = min(start, min(listing))
                    end = max(end, max(listing))
                self._listing = {stamp: {p.upper() for p in params} for stamp, params in listing.items()}
                self._listing_start, self._listing_end = start, end
                self.logger.debug(f"Listed grids at {len(listing)} timestamps between "
                                  f"{start.isoformat()} and {end.isoformat()}")

            return set(self._listing.get(date, set()))

    def _obtain(self, parameter: str, date: datetime, available: Set[str],
                visiting: frozenset) -> Optional[Grid2D]:
        """A grid from the cache, the supplier, or a derivation; None when impossible"""
        if parameter == MG.DEM:
            try:
                return self.read_dem()
            except NoDataError:
                return None

        cached = self.buffer.get((parameter, date))
        if cached is not None:
            return cached

        if parameter in available:
            try:
                grid = self.source.read_2d_grid(parameter, date)
            except NoDataError:
                self.logger.warning(f"{parameter} listed at {date.isoformat()} but could not be read")
                return None
            self._store((parameter, date), grid)
            return grid

        return self._derive(parameter, date, available, visiting)

    def _derive(self, parameter: str, date: datetime, available: Set[str],
                visiting: frozenset) -> Optional[Grid2D]:
        if parameter in visiting:
            return None
        visiting = visiting | {parameter}

        for sources, function in DERIVATIONS.get(parameter, []):
            inputs = []
            for source_parameter in sources:
                grid = self._obtain(source_parameter, date, available, visiting)
                if grid is None:
                    break
                inputs.append(grid)
            else:
                reference = inputs[0]
                if not all(reference.is_same_geolocalization(grid) for grid in inputs[1:]):
                    self.logger.warning(f"Cannot derive {parameter} from {'+'.join(sources)}: "
                                        f"grids do not share a geometry")
                    continue
                values = function(*[grid.values for grid in inputs])
                derived = reference.like(np.asarray(values, dtype=float))
                self._store((parameter, date), derived)
                self.interpolation_logger.log_derivation(parameter, date, '+'.join(sources))
                return derived

        return None

    def _store(self, key, grid: Grid2D) -> None:
        if self.buffer.accepts(key, grid):
            self.buffer.push(key, grid)
        else:
            self.logger.debug(f"Not caching {key}: geometry differs from the terrain model")
