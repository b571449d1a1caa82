"""
Spatial Interpolation Orchestrator for MeteoGrid

Meteo2DInterpolator turns station observations into gridded fields. For a
parameter and timestamp it:

1. creates a fresh instance of every configured candidate algorithm,
2. lets each one rate itself on the available measurements,
3. runs the strictly highest rated one (ties go to the first configured),
4. caches the resulting grid under (parameter, timestamp).

Rating happens before selection, selection before computation, computation
before caching. A computation failure propagates to the caller unless
general.fallback_on_failure is enabled, in which case the next candidates
with a positive rating are tried in rating order.

The orchestrator is also the call-back interface of composite algorithms
(RH needs TA, WIND_CURV needs DW, HNW_SNOW needs TA and its base algorithm).
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Type

from algorithm_factory import AlgorithmFactory
from config_manager import InterpolationConfig
from coordinate_systems import Grid2D
from data_sources import PointDataSource
from grid_buffer import GridBuffer
from interpolation_algorithms import InterpolationAlgorithm
from logging_utils import InterpolationLogger, InterpolationFailedError, MeteoGridError, error_context
from terrain_model import TerrainModel


class Meteo2DInterpolator:
    """
    Selects, runs and caches spatial interpolations.
    """

    def __init__(self, config: InterpolationConfig, point_source: PointDataSource,
                 factory: Optional[AlgorithmFactory] = None, grids_manager=None,
                 result_buffer: Optional[GridBuffer] = None,
                 interpolation_logger: Optional[InterpolationLogger] = None):
        """
        Initialize the orchestrator and resolve the configured algorithms.

        Args:
            config: Engine configuration
            point_source: Supplier of station observations
            factory: Algorithm registry; a registry with the full catalog when None
            grids_manager: Optional GridsManager used by algorithms that read grids
            result_buffer: Cache for interpolated grids; sized from the
                configuration when None
            interpolation_logger: Session logger; a new one when None

        Raises:
            UnknownAlgorithmError: If a configured algorithm does not exist
            InvalidArgumentError: If configured arguments are not accepted
        """
        self.config = config
        self.point_source = point_source
        self.factory = factory or AlgorithmFactory()
        self.grids_manager = grids_manager
        self.result_buffer = result_buffer or GridBuffer(config.get('general.buff_grids', 10))
        self.interpolation_logger = interpolation_logger or InterpolationLogger()
        self.logger = logging.getLogger(self.__class__.__name__)

        self.fallback_on_failure = bool(config.get('general.fallback_on_failure', False))
        self.use_buffer = config.get('general.processing_level', 'buffered') != 'raw'

        self._plan = self._resolve_plan()
        self._last_info: Dict[str, str] = {}
        self._last_parameter: Optional[str] = None
        self._reference_geometry: Optional[Grid2D] = None
        self._active = threading.local()

    def _resolve_plan(self) -> Dict[str, List[Tuple[str, Type[InterpolationAlgorithm], List[str]]]]:
        """Resolve every configured name and check its arguments and base algorithms once"""
        plan = {}
        for parameter in self.config.get_parameters():
            candidates = []
            for name in self.config.get_algorithms(parameter):
                args = self.config.get_arguments_for_algorithm(parameter, name)
                algorithm_class = self.factory.validate(name, args)
                for base in algorithm_class.base_algorithms(args):
                    self.factory.validate(base, self.config.get_arguments_for_algorithm(parameter, base))
                candidates.append((name, algorithm_class, args))
            plan[parameter] = candidates
            self.logger.debug(f"{parameter}: candidate algorithms {[c[0] for c in candidates]}")
        return plan

    def get_candidates(self, parameter: str) -> List[str]:
        """Configured algorithm names for a parameter, in priority order"""
        return [name for name, _, _ in self._plan.get(parameter.upper(), [])]

    def get_arguments_for_algorithm(self, parameter: str, algorithm: str) -> List[str]:
        return self.config.get_arguments_for_algorithm(parameter, algorithm)

    def interpolate(self, date: datetime, dem: TerrainModel, parameter: str,
                    result_grid: Optional[Grid2D] = None) -> Grid2D:
        """
        Interpolate a parameter at a timestamp onto a terrain model.

        Args:
            date: Timestamp to interpolate
            dem: Terrain model defining the output geometry
            parameter: Parameter name (case-insensitive)
            result_grid: Optional grid filled in place

        Returns:
            The interpolated grid (result_grid when given)

        Raises:
            InterpolationFailedError: If no candidate has a positive rating or
                the selected algorithm fails
            AlgorithmNotImplementedError: If a stubbed algorithm is invoked
        """
        parameter = parameter.upper()
        key = (parameter, date)

        if self.use_buffer:
            self._activate_terrain(dem)
            cached = self.result_buffer.get(key)
            if cached is not None:
                self.logger.debug(f"Using cached {parameter} grid at {date.isoformat()}")
                return self._deliver(cached, result_grid)

        # Nested calls from composite algorithms leave the logging to the outermost call
        session_logger = None if self._active_set() else self.interpolation_logger
        with error_context(f"interpolating {parameter}", session_logger,
                           parameter=parameter, date=date.isoformat()):
            grid = self._run_interpolation(date, dem, parameter)

        if self.use_buffer:
            grid = self.result_buffer.push_if_absent(key, lambda: grid)
        return self._deliver(grid, result_grid)

    def _activate_terrain(self, dem: TerrainModel) -> None:
        reference = self._reference_geometry
        if reference is None or not reference.is_same_geolocalization(dem):
            self._reference_geometry = dem.like()
            self.result_buffer.set_reference_geometry(dem)

    @staticmethod
    def _deliver(grid: Grid2D, result_grid: Optional[Grid2D]) -> Grid2D:
        if result_grid is None:
            return grid
        result_grid.set_geometry(grid)
        result_grid.values[:, :] = grid.values
        return result_grid

    def _run_interpolation(self, date: datetime, dem: TerrainModel, parameter: str) -> Grid2D:
        candidates = self._plan.get(parameter)
        if not candidates:
            raise InterpolationFailedError(f"No interpolation algorithm configured for {parameter}",
                                           {'parameter': parameter, 'date': date.isoformat()})

        # Composite algorithms call back into interpolate(); a parameter that
        # depends on itself would recurse forever.
        active = self._active_set()
        if (parameter, date) in active:
            raise InterpolationFailedError(f"Circular interpolation dependency on {parameter}",
                                           {'parameter': parameter, 'date': date.isoformat()})
        active.add((parameter, date))
        try:
            observations = self.point_source.get_meteo_data(date)
            algorithms = [algorithm_class(args, dem, observations, date, self)
                          for _, algorithm_class, args in candidates]

            ratings = []
            for algorithm in algorithms:
                algorithm.initialize(parameter)
                ratings.append(algorithm.get_quality_rating())
            self.interpolation_logger.log_ratings(
                parameter, date, {a.name: r for a, r in zip(algorithms, ratings)})

            # Stable sort: equal ratings keep the configured order
            ranked = [ii for ii in sorted(range(len(algorithms)), key=lambda ii: -ratings[ii])
                      if ratings[ii] > 0.0]
            if not ranked:
                raise InterpolationFailedError(
                    f"No suitable interpolation algorithm for {parameter} at {date.isoformat()}",
                    {'parameter': parameter, 'date': date.isoformat(),
                     'candidates': [a.name for a in algorithms]})

            return self._calculate_ranked(parameter, date, dem, [algorithms[ii] for ii in ranked])
        finally:
            active.discard((parameter, date))

    def _calculate_ranked(self, parameter: str, date: datetime, dem: TerrainModel,
                          ranked: List[InterpolationAlgorithm]) -> Grid2D:
        attempts = ranked if self.fallback_on_failure else ranked[:1]
        for position, algorithm in enumerate(attempts):
            grid = dem.like()
            try:
                algorithm.calculate(grid)
            except MeteoGridError as e:
                if position + 1 >= len(attempts):
                    raise
                self.interpolation_logger.log_fallback(parameter, algorithm.name,
                                                       attempts[position + 1].name, str(e))
                continue

            info = algorithm.get_info()
            self._last_info[parameter] = info
            self._last_parameter = parameter
            self.interpolation_logger.log_selection(parameter, date, algorithm.name, info)
            return grid

    def _active_set(self) -> set:
        if not hasattr(self._active, 'keys'):
            self._active.keys = set()
        return self._active.keys

    def get_info(self, parameter: Optional[str] = None) -> str:
        """
        Diagnostic string of the last interpolation.

        Args:
            parameter: Parameter to report on; the most recent one when None

        Returns:
            Selected algorithm, station count and regression quality, or an
            empty string when nothing was interpolated
        """
        if parameter is None:
            parameter = self._last_parameter
        if parameter is None:
            return ''
        return self._last_info.get(parameter.upper(), '')

    def get_session_summary(self) -> Dict:
        return self.interpolation_logger.get_session_summary()
