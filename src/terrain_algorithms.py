"""
Terrain-Aware Interpolation Algorithms for MeteoGrid

Composite algorithms that need another interpolated parameter or the terrain
model's derived layers. They call back into the orchestrator to obtain the
other parameter at the same timestamp, so the orchestrator must be supplied.

    RH         relative humidity through dew point, using the interpolated TA
    WIND_CURV  lapse-rate wind speed corrected for slope and curvature
    HNW_SNOW   base precipitation algorithm with redistribution on steep
               slopes and ridges when precipitation falls as snow

Scientific Background:
Relative humidity is not spatially smooth because it depends on temperature;
dew point is, and follows a fairly regular elevation gradient. The wind
correction follows MicroMet (Liston & Elder, 2006): wind speeds up on
windward slopes and ridges and slows down in sheltered terrain. Snowfall is
not retained on slopes steeper than about 60° and accumulates in concave
terrain (Magnusson, 2010).
"""

from typing import Dict, List, Any, Tuple

import numpy as np

import statistics_utils as stats
from atmospheric_science import rh_to_dew_point, dew_point_to_rh
from interpolation_algorithms import InterpolationAlgorithm
from logging_utils import InterpolationFailedError, InvalidArgumentError
from meteo_data import MeteoGrids
from units_constants import PhysicalConstants


class PairedAlgorithm(InterpolationAlgorithm):
    """
    Algorithm working on stations that measure two parameters together.

    The rating rule is shared: 0 when no station has both, 0.6 when fewer
    than two stations or fewer than half of the stations measuring the
    primary parameter also measure the companion one, 0.9 otherwise.
    """

    TARGET = ''
    COMPANION = ''

    def initialize(self, parameter: str) -> None:
        self.parameter = parameter
        primary = []
        companion = []
        stations = []
        self.primary_count = 0
        for observation in self.observations:
            value = observation.get(self.TARGET)
            if value is None:
                continue
            self.primary_count += 1
            other = observation.get(self.COMPANION)
            if other is not None:
                primary.append(value)
                companion.append(other)
                stations.append(observation.station)

        self.values = np.asarray(primary, dtype=float)
        self.companion_values = np.asarray(companion, dtype=float)
        self.stations = stations
        self.measurement_count = len(primary)

    def _applicable(self) -> bool:
        return self.parameter == self.TARGET

    def get_quality_rating(self) -> float:
        if not self._applicable():
            return 0.0
        if self.measurement_count == 0:
            return 0.0
        if self.measurement_count < 0.5 * self.primary_count or self.measurement_count < 2:
            return 0.6
        return 0.9

    def _require_interpolator(self) -> None:
        if self.interpolator is None:
            raise InterpolationFailedError(f"The {self.name} algorithm needs an interpolator to obtain "
                                           f"{self.COMPANION} grids",
                                           {'algorithm': self.name, 'parameter': self.parameter})

    def _check_parameter(self) -> None:
        if self.parameter != self.TARGET:
            raise InterpolationFailedError(f"Interpolation FAILED for parameter {self.parameter}: "
                                           f"{self.name} only applies to {self.TARGET}",
                                           {'algorithm': self.name, 'parameter': self.parameter})

    def _regressed_lapse_idw(self, values: np.ndarray) -> Tuple[np.ndarray, float]:
        kept_values, stations, altitudes = self._with_altitude(values, self.stations)
        self._require_measurements(len(kept_values))
        trend = stats.linear_regression(altitudes, kept_values)
        return self._lapse_idw(kept_values, stations, altitudes, trend.slope), trend.r


class RelativeHumidityAlgorithm(PairedAlgorithm):
    """
    Relative humidity interpolated as dew point.

    Station RH and TA are converted to dew point, the dew point is
    interpolated with a regressed lapse-rate IDW, and the result converted
    back to RH with the independently interpolated TA grid.
    """

    NAME = 'RH'
    TARGET = MeteoGrids.RH
    COMPANION = MeteoGrids.TA

    def _compute(self) -> np.ndarray:
        self._check_parameter()
        self._require_measurements()
        self._require_interpolator()

        ta_grid = self.interpolator.interpolate(self.date, self.dem, MeteoGrids.TA)

        dew_points = rh_to_dew_point(self.values, self.companion_values, force_water=True)
        td_values, r = self._regressed_lapse_idw(dew_points)
        self.info = f"r^2={r ** 2:.4f}"

        return dew_point_to_rh(td_values, ta_grid.values, force_water=True)


class WindCurvatureAlgorithm(PairedAlgorithm):
    """
    Wind speed with a MicroMet terrain correction.

    Wind speed is interpolated with a regressed lapse-rate IDW, the direction
    grid comes from the orchestrator, and the speed is scaled by
        1 + gamma_s * omega_s + gamma_c * omega_c
    where omega_s is the slope in the wind direction and omega_c the
    curvature, both scaled to [-0.5, 0.5].
    Requires the curvature layer of the terrain model.
    """

    NAME = 'WIND_CURV'
    TARGET = MeteoGrids.VW
    COMPANION = MeteoGrids.DW

    SLOPE_WEIGHT = 0.58
    CURVATURE_WEIGHT = 0.42

    def get_quality_rating(self) -> float:
        if not self._applicable():
            return 0.0
        if not self.dem.has_curvature():
            self.logger.warning(f"{self.name} algorithm selected but no terrain curvature available, "
                                f"skipping algorithm")
            return 0.0
        return super().get_quality_rating()

    def _compute(self) -> np.ndarray:
        self._check_parameter()
        self._require_measurements()
        self._require_interpolator()
        if not self.dem.has_curvature():
            raise InterpolationFailedError(f"The {self.name} algorithm requires the terrain curvature",
                                           {'algorithm': self.name})

        dw_grid = self.interpolator.interpolate(self.date, self.dem, MeteoGrids.DW)

        speed, r = self._regressed_lapse_idw(self.values)
        self.info = f"r^2={r ** 2:.4f}"

        return np.maximum(self._terrain_correction(speed, dw_grid.values), 0.0)

    def _terrain_correction(self, speed: np.ndarray, direction: np.ndarray) -> np.ndarray:
        slope = np.radians(self.dem.slope)
        aspect = np.radians(self.dem.aspect)
        wind_direction = np.radians(direction)

        # Slope component in the direction the wind blows from
        omega_s = slope * np.cos(wind_direction - aspect)
        omega_s = _scale_half(omega_s)
        omega_c = _scale_half(self.dem.curvature)

        weight = 1.0 + self.SLOPE_WEIGHT * omega_s + self.CURVATURE_WEIGHT * omega_c
        return speed * weight


def _scale_half(layer: np.ndarray) -> np.ndarray:
    """Scale an array to [-0.5, 0.5] by its largest magnitude"""
    finite = np.abs(layer[np.isfinite(layer)])
    max_abs = float(finite.max()) if finite.size else 0.0
    if max_abs == 0.0:
        return np.zeros_like(layer)
    return layer / (2.0 * max_abs)


class SnowPrecipitationAlgorithm(InterpolationAlgorithm):
    """
    Precipitation with snow redistribution.

    A base algorithm (IDW_LAPSE unless given as argument, with its arguments
    taken from the configuration of the same parameter) produces the
    precipitation grid. Where the interpolated TA is below 274.35 K, snow is
    removed from slopes above 60°, reduced linearly between 40° and 60°, and
    shifted from ridges towards hollows by curvature. The grid is finally
    rescaled so its domain mean equals the base algorithm's.
    """

    NAME = 'HNW_SNOW'
    DEFAULT_BASE = 'IDW_LAPSE'

    MAX_SLOPE = 60.0
    REDUCTION_START_SLOPE = 40.0
    CURVATURE_WEIGHT = 0.5

    @classmethod
    def parse_arguments(cls, args: List[str]) -> Dict[str, Any]:
        if len(args) > 1:
            raise InvalidArgumentError(f"Wrong number of arguments supplied for the {cls.NAME} algorithm",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        base = args[0].strip().upper() if args else cls.DEFAULT_BASE
        if base == cls.NAME:
            raise InvalidArgumentError(f"The {cls.NAME} algorithm cannot use itself as base algorithm",
                                       {'algorithm': cls.NAME, 'arguments': list(args)})
        return {'base': base}

    @classmethod
    def base_algorithms(cls, args: List[str]) -> List[str]:
        return [cls.parse_arguments(args)['base']]

    def get_quality_rating(self) -> float:
        if self.measurement_count == 0:
            return 0.0
        return 0.9

    def _compute(self) -> np.ndarray:
        self._require_measurements()
        if self.interpolator is None:
            raise InterpolationFailedError(f"The {self.name} algorithm needs an interpolator",
                                           {'algorithm': self.name, 'parameter': self.parameter})

        base_name = self.options['base']
        base_args = self.interpolator.get_arguments_for_algorithm(self.parameter, base_name)
        base = self.interpolator.factory.create_algorithm(base_name, base_args, self.dem, self.observations,
                                                          self.date, self.interpolator)
        base.initialize(self.parameter)

        precipitation = self.dem.like()
        base.calculate(precipitation)
        self.info = base.get_info()
        original_mean = precipitation.get_mean()

        ta_grid = self.interpolator.interpolate(self.date, self.dem, MeteoGrids.TA)
        values = precipitation.values * self._snow_factor(ta_grid.values)

        new_mean = stats.arithmetic_mean(values.ravel())
        if np.isfinite(new_mean) and new_mean != 0.0:
            values = values * (original_mean / new_mean)
        return values

    def _snow_factor(self, temperature: np.ndarray) -> np.ndarray:
        snow = temperature < PhysicalConstants.SNOW_THRESHOLD_TEMPERATURE
        slope = self.dem.slope

        factor = np.ones_like(slope)
        steep = snow & (slope >= self.MAX_SLOPE)
        reduced = snow & (slope >= self.REDUCTION_START_SLOPE) & (slope < self.MAX_SLOPE)
        factor[steep] = 0.0
        factor[reduced] = (self.MAX_SLOPE - slope[reduced]) / (self.MAX_SLOPE - self.REDUCTION_START_SLOPE)

        if self.dem.has_curvature():
            curvature = self.dem.curvature
            finite = np.abs(curvature[np.isfinite(curvature)])
            max_abs = float(finite.max()) if finite.size else 0.0
            if max_abs > 0.0:
                curvature_factor = 1.0 - self.CURVATURE_WEIGHT * curvature / max_abs
                factor = np.where(snow, factor * curvature_factor, factor)
        return factor
