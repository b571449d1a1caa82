"""
Statistical Utilities for MeteoGrid

This module provides the numerical core shared by every interpolation
algorithm: arithmetic means that skip missing values, inverse-distance
weighting kernels, ordinary least squares regression against altitude, and
the detrend-interpolate-retrend pattern used by all lapse-rate algorithms.

Scientific Context:
Most near-surface meteorological quantities depend strongly on altitude.
Interpolating them horizontally without first removing the elevation trend
would smear valley values onto summits. The lapse-rate algorithms therefore
remove a linear altitude trend from the station values, interpolate the
residuals, and add the trend back using the altitude of every target cell.

References:
- Shepard (1968), A two-dimensional interpolation function for
  irregularly-spaced data, Proc. ACM National Conference
- Liston & Elder (2006), A meteorological distribution system for
  high-resolution terrestrial modeling (MicroMet), J. Hydrometeor. 7
"""

import numpy as np
from dataclasses import dataclass
from typing import Union, Tuple, Optional, Callable, Dict


@dataclass
class LinearTrend:
    """
    Result of a linear regression of a parameter against altitude.

    Attributes:
        slope: Change of the parameter per meter of altitude (lapse rate)
        intercept: Parameter value extrapolated to altitude 0
        r: Magnitude of the correlation coefficient (0-1)
        is_valid: False when the regression could not be computed
    """
    slope: float
    intercept: float
    r: float
    is_valid: bool = True

    def evaluate(self, altitude: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        """Evaluate the trend at the given altitude(s)"""
        return self.intercept + self.slope * np.asarray(altitude, dtype=float)


def arithmetic_mean(values: Union[list, np.ndarray]) -> float:
    """
    Arithmetic mean ignoring missing values.

    Args:
        values: Sequence of values, missing values as NaN

    Returns:
        Mean of the finite values, NaN when there are none
    """
    data = np.asarray(values, dtype=float)
    data = data[np.isfinite(data)]
    if data.size == 0:
        return float('nan')
    return float(np.mean(data))


# =============================================================================
# DISTANCE WEIGHTING KERNELS
# =============================================================================
# The kernels receive squared distances to avoid a square root per pair.

def weight_inverse_distance(distance_squared: np.ndarray) -> np.ndarray:
    """Weight 1/d"""
    return 1.0 / np.sqrt(distance_squared)


def weight_inverse_distance_squared(distance_squared: np.ndarray) -> np.ndarray:
    """Weight 1/d²"""
    return 1.0 / distance_squared


def weight_inverse_distance_sqrt(distance_squared: np.ndarray) -> np.ndarray:
    """Weight 1/sqrt(d)"""
    return 1.0 / np.power(distance_squared, 0.25)


WEIGHTING_KERNELS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    'inv_dist': weight_inverse_distance,
    'inv_dist2': weight_inverse_distance_squared,
    'inv_dist_sqrt': weight_inverse_distance_sqrt,
}


def horizontal_distances_squared(target_x: np.ndarray, target_y: np.ndarray,
                                 station_x: np.ndarray, station_y: np.ndarray) -> np.ndarray:
    """
    Squared horizontal distances between every target point and every station.

    Args:
        target_x, target_y: Target coordinates, any shape S
        station_x, station_y: Station coordinates, shape (n,)

    Returns:
        Array of shape S + (n,)
    """
    tx = np.asarray(target_x, dtype=float)[..., np.newaxis]
    ty = np.asarray(target_y, dtype=float)[..., np.newaxis]
    dx = tx - np.asarray(station_x, dtype=float)
    dy = ty - np.asarray(station_y, dtype=float)
    return dx * dx + dy * dy


def inverse_distance_weighting(values: np.ndarray,
                               station_x: np.ndarray, station_y: np.ndarray,
                               target_x: np.ndarray, target_y: np.ndarray,
                               kernel: Callable[[np.ndarray], np.ndarray] = weight_inverse_distance) -> np.ndarray:
    """
    Inverse distance weighted interpolation of station values.

    A target point that coincides with a station takes that station's
    value exactly.

    Args:
        values: Station values, shape (n,)
        station_x, station_y: Station easting/northing in meters
        target_x, target_y: Target easting/northing in meters, any shape
        kernel: Weighting function of the squared distance

    Returns:
        Interpolated values with the shape of target_x

    Raises:
        ValueError: If no station values are given
    """
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        raise ValueError("Inverse distance weighting requires at least one station value")

    d2 = horizontal_distances_squared(target_x, target_y, station_x, station_y)
    exact = d2 == 0.0

    weights = np.where(exact, 0.0, kernel(np.where(exact, 1.0, d2)))

    # Cells with only exact hits have a zero weight sum, overwritten below
    with np.errstate(divide='ignore', invalid='ignore'):
        result = np.sum(weights * values, axis=-1) / np.sum(weights, axis=-1)

    hit = np.any(exact, axis=-1)
    if np.any(hit):
        hit_values = values[np.argmax(exact, axis=-1)]
        result = np.where(hit, hit_values, result)

    return result


# =============================================================================
# REGRESSION AND TRENDS
# =============================================================================

def linear_regression(altitudes: Union[list, np.ndarray], values: Union[list, np.ndarray]) -> LinearTrend:
    """
    Ordinary least squares regression of values against altitude.

    Scientific Background:
    slope = Sxy / Sxx, intercept = mean(y) - slope * mean(x),
    r = Sxy / sqrt(Sxx * Syy). The magnitude of r is reported as a
    quality diagnostic of the elevation dependence.

    Args:
        altitudes: Station altitudes in meters
        values: Station values

    Returns:
        LinearTrend; is_valid is False with fewer than two points or when
        all points share the same altitude
    """
    x = np.asarray(altitudes, dtype=float)
    y = np.asarray(values, dtype=float)

    if x.size < 2:
        mean_value = float(y[0]) if y.size == 1 else 0.0
        return LinearTrend(slope=0.0, intercept=mean_value, r=0.0, is_valid=False)

    x_mean = x.mean()
    y_mean = y.mean()
    sxx = np.sum((x - x_mean) ** 2)
    syy = np.sum((y - y_mean) ** 2)
    sxy = np.sum((x - x_mean) * (y - y_mean))

    if sxx == 0.0:
        return LinearTrend(slope=0.0, intercept=float(y_mean), r=0.0, is_valid=False)

    slope = sxy / sxx
    intercept = y_mean - slope * x_mean
    if syy == 0.0:
        # Constant values: a flat trend explains them perfectly
        r = 1.0
    else:
        r = abs(sxy) / np.sqrt(sxx * syy)

    return LinearTrend(slope=float(slope), intercept=float(intercept), r=float(min(r, 1.0)), is_valid=True)


def lin_project(values: Union[float, np.ndarray], altitude_from: Union[float, np.ndarray],
                altitude_to: Union[float, np.ndarray], slope: float) -> Union[float, np.ndarray]:
    """
    Project values from one altitude to another with an additive lapse rate.

        v' = v + slope * (z_to - z_from)
    """
    return np.asarray(values, dtype=float) + slope * (np.asarray(altitude_to, dtype=float) -
                                                       np.asarray(altitude_from, dtype=float))


def frac_project(values: Union[float, np.ndarray], altitude_from: Union[float, np.ndarray],
                 altitude_to: Union[float, np.ndarray], rate: float) -> Union[float, np.ndarray]:
    """
    Project values from one altitude to another with a fractional rate.

        v' = v * (1 + rate * (z_to - z_from))

    Suited to quantities such as precipitation whose altitude dependence is
    proportional to their magnitude.
    """
    return np.asarray(values, dtype=float) * (1.0 + rate * (np.asarray(altitude_to, dtype=float) -
                                                            np.asarray(altitude_from, dtype=float)))


PROJECTIONS = {
    'linear': lin_project,
    'fractional': frac_project,
}


def detrend(values: np.ndarray, altitudes: np.ndarray, slope: float,
            reference_altitude: float, projection: str = 'linear') -> np.ndarray:
    """
    Bring station values to a common reference altitude.

    Args:
        values: Station values
        altitudes: Station altitudes in meters
        slope: Lapse rate (linear) or fractional rate
        reference_altitude: Altitude the residuals refer to
        projection: 'linear' or 'fractional'

    Returns:
        Detrended station values
    """
    return PROJECTIONS[projection](values, altitudes, reference_altitude, slope)


def retrend(residuals: np.ndarray, altitudes: np.ndarray, slope: float,
            reference_altitude: float, projection: str = 'linear') -> np.ndarray:
    """Inverse of detrend: project residuals from the reference altitude to target altitudes"""
    return PROJECTIONS[projection](residuals, reference_altitude, altitudes, slope)


def detrend_interpolate_retrend(values: np.ndarray, station_x: np.ndarray, station_y: np.ndarray,
                                station_z: np.ndarray, target_x: np.ndarray, target_y: np.ndarray,
                                target_z: np.ndarray, slope: float, projection: str = 'linear',
                                kernel: Callable[[np.ndarray], np.ndarray] = weight_inverse_distance) -> np.ndarray:
    """
    Lapse-rate corrected inverse distance weighting.

    Station values are detrended to their mean altitude, the residuals are
    interpolated with inverse distance weighting, and the trend is added back
    at the altitude of every target point. A field that is an exact linear
    function of altitude is reproduced exactly.

    Args:
        values: Station values
        station_x, station_y, station_z: Station coordinates in meters
        target_x, target_y, target_z: Target coordinates in meters
        slope: Lapse rate (linear) or fractional rate
        projection: 'linear' or 'fractional'
        kernel: Weighting function of the squared distance

    Returns:
        Interpolated values with the shape of target_z
    """
    station_z = np.asarray(station_z, dtype=float)
    reference_altitude = float(station_z.mean())

    residuals = detrend(values, station_z, slope, reference_altitude, projection)
    interpolated = inverse_distance_weighting(residuals, station_x, station_y, target_x, target_y, kernel)
    return retrend(interpolated, target_z, slope, reference_altitude, projection)


def nearest_neighbors(station_x: np.ndarray, station_y: np.ndarray,
                      target_x: np.ndarray, target_y: np.ndarray,
                      count: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Indices of the nearest stations for every target point.

    Args:
        station_x, station_y: Station coordinates, shape (n,)
        target_x, target_y: Target coordinates, any shape S
        count: Number of neighbors, capped at n

    Returns:
        Tuple (distances_squared, indices), each of shape S + (k,)
    """
    from scipy.spatial import cKDTree

    stations = np.column_stack([np.asarray(station_x, dtype=float), np.asarray(station_y, dtype=float)])
    k = int(min(count, len(stations)))
    targets = np.column_stack([np.ravel(target_x), np.ravel(target_y)])

    tree = cKDTree(stations)
    distances, indices = tree.query(targets, k=k)
    distances = np.asarray(distances, dtype=float).reshape(-1, k)
    indices = np.asarray(indices, dtype=int).reshape(-1, k)

    shape = np.shape(target_x) + (k,)
    return (distances ** 2).reshape(shape), indices.reshape(shape)


def batched_linear_regression(altitudes: np.ndarray, values: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Linear regressions along the last axis, one per leading index.

    Args:
        altitudes: Array (..., k) of station altitudes
        values: Array (..., k) of station values

    Returns:
        Tuple (slope, intercept, r) of shape (...); slope and r are 0 where
        the altitudes have no spread
    """
    x = np.asarray(altitudes, dtype=float)
    y = np.asarray(values, dtype=float)
    x_mean = x.mean(axis=-1, keepdims=True)
    y_mean = y.mean(axis=-1, keepdims=True)
    sxx = np.sum((x - x_mean) ** 2, axis=-1)
    syy = np.sum((y - y_mean) ** 2, axis=-1)
    sxy = np.sum((x - x_mean) * (y - y_mean), axis=-1)

    valid = sxx > 0.0
    safe_sxx = np.where(valid, sxx, 1.0)
    slope = np.where(valid, sxy / safe_sxx, 0.0)
    intercept = y_mean[..., 0] - slope * x_mean[..., 0]

    denominator = np.sqrt(sxx * syy)
    with np.errstate(divide='ignore', invalid='ignore'):
        r = np.where(denominator > 0.0, np.abs(sxy) / np.where(denominator > 0.0, denominator, 1.0),
                     np.where(valid, 1.0, 0.0))
    return slope, intercept, np.minimum(r, 1.0)
