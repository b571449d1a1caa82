"""
Physical Constants and Missing Values for MeteoGrid

This module provides physical constants and the missing-value convention used
throughout the interpolation engine.

Missing Values:
External data suppliers mark absent measurements with the sentinel value
-999. Inside the engine a missing cell is NaN in grids and None in point
observations; the sentinel only appears when data crosses the I/O boundary.

References:
- U.S. Standard Atmosphere, 1976
- NIST Physical Constants: https://physics.nist.gov/cuu/Constants/
"""

import numpy as np
from typing import Union, Optional


# Sentinel used by external suppliers for "no data"
NODATA = -999.0


# =============================================================================
# PHYSICAL CONSTANTS
# =============================================================================

class PhysicalConstants:
    """
    Collection of physical constants used in near-surface meteorology.
    """

    # Earth and atmospheric constants
    EARTH_RADIUS = 6.371e6  # m (mean radius)
    STANDARD_GRAVITY = 9.80665  # m s⁻²
    STANDARD_PRESSURE = 101325.0  # Pa, sea level
    STANDARD_SEA_LEVEL_TEMPERATURE = 288.15  # K
    STANDARD_LAPSE_RATE = 0.0065  # K m⁻¹, troposphere
    STANDARD_TEMPERATURE = 273.15  # K (0°C)

    UNIVERSAL_GAS_CONSTANT = 8.31447  # J mol⁻¹ K⁻¹
    MOLAR_MASS_DRY_AIR = 0.0289644  # kg mol⁻¹

    # Ratio of molecular weights water vapor / dry air
    EPSILON = 0.622

    # Temperature above which precipitation is assumed liquid
    SNOW_THRESHOLD_TEMPERATURE = 274.35  # K (+1.2°C)


# =============================================================================
# MISSING VALUE CONVERSIONS
# =============================================================================

def is_missing(value: Optional[float]) -> bool:
    """Return True for None, NaN or the external sentinel"""
    if value is None:
        return True
    value = float(value)
    return bool(np.isnan(value) or value == NODATA)


def to_missing(value: Optional[float]) -> Optional[float]:
    """
    Convert an externally supplied scalar into the internal representation.

    Args:
        value: Raw value that may be the sentinel, NaN or None

    Returns:
        Float value, or None when the value is missing
    """
    if is_missing(value):
        return None
    return float(value)


def from_missing(value: Optional[float]) -> float:
    """Convert an internal scalar back into the external sentinel convention"""
    return NODATA if is_missing(value) else float(value)


def sentinel_to_nan(data: Union[float, np.ndarray]) -> np.ndarray:
    """
    Replace the external sentinel with NaN.

    Args:
        data: Array using the sentinel convention

    Returns:
        Float array with NaN in place of the sentinel
    """
    array = np.array(data, dtype=float)
    array[array == NODATA] = np.nan
    return array


def nan_to_sentinel(data: Union[float, np.ndarray]) -> np.ndarray:
    """Replace NaN with the external sentinel"""
    array = np.array(data, dtype=float)
    array[np.isnan(array)] = NODATA
    return array

