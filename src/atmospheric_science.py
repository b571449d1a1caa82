"""
Atmospheric Science Calculations for MeteoGrid

This module provides the meteorological laws the interpolation engine relies
on: the standard-atmosphere pressure profile, humidity conversions between
relative humidity, dew point and specific humidity, and the conversions
between wind speed/direction and horizontal wind components.

Scientific Context:
Several quantities cannot be interpolated directly because they are not
spatially smooth (relative humidity) or are circular (wind direction). They
are converted to better-behaved quantities, interpolated, and converted back.

Conventions:
- Temperatures in Kelvin, pressures in Pa, relative humidity as a fraction (0-1)
- Wind direction in degrees, meteorological convention (direction the wind
  blows from, clockwise from north)

References:
- Alduchov & Eskridge (1996), Improved Magnus form approximation of
  saturation vapor pressure, J. Appl. Meteor. 35, 601-609
- U.S. Standard Atmosphere, 1976
"""

import numpy as np
from typing import Union, Tuple

from units_constants import PhysicalConstants


# Magnus coefficients (Pa, dimensionless, °C)
MAGNUS_WATER = (611.21, 17.502, 240.97)
MAGNUS_ICE = (611.15, 22.452, 272.55)


def standard_air_pressure(altitude: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Air pressure of the standard atmosphere at a given altitude.

    Scientific Background:
    Barometric formula for a troposphere with constant lapse rate:
        p = p0 * (1 - L*z/T0) ** (g*M / (R*L))

    Args:
        altitude: Altitude above sea level in meters

    Returns:
        Air pressure in Pa
    """
    z = np.asarray(altitude, dtype=float)
    p0 = PhysicalConstants.STANDARD_PRESSURE
    t0 = PhysicalConstants.STANDARD_SEA_LEVEL_TEMPERATURE
    lapse = PhysicalConstants.STANDARD_LAPSE_RATE
    exponent = (PhysicalConstants.STANDARD_GRAVITY * PhysicalConstants.MOLAR_MASS_DRY_AIR /
                (PhysicalConstants.UNIVERSAL_GAS_CONSTANT * lapse))
    return p0 * np.power(1.0 - lapse * z / t0, exponent)


def saturation_vapor_pressure(temperature: Union[float, np.ndarray],
                              force_water: bool = False) -> Union[float, np.ndarray]:
    """
    Saturation vapor pressure over water or ice (Magnus formula).

    Below freezing the ice coefficients are used unless force_water is set.

    Args:
        temperature: Air temperature in Kelvin
        force_water: Always use the coefficients over liquid water

    Returns:
        Saturation vapor pressure in Pa
    """
    t_celsius = np.asarray(temperature, dtype=float) - PhysicalConstants.STANDARD_TEMPERATURE
    a_w, b_w, c_w = MAGNUS_WATER
    a_i, b_i, c_i = MAGNUS_ICE

    over_water = a_w * np.exp(b_w * t_celsius / (c_w + t_celsius))
    if force_water:
        return over_water
    over_ice = a_i * np.exp(b_i * t_celsius / (c_i + t_celsius))
    return np.where(t_celsius >= 0.0, over_water, over_ice)


def rh_to_dew_point(relative_humidity: Union[float, np.ndarray],
                    temperature: Union[float, np.ndarray],
                    force_water: bool = False) -> Union[float, np.ndarray]:
    """
    Convert relative humidity to dew point temperature.

    Scientific Background:
    Inverts the Magnus formula for the actual vapor pressure e = RH * es(T):
        Td = c * ln(e/a) / (b - ln(e/a))

    Args:
        relative_humidity: Relative humidity as a fraction (0-1]
        temperature: Air temperature in Kelvin
        force_water: Use coefficients over water even below freezing

    Returns:
        Dew point temperature in Kelvin
    """
    rh = np.clip(np.asarray(relative_humidity, dtype=float), 1e-6, 1.0)
    ta = np.asarray(temperature, dtype=float)
    t_celsius = ta - PhysicalConstants.STANDARD_TEMPERATURE

    vapor_pressure = rh * saturation_vapor_pressure(ta, force_water)

    def _invert(coefficients):
        a, b, c = coefficients
        log_ratio = np.log(vapor_pressure / a)
        return c * log_ratio / (b - log_ratio)

    dew_point_water = _invert(MAGNUS_WATER)
    if force_water:
        dew_point = dew_point_water
    else:
        dew_point = np.where(t_celsius >= 0.0, dew_point_water, _invert(MAGNUS_ICE))

    return dew_point + PhysicalConstants.STANDARD_TEMPERATURE


def dew_point_to_rh(dew_point: Union[float, np.ndarray],
                    temperature: Union[float, np.ndarray],
                    force_water: bool = False) -> Union[float, np.ndarray]:
    """
    Convert dew point temperature to relative humidity.

    Args:
        dew_point: Dew point temperature in Kelvin
        temperature: Air temperature in Kelvin
        force_water: Use coefficients over water even below freezing

    Returns:
        Relative humidity as a fraction, capped at 1
    """
    ta = np.asarray(temperature, dtype=float)
    td = np.asarray(dew_point, dtype=float)
    t_celsius = ta - PhysicalConstants.STANDARD_TEMPERATURE
    td_celsius = td - PhysicalConstants.STANDARD_TEMPERATURE

    def _es(coefficients, t):
        a, b, c = coefficients
        return a * np.exp(b * t / (c + t))

    rh_water = _es(MAGNUS_WATER, td_celsius) / _es(MAGNUS_WATER, t_celsius)
    if force_water:
        rh = rh_water
    else:
        rh_ice = _es(MAGNUS_ICE, td_celsius) / _es(MAGNUS_ICE, t_celsius)
        rh = np.where(t_celsius >= 0.0, rh_water, rh_ice)

    return np.minimum(rh, 1.0)


def specific_to_relative_humidity(altitude: Union[float, np.ndarray],
                                  temperature: Union[float, np.ndarray],
                                  specific_humidity: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Convert specific humidity to relative humidity.

    Scientific Background:
    The vapor pressure follows from q and the standard-atmosphere pressure
    at the given altitude:
        e = q * p / (epsilon + (1 - epsilon) * q)

    Args:
        altitude: Altitude in meters
        temperature: Air temperature in Kelvin
        specific_humidity: Specific humidity in kg/kg

    Returns:
        Relative humidity as a fraction, capped at 1
    """
    q = np.asarray(specific_humidity, dtype=float)
    pressure = standard_air_pressure(altitude)
    epsilon = PhysicalConstants.EPSILON
    vapor_pressure = q * pressure / (epsilon + (1.0 - epsilon) * q)
    return np.minimum(vapor_pressure / saturation_vapor_pressure(temperature), 1.0)


def wind_speed_from_components(u: Union[float, np.ndarray],
                               v: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """Horizontal wind speed from its eastward and northward components"""
    return np.sqrt(np.square(u) + np.square(v))


def wind_direction_from_components(u: Union[float, np.ndarray],
                                   v: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Wind direction from its components, normalized to [0, 360).

    Args:
        u: Eastward wind component
        v: Northward wind component

    Returns:
        Direction in degrees, bearing of atan2(u, v)
    """
    direction = np.fmod(np.degrees(np.arctan2(u, v)) + 360.0, 360.0)
    return direction


def wind_components(speed: Union[float, np.ndarray],
                    direction: Union[float, np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Horizontal wind components from speed and direction.

    Inverse of wind_speed_from_components / wind_direction_from_components.

    Args:
        speed: Wind speed
        direction: Direction in degrees

    Returns:
        Tuple of (u, v) components
    """
    radians = np.radians(np.asarray(direction, dtype=float))
    speed = np.asarray(speed, dtype=float)
    return speed * np.sin(radians), speed * np.cos(radians)
