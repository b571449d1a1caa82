"""
MeteoGrid - Spatial Interpolation of Meteorological Observations

This package reconstructs complete, terrain-aware 2D meteorological fields
from sparse station observations over a digital elevation model.

Interpolation Engine:
- Catalog of self-rating interpolation algorithms (constant, lapse rate,
  inverse distance weighting, humidity, wind and snow specific estimators)
- Algorithm factory and configuration-driven algorithm selection
- Orchestrator rating, selecting and caching interpolations

Gridded Data:
- Terrain model with slope, aspect and curvature
- Bounded, thread-safe grid cache
- Derivation of missing grids from related ones (wind components,
  humidity, radiation, snow and precipitation phase)

Scientific Utilities:
- Atmospheric science calculations (humidity, pressure, wind)
- Statistical utilities (regression, distance weighting, detrending)
- Physical constants and missing-value handling
"""

__version__ = "1.0.0"
__author__ = "MeteoGrid Development Team"
