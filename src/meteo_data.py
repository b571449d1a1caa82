"""
Meteorological Data Model for MeteoGrid

Parameter identifiers, station metadata and point observations as seen by
the interpolation engine. Point observations are owned by the data supplier
and only read during one interpolation call.

Parameter naming (units):
    TA    air temperature (K)
    RH    relative humidity (fraction 0-1)
    VW    wind speed (m/s)
    DW    wind direction (degrees)
    P     air pressure (Pa)
    PSUM  precipitation sum (kg/m²)
    ISWR  incoming shortwave radiation (W/m²)
    HS    snow height (m)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, List

from coordinate_systems import Coordinates
from units_constants import to_missing


class MeteoGrids:
    """
    Parameters that can appear as gridded fields.

    The station parameters plus the quantities only used to derive
    other grids.
    """

    TA = 'TA'
    RH = 'RH'
    VW = 'VW'
    DW = 'DW'
    P = 'P'
    PSUM = 'PSUM'
    ISWR = 'ISWR'
    HS = 'HS'

    U = 'U'              # eastward wind component (m/s)
    V = 'V'              # northward wind component (m/s)
    TD = 'TD'            # dew point temperature (K)
    QI = 'QI'            # specific humidity (kg/kg)
    ISWR_DIR = 'ISWR_DIR'    # direct incoming shortwave (W/m²)
    ISWR_DIFF = 'ISWR_DIFF'  # diffuse incoming shortwave (W/m²)
    RSWR = 'RSWR'        # reflected shortwave (W/m²)
    ALB = 'ALB'          # albedo (0-1)
    SWE = 'SWE'          # snow water equivalent (kg/m²)
    RSNO = 'RSNO'        # snow density (kg/m³)
    PSUM_S = 'PSUM_S'    # solid precipitation (kg/m²)
    PSUM_L = 'PSUM_L'    # liquid precipitation (kg/m²)
    PSUM_PH = 'PSUM_PH'  # precipitation phase, liquid fraction (0-1)
    DEM = 'DEM'

    ALL = [TA, RH, VW, DW, P, PSUM, ISWR, HS, U, V, TD, QI, ISWR_DIR, ISWR_DIFF,
           RSWR, ALB, SWE, RSNO, PSUM_S, PSUM_L, PSUM_PH, DEM]

    @classmethod
    def is_known(cls, name: str) -> bool:
        return name in cls.ALL


@dataclass
class StationData:
    """Station identity and position"""
    station_id: str
    position: Coordinates
    name: str = ''
    slope: Optional[float] = None
    aspect: Optional[float] = None

    @property
    def altitude(self) -> Optional[float]:
        return self.position.altitude


@dataclass
class MeteoData:
    """
    One station's measurements at one timestamp.

    Missing measurements are None. Values handed in with the external
    sentinel or as NaN are normalised to None on construction.
    """
    date: datetime
    station: StationData
    values: Dict[str, Optional[float]] = field(default_factory=dict)

    def __post_init__(self):
        self.values = {name: to_missing(value) for name, value in self.values.items()}

    def get(self, parameter: str) -> Optional[float]:
        return self.values.get(parameter)

    def has(self, parameter: str) -> bool:
        return self.values.get(parameter) is not None

    def set(self, parameter: str, value: Optional[float]) -> None:
        self.values[parameter] = to_missing(value)


def stations_with(observations: List[MeteoData], parameter: str) -> List[MeteoData]:
    """Observations that carry a usable value for the parameter"""
    return [obs for obs in observations if obs.has(parameter)]
