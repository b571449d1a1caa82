"""
Interpolation Algorithm Factory for MeteoGrid

Provides the registry mapping algorithm names to algorithm classes. A
factory is an ordinary object created at application start and handed to
the orchestrator; there is no global registry. Names are resolved to
classes once, when the configuration is loaded, and the resolved classes
are reused for every timestamp.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Any, Type

from interpolation_algorithms import (InterpolationAlgorithm, ConstantAlgorithm, StandardPressureAlgorithm,
                                      ConstantLapseAlgorithm, IDWAlgorithm, IDWLapseAlgorithm,
                                      LocalIDWLapseAlgorithm, UserGridAlgorithm, OrdinaryKrigingAlgorithm)
from logging_utils import UnknownAlgorithmError
from meteo_data import MeteoData
from terrain_algorithms import (RelativeHumidityAlgorithm, WindCurvatureAlgorithm,
                                SnowPrecipitationAlgorithm)
from terrain_model import TerrainModel


class AlgorithmFactory:
    """
    Registry of spatial interpolation algorithms.

    The catalog is fixed; a factory may be created with a subset of it or
    with additional algorithms for embedding applications.
    """

    # Catalog of available algorithms
    ALGORITHMS: Dict[str, Type[InterpolationAlgorithm]] = {
        'CST': ConstantAlgorithm,
        'STD_PRESS': StandardPressureAlgorithm,
        'CST_LAPSE': ConstantLapseAlgorithm,
        'IDW': IDWAlgorithm,
        'IDW_LAPSE': IDWLapseAlgorithm,
        'LIDW_LAPSE': LocalIDWLapseAlgorithm,
        'RH': RelativeHumidityAlgorithm,
        'WIND_CURV': WindCurvatureAlgorithm,
        'HNW_SNOW': SnowPrecipitationAlgorithm,
        'ODKRIG': OrdinaryKrigingAlgorithm,
        'USER': UserGridAlgorithm
    }

    def __init__(self, algorithms: Optional[Dict[str, Type[InterpolationAlgorithm]]] = None):
        """
        Initialize the registry.

        Args:
            algorithms: Name to class mapping; defaults to the full catalog
        """
        catalog = self.ALGORITHMS if algorithms is None else algorithms
        self._algorithms = {name.upper(): algorithm_class for name, algorithm_class in catalog.items()}
        self.logger = logging.getLogger(self.__class__.__name__)

    def resolve(self, name: str) -> Type[InterpolationAlgorithm]:
        """
        Algorithm class for a name.

        Args:
            name: Algorithm name (case-insensitive)

        Returns:
            Algorithm class

        Raises:
            UnknownAlgorithmError: If the name is not in the catalog
        """
        key = str(name).strip().upper()
        if key not in self._algorithms:
            raise UnknownAlgorithmError(f"The interpolation algorithm '{key}' does not exist. "
                                        f"Available: {self.get_available_algorithms()}",
                                        {'algorithm': key})
        return self._algorithms[key]

    def validate(self, name: str, args: Optional[List[str]] = None) -> Type[InterpolationAlgorithm]:
        """
        Resolve a name and check its arguments without creating an instance.

        Raises:
            UnknownAlgorithmError: If the name is not in the catalog
            InvalidArgumentError: If the arguments are not accepted
        """
        algorithm_class = self.resolve(name)
        algorithm_class.parse_arguments([str(arg) for arg in (args or [])])
        return algorithm_class

    def create_algorithm(self, name: str, args: Optional[List[str]], dem: TerrainModel,
                         observations: List[MeteoData], date: Optional[datetime] = None,
                         interpolator: Any = None) -> InterpolationAlgorithm:
        """
        Create an algorithm instance for one parameter/timestamp evaluation.

        Args:
            name: Algorithm name (case-insensitive)
            args: String arguments of the algorithm
            dem: Terrain model to interpolate onto
            observations: Station observations at the timestamp
            date: Timestamp being interpolated
            interpolator: Orchestrator for call-backs

        Returns:
            New algorithm instance

        Raises:
            UnknownAlgorithmError: If the name is not in the catalog
            InvalidArgumentError: If the arguments are not accepted
        """
        algorithm_class = self.resolve(name)
        return algorithm_class(args, dem, observations, date, interpolator)

    def get_available_algorithms(self) -> List[str]:
        return sorted(self._algorithms.keys())
