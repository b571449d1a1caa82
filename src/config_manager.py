"""
Configuration System for MeteoGrid

This module provides centralized configuration management with clear hierarchy:
1. Built-in defaults (lowest priority)
2. Configuration files (YAML/JSON)
3. Environment variables
4. Explicit overrides (highest priority)

The interpolations2d section lists, for every parameter, the candidate
algorithms in priority order and the string arguments of each algorithm:

    interpolations2d:
      TA:
        algorithms: [IDW_LAPSE, CST_LAPSE, CST]
        arguments:
          IDW_LAPSE: ["-0.0065", "soft"]
"""

import os
import json
import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml

from logging_utils import ConfigurationError


VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
VALID_PROCESSING_LEVELS = ['buffered', 'raw']


class InterpolationConfig:
    """
    Configuration of the spatial interpolation engine.

    Provides centralized configuration management with clear hierarchy:
    1. Built-in defaults
    2. Configuration files (YAML/JSON)
    3. Environment variables
    4. Explicit overrides (highest priority)
    """

    def __init__(self, config_file: Optional[str] = None, overrides: Optional[Dict] = None):
        """
        Initialize configuration system with proper precedence order.

        Args:
            config_file: Path to YAML or JSON configuration file
            overrides: Dictionary of configuration values (highest priority)
        """
        self.config_file = config_file
        self.overrides = overrides or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self._config = {}
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration with proper precedence order"""
        self._config = self._get_default_config()

        if self.config_file:
            file_config = self._load_config_file(self.config_file)
            self._merge_config(self._config, file_config)

        env_config = self._load_environment_config()
        self._merge_config(self._config, env_config)

        if self.overrides:
            self._merge_config(self._config, copy.deepcopy(self.overrides))

        self._normalize_interpolations()
        self._validate_configuration()

    def _get_default_config(self) -> Dict[str, Any]:
        """Built-in default configuration"""
        return {
            'general': {
                'buff_grids': 10,
                'buffer_size_days': 370,
                'processing_level': 'buffered',
                'fallback_on_failure': False,
                'log_level': 'INFO'
            },
            'interpolations2d': {
                'TA': {'algorithms': ['IDW_LAPSE', 'CST_LAPSE', 'CST'], 'arguments': {}},
                'RH': {'algorithms': ['RH', 'IDW_LAPSE', 'CST'], 'arguments': {}},
                'VW': {'algorithms': ['IDW_LAPSE', 'CST'], 'arguments': {}},
                'DW': {'algorithms': ['IDW', 'CST'], 'arguments': {}},
                'P': {'algorithms': ['STD_PRESS', 'IDW_LAPSE', 'CST'], 'arguments': {}},
                'PSUM': {'algorithms': ['IDW_LAPSE', 'IDW', 'CST'],
                         'arguments': {'IDW_LAPSE': ['0.0005', 'frac']}},
                'ISWR': {'algorithms': ['IDW', 'CST'], 'arguments': {}},
                'HS': {'algorithms': ['IDW_LAPSE', 'CST'], 'arguments': {}}
            }
        }

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif config_path.suffix.lower() == '.json':
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {config_path.suffix}",
                                         {'config_file': str(config_path)})

    def _load_environment_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        env_config = {}

        env_mappings = {
            'METEOGRID_LOG_LEVEL': 'general.log_level',
            'METEOGRID_BUFF_GRIDS': 'general.buff_grids',
            'METEOGRID_BUFFER_SIZE': 'general.buffer_size_days',
            'METEOGRID_PROCESSING_LEVEL': 'general.processing_level',
            'METEOGRID_FALLBACK': 'general.fallback_on_failure'
        }

        for env_var, config_path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                self._set_nested_config(env_config, config_path, value)

        return env_config

    def _set_nested_config(self, config_dict: Dict, path: str, value: Any):
        """Set nested configuration value using dot notation path"""
        keys = path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        # Convert string values to appropriate types
        if isinstance(value, str):
            if value.lower() in ['true', 'false']:
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)
            elif value.replace('.', '', 1).isdigit():
                value = float(value)

        current[keys[-1]] = value

    def _merge_config(self, base_config: Dict, override_config: Dict):
        """Deep merge configuration dictionaries"""
        for key, value in override_config.items():
            if key in base_config and isinstance(base_config[key], dict) and isinstance(value, dict):
                self._merge_config(base_config[key], value)
            else:
                base_config[key] = value

    def _normalize_interpolations(self):
        """Upper-case parameter and algorithm names, stringify arguments"""
        section = self._config.get('interpolations2d')
        if not isinstance(section, dict):
            raise ConfigurationError("interpolations2d section must be a mapping")

        normalized = {}
        for parameter, settings in section.items():
            if not isinstance(settings, dict):
                raise ConfigurationError(f"Interpolation settings for '{parameter}' must be a mapping",
                                         {'parameter': parameter})

            algorithms = settings.get('algorithms', [])
            if isinstance(algorithms, str):
                algorithms = [algorithms]
            if not isinstance(algorithms, list):
                raise ConfigurationError(f"Algorithms for '{parameter}' must be a list",
                                         {'parameter': parameter})

            arguments = settings.get('arguments') or {}
            if not isinstance(arguments, dict):
                raise ConfigurationError(f"Arguments for '{parameter}' must be a mapping",
                                         {'parameter': parameter})

            normalized_arguments = {}
            for algorithm, args in arguments.items():
                if args is None:
                    args = []
                elif not isinstance(args, list):
                    args = [args]
                normalized_arguments[str(algorithm).upper()] = [str(arg) for arg in args]

            normalized[str(parameter).upper()] = {
                'algorithms': [str(name).upper() for name in algorithms],
                'arguments': normalized_arguments
            }

        self._config['interpolations2d'] = normalized

    def _validate_configuration(self):
        """Validate final configuration"""
        for section in ['general', 'interpolations2d']:
            if section not in self._config:
                raise ConfigurationError(f"Required configuration section missing: {section}")

        self._validate_general_config()
        self._validate_interpolations_config()

    def _validate_general_config(self):
        """Validate general section configuration"""
        general = self._config['general']

        buff_grids = general.get('buff_grids')
        if not isinstance(buff_grids, int) or isinstance(buff_grids, bool) or buff_grids < 1:
            raise ConfigurationError("buff_grids must be an integer of at least 1",
                                     {'buff_grids': buff_grids})

        buffer_size = general.get('buffer_size_days')
        if not isinstance(buffer_size, (int, float)) or isinstance(buffer_size, bool) or buffer_size <= 0:
            raise ConfigurationError("buffer_size_days must be positive",
                                     {'buffer_size_days': buffer_size})

        if general.get('processing_level') not in VALID_PROCESSING_LEVELS:
            raise ConfigurationError(f"processing_level must be one of: {VALID_PROCESSING_LEVELS}")

        if not isinstance(general.get('fallback_on_failure'), bool):
            raise ConfigurationError("fallback_on_failure must be boolean")

        if str(general.get('log_level', 'INFO')).upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of: {VALID_LOG_LEVELS}")

    def _validate_interpolations_config(self):
        """Validate interpolations2d section configuration"""
        for parameter, settings in self._config['interpolations2d'].items():
            if not settings['algorithms']:
                raise ConfigurationError(f"No interpolation algorithm configured for '{parameter}'",
                                         {'parameter': parameter})

    # Public interface methods
    def get(self, path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation path.

        Args:
            path: Dot-separated path to configuration value (e.g., 'general.buff_grids')
            default: Default value if path not found

        Returns:
            Configuration value or default if not found
        """
        keys = path.split('.')
        current = self._config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_parameters(self) -> List[str]:
        """Parameters with a configured interpolation"""
        return list(self._config['interpolations2d'].keys())

    def get_algorithms(self, parameter: str) -> List[str]:
        """
        Candidate algorithms for a parameter, in priority order.

        Args:
            parameter: Parameter name (case-insensitive)

        Returns:
            Upper-case algorithm names, empty when the parameter is not configured
        """
        settings = self._config['interpolations2d'].get(parameter.upper())
        return list(settings['algorithms']) if settings else []

    def get_arguments_for_algorithm(self, parameter: str, algorithm: str) -> List[str]:
        """
        String arguments configured for an algorithm of a parameter.

        Returns:
            List of arguments, empty when none are configured
        """
        settings = self._config['interpolations2d'].get(parameter.upper())
        if not settings:
            return []
        return list(settings['arguments'].get(algorithm.upper(), []))

    def to_dict(self) -> Dict[str, Any]:
        """Return complete configuration as dictionary"""
        return copy.deepcopy(self._config)

    def save_config(self, output_path: str):
        """
        Save current configuration to file.

        Args:
            output_path: Path where to save configuration file
        """
        output_path = Path(output_path)

        if output_path.suffix.lower() in ['.yaml', '.yml']:
            with open(output_path, 'w') as f:
                yaml.dump(self._config, f, default_flow_style=False, indent=2)
        elif output_path.suffix.lower() == '.json':
            with open(output_path, 'w') as f:
                json.dump(self._config, f, indent=2)
        else:
            raise ConfigurationError(f"Unsupported output format: {output_path.suffix}")
