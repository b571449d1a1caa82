"""
Error Handling and Logging Infrastructure for MeteoGrid

This module provides standardized logging and error handling capabilities
for the spatial interpolation engine. It includes an interpolation session
logger that tracks algorithm selections, the error taxonomy raised by the
engine, and a context manager that attaches operation context to failures.
"""

import logging
import sys
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from contextlib import contextmanager


def setup_meteogrid_logging(log_level: str = "INFO",
                            log_file: Optional[str] = None,
                            console_output: bool = True) -> logging.Logger:
    """
    Setup standardized logging for MeteoGrid processing.

    Args:
        log_level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        log_file: Optional path to log file
        console_output: Whether to output logs to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger('meteogrid')
    logger.setLevel(getattr(logging, log_level.upper()))

    # Clear any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)  # File logs capture everything
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


class InterpolationLogger:
    """
    Specialized logger for tracking spatial interpolation sessions.

    Records which algorithm won the rating for every parameter/timestamp,
    how many grids were produced or derived, and the failures encountered.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize interpolation logger.

        Args:
            logger: Logger instance to use. If None, uses the 'meteogrid' logger.
        """
        self.logger = logger or logging.getLogger('meteogrid')
        self.session_start_time = datetime.now()
        self.interpolation_stats = {
            'grids_interpolated': 0,
            'grids_derived': 0,
            'interpolation_failures': 0,
            'fallbacks_used': 0,
            'algorithm_selections': {}
        }

    def log_ratings(self, parameter: str, date: datetime, ratings: Dict[str, float]) -> None:
        """
        Log the quality rating of every candidate algorithm.

        Args:
            parameter: Parameter being interpolated
            date: Timestamp being interpolated
            ratings: Mapping of algorithm name to its self-assessed rating
        """
        self.logger.debug(f"Candidate ratings for {parameter} at {date.isoformat()}:")
        for algorithm_name, rating in ratings.items():
            self.logger.debug(f"  {algorithm_name}: {rating:.2f}")

    def log_selection(self, parameter: str, date: datetime, algorithm_name: str, info: str) -> None:
        """
        Log a successful interpolation.

        Args:
            parameter: Parameter that was interpolated
            date: Timestamp that was interpolated
            algorithm_name: Name of the algorithm that produced the grid
            info: Diagnostic string reported by the algorithm
        """
        self.interpolation_stats['grids_interpolated'] += 1
        selections = self.interpolation_stats['algorithm_selections']
        selections[algorithm_name] = selections.get(algorithm_name, 0) + 1

        self.logger.info(f"Interpolated {parameter} at {date.isoformat()}: {info}")

    def log_derivation(self, parameter: str, date: datetime, sources: str) -> None:
        """
        Log a grid derived from related grids.

        Args:
            parameter: Parameter that was derived
            date: Timestamp of the grid
            sources: Description of the grids it was derived from
        """
        self.interpolation_stats['grids_derived'] += 1
        self.logger.info(f"Derived {parameter} at {date.isoformat()} from {sources}")

    def log_fallback(self, parameter: str, failed_algorithm: str, next_algorithm: str, reason: str) -> None:
        """
        Log a fallback to the next-best algorithm after a computation failure.

        Args:
            parameter: Parameter being interpolated
            failed_algorithm: Algorithm whose calculation failed
            next_algorithm: Algorithm that will be tried next
            reason: Failure message of the first algorithm
        """
        self.interpolation_stats['fallbacks_used'] += 1
        self.logger.warning(f"{failed_algorithm} failed for {parameter} ({reason}), "
                            f"falling back to {next_algorithm}")

    def log_interpolation_error(self, error_type: str, error_details: str, context: Optional[Dict] = None) -> None:
        """
        Log interpolation errors with context.

        Args:
            error_type: Type/category of error
            error_details: Detailed error description
            context: Optional context dictionary with additional information
        """
        self.interpolation_stats['interpolation_failures'] += 1

        self.logger.error(f"Interpolation error ({error_type}): {error_details}")

        if context:
            self.logger.error("Error context:")
            for key, value in context.items():
                self.logger.error(f"  {key}: {value}")

    def get_session_summary(self) -> Dict[str, Any]:
        """
        Get summary of the current interpolation session.

        Returns:
            Dictionary with session summary information
        """
        stats = dict(self.interpolation_stats)
        stats['algorithm_selections'] = dict(self.interpolation_stats['algorithm_selections'])
        return {
            'start_time': self.session_start_time.isoformat(),
            'current_time': datetime.now().isoformat(),
            'elapsed_time': str(datetime.now() - self.session_start_time),
            'interpolation_stats': stats
        }


class MeteoGridError(Exception):
    """Base exception class for MeteoGrid errors"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        """
        Initialize MeteoGrid error.

        Args:
            message: Error message
            context: Optional context dictionary with additional information
        """
        super().__init__(message)
        self.context = context or {}
        self.timestamp = datetime.now()

    def get_full_error_info(self) -> Dict[str, Any]:
        """Get complete error information including context"""
        return {
            'error_type': self.__class__.__name__,
            'message': str(self),
            'timestamp': self.timestamp.isoformat(),
            'context': self.context
        }


class ConfigurationError(MeteoGridError):
    """Error in configuration or setup"""
    pass


class UnknownAlgorithmError(MeteoGridError):
    """Algorithm name is not part of the catalog"""
    pass


class InvalidArgumentError(MeteoGridError, ValueError):
    """Wrong number or type of arguments for an algorithm"""
    pass


class InterpolationFailedError(MeteoGridError):
    """An algorithm could not produce a grid"""
    pass


class NoDataError(MeteoGridError):
    """Requested grid cannot be found or derived"""
    pass


class AlgorithmNotImplementedError(MeteoGridError, NotImplementedError):
    """Algorithm is part of the catalog but has no implementation"""
    pass


@contextmanager
def error_context(operation_name: str, logger: Optional[InterpolationLogger] = None, **context_info):
    """
    Context manager for wrapping operations with error handling.

    MeteoGrid errors keep their type and gain the operation context; any other
    exception is re-raised as InterpolationFailedError.

    Args:
        operation_name: Name of operation being performed
        logger: Optional InterpolationLogger instance
        **context_info: Additional context information

    Example:
        with error_context("interpolating TA", logger, date=date):
            interpolator.interpolate(date, dem, "TA")
    """
    start_time = datetime.now()

    if logger:
        logger.logger.debug(f"Starting operation: {operation_name}")

    try:
        yield
        duration = datetime.now() - start_time

        if logger:
            logger.logger.debug(f"Completed operation: {operation_name} (duration: {duration})")

    except Exception as e:
        duration = datetime.now() - start_time
        error_context_dict = {
            'operation': operation_name,
            'duration': str(duration),
            **context_info
        }

        if logger:
            logger.log_interpolation_error(
                error_type=type(e).__name__,
                error_details=str(e),
                context=error_context_dict
            )

        if not isinstance(e, MeteoGridError):
            raise InterpolationFailedError(str(e), error_context_dict) from e
        else:
            e.context.update(error_context_dict)
            raise


def save_session_summary(summary: Dict[str, Any], output_path: str) -> None:
    """
    Save interpolation session summary to JSON file.

    Args:
        summary: Session summary dictionary
        output_path: Path for output summary file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(summary, f, indent=2, default=str)

    logging.getLogger('meteogrid').info(f"Session summary saved: {output_path}")
