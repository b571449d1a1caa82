"""
Tests for the interpolation orchestrator.

Covers algorithm selection by rating, tie breaking, the behaviour without
measurements, result caching, optional fallback and configuration errors.
"""

import pytest
import numpy as np
from datetime import datetime, timedelta
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent / "src"))

from algorithm_factory import AlgorithmFactory
from atmospheric_science import standard_air_pressure
from config_manager import InterpolationConfig
from coordinate_systems import Coordinates
from data_sources import MemoryDataSource, NetCDFGridSource, grid_filename, write_netcdf_grid
from grid_buffer import GridBuffer
from grids_manager import GridsManager
from interpolation_algorithms import InterpolationAlgorithm
from logging_utils import (InterpolationFailedError, UnknownAlgorithmError, InvalidArgumentError,
                           AlgorithmNotImplementedError)
from meteo2d_interpolator import Meteo2DInterpolator
from meteo_data import MeteoData, StationData
from terrain_model import TerrainModel


DATE = datetime(2024, 1, 15, 12, 0)

LAPSE_STATIONS = [
    (50.0, 50.0, 1000.0, {'TA': 280.0}),
    (250.0, 50.0, 1500.0, {'TA': 276.0}),
    (150.0, 250.0, 2000.0, {'TA': 272.0}),
]


class CountingSource(MemoryDataSource):
    """Memory source counting observation requests"""

    def __init__(self):
        super().__init__()
        self.requests = 0

    def get_meteo_data(self, date):
        self.requests += 1
        return super().get_meteo_data(date)


class FailingAlgorithm(InterpolationAlgorithm):
    """Algorithm that always wins the rating and always fails"""

    NAME = 'FAIL'

    def get_quality_rating(self):
        return 1.0

    def _compute(self):
        raise InterpolationFailedError("Deliberate failure")


def make_dem(values, cellsize=100.0):
    values = np.asarray(values, dtype=float)
    return TerrainModel(values.shape[1], values.shape[0], cellsize,
                        Coordinates(easting=0.0, northing=0.0), values)


def make_source(records, date=DATE):
    source = CountingSource()
    for index, (easting, northing, altitude, values) in enumerate(records):
        station = StationData(f"STN{index}", Coordinates(easting=easting, northing=northing, altitude=altitude))
        source.add_observations(date, [MeteoData(date, station, dict(values))])
    return source


def make_interpolator(records, overrides=None, **kwargs):
    config = InterpolationConfig(overrides=overrides or {})
    source = make_source(records)
    return Meteo2DInterpolator(config, source, **kwargs), source


def test_default_configuration_selects_idw_lapse():
    """Test the end-to-end lapse-rate scenario with the default configuration"""
    dem = make_dem([[1750.0, 1000.0], [2000.0, 1500.0]])
    interpolator, _ = make_interpolator(LAPSE_STATIONS)

    grid = interpolator.interpolate(DATE, dem, 'TA')

    assert grid.values[0, 0] == pytest.approx(274.0)
    assert interpolator.get_info().startswith("IDW_LAPSE, 3 stations")
    assert interpolator.get_info('ta') == interpolator.get_info()


def test_highest_rating_wins():
    """Test that CST beats IDW with a single station"""
    dem = make_dem(np.full((2, 2), 1000.0))
    interpolator, _ = make_interpolator(LAPSE_STATIONS[:1],
                                        {'interpolations2d': {'TA': {'algorithms': ['IDW', 'CST']}}})

    interpolator.interpolate(DATE, dem, 'TA')

    assert interpolator.get_info().startswith("CST")


@pytest.mark.parametrize("order,expected", [
    (['LIDW_LAPSE', 'IDW_LAPSE'], 'LIDW_LAPSE'),
    (['IDW_LAPSE', 'LIDW_LAPSE'], 'IDW_LAPSE'),
])
def test_ties_favor_first_configured(order, expected):
    """Test that equal ratings keep the configured order"""
    dem = make_dem(np.full((2, 2), 1500.0))
    overrides = {'interpolations2d': {'TA': {'algorithms': order, 'arguments': {'LIDW_LAPSE': ['2']}}}}
    interpolator, _ = make_interpolator(LAPSE_STATIONS, overrides)

    interpolator.interpolate(DATE, dem, 'TA')

    assert interpolator.get_info().split(',')[0] == expected


def test_no_measurements_fails():
    """Test that no candidate rating above zero raises Interpolation-failed"""
    dem = make_dem(np.full((2, 2), 1000.0))
    interpolator, _ = make_interpolator([])

    with pytest.raises(InterpolationFailedError):
        interpolator.interpolate(DATE, dem, 'TA')

    summary = interpolator.get_session_summary()
    assert summary['interpolation_stats']['interpolation_failures'] == 1


def test_pressure_without_measurements():
    """Test that pressure falls back to the standard atmosphere"""
    dem = make_dem([[500.0, 1500.0]])
    interpolator, _ = make_interpolator([])

    grid = interpolator.interpolate(DATE, dem, 'P')

    np.testing.assert_allclose(grid.values, standard_air_pressure(dem.values))
    assert interpolator.get_info('P') == "STD_PRESS, 0 stations"


def test_unconfigured_parameter_fails():
    """Test that a parameter without algorithms cannot be interpolated"""
    dem = make_dem(np.full((2, 2), 1000.0))
    interpolator, _ = make_interpolator(LAPSE_STATIONS)

    with pytest.raises(InterpolationFailedError):
        interpolator.interpolate(DATE, dem, 'QI')


def test_results_are_cached():
    """Test that a second request is served from the cache"""
    dem = make_dem(np.full((2, 2), 1200.0))
    interpolator, source = make_interpolator(LAPSE_STATIONS)

    first = interpolator.interpolate(DATE, dem, 'TA')
    second = interpolator.interpolate(DATE, dem, 'TA')

    assert source.requests == 1
    np.testing.assert_array_equal(first.values, second.values)

    # Callers get copies, not the cached grid itself
    first.values[:, :] = 0.0
    third = interpolator.interpolate(DATE, dem, 'TA')
    np.testing.assert_array_equal(third.values, second.values)


def test_raw_processing_bypasses_cache():
    """Test that raw processing recomputes every request"""
    dem = make_dem(np.full((2, 2), 1200.0))
    interpolator, source = make_interpolator(LAPSE_STATIONS, {'general': {'processing_level': 'raw'}})

    interpolator.interpolate(DATE, dem, 'TA')
    interpolator.interpolate(DATE, dem, 'TA')

    assert source.requests == 2


def test_cache_bound_respected():
    """Test that the result cache never exceeds its size"""
    dem = make_dem(np.full((2, 2), 1200.0))
    source = CountingSource()
    for hour in range(6):
        date = DATE + timedelta(hours=hour)
        station = StationData('S', Coordinates(easting=0.0, northing=0.0, altitude=1200.0))
        source.add_observations(date, [MeteoData(date, station, {'TA': 270.0 + hour})])
    config = InterpolationConfig(overrides={'general': {'buff_grids': 3}})
    interpolator = Meteo2DInterpolator(config, source)

    for hour in range(6):
        interpolator.interpolate(DATE + timedelta(hours=hour), dem, 'TA')
        assert len(interpolator.result_buffer) <= 3


def test_new_terrain_invalidates_cache():
    """Test that a terrain model with another geometry is not served old grids"""
    interpolator, source = make_interpolator(LAPSE_STATIONS)

    interpolator.interpolate(DATE, make_dem(np.full((2, 2), 1200.0)), 'TA')
    grid = interpolator.interpolate(DATE, make_dem(np.full((3, 3), 1200.0)), 'TA')

    assert grid.shape == (3, 3)
    assert source.requests == 2


def test_result_grid_filled_in_place():
    """Test that a supplied output grid receives the result"""
    dem = make_dem(np.full((2, 2), 1200.0))
    interpolator, _ = make_interpolator(LAPSE_STATIONS[:1],
                                        {'interpolations2d': {'TA': {'algorithms': ['CST']}}})
    output = make_dem(np.zeros((5, 5))).like()

    returned = interpolator.interpolate(DATE, dem, 'TA', output)

    assert returned is output
    assert output.is_same_geolocalization(dem)
    np.testing.assert_allclose(output.values, 280.0)


def test_failure_propagates_without_fallback():
    """Test that the selected algorithm's failure is not masked"""
    dem = make_dem(np.full((2, 2), 1200.0))
    factory = AlgorithmFactory({**AlgorithmFactory.ALGORITHMS, 'FAIL': FailingAlgorithm})
    interpolator, _ = make_interpolator(LAPSE_STATIONS,
                                        {'interpolations2d': {'TA': {'algorithms': ['FAIL', 'CST']}}},
                                        factory=factory)

    with pytest.raises(InterpolationFailedError, match="Deliberate failure"):
        interpolator.interpolate(DATE, dem, 'TA')


def test_fallback_to_next_candidate():
    """Test the optional fallback to the next-best algorithm"""
    dem = make_dem(np.full((2, 2), 1200.0))
    factory = AlgorithmFactory({**AlgorithmFactory.ALGORITHMS, 'FAIL': FailingAlgorithm})
    overrides = {'general': {'fallback_on_failure': True},
                 'interpolations2d': {'TA': {'algorithms': ['FAIL', 'CST']}}}
    interpolator, _ = make_interpolator(LAPSE_STATIONS, overrides, factory=factory)

    grid = interpolator.interpolate(DATE, dem, 'TA')

    np.testing.assert_allclose(grid.values, 276.0)
    assert interpolator.get_info().startswith("CST")
    assert interpolator.get_session_summary()['interpolation_stats']['fallbacks_used'] == 1


def test_nested_failure_counted_once():
    """Test that a failing TA under RH is one failure of the session"""
    dem = make_dem(np.full((2, 2), 1200.0))
    factory = AlgorithmFactory({**AlgorithmFactory.ALGORITHMS, 'FAIL': FailingAlgorithm})
    stations = [(easting, northing, altitude, {'TA': values['TA'], 'RH': 0.7})
                for easting, northing, altitude, values in LAPSE_STATIONS]
    overrides = {'interpolations2d': {'RH': {'algorithms': ['RH']},
                                      'TA': {'algorithms': ['FAIL']}}}
    interpolator, _ = make_interpolator(stations, overrides, factory=factory)

    with pytest.raises(InterpolationFailedError, match="Deliberate failure"):
        interpolator.interpolate(DATE, dem, 'RH')

    summary = interpolator.get_session_summary()
    assert summary['interpolation_stats']['interpolation_failures'] == 1


def test_configuration_errors_surface_at_construction():
    """Test unknown algorithms and bad arguments fail when the engine is built"""
    with pytest.raises(UnknownAlgorithmError):
        make_interpolator([], {'interpolations2d': {'TA': {'algorithms': ['SPLINE']}}})

    with pytest.raises(InvalidArgumentError):
        make_interpolator([], {'interpolations2d': {'TA': {'algorithms': ['IDW_LAPSE'],
                                                           'arguments': {'IDW_LAPSE': ['fast']}}}})


def test_base_algorithm_errors_surface_at_construction():
    """Test that the base algorithm of HNW_SNOW is checked when the engine is built"""
    with pytest.raises(UnknownAlgorithmError):
        make_interpolator([], {'interpolations2d': {'PSUM': {'algorithms': ['HNW_SNOW'],
                                                             'arguments': {'HNW_SNOW': ['NOPE']}}}})

    # Arguments of the base come from the same parameter's configuration
    with pytest.raises(InvalidArgumentError):
        make_interpolator([], {'interpolations2d': {'PSUM': {'algorithms': ['HNW_SNOW'],
                                                             'arguments': {'HNW_SNOW': ['LIDW_LAPSE']}}}})

    interpolator, _ = make_interpolator([], {'interpolations2d': {
        'PSUM': {'algorithms': ['HNW_SNOW'], 'arguments': {'HNW_SNOW': ['lidw_lapse'], 'LIDW_LAPSE': ['3']}}}})
    assert interpolator.get_candidates('PSUM') == ['HNW_SNOW']


def test_kriging_not_implemented_at_invocation():
    """Test that a stubbed algorithm fails when it is rated"""
    dem = make_dem(np.full((2, 2), 1200.0))
    interpolator, _ = make_interpolator(LAPSE_STATIONS,
                                        {'interpolations2d': {'TA': {'algorithms': ['ODKRIG', 'CST']}}})

    with pytest.raises(AlgorithmNotImplementedError):
        interpolator.interpolate(DATE, dem, 'TA')


def test_circular_dependency_detected():
    """Test that a parameter depending on itself fails instead of recursing"""
    dem = make_dem(np.full((2, 2), 1200.0))
    overrides = {'interpolations2d': {'TA': {'algorithms': ['HNW_SNOW'],
                                             'arguments': {'HNW_SNOW': ['CST']}}}}
    interpolator, _ = make_interpolator(LAPSE_STATIONS, overrides)

    with pytest.raises(InterpolationFailedError, match="Circular"):
        interpolator.interpolate(DATE, dem, 'TA')


def test_candidates_and_arguments():
    """Test the resolved plan exposed to composite algorithms"""
    interpolator, _ = make_interpolator([])

    assert interpolator.get_candidates('psum') == ['IDW_LAPSE', 'IDW', 'CST']
    assert interpolator.get_arguments_for_algorithm('PSUM', 'idw_lapse') == ['0.0005', 'frac']
    assert interpolator.get_info() == ''


def test_session_summary_counts_selections():
    """Test that selections are tallied per algorithm"""
    dem = make_dem(np.full((2, 2), 1200.0))
    interpolator, _ = make_interpolator(LAPSE_STATIONS)

    interpolator.interpolate(DATE, dem, 'TA')
    interpolator.interpolate(DATE, dem, 'P')

    stats = interpolator.get_session_summary()['interpolation_stats']
    assert stats['grids_interpolated'] == 2
    assert stats['algorithm_selections'] == {'IDW_LAPSE': 1, 'STD_PRESS': 1}


def test_shared_result_buffer():
    """Test that an explicitly supplied buffer is used"""
    dem = make_dem(np.full((2, 2), 1200.0))
    buffer = GridBuffer(5)
    interpolator, _ = make_interpolator(LAPSE_STATIONS, result_buffer=buffer)

    interpolator.interpolate(DATE, dem, 'TA')

    assert ('TA', DATE) in buffer


def test_user_grid_through_grids_manager(tmp_path):
    """Test that USER reads its file through the grids manager cache"""
    dem = make_dem(np.full((2, 2), 1200.0))
    write_netcdf_grid(dem.like(np.array([[0.1, 0.2], [0.3, 0.4]])),
                      tmp_path / grid_filename('HS', DATE), 'HS', DATE)

    config = InterpolationConfig(overrides={'interpolations2d': {
        'HS': {'algorithms': ['USER', 'CST'], 'arguments': {'USER': [str(tmp_path)]}}}})
    manager = GridsManager(NetCDFGridSource(str(tmp_path)), config)
    interpolator = Meteo2DInterpolator(config, make_source(LAPSE_STATIONS), grids_manager=manager)

    grid = interpolator.interpolate(DATE, dem, 'HS')

    np.testing.assert_allclose(grid.values, [[0.1, 0.2], [0.3, 0.4]])
    assert interpolator.get_info('HS').startswith("USER")
    assert str(tmp_path / grid_filename('HS', DATE)) in manager.buffer
