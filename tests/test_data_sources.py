"""
Tests for the grid and point data suppliers.

Covers the in-memory supplier, the NetCDF directory supplier and the
missing-value conventions of station observations.
"""

import pytest
import numpy as np
from datetime import datetime
from pathlib import Path

import netCDF4

import sys
sys.path.append(str(Path(__file__).parent.parent / "src"))

from coordinate_systems import Coordinates, Grid2D
from data_sources import (MemoryDataSource, NetCDFGridSource, grid_filename,
                          write_netcdf_grid, read_netcdf_grid)
from logging_utils import NoDataError
from meteo_data import MeteoData, StationData, stations_with
from terrain_model import TerrainModel
from units_constants import NODATA, is_missing, to_missing, from_missing, sentinel_to_nan, nan_to_sentinel


DATE = datetime(2024, 6, 30, 18, 0)


def make_grid(values, cellsize=250.0, corner=(600000.0, 5100000.0)):
    values = np.asarray(values, dtype=float)
    return Grid2D(values.shape[1], values.shape[0], cellsize,
                  Coordinates(easting=corner[0], northing=corner[1]), values)


def test_grid_filename():
    """Test the grid file naming convention"""
    assert grid_filename('TA', DATE) == '202406301800_TA.nc'
    assert grid_filename('HS', DATE, '.asc') == '202406301800_HS.asc'


def test_memory_source_reads_copies():
    """Test that the in-memory supplier hands out copies"""
    source = MemoryDataSource()
    source.add_grid('TA', DATE, make_grid([[280.0]]))

    grid = source.read_2d_grid('TA', DATE)
    grid.values[0, 0] = 0.0

    assert source.read_2d_grid('TA', DATE).values[0, 0] == 280.0
    assert source.read_counts['grid'] == 2


def test_memory_source_missing_data():
    """Test NoDataError for absent grids"""
    source = MemoryDataSource()

    with pytest.raises(NoDataError):
        source.read_2d_grid('TA', DATE)
    with pytest.raises(NoDataError):
        source.read_dem()
    with pytest.raises(NoDataError):
        source.read_landuse()
    assert not source.has_2d_grid_file('mask.nc')


def test_memory_source_listing():
    """Test listing by time range"""
    source = MemoryDataSource()
    source.add_grid('TA', DATE, make_grid([[280.0]]))
    source.add_grid('RH', DATE, make_grid([[0.5]]))
    source.add_grid('TA', datetime(2025, 1, 1), make_grid([[270.0]]))

    listing = source.list_2d_grids(datetime(2024, 6, 1), datetime(2024, 7, 1))

    assert listing == {DATE: {'TA', 'RH'}}
    assert MemoryDataSource(supports_listing=False).list_2d_grids(DATE, DATE) is None


def test_memory_source_observations():
    """Test point data storage"""
    source = MemoryDataSource()
    station = StationData('WFJ2', Coordinates(easting=780800.0, northing=189200.0, altitude=2540.0))
    source.add_observations(DATE, [MeteoData(DATE, station, {'TA': 268.0})])

    assert len(source.get_meteo_data(DATE)) == 1
    assert source.get_meteo_data(datetime(2024, 7, 1)) == []


def test_netcdf_round_trip(tmp_path):
    """Test writing and reading a grid through the NetCDF supplier"""
    source = NetCDFGridSource(str(tmp_path))
    grid = make_grid([[1.0, 2.0, np.nan], [4.0, 5.0, 6.0]])

    source.write_2d_grid(grid, 'TA', DATE)
    read_back = source.read_2d_grid('TA', DATE)

    assert (tmp_path / '202406301800_TA.nc').exists()
    assert read_back.is_same_geolocalization(grid)
    np.testing.assert_allclose(read_back.values, grid.values)
    assert np.isnan(read_back.values[0, 2])


def test_netcdf_sentinel_on_disk(tmp_path):
    """Test that missing cells are written with the -999 fill value"""
    path = tmp_path / 'grid.nc'
    write_netcdf_grid(make_grid([[np.nan, 3.0]]), path, 'HS', DATE)

    with netCDF4.Dataset(str(path)) as nc_dataset:
        variable = nc_dataset.variables['HS']
        variable.set_auto_mask(False)
        assert variable[0, 0] == NODATA
        assert variable._FillValue == NODATA
        assert nc_dataset.date == DATE.isoformat()

    assert np.isnan(read_netcdf_grid(path).values[0, 0])


def test_netcdf_dem_and_named_files(tmp_path):
    """Test the terrain model and literal file names"""
    source = NetCDFGridSource(str(tmp_path), compression=False)
    source.write_2d_grid(make_grid([[1500.0, 1600.0]]), 'dem.nc')
    source.write_2d_grid(make_grid([[11.0, 12.0]]), 'mask')

    dem = source.read_dem()

    assert isinstance(dem, TerrainModel)
    np.testing.assert_allclose(dem.values, [[1500.0, 1600.0]])
    assert source.has_2d_grid_file('mask.nc')
    assert source.read_2d_grid_file(str(tmp_path / 'mask.nc')).values[0, 1] == 12.0
    with pytest.raises(NoDataError):
        source.read_landuse()


def test_netcdf_listing(tmp_path):
    """Test listing grids from file names"""
    source = NetCDFGridSource(str(tmp_path))
    source.write_2d_grid(make_grid([[1.0]]), 'TA', DATE)
    source.write_2d_grid(make_grid([[0.5]]), 'PSUM_PH', DATE)
    source.write_2d_grid(make_grid([[1.0]]), 'TA', datetime(2023, 1, 1))
    (tmp_path / 'notes.txt').write_text('not a grid')

    listing = source.list_2d_grids(datetime(2024, 1, 1), datetime(2024, 12, 31))

    assert listing == {DATE: {'TA', 'PSUM_PH'}}
    assert NetCDFGridSource(str(tmp_path / 'absent')).list_2d_grids(DATE, DATE) == {}


def test_observation_missing_values():
    """Test that sentinel and NaN observations become None"""
    station = StationData('S1', Coordinates(easting=0.0, northing=0.0, altitude=500.0))
    observation = MeteoData(DATE, station, {'TA': 275.0, 'RH': NODATA, 'VW': float('nan'), 'HS': None})

    assert observation.get('TA') == 275.0
    assert not observation.has('RH')
    assert not observation.has('VW')
    assert not observation.has('HS')

    observation.set('RH', NODATA)
    assert observation.get('RH') is None
    assert stations_with([observation], 'TA') == [observation]
    assert stations_with([observation], 'RH') == []
    assert station.altitude == 500.0


def test_sentinel_conversions():
    """Test scalar and array conversions of the missing-value sentinel"""
    assert is_missing(None) and is_missing(NODATA) and is_missing(float('nan'))
    assert to_missing(NODATA) is None
    assert to_missing(0.0) == 0.0
    assert from_missing(None) == NODATA

    array = sentinel_to_nan([1.0, NODATA])
    assert np.isnan(array[1])
    np.testing.assert_array_equal(nan_to_sentinel(array), [1.0, NODATA])
