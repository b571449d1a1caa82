"""
Tests for the terrain model.

Checks slope, aspect and curvature on analytic surfaces, the cached
statistics, sub-regions and the thread-safe lazy layer computation.
"""

import threading

import pytest
import numpy as np
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent / "src"))

from coordinate_systems import Coordinates, Grid2D
from terrain_model import TerrainModel


def make_terrain(values, cellsize=100.0):
    values = np.asarray(values, dtype=float)
    return TerrainModel(values.shape[1], values.shape[0], cellsize,
                        Coordinates(easting=0.0, northing=0.0), values)


def eastward_ramp(nrows=5, ncols=6, cellsize=100.0, gradient=0.1):
    x = (np.arange(ncols) + 0.5) * cellsize
    return make_terrain(np.tile(1000.0 + gradient * x, (nrows, 1)), cellsize)


def test_layers_have_grid_dimensions():
    """Test that derived layers match the elevation grid"""
    terrain = eastward_ramp()

    assert terrain.slope.shape == terrain.shape
    assert terrain.aspect.shape == terrain.shape
    assert terrain.curvature.shape == terrain.shape


def test_slope_and_aspect_of_ramp():
    """Test a surface rising to the east: constant slope facing west"""
    terrain = eastward_ramp(gradient=0.1)

    np.testing.assert_allclose(terrain.slope, np.degrees(np.arctan(0.1)))
    np.testing.assert_allclose(terrain.aspect, 270.0)


def test_aspect_of_northward_descent():
    """Test a surface descending to the north faces north"""
    y = (np.arange(5) + 0.5) * 100.0
    terrain = make_terrain(np.tile((2000.0 - 0.2 * y)[:, np.newaxis], (1, 4)))

    np.testing.assert_allclose(terrain.aspect, 0.0, atol=1e-9)
    np.testing.assert_allclose(terrain.slope, np.degrees(np.arctan(0.2)))


def test_flat_terrain():
    """Test that flat terrain has zero slope, aspect and curvature"""
    terrain = make_terrain(np.full((4, 4), 1500.0))

    assert np.all(terrain.slope == 0.0)
    assert np.all(terrain.aspect == 0.0)
    assert np.all(terrain.curvature == 0.0)


def test_curvature_sign():
    """Test that a peak has positive and a hollow negative curvature"""
    peak = np.full((5, 5), 1000.0)
    peak[2, 2] = 1100.0
    assert make_terrain(peak).curvature[2, 2] > 0.0

    hollow = np.full((5, 5), 1000.0)
    hollow[2, 2] = 900.0
    assert make_terrain(hollow).curvature[2, 2] < 0.0


def test_curvature_of_plane_interior_is_zero():
    """Test that inner cells of a plane have no curvature"""
    terrain = eastward_ramp()
    np.testing.assert_allclose(terrain.curvature[1:-1, 1:-1], 0.0, atol=1e-12)


def test_single_row_terrain():
    """Test that a single-row terrain still gets layers"""
    terrain = make_terrain([[1000.0, 1010.0, 1020.0]])

    assert terrain.slope.shape == (1, 3)
    assert np.all(np.isfinite(terrain.slope))


def test_statistics():
    """Test cached elevation and slope statistics"""
    terrain = make_terrain([[1000.0, 1100.0], [np.nan, 1300.0]])
    stats = terrain.get_statistics()

    assert stats['min_altitude'] == 1000.0
    assert stats['max_altitude'] == 1300.0
    assert stats['mean_altitude'] == pytest.approx(1133.333, rel=1e-4)
    assert 'mean_slope' in stats
    assert 'max_curvature' in stats


def test_layers_stale_until_update():
    """Test that layers are only recomputed on update()"""
    terrain = make_terrain(np.full((3, 3), 1000.0))
    assert np.all(terrain.slope == 0.0)

    terrain.values[:, 2] = 1100.0
    assert np.all(terrain.slope == 0.0)

    terrain.update()
    assert np.any(terrain.slope > 0.0)
    assert terrain.get_statistics()['max_altitude'] == 1100.0


def test_drop_curvature():
    """Test discarding the curvature layer"""
    peak = np.full((3, 3), 1000.0)
    peak[1, 1] = 1200.0
    terrain = make_terrain(peak)
    assert terrain.has_curvature()

    terrain.drop_curvature()
    assert not terrain.has_curvature()
    assert terrain.curvature is None


def test_subset_slices_layers():
    """Test that sub-regions keep the parent's derived layers"""
    rng = np.random.default_rng(42)
    terrain = make_terrain(1000.0 + 50.0 * rng.random((6, 6)))

    sub = terrain.subset(1, 2, 3, 3)

    assert isinstance(sub, TerrainModel)
    assert sub.shape == (3, 3)
    np.testing.assert_array_equal(sub.values, terrain.values[2:5, 1:4])
    np.testing.assert_array_equal(sub.slope, terrain.slope[2:5, 1:4])
    np.testing.assert_array_equal(sub.curvature, terrain.curvature[2:5, 1:4])
    assert sub.llcorner.easting == pytest.approx(100.0)
    assert sub.llcorner.northing == pytest.approx(200.0)


def test_from_grid_and_copy():
    """Test building a terrain model from a plain grid"""
    grid = Grid2D(2, 2, 10.0, Coordinates(easting=0.0, northing=0.0), np.array([[1.0, 2.0], [3.0, 4.0]]))
    terrain = TerrainModel.from_grid(grid)

    assert terrain.is_same_geolocalization(grid)
    clone = terrain.copy()
    assert isinstance(clone, TerrainModel)
    clone.values[0, 0] = 50.0
    assert terrain.values[0, 0] == 1.0

    assert repr(grid).startswith("Grid2D(2x2")
    assert repr(terrain).startswith("TerrainModel(2x2")
    assert repr(clone).startswith("TerrainModel(")


def test_copy_keeps_layers_as_they_stand():
    """Test that a copy keeps stale layers and a dropped curvature"""
    terrain = make_terrain(np.full((3, 3), 1000.0))
    assert np.all(terrain.slope == 0.0)
    terrain.values[1, 1] = 3000.0

    clone = terrain.copy()

    np.testing.assert_array_equal(clone.slope, terrain.slope)
    assert clone.get_statistics() == terrain.get_statistics()

    terrain.drop_curvature()
    assert terrain.copy().curvature is None

    clone.update()
    assert np.any(clone.slope > 0.0)
    assert np.all(terrain.slope == 0.0)


def test_concurrent_first_access():
    """Test that concurrent readers all see the same computed layers"""
    terrain = eastward_ramp(nrows=40, ncols=40)
    results = []

    def read_slope():
        results.append(terrain.slope)

    threads = [threading.Thread(target=read_slope) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 8
    assert all(result is results[0] for result in results)
