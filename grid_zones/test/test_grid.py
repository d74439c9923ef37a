import numpy as np
import pyproj
import pytest

from grid_zones.errors import FormatError
from grid_zones.grid import Grid, GridStack, Aggregate, Extent, cell_edges, NAT
from synthetic import LON, LAT, TIMES, VALUES


def test_grid():
    g = Grid(VALUES[0], LON, LAT, TIMES[0], name='sst', unit='degC')
    assert g.shape == (2, 2)
    assert g.time == TIMES[0]
    assert not g.is_aggregate
    assert g.crs == pyproj.CRS.from_epsg(4326)
    assert g.extent == Extent(9.5, 49.5, 11.5, 51.5)
    assert not g.missing.any()

    # read only copy
    source = VALUES[0].copy()
    g = Grid(source, LON, LAT)
    source[0, 0] = 100.0
    assert g.values[0, 0] == 1.0
    with pytest.raises(ValueError):
        g.values[0, 0] = 5.0
    assert np.isnat(g.time)


def test_grid_shape_mismatch():
    with pytest.raises(ValueError):
        Grid(np.zeros((3, 2)), LON, LAT)


def test_aggregate_grid():
    tag = Aggregate('mean', TIMES[0], TIMES[-1], 3)
    g = Grid(VALUES[0], LON, LAT, tag)
    assert g.is_aggregate
    da = g.to_dataarray()
    assert da.attrs['cell_methods'] == "time: mean"
    assert da.attrs['time_count'] == 3
    assert 'time' not in da.coords
    assert "3 slices" in str(tag)


def test_cell_edges():
    assert cell_edges(np.array([0.0, 1.0, 2.0])) == (-0.5, 2.5)
    assert cell_edges(np.array([5.0])) == (5.0, 5.0)


def test_stack(small_stack):
    assert len(small_stack) == 3
    assert small_stack.shape == (2, 2)
    g = small_stack[1]
    assert isinstance(g, Grid)
    assert g.time == TIMES[1]
    assert np.array_equal(g.values, VALUES[1])
    assert [grid.time for grid in small_stack] == list(TIMES)
    with pytest.raises(ValueError):
        small_stack.values[0, 0, 0] = 0.0

    da = small_stack.to_dataarray()
    assert da.dims == ('time', 'lat', 'lon')
    assert da.attrs['units'] == 'degC'

    info = small_stack.describe()
    assert info['variable'] == 'sst'
    assert info['shape'] == (3, 2, 2)
    assert info['time_range'] == (str(TIMES[0]), str(TIMES[-1]))
    assert info['missing_fraction'] == 0.0


def test_stack_time_order():
    with pytest.raises(FormatError):
        GridStack(VALUES, LON, LAT, TIMES[::-1])
    duplicates = np.array([TIMES[0], TIMES[0], TIMES[1]])
    with pytest.raises(FormatError):
        GridStack(VALUES, LON, LAT, duplicates)
    with pytest.raises(FormatError):
        GridStack(VALUES, LON, LAT, [TIMES[0], NAT, TIMES[2]])
    with pytest.raises(FormatError):
        GridStack(VALUES[:2], LON, LAT, TIMES)


def test_empty_stack():
    stack = GridStack(np.empty((0, 2, 2)), LON, LAT, [])
    assert len(stack) == 0
    assert list(stack) == []
    assert stack.describe()['time_range'] == (None, None)


def test_from_grids(small_stack):
    stack = GridStack.from_grids(list(small_stack), source="mem")
    assert np.array_equal(stack.values, VALUES)
    assert np.array_equal(stack.times, TIMES)

    other = Grid(VALUES[0], LON + 1.0, LAT, TIMES[2])
    with pytest.raises(FormatError):
        GridStack.from_grids([small_stack[0], other])
    projected = Grid(VALUES[0], LON, LAT, TIMES[2], crs="EPSG:3035")
    with pytest.raises(FormatError):
        GridStack.from_grids([small_stack[0], projected])
    aggregate = Grid(VALUES[0], LON, LAT, Aggregate('mean', TIMES[0], TIMES[1], 2))
    with pytest.raises(FormatError):
        GridStack.from_grids([small_stack[0], aggregate])
    with pytest.raises(FormatError):
        GridStack.from_grids([])
