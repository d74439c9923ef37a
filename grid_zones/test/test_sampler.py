import logging

import numpy as np
import pyproj
import pytest
import shapely
import shapely.ops

from grid_zones.errors import EmptyStackError, NoPolygonsError
from grid_zones.grid import GridStack
from grid_zones.sampler import ZonalSamples, sample, cell_counts, zone_mask
from grid_zones.zones import Zone
from synthetic import LON, LAT, TIMES, VALUES, cell_box


def test_sample_top_left(small_stack, top_left):
    samples = sample(small_stack, [top_left], 'mean')
    assert isinstance(samples, ZonalSamples)
    assert samples.statistic.value == 'mean'
    assert samples.zone_names == ('top_left',)
    assert dict(samples) == {(0, 0): 1.0, (0, 1): 2.0, (0, 2): 3.0}
    assert list(samples.cell_counts) == [1]
    assert np.array_equal(samples.times, TIMES)


def test_sample_mapping(small_stack, top_left, right_column):
    samples = sample(small_stack, [top_left, right_column], 'mean')
    assert len(samples) == 6
    assert samples[(1, 0)] == 3.0
    assert list(samples.zone_values('right')) == [3.0, 4.0, 5.0]
    assert samples.zone_index('right') == 1
    with pytest.raises(KeyError):
        samples[(2, 0)]
    with pytest.raises(KeyError):
        samples[0]
    assert (0, 0) in samples
    assert 0 not in samples
    assert (0, 0, 0) not in samples
    with pytest.raises(KeyError):
        samples.zone_index('nowhere')
    with pytest.raises(IndexError):
        samples.zone_index(5)
    with pytest.raises(ValueError):
        samples.values[0, 0] = 0.0

    da = samples.to_dataarray()
    assert da.dims == ('zone', 'time')
    assert list(da.coords['zone'].values) == ['top_left', 'right']


def test_statistics(small_stack, right_column):
    assert list(sample(small_stack, [right_column], 'max').zone_values(0)) == [4.0, 5.0, 6.0]
    assert list(sample(small_stack, [right_column], 'min').zone_values(0)) == [2.0, 3.0, 4.0]
    assert np.allclose(sample(small_stack, [right_column], 'stddev').zone_values(0), 1.0)


def test_zone_independence(small_stack, top_left, right_column):
    alone = sample(small_stack, [right_column])
    together = sample(small_stack, [top_left, right_column])
    assert np.array_equal(alone.zone_values('right'), together.zone_values('right'))
    parallel = sample(small_stack, [top_left, right_column], n_jobs=2)
    assert np.array_equal(parallel.values, together.values)


def test_sample_idempotent(small_stack, right_column):
    first = sample(small_stack, [right_column], 'stddev')
    second = sample(small_stack, [right_column], 'stddev')
    assert np.array_equal(first.values, second.values)


def test_sample_missing(right_column, top_left):
    values = VALUES.copy()
    values[1, 0, 1] = np.nan        # one of the two right cells at t1
    values[:, 0, 0] = np.nan        # the top left cell everywhere
    stack = GridStack(values, LON, LAT, TIMES)
    samples = sample(stack, [top_left, right_column], 'mean')
    assert np.all(np.isnan(samples.zone_values('top_left')))
    assert list(samples.zone_values('right')) == [3.0, 5.0, 5.0]


def test_zone_without_cells(small_stack, caplog):
    far = Zone(cell_box(100.0, 0.0), name='far')
    with caplog.at_level(logging.WARNING, logger="grid_zones"):
        samples = sample(small_stack, [far])
    assert np.all(np.isnan(samples.zone_values('far')))
    assert list(samples.cell_counts) == [0]
    assert "no cell center" in caplog.text


def test_membership_rule(small_stack):
    # the center (10, 50) lies on the left edge of the box
    on_boundary = Zone(shapely.box(10.0, 49.5, 10.5, 50.5))
    everything = shapely.box(9.5, 49.5, 11.5, 51.5)
    with_hole = Zone(everything.difference(cell_box(10.0, 50.0)))
    assert list(cell_counts(small_stack, [on_boundary, Zone(everything), with_hole])) == [0, 4, 3]
    mask = zone_mask(with_hole, small_stack.lon, small_stack.lat)
    assert mask.shape == (2, 2)
    assert not mask[0, 0]
    assert sample(small_stack, [with_hole]).zone_values(0)[0] == 3.0


def test_reprojected_zone(small_stack):
    transformer = pyproj.Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
    geometry = shapely.ops.transform(transformer.transform, cell_box(10.0, 50.0))
    zone = Zone(geometry, crs="EPSG:3857", name='mercator')
    assert list(sample(small_stack, [zone]).zone_values(0)) == [1.0, 2.0, 3.0]


def test_empty_inputs(small_stack, top_left):
    with pytest.raises(NoPolygonsError):
        sample(small_stack, [])
    empty = GridStack(np.empty((0, 2, 2)), LON, LAT, [])
    with pytest.raises(EmptyStackError):
        sample(empty, [top_left])
