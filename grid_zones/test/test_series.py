import numpy as np
import polars as pl
import pytest

from grid_zones.grid import GridStack
from grid_zones.sampler import sample
from grid_zones.series import SeriesEntry, TimeSeriesRecord, assemble, assemble_all, records_to_polars
from synthetic import LON, LAT, TIMES, VALUES


def test_assemble_top_left(small_stack, top_left):
    samples = sample(small_stack, [top_left], 'mean')
    record = assemble(small_stack, samples, 0)
    assert isinstance(record, TimeSeriesRecord)
    assert len(record) == len(small_stack)
    assert record.zone == 'top_left'
    assert record.unit == 'degC'
    assert record.cell_count == 1
    assert record.pairs() == [(TIMES[0], 1.0), (TIMES[1], 2.0), (TIMES[2], 3.0)]
    assert record[0] == SeriesEntry(TIMES[0], {'mean': 1.0})
    assert np.array_equal(record.times, small_stack.times)


def test_assemble_statistics(small_stack, top_left, right_column):
    zones = [top_left, right_column]
    samples = [sample(small_stack, zones, 'mean'), sample(small_stack, zones, 'max')]
    record = assemble(small_stack, samples, 'right')
    assert record.statistics == ('mean', 'max')
    assert list(record.values('mean')) == [3.0, 4.0, 5.0]
    assert list(record.values('max')) == [4.0, 5.0, 6.0]
    with pytest.raises(ValueError):
        record.pairs()
    with pytest.raises(KeyError):
        record.values('min')

    records = assemble_all(small_stack, samples)
    assert [r.zone for r in records] == ['top_left', 'right']
    assert [r.zone_index for r in records] == [0, 1]


def test_assemble_order(small_stack, right_column):
    samples = sample(small_stack, [right_column])
    record = assemble(small_stack, samples)
    times = record.times
    assert np.all(times[1:] > times[:-1])
    for entry, grid in zip(record, small_stack):
        assert entry.time == grid.time


def test_assemble_mismatch(small_stack, top_left):
    samples = sample(small_stack, [top_left])
    shorter = GridStack(VALUES[:2], LON, LAT, TIMES[:2])
    with pytest.raises(ValueError):
        assemble(shorter, samples, 0)
    shifted = GridStack(VALUES, LON, LAT, TIMES + np.timedelta64(1, 'h'))
    with pytest.raises(ValueError):
        assemble(shifted, samples, 0)
    with pytest.raises(ValueError):
        assemble(small_stack, [samples, samples], 0)
    with pytest.raises(ValueError):
        assemble(small_stack, [], 0)
    with pytest.raises(KeyError):
        assemble(small_stack, samples, 'nowhere')


def test_missing_entries(top_left):
    values = VALUES.copy()
    values[1, 0, 0] = np.nan
    stack = GridStack(values, LON, LAT, TIMES)
    record = assemble(stack, sample(stack, [top_left]), 'top_left')
    assert len(record) == 3
    assert np.isnan(record[1].values['mean'])
    assert record[1] == SeriesEntry(TIMES[1], {'mean': np.nan})

    df = record.to_polars()
    assert df.columns == ['time', 'zone', 'mean']
    assert df.height == 3
    assert df['mean'].null_count() == 1
    assert df['time'].dtype == pl.Datetime('ns')


def test_to_csv(tmp_path, small_stack, top_left, right_column):
    records = assemble_all(small_stack, sample(small_stack, [top_left, right_column]))
    path = records[1].to_csv(tmp_path / "out" / "right.csv")
    assert path.exists()
    df = pl.read_csv(path)
    assert df.height == 3
    assert df['mean'].to_list() == [3.0, 4.0, 5.0]
    assert set(df['zone'].to_list()) == {'right'}

    combined = records_to_polars(records)
    assert combined.height == 6
