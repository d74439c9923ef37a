import datetime

import numpy as np
import pytest

from grid_zones import units


def test_parse_unit():
    assert units.parse_unit(None) == units.parse_unit('')
    assert units.parse_unit('1').dimensionless
    assert str(units.parse_unit('m / s')) == 'meter / second'
    assert units.convert(np.array([45.0]), 'degrees_north', 'degree')[0] == pytest.approx(45.0)
    with pytest.raises(ValueError):
        units.parse_unit('bogus_unit')


def test_convert():
    values = np.array([0.0, 10.0, np.nan])
    kelvin = units.convert(values, 'degC', 'K')
    assert np.allclose(kelvin[:2], [273.15, 283.15])
    assert np.isnan(kelvin[2])

    assert units.convert(values, 'm', 'm') is values
    assert np.allclose(units.convert(np.array([1500.0]), 'm', 'km'), [1.5])
    with pytest.raises(ValueError):
        units.convert(values, 'm', 's')


def test_datetime_parse():
    dt_unit = units.DateTimeUnit()
    expected = np.datetime64('2020-01-01T00:00', 'ns')
    assert dt_unit.parse('2020-01-01') == expected
    assert dt_unit.parse('2020-01-01T01:00:00+01:00') == expected
    assert dt_unit.parse(datetime.datetime(2020, 1, 1)) == expected
    assert dt_unit.parse(np.datetime64('2020-01-01', 'D')) == expected
    assert np.isnat(dt_unit.parse('NaT'))
    with pytest.raises(ValueError):
        dt_unit.parse('not a date')


def test_datetime_tz():
    dt_unit = units.DateTimeUnit(tz='+02:00')
    assert dt_unit.parse('2020-01-01 02:00') == np.datetime64('2020-01-01T00:00', 'ns')
    assert units.DateTimeUnit(tz='Europe/Prague').tzinfo is not None
    with pytest.raises(ValueError):
        units.DateTimeUnit(tz='Nowhere/Atlantis').tzinfo
