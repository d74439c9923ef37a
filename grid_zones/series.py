"""
SeriesAssembler: pair zonal samples with the timestamps of the stack.
"""
import logging
from pathlib import Path
from types import MappingProxyType
from typing import *

import attrs
import numpy as np
import polars as pl

from .grid import GridStack, to_time
from .sampler import ZonalSamples

log = logging.getLogger(__name__)


def _frozen_dict(values) -> Mapping[str, float]:
    return MappingProxyType(dict(values))


@attrs.define(frozen=True, eq=False)
class SeriesEntry:
    time: np.datetime64 = attrs.field(converter=to_time)
    values: Mapping[str, float] = attrs.field(converter=_frozen_dict)

    def __eq__(self, other):
        if not isinstance(other, SeriesEntry):
            return NotImplemented
        same_time = (self.time == other.time) or (np.isnat(self.time) and np.isnat(other.time))
        if not same_time or self.values.keys() != other.values.keys():
            return False
        return all(np.array_equal(self.values[k], other.values[k], equal_nan=True) for k in self.values)


@attrs.define(frozen=True, eq=False)
class TimeSeriesRecord:
    """
    Time series of the zonal statistics of a single zone, one entry per
    stack time slice in the stack order. Missing values are NaN.
    """
    zone: str
    zone_index: int
    entries: Tuple[SeriesEntry, ...] = attrs.field(converter=tuple)
    statistics: Tuple[str, ...] = attrs.field(converter=tuple)
    unit: Optional[str] = None
    cell_count: Optional[int] = None

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[SeriesEntry]:
        return iter(self.entries)

    def __getitem__(self, i: int) -> SeriesEntry:
        return self.entries[i]

    @property
    def times(self) -> np.ndarray:
        return np.array([e.time for e in self.entries], dtype='datetime64[ns]')

    def values(self, statistic: str = None) -> np.ndarray:
        statistic = self._statistic(statistic)
        return np.array([e.values[statistic] for e in self.entries], dtype=float)

    def pairs(self, statistic: str = None) -> List[Tuple[np.datetime64, float]]:
        """List of (time, value) of a single statistic, the only one by default."""
        statistic = self._statistic(statistic)
        return [(e.time, e.values[statistic]) for e in self.entries]

    def _statistic(self, statistic: Optional[str]) -> str:
        if statistic is None:
            if len(self.statistics) != 1:
                raise ValueError(f"Record holds statistics {self.statistics}, choose one.")
            return self.statistics[0]
        statistic = getattr(statistic, 'value', statistic)
        if statistic not in self.statistics:
            raise KeyError(f"Statistic '{statistic}' not in record, available: {self.statistics}.")
        return statistic

    def to_polars(self) -> pl.DataFrame:
        """
        DataFrame with columns: time, zone, <statistic>...
        Missing values are nulls.
        """
        columns = [
            pl.Series('time', self.times),
            pl.Series('zone', [self.zone] * len(self), dtype=pl.Utf8),
        ]
        columns.extend(pl.Series(s, self.values(s), nan_to_null=True) for s in self.statistics)
        return pl.DataFrame(columns)

    def to_csv(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_polars().write_csv(path)
        return path


def _check_time_axis(stack: GridStack, samples: ZonalSamples):
    if len(samples.times) != len(stack) \
            or not np.array_equal(samples.times.view('i8'), stack.times.view('i8')):
        raise ValueError(f"Samples of '{samples.statistic.value}' do not match the stack time axis.")


def assemble(stack: GridStack, samples: Union[ZonalSamples, Sequence[ZonalSamples]],
             zone: int | str = 0) -> TimeSeriesRecord:
    """
    Build the time series of `zone` (index or name) from one or more ZonalSamples
    (one per statistic) sampled from `stack`.
    Output has one entry per stack slice, in the stack order; no gap filling.
    """
    if isinstance(samples, ZonalSamples):
        samples = [samples]
    samples = list(samples)
    if len(samples) == 0:
        raise ValueError("No samples to assemble.")
    first = samples[0]
    statistics = [s.statistic.value for s in samples]
    if len(set(statistics)) != len(statistics):
        raise ValueError(f"Duplicate statistics in samples: {statistics}.")
    for s in samples:
        _check_time_axis(stack, s)
        if s.zone_names != first.zone_names:
            raise ValueError("Samples of different zone sets can not be assembled.")

    i_zone = first.zone_index(zone)
    entries = [
        SeriesEntry(stack.times[i_time],
                    {s.statistic.value: float(s.values[i_zone, i_time]) for s in samples})
        for i_time in range(len(stack))
    ]
    return TimeSeriesRecord(
        zone=first.zone_names[i_zone],
        zone_index=i_zone,
        entries=entries,
        statistics=statistics,
        unit=stack.unit,
        cell_count=int(first.cell_counts[i_zone]),
    )


def assemble_all(stack: GridStack, samples: Union[ZonalSamples, Sequence[ZonalSamples]]) \
        -> List[TimeSeriesRecord]:
    if isinstance(samples, ZonalSamples):
        samples = [samples]
    samples = list(samples)
    if len(samples) == 0:
        raise ValueError("No samples to assemble.")
    return [assemble(stack, samples, i) for i in range(len(samples[0].zone_names))]


def records_to_polars(records: Iterable[TimeSeriesRecord]) -> pl.DataFrame:
    """Concatenate records to a single long format DataFrame."""
    frames = [r.to_polars() for r in records]
    if not frames:
        return pl.DataFrame()
    return pl.concat(frames, how='diagonal')
