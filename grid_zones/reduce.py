"""
Reduction of a GridStack along the time axis.

The set of statistics is closed: `Statistic` maps every name to a pure
NaN-aware reduction. Missing values are excluded, a cell (or a zone) without
any valid value results in NaN.
"""
import enum
import logging
import warnings
from typing import *

import numpy as np

from .errors import PipelineCtx, EmptyStackError
from .grid import Grid, GridStack, Aggregate
from .tools import report

log = logging.getLogger(__name__)


def _quiet(fn):
    # All-NaN slices produce NaN, numpy additionally warns about them.
    def reduce_fn(values: np.ndarray, axis: int) -> np.ndarray:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            return fn(values, axis=axis)
    return reduce_fn


def _stddev(values, axis):
    # Population standard deviation.
    return np.nanstd(values, axis=axis, ddof=0)


class Statistic(enum.Enum):
    MEAN = "mean"
    STDDEV = "stddev"
    MIN = "min"
    MAX = "max"

    @classmethod
    def _missing_(cls, value):
        aliases = {'std': 'stddev', 'sd': 'stddev', 'average': 'mean', 'avg': 'mean'}
        if isinstance(value, str):
            value = value.lower()
            value = aliases.get(value, value)
            for member in cls:
                if member.value == value:
                    return member
        return None

    @classmethod
    def parse(cls, value: Union['Statistic', str]) -> 'Statistic':
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown statistic '{value}', "
                             f"expected one of {[s.value for s in cls]}.") from None

    def __call__(self, values: np.ndarray, axis: int) -> np.ndarray:
        return _REDUCTIONS[self](values, axis)


_REDUCTIONS = {
    Statistic.MEAN: _quiet(np.nanmean),
    Statistic.STDDEV: _quiet(_stddev),
    Statistic.MIN: _quiet(np.nanmin),
    Statistic.MAX: _quiet(np.nanmax),
}


@report
def reduce(stack: GridStack, statistic: Union[Statistic, str] = Statistic.MEAN) -> Grid:
    """
    Reduce the stack along time to a single aggregate Grid.

    For every lattice cell the statistic is computed over the non-missing
    values of all time slices; cells missing in every slice stay missing.
    Raises EmptyStackError for a stack without any time slice.
    """
    ctx = PipelineCtx("reduce", [stack.source or stack.name])
    stat = Statistic.parse(statistic)
    if len(stack) == 0:
        raise ctx.error("Temporal reduction of an empty stack.", EmptyStackError)

    values = stat(stack.values, axis=0)
    n_missing = int(np.sum(np.isnan(values)))
    if n_missing:
        log.debug(f"{stat.value}: {n_missing} cells without any valid value.")

    tag = Aggregate(stat.value, stack.times[0], stack.times[-1], len(stack))
    return Grid(values, stack.lon, stack.lat, tag,
                crs=stack.crs, name=f"{stack.name}_{stat.value}", unit=stack.unit)


def reduce_all(stack: GridStack, statistics: Iterable[Union[Statistic, str]]) -> Dict[str, Grid]:
    stats = [Statistic.parse(s) for s in statistics]
    return {s.value: reduce(stack, s) for s in stats}
