"""
ZoneSampler: per zone, per time slice statistic over the grid cells inside the zone.

Membership rule: a cell belongs to the zone if its center lies in the interior
of the zone polygon (holes excluded). A center exactly on the boundary is outside.
Missing cells are ignored; a zone without any valid cell gives NaN.
"""
import logging
from collections.abc import Mapping
from typing import *

import attrs
import joblib
import numpy as np
import shapely
import xarray as xr

from .errors import PipelineCtx, EmptyStackError, NoPolygonsError
from .grid import GridStack, TIME_DTYPE
from .reduce import Statistic
from .tools import report
from .zones import Zone

log = logging.getLogger(__name__)


def _readonly(values, dtype=float):
    arr = np.array(values, dtype=dtype, copy=True)
    arr.flags.writeable = False
    return arr


@attrs.define(frozen=True, eq=False)
class ZonalSamples(Mapping):
    """
    Result of the zonal sampling, read only mapping (zone index, time index) -> value.
    `values` is the (zone, time) array, NaN marks missing results.
    """
    values: np.ndarray = attrs.field(converter=_readonly)
    statistic: Statistic = attrs.field(converter=Statistic.parse)
    zone_names: Tuple[str, ...] = attrs.field(converter=tuple)
    times: np.ndarray = attrs.field(converter=lambda t: _readonly(t, TIME_DTYPE))
    cell_counts: np.ndarray = attrs.field(converter=lambda c: _readonly(c, int))

    def __attrs_post_init__(self):
        shape = (len(self.zone_names), len(self.times))
        if self.values.shape != shape:
            raise ValueError(f"Samples shape {self.values.shape} does not match (zone, time) {shape}.")

    def __getitem__(self, key: Tuple[int, int]) -> float:
        if not isinstance(key, tuple) or len(key) != 2:
            raise KeyError(key)
        i_zone, i_time = key
        if not (0 <= i_zone < self.values.shape[0] and 0 <= i_time < self.values.shape[1]):
            raise KeyError(key)
        return float(self.values[i_zone, i_time])

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        n_zones, n_times = self.values.shape
        for i_zone in range(n_zones):
            for i_time in range(n_times):
                yield (i_zone, i_time)

    def __len__(self) -> int:
        return self.values.size

    def zone_index(self, zone: int | str) -> int:
        if isinstance(zone, (int, np.integer)):
            if not 0 <= zone < len(self.zone_names):
                raise IndexError(f"Zone index {zone} out of range [0, {len(self.zone_names)}).")
            return int(zone)
        try:
            return self.zone_names.index(zone)
        except ValueError:
            raise KeyError(f"Unknown zone '{zone}', available: {self.zone_names}.") from None

    def zone_values(self, zone: int | str) -> np.ndarray:
        return self.values[self.zone_index(zone)]

    def to_dataarray(self) -> xr.DataArray:
        return xr.DataArray(
            self.values, dims=('zone', 'time'),
            coords=dict(zone=list(self.zone_names), time=self.times,
                        cell_count=('zone', self.cell_counts)),
            name=self.statistic.value)


def zone_mask(zone: Zone, lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
    """
    Boolean (lat, lon) mask of the cells with center inside the zone.
    The zone must be in the CRS of the lattice.
    """
    xx, yy = np.meshgrid(lon, lat)
    return shapely.contains_xy(zone.geometry, xx, yy)


def _sample_zone(stack: GridStack, zone: Zone, stat: Statistic) -> Tuple[np.ndarray, int]:
    mask = zone_mask(zone, stack.lon, stack.lat)
    count = int(np.sum(mask))
    if count == 0:
        return np.full(len(stack), np.nan), 0
    cells = stack.values[:, mask]       # (time, cell)
    return stat(cells, axis=1), count


def _zones_in_crs(stack: GridStack, zones: Sequence[Zone]) -> List[Zone]:
    return [z.to_crs(stack.crs) for z in zones]


def cell_counts(stack: GridStack, zones: Sequence[Zone]) -> np.ndarray:
    """Number of lattice cells with center inside each zone."""
    return np.array([int(np.sum(zone_mask(z, stack.lon, stack.lat)))
                     for z in _zones_in_crs(stack, zones)], dtype=int)


@report
def sample(stack: GridStack, zones: Sequence[Zone],
           statistic: Union[Statistic, str] = Statistic.MEAN, n_jobs: int = 1) -> ZonalSamples:
    """
    Compute the statistic over the cells of every zone for every time slice.

    Zones are independent; `n_jobs` other than 1 evaluates them in a
    joblib thread pool (-1 uses all CPUs).
    Raises EmptyStackError for an empty stack, NoPolygonsError for no zones.
    """
    ctx = PipelineCtx("sample", [stack.source or stack.name])
    stat = Statistic.parse(statistic)
    if len(stack) == 0:
        raise ctx.error("Zonal sampling of an empty stack.", EmptyStackError)
    zones = list(zones)
    if len(zones) == 0:
        raise ctx.error("No zones to sample.", NoPolygonsError)

    zones = _zones_in_crs(stack, zones)
    if n_jobs == 1:
        results = [_sample_zone(stack, z, stat) for z in zones]
    else:
        results = joblib.Parallel(n_jobs=n_jobs, prefer="threads")(
            joblib.delayed(_sample_zone)(stack, z, stat) for z in zones)

    names = [z.name if z.name is not None else str(i) for i, z in enumerate(zones)]
    for name, (_, count) in zip(names, results):
        if count == 0:
            ctx.dive(name).warning("Zone contains no cell center of the grid, results are missing.")
    return ZonalSamples(
        values=np.stack([values for values, _ in results]),
        statistic=stat,
        zone_names=names,
        times=stack.times,
        cell_counts=[count for _, count in results],
    )
