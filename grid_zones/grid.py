"""
Data model of the gridded values.

Grid      - single 2D field (lat, lon) at one time instant or an aggregate over time.
GridStack - time ordered sequence of Grids sharing one lattice and CRS,
            stored as a single (time, lat, lon) array.

All arrays are copied on construction and flagged read-only.
"""
import logging
from typing import *

import attrs
import numpy as np
import pyproj
import xarray as xr

from .errors import PipelineCtx

log = logging.getLogger(__name__)

DEFAULT_CRS = "EPSG:4326"
TIME_DTYPE = 'datetime64[ns]'
NAT = np.datetime64('NaT', 'ns')


def _readonly(dtype):
    def convert(values) -> np.ndarray:
        arr = np.array(values, dtype=dtype, copy=True)
        arr.flags.writeable = False
        return arr
    return convert


def to_crs(crs) -> pyproj.CRS:
    """pyproj.CRS from any user input, None means geographic WGS84."""
    if crs is None:
        crs = DEFAULT_CRS
    if isinstance(crs, pyproj.CRS):
        return crs
    return pyproj.CRS.from_user_input(crs)


def to_time(value) -> np.datetime64:
    if value is None:
        return NAT
    return np.datetime64(value, 'ns')


def _time_or_aggregate(value):
    if isinstance(value, Aggregate):
        return value
    return to_time(value)


def cell_edges(centers: np.ndarray) -> Tuple[float, float]:
    """
    Return (min, max) of the cell edges of a regular 1D lattice given by cell centers.
    A single cell has zero width.
    """
    if len(centers) == 0:
        return (np.nan, np.nan)
    lo, hi = float(np.min(centers)), float(np.max(centers))
    if len(centers) < 2:
        return (lo, hi)
    half = abs(float(centers[1] - centers[0])) / 2.0
    return (lo - half, hi + half)


@attrs.define(frozen=True)
class Extent:
    lon_min: float
    lat_min: float
    lon_max: float
    lat_max: float

    @classmethod
    def from_centers(cls, lon: np.ndarray, lat: np.ndarray) -> 'Extent':
        lon_min, lon_max = cell_edges(lon)
        lat_min, lat_max = cell_edges(lat)
        return cls(lon_min, lat_min, lon_max, lat_max)

    def as_tuple(self):
        return (self.lon_min, self.lat_min, self.lon_max, self.lat_max)


@attrs.define(frozen=True)
class Aggregate:
    """
    Replaces the timestamp of a Grid that summarizes several time slices.
    """
    statistic: str
    start: np.datetime64 = attrs.field(converter=to_time)
    end: np.datetime64 = attrs.field(converter=to_time)
    count: int

    def __str__(self):
        return f"{self.statistic} over {self.count} slices [{self.start}, {self.end}]"


@attrs.define(frozen=True, eq=False)
class Grid:
    values: np.ndarray = attrs.field(converter=_readonly(float))
    lon: np.ndarray = attrs.field(converter=_readonly(float))
    lat: np.ndarray = attrs.field(converter=_readonly(float))
    time: Union[np.datetime64, Aggregate] = attrs.field(default=NAT, converter=_time_or_aggregate)
    crs: pyproj.CRS = attrs.field(default=None, converter=to_crs)
    name: str = "values"
    unit: Optional[str] = None

    def __attrs_post_init__(self):
        shape = (len(self.lat), len(self.lon))
        if self.values.shape != shape:
            raise ValueError(f"Grid values shape {self.values.shape} does not match lattice (lat, lon) {shape}.")

    @property
    def is_aggregate(self) -> bool:
        return isinstance(self.time, Aggregate)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def extent(self) -> Extent:
        return Extent.from_centers(self.lon, self.lat)

    @property
    def missing(self) -> np.ndarray:
        return np.isnan(self.values)

    def to_dataarray(self) -> xr.DataArray:
        attrs_ = {'units': self.unit or '', 'crs_wkt': self.crs.to_wkt()}
        if self.is_aggregate:
            attrs_.update(cell_methods=f"time: {self.time.statistic}",
                          time_start=str(self.time.start),
                          time_end=str(self.time.end),
                          time_count=self.time.count)
            coords = dict(lat=self.lat, lon=self.lon)
        else:
            coords = dict(lat=self.lat, lon=self.lon, time=self.time)
        return xr.DataArray(self.values, dims=('lat', 'lon'), coords=coords,
                            name=self.name, attrs=attrs_)


@attrs.define(frozen=True, eq=False)
class GridStack:
    """
    Ordered sequence of Grids with strictly increasing timestamps.
    An empty stack (no time slice) is valid; the operations requiring
    data raise EmptyStackError for it.
    """
    values: np.ndarray = attrs.field(converter=_readonly(float))
    lon: np.ndarray = attrs.field(converter=_readonly(float))
    lat: np.ndarray = attrs.field(converter=_readonly(float))
    times: np.ndarray = attrs.field(converter=_readonly(TIME_DTYPE))
    crs: pyproj.CRS = attrs.field(default=None, converter=to_crs)
    name: str = "values"
    unit: Optional[str] = None
    source: Optional[str] = attrs.field(default=None, repr=False)

    def __attrs_post_init__(self):
        ctx = PipelineCtx("stack", [self.source or self.name])
        shape = (len(self.times), len(self.lat), len(self.lon))
        if self.values.shape != shape:
            ctx.error(f"Stack values shape {self.values.shape} does not match (time, lat, lon) {shape}.")
        if len(self.times) > 1:
            if np.any(np.isnat(self.times)):
                ctx.error("Invalid (NaT) timestamps in a multi slice stack.")
            steps = np.diff(self.times)
            if not np.all(steps > np.timedelta64(0, 'ns')):
                ctx.error(f"Timestamps must be strictly increasing, got {self.times}.")

    @classmethod
    def from_grids(cls, grids: Sequence[Grid], source: str = None) -> 'GridStack':
        """
        Stack Grids sharing the same lattice and CRS. The grids must be
        given in ascending time order.
        """
        ctx = PipelineCtx("stack", [source or "grids"])
        if len(grids) == 0:
            ctx.error("Can not infer the lattice of an empty grid sequence.")
        first = grids[0]
        for i, g in enumerate(grids[1:], start=1):
            if g.shape != first.shape \
                    or not np.allclose(g.lon, first.lon) \
                    or not np.allclose(g.lat, first.lat):
                ctx.dive(i).error("Grid lattice differs from the first grid.")
            if g.crs != first.crs:
                ctx.dive(i).error(f"Grid CRS {g.crs.name} differs from {first.crs.name}.")
            if g.is_aggregate:
                ctx.dive(i).error("Aggregate grid can not be a stack member.")
        return cls(values=np.stack([g.values for g in grids]),
                   lon=first.lon, lat=first.lat,
                   times=np.array([g.time for g in grids], dtype=TIME_DTYPE),
                   crs=first.crs, name=first.name, unit=first.unit, source=source)

    def __len__(self) -> int:
        return len(self.times)

    def __getitem__(self, i: int) -> Grid:
        return Grid(self.values[i], self.lon, self.lat, self.times[i],
                    crs=self.crs, name=self.name, unit=self.unit)

    def __iter__(self) -> Iterator[Grid]:
        for i in range(len(self)):
            yield self[i]

    @property
    def shape(self) -> Tuple[int, int]:
        """Shape of the lattice (lat, lon)."""
        return (len(self.lat), len(self.lon))

    @property
    def extent(self) -> Extent:
        return Extent.from_centers(self.lon, self.lat)

    def to_dataarray(self) -> xr.DataArray:
        return xr.DataArray(
            self.values, dims=('time', 'lat', 'lon'),
            coords=dict(time=self.times, lat=self.lat, lon=self.lon),
            name=self.name,
            attrs={'units': self.unit or '', 'crs_wkt': self.crs.to_wkt()})

    def describe(self) -> Dict[str, Any]:
        if len(self) > 0:
            time_range = (str(self.times[0]), str(self.times[-1]))
        else:
            time_range = (None, None)
        return dict(
            variable=self.name,
            unit=self.unit,
            shape=(len(self),) + self.shape,
            time_range=time_range,
            extent=self.extent.as_tuple(),
            crs=self.crs.to_string(),
            missing_fraction=float(np.mean(np.isnan(self.values))) if self.values.size else 0.0,
        )
