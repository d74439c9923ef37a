"""
GridSource: open a gridded dataset file and expose one variable as a GridStack.

Supported sources:
- netCDF (and anything else `xarray.open_dataset` recognizes), local path or 'file://' URL
- Zarr stores: local '*.zarr' directory, 'zip://' zipped store, 's3://' bucket path

The whole selected variable is read into memory; the source is never modified.
"""
import logging
import json
import re
import warnings
import zipfile
from pathlib import Path
from typing import *

import attrs
import fsspec
import numpy as np
import pyproj
import xarray as xr
import zarr
from zarr.errors import ZarrUserWarning

from . import units
from .config import SourceConfig, PipelineConfig
from .errors import PipelineCtx, FormatError, SourceIOError, ConfigError
from .grid import GridStack, NAT, TIME_DTYPE
from .tools import report, is_uniform, recursive_update

log = logging.getLogger(__name__)

# Recognized dimension names, lower case.
DIM_NAMES = {
    'lon': ('lon', 'longitude', 'long', 'x', 'nav_lon'),
    'lat': ('lat', 'latitude', 'y', 'nav_lat'),
    'time': ('time', 't', 'valid_time', 'date'),
    'depth': ('depth', 'lev', 'level', 'z', 'deptht', 'plev', 'height'),
}
# CF metadata identifying the dimension: (axis, standard_name, units)
CF_ATTRS = {
    'lon': ('X', 'longitude', ('degrees_east', 'degree_east', 'degree_e', 'degrees_e')),
    'lat': ('Y', 'latitude', ('degrees_north', 'degree_north', 'degree_n', 'degrees_n')),
    'time': ('T', 'time', ()),
    'depth': ('Z', 'depth', ()),
}


# ----------------------- Opening the source ----------------------- #

def _s3_options(store_options: Dict[str, Any]) -> Dict[str, Any]:
    s3_options = {
        'key': store_options.get('S3_ACCESS_KEY', None),
        'secret': store_options.get('S3_SECRET_KEY', None),
        'endpoint_url': store_options.get('S3_ENDPOINT_URL', None),
        'asynchronous': False,
    }
    s3_options = {k: v for k, v in s3_options.items() if v is not None}
    custom_options = json.loads(store_options.get('S3_OPTIONS', '{}'))
    return recursive_update(s3_options, custom_options)


def _is_zarr(url: str) -> bool:
    url = url.rstrip('/')
    return (url.startswith('zip://') or url.startswith('s3://')
            or url.endswith('.zarr') or url.endswith('.zarr.zip'))


def _zarr_store_open(url: str, store_options: Dict[str, Any]) -> zarr.storage.StoreLike:
    """
    Open a read only Zarr store for the URL.
    """
    if re.match(r'^s3://', url):
        fs = fsspec.filesystem('s3', **_s3_options(store_options))
        # Remove s3:// scheme from path for FsspecStore
        clean_path = url.replace('s3://', '')
        with warnings.catch_warnings():
            warnings.filterwarnings(
                "ignore",
                message=".*fs .* was not created with `asynchronous=True`.*",
                category=ZarrUserWarning,
            )
            return zarr.storage.FsspecStore(fs, path=clean_path, read_only=True)
    elif url.startswith('zip://') or url.endswith('.zip'):
        path = url[len('zip://'):] if url.startswith('zip://') else url
        _check_exists(path)
        return zarr.storage.ZipStore(path, mode='r')
    else:
        path = url[len('file://'):] if url.startswith('file://') else url
        _check_exists(path)
        return zarr.storage.LocalStore(path, read_only=True)


def _check_exists(path: str):
    if not Path(path).exists():
        raise FileNotFoundError(f"No such file or directory: '{path}'")


def open_dataset(url: str, store_options: Dict[str, Any] = None,
                 ctx: PipelineCtx = None) -> xr.Dataset:
    """
    Open the source with xarray. Missing file, permission problems and
    network failures raise SourceIOError, unrecognized content FormatError.
    An existing local path that is not a readable dataset (e.g. a directory
    without Zarr group metadata) is a FormatError.
    """
    store_options = store_options or {}
    ctx = ctx or PipelineCtx("open", [url])
    is_remote = url.startswith('s3://')
    try:
        if _is_zarr(url):
            store = _zarr_store_open(url, store_options)
        else:
            if is_remote:
                ctx.error("Only Zarr stores are supported as remote sources.")
            path = url[len('file://'):] if url.startswith('file://') else url
            _check_exists(path)
    except (FileNotFoundError, PermissionError, ConnectionError, TimeoutError) as e:
        raise ctx.error(f"Can not read source: {e}", SourceIOError) from e

    try:
        if _is_zarr(url):
            return xr.open_zarr(store, chunks=None, consolidated=None)
        return xr.open_dataset(path)
    except (PermissionError, ConnectionError, TimeoutError) as e:
        raise ctx.error(f"Can not read source: {e}", SourceIOError) from e
    except FileNotFoundError as e:
        # zarr reports a missing group as FileNotFoundError (GroupNotFoundError)
        if is_remote:
            raise ctx.error(f"Can not read source: {e}", SourceIOError) from e
        raise ctx.error(f"Not a gridded dataset: {e}") from e
    except (OSError, ValueError, KeyError, TypeError, zipfile.BadZipFile) as e:
        if isinstance(e, FormatError):
            raise
        raise ctx.error(f"Unrecognized gridded file format: {e}") from e


# ----------------------- Interpreting the dataset ----------------------- #

def _is_axis(da: xr.DataArray, dim: str, axis: str) -> bool:
    name = dim.lower()
    if name in DIM_NAMES[axis]:
        return True
    if dim not in da.coords:
        return False
    coord_attrs = da.coords[dim].attrs
    cf_axis, std_name, cf_units = CF_ATTRS[axis]
    return (str(coord_attrs.get('axis', '')).upper() == cf_axis
            or coord_attrs.get('standard_name', None) == std_name
            or str(coord_attrs.get('units', '')).lower() in cf_units)


def find_dim(da: xr.DataArray, axis: str, explicit: str | None, ctx: PipelineCtx) -> str | None:
    """
    Name of the dimension of `da` playing role of `axis` ('lon', 'lat', 'time', 'depth').
    The `explicit` name must exist. Return None if not found.
    """
    if explicit is not None:
        if explicit not in da.dims:
            ctx.dive(axis).error(f"Dimension '{explicit}' not found, variable dims: {da.dims}.")
        return explicit
    found = [d for d in da.dims if _is_axis(da, d, axis)]
    if len(found) > 1:
        ctx.dive(axis).error(f"Ambiguous {axis} dimension, candidates: {found}. Set it explicitly.")
    return found[0] if found else None


def select_variable(ds: xr.Dataset, variable: str | None, ctx: PipelineCtx) -> xr.DataArray:
    if variable is not None:
        if variable not in ds.data_vars:
            ctx.error(f"Variable '{variable}' not found, available: {list(ds.data_vars)}.")
        return ds[variable]
    candidates = [name for name, da in ds.data_vars.items()
                  if da.ndim >= 2 and not str(name).endswith(('_bnds', '_bounds'))]
    if len(candidates) != 1:
        ctx.error(f"Can not select the variable automatically, candidates: {candidates}. Set 'variable'.")
    return ds[candidates[0]]


def _lattice_coord(da: xr.DataArray, dim: str, ctx: PipelineCtx) -> np.ndarray:
    if dim not in da.coords or da.coords[dim].ndim != 1:
        ctx.dive(dim).error("Not a regular lattice: missing 1D coordinate values.")
    values = np.asarray(da.coords[dim].values)
    if not np.issubdtype(values.dtype, np.number):
        ctx.dive(dim).error(f"Not a regular lattice: non numeric coordinate of dtype {values.dtype}.")
    if not is_uniform(values):
        ctx.dive(dim).error("Not a regular lattice: coordinates not monotonic with a constant step.")
    return values.astype(float)


def _grid_crs(ds: xr.Dataset, da: xr.DataArray, cfg: SourceConfig, ctx: PipelineCtx) -> pyproj.CRS:
    crs_input = cfg.crs
    if crs_input is None:
        gm_name = da.attrs.get('grid_mapping', da.encoding.get('grid_mapping', None))
        candidates = [gm_name, 'spatial_ref', 'crs']
        for name in candidates:
            if name is None:
                continue
            gm = ds.variables.get(name, None)
            if gm is None:
                continue
            crs_input = gm.attrs.get('crs_wkt', gm.attrs.get('spatial_ref', None))
            if crs_input is not None:
                break
    try:
        return pyproj.CRS.from_user_input(crs_input or "EPSG:4326")
    except pyproj.exceptions.CRSError as e:
        raise ctx.dive('crs').error(f"Invalid CRS: {e}") from e


def _wrap_lon(da: xr.DataArray, lon_dim: str) -> xr.DataArray:
    lon = da.coords[lon_dim].values
    wrapped = ((lon + 180.0) % 360.0) - 180.0
    return da.assign_coords({lon_dim: wrapped}).sortby(lon_dim)


def _subset_bbox(da: xr.DataArray, lon_dim, lat_dim, bbox, ctx) -> xr.DataArray:
    lon_min, lat_min, lon_max, lat_max = bbox
    lon = da.coords[lon_dim].values
    lat = da.coords[lat_dim].values
    i_lon = np.flatnonzero((lon >= lon_min) & (lon <= lon_max))
    i_lat = np.flatnonzero((lat >= lat_min) & (lat <= lat_max))
    if len(i_lon) == 0 or len(i_lat) == 0:
        ctx.dive('bbox').error(f"Bounding box {bbox} does not intersect the grid.")
    return da.isel({lon_dim: i_lon, lat_dim: i_lat})


def _time_values(da: xr.DataArray, time_dim: str, ctx: PipelineCtx) -> np.ndarray:
    values = da.coords[time_dim].values if time_dim in da.coords else None
    if values is None:
        ctx.dive(time_dim).error("Time dimension without coordinate values.")
    if np.issubdtype(values.dtype, np.datetime64):
        return values.astype(TIME_DTYPE)
    try:
        # cftime dates of non standard calendars
        index = da.indexes[time_dim].to_datetimeindex()
        return np.asarray(index.values, dtype=TIME_DTYPE)
    except (AttributeError, ValueError, TypeError) as e:
        raise ctx.dive(time_dim).error(
            f"Time coordinate not convertible to datetime (dtype {values.dtype}): {e}") from e


def sort_by_time(times: np.ndarray, ctx: PipelineCtx) -> np.ndarray:
    """
    Return the index sorting `times` ascending.
    Duplicate timestamps are a fatal error.
    """
    idx_sort = np.argsort(times, kind='stable')
    sorted_times = times[idx_sort]
    duplicates = sorted_times[1:][np.diff(sorted_times) == np.timedelta64(0, 'ns')]
    if len(duplicates) > 0:
        ctx.error(f"Duplicate timestamps: {np.unique(duplicates)}.")
    return idx_sort


def _subset_time(da: xr.DataArray, time_dim: str, times: np.ndarray, time_range, ctx):
    dt_unit = units.DateTimeUnit()
    try:
        start, end = (dt_unit.parse(v) if v is not None else None for v in time_range)
    except ValueError as e:
        raise ctx.dive('time_range').error(str(e), ConfigError) from e
    mask = np.ones(len(times), dtype=bool)
    if start is not None:
        mask &= times >= start
    if end is not None:
        mask &= times <= end
    idx = np.flatnonzero(mask)
    if len(idx) == 0:
        ctx.dive('time_range').warning(f"No time slice within {time_range}.")
    return da.isel({time_dim: idx}), times[idx]


def stack_from_dataset(ds: xr.Dataset, cfg: SourceConfig = None, source: str = None) -> GridStack:
    """
    Create the GridStack of the configured variable of an opened dataset.
    """
    cfg = cfg or SourceConfig()
    source = source or cfg.path or "<dataset>"
    ctx = PipelineCtx("open", [str(source)])
    da = select_variable(ds, cfg.variable, ctx)
    ctx = ctx.dive(da.name)

    lon_dim = find_dim(da, 'lon', cfg.lon, ctx)
    lat_dim = find_dim(da, 'lat', cfg.lat, ctx)
    if lon_dim is None or lat_dim is None:
        ctx.error(f"Not a regular lattice: longitude or latitude dimension not found in {da.dims}.")
    time_dim = find_dim(da, 'time', cfg.time, ctx)
    depth_dim = find_dim(da, 'depth', cfg.depth_dim, ctx)

    if depth_dim is not None:
        if cfg.depth is None:
            log.info(f"Selecting the first level of '{depth_dim}'.")
            da = da.isel({depth_dim: 0})
        else:
            da = da.sel({depth_dim: cfg.depth}, method='nearest')
            log.info(f"Selected {depth_dim}={float(da.coords[depth_dim])} nearest to {cfg.depth}.")
    elif cfg.depth is not None:
        ctx.dive('depth').warning("No depth dimension, 'depth' ignored.")

    known = {lon_dim, lat_dim, time_dim}
    for dim in da.dims:
        if dim not in known:
            if da.sizes[dim] != 1:
                ctx.dive(dim).error(f"Unexpected dimension '{dim}' of size {da.sizes[dim]}.")
            da = da.isel({dim: 0})

    _lattice_coord(da, lon_dim, ctx)
    _lattice_coord(da, lat_dim, ctx)
    if cfg.lon_wrap:
        da = _wrap_lon(da, lon_dim)
        _lattice_coord(da, lon_dim, ctx)
    if cfg.bbox is not None:
        da = _subset_bbox(da, lon_dim, lat_dim, cfg.bbox, ctx)

    if time_dim is None:
        scalar_time = None
        for name in DIM_NAMES['time']:
            coord = da.coords.get(name, None)
            if coord is not None and coord.ndim == 0 and np.issubdtype(coord.dtype, np.datetime64):
                scalar_time = coord.values[()]
                break
        time = np.datetime64(scalar_time, 'ns') if scalar_time is not None else NAT
        times = np.array([time], dtype=TIME_DTYPE)
        da = da.expand_dims('__time__')
        time_dim = '__time__'
    else:
        times = _time_values(da, time_dim, ctx)
        if cfg.time_range is not None:
            da, times = _subset_time(da, time_dim, times, cfg.time_range, ctx)
        idx_sort = sort_by_time(times, ctx)
        da = da.isel({time_dim: idx_sort})
        times = times[idx_sort]

    da = da.transpose(time_dim, lat_dim, lon_dim)
    values = np.asarray(da.values).astype(float)
    if cfg.fill_value is not None:
        values[np.isclose(values, cfg.fill_value)] = np.nan

    unit = da.attrs.get('units', None)
    if cfg.unit is not None:
        try:
            values = units.convert(values, unit, cfg.unit)
        except ValueError as e:
            raise ctx.dive('unit').error(str(e), ConfigError) from e
        unit = cfg.unit

    stack = GridStack(
        values=values,
        lon=da.coords[lon_dim].values,
        lat=da.coords[lat_dim].values,
        times=times,
        crs=_grid_crs(ds, da, cfg, ctx),
        name=str(da.name),
        unit=unit,
        source=str(source),
    )
    log.info(f"Opened '{stack.name}' from {source}: {len(stack)} slices of {stack.shape}.")
    return stack


@report
def open_stack(path: str | Path = None, cfg: SourceConfig = None,
               config: PipelineConfig = None, **kwargs) -> GridStack:
    """
    Open gridded file `path` and return the GridStack of its variable.

    cfg: source options, defaults to `config.source`; `kwargs` overwrite its fields.
    config: pipeline configuration, used to resolve relative paths against
            the workdir and for remote store options.
    """
    if cfg is None:
        cfg = config.source if config is not None else SourceConfig()
    if kwargs:
        try:
            cfg = attrs.evolve(cfg, **kwargs)
        except (TypeError, ValueError) as e:
            raise ConfigError(str(e), PipelineCtx("open", ["SOURCE"])) from e
    path = path if path is not None else cfg.path
    if path is None:
        raise ConfigError("Source path not given.", PipelineCtx("open", ["SOURCE", "path"]))
    if config is not None:
        path = config.resolve(path)
        store_options = config.store_options()
    else:
        store_options = {}
    url = str(path)

    ds = open_dataset(url, store_options, PipelineCtx("open", [url]))
    try:
        return stack_from_dataset(ds, cfg, source=url)
    finally:
        ds.close()
