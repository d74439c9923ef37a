"""
Zones: polygon boundaries used to subset the grid cells.
"""
import logging
from pathlib import Path
from typing import *

import attrs
import geopandas as gpd
import numpy as np
import pyproj
import shapely
import shapely.ops

from .config import ZoneConfig, PipelineConfig
from .errors import PipelineCtx, SourceIOError, ConfigError
from .grid import to_crs, DEFAULT_CRS
from .tools import report

log = logging.getLogger(__name__)

Polygonal = Union[shapely.Polygon, shapely.MultiPolygon]


@attrs.define(frozen=True, eq=False)
class Zone:
    geometry: Polygonal
    crs: pyproj.CRS = attrs.field(default=None, converter=to_crs)
    name: Optional[str] = None
    properties: Dict[str, Any] = attrs.field(factory=dict)

    def __attrs_post_init__(self):
        if not isinstance(self.geometry, (shapely.Polygon, shapely.MultiPolygon)):
            raise ValueError(f"Zone geometry must be a Polygon or MultiPolygon, got {self.geometry.geom_type}.")
        if self.geometry.is_empty:
            raise ValueError(f"Zone '{self.name}' has an empty geometry.")

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.geometry.bounds

    def to_crs(self, crs) -> 'Zone':
        """Return the zone reprojected to `crs`."""
        crs = to_crs(crs)
        if crs == self.crs:
            return self
        transformer = pyproj.Transformer.from_crs(self.crs, crs, always_xy=True)
        geometry = shapely.ops.transform(transformer.transform, self.geometry)
        return attrs.evolve(self, geometry=geometry, crs=crs)


def zones_from_geometries(geometries: Iterable[Polygonal], crs=None,
                          names: Iterable[str] = None) -> List[Zone]:
    geometries = list(geometries)
    if names is None:
        names = [str(i) for i in range(len(geometries))]
    return [Zone(g, crs=crs, name=n) for g, n in zip(geometries, names)]


def _plain(value):
    # numpy scalars to python values
    if isinstance(value, np.generic):
        return value.item()
    return value


def zones_from_geodataframe(gdf: gpd.GeoDataFrame, cfg: ZoneConfig = None,
                            ctx: PipelineCtx = None) -> List[Zone]:
    cfg = cfg or ZoneConfig()
    ctx = ctx or PipelineCtx("zones", ["<GeoDataFrame>"])
    crs = gdf.crs
    if cfg.crs is not None:
        if crs is not None and pyproj.CRS.from_user_input(cfg.crs) != crs:
            gdf = gdf.to_crs(cfg.crs)
        crs = cfg.crs
    elif crs is None:
        ctx.dive('crs').warning(f"Zones without CRS, assuming {DEFAULT_CRS}.")

    if cfg.name_column is not None and cfg.name_column not in gdf.columns:
        ctx.dive('name_column').error(
            f"Column '{cfg.name_column}' not found, available: {list(gdf.columns)}.", ConfigError)

    zones = []
    geom_col = gdf.geometry.name
    for i, (idx, row) in enumerate(gdf.iterrows()):
        geometry = row[geom_col]
        if geometry is None or geometry.is_empty:
            ctx.dive(i).warning("Empty geometry skipped.")
            continue
        if not isinstance(geometry, (shapely.Polygon, shapely.MultiPolygon)):
            ctx.dive(i).error(f"Expected polygonal geometry, got {geometry.geom_type}.")
        name = str(row[cfg.name_column]) if cfg.name_column is not None else str(idx)
        properties = {str(k): _plain(v) for k, v in row.items() if k != geom_col}
        zones.append(Zone(geometry, crs=crs, name=name, properties=properties))
    return zones


@report
def load_zones(path: str | Path = None, cfg: ZoneConfig = None,
               config: PipelineConfig = None, **kwargs) -> List[Zone]:
    """
    Read polygon boundaries from a vector file (GeoJSON, Shapefile, GeoPackage, ...).
    One Zone per feature, in file order. Features with empty geometry are skipped.
    """
    if cfg is None:
        cfg = config.zones if config is not None else ZoneConfig()
    if kwargs:
        cfg = attrs.evolve(cfg, **kwargs)
    path = path if path is not None else cfg.path
    if path is None:
        raise ConfigError("Zones path not given.", PipelineCtx("zones", ["ZONES", "path"]))
    if config is not None:
        path = config.resolve(path)
    ctx = PipelineCtx("zones", [str(path)])

    if "://" not in str(path) and not Path(path).exists():
        ctx.error(f"Can not read zones: no such file '{path}'.", SourceIOError)
    try:
        gdf = gpd.read_file(path, layer=cfg.layer) if cfg.layer else gpd.read_file(path)
    except (PermissionError, ConnectionError, TimeoutError) as e:
        raise ctx.error(f"Can not read zones: {e}", SourceIOError) from e
    except Exception as e:
        raise ctx.error(f"Unrecognized vector file format: {e}") from e

    zones = zones_from_geodataframe(gdf, cfg, ctx)
    log.info(f"Loaded {len(zones)} zones from {path}.")
    return zones
