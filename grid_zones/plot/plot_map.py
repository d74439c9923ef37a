"""
Rendering sinks of Grids: static matplotlib map and interactive plotly map.
"""
from typing import *

import matplotlib.pyplot as plt
import numpy as np
import plotly.graph_objects as go
import pyproj
import shapely

from ..grid import Grid
from ..zones import Zone


def _rings(geometry) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    polygons = geometry.geoms if isinstance(geometry, shapely.MultiPolygon) else [geometry]
    for polygon in polygons:
        for ring in [polygon.exterior, *polygon.interiors]:
            x, y = ring.xy
            yield np.asarray(x), np.asarray(y)


def _title(grid: Grid) -> str:
    unit = f" [{grid.unit}]" if grid.unit else ""
    return f"{grid.name}{unit}, {grid.time}"


def plot_grid(grid: Grid, zones: Sequence[Zone] = None, ax=None, cmap: str = 'viridis'):
    """
    Color map of the grid cells, missing cells left blank.
    Zone outlines are drawn over the map in the grid CRS.
    Returns the matplotlib Axes.
    """
    if ax is None:
        fig, ax = plt.subplots()
    values = np.ma.masked_invalid(grid.values)
    mesh = ax.pcolormesh(grid.lon, grid.lat, values, shading='nearest', cmap=cmap)
    ax.figure.colorbar(mesh, ax=ax, label=grid.unit or "")
    for zone in zones or []:
        zone = zone.to_crs(grid.crs)
        for x, y in _rings(zone.geometry):
            ax.plot(x, y, color='red', linewidth=1.0)
    ax.set_xlabel("lon")
    ax.set_ylabel("lat")
    ax.set_title(_title(grid))
    return ax


def _to_lonlat(grid: Grid, x: np.ndarray, y: np.ndarray):
    if grid.crs.is_geographic:
        return x, y
    transformer = pyproj.Transformer.from_crs(grid.crs, "EPSG:4326", always_xy=True)
    return transformer.transform(x, y)


def interactive_map(grid: Grid, zones: Sequence[Zone] = None) -> go.Figure:
    """
    Plotly map of the cell centers colored by value, zone outlines as lines.
    """
    xx, yy = np.meshgrid(grid.lon, grid.lat)
    valid = ~np.isnan(grid.values)
    lon, lat = _to_lonlat(grid, xx[valid], yy[valid])
    values = grid.values[valid]

    fig = go.Figure()
    fig.add_trace(go.Scattermap(
        lat=lat, lon=lon, mode='markers',
        marker=go.scattermap.Marker(size=10, opacity=0.8, color=values,
                                       colorscale='Viridis', showscale=True),
        text=[f"{v:.4g}" for v in values], hoverinfo='text', name=grid.name
    ))
    for zone in zones or []:
        zone = zone.to_crs("EPSG:4326")
        zone_lon, zone_lat = [], []
        for x, y in _rings(zone.geometry):
            zone_lon.extend(list(x) + [None])
            zone_lat.extend(list(y) + [None])
        fig.add_trace(go.Scattermap(
            lat=zone_lat, lon=zone_lon, mode='lines',
            line=dict(width=2, color='red'), name=zone.name or "zone"
        ))

    if len(values):
        center = dict(lat=float(np.mean(lat)), lon=float(np.mean(lon)))
    else:
        center = dict(lat=0, lon=0)
    fig.update_layout(
        map=dict(style="open-street-map", center=center, zoom=3),
        margin=dict(l=0, r=0, t=30, b=0), height=600,
        title=_title(grid), showlegend=False
    )
    return fig
