import geopandas as gpd
import pyproj
import pytest
import shapely

from grid_zones.errors import FormatError, SourceIOError, ConfigError
from grid_zones.zones import Zone, load_zones, zones_from_geometries, zones_from_geodataframe
from synthetic import cell_box


def test_zone():
    zone = Zone(shapely.box(10.0, 50.0, 11.0, 51.0), name='a')
    assert zone.crs == pyproj.CRS.from_epsg(4326)
    assert zone.bounds == (10.0, 50.0, 11.0, 51.0)
    with pytest.raises(ValueError):
        Zone(shapely.Point(10.0, 50.0))
    with pytest.raises(ValueError):
        Zone(shapely.Polygon())


def test_zone_to_crs():
    zone = Zone(shapely.box(10.0, 50.0, 11.0, 51.0), name='a')
    assert zone.to_crs("EPSG:4326") is zone
    mercator = zone.to_crs("EPSG:3857")
    assert mercator.crs == pyproj.CRS.from_epsg(3857)
    assert mercator.name == 'a'
    assert mercator.bounds[0] == pytest.approx(1113194.9, rel=1e-6)
    back = mercator.to_crs("EPSG:4326")
    assert back.bounds == pytest.approx(zone.bounds)


def test_zones_from_geometries():
    zones = zones_from_geometries([cell_box(10, 50), cell_box(11, 51)])
    assert [z.name for z in zones] == ['0', '1']
    zones = zones_from_geometries([cell_box(10, 50)], crs="EPSG:4326", names=['x'])
    assert zones[0].name == 'x'


def test_load_zones(zones_file):
    zones = load_zones(zones_file, name_column='name')
    assert [z.name for z in zones] == ['top_left', 'right']
    assert zones[0].crs == pyproj.CRS.from_epsg(4326)
    assert zones[0].geometry.contains(shapely.Point(10.0, 50.0))

    zones = load_zones(zones_file)
    assert [z.name for z in zones] == ['0', '1']
    assert zones[1].properties['name'] == 'right'


def test_load_zones_errors(tmp_path, zones_file):
    with pytest.raises(SourceIOError):
        load_zones(tmp_path / "missing.geojson")

    garbage = tmp_path / "garbage.geojson"
    garbage.write_text("not a vector file")
    with pytest.raises(FormatError):
        load_zones(garbage)

    with pytest.raises(ConfigError):
        load_zones(zones_file, name_column='zone_name')

    points = tmp_path / "points.geojson"
    gpd.GeoDataFrame({'name': ['p']}, geometry=[shapely.Point(10, 50)], crs="EPSG:4326") \
        .to_file(points, driver="GeoJSON")
    with pytest.raises(FormatError):
        load_zones(points)

    with pytest.raises(ConfigError):
        load_zones()


def test_geodataframe_crs():
    gdf = gpd.GeoDataFrame({'name': ['a']}, geometry=[shapely.box(0, 0, 1, 1)], crs="EPSG:3857")
    zones = zones_from_geodataframe(gdf)
    assert zones[0].crs == pyproj.CRS.from_epsg(3857)

    # missing CRS is assumed geographic
    gdf = gpd.GeoDataFrame({'name': ['a']}, geometry=[shapely.box(0, 0, 1, 1)])
    zones = zones_from_geodataframe(gdf)
    assert zones[0].crs == pyproj.CRS.from_epsg(4326)
