import pytest
import shapely
import geopandas as gpd

from grid_zones.grid import GridStack
from grid_zones.zones import Zone
from synthetic import LON, LAT, TIMES, VALUES, cell_box, make_dataset


@pytest.fixture
def small_stack():
    return GridStack(VALUES, LON, LAT, TIMES, name='sst', unit='degC')


@pytest.fixture
def top_left():
    return Zone(cell_box(10.0, 50.0), name='top_left')


@pytest.fixture
def right_column():
    # cells (50, 11) and (51, 11)
    return Zone(shapely.box(10.6, 49.6, 11.4, 51.4), name='right')


@pytest.fixture
def nc_file(tmp_path):
    path = tmp_path / "sst.nc"
    make_dataset().to_netcdf(path)
    return path


@pytest.fixture
def zones_file(tmp_path):
    gdf = gpd.GeoDataFrame(
        {'name': ['top_left', 'right']},
        geometry=[cell_box(10.0, 50.0), shapely.box(10.6, 49.6, 11.4, 51.4)],
        crs="EPSG:4326")
    path = tmp_path / "zones.geojson"
    gdf.to_file(path, driver="GeoJSON")
    return path
