"""
Shared fixtures: small synthetic Landsat scene collections on a 30 m UTM grid.
"""

import matplotlib

matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest
import rioxarray  # noqa: F401
import xarray as xr

from mangrove_extent.sensors import DEFAULT_COLLECTION, FEATURE_BANDS, get_product


CRS = 'EPSG:32750'
SCALE = 30.0
X0 = 500000.0
Y0 = 9700000.0

# Collection 2 qa_pixel values
CLEAR_QA = 21824
CLOUD_QA = 22280
SHADOW_QA = CLEAR_QA | (1 << 4)
WATER_QA = CLEAR_QA | (1 << 7)

# Collection 1 pixel_qa values
C1_CLEAR_QA = 66
C1_L7_CLOUD_QA = (1 << 5) | (1 << 7)
C1_SHADOW_QA = 1 << 3

# Surface reflectance of the two cover types
MANGROVE_REFLECTANCE = {
    'BLUE': 0.03, 'GREEN': 0.05, 'RED': 0.03,
    'NIR': 0.35, 'SWIR1': 0.15, 'SWIR2': 0.06,
}
OTHER_REFLECTANCE = {
    'BLUE': 0.08, 'GREEN': 0.10, 'RED': 0.15,
    'NIR': 0.20, 'SWIR1': 0.30, 'SWIR2': 0.25,
}


# ============================================================================
# GRID HELPERS
# ============================================================================

def grid_coords(ny, nx):
    """Pixel-centre coordinates, x ascending and y descending."""
    x = X0 + SCALE / 2 + SCALE * np.arange(nx)
    y = Y0 - SCALE / 2 - SCALE * np.arange(ny)
    return {'y': y, 'x': x}


def make_raster(values, name=None, crs=CRS):
    """(y, x) DataArray on the test grid."""
    values = np.asarray(values, dtype=np.float32)
    ny, nx = values.shape
    da = xr.DataArray(values, coords=grid_coords(ny, nx), dims=('y', 'x'), name=name)
    if crs is not None:
        da = da.rio.write_crs(crs)
    return da


def make_datacube(sensor, dates, reflectance, qa=None, shape=None, collection=DEFAULT_COLLECTION):
    """
    Raw scene collection in digital numbers.

    Parameters
    ----------
    sensor : str
        Sensor generation whose source band names are used
    dates : list of str
        Acquisition dates
    reflectance : dict
        {BLUE..SWIR2: scalar, (y, x) or (time, y, x) physical reflectance};
        NaN is written as the collection's fill value
    qa : array, optional
        QA values (scalar, (y, x) or (time, y, x)); clear if None
    shape : tuple, optional
        (ny, nx) when every input is scalar
    collection : str
        Landsat collection whose QA band, scale and offset are used
    """
    spec = get_product(sensor, collection)
    times = pd.to_datetime(dates, format='ISO8601')
    nt = len(times)

    if shape is None:
        arrays = [np.asarray(v) for v in reflectance.values() if np.ndim(v) >= 2]
        shape = arrays[0].shape[-2:]
    ny, nx = shape

    def full(value, dtype):
        value = np.asarray(value)
        return np.broadcast_to(value, (nt, ny, nx)).astype(dtype)

    dn_dtype = np.uint16 if collection == 'c2' else np.int16
    data_vars = {}
    for name, source in spec['bands'].items():
        value = np.asarray(reflectance[name], dtype=float)
        dn = np.round((value - spec['offset']) / spec['scale_factor'])
        dn = np.where(np.isnan(value), spec['fill_value'], dn)
        data_vars[source] = (('time', 'y', 'x'), full(dn, dn_dtype))

    if qa is None:
        qa = CLEAR_QA if collection == 'c2' else C1_CLEAR_QA
    data_vars[spec['qa_band']] = (('time', 'y', 'x'), full(qa, np.uint16))

    coords = {'time': times, **grid_coords(ny, nx)}
    cube = xr.Dataset(data_vars, coords=coords).rio.write_crs(CRS)
    cube.attrs['landsat_collection'] = collection
    return cube


def cover_reflectance(mangrove_mask):
    """Per-band reflectance arrays with mangrove where the mask is True."""
    mangrove_mask = np.asarray(mangrove_mask, dtype=bool)
    return {
        band: np.where(mangrove_mask, MANGROVE_REFLECTANCE[band], OTHER_REFLECTANCE[band])
        for band in MANGROVE_REFLECTANCE
    }


def make_samples(n_per_class=30, seed=0):
    """Labelled feature rows with well separated classes."""
    rng = np.random.default_rng(seed)
    rows = []
    for label, centre in ((1, 0.8), (0, 0.1)):
        values = rng.normal(centre, 0.02, size=(n_per_class, len(FEATURE_BANDS)))
        frame = pd.DataFrame(values, columns=FEATURE_BANDS)
        frame['landcover'] = label
        rows.append(frame)
    return pd.concat(rows, ignore_index=True)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def mangrove_block():
    """10 x 10 grid with a 5 x 5 mangrove stand in the upper left corner."""
    mask = np.zeros((10, 10), dtype=bool)
    mask[:5, :5] = True
    return mask


@pytest.fixture
def landsat7_cube(mangrove_block):
    """Three clear Landsat 7 scenes in 2000 and one in 2002."""
    return make_datacube(
        'landsat7',
        ['2000-02-10', '2000-06-15', '2000-12-31', '2002-07-01'],
        cover_reflectance(mangrove_block),
    )


@pytest.fixture
def landsat8_cube(mangrove_block):
    """Two clear Landsat 8 scenes in 2014."""
    return make_datacube(
        'landsat8',
        ['2014-03-01', '2014-09-01'],
        cover_reflectance(mangrove_block),
    )


@pytest.fixture
def training_samples():
    return make_samples()


@pytest.fixture
def label_points(mangrove_block):
    """Mangrove and non-mangrove points at pixel centres of the test grid."""
    gpd = pytest.importorskip('geopandas')
    from shapely.geometry import Point

    coords = grid_coords(*mangrove_block.shape)
    mangrove, other = [], []
    for i in range(mangrove_block.shape[0]):
        for j in range(mangrove_block.shape[1]):
            point = Point(coords['x'][j], coords['y'][i])
            (mangrove if mangrove_block[i, j] else other).append(point)

    mangrove_points = gpd.GeoDataFrame({'landcover': [1] * len(mangrove)}, geometry=mangrove, crs=CRS)
    other_points = gpd.GeoDataFrame({'landcover': [0] * len(other)}, geometry=other, crs=CRS)
    return mangrove_points, other_points


@pytest.fixture
def small_config():
    """Packaged configuration with a small, single-threaded forest."""
    from mangrove_extent.config import load_config

    config = load_config()
    config['classifier']['n_trees'] = 25
    config['classifier']['n_jobs'] = 1
    return config
