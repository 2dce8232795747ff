"""
Preprocessing utilities for Landsat surface reflectance data.

This module handles:
- Cloud/shadow masking from the pixel QA band
- Radiometric scaling of Collection 1 and Collection 2 digital numbers
- Annual median composite generation
- Boundary clipping
- Open water and high elevation masking
"""

import warnings
from typing import Dict, Optional

import numpy as np
import pandas as pd
import rioxarray  # noqa: F401  (registers the .rio accessor)
import xarray as xr
from rasterio import features
from rasterio.transform import from_origin

from .indices import add_indices
from .logging_utils import get_logger
from .sensors import FEATURE_BANDS, get_product


logger = get_logger('preprocessing')

DEFAULT_MAX_ELEVATION = 40


def _qa_bit_set(qa: xr.DataArray, bit: int) -> xr.DataArray:
    return (qa & (1 << bit)) != 0


def clear_sky_mask(qa: xr.DataArray, sensor: str, collection: Optional[str] = None) -> xr.DataArray:
    """
    Boolean clear-sky mask from a pixel QA band.

    In Collection 1 ``pixel_qa`` a Landsat 7 pixel is cloudy only when both
    the cloud and the high-confidence bits are set; Landsat 8 uses the cloud
    bit alone. Collection 2 ``qa_pixel`` sets its cloud bit for high
    confidence cloud only, so the cloud bit alone flags a pixel for both
    sensors. The shadow bit always flags a pixel.

    Parameters
    ----------
    qa : xr.DataArray
        Pixel QA band; NaN is treated as not clear
    sensor : str
        Sensor generation name
    collection : str, optional
        Landsat collection of the QA band ('c1' or 'c2')

    Returns
    -------
    xr.DataArray
        True where the pixel is clear
    """
    bits = get_product(sensor, collection)['qa_bits']

    valid = qa.notnull()
    qa_int = qa.fillna(0).astype(np.int64)

    shadow = _qa_bit_set(qa_int, bits['cloud_shadow'])
    cloud = _qa_bit_set(qa_int, bits['cloud'])
    if bits.get('cloud_confidence') is not None:
        cloud = cloud & _qa_bit_set(qa_int, bits['cloud_confidence'])

    return valid & ~(cloud | shadow)


def mask_and_scale(
    datacube: xr.Dataset,
    sensor: str,
    collection: Optional[str] = None
) -> xr.Dataset:
    """
    Mask clouds and shadows and scale digital numbers to reflectance.

    Masked pixels become NaN; the grid is never cropped. The QA band is
    dropped from the output. For Landsat 7 a pixel missing from any
    reflectance band is dropped from all of them; the QA band is left out
    of that check because a missing QA value already fails the clear-sky
    test.

    Parameters
    ----------
    datacube : xr.Dataset
        Scene or scene collection with the sensor's source bands and QA band
    sensor : str
        Sensor generation name
    collection : str, optional
        Landsat collection ('c1' or 'c2'). Defaults to the datacube's
        ``landsat_collection`` attribute, then to ``DEFAULT_COLLECTION``.

    Returns
    -------
    xr.Dataset
        Source reflectance bands as float32 physical reflectance
    """
    if collection is None:
        collection = datacube.attrs.get('landsat_collection')
    spec = get_product(sensor, collection)
    qa_band = spec['qa_band']

    if qa_band not in datacube:
        raise KeyError(
            f"QA band '{qa_band}' not found in datacube for {sensor} ({spec['collection']})"
        )

    bands = list(spec['bands'].values())
    reflectance = datacube[bands]

    fill_value = spec.get('fill_value')
    if fill_value is not None:
        reflectance = reflectance.where(reflectance != fill_value)

    mask = clear_sky_mask(datacube[qa_band], sensor, spec['collection'])

    if spec['edge_mask']:
        # Drop scan-line edge pixels that are not present in every band
        complete = reflectance.to_array(dim='band').notnull().all(dim='band')
        mask = mask & complete

    scaled = reflectance.where(mask) * spec['scale_factor'] + spec['offset']
    scaled = scaled.astype(np.float32)
    scaled.attrs.update(datacube.attrs)
    scaled.attrs['landsat_collection'] = spec['collection']

    return scaled


def filter_date(datacube: xr.Dataset, start: str, end: str) -> xr.Dataset:
    """
    Keep scenes acquired between ``start`` and ``end``, both days inclusive.
    """
    if datacube.sizes.get('time', 0) == 0:
        return datacube

    start_ts = pd.Timestamp(start)
    end_ts = pd.Timestamp(end) + pd.Timedelta(days=1)

    times = pd.DatetimeIndex(datacube['time'].values)
    keep = np.flatnonzero((times >= start_ts) & (times < end_ts))

    return datacube.isel(time=keep)


def filter_year(datacube: xr.Dataset, year: int) -> xr.Dataset:
    """Keep scenes from Jan 1 to Dec 31 of ``year``."""
    return filter_date(datacube, f"{year}-01-01", f"{year}-12-31")


def _empty_composite(scenes: xr.Dataset) -> xr.Dataset:
    """All-NaN composite on the grid of an empty scene collection."""
    data_vars = {}
    for name, var in scenes.data_vars.items():
        dims = [d for d in var.dims if d != 'time']
        shape = [scenes.sizes[d] for d in dims]
        data_vars[name] = (dims, np.full(shape, np.nan, dtype=np.float32))

    coords = {
        name: coord for name, coord in scenes.coords.items()
        if 'time' not in coord.dims
    }
    return xr.Dataset(data_vars, coords=coords)


def median_composite(scenes: xr.Dataset) -> xr.Dataset:
    """
    Per-pixel, per-band median over time, ignoring NaN.

    Pixels that are NaN in every scene stay NaN. An empty collection yields
    an all-NaN composite.

    Parameters
    ----------
    scenes : xr.Dataset
        Masked feature stacks with a time dimension

    Returns
    -------
    xr.Dataset
        Composite with ``n_observations`` in attrs
    """
    n_obs = scenes.sizes.get('time', 0)

    if n_obs == 0:
        composite = _empty_composite(scenes)
    else:
        if scenes.chunks:
            # Median needs the whole time axis in one chunk
            scenes = scenes.chunk({'time': -1})
        with warnings.catch_warnings():
            warnings.filterwarnings('ignore', message='All-NaN slice', category=RuntimeWarning)
            composite = scenes.median(dim='time', skipna=True)

    composite.attrs.update(scenes.attrs)
    composite.attrs['n_observations'] = n_obs
    return composite


def grid_transform(obj, scale: Optional[float] = None):
    """
    Affine transform of a raster from its x/y pixel-centre coordinates.

    ``scale`` is used as pixel size along an axis with a single pixel.
    """
    x = np.asarray(obj['x'].values, dtype=float)
    y = np.asarray(obj['y'].values, dtype=float)

    res_x = x[1] - x[0] if x.size > 1 else scale
    res_y = y[0] - y[1] if y.size > 1 else scale
    if res_x is None or res_y is None:
        raise ValueError("Cannot infer pixel size from a single pixel; pass scale")

    return from_origin(x[0] - res_x / 2, y[0] + res_y / 2, res_x, res_y)


def boundary_geometries(boundary, crs=None) -> list:
    """Shapely geometries from a GeoDataFrame, GeoSeries, geometry or list."""
    if hasattr(boundary, 'to_crs'):
        if crs is not None and boundary.crs is not None:
            boundary = boundary.to_crs(crs)
        return [g for g in boundary.geometry if g is not None and not g.is_empty]
    if isinstance(boundary, (list, tuple)):
        return list(boundary)
    return [boundary]


def boundary_mask(like, boundary) -> xr.DataArray:
    """
    Boolean raster that is True inside the boundary polygon(s).

    Parameters
    ----------
    like : xr.Dataset or xr.DataArray
        Raster providing the x/y grid (and CRS, if written)
    boundary : GeoDataFrame, GeoSeries, shapely geometry or list
        Polygons in the raster CRS, or reprojectable GeoPandas objects

    Returns
    -------
    xr.DataArray
        Mask with dims (y, x)
    """
    geometries = boundary_geometries(boundary, crs=like.rio.crs)
    shape = (like.sizes['y'], like.sizes['x'])

    if not geometries:
        inside = np.zeros(shape, dtype=bool)
    else:
        inside = features.geometry_mask(
            geometries,
            out_shape=shape,
            transform=grid_transform(like),
            invert=True,
        )

    return xr.DataArray(inside, coords={'y': like['y'], 'x': like['x']}, dims=('y', 'x'))


def clip_to_boundary(ds, boundary):
    """Set pixels outside the boundary to NaN, keeping the full grid."""
    clipped = ds.where(boundary_mask(ds, boundary))
    clipped.attrs.update(ds.attrs)
    return clipped


def build_annual_composite(
    datacube: xr.Dataset,
    year: int,
    sensor: str,
    boundary=None
) -> xr.Dataset:
    """
    Cloud-free annual composite of indexed scenes.

    Filters the collection to the calendar year, masks and scales each scene,
    adds spectral indices, takes the median and clips to the boundary.

    Parameters
    ----------
    datacube : xr.Dataset
        Raw scene collection of one sensor generation
    year : int
        Calendar year
    sensor : str
        Sensor generation name
    boundary : optional
        Study area polygon(s); no clipping if None

    Returns
    -------
    xr.Dataset
        Feature stack composite with ``year``, ``sensor`` and
        ``n_observations`` attrs
    """
    subset = filter_year(datacube, year)
    n_obs = subset.sizes.get('time', 0)

    if n_obs == 0:
        logger.warning(f"No {sensor} scenes for {year}; composite will be empty")
    else:
        logger.debug(f"{sensor} {year}: compositing {n_obs} scenes")

    scenes = add_indices(mask_and_scale(subset, sensor), sensor)
    composite = median_composite(scenes)

    if boundary is not None:
        composite = clip_to_boundary(composite, boundary)

    composite.attrs.update({'year': year, 'sensor': sensor, 'n_observations': n_obs})
    return composite


def _align_elevation(elevation: xr.DataArray, like: xr.Dataset) -> xr.DataArray:
    """Put the DEM on the composite grid (nearest neighbour when grids differ)."""
    if 'band' in elevation.dims:
        elevation = elevation.squeeze('band', drop=True)

    same_grid = (
        elevation.sizes.get('x') == like.sizes['x']
        and elevation.sizes.get('y') == like.sizes['y']
        and np.allclose(elevation['x'].values, like['x'].values)
        and np.allclose(elevation['y'].values, like['y'].values)
    )
    if not same_grid:
        elevation = elevation.interp(x=like['x'], y=like['y'], method='nearest')

    return elevation.transpose('y', 'x').assign_coords(x=like['x'], y=like['y'])


def apply_water_elevation_mask(
    composite: xr.Dataset,
    elevation: Optional[xr.DataArray],
    mndwi_threshold: float,
    max_elevation: float = DEFAULT_MAX_ELEVATION
) -> xr.Dataset:
    """
    Mask open water and high terrain.

    Keeps pixels with MNDWI < ``mndwi_threshold`` and elevation below
    ``max_elevation``. NaN MNDWI or elevation masks the pixel.

    Parameters
    ----------
    composite : xr.Dataset
        Annual composite with an MNDWI band
    elevation : xr.DataArray, optional
        Digital elevation model; the elevation test is skipped if None
    mndwi_threshold : float
        0 for Landsat 7 composites, 0.07 for Landsat 8
    max_elevation : float
        Elevation limit in DEM units

    Returns
    -------
    xr.Dataset
        Masked composite
    """
    keep = composite['MNDWI'] < mndwi_threshold

    if elevation is not None:
        elevation = _align_elevation(elevation, composite)
        keep = keep & (elevation < max_elevation)

    masked = composite.where(keep)
    masked.attrs.update(composite.attrs)
    masked.attrs['mndwi_threshold'] = mndwi_threshold
    masked.attrs['max_elevation'] = max_elevation

    return masked


def summarize_composite(composite: xr.Dataset) -> Dict:
    """
    Coverage statistics of a composite.

    Returns
    -------
    dict
        Pixel count, valid fraction over the feature bands and per-band means
    """
    bands = [b for b in FEATURE_BANDS if b in composite]
    n_pixels = composite.sizes['y'] * composite.sizes['x']

    if bands:
        valid = composite[bands].to_array(dim='band').notnull().all(dim='band')
        n_valid = int(valid.sum())
    else:
        n_valid = 0

    with warnings.catch_warnings():
        warnings.filterwarnings('ignore', category=RuntimeWarning)
        means = {b: float(composite[b].mean(skipna=True)) for b in bands}

    return {
        'n_observations': composite.attrs.get('n_observations'),
        'n_pixels': int(n_pixels),
        'n_valid': n_valid,
        'valid_fraction': n_valid / n_pixels if n_pixels else 0.0,
        'band_means': means,
    }
