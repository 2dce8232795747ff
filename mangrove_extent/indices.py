"""
Spectral indices for mangrove recognition.

This module handles:
- Renaming sensor source bands to BLUE/GREEN/RED/NIR/SWIR1/SWIR2
- NDVI, MNDWI, CMRI, NDMI and MMRI computation
"""

import numpy as np
import xarray as xr

from .sensors import REFLECTANCE_BANDS, INDEX_BANDS, get_sensor


def normalized_difference(a: xr.DataArray, b: xr.DataArray) -> xr.DataArray:
    """
    Compute (a - b) / (a + b).

    Pixels where a + b == 0 are returned as NaN rather than +/-inf.
    """
    denominator = a + b
    with np.errstate(divide='ignore', invalid='ignore'):
        nd = (a - b) / denominator.where(denominator != 0)
    return nd


def compute_ndvi(stack: xr.Dataset, red: str = 'RED', nir: str = 'NIR') -> xr.DataArray:
    """
    Normalized Difference Vegetation Index.

    NDVI = (NIR - Red) / (NIR + Red)
    """
    return normalized_difference(stack[nir], stack[red]).rename('NDVI')


def compute_mndwi(stack: xr.Dataset) -> xr.DataArray:
    """Modified NDWI (Xu, 2006): nd(GREEN, SWIR1)."""
    return normalized_difference(stack['GREEN'], stack['SWIR1']).rename('MNDWI')


def compute_cmri(stack: xr.Dataset) -> xr.DataArray:
    """
    Combined Mangrove Recognition Index.

    CMRI = NDVI - NDWI, with NDWI = nd(GREEN, NIR)
    """
    ndwi = normalized_difference(stack['GREEN'], stack['NIR'])
    return (compute_ndvi(stack) - ndwi).rename('CMRI')


def compute_ndmi(stack: xr.Dataset) -> xr.DataArray:
    """Normalized Difference Mangrove Index (Shi et al., 2016): nd(SWIR2, GREEN)."""
    return normalized_difference(stack['SWIR2'], stack['GREEN']).rename('NDMI')


def _expression_divide(numerator: xr.DataArray, denominator: xr.DataArray) -> xr.DataArray:
    """Division that yields 0 where the denominator is 0, as in band-math expressions."""
    with np.errstate(divide='ignore', invalid='ignore'):
        quotient = numerator / denominator
    return quotient.where(denominator != 0, 0.0)


def compute_mmri(stack: xr.Dataset) -> xr.DataArray:
    """
    Modular Mangrove Recognition Index.

    Evaluated exactly as published::

        abs((G-M)/(G+M)) - abs((N-R)/(N+R)) / abs((G-M)/(G+M)) + abs((N-R)/(N+R))

    where M is SWIR1. Operator precedence makes the middle term a ratio, so
    this is not the symmetric (a - b) / (a + b) form. Do not regroup.

    Every division by zero evaluates to 0. With GREEN == SWIR1 the water
    term and the ratio both vanish and MMRI equals abs((N-R)/(N+R)).
    NaN inputs stay NaN.
    """
    green, mir = stack['GREEN'], stack['SWIR1']
    nir, red = stack['NIR'], stack['RED']

    water = abs(_expression_divide(green - mir, green + mir))
    vegetation = abs(_expression_divide(nir - red, nir + red))
    mmri = water - _expression_divide(vegetation, water) + vegetation

    return mmri.rename('MMRI')


def rename_bands(stack: xr.Dataset, sensor: str) -> xr.Dataset:
    """
    Select the sensor's reflectance bands under sensor-agnostic names.

    Parameters
    ----------
    stack : xr.Dataset
        Scene or scene collection with source band variables (e.g. 'B4')
    sensor : str
        Sensor generation name (see ``sensors.SENSORS``)

    Returns
    -------
    xr.Dataset
        Variables BLUE, GREEN, RED, NIR, SWIR1, SWIR2
    """
    mapping = get_sensor(sensor)['bands']

    missing = [src for src in mapping.values() if src not in stack]
    if missing:
        raise KeyError(f"Bands {missing} required by {sensor} not found in dataset")

    renamed = stack[[mapping[name] for name in REFLECTANCE_BANDS]]
    return renamed.rename({mapping[name]: name for name in REFLECTANCE_BANDS})


def add_indices(stack: xr.Dataset, sensor: str) -> xr.Dataset:
    """
    Build the Feature Stack: renamed reflectance bands plus five indices.

    Parameters
    ----------
    stack : xr.Dataset
        Cloud-masked, reflectance-scaled scene(s)
    sensor : str
        Sensor generation name

    Returns
    -------
    xr.Dataset
        BLUE, GREEN, RED, NIR, SWIR1, SWIR2, NDVI, MNDWI, CMRI, NDMI, MMRI
        on the input grid
    """
    features = rename_bands(stack, sensor)

    indices = {
        'NDVI': compute_ndvi(features),
        'MNDWI': compute_mndwi(features),
        'CMRI': compute_cmri(features),
        'NDMI': compute_ndmi(features),
        'MMRI': compute_mmri(features),
    }
    features = features.assign({name: indices[name] for name in INDEX_BANDS})
    features.attrs.update(stack.attrs)
    features.attrs['sensor'] = sensor

    return features
