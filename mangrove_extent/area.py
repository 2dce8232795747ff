"""
Mangrove area aggregation.

Converts a filtered classification into hectares by summing
class value x pixel area over the study region, with a reduction over
lazily built row strips and an explicit pixel budget.
"""

import math
from typing import Dict, Optional

import dask.array as da
import numpy as np
import pandas as pd
import rioxarray  # noqa: F401
import xarray as xr
from pyproj import CRS, Geod
from rasterio import features
from rasterio.transform import Affine

from .logging_utils import get_logger
from .preprocessing import boundary_geometries, grid_transform


logger = get_logger('area')

SQUARE_METRES_PER_HECTARE = 10000.0
DEFAULT_MAX_PIXELS = 1e13
DEFAULT_TILE_SCALE = 16


class TooManyPixelsError(RuntimeError):
    """The reduction region holds more pixels than the allowed budget."""


def _is_geographic(crs) -> bool:
    if crs is None:
        return False
    return CRS.from_user_input(crs).is_geographic


def pixel_area(like, scale: Optional[float] = None, row_chunks: Optional[int] = None) -> xr.DataArray:
    """
    Area of each pixel in square metres.

    Projected (or CRS-less) grids use the product of the pixel sizes.
    Geographic grids use the geodesic area of each cell on the WGS84
    ellipsoid, which varies with latitude.

    Parameters
    ----------
    like : xr.Dataset or xr.DataArray
        Raster providing the grid
    scale : float, optional
        Pixel size for single-pixel axes
    row_chunks : int, optional
        Return a dask-backed array in strips of this many rows; only the
        per-row areas are held in memory

    Returns
    -------
    xr.DataArray
        Pixel areas with dims (y, x)
    """
    transform = grid_transform(like, scale=scale)
    res_x, res_y = abs(transform.a), abs(transform.e)
    shape = (like.sizes['y'], like.sizes['x'])

    if _is_geographic(like.rio.crs):
        geod = Geod(ellps='WGS84')
        lats = np.asarray(like['y'].values, dtype=float)
        row_areas = np.empty(len(lats))
        for i, lat in enumerate(lats):
            south, north = lat - res_y / 2, lat + res_y / 2
            area, _ = geod.polygon_area_perimeter(
                [0.0, res_x, res_x, 0.0],
                [south, south, north, north],
            )
            row_areas[i] = abs(area)
    else:
        row_areas = np.full(shape[0], res_x * res_y, dtype=np.float64)

    if row_chunks is not None:
        column = da.from_array(row_areas[:, None], chunks=(row_chunks, 1))
        areas = da.broadcast_to(column, shape, chunks=(row_chunks, shape[1]))
    else:
        areas = np.repeat(row_areas[:, None], shape[1], axis=1)

    return xr.DataArray(
        areas,
        coords={'y': like['y'], 'x': like['x']},
        dims=('y', 'x'),
        name='pixel_area',
    )


def region_strips(like, boundary, tile_rows: int, scale: Optional[float] = None) -> da.Array:
    """
    Boundary mask rasterised lazily, one strip of ``tile_rows`` rows at a time.

    Matches :func:`preprocessing.boundary_mask` pixel for pixel.
    """
    geometries = boundary_geometries(boundary, crs=like.rio.crs)
    transform = grid_transform(like, scale=scale)
    shape = (like.sizes['y'], like.sizes['x'])

    def rasterize_strip(block, block_info=None):
        if not geometries:
            return np.zeros(block.shape, dtype=bool)
        row_start = block_info[None]['array-location'][0][0]
        return features.geometry_mask(
            geometries,
            out_shape=block.shape,
            transform=transform * Affine.translation(0, row_start),
            invert=True,
        )

    template = da.zeros(shape, dtype=bool, chunks=(tile_rows, shape[1]))
    return template.map_blocks(rasterize_strip, dtype=bool, meta=np.array((), dtype=bool))


def compute_mangrove_area(
    filtered: xr.DataArray,
    boundary=None,
    areas: Optional[xr.DataArray] = None,
    max_pixels: float = DEFAULT_MAX_PIXELS,
    tile_scale: float = DEFAULT_TILE_SCALE,
    scale: Optional[float] = None,
    year: Optional[int] = None
) -> float:
    """
    Mangrove extent in hectares.

    The grid is split into ``tile_scale`` row strips. Values, pixel areas
    and the boundary mask are built per strip as dask arrays, so a strip
    is only materialised while it is being summed.

    Parameters
    ----------
    filtered : xr.DataArray
        Filtered classification: 1 for mangrove, NaN elsewhere
    boundary : optional
        Region polygon(s); the whole grid if None
    areas : xr.DataArray, optional
        Per-pixel area in m²; computed with :func:`pixel_area` if None
    max_pixels : float
        Pixel budget of the reduction region
    tile_scale : float
        Number of row strips the reduction is split into
    scale : float, optional
        Pixel size for single-pixel axes
    year : int, optional
        Reported in errors and logs

    Returns
    -------
    float
        Sum of class value x pixel area / 10000 over valid pixels in the region

    Raises
    ------
    TooManyPixelsError
        If the region holds more than ``max_pixels`` pixels
    """
    n_rows, n_cols = filtered.sizes['y'], filtered.sizes['x']
    tile_rows = max(1, math.ceil(max(n_rows, 1) / max(tile_scale, 1)))
    strips = {'y': tile_rows, 'x': -1}

    if boundary is not None:
        region = region_strips(filtered, boundary, tile_rows, scale=scale)
        n_region = int(region.sum().compute(scheduler='synchronous'))
    else:
        region = None
        n_region = n_rows * n_cols

    if n_region > max_pixels:
        label = f" for year {year}" if year is not None else ""
        raise TooManyPixelsError(
            f"Too many pixels in the given region{label}: {n_region} > maxPixels ({max_pixels:g})"
        )

    values = filtered.transpose('y', 'x').astype(np.float64).chunk(strips).data
    if areas is None:
        cell_areas = pixel_area(filtered, scale=scale, row_chunks=tile_rows).data
    else:
        cell_areas = areas.transpose('y', 'x').astype(np.float64).chunk(strips).data

    valid = da.isfinite(values)
    if region is not None:
        valid = valid & region

    contribution = da.where(valid, values * cell_areas, 0.0) / SQUARE_METRES_PER_HECTARE
    hectares = float(contribution.sum().compute(scheduler='synchronous'))

    if year is not None:
        logger.info(f"Mangrove Extent {year}: {hectares:.2f} ha")

    return hectares


def summarize_areas(area_by_year: Dict[int, Optional[float]]) -> pd.DataFrame:
    """
    Area table with year-on-year change.

    Parameters
    ----------
    area_by_year : dict
        {year: hectares}, None for failed years

    Returns
    -------
    pd.DataFrame
        Columns: year, area_ha, change_ha, change_pct
    """
    years = sorted(area_by_year)
    df = pd.DataFrame({
        'year': years,
        'area_ha': [area_by_year[y] if area_by_year[y] is not None else np.nan for y in years],
    })
    df['change_ha'] = df['area_ha'].diff()
    df['change_pct'] = 100 * df['change_ha'] / df['area_ha'].shift(1)

    return df
