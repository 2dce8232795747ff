"""
Post-processing of per-pixel mangrove classifications.

Isolated clusters of a few pixels are treated as classification noise.
Every pixel gets the size of its same-class connected region (capped, as a
search limit), and only mangrove pixels in regions above the size
threshold are kept.
"""

from typing import Dict, Optional

import numpy as np
import rioxarray  # noqa: F401
import xarray as xr
from skimage import measure

from .logging_utils import get_logger
from .sensors import MANGROVE_CLASS


logger = get_logger('postprocessing')

DEFAULT_MAX_SIZE = 100
DEFAULT_MIN_CONNECTED = 6.25


def connected_pixel_count(
    classification: xr.DataArray,
    max_size: int = DEFAULT_MAX_SIZE,
    eight_connected: bool = False
) -> xr.DataArray:
    """
    Size of each pixel's same-class connected region.

    Parameters
    ----------
    classification : xr.DataArray
        Class values with NaN for no data, dims (y, x)
    max_size : int
        Counts are capped at this value
    eight_connected : bool
        Use 8-neighbour adjacency instead of 4-neighbour

    Returns
    -------
    xr.DataArray
        Capped component sizes (float32), NaN where the input is NaN
    """
    values = np.asarray(classification.values, dtype=np.float64)
    valid = np.isfinite(values)
    counts = np.full(values.shape, np.nan, dtype=np.float32)

    connectivity = 2 if eight_connected else 1

    for class_value in np.unique(values[valid]):
        labels = measure.label(valid & (values == class_value), connectivity=connectivity)
        sizes = np.bincount(labels.ravel())
        member = labels > 0
        counts[member] = sizes[labels[member]]

    counts = np.minimum(counts, max_size)

    return xr.DataArray(
        counts,
        coords=classification.coords,
        dims=classification.dims,
        name='connected_count',
    )


def filter_noise(
    classification: xr.DataArray,
    min_connected: float = DEFAULT_MIN_CONNECTED,
    max_size: int = DEFAULT_MAX_SIZE,
    eight_connected: bool = False,
    mangrove_class: int = MANGROVE_CLASS
) -> xr.DataArray:
    """
    Keep mangrove pixels that belong to sufficiently large regions.

    A pixel survives when its connected count is greater than
    ``min_connected`` and its class is greater than zero. With the default
    6.25, regions of six pixels are removed and regions of seven are kept.

    Parameters
    ----------
    classification : xr.DataArray
        Per-pixel class values, NaN for no data
    min_connected : float
        Strict lower bound on the connected count
    max_size : int
        Search limit of the connected count
    eight_connected : bool
        Adjacency used for regions
    mangrove_class : int
        Value written for retained pixels

    Returns
    -------
    xr.DataArray
        ``mangrove_class`` where retained, NaN elsewhere
    """
    counts = connected_pixel_count(classification, max_size=max_size, eight_connected=eight_connected)

    keep = (counts > min_connected) & (classification > 0)

    # full_like keeps the spatial_ref coordinate that carries the CRS
    filtered = xr.full_like(classification, float(mangrove_class), dtype=np.float32).where(keep)
    filtered.name = 'classification'
    filtered.attrs.update(classification.attrs)
    if classification.rio.crs is not None:
        filtered = filtered.rio.write_crs(classification.rio.crs)

    return filtered


def filter_all_years(
    all_results: Dict[int, Optional[xr.DataArray]],
    **filter_params
) -> Dict[int, Optional[xr.DataArray]]:
    """
    Apply :func:`filter_noise` to every year's classification.

    Parameters
    ----------
    all_results : dict
        {year: classification} with None for years that failed
    **filter_params :
        Forwarded to filter_noise()

    Returns
    -------
    dict
        {year: filtered classification}
    """
    processed = {}

    for year in sorted(all_results.keys()):
        classification = all_results[year]
        if classification is None:
            logger.info(f"  {year}: Skipped (no results)")
            processed[year] = None
            continue

        filtered = filter_noise(classification, **filter_params)
        raw = int((classification > 0).sum())
        kept = int(filtered.notnull().sum())
        logger.info(f"  {year}: {raw} mangrove pixels -> {kept} after noise filter")
        processed[year] = filtered

    return processed
