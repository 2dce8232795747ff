"""
Output sinks: GeoTIFF rasters, training sample shapefiles and area tables.
"""

import os
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import rioxarray  # noqa: F401
import xarray as xr

from .area import TooManyPixelsError, summarize_areas
from .config import get_config_value, load_config
from .logging_utils import get_logger
from .preprocessing import clip_to_boundary


logger = get_logger('export')

# NIR / SWIR1 / RED, the false-colour triple used for Landsat composites
FALSE_COLOR_BANDS = ['NIR', 'SWIR1', 'RED']
TRUE_COLOR_BANDS = ['RED', 'GREEN', 'BLUE']

CLASSIFICATION_NODATA = 0


def _check_pixel_budget(raster, max_pixels: float, description: str):
    n_pixels = raster.sizes['y'] * raster.sizes['x']
    if n_pixels > max_pixels:
        raise TooManyPixelsError(
            f"Export '{description}' has {n_pixels} pixels, more than maxPixels ({max_pixels:g})"
        )


def _resample_to_scale(raster, scale: Optional[float]):
    """Reproject to the requested pixel size when it differs from the grid."""
    if scale is None or raster.rio.crs is None:
        return raster
    res_x, res_y = raster.rio.resolution()
    if np.isclose(abs(res_x), scale) and np.isclose(abs(res_y), scale):
        return raster
    return raster.rio.reproject(raster.rio.crs, resolution=scale)


def export_classification(
    filtered: xr.DataArray,
    output_path: str,
    region=None,
    scale: Optional[float] = 30,
    max_pixels: float = 1e13,
    crs: Optional[str] = None
) -> str:
    """
    Write a filtered classification as a single-band uint8 GeoTIFF.

    Mangrove pixels are written as 1 and everything else as the nodata
    value 0.

    Parameters
    ----------
    filtered : xr.DataArray
        Filtered classification (1 / NaN)
    output_path : str
        Destination .tif
    region : optional
        Boundary to clip to before writing
    scale : float, optional
        Output pixel size in CRS units
    max_pixels : float
        Pixel budget of the export
    crs : str, optional
        CRS to write if the raster carries none

    Returns
    -------
    str
        The written path
    """
    raster = filtered
    if crs is not None and raster.rio.crs is None:
        raster = raster.rio.write_crs(crs)
    if region is not None:
        raster = clip_to_boundary(raster, region)

    raster = _resample_to_scale(raster, scale)
    _check_pixel_budget(raster, max_pixels, os.path.basename(output_path))

    out = raster.fillna(CLASSIFICATION_NODATA).astype(np.uint8)
    out = out.rio.write_nodata(CLASSIFICATION_NODATA)

    os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
    out.rio.to_raster(output_path, compress='deflate')
    logger.info(f"Saved: {output_path}")

    return output_path


def export_true_color(
    composite: xr.Dataset,
    output_path: str,
    bands: List[str] = None,
    region=None,
    scale: Optional[float] = 30,
    max_pixels: float = 1e13,
    crs: Optional[str] = None
) -> str:
    """
    Write a three-band composite image (false colour NIR/SWIR1/RED by default).

    Returns
    -------
    str
        The written path
    """
    if bands is None:
        bands = FALSE_COLOR_BANDS

    missing = [b for b in bands if b not in composite]
    if missing:
        raise KeyError(f"Composite is missing bands {missing}")

    image = composite[bands].to_array(dim='band').transpose('band', 'y', 'x').astype(np.float32)
    image = image.assign_coords(band=np.arange(1, len(bands) + 1))

    if crs is not None and image.rio.crs is None:
        image = image.rio.write_crs(crs)
    if region is not None:
        image = clip_to_boundary(image, region)

    image = _resample_to_scale(image, scale)
    _check_pixel_budget(image, max_pixels, os.path.basename(output_path))

    image = image.rio.write_nodata(np.nan)
    image.attrs['long_name'] = tuple(bands)

    os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
    image.rio.to_raster(output_path, compress='deflate')
    logger.info(f"Saved: {output_path}")

    return output_path


def export_training_samples(samples, output_path: str) -> str:
    """
    Write training points (labels and sampled band values) as an ESRI Shapefile.
    """
    os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
    samples.to_file(output_path, driver='ESRI Shapefile')
    logger.info(f"Saved: {output_path} ({len(samples)} samples)")
    return output_path


def export_area_table(results: Dict[int, Dict], output_path: str) -> pd.DataFrame:
    """
    Write the per-year area table as CSV.

    Parameters
    ----------
    results : dict
        {year: record} from ``pipeline.run_time_series``
    output_path : str
        Destination .csv

    Returns
    -------
    pd.DataFrame
        The written table, including sensor and error columns
    """
    table = summarize_areas({year: r['area_ha'] for year, r in results.items()})
    table['sensor'] = [results[y]['sensor'] for y in table['year']]
    table['error'] = [results[y]['error'] for y in table['year']]

    os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
    table.to_csv(output_path, index=False)
    logger.info(f"Saved: {output_path}")

    return table


def export_year_outputs(
    results: Dict[int, Dict],
    output_dir: Optional[str] = None,
    region=None,
    scale: Optional[float] = None,
    max_pixels: Optional[float] = None,
    crs: Optional[str] = None,
    config: Optional[Dict] = None
) -> Dict[int, Dict[str, str]]:
    """
    Export every successful year's classification and composite image.

    One failing export is logged and does not stop the remaining years.

    Parameters
    ----------
    results : dict
        {year: record} from :func:`pipeline.run_time_series`
    output_dir : str, optional
        Destination directory; ``export.output_dir`` if None
    region : optional
        Boundary the classification is clipped to
    scale : float, optional
        Output pixel size; ``export.scale`` if None
    max_pixels : float, optional
        Pixel budget per image; ``export.max_pixels`` if None
    crs : str, optional
        Output CRS; the raster's own CRS if None
    config : dict, optional
        Configuration supplying the ``export`` defaults; packaged defaults
        if None

    Returns
    -------
    dict
        {year: {'classification': path, 'composite': path}}
    """
    if config is None:
        config = load_config()

    if output_dir is None:
        output_dir = get_config_value(config, 'export.output_dir', 'outputs')
    if scale is None:
        scale = get_config_value(config, 'export.scale', 30)
    if max_pixels is None:
        max_pixels = float(get_config_value(config, 'export.max_pixels', 1e13))

    written = {}

    for year, record in results.items():
        if record.get('error') is not None:
            continue
        try:
            written[year] = {
                'classification': export_classification(
                    record['filtered'],
                    os.path.join(output_dir, f"Mangrove_Extent_{year}_Filter.tif"),
                    region=region, scale=scale, max_pixels=max_pixels, crs=crs,
                ),
                'composite': export_true_color(
                    record['composite'],
                    os.path.join(output_dir, f"imageex_{year}.tif"),
                    scale=scale, max_pixels=max_pixels, crs=crs,
                ),
            }
        except Exception as e:
            logger.exception(f"Export for {year} failed: {e}")

    return written
