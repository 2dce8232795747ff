"""
Data loading utilities for Landsat imagery and ancillary layers.

This module handles:
- STAC catalog connection and Landsat scene search
- Single scene loading with band selection
- Multi-temporal datacube formation
- Elevation model, boundary polygons and labelled training points
"""

from typing import Dict, List, Optional

import dask
import geopandas as gpd
import pandas as pd
import pystac_client
import rioxarray
import xarray as xr
from pyproj import Transformer
from shapely.validation import make_valid

from .logging_utils import get_logger
from .sensors import DEFAULT_COLLECTION


logger = get_logger('data_loader')


def connect_stac_catalog(catalog_url: str = "https://planetarycomputer.microsoft.com/api/stac/v1"):
    """
    Connect to a STAC catalog.

    Parameters
    ----------
    catalog_url : str
        STAC API endpoint URL

    Returns
    -------
    pystac_client.Client
        Connected STAC client
    """
    return pystac_client.Client.open(catalog_url)


def search_landsat(
    catalog,
    bbox: List[float],
    start_date: str,
    end_date: str,
    collection: str = "landsat-c2-l2",
    platform: Optional[str] = None
) -> List[Dict]:
    """
    Search for Landsat scenes in the catalog.

    Parameters
    ----------
    catalog : pystac_client.Client
        Connected STAC client
    bbox : list
        Bounding box [west, south, east, north] in EPSG:4326
    start_date, end_date : str
        Date range in ISO format
    collection : str
        STAC collection name
    platform : str, optional
        Restrict to one platform, e.g. 'landsat-7'

    Returns
    -------
    list
        STAC item dictionaries
    """
    query = {"platform": {"eq": platform}} if platform else None
    search = catalog.search(
        collections=[collection],
        bbox=bbox,
        datetime=[start_date, end_date],
        query=query,
    )
    return list(search.items_as_dicts())


def reproject_bbox(
    bbox: List[float],
    src_crs: str = "EPSG:4326",
    dst_crs: str = "EPSG:32750"
) -> List[float]:
    """
    Transform bounding box [xmin, ymin, xmax, ymax] between CRSs.
    """
    transformer = Transformer.from_crs(src_crs, dst_crs, always_xy=True)
    xmin, ymin = transformer.transform(bbox[0], bbox[1])
    xmax, ymax = transformer.transform(bbox[2], bbox[3])
    return [xmin, ymin, xmax, ymax]


def load_single_scene(
    item_dict: Dict,
    bbox_ll: List[float],
    assets: Dict[str, str]
) -> xr.Dataset:
    """
    Load and crop a single Landsat scene.

    Parameters
    ----------
    item_dict : dict
        STAC item dictionary
    bbox_ll : list
        Bounding box in EPSG:4326 [west, south, east, north]
    assets : dict
        {STAC asset key: datacube variable name}, e.g. {'nir08': 'B4'}

    Returns
    -------
    xr.Dataset
        Cropped scene with one variable per asset and a length-1 time axis
    """
    properties = item_dict['properties']
    dst_crs = properties.get("proj:code") or f"EPSG:{properties.get('proj:epsg', 4326)}"
    utm_bbox = reproject_bbox(bbox_ll, dst_crs=dst_crs)

    bands = {}
    for asset_key, name in assets.items():
        href = item_dict['assets'][asset_key]['href']
        band = rioxarray.open_rasterio(href, chunks={}, masked=True).squeeze('band', drop=True)
        bands[name] = band.rio.clip_box(*utm_bbox)

    # Bands share the 30 m grid; the first one defines it
    reference = next(iter(bands.values()))
    scene = xr.Dataset({
        name: band.interp_like(reference, method='nearest') if band.shape != reference.shape else band
        for name, band in bands.items()
    })

    # Naive UTC timestamps so year filtering works on datetime64
    timestamp = pd.Timestamp(properties['datetime'])
    if timestamp.tzinfo is not None:
        timestamp = timestamp.tz_convert('UTC').tz_localize(None)
    scene = scene.expand_dims(time=[timestamp])

    return scene


def build_datacube(
    items: List[Dict],
    bbox: List[float],
    assets: Dict[str, str],
    parallel: bool = True
) -> xr.Dataset:
    """
    Build a multi-temporal scene collection from STAC items.

    Parameters
    ----------
    items : list
        STAC item dictionaries
    bbox : list
        Bounding box in EPSG:4326
    assets : dict
        {STAC asset key: datacube variable name}
    parallel : bool
        Load scenes in parallel with dask

    Returns
    -------
    xr.Dataset
        Datacube sorted by time
    """
    if parallel:
        delayed_results = [
            dask.delayed(load_single_scene)(item, bbox, assets)
            for item in items
        ]
        results = dask.compute(*delayed_results)
    else:
        results = [load_single_scene(item, bbox, assets) for item in items]

    results = [r for r in results if r is not None]

    if len(results) == 0:
        raise ValueError("No scenes loaded successfully")

    crs = results[0].rio.crs

    # Scenes from different rows/paths may sit on shifted grids
    reference = results[0]
    aligned = [
        r if r.sizes == reference.sizes else r.interp_like(reference, method='nearest')
        for r in results
    ]

    datacube = xr.concat(aligned, dim="time", join="override").sortby("time")
    if crs is not None:
        datacube = datacube.rio.write_crs(crs)

    logger.info(f"Built datacube with {datacube.sizes['time']} scenes")
    return datacube


def load_sensor_datacube(
    catalog,
    sensor: str,
    bbox: List[float],
    start_date: str,
    end_date: str,
    stac_config: Dict,
    parallel: bool = True
) -> xr.Dataset:
    """
    Search and load one sensor generation's scenes using the ``stac`` config.
    """
    items = search_landsat(
        catalog,
        bbox,
        start_date,
        end_date,
        collection=stac_config['collections'][sensor],
        platform=stac_config.get('platforms', {}).get(sensor),
    )
    logger.info(f"{sensor}: found {len(items)} scenes between {start_date} and {end_date}")
    datacube = build_datacube(items, bbox, stac_config['assets'][sensor], parallel=parallel)
    datacube.attrs['landsat_collection'] = stac_config.get('landsat_collection', DEFAULT_COLLECTION)
    return datacube


def get_temporal_info(datacube: xr.Dataset) -> Dict:
    """
    Extract temporal information from datacube.

    Returns
    -------
    dict
        Temporal statistics and coverage info
    """
    times = pd.DatetimeIndex(datacube.time.values)

    return {
        'n_scenes': len(times),
        'first_date': times.min(),
        'last_date': times.max(),
        'years': sorted(times.year.unique().tolist()),
        'scenes_per_year': times.year.value_counts().to_dict(),
        'scenes_per_month': times.month.value_counts().to_dict(),
    }


def load_elevation(path: str, like: Optional[xr.Dataset] = None) -> xr.DataArray:
    """
    Load a digital elevation model.

    Parameters
    ----------
    path : str
        Raster file readable by rasterio
    like : xr.Dataset, optional
        Reproject and resample onto this raster's grid (nearest neighbour)

    Returns
    -------
    xr.DataArray
        Elevation with dims (y, x), NaN for no data
    """
    dem = rioxarray.open_rasterio(path, masked=True).squeeze('band', drop=True)
    if like is not None and like.rio.crs is not None:
        dem = dem.rio.reproject_match(like)
    return dem.rename('elevation')


def load_boundary(path: str, target_crs: Optional[str] = None) -> gpd.GeoDataFrame:
    """
    Load boundary polygons, repair invalid geometries and reproject.

    Parameters
    ----------
    path : str
        Shapefile, GeoPackage or GeoJSON
    target_crs : str, optional
        CRS to reproject to

    Returns
    -------
    GeoDataFrame
        Boundary polygons
    """
    gdf = gpd.read_file(path)

    gdf['geometry'] = gdf['geometry'].apply(
        lambda g: make_valid(g) if g is not None and not g.is_valid else g
    )

    if target_crs and gdf.crs and str(gdf.crs) != str(target_crs):
        gdf = gdf.to_crs(target_crs)

    return gdf


def load_label_set(
    path: str,
    landcover: Optional[int] = None,
    class_property: str = 'landcover'
) -> gpd.GeoDataFrame:
    """
    Load labelled training points.

    Parameters
    ----------
    path : str
        Vector file of point geometries
    landcover : int, optional
        Class value to assign to every point (for single-class files)
    class_property : str
        Label column name

    Returns
    -------
    GeoDataFrame
        Points with the label column
    """
    gdf = gpd.read_file(path)

    if landcover is not None:
        gdf[class_property] = int(landcover)
    elif class_property not in gdf.columns:
        raise KeyError(f"'{path}' has no '{class_property}' column and no landcover was given")

    return gdf[[class_property, 'geometry']]
