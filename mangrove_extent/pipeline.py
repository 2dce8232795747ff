"""
Annual mangrove extent pipeline.

This module handles:
- Training one classifier per sensor generation on its reference year
- The per-year chain composite -> mask -> classify -> filter -> area
- Running all years with per-year error isolation
- Saving and reloading per-year results
"""

import os
import time
from functools import partial
from typing import Dict, Iterable, List, Optional, Tuple

import dask
import numpy as np
import xarray as xr
from tqdm import tqdm

from .area import compute_mangrove_area
from .classification import (
    MangroveClassifier,
    extract_training_samples,
    merge_label_sets,
)
from .config import get_config_value, load_config
from .logging_utils import get_logger, log_pipeline_end, log_pipeline_start, setup_logging_from_config
from .postprocessing import filter_noise
from .preprocessing import (
    apply_water_elevation_mask,
    build_annual_composite,
    clip_to_boundary,
    summarize_composite,
)
from .sensors import FEATURE_BANDS, get_sensor, sensor_for_year


logger = get_logger('pipeline')


def _masked_composite(datacube, year, sensor, elevation, study_area, mndwi_threshold, config):
    composite = build_annual_composite(datacube, year, sensor, boundary=study_area)
    masked = apply_water_elevation_mask(
        composite,
        elevation,
        mndwi_threshold,
        max_elevation=get_config_value(config, 'masking.max_elevation', 40),
    )
    return composite, masked


def train_sensor_model(
    datacube: xr.Dataset,
    sensor: str,
    mangrove_points,
    non_mangrove_points,
    elevation: Optional[xr.DataArray] = None,
    study_area=None,
    config: Optional[Dict] = None
) -> Tuple[MangroveClassifier, "gpd.GeoDataFrame"]:
    """
    Train the classifier of one sensor generation.

    Samples the masked composite of the sensor's reference year (2000 for
    Landsat 7, 2014 for Landsat 8) under the labelled points and fits the
    forest.

    Parameters
    ----------
    datacube : xr.Dataset
        Scene collection of the sensor
    sensor : str
        Sensor generation name
    mangrove_points, non_mangrove_points : GeoDataFrame
        Labelled points of each class
    elevation : xr.DataArray, optional
        Digital elevation model
    study_area : optional
        Study area boundary used for clipping
    config : dict, optional
        Pipeline configuration; packaged defaults if None

    Returns
    -------
    tuple
        (trained classifier, training samples)
    """
    if config is None:
        config = load_config()

    spec = get_sensor(sensor)
    year = spec['reference_year']
    class_property = get_config_value(config, 'sampling.class_property', 'landcover')

    _, masked = _masked_composite(
        datacube, year, sensor, elevation, study_area, spec['mndwi_threshold'], config
    )

    points = merge_label_sets(mangrove_points, non_mangrove_points)
    samples = extract_training_samples(
        masked,
        points,
        bands=FEATURE_BANDS,
        class_property=class_property,
        scale=get_config_value(config, 'sampling.scale', 30),
    )

    classifier = MangroveClassifier(
        n_trees=get_config_value(config, 'classifier.n_trees', 500),
        class_property=class_property,
        random_state=get_config_value(config, 'classifier.random_state', 42),
        n_jobs=get_config_value(config, 'classifier.n_jobs', -1),
        sensor=sensor,
    )
    logger.info(f"Training {sensor} classifier on {year} composite")
    classifier.train(samples)

    explanation = classifier.explain()
    logger.info(f"Classifier_{sensor}: {explanation}")

    return classifier, samples


def run_annual_pipeline(
    datacube: xr.Dataset,
    year: int,
    sensor: str,
    model: MangroveClassifier,
    elevation: Optional[xr.DataArray] = None,
    study_area=None,
    coastal_area=None,
    mndwi_threshold: Optional[float] = None,
    config: Optional[Dict] = None
) -> Dict:
    """
    Produce one year's composite, classification and mangrove area.

    Parameters
    ----------
    datacube : xr.Dataset
        Scene collection of the sensor generation
    year : int
        Calendar year
    sensor : str
        Sensor generation name
    model : MangroveClassifier
        Trained classifier of the same generation
    elevation : xr.DataArray, optional
        Digital elevation model
    study_area : optional
        Boundary the composite is clipped to
    coastal_area : optional
        Boundary the filtered classification and area are restricted to
    mndwi_threshold : float, optional
        Water threshold; defaults to the sensor's value
    config : dict, optional
        Pipeline configuration

    Returns
    -------
    dict
        'year', 'sensor', 'composite', 'masked_composite', 'classification',
        'filtered', 'area_ha', 'n_observations', 'summary', 'error'
    """
    if config is None:
        config = load_config()

    if model.sensor is not None and model.sensor != sensor:
        raise ValueError(f"Model trained for {model.sensor} cannot classify {sensor} composites")

    if mndwi_threshold is None:
        mndwi_threshold = get_sensor(sensor)['mndwi_threshold']

    composite, masked = _masked_composite(
        datacube, year, sensor, elevation, study_area, mndwi_threshold, config
    )
    masked = masked.compute()

    classified = model.classify(
        masked, chunk_size=get_config_value(config, 'classifier.chunk_size', 250_000)
    )

    filtered = filter_noise(
        classified['classification'],
        min_connected=get_config_value(config, 'noise_filter.min_connected', 6.25),
        max_size=get_config_value(config, 'noise_filter.max_size', 100),
        eight_connected=get_config_value(config, 'noise_filter.eight_connected', False),
    )
    if coastal_area is not None:
        filtered = clip_to_boundary(filtered, coastal_area)

    area_ha = compute_mangrove_area(
        filtered,
        boundary=coastal_area,
        max_pixels=float(get_config_value(config, 'area.max_pixels', 1e13)),
        tile_scale=get_config_value(config, 'area.tile_scale', 16),
        scale=get_config_value(config, 'area.scale', 30),
        year=year,
    )

    return {
        'year': year,
        'sensor': sensor,
        'composite': composite,
        'masked_composite': masked,
        'classification': classified,
        'filtered': filtered,
        'area_ha': area_ha,
        'n_observations': composite.attrs.get('n_observations', 0),
        'summary': summarize_composite(masked),
        'error': None,
    }


def _run_year_isolated(datacube, year, sensor, model, **kwargs) -> Dict:
    """Run one year, turning any failure into an error record."""
    try:
        if datacube is None:
            raise KeyError(f"No datacube provided for {sensor}")
        return run_annual_pipeline(datacube, year, sensor, model, **kwargs)
    except Exception as e:
        logger.exception(f"Year {year} ({sensor}) failed: {e}")
        return {
            'year': year,
            'sensor': sensor,
            'composite': None,
            'masked_composite': None,
            'classification': None,
            'filtered': None,
            'area_ha': None,
            'n_observations': None,
            'summary': None,
            'error': f"{type(e).__name__}: {e}",
        }


def run_time_series(
    datacubes: Dict[str, xr.Dataset],
    labels: Dict[str, Tuple],
    elevation: Optional[xr.DataArray] = None,
    study_area=None,
    coastal_area=None,
    years: Optional[Iterable[int]] = None,
    config: Optional[Dict] = None,
    models: Optional[Dict[str, MangroveClassifier]] = None,
    parallel: bool = True,
    configure_logging: bool = True
) -> Tuple[Dict[int, Dict], Dict[str, MangroveClassifier]]:
    """
    Mangrove extent for every year of the study period.

    Phase 1 trains one model per sensor generation needed by ``years``
    (unless already supplied in ``models``). Phase 2 runs every year
    independently; a failing year is recorded with its error and does not
    stop the others.

    Parameters
    ----------
    datacubes : dict
        {sensor: scene collection}
    labels : dict
        {sensor: (mangrove_points, non_mangrove_points)}
    elevation : xr.DataArray, optional
        Digital elevation model
    study_area, coastal_area : optional
        Clipping and area boundaries
    years : iterable of int, optional
        Defaults to the configured study period
    config : dict, optional
        Pipeline configuration
    models : dict, optional
        Pre-trained {sensor: classifier}
    parallel : bool
        Fan years out on dask's threaded scheduler
    configure_logging : bool
        Set up package logging from the ``logging`` section of ``config``

    Returns
    -------
    tuple
        ({year: record} ordered by year, {sensor: classifier})
    """
    if config is None:
        config = load_config()

    if configure_logging:
        setup_logging_from_config(config)

    start_time = time.time()

    if years is None:
        years = range(
            get_config_value(config, 'study_period.start_year', 2000),
            get_config_value(config, 'study_period.end_year', 2020) + 1,
        )
    years = sorted(years)

    log_pipeline_start(logger, "mangrove extent time series", config)

    # Phase 1: one model per sensor generation
    models = dict(models or {})
    for sensor in sorted({sensor_for_year(y) for y in years}):
        if sensor in models:
            continue
        if sensor not in labels:
            raise KeyError(f"No training labels provided for {sensor}")
        mangrove_points, non_mangrove_points = labels[sensor]
        models[sensor], _ = train_sensor_model(
            datacubes[sensor],
            sensor,
            mangrove_points,
            non_mangrove_points,
            elevation=elevation,
            study_area=study_area,
            config=config,
        )

    # Phase 2: independent years
    year_kwargs = {
        'elevation': elevation,
        'study_area': study_area,
        'coastal_area': coastal_area,
        'config': config,
    }

    def year_args(year):
        sensor = sensor_for_year(year)
        return datacubes.get(sensor), year, sensor, models[sensor]

    if parallel:
        # Datacubes stay lazy inside each task; dask does not look into a partial
        delayed_results = [
            dask.delayed(partial(_run_year_isolated, *year_args(year), **year_kwargs), traverse=False)()
            for year in years
        ]
        records = dask.compute(*delayed_results, scheduler='threads')
    else:
        records = [
            _run_year_isolated(*year_args(year), **year_kwargs)
            for year in tqdm(years, desc="Years")
        ]

    results = {record['year']: record for record in sorted(records, key=lambda r: r['year'])}

    # Summary
    successful = sum(1 for r in results.values() if r['error'] is None)
    logger.info(f"Successfully processed: {successful}/{len(years)} years")
    for year, record in results.items():
        if record['error'] is None:
            logger.info(f"Mangrove Extent {year} in ha: {record['area_ha']:.2f}")
        else:
            logger.info(f"Mangrove Extent {year}: FAILED ({record['error']})")

    log_pipeline_end(
        logger,
        "mangrove extent time series",
        success=successful == len(years),
        elapsed_time=time.time() - start_time,
    )

    return results, models


def save_year_results(results: Dict[int, Dict], output_dir: str) -> List[str]:
    """
    Save each successful year's rasters as compressed .npz.

    Returns
    -------
    list
        Written file paths
    """
    os.makedirs(output_dir, exist_ok=True)
    written = []

    for year, record in results.items():
        if record is None or record.get('error') is not None:
            continue

        output_file = os.path.join(output_dir, f"mangrove_results_{year}.npz")
        np.savez_compressed(
            output_file,
            classification=record['classification']['classification'].values,
            confidence=record['classification']['confidence'].values,
            filtered=record['filtered'].values,
            x=record['filtered']['x'].values,
            y=record['filtered']['y'].values,
            area_ha=np.array(record['area_ha']),
        )
        logger.debug(f"Saved to {output_file}")
        written.append(output_file)

    return written


def load_year_results(output_dir: str, years: List[int]) -> Dict:
    """
    Load previously saved results.

    Returns
    -------
    dict
        {year: {'classification', 'confidence', 'filtered', 'x', 'y',
        'area_ha'}} with None for years without a file
    """
    results = {}

    for year in years:
        filepath = os.path.join(output_dir, f"mangrove_results_{year}.npz")

        if os.path.exists(filepath):
            with np.load(filepath) as data:
                results[year] = {
                    'classification': data['classification'],
                    'confidence': data['confidence'],
                    'filtered': data['filtered'],
                    'x': data['x'],
                    'y': data['y'],
                    'area_ha': float(data['area_ha']),
                }
        else:
            logger.warning(f"Results not found for {year}")
            results[year] = None

    return results
