"""
Mangrove Extent: Landsat Mangrove Time Series 2000-2020
=======================================================

Modules:
    sensors: Landsat 7 / 8 band mappings and QA layout
    indices: NDVI, MNDWI, CMRI, NDMI and MMRI
    preprocessing: Cloud masking, annual median composites, water/elevation mask
    classification: Random forest training and per-pixel prediction
    postprocessing: Connected-pixel noise filter
    area: Mangrove area in hectares
    pipeline: Per-sensor training and the per-year time series
    data_loader: STAC imagery, DEM, boundaries and training points
    export: GeoTIFF, shapefile and CSV outputs
    stability: Gain / loss and persistence analysis
    validation: Hold-out and reference-map accuracy
    visualization: Plotting utilities
"""

from .config import load_config, validate_config, get_config_value
from .logging_utils import setup_logging, setup_logging_from_config, get_logger

from .sensors import (
    SENSORS,
    FEATURE_BANDS,
    get_sensor,
    get_product,
    sensor_for_year,
)

from .indices import add_indices, compute_mmri

from .preprocessing import (
    mask_and_scale,
    median_composite,
    build_annual_composite,
    apply_water_elevation_mask,
)

from .classification import (
    MangroveClassifier,
    InsufficientSamplesError,
    BandMismatchError,
    extract_training_samples,
)

from .postprocessing import connected_pixel_count, filter_noise

from .area import TooManyPixelsError, pixel_area, compute_mangrove_area, summarize_areas

from .pipeline import (
    train_sensor_model,
    run_annual_pipeline,
    run_time_series,
    save_year_results,
    load_year_results,
)

from .stability import (
    compute_iou,
    compute_stability_matrix,
    detect_extent_changes,
    multi_year_change_analysis,
    classify_stability_zones,
)

__version__ = "0.1.0"
