"""
Configuration loading for the mangrove extent pipeline.

Search order for the YAML file:
1. Explicit ``config_path``
2. Environment variable ``MANGROVE_EXTENT_CONFIG``
3. The ``config.yml`` packaged next to this module
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .logging_utils import FORMATS, get_logger
from .sensors import COLLECTIONS


logger = get_logger('config')

CONFIG_ENV_VAR = 'MANGROVE_EXTENT_CONFIG'
DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yml'

REQUIRED_SECTIONS = [
    'study_period',
    'masking',
    'classifier',
    'noise_filter',
    'area',
    'logging',
]


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the pipeline configuration.

    Parameters
    ----------
    config_path : str or Path, optional
        Explicit YAML file. Falls back to the environment variable and then
        to the packaged defaults.

    Returns
    -------
    dict
        Parsed configuration with a ``_meta`` entry recording its source

    Raises
    ------
    FileNotFoundError
        If none of the candidate files exists
    yaml.YAMLError
        If the file is not valid YAML
    """
    search_paths = []
    if config_path:
        search_paths.append(Path(config_path))

    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        search_paths.append(Path(env_config))

    search_paths.append(DEFAULT_CONFIG_PATH)

    config_file = next((p for p in search_paths if p.exists()), None)
    if config_file is None:
        raise FileNotFoundError(
            f"Configuration file not found. Searched paths: {[str(p) for p in search_paths]}"
        )

    with open(config_file, 'r', encoding='utf-8') as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {config_file}: {e}")

    config['_meta'] = {'config_file': str(config_file.absolute())}
    logger.debug(f"Loaded configuration from: {config_file}")

    return config


def validate_config(config: Dict[str, Any], required_sections: list = None) -> bool:
    """
    Check section presence and the value ranges the pipeline relies on.

    Raises
    ------
    ValueError
        If the configuration is unusable
    """
    if not isinstance(config, dict):
        raise ValueError("Configuration must be a dictionary")

    if required_sections is None:
        required_sections = REQUIRED_SECTIONS

    missing_sections = [s for s in required_sections if s not in config]
    if missing_sections:
        raise ValueError(f"Missing required configuration sections: {missing_sections}")

    start = get_config_value(config, 'study_period.start_year')
    end = get_config_value(config, 'study_period.end_year')
    if start is not None and end is not None and start > end:
        raise ValueError(f"study_period.start_year ({start}) is after end_year ({end})")

    n_trees = get_config_value(config, 'classifier.n_trees', 1)
    if int(n_trees) < 1:
        raise ValueError(f"classifier.n_trees must be positive, got {n_trees}")

    max_size = get_config_value(config, 'noise_filter.max_size', 1)
    if int(max_size) < 1:
        raise ValueError(f"noise_filter.max_size must be >= 1, got {max_size}")

    tile_scale = get_config_value(config, 'area.tile_scale', 1)
    if tile_scale <= 0:
        raise ValueError(f"area.tile_scale must be positive, got {tile_scale}")

    level = get_config_value(config, 'logging.level', 'INFO')
    if str(level).upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        raise ValueError(f"logging.level must be a standard level name, got {level}")

    format_style = get_config_value(config, 'logging.format', 'standard')
    if format_style not in FORMATS:
        raise ValueError(f"logging.format must be one of {sorted(FORMATS)}, got {format_style}")

    collection = get_config_value(config, 'stac.landsat_collection')
    if collection is not None and collection not in COLLECTIONS:
        raise ValueError(
            f"stac.landsat_collection must be one of {sorted(COLLECTIONS)}, got {collection}"
        )

    logger.debug("Configuration validation passed")
    return True


def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a nested value with dot notation, e.g. ``'classifier.n_trees'``.
    """
    value = config
    for key in key_path.split('.'):
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return value
