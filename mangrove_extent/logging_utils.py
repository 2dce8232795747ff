"""
Logging setup for the mangrove extent pipeline.

All components log through children of the ``mangrove_extent`` logger so a
single call to :func:`setup_logging` (or :func:`setup_logging_from_config`)
configures console and file output for the whole run.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union


LOGGER_ROOT = 'mangrove_extent'

FORMATS = {
    'standard': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'detailed': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    'simple': '%(levelname)s: %(message)s',
}


def setup_logging(
    level: Union[str, int] = 'INFO',
    component_name: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    format_style: str = 'standard'
) -> logging.Logger:
    """
    Configure package logging.

    Parameters
    ----------
    level : str or int
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    component_name : str, optional
        Component whose logger is returned
    log_file : str or Path, optional
        Also write log records to this file
    format_style : str
        One of 'standard', 'detailed', 'simple'

    Returns
    -------
    logging.Logger
        Logger for the requested component
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    package_logger = logging.getLogger(LOGGER_ROOT)

    # Clear existing handlers to avoid duplicated lines on repeated setup
    for handler in list(package_logger.handlers):
        handler.close()
    package_logger.handlers.clear()

    package_logger.setLevel(level)
    package_logger.propagate = False

    formatter = logging.Formatter(
        FORMATS.get(format_style, FORMATS['standard']),
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    return get_logger(component_name) if component_name else package_logger


def setup_logging_from_config(config: dict, component_name: Optional[str] = None) -> logging.Logger:
    """
    Configure package logging from the ``logging`` section of a configuration.

    Keys: ``level``, ``format`` (a :data:`FORMATS` name) and ``file``
    (null for console only).
    """
    settings = (config or {}).get('logging') or {}
    return setup_logging(
        level=settings.get('level', 'INFO'),
        component_name=component_name,
        log_file=settings.get('file'),
        format_style=settings.get('format', 'standard'),
    )


def get_logger(component_name: str) -> logging.Logger:
    """Return the logger of one pipeline component."""
    return logging.getLogger(f'{LOGGER_ROOT}.{component_name}')


def log_pipeline_start(logger: logging.Logger, pipeline_name: str, config: dict = None) -> None:
    """Log a framed start banner with the top-level configuration keys."""
    logger.info("=" * 70)
    logger.info(f"STARTING: {pipeline_name.upper()}")
    logger.info("=" * 70)

    if config:
        for key, value in config.items():
            if key.startswith('_'):
                continue
            if isinstance(value, dict):
                logger.info(f"  {key}: {len(value)} parameters")
            else:
                logger.info(f"  {key}: {value}")


def log_pipeline_end(
    logger: logging.Logger,
    pipeline_name: str,
    success: bool = True,
    elapsed_time: float = None
) -> None:
    """Log a framed completion banner, with elapsed time when given."""
    logger.info("=" * 70)

    if success:
        logger.info(f"COMPLETED: {pipeline_name.upper()}")
    else:
        logger.info(f"FAILED: {pipeline_name.upper()}")

    if elapsed_time:
        hours = int(elapsed_time // 3600)
        minutes = int((elapsed_time % 3600) // 60)
        seconds = int(elapsed_time % 60)
        logger.info(f"Total execution time: {hours:02d}:{minutes:02d}:{seconds:02d}")

    logger.info("=" * 70)
