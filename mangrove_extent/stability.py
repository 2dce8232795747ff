"""
Inter-annual change analysis of mangrove extent.

This module handles:
- IoU between yearly extents and pairwise stability matrices
- Gain / loss detection between years, in pixels and hectares
- Persistence classification of pixels over the whole period
"""

from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .area import SQUARE_METRES_PER_HECTARE


def to_extent_mask(extent) -> np.ndarray:
    """Boolean mangrove mask from a filtered classification (1 / NaN) or mask."""
    values = np.asarray(getattr(extent, 'values', extent))
    if values.dtype == bool:
        return values
    return np.nan_to_num(values.astype(float), nan=0.0) > 0


def compute_iou(mask1: np.ndarray, mask2: np.ndarray) -> float:
    """
    Intersection over Union of two extents.

    IoU = |A ∩ B| / |A ∪ B|; two empty extents count as identical.
    """
    mask1 = to_extent_mask(mask1)
    mask2 = to_extent_mask(mask2)

    intersection = np.logical_and(mask1, mask2).sum()
    union = np.logical_or(mask1, mask2).sum()

    if union == 0:
        return 1.0

    return float(intersection / union)


def compute_stability_matrix(extents: Dict[int, Optional[np.ndarray]]) -> pd.DataFrame:
    """
    Pairwise IoU between all years.

    Parameters
    ----------
    extents : dict
        {year: extent}, None for failed years

    Returns
    -------
    pd.DataFrame
        Symmetric IoU matrix with years as index/columns (NaN where a year
        is missing)
    """
    years = sorted(extents.keys())
    n = len(years)
    matrix = np.zeros((n, n))

    for i, y1 in enumerate(years):
        for j, y2 in enumerate(years):
            if extents[y1] is None or extents[y2] is None:
                matrix[i, j] = np.nan
            else:
                matrix[i, j] = compute_iou(extents[y1], extents[y2])

    return pd.DataFrame(matrix, index=years, columns=years)


def detect_extent_changes(extent_prev, extent_curr) -> Dict[str, np.ndarray]:
    """
    Pixels where mangrove appeared or disappeared between two years.

    Returns
    -------
    dict
        'gain', 'loss', 'stable_mangrove', 'stable_other', 'changed'
    """
    prev = to_extent_mask(extent_prev)
    curr = to_extent_mask(extent_curr)

    return {
        'gain': np.logical_and(~prev, curr),
        'loss': np.logical_and(prev, ~curr),
        'stable_mangrove': np.logical_and(prev, curr),
        'stable_other': np.logical_and(~prev, ~curr),
        'changed': prev != curr,
    }


def compute_change_statistics(
    changes: Dict[str, np.ndarray],
    pixel_area_m2=None
) -> Dict:
    """
    Summarize a change map in pixels and hectares.

    Parameters
    ----------
    changes : dict
        Output of :func:`detect_extent_changes`
    pixel_area_m2 : float or array, optional
        Area of each pixel; hectare fields are omitted if None

    Returns
    -------
    dict
        Pixel counts, hectares and net change
    """
    stats = {
        'gain_pixels': int(changes['gain'].sum()),
        'loss_pixels': int(changes['loss'].sum()),
        'stable_mangrove_pixels': int(changes['stable_mangrove'].sum()),
        'changed_pixels': int(changes['changed'].sum()),
    }
    stats['net_change_pixels'] = stats['gain_pixels'] - stats['loss_pixels']

    if pixel_area_m2 is not None:
        area = np.asarray(getattr(pixel_area_m2, 'values', pixel_area_m2), dtype=float)
        area = np.broadcast_to(area, changes['gain'].shape)
        for key in ('gain', 'loss', 'stable_mangrove'):
            stats[f'{key}_ha'] = float(area[changes[key]].sum() / SQUARE_METRES_PER_HECTARE)
        stats['net_change_ha'] = stats['gain_ha'] - stats['loss_ha']

    return stats


def multi_year_change_analysis(
    extents: Dict[int, Optional[np.ndarray]],
    pixel_area_m2=None
) -> pd.DataFrame:
    """
    Change statistics for each consecutive pair of available years.

    Years with no result are skipped, so a transition may span a gap.

    Returns
    -------
    pd.DataFrame
        One row per transition with 'from_year', 'to_year', 'transition'
    """
    years = [y for y in sorted(extents.keys()) if extents[y] is not None]
    transitions = []

    for y1, y2 in zip(years[:-1], years[1:]):
        stats = compute_change_statistics(
            detect_extent_changes(extents[y1], extents[y2]),
            pixel_area_m2=pixel_area_m2,
        )
        stats['from_year'] = y1
        stats['to_year'] = y2
        stats['transition'] = f"{y1}-{y2}"
        transitions.append(stats)

    if not transitions:
        return pd.DataFrame()

    return pd.DataFrame(transitions)


def classify_stability_zones(
    extents: Dict[int, Optional[np.ndarray]],
    stable_threshold: float = 0.8
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Classify each pixel by how often it was mangrove.

    Parameters
    ----------
    extents : dict
        {year: extent}
    stable_threshold : float
        Fraction of years required for 'persistent'

    Returns
    -------
    tuple
        (zones, frequency)

        zones values:
            0 = never or rarely mangrove
            1 = persistent mangrove
            2 = intermittent mangrove

        frequency:
            Fraction of years each pixel was mangrove
    """
    valid = [to_extent_mask(extents[y]) for y in sorted(extents) if extents[y] is not None]

    if not valid:
        raise ValueError("No valid extents found")

    frequency = np.stack(valid, axis=0).astype(float).mean(axis=0)

    zones = np.zeros(frequency.shape, dtype=np.uint8)
    zones[frequency >= stable_threshold] = 1
    intermittent = (frequency > (1 - stable_threshold)) & (frequency < stable_threshold)
    zones[intermittent] = 2

    return zones, frequency


def summarize_loss(change_df: pd.DataFrame) -> Dict:
    """
    Whole-period loss and gain totals from a transition table.
    """
    if change_df is None or len(change_df) == 0:
        return {'n_transitions': 0}

    unit = 'ha' if 'loss_ha' in change_df else 'pixels'
    summary = {
        'n_transitions': int(len(change_df)),
        'unit': unit,
        'total_loss': float(change_df[f'loss_{unit}'].sum()),
        'total_gain': float(change_df[f'gain_{unit}'].sum()),
    }
    summary['net_change'] = summary['total_gain'] - summary['total_loss']
    summary['largest_loss_transition'] = str(
        change_df.loc[change_df[f'loss_{unit}'].idxmax(), 'transition']
    )

    return summary
