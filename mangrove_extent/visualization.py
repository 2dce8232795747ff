"""
Visualization utilities for the mangrove extent time series.

This module handles:
- Area time series charts
- Multi-year extent grids
- Gain / loss maps
- Stability matrix heatmaps and persistence zones
"""

import os
from typing import Dict, Optional, Tuple

import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import ListedColormap

from .logging_utils import get_logger
from .stability import to_extent_mask


logger = get_logger('visualization')

STABILITY_CMAP = ListedColormap(['#808080', '#006400', '#FFD700'])  # Gray, dark green, gold
CHANGE_COLORS = {
    'stable_mangrove': (0, 100, 0),
    'gain': (30, 144, 255),
    'loss': (220, 20, 60),
    'stable_other': (47, 47, 47),
}


def _save(fig: plt.Figure, output_path: Optional[str]):
    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        fig.savefig(output_path, dpi=300, bbox_inches='tight')
        logger.info(f"Saved: {output_path}")


def plot_area_time_series(
    area_df: pd.DataFrame,
    title: str = "Mangrove Extent 2000-2020",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (12, 5)
) -> plt.Figure:
    """
    Plot mangrove area per year.

    Parameters
    ----------
    area_df : pd.DataFrame
        Table with 'year' and 'area_ha' columns (``area.summarize_areas``);
        a 'sensor' column colours the bars by generation
    title : str
        Plot title
    output_path : str, optional
        Path to save figure
    figsize : tuple
        Figure size (width, height)

    Returns
    -------
    plt.Figure
        The generated figure
    """
    if len(area_df) == 0:
        raise ValueError("Empty area table")

    fig, ax = plt.subplots(figsize=figsize)

    if 'sensor' in area_df.columns:
        sns.barplot(data=area_df, x='year', y='area_ha', hue='sensor', ax=ax, palette='Greens_d')
    else:
        sns.barplot(data=area_df, x='year', y='area_ha', ax=ax, color='#006400')

    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.set_xlabel('Year', fontsize=10)
    ax.set_ylabel('Mangrove area (ha)', fontsize=10)
    ax.tick_params(axis='x', rotation=45)
    ax.grid(axis='y', alpha=0.3)

    plt.tight_layout()
    _save(fig, output_path)

    return fig


def plot_multi_year_extent(
    extents: Dict[int, Optional[np.ndarray]],
    title: str = "Mangrove Extent by Year",
    cmap: str = 'Greens',
    output_path: Optional[str] = None,
    max_cols: int = 4
) -> plt.Figure:
    """
    Plot mangrove extents for all years in a grid.

    Parameters
    ----------
    extents : dict
        {year: filtered classification or mask}, None for failed years
    title : str
        Overall figure title
    cmap : str
        Colormap for extents
    output_path : str, optional
        Path to save figure
    max_cols : int
        Maximum columns in grid

    Returns
    -------
    plt.Figure
        The generated figure
    """
    years = sorted(y for y in extents if extents[y] is not None)
    n = len(years)

    if n == 0:
        raise ValueError("No valid extents to plot")

    cols = min(n, max_cols)
    rows = (n + cols - 1) // cols

    fig, axes = plt.subplots(rows, cols, figsize=(4 * cols, 4 * rows), squeeze=False)

    for idx, year in enumerate(years):
        ax = axes[idx // cols, idx % cols]
        mask = to_extent_mask(extents[year])
        ax.imshow(mask, cmap=cmap, vmin=0, vmax=1)
        ax.set_title(f'{year}', fontsize=11, fontweight='bold')
        ax.axis('off')

        coverage = 100 * mask.sum() / mask.size
        ax.text(0.02, 0.98, f'{coverage:.1f}%', transform=ax.transAxes,
                fontsize=9, verticalalignment='top',
                bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    for idx in range(n, rows * cols):
        axes[idx // cols, idx % cols].axis('off')

    fig.suptitle(title, fontsize=14, fontweight='bold')
    plt.tight_layout()
    _save(fig, output_path)

    return fig


def plot_change_map(
    changes: Dict[str, np.ndarray],
    year1: int,
    year2: int,
    title: Optional[str] = None,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 10)
) -> plt.Figure:
    """
    Visualize mangrove gain and loss between two years.

    Parameters
    ----------
    changes : dict
        Output from ``stability.detect_extent_changes``
    year1, year2 : int
        Years being compared

    Returns
    -------
    plt.Figure
        The generated figure
    """
    fig, ax = plt.subplots(figsize=figsize)

    h, w = changes['changed'].shape
    change_map = np.zeros((h, w, 3), dtype=np.uint8)
    for key, color in CHANGE_COLORS.items():
        change_map[changes[key]] = color

    ax.imshow(change_map)

    if title is None:
        title = f'Mangrove Change: {year1} to {year2}'
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.axis('off')

    legend_elements = [
        mpatches.Patch(color='#006400', label='Stable Mangrove'),
        mpatches.Patch(color='#1E90FF', label='Gain'),
        mpatches.Patch(color='#DC143C', label='Loss'),
        mpatches.Patch(color='#2F2F2F', label='Stable Non-mangrove'),
    ]
    ax.legend(handles=legend_elements, loc='lower right', fontsize=9)

    total = changes['changed'].size
    stats_text = (
        f"Gain: {100 * changes['gain'].sum() / total:.2f}%\n"
        f"Loss: {100 * changes['loss'].sum() / total:.2f}%"
    )
    ax.text(0.02, 0.02, stats_text, transform=ax.transAxes,
            fontsize=9, verticalalignment='bottom',
            bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    plt.tight_layout()
    _save(fig, output_path)

    return fig


def plot_stability_matrix(
    stability_df: pd.DataFrame,
    title: str = "Mangrove Extent Agreement (IoU) Across Years",
    cmap: str = 'RdYlGn',
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (12, 10)
) -> plt.Figure:
    """
    Plot the pairwise IoU matrix as a heatmap.
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        stability_df,
        annot=len(stability_df) <= 12,
        fmt='.2f',
        cmap=cmap,
        vmin=0,
        vmax=1,
        ax=ax,
        cbar_kws={'label': 'IoU Score'},
        square=True,
        linewidths=0.5
    )

    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.set_xlabel('Year', fontsize=10)
    ax.set_ylabel('Year', fontsize=10)

    plt.tight_layout()
    _save(fig, output_path)

    return fig


def plot_stability_zones(
    zones: np.ndarray,
    frequency: np.ndarray,
    title: str = "Mangrove Persistence 2000-2020",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (14, 6)
) -> plt.Figure:
    """
    Persistence zones next to the fraction of years each pixel was mangrove.
    """
    fig, axes = plt.subplots(1, 2, figsize=figsize)

    ax1 = axes[0]
    ax1.imshow(zones, cmap=STABILITY_CMAP, vmin=0, vmax=2)
    ax1.set_title('Persistence Zones', fontsize=11, fontweight='bold')
    ax1.axis('off')
    legend_elements = [
        mpatches.Patch(color='#808080', label='Never Mangrove'),
        mpatches.Patch(color='#006400', label='Persistent Mangrove'),
        mpatches.Patch(color='#FFD700', label='Intermittent'),
    ]
    ax1.legend(handles=legend_elements, loc='lower right', fontsize=9)

    ax2 = axes[1]
    im2 = ax2.imshow(frequency, cmap='YlGn', vmin=0, vmax=1)
    ax2.set_title('Mangrove Frequency', fontsize=11, fontweight='bold')
    ax2.axis('off')
    cbar = plt.colorbar(im2, ax=ax2, fraction=0.046, pad=0.04)
    cbar.set_label('Fraction of Years', fontsize=9)

    fig.suptitle(title, fontsize=14, fontweight='bold')
    plt.tight_layout()
    _save(fig, output_path)

    return fig


def plot_false_color(
    composite,
    bands=('NIR', 'SWIR1', 'RED'),
    vmin: float = 0,
    vmax: float = 0.5,
    title: Optional[str] = None,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 10)
) -> plt.Figure:
    """
    Display an annual composite as a false colour image (NIR / SWIR1 / RED).
    """
    rgb = np.stack([np.asarray(composite[b].values, dtype=float) for b in bands], axis=-1)
    rgb = np.clip((rgb - vmin) / (vmax - vmin), 0, 1)
    rgb = np.nan_to_num(rgb, nan=0.0)

    fig, ax = plt.subplots(figsize=figsize)
    ax.imshow(rgb)
    if title is None:
        title = f"Composite {composite.attrs.get('year', '')}".strip()
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.axis('off')

    plt.tight_layout()
    _save(fig, output_path)

    return fig
