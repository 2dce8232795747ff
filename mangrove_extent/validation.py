"""
Accuracy assessment of mangrove classifications.

Provides hold-out evaluation of the classifier on labelled samples and
pixel-level agreement with an independent reference mangrove map.
"""

from typing import Dict, Tuple

import numpy as np
import pandas as pd

from .sensors import MANGROVE_CLASS


# ---------------------------------------------------------------------------
# Sample splitting
# ---------------------------------------------------------------------------

def add_random_column(samples: pd.DataFrame, seed: int = 0, column: str = 'random') -> pd.DataFrame:
    """
    Add a uniform [0, 1) column used to split samples reproducibly.
    """
    rng = np.random.default_rng(seed)
    out = samples.copy()
    out[column] = rng.random(len(out))
    return out


def split_samples(
    samples: pd.DataFrame,
    test_fraction: float = 0.3,
    seed: int = 0,
    column: str = 'random'
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split samples into training and validation sets.

    Parameters
    ----------
    samples : DataFrame
        Training samples, with or without a random column
    test_fraction : float
        Share of samples held out for validation
    seed : int
        Seed used when the random column must be created
    column : str
        Name of the random column

    Returns
    -------
    tuple
        (train, test)
    """
    if not 0 < test_fraction < 1:
        raise ValueError(f"test_fraction must be in (0, 1), got {test_fraction}")

    if column not in samples.columns:
        samples = add_random_column(samples, seed=seed, column=column)

    is_test = samples[column] < test_fraction
    return samples[~is_test].copy(), samples[is_test].copy()


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def compute_accuracy_metrics(predicted: np.ndarray, observed: np.ndarray) -> Dict:
    """
    Binary accuracy metrics with mangrove as the positive class.

    Parameters
    ----------
    predicted, observed : np.ndarray
        Binary masks or class values (positive where == mangrove or True)

    Returns
    -------
    dict
        Precision, Recall, F1, IoU, Accuracy, Kappa, and confusion counts.
    """
    pred = np.asarray(predicted).ravel()
    obs = np.asarray(observed).ravel()
    pred = pred.astype(bool) if pred.dtype == bool else pred == MANGROVE_CLASS
    obs = obs.astype(bool) if obs.dtype == bool else obs == MANGROVE_CLASS

    tp = np.logical_and(pred, obs).sum()
    fp = np.logical_and(pred, ~obs).sum()
    fn = np.logical_and(~pred, obs).sum()
    tn = np.logical_and(~pred, ~obs).sum()
    total = max(len(pred), 1)

    precision = tp / max(tp + fp, 1)
    recall = tp / max(tp + fn, 1)
    f1 = 2 * precision * recall / max(precision + recall, 1e-8)
    iou = tp / max(tp + fp + fn, 1)
    accuracy = (tp + tn) / total

    # Cohen's Kappa
    p_exp = ((tp + fp) * (tp + fn) + (fn + tn) * (fp + tn)) / (total * total)
    kappa = (accuracy - p_exp) / max(1 - p_exp, 1e-8)

    return {
        'precision': float(precision),
        'recall': float(recall),
        'f1': float(f1),
        'iou': float(iou),
        'accuracy': float(accuracy),
        'kappa': float(kappa),
        'tp': int(tp),
        'fp': int(fp),
        'fn': int(fn),
        'tn': int(tn),
    }


def evaluate_classifier(classifier, test_samples: pd.DataFrame) -> Dict:
    """
    Accuracy of a trained classifier on held-out samples.
    """
    X = test_samples[classifier.bands].to_numpy(dtype=np.float64)
    labels, _ = classifier.predict_pixels(X)
    metrics = compute_accuracy_metrics(labels, test_samples[classifier.class_property].to_numpy())
    metrics['n_samples'] = int(len(test_samples))
    return metrics


# ---------------------------------------------------------------------------
# Reference map comparison
# ---------------------------------------------------------------------------

def rasterize_reference(reference, like) -> np.ndarray:
    """
    Rasterize reference mangrove polygons onto a raster grid.

    Parameters
    ----------
    reference : GeoDataFrame
        Reference mangrove polygons
    like : xr.Dataset or xr.DataArray
        Raster providing grid and CRS

    Returns
    -------
    np.ndarray
        Boolean mask, True inside reference mangrove
    """
    from .preprocessing import boundary_mask

    return boundary_mask(like, reference).values


def compare_with_reference(filtered, reference_mask: np.ndarray, region_mask: np.ndarray = None) -> Dict:
    """
    Pixel agreement between a filtered classification and a reference map.

    Parameters
    ----------
    filtered : xr.DataArray or np.ndarray
        Filtered classification (1 / NaN)
    reference_mask : np.ndarray
        Boolean reference mangrove mask on the same grid
    region_mask : np.ndarray, optional
        Restrict the comparison to these pixels

    Returns
    -------
    dict
        Metrics from :func:`compute_accuracy_metrics`
    """
    values = np.asarray(getattr(filtered, 'values', filtered), dtype=float)
    predicted = np.nan_to_num(values, nan=0.0) == MANGROVE_CLASS
    reference = np.asarray(reference_mask, dtype=bool)

    if predicted.shape != reference.shape:
        raise ValueError(f"Shape mismatch: classification {predicted.shape} vs reference {reference.shape}")

    if region_mask is not None:
        region = np.asarray(region_mask, dtype=bool)
        predicted, reference = predicted[region], reference[region]

    return compute_accuracy_metrics(predicted, reference)
