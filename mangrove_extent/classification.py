"""
Random forest mangrove classification.

This module handles:
- Training sample extraction from a reference-year composite
- Model training (one frozen model per sensor generation)
- Chunked per-pixel prediction by majority vote across trees
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import rioxarray  # noqa: F401
import xarray as xr
from sklearn.ensemble import RandomForestClassifier
from tqdm import tqdm

from .logging_utils import get_logger
from .sensors import FEATURE_BANDS, MANGROVE_CLASS, NON_MANGROVE_CLASS


logger = get_logger('classification')

CLASS_PROPERTY = 'landcover'


class InsufficientSamplesError(ValueError):
    """A required class has no usable training samples."""


class BandMismatchError(ValueError):
    """Input bands do not match the classifier's feature bands."""


def merge_label_sets(mangrove, non_mangrove):
    """
    Merge mangrove and non-mangrove point sets into one training set.

    Parameters
    ----------
    mangrove, non_mangrove : GeoDataFrame
        Point geometries carrying the class attribute

    Returns
    -------
    GeoDataFrame
        Concatenated points in the CRS of ``mangrove``
    """
    import geopandas as gpd

    if mangrove.crs is not None and non_mangrove.crs is not None:
        non_mangrove = non_mangrove.to_crs(mangrove.crs)

    merged = pd.concat([mangrove, non_mangrove], ignore_index=True)
    return gpd.GeoDataFrame(merged, geometry='geometry', crs=mangrove.crs)


def extract_training_samples(
    image: xr.Dataset,
    points,
    bands: List[str] = None,
    class_property: str = CLASS_PROPERTY,
    scale: float = 30
):
    """
    Sample band values under each labelled point.

    Each point takes the value of its nearest pixel. Points farther than
    half of ``scale`` from every pixel centre, and points over masked
    pixels, are dropped.

    Parameters
    ----------
    image : xr.Dataset
        Masked composite containing ``bands``
    points : GeoDataFrame
        Labelled points with a ``class_property`` column
    bands : list
        Bands to sample. Defaults to the classifier feature bands.
    class_property : str
        Name of the label column
    scale : float
        Pixel size in CRS units

    Returns
    -------
    GeoDataFrame
        One row per retained point: geometry, label and band values
    """
    import geopandas as gpd

    if bands is None:
        bands = FEATURE_BANDS

    missing = [b for b in bands if b not in image]
    if missing:
        raise BandMismatchError(f"Image is missing bands {missing} required for sampling")

    if class_property not in points.columns:
        raise KeyError(f"Label column '{class_property}' not found in training points")

    raster_crs = image.rio.crs
    if raster_crs is not None and points.crs is not None:
        points = points.to_crs(raster_crs)

    points = points.reset_index(drop=True)
    xs = xr.DataArray(points.geometry.x.values, dims='sample')
    ys = xr.DataArray(points.geometry.y.values, dims='sample')

    sampled = image[bands].sel(x=xs, y=ys, method='nearest')

    # Nearest-pixel lookup always succeeds; drop points off the grid
    half = scale / 2.0
    on_grid = (
        (np.abs(sampled['x'].values - xs.values) <= half)
        & (np.abs(sampled['y'].values - ys.values) <= half)
    )

    values = pd.DataFrame({b: sampled[b].values for b in bands})
    keep = on_grid & values.notna().all(axis=1).values

    samples = gpd.GeoDataFrame(
        pd.concat([points.loc[keep, [class_property]].reset_index(drop=True),
                   values.loc[keep].reset_index(drop=True)], axis=1),
        geometry=points.geometry[keep].reset_index(drop=True),
        crs=points.crs,
    )

    dropped = int(len(points) - keep.sum())
    if dropped:
        logger.info(f"Dropped {dropped} of {len(points)} points outside valid pixels")

    return samples


def count_samples(samples: pd.DataFrame, class_property: str = CLASS_PROPERTY) -> Dict[str, int]:
    """Total, mangrove and non-mangrove sample counts."""
    labels = samples[class_property]
    return {
        'total': int(len(samples)),
        'mangrove': int((labels == MANGROVE_CLASS).sum()),
        'non_mangrove': int((labels == NON_MANGROVE_CLASS).sum()),
    }


class MangroveClassifier:
    """Random forest mangrove / non-mangrove classifier.

    A classifier is trained once and is read-only afterwards; it can be
    applied to any year's composite of its sensor generation.
    """

    def __init__(
        self,
        n_trees: int = 500,
        bands: Optional[List[str]] = None,
        class_property: str = CLASS_PROPERTY,
        random_state: Optional[int] = 42,
        n_jobs: int = -1,
        sensor: Optional[str] = None
    ):
        """
        Parameters
        ----------
        n_trees : int
            Number of trees in the forest
        bands : list, optional
            Feature bands; defaults to ``sensors.FEATURE_BANDS``
        class_property : str
            Label column of the training samples
        random_state : int, optional
            Forest seed. None reproduces the unseeded behaviour.
        n_jobs : int
            Parallel jobs for fitting
        sensor : str, optional
            Sensor generation the model is trained for
        """
        self.sensor = sensor
        self.n_trees = n_trees
        self.bands = list(bands) if bands is not None else list(FEATURE_BANDS)
        self.class_property = class_property
        self.random_state = random_state
        self.n_jobs = n_jobs

        self.model = None
        self.class_counts = None

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    def train(self, samples: pd.DataFrame) -> 'MangroveClassifier':
        """
        Fit the forest on labelled samples.

        Parameters
        ----------
        samples : DataFrame
            Output of :func:`extract_training_samples`

        Returns
        -------
        MangroveClassifier
            self, now trained

        Raises
        ------
        InsufficientSamplesError
            If either class has no samples
        BandMismatchError
            If sample columns lack a feature band
        RuntimeError
            If the classifier was already trained
        """
        if self.is_trained:
            raise RuntimeError("Classifier is already trained; create a new one to retrain")

        missing = [b for b in self.bands if b not in samples.columns]
        if missing:
            raise BandMismatchError(
                f"Training samples are missing feature bands {missing}; expected {self.bands}"
            )

        counts = count_samples(samples, self.class_property)
        logger.info(
            f"Samples n = {counts['total']} | mangrove = {counts['mangrove']} | "
            f"non-mangrove = {counts['non_mangrove']}"
        )

        empty = [name for name in ('mangrove', 'non_mangrove') if counts[name] == 0]
        if empty:
            raise InsufficientSamplesError(
                f"No training samples for class(es) {empty}; refusing to train a "
                f"single-class model (counts: {counts})"
            )

        X = samples[self.bands].to_numpy(dtype=np.float64)
        y = samples[self.class_property].to_numpy().astype(int)

        model = RandomForestClassifier(
            n_estimators=self.n_trees,
            oob_score=True,
            n_jobs=self.n_jobs,
            random_state=self.random_state,
        )
        model.fit(X, y)

        self.model = model
        self.class_counts = counts
        return self

    def _check_trained(self):
        if not self.is_trained:
            raise RuntimeError("Classifier has not been trained")

    def explain(self) -> Dict:
        """
        Diagnostics of the trained forest.

        Returns
        -------
        dict
            Tree count, band importances (descending), out-of-bag error
            estimate, depth and leaf statistics and training class counts
        """
        self._check_trained()

        importances = dict(zip(self.bands, self.model.feature_importances_.tolist()))
        importances = dict(sorted(importances.items(), key=lambda kv: kv[1], reverse=True))

        depths = [tree.get_depth() for tree in self.model.estimators_]
        leaves = [tree.get_n_leaves() for tree in self.model.estimators_]

        return {
            'number_of_trees': len(self.model.estimators_),
            'importance': importances,
            'out_of_bag_error_estimate': float(1.0 - self.model.oob_score_),
            'mean_tree_depth': float(np.mean(depths)),
            'max_tree_depth': int(np.max(depths)),
            'mean_leaves_per_tree': float(np.mean(leaves)),
            'classes': self.model.classes_.tolist(),
            'class_counts': dict(self.class_counts),
        }

    def predict_pixels(self, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Majority vote of the trees for each row of ``X``.

        Ties go to the lower class value.

        Parameters
        ----------
        X : np.ndarray
            Shape (n_pixels, n_bands), columns in ``self.bands`` order

        Returns
        -------
        tuple
            (labels, confidence): winning class values and the fraction of
            trees that voted for them
        """
        self._check_trained()

        if X.ndim != 2 or X.shape[1] != len(self.bands):
            raise BandMismatchError(
                f"Expected {len(self.bands)} feature columns {self.bands}, got shape {X.shape}"
            )

        n = X.shape[0]
        classes = self.model.classes_
        votes = np.zeros((n, len(classes)), dtype=np.int32)
        rows = np.arange(n)

        # Sub-estimators predict encoded class indices
        for tree in self.model.estimators_:
            votes[rows, tree.predict(X).astype(int)] += 1

        winner = votes.argmax(axis=1)
        confidence = votes[rows, winner] / float(len(self.model.estimators_))

        return classes[winner], confidence

    def classify(
        self,
        composite: xr.Dataset,
        chunk_size: int = 250_000,
        show_progress: bool = False
    ) -> xr.Dataset:
        """
        Classify every valid pixel of a composite.

        Parameters
        ----------
        composite : xr.Dataset
            Masked composite containing the classifier's bands
        chunk_size : int
            Pixels predicted per batch
        show_progress : bool
            Show a progress bar over batches

        Returns
        -------
        xr.Dataset
            'classification': class value, NaN where any band is no data
            'confidence': fraction of trees voting for the class

        Raises
        ------
        BandMismatchError
            If the composite lacks any feature band
        """
        self._check_trained()

        missing = [b for b in self.bands if b not in composite]
        if missing:
            raise BandMismatchError(
                f"Composite is missing feature bands {missing}; classifier expects {self.bands}"
            )

        stack = composite[self.bands].to_array(dim='band').transpose('band', 'y', 'x')
        n_bands, H, W = stack.shape

        X = np.asarray(stack.values, dtype=np.float64).reshape(n_bands, -1).T
        valid = np.isfinite(X).all(axis=1)
        valid_idx = np.flatnonzero(valid)

        labels = np.full(H * W, np.nan, dtype=np.float32)
        confidence = np.full(H * W, np.nan, dtype=np.float32)

        starts = range(0, len(valid_idx), chunk_size)
        if show_progress:
            starts = tqdm(starts, desc="Classifying", total=len(starts))

        for start in starts:
            idx = valid_idx[start:start + chunk_size]
            chunk_labels, chunk_conf = self.predict_pixels(X[idx])
            labels[idx] = chunk_labels
            confidence[idx] = chunk_conf

        coords = {'y': composite['y'], 'x': composite['x']}
        result = xr.Dataset(
            {
                'classification': (('y', 'x'), labels.reshape(H, W)),
                'confidence': (('y', 'x'), confidence.reshape(H, W)),
            },
            coords=coords,
            attrs=dict(composite.attrs),
        )
        if composite.rio.crs is not None:
            result = result.rio.write_crs(composite.rio.crs)

        return result
