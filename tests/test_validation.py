import numpy as np
import pytest
from shapely.geometry import box

from mangrove_extent.classification import MangroveClassifier
from mangrove_extent.validation import (
    add_random_column,
    compare_with_reference,
    compute_accuracy_metrics,
    evaluate_classifier,
    rasterize_reference,
    split_samples,
)

from conftest import X0, Y0, make_raster, make_samples


class TestSplitting:

    def test_random_column_is_reproducible(self, training_samples):
        a = add_random_column(training_samples, seed=3)
        b = add_random_column(training_samples, seed=3)

        assert a['random'].between(0, 1).all()
        assert a['random'].equals(b['random'])
        assert 'random' not in training_samples

    def test_split_partitions_samples(self, training_samples):
        train, test = split_samples(training_samples, test_fraction=0.3, seed=1)

        assert len(train) + len(test) == len(training_samples)
        assert set(train.index).isdisjoint(test.index)
        assert (test['random'] < 0.3).all()

    def test_invalid_fraction(self, training_samples):
        with pytest.raises(ValueError):
            split_samples(training_samples, test_fraction=1.5)


class TestMetrics:

    def test_perfect_agreement(self):
        labels = np.array([1, 1, 0, 0])
        metrics = compute_accuracy_metrics(labels, labels)

        assert metrics['accuracy'] == 1.0
        assert metrics['kappa'] == pytest.approx(1.0)
        assert metrics['f1'] == pytest.approx(1.0)

    def test_confusion_counts(self):
        predicted = np.array([1, 1, 0, 0, 1])
        observed = np.array([1, 0, 0, 1, 1])
        metrics = compute_accuracy_metrics(predicted, observed)

        assert (metrics['tp'], metrics['fp'], metrics['fn'], metrics['tn']) == (2, 1, 1, 1)
        assert metrics['precision'] == pytest.approx(2 / 3)
        assert metrics['recall'] == pytest.approx(2 / 3)
        assert metrics['iou'] == pytest.approx(0.5)
        assert metrics['accuracy'] == pytest.approx(0.6)

    def test_holdout_evaluation(self):
        train, test = split_samples(make_samples(n_per_class=40, seed=5), test_fraction=0.25, seed=2)
        model = MangroveClassifier(n_trees=10, n_jobs=1).train(train)

        metrics = evaluate_classifier(model, test)

        assert metrics['n_samples'] == len(test)
        assert metrics['accuracy'] == pytest.approx(1.0)


class TestReferenceComparison:

    def test_rasterize_and_compare(self):
        filtered = np.full((10, 10), np.nan)
        filtered[:5, :5] = 1
        filtered = make_raster(filtered)

        reference = rasterize_reference(box(X0, Y0 - 150, X0 + 300, Y0), filtered)
        metrics = compare_with_reference(filtered, reference)

        assert reference.sum() == 50
        assert metrics['tp'] == 25
        assert metrics['fn'] == 25
        assert metrics['precision'] == 1.0
        assert metrics['recall'] == pytest.approx(0.5)

    def test_region_restricts_comparison(self):
        filtered = make_raster(np.ones((2, 2)))
        reference = np.array([[True, False], [True, False]])
        region = np.array([[True, False], [True, False]])

        metrics = compare_with_reference(filtered, reference, region_mask=region)

        assert metrics['accuracy'] == 1.0
        assert metrics['tp'] == 2

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            compare_with_reference(make_raster(np.ones((2, 2))), np.ones((3, 3), dtype=bool))
