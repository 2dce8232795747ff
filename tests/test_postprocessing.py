import numpy as np
import pytest

from mangrove_extent.postprocessing import connected_pixel_count, filter_all_years, filter_noise

from conftest import make_raster


def classification_with(*regions, shape=(12, 12)):
    values = np.zeros(shape, dtype=np.float32)
    for rows, cols in regions:
        values[rows, cols] = 1
    return make_raster(values)


class TestConnectedPixelCount:

    def test_counts_per_class(self):
        classification = classification_with((slice(0, 2), slice(0, 3)))
        counts = connected_pixel_count(classification).values

        assert counts[0, 0] == 6
        # the rest of the grid is one non-mangrove region capped at 100
        assert counts[11, 11] == 100

    def test_counts_are_capped(self):
        classification = make_raster(np.ones((15, 15)))
        counts = connected_pixel_count(classification, max_size=100)
        assert float(counts.max()) == 100

    def test_nan_stays_nan(self):
        values = np.ones((3, 3))
        values[1, 1] = np.nan
        counts = connected_pixel_count(make_raster(values)).values

        assert np.isnan(counts[1, 1])
        assert counts[0, 0] == 8

    def test_diagonal_neighbours(self):
        values = np.zeros((3, 3))
        values[0, 0] = values[1, 1] = 1
        classification = make_raster(values)

        assert connected_pixel_count(classification).values[0, 0] == 1
        assert connected_pixel_count(classification, eight_connected=True).values[0, 0] == 2


class TestNoiseFilter:

    def test_six_pixels_removed_seven_kept(self):
        classification = classification_with(
            (slice(0, 2), slice(0, 3)),   # 6 pixels
            (slice(5, 6), slice(0, 7)),   # 7 pixels
        )
        filtered = filter_noise(classification).values

        assert np.all(np.isnan(filtered[0:2, 0:3]))
        np.testing.assert_array_equal(filtered[5, 0:7], 1)
        assert int(np.isfinite(filtered).sum()) == 7

    def test_non_mangrove_becomes_nan(self):
        filtered = filter_noise(make_raster(np.zeros((5, 5))))
        assert filtered.isnull().all()

    def test_keeps_grid_and_crs(self):
        classification = classification_with((slice(0, 4), slice(0, 4)))
        filtered = filter_noise(classification)

        assert filtered.shape == classification.shape
        assert filtered.name == 'classification'
        assert filtered.rio.crs == classification.rio.crs

    def test_filter_all_years_skips_missing(self):
        classification = classification_with((slice(0, 4), slice(0, 4)))
        processed = filter_all_years({2001: None, 2000: classification})

        assert list(processed) == [2000, 2001]
        assert processed[2001] is None
        assert int(processed[2000].notnull().sum()) == 16


@pytest.mark.parametrize('size, kept', [(6, 0), (7, 7), (30, 30)])
def test_region_size_threshold(size, kept):
    classification = classification_with((slice(3, 4), slice(0, size)), shape=(8, 40))
    assert int(filter_noise(classification).notnull().sum()) == kept
