import numpy as np
import pytest

from mangrove_extent.stability import (
    classify_stability_zones,
    compute_change_statistics,
    compute_iou,
    compute_stability_matrix,
    detect_extent_changes,
    multi_year_change_analysis,
    summarize_loss,
    to_extent_mask,
)


@pytest.fixture
def extents():
    a = np.full((4, 4), np.nan)
    a[:2, :] = 1
    b = np.full((4, 4), np.nan)
    b[:1, :] = 1
    b[3, 0] = 1
    return {2000: a, 2001: b, 2002: None, 2003: b.copy()}


class TestIoU:

    def test_identical_and_disjoint(self):
        mask = np.array([[1, 0], [0, 0]], dtype=bool)
        assert compute_iou(mask, mask) == 1.0
        assert compute_iou(mask, ~mask) == 0.0

    def test_two_empty_extents(self):
        empty = np.zeros((2, 2), dtype=bool)
        assert compute_iou(empty, empty) == 1.0

    def test_nan_is_not_mangrove(self):
        np.testing.assert_array_equal(to_extent_mask(np.array([1.0, np.nan])), [True, False])

    def test_stability_matrix(self, extents):
        matrix = compute_stability_matrix(extents)

        assert matrix.shape == (4, 4)
        assert matrix.loc[2000, 2001] == pytest.approx(4 / 9)
        assert matrix.loc[2001, 2003] == 1.0
        assert np.isnan(matrix.loc[2002, 2000])


class TestChanges:

    def test_gain_and_loss(self, extents):
        changes = detect_extent_changes(extents[2000], extents[2001])

        assert changes['gain'].sum() == 1
        assert changes['loss'].sum() == 4
        assert changes['stable_mangrove'].sum() == 4
        assert changes['changed'].sum() == 5

    def test_hectares(self, extents):
        changes = detect_extent_changes(extents[2000], extents[2001])
        stats = compute_change_statistics(changes, pixel_area_m2=900.0)

        assert stats['loss_ha'] == pytest.approx(0.36)
        assert stats['gain_ha'] == pytest.approx(0.09)
        assert stats['net_change_ha'] == pytest.approx(-0.27)
        assert stats['net_change_pixels'] == -3

    def test_transitions_bridge_missing_years(self, extents):
        df = multi_year_change_analysis(extents, pixel_area_m2=900.0)

        assert df['transition'].tolist() == ['2000-2001', '2001-2003']
        assert df['loss_pixels'].tolist() == [4, 0]

        summary = summarize_loss(df)
        assert summary['unit'] == 'ha'
        assert summary['total_loss'] == pytest.approx(0.36)
        assert summary['largest_loss_transition'] == '2000-2001'

    def test_no_transitions(self):
        assert multi_year_change_analysis({2000: np.ones((2, 2))}).empty
        assert summarize_loss(multi_year_change_analysis({})) == {'n_transitions': 0}


class TestZones:

    def test_persistent_and_intermittent(self, extents):
        zones, frequency = classify_stability_zones(extents, stable_threshold=0.8)

        # row 0 is mangrove in every year, row 1 in one of three
        assert np.all(zones[0] == 1)
        assert np.all(zones[1] == 2)
        assert zones[2, 0] == 0
        assert frequency[3, 0] == pytest.approx(2 / 3)

    def test_no_valid_extents(self):
        with pytest.raises(ValueError):
            classify_stability_zones({2000: None})
