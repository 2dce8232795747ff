import numpy as np
import pytest
import xarray as xr

from mangrove_extent.indices import (
    add_indices,
    compute_cmri,
    compute_mmri,
    compute_mndwi,
    compute_ndmi,
    compute_ndvi,
    normalized_difference,
    rename_bands,
)
from mangrove_extent.sensors import INDEX_BANDS, REFLECTANCE_BANDS

from conftest import make_datacube


def reflectance_stack(**values):
    return xr.Dataset({name: xr.DataArray(np.atleast_1d(np.asarray(v, dtype=float)), dims='x')
                       for name, v in values.items()})


@pytest.fixture
def random_stack():
    rng = np.random.default_rng(42)
    return xr.Dataset({
        band: (('y', 'x'), rng.uniform(0.01, 0.6, size=(20, 20)))
        for band in REFLECTANCE_BANDS
    })


class TestNormalizedDifference:

    def test_values(self):
        a = xr.DataArray([0.4, 0.1])
        b = xr.DataArray([0.1, 0.1])
        np.testing.assert_allclose(normalized_difference(a, b).values, [0.6, 0.0])

    def test_zero_sum_is_nan(self):
        a = xr.DataArray([0.0])
        b = xr.DataArray([0.0])
        assert np.isnan(normalized_difference(a, b).values[0])


class TestIndexRanges:

    @pytest.mark.parametrize('func', [compute_ndvi, compute_mndwi, compute_ndmi])
    def test_normalized_indices_within_unit_range(self, random_stack, func):
        values = func(random_stack).values
        assert np.all(values >= -1) and np.all(values <= 1)

    def test_ndvi_of_vegetation_is_positive(self):
        stack = reflectance_stack(RED=0.03, NIR=0.35)
        assert compute_ndvi(stack).values[0] > 0.8

    def test_mndwi_of_water_is_positive(self):
        stack = reflectance_stack(GREEN=0.08, SWIR1=0.01)
        assert compute_mndwi(stack).values[0] > 0

    def test_cmri_is_ndvi_minus_ndwi(self):
        stack = reflectance_stack(GREEN=0.05, RED=0.03, NIR=0.35)
        ndvi = (0.35 - 0.03) / 0.38
        ndwi = (0.05 - 0.35) / 0.40
        assert compute_cmri(stack).values[0] == pytest.approx(ndvi - ndwi)


class TestMMRI:

    def test_literal_operator_order(self):
        # |(G-M)/(G+M)| = 0.5, |(N-R)/(N+R)| = 0.6
        stack = reflectance_stack(GREEN=0.1, SWIR1=0.3, NIR=0.4, RED=0.1)
        mmri = compute_mmri(stack).values[0]

        assert mmri == pytest.approx(0.5 - 0.6 / 0.5 + 0.6)
        assert mmri != pytest.approx((0.5 - 0.6) / (0.5 + 0.6))

    def test_zero_water_term_leaves_vegetation_term(self):
        stack = reflectance_stack(GREEN=0.1, SWIR1=0.1, NIR=0.3, RED=0.05)
        mmri = compute_mmri(stack).values[0]

        assert mmri == pytest.approx(0.25 / 0.35)
        assert mmri == pytest.approx(0.714, abs=1e-3)

    def test_zero_denominators_evaluate_to_zero(self):
        stack = reflectance_stack(GREEN=0.0, SWIR1=0.0, NIR=0.0, RED=0.0)
        assert compute_mmri(stack).values[0] == 0.0

    def test_missing_input_stays_nan(self):
        stack = reflectance_stack(GREEN=np.nan, SWIR1=0.3, NIR=0.4, RED=0.1)
        assert np.isnan(compute_mmri(stack).values[0])


class TestFeatureStack:

    def test_rename_landsat8_bands(self):
        cube = make_datacube('landsat8', ['2014-01-01'], {b: 0.1 for b in REFLECTANCE_BANDS},
                             shape=(2, 2))
        renamed = rename_bands(cube, 'landsat8')
        assert list(renamed.data_vars) == REFLECTANCE_BANDS

    def test_missing_source_band(self):
        cube = make_datacube('landsat7', ['2000-01-01'], {b: 0.1 for b in REFLECTANCE_BANDS},
                             shape=(2, 2)).drop_vars('B4')
        with pytest.raises(KeyError, match='B4'):
            rename_bands(cube, 'landsat7')

    def test_add_indices_produces_eleven_bands(self, random_stack):
        source = random_stack.rename({'BLUE': 'B1', 'GREEN': 'B2', 'RED': 'B3',
                                      'NIR': 'B4', 'SWIR1': 'B5', 'SWIR2': 'B7'})
        features = add_indices(source, 'landsat7')

        assert list(features.data_vars) == REFLECTANCE_BANDS + INDEX_BANDS
        assert features.attrs['sensor'] == 'landsat7'
        assert features['NDVI'].shape == (20, 20)
